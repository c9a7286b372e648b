from sbcapture.planewalk.models import (
    PlaneCoord,
    PlaneFailure,
    PlaneRead,
    StreamResult,
    ZStack,
)
from sbcapture.planewalk.streamer import PlaneStreamer

__all__ = [
    "PlaneCoord",
    "PlaneFailure",
    "PlaneRead",
    "PlaneStreamer",
    "StreamResult",
    "ZStack",
]
