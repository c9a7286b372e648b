from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

import numpy as np


class PlaneCoord(NamedTuple):
    """(timepoint, channel, z) coordinate of a plane within a capture/position."""

    timepoint: int
    channel: int
    z: int


@dataclass
class PlaneRead:
    """Outcome of one plane-read request.

    :ivar coord: Plane coordinate that was requested
    :ivar offset: Sample offset in the capture buffer the plane was read to
    :ivar ok: True if the reader produced the whole plane
    :ivar error: Reader error description, if the reader raised one
    """

    coord: PlaneCoord
    offset: int
    ok: bool
    error: Optional[str] = None


@dataclass
class PlaneFailure:
    """A plane that could not be read; the traversal continued past it."""

    coord: PlaneCoord
    error: Optional[str] = None


@dataclass
class ZStack:
    """A complete Z-stack for one (timepoint, channel) pair.

    :ivar timepoint: Timepoint index (0-based)
    :ivar channel: Channel index (0-based)
    :ivar data: Capture buffer viewed as (Z, Y, X); valid until the next stack is read
    :ivar failures: Planes of this stack that failed to read
    """

    timepoint: int
    channel: int
    data: np.ndarray
    failures: List[PlaneFailure] = field(default_factory=list)


@dataclass
class StreamResult:
    """Summary of a full capture traversal."""

    capture_index: int
    position_index: int
    requested: int = 0
    failures: List[PlaneFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures
