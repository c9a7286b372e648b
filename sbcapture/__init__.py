import os

from loguru import logger

from .utils import find_java_home

# bioio-bioformats reads SlideBook files through a JVM
if not os.environ.get("JAVA_HOME"):
    java_home = find_java_home()
    if java_home:
        os.environ["JAVA_HOME"] = java_home
        logger.debug(f"Auto-detected JAVA_HOME: {java_home}")

from .capture import CaptureMetadata, Channel, PositionInfo, position_info  # noqa: E402
from .planewalk import PlaneStreamer, StreamResult  # noqa: E402
from .reader import (  # noqa: E402
    ALL_EXCEPTIONS_MASKED,
    NO_EXCEPTIONS_MASKED,
    CaptureAllocationError,
    ErrorCode,
    InvalidIndexError,
    PlaneReadError,
    ReaderOpenError,
    ReadState,
    SBReader,
    SBReaderError,
    StringField,
    read_string,
)
from .utils import IndexFormatter  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    "ALL_EXCEPTIONS_MASKED",
    "NO_EXCEPTIONS_MASKED",
    "CaptureAllocationError",
    "CaptureMetadata",
    "Channel",
    "ErrorCode",
    "IndexFormatter",
    "InvalidIndexError",
    "PlaneReadError",
    "PlaneStreamer",
    "PositionInfo",
    "ReadState",
    "ReaderOpenError",
    "SBReader",
    "SBReaderError",
    "StreamResult",
    "StringField",
    "position_info",
    "read_string",
]
