"""Reader collaborator surface, error policy and the two-phase string helper.

An ``SBReader`` answers per-capture queries (dimension counts, voxel size,
channel names, ...) and reads single 2D planes into caller-owned buffers.
Failures follow an explicit policy: each reader carries an exception mask of
``ReadState`` flags. A failure always updates the reader's error state; it is
raised only when its flag is enabled in the mask, otherwise the getter returns
its neutral value (0, 0.0, None, False or a string length of 0).
"""

import abc
import enum
from typing import Optional, Tuple

import numpy as np
from loguru import logger


class ReadState(enum.IntFlag):
    """Error state bit flags of a reader."""

    GOOD = 0
    EOF = 1 << 0
    FAIL = 1 << 1
    BAD = 1 << 2
    UNIMPLEMENTED = 1 << 3
    UNCATEGORIZED = 1 << 4


#: Exception mask that never raises; failures only update the error state.
ALL_EXCEPTIONS_MASKED = ReadState.GOOD
#: Exception mask that raises on every failure kind.
NO_EXCEPTIONS_MASKED = (
    ReadState.EOF
    | ReadState.FAIL
    | ReadState.BAD
    | ReadState.UNIMPLEMENTED
    | ReadState.UNCATEGORIZED
)


class ErrorCode(enum.IntEnum):
    """Extended failure code, available as ``SBReader.last_error``."""

    NONE = 0
    UNCATEGORIZED_FAILURE = 1
    UNABLE_TO_OPEN = 2
    INVALID_SLIDE_DOCUMENT = 3
    INVALID_CAPTURE_INDEX = 4


class SBReaderError(Exception):
    """Base of the reader error hierarchy."""

    def __init__(
        self,
        description: str,
        rd_state: ReadState = ReadState.FAIL,
        error_code: ErrorCode = ErrorCode.UNCATEGORIZED_FAILURE,
    ):
        super().__init__(description)
        self.description = description
        self.rd_state = ReadState(rd_state)
        self.error_code = ErrorCode(error_code)


class InvalidIndexError(SBReaderError, IndexError):
    """A capture, position, timepoint, channel or Z index is out of range."""


class PlaneReadError(SBReaderError):
    """The reader could not produce the requested plane bytes."""


class ReaderOpenError(SBReaderError):
    """The file could not be opened."""


class CaptureAllocationError(MemoryError):
    """The output buffer for a capture could not be obtained."""


class StringField(enum.Enum):
    """Selector for the two-phase string getters of a reader."""

    IMAGE_NAME = "image_name"
    IMAGE_COMMENTS = "image_comments"
    CAPTURE_DATE = "capture_date"
    LENS_NAME = "lens_name"
    CHANNEL_NAME = "channel_name"


_STRING_GETTERS = {
    StringField.IMAGE_NAME: "get_image_name",
    StringField.IMAGE_COMMENTS: "get_image_comments",
    StringField.CAPTURE_DATE: "get_capture_date",
    StringField.LENS_NAME: "get_lens_name",
    StringField.CHANNEL_NAME: "get_channel_name",
}


def read_string(reader, field, capture_index, channel_index=None):
    # type: (SBReader, StringField, int, Optional[int]) -> str
    """Fetch a string field using the query-length-then-fill protocol.

    The first call passes no buffer and returns the byte size including the
    NUL terminator. A size of 0 means the value is absent (or the query failed
    under a masked policy) and yields an empty string without a second call.

    :param reader: Open reader
    :param field: Which string to fetch
    :param capture_index: Capture index (0-based)
    :param channel_index: Channel index, required for ``StringField.CHANNEL_NAME``
    :return: Decoded string, empty if absent
    :raises ValueError: If a channel field is requested without a channel index
    """
    getter = getattr(reader, _STRING_GETTERS[field])
    if field is StringField.CHANNEL_NAME:
        if channel_index is None:
            raise ValueError("channel_index is required for channel names")
        args = (capture_index, channel_index)
    else:
        args = (capture_index,)

    size = getter(None, *args)
    if not size or size <= 0:
        return ""

    buffer = bytearray(size)
    getter(buffer, *args)
    return bytes(buffer).split(b"\0", 1)[0].decode("utf-8", errors="replace")


class SBReader(abc.ABC):
    """Read access to the captures of one open image file.

    Subclasses implement the getters; this base class owns the error state and
    exception policy and provides the buffer helpers that implementations use
    to honour the two-phase string and strided plane protocols.

    Args:
        exceptions: ``ReadState`` flags that raise instead of returning a
            neutral value. Defaults to raising nothing.
    """

    sample_dtype = np.dtype(np.uint16)

    def __init__(self, exceptions: ReadState = ALL_EXCEPTIONS_MASKED):
        self._exceptions = ReadState(exceptions)
        self._rd_state = ReadState.GOOD
        self._last_error = ErrorCode.NONE

    # -- error state -------------------------------------------------------

    @property
    def exceptions(self) -> ReadState:
        return self._exceptions

    @exceptions.setter
    def exceptions(self, mask: ReadState):
        self._exceptions = ReadState(mask)

    @property
    def rd_state(self) -> ReadState:
        return self._rd_state

    @property
    def last_error(self) -> ErrorCode:
        return self._last_error

    def good(self) -> bool:
        return self._rd_state == ReadState.GOOD

    def clear(self) -> bool:
        """Reset the error state; a BAD state cannot be recovered."""
        if self._rd_state & ReadState.BAD:
            return False
        self._rd_state = ReadState.GOOD
        self._last_error = ErrorCode.NONE
        return True

    def fail(
        self,
        description,
        default=None,
        state=ReadState.FAIL,
        code=ErrorCode.UNCATEGORIZED_FAILURE,
        error_cls=SBReaderError,
    ):
        """Record a failure and raise it or return ``default`` per the policy."""
        self._rd_state |= state
        self._last_error = ErrorCode(code)
        logger.debug(f"reader failure ({state!r}, {code!r}): {description}")
        if state & self._exceptions:
            raise error_cls(description, state, code)
        return default

    def check_index(self, name, index, count):
        # type: (str, int, int) -> bool
        """Return True if ``0 <= index < count``, else record an invalid index."""
        if 0 <= index < count:
            return True
        code = (
            ErrorCode.INVALID_CAPTURE_INDEX
            if name == "capture"
            else ErrorCode.UNCATEGORIZED_FAILURE
        )
        self.fail(
            f"invalid {name} index {index} (count {count})",
            code=code,
            error_cls=InvalidIndexError,
        )
        return False

    # -- buffer helpers ----------------------------------------------------

    @staticmethod
    def copy_string(value, buffer):
        # type: (str, Optional[bytearray]) -> int
        """Serve one phase of the two-phase string protocol.

        Returns the byte size of ``value`` plus NUL terminator; when a buffer
        is given the encoded value is copied into it as well.
        """
        data = value.encode("utf-8") + b"\0"
        if buffer is not None:
            if len(buffer) < len(data):
                raise ValueError(
                    f"string buffer too small: {len(buffer)} < {len(data)} bytes"
                )
            buffer[: len(data)] = data
        return len(data)

    @classmethod
    def place_plane(cls, plane, out, byte_stride=None):
        # type: (np.ndarray, np.ndarray, Optional[int]) -> None
        """Copy a 2D plane into a flat sample buffer, one row per ``byte_stride``.

        ``out`` must hold at least ``rows * byte_stride`` bytes; the default
        stride is ``columns * sample size`` (tightly packed rows).
        """
        if plane.ndim != 2:
            raise ValueError(f"Expected 2D plane, got {plane.ndim}D")
        rows, cols = plane.shape
        itemsize = cls.sample_dtype.itemsize
        if byte_stride is None:
            byte_stride = cols * itemsize
        if byte_stride < cols * itemsize or byte_stride % itemsize:
            raise ValueError(
                f"byte stride {byte_stride} invalid for {cols} columns of {itemsize} bytes"
            )
        row_samples = byte_stride // itemsize
        if out.size < rows * row_samples:
            raise ValueError(
                f"plane buffer too small: {out.size} < {rows * row_samples} samples"
            )
        target = out[: rows * row_samples].reshape(rows, row_samples)
        target[:, :cols] = plane

    # -- lifecycle ---------------------------------------------------------

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -- dimensions --------------------------------------------------------

    @abc.abstractmethod
    def get_num_captures(self) -> int: ...

    @abc.abstractmethod
    def get_num_positions(self, capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_num_x_columns(self, capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_num_y_rows(self, capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_num_z_planes(self, capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_num_timepoints(self, capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_num_channels(self, capture_index: int) -> int: ...

    # -- scalar metadata ---------------------------------------------------

    @abc.abstractmethod
    def get_exposure_time(self, capture_index: int, channel_index: int) -> int:
        """Exposure time of a channel in milliseconds."""

    @abc.abstractmethod
    def get_voxel_size(
        self, capture_index: int
    ) -> Optional[Tuple[float, float, float]]:
        """Voxel size (x, y, z) in microns, or None if undefined."""

    @abc.abstractmethod
    def get_elapsed_time(self, capture_index: int, timepoint_index: int) -> int:
        """Elapsed time of a timepoint in milliseconds."""

    def get_montage_row(self, capture_index: int, position_index: int) -> int:
        return self.fail("montage row not implemented", 0, state=ReadState.UNIMPLEMENTED)

    def get_montage_column(self, capture_index: int, position_index: int) -> int:
        return self.fail(
            "montage column not implemented", 0, state=ReadState.UNIMPLEMENTED
        )

    def get_x_position(self, capture_index: int, position_index: int) -> float:
        return self.fail("x position not implemented", 0.0, state=ReadState.UNIMPLEMENTED)

    def get_y_position(self, capture_index: int, position_index: int) -> float:
        return self.fail("y position not implemented", 0.0, state=ReadState.UNIMPLEMENTED)

    def get_z_position(
        self, capture_index: int, position_index: int, z_index: int = 0
    ) -> float:
        return self.fail("z position not implemented", 0.0, state=ReadState.UNIMPLEMENTED)

    def get_magnification(self, capture_index: int) -> float:
        return self.fail(
            "magnification not implemented", 0.0, state=ReadState.UNIMPLEMENTED
        )

    # -- two-phase strings -------------------------------------------------

    @abc.abstractmethod
    def get_image_name(self, buffer: Optional[bytearray], capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_image_comments(
        self, buffer: Optional[bytearray], capture_index: int
    ) -> int: ...

    @abc.abstractmethod
    def get_capture_date(self, buffer: Optional[bytearray], capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_lens_name(self, buffer: Optional[bytearray], capture_index: int) -> int: ...

    @abc.abstractmethod
    def get_channel_name(
        self, buffer: Optional[bytearray], capture_index: int, channel_index: int
    ) -> int: ...

    # -- pixels ------------------------------------------------------------

    @abc.abstractmethod
    def read_image_plane(
        self,
        out: np.ndarray,
        capture_index: int,
        position_index: int,
        timepoint_index: int,
        z_index: int,
        channel_index: int,
        byte_stride: Optional[int] = None,
    ) -> bool:
        """Read one 2D plane of 16-bit samples into ``out``.

        Returns True if the whole plane was written, False if any part could
        not be read and the failure is masked by the exception policy.
        """
