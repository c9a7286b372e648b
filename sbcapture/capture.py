"""Per-capture metadata snapshots."""

import numbers
from dataclasses import dataclass, field
from typing import Optional, Tuple

from loguru import logger

from sbcapture.reader import SBReader, StringField, read_string
from sbcapture.utils import IndexFormatter

DEFAULT_VOXEL_SIZE = (1.0, 1.0, 1.0)


def _voxel_triple(voxel):
    # type: (object) -> Optional[Tuple[float, float, float]]
    """Return voxel as three floats, or None unless all three axes are numbers."""
    if voxel is None:
        return None
    try:
        values = tuple(voxel)
    except TypeError:
        return None
    if len(values) != 3 or not all(
        isinstance(v, numbers.Real) and not isinstance(v, bool) for v in values
    ):
        return None
    return tuple(float(v) for v in values)


@dataclass(frozen=True)
class Channel:
    """One acquisition channel of a capture.

    Attributes:
        name: Channel name as stored by the acquisition software
        exposure_ms: Exposure time in milliseconds
    """

    name: str
    exposure_ms: int


@dataclass(frozen=True)
class PositionInfo:
    """Stage location of one position within a capture (microns)."""

    position_index: int
    x: float
    y: float
    z: float
    montage_row: int
    montage_column: int


@dataclass(frozen=True)
class CaptureMetadata:
    """Immutable metadata of one capture.

    Built by ``from_reader``; holds no reference to the reader that produced
    it. When the file does not define a voxel size, ``voxel_size`` holds
    ``(1.0, 1.0, 1.0)`` and ``has_voxel_size`` is False; the default is a
    placeholder, not a measurement.

    Attributes:
        capture_index: Capture index (0-based)
        num_captures: Number of captures in the file
        num_positions: Number of stage positions
        num_channels: Number of channels
        num_timepoints: Number of timepoints
        x_dim: Columns per plane
        y_dim: Rows per plane
        z_dim: Z planes per stack
        voxel_size: (x, y, z) voxel size in microns
        has_voxel_size: Whether voxel_size was defined by the file
        image_name: Image name
        image_comments: Free-text comments
        capture_date: Capture date as stored in the file
        lens_name: Objective lens name
        channels: Channels in index order
        max_elapsed_ms: Elapsed time of the last timepoint in milliseconds
    """

    capture_index: int
    num_captures: int
    num_positions: int
    num_channels: int
    num_timepoints: int
    x_dim: int
    y_dim: int
    z_dim: int
    voxel_size: Tuple[float, float, float] = DEFAULT_VOXEL_SIZE
    has_voxel_size: bool = False
    image_name: str = ""
    image_comments: str = ""
    capture_date: str = ""
    lens_name: str = ""
    channels: Tuple[Channel, ...] = ()
    max_elapsed_ms: int = 0
    _formatters: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        formatters = {
            "capture": IndexFormatter(self.num_captures, 1),
            "position": IndexFormatter(self.num_positions, 1),
            "channel": IndexFormatter(self.num_channels, 1),
            "timepoint": IndexFormatter(self.num_timepoints, 1),
            "elapsed": IndexFormatter(self.max_elapsed_ms, 0),
        }
        object.__setattr__(self, "_formatters", formatters)

    @classmethod
    def from_reader(cls, reader: SBReader, capture_index: int) -> "CaptureMetadata":
        """Query every field of a capture from the reader.

        Values are taken as returned; under a masked error policy a failing
        query contributes 0 or an empty string and is not retried.

        Args:
            reader: Open reader
            capture_index: Capture index (0-based)

        Returns:
            Metadata snapshot of the capture
        """
        num_channels = reader.get_num_channels(capture_index)
        num_timepoints = reader.get_num_timepoints(capture_index)

        voxel = _voxel_triple(reader.get_voxel_size(capture_index))
        has_voxel_size = voxel is not None
        voxel_size = voxel if has_voxel_size else DEFAULT_VOXEL_SIZE

        channels = tuple(
            Channel(
                name=read_string(reader, StringField.CHANNEL_NAME, capture_index, c),
                exposure_ms=int(reader.get_exposure_time(capture_index, c)),
            )
            for c in range(num_channels)
        )

        max_elapsed_ms = (
            reader.get_elapsed_time(capture_index, num_timepoints - 1)
            if num_timepoints > 0
            else 0
        )

        metadata = cls(
            capture_index=capture_index,
            num_captures=reader.get_num_captures(),
            num_positions=reader.get_num_positions(capture_index),
            num_channels=num_channels,
            num_timepoints=num_timepoints,
            x_dim=reader.get_num_x_columns(capture_index),
            y_dim=reader.get_num_y_rows(capture_index),
            z_dim=reader.get_num_z_planes(capture_index),
            voxel_size=voxel_size,
            has_voxel_size=has_voxel_size,
            image_name=read_string(reader, StringField.IMAGE_NAME, capture_index),
            image_comments=read_string(reader, StringField.IMAGE_COMMENTS, capture_index),
            capture_date=read_string(reader, StringField.CAPTURE_DATE, capture_index),
            lens_name=read_string(reader, StringField.LENS_NAME, capture_index),
            channels=channels,
            max_elapsed_ms=int(max_elapsed_ms),
        )
        logger.debug(
            f"capture {capture_index}: T={metadata.num_timepoints}, "
            f"C={metadata.num_channels}, Z={metadata.z_dim}, "
            f"Y={metadata.y_dim}, X={metadata.x_dim}"
        )
        return metadata

    @property
    def plane_samples(self) -> int:
        return self.x_dim * self.y_dim

    @property
    def stack_samples(self) -> int:
        return self.x_dim * self.y_dim * self.z_dim

    @property
    def channel_names(self) -> Tuple[str, ...]:
        return tuple(channel.name for channel in self.channels)

    @property
    def exposure_times(self) -> Tuple[int, ...]:
        return tuple(channel.exposure_ms for channel in self.channels)

    def capture_label(self) -> str:
        return self._formatters["capture"].format(self.capture_index)

    def position_label(self, position_index: int) -> str:
        return self._formatters["position"].format(position_index)

    def channel_label(self, channel_index: int) -> str:
        return self._formatters["channel"].format(channel_index)

    def timepoint_label(self, timepoint_index: int) -> str:
        return self._formatters["timepoint"].format(timepoint_index)

    def elapsed_label(self, elapsed_ms: int) -> str:
        return self._formatters["elapsed"].format(elapsed_ms)

    def header(self, position_index: int = 0) -> str:
        """One-line summary of the capture at a position."""
        return (
            f"capture {self.capture_index + 1} of {self.num_captures} : "
            f"position {position_index + 1} of {self.num_positions}, "
            f"time points: {self.num_timepoints}, channels: {self.num_channels}"
        )

    def detail(self) -> str:
        """Multi-line description of sizes, descriptive strings and channels."""
        lines = [
            f"Image name: {self.image_name}",
            f"Image size: [{self.x_dim},{self.y_dim},{self.z_dim}]",
        ]
        voxel_status = "" if self.has_voxel_size else "undefined defaulting "
        x, y, z = self.voxel_size
        lines.append(f"Voxel size: {voxel_status}[{x:g},{y:g},{z:g}]")
        lines.append(f"Image comments: {self.image_comments}")
        lines.append(f"Capture date: {self.capture_date}")
        lines.append(f"Lens name: {self.lens_name}")

        if len(self.channels) == 1:
            lines.append(f"Channel name: {self.channels[0].name}")
            lines.append(f"Channel exposure time: {self.channels[0].exposure_ms}ms")
        else:
            for c, channel in enumerate(self.channels):
                lines.append(f"Channel {self.channel_label(c)}")
                lines.append(f"   name: {channel.name}")
                lines.append(f"   exposure time: {channel.exposure_ms}ms")
        return "\n".join(lines) + "\n"


def position_info(reader, capture_index, position_index):
    # type: (SBReader, int, int) -> PositionInfo
    """Stage coordinates and montage placement of one position."""
    return PositionInfo(
        position_index=position_index,
        x=float(reader.get_x_position(capture_index, position_index)),
        y=float(reader.get_y_position(capture_index, position_index)),
        z=float(reader.get_z_position(capture_index, position_index)),
        montage_row=int(reader.get_montage_row(capture_index, position_index)),
        montage_column=int(reader.get_montage_column(capture_index, position_index)),
    )
