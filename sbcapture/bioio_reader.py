"""SBReader implementation on top of bioio.

Each bioio scene is one capture with a single stage position. SlideBook
``.sld`` files are read through the bioio-bioformats plugin; any other format
bioio has a plugin for works the same way. Descriptive fields that bioio
does not expose directly (capture date, lens, exposure, elapsed time) come from
the OME metadata when the plugin provides it, and are reported as absent
otherwise.
"""

from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from bioio import BioImage
from loguru import logger

from sbcapture.reader import (
    ALL_EXCEPTIONS_MASKED,
    ErrorCode,
    PlaneReadError,
    ReaderOpenError,
    ReadState,
    SBReader,
)

_TIME_TO_MS = {"s": 1000.0, "ms": 1.0, "µs": 0.001, "us": 0.001, "min": 60000.0, "h": 3600000.0}


def _to_ms(value, unit):
    if value is None:
        return 0
    unit = getattr(unit, "value", unit) or "s"
    return int(round(float(value) * _TIME_TO_MS.get(unit, 1000.0)))


class BioioReader(SBReader):
    """Read captures from any image bioio can open.

    Args:
        image: Path to the image file, or an already opened ``BioImage``
        exceptions: ``ReadState`` flags that raise instead of returning a
            neutral value
        **kwargs: Passed to ``BioImage`` when opening a path
    """

    def __init__(
        self,
        image: Union[str, Path, BioImage],
        exceptions: ReadState = ALL_EXCEPTIONS_MASKED,
        **kwargs,
    ):
        super().__init__(exceptions)
        if isinstance(image, BioImage):
            self._image = image
            self.name = "array"
        else:
            self._image = BioImage(image, **kwargs)
            self.name = Path(image).name
        self._ome = None
        self._ome_loaded = False
        logger.debug(f"{self.name} - {len(self._image.scenes)} scene(s)")

    # -- scene handling ----------------------------------------------------

    def _scene(self, capture_index: int) -> bool:
        if not self.check_index("capture", capture_index, self.get_num_captures()):
            return False
        if self._image.current_scene_index != capture_index:
            self._image.set_scene(capture_index)
        return True

    def _dim(self, capture_index: int, name: str) -> int:
        if not self._scene(capture_index):
            return 0
        return int(getattr(self._image.dims, name))

    def _ome_image(self, capture_index: int):
        if not self._ome_loaded:
            self._ome_loaded = True
            try:
                self._ome = self._image.ome_metadata
            except Exception as e:
                logger.debug(f"{self.name} - no OME metadata available: {e}")
        if self._ome is None or capture_index >= len(self._ome.images):
            return None
        return self._ome.images[capture_index]

    def _ome_plane(self, capture_index: int, t: int = 0, c: int = 0, z: int = 0):
        image = self._ome_image(capture_index)
        if image is None:
            return None
        for plane in image.pixels.planes:
            if (plane.the_t, plane.the_c, plane.the_z) == (t, c, z):
                return plane
        return None

    def _objective(self, capture_index: int):
        image = self._ome_image(capture_index)
        if image is None or image.objective_settings is None:
            return None
        objective_id = image.objective_settings.id
        for instrument in self._ome.instruments:
            for objective in instrument.objectives:
                if objective.id == objective_id:
                    return objective
        return None

    # -- dimensions --------------------------------------------------------

    def get_num_captures(self) -> int:
        return len(self._image.scenes)

    def get_num_positions(self, capture_index: int) -> int:
        return 1 if self._scene(capture_index) else 0

    def get_num_x_columns(self, capture_index: int) -> int:
        return self._dim(capture_index, "X")

    def get_num_y_rows(self, capture_index: int) -> int:
        return self._dim(capture_index, "Y")

    def get_num_z_planes(self, capture_index: int) -> int:
        return self._dim(capture_index, "Z")

    def get_num_timepoints(self, capture_index: int) -> int:
        return self._dim(capture_index, "T")

    def get_num_channels(self, capture_index: int) -> int:
        return self._dim(capture_index, "C")

    # -- scalar metadata ---------------------------------------------------

    def get_exposure_time(self, capture_index: int, channel_index: int) -> int:
        if not self.check_index(
            "channel", channel_index, self.get_num_channels(capture_index)
        ):
            return 0
        plane = self._ome_plane(capture_index, c=channel_index)
        if plane is None:
            return 0
        return _to_ms(plane.exposure_time, plane.exposure_time_unit)

    def get_voxel_size(self, capture_index: int) -> Optional[Tuple[float, float, float]]:
        if not self._scene(capture_index):
            return None
        sizes = self._image.physical_pixel_sizes
        if not sizes or sizes.X is None or sizes.Y is None or sizes.Z is None:
            return None
        return (float(sizes.X), float(sizes.Y), float(sizes.Z))

    def get_elapsed_time(self, capture_index: int, timepoint_index: int) -> int:
        if not self.check_index(
            "timepoint", timepoint_index, self.get_num_timepoints(capture_index)
        ):
            return 0
        plane = self._ome_plane(capture_index, t=timepoint_index)
        if plane is None:
            return 0
        return _to_ms(plane.delta_t, plane.delta_t_unit)

    def get_montage_row(self, capture_index: int, position_index: int) -> int:
        self.check_index("position", position_index, self.get_num_positions(capture_index))
        return 0

    def get_montage_column(self, capture_index: int, position_index: int) -> int:
        self.check_index("position", position_index, self.get_num_positions(capture_index))
        return 0

    def _stage_position(self, capture_index, position_index, axis, z_index=0):
        if not self.check_index(
            "position", position_index, self.get_num_positions(capture_index)
        ):
            return 0.0
        plane = self._ome_plane(capture_index, z=z_index)
        value = getattr(plane, f"position_{axis}", None) if plane is not None else None
        return float(value) if value is not None else 0.0

    def get_x_position(self, capture_index: int, position_index: int) -> float:
        return self._stage_position(capture_index, position_index, "x")

    def get_y_position(self, capture_index: int, position_index: int) -> float:
        return self._stage_position(capture_index, position_index, "y")

    def get_z_position(
        self, capture_index: int, position_index: int, z_index: int = 0
    ) -> float:
        return self._stage_position(capture_index, position_index, "z", z_index)

    def get_magnification(self, capture_index: int) -> float:
        if not self._scene(capture_index):
            return 0.0
        objective = self._objective(capture_index)
        if objective is None or objective.nominal_magnification is None:
            return 0.0
        return float(objective.nominal_magnification)

    # -- two-phase strings -------------------------------------------------

    def get_image_name(self, buffer: Optional[bytearray], capture_index: int) -> int:
        if not self._scene(capture_index):
            return 0
        image = self._ome_image(capture_index)
        name = image.name if image is not None and image.name else None
        return self.copy_string(name or str(self._image.current_scene), buffer)

    def get_image_comments(self, buffer: Optional[bytearray], capture_index: int) -> int:
        if not self._scene(capture_index):
            return 0
        image = self._ome_image(capture_index)
        if image is None or not image.description:
            return 0
        return self.copy_string(image.description, buffer)

    def get_capture_date(self, buffer: Optional[bytearray], capture_index: int) -> int:
        if not self._scene(capture_index):
            return 0
        image = self._ome_image(capture_index)
        if image is None or image.acquisition_date is None:
            return 0
        return self.copy_string(str(image.acquisition_date), buffer)

    def get_lens_name(self, buffer: Optional[bytearray], capture_index: int) -> int:
        if not self._scene(capture_index):
            return 0
        objective = self._objective(capture_index)
        if objective is None or not objective.model:
            return 0
        return self.copy_string(objective.model, buffer)

    def get_channel_name(
        self, buffer: Optional[bytearray], capture_index: int, channel_index: int
    ) -> int:
        if not self.check_index(
            "channel", channel_index, self.get_num_channels(capture_index)
        ):
            return 0
        names = self._image.channel_names
        if not names or channel_index >= len(names) or not names[channel_index]:
            return 0
        return self.copy_string(str(names[channel_index]), buffer)

    # -- pixels ------------------------------------------------------------

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
        if not (
            self._scene(capture_index)
            and self.check_index("position", position_index, 1)
            and self.check_index("timepoint", timepoint_index, self._image.dims.T)
            and self.check_index("z", z_index, self._image.dims.Z)
            and self.check_index("channel", channel_index, self._image.dims.C)
        ):
            return False

        try:
            plane = self._image.get_image_data(
                "YX", T=timepoint_index, C=channel_index, Z=z_index
            )
        except Exception as e:
            return self.fail(
                f"{self.name} - cannot read plane t={timepoint_index} "
                f"c={channel_index} z={z_index}: {e}",
                False,
                error_cls=PlaneReadError,
            )

        if plane.dtype.kind != "u" or plane.dtype.itemsize > 2:
            return self.fail(
                f"{self.name} - {plane.dtype} samples cannot be read as uint16",
                False,
                state=ReadState.UNIMPLEMENTED,
                code=ErrorCode.UNCATEGORIZED_FAILURE,
                error_cls=PlaneReadError,
            )

        try:
            self.place_plane(plane.astype(self.sample_dtype, copy=False), out, byte_stride)
        except ValueError as e:
            return self.fail(
                f"{self.name} - plane t={timepoint_index} c={channel_index} "
                f"z={z_index} does not fit the output buffer: {e}",
                False,
                error_cls=PlaneReadError,
            )
        return True


def open_reader(path, exceptions=ALL_EXCEPTIONS_MASKED, **kwargs):
    # type: (Union[str, Path], ReadState, ...) -> BioioReader
    """Open an image file for capture reading.

    :param path: Path to the image file
    :param exceptions: Exception mask of the returned reader
    :return: Open reader
    :raises ReaderOpenError: If the file does not exist or no plugin can read it
    """
    path = Path(path)
    if not path.exists():
        raise ReaderOpenError(
            f"Image file not found: {path}",
            ReadState.FAIL,
            ErrorCode.UNABLE_TO_OPEN,
        )
    try:
        return BioioReader(path, exceptions=exceptions, **kwargs)
    except Exception as e:
        raise ReaderOpenError(
            f"Unable to open {path.name}: {e}",
            ReadState.FAIL,
            ErrorCode.INVALID_SLIDE_DOCUMENT,
        ) from e
