from __future__ import annotations

import dataclasses
from datetime import datetime
from types import SimpleNamespace

import numpy as np
import pytest

from sbcapture.capture import CaptureMetadata, position_info
from sbcapture.planewalk import PlaneStreamer
from sbcapture.reader import (
    NO_EXCEPTIONS_MASKED,
    ErrorCode,
    InvalidIndexError,
    PlaneReadError,
    ReadState,
    StringField,
    read_string,
)

bioio = pytest.importorskip("bioio")

from sbcapture.bioio_reader import BioioReader, _to_ms, open_reader  # noqa: E402


@pytest.fixture
def data() -> np.ndarray:
    rng = np.random.default_rng(0)
    return rng.integers(0, 4096, size=(2, 3, 4, 5, 6), dtype=np.uint16)


@pytest.fixture
def reader(data: np.ndarray) -> BioioReader:
    return BioioReader(bioio.BioImage(data))


def test_dimensions(reader: BioioReader) -> None:
    assert reader.get_num_captures() == 1
    assert reader.get_num_positions(0) == 1
    assert reader.get_num_timepoints(0) == 2
    assert reader.get_num_channels(0) == 3
    assert reader.get_num_z_planes(0) == 4
    assert reader.get_num_y_rows(0) == 5
    assert reader.get_num_x_columns(0) == 6


def test_read_plane(reader: BioioReader, data: np.ndarray) -> None:
    out = np.zeros(30, dtype=np.uint16)
    assert reader.read_image_plane(out, 0, 0, 1, 3, 2)
    np.testing.assert_array_equal(out.reshape(5, 6), data[1, 2, 3])


def test_stream_matches_source(reader: BioioReader, data: np.ndarray) -> None:
    metadata = CaptureMetadata.from_reader(reader, 0)
    streamer = PlaneStreamer(reader, metadata)
    for stack in streamer.iter_stacks():
        np.testing.assert_array_equal(stack.data, data[stack.timepoint, stack.channel])
        assert stack.failures == []


def test_invalid_indices(reader: BioioReader) -> None:
    out = np.zeros(30, dtype=np.uint16)
    assert reader.read_image_plane(out, 0, 0, 5, 0, 0) is False
    assert not reader.good()
    reader.clear()

    assert reader.get_num_z_planes(3) == 0
    assert reader.last_error == ErrorCode.INVALID_CAPTURE_INDEX
    assert read_string(reader, StringField.IMAGE_NAME, 3) == ""

    reader.exceptions = NO_EXCEPTIONS_MASKED
    with pytest.raises(InvalidIndexError):
        reader.read_image_plane(out, 0, 1, 0, 0, 0)


@pytest.mark.parametrize("dtype", [np.float32, np.bool_, np.int16, np.uint32])
def test_non_uint16_compatible_samples_are_rejected(
    reader: BioioReader, monkeypatch, dtype
) -> None:
    monkeypatch.setattr(
        reader._image, "get_image_data", lambda *args, **kwargs: np.ones((5, 6), dtype)
    )
    out = np.zeros(30, dtype=np.uint16)
    assert reader.read_image_plane(out, 0, 0, 0, 0, 0) is False
    assert not out.any()
    assert reader.rd_state & ReadState.UNIMPLEMENTED


def test_uint8_samples_are_widened() -> None:
    data = np.arange(4, dtype=np.uint8).reshape(1, 1, 1, 2, 2)
    reader = BioioReader(bioio.BioImage(data))
    out = np.zeros(4, dtype=np.uint16)
    assert reader.read_image_plane(out, 0, 0, 0, 0, 0)
    assert out.tolist() == [0, 1, 2, 3]


def test_image_name_is_never_empty(reader: BioioReader) -> None:
    assert read_string(reader, StringField.IMAGE_NAME, 0) != ""


def test_open_missing_file(tmp_path) -> None:
    from sbcapture.reader import ReaderOpenError

    with pytest.raises(ReaderOpenError) as exc_info:
        open_reader(tmp_path / "nope.sld")
    assert exc_info.value.error_code == ErrorCode.UNABLE_TO_OPEN


@pytest.mark.parametrize(
    "value, unit, expected",
    [(None, "s", 0), (1.5, "s", 1500), (250, "ms", 250), (2, "min", 120000)],
)
def test_to_ms(value, unit, expected) -> None:
    assert _to_ms(value, unit) == expected


@pytest.mark.parametrize(
    "sizes",
    [None, SimpleNamespace(X=None, Y=None, Z=None), SimpleNamespace(X=None, Y=0.5, Z=0.5)],
)
def test_metadata_without_physical_pixel_sizes(
    reader: BioioReader, monkeypatch, sizes
) -> None:
    monkeypatch.setattr(
        type(reader._image), "physical_pixel_sizes", property(lambda self: sizes)
    )
    assert reader.get_voxel_size(0) is None
    metadata = CaptureMetadata.from_reader(reader, 0)
    assert metadata.has_voxel_size is False
    assert metadata.voxel_size == (1.0, 1.0, 1.0)
    assert "undefined defaulting [1,1,1]" in metadata.detail()


def test_metadata_with_physical_pixel_sizes(reader: BioioReader, monkeypatch) -> None:
    monkeypatch.setattr(
        type(reader._image),
        "physical_pixel_sizes",
        property(lambda self: SimpleNamespace(X=0.25, Y=0.25, Z=1.5)),
    )
    metadata = CaptureMetadata.from_reader(reader, 0)
    assert metadata.has_voxel_size is True
    assert metadata.voxel_size == (0.25, 0.25, 1.5)


def test_plane_larger_than_metadata_is_a_plane_failure(reader: BioioReader) -> None:
    metadata = dataclasses.replace(CaptureMetadata.from_reader(reader, 0), x_dim=3)
    result = PlaneStreamer(reader, metadata).stream()
    assert result.requested == 2 * 3 * 4
    assert len(result.failures) == result.requested
    assert all(f.error is None for f in result.failures)
    assert not reader.good()

    reader.clear()
    reader.exceptions = NO_EXCEPTIONS_MASKED
    with pytest.raises(PlaneReadError, match="does not fit"):
        reader.read_image_plane(np.zeros(3, dtype=np.uint16), 0, 0, 0, 0, 0)


@pytest.fixture
def ome_reader(reader: BioioReader) -> BioioReader:
    model = pytest.importorskip("ome_types.model")

    planes = [
        model.Plane(
            the_t=t,
            the_c=c,
            the_z=0,
            delta_t=1.5 * t,
            exposure_time=[100, 250, 400][c],
            exposure_time_unit="ms",
            position_x=10.0,
            position_y=-20.0,
            position_z=3.5,
        )
        for t in range(2)
        for c in range(3)
    ]
    ome = model.OME(
        instruments=[
            model.Instrument(
                id="Instrument:0",
                objectives=[
                    model.Objective(
                        id="Objective:0", model="63x Oil", nominal_magnification=63.0
                    )
                ],
            )
        ],
        images=[
            model.Image(
                id="Image:0",
                name="Cells",
                description="hello",
                acquisition_date=datetime(2024, 3, 1, 10, 0),
                objective_settings=model.ObjectiveSettings(id="Objective:0"),
                pixels=model.Pixels(
                    id="Pixels:0",
                    dimension_order="XYZCT",
                    type="uint16",
                    size_x=6,
                    size_y=5,
                    size_z=4,
                    size_c=3,
                    size_t=2,
                    planes=planes,
                ),
            )
        ],
    )
    reader._ome = ome
    reader._ome_loaded = True
    return reader


def test_ome_metadata_fields(ome_reader: BioioReader) -> None:
    metadata = CaptureMetadata.from_reader(ome_reader, 0)
    assert metadata.image_name == "Cells"
    assert metadata.image_comments == "hello"
    assert metadata.capture_date == "2024-03-01 10:00:00"
    assert metadata.lens_name == "63x Oil"
    assert metadata.exposure_times == (100, 250, 400)
    assert metadata.max_elapsed_ms == 1500
    assert ome_reader.get_elapsed_time(0, 0) == 0
    assert ome_reader.get_magnification(0) == 63.0


def test_ome_stage_position(ome_reader: BioioReader) -> None:
    pos = position_info(ome_reader, 0, 0)
    assert (pos.x, pos.y, pos.z) == (10.0, -20.0, 3.5)
    assert (pos.montage_row, pos.montage_column) == (0, 0)
    assert ome_reader.good()
