from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pytest

from sbcapture.reader import (
    ALL_EXCEPTIONS_MASKED,
    PlaneReadError,
    ReadState,
    SBReader,
)


@dataclass
class FakeCapture:
    x: int = 4
    y: int = 3
    z: int = 3
    t: int = 3
    c: int = 2
    positions: int = 1
    voxel: Optional[tuple] = (0.5, 0.5, 2.0)
    image_name: str = "Capture 1"
    image_comments: str = ""
    capture_date: str = "2024-03-01 10:15:00"
    lens_name: str = "63x Oil"
    channel_names: list = field(default_factory=lambda: ["DAPI", "GFP"])
    exposures: list = field(default_factory=lambda: [100, 250])
    interval_ms: int = 1500


def plane_value(t: int, c: int, z: int) -> int:
    return 1 + t * 100 + c * 10 + z


class FakeReader(SBReader):
    """In-memory reader that records every call it receives."""

    def __init__(self, captures, exceptions=ALL_EXCEPTIONS_MASKED, failing=()):
        super().__init__(exceptions)
        self.captures = list(captures)
        self.failing = set(failing)
        self.plane_calls = []
        self.string_calls = []
        self.closed = False

    def close(self):
        self.closed = True

    def _cap(self, capture_index) -> Optional[FakeCapture]:
        if self.check_index("capture", capture_index, len(self.captures)):
            return self.captures[capture_index]
        return None

    def get_num_captures(self):
        return len(self.captures)

    def get_num_positions(self, capture_index):
        cap = self._cap(capture_index)
        return cap.positions if cap else 0

    def get_num_x_columns(self, capture_index):
        cap = self._cap(capture_index)
        return cap.x if cap else 0

    def get_num_y_rows(self, capture_index):
        cap = self._cap(capture_index)
        return cap.y if cap else 0

    def get_num_z_planes(self, capture_index):
        cap = self._cap(capture_index)
        return cap.z if cap else 0

    def get_num_timepoints(self, capture_index):
        cap = self._cap(capture_index)
        return cap.t if cap else 0

    def get_num_channels(self, capture_index):
        cap = self._cap(capture_index)
        return cap.c if cap else 0

    def get_exposure_time(self, capture_index, channel_index):
        cap = self._cap(capture_index)
        if cap is None or not self.check_index("channel", channel_index, cap.c):
            return 0
        return cap.exposures[channel_index]

    def get_voxel_size(self, capture_index):
        cap = self._cap(capture_index)
        return cap.voxel if cap else None

    def get_elapsed_time(self, capture_index, timepoint_index):
        cap = self._cap(capture_index)
        if cap is None or not self.check_index("timepoint", timepoint_index, cap.t):
            return 0
        return timepoint_index * cap.interval_ms

    def get_montage_row(self, capture_index, position_index):
        return position_index // 2

    def get_montage_column(self, capture_index, position_index):
        return position_index % 2

    def get_x_position(self, capture_index, position_index):
        return 100.0 * position_index

    def get_y_position(self, capture_index, position_index):
        return -50.0

    def get_z_position(self, capture_index, position_index, z_index=0):
        return 7.5

    def _string(self, name, buffer, capture_index):
        self.string_calls.append((name, buffer is not None))
        cap = self._cap(capture_index)
        if cap is None:
            return 0
        value = getattr(cap, name)
        if not value:
            return 0
        return self.copy_string(value, buffer)

    def get_image_name(self, buffer, capture_index):
        return self._string("image_name", buffer, capture_index)

    def get_image_comments(self, buffer, capture_index):
        return self._string("image_comments", buffer, capture_index)

    def get_capture_date(self, buffer, capture_index):
        return self._string("capture_date", buffer, capture_index)

    def get_lens_name(self, buffer, capture_index):
        return self._string("lens_name", buffer, capture_index)

    def get_channel_name(self, buffer, capture_index, channel_index):
        self.string_calls.append(("channel_name", buffer is not None))
        cap = self._cap(capture_index)
        if cap is None or not self.check_index("channel", channel_index, cap.c):
            return 0
        return self.copy_string(cap.channel_names[channel_index], buffer)

    def read_image_plane(
        self,
        out,
        capture_index,
        position_index,
        timepoint_index,
        z_index,
        channel_index,
        byte_stride=None,
    ):
        self.plane_calls.append(
            (capture_index, position_index, timepoint_index, z_index, channel_index)
        )
        cap = self._cap(capture_index)
        if cap is None or not (
            self.check_index("position", position_index, cap.positions)
            and self.check_index("timepoint", timepoint_index, cap.t)
            and self.check_index("z", z_index, cap.z)
            and self.check_index("channel", channel_index, cap.c)
        ):
            return False
        if (timepoint_index, channel_index, z_index) in self.failing:
            return self.fail(
                f"cannot read t={timepoint_index} c={channel_index} z={z_index}",
                False,
                state=ReadState.FAIL,
                error_cls=PlaneReadError,
            )
        value = plane_value(timepoint_index, channel_index, z_index)
        plane = np.full((cap.y, cap.x), value, dtype=np.uint16)
        try:
            self.place_plane(plane, out, byte_stride)
        except ValueError as e:
            return self.fail(str(e), False, error_cls=PlaneReadError)
        return True


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def reader(capture: FakeCapture) -> FakeReader:
    return FakeReader([capture])
