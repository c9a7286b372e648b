# -*- coding: utf-8 -*-
"""Exhaustive plane traversal of one capture into a caller-owned buffer.

Every (timepoint, channel, Z) triple of a capture/position pair is requested
exactly once, in time -> channel -> Z order. The buffer holds one Z-stack: the
plane for Z index ``z`` is written at sample offset ``z * x_dim * y_dim``, so
each (timepoint, channel) pair refills the whole buffer.
"""

from typing import Generator, Optional

import numpy as np
from loguru import logger

from sbcapture.capture import CaptureMetadata
from sbcapture.planewalk.models import (
    PlaneCoord,
    PlaneFailure,
    PlaneRead,
    StreamResult,
    ZStack,
)
from sbcapture.reader import CaptureAllocationError, SBReader, SBReaderError


class PlaneStreamer:
    """Stream the planes of one capture/position from a reader.

    :param reader: Open reader the capture belongs to
    :param metadata: Metadata of the capture to stream
    :param position_index: Stage position to read (0-based)
    """

    def __init__(self, reader, metadata, position_index=0):
        # type: (SBReader, CaptureMetadata, int) -> None
        self.reader = reader
        self.metadata = metadata
        self.position_index = position_index

    @property
    def capture_index(self) -> int:
        return self.metadata.capture_index

    def allocate(self):
        # type: () -> np.ndarray
        """Allocate a zeroed buffer for one Z-stack of the capture.

        :return: Flat uint16 array of ``x_dim * y_dim * z_dim`` samples
        :raises CaptureAllocationError: If the buffer cannot be obtained
        """
        samples = self.metadata.stack_samples
        try:
            return np.zeros(samples, dtype=SBReader.sample_dtype)
        except (MemoryError, ValueError) as e:
            raise CaptureAllocationError(
                f"cannot allocate {samples} samples for capture {self.capture_index}"
            ) from e

    def _check_buffer(self, buffer):
        # type: (np.ndarray) -> None
        if buffer.dtype != SBReader.sample_dtype:
            raise ValueError(f"Expected uint16 buffer, got {buffer.dtype}")
        if buffer.ndim != 1 or not buffer.flags.c_contiguous:
            raise ValueError("Expected a flat contiguous buffer")
        if buffer.size < self.metadata.stack_samples:
            raise ValueError(
                f"buffer holds {buffer.size} samples, capture needs "
                f"{self.metadata.stack_samples}"
            )

    def _read_plane(self, buffer, coord):
        # type: (np.ndarray, PlaneCoord) -> PlaneRead
        plane_samples = self.metadata.plane_samples
        offset = coord.z * plane_samples
        out = buffer[offset : offset + plane_samples]
        try:
            ok = bool(
                self.reader.read_image_plane(
                    out,
                    self.capture_index,
                    self.position_index,
                    coord.timepoint,
                    coord.z,
                    coord.channel,
                    byte_stride=self.metadata.x_dim * SBReader.sample_dtype.itemsize,
                )
            )
            error = None
        except SBReaderError as e:
            ok = False
            error = e.description

        if not ok:
            logger.warning(
                f"capture {self.capture_index} position {self.position_index}: "
                f"failed to read plane t={coord.timepoint} c={coord.channel} "
                f"z={coord.z}" + (f": {error}" if error else "")
            )
        return PlaneRead(coord=coord, offset=offset, ok=ok, error=error)

    def iter_planes(self, buffer=None, max_timepoints=None):
        # type: (Optional[np.ndarray], Optional[int]) -> Generator[PlaneRead, None, None]
        """Request every plane of the capture, yielding after each request.

        A failed read is reported through ``PlaneRead.ok`` and does not stop
        the traversal. Closing the generator stops it between two reads.

        :param buffer: Capture buffer; allocated if omitted
        :param max_timepoints: Read at most this many timepoints
        :return: Generator yielding one PlaneRead per (t, c, z) triple
        """
        if buffer is None:
            buffer = self.allocate()
        self._check_buffer(buffer)

        num_timepoints = self.metadata.num_timepoints
        if max_timepoints is not None:
            num_timepoints = min(num_timepoints, max(max_timepoints, 0))

        for t in range(num_timepoints):
            for c in range(self.metadata.num_channels):
                for z in range(self.metadata.z_dim):
                    yield self._read_plane(buffer, PlaneCoord(t, c, z))

    def iter_stacks(self, buffer=None, max_timepoints=None):
        # type: (Optional[np.ndarray], Optional[int]) -> Generator[ZStack, None, None]
        """Yield each (timepoint, channel) Z-stack once all its planes were requested.

        :param buffer: Capture buffer; allocated if omitted
        :param max_timepoints: Read at most this many timepoints
        :return: Generator yielding ZStack views of the buffer
        """
        if buffer is None:
            buffer = self.allocate()
        self._check_buffer(buffer)
        m = self.metadata
        view = buffer[: m.stack_samples].reshape(m.z_dim, m.y_dim, m.x_dim)

        failures = []
        for plane in self.iter_planes(buffer, max_timepoints):
            if not plane.ok:
                failures.append(PlaneFailure(plane.coord, plane.error))
            if plane.coord.z == m.z_dim - 1:
                yield ZStack(
                    timepoint=plane.coord.timepoint,
                    channel=plane.coord.channel,
                    data=view,
                    failures=failures,
                )
                failures = []

    def stream(self, buffer=None, max_timepoints=None):
        # type: (Optional[np.ndarray], Optional[int]) -> StreamResult
        """Read the whole capture, continuing past failed planes.

        :param buffer: Capture buffer; allocated if omitted
        :param max_timepoints: Read at most this many timepoints
        :return: StreamResult with the number of requests and every failure
        :raises CaptureAllocationError: If no buffer was given and none can be allocated
        """
        result = StreamResult(
            capture_index=self.capture_index, position_index=self.position_index
        )
        for plane in self.iter_planes(buffer, max_timepoints):
            result.requested += 1
            if not plane.ok:
                result.failures.append(PlaneFailure(plane.coord, plane.error))

        logger.debug(
            f"capture {self.capture_index} position {self.position_index}: "
            f"{result.requested} plane(s) requested, {len(result.failures)} failed"
        )
        return result
