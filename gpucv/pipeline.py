from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union

import numpy as np
from numba import cuda
from numba.cuda.cudadrv.driver import CudaAPIError

from .buffers import (
    DeviceArena,
    DeviceError,
    DeviceKernels,
    FlowBuffers,
    FrameBuffers,
    copy_frame_buffers,
    create_flow_buffers,
    create_frame_buffers,
    upload_kernel_tables,
)
from .color import rgba_to_gray
from .convolution import convolve, convolve_separable
from .corners import annotate_corners, corner_response, response_peak, select_corners
from .edges import annotate_edges, canny
from .flow import Correspondence, collect_correspondence, match_features
from .frames import check_frame
from .otsu import binarize, histogram, otsu_threshold
from .params import (
    CannyMode,
    CornerMode,
    FlowMode,
    InteractiveThresholds,
    ManualThresholds,
    Mode,
    OtsuMode,
    OtsuThresholds,
    PipelineParams,
    Response,
)

logger = logging.getLogger(__name__)


@dataclass
class CornerResult:
    annotated: np.ndarray
    response: np.ndarray
    corners: np.ndarray  # (N, 2) x, y
    threshold: float
    snapshots: Optional[dict] = None


@dataclass
class EdgeResult:
    annotated: np.ndarray
    edges: np.ndarray
    low: float
    high: float
    snapshots: Optional[dict] = None


@dataclass
class BinaryResult:
    mask: np.ndarray
    threshold: int
    snapshots: Optional[dict] = None


@dataclass
class FlowResult:
    correspondence: Correspondence
    threshold: float
    width: int

    def mean_motion(self) -> np.ndarray:
        return self.correspondence.mean_motion(self.width)


Result = Union[CornerResult, EdgeResult, BinaryResult, FlowResult]


def _keep(snapshots: Optional[dict], key: str, value) -> None:
    if snapshots is not None:
        snapshots[key] = value


class Pipeline:
    """Runs the kernel chain for one frame, a frame pair, or a frame stream.

    All launches of a pipeline go to one ordered stream; the host only reads
    device memory after synchronising it.
    """

    def __init__(self, params: PipelineParams | None = None):
        self.params = params if params is not None else PipelineParams()
        self.cuda_stream = cuda.stream()

    @contextmanager
    def _session(self) -> Iterator[DeviceArena]:
        arena = DeviceArena(self.cuda_stream)
        try:
            with arena:
                yield arena
        except (CudaAPIError, MemoryError) as exc:
            logger.error("device failure, invocation aborted: %s", exc)
            raise DeviceError(str(exc)) from exc

    def _buffers(self, arena: DeviceArena, shape, mode: Mode, prefix: str = "") -> FrameBuffers:
        return create_frame_buffers(arena, shape, mode, prefix, separable=self.params.separable)

    def _upload(self, bufs: FrameBuffers, frame: np.ndarray) -> None:
        with cuda.pinned(frame):
            bufs.raw.copy_to_device(frame, stream=self.cuda_stream)
            self.cuda_stream.synchronize()

    def _download_frame(self, bufs: FrameBuffers, frame: np.ndarray, in_place: bool) -> np.ndarray:
        out = frame if in_place else np.empty_like(frame)
        with cuda.pinned(out):
            bufs.raw.copy_to_host(out, stream=self.cuda_stream)
            self.cuda_stream.synchronize()
        return out

    def _front(self, bufs: FrameBuffers, k: DeviceKernels, snapshots) -> None:
        """Gray, blur and both Sobel gradients."""
        s = self.cuda_stream
        record = snapshots is not None
        _keep(snapshots, "gray", rgba_to_gray(bufs.raw, bufs.gray, s, record))
        if self.params.separable:
            blurred = convolve_separable(
                bufs.gray, bufs.blurred, bufs.scratch, k.gauss_1d, k.gauss_1d, s, record
            )
            gx = convolve_separable(
                bufs.blurred, bufs.grad_x, bufs.scratch, k.sobel_deriv, k.sobel_smooth, s, record
            )
            gy = convolve_separable(
                bufs.blurred, bufs.grad_y, bufs.scratch, k.sobel_smooth, k.sobel_deriv, s, record
            )
        else:
            blurred = convolve(bufs.gray, bufs.blurred, k.gauss, s, record)
            gx = convolve(bufs.blurred, bufs.grad_x, k.sobel_x, s, record)
            gy = convolve(bufs.blurred, bufs.grad_y, k.sobel_y, s, record)
        _keep(snapshots, "blurred", blurred)
        _keep(snapshots, "grad_x", gx)
        _keep(snapshots, "grad_y", gy)

    def _corners(self, bufs: FrameBuffers, k: DeviceKernels, mode: CornerMode, snapshots) -> float:
        s = self.cuda_stream
        record = snapshots is not None
        _keep(
            snapshots,
            "response",
            corner_response(
                bufs.grad_x,
                bufs.grad_y,
                k.gauss,
                bufs.response,
                mode.sensitivity,
                mode.response is Response.SHI_TOMASI,
                s,
                record,
            ),
        )
        response_peak(bufs.response, bufs.peak, s)
        _keep(
            snapshots,
            "corner_mask",
            select_corners(bufs.response, bufs.peak, bufs.corner_mask, mode.quality, mode.radius, s, record),
        )
        peak = bufs.peak.copy_to_host(stream=s)
        s.synchronize()
        return mode.quality * float(peak[0])

    def _thresholds(self, bufs: FrameBuffers, mode: CannyMode) -> tuple[float, float]:
        src = mode.thresholds
        if isinstance(src, ManualThresholds):
            return float(src.low), float(src.high)
        if isinstance(src, OtsuThresholds):
            high = otsu_threshold(histogram(bufs.blurred, bufs.histogram, self.cuda_stream))
            return float(high // 2), float(high)
        if isinstance(src, InteractiveThresholds):
            return src.poll()
        raise TypeError(f"unsupported threshold source {src!r}")

    def _process(
        self,
        bufs: FrameBuffers,
        k: DeviceKernels,
        mode: Mode,
        frame: np.ndarray,
        in_place: bool,
        snapshots,
    ) -> Result:
        s = self.cuda_stream
        if isinstance(mode, OtsuMode):
            _keep(snapshots, "gray", rgba_to_gray(bufs.raw, bufs.gray, s, snapshots is not None))
            threshold = otsu_threshold(histogram(bufs.gray, bufs.histogram, s))
            binarize(bufs.gray, bufs.mask, threshold, s)
            mask = bufs.mask.copy_to_host(stream=s)
            s.synchronize()
            return BinaryResult(mask=mask, threshold=threshold, snapshots=snapshots)

        self._front(bufs, k, snapshots)

        if isinstance(mode, CornerMode):
            threshold = self._corners(bufs, k, mode, snapshots)
            if mode.annotate:
                annotate_corners(bufs.raw, bufs.corner_mask, mode.marker, s)
            response = bufs.response.copy_to_host(stream=s)
            corner_mask = bufs.corner_mask.copy_to_host(stream=s)
            s.synchronize()
            annotated = self._download_frame(bufs, frame, in_place)
            corners = np.argwhere(corner_mask)[:, ::-1].astype(np.int64)
            return CornerResult(annotated, response, corners, threshold, snapshots)

        if isinstance(mode, CannyMode):
            low, high = self._thresholds(bufs, mode)
            canny(bufs, low, high, s, snapshots)
            if mode.annotate:
                annotate_edges(bufs.raw, bufs.edges, s)
            edges = bufs.edges.copy_to_host(stream=s)
            s.synchronize()
            annotated = self._download_frame(bufs, frame, in_place)
            return EdgeResult(annotated, edges, low, high, snapshots)

        raise TypeError(f"unsupported single-frame mode {mode!r}")

    def run(self, frame: np.ndarray, mode: Mode, in_place: bool = False, record: bool = False) -> Result:
        """Single-frame invocation; every device buffer is released before returning."""
        if isinstance(mode, FlowMode):
            raise ValueError("flow mode needs two frames, use run_pair or stream")
        frame = check_frame(frame)
        host = np.ascontiguousarray(frame)
        if in_place and host is not frame:
            raise ValueError("in-place annotation needs a C-contiguous frame")
        with self._session() as arena:
            k = upload_kernel_tables(arena, self.params.tables)
            bufs = self._buffers(arena, host.shape[:2], mode)
            self._upload(bufs, host)
            return self._process(bufs, k, mode, host, in_place, {} if record else None)

    def _match(
        self, prev: FrameBuffers, cur: FrameBuffers, fb: FlowBuffers, mode: FlowMode, threshold: float
    ) -> FlowResult:
        if mode.threshold is not None:
            threshold = mode.threshold
        match_features(
            prev.response,
            cur.response,
            fb.index_1,
            fb.index_2,
            fb.counter,
            threshold,
            mode.tolerance,
            mode.window,
            self.cuda_stream,
        )
        mapping = collect_correspondence(fb.index_1, fb.index_2, fb.counter, self.cuda_stream)
        return FlowResult(mapping, threshold, prev.shape[1])

    def run_pair(self, frame_1: np.ndarray, frame_2: np.ndarray, mode: FlowMode | None = None) -> FlowResult:
        mode = mode if mode is not None else FlowMode()
        f1 = np.ascontiguousarray(check_frame(frame_1))
        f2 = np.ascontiguousarray(check_frame(frame_2))
        if f1.shape != f2.shape:
            raise ValueError(f"frame shapes differ: {f1.shape} vs {f2.shape}")
        with self._session() as arena:
            k = upload_kernel_tables(arena, self.params.tables)
            prev = self._buffers(arena, f1.shape[:2], mode, "prev.")
            cur = self._buffers(arena, f1.shape[:2], mode, "cur.")
            fb = create_flow_buffers(arena, f1.shape[:2])
            self._upload(prev, f1)
            self._upload(cur, f2)
            self._front(prev, k, None)
            self._corners(prev, k, mode.corners, None)
            self._front(cur, k, None)
            threshold = self._corners(cur, k, mode.corners, None)
            return self._match(prev, cur, fb, mode, threshold)

    def stream(
        self,
        frames: Iterable[np.ndarray],
        mode: Mode,
        cancel: Callable[[], bool] | None = None,
    ) -> Iterator[Result]:
        """Process frames until the source is exhausted or ``cancel()`` is true.

        Buffers are allocated once for the session. ``cancel`` is polled only
        between frames. In flow mode the first frame yields nothing and every
        following frame yields the matches against its predecessor.
        """
        flow = isinstance(mode, FlowMode)
        n = 0
        with self._session() as arena:
            logger.info("stream started in %s", type(mode).__name__)
            k = upload_kernel_tables(arena, self.params.tables)
            cur = prev = fb = None
            shape = None
            for frame in frames:
                host = np.ascontiguousarray(check_frame(frame))
                if cur is None:
                    shape = host.shape[:2]
                    cur = self._buffers(arena, shape, mode, "cur.")
                    if flow:
                        prev = self._buffers(arena, shape, mode, "prev.")
                        fb = create_flow_buffers(arena, shape)
                elif host.shape[:2] != shape:
                    raise ValueError(f"frame size changed mid-stream: {host.shape[:2]} vs {shape}")
                self._upload(cur, host)
                if flow:
                    self._front(cur, k, None)
                    threshold = self._corners(cur, k, mode.corners, None)
                    if n > 0:
                        yield self._match(prev, cur, fb, mode, threshold)
                    copy_frame_buffers(prev, cur, self.cuda_stream)
                    self.cuda_stream.synchronize()
                else:
                    yield self._process(cur, k, mode, host, False, None)
                n += 1
                if cancel is not None and cancel():
                    logger.info("stream cancelled after %d frames", n)
                    break
            logger.info("stream finished after %d frames", n)
