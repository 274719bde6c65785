from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

import numpy as np
from numba import cuda

from .kernels import SOBEL_DERIV, SOBEL_SMOOTH, KernelTables
from .params import CannyMode, CornerMode, FlowMode, Mode, OtsuMode

if TYPE_CHECKING:
    from numba.cuda.cudadrv.devicearray import DeviceNDArray

logger = logging.getLogger(__name__)


class DeviceError(RuntimeError):
    """Allocation or transfer on the compute device failed."""


class DeviceArena:
    """Owns every device allocation of one invocation or streaming session.

    Buffers are dropped together by ``release``, which also runs when the
    arena is used as a context manager and the block exits on an exception.
    Buffer sets registered with ``hold`` have their fields cleared on release
    so that no device array outlives the arena through them.
    """

    def __init__(self, stream=0):
        self.stream = stream
        self._buffers: dict[str, DeviceNDArray] = {}
        self._holders: list = []
        self.closed = False

    def _add(self, name: str, arr: DeviceNDArray) -> DeviceNDArray:
        if name in self._buffers:
            raise ValueError(f"buffer {name!r} already allocated")
        self._buffers[name] = arr
        return arr

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError("arena has been released")

    def alloc(self, name: str, shape, dtype) -> DeviceNDArray:
        self._check_open()
        return self._add(name, cuda.device_array(shape, dtype=dtype, stream=self.stream))

    def upload(self, name: str, host: np.ndarray) -> DeviceNDArray:
        self._check_open()
        return self._add(name, cuda.to_device(np.array(host, order="C"), stream=self.stream))

    def hold(self, holder):
        self._check_open()
        self._holders.append(holder)
        return holder

    def __contains__(self, name: str) -> bool:
        return name in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    @property
    def nbytes(self) -> int:
        return sum(b.nbytes for b in self._buffers.values())

    def release(self) -> None:
        if self.closed:
            return
        logger.debug("releasing %d device buffers (%d bytes)", len(self), self.nbytes)
        for holder in self._holders:
            for f in fields(holder):
                setattr(holder, f.name, None)
        self._holders.clear()
        self._buffers.clear()
        self.closed = True

    def __enter__(self) -> "DeviceArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


@dataclass
class DeviceKernels:
    gauss: DeviceNDArray
    gauss_1d: DeviceNDArray
    sobel_x: DeviceNDArray
    sobel_y: DeviceNDArray
    sobel_smooth: DeviceNDArray
    sobel_deriv: DeviceNDArray


def upload_kernel_tables(arena: DeviceArena, tables: KernelTables) -> DeviceKernels:
    k = DeviceKernels(
        gauss=arena.upload("kernel.gauss", tables.gauss),
        gauss_1d=arena.upload("kernel.gauss_1d", tables.gauss_1d),
        sobel_x=arena.upload("kernel.sobel_x", tables.sobel_x),
        sobel_y=arena.upload("kernel.sobel_y", tables.sobel_y),
        sobel_smooth=arena.upload("kernel.sobel_smooth", SOBEL_SMOOTH),
        sobel_deriv=arena.upload("kernel.sobel_deriv", SOBEL_DERIV),
    )
    return arena.hold(k)


@dataclass
class FrameBuffers:
    raw: DeviceNDArray
    gray: DeviceNDArray
    blurred: DeviceNDArray | None = None
    scratch: DeviceNDArray | None = None
    grad_x: DeviceNDArray | None = None
    grad_y: DeviceNDArray | None = None
    # corners
    response: DeviceNDArray | None = None
    corner_mask: DeviceNDArray | None = None
    peak: DeviceNDArray | None = None
    # canny
    magnitude: DeviceNDArray | None = None
    direction: DeviceNDArray | None = None
    nms: DeviceNDArray | None = None
    edge_state: DeviceNDArray | None = None
    edges: DeviceNDArray | None = None
    changed: DeviceNDArray | None = None
    # otsu
    histogram: DeviceNDArray | None = None
    mask: DeviceNDArray | None = None

    @property
    def shape(self) -> tuple[int, int]:
        return self.gray.shape


# per-frame stage outputs carried over to the previous-frame set while streaming
STAGE_FIELDS = ("raw", "gray", "blurred", "grad_x", "grad_y", "response", "corner_mask")


def create_frame_buffers(
    arena: DeviceArena,
    shape: tuple[int, int],
    mode: Mode,
    prefix: str = "",
    separable: bool = False,
) -> FrameBuffers:
    """Allocate the buffers ``mode`` reads or writes; ``scratch`` only for separable passes."""
    h, w = shape
    if h <= 0 or w <= 0:
        raise ValueError(f"frame shape must be positive, got {shape}")

    def alloc(name, shp, dtype):
        return arena.alloc(f"{prefix}{name}", shp, dtype)

    f32 = np.float32
    bufs = FrameBuffers(
        raw=alloc("raw", (h, w, 4), np.uint8),
        gray=alloc("gray", (h, w), f32),
    )
    if isinstance(mode, OtsuMode):
        bufs.histogram = alloc("histogram", 256, np.int32)
        bufs.mask = alloc("mask", (h, w), np.uint8)
        return arena.hold(bufs)

    bufs.blurred = alloc("blurred", (h, w), f32)
    if separable:
        bufs.scratch = alloc("scratch", (h, w), f32)
    bufs.grad_x = alloc("grad_x", (h, w), f32)
    bufs.grad_y = alloc("grad_y", (h, w), f32)

    if isinstance(mode, (CornerMode, FlowMode)):
        bufs.response = alloc("response", (h, w), f32)
        bufs.corner_mask = alloc("corner_mask", (h, w), np.uint8)
        bufs.peak = alloc("peak", 1, f32)
    elif isinstance(mode, CannyMode):
        bufs.magnitude = alloc("magnitude", (h, w), f32)
        bufs.direction = alloc("direction", (h, w), np.int8)
        bufs.nms = alloc("nms", (h, w), f32)
        bufs.edge_state = alloc("edge_state", (h, w), np.uint8)
        bufs.edges = alloc("edges", (h, w), np.uint8)
        bufs.changed = alloc("changed", 1, np.int32)
        bufs.histogram = alloc("histogram", 256, np.int32)
    else:
        raise TypeError(f"unsupported mode {mode!r}")

    logger.debug(
        "allocated %s buffers for %dx%d frame (%d live, %d bytes)",
        type(mode).__name__,
        w,
        h,
        len(arena),
        arena.nbytes,
    )
    return arena.hold(bufs)


def copy_frame_buffers(dst: FrameBuffers, src: FrameBuffers, stream) -> None:
    """Device-to-device copy of the per-frame stage outputs from ``src`` to ``dst``."""
    if dst.shape != src.shape:
        raise ValueError(f"frame shapes differ: {dst.shape} vs {src.shape}")
    for f in fields(FrameBuffers):
        if f.name not in STAGE_FIELDS:
            continue
        d, s = getattr(dst, f.name), getattr(src, f.name)
        if d is not None and s is not None:
            d.copy_to_device(s, stream=stream)


@dataclass
class FlowBuffers:
    index_1: DeviceNDArray
    index_2: DeviceNDArray
    counter: DeviceNDArray


def create_flow_buffers(arena: DeviceArena, shape: tuple[int, int]) -> FlowBuffers:
    n = shape[0] * shape[1]
    fb = FlowBuffers(
        index_1=arena.alloc("flow.index_1", n, np.int32),
        index_2=arena.alloc("flow.index_2", n, np.int32),
        counter=arena.alloc("flow.counter", 1, np.int32),
    )
    return arena.hold(fb)
