"""Single-channel float convolution with clamp-to-edge borders.

Both forms compute the correlation ``dst[y, x] = sum K[i, j] * src[y + i - r, x + j - r]``;
samples falling outside the frame reuse the nearest in-bounds pixel.
"""

from __future__ import annotations

import numba
from numba import cuda

from .device import TX, TY, clamp, grid_2d
from .kernels import check_odd


@cuda.jit(cache=True)
def convolve_kernel(src, dst, k):
    x, y = cuda.grid(2)
    h, w = src.shape
    if x >= w or y >= h:
        return
    r = k.shape[0] // 2
    acc = numba.float32(0.0)
    for i in range(-r, r + 1):
        yy = clamp(y + i, h)
        for j in range(-r, r + 1):
            acc += k[i + r, j + r] * src[yy, clamp(x + j, w)]
    dst[y, x] = acc


@cuda.jit(cache=True)
def convolve_h_kernel(src, dst, k):
    x, y = cuda.grid(2)
    h, w = src.shape
    if x >= w or y >= h:
        return
    r = k.shape[0] // 2
    acc = numba.float32(0.0)
    for j in range(-r, r + 1):
        acc += k[j + r] * src[y, clamp(x + j, w)]
    dst[y, x] = acc


@cuda.jit(cache=True)
def convolve_v_kernel(src, dst, k):
    x, y = cuda.grid(2)
    h, w = src.shape
    if x >= w or y >= h:
        return
    r = k.shape[0] // 2
    acc = numba.float32(0.0)
    for i in range(-r, r + 1):
        acc += k[i + r] * src[clamp(y + i, h), x]
    dst[y, x] = acc


def _check_shapes(src, dst):
    if src.shape != dst.shape or len(src.shape) != 2:
        raise ValueError(f"convolution needs two equal 2-D buffers, got {src.shape} and {dst.shape}")


def convolve(src, dst, kernel, stream, record: bool = False):
    _check_shapes(src, dst)
    check_odd(kernel.shape)
    if len(kernel.shape) != 2:
        raise ValueError(f"dense convolution needs a 2-D kernel, got {kernel.shape}")
    h, w = src.shape
    convolve_kernel[grid_2d(h, w), (TX, TY), stream](src, dst, kernel)
    if record:
        return dst.copy_to_host(stream=stream)
    return None


def convolve_separable(src, dst, scratch, row, col, stream, record: bool = False):
    """Horizontal pass with ``row`` into ``scratch``, then vertical pass with ``col``.

    Equivalent to ``convolve`` with ``np.outer(col, row)``.
    """
    _check_shapes(src, dst)
    _check_shapes(src, scratch)
    for k in (row, col):
        if len(k.shape) != 1:
            raise ValueError(f"separable passes need 1-D kernels, got {k.shape}")
        check_odd(k.shape)
    h, w = src.shape
    grid = grid_2d(h, w)
    convolve_h_kernel[grid, (TX, TY), stream](src, scratch, row)
    convolve_v_kernel[grid, (TX, TY), stream](scratch, dst, col)
    if record:
        return dst.copy_to_host(stream=stream)
    return None
