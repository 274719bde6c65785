from __future__ import annotations

from numba import cuda

from .device import TX, TY, grid_2d

W_R, W_G, W_B = 0.299, 0.587, 0.114


@cuda.jit(cache=True)
def rgba_to_gray_kernel(raw, gray):
    x, y = cuda.grid(2)
    h, w = gray.shape
    if x < w and y < h:
        gray[y, x] = W_R * raw[y, x, 0] + W_G * raw[y, x, 1] + W_B * raw[y, x, 2]


def rgba_to_gray(raw, gray, stream, record: bool = False):
    h, w = gray.shape
    if raw.shape[:2] != (h, w):
        raise ValueError(f"raw {raw.shape[:2]} and gray {(h, w)} shapes differ")
    rgba_to_gray_kernel[grid_2d(h, w), (TX, TY), stream](raw, gray)
    if record:
        return gray.copy_to_host(stream=stream)
    return None
