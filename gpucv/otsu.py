from __future__ import annotations

import numpy as np
from numba import cuda

from .device import TX, TY, grid_2d

NUM_BINS = 256


@cuda.jit(device=True)
def intensity_bin(v):
    # histogram and mask must agree on the level a pixel belongs to
    b = int(v + 0.5)
    return min(max(b, 0), NUM_BINS - 1)


@cuda.jit(cache=True)
def histogram_kernel(gray, hist):
    x, y = cuda.grid(2)
    h, w = gray.shape
    if x < w and y < h:
        cuda.atomic.add(hist, intensity_bin(gray[y, x]), 1)


@cuda.jit(cache=True)
def binarize_kernel(gray, mask, threshold):
    x, y = cuda.grid(2)
    h, w = gray.shape
    if x < w and y < h:
        mask[y, x] = 255 if intensity_bin(gray[y, x]) >= threshold else 0


def histogram(gray, hist, stream) -> np.ndarray:
    """256-bin intensity histogram of ``gray``; synchronises the stream."""
    hist.copy_to_device(np.zeros(NUM_BINS, dtype=np.int32), stream=stream)
    h, w = gray.shape
    histogram_kernel[grid_2d(h, w), (TX, TY), stream](gray, hist)
    out = hist.copy_to_host(stream=stream)
    stream.synchronize()
    return out


def otsu_threshold(hist: np.ndarray) -> int:
    """Threshold ``t`` maximising between-class variance of ``[0, t)`` vs ``[t, 255]``.

    Ties resolve to the smallest ``t``; a histogram with zero variance for
    every split (e.g. a uniform image) yields 0.
    """
    hist = np.asarray(hist, dtype=np.float64).ravel()
    if hist.shape != (NUM_BINS,):
        raise ValueError(f"expected {NUM_BINS} bins, got {hist.shape}")
    total = hist.sum()
    if total <= 0:
        return 0
    levels = np.arange(NUM_BINS, dtype=np.float64)
    w0 = np.concatenate(([0.0], np.cumsum(hist)[:-1]))
    s0 = np.concatenate(([0.0], np.cumsum(hist * levels)[:-1]))
    w1 = total - w0
    s1 = (hist * levels).sum() - s0
    mu0 = np.divide(s0, w0, out=np.zeros_like(s0), where=w0 > 0)
    mu1 = np.divide(s1, w1, out=np.zeros_like(s1), where=w1 > 0)
    variance = (w0 / total) * (w1 / total) * (mu0 - mu1) ** 2
    if not variance.max() > 0.0:
        return 0
    return int(np.argmax(variance))


def binarize(gray, mask, threshold: float, stream, record=False):
    h, w = gray.shape
    binarize_kernel[grid_2d(h, w), (TX, TY), stream](gray, mask, np.float32(threshold))
    if record:
        return mask.copy_to_host(stream=stream)
    return None
