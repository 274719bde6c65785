"""Naive optical flow: greedy matching of corner-response peaks between two maps.

Every local maximum of the first map above a score threshold looks for the
closest-scoring local maximum of the second map inside a square window around
the same coordinate. Matches are neither one-to-one nor globally optimal.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numba
import numpy as np
from numba import cuda

from .device import TX, TY, grid_2d


@cuda.jit(device=True)
def is_local_max(m, y, x, h, w):
    v = m[y, x]
    for dy in range(-1, 2):
        yy = y + dy
        if yy < 0 or yy >= h:
            continue
        for dx in range(-1, 2):
            xx = x + dx
            if xx < 0 or xx >= w:
                continue
            if m[yy, xx] > v:
                return False
    return True


@cuda.jit(cache=True)
def match_features_kernel(map_1, map_2, index_1, index_2, counter, threshold, tolerance, window):
    x, y = cuda.grid(2)
    h, w = map_1.shape
    if x >= w or y >= h:
        return
    s1 = map_1[y, x]
    if s1 <= threshold or not is_local_max(map_1, y, x, h, w):
        return
    tol = tolerance * math.fabs(s1)
    best = -1
    best_diff = numba.float32(0.0)
    best_d2 = 0
    for dy in range(-window, window + 1):
        yy = y + dy
        if yy < 0 or yy >= h:
            continue
        for dx in range(-window, window + 1):
            xx = x + dx
            if xx < 0 or xx >= w:
                continue
            diff = math.fabs(map_2[yy, xx] - s1)
            if diff > tol or not is_local_max(map_2, yy, xx, h, w):
                continue
            d2 = dy * dy + dx * dx
            if best < 0 or diff < best_diff or (diff == best_diff and d2 < best_d2):
                best = yy * w + xx
                best_diff = diff
                best_d2 = d2
    if best < 0:
        return
    k = cuda.atomic.add(counter, 0, 1)
    if k < index_1.shape[0]:
        index_1[k] = y * w + x
        index_2[k] = best


@dataclass(frozen=True)
class Correspondence:
    """Matched flat pixel indices, frame 1 -> frame 2, sorted by ``index_1``."""

    index_1: np.ndarray
    index_2: np.ndarray

    def __post_init__(self) -> None:
        if self.index_1.shape != self.index_2.shape:
            raise ValueError("index arrays must have the same length")
        self.index_1.flags.writeable = False
        self.index_2.flags.writeable = False

    @property
    def count(self) -> int:
        return int(self.index_1.shape[0])

    def __len__(self) -> int:
        return self.count

    def points(self, width: int) -> tuple[np.ndarray, np.ndarray]:
        """``(x, y)`` coordinates of both ends of every match."""
        p1 = np.stack((self.index_1 % width, self.index_1 // width), axis=1)
        p2 = np.stack((self.index_2 % width, self.index_2 // width), axis=1)
        return p1, p2

    def displacements(self, width: int) -> np.ndarray:
        p1, p2 = self.points(width)
        return p2 - p1

    def mean_motion(self, width: int) -> np.ndarray:
        """Average ``(dx, dy)`` over the matches that moved; zero if none did."""
        d = self.displacements(width)
        moving = np.any(d != 0, axis=1)
        if not moving.any():
            return np.zeros(2, dtype=np.float64)
        return d[moving].mean(axis=0)


def match_features(
    map_1,
    map_2,
    index_1,
    index_2,
    counter,
    threshold: float,
    tolerance: float,
    window: int,
    stream,
) -> None:
    if map_1.shape != map_2.shape:
        raise ValueError(f"response maps differ in shape: {map_1.shape} vs {map_2.shape}")
    if window < 0 or tolerance < 0:
        raise ValueError(f"window and tolerance must be >= 0, got {window}, {tolerance}")
    counter.copy_to_device(np.zeros(1, dtype=np.int32), stream=stream)
    h, w = map_1.shape
    match_features_kernel[grid_2d(h, w), (TX, TY), stream](
        map_1,
        map_2,
        index_1,
        index_2,
        counter,
        numba.float32(threshold),
        numba.float32(tolerance),
        window,
    )


def collect_correspondence(index_1, index_2, counter, stream) -> Correspondence:
    found = counter.copy_to_host(stream=stream)
    stream.synchronize()
    n = min(int(found[0]), index_1.shape[0])
    i1 = index_1[:n].copy_to_host(stream=stream) if n else np.empty(0, np.int32)
    i2 = index_2[:n].copy_to_host(stream=stream) if n else np.empty(0, np.int32)
    stream.synchronize()
    order = np.lexsort((i2, i1))
    return Correspondence(
        np.ascontiguousarray(i1[order]), np.ascontiguousarray(i2[order])
    )
