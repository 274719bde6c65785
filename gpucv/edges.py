from __future__ import annotations

import logging
import math

import numba
import numpy as np
from numba import cuda

from .device import TX, TY, clamp, grid_2d

logger = logging.getLogger(__name__)

NO_EDGE, WEAK, STRONG = 0, 1, 2
EDGE_RGBA = (0, 255, 0, 255)
# direction codes: 0 -> 0 deg, 1 -> 45 deg, 2 -> 90 deg, 3 -> 135 deg (y axis down)


@cuda.jit(cache=True)
def gradient_polar_kernel(gx, gy, mag, direction):
    x, y = cuda.grid(2)
    h, w = gx.shape
    if x >= w or y >= h:
        return
    dx = gx[y, x]
    dy = gy[y, x]
    mag[y, x] = math.sqrt(dx * dx + dy * dy)
    angle = math.atan2(dy, dx) * 180.0 / math.pi
    if angle < 0.0:
        angle += 180.0
    if angle < 22.5 or angle >= 157.5:
        direction[y, x] = 0
    elif angle < 67.5:
        direction[y, x] = 1
    elif angle < 112.5:
        direction[y, x] = 2
    else:
        direction[y, x] = 3


@cuda.jit(cache=True)
def non_max_suppression_kernel(mag, direction, nms):
    x, y = cuda.grid(2)
    h, w = mag.shape
    if x >= w or y >= h:
        return
    m = mag[y, x]
    d = direction[y, x]
    if d == 0:
        ox, oy = 1, 0
    elif d == 1:
        ox, oy = 1, 1
    elif d == 2:
        ox, oy = 0, 1
    else:
        ox, oy = -1, 1
    n1 = mag[clamp(y + oy, h), clamp(x + ox, w)]
    n2 = mag[clamp(y - oy, h), clamp(x - ox, w)]
    if m > 0.0 and m >= n1 and m >= n2:
        nms[y, x] = m
    else:
        nms[y, x] = 0.0


@cuda.jit(cache=True)
def classify_kernel(nms, state, low, high):
    x, y = cuda.grid(2)
    h, w = nms.shape
    if x >= w or y >= h:
        return
    v = nms[y, x]
    if v > 0.0 and v >= high:
        state[y, x] = STRONG
    elif v > 0.0 and v >= low:
        state[y, x] = WEAK
    else:
        state[y, x] = NO_EDGE


@cuda.jit(cache=True)
def link_edges_kernel(state, changed):
    x, y = cuda.grid(2)
    h, w = state.shape
    if x >= w or y >= h or state[y, x] != WEAK:
        return
    for dy in range(-1, 2):
        yy = y + dy
        if yy < 0 or yy >= h:
            continue
        for dx in range(-1, 2):
            xx = x + dx
            if xx < 0 or xx >= w or (dx == 0 and dy == 0):
                continue
            if state[yy, xx] == STRONG:
                state[y, x] = STRONG
                changed[0] = 1
                return


@cuda.jit(cache=True)
def finalize_edges_kernel(state, edges):
    x, y = cuda.grid(2)
    h, w = state.shape
    if x < w and y < h:
        edges[y, x] = 255 if state[y, x] == STRONG else 0


@cuda.jit(cache=True)
def annotate_edges_kernel(raw, edges, r, g, b, a):
    x, y = cuda.grid(2)
    h, w = edges.shape
    if x < w and y < h and edges[y, x] != 0:
        raw[y, x, 0] = r
        raw[y, x, 1] = g
        raw[y, x, 2] = b
        raw[y, x, 3] = a


def gradient_polar(grad_x, grad_y, magnitude, direction, stream, record=False):
    h, w = grad_x.shape
    gradient_polar_kernel[grid_2d(h, w), (TX, TY), stream](grad_x, grad_y, magnitude, direction)
    if record:
        return magnitude.copy_to_host(stream=stream), direction.copy_to_host(stream=stream)
    return None


def non_max_suppression(magnitude, direction, nms, stream, record=False):
    h, w = magnitude.shape
    non_max_suppression_kernel[grid_2d(h, w), (TX, TY), stream](magnitude, direction, nms)
    if record:
        return nms.copy_to_host(stream=stream)
    return None


def classify(nms, edge_state, low: float, high: float, stream):
    if low > high:
        raise ValueError(f"Canny low threshold {low} exceeds high threshold {high}")
    h, w = nms.shape
    classify_kernel[grid_2d(h, w), (TX, TY), stream](
        nms, edge_state, numba.float32(low), numba.float32(high)
    )


def link_edges(edge_state, changed, stream) -> int:
    """Promote weak pixels 8-connected to strong ones until nothing changes.

    Returns the number of promotion rounds that changed the map.
    """
    h, w = edge_state.shape
    grid = grid_2d(h, w)
    flag = np.zeros(1, dtype=np.int32)
    zero = np.zeros(1, dtype=np.int32)
    rounds = 0
    # each productive round promotes at least one pixel
    for _ in range(h * w):
        changed.copy_to_device(zero, stream=stream)
        link_edges_kernel[grid, (TX, TY), stream](edge_state, changed)
        changed.copy_to_host(flag, stream=stream)
        stream.synchronize()
        if flag[0] == 0:
            break
        rounds += 1
    logger.debug("hysteresis converged after %d rounds", rounds)
    return rounds


def finalize_edges(edge_state, edges, stream, record=False):
    h, w = edge_state.shape
    finalize_edges_kernel[grid_2d(h, w), (TX, TY), stream](edge_state, edges)
    if record:
        return edges.copy_to_host(stream=stream)
    return None


def annotate_edges(raw, edges, stream, color=EDGE_RGBA):
    h, w = edges.shape
    annotate_edges_kernel[grid_2d(h, w), (TX, TY), stream](raw, edges, *color)


def canny(buffers, low: float, high: float, stream, snapshots: dict | None = None) -> None:
    """Run the full edge chain on a frame's gradient buffers from scratch."""
    record = snapshots is not None
    polar = gradient_polar(
        buffers.grad_x, buffers.grad_y, buffers.magnitude, buffers.direction, stream, record
    )
    nms = non_max_suppression(
        buffers.magnitude, buffers.direction, buffers.nms, stream, record
    )
    classify(buffers.nms, buffers.edge_state, low, high, stream)
    link_edges(buffers.edge_state, buffers.changed, stream)
    edges = finalize_edges(buffers.edge_state, buffers.edges, stream, record)
    if record:
        snapshots["magnitude"], snapshots["direction"] = polar
        snapshots["nms"] = nms
        snapshots["edges"] = edges
