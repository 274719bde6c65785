from __future__ import annotations

import math

import numba
import numpy as np
from numba import cuda

from .device import TX, TY, clamp, grid_2d

MARKER_RGBA = (255, 0, 0, 255)


@cuda.jit(cache=True)
def corner_response_kernel(gx, gy, window, response, k, shi_tomasi):
    x, y = cuda.grid(2)
    h, w = gx.shape
    if x >= w or y >= h:
        return
    r = window.shape[0] // 2
    sxx = numba.float32(0.0)
    sxy = numba.float32(0.0)
    syy = numba.float32(0.0)
    for i in range(-r, r + 1):
        yy = clamp(y + i, h)
        for j in range(-r, r + 1):
            xx = clamp(x + j, w)
            wt = window[i + r, j + r]
            ix = gx[yy, xx]
            iy = gy[yy, xx]
            sxx += wt * ix * ix
            sxy += wt * ix * iy
            syy += wt * iy * iy
    if shi_tomasi:
        half = 0.5 * (sxx - syy)
        response[y, x] = 0.5 * (sxx + syy) - math.sqrt(half * half + sxy * sxy)
    else:
        tr = sxx + syy
        response[y, x] = sxx * syy - sxy * sxy - k * tr * tr


@cuda.jit(cache=True)
def response_peak_kernel(response, peak):
    x, y = cuda.grid(2)
    h, w = response.shape
    if x < w and y < h:
        cuda.atomic.max(peak, 0, response[y, x])


@cuda.jit(cache=True)
def select_corners_kernel(response, peak, mask, quality, radius):
    x, y = cuda.grid(2)
    h, w = response.shape
    if x >= w or y >= h:
        return
    mask[y, x] = 0
    v = response[y, x]
    if v <= 0.0 or v < quality * peak[0]:
        return
    for dy in range(-radius, radius + 1):
        yy = y + dy
        if yy < 0 or yy >= h:
            continue
        for dx in range(-radius, radius + 1):
            xx = x + dx
            if xx < 0 or xx >= w:
                continue
            if response[yy, xx] > v:
                return
    mask[y, x] = 1


@cuda.jit(cache=True)
def annotate_corners_kernel(raw, mask, marker, r, g, b, a):
    x, y = cuda.grid(2)
    h, w = mask.shape
    if x >= w or y >= h:
        return
    hit = False
    for d in range(-marker, marker + 1):
        xx = x + d
        yy = y + d
        if 0 <= xx < w and mask[y, xx] != 0:
            hit = True
        if 0 <= yy < h and mask[yy, x] != 0:
            hit = True
    if hit:
        raw[y, x, 0] = r
        raw[y, x, 1] = g
        raw[y, x, 2] = b
        raw[y, x, 3] = a


def corner_response(
    grad_x, grad_y, window, response, sensitivity: float, shi_tomasi: bool, stream, record=False
):
    """Gaussian-windowed structure tensor score per pixel.

    Harris: ``det(M) - sensitivity * trace(M)**2``; Shi-Tomasi: smallest
    eigenvalue of ``M``.
    """
    h, w = grad_x.shape
    corner_response_kernel[grid_2d(h, w), (TX, TY), stream](
        grad_x, grad_y, window, response, numba.float32(sensitivity), bool(shi_tomasi)
    )
    if record:
        return response.copy_to_host(stream=stream)
    return None


def response_peak(response, peak, stream):
    # negative maps leave the peak at 0 so nothing is accepted
    peak.copy_to_device(np.zeros(1, dtype=np.float32), stream=stream)
    h, w = response.shape
    response_peak_kernel[grid_2d(h, w), (TX, TY), stream](response, peak)


def select_corners(response, peak, mask, quality: float, radius: int, stream, record=False):
    h, w = response.shape
    select_corners_kernel[grid_2d(h, w), (TX, TY), stream](
        response, peak, mask, numba.float32(quality), radius
    )
    if record:
        return mask.copy_to_host(stream=stream)
    return None


def annotate_corners(raw, mask, marker: int, stream, color=MARKER_RGBA):
    h, w = mask.shape
    annotate_corners_kernel[grid_2d(h, w), (TX, TY), stream](raw, mask, marker, *color)
