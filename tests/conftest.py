from __future__ import annotations

import os

# Kernels run on the numba CUDA simulator unless the caller opts into a device
# with NUMBA_ENABLE_CUDASIM=0. Must be set before numba is imported.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest


def rgba(gray: np.ndarray) -> np.ndarray:
    g = np.asarray(gray, dtype=np.uint8)
    out = np.empty(g.shape + (4,), dtype=np.uint8)
    out[..., :3] = g[..., None]
    out[..., 3] = 255
    return out


@pytest.fixture(scope="session")
def pipeline():
    from gpucv import Pipeline, PipelineParams

    return Pipeline(PipelineParams(blur_width=3, blur_sigma=1.0))


@pytest.fixture
def stream():
    from numba import cuda

    return cuda.stream()


@pytest.fixture
def checkerboard():
    """8x8 board of 4-pixel cells alternating 50 / 200."""
    cells = (np.indices((8, 8)).sum(axis=0) % 2).astype(bool)
    board = np.kron(cells, np.ones((4, 4), dtype=bool))
    return np.where(board, 200, 50).astype(np.uint8), board


@pytest.fixture
def l_corner():
    img = np.full((24, 24), 30, dtype=np.uint8)
    img[8:18, 8:11] = 220
    img[15:18, 8:18] = 220
    return img


@pytest.fixture
def square():
    img = np.full((24, 24), 20, dtype=np.uint8)
    img[7:17, 7:17] = 230
    return img
