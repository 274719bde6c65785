from __future__ import annotations

import warnings

from numba import cuda
from numba.core.errors import NumbaPerformanceWarning

warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

TX, TY = 16, 16


def grid_2d(h: int, w: int) -> tuple[int, int]:
    return ((w + TX - 1) // TX, (h + TY - 1) // TY)


@cuda.jit(device=True)
def clamp(i, n):
    if i < 0:
        return 0
    if i >= n:
        return n - 1
    return i
