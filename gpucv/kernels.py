from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

SOBEL_SMOOTH = np.array([1.0, 2.0, 1.0], dtype=np.float32)
SOBEL_DERIV = np.array([-1.0, 0.0, 1.0], dtype=np.float32)

SOBEL_X = np.outer(SOBEL_SMOOTH, SOBEL_DERIV).astype(np.float32)
SOBEL_Y = np.outer(SOBEL_DERIV, SOBEL_SMOOTH).astype(np.float32)

for _k in (SOBEL_SMOOTH, SOBEL_DERIV, SOBEL_X, SOBEL_Y):
    _k.flags.writeable = False


def check_odd(shape: tuple[int, ...]) -> int:
    """Return the radius of a square, odd-sized kernel shape or raise ``ValueError``."""
    shape = tuple(shape)
    if len(shape) not in (1, 2) or 0 in shape:
        raise ValueError(f"kernel must be a non-empty 1-D or 2-D table, got {shape}")
    if len(shape) == 2 and shape[0] != shape[1]:
        raise ValueError(f"kernel must be square, got {shape}")
    n = shape[0]
    if n % 2 == 0:
        raise ValueError(f"kernel size must be odd, got {n}")
    return n // 2


def gaussian_kernel_1d(width: int, sigma: float) -> np.ndarray:
    if width <= 0 or width % 2 == 0:
        raise ValueError(f"Gaussian width must be a positive odd integer, got {width}")
    if not sigma > 0.0:
        raise ValueError(f"Gaussian sigma must be positive, got {sigma}")
    r = width // 2
    x = np.arange(-r, r + 1, dtype=np.float64)
    g = np.exp(-(x * x) / (2.0 * sigma * sigma))
    g /= g.sum()
    return g.astype(np.float32)


def gaussian_kernel(width: int, sigma: float) -> np.ndarray:
    g = gaussian_kernel_1d(width, sigma).astype(np.float64)
    k = np.outer(g, g)
    k /= k.sum()
    return k.astype(np.float32)


@dataclass(frozen=True)
class KernelTables:
    gauss: np.ndarray
    gauss_1d: np.ndarray
    sobel_x: np.ndarray
    sobel_y: np.ndarray
    sigma: float

    @property
    def radius(self) -> int:
        return self.gauss.shape[0] // 2


def build_kernel_tables(width: int, sigma: float) -> KernelTables:
    gauss = gaussian_kernel(width, sigma)
    gauss_1d = gaussian_kernel_1d(width, sigma)
    gauss.flags.writeable = False
    gauss_1d.flags.writeable = False
    assert math.isclose(float(gauss.sum(dtype=np.float64)), 1.0, abs_tol=1e-5)
    return KernelTables(
        gauss=gauss,
        gauss_1d=gauss_1d,
        sobel_x=SOBEL_X,
        sobel_y=SOBEL_Y,
        sigma=float(sigma),
    )
