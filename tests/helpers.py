from __future__ import annotations

import numpy as np


def reference_correlate(img: np.ndarray, k: np.ndarray) -> np.ndarray:
    """Clamp-to-edge 2-D correlation on the host, float64."""
    img = np.asarray(img, dtype=np.float64)
    r = k.shape[0] // 2
    padded = np.pad(img, r, mode="edge")
    h, w = img.shape
    out = np.zeros_like(img)
    for i in range(k.shape[0]):
        for j in range(k.shape[1]):
            out += k[i, j] * padded[i : i + h, j : j + w]
    return out


def local_maxima(m: np.ndarray, threshold: float) -> np.ndarray:
    """Flat indices of pixels >= all 8 neighbours and > threshold."""
    h, w = m.shape
    padded = np.pad(m, 1, mode="constant", constant_values=-np.inf)
    is_max = np.ones_like(m, dtype=bool)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            is_max &= m >= padded[1 + dy : 1 + dy + h, 1 + dx : 1 + dx + w]
    return np.flatnonzero(is_max & (m > threshold))
