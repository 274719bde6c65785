from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def read_frame(path: str | Path) -> np.ndarray:
    with Image.open(path) as im:
        return np.ascontiguousarray(np.asarray(im.convert("RGBA"), dtype=np.uint8))


def to_rgba(img: np.ndarray) -> np.ndarray:
    """Promote a gray ``(H, W)`` or RGB ``(H, W, 3)`` uint8 image to packed RGBA."""
    img = np.asarray(img)
    if img.dtype != np.uint8:
        raise ValueError(f"expected uint8 pixels, got {img.dtype}")
    if img.ndim == 2:
        img = np.repeat(img[..., None], 3, axis=2)
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ValueError(f"cannot convert image of shape {img.shape} to RGBA")
    if img.shape[2] == 4:
        return np.ascontiguousarray(img)
    alpha = np.full(img.shape[:2] + (1,), 255, dtype=np.uint8)
    return np.ascontiguousarray(np.concatenate((img, alpha), axis=2))


def check_frame(frame) -> np.ndarray:
    if frame is None:
        raise ValueError("empty frame")
    frame = np.asarray(frame)
    if frame.size == 0:
        raise ValueError("empty frame")
    if frame.ndim != 3 or frame.shape[2] != 4 or frame.dtype != np.uint8:
        raise ValueError(
            f"expected packed RGBA uint8 frame (H, W, 4), got {frame.dtype} {frame.shape}"
        )
    return frame
