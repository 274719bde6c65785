from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Union

from .kernels import KernelTables, build_kernel_tables


class Response(Enum):
    HARRIS = "harris"
    SHI_TOMASI = "shi_tomasi"


@dataclass
class PipelineParams:
    blur_width: int = 5
    blur_sigma: float = 1.0
    separable: bool = False
    tables: KernelTables | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.blur_width <= 0 or self.blur_width % 2 == 0:
            raise ValueError(f"blur_width must be a positive odd integer, got {self.blur_width}")
        if not self.blur_sigma > 0.0:
            raise ValueError(f"blur_sigma must be positive, got {self.blur_sigma}")
        self.tables = build_kernel_tables(self.blur_width, self.blur_sigma)


@dataclass(frozen=True)
class CornerMode:
    response: Response = Response.HARRIS
    sensitivity: float = 0.04
    # fraction of the frame's strongest response a corner must reach
    quality: float = 0.01
    radius: int = 1
    marker: int = 2
    annotate: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.quality <= 1.0:
            raise ValueError(f"quality must lie in [0, 1], got {self.quality}")
        if self.radius < 1:
            raise ValueError(f"radius must be >= 1, got {self.radius}")
        if self.marker < 0:
            raise ValueError(f"marker must be >= 0, got {self.marker}")


@dataclass(frozen=True)
class ManualThresholds:
    low: float
    high: float

    def __post_init__(self) -> None:
        if self.low < 0 or self.low > self.high:
            raise ValueError(f"need 0 <= low <= high, got low={self.low} high={self.high}")


@dataclass(frozen=True)
class OtsuThresholds:
    pass


@dataclass
class SliderState:
    """Mutable low/high pair a UI can update between invocations."""

    low: float = 50
    high: float = 100

    def __call__(self) -> tuple[float, float]:
        return self.low, self.high


@dataclass(frozen=True)
class InteractiveThresholds:
    source: Callable[[], tuple[float, float]] = field(default_factory=SliderState)

    def poll(self) -> tuple[float, float]:
        low, high = self.source()
        high = min(max(float(high), 0.0), 255.0)
        low = min(max(float(low), 0.0), high)
        return low, high


Thresholds = Union[ManualThresholds, OtsuThresholds, InteractiveThresholds]


@dataclass(frozen=True)
class CannyMode:
    thresholds: Thresholds = field(default_factory=OtsuThresholds)
    annotate: bool = True


@dataclass(frozen=True)
class OtsuMode:
    pass


# tolerance / search window pairs tuned on demo footage
FLOW_PRESETS: dict[str, tuple[float, int]] = {
    "sparse": (0.001, 200),
    "vehicles": (0.1, 5),
    "arrows": (0.5, 5),
}


@dataclass(frozen=True)
class FlowMode:
    corners: CornerMode = field(default_factory=lambda: CornerMode(annotate=False))
    tolerance: float = 0.5
    window: int = 5
    # None -> acceptance threshold of the second frame's corner stage
    threshold: float | None = None

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {self.tolerance}")
        if self.window < 0:
            raise ValueError(f"window must be >= 0, got {self.window}")

    @classmethod
    def preset(cls, name: str, **kwargs) -> "FlowMode":
        try:
            tolerance, window = FLOW_PRESETS[name]
        except KeyError:
            raise ValueError(
                f"unknown flow preset {name!r}, expected one of {sorted(FLOW_PRESETS)}"
            ) from None
        return cls(tolerance=tolerance, window=window, **kwargs)


Mode = Union[CornerMode, CannyMode, OtsuMode, FlowMode]
