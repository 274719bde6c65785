from .buffers import DeviceArena, DeviceError, FrameBuffers
from .flow import Correspondence
from .frames import check_frame, read_frame, to_rgba
from .kernels import KernelTables, build_kernel_tables, gaussian_kernel
from .otsu import otsu_threshold
from .params import (
    FLOW_PRESETS,
    CannyMode,
    CornerMode,
    FlowMode,
    InteractiveThresholds,
    ManualThresholds,
    Mode,
    OtsuMode,
    OtsuThresholds,
    PipelineParams,
    Response,
    SliderState,
)
from .pipeline import BinaryResult, CornerResult, EdgeResult, FlowResult, Pipeline

__all__ = [
    "BinaryResult",
    "CannyMode",
    "CornerMode",
    "CornerResult",
    "Correspondence",
    "DeviceArena",
    "DeviceError",
    "EdgeResult",
    "FLOW_PRESETS",
    "FlowMode",
    "FlowResult",
    "FrameBuffers",
    "InteractiveThresholds",
    "KernelTables",
    "ManualThresholds",
    "Mode",
    "OtsuMode",
    "OtsuThresholds",
    "Pipeline",
    "PipelineParams",
    "Response",
    "SliderState",
    "build_kernel_tables",
    "check_frame",
    "gaussian_kernel",
    "otsu_threshold",
    "read_frame",
    "to_rgba",
]
