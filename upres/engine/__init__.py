"""Engine package exports."""

from upres.engine.base import EngineBase
from upres.engine.ort import EngineORT
from upres.engine.providers import get_onnxruntime_info, get_opencv_info, resolve_providers


__all__ = ["EngineBase", "EngineORT", "get_onnxruntime_info", "get_opencv_info", "resolve_providers"]
