"""Execution provider selection and runtime diagnostics."""

import importlib.metadata as md

from upres.errors import InvalidConfiguration


PROCESS_PROVIDERS = {
    "cpu": ("CPUExecutionProvider",),
    "gpu": ("CUDAExecutionProvider", "CPUExecutionProvider"),
}


def resolve_providers(process: str, available: list[str] | None = None) -> tuple[str, ...]:
    """Map a process name to ORT providers, failing when GPU acceleration is unavailable."""
    if process not in PROCESS_PROVIDERS:
        raise InvalidConfiguration(f"unsupported process '{process}'; expected one of {tuple(PROCESS_PROVIDERS)}")
    if available is None:
        import onnxruntime as ort

        available = list(ort.get_available_providers())

    # No silent CPU fallback: a gpu request needs the CUDA provider.
    if process == "gpu" and "CUDAExecutionProvider" not in available:
        raise InvalidConfiguration(f"process=gpu requested but CUDAExecutionProvider is unavailable; got {available}")
    return PROCESS_PROVIDERS[process]


def get_onnxruntime_info() -> dict[str, object]:
    """Return ORT installation and provider diagnostics."""
    import onnxruntime as ort

    return {
        "installed": True,
        "version": md.version("onnxruntime"),
        "available_providers": list(ort.get_available_providers()),
    }


def get_opencv_info() -> dict[str, object]:
    """Return OpenCV installation diagnostics."""
    try:
        import cv2
    except ImportError:
        return {
            "installed": False,
            "version": None,
        }
    return {
        "installed": True,
        "version": cv2.__version__,
    }
