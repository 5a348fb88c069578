"""Model directory resolution and engine construction per reconstruction kind."""

import logging, sys
from pathlib import Path

from upres.checksums import verify_model_file
from upres.config import NOISE_LEVELS
from upres.engine.ort import EngineORT
from upres.model_paths import get_model_dir


DENOISE = "noise"
UPSCALE = "scale"
UPSCALE_MODEL_FILE_NAME = "scale2.0x_model.onnx"
log = logging.getLogger(__name__)


def model_file_name(kind: str, noise_level: int = 1) -> str:
    """Return the network file name for a reconstruction kind."""
    if kind == DENOISE:
        assert noise_level in NOISE_LEVELS, f"noise_level must be one of {NOISE_LEVELS}; got {noise_level}"
        return f"noise{noise_level}_model.onnx"
    if kind == UPSCALE:
        return UPSCALE_MODEL_FILE_NAME
    raise ValueError(f"unsupported model kind '{kind}'")


def resolve_model_dir(model_dir: str | Path | None = None) -> Path:
    """
    Resolve the directory holding network files.

    Relative paths are tried against the current working directory, then the
    directory of the running script, then the package directory. `None`
    selects the per-user data directory.
    """
    if model_dir is None:
        return get_model_dir()

    candidate = Path(model_dir).expanduser()
    if candidate.is_absolute():
        candidates = [candidate]
    else:
        candidates = [Path.cwd() / candidate]
        if sys.argv and sys.argv[0]:
            candidates.append(Path(sys.argv[0]).expanduser().resolve().parent / candidate)
        candidates.append(Path(__file__).parent / candidate)

    for path in candidates:
        if path.is_dir():
            resolved = path.resolve()
            log.debug(f"resolved model directory to\n    {resolved}")
            return resolved
    searched = "\n    ".join(str(p) for p in candidates)
    raise FileNotFoundError(f"model directory '{model_dir}' not found; searched\n    {searched}")


def load_engine(
    model_dir: str | Path,
    kind: str,
    *,
    noise_level: int = 1,
    providers: tuple[str, ...] = ("CPUExecutionProvider",),
    logger=None,
) -> EngineORT:
    """Load the ORT engine for one reconstruction kind from a model directory."""
    log = logger or logging.getLogger(__name__)
    model_fp = Path(model_dir) / model_file_name(kind, noise_level)
    if not model_fp.exists():
        raise FileNotFoundError(f"model file does not exist: {model_fp}")
    if verify_model_file(model_fp):
        log.debug(f"checksum verified for\n    {model_fp}")
    return EngineORT(model_fp, providers=providers, logger=log)
