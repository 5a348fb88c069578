"""Default locations for reconstruction network files."""

import logging
from pathlib import Path
from platformdirs import user_data_dir


APP_NAME = "upres"
APP_AUTHOR = "upres"
log = logging.getLogger(__name__)


def get_model_dir(data_dir: str | Path | None = None) -> Path:
    """Return the per-user model directory, creating it when missing."""
    # Prefer an explicit data directory when one is supplied.
    if data_dir is not None:
        path = Path(data_dir).expanduser().resolve() / "models"
    else:
        path = Path(user_data_dir(APP_NAME, APP_AUTHOR)) / "models"
    path.mkdir(parents=True, exist_ok=True)
    assert path.exists(), f"failed to create model directory: {path}"
    log.debug(f"resolved default model directory to\n    {path}")
    return path
