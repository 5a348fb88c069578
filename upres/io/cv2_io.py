"""OpenCV-backed image decode/encode."""

import logging
from pathlib import Path

import cv2
import numpy as np

from upres.errors import CodecFailure


# Extensions whose codecs are lossy and benefit from a denoise pass.
LOSSY_EXTENSIONS = frozenset({".jpg", ".jpeg", ".jpe"})
log = logging.getLogger(__name__)


def is_lossy_input(fp: str | Path) -> bool:
    """Return True when the file extension names a lossy-compressed format."""
    return Path(fp).suffix.lower() in LOSSY_EXTENSIONS


def read_image(fp: str | Path) -> np.ndarray:
    """Decode an image to float32 in `[0, 1]`; gray stays 2D, color stays BGR/BGRA."""
    path = Path(fp).expanduser().resolve()
    if not path.exists():
        raise CodecFailure(f"input image does not exist: {path}")
    raw = cv2.imread(path.as_posix(), cv2.IMREAD_UNCHANGED)
    if raw is None or raw.size == 0:
        raise CodecFailure(f"failed to decode image: {path}")

    if raw.dtype == np.uint8:
        image = raw.astype(np.float32) / 255.0
    elif raw.dtype == np.uint16:
        image = raw.astype(np.float32) / 65535.0
    elif np.issubdtype(raw.dtype, np.floating):
        image = np.clip(raw.astype(np.float32), 0.0, 1.0)
    else:
        raise CodecFailure(f"unsupported image dtype {raw.dtype}: {path}")
    log.debug(f"read {image.shape} {raw.dtype} image from\n    {path}")
    return image


def write_image(fp: str | Path, image: np.ndarray) -> Path:
    """Encode an 8-bit image to disk, creating parent directories."""
    path = Path(fp).expanduser().resolve()
    assert image.dtype == np.uint8, f"image must be uint8; got {image.dtype}"
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        ok = cv2.imwrite(path.as_posix(), image)
    except cv2.error as err:
        raise CodecFailure(f"failed to encode image to {path}: {err}") from err
    if not ok:
        raise CodecFailure(f"failed to encode image to {path}")
    log.debug(f"wrote {image.shape} image to\n    {path}")
    return path


def resolve_default_output_path(in_fp: str | Path) -> Path:
    """Resolve default output in cwd from input filename."""
    in_path = Path(in_fp).expanduser()
    return (Path.cwd() / f"{in_path.stem}_upres.png").resolve()
