"""Checksum helpers for network files."""

import hashlib, json, logging
from pathlib import Path


CHECKSUMS_FILE_NAME = "checksums.json"
log = logging.getLogger(__name__)


def compute_sha256(file_path: str | Path, chunk_size: int = 1024 * 1024) -> str:
    """Compute the SHA256 digest for a file."""
    path = Path(file_path)
    assert path.exists(), f"file does not exist: {path}"
    assert path.is_file(), f"path is not a file: {path}"
    log.debug(f"computing sha256 for\n    {path}")

    hasher = hashlib.sha256()
    with path.open("rb") as stream:
        chunk = stream.read(chunk_size)
        while chunk:
            hasher.update(chunk)
            chunk = stream.read(chunk_size)
    return hasher.hexdigest()


def assert_sha256(file_path: str | Path, expected_sha256: str) -> None:
    """Raise ValueError when the file digest mismatches the expected SHA256."""
    assert expected_sha256, "expected_sha256 cannot be empty"
    actual_sha256 = compute_sha256(file_path)
    if actual_sha256.lower() != expected_sha256.strip().lower():
        raise ValueError(
            f"checksum mismatch for {file_path}: "
            f"expected {expected_sha256}, got {actual_sha256}"
        )
    log.debug(f"sha256 assertion passed for\n    {file_path}")


def load_checksums(model_dir: str | Path) -> dict[str, str]:
    """Load `{file name: sha256}` from a model directory; empty when no checksum file exists."""
    checksums_fp = Path(model_dir) / CHECKSUMS_FILE_NAME
    if not checksums_fp.exists():
        return {}
    payload = json.loads(checksums_fp.read_text(encoding="utf-8"))
    if not isinstance(payload, dict) or not all(isinstance(v, str) for v in payload.values()):
        raise ValueError(f"{checksums_fp} must map file names to sha256 strings")
    return payload


def verify_model_file(model_fp: str | Path) -> bool:
    """Check a model file against its directory's checksum file; return whether a checksum was listed."""
    path = Path(model_fp)
    expected = load_checksums(path.parent).get(path.name)
    if expected is None:
        log.debug(f"no checksum listed for\n    {path}")
        return False
    assert_sha256(path, expected)
    return True
