"""Image I/O utilities."""

from upres.io.cv2_io import is_lossy_input, read_image, resolve_default_output_path, write_image

__all__ = ["is_lossy_input", "read_image", "resolve_default_output_path", "write_image"]
