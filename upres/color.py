"""Luminance/chroma split, alpha compositing and final color reassembly."""

import logging

import cv2
import numpy as np


# Alpha at or below this is treated as fully transparent when undoing the white composite.
ALPHA_EPS = 1e-6


def resize_plane(array: np.ndarray, width: int, height: int, interpolation: int) -> np.ndarray:
    """Resize a plane or image to `(width, height)`; identity sizes return the input."""
    if array.shape[1] == width and array.shape[0] == height:
        return array
    return cv2.resize(array, (int(width), int(height)), interpolation=interpolation)


def composite_over_white(image: np.ndarray) -> tuple[np.ndarray, np.ndarray | None]:
    """
    Return a 3-channel BGR image and the alpha plane (or None).

    Gray inputs are promoted to BGR. BGRA inputs are composited over an opaque
    white background, `color' = color * alpha + (1 - alpha)`, so colors hidden
    under transparent pixels cannot leak into reconstruction.
    """
    image = np.asarray(image, dtype=np.float32)
    if image.ndim == 2 or (image.ndim == 3 and image.shape[2] == 1):
        return cv2.cvtColor(image.reshape(image.shape[:2]), cv2.COLOR_GRAY2BGR), None
    assert image.ndim == 3 and image.shape[2] in (3, 4), f"image must be gray, BGR or BGRA; got {image.shape}"
    if image.shape[2] == 3:
        return np.ascontiguousarray(image), None

    alpha = np.ascontiguousarray(image[:, :, 3])
    bgr = image[:, :, :3] * alpha[:, :, np.newaxis] + (1.0 - alpha[:, :, np.newaxis])
    return np.ascontiguousarray(bgr, dtype=np.float32), alpha


def uncomposite_from_white(bgr: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Invert `composite_over_white`: `color = (color' - 1) / alpha + 1` where alpha is non-zero."""
    assert bgr.shape[:2] == alpha.shape, f"alpha shape {alpha.shape} != color shape {bgr.shape[:2]}"
    alpha3 = alpha[:, :, np.newaxis]
    # Fully transparent pixels keep their composited value; alpha=0 discards them anyway.
    safe_alpha = np.where(alpha3 > ALPHA_EPS, alpha3, 1.0)
    out = (bgr - 1.0) / safe_alpha + 1.0
    return out.astype(np.float32, copy=False)


def extract_luminance(bgr: np.ndarray) -> np.ndarray:
    """Return the Y plane of a BGR image."""
    yuv = cv2.cvtColor(np.asarray(bgr, dtype=np.float32), cv2.COLOR_BGR2YUV)
    return np.ascontiguousarray(yuv[:, :, 0])


def resize_chroma(bgr: np.ndarray, width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """Cubic-resize the color image and return its U and V planes at `(width, height)`."""
    zoomed = resize_plane(np.asarray(bgr, dtype=np.float32), width, height, cv2.INTER_CUBIC)
    yuv = cv2.cvtColor(zoomed, cv2.COLOR_BGR2YUV)
    return np.ascontiguousarray(yuv[:, :, 1]), np.ascontiguousarray(yuv[:, :, 2])


def recompose(
    luminance: np.ndarray,
    bgr: np.ndarray,
    alpha: np.ndarray | None = None,
    target_size: tuple[int, int] | None = None,
    logger=None,
) -> np.ndarray:
    """
    Rebuild a float color image from a reconstructed luminance plane.

    Parameters
    ----------
    luminance:
        Reconstructed Y plane.
    bgr:
        Source BGR image (already composited over white when it had alpha).
    alpha:
        Source alpha plane, or None for opaque images.
    target_size:
        Optional `(width, height)`; the luminance plane is linearly resized to it when it differs.
    logger:
        Optional logger instance.

    Returns
    -------
    np.ndarray
        float32 BGR or BGRA image at the target size.
    """
    log = logger or logging.getLogger(__name__)
    assert luminance.ndim == 2, f"luminance must be 2D; got {luminance.shape}"
    if target_size is not None:
        luminance = resize_plane(luminance, target_size[0], target_size[1], cv2.INTER_LINEAR)
    height, width = luminance.shape

    u_plane, v_plane = resize_chroma(bgr, width, height)
    yuv = cv2.merge([np.asarray(luminance, dtype=np.float32), u_plane, v_plane])
    out = cv2.cvtColor(yuv, cv2.COLOR_YUV2BGR)

    if alpha is not None:
        alpha_zoom = np.clip(resize_plane(alpha, width, height, cv2.INTER_CUBIC), 0.0, 1.0)
        out = uncomposite_from_white(out, alpha_zoom)
        out = np.dstack([out, alpha_zoom]).astype(np.float32, copy=False)

    log.debug(f"recomposed {out.shape[2]}-channel image at {width}x{height}")
    return out


def quantize(image: np.ndarray) -> np.ndarray:
    """Round a `[0, 1]` float image to saturated uint8."""
    return np.clip(np.rint(np.asarray(image, dtype=np.float32) * 255.0), 0, 255).astype(np.uint8)
