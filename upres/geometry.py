"""Padding, context-window and scale-decomposition arithmetic."""

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ContextWindow:
    """Clamped context rectangle around one tile core plus edge-replicate padding per side."""

    x: int
    y: int
    width: int
    height: int
    top: int
    bottom: int
    left: int
    right: int

    @property
    def block_width(self) -> int:
        return self.left + self.width + self.right

    @property
    def block_height(self) -> int:
        return self.top + self.height + self.bottom


@dataclass(frozen=True)
class ScalePlan:
    """Decomposition of a scale ratio into 2x passes and one final resample."""

    scale_ratio: float
    iterations: int
    shrink_ratio: float

    @property
    def needs_shrink(self) -> bool:
        return self.shrink_ratio != 1.0

    def final_size(self, width: int, height: int) -> tuple[int, int]:
        """Return `(width, height)` after the final resample of a `2**iterations` enlarged plane."""
        return (max(1, int(width * self.shrink_ratio)), max(1, int(height * self.shrink_ratio)))


def compute_padding(width: int, height: int, tile_size: int) -> tuple[int, int]:
    """Round `(width, height)` up to the next multiple of `tile_size`."""
    assert width > 0 and height > 0, f"plane size must be > 0; got {(width, height)}"
    assert tile_size > 0, f"tile_size must be > 0; got {tile_size}"
    padded_width = int(math.ceil(width / tile_size)) * tile_size
    padded_height = int(math.ceil(height / tile_size)) * tile_size
    return padded_width, padded_height


def pad_plane(plane: np.ndarray, tile_size: int) -> np.ndarray:
    """Edge-replicate a plane on its bottom/right edges to tile multiples."""
    assert plane.ndim == 2, f"plane must be 2D; got {plane.shape}"
    height, width = plane.shape
    padded_width, padded_height = compute_padding(width, height, tile_size)
    if (padded_width, padded_height) == (width, height):
        return plane
    return np.pad(plane, ((0, padded_height - height), (0, padded_width - width)), mode="edge")


def crop_plane(plane: np.ndarray, width: int, height: int) -> np.ndarray:
    """Crop padding back off a plane, keeping the top-left `width x height` region."""
    assert plane.shape[0] >= height and plane.shape[1] >= width, (
        f"cannot crop {plane.shape} to {(height, width)}"
    )
    return np.ascontiguousarray(plane[:height, :width])


def compute_context_window(
    tile_x: int,
    tile_y: int,
    crop_size: int,
    inner_padding: int,
    outer_padding: int,
    canvas_width: int,
    canvas_height: int,
) -> ContextWindow:
    """
    Compute the context rectangle needed around one tile core.

    The rectangle is clamped to the canvas; any amount clipped by a canvas
    edge becomes extra edge-replicate padding on that side so the padded tile
    is always `crop_size + 2 * (inner_padding + outer_padding)` square.
    """
    x = tile_x - inner_padding
    y = tile_y - inner_padding
    width = crop_size + 2 * inner_padding
    height = crop_size + 2 * inner_padding
    top = bottom = left = right = outer_padding

    if x < 0:
        left += -x
        width -= -x
        x = 0
    if x + width > canvas_width:
        right += (x + width) - canvas_width
        width = canvas_width - x
    if y < 0:
        top += -y
        height -= -y
        y = 0
    if y + height > canvas_height:
        bottom += (y + height) - canvas_height
        height = canvas_height - y

    assert width > 0 and height > 0, (
        f"tile origin {(tile_x, tile_y)} has empty context on canvas {(canvas_width, canvas_height)}"
    )
    return ContextWindow(x=x, y=y, width=width, height=height, top=top, bottom=bottom, left=left, right=right)


def decompose_scale(scale_ratio: float) -> ScalePlan:
    """Express a scale ratio as `2**iterations` doubling passes times a final shrink ratio."""
    assert scale_ratio > 0, f"scale_ratio must be > 0; got {scale_ratio}"
    iterations = max(0, int(math.ceil(math.log2(scale_ratio))))
    shrink_ratio = float(scale_ratio) / float(2 ** iterations)
    return ScalePlan(scale_ratio=float(scale_ratio), iterations=iterations, shrink_ratio=shrink_ratio)
