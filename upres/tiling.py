"""Tile extraction, batch serialization and core stitching."""

import numpy as np
from tqdm import tqdm

from upres.geometry import ContextWindow


def build_tile_origins(canvas_width: int, canvas_height: int, output_size: int) -> list[tuple[int, int]]:
    """Build row-major `(x, y)` tile origins covering a padded canvas."""
    assert output_size > 0, f"output_size must be > 0; got {output_size}"
    assert canvas_width % output_size == 0 and canvas_height % output_size == 0, (
        f"canvas {(canvas_width, canvas_height)} is not a multiple of output_size={output_size}"
    )
    width_num = canvas_width // output_size
    height_num = canvas_height // output_size
    return [
        ((index % width_num) * output_size, (index // width_num) * output_size)
        for index in range(width_num * height_num)
    ]


def iter_batches(
    origins: list[tuple[int, int]],
    batch_size: int,
    *,
    use_progress: bool,
    desc: str = "reconstruct",
):
    """Yield consecutive origin batches of at most `batch_size` with optional progress rendering."""
    assert batch_size > 0, f"batch_size must be > 0; got {batch_size}"
    batches = (origins[start : start + batch_size] for start in range(0, len(origins), batch_size))
    if use_progress:
        total = (len(origins) + batch_size - 1) // batch_size
        return tqdm(batches, desc=desc, total=total, unit="batch")
    return batches


def extract_tile(canvas: np.ndarray, window: ContextWindow) -> np.ndarray:
    """Copy a context rectangle out of the canvas and edge-replicate it to a full input block."""
    region = canvas[window.y : window.y + window.height, window.x : window.x + window.width]
    return np.pad(
        region,
        ((window.top, window.bottom), (window.left, window.right)),
        mode="edge",
    )


def serialize_tile(tile: np.ndarray, batch: np.ndarray, slot: int) -> None:
    """Copy one input tile into slot `slot` of a `(capacity, block, block)` batch buffer."""
    block_size = batch.shape[1]
    assert tile.shape == (block_size, block_size), f"tile shape {tile.shape} != {(block_size, block_size)}"
    assert 0 <= slot < batch.shape[0], f"slot {slot} outside batch capacity {batch.shape[0]}"
    dest = batch[slot]
    if tile.flags.c_contiguous and tile.dtype == batch.dtype:
        # Row stride equals the block width: one flat copy.
        dest.reshape(-1)[:] = tile.reshape(-1)
    else:
        for row in range(block_size):
            dest[row, :] = tile[row, :]


def stitch_tile(
    result_tile: np.ndarray,
    canvas: np.ndarray,
    tile_x: int,
    tile_y: int,
    crop_size: int,
    output_padding: int,
    written: np.ndarray | None = None,
) -> None:
    """
    Write the centered `crop_size` core of an engine result tile into the canvas.

    When a `written` mask is given, every target pixel must still be unwritten;
    tile cores are disjoint, so a second write means the tile partition is broken.
    """
    core = result_tile[output_padding : output_padding + crop_size, output_padding : output_padding + crop_size]
    assert core.shape == (crop_size, crop_size), (
        f"result tile {result_tile.shape} too small for crop {crop_size} with padding {output_padding}"
    )
    rows = slice(tile_y, tile_y + crop_size)
    cols = slice(tile_x, tile_x + crop_size)
    if written is not None:
        assert not written[rows, cols].any(), f"tile core at {(tile_x, tile_y)} overlaps an already stitched tile"
        written[rows, cols] = True
    canvas[rows, cols] = core
