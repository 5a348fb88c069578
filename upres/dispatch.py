"""Batched reconstruction of padded luminance canvases through one engine."""

import logging, time

import numpy as np

from upres.buffers import BatchBuffers
from upres.config import PipelineConfig
from upres.engine.base import EngineBase
from upres.errors import EngineFailure, InvalidConfiguration
from upres.geometry import compute_context_window
from upres.tiling import build_tile_origins, extract_tile, iter_batches, serialize_tile, stitch_tile


class BatchDispatcher:
    """Drive tile extraction, engine calls and stitching over a whole canvas."""

    def __init__(self, config: PipelineConfig, buffers: BatchBuffers, *, use_progress: bool = False, logger=None):
        assert buffers.batch_size == config.batch_size, (
            f"buffer capacity {buffers.batch_size} != configured batch_size {config.batch_size}"
        )
        assert buffers.input_block_size == config.input_block_size, (
            f"buffer input block {buffers.input_block_size} != {config.input_block_size}"
        )
        self.config = config
        self.buffers = buffers
        self.use_progress = use_progress
        self.log = logger or logging.getLogger(__name__)

    def reconstruct(self, canvas: np.ndarray, engine: EngineBase, *, desc: str = "reconstruct") -> np.ndarray:
        """
        Reconstruct a padded canvas tile by tile and return the reconstructed canvas.

        Parameters
        ----------
        canvas:
            2D float32 plane whose height and width are multiples of `output_size`.
        engine:
            Engine mapping input blocks to output blocks.
        desc:
            Label for logging and progress output.

        Returns
        -------
        np.ndarray
            New plane of the same shape holding every stitched tile core.
        """
        cfg = self.config
        if not self.buffers.is_allocated:
            raise InvalidConfiguration("batch buffers are not allocated")
        assert canvas.ndim == 2, f"canvas must be 2D; got {canvas.shape}"
        height, width = canvas.shape
        if width % cfg.output_size or height % cfg.output_size:
            raise InvalidConfiguration(
                f"canvas {(width, height)} is not a multiple of output_size={cfg.output_size}; pad before reconstructing"
            )

        canvas = np.ascontiguousarray(canvas, dtype=np.float32)
        origins = build_tile_origins(width, height, cfg.output_size)
        output = np.empty_like(canvas)
        written = np.zeros(canvas.shape, dtype=bool)
        batch = self.buffers.input
        start = time.perf_counter()
        self.log.debug(
            f"{desc}: {len(origins)} tiles on {width}x{height} canvas, batch_size={cfg.batch_size}, "
            f"blocks={cfg.input_block_size}->{cfg.output_block_size}"
        )

        for batch_origins in iter_batches(origins, cfg.batch_size, use_progress=self.use_progress, desc=desc):
            process_num = len(batch_origins)
            for slot, (tile_x, tile_y) in enumerate(batch_origins):
                window = compute_context_window(
                    tile_x,
                    tile_y,
                    cfg.crop_size,
                    cfg.inner_padding,
                    cfg.outer_padding,
                    width,
                    height,
                )
                serialize_tile(extract_tile(canvas, window), batch, slot)

            try:
                results = engine.forward(batch, process_num, aux=self.buffers.aux)
            except EngineFailure:
                raise
            except Exception as err:
                raise EngineFailure(f"{desc}: engine call failed for batch of {process_num}: {err}") from err

            expected = (process_num, cfg.output_block_size, cfg.output_block_size)
            if tuple(np.shape(results)) != expected:
                raise EngineFailure(f"{desc}: engine returned shape {np.shape(results)}, expected {expected}")
            self.buffers.output[:process_num] = results

            for slot, (tile_x, tile_y) in enumerate(batch_origins):
                stitch_tile(
                    self.buffers.output[slot],
                    output,
                    tile_x,
                    tile_y,
                    cfg.crop_size,
                    cfg.output_padding,
                    written=written,
                )

        assert written.all(), f"{desc}: {int((~written).sum())} canvas pixels were not covered by any tile"
        self.log.debug(f"{desc}: reconstructed {len(origins)} tiles in {time.perf_counter() - start:.3f}s")
        return output
