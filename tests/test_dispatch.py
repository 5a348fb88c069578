"""Tests for batched canvas reconstruction."""

import numpy as np
import pytest

from conftest import FailingEngine, IdentityEngine
from upres.buffers import BatchBuffers
from upres.config import PipelineConfig
from upres.dispatch import BatchDispatcher
from upres.errors import EngineFailure, InvalidConfiguration
from upres.geometry import crop_plane, pad_plane


pytestmark = pytest.mark.unit


def _dispatcher(config: PipelineConfig, logger=None) -> BatchDispatcher:
    buffers = BatchBuffers(config.batch_size, config.input_block_size, config.output_block_size).allocate()
    return BatchDispatcher(config, buffers, logger=logger)


def test_ten_by_ten_identity_round_trip(small_config, ramp_plane, logger):
    """A 10x10 plane with crop 4 and batch 2 survives pad/reconstruct/crop unchanged."""
    engine = IdentityEngine()
    canvas = pad_plane(ramp_plane, small_config.output_size)
    assert canvas.shape == (12, 12)
    out = _dispatcher(small_config, logger).reconstruct(canvas, engine)
    assert engine.calls == [2, 2, 2, 2, 1]
    assert np.array_equal(crop_plane(out, 10, 10), ramp_plane)


@pytest.mark.parametrize("batch_size", [2, 3, 4, 7, 16])
def test_partial_batches_match_single_tile_batches(batch_size: int):
    """Reduced final batches stitch bit-for-bit the same as batch size 1."""
    rng = np.random.default_rng(5)
    canvas = rng.random((12, 20), dtype=np.float32)
    reference = _dispatcher(PipelineConfig(crop_size=4, batch_size=1)).reconstruct(canvas, IdentityEngine())
    batched = _dispatcher(PipelineConfig(crop_size=4, batch_size=batch_size)).reconstruct(canvas, IdentityEngine())
    assert np.array_equal(batched, reference)
    assert np.array_equal(batched, canvas)


def test_shifted_engine_exposes_stitch_offsets(small_config):
    """An engine that shifts its output by one pixel produces a visibly different canvas."""

    class ShiftedEngine(IdentityEngine):
        def forward(self, batch, batch_size, aux=None):
            d = self.depth - 1
            return batch[:batch_size, d : d + 6, d : d + 6].copy()

    canvas = np.arange(144, dtype=np.float32).reshape(12, 12)
    out = _dispatcher(small_config).reconstruct(canvas, ShiftedEngine())
    assert not np.array_equal(out, canvas)
    # Interior pixels move diagonally by exactly one.
    assert out[5, 5] == canvas[4, 4]


def test_reconstruct_does_not_mutate_input(small_config, ramp_plane):
    """The reconstructed canvas is a new plane."""
    canvas = pad_plane(ramp_plane, small_config.output_size).copy()
    before = canvas.copy()
    out = _dispatcher(small_config).reconstruct(canvas, IdentityEngine())
    assert out is not canvas
    assert np.array_equal(canvas, before)


def test_unpadded_canvas_is_rejected(small_config, ramp_plane):
    """Canvases must be tile multiples before reconstruction."""
    with pytest.raises(InvalidConfiguration):
        _dispatcher(small_config).reconstruct(ramp_plane, IdentityEngine())


@pytest.mark.parametrize("fail_on_call", [1, 3])
def test_engine_exception_becomes_engine_failure(small_config, ramp_plane, fail_on_call: int):
    """Any engine exception aborts the pass as EngineFailure."""
    canvas = pad_plane(ramp_plane, small_config.output_size)
    with pytest.raises(EngineFailure) as exc_info:
        _dispatcher(small_config).reconstruct(canvas, FailingEngine(fail_on_call=fail_on_call))
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_wrong_result_shape_is_engine_failure(small_config, ramp_plane):
    """Engines returning the wrong block size fail the pass."""

    class UncroppedEngine(IdentityEngine):
        def forward(self, batch, batch_size, aux=None):
            return batch[:batch_size].copy()

    canvas = pad_plane(ramp_plane, small_config.output_size)
    with pytest.raises(EngineFailure):
        _dispatcher(small_config).reconstruct(canvas, UncroppedEngine())


def test_aux_buffer_stays_zero(small_config, ramp_plane):
    """The auxiliary buffer handed to engines is zero-filled."""
    seen = []

    class AuxEngine(IdentityEngine):
        def forward(self, batch, batch_size, aux=None):
            seen.append(None if aux is None else float(np.abs(aux).max()))
            return super().forward(batch, batch_size, aux)

    canvas = pad_plane(ramp_plane, small_config.output_size)
    _dispatcher(small_config).reconstruct(canvas, AuxEngine())
    assert seen and all(value == 0.0 for value in seen)
