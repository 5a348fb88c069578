"""Tests for the ONNX Runtime engine."""

from pathlib import Path

import numpy as np
import pytest

from conftest import write_identity_onnx
from upres.errors import EngineFailure, InvalidConfiguration


pytest.importorskip("onnx")
pytest.importorskip("onnxruntime")
from upres.engine.ort import EngineORT  # noqa: E402


pytestmark = pytest.mark.unit


@pytest.fixture(scope="function")
def batch():
    """Random `(3, 20, 20)` batch buffer."""
    rng = np.random.default_rng(13)
    return rng.random((3, 20, 20), dtype=np.float32)


def test_identity_network_crops_depth(tmp_path: Path, batch: np.ndarray, logger):
    """A fixed-block identity network returns each tile minus its depth border."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", 20), logger=logger)
    assert engine.block_sizes() == (20, 6)
    assert engine.contract.aux_input_name is None
    result = engine.forward(batch, 2)
    assert result.shape == (2, 6, 6)
    assert np.allclose(result, batch[:2, 7:13, 7:13], atol=1e-6)


def test_aux_input_is_fed(tmp_path: Path, batch: np.ndarray):
    """A second model input receives the auxiliary buffer."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", 20, aux_input=True))
    assert engine.contract.aux_input_name == "aux"
    aux = np.zeros_like(batch)
    assert np.allclose(engine.forward(batch, 3, aux=aux), batch[:, 7:13, 7:13], atol=1e-6)
    # Missing aux falls back to zeros.
    assert np.allclose(engine.forward(batch, 1), batch[:1, 7:13, 7:13], atol=1e-6)


def test_fixed_batch_dim_is_chunked(tmp_path: Path, batch: np.ndarray):
    """Networks exported with batch 1 still serve larger batches."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", 20, batch_dim=1))
    assert engine.contract.batch_dim == 1
    result = engine.forward(batch, 3)
    assert result.shape == (3, 6, 6)
    assert np.allclose(result, batch[:, 7:13, 7:13], atol=1e-6)


def test_fixed_batch_dim_pads_last_chunk(tmp_path: Path, batch: np.ndarray):
    """A partial final chunk is zero-padded and trimmed."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", 20, batch_dim=2))
    result = engine.forward(batch, 3)
    assert result.shape == (3, 6, 6)
    assert np.allclose(result[2], batch[2, 7:13, 7:13], atol=1e-6)


def test_symbolic_blocks_report_none(tmp_path: Path, batch: np.ndarray):
    """Fully convolutional networks accept any block size."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", None))
    assert engine.block_sizes() is None
    assert engine.forward(batch, 1).shape == (1, 6, 6)


def test_closed_engine_refuses_forward(tmp_path: Path, batch: np.ndarray):
    """Closing drops the session."""
    engine = EngineORT(write_identity_onnx(tmp_path / "m.onnx", 20))
    engine.close()
    with pytest.raises(EngineFailure):
        engine.forward(batch, 1)


def test_corrupt_model_is_engine_failure(tmp_path: Path):
    """Unreadable network files fail at load."""
    model_fp = tmp_path / "broken.onnx"
    model_fp.write_bytes(b"not an onnx graph")
    with pytest.raises(EngineFailure):
        EngineORT(model_fp)


def test_multichannel_model_rejected(tmp_path: Path):
    """Only single-channel NCHW networks are supported."""
    import onnx
    from onnx import TensorProto, helper

    inp = helper.make_tensor_value_info("input", TensorProto.FLOAT, ["N", 3, 20, 20])
    out = helper.make_tensor_value_info("output", TensorProto.FLOAT, ["N", 3, 20, 20])
    graph = helper.make_graph([helper.make_node("Identity", ["input"], ["output"])], "rgb", [inp], [out])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    model_fp = tmp_path / "rgb.onnx"
    onnx.save(model, model_fp.as_posix())
    with pytest.raises(InvalidConfiguration):
        EngineORT(model_fp)
