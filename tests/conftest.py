"""Pytest fixtures for upres tests."""

import logging, pathlib

import numpy as np
import pytest

from upres.config import NETWORK_DEPTH, PipelineConfig
from upres.engine.base import EngineBase


class IdentityEngine(EngineBase):
    """Engine that returns each input block with the network-depth border cropped off."""

    def __init__(self, depth: int = NETWORK_DEPTH):
        """Initialize call bookkeeping."""
        self.depth = depth
        self.calls: list[int] = []

    def load(self) -> None:
        """No-op load for identity engine."""

    def forward(self, batch: np.ndarray, batch_size: int, aux: np.ndarray | None = None) -> np.ndarray:
        """Crop `depth` pixels off every side of the first `batch_size` tiles."""
        self.calls.append(batch_size)
        d = self.depth
        return batch[:batch_size, d : batch.shape[1] - d, d : batch.shape[2] - d].copy()

    def model_path(self) -> pathlib.Path:
        """Return a dummy path."""
        return pathlib.Path("identity.onnx")


class FailingEngine(IdentityEngine):
    """Engine that raises on the n-th call."""

    def __init__(self, fail_on_call: int = 1):
        """Initialize the failing call index (1-based)."""
        super().__init__()
        self.fail_on_call = fail_on_call

    def forward(self, batch: np.ndarray, batch_size: int, aux: np.ndarray | None = None) -> np.ndarray:
        """Raise once the configured call is reached."""
        if len(self.calls) + 1 >= self.fail_on_call:
            self.calls.append(batch_size)
            raise RuntimeError("device lost")
        return super().forward(batch, batch_size, aux)


class CancelAfter:
    """Cancellation probe that starts returning True on its n-th poll (1-based)."""

    def __init__(self, trigger_poll: int):
        """Initialize the poll counter."""
        self.trigger_poll = trigger_poll
        self.polls = 0

    def __call__(self) -> bool:
        self.polls += 1
        return self.polls >= self.trigger_poll


def write_identity_onnx(
    fp: pathlib.Path,
    input_block: int | None,
    *,
    depth: int = NETWORK_DEPTH,
    batch_dim: int | str = "N",
    aux_input: bool = False,
) -> pathlib.Path:
    """Write a one-convolution ONNX network whose centered delta kernel crops `depth` pixels per side."""
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper, numpy_helper

    kernel = 2 * depth + 1
    weight = np.zeros((1, 1, kernel, kernel), dtype=np.float32)
    weight[0, 0, depth, depth] = 1.0
    in_edge = input_block if input_block is not None else "S"
    out_edge = input_block - 2 * depth if input_block is not None else "T"

    inputs = [helper.make_tensor_value_info("input", TensorProto.FLOAT, [batch_dim, 1, in_edge, in_edge])]
    nodes = []
    conv_input = "input"
    if aux_input:
        inputs.append(helper.make_tensor_value_info("aux", TensorProto.FLOAT, [batch_dim, 1, in_edge, in_edge]))
        nodes.append(helper.make_node("Add", ["input", "aux"], ["summed"]))
        conv_input = "summed"
    nodes.append(helper.make_node("Conv", [conv_input, "W"], ["output"], kernel_shape=[kernel, kernel]))
    output = helper.make_tensor_value_info("output", TensorProto.FLOAT, [batch_dim, 1, out_edge, out_edge])
    graph = helper.make_graph(nodes, "identity_crop", inputs, [output], initializer=[numpy_helper.from_array(weight, "W")])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    # Pin an IR version that older onnxruntime releases accept.
    model.ir_version = 8
    fp.parent.mkdir(parents=True, exist_ok=True)
    onnx.save(model, fp.as_posix())
    return fp


#===============================================================================
# pytest custom config------------
#===============================================================================


def pytest_runtest_teardown(item, nextitem):
    """Custom teardown message."""
    test_name = item.name
    print(f"\n{'='*20} Test completed: {test_name} {'='*20}\n\n\n")


def pytest_report_header(config):
    """Show pytest invocation arguments in the test header."""
    return f"pytest arguments: {' '.join(config.invocation_params.args)}"


# -------------------
# ----- Fixtures -----
# -------------------
@pytest.fixture(scope="session")
def logger():
    """Simple logger fixture for the function under test."""
    log = logging.getLogger("pytest")
    log.setLevel(logging.DEBUG)
    # keep handlers minimal to avoid duplicate logs across runs
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
        handler.setFormatter(formatter)
        log.addHandler(handler)
    return log


@pytest.fixture(scope="function")
def small_config():
    """Tiny tile geometry: crop 4, batch 2, blocks 20->6."""
    return PipelineConfig(mode="noise_scale", scale_ratio=2.0, crop_size=4, batch_size=2)


@pytest.fixture(scope="function")
def identity_engine():
    """Fresh identity engine."""
    return IdentityEngine()


@pytest.fixture(scope="session")
def ramp_plane():
    """Deterministic non-constant 10x10 luminance plane in [0, 1]."""
    rng = np.random.default_rng(7)
    return rng.random((10, 10), dtype=np.float32)


@pytest.fixture(scope="session")
def bgr_image():
    """Deterministic 9x13 BGR float image."""
    rng = np.random.default_rng(11)
    return rng.random((9, 13, 3), dtype=np.float32)


@pytest.fixture(scope="function")
def identity_model_dir(tmp_path, small_config):
    """Model directory with identity networks sized for `small_config`."""
    model_dir = tmp_path / "models"
    for file_name in ("noise1_model.onnx", "noise2_model.onnx", "scale2.0x_model.onnx"):
        write_identity_onnx(model_dir / file_name, small_config.input_block_size)
    return model_dir
