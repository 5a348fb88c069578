"""ONNX Runtime engine implementation for upres."""

import logging, time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import onnxruntime as ort

from upres.engine.base import EngineBase
from upres.errors import EngineFailure, InvalidConfiguration


@dataclass(frozen=True)
class ModelIOContract:
    """Resolved model tensor names and NCHW dimensions (None where symbolic)."""

    input_name: str
    aux_input_name: str | None
    output_name: str
    batch_dim: int | None
    input_block: int | None
    output_block: int | None


def _fixed_dim(dim: Any) -> int | None:
    """Return a positive integer dimension or None for symbolic/unknown dims."""
    if isinstance(dim, int) and dim > 0:
        return dim
    return None


class EngineORT(EngineBase):
    """ONNX Runtime session over a single-channel NCHW reconstruction network."""

    def __init__(
        self,
        model_fp: str | Path,
        providers: tuple[str, ...] = ("CPUExecutionProvider",),
        logger=None,
    ):
        """Initialize and load an ORT session."""
        self._model_fp = Path(model_fp).expanduser().resolve()
        assert self._model_fp.exists(), f"model file does not exist: {self._model_fp}"
        assert providers, "providers cannot be empty"
        self.providers = tuple(providers)
        self.log = logger or logging.getLogger(__name__)
        self.session: ort.InferenceSession | None = None
        self.contract: ModelIOContract | None = None
        self.load()

    def model_path(self) -> Path:
        """Return the model path used by this engine."""
        return self._model_fp

    def load(self) -> None:
        """Load model session and resolve model I/O contract."""
        self.log.debug(f"loading ORT session from\n    {self._model_fp}")
        try:
            self.session = ort.InferenceSession(self._model_fp.as_posix(), providers=list(self.providers))
        except Exception as err:
            raise EngineFailure(f"failed to load ONNX model {self._model_fp}: {err}") from err
        self.contract = self._resolve_contract()
        self.log.info(
            f"loaded ORT model '{self._model_fp.name}' with providers={self.session.get_providers()} "
            f"blocks={self.contract.input_block}->{self.contract.output_block}"
        )

    def close(self) -> None:
        """Drop the ORT session."""
        self.session = None

    def _resolve_square_dim(self, dims: list[Any], tensor_name: str) -> int | None:
        """Resolve the spatial edge of a rank-4 single-channel NCHW tensor."""
        if len(dims) != 4:
            raise InvalidConfiguration(f"{tensor_name} must be rank-4 NCHW; got {dims}")
        channels, height, width = dims[1], dims[2], dims[3]
        if _fixed_dim(channels) not in (None, 1):
            raise InvalidConfiguration(f"{tensor_name} channels must be 1; got {channels}")
        height, width = _fixed_dim(height), _fixed_dim(width)
        if height is not None and width is not None and height != width:
            raise InvalidConfiguration(f"{tensor_name} must be square; got {dims}")
        return height if height is not None else width

    def _resolve_contract(self) -> ModelIOContract:
        """Extract model names and dimensions from ORT metadata."""
        assert self.session is not None, "session must be loaded before resolving contract"
        input_meta_l = list(self.session.get_inputs())
        output_meta_l = list(self.session.get_outputs())
        if not 1 <= len(input_meta_l) <= 2:
            raise InvalidConfiguration(f"model must have one image input (plus optional aux); got {len(input_meta_l)}")
        assert len(output_meta_l) > 0, "model outputs are empty"

        input_dims = list(input_meta_l[0].shape)
        return ModelIOContract(
            input_name=input_meta_l[0].name,
            aux_input_name=input_meta_l[1].name if len(input_meta_l) == 2 else None,
            output_name=output_meta_l[0].name,
            batch_dim=_fixed_dim(input_dims[0]) if input_dims else None,
            input_block=self._resolve_square_dim(input_dims, input_meta_l[0].name),
            output_block=self._resolve_square_dim(list(output_meta_l[0].shape), output_meta_l[0].name),
        )

    def block_sizes(self) -> tuple[int, int] | None:
        """Return fixed block sizes when the network declares both."""
        assert self.contract is not None, "model contract must be available"
        if self.contract.input_block is None or self.contract.output_block is None:
            return None
        return (self.contract.input_block, self.contract.output_block)

    def _run(self, tiles: np.ndarray, aux: np.ndarray | None) -> np.ndarray:
        """Run one session call over `(n, block, block)` tiles and return `(n, out, out)`."""
        feed_dict = {self.contract.input_name: tiles[:, np.newaxis, :, :]}
        if self.contract.aux_input_name is not None:
            aux_tiles = aux if aux is not None else np.zeros_like(tiles)
            feed_dict[self.contract.aux_input_name] = aux_tiles[:, np.newaxis, :, :]
        outputs = self.session.run([self.contract.output_name], feed_dict)
        result = np.asarray(outputs[0], dtype=np.float32)
        if result.ndim != 4 or result.shape[0] != tiles.shape[0] or result.shape[1] != 1:
            raise EngineFailure(f"unexpected output shape {result.shape} for {tiles.shape[0]} input tiles")
        return result[:, 0, :, :]

    def forward(self, batch: np.ndarray, batch_size: int, aux: np.ndarray | None = None) -> np.ndarray:
        """Run the network on the first `batch_size` tiles of the batch buffer."""
        if self.session is None or self.contract is None:
            raise EngineFailure("ORT session is not loaded")
        assert batch.ndim == 3, f"batch must be (capacity, block, block); got {batch.shape}"
        assert 0 < batch_size <= batch.shape[0], f"batch_size {batch_size} outside capacity {batch.shape[0]}"
        start = time.perf_counter()
        tiles = np.ascontiguousarray(batch[:batch_size], dtype=np.float32)
        aux_tiles = None if aux is None else np.ascontiguousarray(aux[:batch_size], dtype=np.float32)

        # Networks exported with a fixed batch dim are fed in chunks of exactly that size.
        chunk = self.contract.batch_dim or batch_size
        results = []
        try:
            for start_i in range(0, batch_size, chunk):
                chunk_tiles = tiles[start_i : start_i + chunk]
                chunk_aux = None if aux_tiles is None else aux_tiles[start_i : start_i + chunk]
                n_valid = chunk_tiles.shape[0]
                if n_valid < chunk:
                    fill = ((0, chunk - n_valid), (0, 0), (0, 0))
                    chunk_tiles = np.pad(chunk_tiles, fill)
                    chunk_aux = None if chunk_aux is None else np.pad(chunk_aux, fill)
                results.append(self._run(chunk_tiles, chunk_aux)[:n_valid])
        except EngineFailure:
            raise
        except Exception as err:
            raise EngineFailure(f"ORT forward failed for batch of {batch_size}: {err}") from err

        result = np.concatenate(results, axis=0)
        self.log.debug(f"forward batch={batch_size} in {time.perf_counter() - start:.3f}s")
        return result
