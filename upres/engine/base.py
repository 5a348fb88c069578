"""Inference engine interfaces for upres."""

from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np


class EngineBase(ABC):
    """Abstract batch-in/batch-out interface for reconstruction networks."""

    @abstractmethod
    def load(self) -> None:
        """Load model resources into memory."""

    @abstractmethod
    def forward(self, batch: np.ndarray, batch_size: int, aux: np.ndarray | None = None) -> np.ndarray:
        """
        Run one forward pass over the first `batch_size` tiles of `batch`.

        `batch` is the full `(capacity, input_block, input_block)` buffer.
        Returns `(batch_size, output_block, output_block)` result tiles in input order.
        """

    @abstractmethod
    def model_path(self) -> Path:
        """Return the model path used by this engine."""

    def block_sizes(self) -> tuple[int, int] | None:
        """Return fixed `(input_block, output_block)` sizes, or None when the network accepts any size."""
        return None

    def close(self) -> None:
        """Release runtime resources."""
