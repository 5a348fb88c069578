"""Host batch buffers reused across every batch of a pipeline instance."""

import logging

import numpy as np


log = logging.getLogger(__name__)


class BatchBuffers:
    """Input, zero-filled auxiliary and output tile buffers for one pipeline instance."""

    def __init__(self, batch_size: int, input_block_size: int, output_block_size: int):
        assert batch_size > 0, f"batch_size must be > 0; got {batch_size}"
        assert input_block_size > 0 and output_block_size > 0, (
            f"block sizes must be > 0; got input={input_block_size}, output={output_block_size}"
        )
        self.batch_size = batch_size
        self.input_block_size = input_block_size
        self.output_block_size = output_block_size
        self.input: np.ndarray | None = None
        self.aux: np.ndarray | None = None
        self.output: np.ndarray | None = None

    @property
    def is_allocated(self) -> bool:
        return self.input is not None

    def allocate(self) -> "BatchBuffers":
        """Allocate all buffers once; repeated calls keep the existing allocation."""
        if self.is_allocated:
            return self
        input_shape = (self.batch_size, self.input_block_size, self.input_block_size)
        output_shape = (self.batch_size, self.output_block_size, self.output_block_size)
        self.input = np.zeros(input_shape, dtype=np.float32)
        self.aux = np.zeros(input_shape, dtype=np.float32)
        self.output = np.zeros(output_shape, dtype=np.float32)
        log.debug(
            f"allocated batch buffers input={input_shape} output={output_shape} "
            f"({(self.input.nbytes * 2 + self.output.nbytes) / 1e6:.2f} MB)"
        )
        return self

    def release(self) -> None:
        """Drop all buffers; safe to call on an unallocated instance."""
        self.input = None
        self.aux = None
        self.output = None
