"""Pipeline configuration and derived tile geometry."""

import math
from dataclasses import dataclass, fields
from typing import Any, Mapping

from upres.errors import InvalidConfiguration


# Number of 3x3 convolution layers in the reconstruction network.
NETWORK_DEPTH = 7

MODES = ("noise", "scale", "noise_scale", "auto_scale")
MODE_ALIASES = {
    "denoise": "noise",
    "denoise+scale": "noise_scale",
    "denoise_scale": "noise_scale",
    "auto": "auto_scale",
}
DENOISE_MODES = frozenset({"noise", "noise_scale", "auto_scale"})
UPSCALE_MODES = frozenset({"scale", "noise_scale", "auto_scale"})
NOISE_LEVELS = (1, 2)
PROCESSES = ("cpu", "gpu")


def normalize_mode(mode: str) -> str:
    """Return the canonical mode identifier for a mode name or alias."""
    key = str(mode).strip().lower()
    key = MODE_ALIASES.get(key, key)
    if key not in MODES:
        raise InvalidConfiguration(f"unsupported mode '{mode}'; expected one of {MODES + tuple(MODE_ALIASES)}")
    return key


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable settings for one pipeline instance."""

    mode: str = "noise_scale"
    noise_level: int = 1
    scale_ratio: float = 2.0
    crop_size: int = 128
    batch_size: int = 1
    process: str = "cpu"
    network_depth: int = NETWORK_DEPTH
    outer_padding: int = 1

    def __post_init__(self):
        # Frozen dataclass: normalize through object.__setattr__.
        object.__setattr__(self, "mode", normalize_mode(self.mode))
        object.__setattr__(self, "process", str(self.process).strip().lower())

        if self.noise_level not in NOISE_LEVELS:
            raise InvalidConfiguration(f"noise_level must be one of {NOISE_LEVELS}; got {self.noise_level}")
        try:
            scale_ratio = float(self.scale_ratio)
        except (TypeError, ValueError) as err:
            raise InvalidConfiguration(f"scale_ratio must be a number; got {self.scale_ratio!r}") from err
        if not math.isfinite(scale_ratio) or scale_ratio <= 0.0:
            raise InvalidConfiguration(f"scale_ratio must be finite and > 0; got {self.scale_ratio}")
        object.__setattr__(self, "scale_ratio", scale_ratio)

        if self.crop_size <= 0:
            raise InvalidConfiguration(f"crop_size must be > 0; got {self.crop_size}")
        if self.batch_size <= 0:
            raise InvalidConfiguration(f"batch_size must be > 0; got {self.batch_size}")
        if self.process not in PROCESSES:
            raise InvalidConfiguration(f"process must be one of {PROCESSES}; got {self.process}")
        if self.network_depth < 0 or self.outer_padding < 0:
            raise InvalidConfiguration(
                f"paddings must be >= 0; got network_depth={self.network_depth}, outer_padding={self.outer_padding}"
            )
        if self.output_block_size < self.crop_size:
            raise InvalidConfiguration(
                f"output block {self.output_block_size} cannot hold crop {self.crop_size}"
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a plain mapping, letting `None` values fall back to defaults."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping).difference(known))
        if unknown:
            raise InvalidConfiguration(f"unknown configuration keys: {unknown}")
        return cls(**{k: v for k, v in mapping.items() if v is not None})

    @property
    def inner_padding(self) -> int:
        return self.network_depth

    @property
    def output_size(self) -> int:
        # Input offset is always zero, so every tile core is one crop.
        return self.crop_size

    @property
    def input_block_size(self) -> int:
        return self.crop_size + 2 * (self.inner_padding + self.outer_padding)

    @property
    def output_block_size(self) -> int:
        return self.crop_size + 2 * (self.inner_padding + self.outer_padding - self.network_depth)

    @property
    def output_padding(self) -> int:
        """Band discarded on each side of an engine result tile."""
        return self.inner_padding + self.outer_padding - self.network_depth

    @property
    def needs_denoise_engine(self) -> bool:
        return self.mode in DENOISE_MODES

    @property
    def needs_upscale_engine(self) -> bool:
        return self.mode in UPSCALE_MODES
