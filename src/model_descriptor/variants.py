"""Model variants, per-layer tags and the variant-specific sub-configs."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

from .errors import InvalidConfiguration


class ModelVariant(enum.Enum):
    GPT = "gpt"
    GLM = "glm"
    MAMBA = "mamba"
    RECURRENT_GEMMA = "recurrentgemma"

    @property
    def is_transformer_based(self) -> bool:
        return self in _TRANSFORMER_VARIANTS

    @property
    def is_ssm_based(self) -> bool:
        return self in _SSM_VARIANTS


# RecurrentGemma interleaves attention and recurrent blocks, so it is in both.
_TRANSFORMER_VARIANTS = frozenset(
    {ModelVariant.GPT, ModelVariant.GLM, ModelVariant.RECURRENT_GEMMA})
_SSM_VARIANTS = frozenset({ModelVariant.MAMBA, ModelVariant.RECURRENT_GEMMA})


class LayerType(enum.Enum):
    ATTENTION = "attention"
    RECURRENT = "recurrent"


def parse_layer_types(names: Iterable[str]) -> tuple[LayerType, ...]:
    """Map layer tags such as ``"attention"`` / ``"recurrent"`` to enums."""

    layer_types = []
    for index, name in enumerate(names):
        key = str(name).strip().lower()
        try:
            layer_types.append(LayerType(key))
        except ValueError:
            raise InvalidConfiguration(
                "layer_types", f"unknown layer type {name!r} at index {index}"
            ) from None
    return tuple(layer_types)


@dataclass(frozen=True)
class MambaParams:
    """State-space (Mamba) block dimensions."""

    d_state: int = 0
    d_conv: int = 0
    expand: int = 0

    def inner_size(self, hidden_size: int) -> int:
        return self.expand * hidden_size


@dataclass(frozen=True)
class RnnParams:
    """Recurrent block dimensions used by RecurrentGemma-style models."""

    d_conv: int = 0
    hidden_size: int = 0
