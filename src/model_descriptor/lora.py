"""LoRA adapter module descriptions."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

from .errors import InvalidConfiguration


class LoraModuleType(enum.Enum):
    ATTN_QKV = "attn_qkv"
    ATTN_Q = "attn_q"
    ATTN_K = "attn_k"
    ATTN_V = "attn_v"
    ATTN_DENSE = "attn_dense"
    MLP_H_TO_4H = "mlp_h_to_4h"
    MLP_4H_TO_H = "mlp_4h_to_h"
    MLP_GATE = "mlp_gate"
    CROSS_ATTN_QKV = "cross_attn_qkv"
    CROSS_ATTN_Q = "cross_attn_q"
    CROSS_ATTN_K = "cross_attn_k"
    CROSS_ATTN_V = "cross_attn_v"
    CROSS_ATTN_DENSE = "cross_attn_dense"


@dataclass(frozen=True)
class LoraModule:
    """Shape of one low-rank adapter pair injected into a layer.

    ``in_tp_split_dim`` / ``out_tp_split_dim`` name the weight dimension that
    tensor parallelism splits, or ``None`` when the dimension is replicated.
    """

    module_type: LoraModuleType
    in_dim: int
    out_dim: int
    in_dim_first: bool = False
    out_dim_first: bool = True
    in_tp_split_dim: int | None = None
    out_tp_split_dim: int | None = 0

    @property
    def name(self) -> str:
        return self.module_type.value

    def flattened_in_size(self, rank: int) -> int:
        return self.in_dim * rank

    def flattened_out_size(self, rank: int) -> int:
        return self.out_dim * rank

    def local_in_dim(self, tensor_parallelism: int = 1) -> int:
        if self.in_tp_split_dim is None:
            return self.in_dim
        return _split(self.in_dim, tensor_parallelism, "in_dim")

    def local_out_dim(self, tensor_parallelism: int = 1) -> int:
        if self.out_tp_split_dim is None:
            return self.out_dim
        return _split(self.out_dim, tensor_parallelism, "out_dim")


def _split(dim: int, tensor_parallelism: int, field: str) -> int:
    if tensor_parallelism < 1 or dim % tensor_parallelism:
        raise InvalidConfiguration(
            field, f"{dim} is not divisible by tensor parallelism {tensor_parallelism}")
    return dim // tensor_parallelism


def create_lora_modules(names: Iterable[str],
                        hidden_size: int,
                        mlp_hidden_size: int,
                        num_heads: int,
                        num_kv_heads: int,
                        size_per_head: int) -> list[LoraModule]:
    """Build the ordered adapter module list for the given module names."""

    q_size = num_heads * size_per_head
    kv_size = num_kv_heads * size_per_head
    modules = []
    for name in names:
        try:
            module_type = LoraModuleType(str(name).strip().lower())
        except ValueError:
            raise InvalidConfiguration("lora_modules",
                                       f"unknown LoRA module {name!r}") from None
        base = module_type.value.removeprefix("cross_")
        if base == "attn_qkv":
            module = LoraModule(module_type, hidden_size, q_size + 2 * kv_size)
        elif base == "attn_q":
            module = LoraModule(module_type, hidden_size, q_size)
        elif base in ("attn_k", "attn_v"):
            module = LoraModule(module_type, hidden_size, kv_size)
        elif base == "attn_dense":
            module = LoraModule(module_type, q_size, hidden_size,
                                in_tp_split_dim=1, out_tp_split_dim=None)
        elif base in ("mlp_h_to_4h", "mlp_gate"):
            module = LoraModule(module_type, hidden_size, mlp_hidden_size)
        else:
            module = LoraModule(module_type, mlp_hidden_size, hidden_size,
                                in_tp_split_dim=1, out_tp_split_dim=None)
        modules.append(module)
    return modules
