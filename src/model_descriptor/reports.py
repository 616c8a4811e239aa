"""Structures for presenting a descriptor and its derived capabilities."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .cache_sizing import kv_cache_bytes_per_block
from .cache_sizing import kv_cache_bytes_per_token
from .cache_sizing import ssm_state_bytes_per_sequence
from .descriptor import ModelDescriptor


def _to_mebibytes(value: float) -> float:
    return value / (1024**2)


@dataclass
class ShardLayout:
    tensor_parallelism: int
    pipeline_parallelism: int
    attention_layers: int
    ssm_layers: int
    kv_heads: int
    padded_vocab_size: int


@dataclass
class DescriptorReport:
    model_name: str
    descriptor: ModelDescriptor
    layout: ShardLayout
    kv_bytes_per_token: float
    kv_bytes_per_block: float
    state_bytes_per_sequence: float

    def capabilities(self) -> dict[str, bool]:
        d = self.descriptor
        return {
            "transformer_based": d.is_transformer_based,
            "ssm_based": d.is_ssm_based,
            "inflight_batching": d.supports_inflight_batching,
            "prompt_tuning": d.uses_prompt_tuning,
            "medusa": d.uses_medusa,
            "lora": d.uses_lora,
        }

    def as_dict(self) -> dict[str, Any]:
        d = self.descriptor
        return {
            "model": self.model_name,
            "variant": d.variant.value,
            "dtype": d.dtype.name,
            "kv_cache_dtype": d.effective_kv_dtype.name,
            "quant_mode": int(d.quant_mode),
            "vocab_size": d.vocab_size,
            "hidden_size": d.hidden_size,
            "num_heads": d.num_heads,
            "num_kv_heads": d.num_kv_heads,
            "size_per_head": d.size_per_head,
            "layout": {
                "tensor_parallelism": self.layout.tensor_parallelism,
                "pipeline_parallelism": self.layout.pipeline_parallelism,
                "attention_layers": self.layout.attention_layers,
                "ssm_layers": self.layout.ssm_layers,
                "kv_heads": self.layout.kv_heads,
                "padded_vocab_size": self.layout.padded_vocab_size,
            },
            "limits": {
                "max_batch_size": d.max_batch_size,
                "max_beam_width": d.max_beam_width,
                "max_input_len": d.max_input_len,
                "max_sequence_len": d.max_sequence_len,
                "max_num_tokens": d.max_num_tokens,
                "max_tokens_per_step": d.max_tokens_per_step,
                "tokens_per_block": d.tokens_per_block,
            },
            "capabilities": self.capabilities(),
            "kv_cache_bytes_per_token": self.kv_bytes_per_token,
            "kv_cache_bytes_per_block": self.kv_bytes_per_block,
            "state_bytes_per_sequence": self.state_bytes_per_sequence,
        }

    def render_table(self) -> str:
        d = self.descriptor
        layout = self.layout
        flags = ", ".join(name for name, on in self.capabilities().items() if on)
        lines = [
            f"Model: {self.model_name}",
            "---------------------------",
            f"Variant           : {d.variant.value}",
            f"Dtype / KV dtype  : {d.dtype.name} / {d.effective_kv_dtype.name}",
            f"Heads (kv) x dim  : {d.num_heads} ({d.num_kv_heads}) x {d.size_per_head}",
            f"Layers per shard  : {layout.attention_layers} attention, "
            f"{layout.ssm_layers} ssm (tp={layout.tensor_parallelism}, "
            f"pp={layout.pipeline_parallelism})",
            f"Padded vocab      : {layout.padded_vocab_size}",
            f"Tokens per step   : {d.max_tokens_per_step}",
            "---------------------------",
            f"KV cache / block  : {_to_mebibytes(self.kv_bytes_per_block):8.3f} MiB",
            f"State / sequence  : {_to_mebibytes(self.state_bytes_per_sequence):8.3f} MiB",
            f"Capabilities      : {flags or 'none'}",
        ]
        return "\n".join(lines)


def build_report(model_name: str,
                 descriptor: ModelDescriptor,
                 tensor_parallelism: int = 1,
                 pipeline_parallelism: int = 1) -> DescriptorReport:
    # Both accessors raise InvalidConfiguration on an uneven split.
    layout = ShardLayout(
        tensor_parallelism=tensor_parallelism,
        pipeline_parallelism=pipeline_parallelism,
        attention_layers=descriptor.attention_layers_per_shard(pipeline_parallelism),
        ssm_layers=descriptor.ssm_layers_per_shard(pipeline_parallelism),
        kv_heads=descriptor.kv_heads_per_shard(tensor_parallelism),
        padded_vocab_size=descriptor.padded_vocab_size(tensor_parallelism),
    )
    return DescriptorReport(
        model_name=model_name,
        descriptor=descriptor,
        layout=layout,
        kv_bytes_per_token=kv_cache_bytes_per_token(descriptor, tensor_parallelism,
                                                    pipeline_parallelism),
        kv_bytes_per_block=kv_cache_bytes_per_block(descriptor, tensor_parallelism,
                                                    pipeline_parallelism),
        state_bytes_per_sequence=ssm_state_bytes_per_sequence(descriptor,
                                                              pipeline_parallelism),
    )
