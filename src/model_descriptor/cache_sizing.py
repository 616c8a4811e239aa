"""Key/value cache and recurrent state footprint derived from a descriptor."""
from __future__ import annotations

from .descriptor import ModelDescriptor
from .dtype_utils import bytes_per_element


def kv_cache_bytes_per_token(descriptor: ModelDescriptor,
                             tensor_parallelism: int = 1,
                             pipeline_parallelism: int = 1) -> float:
    """Bytes one token occupies in the key/value cache of a single rank."""

    if descriptor.num_attention_layers == 0:
        return 0.0
    layers = descriptor.attention_layers_per_shard(pipeline_parallelism)
    kv_heads = descriptor.kv_heads_per_shard(tensor_parallelism)
    dtype_bytes = bytes_per_element(descriptor.effective_kv_dtype)
    # One key and one value vector per head.
    return 2 * layers * kv_heads * descriptor.size_per_head * dtype_bytes


def kv_cache_bytes_per_block(descriptor: ModelDescriptor,
                             tensor_parallelism: int = 1,
                             pipeline_parallelism: int = 1) -> float:
    per_token = kv_cache_bytes_per_token(descriptor, tensor_parallelism,
                                         pipeline_parallelism)
    return per_token * descriptor.tokens_per_block


def max_kv_cache_blocks(descriptor: ModelDescriptor) -> int:
    """Blocks needed to hold every sequence of a full batch at max length."""

    if descriptor.tokens_per_block <= 0:
        return 0
    blocks_per_seq = -(-descriptor.max_sequence_len // descriptor.tokens_per_block)
    return descriptor.max_batch_size * descriptor.max_beam_width * blocks_per_seq


def ssm_state_bytes_per_sequence(descriptor: ModelDescriptor,
                                 pipeline_parallelism: int = 1) -> float:
    """Recurrent state (convolution window plus hidden state) per sequence.

    Mamba layers keep ``(d_conv - 1) * d_inner`` conv entries and
    ``d_state * d_inner`` SSM entries; RNN layers keep ``(d_conv - 1) * width``
    conv entries plus a ``width`` hidden vector. Plain transformers have none.
    """

    if not descriptor.is_ssm_based:
        return 0.0
    dtype_bytes = bytes_per_element(descriptor.dtype)
    layers = descriptor.ssm_layers_per_shard(pipeline_parallelism)

    if descriptor.mamba_params is not None:
        params = descriptor.mamba_params
        inner = params.inner_size(descriptor.hidden_size)
        conv = max(params.d_conv - 1, 0) * inner
        state = params.d_state * inner
        return layers * (conv + state) * dtype_bytes

    if descriptor.rnn_params is not None:
        params = descriptor.rnn_params
        conv = max(params.d_conv - 1, 0) * params.hidden_size
        return layers * (conv + params.hidden_size) * dtype_bytes

    return 0.0
