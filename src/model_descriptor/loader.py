"""Populate a :class:`ModelDescriptor` from Hugging Face model metadata."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Sequence
from typing import Set

from transformers import AutoConfig
from transformers import PretrainedConfig

from .descriptor import ModelDescriptor
from .descriptor import ModelDescriptorBuilder
from .dtype_utils import ScalarType
from .dtype_utils import normalise_dtype
from .errors import InvalidConfiguration
from .lora import create_lora_modules
from .medusa import MedusaModule
from .quantization import QuantMode
from .quantization import quant_mode_from_config
from .variants import LayerType
from .variants import MambaParams
from .variants import ModelVariant
from .variants import RnnParams
from .variants import parse_layer_types

logger = logging.getLogger(__name__)

_NESTED_CONFIG_KEYS: Sequence[str] = (
    "text_config",
    "language_model_config",
    "llm_config",
    "decoder",
)

_DEFAULT_DTYPE = normalise_dtype("float16")


@dataclass
class LoaderInputs:
    """Build-time settings that a model config does not carry."""

    model_id: str
    revision: str | None = None
    trust_remote_code: bool = False
    dtype: str | None = None
    kv_cache_dtype: str | None = None

    max_batch_size: int = 1
    max_beam_width: int = 1
    max_input_len: int = 0
    max_sequence_len: int | None = None
    max_num_tokens: int | None = None
    tokens_per_block: int = 64
    max_prompt_embedding_table_size: int = 0
    max_draft_len: int = 0

    use_gpt_attention_plugin: bool = True
    use_mamba_conv1d_plugin: bool = True
    use_packed_input: bool = True
    use_paged_kv_cache: bool = True
    use_paged_state: bool = True
    use_context_fmha_for_generation: bool = False
    use_paged_context_fmha: bool = False
    use_custom_all_reduce: bool = False
    use_xqa: bool = False
    gather_context_logits: bool = False
    gather_generation_logits: bool = False

    lora_target_modules: list[str] = field(default_factory=list)
    max_lora_rank: int = 0
    medusa_choices: list[list[int]] | None = None
    num_medusa_heads: int = 4


def _resolve_config_attr(config: PretrainedConfig,
                         names: Sequence[str],
                         visited: Set[int] | None = None) -> Any:
    """Look up the first present attribute, descending into nested configs."""

    if visited is None:
        visited = set()
    if id(config) in visited:
        return None
    visited.add(id(config))

    for name in names:
        value = getattr(config, name, None)
        if value is not None:
            return value

    for nested_key in _NESTED_CONFIG_KEYS:
        nested = getattr(config, nested_key, None)
        if nested is None or isinstance(nested, (str, bytes, dict)):
            continue
        result = _resolve_config_attr(nested, names, visited)
        if result is not None:
            return result
    return None


def _require_int(config: PretrainedConfig, names: Sequence[str]) -> int:
    value = _resolve_config_attr(config, names)
    if value is None:
        raise InvalidConfiguration(names[0],
                                   "model config does not expose this field")
    return int(value)


def _optional_int(config: PretrainedConfig, names: Sequence[str],
                  default: int = 0) -> int:
    value = _resolve_config_attr(config, names)
    return default if value is None else int(value)


def _detect_variant(config: PretrainedConfig) -> ModelVariant:
    model_type = str(getattr(config, "model_type", "") or "").lower()
    if model_type.startswith("mamba") or model_type == "falcon_mamba":
        return ModelVariant.MAMBA
    if model_type in ("recurrent_gemma", "recurrentgemma"):
        return ModelVariant.RECURRENT_GEMMA
    if model_type in ("chatglm", "glm"):
        return ModelVariant.GLM
    return ModelVariant.GPT


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str)
                             and value.strip().lower() in ("", "auto"))


def _checked_dtype(value: Any, field_name: str) -> ScalarType:
    try:
        return normalise_dtype(value)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(field_name, str(exc)) from exc


def _model_dtype(config: PretrainedConfig, override: str | None) -> ScalarType:
    if not _is_unset(override):
        return _checked_dtype(override, "dtype")
    for attr in ("dtype", "torch_dtype"):
        value = _resolve_config_attr(config, (attr, ))
        if not _is_unset(value):
            return _checked_dtype(value, "dtype")
    logger.debug("Config has no dtype, defaulting to %s", _DEFAULT_DTYPE)
    return _DEFAULT_DTYPE


def _layer_types(config: PretrainedConfig, num_layers: int) -> tuple[LayerType, ...]:
    block_types = getattr(config, "block_types", None)
    if not block_types:
        return ()
    # The block pattern repeats until every layer is tagged.
    pattern = list(block_types)
    tags = [pattern[i % len(pattern)] for i in range(num_layers)]
    return parse_layer_types(tags)


def _uses_learned_positions(config: PretrainedConfig) -> bool:
    if getattr(config, "rope_theta", None) is not None:
        return False
    if getattr(config, "rotary_dim", None) or getattr(config, "rotary_pct", None):
        return False
    kind = getattr(config, "position_embedding_type", "absolute")
    return kind in (None, "absolute", "learned_absolute")


def _quant_mode(config: PretrainedConfig, kv_cache_dtype: str | None) -> QuantMode:
    try:
        mode = quant_mode_from_config(config)
    except ValueError as exc:
        raise InvalidConfiguration("quant_mode", str(exc)) from exc
    if not _is_unset(kv_cache_dtype):
        kv = _checked_dtype(kv_cache_dtype, "kv_cache_dtype")
        mode &= ~(QuantMode.INT8_KV_CACHE | QuantMode.FP8_KV_CACHE)
        if kv.is_float8:
            mode |= QuantMode.FP8_KV_CACHE
        elif kv.name == "int8":
            mode |= QuantMode.INT8_KV_CACHE
    return mode


def descriptor_from_config(config: PretrainedConfig,
                           inputs: LoaderInputs) -> ModelDescriptor:
    """Translate a model config plus build settings into a descriptor."""

    variant = _detect_variant(config)
    vocab_size = _require_int(config, ("vocab_size", "padded_vocab_size"))
    hidden_size = _require_int(config, ("hidden_size", "n_embd", "d_model"))
    num_layers = _require_int(config, ("num_hidden_layers", "n_layer",
                                       "num_layers"))
    num_heads = _optional_int(config, ("num_attention_heads", "n_head",
                                       "num_heads"), default=0)
    if num_heads == 0 and variant is ModelVariant.MAMBA:
        # Pure state-space models have no attention heads.
        num_heads = 1

    builder = ModelDescriptorBuilder(
        vocab_size=vocab_size,
        num_attention_layers=num_layers,
        num_ssm_layers=0,
        num_heads=num_heads,
        hidden_size=hidden_size,
        dtype=_model_dtype(config, inputs.dtype),
    )
    builder.variant = variant
    builder.num_kv_heads = _optional_int(
        config, ("num_key_value_heads", "num_kv_heads", "multi_query_group_num"),
        default=num_heads)
    head_dim = _resolve_config_attr(config, ("head_dim", "kv_channels"))
    if head_dim is not None:
        builder.size_per_head = int(head_dim)

    builder.mlp_hidden_size = _optional_int(
        config, ("intermediate_size", "ffn_hidden_size", "n_inner", "d_ff"),
        default=4 * hidden_size)

    if variant is ModelVariant.MAMBA:
        builder.num_attention_layers = 0
        builder.num_ssm_layers = num_layers
        builder.mamba_params = MambaParams(
            d_state=_optional_int(config, ("state_size", "d_state")),
            d_conv=_optional_int(config, ("conv_kernel", "d_conv")),
            expand=_optional_int(config, ("expand", )),
        )
    elif variant is ModelVariant.RECURRENT_GEMMA:
        layer_types = _layer_types(config, num_layers)
        builder.layer_types = list(layer_types)
        builder.num_attention_layers = layer_types.count(LayerType.ATTENTION)
        builder.num_ssm_layers = layer_types.count(LayerType.RECURRENT)
        builder.rnn_params = RnnParams(
            d_conv=_optional_int(config, ("conv1d_width", )),
            hidden_size=_optional_int(config, ("lru_width", ), default=hidden_size),
        )

    if getattr(config, "is_encoder_decoder", False):
        builder.use_cross_attention = True
        builder.ffn_hidden_size = hidden_size
    builder.use_position_embedding = (variant is not ModelVariant.MAMBA
                                      and _uses_learned_positions(config))
    builder.use_token_type_embedding = bool(getattr(config, "type_vocab_size", 0))

    builder.quant_mode = _quant_mode(config, inputs.kv_cache_dtype)

    builder.use_gpt_attention_plugin = inputs.use_gpt_attention_plugin
    builder.use_mamba_conv1d_plugin = inputs.use_mamba_conv1d_plugin
    builder.use_packed_input = inputs.use_packed_input
    builder.use_paged_kv_cache = inputs.use_paged_kv_cache
    builder.use_paged_state = inputs.use_paged_state
    builder.use_context_fmha_for_generation = inputs.use_context_fmha_for_generation
    builder.use_paged_context_fmha = inputs.use_paged_context_fmha
    builder.use_custom_all_reduce = inputs.use_custom_all_reduce
    builder.use_xqa = inputs.use_xqa
    builder.compute_context_logits = inputs.gather_context_logits
    builder.compute_generation_logits = inputs.gather_generation_logits

    max_positions = _optional_int(config, ("max_position_embeddings",
                                           "n_positions", "seq_length"))
    builder.tokens_per_block = inputs.tokens_per_block
    builder.max_batch_size = inputs.max_batch_size
    builder.max_beam_width = inputs.max_beam_width
    builder.max_sequence_len = inputs.max_sequence_len or max_positions
    builder.max_input_len = inputs.max_input_len or builder.max_sequence_len
    builder.max_num_tokens = inputs.max_num_tokens
    builder.max_prompt_embedding_table_size = inputs.max_prompt_embedding_table_size
    builder.max_draft_len = inputs.max_draft_len

    if inputs.lora_target_modules:
        builder.use_lora_plugin = True
        builder.max_lora_rank = inputs.max_lora_rank
        builder.lora_modules = create_lora_modules(
            inputs.lora_target_modules,
            hidden_size=hidden_size,
            mlp_hidden_size=builder.mlp_hidden_size,
            num_heads=num_heads,
            num_kv_heads=builder.num_kv_heads,
            size_per_head=builder.resolved_size_per_head,
        )

    if inputs.medusa_choices:
        medusa = MedusaModule.from_choices(inputs.medusa_choices,
                                           inputs.num_medusa_heads)
        builder.medusa_module = medusa
        builder.max_draft_len = medusa.max_draft_tokens

    return builder.build()


def _load_config(inputs: LoaderInputs) -> PretrainedConfig:
    return AutoConfig.from_pretrained(inputs.model_id,
                                      revision=inputs.revision,
                                      trust_remote_code=inputs.trust_remote_code)


def load_descriptor(inputs: LoaderInputs) -> ModelDescriptor:
    config = _load_config(inputs)
    logger.info("Loaded config for %s (model_type=%s)", inputs.model_id,
                getattr(config, "model_type", "unknown"))
    return descriptor_from_config(config, inputs)
