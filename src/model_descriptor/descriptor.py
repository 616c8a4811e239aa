"""The model capability descriptor and its build-time staging object.

A :class:`ModelDescriptorBuilder` is populated once while an engine is being
built. :meth:`ModelDescriptorBuilder.build` validates it and returns a frozen
:class:`ModelDescriptor`, which the scheduler, cache allocator and kernel
dispatch read concurrently for the rest of the process lifetime. Every derived
value is a pure function of the stored fields and is never cached.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from .dtype_utils import FLOAT8
from .dtype_utils import INT8
from .dtype_utils import ScalarType
from .dtype_utils import normalise_dtype
from .errors import InvalidConfiguration
from .lora import LoraModule
from .medusa import MedusaModule
from .quantization import QuantMode
from .variants import LayerType
from .variants import MambaParams
from .variants import ModelVariant
from .variants import RnnParams

logger = logging.getLogger(__name__)


def _check_shard_factor(shard_factor: int) -> None:
    if shard_factor < 1:
        raise InvalidConfiguration("shard_factor",
                                   f"must be >= 1, got {shard_factor}")


@dataclass(frozen=True)
class ModelDescriptor:
    """Static and derived properties of a built generative-model graph."""

    vocab_size: int
    num_attention_layers: int
    num_ssm_layers: int
    num_heads: int
    hidden_size: int
    dtype: ScalarType
    num_kv_heads: int | None = None
    size_per_head: int | None = None
    variant: ModelVariant = ModelVariant.GPT

    # Plugin / kernel availability.
    use_gpt_attention_plugin: bool = False
    use_mamba_conv1d_plugin: bool = False
    use_packed_input: bool = False
    use_paged_kv_cache: bool = False
    use_paged_state: bool = False
    use_context_fmha_for_generation: bool = False
    use_paged_context_fmha: bool = False
    use_custom_all_reduce: bool = False
    use_xqa: bool = False
    use_lora_plugin: bool = False
    compute_context_logits: bool = False
    compute_generation_logits: bool = False

    # Encoder / encoder-decoder models.
    use_cross_attention: bool = False
    use_position_embedding: bool = True
    use_token_type_embedding: bool = False

    # Serving limits.
    tokens_per_block: int = 64
    max_batch_size: int = 0
    max_beam_width: int = 0
    max_input_len: int = 0
    max_sequence_len: int = 0
    max_num_tokens: int | None = None
    max_prompt_embedding_table_size: int = 0
    max_draft_len: int = 0
    mlp_hidden_size: int = 0
    ffn_hidden_size: int = 0
    max_lora_rank: int = 0

    quant_mode: QuantMode = QuantMode.NONE

    medusa_module: MedusaModule | None = None
    mamba_params: MambaParams | None = None
    rnn_params: RnnParams | None = None
    lora_modules: tuple[LoraModule, ...] = ()
    layer_types: tuple[LayerType, ...] = ()

    def __post_init__(self) -> None:
        # Frozen: derived defaults are written through object.__setattr__.
        object.__setattr__(self, "dtype", normalise_dtype(self.dtype))
        object.__setattr__(self, "quant_mode", QuantMode(self.quant_mode))
        object.__setattr__(self, "lora_modules", tuple(self.lora_modules))
        object.__setattr__(self, "layer_types", tuple(self.layer_types))
        # Remember which fields were derived so to_builder() leaves them unset.
        derived = frozenset(name for name in _DERIVED_FIELDS
                            if getattr(self, name) is None)
        object.__setattr__(self, "_derived_fields", derived)
        if self.num_kv_heads is None:
            object.__setattr__(self, "num_kv_heads", self.num_heads)
        if self.size_per_head is None:
            size_per_head = (self.hidden_size // self.num_heads
                             if self.num_heads > 0 else 0)
            object.__setattr__(self, "size_per_head", size_per_head)

    # Parallel-shard accessors ------------------------------------------------

    def attention_layers_per_shard(self, shard_factor: int = 1) -> int:
        """Attention layers owned by each of ``shard_factor`` pipeline stages."""
        _check_shard_factor(shard_factor)
        if self.num_attention_layers % shard_factor:
            raise InvalidConfiguration(
                "num_attention_layers",
                f"{self.num_attention_layers} layers cannot be split evenly "
                f"across {shard_factor} shards")
        return self.num_attention_layers // shard_factor

    def ssm_layers_per_shard(self, shard_factor: int = 1) -> int:
        """State-space layers owned by each of ``shard_factor`` pipeline stages."""
        _check_shard_factor(shard_factor)
        if self.num_ssm_layers % shard_factor:
            raise InvalidConfiguration(
                "num_ssm_layers",
                f"{self.num_ssm_layers} layers cannot be split evenly "
                f"across {shard_factor} shards")
        return self.num_ssm_layers // shard_factor

    def padded_vocab_size(self, shard_factor: int = 1) -> int:
        """Vocabulary size rounded up to a multiple of ``shard_factor``."""
        return (self.vocab_size + shard_factor - 1) // shard_factor * shard_factor

    def kv_heads_per_shard(self, tensor_parallelism: int = 1) -> int:
        # KV heads are replicated when there are fewer heads than shards.
        _check_shard_factor(tensor_parallelism)
        return (self.num_kv_heads + tensor_parallelism - 1) // tensor_parallelism

    # Capability derivations --------------------------------------------------

    @property
    def is_transformer_based(self) -> bool:
        return self.variant.is_transformer_based

    @property
    def is_ssm_based(self) -> bool:
        return self.variant.is_ssm_based

    @property
    def supports_inflight_batching(self) -> bool:
        """Whether requests may join and leave a running batch at any step."""
        attention_path = (self.is_transformer_based
                          and self.use_gpt_attention_plugin
                          and self.use_packed_input and self.use_paged_kv_cache)
        ssm_path = (self.is_ssm_based and self.use_mamba_conv1d_plugin
                    and self.use_packed_input and self.use_paged_state)
        return attention_path or ssm_path

    @property
    def effective_kv_dtype(self) -> ScalarType:
        """Element type of the key/value cache.

        An FP8 cache wins over an INT8 cache when both bits are set; without
        either the cache is stored in the model dtype.
        """
        if self.quant_mode.has_fp8_kv_cache():
            return FLOAT8
        if self.quant_mode.has_int8_kv_cache():
            return INT8
        return self.dtype

    @property
    def max_tokens_per_step(self) -> int:
        return self.max_draft_len + 1

    # Extended features -------------------------------------------------------

    @property
    def uses_prompt_tuning(self) -> bool:
        return self.max_prompt_embedding_table_size > 0

    @property
    def uses_medusa(self) -> bool:
        return self.medusa_module is not None

    @property
    def has_mamba_params(self) -> bool:
        return self.mamba_params is not None

    @property
    def has_rnn_params(self) -> bool:
        return self.rnn_params is not None

    @property
    def uses_lora(self) -> bool:
        return self.use_lora_plugin and bool(self.lora_modules)

    @property
    def num_recurrent_layers(self) -> int:
        return sum(1 for layer in self.layer_types if layer is LayerType.RECURRENT)

    def to_builder(self) -> "ModelDescriptorBuilder":
        """Return a mutable copy for further build-time changes."""
        builder = ModelDescriptorBuilder(self.vocab_size,
                                         self.num_attention_layers,
                                         self.num_ssm_layers, self.num_heads,
                                         self.hidden_size, self.dtype)
        for name, value in _field_values(self).items():
            if name in self._derived_fields:
                value = None
            elif isinstance(value, tuple) and name in _LIST_FIELDS:
                value = list(value)
            setattr(builder, name, value)
        return builder


_LIST_FIELDS = frozenset({"lora_modules", "layer_types"})
_DERIVED_FIELDS = ("num_kv_heads", "size_per_head")


def _field_values(obj: Any) -> dict[str, Any]:
    return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}


@dataclass
class ModelDescriptorBuilder:
    """Mutable staging object for a :class:`ModelDescriptor`.

    Fields mirror the descriptor. It is populated by a single thread during
    engine build; :meth:`build` validates it and returns the frozen snapshot.
    """

    vocab_size: int
    num_attention_layers: int
    num_ssm_layers: int
    num_heads: int
    hidden_size: int
    dtype: Any
    num_kv_heads: int | None = None
    size_per_head: int | None = None
    variant: ModelVariant = ModelVariant.GPT

    use_gpt_attention_plugin: bool = False
    use_mamba_conv1d_plugin: bool = False
    use_packed_input: bool = False
    use_paged_kv_cache: bool = False
    use_paged_state: bool = False
    use_context_fmha_for_generation: bool = False
    use_paged_context_fmha: bool = False
    use_custom_all_reduce: bool = False
    use_xqa: bool = False
    use_lora_plugin: bool = False
    compute_context_logits: bool = False
    compute_generation_logits: bool = False

    use_cross_attention: bool = False
    use_position_embedding: bool = True
    use_token_type_embedding: bool = False

    tokens_per_block: int = 64
    max_batch_size: int = 0
    max_beam_width: int = 0
    max_input_len: int = 0
    max_sequence_len: int = 0
    max_num_tokens: int | None = None
    max_prompt_embedding_table_size: int = 0
    max_draft_len: int = 0
    mlp_hidden_size: int = 0
    ffn_hidden_size: int = 0
    max_lora_rank: int = 0

    quant_mode: QuantMode = QuantMode.NONE

    medusa_module: MedusaModule | None = None
    mamba_params: MambaParams | None = None
    rnn_params: RnnParams | None = None
    lora_modules: list[LoraModule] = field(default_factory=list)
    layer_types: list[LayerType] = field(default_factory=list)

    @property
    def resolved_size_per_head(self) -> int:
        """Head width the built descriptor will carry for the current fields."""
        if self.size_per_head is not None:
            return self.size_per_head
        return self.hidden_size // self.num_heads if self.num_heads > 0 else 0

    def validate(self) -> None:
        """Raise :class:`InvalidConfiguration` on any violated precondition."""

        if self.num_heads <= 0:
            raise InvalidConfiguration("num_heads",
                                       f"must be positive, got {self.num_heads}")
        if self.hidden_size % self.num_heads:
            raise InvalidConfiguration(
                "hidden_size",
                f"{self.hidden_size} is not divisible by {self.num_heads} heads")
        if self.num_kv_heads is not None and self.num_kv_heads <= 0:
            raise InvalidConfiguration(
                "num_kv_heads", f"must be positive, got {self.num_kv_heads}")
        for name in ("vocab_size", "hidden_size"):
            if getattr(self, name) <= 0:
                raise InvalidConfiguration(
                    name, f"must be positive, got {getattr(self, name)}")
        for name in ("num_attention_layers", "num_ssm_layers", "max_draft_len",
                     "max_prompt_embedding_table_size"):
            if getattr(self, name) < 0:
                raise InvalidConfiguration(
                    name, f"must be non-negative, got {getattr(self, name)}")
        if not self.variant.is_ssm_based:
            if self.mamba_params is not None:
                raise InvalidConfiguration(
                    "mamba_params",
                    f"state-space params given for {self.variant.value} model")
            if self.rnn_params is not None:
                raise InvalidConfiguration(
                    "rnn_params",
                    f"recurrent params given for {self.variant.value} model")

    def build(self) -> ModelDescriptor:
        self.validate()
        descriptor = ModelDescriptor(**_field_values(self))
        logger.debug("Built %s descriptor: %d attention / %d ssm layers, dtype %s",
                     descriptor.variant.value, descriptor.num_attention_layers,
                     descriptor.num_ssm_layers, descriptor.dtype)
        return descriptor
