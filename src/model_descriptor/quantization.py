"""Quantization metadata: the ``QuantMode`` bitset and HF config parsing."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any
from typing import Mapping

from transformers import PretrainedConfig

from .dtype_utils import ScalarType
from .dtype_utils import normalise_dtype

logger = logging.getLogger(__name__)


class QuantMode(enum.IntFlag):
    """Bitset describing weight, activation and cache quantization."""

    NONE = 0
    INT4_WEIGHTS = 1 << 0
    INT8_WEIGHTS = 1 << 1
    ACTIVATIONS = 1 << 2
    PER_CHANNEL = 1 << 3
    PER_TOKEN = 1 << 4
    PER_GROUP = 1 << 5
    INT8_KV_CACHE = 1 << 6
    FP8_KV_CACHE = 1 << 7
    FP8_QDQ = 1 << 8

    @classmethod
    def from_description(cls,
                         quantize_weights: bool = False,
                         quantize_activations: bool = False,
                         per_token: bool = False,
                         per_channel: bool = False,
                         per_group: bool = False,
                         use_int4_weights: bool = False,
                         use_int8_kv_cache: bool = False,
                         use_fp8_kv_cache: bool = False,
                         use_fp8_qdq: bool = False) -> "QuantMode":
        mode = cls.NONE
        if quantize_weights:
            mode |= cls.INT4_WEIGHTS if use_int4_weights else cls.INT8_WEIGHTS
        if quantize_activations:
            mode |= cls.ACTIVATIONS
        if per_channel:
            mode |= cls.PER_CHANNEL
        if per_token:
            mode |= cls.PER_TOKEN
        if per_group:
            mode |= cls.PER_GROUP
        if use_int8_kv_cache:
            mode |= cls.INT8_KV_CACHE
        if use_fp8_kv_cache:
            mode |= cls.FP8_KV_CACHE
        if use_fp8_qdq:
            mode |= cls.FP8_QDQ
        return mode

    def has_int8_kv_cache(self) -> bool:
        return bool(self & QuantMode.INT8_KV_CACHE)

    def has_fp8_kv_cache(self) -> bool:
        return bool(self & QuantMode.FP8_KV_CACHE)

    def has_kv_cache_quant(self) -> bool:
        return self.has_int8_kv_cache() or self.has_fp8_kv_cache()

    def is_weight_only(self) -> bool:
        weights = bool(self & (QuantMode.INT4_WEIGHTS | QuantMode.INT8_WEIGHTS))
        return weights and not self & QuantMode.ACTIVATIONS


@dataclass(frozen=True)
class QuantizationSpec:
    """Normalised quantization information read from a model config."""

    method: str | None
    weight_bits: float | None
    weight_dtype: ScalarType | None
    activation_dtype: ScalarType | None
    group_size: int | None
    kv_cache_dtype: ScalarType | None

    @property
    def is_quantized(self) -> bool:
        return self.method is not None

    def to_quant_mode(self) -> QuantMode:
        """Translate the parsed settings into the runtime bitset."""

        weight_is_float8 = bool(self.weight_dtype and self.weight_dtype.is_float8)
        int_weights = (self.weight_bits is not None and self.weight_bits <= 8
                       and not weight_is_float8)
        act_int8 = (self.activation_dtype is not None
                    and self.activation_dtype.bits <= 8
                    and not self.activation_dtype.is_float8)
        kv = self.kv_cache_dtype
        return QuantMode.from_description(
            quantize_weights=int_weights,
            quantize_activations=act_int8,
            per_group=int_weights and bool(self.group_size),
            per_channel=int_weights and not self.group_size,
            use_int4_weights=int_weights and self.weight_bits <= 4,
            use_int8_kv_cache=kv is not None and kv.name == "int8",
            use_fp8_kv_cache=kv is not None and kv.is_float8,
            use_fp8_qdq=weight_is_float8,
        )


def _first_group_entry(groups: Mapping[str, Any], *keys: str) -> dict[str, Any] | None:
    for group in groups.values():
        if not isinstance(group, Mapping):
            continue
        for key in keys:
            entry = group.get(key)
            if isinstance(entry, Mapping):
                return dict(entry)
    return None


def _group_dtype(entry: Mapping[str, Any]) -> str | None:
    kind = entry.get("type") or entry.get("dtype")
    bits = entry.get("num_bits") or entry.get("bits")
    if kind is None:
        return None
    kind = str(kind).strip().lower()
    if kind in {"float", "fp"} and bits is not None:
        return "float8_e4m3fn" if int(bits) == 8 else f"float{int(bits)}"
    if kind in {"int", "uint"} and bits is not None:
        return "int8" if int(bits) == 8 else "uint4"
    return kind


def _flatten_config_groups(quant_dict: dict[str, Any]) -> dict[str, Any]:
    """Lift compressed-tensors ``config_groups`` entries to the top level."""

    groups = quant_dict.get("config_groups")
    if not isinstance(groups, Mapping) or not groups:
        return quant_dict

    flattened = dict(quant_dict)
    weights = _first_group_entry(groups, "weights")
    if weights:
        bits = weights.get("num_bits") or weights.get("bits")
        flattened.setdefault("bits", bits)
        flattened.setdefault("weight_dtype", _group_dtype(weights))
        if weights.get("group_size") is not None:
            flattened.setdefault("group_size", weights["group_size"])
    activations = _first_group_entry(groups, "input_activations", "activations")
    if activations:
        flattened.setdefault("activation_dtype", _group_dtype(activations))
    return flattened


def _extract_quant_dict(config: PretrainedConfig) -> dict[str, Any] | None:
    for key in ("quantization_config", "compression_config"):
        value = getattr(config, key, None)
        if value is None:
            continue
        if hasattr(value, "to_dict"):
            return _flatten_config_groups(value.to_dict())
        if isinstance(value, Mapping):
            return _flatten_config_groups(dict(value))

    text_config = getattr(config, "text_config", None)
    if text_config is not None:
        return _extract_quant_dict(text_config)
    return None


def _optional_dtype(value: Any) -> ScalarType | None:
    if not value:
        return None
    try:
        return normalise_dtype(value)
    except ValueError:
        logger.debug("Ignoring unrecognised quantization dtype %r", value)
        return None


def _kv_cache_dtype(config: PretrainedConfig,
                    quant_dict: dict[str, Any] | None) -> ScalarType | None:
    candidate = getattr(config, "kv_cache_dtype", None)
    if candidate and candidate != "auto":
        return normalise_dtype(candidate)
    if not quant_dict:
        return None
    dtype = (quant_dict.get("kv_cache_dtype") or quant_dict.get("kv_dtype")
             or quant_dict.get("kv_cache_quant_algo"))
    if dtype:
        return normalise_dtype(dtype)
    kv_section = quant_dict.get("kv_cache_scheme") or quant_dict.get("kv_cache")
    if isinstance(kv_section, Mapping):
        return _optional_dtype(_group_dtype(kv_section))
    return None


def parse_quantization(config: PretrainedConfig) -> QuantizationSpec:
    """Collect quantization settings from a Hugging Face config."""

    quant_dict = _extract_quant_dict(config)
    kv_dtype = _kv_cache_dtype(config, quant_dict)
    if not quant_dict:
        return QuantizationSpec(None, None, None, None, None, kv_dtype)

    method = (quant_dict.get("quant_method") or quant_dict.get("method")
              or quant_dict.get("quant_algo"))
    if isinstance(method, str):
        method = method.lower()

    weight_dtype = _optional_dtype(quant_dict.get("weight_dtype"))
    bits = quant_dict.get("bits") or quant_dict.get("w_bit")
    if bits is not None:
        weight_bits = float(bits)
    elif weight_dtype is not None:
        weight_bits = weight_dtype.bits
    elif method in {"fp8", "fbgemm_fp8"}:
        weight_dtype = normalise_dtype("fp8")
        weight_bits = 8.0
    else:
        weight_bits = None

    group_size = quant_dict.get("group_size") or quant_dict.get("q_group_size")
    if isinstance(group_size, (int, float)) and group_size > 0:
        group_size = int(group_size)
    else:
        group_size = None

    return QuantizationSpec(
        method=method,
        weight_bits=weight_bits,
        weight_dtype=weight_dtype,
        activation_dtype=_optional_dtype(quant_dict.get("activation_dtype")),
        group_size=group_size,
        kv_cache_dtype=kv_dtype,
    )


def quant_mode_from_config(config: PretrainedConfig) -> QuantMode:
    mode = parse_quantization(config).to_quant_mode()
    logger.debug("Resolved quant mode %r", mode)
    return mode
