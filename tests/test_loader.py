import pytest
from transformers import PretrainedConfig

from model_descriptor.errors import InvalidConfiguration
from model_descriptor.loader import LoaderInputs
from model_descriptor.loader import descriptor_from_config
from model_descriptor.lora import LoraModuleType
from model_descriptor.medusa import DEFAULT_MEDUSA_CHOICES
from model_descriptor.quantization import QuantMode
from model_descriptor.variants import LayerType
from model_descriptor.variants import ModelVariant


class TinyLlamaConfig(PretrainedConfig):
    model_type = "llama"

    def __init__(self):
        super().__init__()
        self.vocab_size = 32000
        self.hidden_size = 256
        self.num_hidden_layers = 4
        self.num_attention_heads = 8
        self.num_key_value_heads = 2
        self.intermediate_size = 688
        self.max_position_embeddings = 2048
        self.rope_theta = 10000.0
        self.torch_dtype = "bfloat16"


class NestedWrapperConfig(PretrainedConfig):
    model_type = "llava"

    def __init__(self):
        super().__init__()
        self.text_config = TinyLlamaConfig()


class TinyMambaConfig(PretrainedConfig):
    model_type = "mamba"

    def __init__(self):
        super().__init__()
        self.vocab_size = 50280
        self.hidden_size = 768
        self.num_hidden_layers = 24
        self.state_size = 16
        self.conv_kernel = 4
        self.expand = 2


class TinyRecurrentGemmaConfig(PretrainedConfig):
    model_type = "recurrent_gemma"

    def __init__(self):
        super().__init__()
        self.vocab_size = 256000
        self.hidden_size = 2560
        self.num_hidden_layers = 26
        self.num_attention_heads = 10
        self.num_key_value_heads = 1
        self.head_dim = 256
        self.lru_width = 2560
        self.conv1d_width = 4
        self.block_types = ["recurrent", "recurrent", "attention"]
        self.rope_theta = 10000.0


def _inputs(**overrides) -> LoaderInputs:
    return LoaderInputs(model_id="local", **overrides)


def test_transformer_config():
    descriptor = descriptor_from_config(TinyLlamaConfig(), _inputs())
    assert descriptor.variant is ModelVariant.GPT
    assert descriptor.num_attention_layers == 4
    assert descriptor.num_kv_heads == 2
    assert descriptor.size_per_head == 32
    assert descriptor.mlp_hidden_size == 688
    assert descriptor.dtype.name == "bfloat16"
    assert descriptor.max_sequence_len == 2048
    assert descriptor.max_input_len == 2048
    assert not descriptor.use_position_embedding
    assert descriptor.supports_inflight_batching


def test_nested_text_config():
    descriptor = descriptor_from_config(NestedWrapperConfig(), _inputs())
    assert descriptor.hidden_size == 256
    assert descriptor.num_kv_heads == 2


def test_mamba_config():
    descriptor = descriptor_from_config(TinyMambaConfig(), _inputs())
    assert descriptor.variant is ModelVariant.MAMBA
    assert descriptor.num_attention_layers == 0
    assert descriptor.ssm_layers_per_shard(2) == 12
    assert descriptor.mamba_params.d_state == 16
    assert descriptor.mamba_params.inner_size(descriptor.hidden_size) == 1536
    assert descriptor.supports_inflight_batching


def test_recurrent_gemma_layer_pattern():
    descriptor = descriptor_from_config(TinyRecurrentGemmaConfig(), _inputs())
    assert descriptor.variant is ModelVariant.RECURRENT_GEMMA
    assert len(descriptor.layer_types) == 26
    assert descriptor.layer_types[:3] == (LayerType.RECURRENT, LayerType.RECURRENT,
                                          LayerType.ATTENTION)
    assert descriptor.num_attention_layers == 8
    assert descriptor.num_ssm_layers == 18
    assert descriptor.num_recurrent_layers == 18
    assert descriptor.size_per_head == 256
    assert descriptor.rnn_params.d_conv == 4
    assert descriptor.is_transformer_based and descriptor.is_ssm_based


def test_kv_cache_override():
    descriptor = descriptor_from_config(TinyLlamaConfig(),
                                        _inputs(kv_cache_dtype="fp8"))
    assert descriptor.quant_mode == QuantMode.FP8_KV_CACHE
    assert descriptor.effective_kv_dtype.name == "float8_e4m3fn"


def test_lora_and_medusa_inputs():
    inputs = _inputs(lora_target_modules=["attn_qkv", "attn_dense"],
                     max_lora_rank=64,
                     medusa_choices=[list(c) for c in DEFAULT_MEDUSA_CHOICES])
    descriptor = descriptor_from_config(TinyLlamaConfig(), inputs)
    assert descriptor.uses_lora
    assert [m.module_type for m in descriptor.lora_modules] == [
        LoraModuleType.ATTN_QKV, LoraModuleType.ATTN_DENSE
    ]
    assert descriptor.lora_modules[0].out_dim == 256 + 2 * 2 * 32
    assert descriptor.uses_medusa
    assert descriptor.max_draft_len == len(DEFAULT_MEDUSA_CHOICES)
    assert descriptor.max_tokens_per_step == len(DEFAULT_MEDUSA_CHOICES) + 1


def test_missing_hidden_size_is_invalid():
    config = PretrainedConfig()
    config.vocab_size = 10
    with pytest.raises(InvalidConfiguration) as excinfo:
        descriptor_from_config(config, _inputs())
    assert excinfo.value.field == "hidden_size"


def test_uneven_head_split_fails_at_build():
    config = TinyLlamaConfig()
    config.num_attention_heads = 7
    with pytest.raises(InvalidConfiguration):
        descriptor_from_config(config, _inputs())


@pytest.mark.parametrize("kv_cache_dtype, expected", [
    ("auto", QuantMode.NONE),
    ("", QuantMode.NONE),
    ("fp8_e4m3", QuantMode.FP8_KV_CACHE),
    ("fp8_e5m2", QuantMode.FP8_KV_CACHE),
    ("int8", QuantMode.INT8_KV_CACHE),
])
def test_kv_cache_dtype_spellings(kv_cache_dtype, expected):
    descriptor = descriptor_from_config(TinyLlamaConfig(),
                                        _inputs(kv_cache_dtype=kv_cache_dtype))
    assert descriptor.quant_mode == expected


def test_auto_dtype_falls_back_to_config():
    descriptor = descriptor_from_config(TinyLlamaConfig(), _inputs(dtype="auto"))
    assert descriptor.dtype.name == "bfloat16"


@pytest.mark.parametrize("overrides, field", [
    ({"kv_cache_dtype": "fp4"}, "kv_cache_dtype"),
    ({"dtype": "float128"}, "dtype"),
])
def test_unknown_dtype_override_is_invalid(overrides, field):
    with pytest.raises(InvalidConfiguration) as excinfo:
        descriptor_from_config(TinyLlamaConfig(), _inputs(**overrides))
    assert excinfo.value.field == field


def test_float64_config_dtype():
    config = TinyLlamaConfig()
    config.torch_dtype = "float64"
    descriptor = descriptor_from_config(config, _inputs())
    assert descriptor.dtype.bits == 64
