from __future__ import annotations

import pytest

from model_descriptor.descriptor import ModelDescriptorBuilder
from model_descriptor.variants import MambaParams
from model_descriptor.variants import ModelVariant


@pytest.fixture
def gpt_builder() -> ModelDescriptorBuilder:
    """GPT-2 medium sized builder with no capabilities enabled."""
    return ModelDescriptorBuilder(vocab_size=50257,
                                  num_attention_layers=24,
                                  num_ssm_layers=0,
                                  num_heads=16,
                                  hidden_size=2048,
                                  dtype="fp16")


@pytest.fixture
def mamba_builder() -> ModelDescriptorBuilder:
    builder = ModelDescriptorBuilder(vocab_size=50280,
                                     num_attention_layers=0,
                                     num_ssm_layers=48,
                                     num_heads=1,
                                     hidden_size=1536,
                                     dtype="bf16")
    builder.variant = ModelVariant.MAMBA
    builder.mamba_params = MambaParams(d_state=16, d_conv=4, expand=2)
    return builder
