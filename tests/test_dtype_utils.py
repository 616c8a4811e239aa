import pytest
import torch

from model_descriptor.dtype_utils import FLOAT8
from model_descriptor.dtype_utils import INT8
from model_descriptor.dtype_utils import bytes_per_element
from model_descriptor.dtype_utils import normalise_dtype


def test_normalise_aliases():
    assert normalise_dtype("fp16").name == "float16"
    assert normalise_dtype("BF16").bytes == 2
    assert normalise_dtype("fp8") is FLOAT8
    assert normalise_dtype("torch.int8") is INT8


def test_normalise_torch_dtype():
    assert normalise_dtype(torch.bfloat16).name == "bfloat16"
    assert normalise_dtype(torch.zeros(1, dtype=torch.float32)).bits == 32


def test_bytes_per_element():
    assert bytes_per_element("int4") == 0.5
    assert bytes_per_element(FLOAT8) == 1


def test_unknown_dtype_rejected():
    with pytest.raises(ValueError):
        normalise_dtype("float128")
    with pytest.raises(TypeError):
        normalise_dtype(3.5)


def test_wide_and_fp8_aliases():
    assert normalise_dtype(torch.float64).bits == 64
    assert normalise_dtype("float64").name == "float64"
    assert normalise_dtype("int16").bytes == 2
    assert normalise_dtype("fp8_e4m3") is FLOAT8
    assert normalise_dtype("fp8_e5m2").name == "float8_e5m2"
