import pytest

from model_descriptor.errors import InvalidConfiguration
from model_descriptor.variants import LayerType
from model_descriptor.variants import parse_layer_types


def test_parse_layer_types():
    assert parse_layer_types(["attention", "Recurrent"]) == (LayerType.ATTENTION,
                                                             LayerType.RECURRENT)


def test_parse_layer_types_rejects_unknown():
    with pytest.raises(InvalidConfiguration) as excinfo:
        parse_layer_types(["attention", "mlp"])
    assert "index 1" in excinfo.value.details
