"""Model capability descriptor package."""

from .descriptor import ModelDescriptor
from .descriptor import ModelDescriptorBuilder
from .errors import InvalidConfiguration
from .quantization import QuantMode
from .variants import LayerType
from .variants import ModelVariant

__all__ = [
    "InvalidConfiguration",
    "LayerType",
    "ModelDescriptor",
    "ModelDescriptorBuilder",
    "ModelVariant",
    "QuantMode",
]
