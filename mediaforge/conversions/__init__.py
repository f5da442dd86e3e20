"""Media descriptors and conversion declarations."""

from mediaforge.conversions.models import (
    ConversionDefinition,
    ConversionSet,
    Manipulation,
    MediaDescriptor,
    MediaType,
)
from mediaforge.conversions.registry import ConversionModel, ConversionRegistry

__all__ = [
    "ConversionDefinition",
    "ConversionModel",
    "ConversionRegistry",
    "ConversionSet",
    "Manipulation",
    "MediaDescriptor",
    "MediaType",
]
