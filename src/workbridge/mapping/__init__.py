"""Type mapping between platform vocabularies."""

from .type_mapper import (
    AZURE_TYPES,
    TypeMappingInput,
    TypeMappingResult,
    map_type,
    normalize_type,
)

__all__ = [
    'AZURE_TYPES',
    'TypeMappingInput',
    'TypeMappingResult',
    'map_type',
    'normalize_type',
]
