"""
Field schema: descriptors, dependency graph, registry and loader.
"""
from .models import FieldType, FieldValue, FieldDescriptor
from .registry import FieldRegistry, DependencyIndex
from .loader import FieldLoader, convert_field

__all__ = [
    "FieldType",
    "FieldValue",
    "FieldDescriptor",
    "FieldRegistry",
    "DependencyIndex",
    "FieldLoader",
    "convert_field",
]
