"""Type model, registry, metadata loading and typed memory reads."""

from .types import (
    NO_TARGET,
    MemberDescriptor,
    PrimitiveKind,
    PrimitiveValue,
    StructuredType,
    TypeCategory,
    element_count,
)
from .type_registry import TypeRegistry
from .metadata_loader import LoadReport, MetadataLoader
from .memory import BufferMemory, MemoryProvider, ProcessMemory
from .typed_reader import TypedMemoryReader, read_member

__all__ = [
    'NO_TARGET',
    'MemberDescriptor',
    'PrimitiveKind',
    'PrimitiveValue',
    'StructuredType',
    'TypeCategory',
    'element_count',
    'TypeRegistry',
    'LoadReport',
    'MetadataLoader',
    'BufferMemory',
    'MemoryProvider',
    'ProcessMemory',
    'TypedMemoryReader',
    'read_member',
]
