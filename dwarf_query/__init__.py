"""dwarf_query - typed reads of guest memory using DWARF-derived type metadata."""

from .core import (
    BufferMemory,
    LoadReport,
    MemberDescriptor,
    MemoryProvider,
    MetadataLoader,
    PrimitiveKind,
    PrimitiveValue,
    ProcessMemory,
    StructuredType,
    TypeCategory,
    TypedMemoryReader,
    TypeRegistry,
    element_count,
    read_member,
)
from .errors import (
    DwarfQueryError,
    InvariantViolationError,
    MalformedMetadataError,
    MemoryAccessError,
    RegistryFrozenError,
    UnsupportedTypeError,
)
from .session import AnalysisSession

__version__ = "1.0.0"

__all__ = [
    'AnalysisSession',
    'BufferMemory',
    'LoadReport',
    'MemberDescriptor',
    'MemoryProvider',
    'MetadataLoader',
    'PrimitiveKind',
    'PrimitiveValue',
    'ProcessMemory',
    'StructuredType',
    'TypeCategory',
    'TypedMemoryReader',
    'TypeRegistry',
    'element_count',
    'read_member',
    'DwarfQueryError',
    'InvariantViolationError',
    'MalformedMetadataError',
    'MemoryAccessError',
    'RegistryFrozenError',
    'UnsupportedTypeError',
]
