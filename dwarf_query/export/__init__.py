"""Export functionality."""

from .json_exporter import RegistryExporter
from .schema import DOCUMENT_SCHEMA, FLAT_FORMAT_VERSION

__all__ = [
    'RegistryExporter',
    'DOCUMENT_SCHEMA',
    'FLAT_FORMAT_VERSION',
]
