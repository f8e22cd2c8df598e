"""JSON exporter for type registries.

Writes the registry in the flat document format so that it can be
reloaded later without the original dwarf2json output.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from ..core.type_registry import TypeRegistry
from ..core.types import MemberDescriptor, StructuredType, TypeCategory
from .schema import DOCUMENT_SCHEMA

logger = logging.getLogger(__name__)


def _endian(is_little_endian: bool) -> str:
    return 'little' if is_little_endian else 'big'


class RegistryExporter:
    """Exports a TypeRegistry to the flat JSON format."""

    def __init__(self, registry: TypeRegistry):
        """Initialize the exporter.

        Args:
            registry: Registry to export
        """
        self._registry = registry

    def export(self, filepath: Path, pretty_print: bool = True) -> bool:
        """Export the registry to a JSON file.

        Args:
            filepath: Path to save the JSON file
            pretty_print: Indent the output

        Returns:
            True if export succeeded
        """
        filepath = Path(filepath)
        try:
            data = self.to_document()

            filepath.parent.mkdir(parents=True, exist_ok=True)
            indent = 2 if pretty_print else None

            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=indent)

            logger.info(f"Exported {len(data['structs'])} types to {filepath}")
            return True

        except OSError as e:
            logger.error(f"Export failed: {e}")
            return False

    def to_document(self) -> Dict[str, Any]:
        """Build the flat document for the whole registry."""
        return {
            'version': DOCUMENT_SCHEMA['version'],
            'pointer_size': self._registry.pointer_size,
            'structs': [
                self._export_struct(s) for s in self._registry.struct_table.values()
            ],
            'functions': {
                f"0x{address:x}": name
                for address, name in self._registry.function_table.items()
            },
        }

    def _export_struct(self, struct_type: StructuredType) -> Dict[str, Any]:
        members: List[Dict[str, Any]] = [self._export_member(m) for m in struct_type.members]
        return {
            'name': struct_type.name,
            'size': struct_type.size_bytes,
            'members': members,
        }

    def _export_member(self, member: MemberDescriptor) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            'name': member.name,
            'offset': member.offset_bytes,
            'size': member.size_bytes,
            'endian': _endian(member.is_little_endian),
            'signed': member.is_signed,
        }

        if member.is_pointer or member.is_double_pointer:
            target = {'type': member.category.value, 'name': member.pointer_target_name}
            if member.is_double_pointer:
                target = {'type': 'pointer', 'target': target}
            entry['type'] = 'pointer'
            entry['target'] = target
        elif member.is_bitfield:
            entry['type'] = 'bitfield'
            entry['bit_position'] = member.bit_position
            entry['bit_length'] = member.bit_length
        elif member.category is TypeCategory.ARRAY:
            entry['type'] = 'array'
            entry['element'] = {
                'type': member.array_element_category.value,
                'name': member.array_element_name,
                'size': member.array_element_size_bytes,
                'endian': _endian(member.is_little_endian),
            }
        else:
            entry['type'] = member.category.value

        if not member.is_valid:
            entry['valid'] = False
        return entry
