"""Shared fixtures for the dwarf_query test-suite."""

import sys
from pathlib import Path
from typing import Any, Dict

import pytest

ROOT = Path(__file__).resolve().parent.parent

root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from dwarf_query.core.metadata_loader import MetadataLoader  # noqa: E402
from dwarf_query.core.type_registry import TypeRegistry  # noqa: E402


class RecordingMemory:
    """Buffer-backed provider that records every read and can fail on demand."""

    def __init__(self, data: bytes = b"", base_address: int = 0, fail: bool = False):
        self.data = data
        self.base_address = base_address
        self.fail = fail
        self.reads = []

    def read_bytes(self, address: int, size: int):
        self.reads.append((address, size))
        if self.fail:
            return None
        start = address - self.base_address
        if start < 0 or start + size > len(self.data):
            return None
        return self.data[start:start + size]


@pytest.fixture
def registry() -> TypeRegistry:
    return TypeRegistry()


@pytest.fixture
def loader(registry: TypeRegistry) -> MetadataLoader:
    return MetadataLoader(registry)


@pytest.fixture
def recording_memory():
    return RecordingMemory


@pytest.fixture
def isf_document() -> Dict[str, Any]:
    """A small dwarf2json-style document for a 64-bit little-endian guest."""
    return {
        "metadata": {"format": "6.2.0", "producer": {"name": "dwarf2json"}},
        "base_types": {
            "int": {"kind": "int", "size": 4, "signed": True, "endian": "little"},
            "unsigned int": {"kind": "int", "size": 4, "signed": False, "endian": "little"},
            "long": {"kind": "int", "size": 8, "signed": True, "endian": "little"},
            "char": {"kind": "char", "size": 1, "signed": True, "endian": "little"},
            "_Bool": {"kind": "bool", "size": 1, "signed": False, "endian": "little"},
            "double": {"kind": "float", "size": 8, "signed": True, "endian": "little"},
            "void": {"kind": "void", "size": 0, "signed": False, "endian": "little"},
            "pointer": {"kind": "int", "size": 8, "signed": False, "endian": "little"},
        },
        "user_types": {
            "task_struct": {
                "kind": "struct",
                "size": 48,
                "fields": {
                    "comm": {
                        "offset": 16,
                        "type": {"kind": "array", "count": 16,
                                 "subtype": {"kind": "base", "name": "char"}},
                    },
                    "pid": {"offset": 0, "type": {"kind": "base", "name": "int"}},
                    "parent": {
                        "offset": 8,
                        "type": {"kind": "pointer",
                                 "subtype": {"kind": "struct", "name": "task_struct"}},
                    },
                    "argv": {
                        "offset": 32,
                        "type": {"kind": "pointer",
                                 "subtype": {"kind": "pointer",
                                             "subtype": {"kind": "base", "name": "char"}}},
                    },
                    "flags": {
                        "offset": 40,
                        "type": {"kind": "bitfield", "bit_position": 2, "bit_length": 3,
                                 "type": {"kind": "base", "name": "unsigned int"}},
                    },
                    "state": {"offset": 44, "type": {"kind": "enum", "name": "task_state"}},
                },
            },
            "list_head": {
                "kind": "struct",
                "size": 16,
                "fields": {
                    "next": {"offset": 0, "type": {"kind": "pointer",
                                                   "subtype": {"kind": "struct", "name": "list_head"}}},
                    "prev": {"offset": 8, "type": {"kind": "pointer",
                                                   "subtype": {"kind": "struct", "name": "list_head"}}},
                },
            },
        },
        "enums": {
            "task_state": {"size": 4, "base": "int", "constants": {"RUNNING": 0, "SLEEPING": 1}},
        },
        "symbols": {
            "start_kernel": {"address": 0xFFFF0000, "type": {"kind": "function"}},
            "do_fork": {"address": 0xFFFF1000, "type": {"kind": "function"}},
            "jiffies": {"address": 0xFFFF8000, "type": {"kind": "base", "name": "long"}},
        },
    }
