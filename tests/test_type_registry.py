"""Tests for TypeRegistry."""

from __future__ import annotations

import pytest

from dwarf_query.core.type_registry import TypeRegistry
from dwarf_query.core.types import MemberDescriptor, StructuredType, TypeCategory
from dwarf_query.errors import RegistryFrozenError


def _struct(name: str, size: int = 4, member: str = "x") -> StructuredType:
    return StructuredType(name, size, [
        MemberDescriptor(name=member, size_bytes=4, category=TypeCategory.INT),
    ])


def test_register_and_lookup(registry: TypeRegistry) -> None:
    foo = _struct("foo")
    registry.register_type(foo)
    assert registry.lookup_type("foo") is foo
    assert registry.lookup_type("bar") is None
    assert "foo" in registry
    assert len(registry) == 1


def test_last_definition_wins(registry: TypeRegistry) -> None:
    registry.register_type(_struct("foo", 4))
    registry.register_type(_struct("foo", 8))
    assert registry.lookup_type("foo").size_bytes == 8
    assert len(registry) == 1


def test_type_names_sorted(registry: TypeRegistry) -> None:
    for name in ("zeta", "alpha", "mid"):
        registry.register_type(_struct(name))
    assert registry.type_names() == ["alpha", "mid", "zeta"]


def test_search_matches_type_and_member_names(registry: TypeRegistry) -> None:
    registry.register_type(_struct("task_struct", member="pid"))
    registry.register_type(_struct("list_head", member="next"))

    assert [s.name for s in registry.search_types("TASK")] == ["task_struct"]
    assert [s.name for s in registry.search_types("nex")] == ["list_head"]
    assert registry.search_types("nothing") == []


def test_function_containing_address(registry: TypeRegistry) -> None:
    """An address inside a function resolves to the closest start at or below it."""
    registry.register_function(0x1000, "main")
    assert registry.lookup_function_containing(0x1004) == "main"
    assert registry.lookup_function_containing(0x1000) == "main"
    assert registry.lookup_function(0x1000) == "main"
    assert registry.lookup_function(0x1004) is None


def test_function_containing_picks_nearest_lower(registry: TypeRegistry) -> None:
    registry.register_function(0x3000, "c")
    registry.register_function(0x1000, "a")
    registry.register_function(0x2000, "b")

    assert registry.lookup_function_containing(0x2FFF) == "b"
    assert registry.lookup_function_containing(0x3000) == "c"
    assert registry.lookup_function_containing(0xFFFFF) == "c"
    assert list(registry.function_table) == [0x1000, 0x2000, 0x3000]


def test_function_below_lowest_is_none(registry: TypeRegistry) -> None:
    registry.register_function(0x1000, "main")
    assert registry.lookup_function_containing(0xFFF) is None


def test_empty_function_table(registry: TypeRegistry) -> None:
    assert registry.lookup_function_containing(0x1000) is None


def test_duplicate_function_address_overwrites(registry: TypeRegistry) -> None:
    registry.register_function(0x1000, "old")
    registry.register_function(0x1000, "new")
    assert registry.lookup_function(0x1000) == "new"
    assert registry.stats["functions"] == 1


def test_negative_function_address_rejected(registry: TypeRegistry) -> None:
    with pytest.raises(ValueError):
        registry.register_function(-1, "bad")


def test_frozen_registry_rejects_writes(registry: TypeRegistry) -> None:
    registry.register_type(_struct("foo"))
    registry.freeze()

    assert registry.is_frozen
    with pytest.raises(RegistryFrozenError):
        registry.register_type(_struct("bar"))
    with pytest.raises(RegistryFrozenError):
        registry.register_function(0x1000, "main")
    with pytest.raises(RegistryFrozenError):
        registry.set_pointer_size(4)
    assert registry.lookup_type("foo") is not None


def test_pointer_size(registry: TypeRegistry) -> None:
    assert registry.pointer_size == 8
    registry.set_pointer_size(4)
    assert registry.stats["pointer_size"] == 4
    with pytest.raises(ValueError):
        registry.set_pointer_size(3)


def test_registries_are_independent() -> None:
    first = TypeRegistry()
    second = TypeRegistry()
    first.register_type(_struct("foo"))
    assert second.lookup_type("foo") is None
