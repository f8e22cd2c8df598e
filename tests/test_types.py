"""Tests for the type descriptor model."""

from __future__ import annotations

import dataclasses

import pytest

from dwarf_query.core.types import (
    NO_TARGET,
    MemberDescriptor,
    PrimitiveKind,
    PrimitiveValue,
    StructuredType,
    TypeCategory,
    element_count,
)
from dwarf_query.errors import InvariantViolationError


def _array(size: int, element_size: int) -> MemberDescriptor:
    return MemberDescriptor(
        name="buf",
        size_bytes=size,
        category=TypeCategory.ARRAY,
        array_element_name="char",
        array_element_category=TypeCategory.CHAR,
        array_element_size_bytes=element_size,
    )


@pytest.mark.parametrize("size,element_size,expected", [
    (16, 1, 16),
    (32, 4, 8),
    (24, 8, 3),
    (0, 4, 0),
    (0, 0, 0),
])
def test_array_element_count(size: int, element_size: int, expected: int) -> None:
    """Element count is the whole number of elements in the array."""
    member = _array(size, element_size)
    assert member.element_count() == expected
    assert element_count(member) == expected


def test_element_count_of_non_array_is_minus_one() -> None:
    member = MemberDescriptor(name="pid", size_bytes=4, category=TypeCategory.INT)
    assert member.element_count() == -1


def test_ragged_array_is_rejected() -> None:
    """A size that is not a multiple of the element size cannot be built."""
    with pytest.raises(InvariantViolationError):
        _array(10, 4)


def test_array_without_element_size_is_rejected() -> None:
    with pytest.raises(InvariantViolationError):
        _array(8, 0)


def test_negative_offset_is_rejected() -> None:
    with pytest.raises(InvariantViolationError):
        MemberDescriptor(name="x", size_bytes=4, offset_bytes=-1, category=TypeCategory.INT)


def test_bitfield_geometry_is_checked() -> None:
    with pytest.raises(InvariantViolationError):
        MemberDescriptor(name="f", size_bytes=4, category=TypeCategory.INT,
                         bit_position=0, bit_length=0)


def test_defaults() -> None:
    member = MemberDescriptor(name="x")
    assert member.category is TypeCategory.VOID
    assert member.is_valid
    assert member.is_little_endian
    assert not member.is_pointer and not member.is_double_pointer
    assert member.pointer_target_name == NO_TARGET
    assert member.array_element_name == NO_TARGET
    assert member.indirection == 0
    assert not member.is_bitfield


def test_member_rendering() -> None:
    member = MemberDescriptor(
        name="parent",
        size_bytes=8,
        offset_bytes=16,
        category=TypeCategory.STRUCT,
        is_pointer=True,
        pointer_target_name="task_struct",
    )
    assert str(member) == (
        "member 'parent' (offset: 16, type: struct, size: 8, ptr: true, dptr: false, "
        "le: true, signed: false, valid: true)"
    )
    assert member.indirection == 1


def test_struct_rendering_and_member_lookup() -> None:
    pid = MemberDescriptor(name="pid", size_bytes=4, category=TypeCategory.INT, is_signed=True)
    junk = MemberDescriptor(name="junk", offset_bytes=4, is_valid=False)
    struct_type = StructuredType("task", 8, [pid, junk])

    lines = str(struct_type).split("\n")
    assert lines[0] == "struct 'task' (size: 8, members: 2):"
    assert lines[1] == f"\t{pid}"
    assert lines[2] == f"\t{junk}"

    assert struct_type.member("pid") is pid
    assert struct_type.member("missing") is None
    assert struct_type.valid_members == [pid]


def test_descriptors_are_immutable() -> None:
    member = MemberDescriptor(name="x", size_bytes=4, category=TypeCategory.INT)
    with pytest.raises(dataclasses.FrozenInstanceError):
        member.size_bytes = 8  # type: ignore[misc]


def test_primitive_value_rendering() -> None:
    assert str(PrimitiveValue(PrimitiveKind.POINTER, 0, 8)) == "NULL"
    assert str(PrimitiveValue(PrimitiveKind.POINTER, 0xDEAD, 8)) == "0xDEAD"
    assert str(PrimitiveValue(PrimitiveKind.BOOL, True, 1)) == "true"
    assert str(PrimitiveValue(PrimitiveKind.CHAR, "A", 1)) == "'A'"
    assert str(PrimitiveValue(PrimitiveKind.INT, -3, 4)) == "-3"
    assert PrimitiveValue(PrimitiveKind.POINTER, 0, 8).is_null
    assert not PrimitiveValue(PrimitiveKind.ULONG, 0, 8).is_null


def test_scalar_categories() -> None:
    assert TypeCategory.INT.is_scalar
    assert TypeCategory.FLOAT.is_scalar
    assert not TypeCategory.STRUCT.is_scalar
    assert not TypeCategory.ARRAY.is_scalar
