"""Type descriptor model.

Value types describing how one struct member is laid out in guest memory,
and the aggregate describing a whole structured type. The only behavior
here is derived queries and diagnostic rendering.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from ..errors import InvariantViolationError


# Sentinel used for pointer/array names that do not apply
NO_TARGET = "none"


class TypeCategory(Enum):
    """Decoding category of a member."""
    VOID = "void"
    BOOL = "bool"
    CHAR = "char"
    INT = "int"
    FLOAT = "float"
    STRUCT = "struct"
    FUNC = "function"
    ARRAY = "array"
    UNION = "union"
    ENUM = "enum"

    @property
    def is_scalar(self) -> bool:
        """True for categories the reader can turn into a PrimitiveValue."""
        return self in SCALAR_CATEGORIES


SCALAR_CATEGORIES = frozenset({
    TypeCategory.BOOL,
    TypeCategory.CHAR,
    TypeCategory.INT,
    TypeCategory.FLOAT,
})


class PrimitiveKind(Enum):
    """Active variant of a PrimitiveValue."""
    BOOL = "bool"
    CHAR = "char"
    INT = "int"
    LONG = "long"
    UINT = "unsigned int"
    ULONG = "unsigned long"
    FLOAT = "float"
    DOUBLE = "double"
    LONG_DOUBLE = "long double"
    POINTER = "pointer"


@dataclass(frozen=True)
class PrimitiveValue:
    """A decoded scalar read from guest memory.

    Only the typed reader creates these; the kind always matches the
    category and width of the descriptor that was read.
    """
    kind: PrimitiveKind
    value: Any
    size: int

    @property
    def is_pointer(self) -> bool:
        return self.kind is PrimitiveKind.POINTER

    @property
    def is_null(self) -> bool:
        return self.kind is PrimitiveKind.POINTER and self.value == 0

    def __str__(self) -> str:
        if self.kind is PrimitiveKind.POINTER:
            if self.value == 0:
                return "NULL"
            return f"0x{self.value:X}"
        if self.kind is PrimitiveKind.CHAR:
            return repr(self.value)
        if self.kind is PrimitiveKind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class MemberDescriptor:
    """Storage layout of one field of a structured type.

    ``is_pointer`` and ``is_double_pointer`` describe 1 or 2 levels of
    indirection; both false means the member holds its value directly.
    ``pointer_target_name`` is the pointee's type name, or ``"none"``.

    Array members also carry their element name, category and size. The
    byte size of an array must be a whole number of elements; anything
    else is rejected at construction time.
    """
    name: str
    size_bytes: int = 0
    offset_bytes: int = 0
    category: TypeCategory = TypeCategory.VOID
    is_pointer: bool = False
    is_double_pointer: bool = False
    is_little_endian: bool = True
    is_signed: bool = False
    is_valid: bool = True
    pointer_target_name: str = NO_TARGET

    # Array-only fields
    array_element_name: str = NO_TARGET
    array_element_category: TypeCategory = TypeCategory.VOID
    array_element_size_bytes: int = 0

    # Bitfield-only fields (bit offset within the storage unit, width in bits)
    bit_position: Optional[int] = None
    bit_length: Optional[int] = None

    def __post_init__(self):
        if self.size_bytes < 0 or self.offset_bytes < 0:
            raise InvariantViolationError(
                f"Member '{self.name}' has negative size or offset "
                f"(size={self.size_bytes}, offset={self.offset_bytes})"
            )
        if self.category is TypeCategory.ARRAY and self.size_bytes > 0:
            elem = self.array_element_size_bytes
            if elem <= 0 or self.size_bytes % elem != 0:
                raise InvariantViolationError(
                    f"Array member '{self.name}' size {self.size_bytes} is not a "
                    f"multiple of element size {elem}"
                )
        if self.is_bitfield:
            if self.bit_length <= 0 or self.bit_position < 0:
                raise InvariantViolationError(
                    f"Bitfield '{self.name}' has invalid geometry "
                    f"(position={self.bit_position}, length={self.bit_length})"
                )

    @property
    def is_bitfield(self) -> bool:
        return self.bit_length is not None and self.bit_position is not None

    @property
    def indirection(self) -> int:
        """Number of pointer levels (0, 1 or 2)."""
        if self.is_double_pointer:
            return 2
        if self.is_pointer:
            return 1
        return 0

    def element_count(self) -> int:
        """Number of array elements, or -1 if this is not an array."""
        if self.category is not TypeCategory.ARRAY:
            return -1
        if self.size_bytes == 0:
            return 0
        return self.size_bytes // self.array_element_size_bytes

    def __str__(self) -> str:
        return (
            f"member '{self.name}' (offset: {self.offset_bytes}, "
            f"type: {self.category.value}, size: {self.size_bytes}, "
            f"ptr: {_flag(self.is_pointer)}, dptr: {_flag(self.is_double_pointer)}, "
            f"le: {_flag(self.is_little_endian)}, signed: {_flag(self.is_signed)}, "
            f"valid: {_flag(self.is_valid)})"
        )


def element_count(descriptor: MemberDescriptor) -> int:
    """Array element count of ``descriptor`` (-1 when it is not an array)."""
    return descriptor.element_count()


@dataclass
class StructuredType:
    """A named struct/union and its members in declaration order."""
    name: str
    size_bytes: int = 0
    members: List[MemberDescriptor] = field(default_factory=list)

    def member(self, name: str) -> Optional[MemberDescriptor]:
        """Get the first member with the given name."""
        for member in self.members:
            if member.name == name:
                return member
        return None

    @property
    def valid_members(self) -> List[MemberDescriptor]:
        return [m for m in self.members if m.is_valid]

    def __str__(self) -> str:
        lines = [f"struct '{self.name}' (size: {self.size_bytes}, members: {len(self.members)}):"]
        for member in self.members:
            lines.append(f"\t{member}")
        return "\n".join(lines)
