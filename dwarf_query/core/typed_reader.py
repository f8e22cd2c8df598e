"""Typed memory reader.

Reads one member's bytes through a memory provider and decodes them into a
PrimitiveValue according to the member's category, width, signedness and
endianness. Pointers are returned as addresses and never followed.
"""

import logging
import math
import struct
from typing import Callable, Dict

from ..errors import MemoryAccessError, UnsupportedTypeError
from .memory import MemoryProvider
from .type_registry import DEFAULT_POINTER_SIZE, TypeRegistry
from .types import MemberDescriptor, PrimitiveKind, PrimitiveValue, TypeCategory

logger = logging.getLogger(__name__)

INT_WIDTHS = (1, 2, 4, 8)
BOOL_WIDTHS = (1, 2, 4, 8)
POINTER_WIDTHS = (2, 4, 8)

# Storage sizes used for the x87 80-bit extended format (padded to 12/16)
EXTENDED_FLOAT_WIDTHS = (10, 12, 16)

_FLOAT_FORMATS = {4: ('<I', '<f'), 8: ('<Q', '<d')}

_EXTENDED_BIAS = 16383
_EXTENDED_EXP_MAX = 0x7FFF


def _to_signed(value: int, bits: int) -> int:
    """Two's-complement reinterpretation of an unsigned ``bits``-wide value."""
    sign_bit = 1 << (bits - 1)
    return (value ^ sign_bit) - sign_bit


def _decode_extended(raw: int) -> float:
    """Decode an x87 80-bit extended precision bit pattern to a float.

    Layout: 1 sign bit, 15 exponent bits, 64-bit significand with an
    explicit integer bit. Values beyond double range become +/-inf.
    """
    raw &= (1 << 80) - 1
    significand = raw & ((1 << 64) - 1)
    exponent = (raw >> 64) & _EXTENDED_EXP_MAX
    sign = -1.0 if raw >> 79 else 1.0

    if exponent == _EXTENDED_EXP_MAX:
        if significand & ((1 << 63) - 1):
            return math.nan
        return sign * math.inf
    if exponent == 0:
        # Denormal: effective exponent is 1 - bias
        exponent = 1
    try:
        return sign * math.ldexp(significand, exponent - _EXTENDED_BIAS - 63)
    except OverflowError:
        return sign * math.inf


class TypedMemoryReader:
    """Decodes scalar and pointer members from guest memory.

    Stateless apart from the guest pointer width, so one instance can be
    shared between threads as long as the memory provider allows it.
    """

    def __init__(self, pointer_size: int = DEFAULT_POINTER_SIZE):
        """Initialize the reader.

        Args:
            pointer_size: Guest pointer width in bytes (2, 4 or 8)
        """
        if pointer_size not in POINTER_WIDTHS:
            raise ValueError(f"Unsupported pointer size: {pointer_size}")
        self.pointer_size = pointer_size
        self._decoders: Dict[TypeCategory, Callable[[MemberDescriptor, int, int], PrimitiveValue]] = {
            TypeCategory.BOOL: self._decode_bool,
            TypeCategory.CHAR: self._decode_char,
            TypeCategory.INT: self._decode_int,
            TypeCategory.FLOAT: self._decode_float,
        }

    @classmethod
    def for_registry(cls, registry: TypeRegistry) -> 'TypedMemoryReader':
        """Create a reader using the pointer width learned by the registry."""
        return cls(pointer_size=registry.pointer_size)

    # =========================================================================
    # Public API
    # =========================================================================

    def read_width(self, descriptor: MemberDescriptor) -> int:
        """Number of bytes a read of ``descriptor`` fetches.

        Raises:
            UnsupportedTypeError: if the descriptor cannot be decoded
        """
        if not descriptor.is_valid:
            raise UnsupportedTypeError(f"Decoding not supported for {descriptor}")

        if descriptor.is_pointer or descriptor.is_double_pointer:
            return self.pointer_size

        category = descriptor.category
        size = descriptor.size_bytes
        if category not in self._decoders:
            raise UnsupportedTypeError(
                f"Cannot decode aggregate/non-scalar category '{category.value}' "
                f"of member '{descriptor.name}'; decode its members or elements instead"
            )

        if descriptor.is_bitfield:
            supported = (
                category is not TypeCategory.FLOAT
                and size in INT_WIDTHS
                and descriptor.bit_position + descriptor.bit_length <= size * 8
            )
        elif category is TypeCategory.BOOL:
            supported = size in BOOL_WIDTHS
        elif category is TypeCategory.CHAR:
            supported = size == 1
        elif category is TypeCategory.INT:
            supported = size in INT_WIDTHS
        else:
            supported = size in _FLOAT_FORMATS or size in EXTENDED_FLOAT_WIDTHS

        if not supported:
            raise UnsupportedTypeError(
                f"Unsupported width {size} for {category.value} member '{descriptor.name}'"
            )
        return size

    def read_member(self, provider: MemoryProvider, address: int,
                    descriptor: MemberDescriptor) -> PrimitiveValue:
        """Read and decode one member at ``address``.

        Exactly one provider read of the computed width is performed, and
        none at all if the descriptor is not decodable.

        Args:
            provider: Memory provider for the guest
            address: Guest virtual address of the member (need not be aligned)
            descriptor: Layout of the member

        Returns:
            PrimitiveValue whose kind matches the descriptor's category and width

        Raises:
            UnsupportedTypeError: invalid descriptor or undecodable category/width
            MemoryAccessError: the provider could not supply the bytes
        """
        width = self.read_width(descriptor)
        data = self._fetch(provider, address, width)
        raw = int.from_bytes(data, 'little' if descriptor.is_little_endian else 'big')

        if descriptor.is_pointer or descriptor.is_double_pointer:
            return PrimitiveValue(PrimitiveKind.POINTER, raw, width)

        return self._decoders[descriptor.category](descriptor, raw, width)

    # =========================================================================
    # Fetch
    # =========================================================================

    def _fetch(self, provider: MemoryProvider, address: int, width: int) -> bytes:
        if address < 0:
            raise MemoryAccessError(address, width, "negative address")
        try:
            data = provider.read_bytes(address, width)
        except MemoryAccessError:
            raise
        except OSError as e:
            raise MemoryAccessError(address, width, str(e)) from e

        if data is None:
            raise MemoryAccessError(address, width, "provider reported a fault")
        if len(data) != width:
            raise MemoryAccessError(address, width, f"short read ({len(data)} bytes)")
        return bytes(data)

    # =========================================================================
    # Decoders
    # =========================================================================

    def _decode_bool(self, descriptor: MemberDescriptor, raw: int, width: int) -> PrimitiveValue:
        if descriptor.is_bitfield:
            return self._decode_int(descriptor, raw, width)
        return PrimitiveValue(PrimitiveKind.BOOL, raw != 0, width)

    def _decode_char(self, descriptor: MemberDescriptor, raw: int, width: int) -> PrimitiveValue:
        if descriptor.is_bitfield:
            return self._decode_int(descriptor, raw, width)
        return PrimitiveValue(PrimitiveKind.CHAR, chr(raw & 0xFF), width)

    def _decode_int(self, descriptor: MemberDescriptor, raw: int, width: int) -> PrimitiveValue:
        bits = width * 8
        if descriptor.is_bitfield:
            bits = descriptor.bit_length
            raw = (raw >> descriptor.bit_position) & ((1 << bits) - 1)

        value = _to_signed(raw, bits) if descriptor.is_signed else raw
        if width == 8:
            kind = PrimitiveKind.LONG if descriptor.is_signed else PrimitiveKind.ULONG
        else:
            kind = PrimitiveKind.INT if descriptor.is_signed else PrimitiveKind.UINT
        return PrimitiveValue(kind, value, width)

    def _decode_float(self, descriptor: MemberDescriptor, raw: int, width: int) -> PrimitiveValue:
        if width in _FLOAT_FORMATS:
            int_fmt, float_fmt = _FLOAT_FORMATS[width]
            # Reinterpret the bit pattern, not a numeric conversion
            value = struct.unpack(float_fmt, struct.pack(int_fmt, raw))[0]
            kind = PrimitiveKind.FLOAT if width == 4 else PrimitiveKind.DOUBLE
            return PrimitiveValue(kind, value, width)
        return PrimitiveValue(PrimitiveKind.LONG_DOUBLE, _decode_extended(raw), width)


_default_reader = TypedMemoryReader()


def read_member(provider: MemoryProvider, address: int,
                descriptor: MemberDescriptor) -> PrimitiveValue:
    """Read ``descriptor`` at ``address`` with a 64-bit pointer width."""
    return _default_reader.read_member(provider, address, descriptor)
