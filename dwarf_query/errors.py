"""Exception types raised by dwarf_query."""

from typing import Optional


class DwarfQueryError(Exception):
    """Base class for all dwarf_query errors."""


class MalformedMetadataError(DwarfQueryError):
    """A single record in a type metadata document is structurally invalid.

    Scoped to that record: the loader skips it and keeps going unless it
    was told to be strict.
    """

    def __init__(self, message: str, record: Optional[str] = None):
        super().__init__(message)
        self.record = record


class UnsupportedTypeError(DwarfQueryError):
    """A descriptor cannot be decoded into a primitive value."""


class MemoryAccessError(DwarfQueryError):
    """The memory provider could not supply the requested bytes."""

    def __init__(self, address: int, size: int, reason: str = ""):
        message = f"Failed to read {size} bytes at 0x{address:X}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.address = address
        self.size = size
        self.reason = reason


class InvariantViolationError(DwarfQueryError):
    """A descriptor was built with an impossible layout (e.g. ragged array)."""


class RegistryFrozenError(DwarfQueryError):
    """Attempted to mutate a registry after loading finished."""
