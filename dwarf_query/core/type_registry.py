"""Registry of structured types and function symbols.

Populated once by the metadata loader, then queried read-only for the
rest of an analysis session.
"""

import bisect
import logging
from typing import Dict, List, Optional

from ..errors import RegistryFrozenError
from .types import StructuredType

logger = logging.getLogger(__name__)

DEFAULT_POINTER_SIZE = 8


class TypeRegistry:
    """Lookup tables for struct layouts and code addresses.

    ``struct_table`` maps type name to StructuredType (last write wins).
    The function table is kept ordered by address so that any address
    can be resolved to the function that contains it.
    """

    def __init__(self, pointer_size: int = DEFAULT_POINTER_SIZE):
        """Initialize an empty registry.

        Args:
            pointer_size: Guest pointer width in bytes, until metadata says otherwise
        """
        self.struct_table: Dict[str, StructuredType] = {}
        self.pointer_size = pointer_size
        self._functions: Dict[int, str] = {}
        self._function_addresses: List[int] = []
        self._frozen = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def freeze(self):
        """End the loading phase; later mutations raise RegistryFrozenError."""
        if not self._frozen:
            self._frozen = True
            logger.info(
                f"Registry frozen with {len(self.struct_table)} types and "
                f"{len(self._functions)} functions"
            )

    def _check_writable(self, what: str):
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {what}: registry is frozen")

    def set_pointer_size(self, size: int):
        """Record the guest pointer width declared by the metadata."""
        self._check_writable("pointer size")
        if size not in (2, 4, 8):
            raise ValueError(f"Unsupported pointer size: {size}")
        if size != self.pointer_size:
            logger.info(f"Pointer size set to {size} bytes")
        self.pointer_size = size

    # =========================================================================
    # Types
    # =========================================================================

    def register_type(self, struct_type: StructuredType):
        """Insert a type, replacing any previous type with the same name."""
        self._check_writable(f"type '{struct_type.name}'")
        if struct_type.name in self.struct_table:
            logger.debug(f"Replacing existing definition of '{struct_type.name}'")
        self.struct_table[struct_type.name] = struct_type

    def lookup_type(self, name: str) -> Optional[StructuredType]:
        """Get a type by name, or None if it was never registered."""
        return self.struct_table.get(name)

    def type_names(self) -> List[str]:
        """Sorted names of all registered types."""
        return sorted(self.struct_table)

    def search_types(self, query: str) -> List[StructuredType]:
        """Search types by type name or member name (case-insensitive)."""
        query_lower = query.lower()
        results = []

        for struct_type in self.struct_table.values():
            if query_lower in struct_type.name.lower():
                results.append(struct_type)
                continue

            for member in struct_type.members:
                if query_lower in member.name.lower():
                    results.append(struct_type)
                    break

        return results

    # =========================================================================
    # Functions
    # =========================================================================

    @property
    def function_table(self) -> Dict[int, str]:
        """Copy of the function table in address order."""
        return {addr: self._functions[addr] for addr in self._function_addresses}

    def register_function(self, address: int, name: str):
        """Map a code address to a function name (duplicates overwrite)."""
        self._check_writable(f"function '{name}'")
        if address < 0:
            raise ValueError(f"Function address must be non-negative, got {address}")
        if address not in self._functions:
            bisect.insort(self._function_addresses, address)
        self._functions[address] = name

    def lookup_function(self, address: int) -> Optional[str]:
        """Get the function starting exactly at ``address``."""
        return self._functions.get(address)

    def lookup_function_containing(self, address: int) -> Optional[str]:
        """Get the nearest function whose start address is <= ``address``.

        Returns:
            Function name, or None if no function starts at or below the address
        """
        index = bisect.bisect_right(self._function_addresses, address)
        if index == 0:
            return None
        return self._functions[self._function_addresses[index - 1]]

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def stats(self) -> dict:
        """Get registry counts."""
        return {
            'types': len(self.struct_table),
            'functions': len(self._functions),
            'pointer_size': self.pointer_size,
            'frozen': self._frozen,
        }

    def __len__(self) -> int:
        return len(self.struct_table)

    def __contains__(self, name: str) -> bool:
        return name in self.struct_table
