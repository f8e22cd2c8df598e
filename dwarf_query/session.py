"""Analysis session: the owner of a type registry and its reader.

Each session has its own registry, so independent sessions (e.g. two
guests, or two tests) never see each other's types.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from .config import QueryConfig
from .core.memory import MemoryProvider
from .core.metadata_loader import LoadReport, MetadataLoader
from .core.type_registry import TypeRegistry
from .core.typed_reader import TypedMemoryReader
from .core.types import MemberDescriptor, PrimitiveValue, StructuredType

logger = logging.getLogger(__name__)


class AnalysisSession:
    """Loads type metadata once, then serves lookups and typed reads."""

    def __init__(self, config: Optional[QueryConfig] = None):
        self.config = config or QueryConfig()
        self.registry = TypeRegistry(pointer_size=self.config.pointer_size)
        self.loader = MetadataLoader(
            self.registry,
            skip_malformed=self.config.skip_malformed,
            log_verbose=self.config.log_verbose,
        )
        self.report = LoadReport()
        self._reader: Optional[TypedMemoryReader] = None

    # =========================================================================
    # Loading phase
    # =========================================================================

    def load(self, document: Any) -> LoadReport:
        """Load a parsed metadata document."""
        report = self.loader.load(document)
        self.report.merge(report)
        self._reader = None
        return report

    def load_file(self, path: Union[str, Path]) -> LoadReport:
        """Load a .json or .json.xz metadata file."""
        report = self.loader.load_file(path)
        self.report.merge(report)
        self._reader = None
        return report

    def finish_loading(self):
        """Freeze the registry; it is read-only from here on."""
        self.registry.freeze()

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def reader(self) -> TypedMemoryReader:
        if self._reader is None:
            self._reader = TypedMemoryReader.for_registry(self.registry)
        return self._reader

    def lookup_type(self, name: str) -> Optional[StructuredType]:
        return self.registry.lookup_type(name)

    def symbolicate(self, address: int) -> Optional[str]:
        """Name of the function containing ``address``."""
        return self.registry.lookup_function_containing(address)

    def member(self, type_name: str, member_name: str) -> MemberDescriptor:
        """Get a member descriptor.

        Raises:
            LookupError: if the type or member is unknown
        """
        struct_type = self.registry.lookup_type(type_name)
        if struct_type is None:
            raise LookupError(f"Unknown type '{type_name}'")
        member = struct_type.member(member_name)
        if member is None:
            raise LookupError(f"Type '{type_name}' has no member '{member_name}'")
        return member

    def read(self, provider: MemoryProvider, base_address: int,
             type_name: str, member_name: str) -> PrimitiveValue:
        """Read one member of a struct instance located at ``base_address``."""
        member = self.member(type_name, member_name)
        return self.reader.read_member(provider, base_address + member.offset_bytes, member)
