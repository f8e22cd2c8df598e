"""Loads DWARF-derived type metadata (JSON) into a TypeRegistry.

Two document shapes are understood:

* dwarf2json ISF output (``base_types``/``user_types``/``enums``/``symbols``),
  where member types are nested ``{"kind": ..., "subtype": ...}`` objects and
  primitive sizes live in ``base_types``.
* The flat format written by :mod:`dwarf_query.export`, where every member
  entry carries its own ``type`` tag, ``size``, ``endian`` and ``signed``
  flags, with ``target``/``element`` objects for pointers and arrays.

Bad records are scoped: an unknown type tag only invalidates that member,
and a structurally broken struct entry only drops that struct.
"""

import json
import logging
import lzma
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import InvariantViolationError, MalformedMetadataError
from .type_registry import TypeRegistry
from .types import NO_TARGET, MemberDescriptor, StructuredType, TypeCategory

logger = logging.getLogger(__name__)

# Tags that map directly onto a category. Anything not listed here (and not
# one of the structural tags below) yields an invalid member.
TAG_CATEGORIES: Dict[str, TypeCategory] = {
    'void': TypeCategory.VOID,
    'bool': TypeCategory.BOOL,
    'char': TypeCategory.CHAR,
    'int': TypeCategory.INT,
    'float': TypeCategory.FLOAT,
    'double': TypeCategory.FLOAT,
    'struct': TypeCategory.STRUCT,
    'class': TypeCategory.STRUCT,
    'union': TypeCategory.UNION,
    'enum': TypeCategory.ENUM,
    'function': TypeCategory.FUNC,
    'array': TypeCategory.ARRAY,
}

BASE_TAG = 'base'
POINTER_TAG = 'pointer'
ARRAY_TAG = 'array'
BITFIELD_TAG = 'bitfield'
LITTLE_ENDIAN = 'little'

# Keys that identify a dwarf2json ISF document
ISF_KEYS = ('base_types', 'user_types', 'enums', 'symbols')

# Keys of the flat document wrapper; an object without any of them is
# taken to be a table of struct definitions keyed by name
FLAT_KEYS = ('structs', 'functions', 'pointer_size', 'endian', 'version')


@dataclass
class LoadReport:
    """Outcome of one load() call."""
    structs_loaded: int = 0
    functions_loaded: int = 0
    invalid_members: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (record, reason)

    @property
    def ok(self) -> bool:
        return not self.skipped

    def merge(self, other: 'LoadReport'):
        self.structs_loaded += other.structs_loaded
        self.functions_loaded += other.functions_loaded
        self.invalid_members += other.invalid_members
        self.skipped.extend(other.skipped)


@dataclass
class _Resolved:
    """Intermediate result of resolving one type reference."""
    name: str
    category: TypeCategory
    size: int = 0
    is_signed: bool = False
    is_little_endian: bool = True
    valid: bool = True
    levels: int = 0
    element: Optional['_Resolved'] = None
    bit_position: Optional[int] = None
    bit_length: Optional[int] = None


def _as_int(value: Any) -> Optional[int]:
    """Accept JSON integers only (bools are rejected)."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _parse_address(value: Any) -> Optional[int]:
    """Parse an address given as an int or as a decimal/hex string."""
    if isinstance(value, str):
        try:
            address = int(value, 0)
        except ValueError:
            return None
    else:
        address = _as_int(value)
    if address is None or address < 0:
        return None
    return address


class _Format:
    """How a particular document shape spells type references."""

    pointer_size: int = 8
    default_endian: str = LITTLE_ENDIAN

    def member_ref(self, entry: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def tag(self, ref: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def target(self, ref: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def array_count(self, ref: Dict[str, Any], element: _Resolved) -> int:
        raise NotImplementedError

    def bitfield_storage(self, ref: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def pointer_endian(self, ref: Dict[str, Any]) -> str:
        return self.default_endian

    def scalar(self, ref: Dict[str, Any], tag: str) -> _Resolved:
        raise NotImplementedError


class _IsfFormat(_Format):
    """dwarf2json Intermediate Symbol File."""

    def __init__(self, document: Dict[str, Any]):
        self.base_types = self._table(document, 'base_types')
        self.user_types = self._table(document, 'user_types')
        self.enums = self._table(document, 'enums')

        pointer = self.base_types.get('pointer')
        if isinstance(pointer, dict):
            size = _as_int(pointer.get('size'))
            if size:
                self.pointer_size = size
            if isinstance(pointer.get('endian'), str):
                self.default_endian = pointer['endian']

    @staticmethod
    def _table(document: Dict[str, Any], key: str) -> Dict[str, Any]:
        table = document.get(key)
        return table if isinstance(table, dict) else {}

    def member_ref(self, entry):
        return entry.get('type')

    def tag(self, ref):
        return ref.get('kind')

    def target(self, ref):
        return ref.get('subtype')

    def array_count(self, ref, element):
        count = _as_int(ref.get('count'))
        if count is None or count < 0:
            raise MalformedMetadataError(f"Array type has no valid count: {ref!r}")
        return count

    def bitfield_storage(self, ref):
        return ref.get('type')

    def _base(self, name: Optional[str]) -> Optional[Dict[str, Any]]:
        base = self.base_types.get(name) if name is not None else None
        return base if isinstance(base, dict) else None

    def scalar(self, ref, tag):
        name = ref.get('name') or tag

        if tag == BASE_TAG:
            base = self._base(ref.get('name'))
            category = TAG_CATEGORIES.get(base.get('kind')) if base else None
            if base is None or category is None:
                logger.debug(f"Unknown base type '{name}'")
                return _Resolved(name, TypeCategory.VOID, valid=False)
            return _Resolved(
                name,
                category,
                size=_as_int(base.get('size')) or 0,
                is_signed=bool(base.get('signed', False)),
                is_little_endian=base.get('endian', self.default_endian) == LITTLE_ENDIAN,
            )

        category = TAG_CATEGORIES.get(tag)
        if category is None:
            logger.debug(f"Unrecognized type kind '{tag}' for '{name}'")
            return _Resolved(name, TypeCategory.VOID, valid=False)

        size = 0
        is_signed = False
        endian = self.default_endian
        if category in (TypeCategory.STRUCT, TypeCategory.UNION):
            user_type = self.user_types.get(name)
            if isinstance(user_type, dict):
                size = _as_int(user_type.get('size')) or 0
            else:
                logger.debug(f"User type '{name}' not defined in document")
        elif category is TypeCategory.ENUM:
            enum = self.enums.get(name)
            if isinstance(enum, dict):
                size = _as_int(enum.get('size')) or 0
                base = self._base(enum.get('base'))
                if base:
                    is_signed = bool(base.get('signed', False))
                    endian = base.get('endian', endian)
        elif category not in (TypeCategory.FUNC, TypeCategory.VOID):
            # Primitive spelled as a kind; take its layout from base_types
            base = self._base(name)
            if base:
                size = _as_int(base.get('size')) or 0
                is_signed = bool(base.get('signed', False))
                endian = base.get('endian', endian)

        return _Resolved(name, category, size=size, is_signed=is_signed,
                         is_little_endian=endian == LITTLE_ENDIAN)


class _FlatFormat(_Format):
    """Self-describing member entries."""

    def __init__(self, document: Union[Dict[str, Any], List[Any]]):
        if isinstance(document, dict):
            size = _as_int(document.get('pointer_size'))
            if size:
                self.pointer_size = size
            if isinstance(document.get('endian'), str):
                self.default_endian = document['endian']

    def member_ref(self, entry):
        return entry

    def tag(self, ref):
        return ref.get('type')

    def target(self, ref):
        for key in ('target', 'element', 'subtype'):
            if key in ref:
                return ref[key]
        return None

    def array_count(self, ref, element):
        count = _as_int(ref.get('count'))
        size = _as_int(ref.get('size'))
        if size is not None:
            if element.size <= 0:
                return 0 if size == 0 else -1
            if size % element.size != 0:
                raise MalformedMetadataError(
                    f"Array size {size} is not a multiple of element size {element.size}"
                )
            from_size = size // element.size
            if count is not None and count != from_size:
                raise MalformedMetadataError(
                    f"Array count {count} disagrees with size {size}"
                )
            return from_size
        if count is None or count < 0:
            raise MalformedMetadataError(f"Array entry has neither size nor count: {ref!r}")
        return count

    def bitfield_storage(self, ref):
        storage = {k: v for k, v in ref.items() if k not in ('bit_position', 'bit_length')}
        storage['type'] = BASE_TAG
        storage.setdefault('kind', 'int')
        return storage

    def pointer_endian(self, ref):
        endian = ref.get('endian')
        return endian if isinstance(endian, str) else self.default_endian

    def scalar(self, ref, tag):
        if tag == BASE_TAG:
            kind = ref.get('kind')
            category = TAG_CATEGORIES.get(kind) if isinstance(kind, str) else None
        else:
            category = TAG_CATEGORIES.get(tag)
        name = ref.get('name') or ref.get('kind') or tag

        if category is None:
            logger.debug(f"Unrecognized type tag '{tag}' for '{name}'")
            return _Resolved(name, TypeCategory.VOID, valid=False)

        return _Resolved(
            name,
            category,
            size=_as_int(ref.get('size')) or 0,
            is_signed=bool(ref.get('signed', False)),
            is_little_endian=ref.get('endian', self.default_endian) == LITTLE_ENDIAN,
        )


class MetadataLoader:
    """Populates a TypeRegistry from JSON type metadata.

    The loader never modifies its input. Repeated calls are additive, with
    later definitions replacing earlier ones of the same name.
    """

    def __init__(self, registry: TypeRegistry, skip_malformed: bool = True,
                 log_verbose: bool = False):
        """Initialize the loader.

        Args:
            registry: Registry to populate
            skip_malformed: Skip broken struct records instead of raising
            log_verbose: Log every loaded struct definition
        """
        self.registry = registry
        self.skip_malformed = skip_malformed
        self.log_verbose = log_verbose

    # =========================================================================
    # Entry points
    # =========================================================================

    def load_file(self, path: Union[str, Path]) -> LoadReport:
        """Load a .json or .json.xz metadata file."""
        path = Path(path)
        try:
            if path.suffix == '.xz':
                with lzma.open(path, 'rt', encoding='utf-8') as f:
                    document = json.load(f)
            else:
                with open(path, 'r', encoding='utf-8') as f:
                    document = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedMetadataError(f"{path} is not valid JSON: {e}", record=str(path)) from e
        except lzma.LZMAError as e:
            raise MalformedMetadataError(f"{path} is not a valid xz archive: {e}", record=str(path)) from e

        logger.info(f"Loading type metadata from {path}")
        return self.load(document)

    def load(self, document: Any) -> LoadReport:
        """Load a parsed JSON document into the registry.

        Returns:
            LoadReport with counts and the records that were skipped

        Raises:
            MalformedMetadataError: if the top level is not an object or list,
                or a record is broken and ``skip_malformed`` is False
        """
        if isinstance(document, dict) and any(key in document for key in ISF_KEYS):
            report = self._load_isf(document)
        elif isinstance(document, (dict, list)):
            report = self._load_flat(document)
        else:
            raise MalformedMetadataError(
                f"Expected a JSON object or array at top level, got {type(document).__name__}"
            )

        logger.info(
            f"Loaded {report.structs_loaded} types and {report.functions_loaded} functions "
            f"({len(report.skipped)} skipped, {report.invalid_members} invalid members)"
        )
        return report

    # =========================================================================
    # Document shapes
    # =========================================================================

    def _load_isf(self, document: Dict[str, Any]) -> LoadReport:
        report = LoadReport()
        fmt = _IsfFormat(document)
        if 'pointer' in fmt.base_types:
            self._set_pointer_size(fmt.pointer_size)
        fmt.pointer_size = self.registry.pointer_size

        user_types = document.get('user_types') or {}
        if not isinstance(user_types, dict):
            self._skip(report, 'user_types', MalformedMetadataError("'user_types' must be an object"))
            user_types = {}

        for name, entry in user_types.items():
            try:
                if not isinstance(entry, dict):
                    raise MalformedMetadataError(f"Type '{name}' is not an object")
                size = _as_int(entry.get('size'))
                fields = entry.get('fields')
                if size is None:
                    raise MalformedMetadataError(f"Type '{name}' has no valid size")
                if not isinstance(fields, dict):
                    raise MalformedMetadataError(f"Type '{name}' has no field table")

                members = []
                for field_name, field_entry in fields.items():
                    member = self._build_member(fmt, field_name, field_entry, report)
                    if member is not None:
                        members.append(member)
                # ISF field tables are unordered; layout order is offset order
                members.sort(key=lambda m: m.offset_bytes)

                self._register(StructuredType(name, size, members), report)
            except MalformedMetadataError as e:
                self._skip(report, name, e)

        self._load_isf_symbols(document.get('symbols'), report)
        if 'functions' in document:
            self._load_function_table(document['functions'], report)
        return report

    def _load_flat(self, document: Union[Dict[str, Any], List[Any]]) -> LoadReport:
        report = LoadReport()
        fmt = _FlatFormat(document)
        if isinstance(document, dict) and 'pointer_size' in document:
            self._set_pointer_size(fmt.pointer_size)
        fmt.pointer_size = self.registry.pointer_size

        if isinstance(document, list):
            records = list(enumerate(document))
        else:
            if any(key in document for key in FLAT_KEYS):
                structs = document.get('structs', [])
            else:
                structs = document
            if isinstance(structs, list):
                records = list(enumerate(structs))
            elif isinstance(structs, dict):
                records = list(structs.items())
            else:
                self._skip(report, 'structs', MalformedMetadataError("'structs' must be an array or object"))
                records = []

        for key, entry in records:
            label = str(key)
            try:
                if not isinstance(entry, dict):
                    raise MalformedMetadataError(f"Struct record {label} is not an object")
                name = entry.get('name', key if isinstance(key, str) else None)
                if not isinstance(name, str) or not name:
                    raise MalformedMetadataError(f"Struct record {label} has no name")
                label = name
                size = _as_int(entry.get('size'))
                if size is None:
                    raise MalformedMetadataError(f"Struct '{name}' has no valid size")
                member_entries = entry.get('members', [])
                if not isinstance(member_entries, list):
                    raise MalformedMetadataError(f"Struct '{name}' members must be an array")

                members = []
                seen = set()
                for member_entry in member_entries:
                    if not isinstance(member_entry, dict) or not isinstance(member_entry.get('name'), str):
                        logger.warning(f"Skipping unnamed member entry in '{name}': {member_entry!r}")
                        report.invalid_members += 1
                        continue
                    if member_entry['name'] in seen:
                        logger.warning(f"Skipping duplicate member '{member_entry['name']}' in '{name}'")
                        report.invalid_members += 1
                        continue
                    seen.add(member_entry['name'])
                    member = self._build_member(fmt, member_entry['name'], member_entry, report)
                    if member is not None:
                        members.append(member)

                self._register(StructuredType(name, size, members), report)
            except MalformedMetadataError as e:
                self._skip(report, label, e)

        if isinstance(document, dict) and 'functions' in document:
            self._load_function_table(document['functions'], report)
        return report

    # =========================================================================
    # Members
    # =========================================================================

    def _build_member(self, fmt: _Format, name: str, entry: Any,
                      report: LoadReport) -> Optional[MemberDescriptor]:
        """Translate one member entry into a descriptor.

        Unknown tags give an invalid descriptor; array geometry errors are
        raised as MalformedMetadataError for the enclosing struct.
        """
        if not isinstance(entry, dict):
            logger.warning(f"Skipping member '{name}': entry is not an object")
            report.invalid_members += 1
            return None

        offset = _as_int(entry.get('offset'))
        ref = fmt.member_ref(entry)
        if isinstance(ref, dict):
            resolved = self._resolve(fmt, ref)
        else:
            resolved = _Resolved(NO_TARGET, TypeCategory.VOID, valid=False)

        has_offset = offset is not None and offset >= 0
        valid = resolved.valid and has_offset
        size = resolved.size
        if size < 0:
            logger.debug(f"Member '{name}' has negative size {size}")
            size = 0
            valid = False
        if resolved.levels > 2:
            logger.debug(f"Member '{name}' has {resolved.levels} levels of indirection")
            valid = False
        if entry.get('valid') is False:
            # Written by the exporter for members that were invalid when loaded
            valid = False

        kwargs = dict(
            name=name,
            size_bytes=size,
            offset_bytes=offset if has_offset else 0,
            category=resolved.category,
            is_pointer=resolved.levels == 1,
            is_double_pointer=resolved.levels >= 2,
            is_little_endian=resolved.is_little_endian,
            is_signed=resolved.is_signed,
            is_valid=valid,
            pointer_target_name=resolved.name if resolved.levels else NO_TARGET,
            bit_position=resolved.bit_position,
            bit_length=resolved.bit_length,
        )
        if resolved.category is TypeCategory.ARRAY and resolved.levels == 0 and (
                resolved.element is None or resolved.size < 0):
            kwargs.update(category=TypeCategory.VOID, is_valid=False)
        elif resolved.category is TypeCategory.ARRAY and resolved.levels == 0:
            element = resolved.element
            kwargs.update(
                array_element_name=element.name + '*' * element.levels,
                array_element_category=element.category,
                array_element_size_bytes=element.size,
            )

        try:
            member = MemberDescriptor(**kwargs)
        except InvariantViolationError as e:
            raise MalformedMetadataError(f"Member '{name}': {e}") from e

        if not member.is_valid:
            report.invalid_members += 1
            logger.debug(f"Unsupported {member}")
        return member

    def _resolve(self, fmt: _Format, ref: Dict[str, Any]) -> _Resolved:
        """Resolve a (possibly nested) type reference."""
        tag = fmt.tag(ref)
        if not isinstance(tag, str):
            return _Resolved(str(ref.get('name', NO_TARGET)), TypeCategory.VOID, valid=False)

        if tag == POINTER_TAG:
            target = fmt.target(ref)
            if isinstance(target, dict):
                pointee = self._resolve(fmt, target)
            else:
                pointee = _Resolved('void', TypeCategory.VOID)
            while pointee.category is TypeCategory.ARRAY and pointee.levels == 0:
                # Pointer to array decays to pointer to its element
                if pointee.element is None:
                    pointee = replace(pointee, category=TypeCategory.VOID)
                else:
                    pointee = pointee.element
            return replace(
                pointee,
                size=fmt.pointer_size,
                is_signed=False,
                is_little_endian=fmt.pointer_endian(ref) == LITTLE_ENDIAN,
                valid=True,
                levels=pointee.levels + 1,
                element=None,
                bit_position=None,
                bit_length=None,
            )

        if tag == ARRAY_TAG:
            target = fmt.target(ref)
            if not isinstance(target, dict):
                # No element description; only usable as an opaque nested array
                return _Resolved(str(ref.get('name', ARRAY_TAG)), TypeCategory.ARRAY,
                                 size=_as_int(ref.get('size')) or 0, valid=False)
            element = self._resolve(fmt, target)
            count = fmt.array_count(ref, element)
            if count < 0:
                return _Resolved(element.name, TypeCategory.VOID, valid=False)
            return _Resolved(
                name=f"{element.name}[{count}]",
                category=TypeCategory.ARRAY,
                size=count * element.size,
                is_little_endian=element.is_little_endian,
                valid=element.valid or element.category is TypeCategory.ARRAY,
                element=element,
            )

        if tag == BITFIELD_TAG:
            position = _as_int(ref.get('bit_position'))
            length = _as_int(ref.get('bit_length'))
            storage_ref = fmt.bitfield_storage(ref)
            if (not isinstance(storage_ref, dict) or position is None or position < 0
                    or length is None or length <= 0):
                logger.debug(f"Bitfield with unusable geometry {position}:{length}")
                return _Resolved(BITFIELD_TAG, TypeCategory.INT, valid=False)
            storage = self._resolve(fmt, storage_ref)
            if storage.levels or storage.category not in (TypeCategory.INT, TypeCategory.CHAR,
                                                          TypeCategory.BOOL, TypeCategory.ENUM):
                return replace(storage, valid=False)
            if position + length > storage.size * 8:
                logger.debug(f"Bitfield {position}:{length} exceeds {storage.size}-byte storage")
                return replace(storage, valid=False)
            return replace(storage, category=TypeCategory.INT,
                           bit_position=position, bit_length=length)

        return fmt.scalar(ref, tag)

    # =========================================================================
    # Functions
    # =========================================================================

    def _load_isf_symbols(self, symbols: Any, report: LoadReport):
        if symbols is None:
            return
        if not isinstance(symbols, dict):
            self._skip(report, 'symbols', MalformedMetadataError("'symbols' must be an object"))
            return

        for name, entry in symbols.items():
            if not isinstance(entry, dict):
                continue
            type_info = entry.get('type')
            if not isinstance(type_info, dict) or type_info.get('kind') != 'function':
                continue
            address = _parse_address(entry.get('address'))
            if address is None:
                logger.warning(f"Function symbol '{name}' has no usable address")
                continue
            self.registry.register_function(address, name)
            report.functions_loaded += 1

    def _load_function_table(self, table: Any, report: LoadReport):
        if isinstance(table, dict):
            entries = list(table.items())
        elif isinstance(table, list):
            entries = []
            for item in table:
                if isinstance(item, dict):
                    entries.append((item.get('address'), item.get('name')))
                else:
                    logger.warning(f"Skipping function entry {item!r}")
        else:
            self._skip(report, 'functions', MalformedMetadataError("'functions' must be an object or array"))
            return

        for raw_address, name in entries:
            address = _parse_address(raw_address)
            if address is None or not isinstance(name, str) or not name:
                logger.warning(f"Skipping function entry {raw_address!r} -> {name!r}")
                continue
            self.registry.register_function(address, name)
            report.functions_loaded += 1

    # =========================================================================
    # Helpers
    # =========================================================================

    def _register(self, struct_type: StructuredType, report: LoadReport):
        self.registry.register_type(struct_type)
        report.structs_loaded += 1
        if self.log_verbose:
            logger.info(str(struct_type))

    def _set_pointer_size(self, size: int):
        try:
            self.registry.set_pointer_size(size)
        except ValueError as e:
            logger.warning(f"Ignoring pointer size from metadata: {e}")

    def _skip(self, report: LoadReport, record: str, error: MalformedMetadataError):
        if not self.skip_malformed:
            raise error
        if error.record is None:
            error.record = record
        logger.warning(f"Skipping malformed record '{record}': {error}")
        report.skipped.append((record, str(error)))
