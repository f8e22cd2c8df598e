"""Read-only HTTP query service over an analysis session.

Lets other tools of an analysis run look up struct layouts and symbolicate
code addresses without loading the metadata themselves.
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException

from .core.types import MemberDescriptor, StructuredType
from .session import AnalysisSession

logger = logging.getLogger(__name__)


def member_to_dict(member: MemberDescriptor) -> Dict[str, Any]:
    """JSON view of a member descriptor."""
    data = {
        'name': member.name,
        'offset': member.offset_bytes,
        'size': member.size_bytes,
        'category': member.category.value,
        'pointer': member.is_pointer,
        'double_pointer': member.is_double_pointer,
        'little_endian': member.is_little_endian,
        'signed': member.is_signed,
        'valid': member.is_valid,
        'target': member.pointer_target_name,
        'description': str(member),
    }
    if member.element_count() >= 0:
        data['element'] = {
            'name': member.array_element_name,
            'category': member.array_element_category.value,
            'size': member.array_element_size_bytes,
            'count': member.element_count(),
        }
    if member.is_bitfield:
        data['bit_position'] = member.bit_position
        data['bit_length'] = member.bit_length
    return data


def struct_to_dict(struct_type: StructuredType) -> Dict[str, Any]:
    return {
        'name': struct_type.name,
        'size': struct_type.size_bytes,
        'members': [member_to_dict(m) for m in struct_type.members],
    }


def create_app(session: AnalysisSession) -> FastAPI:
    """Build the FastAPI app serving ``session``'s registry."""
    app = FastAPI(title="dwarf-query", docs_url=None, redoc_url=None)
    registry = session.registry

    @app.get('/api/status')
    async def status():
        return {
            'status': 'ok',
            **registry.stats,
            'skipped_records': len(session.report.skipped),
        }

    @app.get('/api/types')
    async def list_types(q: str = ''):
        if q:
            names = sorted(s.name for s in registry.search_types(q))
        else:
            names = registry.type_names()
        return {'types': names, 'count': len(names)}

    @app.get('/api/types/{name}')
    async def get_type(name: str):
        struct_type = registry.lookup_type(name)
        if struct_type is None:
            raise HTTPException(status_code=404, detail=f"Unknown type '{name}'")
        return struct_to_dict(struct_type)

    @app.get('/api/functions/{address}')
    async def symbolicate(address: str):
        try:
            value = int(address, 0)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid address: {address}")
        name = registry.lookup_function_containing(value)
        if name is None:
            raise HTTPException(status_code=404, detail=f"No function contains 0x{value:X}")
        return {
            'address': f"0x{value:X}",
            'function': name,
            'exact': registry.lookup_function(value) == name,
        }

    logger.info(f"Query service ready ({len(registry)} types)")
    return app
