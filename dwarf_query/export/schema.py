"""Flat type-metadata document format.

This is the format written by RegistryExporter and read back by
MetadataLoader alongside dwarf2json ISF files.
"""

# Schema version
FLAT_FORMAT_VERSION = "1.0.0"

# Full schema definition
DOCUMENT_SCHEMA = {
    'version': FLAT_FORMAT_VERSION,
    'description': 'dwarf-query flat type metadata format',

    'pointer_size': {'type': 'integer', 'enum': [2, 4, 8]},

    'structs': {
        'type': 'array',
        'items': {
            'type': 'object',
            'required': ['name', 'size'],
            'properties': {
                'name': {'type': 'string'},
                'size': {'type': 'integer', 'description': 'Total size in bytes'},
                'members': {'type': 'array', 'items': {'$ref': '#/member'}},
            },
        },
    },

    'member': {
        'type': 'object',
        'required': ['name', 'offset', 'type'],
        'properties': {
            'name': {'type': 'string'},
            'offset': {'type': 'integer', 'description': 'Byte offset from struct start'},
            'size': {'type': 'integer'},
            'type': {
                'type': 'string',
                'description': "Type tag: base, pointer, array, bitfield, struct, union, enum, "
                               "function, void, bool, char, int, float, double",
            },
            'kind': {'type': 'string', 'description': "Primitive kind when type is 'base'"},
            'endian': {'type': 'string', 'enum': ['little', 'big']},
            'signed': {'type': 'boolean'},
            'target': {'$ref': '#/type_ref', 'description': 'Pointee, for pointers'},
            'element': {'$ref': '#/type_ref', 'description': 'Element type, for arrays'},
            'bit_position': {'type': 'integer'},
            'bit_length': {'type': 'integer'},
            'valid': {'type': 'boolean', 'description': 'False marks a member that cannot be decoded'},
        },
    },

    'type_ref': {
        'type': 'object',
        'properties': {
            'type': {'type': 'string'},
            'name': {'type': 'string'},
            'size': {'type': 'integer'},
            'signed': {'type': 'boolean'},
            'endian': {'type': 'string'},
            'target': {'$ref': '#/type_ref'},
        },
    },

    'functions': {
        'type': 'object',
        'description': 'Code address (hex string or integer) -> function name',
        'additionalProperties': {'type': 'string'},
    },
}


# Example document
EXAMPLE_DOCUMENT = {
    'version': FLAT_FORMAT_VERSION,
    'pointer_size': 8,
    'structs': [
        {
            'name': 'task_struct',
            'size': 40,
            'members': [
                {'name': 'pid', 'offset': 0, 'size': 4, 'type': 'int',
                 'endian': 'little', 'signed': True},
                {'name': 'flags', 'offset': 4, 'size': 4, 'type': 'bitfield',
                 'endian': 'little', 'signed': False, 'bit_position': 0, 'bit_length': 3},
                {'name': 'parent', 'offset': 8, 'size': 8, 'type': 'pointer',
                 'endian': 'little', 'target': {'type': 'struct', 'name': 'task_struct'}},
                {'name': 'comm', 'offset': 16, 'size': 16, 'type': 'array',
                 'element': {'type': 'char', 'name': 'char', 'size': 1, 'signed': True}},
                {'name': 'utime', 'offset': 32, 'size': 8, 'type': 'double',
                 'endian': 'little'},
            ],
        },
    ],
    'functions': {
        '0xffffffff81000000': 'startup_64',
        '0xffffffff81001000': 'do_fork',
    },
}
