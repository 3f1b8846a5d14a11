#!/usr/bin/env python3
"""
AAMP Binary Parser
==================

Parser for binary parameter archive files (AAMP version 2, little-endian).

File Structure:
--------------
| Section          | Size            | Notes                              |
|------------------|-----------------|------------------------------------|
| Header           | 0x30 bytes      | magic + 11 x u32                   |
| Type string      | variable        | NUL-terminated, padded to 4        |
| List records     | 12 bytes each   | root list first                    |
| Object records   | 8 bytes each    |                                    |
| Param records    | 8 bytes each    |                                    |
| Data section     | variable        | non-string values, 4-byte aligned  |
| String section   | variable        | NUL-terminated strings, aligned    |

Header Structure (0x30 bytes):
-----------------------------
0x00: Magic "AAMP"
0x04: Version (must be 2)
0x08: Flags (bit 0 = little-endian, must be set; bit 1 = UTF-8)
0x0C: File size
0x10: Document version
0x14: Offset from 0x30 to the root list record (= padded type string size)
0x18: List count
0x1C: Object count
0x20: Parameter count
0x24: Data section size
0x28: String section size
0x2C: Unknown section size

Records:
-------
List:   [hash u32][lists offset u16][list count u16][objects offset u16][object count u16]
Object: [hash u32][params offset u16][param count u16]
Param:  [hash u32][data offset u24][type u8]

Every offset is counted in 4-byte words from the start of the record that
holds it. Buffer values are preceded by a u32 element count and the param's
data offset points just past it.

Only the name hashes are stored. Every string value read here is added to the
NameTable, because a string whose hash is used as a key elsewhere is the
exact name for that key.

Usage:
------
    python aamp_parser.py Enemy.bxml
    python aamp_parser.py Enemy.bxml --tree
"""

import argparse
import struct
import sys
from dataclasses import dataclass
from typing import Optional, Set, Tuple

from aamp_errors import AampError, FormatError, TruncatedInputError
from aamp_names import NameTable
from aamp_types import (
    CURVE_COUNTS,
    CURVE_FLOAT_COUNT,
    ROOT_HASH,
    STRING_TYPES,
    VECTOR_SIZES,
    Curve,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParamType,
)


# =============================================================================
# Constants
# =============================================================================

MAGIC = b'AAMP'
VERSION = 2
FLAG_LITTLE_ENDIAN = 0x1
FLAG_UTF8 = 0x2
HEADER_SIZE = 0x30

HEADER_STRUCT = struct.Struct('<4s11I')
LIST_RECORD = struct.Struct('<IHHHH')
OBJECT_RECORD = struct.Struct('<IHH')
PARAM_RECORD = struct.Struct('<II')         # hash, (type << 24) | data offset
CURVE_RECORD = struct.Struct(f'<II{CURVE_FLOAT_COUNT}f')

U8 = struct.Struct('<B')
U32 = struct.Struct('<I')

SCALAR_STRUCTS = {
    ParamType.F32: struct.Struct('<f'),
    ParamType.INT: struct.Struct('<i'),
    ParamType.U32: U32,
}

# Buffer element format and size
BUFFER_FORMATS = {
    ParamType.BUFFER_INT: ('i', 4),
    ParamType.BUFFER_F32: ('f', 4),
    ParamType.BUFFER_U32: ('I', 4),
    ParamType.BUFFER_BINARY: ('B', 1),
}


# =============================================================================
# Header
# =============================================================================

@dataclass
class AampHeader:
    """0x30-byte file header"""
    version: int
    flags: int
    file_size: int
    pio_version: int
    pio_offset: int
    num_lists: int
    num_objects: int
    num_params: int
    data_section_size: int
    string_section_size: int
    unknown_section_size: int

    @classmethod
    def parse(cls, data: bytes) -> 'AampHeader':
        """Parse and validate the header. Raises before any structural read."""
        if len(data) < len(MAGIC):
            raise TruncatedInputError(f"File too small for AAMP header: {len(data)} bytes", 0)
        if data[:4] != MAGIC:
            raise FormatError(f"Bad magic: {data[:4]!r} (expected {MAGIC!r})", 0)
        if len(data) < HEADER_SIZE:
            raise TruncatedInputError(f"File too small for AAMP header: {len(data)} bytes", len(data))

        fields = HEADER_STRUCT.unpack_from(data, 0)
        header = cls(*fields[1:])

        if header.version != VERSION:
            raise FormatError(f"Unsupported AAMP version {header.version} (expected {VERSION})", 0x04)
        if not header.flags & FLAG_LITTLE_ENDIAN:
            raise FormatError(f"Flags 0x{header.flags:08X} do not mark a little-endian file", 0x08)
        if header.file_size > len(data):
            raise TruncatedInputError(
                f"Header declares {header.file_size} bytes but only {len(data)} are present", len(data))
        return header

    @property
    def root_offset(self) -> int:
        return HEADER_SIZE + self.pio_offset

    def __str__(self):
        return (f"AampHeader(version={self.version}, flags=0x{self.flags:X}, "
                f"size={self.file_size}, pio_version={self.pio_version}, "
                f"root=0x{self.root_offset:X}, lists={self.num_lists}, "
                f"objects={self.num_objects}, params={self.num_params}, "
                f"data={self.data_section_size}, strings={self.string_section_size})")


# =============================================================================
# Parser Class
# =============================================================================

class AampParser:
    """Reads a binary parameter archive into a ParameterIO tree"""

    def __init__(self, names: Optional[NameTable] = None, verbose: bool = False):
        self.names = names if names is not None else NameTable()
        self.verbose = verbose
        self.data = b''
        self.header: Optional[AampHeader] = None
        self._visited: Set[int] = set()
        self.stats = {'lists': 0, 'objects': 0, 'params': 0, 'strings': 0}

    def parse(self, data: bytes) -> ParameterIO:
        self.data = bytes(data)
        self._visited = set()
        self.stats = {'lists': 0, 'objects': 0, 'params': 0, 'strings': 0}

        self.header = AampHeader.parse(self.data)
        pio_type = self._read_string(HEADER_SIZE)

        if self.verbose:
            print(f"{self.header}")
            print(f"Type: {pio_type!r}")

        root_crc, root = self._read_list(self.header.root_offset)

        if self.verbose:
            if root_crc != ROOT_HASH:
                print(f"  Root list hash 0x{root_crc:08X} is not param_root (0x{ROOT_HASH:08X})")
            self._print_counts()

        return ParameterIO(
            version=self.header.pio_version,
            pio_type=pio_type,
            lists=root.lists,
            objects=root.objects,
        )

    def _print_counts(self):
        header = self.header
        for label, declared, actual in (
            ("Lists", header.num_lists, self.stats['lists']),
            ("Objects", header.num_objects, self.stats['objects']),
            ("Params", header.num_params, self.stats['params']),
        ):
            match = 'PASS' if declared == actual else 'FAIL'
            print(f"  {label + ':':9s} {actual:6d} read, {declared:6d} declared ({match})")

    # -------------------------------------------------------------------------
    # Low-level reads
    # -------------------------------------------------------------------------

    def _unpack(self, fmt: struct.Struct, offset: int, what: str) -> tuple:
        if offset < 0 or offset + fmt.size > len(self.data):
            raise TruncatedInputError(f"Unexpected end of data reading {what}", offset)
        return fmt.unpack_from(self.data, offset)

    def _read_string(self, offset: int) -> str:
        if offset < 0 or offset >= len(self.data):
            raise TruncatedInputError("Unexpected end of data reading string", offset)
        end = self.data.find(b'\0', offset)
        if end == -1:
            raise TruncatedInputError("Unterminated string", offset)
        try:
            return self.data[offset:end].decode('utf-8')
        except UnicodeDecodeError as e:
            raise FormatError(f"Invalid UTF-8 string data: {e.reason}", offset) from e

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    def _read_list(self, offset: int) -> Tuple[int, ParameterList]:
        """Read a list and everything below it, depth-first without recursion"""
        crc = self._enter_list(offset)
        root = ParameterList()
        pending = [(offset, root)]

        while pending:
            offset, plist = pending.pop()
            _, lists_rel, num_lists, objs_rel, num_objs = self._unpack(LIST_RECORD, offset, "list record")

            # Children are linked in record order before any of them is filled
            lists_start = offset + lists_rel * 4
            children = []
            for i in range(num_lists):
                child_offset = lists_start + LIST_RECORD.size * i
                child = ParameterList()
                plist.lists[self._enter_list(child_offset)] = child
                children.append((child_offset, child))
            pending.extend(reversed(children))

            objs_start = offset + objs_rel * 4
            for i in range(num_objs):
                obj_crc, obj = self._read_object(objs_start + OBJECT_RECORD.size * i)
                plist.objects[obj_crc] = obj

        return crc, root

    def _enter_list(self, offset: int) -> int:
        """Mark a list record as read and return its hash"""
        if offset in self._visited:
            raise FormatError("List record is referenced twice (cyclic or shared offsets)", offset)
        self._visited.add(offset)
        self.stats['lists'] += 1
        return self._unpack(LIST_RECORD, offset, "list record")[0]

    def _read_object(self, offset: int) -> Tuple[int, ParameterObject]:
        crc, params_rel, num_params = self._unpack(OBJECT_RECORD, offset, "object record")
        self.stats['objects'] += 1
        obj = ParameterObject()

        params_start = offset + params_rel * 4
        for i in range(num_params):
            param_crc, param = self._read_param(params_start + PARAM_RECORD.size * i)
            obj.params[param_crc] = param

        return crc, obj

    def _read_param(self, offset: int) -> Tuple[int, Parameter]:
        crc, word = self._unpack(PARAM_RECORD, offset, "parameter record")
        self.stats['params'] += 1
        data_offset = offset + (word & 0xFFFFFF) * 4
        type_id = word >> 24
        try:
            param_type = ParamType(type_id)
        except ValueError:
            raise FormatError(f"Unknown parameter type {type_id} for hash 0x{crc:08X}", offset + 7) from None

        value = self._read_value(param_type, data_offset)
        return crc, Parameter(param_type, value)

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _read_value(self, param_type: ParamType, offset: int):
        if param_type == ParamType.BOOL:
            return self._unpack(U8, offset, "bool value")[0] != 0

        if param_type in SCALAR_STRUCTS:
            return self._unpack(SCALAR_STRUCTS[param_type], offset, f"{param_type.name} value")[0]

        if param_type in VECTOR_SIZES:
            fmt = struct.Struct(f'<{VECTOR_SIZES[param_type]}f')
            return self._unpack(fmt, offset, f"{param_type.name} value")

        if param_type in CURVE_COUNTS:
            curves = []
            for i in range(CURVE_COUNTS[param_type]):
                a, b, *floats = self._unpack(CURVE_RECORD, offset + CURVE_RECORD.size * i, "curve")
                curves.append(Curve(a, b, floats))
            return curves

        if param_type in BUFFER_FORMATS:
            return self._read_buffer(param_type, offset)

        if param_type in STRING_TYPES:
            value = self._read_string(offset)
            self.names.add(value)
            self.stats['strings'] += 1
            return value

        raise FormatError(f"Unhandled parameter type {param_type.name}", offset)

    def _read_buffer(self, param_type: ParamType, offset: int):
        # The data offset points past the element count
        count = self._unpack(U32, offset - 4, "buffer size")[0]
        code, size = BUFFER_FORMATS[param_type]
        end = offset + count * size
        if end > len(self.data):
            raise TruncatedInputError(
                f"{param_type.name} of {count} elements runs past end of data", offset)
        if param_type == ParamType.BUFFER_BINARY:
            return self.data[offset:end]
        return list(struct.unpack_from(f'<{count}{code}', self.data, offset))


def read_aamp(data, names: Optional[NameTable] = None, verbose: bool = False) -> ParameterIO:
    """
    Decode a binary parameter archive.

    Args:
        data: bytes-like object or a readable binary file object
        names: NameTable to record string values in (a fresh stock table if None)
        verbose: Print header and record counts

    Returns:
        ParameterIO tree

    Raises:
        FormatError / TruncatedInputError on malformed input
    """
    if hasattr(data, 'read'):
        data = data.read()
    return AampParser(names, verbose=verbose).parse(data)


def is_aamp(data: bytes) -> bool:
    return data[:len(MAGIC)] == MAGIC


# =============================================================================
# MAIN
# =============================================================================

def print_tree(pio: ParameterIO, names: NameTable):
    """Print the structure of a document with every known name resolved"""

    def label(crc: int) -> str:
        name = names.lookup(crc)
        return f"{name} (0x{crc:08X})" if name else f"0x{crc:08X}"

    pending = [(ROOT_HASH, pio.param_root, 0)]
    while pending:
        list_crc, plist, depth = pending.pop()
        print(f"{'  ' * depth}list {label(list_crc)}")
        indent = "  " * (depth + 1)
        for crc, obj in plist.objects.items():
            print(f"{indent}obj  {label(crc)} [{len(obj)} params]")
            for param_crc, param in obj.items():
                print(f"{indent}  {param.type.name:13s} {label(param_crc)} = {param.value!r}")
        pending.extend((crc, sublist, depth + 1) for crc, sublist in reversed(plist.lists.items()))


def main():
    parser = argparse.ArgumentParser(description='Inspect binary parameter archive (AAMP) files')
    parser.add_argument('input', help='AAMP file to parse')
    parser.add_argument('--tree', '-t', action='store_true', help='Print every list, object and parameter')
    parser.add_argument('--names', '-n', help='Extra name dictionary (one name per line)')

    args = parser.parse_args()

    names = NameTable()
    try:
        if args.names:
            names.load_file(args.names)
        with open(args.input, 'rb') as f:
            pio = read_aamp(f, names, verbose=True)
    except (OSError, AampError) as e:
        print(f"ERROR: {e}")
        return 1

    if args.tree:
        print()
        print_tree(pio, names)

    return 0


if __name__ == "__main__":
    sys.exit(main())
