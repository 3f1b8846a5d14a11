"""
AAMP Binary Serializer
======================

Writes a ParameterIO tree back into the AAMP v2 binary layout (see
aamp_parser.py for the format tables).

Output Layout:
-------------
  1. Header (0x30 bytes)
  2. Type string + NUL, padded to 4
  3. List records      (root list "param_root" first)
  4. Object records
  5. Param records
  6. Data section      (every non-string value, each padded to 4)
  7. String section    (every string value, each padded to 4)

The layout is canonical: decoding the output gives back the same tree, but a
hand-authored file will not come back byte-for-byte.

Two-Phase Layout:
----------------
Record offsets are relative to the record holding them, and a parent is
written before its children, so nothing can be written in one pass.

Phase 1 (skeleton): walk the tree depth-first and give every list, object
and param a slot in its own arena. For each list: its objects (with their
params) go in one contiguous run, then its child lists in one contiguous
run, then each child list is walked. A parent remembers the slot of its
first child.

Phase 2 (values): once the arenas are final every slot has a fixed address.
Non-string values are written first into the data section, then strings
into the string section. Buffers get their u32 element count first and the
param points past it. Finally the record offsets are filled in from the
slot addresses and the header is built from the finished section sizes.

Usage:
------
    from aamp_serializer import write_aamp
    data = write_aamp(pio)
"""

import struct
from dataclasses import dataclass
from typing import List

from aamp_errors import EncodingInvariantError
from aamp_parser import (
    CURVE_RECORD,
    FLAG_LITTLE_ENDIAN,
    FLAG_UTF8,
    HEADER_SIZE,
    HEADER_STRUCT,
    LIST_RECORD,
    MAGIC,
    OBJECT_RECORD,
    PARAM_RECORD,
    U32,
    VERSION,
)
from aamp_types import (
    CURVE_COUNTS,
    ROOT_HASH,
    VECTOR_SIZES,
    Parameter,
    ParameterIO,
    ParameterList,
    ParamType,
)

U16_MAX = 0xFFFF
U24_MAX = 0xFFFFFF

SCALAR_FORMATS = {
    ParamType.F32: '<f',
    ParamType.INT: '<i',
    ParamType.U32: '<I',
}

BUFFER_CODES = {
    ParamType.BUFFER_INT: 'i',
    ParamType.BUFFER_F32: 'f',
    ParamType.BUFFER_U32: 'I',
}


def align(value: int, alignment: int = 4) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


def pad(buffer: bytearray, alignment: int = 4) -> None:
    buffer.extend(b'\0' * (align(len(buffer), alignment) - len(buffer)))


def _u16(value: int, what: str) -> int:
    if not 0 <= value <= U16_MAX:
        raise EncodingInvariantError(f"{what} {value} does not fit in 16 bits")
    return value


# =============================================================================
# Record slots
# =============================================================================

@dataclass
class ListSlot:
    crc: int
    num_lists: int
    num_objects: int
    first_list: int = 0     # slot index of the first child list
    first_object: int = 0   # slot index of the first child object


@dataclass
class ObjectSlot:
    crc: int
    num_params: int
    first_param: int


@dataclass
class ParamSlot:
    crc: int
    param: Parameter
    value_pos: int = 0      # absolute address of the value, set in phase 2


# =============================================================================
# Serializer Class
# =============================================================================

class AampSerializer:
    """Serializer for parameter archive documents"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.list_slots: List[ListSlot] = []
        self.object_slots: List[ObjectSlot] = []
        self.param_slots: List[ParamSlot] = []

    def serialize(self, pio: ParameterIO) -> bytes:
        self.list_slots = [ListSlot(ROOT_HASH, len(pio.lists), len(pio.objects))]
        self.object_slots = []
        self.param_slots = []

        # Phase 1: skeleton
        self._emit_list(0, pio.param_root)

        type_block = self._type_block(pio.pio_type)

        lists_start = HEADER_SIZE + len(type_block)
        objects_start = lists_start + LIST_RECORD.size * len(self.list_slots)
        params_start = objects_start + OBJECT_RECORD.size * len(self.object_slots)
        data_start = params_start + PARAM_RECORD.size * len(self.param_slots)

        # Phase 2: values, non-strings first
        data_section = bytearray()
        for slot in self.param_slots:
            if not slot.param.is_string:
                slot.value_pos = data_start + self._write_value(slot, data_section)

        strings_start = data_start + len(data_section)
        string_section = bytearray()
        for slot in self.param_slots:
            if slot.param.is_string:
                slot.value_pos = strings_start + self._write_value(slot, string_section)

        list_block = self._pack_lists(lists_start, objects_start)
        object_block = self._pack_objects(objects_start, params_start)
        param_block = self._pack_params(params_start)

        file_size = strings_start + len(string_section)
        if not 0 <= pio.version <= 0xFFFFFFFF:
            raise EncodingInvariantError(f"Document version {pio.version} does not fit in 32 bits")
        header = HEADER_STRUCT.pack(
            MAGIC,
            VERSION,
            FLAG_LITTLE_ENDIAN | FLAG_UTF8,
            file_size,
            pio.version,
            len(type_block),
            len(self.list_slots),
            len(self.object_slots),
            len(self.param_slots),
            len(data_section),
            len(string_section),
            0,
        )

        if self.verbose:
            print(f"  Lists:   {len(self.list_slots):6d} records at 0x{lists_start:X}")
            print(f"  Objects: {len(self.object_slots):6d} records at 0x{objects_start:X}")
            print(f"  Params:  {len(self.param_slots):6d} records at 0x{params_start:X}")
            print(f"  Data:    {len(data_section):6d} bytes at 0x{data_start:X}")
            print(f"  Strings: {len(string_section):6d} bytes at 0x{strings_start:X}")
            print(f"  Total:   {file_size:6d} bytes")

        output = bytearray()
        output.extend(header)
        output.extend(type_block)
        output.extend(list_block)
        output.extend(object_block)
        output.extend(param_block)
        output.extend(data_section)
        output.extend(string_section)
        return bytes(output)

    @staticmethod
    def _type_block(pio_type: str) -> bytearray:
        # The type string is NUL-terminated on disk
        if '\0' in pio_type:
            raise EncodingInvariantError(f"Document type {pio_type!r} contains a NUL character")
        try:
            block = bytearray(pio_type.encode('utf-8') + b'\0')
        except UnicodeEncodeError as e:
            raise EncodingInvariantError(f"Document type is not encodable as UTF-8: {e.reason}") from e
        pad(block)
        return block

    # -------------------------------------------------------------------------
    # Phase 1
    # -------------------------------------------------------------------------

    def _emit_list(self, slot_index: int, plist: ParameterList):
        # Preorder walk on an explicit stack: a list's children are visited in
        # order, and each child's whole subtree before its next sibling
        pending = [(slot_index, plist)]
        while pending:
            slot_index, plist = pending.pop()
            slot = self.list_slots[slot_index]

            slot.first_object = len(self.object_slots)
            for crc, obj in plist.objects.items():
                self.object_slots.append(ObjectSlot(crc, len(obj), len(self.param_slots)))
                for param_crc, param in obj.items():
                    self.param_slots.append(ParamSlot(param_crc, param))

            slot.first_list = len(self.list_slots)
            for crc, sublist in plist.lists.items():
                self.list_slots.append(ListSlot(crc, len(sublist.lists), len(sublist.objects)))
            children = list(enumerate(plist.lists.values(), slot.first_list))
            pending.extend(reversed(children))

    # -------------------------------------------------------------------------
    # Phase 2
    # -------------------------------------------------------------------------

    def _write_value(self, slot: ParamSlot, section: bytearray) -> int:
        """Append a value to a section, returns its offset inside the section"""
        param = slot.param
        try:
            if param.is_buffer:
                section.extend(U32.pack(len(param.value)))
            offset = len(section)
            section.extend(pack_value(param))
        except (struct.error, OverflowError, UnicodeEncodeError) as e:
            raise EncodingInvariantError(
                f"Cannot encode {param.type.name} value of 0x{slot.crc:08X}: {e}") from e
        pad(section)
        return offset

    def _pack_lists(self, lists_start: int, objects_start: int) -> bytes:
        block = bytearray()
        for i, slot in enumerate(self.list_slots):
            pos = lists_start + LIST_RECORD.size * i
            lists_rel = (lists_start + LIST_RECORD.size * slot.first_list - pos) // 4
            objs_rel = (objects_start + OBJECT_RECORD.size * slot.first_object - pos) // 4
            block.extend(LIST_RECORD.pack(
                slot.crc,
                _u16(lists_rel, f"List 0x{slot.crc:08X} child list offset"),
                _u16(slot.num_lists, f"List 0x{slot.crc:08X} child list count"),
                _u16(objs_rel, f"List 0x{slot.crc:08X} object offset"),
                _u16(slot.num_objects, f"List 0x{slot.crc:08X} object count"),
            ))
        return bytes(block)

    def _pack_objects(self, objects_start: int, params_start: int) -> bytes:
        block = bytearray()
        for i, slot in enumerate(self.object_slots):
            pos = objects_start + OBJECT_RECORD.size * i
            params_rel = (params_start + PARAM_RECORD.size * slot.first_param - pos) // 4
            block.extend(OBJECT_RECORD.pack(
                slot.crc,
                _u16(params_rel, f"Object 0x{slot.crc:08X} parameter offset"),
                _u16(slot.num_params, f"Object 0x{slot.crc:08X} parameter count"),
            ))
        return bytes(block)

    def _pack_params(self, params_start: int) -> bytes:
        block = bytearray()
        for i, slot in enumerate(self.param_slots):
            pos = params_start + PARAM_RECORD.size * i
            data_rel = (slot.value_pos - pos) // 4
            if not 0 <= data_rel <= U24_MAX:
                raise EncodingInvariantError(
                    f"Parameter 0x{slot.crc:08X} data offset {data_rel} does not fit in 24 bits")
            block.extend(PARAM_RECORD.pack(slot.crc, (int(slot.param.type) << 24) | data_rel))
        return bytes(block)


def pack_value(param: Parameter) -> bytes:
    """Binary form of a value (buffers without their count prefix)"""
    param_type = param.type
    value = param.value

    if param_type == ParamType.BOOL:
        return U32.pack(1 if value else 0)

    if param_type in SCALAR_FORMATS:
        return struct.pack(SCALAR_FORMATS[param_type], value)

    if param_type in VECTOR_SIZES:
        return struct.pack(f'<{VECTOR_SIZES[param_type]}f', *value)

    if param_type in CURVE_COUNTS:
        return b''.join(CURVE_RECORD.pack(curve.a, curve.b, *curve.floats) for curve in value)

    if param_type in BUFFER_CODES:
        return struct.pack(f'<{len(value)}{BUFFER_CODES[param_type]}', *value)

    if param_type == ParamType.BUFFER_BINARY:
        return bytes(value)

    if param.is_string:
        return value.encode('utf-8') + b'\0'

    raise EncodingInvariantError(f"Unknown parameter type: {param_type!r}")


def write_aamp(pio: ParameterIO, verbose: bool = False) -> bytes:
    """
    Encode a document into the AAMP v2 binary layout.

    Raises:
        EncodingInvariantError if a count, offset or value does not fit its field
    """
    return AampSerializer(verbose=verbose).serialize(pio)
