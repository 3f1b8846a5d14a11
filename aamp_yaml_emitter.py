"""
AAMP YAML Emitter
=================

Converts a ParameterIO tree to the tagged YAML text format. The tree is
turned into a PyYAML event stream and handed to yaml.emit(), so quoting and
escaping follow PyYAML.

Output Shape:
------------
    !io
    version: 0
    type: xml
    param_root: !list
      objects:
        General: !obj
          Life: 120
          Speed: 1.5
          IsActive: true
          Mask: !u '0xFF'
          Label: !str64 'Enemy name'
          Ref: Lizalfos
          Position: !vec3 [0.0, 1.5, -2.0]
      lists: {}

Key Names:
---------
Keys are stored as hashes only. Each one is rendered with, in order:
  1. the exact name from the NameTable
  2. a guessed name (parent container's hash + sibling index)
  3. the decimal hash, as a plain scalar

A name made only of digits is double-quoted, since a plain digit key reads
back as a raw hash.

Untagged values read back by content (int, then float, then true/false,
then string), so a string reference that would read back as something else
is double-quoted.
"""

from typing import List, Optional

import yaml

from aamp_names import NameTable
from aamp_types import (
    CURVE_COUNTS,
    ROOT_HASH,
    VECTOR_SIZES,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParamType,
)
from aamp_yaml_parser import DIGITS_RE, PARAM_TAGS, classify_plain


class YamlEmitter:
    """Builds the YAML event stream for one document"""

    def __init__(self, names: Optional[NameTable] = None):
        self.names = names if names is not None else NameTable()
        self.events: List[yaml.Event] = []

    def emit(self, pio: ParameterIO) -> str:
        self.events = [
            yaml.StreamStartEvent(),
            yaml.DocumentStartEvent(explicit=False),
            yaml.MappingStartEvent(None, '!io', False, flow_style=False),
        ]
        self._plain('version')
        self._plain(str(pio.version))
        self._plain('type')
        self._string(pio.pio_type)
        self._plain('param_root')
        self._write_list(ROOT_HASH, pio.param_root)
        self.events.extend([
            yaml.MappingEndEvent(),
            yaml.DocumentEndEvent(explicit=False),
            yaml.StreamEndEvent(),
        ])
        return yaml.emit(self.events, allow_unicode=True)

    # -------------------------------------------------------------------------
    # Scalars
    # -------------------------------------------------------------------------

    def _plain(self, value: str):
        self.events.append(yaml.ScalarEvent(None, None, (True, True), value))

    def _quoted(self, value: str):
        self.events.append(yaml.ScalarEvent(None, None, (True, True), value, style='"'))

    def _tagged(self, tag: str, value: str):
        self.events.append(yaml.ScalarEvent(None, tag, (False, False), value))

    def _string(self, value: str):
        if classify_plain(value) != ParamType.STRING_REF:
            self._quoted(value)
        else:
            self._plain(value)

    def _key(self, crc: int, parent_crc: int, index: int):
        self.events.append(self._key_event(crc, parent_crc, index))

    def _key_event(self, crc: int, parent_crc: int, index: int) -> yaml.ScalarEvent:
        name = self.names.lookup(crc)
        if name is None:
            name = self.names.guess(crc, parent_crc, index)
        if name is None:
            return yaml.ScalarEvent(None, None, (True, True), str(crc))
        if DIGITS_RE.fullmatch(name):
            return yaml.ScalarEvent(None, None, (True, True), name, style='"')
        return yaml.ScalarEvent(None, None, (True, True), name)

    def _sequence(self, tag: str, values: List[str]):
        self.events.append(yaml.SequenceStartEvent(None, tag, False, flow_style=True))
        for value in values:
            self._plain(value)
        self.events.append(yaml.SequenceEndEvent())

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    def _write_list(self, crc: int, plist: ParameterList):
        # Pending work is either a (crc, list) still to open, or an event to
        # append once everything pushed after it has been written
        pending = [(crc, plist)]
        while pending:
            item = pending.pop()
            if isinstance(item, yaml.Event):
                self.events.append(item)
                continue

            crc, plist = item
            self.events.append(yaml.MappingStartEvent(None, '!list', False, flow_style=False))

            self._plain('objects')
            self.events.append(yaml.MappingStartEvent(None, None, True, flow_style=False))
            for i, (obj_crc, obj) in enumerate(plist.objects.items()):
                self._key(obj_crc, crc, i)
                self._write_object(obj_crc, obj)
            self.events.append(yaml.MappingEndEvent())

            self._plain('lists')
            self.events.append(yaml.MappingStartEvent(None, None, True, flow_style=False))
            tail = []
            for i, (list_crc, sublist) in enumerate(plist.lists.items()):
                tail.append(self._key_event(list_crc, crc, i))
                tail.append((list_crc, sublist))
            tail.extend([yaml.MappingEndEvent(), yaml.MappingEndEvent()])
            pending.extend(reversed(tail))

    def _write_object(self, crc: int, obj: ParameterObject):
        self.events.append(yaml.MappingStartEvent(None, '!obj', False, flow_style=False))
        for i, (param_crc, param) in enumerate(obj.items()):
            self._key(param_crc, crc, i)
            self._write_param(param)
        self.events.append(yaml.MappingEndEvent())

    def _write_param(self, param: Parameter):
        param_type = param.type
        value = param.value

        if param_type == ParamType.BOOL:
            self._plain('true' if value else 'false')
        elif param_type == ParamType.F32:
            self._plain(format_float(value))
        elif param_type == ParamType.INT:
            self._plain(str(value))
        elif param_type == ParamType.U32:
            self._tagged(PARAM_TAGS[param_type], f"0x{value:X}")
        elif param_type == ParamType.STRING_REF:
            self._string(value)
        elif param.is_string:
            self._tagged(PARAM_TAGS[param_type], value)
        elif param_type in VECTOR_SIZES or param_type == ParamType.BUFFER_F32:
            self._sequence(PARAM_TAGS[param_type], [format_float(v) for v in value])
        elif param_type in CURVE_COUNTS:
            values = []
            for curve in value:
                values.extend([str(curve.a), str(curve.b)])
                values.extend(format_float(f) for f in curve.floats)
            self._sequence(PARAM_TAGS[param_type], values)
        else:
            # BUFFER_INT, BUFFER_U32, BUFFER_BINARY
            self._sequence(PARAM_TAGS[param_type], [str(v) for v in value])


def format_float(value: float) -> str:
    return repr(float(value))


def to_yaml(pio: ParameterIO, names: Optional[NameTable] = None) -> str:
    """
    Render a document as tagged YAML text.

    Args:
        pio: Document to render
        names: NameTable used to turn key hashes back into names
               (a fresh stock table if None)
    """
    return YamlEmitter(names).emit(pio)
