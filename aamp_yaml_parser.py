"""
AAMP YAML Parser
================

Reads the tagged YAML text format back into a ParameterIO tree.

The text is fed through PyYAML's event parser (yaml.parse) and the events
drive a small state machine. No YAML nodes are composed and no YAML type
resolution happens, so a scalar means exactly what the tables below say.

Grammar:
-------
| Node       | Tag       | Content                                         |
|------------|-----------|-------------------------------------------------|
| document   | !io       | version: int, type: str, param_root: list node  |
| list node  | !list     | objects: {key: object node}, lists: {key: list} |
| object     | !obj      | {key: parameter}                                |

Parameters:
----------
| Tag            | Node      | Type          | Tag            | Node      | Type          |
|----------------|-----------|---------------|----------------|-----------|---------------|
| (none, plain)  | scalar    | by content    | !vec2 .. !vec4 | sequence  | VEC2 .. VEC4  |
| (none, quoted) | scalar    | STRING_REF    | !color / !quat | sequence  | COLOR / QUAT  |
| !str32         | scalar    | STRING32      | !curve         | 32 x N    | CURVE1..4     |
| !str64         | scalar    | STRING64      | !buffer_int    | sequence  | BUFFER_INT    |
| !str256        | scalar    | STRING256     | !buffer_f32    | sequence  | BUFFER_F32    |
| !u             | scalar    | U32           | !buffer_u32    | sequence  | BUFFER_U32    |
|                |           |               | !buffer_binary | sequence  | BUFFER_BINARY |

A plain untagged scalar is an INT if it is an integer in i32 range, else an
F32 if it is a float, else a BOOL if it is true/false, else a STRING_REF.

Keys:
----
A plain key made only of digits is a raw hash. Any other key is a name; it
is hashed and added to the NameTable.

Usage:
------
    from aamp_yaml_parser import from_yaml
    pio = from_yaml(open('Enemy.yml', encoding='utf-8').read())
"""

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, List, Optional, Set

import yaml

from aamp_errors import EncodingInvariantError, TextSyntaxError
from aamp_names import NameTable
from aamp_types import (
    CURVE_TYPES,
    CURVE_VALUE_COUNT,
    I32_MAX,
    I32_MIN,
    U32_MAX,
    Curve,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParamType,
)


# =============================================================================
# Tags and scalar patterns
# =============================================================================

IO_TAG = '!io'
LIST_TAG = '!list'
OBJ_TAG = '!obj'
U32_TAG = '!u'
CURVE_TAG = '!curve'

STRING_TAGS = {
    '!str32': ParamType.STRING32,
    '!str64': ParamType.STRING64,
    '!str256': ParamType.STRING256,
}

VECTOR_TAGS = {
    '!vec2': ParamType.VEC2,
    '!vec3': ParamType.VEC3,
    '!vec4': ParamType.VEC4,
    '!color': ParamType.COLOR,
    '!quat': ParamType.QUAT,
}

BUFFER_TAGS = {
    '!buffer_int': ParamType.BUFFER_INT,
    '!buffer_f32': ParamType.BUFFER_F32,
    '!buffer_u32': ParamType.BUFFER_U32,
    '!buffer_binary': ParamType.BUFFER_BINARY,
}

SEQUENCE_TAGS = {CURVE_TAG, *VECTOR_TAGS, *BUFFER_TAGS}

# Type -> tag, for the emitter (untagged types are missing)
PARAM_TAGS = {
    ParamType.U32: U32_TAG,
    **{param_type: tag for tag, param_type in STRING_TAGS.items()},
    **{param_type: tag for tag, param_type in VECTOR_TAGS.items()},
    **{param_type: tag for tag, param_type in BUFFER_TAGS.items()},
    **{param_type: CURVE_TAG for param_type in CURVE_TYPES.values()},
}

DIGITS_RE = re.compile(r'[0-9]+')
INT_RE = re.compile(r'[-+]?[0-9]+')
HEX_RE = re.compile(r'0[xX][0-9a-fA-F]+')
FLOAT_RE = re.compile(
    r'[-+]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][-+]?[0-9]+)?'
    r'|[-+]?(?:inf|infinity|nan)',
    re.IGNORECASE,
)


def classify_plain(value: str) -> ParamType:
    """Type of an untagged plain scalar (shared with the emitter's quoting)"""
    if INT_RE.fullmatch(value) and I32_MIN <= int(value) <= I32_MAX:
        return ParamType.INT
    if FLOAT_RE.fullmatch(value):
        return ParamType.F32
    if value in ('true', 'false'):
        return ParamType.BOOL
    return ParamType.STRING_REF


# =============================================================================
# Parser state
# =============================================================================

class Context(Enum):
    """What the innermost open mapping is"""
    DOCUMENT = auto()       # !io
    LIST_NODE = auto()      # !list
    OBJECTS_MAP = auto()    # objects: of a list node
    LISTS_MAP = auto()      # lists: of a list node
    OBJECT_BODY = auto()    # !obj


@dataclass
class Frame:
    context: Context
    node: Any                       # dict / ParameterList / ParameterObject being filled
    key: Any = None                 # pending key, None when the next scalar is a key
    seen: Set[Any] = field(default_factory=set)


@dataclass
class OpenSequence:
    tag: str
    event: yaml.Event               # SequenceStartEvent, for error positions
    items: List[yaml.ScalarEvent] = field(default_factory=list)


def _position(event: yaml.Event):
    mark = event.start_mark
    if mark is None:
        return None, None
    return mark.line + 1, mark.column + 1


def _error(message: str, event: yaml.Event) -> TextSyntaxError:
    line, column = _position(event)
    return TextSyntaxError(message, line, column)


# =============================================================================
# Parser Class
# =============================================================================

class YamlParser:
    """Event-driven parser for the tagged YAML text format"""

    def __init__(self, names: Optional[NameTable] = None):
        self.names = names if names is not None else NameTable()
        self.stack: List[Frame] = []
        self.sequence: Optional[OpenSequence] = None
        self.documents = 0
        self.result: Optional[ParameterIO] = None

    def parse(self, text) -> ParameterIO:
        self.stack = []
        self.sequence = None
        self.documents = 0
        self.result = None

        try:
            for event in yaml.parse(text, Loader=yaml.SafeLoader):
                self._handle(event)
        except yaml.MarkedYAMLError as e:
            mark = e.problem_mark or e.context_mark
            message = e.problem or e.context or 'Invalid YAML'
            if mark is None:
                raise TextSyntaxError(message) from e
            raise TextSyntaxError(message, mark.line + 1, mark.column + 1) from e
        except yaml.YAMLError as e:
            raise TextSyntaxError(str(e)) from e

        if self.result is None:
            raise TextSyntaxError("No !io document found")
        return self.result

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _handle(self, event: yaml.Event):
        if isinstance(event, yaml.AliasEvent) or getattr(event, 'anchor', None) is not None:
            raise _error("Anchors and aliases are not supported", event)

        if self.sequence is not None:
            self._handle_in_sequence(event)
        elif isinstance(event, yaml.DocumentStartEvent):
            self.documents += 1
            if self.documents > 1:
                raise _error("Only one document per file is supported", event)
        elif isinstance(event, yaml.MappingStartEvent):
            self._mapping_start(event)
        elif isinstance(event, yaml.MappingEndEvent):
            self._mapping_end(event)
        elif isinstance(event, yaml.ScalarEvent):
            self._scalar(event)
        elif isinstance(event, yaml.SequenceStartEvent):
            self._sequence_start(event)
        # Stream start/end, document end: nothing to do

    def _handle_in_sequence(self, event: yaml.Event):
        if isinstance(event, yaml.ScalarEvent):
            if event.tag is not None:
                raise _error(f"Unexpected tag {event.tag} inside {self.sequence.tag}", event)
            self.sequence.items.append(event)
        elif isinstance(event, yaml.SequenceEndEvent):
            sequence, self.sequence = self.sequence, None
            self._store_value(self._sequence_param(sequence))
        else:
            raise _error(f"Nested collections are not allowed inside {self.sequence.tag}", event)

    # -------------------------------------------------------------------------
    # Mappings
    # -------------------------------------------------------------------------

    def _mapping_start(self, event: yaml.MappingStartEvent):
        tag = event.tag
        if not self.stack:
            if tag != IO_TAG:
                raise _error(f"Document must be a mapping tagged {IO_TAG}", event)
            self.stack.append(Frame(Context.DOCUMENT, {}))
            return

        top = self.stack[-1]
        if top.key is None:
            raise _error("Mapping keys must be scalars", event)

        if top.context == Context.DOCUMENT:
            if top.key != 'param_root':
                raise _error(f"'{top.key}' must be a scalar", event)
            self._expect_tag(event, LIST_TAG)
            plist = ParameterList()
            top.node['param_root'] = plist
            self._push(Frame(Context.LIST_NODE, plist))

        elif top.context == Context.LIST_NODE:
            self._expect_tag(event, None)
            if top.key == 'objects':
                self._push(Frame(Context.OBJECTS_MAP, top.node.objects))
            else:
                self._push(Frame(Context.LISTS_MAP, top.node.lists))

        elif top.context == Context.OBJECTS_MAP:
            self._expect_tag(event, OBJ_TAG)
            obj = ParameterObject()
            top.node[top.key] = obj
            self._push(Frame(Context.OBJECT_BODY, obj))

        elif top.context == Context.LISTS_MAP:
            self._expect_tag(event, LIST_TAG)
            plist = ParameterList()
            top.node[top.key] = plist
            self._push(Frame(Context.LIST_NODE, plist))

        else:
            raise _error("Parameter values must be scalars or tagged sequences", event)

    def _push(self, frame: Frame):
        self.stack[-1].key = None
        self.stack.append(frame)

    def _mapping_end(self, event: yaml.MappingEndEvent):
        frame = self.stack.pop()
        if frame.context != Context.DOCUMENT:
            return

        fields = frame.node
        for name in ('version', 'type', 'param_root'):
            if name not in fields:
                raise _error(f"Document is missing '{name}'", event)
        root = fields['param_root']
        self.result = ParameterIO(
            version=fields['version'],
            pio_type=fields['type'],
            lists=root.lists,
            objects=root.objects,
        )

    @staticmethod
    def _expect_tag(event: yaml.Event, tag: Optional[str]):
        if event.tag != tag:
            found = event.tag or 'no tag'
            wanted = tag or 'no tag'
            raise _error(f"Expected {wanted}, found {found}", event)

    # -------------------------------------------------------------------------
    # Scalars
    # -------------------------------------------------------------------------

    def _scalar(self, event: yaml.ScalarEvent):
        if not self.stack:
            raise _error(f"Document must be a mapping tagged {IO_TAG}", event)

        top = self.stack[-1]
        if top.key is None:
            key = self._read_key(top, event)
            if key in top.seen:
                raise _error(f"Duplicate key '{event.value}'", event)
            top.seen.add(key)
            top.key = key
            return

        if top.context == Context.DOCUMENT:
            if top.key == 'version':
                top.node['version'] = self._parse_int(event, 0, U32_MAX, "Document version")
            elif top.key == 'type':
                if event.tag is not None:
                    raise _error(f"Unexpected tag {event.tag} on document type", event)
                top.node['type'] = event.value
            else:
                raise _error(f"param_root must be a mapping tagged {LIST_TAG}", event)
        elif top.context == Context.LIST_NODE:
            raise _error(f"'{top.key}' must be a mapping", event)
        elif top.context == Context.OBJECTS_MAP:
            raise _error(f"Objects must be mappings tagged {OBJ_TAG}", event)
        elif top.context == Context.LISTS_MAP:
            raise _error(f"Lists must be mappings tagged {LIST_TAG}", event)
        else:
            self._store_value(self._scalar_param(event))
            return
        top.key = None

    def _read_key(self, frame: Frame, event: yaml.ScalarEvent):
        if event.tag is not None:
            raise _error(f"Keys cannot be tagged ({event.tag})", event)

        if frame.context == Context.DOCUMENT:
            if event.value not in ('version', 'type', 'param_root'):
                raise _error(f"Unexpected document key '{event.value}'", event)
            return event.value

        if frame.context == Context.LIST_NODE:
            if event.value not in ('objects', 'lists'):
                raise _error(f"Unexpected list key '{event.value}' (expected objects or lists)", event)
            return event.value

        if not event.style and DIGITS_RE.fullmatch(event.value):
            crc = int(event.value)
            if crc > U32_MAX:
                raise _error(f"Hash key {event.value} does not fit in 32 bits", event)
            return crc
        return self.names.add(event.value)

    def _store_value(self, param: Parameter):
        top = self.stack[-1]
        if param.is_string:
            self.names.add(param.value)
        top.node.params[top.key] = param
        top.key = None

    def _scalar_param(self, event: yaml.ScalarEvent) -> Parameter:
        tag = event.tag
        value = event.value

        if tag is None:
            if event.style:
                return self._param(ParamType.STRING_REF, value, event)
            param_type = classify_plain(value)
            if param_type == ParamType.INT:
                return self._param(param_type, int(value), event)
            if param_type == ParamType.F32:
                return self._param(param_type, float(value), event)
            if param_type == ParamType.BOOL:
                return self._param(param_type, value == 'true', event)
            return self._param(param_type, value, event)

        if tag in STRING_TAGS:
            return self._param(STRING_TAGS[tag], value, event)

        if tag == U32_TAG:
            return self._param(ParamType.U32, self._parse_int(event, 0, U32_MAX, "U32 value"), event)

        if tag in SEQUENCE_TAGS:
            raise _error(f"{tag} needs a sequence", event)
        raise _error(f"Unknown tag {tag}", event)

    # -------------------------------------------------------------------------
    # Sequences
    # -------------------------------------------------------------------------

    def _sequence_start(self, event: yaml.SequenceStartEvent):
        top = self.stack[-1] if self.stack else None
        if top is None or top.context != Context.OBJECT_BODY or top.key is None:
            raise _error("Sequences are only allowed as parameter values", event)
        if event.tag not in SEQUENCE_TAGS:
            raise _error(f"Unknown sequence tag {event.tag}" if event.tag else "Sequence needs a type tag", event)
        self.sequence = OpenSequence(event.tag, event)

    def _sequence_param(self, sequence: OpenSequence) -> Parameter:
        tag = sequence.tag
        items = sequence.items

        if tag in VECTOR_TAGS:
            param_type = VECTOR_TAGS[tag]
            values = [self._parse_float(item) for item in items]
            return self._param(param_type, values, sequence.event)

        if tag == CURVE_TAG:
            count, rest = divmod(len(items), CURVE_VALUE_COUNT)
            if rest or count not in CURVE_TYPES:
                raise _error(f"{CURVE_TAG} needs 32, 64, 96 or 128 values, got {len(items)}", sequence.event)
            curves = []
            for i in range(count):
                window = items[i * CURVE_VALUE_COUNT:(i + 1) * CURVE_VALUE_COUNT]
                a = self._parse_int(window[0], 0, U32_MAX, "Curve field a")
                b = self._parse_int(window[1], 0, U32_MAX, "Curve field b")
                floats = [self._parse_float(item) for item in window[2:]]
                curves.append(Curve(a, b, floats))
            return self._param(CURVE_TYPES[count], curves, sequence.event)

        param_type = BUFFER_TAGS[tag]
        if param_type == ParamType.BUFFER_INT:
            values = [self._parse_int(item, I32_MIN, I32_MAX, "BUFFER_INT element") for item in items]
        elif param_type == ParamType.BUFFER_U32:
            values = [self._parse_int(item, 0, U32_MAX, "BUFFER_U32 element") for item in items]
        elif param_type == ParamType.BUFFER_BINARY:
            values = [self._parse_int(item, 0, 0xFF, "BUFFER_BINARY element") for item in items]
        else:
            values = [self._parse_float(item) for item in items]
        return self._param(param_type, values, sequence.event)

    # -------------------------------------------------------------------------
    # Numbers
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_int(event: yaml.ScalarEvent, low: int, high: int, what: str) -> int:
        text = event.value
        if HEX_RE.fullmatch(text):
            value = int(text, 16)
        elif INT_RE.fullmatch(text):
            value = int(text)
        else:
            raise _error(f"{what} '{text}' is not an integer", event)
        if not low <= value <= high:
            raise _error(f"{what} {text} is outside [{low}, {high}]", event)
        return value

    @staticmethod
    def _parse_float(event: yaml.ScalarEvent) -> float:
        if not FLOAT_RE.fullmatch(event.value):
            raise _error(f"'{event.value}' is not a number", event)
        return float(event.value)

    @staticmethod
    def _param(param_type: ParamType, value: Any, event: yaml.Event) -> Parameter:
        try:
            return Parameter(param_type, value)
        except EncodingInvariantError as e:
            raise _error(str(e), event) from e


def from_yaml(text, names: Optional[NameTable] = None) -> ParameterIO:
    """
    Decode the tagged YAML text format.

    Args:
        text: str, UTF-8 bytes or a readable text stream
        names: NameTable that receives every name key and string value
               (a fresh stock table if None)

    Raises:
        TextSyntaxError with the 1-based line and column of the offending node
    """
    return YamlParser(names).parse(text)
