"""
AAMP Document Model
===================

In-memory tree for parameter archive (AAMP v2) documents.

Tree Structure:
--------------
    ParameterIO                 version + type string + implicit root list
      lists:   {hash: ParameterList}
      objects: {hash: ParameterObject}

    ParameterList
      lists:   {hash: ParameterList}     child lists (recursive)
      objects: {hash: ParameterObject}   child objects

    ParameterObject
      params:  {hash: Parameter}         typed leaf values

Every key is the CRC-32 of the original name. The binary form never stores the
names, so a key is just an int here; the name helpers (param(), list(), ...)
hash for you. Insertion order of every dict is the order records are written
in, so it is part of the document content.

Parameter Types (binary discriminant):
-------------------------------------
| Id | Type          | Value                     | Id | Type          | Value            |
|----|---------------|---------------------------|----|---------------|------------------|
|  0 | BOOL          | bool                      | 11 | CURVE3        | 3 x Curve        |
|  1 | F32           | float (single precision)  | 12 | CURVE4        | 4 x Curve        |
|  2 | INT           | int (signed 32-bit)       | 13 | BUFFER_INT    | list of i32      |
|  3 | VEC2          | 2 floats                  | 14 | BUFFER_F32    | list of f32      |
|  4 | VEC3          | 3 floats                  | 15 | STRING256     | str              |
|  5 | VEC4          | 4 floats                  | 16 | QUAT          | 4 floats         |
|  6 | COLOR         | 4 floats                  | 17 | U32           | int (unsigned)   |
|  7 | STRING32      | str                       | 18 | BUFFER_U32    | list of u32      |
|  8 | STRING64      | str                       | 19 | BUFFER_BINARY | bytes            |
|  9 | CURVE1        | 1 x Curve                 | 20 | STRING_REF    | str              |
| 10 | CURVE2        | 2 x Curve                 |    |               |                  |

Floats are rounded to single precision when a Parameter is built, so a tree
compares equal to itself after a trip through the binary form.
"""

import struct
import zlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from aamp_errors import EncodingInvariantError


# =============================================================================
# Constants
# =============================================================================

ROOT_HASH = 0xA4F6CB6C      # hash_name("param_root"), the synthetic root list
CURVE_FLOAT_COUNT = 30      # floats per curve record
CURVE_VALUE_COUNT = 32      # a, b + 30 floats, one text window per curve

I32_MIN = -0x80000000
I32_MAX = 0x7FFFFFFF
U32_MAX = 0xFFFFFFFF


class ParamType(IntEnum):
    """Parameter type discriminant (1 byte in the binary form)"""
    BOOL = 0
    F32 = 1
    INT = 2
    VEC2 = 3
    VEC3 = 4
    VEC4 = 5
    COLOR = 6
    STRING32 = 7
    STRING64 = 8
    CURVE1 = 9
    CURVE2 = 10
    CURVE3 = 11
    CURVE4 = 12
    BUFFER_INT = 13
    BUFFER_F32 = 14
    STRING256 = 15
    QUAT = 16
    U32 = 17
    BUFFER_U32 = 18
    BUFFER_BINARY = 19
    STRING_REF = 20


STRING_TYPES = frozenset({
    ParamType.STRING32,
    ParamType.STRING64,
    ParamType.STRING256,
    ParamType.STRING_REF,
})

BUFFER_TYPES = frozenset({
    ParamType.BUFFER_INT,
    ParamType.BUFFER_F32,
    ParamType.BUFFER_U32,
    ParamType.BUFFER_BINARY,
})

# Fixed-size float arrays and their element count
VECTOR_SIZES = {
    ParamType.VEC2: 2,
    ParamType.VEC3: 3,
    ParamType.VEC4: 4,
    ParamType.COLOR: 4,
    ParamType.QUAT: 4,
}

CURVE_COUNTS = {
    ParamType.CURVE1: 1,
    ParamType.CURVE2: 2,
    ParamType.CURVE3: 3,
    ParamType.CURVE4: 4,
}

CURVE_TYPES = {count: param_type for param_type, count in CURVE_COUNTS.items()}


# =============================================================================
# Primitives
# =============================================================================

def hash_name(name: str) -> int:
    """CRC-32 (IEEE) of a UTF-8 name, the only key the binary form stores"""
    return zlib.crc32(name.encode('utf-8')) & 0xFFFFFFFF


def to_f32(value: Any) -> float:
    """Round a number to the nearest single precision float"""
    try:
        return struct.unpack('<f', struct.pack('<f', value))[0]
    except (struct.error, OverflowError, TypeError) as e:
        raise EncodingInvariantError(f"{value!r} is not representable as f32") from e


def _check_int(value: Any, low: int, high: int, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingInvariantError(f"{what} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise EncodingInvariantError(f"{what} {value} is outside [{low}, {high}]")
    return value


def _key(key: Union[int, str]) -> int:
    """Accept either a raw hash or a name"""
    if isinstance(key, str):
        return hash_name(key)
    return _check_int(key, 0, U32_MAX, "Hash")


# =============================================================================
# Values
# =============================================================================

@dataclass
class Curve:
    """One curve record: two u32 fields and 30 floats"""
    a: int
    b: int
    floats: Tuple[float, ...]

    def __post_init__(self):
        self.a = _check_int(self.a, 0, U32_MAX, "Curve field a")
        self.b = _check_int(self.b, 0, U32_MAX, "Curve field b")
        floats = tuple(self.floats)
        if len(floats) != CURVE_FLOAT_COUNT:
            raise EncodingInvariantError(
                f"Curve needs {CURVE_FLOAT_COUNT} floats, got {len(floats)}")
        self.floats = tuple(to_f32(f) for f in floats)

    def values(self) -> list:
        """Flat [a, b, f0, ..., f29] form used by the text format"""
        return [self.a, self.b, *self.floats]


def _as_curve(item: Any) -> Curve:
    if isinstance(item, Curve):
        return item
    a, b, floats = item
    return Curve(a, b, floats)


def _normalize(param_type: ParamType, value: Any) -> Any:
    """Check a value against its type and convert it to the canonical shape"""
    if param_type == ParamType.BOOL:
        if not isinstance(value, (bool, int)):
            raise EncodingInvariantError(f"BOOL value must be a bool, got {value!r}")
        return bool(value)

    if param_type == ParamType.F32:
        return to_f32(value)

    if param_type == ParamType.INT:
        return _check_int(value, I32_MIN, I32_MAX, "INT value")

    if param_type == ParamType.U32:
        return _check_int(value, 0, U32_MAX, "U32 value")

    if param_type in VECTOR_SIZES:
        size = VECTOR_SIZES[param_type]
        items = tuple(value)
        if len(items) != size:
            raise EncodingInvariantError(
                f"{param_type.name} needs {size} floats, got {len(items)}")
        return tuple(to_f32(v) for v in items)

    if param_type in CURVE_COUNTS:
        curves = tuple(_as_curve(item) for item in value)
        if len(curves) != CURVE_COUNTS[param_type]:
            raise EncodingInvariantError(
                f"{param_type.name} needs {CURVE_COUNTS[param_type]} curves, got {len(curves)}")
        return curves

    if param_type in STRING_TYPES:
        if not isinstance(value, str):
            raise EncodingInvariantError(f"{param_type.name} value must be a str, got {value!r}")
        if '\0' in value:
            raise EncodingInvariantError(f"{param_type.name} value contains a NUL character")
        return value

    if param_type == ParamType.BUFFER_INT:
        return [_check_int(v, I32_MIN, I32_MAX, "BUFFER_INT element") for v in value]

    if param_type == ParamType.BUFFER_U32:
        return [_check_int(v, 0, U32_MAX, "BUFFER_U32 element") for v in value]

    if param_type == ParamType.BUFFER_F32:
        return [to_f32(v) for v in value]

    if param_type == ParamType.BUFFER_BINARY:
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise EncodingInvariantError(f"BUFFER_BINARY value is not a byte sequence: {e}") from e

    raise EncodingInvariantError(f"Unknown parameter type: {param_type!r}")


@dataclass
class Parameter:
    """A single typed leaf value"""
    type: ParamType
    value: Any

    def __post_init__(self):
        try:
            self.type = ParamType(self.type)
        except ValueError as e:
            raise EncodingInvariantError(f"Invalid parameter type: {self.type!r}") from e
        self.value = _normalize(self.type, self.value)

    @property
    def is_string(self) -> bool:
        return self.type in STRING_TYPES

    @property
    def is_buffer(self) -> bool:
        return self.type in BUFFER_TYPES

    def __repr__(self):
        return f"Parameter({self.type.name}, {self.value!r})"


# =============================================================================
# Containers
# =============================================================================

@dataclass
class ParameterObject:
    """Ordered set of parameters keyed by name hash"""
    params: Dict[int, Parameter] = field(default_factory=dict)

    def param(self, name: str) -> Optional[Parameter]:
        return self.params.get(hash_name(name))

    def set_param(self, name: str, value: Parameter) -> None:
        self.params[hash_name(name)] = value

    def __getitem__(self, key: Union[int, str]) -> Parameter:
        return self.params[_key(key)]

    def __setitem__(self, key: Union[int, str], value: Parameter) -> None:
        self.params[_key(key)] = value

    def __contains__(self, key: Union[int, str]) -> bool:
        return _key(key) in self.params

    def __len__(self) -> int:
        return len(self.params)

    def __iter__(self):
        return iter(self.params)

    def items(self):
        return self.params.items()


@dataclass(eq=False)
class ParameterList:
    """Ordered child lists and child objects keyed by name hash"""
    lists: Dict[int, 'ParameterList'] = field(default_factory=dict)
    objects: Dict[int, ParameterObject] = field(default_factory=dict)

    def list(self, name: str) -> Optional['ParameterList']:
        return self.lists.get(hash_name(name))

    def object(self, name: str) -> Optional[ParameterObject]:
        return self.objects.get(hash_name(name))

    def set_list(self, key: Union[int, str], value: 'ParameterList') -> None:
        self.lists[_key(key)] = value

    def set_object(self, key: Union[int, str], value: ParameterObject) -> None:
        self.objects[_key(key)] = value

    def __eq__(self, other):
        # Compared level by level so depth is not bound by the recursion limit
        if not isinstance(other, ParameterList):
            return NotImplemented
        pending = [(self, other)]
        while pending:
            a, b = pending.pop()
            if a.objects != b.objects or a.lists.keys() != b.lists.keys():
                return False
            pending.extend((a.lists[crc], b.lists[crc]) for crc in a.lists)
        return True


@dataclass
class ParameterIO:
    """
    A parameter archive document.

    version and pio_type are carried through both formats but have no
    meaning to the codec. lists/objects are the contents of the root list
    (param_root).
    """
    version: int = 0
    pio_type: str = 'xml'
    lists: Dict[int, ParameterList] = field(default_factory=dict)
    objects: Dict[int, ParameterObject] = field(default_factory=dict)

    def list(self, name: str) -> Optional[ParameterList]:
        return self.lists.get(hash_name(name))

    def object(self, name: str) -> Optional[ParameterObject]:
        return self.objects.get(hash_name(name))

    def set_list(self, key: Union[int, str], value: ParameterList) -> None:
        self.lists[_key(key)] = value

    def set_object(self, key: Union[int, str], value: ParameterObject) -> None:
        self.objects[_key(key)] = value

    @property
    def param_root(self) -> ParameterList:
        """The root list view (shares the lists/objects dicts)"""
        return ParameterList(lists=self.lists, objects=self.objects)

    # Codec shortcuts, imported lazily since the codecs import this module

    @classmethod
    def from_binary(cls, data, names=None) -> 'ParameterIO':
        from aamp_parser import read_aamp
        return read_aamp(data, names)

    def to_binary(self) -> bytes:
        from aamp_serializer import write_aamp
        return write_aamp(self)

    @classmethod
    def from_text(cls, text: str, names=None) -> 'ParameterIO':
        from aamp_yaml_parser import from_yaml
        return from_yaml(text, names)

    def to_text(self, names=None) -> str:
        from aamp_yaml_emitter import to_yaml
        return to_yaml(self, names)


def count_records(lists: Iterable[ParameterList]) -> Tuple[int, int, int]:
    """Total (lists, objects, params) in the given lists and everything below them"""
    num_lists = num_objects = num_params = 0
    pending = list(lists)
    while pending:
        plist = pending.pop()
        num_lists += 1
        num_objects += len(plist.objects)
        num_params += sum(len(obj) for obj in plist.objects.values())
        pending.extend(plist.lists.values())
    return num_lists, num_objects, num_params
