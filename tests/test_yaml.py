#!/usr/bin/env python3
"""
YAML Codec Tests

Tests to_yaml / from_yaml:
1. Round trips and the shape of the emitted text
2. Scalar classification and string quoting
3. Key names (lookup, guessing, raw hashes, digit-only names)
4. Grammar errors with line/column positions
5. Lists nested deeper than the interpreter stack allows
"""

import inspect
import sys
import textwrap

import pytest

from aamp_errors import TextSyntaxError
from aamp_names import NameTable
from aamp_parser import read_aamp
from aamp_serializer import write_aamp
from aamp_types import (
    Curve,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParamType,
    hash_name,
)
from aamp_yaml_emitter import to_yaml
from aamp_yaml_parser import classify_plain, from_yaml


EXAMPLE = textwrap.dedent("""\
    !io
    version: 10
    type: xml
    param_root: !list
      objects:
        Name: !obj
          Flag: true
          Speed: 1.5
          Count: 3
          Mask: !u 0xFF
          Label: !str32 text
          Ref: some_string
          Pos: !vec3 [1.0, 2.0, 3.0]
      lists: {}
    """)


def single_param_doc(param: Parameter, name: str = "Value") -> ParameterIO:
    obj = ParameterObject()
    obj.set_param(name, param)
    pio = ParameterIO()
    pio.set_object("General", obj)
    return pio


def doc_with_body(body: str) -> str:
    """Wrap object body lines (already indented by 6) in a document"""
    return (
        "!io\n"
        "version: 0\n"
        "type: xml\n"
        "param_root: !list\n"
        "  objects:\n"
        "    General: !obj\n"
        f"{body}"
        "  lists: {}\n"
    )


# ═══════════════════════════════════════════════════════════════════════════
# Round trips
# ═══════════════════════════════════════════════════════════════════════════

def test_round_trip_every_type(sample_pio):
    """Every parameter type survives text encode + decode."""
    text = to_yaml(sample_pio)
    decoded = from_yaml(text)
    assert decoded == sample_pio
    assert list(decoded.object("General")) == list(sample_pio.object("General"))


def test_binary_to_text_to_binary(sample_binary):
    """binary -> text -> binary keeps the tree."""
    names = NameTable()
    pio = read_aamp(sample_binary, names)
    again = from_yaml(to_yaml(pio, names))
    assert write_aamp(again) == sample_binary


def test_emitted_shape(sample_pio):
    """Tags, keys and flow sequences in the emitted text."""
    text = to_yaml(sample_pio)
    lines = text.splitlines()

    assert lines[0] == "!io"
    assert "version: 10" in lines
    assert "type: xml" in lines
    assert "param_root: !list" in lines
    assert "  objects:" in lines
    assert "    General: !obj" in lines
    assert "      Flag: true" in lines
    assert "      Speed: 1.5" in lines
    assert "      Life: -120" in lines
    assert "      Position: !vec3 [0.0, 1.5, -2.25]" in lines
    assert "      Model: Lizalfos" in lines
    assert "0xDEADBEEF" in text
    assert "Label: !str32" in text


def test_empty_list_emits_empty_maps():
    """An empty list node still has both keys."""
    pio = ParameterIO()
    pio.set_list("Lists", ParameterList())
    text = to_yaml(pio)

    assert "    Lists: !list" in text
    assert "      objects: {}" in text
    assert "      lists: {}" in text

    decoded = from_yaml(text)
    assert decoded.list("Lists") == ParameterList()


def test_example_document():
    """Hand-written text with every scalar kind."""
    pio = from_yaml(EXAMPLE)
    assert pio.version == 10
    assert pio.pio_type == 'xml'

    obj = pio.object("Name")
    assert obj.param("Flag") == Parameter(ParamType.BOOL, True)
    assert obj.param("Speed") == Parameter(ParamType.F32, 1.5)
    assert obj.param("Count") == Parameter(ParamType.INT, 3)
    assert obj.param("Mask") == Parameter(ParamType.U32, 0xFF)
    assert obj.param("Label") == Parameter(ParamType.STRING32, "text")
    assert obj.param("Ref") == Parameter(ParamType.STRING_REF, "some_string")
    assert obj.param("Pos") == Parameter(ParamType.VEC3, (1.0, 2.0, 3.0))
    assert pio.lists == {}


def test_missing_lists_key_is_empty():
    """A list node without 'lists' decodes with no child lists."""
    text = "!io\nversion: 0\ntype: xml\nparam_root: !list\n  objects: {}\n"
    pio = from_yaml(text)
    assert pio.lists == {}
    assert pio.objects == {}


def test_curves_decode_by_window():
    """64 values -> CURVE2, each window is a, b, 30 floats."""
    values = []
    for seed in (1, 2):
        values += [str(seed), str(seed + 10)] + [f"{seed}.5"] * 30
    body = f"      Curve: !curve [{', '.join(values)}]\n"
    param = from_yaml(doc_with_body(body)).object("General").param("Curve")

    assert param.type == ParamType.CURVE2
    assert param.value[0] == Curve(1, 11, [1.5] * 30)
    assert param.value[1] == Curve(2, 12, [2.5] * 30)


def test_decode_feeds_name_table():
    """Name keys and string values are added to the table."""
    names = NameTable(include_stock_names=False)
    from_yaml(EXAMPLE, names)
    assert names.lookup(hash_name("Name")) == "Name"
    assert names.lookup(hash_name("Speed")) == "Speed"
    assert names.lookup(hash_name("some_string")) == "some_string"
    assert names.lookup(hash_name("text")) == "text"


# ═══════════════════════════════════════════════════════════════════════════
# Scalars
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("text, expected", [
    ("0", ParamType.INT),
    ("-2147483648", ParamType.INT),
    ("2147483647", ParamType.INT),
    ("2147483648", ParamType.F32),
    ("1.5", ParamType.F32),
    ("-1e-05", ParamType.F32),
    ("inf", ParamType.F32),
    ("true", ParamType.BOOL),
    ("false", ParamType.BOOL),
    ("True", ParamType.STRING_REF),
    ("yes", ParamType.STRING_REF),
    ("1_000", ParamType.STRING_REF),
    ("Lizalfos", ParamType.STRING_REF),
])
def test_classify_plain(text, expected):
    """int (i32), then float, then true/false, then string."""
    assert classify_plain(text) == expected


@pytest.mark.parametrize("value", ["123", "1.5", "true", "nan", "-7", ""])
def test_string_refs_that_look_like_other_types(value):
    """A string that would read back as a number or bool is quoted."""
    pio = single_param_doc(Parameter(ParamType.STRING_REF, value))
    text = to_yaml(pio)
    decoded = from_yaml(text).object("General").param("Value")
    assert decoded == Parameter(ParamType.STRING_REF, value)


@pytest.mark.parametrize("pio_type", ["xml", "123", "1.5", "false", ""])
def test_document_type_round_trip(pio_type):
    """The type line is written for every document, quoted when it looks like a number or bool."""
    pio = ParameterIO(pio_type=pio_type)
    text = to_yaml(pio)
    decoded = from_yaml(text)
    assert decoded.pio_type == pio_type
    assert decoded == pio


def test_numeric_document_type_is_quoted():
    text = to_yaml(ParameterIO(pio_type="123"))
    assert 'type: "123"' in text.splitlines()


def test_quoted_scalar_is_string_ref():
    body = "      Value: \"42\"\n      Other: '1.5'\n"
    obj = from_yaml(doc_with_body(body)).object("General")
    assert obj.param("Value") == Parameter(ParamType.STRING_REF, "42")
    assert obj.param("Other") == Parameter(ParamType.STRING_REF, "1.5")


def test_f32_rounding_survives_text():
    """Floats keep their f32 value through repr/parse."""
    pio = single_param_doc(Parameter(ParamType.F32, 0.1))
    assert from_yaml(to_yaml(pio)) == pio


def test_u32_decimal_and_hex():
    body = "      A: !u 255\n      B: !u 0xff\n"
    obj = from_yaml(doc_with_body(body)).object("General")
    assert obj.param("A").value == obj.param("B").value == 255


# ═══════════════════════════════════════════════════════════════════════════
# Keys
# ═══════════════════════════════════════════════════════════════════════════

def test_guessed_key_names():
    """Child keys are guessed from the parent name."""
    children = ParameterList()
    children.set_object("Child_01", ParameterObject())
    pio = ParameterIO()
    pio.set_list("Children", children)

    text = to_yaml(pio)
    assert "Child_01: !obj" in text
    assert from_yaml(text) == pio


def test_unknown_hash_emitted_as_decimal():
    """Hashes with no name come out as decimal keys and read back as hashes."""
    crc = hash_name("ZzNoOneKnowsThisName")
    pio = ParameterIO()
    pio.set_object(crc, ParameterObject())

    text = to_yaml(pio, NameTable())
    assert f"{crc}: !obj" in text
    assert from_yaml(text) == pio


def test_names_from_custom_table():
    """Names added to the table are used for keys."""
    names = NameTable()
    names.add("ZzCustomName")
    pio = ParameterIO()
    pio.set_object("ZzCustomName", ParameterObject())
    assert "ZzCustomName: !obj" in to_yaml(pio, names)


def test_digit_only_name_is_quoted():
    """A resolved name made of digits must not read back as a raw hash."""
    names = NameTable()
    names.add("1234")
    pio = single_param_doc(Parameter(ParamType.INT, 1), name="1234")

    text = to_yaml(pio, names)
    assert '"1234": 1' in text

    decoded = from_yaml(text)
    assert hash_name("1234") in decoded.object("General")
    assert 1234 not in decoded.object("General")


def test_raw_hash_key():
    body = "      4294967295: 1\n"
    obj = from_yaml(doc_with_body(body)).object("General")
    assert 0xFFFFFFFF in obj


def test_raw_hash_key_out_of_range():
    body = "      4294967296: 1\n"
    with pytest.raises(TextSyntaxError, match="32 bits") as exc_info:
        from_yaml(doc_with_body(body))
    assert exc_info.value.line == 7


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════

def test_unknown_tag_position():
    body = "      Good: 1\n      Bad: !nope 1\n"
    with pytest.raises(TextSyntaxError, match="Unknown tag !nope") as exc_info:
        from_yaml(doc_with_body(body))
    assert exc_info.value.line == 8
    assert exc_info.value.column == 12


@pytest.mark.parametrize("text, message", [
    ("version: 0\n", "!io"),
    ("!list\nobjects: {}\n", "!io"),
    ("!io\nversion: 0\nparam_root: !list {}\n", "missing 'type'"),
    ("!io\nversion: 0\ntype: xml\nextra: 1\n", "Unexpected document key"),
    ("!io\nversion: -1\ntype: xml\nparam_root: !list {}\n", "Document version"),
    ("!io\nversion: 0\ntype: xml\nparam_root: {}\n", "Expected !list"),
    ("!io\nversion: 0\ntype: xml\nparam_root: !list\n  items: {}\n", "Unexpected list key"),
])
def test_document_errors(text, message):
    with pytest.raises(TextSyntaxError, match=message):
        from_yaml(text)


@pytest.mark.parametrize("body, message", [
    ("      V: !vec3 [1.0, 2.0]\n", "VEC3 needs 3 floats"),
    ("      V: !vec2 [1.0, abc]\n", "not a number"),
    ("      V: !curve [1, 2, 3]\n", "!curve needs"),
    ("      V: !buffer_int [1, 2.5]\n", "not an integer"),
    ("      V: !buffer_binary [256]\n", "BUFFER_BINARY element"),
    ("      V: !u -1\n", "U32 value"),
    ("      V: [1, 2]\n", "needs a type tag"),
    ("      V: !vec2 [[1], 2]\n", "Nested collections"),
    ("      V: {a: 1}\n", "scalars or tagged sequences"),
    ("      V: !str32 \"a\\0b\"\n", "NUL"),
    ("      V: 1e40\n", "f32"),
    ("      V: 1\n      V: 2\n", "Duplicate key"),
    ("      V: !vec3 1.0\n", "needs a sequence"),
])
def test_parameter_errors(body, message):
    with pytest.raises(TextSyntaxError, match=message) as exc_info:
        from_yaml(doc_with_body(body))
    assert exc_info.value.line is not None


def test_anchors_rejected():
    text = EXAMPLE.replace("Name: !obj", "Name: &anchor !obj")
    with pytest.raises(TextSyntaxError, match="Anchors"):
        from_yaml(text)


def test_multiple_documents_rejected():
    text = "--- " + EXAMPLE + "--- " + EXAMPLE
    with pytest.raises(TextSyntaxError, match="one document"):
        from_yaml(text)


def test_yaml_syntax_error_position():
    """Scanner/parser errors keep their position."""
    body = "      V: !vec2 [1.0, 2.0\n"
    with pytest.raises(TextSyntaxError) as exc_info:
        from_yaml(doc_with_body(body))
    assert exc_info.value.line is not None


def test_empty_text():
    with pytest.raises(TextSyntaxError, match="No !io document"):
        from_yaml("")


# ═══════════════════════════════════════════════════════════════════════════
# Deep nesting
# ═══════════════════════════════════════════════════════════════════════════

def test_deeply_nested_lists(make_list_chain, follow_chain):
    """More levels than the stack has frames left still encode and decode."""
    depth = 300
    pio = make_list_chain(depth)

    limit = sys.getrecursionlimit()
    sys.setrecursionlimit(len(inspect.stack(0)) + 150)
    try:
        text = to_yaml(pio)
        decoded = from_yaml(text)
    finally:
        sys.setrecursionlimit(limit)

    levels, bottom = follow_chain(decoded)
    assert levels == depth
    assert bottom.object("Leaf").param("Depth") == Parameter(ParamType.INT, depth)
