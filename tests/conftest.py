"""Pytest fixtures for the AAMP codec tests."""

import pytest

from aamp_serializer import write_aamp
from aamp_types import (
    Curve,
    Parameter,
    ParameterIO,
    ParameterList,
    ParameterObject,
    ParamType,
)


def make_curve(seed: int) -> Curve:
    """Curve with exactly representable floats"""
    return Curve(seed, seed + 1, [seed + i * 0.5 for i in range(30)])


@pytest.fixture
def every_type_object() -> ParameterObject:
    """One object holding a parameter of every type"""
    obj = ParameterObject()
    obj.set_param("Flag", Parameter(ParamType.BOOL, True))
    obj.set_param("Speed", Parameter(ParamType.F32, 1.5))
    obj.set_param("Life", Parameter(ParamType.INT, -120))
    obj.set_param("Offset", Parameter(ParamType.VEC2, (1.0, -2.0)))
    obj.set_param("Position", Parameter(ParamType.VEC3, (0.0, 1.5, -2.25)))
    obj.set_param("Scale", Parameter(ParamType.VEC4, (1, 2, 3, 4)))
    obj.set_param("Color", Parameter(ParamType.COLOR, (0.1, 0.2, 0.3, 1.0)))
    obj.set_param("Label", Parameter(ParamType.STRING32, "short"))
    obj.set_param("Comment", Parameter(ParamType.STRING64, "A longer comment"))
    obj.set_param("Curve1", Parameter(ParamType.CURVE1, [make_curve(1)]))
    obj.set_param("Curve2", Parameter(ParamType.CURVE2, [make_curve(2), make_curve(3)]))
    obj.set_param("Curve3", Parameter(ParamType.CURVE3, [make_curve(i) for i in range(3)]))
    obj.set_param("Curve4", Parameter(ParamType.CURVE4, [make_curve(i) for i in range(4)]))
    obj.set_param("Values", Parameter(ParamType.BUFFER_INT, [1, -2, 3]))
    obj.set_param("Weights", Parameter(ParamType.BUFFER_F32, [0.5, 1.5]))
    obj.set_param("Description", Parameter(ParamType.STRING256, "x" * 100))
    obj.set_param("Rotation", Parameter(ParamType.QUAT, (0.0, 0.0, 0.0, 1.0)))
    obj.set_param("Mask", Parameter(ParamType.U32, 0xDEADBEEF))
    obj.set_param("Flags", Parameter(ParamType.BUFFER_U32, [0, 0xFFFFFFFF]))
    obj.set_param("Bind", Parameter(ParamType.BUFFER_BINARY, b"\x00\x01\xff"))
    obj.set_param("Model", Parameter(ParamType.STRING_REF, "Lizalfos"))
    return obj


@pytest.fixture
def sample_pio(every_type_object) -> ParameterIO:
    """
    Document with nested lists:

        param_root
          General (every type)
          Children
            Child_00, Child_01
            Lists
              (empty)
    """
    children = ParameterList()
    for i in range(2):
        child = ParameterObject()
        child.set_param("Index", Parameter(ParamType.INT, i))
        child.set_param("Name", Parameter(ParamType.STRING_REF, f"child {i}"))
        children.set_object(f"Child_{i:02}", child)
    children.set_list("Lists", ParameterList())

    pio = ParameterIO(version=10, pio_type='xml')
    pio.set_object("General", every_type_object)
    pio.set_list("Children", children)
    return pio


@pytest.fixture
def sample_binary(sample_pio) -> bytes:
    return write_aamp(sample_pio)


@pytest.fixture
def make_list_chain():
    """Factory: document with lists nested `depth` levels and one object at the bottom"""
    def build(depth: int) -> ParameterIO:
        pio = ParameterIO()
        plist = pio.param_root
        for i in range(depth):
            child = ParameterList()
            plist.set_list(f"Level{i}", child)
            plist = child
        leaf = ParameterObject()
        leaf.set_param("Depth", Parameter(ParamType.INT, depth))
        plist.set_object("Leaf", leaf)
        return pio
    return build


@pytest.fixture
def follow_chain():
    """Walk single-child lists down from the root, returns (levels, bottom list)"""
    def walk(pio: ParameterIO):
        plist, levels = pio.param_root, 0
        while plist.lists:
            (plist,) = plist.lists.values()
            levels += 1
        return levels, plist
    return walk
