#!/usr/bin/env python3
"""test the NAD command codec"""

import pytest

from nadctl.nadapi.protocol import NadProtocol
from nadctl.nadapi.types import (
    SOURCES,
    Attribute,
    Direction,
    InvalidArgument,
    MalformedResponse,
    OutOfRange,
    Switch,
    UnknownAttribute,
)


@pytest.mark.parametrize(
    "attr,value,expected",
    [
        (Attribute.POWER, Switch.ON, "Main.Power=On"),
        (Attribute.MUTE, Switch.OFF, "Main.Mute=Off"),
        (Attribute.VOLUME, -25, "Main.Volume=-25.0"),
        (Attribute.VOLUME, -25.56, "Main.Volume=-25.6"),
        (Attribute.SOURCE, "Opt1", "Main.Source=Opt1"),
        (Attribute.BRIGHTNESS, 3, "Main.Brightness=3"),
    ],
)
def test_encode_set(attr, value, expected):
    """set commands render the value the way the device expects"""
    assert NadProtocol.encode_set(attr, value) == expected


def test_encode_query_and_step():
    """queries end in ? and steps end in + or -"""
    assert NadProtocol.encode_query(Attribute.VOLUME) == "Main.Volume?"
    assert NadProtocol.encode_query(Attribute.MODEL) == "Main.Model?"
    assert NadProtocol.encode_step(Attribute.SOURCE, Direction.UP) == "Main.Source+"
    assert NadProtocol.encode_step(Attribute.BRIGHTNESS, Direction.DOWN) == "Main.Brightness-"


def test_model_is_read_only():
    """the model can be queried but never written"""
    with pytest.raises(InvalidArgument):
        NadProtocol.encode_set(Attribute.MODEL, "x")
    with pytest.raises(InvalidArgument):
        NadProtocol.encode_step(Attribute.MODEL, Direction.UP)


@pytest.mark.parametrize(
    "line,expected",
    [
        ("Main.Volume=-20.0\r\n", "Main.Volume=-20.0"),
        ("Main.Volume=-20.0\n", "Main.Volume=-20.0"),
        ("Main.Volume=-20.0\r", "Main.Volume=-20.0"),
        ("Main.Volume=-20.0", "Main.Volume=-20.0"),
        ("Main.Volume=-20.0\r\n\r\n", "Main.Volume=-20.0\r\n"),
    ],
)
def test_strip_terminator(line, expected):
    """exactly one terminator is removed"""
    assert NadProtocol.strip_terminator(line) == expected


def test_decode_typed_values():
    """payloads become typed values"""
    assert NadProtocol.decode("Main.Power=On\r\n") == (Attribute.POWER, Switch.ON)
    assert NadProtocol.decode("Main.Mute=off") == (Attribute.MUTE, Switch.OFF)
    assert NadProtocol.decode("Main.Volume=-35.5") == (Attribute.VOLUME, -35.5)
    assert NadProtocol.decode("Main.Brightness=1") == (Attribute.BRIGHTNESS, 1)
    assert NadProtocol.decode("Main.Source=opt2") == (Attribute.SOURCE, "Opt2")
    assert NadProtocol.decode("Main.Model=NAD C 368") == (Attribute.MODEL, "NAD C 368")


def test_decode_splits_on_first_equals():
    """only the first '=' separates key from payload"""
    assert NadProtocol.split_response("Main.Model=A=B\r") == ("Main.Model", "A=B")


def test_decode_non_canonical_source_passes_through():
    """a source the device knows but we do not is reported verbatim"""
    assert NadProtocol.decode("Main.Source=Bluetooth") == (Attribute.SOURCE, "Bluetooth")


@pytest.mark.parametrize(
    "line,error",
    [
        ("garbage", MalformedResponse),
        ("Main.Volume=loud", MalformedResponse),
        ("Main.Brightness=high", MalformedResponse),
        ("Main.Power=Maybe", MalformedResponse),
        ("Main.Volume=20.0", OutOfRange),
        ("Main.Volume=-80.1", OutOfRange),
        ("Main.Brightness=4", OutOfRange),
        ("Main.Speaker=A", UnknownAttribute),
    ],
)
def test_decode_errors(line, error):
    """bad lines raise the right taxonomy error"""
    with pytest.raises(error):
        NadProtocol.decode(line)


def test_decode_volume_covers_whole_protocol_range():
    """decoding accepts anything the device can report"""
    assert NadProtocol.decode("Main.Volume=10.0") == (Attribute.VOLUME, 10.0)
    assert NadProtocol.decode("Main.Volume=-80.0") == (Attribute.VOLUME, -80.0)
    assert NadProtocol.decode("Main.Volume=-5.0") == (Attribute.VOLUME, -5.0)


def test_unknown_attribute_is_malformed():
    """callers that catch MalformedResponse also see unknown attributes"""
    assert issubclass(UnknownAttribute, MalformedResponse)


def test_lookup_attribute():
    """with or without the namespace"""
    assert NadProtocol.lookup_attribute("Main.Volume") == Attribute.VOLUME
    assert NadProtocol.lookup_attribute("Brightness") == Attribute.BRIGHTNESS
    with pytest.raises(UnknownAttribute):
        NadProtocol.lookup_attribute("Zone2.Volume")


def test_canonical_source():
    """case-insensitive, rejects unknown names with the valid list"""
    for source in SOURCES:
        assert NadProtocol.canonical_source(source.upper()) == source
    with pytest.raises(InvalidArgument) as excinfo:
        NadProtocol.canonical_source("Cassette")
    assert "Valid sources: Stream, Wireless" in str(excinfo.value)


@pytest.mark.parametrize(
    "token,expected",
    [
        ("Main.Volume?", ("query", Attribute.VOLUME, None)),
        ("Main.Volume=-20", ("set", Attribute.VOLUME, "-20")),
        ("Main.Source+", ("step", Attribute.SOURCE, "+")),
        ("Main.Mute-", ("step", Attribute.MUTE, "-")),
        ("  Main.Model?  ", ("query", Attribute.MODEL, None)),
    ],
)
def test_parse_command(token, expected):
    """the simulator's view of command tokens"""
    assert NadProtocol.parse_command(token) == expected


def test_parse_command_rejects_noise():
    """not a command at all"""
    with pytest.raises(MalformedResponse):
        NadProtocol.parse_command("hello")
    with pytest.raises(UnknownAttribute):
        NadProtocol.parse_command("Main.Bass?")
