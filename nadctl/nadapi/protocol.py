#!/usr/bin/env python3
"""
NAD Protocol Handler

This module handles the text command format spoken by NAD receivers:
encoding typed operations into command lines and decoding response lines
into typed values.  It holds no connection state.
"""

import logging
from typing import Any

from .types import (
    MAX_BRIGHTNESS,
    MAX_VOLUME,
    MIN_BRIGHTNESS,
    MIN_VOLUME,
    SOURCES,
    Attribute,
    Direction,
    InvalidArgument,
    MalformedResponse,
    OutOfRange,
    Switch,
    UnknownAttribute,
)

NAMESPACE = "Main."


class NadProtocol:
    """Handles NAD command formatting and response parsing"""

    @staticmethod
    def format_value(attr: Attribute, value: Any) -> str:
        """render a typed value the way the device expects it"""
        if attr == Attribute.VOLUME:
            return f"{float(value):.1f}"
        if attr == Attribute.BRIGHTNESS:
            return str(int(value))
        if isinstance(value, Switch):
            return value.value
        return str(value)

    @staticmethod
    def encode_set(attr: Attribute, value: Any) -> str:
        """Main.<Attr>=<value>"""
        if attr == Attribute.MODEL:
            raise InvalidArgument("Model is read-only")
        return f"{NAMESPACE}{attr.value}={NadProtocol.format_value(attr, value)}"

    @staticmethod
    def encode_query(attr: Attribute) -> str:
        """Main.<Attr>?"""
        return f"{NAMESPACE}{attr.value}?"

    @staticmethod
    def encode_step(attr: Attribute, direction: Direction) -> str:
        """Main.<Attr>+ or Main.<Attr>-"""
        if attr == Attribute.MODEL:
            raise InvalidArgument("Model is read-only")
        return f"{NAMESPACE}{attr.value}{'+' if direction == Direction.UP else '-'}"

    @staticmethod
    def strip_terminator(line: str) -> str:
        """remove exactly one trailing CRLF, LF or CR"""
        if line.endswith("\r\n"):
            return line[:-2]
        if line.endswith(("\n", "\r")):
            return line[:-1]
        return line

    @staticmethod
    def lookup_attribute(name: str) -> Attribute:
        """map `Main.Volume` (or bare `Volume`) to an Attribute"""
        short = name[len(NAMESPACE) :] if name.startswith(NAMESPACE) else name
        for attr in Attribute:
            if attr.value == short:
                return attr
        raise UnknownAttribute(f"unknown attribute: {name}")

    @staticmethod
    def split_response(line: str) -> tuple[str, str]:
        """split a response line on the first '=' into raw key and payload"""
        text = NadProtocol.strip_terminator(line)
        key, sep, payload = text.partition("=")
        if not sep:
            raise MalformedResponse(f"no '=' in response: {text!r}")
        return key.strip(), payload

    @staticmethod
    def canonical_source(name: str) -> str:
        """case-insensitive match against the source list"""
        wanted = name.strip().lower()
        for source in SOURCES:
            if source.lower() == wanted:
                return source
        raise InvalidArgument(f"invalid source: {name}. Valid sources: {', '.join(SOURCES)}")

    @staticmethod
    def parse_switch(payload: str) -> Switch:
        """On/Off, any case"""
        wanted = payload.strip().lower()
        if wanted == "on":
            return Switch.ON
        if wanted == "off":
            return Switch.OFF
        raise MalformedResponse(f"expected On or Off, got {payload!r}")

    @staticmethod
    def decode_value(attr: Attribute, payload: str) -> Any:
        """interpret a payload according to the attribute's type"""
        payload = payload.strip()
        if attr == Attribute.VOLUME:
            try:
                volume = float(payload)
            except ValueError as err:
                raise MalformedResponse(f"volume is not a number: {payload!r}") from err
            if not MIN_VOLUME <= volume <= MAX_VOLUME:
                raise OutOfRange(f"volume {volume} outside {MIN_VOLUME}..{MAX_VOLUME}")
            return volume
        if attr == Attribute.BRIGHTNESS:
            try:
                level = int(payload)
            except ValueError as err:
                raise MalformedResponse(f"brightness is not an integer: {payload!r}") from err
            if not MIN_BRIGHTNESS <= level <= MAX_BRIGHTNESS:
                raise OutOfRange(f"brightness {level} outside {MIN_BRIGHTNESS}..{MAX_BRIGHTNESS}")
            return level
        if attr in (Attribute.POWER, Attribute.MUTE):
            return NadProtocol.parse_switch(payload)
        if attr == Attribute.SOURCE:
            try:
                return NadProtocol.canonical_source(payload)
            except InvalidArgument:
                logging.debug("Device reported non-standard source %s", payload)
                return payload
        return payload

    @staticmethod
    def decode(line: str) -> tuple[Attribute, Any]:
        """decode a full response line into (attribute, typed value)"""
        key, payload = NadProtocol.split_response(line)
        attr = NadProtocol.lookup_attribute(key)
        return attr, NadProtocol.decode_value(attr, payload)

    @staticmethod
    def parse_command(token: str) -> tuple[str, Attribute, str | None]:
        """
        classify a command token as ('query'|'set'|'step', attribute, argument)

        Used by the simulator; raises MalformedResponse/UnknownAttribute for
        anything that is not a recognizable command.
        """
        token = token.strip()
        if "=" in token:
            key, _, value = token.partition("=")
            return "set", NadProtocol.lookup_attribute(key), value
        if token.endswith("?"):
            return "query", NadProtocol.lookup_attribute(token[:-1]), None
        if token.endswith(("+", "-")):
            return "step", NadProtocol.lookup_attribute(token[:-1]), token[-1]
        raise MalformedResponse(f"not a command: {token!r}")
