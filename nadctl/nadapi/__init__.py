#!/usr/bin/env python3
"""
NAD receiver control

Codec, device client, network discovery and the discovery cache.
"""

from .cache import DiscoveryCache, DiscoveryResult, discover
from .connection import DeviceClient, is_connection_error
from .discovery import scan_network
from .protocol import NadProtocol
from .session import NO_DEVICES_MESSAGE, open_device, resolve_endpoint
from .types import (
    BRIGHTNESS_LEVELS,
    DEFAULT_CACHE_TTL,
    DEFAULT_PORT,
    MAX_VOLUME,
    MIN_VOLUME,
    SOURCES,
    Attribute,
    CacheIO,
    Cancelled,
    CommunicationFailed,
    ConnectFailed,
    ConnectionState,
    DeviceSnapshot,
    Direction,
    DiscoveredDevice,
    InvalidArgument,
    MalformedResponse,
    NadError,
    NotConnected,
    OutOfRange,
    Switch,
    UnknownAttribute,
)

__all__ = [
    "Attribute",
    "BRIGHTNESS_LEVELS",
    "CacheIO",
    "Cancelled",
    "CommunicationFailed",
    "ConnectFailed",
    "ConnectionState",
    "DEFAULT_CACHE_TTL",
    "DEFAULT_PORT",
    "DeviceClient",
    "DeviceSnapshot",
    "Direction",
    "DiscoveredDevice",
    "DiscoveryCache",
    "DiscoveryResult",
    "InvalidArgument",
    "MAX_VOLUME",
    "MIN_VOLUME",
    "MalformedResponse",
    "NO_DEVICES_MESSAGE",
    "NadError",
    "NadProtocol",
    "NotConnected",
    "OutOfRange",
    "SOURCES",
    "Switch",
    "UnknownAttribute",
    "discover",
    "is_connection_error",
    "open_device",
    "resolve_endpoint",
    "scan_network",
]
