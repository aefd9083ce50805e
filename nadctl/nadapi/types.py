#!/usr/bin/env python3
"""
Shared data types and constants for the NAD control protocol

This module contains the constants, enums, value objects and the error
taxonomy used by the codec, the device client, discovery and the cache.
"""

import datetime
import enum
from dataclasses import dataclass, field

# Protocol constants
DEFAULT_PORT = 30001
LINE_TERMINATOR = "\r"
MAX_DRAIN_LINES = 5

MIN_VOLUME = -80.0
MAX_VOLUME = 10.0
MIN_BRIGHTNESS = 0
MAX_BRIGHTNESS = 3

DEFAULT_CACHE_TTL = datetime.timedelta(minutes=5)

# order matters: stepping walks this list
SOURCES: tuple[str, ...] = (
    "Stream",
    "Wireless",
    "TV",
    "Phono",
    "Coax1",
    "Coax2",
    "Opt1",
    "Opt2",
)

BRIGHTNESS_LEVELS: dict[int, str] = {
    0: "Display off/darkest",
    1: "Low",
    2: "Medium",
    3: "High",
}

# model strings that identify a NAD receiver even without the brand
KNOWN_MODEL_PREFIXES: tuple[str, ...] = (
    "C338",
    "C368",
    "C388",
    "C658",
    "M10",
    "M33",
    "T 758",
    "T758",
    "T 778",
)


class Attribute(str, enum.Enum):
    """attributes addressable under the Main. namespace"""

    POWER = "Power"
    VOLUME = "Volume"
    SOURCE = "Source"
    MUTE = "Mute"
    BRIGHTNESS = "Brightness"
    MODEL = "Model"


class Switch(str, enum.Enum):
    """On/Off values used by Power and Mute"""

    ON = "On"
    OFF = "Off"
    UNKNOWN = "Unknown"

    def toggled(self) -> "Switch":
        """the value a toggle should send; Unknown is treated as Off"""
        return Switch.OFF if self is Switch.ON else Switch.ON


class Direction(enum.IntEnum):
    """step direction"""

    DOWN = -1
    UP = 1


class ConnectionState(enum.Enum):
    """device client connection lifecycle"""

    IDLE = "idle"
    DIALING = "dialing"
    READY = "ready"
    OPERATING = "operating"
    CLOSED = "closed"


@dataclass(frozen=True)
class DeviceSnapshot:  # pylint: disable=too-many-instance-attributes
    """Result of a full refresh; None means the field could not be read"""

    power: Switch = Switch.UNKNOWN
    volume: float | None = None
    source: str | None = None
    mute: Switch = Switch.UNKNOWN
    brightness: int | None = None
    model: str | None = None
    captured_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def describe(self) -> dict[str, str]:
        """human readable field values"""
        return {
            "power": self.power.value,
            "volume": "Unknown" if self.volume is None else f"{self.volume:.1f} dB",
            "source": self.source or "Unknown",
            "mute": self.mute.value,
            "brightness": "Unknown" if self.brightness is None else str(self.brightness),
            "model": self.model or "Unknown",
        }


@dataclass(frozen=True)
class DiscoveredDevice:
    """A NAD device found on the network"""

    address: str
    port: int = DEFAULT_PORT
    model: str = ""

    def to_dict(self) -> dict[str, str]:
        """on-disk cache representation"""
        return {"IP": self.address, "Model": self.model, "Port": str(self.port)}

    @classmethod
    def from_dict(cls, data: dict) -> "DiscoveredDevice":
        """inverse of to_dict; port may be stored as string or number"""
        port = data.get("Port") or DEFAULT_PORT
        return cls(address=str(data["IP"]), port=int(port), model=str(data.get("Model", "")))


class NadError(Exception):
    """Base exception for NAD control errors"""

    tag = "NadError"

    def __init__(self, message: str = "", *args) -> None:
        super().__init__(message, *args)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.tag


class InvalidArgument(NadError):
    """value outside a documented domain"""

    tag = "InvalidArgument"


class OutOfRange(InvalidArgument):
    """numeric value outside the attribute's domain"""

    tag = "OutOfRange"


class ConnectFailed(NadError):
    """dial, DNS or handshake failure"""

    tag = "ConnectFailed"


class CommunicationFailed(NadError):
    """I/O failure that survived one reconnect-and-retry"""

    tag = "CommunicationFailed"


class MalformedResponse(NadError):
    """a response line that could not be parsed"""

    tag = "MalformedResponse"


class UnknownAttribute(MalformedResponse):
    """a response for an attribute we do not know"""

    tag = "UnknownAttribute"


class NotConnected(NadError):
    """operation attempted without an active client"""

    tag = "NotConnected"


class CacheIO(NadError):
    """discovery cache could not be read or written"""

    tag = "CacheIO"


class Cancelled(NadError):
    """deadline elapsed"""

    tag = "Cancelled"
