#!/usr/bin/env python3
"""messages from the worker (and timers) to the UI reducer"""

import enum
import time
from dataclasses import dataclass, field
from typing import Any

from nadctl.nadapi.types import DeviceSnapshot, DiscoveredDevice


class Severity(enum.Enum):
    """how a note is presented"""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Connected:
    """client is connected to a device"""

    device: DiscoveredDevice


@dataclass(frozen=True)
class ConnectFailed:
    """device could not be reached"""

    error: str


@dataclass(frozen=True)
class Status:
    """fresh device snapshot"""

    snapshot: DeviceSnapshot


@dataclass(frozen=True)
class Note:
    """text for the status line"""

    text: str
    severity: Severity = Severity.INFO


@dataclass(frozen=True)
class Tick:
    """periodic timer"""

    at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class PendingVolumeTimeout:
    """the volume adjust timer fired"""

    generation: int


@dataclass(frozen=True)
class DevicesDiscovered:
    """result of a discovery run"""

    devices: list[DiscoveredDevice]
    from_cache: bool = False


@dataclass(frozen=True)
class SpotifyPlayback:
    """current Spotify playback; playback is None when nothing is active"""

    connected: bool
    playback: Any = None


@dataclass(frozen=True)
class SpotifyDevices:
    """Spotify Connect devices"""

    devices: list[Any]


Message = (
    Connected
    | ConnectFailed
    | Status
    | Note
    | Tick
    | PendingVolumeTimeout
    | DevicesDiscovered
    | SpotifyPlayback
    | SpotifyDevices
)
