#!/usr/bin/env python3
"""
UI state and the reducer that drives it

The reducer consumes key presses, ticks and worker messages one at a time
and updates a UIState that the renderer only reads.  It never touches the
network; device work is handed to the CommandQueue and timers go through
an injected scheduler so tests can drive everything synchronously.
"""

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from nadctl.nadapi.types import (
    MAX_VOLUME,
    MIN_VOLUME,
    DeviceSnapshot,
    DiscoveredDevice,
)
from nadctl.tui import messages
from nadctl.tui.commands import CommandQueue, OpKind

AUTO_REFRESH_INTERVAL = 10.0
SPOTIFY_REFRESH_INTERVAL = 5.0
VOLUME_ADJUST_TIMEOUT = 2.0
VOLUME_STEP = 1.0
MAX_INPUT_LENGTH = 8
QUIT_KEYS = ("q", "esc", "ctrl+c")


class Mode(enum.Enum):
    """key input modes"""

    NORMAL = "normal"
    VOLUME_INPUT = "volume input"
    VOLUME_ADJUST = "volume adjust"
    DEVICE_SELECT = "device select"


class Tab(enum.IntEnum):
    """views"""

    DEVICE = 0
    SPOTIFY = 1
    LOGS = 2

    @property
    def title(self) -> str:
        """tab label"""
        return self.name.capitalize()


class TimerHandle(Protocol):  # pylint: disable=too-few-public-methods
    """what a scheduler returns"""

    def cancel(self) -> Any:
        """stop the timer"""


Scheduler = Callable[[float, messages.Message], TimerHandle]


@dataclass
class UIState:  # pylint: disable=too-many-instance-attributes
    """everything the renderer needs"""

    mode: Mode = Mode.NORMAL
    tab: Tab = Tab.DEVICE
    connected: bool = False
    device: DiscoveredDevice | None = None
    snapshot: DeviceSnapshot | None = None
    last_update: float | None = None
    last_error: str | None = None
    note: messages.Note | None = None
    note_at: float | None = None
    volume_input: str = ""
    input_error: str | None = None
    pending_volume: float | None = None
    adjust_generation: int = 0
    show_help: bool = False
    quitting: bool = False
    discovered: list[DiscoveredDevice] = field(default_factory=list)
    spotify_enabled: bool = False
    spotify_panel: bool = True
    spotify_connected: bool = False
    playback: Any = None
    spotify_devices: list[Any] = field(default_factory=list)
    device_cursor: int = 0
    log_scroll: int = 0


class Reducer:  # pylint: disable=too-many-instance-attributes
    """single-threaded event handler that owns UIState"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        queue: CommandQueue,
        *,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.monotonic,
        configured_device: DiscoveredDevice | None = None,
        spotify_enabled: bool = False,
        volume_range: tuple[float, float] = (MIN_VOLUME, MAX_VOLUME),
        auto_refresh_interval: float = AUTO_REFRESH_INTERVAL,
        spotify_refresh_interval: float = SPOTIFY_REFRESH_INTERVAL,
        adjust_timeout: float = VOLUME_ADJUST_TIMEOUT,
    ):
        self.queue = queue
        self.scheduler = scheduler
        self.clock = clock
        self.configured_device = configured_device
        self.volume_range = volume_range
        self.auto_refresh_interval = auto_refresh_interval
        self.spotify_refresh_interval = spotify_refresh_interval
        self.adjust_timeout = adjust_timeout
        self.state = UIState(spotify_enabled=spotify_enabled)
        self._adjust_timer: TimerHandle | None = None
        self._last_spotify_request: float | None = None

    def start(self) -> None:
        """initial operations: connect to the configured device or discover one"""
        if self.configured_device:
            device = self.configured_device
            self._set_note(f"Connecting to {device.address}:{device.port}...")
            self.queue.put(OpKind.CONNECT, host=device.address, port=device.port)
        else:
            self._set_note("No device configured, discovering...")
            self.queue.put(OpKind.DISCOVER)
        if self.state.spotify_enabled:
            self.queue.put(OpKind.SPOTIFY_REFRESH)

    # messages

    def dispatch(self, message: messages.Message) -> UIState:  # pylint: disable=too-many-branches
        """apply one worker or timer message"""
        state = self.state
        if isinstance(message, messages.Tick):
            self._on_tick()
        elif isinstance(message, messages.Status):
            state.snapshot = message.snapshot
            state.last_update = self.clock()
            state.connected = True
            state.last_error = None
        elif isinstance(message, messages.Connected):
            state.connected = True
            state.device = message.device
            state.last_error = None
        elif isinstance(message, messages.ConnectFailed):
            state.connected = False
            state.last_error = message.error
        elif isinstance(message, messages.Note):
            self._set_note(message.text, message.severity)
        elif isinstance(message, messages.PendingVolumeTimeout):
            if state.mode == Mode.VOLUME_ADJUST and message.generation == state.adjust_generation:
                self._commit_pending_volume()
        elif isinstance(message, messages.DevicesDiscovered):
            state.discovered = list(message.devices)
        elif isinstance(message, messages.SpotifyPlayback):
            state.spotify_connected = message.connected
            state.playback = message.playback
        elif isinstance(message, messages.SpotifyDevices):
            state.spotify_devices = list(message.devices)
            state.device_cursor = min(state.device_cursor, max(0, len(state.spotify_devices) - 1))
        else:
            logging.debug("Reducer ignoring %r", message)
        return state

    def _on_tick(self) -> None:
        state = self.state
        now = self.clock()
        if state.connected and (
            state.last_update is None or now - state.last_update > self.auto_refresh_interval
        ):
            self.queue.put(OpKind.REFRESH)
        if (
            state.spotify_enabled
            and state.spotify_connected
            and (
                self._last_spotify_request is None
                or now - self._last_spotify_request >= self.spotify_refresh_interval
            )
        ):
            self._last_spotify_request = now
            self.queue.put(OpKind.SPOTIFY_REFRESH)

    def _set_note(self, text: str, severity: messages.Severity = messages.Severity.INFO) -> None:
        self.state.note = messages.Note(text, severity)
        self.state.note_at = self.clock()

    # keys

    def handle_key(self, key: str) -> UIState:
        """apply one key press"""
        mode = self.state.mode
        if mode == Mode.VOLUME_INPUT:
            self._key_volume_input(key)
        elif mode == Mode.VOLUME_ADJUST:
            self._key_volume_adjust(key)
        elif mode == Mode.DEVICE_SELECT:
            self._key_device_select(key)
        else:
            self._key_normal(key)
        return self.state

    def _key_normal(self, key: str) -> None:  # pylint: disable=too-many-branches
        state = self.state
        if state.show_help:
            if key in ("?", "esc", "q"):
                state.show_help = False
                return
            if key != "ctrl+c":
                state.show_help = False
        if key in QUIT_KEYS:
            state.quitting = True
            return

        if self._key_tabs(key):
            return

        if state.tab == Tab.LOGS and key in ("up", "k", "down", "j"):
            state.log_scroll = max(0, state.log_scroll + (1 if key in ("up", "k") else -1))
            return

        simple = {
            "p": OpKind.POWER_TOGGLE,
            "m": OpKind.MUTE_TOGGLE,
            "left": OpKind.SOURCE_PREV,
            "h": OpKind.SOURCE_PREV,
            "right": OpKind.SOURCE_NEXT,
            "l": OpKind.SOURCE_NEXT,
            "up": OpKind.BRIGHTNESS_UP,
            "k": OpKind.BRIGHTNESS_UP,
            "down": OpKind.BRIGHTNESS_DOWN,
            "j": OpKind.BRIGHTNESS_DOWN,
            "r": OpKind.REFRESH,
            "d": OpKind.DISCOVER,
        }
        if key in simple:
            self.queue.put(simple[key])
        elif key in ("+", "="):
            self._start_volume_adjust(VOLUME_STEP)
        elif key == "-":
            self._start_volume_adjust(-VOLUME_STEP)
        elif key == "s":
            state.mode = Mode.VOLUME_INPUT
            state.volume_input = ""
            state.input_error = None
        elif key == "?":
            state.show_help = True
        else:
            self._key_spotify(key)

    def _key_tabs(self, key: str) -> bool:
        state = self.state
        tabs = list(Tab)
        if key == "tab":
            state.tab = tabs[(state.tab + 1) % len(tabs)]
        elif key == "shift+tab":
            state.tab = tabs[(state.tab - 1) % len(tabs)]
        elif key in ("1", "2", "3"):
            state.tab = tabs[int(key) - 1]
        else:
            return False
        state.log_scroll = 0
        return True

    def _key_spotify(self, key: str) -> None:
        spotify_keys = {
            "space": OpKind.SPOTIFY_PLAY_PAUSE,
            "n": OpKind.SPOTIFY_NEXT,
            "b": OpKind.SPOTIFY_PREV,
            "z": OpKind.SPOTIFY_SHUFFLE,
            "a": OpKind.SPOTIFY_AUTH,
            "x": OpKind.SPOTIFY_DISCONNECT,
            "u": OpKind.SPOTIFY_DEVICES,
        }
        if key not in spotify_keys and key not in ("t", "y"):
            return
        state = self.state
        if not state.spotify_enabled:
            self._set_note("Spotify is not configured", messages.Severity.WARNING)
            return
        if key == "t":
            state.spotify_panel = not state.spotify_panel
        elif key == "y":
            state.mode = Mode.DEVICE_SELECT
            state.device_cursor = 0
            self.queue.put(OpKind.SPOTIFY_DEVICES)
        else:
            self.queue.put(spotify_keys[key])

    # volume input mode

    def _key_volume_input(self, key: str) -> None:
        state = self.state
        if key == "esc":
            state.mode = Mode.NORMAL
            state.volume_input = ""
            state.input_error = None
        elif key == "enter":
            self._submit_volume_input()
        elif key == "backspace":
            state.volume_input = state.volume_input[:-1]
        elif len(key) == 1 and (key.isdigit() or key in "-+.") and len(state.volume_input) < MAX_INPUT_LENGTH:
            state.volume_input += key
            state.input_error = None

    def _submit_volume_input(self) -> None:
        state = self.state
        low, high = self.volume_range
        try:
            volume = float(state.volume_input)
        except ValueError:
            state.input_error = "Invalid volume: enter a number"
            return
        if not low <= volume <= high:
            state.input_error = f"Volume must be between {low:g} and {high:g} dB"
            return
        self.queue.put(OpKind.VOLUME_SET, volume=volume)
        state.mode = Mode.NORMAL
        state.volume_input = ""
        state.input_error = None
        self._set_note(f"Setting volume to {volume:.1f} dB")

    # volume adjust mode

    def _clamp(self, volume: float) -> float:
        low, high = self.volume_range
        return max(low, min(high, volume))

    def _start_volume_adjust(self, delta: float) -> None:
        state = self.state
        if state.snapshot is None or state.snapshot.volume is None:
            # nothing to adjust from yet; let the device step it
            self.queue.put(OpKind.VOLUME_UP if delta > 0 else OpKind.VOLUME_DOWN)
            return
        state.mode = Mode.VOLUME_ADJUST
        state.pending_volume = self._clamp(state.snapshot.volume + delta)
        self._restart_adjust_timer()

    def _restart_adjust_timer(self) -> None:
        if self._adjust_timer is not None:
            self._adjust_timer.cancel()
        self.state.adjust_generation += 1
        self._adjust_timer = self.scheduler(
            self.adjust_timeout, messages.PendingVolumeTimeout(self.state.adjust_generation)
        )

    def _stop_adjust(self) -> None:
        if self._adjust_timer is not None:
            self._adjust_timer.cancel()
            self._adjust_timer = None
        self.state.adjust_generation += 1
        self.state.mode = Mode.NORMAL
        self.state.pending_volume = None

    def _commit_pending_volume(self) -> None:
        volume = self.state.pending_volume
        self._stop_adjust()
        if volume is not None:
            self.queue.put(OpKind.VOLUME_SET, volume=volume)
            self._set_note(f"Setting volume to {volume:.1f} dB")

    def _key_volume_adjust(self, key: str) -> None:
        state = self.state
        if key in ("+", "="):
            state.pending_volume = self._clamp((state.pending_volume or 0.0) + VOLUME_STEP)
            self._restart_adjust_timer()
        elif key == "-":
            state.pending_volume = self._clamp((state.pending_volume or 0.0) - VOLUME_STEP)
            self._restart_adjust_timer()
        elif key == "enter":
            self._commit_pending_volume()
        elif key == "esc":
            self._stop_adjust()
            self._set_note("Volume change cancelled")
        else:
            self._commit_pending_volume()
            self._key_normal(key)

    # spotify device selection

    def _key_device_select(self, key: str) -> None:
        state = self.state
        if key in ("esc", "q"):
            state.mode = Mode.NORMAL
        elif key in ("up", "k"):
            state.device_cursor = max(0, state.device_cursor - 1)
        elif key in ("down", "j"):
            state.device_cursor = min(max(0, len(state.spotify_devices) - 1), state.device_cursor + 1)
        elif key == "enter":
            if not state.spotify_devices:
                self._set_note("No Spotify devices available", messages.Severity.WARNING)
                return
            device = state.spotify_devices[state.device_cursor]
            self.queue.put(OpKind.SPOTIFY_TRANSFER, device_id=device.id, name=device.name, play=True)
            state.mode = Mode.NORMAL
        elif key == "ctrl+c":
            state.quitting = True
