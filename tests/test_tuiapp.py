#!/usr/bin/env python3
"""test the curses renderer with a fake screen"""
# pylint: disable=redefined-outer-name

import curses
import datetime
import unittest.mock

import pytest

import nadctl.tui.app
from nadctl.nadapi.types import DeviceSnapshot, DiscoveredDevice, Switch
from nadctl.spotify import PlaybackState, SpotifyDevice, Track
from nadctl.tui import messages
from nadctl.tui.loghook import LogEntry
from nadctl.tui.state import Mode, Tab, UIState


class FakeScreen:
    """records addstr calls instead of drawing"""

    def __init__(self, height=24, width=80):
        self.size = (height, width)
        self.lines: dict[int, list[str]] = {}

    def getmaxyx(self):
        """screen size"""
        return self.size

    def addstr(self, y, x, text, attr=0):  # pylint: disable=unused-argument
        """remember the text by row"""
        self.lines.setdefault(y, []).append(text)

    def erase(self):
        """start a new frame"""
        self.lines = {}

    def noutrefresh(self):
        """nothing to flush"""

    def text(self) -> str:
        """everything on screen"""
        return "\n".join(" ".join(parts) for _, parts in sorted(self.lines.items()))


@pytest.fixture
def screen():
    """a fake screen with curses output calls stubbed"""
    with unittest.mock.patch("curses.has_colors", return_value=False), unittest.mock.patch(
        "curses.doupdate"
    ):
        yield FakeScreen()


def _render(screen, state, entries=None, now=100.0):
    renderer = nadctl.tui.app.Renderer(screen, clock=lambda: now)
    renderer.draw(state, entries or [])
    return screen.text()


@pytest.mark.parametrize(
    "code,name",
    [
        (curses.KEY_UP, "up"),
        (curses.KEY_BTAB, "shift+tab"),
        (9, "tab"),
        (27, "esc"),
        (3, "ctrl+c"),
        (32, "space"),
        (ord("+"), "+"),
        (ord("q"), "q"),
        (0, None),
        (400, None),
    ],
)
def test_translate_key(code, name):
    """curses codes map to reducer key names"""
    assert nadctl.tui.app.translate_key(code) == name


def test_device_view(screen):
    """the device tab shows every field"""
    state = UIState(
        connected=True,
        device=DiscoveredDevice("10.0.0.5", 30001, "NAD C 368"),
        snapshot=DeviceSnapshot(
            power=Switch.ON, volume=-30.0, source="TV", mute=Switch.OFF, brightness=2
        ),
        last_update=90.0,
    )
    text = _render(screen, state)
    assert "NAD C 368 @ 10.0.0.5:30001" in text
    assert "* Connected" in text
    assert " -30.0 dB" in text
    assert " TV " in text
    assert "2 [##.] Medium" in text
    assert "Updated 10s ago" in text


def test_waiting_and_error(screen):
    """before the first status the last error is shown"""
    text = _render(screen, UIState(last_error="connection refused"))
    assert "* Disconnected" in text
    assert "Waiting for device status..." in text
    assert "Last error: connection refused" in text


def test_pending_volume_and_input(screen):
    """adjust mode shows the pending value, input mode the typed text"""
    snapshot = DeviceSnapshot(volume=-30.0)
    text = _render(screen, UIState(snapshot=snapshot, mode=Mode.VOLUME_ADJUST, pending_volume=-27.0))
    assert "-27.0 dB (pending)" in text
    text = _render(
        screen,
        UIState(
            snapshot=snapshot,
            mode=Mode.VOLUME_INPUT,
            volume_input="-2",
            input_error="Invalid volume: enter a number",
        ),
    )
    assert "Volume (dB): -2_" in text
    assert "Invalid volume: enter a number" in text


def test_spotify_view(screen):
    """playback and device selection"""
    assert "not configured" in _render(screen, UIState(tab=Tab.SPOTIFY))
    assert "Press 'a' to log in" in _render(screen, UIState(tab=Tab.SPOTIFY, spotify_enabled=True))
    state = UIState(
        tab=Tab.SPOTIFY,
        spotify_enabled=True,
        spotify_connected=True,
        playback=PlaybackState(
            track=Track("Song 2", "Blur", "Blur"), device_name="Kitchen", volume=40, is_playing=True
        ),
        mode=Mode.DEVICE_SELECT,
        spotify_devices=[SpotifyDevice(id="a", name="Laptop"), SpotifyDevice(id="b", name="Kitchen")],
        device_cursor=1,
    )
    text = _render(screen, state)
    assert "Playing: Song 2" in text
    assert "on Kitchen  volume 40%" in text
    assert "> Kitchen" in text


def test_logs_and_notes(screen):
    """the log tab lists entries and recent notes appear on the status line"""
    entries = [
        LogEntry(datetime.datetime(2024, 1, 1, 12, 0, 0), "INFO", "hello"),
        LogEntry(datetime.datetime(2024, 1, 1, 12, 0, 1), "ERROR", "boom"),
    ]
    state = UIState(tab=Tab.LOGS, note=messages.Note("Mute On"), note_at=99.0)
    text = _render(screen, state, entries)
    assert "12:00:00 INFO    hello" in text
    assert "12:00:01 ERROR   boom" in text
    assert "Mute On" in text
    assert "Mute On" not in _render(screen, state, entries, now=200.0)


def test_help_and_tiny_screen(screen):
    """help replaces the view; a tiny screen does not raise"""
    assert "adjust volume" in _render(screen, UIState(show_help=True))
    screen.size = (3, 5)
    _render(screen, UIState(snapshot=DeviceSnapshot()))
