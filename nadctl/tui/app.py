#!/usr/bin/env python3
"""
Curses front end

Owns the screen and the event loop: keys and worker messages are fed to the
reducer, a tick fires every half second, and the whole screen is repainted
from UIState after each pass.
"""

import asyncio
import contextlib
import curses
import logging
import os
import time

from nadctl.config import ConfigFile
from nadctl.nadapi.cache import DiscoveryCache
from nadctl.nadapi.types import (
    BRIGHTNESS_LEVELS,
    MAX_BRIGHTNESS,
    MIN_VOLUME,
    SOURCES,
    DiscoveredDevice,
    Switch,
)
from nadctl.simulator import NadSimulator
from nadctl.spotify import SpotifyClient
from nadctl.tui import messages
from nadctl.tui.commands import CommandQueue
from nadctl.tui.loghook import RingLogHandler, capture_logs
from nadctl.tui.state import Mode, Reducer, Tab, UIState
from nadctl.tui.worker import CommandWorker

TICK_INTERVAL = 0.5
FRAME_INTERVAL = 0.03
NOTE_LIFETIME = 8.0

KEY_NAMES = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_ENTER: "enter",
    curses.KEY_BTAB: "shift+tab",
    curses.KEY_BACKSPACE: "backspace",
    3: "ctrl+c",
    8: "backspace",
    9: "tab",
    10: "enter",
    13: "enter",
    27: "esc",
    32: "space",
    127: "backspace",
}

HELP_LINES = [
    "Device",
    "  p          power on/off",
    "  + / -      adjust volume (enter commits, esc cancels)",
    "  s          type a volume in dB",
    "  m          mute",
    "  left/right previous/next source",
    "  up/down    display brightness",
    "  r          refresh      d  discover devices",
    "Spotify",
    "  space      play/pause   n/b  next/previous",
    "  z          shuffle      u    list devices",
    "  y          pick playback device",
    "  a          log in       x    log out",
    "  t          show/hide Spotify panel",
    "General",
    "  tab, 1-3   switch tabs  ?    help",
    "  q / esc    quit",
]


def translate_key(code: int) -> str | None:
    """curses key code to the reducer's key names"""
    if code in KEY_NAMES:
        return KEY_NAMES[code]
    if 32 < code < 127:
        return chr(code)
    return None


class Renderer:
    """paints UIState onto a curses window"""

    COLOR_RED = 1
    COLOR_GREEN = 2
    COLOR_YELLOW = 3
    COLOR_CYAN = 4

    def __init__(self, stdscr, clock=time.monotonic):
        self.stdscr = stdscr
        self.clock = clock

    def setup_colors(self) -> None:
        """color pairs, when the terminal has them"""
        if not curses.has_colors():
            return
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(self.COLOR_RED, curses.COLOR_RED, -1)
        curses.init_pair(self.COLOR_GREEN, curses.COLOR_GREEN, -1)
        curses.init_pair(self.COLOR_YELLOW, curses.COLOR_YELLOW, -1)
        curses.init_pair(self.COLOR_CYAN, curses.COLOR_CYAN, -1)

    def _color(self, pair: int) -> int:
        return curses.color_pair(pair) if curses.has_colors() else curses.A_NORMAL

    def _addstr(self, y: int, x: int, text: str, attr: int = curses.A_NORMAL) -> None:
        height, width = self.stdscr.getmaxyx()
        if y < 0 or y >= height or x >= width:
            return
        available = width - x - 1
        if available <= 0:
            return
        with contextlib.suppress(curses.error):
            self.stdscr.addstr(y, x, text[:available], attr)

    def draw(self, state: UIState, log_entries: list) -> None:
        """repaint the whole screen"""
        self.stdscr.erase()
        height, _width = self.stdscr.getmaxyx()
        self._draw_header(state)
        self._draw_tabs(state)
        if state.show_help:
            self._draw_help()
        elif state.tab == Tab.DEVICE:
            self._draw_device(state)
        elif state.tab == Tab.SPOTIFY:
            self._draw_spotify(state)
        else:
            self._draw_logs(state, log_entries, height - 6)
        self._draw_status(state, height - 2)
        self._draw_footer(state, height - 1)
        self.stdscr.noutrefresh()
        curses.doupdate()

    def _draw_header(self, state: UIState) -> None:
        title = "nadctl"
        if state.device:
            model = (state.snapshot.model if state.snapshot else None) or state.device.model
            title += f"  {model or 'NAD device'} @ {state.device.address}:{state.device.port}"
        self._addstr(0, 0, title, curses.A_BOLD)
        if state.connected:
            self._addstr(0, len(title) + 2, "* Connected", self._color(self.COLOR_GREEN))
        else:
            self._addstr(0, len(title) + 2, "* Disconnected", self._color(self.COLOR_RED))

    def _draw_tabs(self, state: UIState) -> None:
        x = 0
        for tab in Tab:
            label = f" {tab.value + 1} {tab.title} "
            attr = curses.A_REVERSE if tab == state.tab else curses.A_NORMAL
            self._addstr(2, x, label, attr)
            x += len(label) + 1

    def _draw_device(self, state: UIState) -> None:
        snapshot = state.snapshot
        y = 4
        if snapshot is None:
            self._addstr(y, 2, "Waiting for device status...")
            if state.last_error:
                self._addstr(y + 1, 2, f"Last error: {state.last_error}", self._color(self.COLOR_RED))
            return

        power_color = self.COLOR_GREEN if snapshot.power == Switch.ON else self.COLOR_RED
        self._addstr(y, 2, "Power:")
        self._addstr(y, 14, snapshot.power.value, self._color(power_color))

        y += 1
        self._addstr(y, 2, "Volume:")
        if state.mode == Mode.VOLUME_ADJUST and state.pending_volume is not None:
            self._addstr(
                y, 14, f"{state.pending_volume:.1f} dB (pending)", self._color(self.COLOR_YELLOW)
            )
        elif snapshot.volume is not None:
            filled = int(round((snapshot.volume + 80.0) / 90.0 * 30))
            self._addstr(y, 14, f"{snapshot.volume:6.1f} dB [{'#' * filled}{'.' * (30 - filled)}]")
        else:
            self._addstr(y, 14, "Unknown")

        y += 1
        self._addstr(y, 2, "Source:")
        x = 14
        for source in SOURCES:
            attr = curses.A_REVERSE if source == snapshot.source else curses.A_NORMAL
            self._addstr(y, x, f" {source} ", attr)
            x += len(source) + 3
        if snapshot.source and snapshot.source not in SOURCES:
            self._addstr(y, x, f" {snapshot.source} ", curses.A_REVERSE)

        y += 1
        self._addstr(y, 2, "Mute:")
        mute_color = self.COLOR_YELLOW if snapshot.mute == Switch.ON else self.COLOR_GREEN
        self._addstr(y, 14, snapshot.mute.value, self._color(mute_color))

        y += 1
        self._addstr(y, 2, "Brightness:")
        if snapshot.brightness is not None:
            bar = "#" * snapshot.brightness + "." * (MAX_BRIGHTNESS - snapshot.brightness)
            self._addstr(
                y, 14, f"{snapshot.brightness} [{bar}] {BRIGHTNESS_LEVELS.get(snapshot.brightness, '')}"
            )
        else:
            self._addstr(y, 14, "Unknown")

        y += 2
        if state.last_update is not None:
            age = max(0, int(self.clock() - state.last_update))
            self._addstr(y, 2, f"Updated {age}s ago", curses.A_DIM)
        if state.last_error:
            self._addstr(y + 1, 2, f"Last error: {state.last_error}", self._color(self.COLOR_RED))

        if state.mode == Mode.VOLUME_INPUT:
            self._addstr(y + 3, 2, f"Volume (dB): {state.volume_input}_", curses.A_BOLD)
            if state.input_error:
                self._addstr(y + 4, 2, state.input_error, self._color(self.COLOR_RED))

    def _draw_spotify(self, state: UIState) -> None:
        y = 4
        if not state.spotify_enabled:
            self._addstr(y, 2, "Spotify is not configured. Set spotify.client_id in ~/.nadctl.yaml")
            return
        if not state.spotify_panel:
            self._addstr(y, 2, "Spotify panel hidden (press t)")
            return
        if not state.spotify_connected:
            self._addstr(y, 2, "Not connected to Spotify. Press 'a' to log in.")
            return

        playback = state.playback
        if playback is None or playback.track is None:
            self._addstr(y, 2, "Nothing playing")
        else:
            status = "Playing" if playback.is_playing else "Paused"
            self._addstr(y, 2, f"{status}: {playback.track.name}", curses.A_BOLD)
            self._addstr(y + 1, 4, f"by {playback.track.artist}")
            self._addstr(y + 2, 4, f"from {playback.track.album}", curses.A_DIM)
            self._addstr(
                y + 3,
                4,
                f"on {playback.device_name}  volume {playback.volume}%  "
                f"shuffle {'on' if playback.shuffle else 'off'}",
            )
        y += 5

        if state.mode == Mode.DEVICE_SELECT:
            self._addstr(y, 2, "Select a playback device (enter to transfer, esc to cancel):")
            if not state.spotify_devices:
                self._addstr(y + 1, 4, "Loading devices...")
            for index, device in enumerate(state.spotify_devices):
                marker = ">" if index == state.device_cursor else " "
                active = " (active)" if device.is_active else ""
                attr = curses.A_REVERSE if index == state.device_cursor else curses.A_NORMAL
                self._addstr(y + 1 + index, 4, f"{marker} {device.name} [{device.type}]{active}", attr)
        elif state.spotify_devices:
            names = ", ".join(device.name for device in state.spotify_devices)
            self._addstr(y, 2, f"Devices: {names}", curses.A_DIM)

    def _draw_logs(self, state: UIState, entries: list, rows: int) -> None:
        if rows <= 0:
            return
        end = max(0, len(entries) - state.log_scroll)
        start = max(0, end - rows)
        for offset, entry in enumerate(entries[start:end]):
            color = {
                "ERROR": self.COLOR_RED,
                "CRITICAL": self.COLOR_RED,
                "WARNING": self.COLOR_YELLOW,
                "DEBUG": self.COLOR_CYAN,
            }.get(entry.level)
            attr = self._color(color) if color else curses.A_NORMAL
            self._addstr(
                4 + offset, 0, f"{entry.time:%H:%M:%S} {entry.level:<7} {entry.message}", attr
            )

    def _draw_help(self) -> None:
        for offset, line in enumerate(HELP_LINES):
            attr = curses.A_BOLD if not line.startswith(" ") else curses.A_NORMAL
            self._addstr(4 + offset, 2, line, attr)

    def _draw_status(self, state: UIState, y: int) -> None:
        note = state.note
        if note is None or state.note_at is None or self.clock() - state.note_at > NOTE_LIFETIME:
            return
        color = {
            messages.Severity.ERROR: self.COLOR_RED,
            messages.Severity.WARNING: self.COLOR_YELLOW,
            messages.Severity.SUCCESS: self.COLOR_GREEN,
        }.get(note.severity)
        self._addstr(y, 0, note.text, self._color(color) if color else curses.A_NORMAL)

    def _draw_footer(self, state: UIState, y: int) -> None:
        hints = {
            Mode.NORMAL: "p power  +/- volume  s set volume  m mute  </> source  ? help  q quit",
            Mode.VOLUME_INPUT: "type a level from -80 to 10, enter to apply, esc to cancel",
            Mode.VOLUME_ADJUST: "+/- adjust, enter to apply now, esc to cancel",
            Mode.DEVICE_SELECT: "up/down choose, enter transfer, esc cancel",
        }
        self._addstr(y, 0, hints[state.mode], curses.A_DIM)


class TuiApp:  # pylint: disable=too-many-instance-attributes
    """wires the queue, worker, reducer and renderer together"""

    def __init__(self, config: ConfigFile, *, demo: bool = False):
        self.config = config
        self.demo = demo
        self.loghandler = RingLogHandler()
        self.messages: asyncio.Queue | None = None
        self.simulator: NadSimulator | None = None

    def run(self) -> int:
        """take over the terminal until the user quits"""
        os.environ.setdefault("ESCDELAY", "25")
        with capture_logs(self.loghandler):
            curses.wrapper(self._curses_main)
        return 0

    def _curses_main(self, stdscr) -> None:
        curses.raw()
        with contextlib.suppress(curses.error):
            curses.curs_set(0)
        stdscr.keypad(True)
        stdscr.nodelay(True)
        asyncio.run(self._main(stdscr))

    def _schedule(self, delay: float, message: messages.Message) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self.messages.put_nowait, message)

    async def _configured_device(self) -> DiscoveredDevice | None:
        if self.demo:
            self.simulator = NadSimulator(port=0)
            await self.simulator.start()
            host, port = self.simulator.address
            logging.info("Demo mode: simulator running on %s:%s", host, port)
            return DiscoveredDevice(address=host, port=port, model="Simulator")
        if self.config.ip:
            return DiscoveredDevice(address=self.config.ip, port=self.config.port)
        return None

    async def _main(self, stdscr) -> None:
        self.messages = asyncio.Queue()
        spotify = None
        if self.config.spotify_client_id:
            spotify = SpotifyClient(self.config.spotify_client_id, self.config.spotify_redirect_url)

        queue = CommandQueue()
        worker = CommandWorker(
            queue,
            self.messages.put_nowait,
            spotify=spotify,
            cache=DiscoveryCache(),
            cache_ttl=self.config.cache_ttl,
            max_volume=self.config.max_volume,
        )
        reducer = Reducer(
            queue,
            scheduler=self._schedule,
            configured_device=await self._configured_device(),
            spotify_enabled=spotify is not None,
            volume_range=(MIN_VOLUME, self.config.max_volume),
        )
        renderer = Renderer(stdscr)
        renderer.setup_colors()

        loop = asyncio.get_running_loop()
        await worker.start()
        reducer.start()
        next_tick = loop.time()
        try:
            while not reducer.state.quitting:
                while not self.messages.empty():
                    reducer.dispatch(self.messages.get_nowait())
                while (code := stdscr.getch()) != -1:
                    if code == curses.KEY_RESIZE:
                        continue
                    if key := translate_key(code):
                        reducer.handle_key(key)
                if loop.time() >= next_tick:
                    reducer.dispatch(messages.Tick())
                    next_tick = loop.time() + TICK_INTERVAL
                renderer.draw(reducer.state, self.loghandler.snapshot())
                await asyncio.sleep(FRAME_INTERVAL)
        finally:
            await worker.shutdown()
            if self.simulator:
                await self.simulator.stop()


def run_tui(config: ConfigFile, demo: bool = False) -> int:
    """entry point for the `tui` command"""
    return TuiApp(config, demo=demo).run()
