#!/usr/bin/env python3
"""
Background worker for device operations.

Drains the command queue one operation at a time, runs it against the
device client (or the Spotify controller) and reports the outcome to the UI
as messages.  Device errors never escape the worker.
"""

import asyncio
import contextlib
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from nadctl.nadapi.cache import DiscoveryCache, DiscoveryResult, discover
from nadctl.nadapi.connection import DeviceClient, is_connection_error
from nadctl.nadapi.types import (
    DEFAULT_CACHE_TTL,
    MAX_VOLUME,
    Direction,
    DiscoveredDevice,
    NadError,
    NotConnected,
)
from nadctl.spotify import PlaybackController, SpotifyError
from nadctl.tui import messages
from nadctl.tui.commands import CommandQueue, OpKind, QueuedOperation

# operations that do not trigger a follow-up refresh
NO_FOLLOWUP = frozenset(
    {
        OpKind.REFRESH,
        OpKind.DISCOVER,
        OpKind.SPOTIFY_REFRESH,
        OpKind.SPOTIFY_DEVICES,
        OpKind.SPOTIFY_AUTH,
        OpKind.SPOTIFY_DISCONNECT,
    }
)

DEFAULT_DISCOVERY_TIMEOUT = 30.0
SPOTIFY_AUTH_TIMEOUT = 120.0

Emit = Callable[[messages.Message], Any]
Discoverer = Callable[..., Awaitable[DiscoveryResult]]


class CommandWorker:  # pylint: disable=too-many-instance-attributes
    """
    Single consumer of the CommandQueue.

    Runs as one long-lived task so operations reach the device strictly in
    queue order.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        queue: CommandQueue,
        emit: Emit,
        *,
        spotify: PlaybackController | None = None,
        client_factory: Callable[..., DeviceClient] = DeviceClient,
        discoverer: Discoverer = discover,
        cache: DiscoveryCache | None = None,
        cache_ttl: datetime.timedelta = DEFAULT_CACHE_TTL,
        max_volume: float = MAX_VOLUME,
        idle_sleep: float = 0.05,
        command_gap: float = 0.1,
        discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    ):
        self.queue = queue
        self.emit = emit
        self.spotify = spotify
        self.client_factory = client_factory
        self.discoverer = discoverer
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.max_volume = max_volume
        self.idle_sleep = idle_sleep
        self.command_gap = command_gap
        self.discovery_timeout = discovery_timeout
        self.client: DeviceClient | None = None
        self.running = False
        self._task: asyncio.Task | None = None
        self._side_tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start the worker task"""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._worker_loop(), name="nadctl-worker")
        logging.debug("Command worker started")

    async def shutdown(self) -> None:
        """stop the loop and close the device connection"""
        if not self.running:
            return
        self.running = False
        if self.client:
            await self.client.close()
        tasks = [task for task in (self._task, *self._side_tasks) if task]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._side_tasks.clear()
        logging.debug("Command worker stopped")

    async def _worker_loop(self) -> None:
        """Main worker processing loop"""
        while self.running:
            operation = self.queue.get()
            if operation is None:
                await asyncio.sleep(self.idle_sleep)
                continue
            await self.execute(operation)
            await asyncio.sleep(self.command_gap)

    async def execute(self, operation: QueuedOperation) -> bool:
        """run one operation and report it; returns True on success"""
        label = operation.kind.value
        logging.debug("Executing %s (id %s)", label, operation.id)
        try:
            await self._dispatch(operation)
        except asyncio.CancelledError:
            raise
        except NadError as err:
            if is_connection_error(err):
                logging.warning("%s failed, device unreachable: %s", label, err)
                self.emit(messages.ConnectFailed(str(err)))
            else:
                logging.warning("%s failed: %s", label, err)
            self.emit(messages.Note(f"{label.capitalize()} failed: {err}", messages.Severity.ERROR))
            return False
        except SpotifyError as err:
            logging.warning("%s failed: %s", label, err)
            self.emit(messages.Note(f"{label.capitalize()} failed: {err}", messages.Severity.ERROR))
            return False
        except Exception as err:  # pylint: disable=broad-exception-caught
            logging.exception("Unexpected error during %s", label)
            self.emit(messages.Note(f"{label.capitalize()} failed: {err}", messages.Severity.ERROR))
            return False

        if operation.kind not in NO_FOLLOWUP:
            followup = OpKind.SPOTIFY_REFRESH if operation.kind.is_spotify else OpKind.REFRESH
            self.queue.put(followup, urgent=True)
        return True

    def _require_client(self) -> DeviceClient:
        if self.client is None:
            raise NotConnected("not connected to a NAD device")
        return self.client

    def _require_spotify(self) -> PlaybackController:
        if self.spotify is None:
            raise SpotifyError("Spotify is not configured (set spotify.client_id)")
        return self.spotify

    def _note(self, text: str, severity: messages.Severity = messages.Severity.SUCCESS) -> None:
        self.emit(messages.Note(text, severity))

    async def _dispatch(self, operation: QueuedOperation) -> None:  # pylint: disable=too-many-branches
        kind = operation.kind
        params = operation.params

        if kind.is_spotify:
            await self._dispatch_spotify(operation)
        elif kind == OpKind.CONNECT:
            await self._connect(params["host"], int(params.get("port", 30001)))
        elif kind == OpKind.DISCOVER:
            await self._discover()
        elif kind == OpKind.REFRESH:
            snapshot = await self._require_client().refresh()
            self.emit(messages.Status(snapshot))
        elif kind == OpKind.POWER_TOGGLE:
            power = await self._require_client().power_toggle()
            self._note(f"Power {power.value}")
        elif kind == OpKind.MUTE_TOGGLE:
            mute = await self._require_client().toggle_mute()
            self._note(f"Mute {mute.value}")
        elif kind == OpKind.VOLUME_SET:
            volume = await self._require_client().set_volume(params["volume"])
            self._note(f"Volume set to {volume:.1f} dB")
        elif kind in (OpKind.VOLUME_UP, OpKind.VOLUME_DOWN):
            direction = Direction.UP if kind == OpKind.VOLUME_UP else Direction.DOWN
            volume = await self._require_client().step_volume(direction, params.get("step", 1.0))
            self._note(f"Volume {volume:.1f} dB")
        elif kind in (OpKind.SOURCE_NEXT, OpKind.SOURCE_PREV):
            direction = Direction.UP if kind == OpKind.SOURCE_NEXT else Direction.DOWN
            source = await self._require_client().step_source(direction)
            self._note(f"Source {source}")
        elif kind == OpKind.SOURCE_SET:
            source = await self._require_client().set_source(params["source"])
            self._note(f"Source {source}")
        elif kind in (OpKind.BRIGHTNESS_UP, OpKind.BRIGHTNESS_DOWN):
            direction = Direction.UP if kind == OpKind.BRIGHTNESS_UP else Direction.DOWN
            level = await self._require_client().step_brightness(direction)
            self._note(f"Brightness {level}")
        elif kind == OpKind.BRIGHTNESS_SET:
            level = await self._require_client().set_brightness(int(params["level"]))
            self._note(f"Brightness {level}")
        else:
            raise NadError(f"unsupported operation: {kind.value}")

    async def _connect(self, host: str, port: int) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None
        client = self.client_factory(host, port, max_volume=self.max_volume)
        await client.connect()
        self.client = client
        model = ""
        with contextlib.suppress(NadError):
            model = await client.get_model()
        self.emit(messages.Connected(DiscoveredDevice(address=host, port=port, model=model)))
        self._note(f"Connected to {model or 'NAD device'} at {host}:{port}")

    async def _discover(self) -> None:
        self._note("Discovering NAD devices...", messages.Severity.INFO)
        result = await self.discoverer(
            self.discovery_timeout, use_cache=False, ttl=self.cache_ttl, cache=self.cache
        )
        for warning in result.warnings:
            self._note(warning, messages.Severity.WARNING)
        self.emit(messages.DevicesDiscovered(list(result.devices), result.from_cache))
        if not result.devices:
            self._note("No NAD devices found", messages.Severity.WARNING)
            return
        self._note(f"Found {len(result.devices)} NAD device(s)")
        if self.client is None:
            first = result.devices[0]
            self.queue.put(OpKind.CONNECT, host=first.address, port=first.port)

    async def _dispatch_spotify(self, operation: QueuedOperation) -> None:  # pylint: disable=too-many-branches
        kind = operation.kind
        spotify = self._require_spotify()

        if kind == OpKind.SPOTIFY_AUTH:
            self._start_spotify_auth(spotify)
            return
        if kind == OpKind.SPOTIFY_DISCONNECT:
            spotify.disconnect()
            self.emit(messages.SpotifyPlayback(connected=False))
            self._note("Disconnected from Spotify")
            return
        if not spotify.is_connected():
            if kind == OpKind.SPOTIFY_REFRESH:
                self.emit(messages.SpotifyPlayback(connected=False))
                return
            raise SpotifyError("not connected to Spotify (press 'a' to authenticate)")

        if kind == OpKind.SPOTIFY_REFRESH:
            state = await spotify.playback_state()
            self.emit(messages.SpotifyPlayback(connected=True, playback=state))
        elif kind == OpKind.SPOTIFY_PLAY_PAUSE:
            state = await spotify.playback_state()
            if state is not None and state.is_playing:
                await spotify.pause()
                self._note("Spotify paused")
            else:
                await spotify.play()
                self._note("Spotify playing")
        elif kind == OpKind.SPOTIFY_NEXT:
            await spotify.next()
            self._note("Next track")
        elif kind == OpKind.SPOTIFY_PREV:
            await spotify.previous()
            self._note("Previous track")
        elif kind == OpKind.SPOTIFY_SHUFFLE:
            shuffle = await spotify.toggle_shuffle()
            self._note(f"Shuffle {'on' if shuffle else 'off'}")
        elif kind == OpKind.SPOTIFY_DEVICES:
            devices = await spotify.devices()
            self.emit(messages.SpotifyDevices(devices))
        elif kind == OpKind.SPOTIFY_TRANSFER:
            await spotify.transfer(operation.params["device_id"], operation.params.get("play", True))
            self._note(f"Playback moved to {operation.params.get('name') or operation.params['device_id']}")

    def _start_spotify_auth(self, spotify: PlaybackController) -> None:
        """the browser login can take minutes; keep the device queue moving"""

        async def _run() -> None:
            try:
                await spotify.authenticate(timeout=SPOTIFY_AUTH_TIMEOUT)
            except SpotifyError as err:
                self._note(f"Spotify authentication failed: {err}", messages.Severity.ERROR)
                return
            self._note("Connected to Spotify")
            self.queue.put(OpKind.SPOTIFY_REFRESH)
            self.queue.put(OpKind.SPOTIFY_DEVICES)

        self._note("Complete the Spotify login in your browser", messages.Severity.INFO)
        task = asyncio.create_task(_run(), name="nadctl-spotify-auth")
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)
