#!/usr/bin/env python3
"""
NAD device simulator

A TCP server that speaks the NAD control protocol against an in-memory
device.  Used by the test suite, the `simulator` command and the TUI demo
mode.  It can run on the caller's event loop or on its own thread.
"""

import asyncio
import contextlib
import dataclasses
import logging
import re
import threading

from nadctl.nadapi.protocol import NadProtocol
from nadctl.nadapi.types import (
    DEFAULT_PORT,
    MAX_BRIGHTNESS,
    MAX_VOLUME,
    MIN_BRIGHTNESS,
    MIN_VOLUME,
    SOURCES,
    Attribute,
    InvalidArgument,
    MalformedResponse,
    Switch,
)

DEFAULT_MODEL = "NAD T 758 V3i"
READ_TIMEOUT = 0.1

_TOKEN_SPLIT = re.compile(r"[\r\n\0]")


@dataclasses.dataclass
class SimulatorState:  # pylint: disable=too-many-instance-attributes
    """simulated device state"""

    power: Switch = Switch.OFF
    volume: float = -30.0
    source: str = "Stream"
    mute: Switch = Switch.OFF
    brightness: int = 2
    model: str = DEFAULT_MODEL


def _looks_like_command(token: str) -> bool:
    return token.endswith(("?", "+", "-")) or "=" in token


class NadSimulator:  # pylint: disable=too-many-instance-attributes
    """Stateful NAD protocol server"""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        state: SimulatorState | None = None,
        read_timeout: float = READ_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.read_timeout = read_timeout
        self._state = state or SimulatorState()
        # plain mutex for readers and writers alike; every hold is a few field accesses
        self._state_lock = threading.Lock()
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._client_tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        """bound (host, port); the port is real once started"""
        return (self.host, self.port)

    @property
    def running(self) -> bool:
        """listener is open"""
        return self._server is not None

    def get_state(self) -> SimulatorState:
        """copy of the current state"""
        with self._state_lock:
            return dataclasses.replace(self._state)

    def set_state(self, **changes) -> None:
        """overwrite state fields, e.g. set_state(brightness=3)"""
        with self._state_lock:
            for key, value in changes.items():
                if not hasattr(self._state, key):
                    raise AttributeError(f"unknown simulator field: {key}")
                setattr(self._state, key, value)

    async def start(self) -> None:
        """open the listener"""
        if self._server is not None:
            return
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logging.info("NAD simulator listening on %s:%s", self.host, self.port)

    async def serve_forever(self) -> None:
        """start and block until cancelled"""
        await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """close the listener and every client; safe to call repeatedly"""
        server, self._server = self._server, None
        if server is not None:
            server.close()
        for writer in list(self._writers):
            writer.close()
        tasks = [task for task in self._client_tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if server is not None:
            with contextlib.suppress(Exception):
                await asyncio.wait_for(server.wait_closed(), timeout=2.0)
            logging.info("NAD simulator on %s:%s stopped", self.host, self.port)

    def start_in_thread(self, timeout: float = 5.0) -> None:
        """run the server on a private event loop in a daemon thread"""
        if self._thread is not None:
            return
        ready = threading.Event()
        failures: list[BaseException] = []

        def _run() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            try:
                loop.run_until_complete(self.start())
            except Exception as err:  # pylint: disable=broad-exception-caught
                failures.append(err)
                ready.set()
                loop.close()
                return
            ready.set()
            try:
                loop.run_forever()
            finally:
                loop.run_until_complete(self.stop())
                loop.close()

        self._thread = threading.Thread(target=_run, name="NadSimulator", daemon=True)
        self._thread.start()
        if not ready.wait(timeout):
            raise TimeoutError("simulator did not start in time")
        if failures:
            self._thread = None
            raise failures[0]

    def stop_in_thread(self) -> None:
        """stop a server started with start_in_thread"""
        thread, self._thread = self._thread, None
        if thread is None or self._loop is None:
            return
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
        thread.join(timeout=5.0)

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        logging.debug("Simulator client connected: %s", peer)
        self._writers.add(writer)
        task = asyncio.current_task()
        if task:
            self._client_tasks.add(task)
        pending = ""
        try:
            while True:
                try:
                    data = await asyncio.wait_for(reader.read(1024), timeout=self.read_timeout)
                except asyncio.TimeoutError:
                    # a quiet line means an unterminated command is complete
                    if pending and _looks_like_command(pending.strip()):
                        await self._respond(writer, [pending])
                        pending = ""
                    continue
                if not data:
                    break
                tokens = _TOKEN_SPLIT.split(pending + data.decode("ascii", errors="replace"))
                pending = tokens.pop()
                await self._respond(writer, tokens)
        except (ConnectionError, OSError) as err:
            logging.debug("Simulator client %s dropped: %s", peer, err)
        finally:
            self._writers.discard(writer)
            if task:
                self._client_tasks.discard(task)
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            logging.debug("Simulator client disconnected: %s", peer)

    async def _respond(self, writer: asyncio.StreamWriter, tokens: list[str]) -> None:
        for token in tokens:
            if response := self.handle_command(token):
                writer.write(f"{response}\r\n".encode("ascii"))
        await writer.drain()

    def handle_command(self, token: str) -> str | None:
        """apply one command token and return the response line (no terminator)"""
        token = token.strip()
        if not token:
            return None
        if not _looks_like_command(token):
            logging.warning("Simulator ignoring unknown command: %r", token)
            return None
        try:
            kind, attr, argument = NadProtocol.parse_command(token)
        except MalformedResponse as err:
            logging.warning("Simulator ignoring unknown command %r: %s", token, err)
            return None

        with self._state_lock:
            try:
                if kind == "set":
                    self._set(attr, argument or "")
                elif kind == "step":
                    self._step(attr, argument)
            except (InvalidArgument, MalformedResponse, ValueError) as err:
                logging.warning("Simulator rejecting %r: %s", token, err)
                return None
            value = getattr(self._state, attr.value.lower())
        logging.debug("Simulator handled %s -> %s=%s", token, attr.value, value)
        return f"Main.{attr.value}={NadProtocol.format_value(attr, value)}"

    def _set(self, attr: Attribute, argument: str) -> None:
        state = self._state
        if attr == Attribute.POWER:
            state.power = NadProtocol.parse_switch(argument)
        elif attr == Attribute.MUTE:
            state.mute = NadProtocol.parse_switch(argument)
        elif attr == Attribute.VOLUME:
            state.volume = max(MIN_VOLUME, min(MAX_VOLUME, float(argument)))
        elif attr == Attribute.SOURCE:
            state.source = NadProtocol.canonical_source(argument)
        elif attr == Attribute.BRIGHTNESS:
            state.brightness = max(MIN_BRIGHTNESS, min(MAX_BRIGHTNESS, int(argument)))
        else:
            raise InvalidArgument(f"{attr.value} is read-only")

    def _step(self, attr: Attribute, sign: str | None) -> None:
        state = self._state
        delta = 1 if sign == "+" else -1
        if attr == Attribute.POWER:
            state.power = state.power.toggled()
        elif attr == Attribute.MUTE:
            state.mute = state.mute.toggled()
        elif attr == Attribute.VOLUME:
            state.volume = max(MIN_VOLUME, min(MAX_VOLUME, state.volume + delta))
        elif attr == Attribute.SOURCE:
            index = SOURCES.index(state.source) if state.source in SOURCES else 0
            state.source = SOURCES[(index + delta) % len(SOURCES)]
        elif attr == Attribute.BRIGHTNESS:
            span = MAX_BRIGHTNESS - MIN_BRIGHTNESS + 1
            state.brightness = MIN_BRIGHTNESS + (state.brightness - MIN_BRIGHTNESS + delta) % span
        else:
            raise InvalidArgument(f"{attr.value} cannot be stepped")
