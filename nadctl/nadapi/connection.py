#!/usr/bin/env python3
"""
NAD Device Client

This module owns the TCP connection to a single receiver.  The protocol has
no request identifiers, so every operation writes one command and waits for
the matching response before anything else may use the socket.
"""

import asyncio
import contextlib
import logging
import math
from typing import Any

from .protocol import NadProtocol
from .types import (
    DEFAULT_PORT,
    LINE_TERMINATOR,
    MAX_BRIGHTNESS,
    MAX_DRAIN_LINES,
    MAX_VOLUME,
    MIN_BRIGHTNESS,
    MIN_VOLUME,
    SOURCES,
    Attribute,
    CommunicationFailed,
    ConnectFailed,
    ConnectionState,
    DeviceSnapshot,
    Direction,
    InvalidArgument,
    MalformedResponse,
    NotConnected,
    OutOfRange,
    Switch,
)

# errors that mean the socket is no longer usable
IO_ERRORS = (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError, EOFError)


def is_connection_error(err: BaseException) -> bool:
    """True for errors that leave the device unreachable"""
    return isinstance(err, (ConnectFailed, CommunicationFailed, NotConnected))


class DeviceClient:  # pylint: disable=too-many-instance-attributes, too-many-public-methods
    """Typed operations against one NAD receiver over one TCP connection"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 5.0,
        min_volume: float = MIN_VOLUME,
        max_volume: float = MAX_VOLUME,
    ):
        if min_volume >= max_volume:
            raise InvalidArgument(f"volume range {min_volume}..{max_volume} is empty")
        self.host = host
        self.port = int(port)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.min_volume = min_volume
        self.max_volume = max_volume
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()
        self._state = ConnectionState.IDLE

    def __repr__(self) -> str:
        return f"DeviceClient({self.host}:{self.port}, {self._state.value})"

    @property
    def state(self) -> ConnectionState:
        """current connection state"""
        return self._state

    @property
    def endpoint(self) -> str:
        """host:port"""
        return f"{self.host}:{self.port}"

    async def __aenter__(self) -> "DeviceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """dial the device; also reopens a closed client"""
        async with self._lock:
            if self._writer is not None:
                return
            await self._dial()

    async def close(self) -> None:
        """close the socket; safe to call more than once"""
        self._state = ConnectionState.CLOSED
        await self._drop_socket()
        logging.debug("Closed connection to %s", self.endpoint)

    async def _dial(self) -> None:
        self._state = ConnectionState.DIALING
        logging.debug("Connecting to NAD device at %s", self.endpoint)
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as err:
            self._state = ConnectionState.IDLE
            raise ConnectFailed(f"failed to connect to {self.endpoint}: {err or 'timeout'}") from err
        self._state = ConnectionState.READY
        logging.info("Connected to NAD device at %s", self.endpoint)

    async def _drop_socket(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)

    async def _readline(self) -> str:
        if self._reader is None:
            raise EOFError("socket is closed")
        try:
            raw = await asyncio.wait_for(self._reader.readline(), timeout=self.read_timeout)
        except ValueError as err:
            # stream limit overrun; the rest of the buffer is unusable
            raise EOFError(f"response line too long: {err}") from err
        if not raw:
            raise EOFError("connection closed by device")
        return raw.decode("ascii", errors="replace")

    async def _exchange(self, command: str, expect: Attribute) -> Any:
        """write one command, then drain lines until the expected attribute"""
        if self._writer is None:
            raise EOFError("socket is closed")
        logging.debug("Sending command %s to %s", command, self.endpoint)
        self._writer.write((command + LINE_TERMINATOR).encode("ascii"))
        await self._writer.drain()

        for _ in range(MAX_DRAIN_LINES):
            line = (await self._readline()).lstrip("\r\n")
            if not line.strip():
                continue
            logging.debug("Received %r from %s", line, self.endpoint)
            try:
                key, payload = NadProtocol.split_response(line)
                attr = NadProtocol.lookup_attribute(key)
            except MalformedResponse as err:
                # covers UnknownAttribute
                logging.warning("Ignoring response line from %s: %s", self.endpoint, err)
                continue
            if attr != expect:
                logging.debug("Skipping unsolicited %s update", attr.value)
                continue
            return NadProtocol.decode_value(attr, payload)
        raise MalformedResponse(f"no {expect.value} response after {MAX_DRAIN_LINES} lines")

    async def _transact(self, command: str, expect: Attribute) -> Any:
        """run one exchange with a single reconnect-and-retry on I/O failure"""
        async with self._lock:
            if self._state == ConnectionState.CLOSED:
                raise NotConnected(f"client for {self.endpoint} is closed")
            for attempt in (1, 2):
                try:
                    if self._writer is None:
                        await self._dial()
                    self._state = ConnectionState.OPERATING
                    try:
                        return await self._exchange(command, expect)
                    finally:
                        if self._state == ConnectionState.OPERATING:
                            self._state = ConnectionState.READY
                except ConnectFailed as err:
                    if attempt == 2:
                        raise CommunicationFailed(
                            f"{command} failed after reconnect: {err}"
                        ) from err
                    raise
                except IO_ERRORS as err:
                    closing = self._state == ConnectionState.CLOSED
                    await self._drop_socket()
                    if closing:
                        raise NotConnected(f"client for {self.endpoint} was closed") from err
                    self._state = ConnectionState.IDLE
                    if attempt == 2:
                        raise CommunicationFailed(
                            f"{command} failed after reconnect: {err or type(err).__name__}"
                        ) from err
                    logging.warning(
                        "Communication error on %s (%s), reconnecting and retrying",
                        self.endpoint,
                        err or type(err).__name__,
                    )
        raise CommunicationFailed(f"{command} failed")  # pragma: no cover

    async def _query(self, attr: Attribute) -> Any:
        return await self._transact(NadProtocol.encode_query(attr), attr)

    async def _set(self, attr: Attribute, value: Any) -> Any:
        return await self._transact(NadProtocol.encode_set(attr, value), attr)

    async def _reconnect_after_power_change(self) -> None:
        """the device drops the session on power transitions"""
        async with self._lock:
            if self._state == ConnectionState.CLOSED:
                return
            await self._drop_socket()
            self._state = ConnectionState.IDLE
            try:
                await self._dial()
            except ConnectFailed as err:
                logging.warning("Reconnect after power change failed, will retry lazily: %s", err)

    # Power

    async def power_state(self) -> Switch:
        """Main.Power?"""
        return await self._query(Attribute.POWER)

    async def _set_power(self, value: Switch) -> Switch:
        result = await self._set(Attribute.POWER, value)
        await self._reconnect_after_power_change()
        return result

    async def power_on(self) -> Switch:
        """turn the receiver on"""
        return await self._set_power(Switch.ON)

    async def power_off(self) -> Switch:
        """put the receiver in standby"""
        return await self._set_power(Switch.OFF)

    async def power_toggle(self) -> Switch:
        """query power, then set the opposite"""
        current = await self.power_state()
        return await self._set_power(current.toggled())

    # Volume

    def clamp_volume(self, volume: float) -> float:
        """limit a volume to the configured range"""
        return max(self.min_volume, min(self.max_volume, volume))

    async def get_volume(self) -> float:
        """current volume in dB"""
        return await self._query(Attribute.VOLUME)

    async def set_volume(self, volume: float) -> float:
        """set an explicit volume, clamped to the allowed range"""
        try:
            volume = float(volume)
        except (TypeError, ValueError) as err:
            raise InvalidArgument(f"invalid volume: {volume!r}") from err
        if math.isnan(volume):
            raise InvalidArgument("invalid volume: nan")
        clamped = self.clamp_volume(volume)
        if clamped != volume:
            logging.info("Clamping volume %.1f to %.1f", volume, clamped)
        return await self._set(Attribute.VOLUME, clamped)

    async def step_volume(self, direction: Direction, step: float = 1.0) -> float:
        """read the volume and set the adjusted value explicitly"""
        current = await self.get_volume()
        return await self.set_volume(current + int(direction) * step)

    # Source

    async def get_source(self) -> str:
        """current input source"""
        return await self._query(Attribute.SOURCE)

    async def set_source(self, name: str) -> str:
        """select an input; matching is case-insensitive"""
        return await self._set(Attribute.SOURCE, NadProtocol.canonical_source(name))

    async def step_source(self, direction: Direction) -> str:
        """move through the source list with wraparound"""
        current = await self.get_source()
        try:
            index = SOURCES.index(current)
        except ValueError:
            logging.debug("Current source %s is not in the source list, starting over", current)
            index = 0 if direction == Direction.DOWN else -1
        return await self.set_source(SOURCES[(index + int(direction)) % len(SOURCES)])

    # Mute

    async def get_mute(self) -> Switch:
        """Main.Mute?"""
        return await self._query(Attribute.MUTE)

    async def toggle_mute(self) -> Switch:
        """query mute, then set the opposite"""
        current = await self.get_mute()
        return await self._set(Attribute.MUTE, current.toggled())

    # Brightness

    async def get_brightness(self) -> int:
        """display dimmer level"""
        return await self._query(Attribute.BRIGHTNESS)

    async def set_brightness(self, level: int) -> int:
        """set the dimmer level 0..3"""
        if isinstance(level, bool) or not isinstance(level, int):
            raise InvalidArgument(f"brightness must be an integer, got {level!r}")
        if not MIN_BRIGHTNESS <= level <= MAX_BRIGHTNESS:
            raise OutOfRange(
                f"brightness level must be between {MIN_BRIGHTNESS} and {MAX_BRIGHTNESS}"
            )
        return await self._set(Attribute.BRIGHTNESS, level)

    async def step_brightness(self, direction: Direction) -> int:
        """dimmer up or down with wraparound"""
        current = await self.get_brightness()
        span = MAX_BRIGHTNESS - MIN_BRIGHTNESS + 1
        return await self.set_brightness(
            MIN_BRIGHTNESS + (current - MIN_BRIGHTNESS + int(direction)) % span
        )

    # Model

    async def get_model(self) -> str:
        """model string reported by the device"""
        return await self._query(Attribute.MODEL)

    async def refresh(self) -> DeviceSnapshot:
        """
        read every attribute

        Fields whose response cannot be decoded are reported as unknown;
        connection problems propagate so the caller can mark the device
        disconnected.
        """
        values: dict[str, Any] = {}
        readers = {
            "power": self.power_state,
            "volume": self.get_volume,
            "source": self.get_source,
            "mute": self.get_mute,
            "brightness": self.get_brightness,
            "model": self.get_model,
        }
        for name, reader in readers.items():
            try:
                values[name] = await reader()
            except (MalformedResponse, InvalidArgument) as err:
                logging.warning("Could not read %s from %s: %s", name, self.endpoint, err)
        return DeviceSnapshot(**values)
