#!/usr/bin/env python3
"""
MCP server

Exposes the device client, discovery and (optionally) Spotify as tools
for LLM clients over stdio.  Every device tool goes through one shared
DeviceClient guarded by a lock; the connection is opened on first use
and dropped again whenever it fails so the next call starts clean.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.fastmcp.prompts.base import AssistantMessage, Message, UserMessage

import nadctl.config
from nadctl.nadapi.cache import discover
from nadctl.nadapi.connection import DeviceClient, is_connection_error
from nadctl.nadapi.session import open_device
from nadctl.nadapi.types import (
    MAX_BRIGHTNESS,
    MIN_BRIGHTNESS,
    MIN_VOLUME,
    SOURCES,
    Direction,
    NadError,
)
from nadctl.spotify import PlaybackController, SpotifyClient, SpotifyError, resolve_device

SERVER_NAME = "NAD Audio Controller"
MCP_DISCOVERY_TIMEOUT = 10.0

NAD_TOOLS = {
    "nad_power_on": "Turn on the NAD audio device",
    "nad_power_off": "Turn off the NAD audio device",
    "nad_power_toggle": "Toggle power state of the NAD audio device",
    "nad_power_status": "Get current power state of the NAD audio device",
    "nad_volume_set": "Set NAD device volume to a specific level in dB (-80 to +10)",
    "nad_volume_up": "Increase NAD device volume",
    "nad_volume_down": "Decrease NAD device volume",
    "nad_volume_status": "Get current volume level",
    "nad_mute_toggle": "Toggle mute state of the NAD device",
    "nad_mute_status": "Get current mute status",
    "nad_source_set": "Set NAD device input source",
    "nad_source_next": "Switch to next input source",
    "nad_source_previous": "Switch to previous input source",
    "nad_source_status": "Get current input source",
    "nad_source_list": "List all available input sources",
    "nad_brightness_set": "Set NAD device display brightness (0-3)",
    "nad_brightness_up": "Increase display brightness",
    "nad_brightness_down": "Decrease display brightness",
    "nad_brightness_status": "Get current brightness level",
    "nad_discover": "Discover NAD devices on the network",
    "nad_device_info": "Get information about the connected NAD device",
    "nad_device_status": "Get comprehensive status of the NAD device",
}

SPOTIFY_TOOLS = {
    "spotify_status": "Get current Spotify playback status and device information",
    "spotify_play": "Start or resume Spotify playback on current device",
    "spotify_pause": "Pause Spotify playback",
    "spotify_next": "Skip to next track in Spotify",
    "spotify_previous": "Skip to previous track in Spotify",
    "spotify_volume_set": "Set Spotify volume level (0-100)",
    "spotify_shuffle_toggle": "Toggle Spotify shuffle mode on/off",
    "spotify_devices_list": (
        "List all available Spotify Connect devices "
        "(Chromecast, computers, speakers, phones, etc.)"
    ),
    "spotify_transfer_playback": (
        "Transfer Spotify playback to a specific device, by list number, id or name"
    ),
}

SETUP_RECOMMENDATIONS = {
    "music": """For music listening:
1. Use high-quality sources (Opt1/Opt2 for digital, Phono for vinyl)
2. Set volume to comfortable level (-20 to -10 dB typical)
3. Ensure mute is off
4. Set brightness to personal preference (level 1-2 recommended)""",
    "movies": """For movie watching:
1. Use TV or Coax inputs for best compatibility
2. Higher volume may be needed (-15 to -5 dB)
3. Ensure clear source connection
4. Consider lower brightness (level 0-1) for dark rooms""",
    "general": """General audio setup:
1. Choose appropriate source based on your input
2. Start with moderate volume (-25 dB) and adjust
3. Check that device is powered on and not muted
4. Set comfortable brightness level (0-3)""",
}

TROUBLESHOOTING = """NAD Device Troubleshooting:

Common issues and solutions:
1. No sound: Check power state, volume level, mute status, and source selection
2. Low volume: Increase volume, check mute status
3. Wrong input: Use source selection tools to switch inputs
4. Display too dim/bright: Adjust brightness level
5. Device not responding: Check network connection, try device discovery

Available diagnostic tools:
- nad_device_status: Get comprehensive device status
- nad_discover: Find devices on network
- nad_power_status: Check power state
- nad_volume_status: Check current volume
- nad_source_status: Check current input source"""

QUICK_CONTROL = """Quick NAD controls available:

Power: nad_power_on, nad_power_off, nad_power_toggle
Volume: nad_volume_up, nad_volume_down, nad_volume_set
Sources: nad_source_next, nad_source_previous, nad_source_set
Mute: nad_mute_toggle
Brightness: nad_brightness_up, nad_brightness_down, nad_brightness_set
Status: nad_device_status"""


class NadTools:  # pylint: disable=too-many-public-methods
    """tool implementations; each returns the text shown to the model"""

    def __init__(
        self,
        config: nadctl.config.ConfigFile,
        *,
        use_cache: bool = True,
        opener: Callable[..., Awaitable[DeviceClient]] = open_device,
        spotify: PlaybackController | None = None,
    ):
        self.config = config
        self.use_cache = use_cache
        self.opener = opener
        self.spotify = spotify
        self.client: DeviceClient | None = None
        self.lock = asyncio.Lock()

    async def _device(self) -> DeviceClient:
        if self.client is None:
            self.client = await self.opener(
                self.config.ip,
                self.config.port,
                use_cache=self.use_cache,
                ttl=self.config.cache_ttl,
                max_volume=self.config.max_volume,
            )
        return self.client

    async def close(self) -> None:
        """drop the shared connection"""
        async with self.lock:
            if self.client:
                await self.client.close()
                self.client = None

    async def _run(self, what: str, action: Callable[[DeviceClient], Awaitable[str]]) -> str:
        async with self.lock:
            try:
                client = await self._device()
                return await action(client)
            except NadError as err:
                if is_connection_error(err) and self.client:
                    await self.client.close()
                    self.client = None
                logging.error("%s failed: %s", what, err)
                raise ToolError(f"Failed to {what}: [{err.tag}] {err.message}") from err

    async def nad_power_on(self) -> str:
        async def _on(client: DeviceClient) -> str:
            await client.power_on()
            return "NAD device powered on successfully"

        return await self._run("power on", _on)

    async def nad_power_off(self) -> str:
        async def _off(client: DeviceClient) -> str:
            await client.power_off()
            return "NAD device powered off successfully"

        return await self._run("power off", _off)

    async def nad_power_toggle(self) -> str:
        async def _toggle(client: DeviceClient) -> str:
            state = await client.power_toggle()
            return f"Power toggled. Current state: {state.value}"

        return await self._run("toggle power", _toggle)

    async def nad_power_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            return f"Power state: {(await client.power_state()).value}"

        return await self._run("get power state", _status)

    async def nad_volume_set(self, volume: float) -> str:
        async def _set(client: DeviceClient) -> str:
            return f"Volume set to {await client.set_volume(volume):.1f} dB"

        return await self._run("set volume", _set)

    async def nad_volume_up(self) -> str:
        async def _up(client: DeviceClient) -> str:
            return f"Volume increased to {await client.step_volume(Direction.UP):.1f} dB"

        return await self._run("increase volume", _up)

    async def nad_volume_down(self) -> str:
        async def _down(client: DeviceClient) -> str:
            return f"Volume decreased to {await client.step_volume(Direction.DOWN):.1f} dB"

        return await self._run("decrease volume", _down)

    async def nad_volume_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            return f"Current volume: {await client.get_volume():.1f} dB"

        return await self._run("get volume", _status)

    async def nad_mute_toggle(self) -> str:
        async def _toggle(client: DeviceClient) -> str:
            return f"Mute toggled. Current status: {(await client.toggle_mute()).value}"

        return await self._run("toggle mute", _toggle)

    async def nad_mute_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            return f"Mute status: {(await client.get_mute()).value}"

        return await self._run("get mute status", _status)

    async def nad_source_set(self, source: str) -> str:
        async def _set(client: DeviceClient) -> str:
            return f"Input source set to {await client.set_source(source)}"

        return await self._run("set source", _set)

    async def nad_source_next(self) -> str:
        async def _next(client: DeviceClient) -> str:
            return f"Switched to next source: {await client.step_source(Direction.UP)}"

        return await self._run("switch to next source", _next)

    async def nad_source_previous(self) -> str:
        async def _prev(client: DeviceClient) -> str:
            return f"Switched to previous source: {await client.step_source(Direction.DOWN)}"

        return await self._run("switch to previous source", _prev)

    async def nad_source_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            return f"Current source: {await client.get_source()}"

        return await self._run("get source", _status)

    async def nad_source_list(self) -> str:
        return f"Available sources: {', '.join(SOURCES)}"

    async def nad_brightness_set(self, level: int) -> str:
        async def _set(client: DeviceClient) -> str:
            return f"Brightness set to level {await client.set_brightness(level)}"

        return await self._run("set brightness", _set)

    async def nad_brightness_up(self) -> str:
        async def _up(client: DeviceClient) -> str:
            return f"Brightness increased to level {await client.step_brightness(Direction.UP)}"

        return await self._run("increase brightness", _up)

    async def nad_brightness_down(self) -> str:
        async def _down(client: DeviceClient) -> str:
            level = await client.step_brightness(Direction.DOWN)
            return f"Brightness decreased to level {level}"

        return await self._run("decrease brightness", _down)

    async def nad_brightness_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            return f"Current brightness: level {await client.get_brightness()}"

        return await self._run("get brightness", _status)

    async def nad_discover(self, timeout: float = MCP_DISCOVERY_TIMEOUT) -> str:
        """scan (or read the cache) and list what was found"""
        result = await discover(timeout, use_cache=self.use_cache, ttl=self.config.cache_ttl)
        for warning in result.warnings:
            logging.warning("Discovery: %s", warning)
        if not result.devices:
            return "No NAD devices found on the network"
        lines = [f"Found {len(result.devices)} NAD device(s):"]
        for index, device in enumerate(result.devices, start=1):
            lines.append(
                f"{index}. IP: {device.address}, Model: {device.model or 'unknown'}, "
                f"Port: {device.port}"
            )
        return "\n".join(lines)

    async def nad_device_info(self) -> str:
        async def _info(client: DeviceClient) -> str:
            model = await client.get_model()
            return f"Device Info:\nIP: {client.host}\nPort: {client.port}\nModel: {model}"

        return await self._run("get device model", _info)

    async def nad_device_status(self) -> str:
        async def _status(client: DeviceClient) -> str:
            fields = (await client.refresh()).describe()
            lines = ["NAD Device Status:"]
            lines.extend(f"{key.capitalize()}: {value}" for key, value in fields.items())
            lines.append(f"IP: {client.host}, Port: {client.port}")
            return "\n".join(lines)

        return await self._run("get device status", _status)

    async def status_json(self) -> str:
        """nad://status"""

        async def _status(client: DeviceClient) -> str:
            snapshot = await client.refresh()
            status: dict[str, Any] = {
                "ip": client.host,
                "port": client.port,
                "power": snapshot.power.value,
                "mute": snapshot.mute.value,
            }
            if snapshot.volume is not None:
                status["volume_db"] = snapshot.volume
            if snapshot.source:
                status["source"] = snapshot.source
            if snapshot.brightness is not None:
                status["brightness"] = snapshot.brightness
            if snapshot.model:
                status["model"] = snapshot.model
            return json.dumps(status)

        return await self._run("read device status", _status)

    async def sources_json(self) -> str:
        """nad://sources"""
        return json.dumps({"sources": list(SOURCES), "count": len(SOURCES)})

    async def capabilities_json(self) -> str:
        """nad://capabilities"""
        return json.dumps(
            {
                "volume_range": {
                    "min": MIN_VOLUME,
                    "max": self.config.max_volume,
                    "unit": "dB",
                },
                "brightness_range": {"min": MIN_BRIGHTNESS, "max": MAX_BRIGHTNESS},
                "sources": list(SOURCES),
                "power_states": ["On", "Off"],
                "mute_states": ["On", "Off"],
                "operations": [
                    "power_control",
                    "volume_control",
                    "source_selection",
                    "mute_control",
                    "brightness_control",
                    "device_discovery",
                ],
            }
        )

    async def _spotify(self, what: str, action: Callable[[PlaybackController], Awaitable[str]]):
        if self.spotify is None:
            raise ToolError("Spotify is not configured")
        try:
            return await action(self.spotify)
        except SpotifyError as err:
            logging.error("Spotify %s failed: %s", what, err)
            raise ToolError(f"Failed to {what}: {err}") from err

    async def spotify_status(self) -> str:
        async def _status(spotify: PlaybackController) -> str:
            state = await spotify.playback_state()
            if state is None:
                return "No active Spotify playback"
            lines = [f"Status: {'Playing' if state.is_playing else 'Paused'}"]
            if state.track:
                lines.extend(
                    [
                        f"Track: {state.track.name}",
                        f"Artist: {state.track.artist}",
                        f"Album: {state.track.album}",
                    ]
                )
            lines.extend(
                [
                    f"Device: {state.device_name}",
                    f"Volume: {state.volume}%",
                    f"Shuffle: {'On' if state.shuffle else 'Off'}",
                    f"Repeat: {state.repeat}",
                ]
            )
            return "\n".join(lines)

        return await self._spotify("get playback status", _status)

    async def spotify_play(self) -> str:
        async def _play(spotify: PlaybackController) -> str:
            await spotify.play()
            return "Spotify playback started"

        return await self._spotify("start playback", _play)

    async def spotify_pause(self) -> str:
        async def _pause(spotify: PlaybackController) -> str:
            await spotify.pause()
            return "Spotify playback paused"

        return await self._spotify("pause playback", _pause)

    async def spotify_next(self) -> str:
        async def _next(spotify: PlaybackController) -> str:
            await spotify.next()
            return "Skipped to next track"

        return await self._spotify("skip to next track", _next)

    async def spotify_previous(self) -> str:
        async def _previous(spotify: PlaybackController) -> str:
            await spotify.previous()
            return "Skipped to previous track"

        return await self._spotify("skip to previous track", _previous)

    async def spotify_volume_set(self, volume: int) -> str:
        async def _volume(spotify: PlaybackController) -> str:
            return f"Spotify volume set to {await spotify.set_volume(volume)}%"

        return await self._spotify("set volume", _volume)

    async def spotify_shuffle_toggle(self) -> str:
        async def _shuffle(spotify: PlaybackController) -> str:
            enabled = await spotify.toggle_shuffle()
            return f"Shuffle {'enabled' if enabled else 'disabled'}"

        return await self._spotify("toggle shuffle", _shuffle)

    async def spotify_devices_list(self) -> str:
        async def _devices(spotify: PlaybackController) -> str:
            devices = await spotify.devices()
            if not devices:
                return (
                    "No Spotify Connect devices found. "
                    "Make sure you have Spotify open on at least one device."
                )
            lines = [f"Found {len(devices)} Spotify Connect device(s):"]
            for index, device in enumerate(devices, start=1):
                flags = " [ACTIVE]" if device.is_active else ""
                if device.is_restricted:
                    flags += " [RESTRICTED]"
                lines.append(
                    f"{index}. {device.name} ({device.type}) - "
                    f"Volume: {device.volume_percent}%{flags}"
                )
            return "\n".join(lines)

        return await self._spotify("get devices", _devices)

    async def spotify_transfer_playback(self, device_identifier: str, play: bool = True) -> str:
        async def _transfer(spotify: PlaybackController) -> str:
            device = resolve_device(await spotify.devices(), device_identifier)
            if device.is_active:
                return f"Device '{device.name}' is already the active playback device."
            if device.is_restricted:
                raise SpotifyError(f"Device '{device.name}' does not allow remote control.")
            await spotify.transfer(device.id, play)
            suffix = " and started playback" if play else ""
            return f"Successfully transferred playback to {device.name} ({device.type}){suffix}"

        return await self._spotify("transfer playback", _transfer)


def audio_setup_prompt(listening_type: str = "general") -> list[Message]:
    """recommendations for a listening style"""
    recommendations = SETUP_RECOMMENDATIONS.get(
        listening_type.lower(), SETUP_RECOMMENDATIONS["general"]
    )
    return [
        UserMessage("I need help setting up my NAD audio device for optimal sound."),
        AssistantMessage(recommendations),
    ]


def troubleshoot_prompt(issue: str = "") -> list[Message]:
    """common problems and the tools that diagnose them"""
    content = f"Issue reported: {issue}\n\n{TROUBLESHOOTING}" if issue else TROUBLESHOOTING
    return [
        UserMessage("I'm having issues with my NAD audio device."),
        AssistantMessage(content),
    ]


def quick_control_prompt() -> list[Message]:
    """a cheat sheet of the control tools"""
    return [
        UserMessage("I want to quickly control my NAD audio device."),
        AssistantMessage(QUICK_CONTROL),
    ]


def build_server(tools: NadTools) -> FastMCP:
    """register tools, resources and prompts"""
    server = FastMCP(SERVER_NAME)

    names = dict(NAD_TOOLS)
    if tools.spotify is not None:
        names.update(SPOTIFY_TOOLS)
    for name, description in names.items():
        server.add_tool(getattr(tools, name), name=name, description=description)

    server.resource(
        "nad://status",
        name="NAD Device Status",
        description="Real-time status of the NAD audio device",
        mime_type="application/json",
    )(tools.status_json)
    server.resource(
        "nad://sources",
        name="NAD Input Sources",
        description="List of available input sources for the NAD device",
        mime_type="application/json",
    )(tools.sources_json)
    server.resource(
        "nad://capabilities",
        name="NAD Device Capabilities",
        description="Capabilities and specifications of the NAD device",
        mime_type="application/json",
    )(tools.capabilities_json)

    server.prompt(
        name="nad_audio_setup",
        description="Help set up optimal audio settings for the NAD device",
    )(audio_setup_prompt)
    server.prompt(
        name="nad_troubleshoot", description="Help troubleshoot NAD device issues"
    )(troubleshoot_prompt)
    server.prompt(
        name="nad_quick_control", description="Quick access to common NAD device operations"
    )(quick_control_prompt)

    logging.info("MCP server ready with %d tools", len(names))
    return server


def run(config: nadctl.config.ConfigFile, use_cache: bool = True) -> int:
    """serve on stdio until the client goes away"""
    spotify = None
    if config.spotify_client_id:
        spotify = SpotifyClient(config.spotify_client_id, config.spotify_redirect_url)
    tools = NadTools(config, use_cache=use_cache, spotify=spotify)
    server = build_server(tools)
    server.run()
    return 0
