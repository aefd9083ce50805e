#!/usr/bin/env python3
"""
nadctl command line

Thin dispatch from subcommands to the device client, discovery, the
simulator, the TUI, the MCP server and Spotify.  Exit codes: 0 success,
1 operational failure, 2 usage error.
"""

import argparse
import asyncio
import logging
import re
import sys
from collections.abc import Awaitable, Callable

import nadctl.bootstrap
import nadctl.config
import nadctl.version
from nadctl.nadapi.cache import DiscoveryCache, discover
from nadctl.nadapi.connection import DeviceClient
from nadctl.nadapi.session import DEFAULT_DISCOVERY_TIMEOUT, open_device
from nadctl.nadapi.types import (
    BRIGHTNESS_LEVELS,
    DEFAULT_PORT,
    SOURCES,
    Direction,
    InvalidArgument,
    NadError,
    Switch,
)
from nadctl.spotify import SpotifyClient, SpotifyError, resolve_device

HIGH_VOLUME_THRESHOLD = 5.0

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(text: str) -> float:
    """'30s', '2m', '500ms' or bare seconds"""
    match = _DURATION_RE.match(text)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r} (try 30s or 1m)")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def confirm(prompt: str) -> bool:
    """y/N prompt; anything but yes is no"""
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    """the full argument surface"""
    parser = argparse.ArgumentParser(
        prog="nadctl", description="Control NAD audio receivers over the network"
    )
    parser.add_argument("--config", help="config file (default ~/.nadctl.yaml)")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--no-cache", action="store_true", help="skip the discovery cache")
    parser.add_argument(
        "--clear-cache", action="store_true", help="delete the discovery cache and exit"
    )
    parser.add_argument(
        "--log-to-file", action="store_true", help="log to ~/.nadctl_logs/nadctl.log"
    )
    parser.add_argument("--ip", help="device address (overrides config and NAD_IP)")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    power = sub.add_parser("power", help="toggle power, or power on/off/status")
    power.add_argument("action", nargs="?", choices=["on", "off", "status"])
    power.set_defaults(handler=cmd_power)

    volume = sub.add_parser("volume", help="show, set or step the volume")
    volume.add_argument("action", nargs="?", help="LEVEL, up, down or set")
    volume.add_argument("level", nargs="?", help="level for `set`")
    volume.add_argument("-y", "--yes", action="store_true", help="skip the high volume prompt")
    volume.set_defaults(handler=cmd_volume)

    source = sub.add_parser("source", help="show, set or step the input source")
    source.add_argument("action", nargs="?", help="NAME, next, prev or list")
    source.set_defaults(handler=cmd_source)

    mute = sub.add_parser("mute", help="toggle mute")
    mute.set_defaults(handler=cmd_mute)

    dim = sub.add_parser("dim", help="show, set or step display brightness")
    dim.add_argument("action", nargs="?", help="LEVEL (0-3), up, down or list")
    dim.set_defaults(handler=cmd_dim)

    disc = sub.add_parser("discover", help="find NAD devices on the network")
    disc.add_argument(
        "-t", "--timeout", type=parse_duration, default=DEFAULT_DISCOVERY_TIMEOUT,
        help="discovery timeout (default 30s)",
    )
    disc.add_argument("-r", "--refresh", action="store_true", help="ignore the cache")
    disc.add_argument("--show-cache", action="store_true", help="show cache status")
    disc.set_defaults(handler=cmd_discover)

    sim = sub.add_parser("simulator", help="run a NAD device simulator")
    sim.add_argument("--host", default="127.0.0.1", help="listen address")
    sim.add_argument("--port", type=int, default=DEFAULT_PORT, help="listen port")
    sim.set_defaults(handler=cmd_simulator)

    tui = sub.add_parser("tui", help="interactive terminal interface")
    tui.add_argument("--demo", action="store_true", help="run against a built-in simulator")
    tui.set_defaults(handler=cmd_tui)

    mcp = sub.add_parser("mcp", help="run the MCP server on stdio")
    mcp.set_defaults(handler=cmd_mcp)

    version = sub.add_parser("version", help="print the version")
    version.set_defaults(handler=cmd_version)

    spotify = sub.add_parser("spotify", help="control Spotify playback")
    spotify.add_argument(
        "action",
        nargs="?",
        default="status",
        choices=[
            "status", "play", "pause", "next", "prev", "devices",
            "transfer", "auth", "disconnect", "volume", "shuffle",
        ],
    )
    spotify.add_argument("target", nargs="?", help="device for transfer, percent for volume")
    spotify.set_defaults(handler=cmd_spotify)

    return parser


async def _with_device(
    args: argparse.Namespace,
    config: nadctl.config.ConfigFile,
    action: Callable[[DeviceClient], Awaitable[int]],
) -> int:
    client = await open_device(
        args.ip or config.ip,
        config.port,
        use_cache=not args.no_cache,
        ttl=config.cache_ttl,
        max_volume=config.max_volume,
    )
    try:
        return await action(client)
    finally:
        await client.close()


def cmd_power(args, config) -> int:
    """power [on|off|status]"""

    async def _power(client: DeviceClient) -> int:
        if args.action == "status":
            print(f"Power: {(await client.power_state()).value}")
        elif args.action == "on":
            print(f"Power: {(await client.power_on()).value}")
        elif args.action == "off":
            print(f"Power: {(await client.power_off()).value}")
        else:
            before = await client.power_state()
            after = await (client.power_off() if before == Switch.ON else client.power_on())
            print(f"Power toggled: {before.value} -> {after.value}")
        return 0

    return asyncio.run(_with_device(args, config, _power))


def _parse_level(text: str) -> float:
    try:
        return float(text)
    except ValueError as err:
        raise InvalidArgument(
            f"'{text}' is not a valid volume level (range is -80 to +10 dB; "
            "use `volume set -20` for negative levels)"
        ) from err


def cmd_volume(args, config) -> int:
    """volume [LEVEL|up|down|set LEVEL]"""
    action = (args.action or "").lower()
    target: float | None = None
    if action == "set":
        if args.level is None:
            raise InvalidArgument("volume set requires a level")
        target = _parse_level(args.level)
    elif action and action not in ("up", "down"):
        target = _parse_level(args.action)

    if target is not None and target > HIGH_VOLUME_THRESHOLD and not args.yes:
        if not confirm(f"Warning: Volume level {target:.1f} dB is quite high. Continue? (y/N): "):
            print("Volume change cancelled")
            return 0

    async def _volume(client: DeviceClient) -> int:
        if target is not None:
            print(f"Volume set to: {await client.set_volume(target):.1f} dB")
        elif action == "up":
            print(f"Volume increased to: {await client.step_volume(Direction.UP):.1f} dB")
        elif action == "down":
            print(f"Volume decreased to: {await client.step_volume(Direction.DOWN):.1f} dB")
        else:
            print(f"Current volume: {await client.get_volume():.1f} dB")
        return 0

    return asyncio.run(_with_device(args, config, _volume))


def cmd_source(args, config) -> int:
    """source [NAME|next|prev|list]"""
    action = (args.action or "").lower()

    async def _source(client: DeviceClient) -> int:
        if action == "list":
            current = await client.get_source()
            print("Available sources:")
            for name in SOURCES:
                marker = " (current)" if name == current else ""
                print(f"  {name}{marker}")
        elif action == "next":
            print(f"Source changed to: {await client.step_source(Direction.UP)}")
        elif action in ("prev", "previous"):
            print(f"Source changed to: {await client.step_source(Direction.DOWN)}")
        elif action:
            print(f"Source set to: {await client.set_source(args.action)}")
        else:
            print(f"Current source: {await client.get_source()}")
        return 0

    return asyncio.run(_with_device(args, config, _source))


def cmd_mute(args, config) -> int:
    """mute"""

    async def _mute(client: DeviceClient) -> int:
        print(f"Mute: {(await client.toggle_mute()).value}")
        return 0

    return asyncio.run(_with_device(args, config, _mute))


def cmd_dim(args, config) -> int:
    """dim [LEVEL|up|down|list]"""
    action = (args.action or "").lower()
    if action == "list":
        print("Available brightness levels:")
        for level, description in BRIGHTNESS_LEVELS.items():
            print(f"  {level} - {description}")
        return 0
    level: int | None = None
    if action and action not in ("up", "down"):
        try:
            level = int(action)
        except ValueError as err:
            raise InvalidArgument(f"'{args.action}' is not a valid brightness level (0-3)") from err

    async def _dim(client: DeviceClient) -> int:
        if level is not None:
            result = await client.set_brightness(level)
            print(f"Brightness set to: {result} ({BRIGHTNESS_LEVELS[result]})")
        elif action == "up":
            print(f"Brightness increased to: {await client.step_brightness(Direction.UP)}")
        elif action == "down":
            print(f"Brightness decreased to: {await client.step_brightness(Direction.DOWN)}")
        else:
            print(f"Current brightness: {await client.get_brightness()}")
        return 0

    return asyncio.run(_with_device(args, config, _dim))


def show_cache_status(cache: DiscoveryCache) -> int:
    """discover --show-cache"""
    record = cache.read_record()
    now = cache.clock()
    if record is None or not record.valid(now):
        print("Cache: No valid cached devices found")
        return 0
    print(f"Cache status: {len(record.devices)} device(s) cached")
    for index, device in enumerate(record.devices, start=1):
        print(f"  {index}. {device.model} at {device.address}:{device.port}")
    print(f"Cache file: {cache.path}")
    print(f"Last updated: {record.timestamp.astimezone():%Y-%m-%d %H:%M:%S}")
    remaining = record.ttl - record.age(now)
    print(f"Expires in: {int(remaining.total_seconds())}s")
    return 0


def cmd_discover(args, config) -> int:
    """discover [--timeout D] [--refresh] [--show-cache]"""
    cache = DiscoveryCache()
    if args.show_cache:
        return show_cache_status(cache)

    print("Scanning network for NAD devices...")
    result = asyncio.run(
        discover(
            args.timeout,
            use_cache=not (args.no_cache or args.refresh),
            ttl=config.cache_ttl,
            cache=cache,
        )
    )
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not result.devices:
        print("No NAD devices found on the network")
        return 0

    origin = "from cache" if result.from_cache else "from network scan"
    print(f"Found {len(result.devices)} NAD device(s) ({origin}):\n")
    for index, device in enumerate(result.devices, start=1):
        print(f"{index}. {device.model}")
        print(f"   IP: {device.address}:{device.port}")
        print()
    print("To use a specific device, set the IP in your config file or use:")
    print(f"export NAD_IP={result.devices[0].address}")
    if result.from_cache:
        print("\nNote: Results loaded from cache. Use --refresh to scan network again.")
    return 0


def cmd_simulator(args, config) -> int:  # pylint: disable=unused-argument
    """simulator [--host H] [--port P]"""
    from nadctl.simulator import NadSimulator  # pylint: disable=import-outside-toplevel

    simulator = NadSimulator(host=args.host, port=args.port)
    print(f"Starting NAD simulator on {args.host}:{args.port} (Ctrl+C to stop)")
    try:
        asyncio.run(simulator.serve_forever())
    except KeyboardInterrupt:
        print("\nSimulator stopped")
    return 0


def cmd_tui(args, config) -> int:
    """tui [--demo]"""
    import nadctl.tui.app  # pylint: disable=import-outside-toplevel

    if args.ip:
        config.ip = args.ip
    return nadctl.tui.app.run_tui(config, demo=args.demo)


def cmd_mcp(args, config) -> int:
    """mcp"""
    import nadctl.mcpserver  # pylint: disable=import-outside-toplevel

    if args.ip:
        config.ip = args.ip
    return nadctl.mcpserver.run(config, use_cache=not args.no_cache)


def cmd_version(args, config) -> int:  # pylint: disable=unused-argument
    """version"""
    print(f"nadctl version {nadctl.version.__VERSION__}")
    return 0


def cmd_spotify(args, config) -> int:  # pylint: disable=too-many-branches
    """spotify [action] [target]"""
    if not config.spotify_client_id:
        raise SpotifyError(
            "Spotify client ID not configured (set spotify.client_id or SPOTIFY_CLIENT_ID)"
        )
    client = SpotifyClient(config.spotify_client_id, config.spotify_redirect_url)

    async def _spotify() -> int:  # pylint: disable=too-many-branches
        action = args.action
        if action == "auth":
            await client.authenticate(
                on_url=lambda url: print(f"Open this URL to authorize nadctl:\n{url}")
            )
            print("Connected to Spotify")
        elif action == "disconnect":
            client.disconnect()
            print("Disconnected from Spotify")
        elif action == "status":
            state = await client.playback_state()
            if state is None or state.track is None:
                print("Nothing playing")
            else:
                print(f"{'Playing' if state.is_playing else 'Paused'}: {state.track.name}")
                print(f"Artist: {state.track.artist}")
                print(f"Album: {state.track.album}")
                print(f"Device: {state.device_name} ({state.volume}%)")
                print(f"Shuffle: {'on' if state.shuffle else 'off'}")
        elif action == "devices":
            devices = await client.devices()
            if not devices:
                print("No Spotify devices available")
            for index, device in enumerate(devices, start=1):
                active = " (active)" if device.is_active else ""
                print(f"{index}. {device.name} [{device.type}]{active}")
        elif action == "transfer":
            if not args.target:
                raise InvalidArgument("transfer needs a device name, id or number")
            device = resolve_device(await client.devices(), args.target)
            await client.transfer(device.id, True)
            print(f"Playback transferred to {device.name}")
        elif action == "volume":
            if args.target is None:
                raise InvalidArgument("volume needs a percentage")
            try:
                percent = int(args.target)
            except ValueError as err:
                raise InvalidArgument(f"'{args.target}' is not a percentage") from err
            print(f"Spotify volume set to: {await client.set_volume(percent)}%")
        elif action == "shuffle":
            print(f"Shuffle: {'on' if await client.toggle_shuffle() else 'off'}")
        elif action == "play":
            await client.play()
            print("Playing")
        elif action == "pause":
            await client.pause()
            print("Paused")
        elif action == "next":
            await client.next()
            print("Skipped to next track")
        elif action == "prev":
            await client.previous()
            print("Skipped to previous track")
        return 0

    return asyncio.run(_spotify())


def main(argv: list[str] | None = None) -> int:
    """entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = nadctl.config.ConfigFile(args.config)
    debug = args.debug or config.debug

    if args.log_to_file:
        nadctl.bootstrap.setuplogging(level=logging.DEBUG if debug else logging.INFO)
    else:
        nadctl.bootstrap.setupconsolelogging(debug)
    logging.debug("nadctl %s starting", nadctl.version.__VERSION__)

    try:
        if args.clear_cache:
            DiscoveryCache().clear()
            print("Cache cleared successfully")
            return 0
        if not args.command:
            parser.print_help()
            return 0
        return args.handler(args, config)
    except NadError as err:
        print(f"Error: [{err.tag}] {err}", file=sys.stderr)
        return 1
    except SpotifyError as err:
        print(f"Error: [Spotify] {err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as err:  # pylint: disable=broad-exception-caught
        logging.exception("Unexpected failure")
        print(f"Error: {err}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
