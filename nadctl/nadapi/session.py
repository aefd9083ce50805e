#!/usr/bin/env python3
"""pick a device address and open a client for it"""

import datetime
import logging

from .cache import DiscoveryCache, discover
from .connection import DeviceClient
from .types import DEFAULT_CACHE_TTL, DEFAULT_PORT, MAX_VOLUME, DiscoveredDevice, NotConnected

NO_DEVICES_MESSAGE = "no NAD devices found on the network. Please specify an IP address manually"
DEFAULT_DISCOVERY_TIMEOUT = 30.0


async def resolve_endpoint(  # pylint: disable=too-many-arguments
    host: str | None = None,
    port: int = DEFAULT_PORT,
    *,
    use_cache: bool = True,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    ttl: datetime.timedelta = DEFAULT_CACHE_TTL,
    cache: DiscoveryCache | None = None,
) -> DiscoveredDevice:
    """the configured address, or the first device discovery finds"""
    if host:
        return DiscoveredDevice(address=host, port=port)

    logging.info("No device address configured, discovering")
    result = await discover(timeout, use_cache=use_cache, ttl=ttl, cache=cache)
    if not result.devices:
        raise NotConnected(NO_DEVICES_MESSAGE)
    device = result.devices[0]
    logging.info(
        "Using %s at %s:%s (%s)",
        device.model or "NAD device",
        device.address,
        device.port,
        "from cache" if result.from_cache else "from network scan",
    )
    return device


async def open_device(  # pylint: disable=too-many-arguments
    host: str | None = None,
    port: int = DEFAULT_PORT,
    *,
    use_cache: bool = True,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    ttl: datetime.timedelta = DEFAULT_CACHE_TTL,
    max_volume: float = MAX_VOLUME,
    cache: DiscoveryCache | None = None,
) -> DeviceClient:
    """resolve, then return a connected DeviceClient"""
    device = await resolve_endpoint(
        host, port, use_cache=use_cache, timeout=timeout, ttl=ttl, cache=cache
    )
    client = DeviceClient(device.address, device.port, max_volume=max_volume)
    await client.connect()
    return client
