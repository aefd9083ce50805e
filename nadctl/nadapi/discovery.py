#!/usr/bin/env python3
"""
NAD device discovery

Scans every IPv4 subnet attached to this host, asking each candidate
address for its model over the control port.  All probes share one
deadline; whatever answered before it elapsed is returned.
"""

import asyncio
import contextlib
import ipaddress
import logging
from collections.abc import Iterable

import netifaces

from .protocol import NadProtocol
from .types import (
    DEFAULT_PORT,
    KNOWN_MODEL_PREFIXES,
    LINE_TERMINATOR,
    Attribute,
    Cancelled,
    DiscoveredDevice,
    NadError,
)

DEFAULT_PROBE_TIMEOUT = 2.0
DEFAULT_CONCURRENCY = 256
# widest subnet scanned around a local address
MIN_PREFIXLEN = 16


def is_nad_model(model: str) -> bool:
    """does a model string identify a NAD receiver"""
    upper = model.upper()
    if "NAD" in upper:
        return True
    return any(prefix in upper for prefix in KNOWN_MODEL_PREFIXES)


def local_networks() -> list[ipaddress.IPv4Network]:
    """IPv4 subnets of every non-loopback interface that has an address"""
    networks: list[ipaddress.IPv4Network] = []
    for interface in netifaces.interfaces():
        try:
            addrs = netifaces.ifaddresses(interface).get(netifaces.AF_INET, [])
        except ValueError as err:
            logging.debug("Skipping interface %s: %s", interface, err)
            continue
        for addr_info in addrs:
            addr = addr_info.get("addr")
            netmask = addr_info.get("netmask")
            if not addr or not netmask:
                continue
            try:
                iface = ipaddress.IPv4Interface(f"{addr}/{netmask}")
            except ValueError:
                logging.debug("Ignoring unparsable address %s/%s on %s", addr, netmask, interface)
                continue
            if iface.ip.is_loopback or iface.ip.is_link_local:
                continue
            if iface.network.prefixlen < MIN_PREFIXLEN:
                logging.warning(
                    "Subnet %s on %s is too large, scanning only %s/%d",
                    iface.network,
                    interface,
                    iface.ip,
                    MIN_PREFIXLEN,
                )
                iface = ipaddress.IPv4Interface(f"{iface.ip}/{MIN_PREFIXLEN}")
            if iface.network.prefixlen > 30:
                continue
            if iface.network not in networks:
                logging.debug("Will scan %s via %s", iface.network, interface)
                networks.append(iface.network)
    return networks


def candidate_hosts(networks: Iterable[ipaddress.IPv4Network]) -> list[str]:
    """every usable host address, network and broadcast excluded"""
    seen: set[str] = set()
    hosts: list[str] = []
    for network in networks:
        for host in network.hosts():
            text = str(host)
            if text not in seen:
                seen.add(text)
                hosts.append(text)
    return hosts


async def probe(address: str, port: int = DEFAULT_PORT, timeout: float = DEFAULT_PROBE_TIMEOUT):
    """ask one address for its model; returns a DiscoveredDevice or None"""
    try:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return None

    try:
        writer.write(
            (NadProtocol.encode_query(Attribute.MODEL) + LINE_TERMINATOR).encode("ascii")
        )
        await writer.drain()
        raw = await asyncio.wait_for(reader.readline(), timeout)
        attr, model = NadProtocol.decode(raw.decode("ascii", errors="replace").lstrip("\r\n"))
    except (OSError, asyncio.TimeoutError, NadError) as err:
        logging.debug("Probe of %s:%s failed: %s", address, port, err)
        return None
    finally:
        writer.close()
        with contextlib.suppress(Exception):
            await writer.wait_closed()

    if attr != Attribute.MODEL or not is_nad_model(model):
        logging.debug("%s:%s answered but is not a NAD device (%s)", address, port, model)
        return None
    logging.info("Found NAD device %s at %s:%s", model, address, port)
    return DiscoveredDevice(address=address, port=port, model=model)


async def scan_network(  # pylint: disable=too-many-arguments
    timeout: float,
    *,
    port: int = DEFAULT_PORT,
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    concurrency: int = DEFAULT_CONCURRENCY,
    networks: Iterable[str | ipaddress.IPv4Network] | None = None,
    raise_on_deadline: bool = False,
) -> list[DiscoveredDevice]:
    """
    Discover NAD devices on the local network

    Args:
        timeout: overall deadline in seconds for the whole scan
        port: control port to probe
        probe_timeout: connect and read timeout for one probe
        concurrency: number of probes in flight at once
        networks: explicit subnets to scan instead of the local interfaces
        raise_on_deadline: raise Cancelled when the deadline cut the scan short
            and nothing was found

    Returns:
        Devices that answered with a NAD model, in no particular order
    """
    if networks is None:
        scan_nets = local_networks()
    else:
        scan_nets = [ipaddress.ip_network(net, strict=False) for net in networks]
    hosts = candidate_hosts(scan_nets)
    logging.info("Scanning %d addresses on %d subnet(s) for NAD devices", len(hosts), len(scan_nets))
    if not hosts:
        return []

    found: dict[str, DiscoveredDevice] = {}
    pending_hosts = iter(hosts)

    async def _prober() -> None:
        for host in pending_hosts:
            if device := await probe(host, port, probe_timeout):
                found.setdefault(device.address, device)

    tasks = [asyncio.create_task(_prober()) for _ in range(max(1, min(concurrency, len(hosts))))]
    try:
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    if pending:
        logging.info("Discovery deadline of %.1fs reached with probes outstanding", timeout)
        if raise_on_deadline and not found:
            raise Cancelled(f"discovery timed out after {timeout:.1f}s")
    logging.info("Discovery finished: %d NAD device(s)", len(found))
    return list(found.values())
