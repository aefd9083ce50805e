#!/usr/bin/env python3
"""
Discovery cache

Keeps the result of the most recent successful network scan in a JSON file
in the user's home directory so later commands can skip the scan.
"""

import contextlib
import datetime
import json
import logging
import os
import pathlib
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .discovery import scan_network
from .types import DEFAULT_CACHE_TTL, CacheIO, DiscoveredDevice

CACHE_FILENAME = ".nadctl_cache.json"
CACHE_PATH_ENV = "NADCTL_CACHE_FILE"

_FRACTION_RE = re.compile(r"\.(\d+)")


def default_cache_path() -> pathlib.Path:
    """cache location; NADCTL_CACHE_FILE overrides it for tests"""
    if override := os.environ.get(CACHE_PATH_ENV):
        return pathlib.Path(override)
    return pathlib.Path.home().joinpath(CACHE_FILENAME)


def parse_rfc3339(text: str) -> datetime.datetime:
    """parse RFC 3339, including Z and nanosecond fractions"""
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    stamp = datetime.datetime.fromisoformat(text)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=datetime.timezone.utc)
    return stamp


def format_rfc3339(stamp: datetime.datetime) -> str:
    """timestamp with local offset"""
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=datetime.timezone.utc)
    return stamp.astimezone().isoformat()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class CacheRecord:
    """One persisted discovery result"""

    devices: list[DiscoveredDevice]
    timestamp: datetime.datetime
    ttl: datetime.timedelta = DEFAULT_CACHE_TTL

    def age(self, now: datetime.datetime) -> datetime.timedelta:
        """time since capture"""
        return now - self.timestamp

    def expired(self, now: datetime.datetime) -> bool:
        """past its own ttl"""
        return self.age(now) > self.ttl

    def valid(self, now: datetime.datetime) -> bool:
        """fresh and non-empty"""
        return bool(self.devices) and not self.expired(now)

    def to_json(self) -> dict:
        """wrapped on-disk shape"""
        return {
            "discovery": {
                "devices": [device.to_dict() for device in self.devices],
                "timestamp": format_rfc3339(self.timestamp),
                "ttl": (self.ttl // datetime.timedelta(microseconds=1)) * 1000,
            }
        }

    @classmethod
    def from_json(cls, data: dict) -> "CacheRecord":
        """accepts both the wrapped shape and the older bare record"""
        if isinstance(data, dict) and isinstance(data.get("discovery"), dict):
            data = data["discovery"]
        if not isinstance(data, dict):
            raise ValueError("cache document is not an object")
        devices = [DiscoveredDevice.from_dict(entry) for entry in data.get("devices") or []]
        ttl_ns = int(data.get("ttl", 0))
        return cls(
            devices=devices,
            timestamp=parse_rfc3339(str(data["timestamp"])),
            ttl=datetime.timedelta(microseconds=ttl_ns / 1000),
        )


@dataclass
class DiscoveryResult:
    """what discover() found and where it came from"""

    devices: list[DiscoveredDevice]
    from_cache: bool
    warnings: list[str] = field(default_factory=list)


class DiscoveryCache:
    """Reads and writes the discovery cache file"""

    def __init__(
        self,
        path: pathlib.Path | str | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ):
        self.path = pathlib.Path(path) if path else default_cache_path()
        self.clock = clock or _now

    def read_record(self) -> CacheRecord | None:
        """the raw record regardless of freshness; None when absent or unreadable"""
        if not self.path.exists():
            logging.debug("Cache file %s does not exist", self.path)
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as err:
            raise CacheIO(f"failed to read cache file {self.path}: {err}") from err
        try:
            return CacheRecord.from_json(json.loads(text))
        except (ValueError, KeyError, TypeError) as err:
            logging.warning("Ignoring malformed cache file %s: %s", self.path, err)
            return None

    def load(self) -> tuple[list[DiscoveredDevice], bool]:
        """(devices, fresh); expired or missing caches yield ([], False)"""
        record = self.read_record()
        if record is None:
            return [], False
        now = self.clock()
        if record.expired(now):
            logging.debug("Cache expired (age %s > ttl %s)", record.age(now), record.ttl)
            return [], False
        logging.debug("Loaded %d device(s) from cache", len(record.devices))
        return list(record.devices), bool(record.devices)

    def save(
        self, devices: list[DiscoveredDevice], ttl: datetime.timedelta = DEFAULT_CACHE_TTL
    ) -> None:
        """replace the cache file with a new record"""
        record = CacheRecord(devices=list(devices), timestamp=self.clock(), ttl=ttl)
        tmpfile = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmpfile.write_text(json.dumps(record.to_json(), indent=2) + "\n", encoding="utf-8")
            os.replace(tmpfile, self.path)
        except OSError as err:
            with contextlib.suppress(OSError):
                tmpfile.unlink(missing_ok=True)
            raise CacheIO(f"failed to write cache file {self.path}: {err}") from err
        logging.debug("Saved %d device(s) to %s", len(record.devices), self.path)

    def clear(self) -> None:
        """remove the cache file; a missing file is fine"""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as err:
            raise CacheIO(f"failed to remove cache file {self.path}: {err}") from err
        logging.debug("Cleared cache file %s", self.path)

    def is_valid(self) -> bool:
        """fresh and non-empty"""
        devices, fresh = self.load()
        return fresh and bool(devices)


Scanner = Callable[[float], Awaitable[list[DiscoveredDevice]]]


async def discover(
    timeout: float,
    use_cache: bool = True,
    ttl: datetime.timedelta = DEFAULT_CACHE_TTL,
    cache: DiscoveryCache | None = None,
    scanner: Scanner | None = None,
) -> DiscoveryResult:
    """
    cache-aware discovery

    A valid cache short-circuits the scan.  Otherwise the network is scanned
    and a non-empty result replaces the cache.  Cache problems never fail
    the call; they are logged and reported in DiscoveryResult.warnings.
    """
    cache = cache or DiscoveryCache()
    warnings: list[str] = []

    if use_cache:
        try:
            devices, fresh = cache.load()
        except CacheIO as err:
            logging.warning("%s", err)
            warnings.append(str(err))
            devices, fresh = [], False
        if fresh and devices:
            return DiscoveryResult(devices=devices, from_cache=True, warnings=warnings)
        logging.debug("No valid cached devices, scanning the network")

    devices = await (scanner or scan_network)(timeout)
    if devices:
        try:
            cache.save(devices, ttl)
        except CacheIO as err:
            logging.warning("Failed to save discovery cache: %s", err)
            warnings.append(f"failed to save cache: {err}")
    return DiscoveryResult(devices=devices, from_cache=False, warnings=warnings)
