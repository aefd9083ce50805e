#!/usr/bin/env python3
"""test the discovery cache"""
# pylint: disable=redefined-outer-name

import datetime
import json
import os
import pathlib
import unittest.mock

import pytest

import nadctl.nadapi.cache
from nadctl.nadapi.types import CacheIO, DiscoveredDevice

DEVICES = [
    DiscoveredDevice(address="192.168.1.50", port=30001, model="NAD T 758 V3i"),
    DiscoveredDevice(address="192.168.1.51", port=30001, model="NAD C 368"),
]


class FakeClock:
    """controllable time"""

    def __init__(self):
        self.now = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        """move forward"""
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    """a fake clock"""
    return FakeClock()


@pytest.fixture
def cache(cache_path, clock):
    """cache on the per-test path with a fake clock"""
    return nadctl.nadapi.cache.DiscoveryCache(path=cache_path, clock=clock)


def test_default_path_honors_environment(cache_path):
    """NADCTL_CACHE_FILE redirects the cache"""
    assert nadctl.nadapi.cache.default_cache_path() == cache_path
    with unittest.mock.patch.dict(os.environ, clear=True):
        assert nadctl.nadapi.cache.default_cache_path() == pathlib.Path.home().joinpath(
            ".nadctl_cache.json"
        )


def test_missing_cache(cache):
    """no file is not an error"""
    assert cache.read_record() is None
    assert cache.load() == ([], False)
    assert not cache.is_valid()


def test_save_then_load(cache, cache_path):
    """a fresh save is a valid cache"""
    cache.save(DEVICES)
    assert cache_path.exists()
    assert cache.load() == (DEVICES, True)
    assert cache.is_valid()
    assert not cache_path.with_name(cache_path.name + ".tmp").exists()


def test_on_disk_format(cache, cache_path):
    """wrapped record, string ports, nanosecond ttl"""
    cache.save(DEVICES[:1], ttl=datetime.timedelta(minutes=5))
    data = json.loads(cache_path.read_text(encoding="utf-8"))
    record = data["discovery"]
    assert record["devices"] == [{"IP": "192.168.1.50", "Model": "NAD T 758 V3i", "Port": "30001"}]
    assert record["ttl"] == 300_000_000_000
    stamp = nadctl.nadapi.cache.parse_rfc3339(record["timestamp"])
    assert stamp == datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def test_expiry(cache, clock):
    """a record older than its ttl is ignored but still readable"""
    cache.save(DEVICES, ttl=datetime.timedelta(minutes=5))
    clock.advance(minutes=4, seconds=59)
    assert cache.load() == (DEVICES, True)
    clock.advance(seconds=2)
    assert cache.load() == ([], False)
    assert not cache.is_valid()
    assert cache.read_record().devices == DEVICES


def test_empty_device_list_is_not_valid(cache):
    """a fresh but empty record is not a usable cache"""
    cache.save([])
    assert not cache.is_valid()


def test_clear(cache, cache_path):
    """clear removes the file and tolerates a missing one"""
    cache.save(DEVICES)
    cache.clear()
    assert not cache_path.exists()
    cache.clear()


def test_legacy_format(cache, cache_path):
    """records written without the discovery wrapper still load"""
    cache_path.write_text(
        json.dumps(
            {
                "devices": [{"IP": "10.0.0.9", "Model": "NAD C 338", "Port": 30001}],
                "timestamp": "2024-05-01T11:59:00.123456789Z",
                "ttl": 300000000000,
            }
        ),
        encoding="utf-8",
    )
    devices, fresh = cache.load()
    assert fresh
    assert devices == [DiscoveredDevice(address="10.0.0.9", port=30001, model="NAD C 338")]


@pytest.mark.parametrize(
    "text",
    ["", "not json", "[]", '{"discovery": {"devices": []}}', '{"discovery": {"timestamp": "x"}}'],
)
def test_malformed_cache_is_ignored(cache, cache_path, text):
    """unreadable contents behave like no cache"""
    cache_path.write_text(text, encoding="utf-8")
    assert cache.read_record() is None
    assert cache.load() == ([], False)


@pytest.mark.parametrize(
    "text,expected",
    [
        (
            "2024-05-01T12:00:00Z",
            datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc),
        ),
        (
            "2024-05-01T14:00:00.5+02:00",
            datetime.datetime(2024, 5, 1, 12, 0, 0, 500000, tzinfo=datetime.timezone.utc),
        ),
        (
            "2024-05-01T12:00:00.123456789-00:00",
            datetime.datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=datetime.timezone.utc),
        ),
    ],
)
def test_parse_rfc3339(text, expected):
    """Z suffix, offsets and nanosecond fractions"""
    assert nadctl.nadapi.cache.parse_rfc3339(text) == expected


def test_save_failure_raises_cacheio(tmp_path):
    """a cache path that cannot be written is a CacheIO"""
    blocker = tmp_path.joinpath("blocker")
    blocker.write_text("file, not a directory", encoding="utf-8")
    cache = nadctl.nadapi.cache.DiscoveryCache(path=blocker.joinpath("cache.json"))
    with pytest.raises(CacheIO):
        cache.save(DEVICES)


@pytest.mark.asyncio
async def test_discover_uses_fresh_cache(cache):
    """a valid cache short-circuits the scan"""
    cache.save(DEVICES)
    scanner = unittest.mock.AsyncMock(return_value=[])
    result = await nadctl.nadapi.cache.discover(5.0, cache=cache, scanner=scanner)
    assert result.from_cache
    assert result.devices == DEVICES
    scanner.assert_not_awaited()


@pytest.mark.asyncio
async def test_discover_scans_and_saves(cache):
    """no cache: scan and remember the result"""
    scanner = unittest.mock.AsyncMock(return_value=DEVICES[:1])
    result = await nadctl.nadapi.cache.discover(5.0, cache=cache, scanner=scanner)
    assert not result.from_cache
    assert result.devices == DEVICES[:1]
    scanner.assert_awaited_once_with(5.0)
    assert cache.load() == (DEVICES[:1], True)


@pytest.mark.asyncio
async def test_discover_bypasses_cache(cache):
    """use_cache=False always scans"""
    cache.save(DEVICES)
    scanner = unittest.mock.AsyncMock(return_value=DEVICES[1:])
    result = await nadctl.nadapi.cache.discover(5.0, use_cache=False, cache=cache, scanner=scanner)
    assert result.devices == DEVICES[1:]
    assert not result.from_cache
    assert cache.load() == (DEVICES[1:], True)


@pytest.mark.asyncio
async def test_discover_empty_scan_keeps_cache(cache, clock):
    """an empty scan does not overwrite older results"""
    cache.save(DEVICES)
    clock.advance(minutes=10)
    scanner = unittest.mock.AsyncMock(return_value=[])
    result = await nadctl.nadapi.cache.discover(5.0, cache=cache, scanner=scanner)
    assert result.devices == []
    assert cache.read_record().devices == DEVICES


@pytest.mark.asyncio
async def test_discover_survives_cache_errors(cache):
    """cache failures become warnings"""
    scanner = unittest.mock.AsyncMock(return_value=DEVICES)
    with unittest.mock.patch.object(cache, "load", side_effect=CacheIO("read boom")):
        with unittest.mock.patch.object(cache, "save", side_effect=CacheIO("write boom")):
            result = await nadctl.nadapi.cache.discover(5.0, cache=cache, scanner=scanner)
    assert result.devices == DEVICES
    assert len(result.warnings) == 2
    assert "read boom" in result.warnings[0]
    assert "write boom" in result.warnings[1]


@pytest.mark.asyncio
async def test_discover_uses_scan_network_by_default(cache):
    """without a scanner the network scan is used"""
    with unittest.mock.patch(
        "nadctl.nadapi.cache.scan_network", new=unittest.mock.AsyncMock(return_value=DEVICES)
    ) as scan:
        result = await nadctl.nadapi.cache.discover(3.0, cache=cache)
    scan.assert_awaited_once_with(3.0)
    assert result.devices == DEVICES
