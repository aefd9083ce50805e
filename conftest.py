#!/usr/bin/env python3
"""pytest fixtures"""

import os
import pathlib
import unittest.mock

import pytest
import pytest_asyncio

import nadctl.config
import nadctl.nadapi.cache
import nadctl.nadapi.connection
import nadctl.simulator


@pytest.fixture
def getroot(pytestconfig):
    """get the base of the source tree"""
    return pytestconfig.rootpath


@pytest.fixture(autouse=True)
def isolated_home(tmp_path):
    """keep every test away from the real cache and token files"""
    with unittest.mock.patch.dict(
        os.environ,
        {
            "NADCTL_CACHE_FILE": str(tmp_path.joinpath("nadctl_cache.json")),
            "NADCTL_SPOTIFY_TOKEN_FILE": str(tmp_path.joinpath("spotify_token.json")),
        },
    ):
        for key in ("NAD_IP", "NAD_PORT", "NAD_DEBUG", "SPOTIFY_CLIENT_ID"):
            os.environ.pop(key, None)
        yield tmp_path


@pytest.fixture
def cache_path(isolated_home):  # pylint: disable=redefined-outer-name
    """the discovery cache file for this test"""
    return pathlib.Path(os.environ["NADCTL_CACHE_FILE"])


@pytest.fixture
def spotify_token_path(isolated_home):  # pylint: disable=redefined-outer-name
    """the Spotify token file for this test"""
    return pathlib.Path(os.environ["NADCTL_SPOTIFY_TOKEN_FILE"])


@pytest.fixture
def config_dir(tmp_path):
    """a directory to write config files into"""
    configdir = tmp_path.joinpath("config")
    configdir.mkdir()
    return configdir


@pytest.fixture
def write_config(config_dir):  # pylint: disable=redefined-outer-name
    """write YAML text and return a loaded ConfigFile"""

    def _write(text: str, environ: dict | None = None) -> nadctl.config.ConfigFile:
        path = config_dir.joinpath("nadctl.yaml")
        path.write_text(text, encoding="utf-8")
        return nadctl.config.ConfigFile(configpath=path, environ=environ or {})

    return _write


@pytest_asyncio.fixture
async def simulator():
    """a simulator listening on an ephemeral port"""
    sim = nadctl.simulator.NadSimulator(port=0)
    await sim.start()
    try:
        yield sim
    finally:
        await sim.stop()


@pytest_asyncio.fixture
async def client(simulator):  # pylint: disable=redefined-outer-name
    """a DeviceClient connected to the simulator"""
    host, port = simulator.address
    devclient = nadctl.nadapi.connection.DeviceClient(host, port, read_timeout=2.0)
    await devclient.connect()
    try:
        yield devclient
    finally:
        await devclient.close()


@pytest.fixture
def discovery_cache(cache_path):  # pylint: disable=redefined-outer-name
    """a DiscoveryCache on the per-test cache file"""
    return nadctl.nadapi.cache.DiscoveryCache(path=cache_path)
