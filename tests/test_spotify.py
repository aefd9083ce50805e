#!/usr/bin/env python3
"""test the Spotify client"""
# pylint: disable=protected-access,redefined-outer-name

import asyncio
import datetime
import json
import socket
import urllib.parse

import aiohttp
import pytest
from aioresponses import aioresponses

import nadctl.spotify
from nadctl.spotify import API_HOST, AUTH_HOST, SpotifyDevice

TOKEN_URL = f"{AUTH_HOST}/api/token"

PLAYER_PAYLOAD = {
    "device": {"id": "dev1", "name": "Living Room", "volume_percent": 40},
    "is_playing": True,
    "shuffle_state": False,
    "repeat_state": "context",
    "progress_ms": 61000,
    "item": {
        "name": "Song 2",
        "duration_ms": 122000,
        "artists": [{"name": "Blur"}],
        "album": {"name": "Blur", "images": [{"url": "https://i.scdn.co/image/abc"}]},
    },
}


@pytest.fixture
def spotify(spotify_token_path):
    """a client with a token cache in the temp dir"""
    return nadctl.spotify.SpotifyClient("client123", token_path=spotify_token_path)


@pytest.fixture
def connected(spotify):
    """a client holding a valid token"""
    spotify.token = nadctl.spotify.TokenCache(
        access_token="access",
        token_type="Bearer",
        refresh_token="refresh",
        expiry=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1),
        client_id="client123",
    )
    return spotify


def test_requires_client_id():
    """no client id, no client"""
    with pytest.raises(nadctl.spotify.SpotifyAuthError):
        nadctl.spotify.SpotifyClient("")


def test_auth_url(spotify):
    """the authorize URL carries PKCE parameters and scopes"""
    url = urllib.parse.urlparse(spotify.auth_url())
    query = urllib.parse.parse_qs(url.query)
    assert url.netloc == "accounts.spotify.com"
    assert url.path == "/authorize"
    assert query["client_id"] == ["client123"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == [spotify.state]
    assert query["redirect_uri"] == ["http://localhost:8888/callback"]
    assert "user-modify-playback-state" in query["scope"][0]
    assert "=" not in spotify.code_challenge


def test_token_path_from_environment(spotify_token_path):
    """NADCTL_SPOTIFY_TOKEN_FILE is the default location"""
    assert nadctl.spotify.default_token_path() == spotify_token_path


@pytest.mark.asyncio
async def test_complete_auth_saves_token(spotify, spotify_token_path):
    """the code exchange stores a token on disk"""
    spotify.auth_url()
    with aioresponses() as mocked:
        mocked.post(
            TOKEN_URL,
            payload={"access_token": "new", "refresh_token": "r1", "expires_in": 3600},
        )
        await spotify.complete_auth("thecode", spotify.state)
    assert spotify.token.access_token == "new"
    saved = json.loads(spotify_token_path.read_text(encoding="utf-8"))
    assert saved["access_token"] == "new"
    assert saved["refresh_token"] == "r1"
    assert saved["client_id"] == "client123"
    assert spotify.is_connected()


@pytest.mark.asyncio
async def test_complete_auth_state_mismatch(spotify):
    """a forged callback is rejected before any network call"""
    spotify.auth_url()
    with pytest.raises(nadctl.spotify.SpotifyAuthError):
        await spotify.complete_auth("thecode", "not-the-state")


@pytest.mark.asyncio
async def test_complete_auth_http_failure(spotify):
    """token endpoint errors are auth errors"""
    spotify.auth_url()
    with aioresponses() as mocked:
        mocked.post(TOKEN_URL, status=400, body='{"error": "invalid_grant"}')
        with pytest.raises(nadctl.spotify.SpotifyAuthError):
            await spotify.complete_auth("thecode", spotify.state)
    assert spotify.token is None


def test_token_cache_round_trip(connected, spotify_token_path):
    """a saved token is picked up by a fresh client with the same id"""
    connected.save_token()
    again = nadctl.spotify.SpotifyClient("client123", token_path=spotify_token_path)
    assert again.is_connected()
    assert again.token.access_token == "access"
    other = nadctl.spotify.SpotifyClient("someone-else", token_path=spotify_token_path)
    assert not other.is_connected()


def test_disconnect_clears_cache(connected, spotify_token_path):
    """disconnect forgets the token everywhere"""
    connected.save_token()
    connected.disconnect()
    assert not spotify_token_path.exists()
    assert connected.token is None


@pytest.mark.asyncio
async def test_not_connected(spotify):
    """API calls without a token raise SpotifyNotConnected"""
    assert not spotify.is_connected()
    with pytest.raises(nadctl.spotify.SpotifyNotConnected):
        await spotify.play()


@pytest.mark.asyncio
async def test_expired_token_is_refreshed(connected):
    """a token inside the refresh margin is renewed before use"""
    connected.token.expiry = datetime.datetime.now(datetime.timezone.utc)
    with aioresponses() as mocked:
        mocked.post(TOKEN_URL, payload={"access_token": "fresh", "expires_in": 3600})
        mocked.put(f"{API_HOST}/me/player/play", status=204)
        await connected.play()
    assert connected.token.access_token == "fresh"
    assert connected.token.refresh_token == "refresh"


@pytest.mark.asyncio
async def test_failed_refresh_disconnects(connected, spotify_token_path):
    """a refresh token that no longer works drops the session"""
    connected.save_token()
    connected.token.expiry = datetime.datetime.now(datetime.timezone.utc)
    with aioresponses() as mocked:
        mocked.post(TOKEN_URL, status=400, body="revoked")
        with pytest.raises(nadctl.spotify.SpotifyAuthError):
            await connected.next()
    assert connected.token is None
    assert not spotify_token_path.exists()


@pytest.mark.asyncio
async def test_playback_state(connected):
    """GET /me/player becomes a PlaybackState"""
    with aioresponses() as mocked:
        mocked.get(f"{API_HOST}/me/player", payload=PLAYER_PAYLOAD)
        state = await connected.playback_state()
    assert state.is_playing
    assert state.device_name == "Living Room"
    assert state.volume == 40
    assert state.repeat == "context"
    assert state.track.name == "Song 2"
    assert state.track.artist == "Blur"
    assert state.track.image_url == "https://i.scdn.co/image/abc"


@pytest.mark.asyncio
async def test_playback_state_idle(connected):
    """204 means nothing is playing"""
    with aioresponses() as mocked:
        mocked.get(f"{API_HOST}/me/player", status=204)
        assert await connected.playback_state() is None


@pytest.mark.asyncio
async def test_devices_and_transfer(connected):
    """device listing and playback transfer"""
    with aioresponses() as mocked:
        mocked.get(
            f"{API_HOST}/me/player/devices",
            payload={
                "devices": [
                    {"id": "a", "name": "Laptop", "type": "Computer", "is_active": True},
                    {"id": "b", "name": "Kitchen Speaker", "type": "Speaker", "volume_percent": 30},
                ]
            },
        )
        mocked.put(f"{API_HOST}/me/player", status=204)
        devices = await connected.devices()
        await connected.transfer("b", play=False)
        calls = [key for key in mocked.requests if key[0] == "PUT"]
        assert len(calls) == 1
        request = mocked.requests[calls[0]][0]
        assert request.kwargs["json"] == {"device_ids": ["b"], "play": False}
    assert [device.name for device in devices] == ["Laptop", "Kitchen Speaker"]
    assert devices[0].is_active
    assert devices[1].volume_percent == 30


@pytest.mark.asyncio
async def test_volume_is_clamped(connected):
    """volume percent stays in 0-100"""
    with aioresponses() as mocked:
        mocked.put(f"{API_HOST}/me/player/volume?volume_percent=100", status=204)
        assert await connected.set_volume(150) == 100


@pytest.mark.asyncio
async def test_toggle_shuffle(connected):
    """shuffle is read, then flipped"""
    with aioresponses() as mocked:
        mocked.get(f"{API_HOST}/me/player", payload=PLAYER_PAYLOAD)
        mocked.put(f"{API_HOST}/me/player/shuffle?state=true", status=204)
        assert await connected.toggle_shuffle() is True


@pytest.mark.asyncio
async def test_api_errors(connected):
    """401 is an auth error, anything else a SpotifyError"""
    with aioresponses() as mocked:
        mocked.post(f"{API_HOST}/me/player/next", status=401, body="expired")
        mocked.post(f"{API_HOST}/me/player/previous", status=404, body="no device")
        with pytest.raises(nadctl.spotify.SpotifyAuthError):
            await connected.next()
        with pytest.raises(nadctl.spotify.SpotifyError) as excinfo:
            await connected.previous()
    assert "404" in str(excinfo.value)


@pytest.mark.parametrize(
    "identifier,expected",
    [("2", "b"), ("a", "a"), ("kitchen speaker", "b"), ("laptop", "a"), ("Kitch", "b")],
)
def test_resolve_device(identifier, expected):
    """index, id, exact name, then partial name"""
    devices = [SpotifyDevice(id="a", name="Laptop"), SpotifyDevice(id="b", name="Kitchen Speaker")]
    assert nadctl.spotify.resolve_device(devices, identifier).id == expected


def test_resolve_device_no_match():
    """unknown identifiers are errors"""
    with pytest.raises(nadctl.spotify.SpotifyError):
        nadctl.spotify.resolve_device([SpotifyDevice(id="a", name="Laptop")], "9")


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_authenticate_browser_flow(spotify_token_path):
    """the callback server receives the code and completes the exchange"""
    redirect = f"http://127.0.0.1:{_free_port()}/callback"
    client = nadctl.spotify.SpotifyClient("client123", redirect, token_path=spotify_token_path)
    browser_tasks = []

    async def _browser(url):
        query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
        async with aiohttp.ClientSession() as session:
            async with session.get(
                redirect, params={"code": "abc", "state": query["state"][0]}
            ) as response:
                assert response.status == 200

    with aioresponses(passthrough=["http://127.0.0.1"]) as mocked:
        mocked.post(TOKEN_URL, payload={"access_token": "tok", "expires_in": 3600})
        await client.authenticate(
            timeout=5.0,
            open_browser=False,
            on_url=lambda url: browser_tasks.append(asyncio.create_task(_browser(url))),
        )
        await asyncio.gather(*browser_tasks)
    assert client.token.access_token == "tok"
    assert client.is_connected()


@pytest.mark.asyncio
async def test_authenticate_denied(spotify_token_path):
    """a denied consent is an auth error"""
    redirect = f"http://127.0.0.1:{_free_port()}/callback"
    client = nadctl.spotify.SpotifyClient("client123", redirect, token_path=spotify_token_path)

    async def _deny():
        async with aiohttp.ClientSession() as session:
            async with session.get(redirect, params={"error": "access_denied"}):
                pass

    tasks = []
    with pytest.raises(nadctl.spotify.SpotifyAuthError):
        await client.authenticate(
            timeout=5.0,
            open_browser=False,
            on_url=lambda url: tasks.append(asyncio.create_task(_deny())),
        )
    await asyncio.gather(*tasks, return_exceptions=True)
