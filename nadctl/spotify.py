#!/usr/bin/env python3
''' Spotify Web API client with PKCE authentication '''

import asyncio
import base64
import contextlib
import datetime
import hashlib
import json
import logging
import os
import pathlib
import secrets
import urllib.parse
import webbrowser
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import aiohttp
from aiohttp import web

AUTH_HOST = 'https://accounts.spotify.com'
API_HOST = 'https://api.spotify.com/v1'
DEFAULT_REDIRECT_URL = 'http://localhost:8888/callback'
SCOPES = [
    'user-read-currently-playing',
    'user-read-playback-state',
    'user-modify-playback-state',
]
TOKEN_PATH_ENV = 'NADCTL_SPOTIFY_TOKEN_FILE'
TOKEN_FILENAME = '.nadctl_spotify_token.json'

# refresh this long before expiry
REFRESH_MARGIN = datetime.timedelta(seconds=60)

CALLBACK_PAGE = '''<html><head><title>nadctl</title></head>
<body><h2>{title}</h2><p>{detail}</p><p>You can close this window.</p></body></html>'''


class SpotifyError(Exception):
    ''' Spotify request failed '''


class SpotifyAuthError(SpotifyError):
    ''' authentication problem '''


class SpotifyNotConnected(SpotifyError):
    ''' no usable token '''

    def __init__(self, message: str = 'not connected to Spotify'):
        super().__init__(message)


def default_token_path() -> pathlib.Path:
    ''' token cache location; NADCTL_SPOTIFY_TOKEN_FILE overrides it '''
    if override := os.environ.get(TOKEN_PATH_ENV):
        return pathlib.Path(override)
    return pathlib.Path.home().joinpath(TOKEN_FILENAME)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Track:
    ''' the playing item '''
    name: str
    artist: str = ''
    album: str = ''
    duration_ms: int = 0
    image_url: str = ''

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> 'Track':
        ''' build from a Spotify track object '''
        artists = ', '.join(artist.get('name', '') for artist in item.get('artists') or [])
        album = item.get('album') or {}
        images = album.get('images') or []
        return cls(name=item.get('name', ''),
                   artist=artists,
                   album=album.get('name', ''),
                   duration_ms=int(item.get('duration_ms') or 0),
                   image_url=images[0].get('url', '') if images else '')


@dataclass
class SpotifyDevice:
    ''' a Spotify Connect device '''
    id: str
    name: str
    type: str = ''
    is_active: bool = False
    is_restricted: bool = False
    volume_percent: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> 'SpotifyDevice':
        ''' build from a Spotify device object '''
        return cls(id=data.get('id') or '',
                   name=data.get('name', ''),
                   type=data.get('type', ''),
                   is_active=bool(data.get('is_active')),
                   is_restricted=bool(data.get('is_restricted')),
                   volume_percent=int(data.get('volume_percent') or 0))


@dataclass
class PlaybackState:  # pylint: disable=too-many-instance-attributes
    ''' what Spotify is doing right now '''
    track: Track | None
    device_name: str = ''
    device_id: str = ''
    volume: int = 0
    is_playing: bool = False
    shuffle: bool = False
    repeat: str = 'off'
    progress_ms: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> 'PlaybackState':
        ''' build from GET /me/player '''
        device = data.get('device') or {}
        item = data.get('item')
        return cls(track=Track.from_api(item) if item else None,
                   device_name=device.get('name', ''),
                   device_id=device.get('id') or '',
                   volume=int(device.get('volume_percent') or 0),
                   is_playing=bool(data.get('is_playing')),
                   shuffle=bool(data.get('shuffle_state')),
                   repeat=data.get('repeat_state') or 'off',
                   progress_ms=int(data.get('progress_ms') or 0))


@dataclass
class TokenCache:
    ''' persisted OAuth token '''
    access_token: str
    token_type: str
    refresh_token: str
    expiry: datetime.datetime
    client_id: str

    def to_json(self) -> dict[str, Any]:
        ''' on-disk shape '''
        data = asdict(self)
        data['expiry'] = self.expiry.isoformat()
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> 'TokenCache':
        ''' inverse of to_json '''
        expiry = datetime.datetime.fromisoformat(str(data['expiry']).replace('Z', '+00:00'))
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=datetime.timezone.utc)
        return cls(access_token=data['access_token'],
                   token_type=data.get('token_type', 'Bearer'),
                   refresh_token=data.get('refresh_token', ''),
                   expiry=expiry,
                   client_id=data.get('client_id', ''))


class PlaybackController(Protocol):
    ''' the slice of Spotify the UI and tools depend on '''

    def is_connected(self) -> bool:
        ''' usable token present '''

    async def authenticate(self, timeout: float = 120.0, open_browser: bool = True) -> None:
        ''' run the browser login '''

    def disconnect(self) -> None:
        ''' forget the token '''

    async def playback_state(self) -> PlaybackState | None:
        ''' current playback '''

    async def devices(self) -> list[SpotifyDevice]:
        ''' connect devices '''

    async def transfer(self, device_id: str, play: bool = True) -> None:
        ''' move playback '''

    async def play(self) -> None:
        ''' resume '''

    async def pause(self) -> None:
        ''' pause '''

    async def next(self) -> None:
        ''' skip forward '''

    async def previous(self) -> None:
        ''' skip back '''

    async def set_volume(self, percent: int) -> int:
        ''' app volume '''

    async def toggle_shuffle(self) -> bool:
        ''' flip shuffle '''


def resolve_device(devices: list[SpotifyDevice], identifier: str) -> SpotifyDevice:
    ''' match a 1-based index, a device id, or a device name '''
    identifier = identifier.strip()
    if identifier.isdigit():
        index = int(identifier)
        if 1 <= index <= len(devices):
            return devices[index - 1]
    for device in devices:
        if device.id == identifier:
            return device
    lowered = identifier.lower()
    for device in devices:
        if device.name.lower() == lowered:
            return device
    for device in devices:
        if lowered and lowered in device.name.lower():
            return device
    raise SpotifyError(f'no Spotify device matches {identifier!r}')


class SpotifyClient:  # pylint: disable=too-many-instance-attributes, too-many-public-methods
    ''' Spotify Web API access using the authorization code flow with PKCE '''

    def __init__(self,
                 client_id: str,
                 redirect_url: str | None = None,
                 token_path: str | pathlib.Path | None = None,
                 auth_host: str = AUTH_HOST,
                 api_host: str = API_HOST) -> None:
        if not client_id:
            raise SpotifyAuthError('Spotify client ID is required')
        self.client_id = client_id
        self.redirect_url = redirect_url or DEFAULT_REDIRECT_URL
        self.token_path = pathlib.Path(token_path) if token_path else default_token_path()
        self.auth_host = auth_host
        self.api_host = api_host
        self.token: TokenCache | None = None
        self.code_verifier: str | None = None
        self.code_challenge: str | None = None
        self.state: str | None = None
        self._token_loaded = False

    def _generate_pkce_parameters(self) -> None:
        ''' Generate PKCE code verifier, challenge and state '''
        self.code_verifier = secrets.token_urlsafe(43)
        challenge_bytes = hashlib.sha256(self.code_verifier.encode('utf-8')).digest()
        self.code_challenge = base64.urlsafe_b64encode(challenge_bytes).decode('utf-8').rstrip('=')
        self.state = secrets.token_urlsafe(16)

    def auth_url(self) -> str:
        ''' Generate the authorization URL for user consent '''
        self._generate_pkce_parameters()
        params = {
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': self.redirect_url,
            'state': self.state,
            'scope': ' '.join(SCOPES),
            'code_challenge': self.code_challenge,
            'code_challenge_method': 'S256',
        }
        return f"{self.auth_host}/authorize?{urllib.parse.urlencode(params)}"

    # token handling

    def load_token(self) -> TokenCache | None:
        ''' read the token cache for this client id '''
        self._token_loaded = True
        if not self.token_path.exists():
            logging.debug('No Spotify token cache at %s', self.token_path)
            return None
        try:
            cached = TokenCache.from_json(json.loads(self.token_path.read_text(encoding='utf-8')))
        except (OSError, ValueError, KeyError, TypeError) as error:
            logging.debug('Ignoring unreadable Spotify token cache: %s', error)
            return None
        if cached.client_id != self.client_id:
            logging.debug('Spotify token cache is for a different client ID, ignoring')
            return None
        self.token = cached
        return cached

    def save_token(self) -> None:
        ''' write the current token to the cache '''
        if not self.token:
            return
        try:
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_path.write_text(json.dumps(self.token.to_json(), indent=2),
                                       encoding='utf-8')
            with contextlib.suppress(OSError):
                self.token_path.chmod(0o600)
        except OSError as error:
            logging.warning('Failed to save Spotify token: %s', error)

    def clear_token(self) -> None:
        ''' remove the cached token '''
        self.token = None
        try:
            self.token_path.unlink(missing_ok=True)
        except OSError as error:
            logging.debug('Failed to remove Spotify token cache: %s', error)

    def _store_token_response(self, response: dict[str, Any], previous_refresh: str = '') -> None:
        self.token = TokenCache(
            access_token=response['access_token'],
            token_type=response.get('token_type', 'Bearer'),
            refresh_token=response.get('refresh_token') or previous_refresh,
            expiry=_utcnow() + datetime.timedelta(seconds=int(response.get('expires_in', 3600))),
            client_id=self.client_id)
        self.save_token()

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Accept': 'application/json'
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(f"{self.auth_host}/api/token",
                                    data=data,
                                    headers=headers,
                                    timeout=aiohttp.ClientTimeout(total=30)) as response:
                if response.status == 200:
                    return await response.json()
                error_text = await response.text()
                logging.error('Spotify token request failed: %s - %s', response.status, error_text)
                raise SpotifyAuthError(f"token request failed: {response.status} - {error_text}")

    async def complete_auth(self, code: str, state: str | None = None) -> None:
        ''' Exchange authorization code for access token '''
        if not self.code_verifier:
            raise SpotifyAuthError('no authorization in progress; generate a new auth URL')
        if not state or state != self.state:
            raise SpotifyAuthError('state parameter mismatch')
        response = await self._post_token({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_url,
            'client_id': self.client_id,
            'code_verifier': self.code_verifier,
        })
        self.code_verifier = None
        self._store_token_response(response)
        logging.info('Successfully obtained Spotify tokens')

    async def refresh_access_token(self) -> None:
        ''' Refresh the access token using the refresh token '''
        if not self.token or not self.token.refresh_token:
            raise SpotifyNotConnected('no refresh token available')
        previous = self.token.refresh_token
        response = await self._post_token({
            'grant_type': 'refresh_token',
            'refresh_token': previous,
            'client_id': self.client_id,
        })
        self._store_token_response(response, previous_refresh=previous)
        logging.debug('Spotify token refreshed')

    async def ensure_token(self) -> str:
        ''' a usable access token, refreshing or loading as needed '''
        if not self.token and not self._token_loaded:
            self.load_token()
        if not self.token:
            raise SpotifyNotConnected()
        if _utcnow() + REFRESH_MARGIN >= self.token.expiry:
            try:
                await self.refresh_access_token()
            except SpotifyError:
                self.clear_token()
                raise
        return self.token.access_token

    def is_connected(self) -> bool:
        ''' usable token present '''
        if not self.token and not self._token_loaded:
            self.load_token()
        return self.token is not None

    def disconnect(self) -> None:
        ''' forget the token '''
        self.clear_token()
        logging.info('Disconnected from Spotify and cleared token cache')

    # browser flow

    async def authenticate(self,
                           timeout: float = 120.0,
                           open_browser: bool = True,
                           on_url: Callable[[str], None] | None = None) -> None:
        ''' run the full login: callback server, browser, token exchange '''
        redirect = urllib.parse.urlparse(self.redirect_url)
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()

        async def handle_callback(request: web.Request) -> web.Response:
            if error := request.query.get('error'):
                if not result.done():
                    result.set_exception(SpotifyAuthError(f'authorization denied: {error}'))
                return web.Response(text=CALLBACK_PAGE.format(title='Authorization failed',
                                                              detail=error),
                                    content_type='text/html')
            if not result.done():
                result.set_result((request.query.get('code', ''), request.query.get('state')))
            return web.Response(text=CALLBACK_PAGE.format(title='Connected to Spotify',
                                                          detail='nadctl is now authorized.'),
                                content_type='text/html')

        app = web.Application()
        app.router.add_get(redirect.path or '/callback', handle_callback)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, redirect.hostname or 'localhost', redirect.port or 8888)
        try:
            await site.start()
            url = self.auth_url()
            logging.info('Spotify authorization URL: %s', url)
            if on_url:
                on_url(url)
            if open_browser:
                try:
                    webbrowser.open(url)
                except OSError as error:
                    logging.error('Failed to open browser for Spotify login: %s', error)
            try:
                code, state = await asyncio.wait_for(result, timeout=timeout)
            except asyncio.TimeoutError as error:
                raise SpotifyAuthError('timed out waiting for Spotify authorization') from error
            await self.complete_auth(code, state)
        finally:
            await runner.cleanup()

    # Web API

    async def _request(self,
                       method: str,
                       path: str,
                       params: dict[str, str] | None = None,
                       payload: dict[str, Any] | None = None) -> Any:
        token = await self.ensure_token()
        headers = {'Authorization': f'Bearer {token}', 'Accept': 'application/json'}
        async with aiohttp.ClientSession() as session:
            async with session.request(method,
                                       f"{self.api_host}{path}",
                                       params=params,
                                       json=payload,
                                       headers=headers,
                                       timeout=aiohttp.ClientTimeout(total=10)) as response:
                if response.status == 204:
                    return None
                if response.status in (200, 201, 202):
                    if response.content_type == 'application/json':
                        return await response.json()
                    return None
                error_text = await response.text()
                if response.status == 401:
                    raise SpotifyAuthError(f'Spotify rejected the token: {error_text}')
                raise SpotifyError(f'Spotify {method} {path} failed: {response.status} - {error_text}')

    async def playback_state(self) -> PlaybackState | None:
        ''' current playback, None when no session is active '''
        data = await self._request('GET', '/me/player')
        if not data:
            logging.debug('No active Spotify playback')
            return None
        return PlaybackState.from_api(data)

    async def devices(self) -> list[SpotifyDevice]:
        ''' available Spotify Connect devices '''
        data = await self._request('GET', '/me/player/devices') or {}
        return [SpotifyDevice.from_api(entry) for entry in data.get('devices', [])]

    async def transfer(self, device_id: str, play: bool = True) -> None:
        ''' move playback to another device '''
        await self._request('PUT', '/me/player', payload={'device_ids': [device_id], 'play': play})
        logging.info('Transferred Spotify playback to %s', device_id)

    async def play(self) -> None:
        ''' start or resume playback '''
        await self._request('PUT', '/me/player/play')

    async def pause(self) -> None:
        ''' pause playback '''
        await self._request('PUT', '/me/player/pause')

    async def next(self) -> None:
        ''' skip to next track '''
        await self._request('POST', '/me/player/next')

    async def previous(self) -> None:
        ''' skip to previous track '''
        await self._request('POST', '/me/player/previous')

    async def set_volume(self, percent: int) -> int:
        ''' set the Spotify app volume, clamped to 0-100 '''
        percent = max(0, min(100, int(percent)))
        await self._request('PUT', '/me/player/volume', params={'volume_percent': str(percent)})
        return percent

    async def toggle_shuffle(self) -> bool:
        ''' flip shuffle and return the new setting '''
        state = await self.playback_state()
        if state is None:
            raise SpotifyError('no active playback')
        wanted = not state.shuffle
        await self._request('PUT', '/me/player/shuffle', params={'state': 'true' if wanted else 'false'})
        return wanted
