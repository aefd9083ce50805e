#!/usr/bin/env python3
"""
config file parsing

Settings come from ~/.nadctl.yaml (or --config) and are overridden by
NAD_* environment variables.  Command line flags are applied on top by
the caller.
"""

import contextlib
import datetime
import logging
import os
import pathlib

import yaml

from nadctl.nadapi.types import DEFAULT_CACHE_TTL, DEFAULT_PORT, MAX_VOLUME

CONFIG_FILENAME = ".nadctl.yaml"
DEFAULT_REDIRECT_URL = "http://localhost:8888/callback"
TRUTHY = ("1", "true", "yes", "on")


def default_config_path() -> pathlib.Path:
    """~/.nadctl.yaml"""
    return pathlib.Path.home().joinpath(CONFIG_FILENAME)


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


class ConfigFile:  # pylint: disable=too-many-instance-attributes
    """read the YAML config and apply environment overrides"""

    def __init__(self, configpath: str | pathlib.Path | None = None, environ=None):
        self.configpath: pathlib.Path = (
            pathlib.Path(configpath).expanduser() if configpath else default_config_path()
        )
        self.environ = os.environ if environ is None else environ
        self.defaults()
        self.get()

    def defaults(self) -> None:
        """reset every setting"""
        self.ip: str | None = None
        self.port: int = DEFAULT_PORT
        self.debug: bool = False
        self.max_volume: float = MAX_VOLUME
        self.cache_ttl: datetime.timedelta = DEFAULT_CACHE_TTL
        self.spotify_client_id: str | None = None
        self.spotify_redirect_url: str = DEFAULT_REDIRECT_URL
        self.loaded: bool = False

    def read_yaml(self) -> dict:
        """raw YAML contents; missing or broken files give {}"""
        if not self.configpath.exists():
            logging.debug("No config file at %s", self.configpath)
            return {}
        try:
            data = yaml.safe_load(self.configpath.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as err:
            logging.error("Could not read config file %s: %s", self.configpath, err)
            return {}
        if not isinstance(data, dict):
            if data is not None:
                logging.error("Config file %s is not a mapping, ignoring", self.configpath)
            return {}
        self.loaded = True
        logging.info("Using config file: %s", self.configpath)
        return data

    def get(self) -> None:
        """refresh values from disk and the environment"""
        data = self.read_yaml()

        self.ip = data.get("ip") or None
        with contextlib.suppress(TypeError, ValueError):
            self.port = int(data.get("port") or DEFAULT_PORT)
        self.debug = _as_bool(data.get("debug", False))
        with contextlib.suppress(TypeError, ValueError):
            self.max_volume = float(data.get("max_volume", MAX_VOLUME))
        with contextlib.suppress(TypeError, ValueError):
            seconds = data.get("cache_ttl")
            if seconds is not None:
                self.cache_ttl = datetime.timedelta(seconds=float(seconds))

        spotify = data.get("spotify") or {}
        if isinstance(spotify, dict):
            self.spotify_client_id = spotify.get("client_id") or None
            self.spotify_redirect_url = spotify.get("redirect_url") or DEFAULT_REDIRECT_URL

        self._apply_environment()

    def _apply_environment(self) -> None:
        if value := self.environ.get("NAD_IP"):
            self.ip = value
        if value := self.environ.get("NAD_PORT"):
            try:
                self.port = int(value)
            except ValueError:
                logging.error("Ignoring invalid NAD_PORT=%s", value)
        if value := self.environ.get("NAD_DEBUG"):
            self.debug = _as_bool(value)
        if value := self.environ.get("SPOTIFY_CLIENT_ID"):
            self.spotify_client_id = value
