"""
Service configuration.

Defaults are overlaid by `config/params.yaml` (when present) and then by
environment variables:

  TILE_DIR               tiles.dir
  TILE_LOADER_WORKERS    tiles.max_workers
  HOST_URL               server.host_url
  SERVER_HOST            server.host
  SERVER_PORT            server.port
  CORS_ALLOWED_ORIGINS   cors.allowed_origins (comma separated)
  LOG_LEVEL              logging.level
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import yaml

DEFAULT_CONFIG_PATH = "config/params.yaml"

_DEFAULTS: Dict[str, Any] = {
    "tiles": {"dir": "./tilesets", "max_workers": 8},
    "server": {"host": "0.0.0.0", "port": 8080, "host_url": None},
    "cors": {"allowed_origins": []},
    "logging": {"level": "INFO"},
}


class ConfigError(ValueError):
    """Raised for configuration values that cannot be used."""


@dataclass(frozen=True)
class Settings:
    tile_dir: Path
    max_workers: int
    host: str
    port: int
    host_url: Optional[str]
    cors_origins: Tuple[str, ...]
    log_level: str


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _check_http_url(value: str, what: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https"):
        raise ConfigError(f"invalid URL scheme {parts.scheme!r} in {what} {value!r}")
    if not parts.netloc:
        raise ConfigError(f"{what} {value!r} has no host")
    return value


def parse_cors_origins(origins: Any) -> Tuple[str, ...]:
    """
    Accept a comma separated string or a list; every origin must be an
    absolute http(s) URL.
    """
    if origins is None:
        return ()
    if isinstance(origins, str):
        origins = origins.split(",")
    out = []
    for origin in origins:
        origin = str(origin).strip()
        if origin:
            out.append(_check_http_url(origin, "origin"))
    return tuple(out)


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {}

    def put(section: str, key: str, value: Any) -> None:
        cfg.setdefault(section, {})[key] = value

    if env.get("TILE_DIR"):
        put("tiles", "dir", env["TILE_DIR"])
    if env.get("TILE_LOADER_WORKERS"):
        put("tiles", "max_workers", env["TILE_LOADER_WORKERS"])
    if env.get("HOST_URL"):
        put("server", "host_url", env["HOST_URL"])
    if env.get("SERVER_HOST"):
        put("server", "host", env["SERVER_HOST"])
    if env.get("SERVER_PORT"):
        put("server", "port", env["SERVER_PORT"])
    if "CORS_ALLOWED_ORIGINS" in env:
        put("cors", "allowed_origins", env["CORS_ALLOWED_ORIGINS"])
    if env.get("LOG_LEVEL"):
        put("logging", "level", env["LOG_LEVEL"])
    return cfg


def _as_int(value: Any, what: str, minimum: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{what} must be an integer, got {value!r}") from e
    if n < minimum:
        raise ConfigError(f"{what} must be >= {minimum}, got {n}")
    return n


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    path = path or DEFAULT_CONFIG_PATH
    env = os.environ if env is None else env

    raw = copy.deepcopy(_DEFAULTS)
    if Path(path).exists():
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, Mapping):
            raise ConfigError(f"{path}: top level must be a mapping")
        raw = _merge(raw, loaded)
    raw = _merge(raw, _env_overrides(env))

    host_url = raw["server"].get("host_url") or None
    if host_url is not None:
        host_url = _check_http_url(str(host_url), "HOST_URL").rstrip("/")

    return Settings(
        tile_dir=Path(raw["tiles"]["dir"]),
        max_workers=_as_int(raw["tiles"]["max_workers"], "tiles.max_workers", 1),
        host=str(raw["server"]["host"]),
        port=_as_int(raw["server"]["port"], "server.port", 0),
        host_url=host_url,
        cors_origins=parse_cors_origins(raw["cors"].get("allowed_origins")),
        log_level=str(raw["logging"]["level"]).upper(),
    )
