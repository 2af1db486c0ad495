"""Central configuration helpers for the lock_bridge package."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

LOGGER = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "lock_bridge"
DEFAULT_ENV_FILENAME = ".env"

ENV_ENV_PATH = "LOCK_BRIDGE_ENV_PATH"
ENV_CACHE_DIR = "LOCK_BRIDGE_CACHE_DIR"

DEFAULT_API_BASE_URL = "https://api.tedee.com"
DEFAULT_API_VERSION = "v1.32"
DEFAULT_API_TIMEOUT = 10.0
DEFAULT_MQTT_PORT = 1883
DEFAULT_TOPIC_PREFIX = "lock_bridge"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def resolve_path(path: Union[str, os.PathLike[str]], *, fallback_root: Path | None = None) -> Path:
    """Resolve a potentially relative path against the project root."""
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    base = fallback_root or PROJECT_ROOT
    return (base / candidate).resolve()


def cache_dir() -> Path:
    configured = os.environ.get(ENV_CACHE_DIR)
    if configured:
        return resolve_path(configured)
    return DEFAULT_CACHE_DIR


def ensure_runtime_dirs(*paths: Path) -> None:
    """Create the cache directory and any extra directories passed in."""
    for directory in (cache_dir(), *paths):
        directory.mkdir(parents=True, exist_ok=True)


def load_env_defaults(path: str | os.PathLike[str] | None = None) -> None:
    """Read a .env-style file and populate os.environ without overwriting existing keys."""
    if path:
        target = Path(path).expanduser().resolve()
    elif os.environ.get(ENV_ENV_PATH):
        target = Path(os.environ[ENV_ENV_PATH]).expanduser().resolve()
    else:
        target = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if not target.exists():
        return
    for raw_line in target.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Invalid %s=%s; defaulting to %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Invalid %s=%s; defaulting to %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    LOGGER.warning("Invalid %s=%s; defaulting to %s", name, raw, default)
    return default


@dataclass(frozen=True)
class BridgeSettings:
    api_base_url: str = DEFAULT_API_BASE_URL
    api_version: str = DEFAULT_API_VERSION
    personal_key: Optional[str] = None
    api_timeout: float = DEFAULT_API_TIMEOUT
    credential_path: Path = DEFAULT_CACHE_DIR / "credentials.json"
    mobile_key_path: Path = DEFAULT_CACHE_DIR / "mobile_private.pem"
    keep_connection: bool = True
    session_factory: Optional[str] = None
    mqtt_host: str = "localhost"
    mqtt_port: int = DEFAULT_MQTT_PORT
    topic_prefix: str = DEFAULT_TOPIC_PREFIX


def load_settings(env_path: str | os.PathLike[str] | None = None) -> BridgeSettings:
    """Build settings from the environment after applying .env defaults."""
    load_env_defaults(env_path)
    base_dir = cache_dir()
    credential_path = os.environ.get("LOCK_CREDENTIAL_PATH")
    key_path = os.environ.get("LOCK_MOBILE_KEY_PATH")
    return BridgeSettings(
        api_base_url=os.environ.get("LOCK_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_version=os.environ.get("LOCK_API_VERSION", DEFAULT_API_VERSION),
        personal_key=os.environ.get("LOCK_API_PERSONAL_KEY") or None,
        api_timeout=_env_float("LOCK_API_TIMEOUT", DEFAULT_API_TIMEOUT),
        credential_path=resolve_path(credential_path) if credential_path else base_dir / "credentials.json",
        mobile_key_path=resolve_path(key_path) if key_path else base_dir / "mobile_private.pem",
        keep_connection=_env_bool("LOCK_KEEP_CONNECTION", True),
        session_factory=os.environ.get("LOCK_SESSION_FACTORY") or None,
        mqtt_host=os.environ.get("LOCK_MQTT_HOST", "localhost"),
        mqtt_port=_env_int("LOCK_MQTT_PORT", DEFAULT_MQTT_PORT),
        topic_prefix=os.environ.get("LOCK_MQTT_TOPIC_PREFIX", DEFAULT_TOPIC_PREFIX).rstrip("/"),
    )


__all__ = [
    "BridgeSettings",
    "PACKAGE_DIR",
    "PROJECT_ROOT",
    "cache_dir",
    "ensure_runtime_dirs",
    "load_env_defaults",
    "load_settings",
    "resolve_path",
]
