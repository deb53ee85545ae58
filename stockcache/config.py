"""
Central configuration loader for the stockcache caching layer.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``STOCKCACHE_`` prefix), and exposes a typed :class:`Settings`
singleton via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from stockcache.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # stockcache/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    version: str = "2.0.0"


@dataclass
class CacheSettings:
    key_prefix: str = "cache:"
    l1_max_entries: int = 1000
    l1_ttl_seconds: int = 300
    l2_max_entries: int = 10000
    l2_ttl_seconds: int = 3600
    cleanup_interval_seconds: int = 300
    scan_batch_size: int = 100
    availability_check_seconds: float = 1.0


@dataclass
class RedisSettings:
    url: str = ""
    key_prefix: str = "stockcache:l2"
    health_check_interval_seconds: int = 30


@dataclass
class WarmerSettings:
    enabled: bool = True
    interval_seconds: int = 600
    # "package.module:ATTRIBUTE" naming a mapping of hot key to fetcher
    fetchers: str = ""
    hot_keys: List[str] = field(default_factory=lambda: [
        "brands:list",
        "stores:list",
        "products:featured",
        "analytics:summary",
    ])


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "json"


@dataclass
class Settings:
    """Top-level settings container."""
    api: ApiSettings = field(default_factory=ApiSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)
    warmer: WarmerSettings = field(default_factory=WarmerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _apply_dict(target: object, data: Dict[str, Any]) -> None:
    """Apply *data* values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if not hasattr(target, key):
            continue
        setattr(target, key, value)


# ---------------------------------------------------------------------------
# Env-var overrides  (STOCKCACHE_SECTION_KEY  e.g. STOCKCACHE_CACHE_L1_MAX_ENTRIES)
# ---------------------------------------------------------------------------

_SECTIONS = ["api", "cache", "redis", "warmer", "logging"]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
    list: lambda v: [item.strip() for item in v.split(",") if item.strip()],
}


def _apply_env_overrides(settings: Settings) -> None:
    """Override scalar and list fields via ``STOCKCACHE_<SECTION>_<KEY>`` env vars."""
    for section_name in _SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"STOCKCACHE_{section_name.upper()}_"
        for key in list(vars(section)):
            env_key = prefix + key.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, key)
            cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, key, cast(env_val))
                logger.debug("Env override applied: %s=%s", env_key, env_val)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


def _validate(settings: Settings) -> None:
    """Reject settings the cache cannot run with.

    Raises:
        ConfigurationError: If a capacity, TTL, or interval is not positive.
    """
    cache = settings.cache
    positive = {
        "cache.l1_max_entries": cache.l1_max_entries,
        "cache.l1_ttl_seconds": cache.l1_ttl_seconds,
        "cache.l2_max_entries": cache.l2_max_entries,
        "cache.l2_ttl_seconds": cache.l2_ttl_seconds,
        "cache.cleanup_interval_seconds": cache.cleanup_interval_seconds,
        "cache.scan_batch_size": cache.scan_batch_size,
        "redis.health_check_interval_seconds": settings.redis.health_check_interval_seconds,
        "warmer.interval_seconds": settings.warmer.interval_seconds,
    }
    for name, value in positive.items():
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"{name} must be a positive number, got {value!r}")


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the application-wide :class:`Settings` singleton.

    On first call (or when ``_force_reload=True``) the function:

    1. Calls ``load_dotenv()`` to populate env vars from ``.env``.
    2. Reads ``config/config.yaml``.
    3. Applies ``STOCKCACHE_*`` environment-variable overrides.
    4. Falls back to ``REDIS_URL`` when no Redis URL was configured.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.

    Raises:
        ConfigurationError: If the merged settings are invalid.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings

        # 1. Load .env
        dotenv_path = env_path or _project_path(".env")
        load_dotenv(dotenv_path, override=True)

        # 2. Read YAML
        config_path = yaml_path or _project_path("config", "config.yaml")
        raw = _load_yaml(config_path)

        # 3. Build Settings with defaults, then overlay YAML values
        settings = Settings()
        for section_name in _SECTIONS:
            section_data = raw.get(section_name)
            if isinstance(section_data, dict):
                _apply_dict(getattr(settings, section_name), section_data)

        # 4. Apply STOCKCACHE_* env-var overrides
        _apply_env_overrides(settings)

        if not settings.redis.url:
            settings.redis.url = os.environ.get("REDIS_URL", "")

        _validate(settings)

        _settings = settings
        logger.info("Settings loaded from %s", config_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None
