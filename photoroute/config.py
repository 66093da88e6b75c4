"""
Central configuration loader for PhotoRoute.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``PHOTOROUTE_`` prefix), and exposes a typed :class:`Settings`
singleton via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # photoroute/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class RoutingSettings:
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    max_retry_after_seconds: float = 30.0
    validation_ttl_seconds: int = 300
    default_quality: str = "standard"


@dataclass
class CreditSettings:
    free_budget: int = 50
    free_premium: int = 5
    pro_budget: int = 500
    pro_premium: int = 300


@dataclass
class CacheSettings:
    ttl_seconds: int = 7 * 24 * 3600
    max_entries: int = 50
    max_bytes: int = 100 * 1024 * 1024
    thumbnail_size: int = 256


@dataclass
class ProviderEndpoint:
    base_url: str = ""
    api_key_env: str = ""
    model: str = ""
    timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 10.0


@dataclass
class ProviderSettings:
    clipdrop: ProviderEndpoint = field(default_factory=lambda: ProviderEndpoint(
        base_url="https://clipdrop-api.co",
        api_key_env="CLIPDROP_API_KEY",
        timeout_seconds=30.0,
    ))
    fal_flux: ProviderEndpoint = field(default_factory=lambda: ProviderEndpoint(
        base_url="https://fal.run/fal-ai",
        api_key_env="FAL_API_KEY",
        timeout_seconds=45.0,
    ))
    openai: ProviderEndpoint = field(default_factory=lambda: ProviderEndpoint(
        base_url="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        model="dall-e-2",
        timeout_seconds=60.0,
    ))
    gemini: ProviderEndpoint = field(default_factory=lambda: ProviderEndpoint(
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key_env="GEMINI_API_KEY",
        model="gemini-2.0-flash-exp",
        timeout_seconds=30.0,
    ))


@dataclass
class TrackingSettings:
    log_dir: str = "data/logs"


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass
class Settings:
    """Top-level settings container."""
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    credits: CreditSettings = field(default_factory=CreditSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    tracking: TrackingSettings = field(default_factory=TrackingSettings)
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
    """Recursively apply *data* values onto a dataclass instance."""
    for key, value in data.items():
        if not hasattr(target, key):
            continue
        current = getattr(target, key)
        if is_dataclass(current) and isinstance(value, dict):
            _apply_dict(current, value)
        else:
            setattr(target, key, value)


# ---------------------------------------------------------------------------
# Env-var overrides  (PHOTOROUTE_SECTION_KEY  e.g. PHOTOROUTE_CACHE_TTL_SECONDS)
# ---------------------------------------------------------------------------

_FLAT_SECTIONS = ["routing", "credits", "cache", "tracking", "logging"]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
}


def _apply_env_overrides(settings: Settings) -> None:
    """Override flat scalar fields via ``PHOTOROUTE_<SECTION>_<KEY>`` env vars."""
    for section_name in _FLAT_SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"PHOTOROUTE_{section_name.upper()}_"
        for f in fields(section):
            env_key = prefix + f.name.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, f.name)
            cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, f.name, cast(env_val))
                logger.debug("Env override applied: %s=%s", env_key, env_val)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


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
    3. Applies ``PHOTOROUTE_*`` environment-variable overrides.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings

        dotenv_path = env_path or _project_path(".env")
        load_dotenv(dotenv_path, override=True)

        config_path = yaml_path or _project_path("config", "config.yaml")
        raw = _load_yaml(config_path)

        settings = Settings()
        for f in fields(settings):
            section_data = raw.get(f.name)
            if isinstance(section_data, dict):
                _apply_dict(getattr(settings, f.name), section_data)

        _apply_env_overrides(settings)

        _settings = settings
        logger.info("Settings loaded from %s", config_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None
