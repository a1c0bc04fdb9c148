# rfidtrack/config_loader.py
from __future__ import annotations
"""
Unified configuration loader for rfidtrack.

Single source of truth:
    config/config.yaml

Design notes
------------
- If the file is missing or broken, we raise a friendly RuntimeError that
  prints absolute paths for quick fixes.
- Unknown keys are fine; we pass the full dict through untouched.
- Helpers return {} or sensible defaults when sections are absent.
- Credentials live in the environment. Env values win over YAML so the
  same config file can be shipped to every station laptop.
- Missing credentials are NOT a load error; the clients raise
  ConfigurationMissing when they are built without them.

Public API
----------
- CONFIG: dict                              # eager-loaded contents of config/config.yaml
- load_config(path: str|Path|None = None)   # explicit reload (mainly for tests/tools)
- get_record_store_cfg() -> dict
- get_ticketing_cfg() -> dict
- get_http_cfg() -> dict
- get_cache_ttl_s(default: float = 120) -> float
- get_bulk_limit(default: int = 100) -> int
- get_log_level(default: str = "INFO") -> str
- get_server_bind() -> tuple[str, int]
"""

import os
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

# ---------- Files & roots ----------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR   = PROJECT_ROOT / "config"
DEFAULT_CFG  = CONFIG_DIR / "config.yaml"

# env var -> (section, key)
_ENV_OVERRIDES = {
    "AIRTABLE_API_KEY":    ("record_store", "api_key"),
    "AIRTABLE_BASE_ID":    ("record_store", "base_id"),
    "AIRTABLE_RFID_TABLE": ("record_store", "table"),
    "TITO_API_TOKEN":      ("ticketing", "token"),
    "TITO_ACCOUNT_SLUG":   ("ticketing", "account"),
    "TITO_EVENT_SLUG":     ("ticketing", "event"),
}


# ---------- I/O helpers ----------
def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from `path`. Human-friendly errors, strict root type."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise RuntimeError(
            f"Missing configuration file: {path}\n"
            f"Expected a single-file config with 'app:', 'record_store:' and 'ticketing:' sections.\n"
            f"Repo root: {PROJECT_ROOT}"
        )
    except Exception as ex:
        raise RuntimeError(f"Failed to read {path}: {type(ex).__name__}: {ex}")

    try:
        data = yaml.safe_load(text) or {}
    except Exception as ex:
        raise RuntimeError(f"Failed to parse YAML {path}: {type(ex).__name__}: {ex}")

    if not isinstance(data, dict):
        raise RuntimeError(f"Root of {path} must be a mapping/object, not {type(data).__name__}")
    return data


def _resolve_path(p: str | os.PathLike[str]) -> Path:
    """Return absolute path; resolve relative to repo root."""
    pth = Path(p)
    return pth if pth.is_absolute() else (PROJECT_ROOT / pth).resolve()


def _apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for env_key, (section, key) in _ENV_OVERRIDES.items():
        val = os.getenv(env_key, "").strip()
        if not val:
            continue
        block = cfg.get(section)
        if not isinstance(block, dict):
            block = {}
            cfg[section] = block
        block[key] = val
    return cfg


# ---------- Loader ----------
def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """
    Load a single YAML file (default: config/config.yaml), layer credentials
    from the environment on top, and return the dict.
    """
    cfg_path = _resolve_path(path) if path else DEFAULT_CFG
    cfg = _load_yaml(cfg_path)

    app = cfg.get("app", {})
    if app is not None and not isinstance(app, dict):
        raise RuntimeError(f"'app' in {cfg_path} must be a mapping, not {type(app).__name__}")

    return _apply_env(cfg)


# Eagerly load once for the app
CONFIG: Dict[str, Any] = load_config()


# ---------- Accessors ----------
def get_record_store_cfg() -> Dict[str, Any]:
    """Return record_store block (base_url/base_id/table/api_key) or {}."""
    return CONFIG.get("record_store", {}) or {}


def get_ticketing_cfg() -> Dict[str, Any]:
    """Return ticketing block (api_base/account/event/token/checkin_lists) or {}."""
    return CONFIG.get("ticketing", {}) or {}


def get_http_cfg() -> Dict[str, Any]:
    """Return shared HTTP client knobs with defaults filled in."""
    http = CONFIG.get("http", {}) or {}
    return {
        "timeout_s":       float(http.get("timeout_s", 10.0)),
        "retries":         int(http.get("retries", 3)),
        "backoff_start_s": float(http.get("backoff_start_s", 0.25)),
        "backoff_max_s":   float(http.get("backoff_max_s", 4.0)),
    }


def get_cache_ttl_s(default: float = 120.0) -> float:
    ttl = (
        CONFIG.get("app", {})
              .get("engine", {})
              .get("cache", {})
              .get("ttl_s", default)
    )
    try:
        return float(ttl)
    except (TypeError, ValueError):
        return default


def get_bulk_limit(default: int = 100) -> int:
    raw = (
        CONFIG.get("app", {})
              .get("engine", {})
              .get("bulk", {})
              .get("max_epcs", default)
    )
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return default


def get_log_level(default: str = "INFO") -> str:
    """Return log level as 'INFO'/'DEBUG', etc."""
    lvl = (CONFIG.get("log", {}) or {}).get("level", default)
    return str(lvl).upper()


def get_server_bind() -> Tuple[str, int]:
    """
    Return (host, port) for launching uvicorn from code.
    Falls back to ('127.0.0.1', 8000) when app.server is absent or malformed.
    """
    server = (CONFIG.get("app", {})
                    .get("server", {})) or {}
    host = server.get("host")
    port = server.get("port")
    if isinstance(host, str) and isinstance(port, int):
        return host, port
    return "127.0.0.1", 8000
# ---------- End of config_loader.py ----------
