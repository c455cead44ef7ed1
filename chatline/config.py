"""
Config loader for chatline.
Reads config.yaml once at startup and layers it over built-in defaults.
All other modules import from here.
${ENV_VAR} references are resolved so the API key can live in the
environment or a .env file rather than in config.yaml.
"""

import copy
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

from chatline.errors import ConfigurationError

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

DEFAULTS: dict = {
    "backend": {
        "url": "https://api.openai.com",
        "model": "gpt-3.5-turbo",
        "api_key": "${OPENAI_API_KEY}",
        "timeout": 120,
    },
    "storage": {
        "path": "~/.chatline/history.db",
        "lock_timeout": 1.0,
    },
    "session": {
        "system_prompt": "You are a helpful assistant.",
        "title_prefix": "suggest me a short title for ",
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}

_config: dict | None = None


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge(base: dict, override: dict) -> dict:
    """Deep-merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def config_path() -> Path:
    """Location of the active config file (CHATLINE_CONFIG wins)."""
    env_path = os.environ.get("CHATLINE_CONFIG")
    return Path(env_path) if env_path else _CONFIG_PATH


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file, falling back to defaults."""
    global _config
    if _config is not None and path is None:
        return _config

    raw: dict = {}
    cfg_path = path or config_path()
    if cfg_path.exists():
        with open(cfg_path) as f:
            raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(_merge(DEFAULTS, raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None


def require_api_key(cfg: dict) -> str:
    """Return the backend API key or raise ConfigurationError if it is unset."""
    api_key = (cfg.get("backend", {}).get("api_key") or "").strip()
    if not api_key:
        raise ConfigurationError(
            "Please set the `OPENAI_API_KEY` environment variable. "
            "You can find your API key at https://platform.openai.com/account/api-keys."
        )
    return api_key


def storage_path(cfg: dict) -> Path:
    """Expanded path of the conversation database."""
    return Path(cfg["storage"]["path"]).expanduser()
