# honeywatch/config.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .models import MonitorConfig

BASE_DIR = Path(os.path.dirname(os.path.dirname(__file__)))

# where cowrie writes when run next to this repo
DEFAULT_LOG_PATH = BASE_DIR / "cowrie" / "log" / "cowrie.json"

# mounted sensor logs in the docker setup
AUTO_DETECT_PATHS: List[Path] = [
    Path("/cowrie-logs/log1/cowrie.json"),
    Path("/cowrie-logs/log2/cowrie.json"),
    Path("/cowrie-logs/log3/cowrie.json"),
]

DEFAULT_POLL_INTERVAL = 1.0

# YAML key -> environment variable
FLAG_ENV_VARS: Dict[str, str] = {
    "containment": "ENABLE_CONTAINMENT",
    "heuristics": "ENABLE_HEURISTICS",
    "active_block": "ENABLE_ACTIVE_BLOCK",
}


class ConfigError(Exception):
    pass


@dataclass
class Settings:
    monitors: List[MonitorConfig] = field(default_factory=list)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    db_path: Optional[str] = None


def env_flag(name: str, env: Optional[Mapping[str, str]] = None,
             default: bool = False) -> bool:
    """Only the string "true" (any case) switches a flag on."""
    env = os.environ if env is None else env
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() == "true"


def resolve_log_paths(env: Optional[Mapping[str, str]] = None,
                      candidates: Optional[List[Path]] = None) -> List[str]:
    """
    COWRIE_LOG_PATHS (comma separated) wins, then any mounted sensor
    logs that exist, then COWRIE_LOG_PATH, then the repo default.
    """
    env = os.environ if env is None else env

    raw = env.get("COWRIE_LOG_PATHS", "")
    paths = [p.strip() for p in raw.split(",") if p.strip()]
    if paths:
        return paths

    if candidates is None:
        candidates = AUTO_DETECT_PATHS
    found = [str(p) for p in candidates if p.exists()]
    if found:
        return found

    return [env.get("COWRIE_LOG_PATH") or str(DEFAULT_LOG_PATH)]


def load_yaml(path) -> Dict[str, Any]:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    # empty file is an empty config
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a mapping")
    return data


def _yaml_bool(data: Dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    raise ConfigError(f"'{key}' must be true or false")


def _monitor_entries(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    monitors = data.get("monitors")
    if monitors is None:
        return []
    if not isinstance(monitors, list):
        raise ConfigError("'monitors' must be a list")

    entries = []
    for i, item in enumerate(monitors):
        if isinstance(item, str):
            item = {"path": item}
        if not isinstance(item, dict) or not item.get("path"):
            raise ConfigError(f"monitor #{i + 1} needs a 'path'")
        entries.append(item)
    return entries


def load_settings(config_file=None,
                  env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Resolve everything once at startup.
    Environment flags that are set override the YAML file.
    """
    env = os.environ if env is None else env

    if config_file is None:
        config_file = env.get("HONEYWATCH_CONFIG") or None
    data = load_yaml(config_file) if config_file else {}

    flags = {}
    for key, var in FLAG_ENV_VARS.items():
        if var in env:
            flags[key] = env_flag(var, env)
        else:
            flags[key] = _yaml_bool(data, key)

    entries = _monitor_entries(data)
    if not entries:
        entries = [{"path": p} for p in resolve_log_paths(env)]

    monitors = []
    for idx, entry in enumerate(entries):
        monitors.append(MonitorConfig(
            log_path=str(entry["path"]),
            honeypot_id=str(entry.get("id") or f"honeypot-{idx + 1}"),
            containment_enabled=flags["containment"],
            heuristics_enabled=flags["heuristics"],
            active_block_enabled=flags["active_block"],
        ))

    try:
        poll_interval = float(data.get("poll_interval", DEFAULT_POLL_INTERVAL))
    except (TypeError, ValueError) as e:
        raise ConfigError("'poll_interval' must be a number") from e
    if poll_interval <= 0:
        raise ConfigError("'poll_interval' must be positive")

    return Settings(
        monitors=monitors,
        poll_interval=poll_interval,
        db_path=data.get("db_path"),
    )
