"""Settings and the small on-disk config file.

Resolution order for every setting: command-line flag > real environment
variable > project .env file > user config file > built-in default.
The config file (~/.config/kanbin/config.json) remembers the server URL and
the last board opened so `kanbin open` can be run without a key.
"""
from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

log = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://api.kanbin.app/api"
CONFIG_FILE = Path(os.environ.get('KANBIN_CONFIG') or Path.home() / '.config' / 'kanbin' / 'config.json')
ENV_FILE = Path(__file__).resolve().parent.parent / '.env'

ENV_KEYS = {
    'server_url': 'KANBIN_URL',
    'timeout': 'KANBIN_TIMEOUT',
    'poll_interval': 'KANBIN_POLL_INTERVAL',
    'stale_time': 'KANBIN_STALE_TIME',
    'log_level': 'KANBIN_LOG_LEVEL',
}


@dataclass(frozen=True)
class Settings:
    server_url: str = DEFAULT_SERVER_URL
    timeout: float = 10.0
    poll_interval: float = 10.0
    stale_time: float = 5.0
    idle_horizon: float = 300.0
    log_level: str = "WARNING"


class ConfigStore:
    """JSON persistence for user preferences (server URL, last board key)."""

    def __init__(self, path: Path = CONFIG_FILE):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            log.warning('ignoring unreadable config file %s: %s', self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(dict(data), f, indent=4)

    def update(self, **values: Any) -> Dict[str, Any]:
        data = self.load()
        data.update({k: v for k, v in values.items() if v is not None})
        self.save(data)
        return data


def read_env_file(path: Path = ENV_FILE) -> Dict[str, str]:
    """Parse KEY=VALUE lines; blank lines and # comments are skipped."""
    values: Dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        k, v = line.split('=', 1)
        values[k.strip()] = v.strip().strip('"').strip("'")
    return values


def load_settings(server_url: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                  env_file: Path = ENV_FILE, store: Optional[ConfigStore] = None) -> Settings:
    env = os.environ if env is None else env
    file_env = read_env_file(env_file)
    stored = (store or ConfigStore()).load()
    defaults = Settings()

    def pick(name: str) -> Any:
        env_key = ENV_KEYS.get(name)
        if env_key and env.get(env_key):
            return env[env_key]
        if env_key and file_env.get(env_key):
            return file_env[env_key]
        if stored.get(name) is not None:
            return stored[name]
        return getattr(defaults, name)

    def number(name: str) -> float:
        raw = pick(name)
        try:
            return float(raw)
        except (TypeError, ValueError):
            log.warning('invalid %s=%r, using %s', name, raw, getattr(defaults, name))
            return getattr(defaults, name)

    return Settings(
        server_url=str(server_url or pick('server_url')).rstrip('/'),
        timeout=number('timeout'),
        poll_interval=number('poll_interval'),
        stale_time=number('stale_time'),
        idle_horizon=number('idle_horizon'),
        log_level=str(pick('log_level')).upper(),
    )
