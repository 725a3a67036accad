"""Load settings from config/settings.yaml and the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from resurev.log import get_logger

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
SETTINGS_PATH: Path = CONFIG_DIR / "settings.yaml"
DATA_DIR: Path = ROOT_DIR / "data"

# Environment variable → Settings attribute
_ENV_MAP: dict[str, str] = {
    "RESUREV_DATA_DIR": "data_dir",
    "RESUREV_KV_BACKEND": "kv_backend",
    "RESUREV_KV_URL": "kv_url",
    "RESUREV_PAGE_SIZE": "page_size",
    "RESUREV_SCAN_LIMIT": "scan_limit",
    "RESUREV_PENDING_TTL": "pending_ttl",
    "RESUREV_READY_TIMEOUT": "ready_timeout",
    "RESUREV_READY_INTERVAL": "ready_interval",
    "RESUREV_SYNC_INTERVAL": "sync_interval",
    "RESUREV_SYNC_CHANNEL": "sync_channel",
    "GROQ_API_KEY": "ai_api_key",
    "GROQ_LLM_MODEL": "ai_model",
    "RESUREV_AI_BASE_URL": "ai_base_url",
}


@dataclass
class Settings:
    data_dir: Path = DATA_DIR
    kv_backend: str = "file"
    kv_url: str = ""
    page_size: int = 10
    scan_limit: int = 500
    pending_ttl: float = 300.0
    ready_timeout: float = 10.0
    ready_interval: float = 0.1
    sync_interval: float = 2.0
    sync_channel: str = "resurev"
    ai_api_key: str = ""
    ai_model: str = "llama-3.3-70b-versatile"
    ai_base_url: str = "https://api.groq.com/openai/v1"
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def kv_path(self) -> Path:
        return Path(self.data_dir) / "kv.json"

    @property
    def blob_dir(self) -> Path:
        return Path(self.data_dir) / "blobs"


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the type of the Settings default."""
    default = getattr(Settings, name, None)
    if name == "data_dir":
        return Path(value).expanduser()
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value).strip()


def load_settings(path: Path | None = None, env: dict[str, str] | None = None) -> Settings:
    """Build Settings from YAML (if present) with environment overrides."""
    path = path or SETTINGS_PATH
    env = os.environ if env is None else env
    values: dict[str, Any] = {}
    known = {f.name for f in fields(Settings)}

    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key in known and key != "extra":
                values[key] = _coerce(key, value)
            else:
                extra[key] = value
        if extra:
            log.debug("Ignoring unknown settings keys: %s", ", ".join(sorted(extra)))
            values["extra"] = extra

    for env_key, attr in _ENV_MAP.items():
        raw = env.get(env_key, "").strip()
        if raw:
            try:
                values[attr] = _coerce(attr, raw)
            except ValueError:
                log.warning("Invalid value for %s (%r), keeping default", env_key, raw)

    settings = Settings(**values)
    if settings.page_size < 1:
        log.warning("page_size must be >= 1, got %d; using 10", settings.page_size)
        settings.page_size = 10
    return settings


def ensure_dirs(settings: Settings) -> None:
    for d in (Path(settings.data_dir), settings.blob_dir):
        d.mkdir(parents=True, exist_ok=True)
