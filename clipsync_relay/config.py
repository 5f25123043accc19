from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import find_dotenv, load_dotenv

from clipsync_relay.database.redis_manager import RedisManager


def load_env(env_path: Optional[Path] = None) -> None:
    # Existing environment variables win over the .env file.
    if env_path is not None:
        load_dotenv(env_path, override=False)
    else:
        load_dotenv(find_dotenv(usecwd=True), override=False)


def _to_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _to_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False
    key_prefix: str = "clipsync"

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "RedisConfig":
        load_env(env_path)

        key_prefix = os.getenv("REDIS_KEY_PREFIX", cls.key_prefix)

        uri = os.getenv("REDIS_URI")
        if uri:
            return cls.from_uri(uri, key_prefix=key_prefix)

        host = os.getenv("REDIS_HOST", cls.host)
        password = os.getenv("REDIS_PASSWORD") or None
        port = _to_int(os.getenv("REDIS_PORT"), cls.port)
        db = _to_int(os.getenv("REDIS_DB"), cls.db)
        ssl = _to_bool(os.getenv("REDIS_SSL"), default=False)

        return cls(host=host, port=port, db=db, password=password, ssl=ssl, key_prefix=key_prefix)

    @classmethod
    def from_uri(cls, uri: str, *, key_prefix: Optional[str] = None) -> "RedisConfig":
        parsed = urlparse(uri)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ValueError(
                f"Unsupported Redis URI scheme: {parsed.scheme!r}")

        host = parsed.hostname or cls.host
        port = parsed.port or cls.port
        password = parsed.password or None
        db_fragment = parsed.path.lstrip("/")
        db = int(db_fragment) if db_fragment else cls.db

        return cls(
            host=host,
            port=port,
            db=db,
            password=password,
            ssl=parsed.scheme == "rediss",
            key_prefix=key_prefix if key_prefix is not None else cls.key_prefix,
        )

    def create_manager(self) -> RedisManager:
        return RedisManager(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            ssl=self.ssl,
            key_prefix=self.key_prefix,
        )


@dataclass(frozen=True)
class RelayConfig:
    history_default_limit: int = 50
    history_max_limit: int = 500
    max_content_bytes: int = 1_048_576  # 1 MiB document ceiling
    live_poll_interval: float = 0.5  # seconds between live query evaluations
    api_host: str = "0.0.0.0"
    api_port: int = 3001

    @property
    def max_request_bytes(self) -> int:
        # JSON escaping grows content at most sixfold (\u00XX), plus the other arguments
        return 6 * self.max_content_bytes + 65_536

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "RelayConfig":
        load_env(env_path)

        max_limit = max(1, _to_int(os.getenv("HISTORY_MAX_LIMIT"), cls.history_max_limit))
        default_limit = _to_int(os.getenv("HISTORY_DEFAULT_LIMIT"), cls.history_default_limit)

        return cls(
            history_default_limit=max(1, min(default_limit, max_limit)),
            history_max_limit=max_limit,
            max_content_bytes=max(1, _to_int(os.getenv("MAX_CONTENT_BYTES"), cls.max_content_bytes)),
            live_poll_interval=max(0.05, _to_float(os.getenv("LIVE_POLL_INTERVAL"), cls.live_poll_interval)),
            api_host=os.getenv("API_HOST", cls.api_host),
            api_port=_to_int(os.getenv("API_PORT"), cls.api_port),
        )
