from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import sys
from urllib.parse import urlparse


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class ClientSettings:
    base_url: str
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 15.0
    retry_attempts: int = 3
    retry_delay_ms: int = 500
    realtime_reconnect_base_ms: int = 200
    realtime_reconnect_max_ms: int = 5000
    realtime_max_reconnect_attempts: int = 0
    cache_max_size: int = 256
    cache_ttl_seconds: float = 300.0
    token_cache_path: str = ""
    log_level: str = "INFO"

    @staticmethod
    def defaults(base_url: str) -> "ClientSettings":
        settings = ClientSettings(
            base_url=base_url.strip().rstrip("/"),
            token_cache_path=_default_token_cache_path(),
        )
        settings.validate()
        return settings

    @staticmethod
    def from_env() -> "ClientSettings":
        _load_dotenv_if_present()

        base_url = os.getenv("PB_BASE_URL", "").strip().rstrip("/")

        timeout_seconds = float(os.getenv("PB_TIMEOUT_SECONDS", "30"))
        connect_timeout_seconds = float(os.getenv("PB_CONNECT_TIMEOUT_SECONDS", "15"))
        retry_attempts = int(os.getenv("PB_RETRY_ATTEMPTS", "3"))
        retry_delay_ms = int(os.getenv("PB_RETRY_DELAY_MS", "500"))

        reconnect_base_ms = int(os.getenv("PB_REALTIME_RECONNECT_BASE_MS", "200"))
        reconnect_max_ms = int(os.getenv("PB_REALTIME_RECONNECT_MAX_MS", "5000"))
        max_reconnect_attempts = int(os.getenv("PB_REALTIME_MAX_RECONNECT_ATTEMPTS", "0"))

        cache_max_size = int(os.getenv("PB_CACHE_MAX_SIZE", "256"))
        cache_ttl_seconds = float(os.getenv("PB_CACHE_TTL_SECONDS", "300"))

        token_cache_path = os.getenv("PB_TOKEN_CACHE_PATH", "").strip() or _default_token_cache_path()
        log_level = os.getenv("PB_LOG_LEVEL", "INFO").strip().upper()

        settings = ClientSettings(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            retry_attempts=retry_attempts,
            retry_delay_ms=retry_delay_ms,
            realtime_reconnect_base_ms=reconnect_base_ms,
            realtime_reconnect_max_ms=reconnect_max_ms,
            realtime_max_reconnect_attempts=max_reconnect_attempts,
            cache_max_size=cache_max_size,
            cache_ttl_seconds=cache_ttl_seconds,
            token_cache_path=token_cache_path,
            log_level=log_level,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.base_url:
            raise ConfigurationError("Missing required settings: PB_BASE_URL")

        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError("PB_BASE_URL must be an absolute http(s) URL")

        if self.timeout_seconds <= 0:
            raise ConfigurationError("PB_TIMEOUT_SECONDS must be greater than 0")

        if self.connect_timeout_seconds <= 0:
            raise ConfigurationError("PB_CONNECT_TIMEOUT_SECONDS must be greater than 0")

        if self.retry_attempts < 0:
            raise ConfigurationError("PB_RETRY_ATTEMPTS must be 0 or greater")

        if self.retry_delay_ms < 0:
            raise ConfigurationError("PB_RETRY_DELAY_MS must be 0 or greater")

        if self.realtime_reconnect_base_ms <= 0:
            raise ConfigurationError("PB_REALTIME_RECONNECT_BASE_MS must be greater than 0")

        if self.realtime_reconnect_max_ms < self.realtime_reconnect_base_ms:
            raise ConfigurationError(
                "PB_REALTIME_RECONNECT_MAX_MS must not be lower than PB_REALTIME_RECONNECT_BASE_MS"
            )

        if self.realtime_max_reconnect_attempts < 0:
            raise ConfigurationError("PB_REALTIME_MAX_RECONNECT_ATTEMPTS must be 0 or greater")

        if self.cache_max_size <= 0:
            raise ConfigurationError("PB_CACHE_MAX_SIZE must be greater than 0")

        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("PB_CACHE_TTL_SECONDS must be greater than 0")

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level not in valid_levels:
            raise ConfigurationError(
                "PB_LOG_LEVEL must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
            )


def _default_token_cache_path() -> str:
    return os.path.join(
        os.getenv("LOCALAPPDATA", os.getcwd()),
        "PocketBaseClient",
        "auth_token.bin",
    )


def _load_dotenv_if_present(file_name: str = ".env") -> None:
    for candidate in _candidate_env_files(file_name):
        _load_env_file(candidate)


def _candidate_env_files(file_name: str) -> list[Path]:
    candidates: list[Path] = []

    explicit = os.getenv("PB_ENV_FILE", "").strip()
    if explicit:
        candidates.append(Path(explicit).expanduser())

    candidates.append(Path.cwd() / file_name)

    if getattr(sys, "frozen", False):
        exe_dir = Path(sys.executable).resolve().parent
        candidates.append(exe_dir / file_name)
    else:
        project_root = Path(__file__).resolve().parent.parent
        candidates.append(project_root / file_name)

    unique_candidates: list[Path] = []
    seen: set[str] = set()
    for path in candidates:
        normalized = str(path.resolve()) if path.exists() else str(path)
        if normalized in seen:
            continue
        seen.add(normalized)
        unique_candidates.append(path)
    return unique_candidates


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return

    try:
        with path.open("r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")

                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError:
        return
