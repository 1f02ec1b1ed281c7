from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
KdfAlgorithm = Literal["pbkdf2-sha256", "argon2id"]

# PBKDF2 floor; deployments may only tune upward.
MIN_KDF_ITERATIONS = 100_000


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: str) -> int:
    raw = _getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    kdf_algorithm: KdfAlgorithm
    kdf_iterations: int
    ipfs_api_url: str | None
    ipfs_gateway_url: str
    batch_max_size: int
    verification_cache_ttl: int
    token_public_key: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    kdf_raw = _getenv("KDF_ALGORITHM", "pbkdf2-sha256").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if kdf_raw not in ("pbkdf2-sha256", "argon2id"):
        raise ValueError(
            f"KDF_ALGORITHM must be pbkdf2-sha256|argon2id (got {kdf_raw!r})"
        )

    port = _getenv_int("PORT", "8000")
    kdf_iterations = _getenv_int("KDF_ITERATIONS", str(MIN_KDF_ITERATIONS))
    if kdf_iterations < MIN_KDF_ITERATIONS:
        raise ValueError(
            f"KDF_ITERATIONS must be >= {MIN_KDF_ITERATIONS} (got {kdf_iterations})"
        )

    batch_max_size = _getenv_int("BATCH_MAX_SIZE", "100")
    if batch_max_size < 1:
        raise ValueError(f"BATCH_MAX_SIZE must be positive (got {batch_max_size})")

    cache_ttl = _getenv_int("VERIFICATION_CACHE_TTL", "300")
    if cache_ttl < 0:
        raise ValueError(f"VERIFICATION_CACHE_TTL must be >= 0 (got {cache_ttl})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        kdf_algorithm=kdf_raw,
        kdf_iterations=kdf_iterations,
        ipfs_api_url=_getenv("IPFS_API_URL", "") or None,
        ipfs_gateway_url=_getenv("IPFS_GATEWAY_URL", "https://ipfs.io/ipfs/"),
        batch_max_size=batch_max_size,
        verification_cache_ttl=cache_ttl,
        token_public_key=os.environ.get("TOKEN_PUBLIC_KEY") or None,
    )


SETTINGS = load_settings()
