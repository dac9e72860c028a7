"""
core/config.py -- MissionGuard settings, read once from the environment.

Every tunable (database URL, identity secrets, API key limits, rate-limit
window and sweep timings) is a field on Settings. Modules import
get_settings() and never read os.environ themselves.

get_settings() is wrapped in lru_cache, so the first call builds Settings and
later calls share it. pydantic-settings maps each field to the upper-cased env
var of the same name (database_url -> DATABASE_URL) and also reads a local
.env file when present.

SECRET_KEY policy (enforced by validate_secret_key):
  [M6] Fewer than 32 characters is a startup error. It keys both the identity
       JWT signature and the API key HMAC.
  [M7] Missing outside DEBUG is a startup error, because a per-process random
       key would orphan every stored API key hash on restart. With DEBUG=true
       a random key is generated and a warning logged.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
access/, quota/, ratelimit/, or resources/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("missionguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"


class Settings(BaseSettings):
    """Environment-backed settings. Every field has a default, so tests can build
    Settings() with no .env file; only SECRET_KEY is policed at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:5275", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    # Shared secret the Authentik proxy sends in X-Authentik-Proxy-Secret.
    # Empty means proxy headers are never trusted.
    authentik_proxy_secret: str = ""
    token_expire_seconds: int = 3600

    # Peers (IPs or CIDR networks) whose X-Forwarded-For header is believed.
    # Defaults cover loopback, link-local, and private ranges, where a reverse
    # proxy normally sits. Set to [] when the app is exposed directly.
    trusted_proxies: list[str] = [
        "127.0.0.0/8",
        "::1/128",
        "169.254.0.0/16",
        "fe80::/10",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "fc00::/7",
    ]

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    max_api_keys_per_user: int = 10
    api_key_create_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Per-user rate limiting
    # ------------------------------------------------------------------

    rate_limit_window_seconds: int = 60
    default_api_rate_limit: int = 60
    rate_limit_sweep_interval_seconds: int = 60
    # Durable window rows older than this are purged by the sweep loop.
    rate_limit_retention_seconds: int = 3600

    # Threads used for fire-and-forget counter persistence.
    background_workers: int = 2

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Stored API key hashes will not survive restart -- acceptable for
            local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "API keys and tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
