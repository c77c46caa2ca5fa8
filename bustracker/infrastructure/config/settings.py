"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclass for safety and clarity
- Single source of truth for all configurable values

EXTENSIBILITY:
- To point at another document store: add a RemoteStoreSettings variant
- To switch LLM provider: change api_url/model (any OpenAI-compatible API)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present (development convenience)
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


@dataclass(frozen=True)
class LLMSettings:
    """OpenRouter settings for the inference service."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    api_url: str = field(
        default_factory=lambda: os.getenv(
            "LLM_API_URL", "https://openrouter.ai/api/v1/chat/completions"
        )
    )

    model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "google/gemini-2.5-flash")
    )

    # Deterministic classification, a little variety for delay reasons
    sentiment_temperature: float = 0.0
    delay_temperature: float = 0.7
    chat_temperature: float = 0.4

    delay_max_tokens: int = 50
    timeout_seconds: int = 15


@dataclass(frozen=True)
class RemoteStoreSettings:
    """Firestore (REST) settings for the remote document store."""

    project_id: str = field(default_factory=lambda: os.getenv("FIRESTORE_PROJECT_ID", ""))
    api_key: str = field(default_factory=lambda: os.getenv("FIRESTORE_API_KEY", ""))
    database: str = field(
        default_factory=lambda: os.getenv("FIRESTORE_DATABASE", "(default)")
    )
    base_url: str = "https://firestore.googleapis.com/v1"
    timeout_seconds: int = 10

    @property
    def enabled(self) -> bool:
        return bool(self.project_id)


@dataclass(frozen=True)
class CacheSettings:
    """Local cache (SQLite) settings."""

    db_file: Path = field(
        default_factory=lambda: Path(os.getenv("CACHE_DB_FILE", "bustracker.db"))
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from bustracker.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.llm.api_key)
    """

    # Sub-settings groups
    llm: LLMSettings = field(default_factory=LLMSettings)
    remote: RemoteStoreSettings = field(default_factory=RemoteStoreSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)

    # Artificial latency applied to data access calls (milliseconds)
    simulated_latency_ms: int = field(
        default_factory=lambda: _env_int("SIMULATED_LATENCY_MS", 0)
    )

    # How sentiment is packed into the remote review text: "delimited" or "json"
    review_encoding: str = field(
        default_factory=lambda: os.getenv("REVIEW_ENCODING", "delimited").strip().lower()
    )

    # Ids longer than this were issued by the identity provider, not seeded locally
    server_id_min_length: int = 10

    # Auth
    min_password_length: int = 6
    max_login_attempts: int = field(
        default_factory=lambda: _env_int("MAX_LOGIN_ATTEMPTS", 5)
    )
    login_lockout_seconds: int = field(
        default_factory=lambda: _env_int("LOGIN_LOCKOUT_SECONDS", 300)
    )
    password_reset_ttl_seconds: int = field(
        default_factory=lambda: _env_int("PASSWORD_RESET_TTL_SECONDS", 3600)
    )

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.llm.api_key:
            issues.append(
                "WARNING: OPENROUTER_API_KEY not set. "
                "Sentiment will default to Neutral and chat/delay prediction will use fallbacks."
            )

        if not self.remote.enabled:
            issues.append(
                "WARNING: FIRESTORE_PROJECT_ID not set. "
                "Using an in-memory remote store; data is not shared across devices."
            )

        if self.review_encoding not in ("delimited", "json"):
            issues.append(
                f"WARNING: Unknown REVIEW_ENCODING '{self.review_encoding}'. "
                "Falling back to 'delimited'."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
