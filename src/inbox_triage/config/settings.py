from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from inbox_triage.errors import ConfigError

# Project root (independent of current working directory).
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def resolve_dir(env_key: str, default: str) -> Path:
    """
    Resolve a directory path from ENV.
    Relative paths are resolved against PROJECT_ROOT.
    """
    value = os.getenv(env_key, default)
    path = Path(value)

    if not path.is_absolute():
        path = PROJECT_ROOT / path

    path.mkdir(parents=True, exist_ok=True)
    return path


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc


def _required(key: str) -> str:
    value = os.getenv(key, "").strip()
    if not value:
        raise ConfigError(f"{key} is required")
    return value


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    google_cloud_project: str
    secrets_dir: Path
    database_path: Path
    model_name: str = "gpt-4o-mini"
    pubsub_topic: str = "gmail-topic"
    pubsub_verification_token: Optional[str] = None
    # Set to receive notifications by streaming pull instead of push.
    subscription_id: Optional[str] = None
    num_workers: int = 5
    queue_capacity: int = 100
    throttle_seconds: float = 0.2
    initial_emails_to_fetch: int = 20
    history_attempts: int = 5
    history_backoff_seconds: float = 0.08
    cursor_cache_size: int = 10_000
    log_level: str = "INFO"

    @property
    def topic_name(self) -> str:
        return f"projects/{self.google_cloud_project}/topics/{self.pubsub_topic}"

    @property
    def subscription_path(self) -> Optional[str]:
        if not self.subscription_id:
            return None
        return f"projects/{self.google_cloud_project}/subscriptions/{self.subscription_id}"

    @property
    def credentials_path(self) -> Path:
        return self.secrets_dir / "credentials.json"

    @property
    def token_path(self) -> Path:
        return self.secrets_dir / "gmail_token.json"


def load_settings() -> Settings:
    """Read settings from the environment (and .env, if present)."""
    load_dotenv()

    secrets_dir = resolve_dir("INBOX_TRIAGE_SECRETS_DIR", "secrets")
    state_dir = resolve_dir("INBOX_TRIAGE_STATE_DIR", ".state")

    database_path = Path(os.getenv("DATABASE_PATH") or state_dir / "mailai.db")
    if not database_path.is_absolute():
        database_path = PROJECT_ROOT / database_path

    settings = Settings(
        openai_api_key=_required("OPENAI_API_KEY"),
        google_cloud_project=_required("GOOGLE_CLOUD_PROJECT"),
        secrets_dir=secrets_dir,
        database_path=database_path,
        model_name=os.getenv("MODEL_NAME") or "gpt-4o-mini",
        pubsub_topic=os.getenv("PUBSUB_TOPIC") or "gmail-topic",
        pubsub_verification_token=os.getenv("PUBSUB_VERIFICATION_TOKEN") or None,
        subscription_id=os.getenv("SUBSCRIPTION_ID") or None,
        num_workers=_int_env("NUM_WORKERS", 5),
        queue_capacity=_int_env("QUEUE_CAPACITY", 100),
        throttle_seconds=_int_env("THROTTLE_MS", 200) / 1000,
        initial_emails_to_fetch=_int_env("INITIAL_EMAILS_TO_FETCH", 20),
        history_attempts=_int_env("HISTORY_ATTEMPTS", 5),
        history_backoff_seconds=_int_env("HISTORY_BACKOFF_MS", 80) / 1000,
        cursor_cache_size=_int_env("CURSOR_CACHE_SIZE", 10_000),
        log_level=os.getenv("LOG_LEVEL") or "INFO",
    )

    if settings.num_workers < 1:
        raise ConfigError("NUM_WORKERS must be at least 1")
    if settings.queue_capacity < 1:
        raise ConfigError("QUEUE_CAPACITY must be at least 1")
    if not settings.credentials_path.exists():
        raise ConfigError(
            f"Missing Gmail credentials at {settings.credentials_path}. "
            "Did you configure INBOX_TRIAGE_SECRETS_DIR?"
        )
    return settings
