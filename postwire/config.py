"""Configuration management for postwire."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .retry import RetryConfig

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_SCOPES = ["https://mail.google.com/"]


@dataclass
class GmailConfig:
    """Gmail backend configuration.

    Either OAuth tokens or a service account file must be set. Secrets
    should come from environment variables:
    - POSTWIRE_GMAIL_ACCESS_TOKEN
    - POSTWIRE_GMAIL_REFRESH_TOKEN
    - POSTWIRE_GMAIL_CLIENT_ID
    - POSTWIRE_GMAIL_CLIENT_SECRET
    """
    access_token: str = field(default="", repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    client_id: str | None = None
    client_secret: str | None = field(default=None, repr=False)
    expires_at: datetime | None = None
    service_account_file: str | None = None  # JSON key with client_email/private_key
    delegate_email: str | None = None  # Mailbox the service account acts for
    user_id: str = "me"
    base_url: str = GMAIL_API_BASE
    token_url: str = GOOGLE_TOKEN_URL
    scopes: list[str] = field(default_factory=lambda: GMAIL_SCOPES.copy())
    timeout_seconds: float = 30
    page_size: int = 50
    detail_concurrency: int = 10  # Parallel message fetches per list() page

    def __post_init__(self):
        """Load credentials from environment variables."""
        env_values = {
            "access_token": os.environ.get("POSTWIRE_GMAIL_ACCESS_TOKEN"),
            "refresh_token": os.environ.get("POSTWIRE_GMAIL_REFRESH_TOKEN"),
            "client_id": os.environ.get("POSTWIRE_GMAIL_CLIENT_ID"),
            "client_secret": os.environ.get("POSTWIRE_GMAIL_CLIENT_SECRET"),
        }
        for name, value in env_values.items():
            if value:
                setattr(self, name, value)

        if self.expires_at is not None and self.expires_at.tzinfo is None:
            self.expires_at = self.expires_at.replace(tzinfo=timezone.utc)

    @property
    def uses_service_account(self) -> bool:
        return bool(self.service_account_file)


@dataclass
class Config:
    provider: str = "gmail"
    gmail: GmailConfig = field(default_factory=GmailConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    retry_enabled: bool = True


def _parse_expiry(value: object) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


def load_config(path: str | Path) -> Config:
    """Load configuration from a TOML file."""
    path = Path(path)
    with path.open("rb") as f:
        data = tomllib.load(f)

    client_data = data.get("client", {})
    retry_data = data.get("retry", {})

    gmail_data = data.get("gmail", {})
    if "access_token" in gmail_data:
        logger.warning(f"{path} contains a Gmail access token; prefer POSTWIRE_GMAIL_ACCESS_TOKEN")

    gmail_config = GmailConfig(
        access_token=gmail_data.get("access_token", ""),
        refresh_token=gmail_data.get("refresh_token"),
        client_id=gmail_data.get("client_id"),
        client_secret=gmail_data.get("client_secret"),
        expires_at=_parse_expiry(gmail_data.get("expires_at")),
        service_account_file=gmail_data.get("service_account_file"),
        delegate_email=gmail_data.get("delegate_email"),
        user_id=gmail_data.get("user_id", "me"),
        base_url=gmail_data.get("base_url", GMAIL_API_BASE),
        token_url=gmail_data.get("token_url", GOOGLE_TOKEN_URL),
        scopes=gmail_data.get("scopes", GMAIL_SCOPES.copy()),
        timeout_seconds=gmail_data.get("timeout_seconds", 30),
        page_size=gmail_data.get("page_size", 50),
        detail_concurrency=gmail_data.get("detail_concurrency", 10),
    )

    return Config(
        provider=client_data.get("provider", "gmail"),
        gmail=gmail_config,
        retry=RetryConfig.from_dict(retry_data),
        retry_enabled=retry_data.get("enabled", True),
    )
