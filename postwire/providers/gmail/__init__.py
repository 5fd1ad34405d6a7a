"""Gmail backend: REST transport, token management and wire translation."""

from postwire.config import GmailConfig

from .api import GmailApi
from .auth import (
    OAuthTokenSource,
    ServiceAccountTokenSource,
    StaticTokenSource,
    TokenCallback,
    TokenSource,
    sign_rs256,
)
from .parser import parse_gmail_message
from .provider import GmailProvider, build_query
from .types import GmailEmail, GmailLabel

__all__ = [
    "GmailApi",
    "GmailEmail",
    "GmailLabel",
    "GmailProvider",
    "OAuthTokenSource",
    "ServiceAccountTokenSource",
    "StaticTokenSource",
    "TokenSource",
    "build_query",
    "gmail",
    "parse_gmail_message",
    "sign_rs256",
]


def gmail(
    config: GmailConfig | None = None,
    *,
    token_source: TokenSource | None = None,
    on_token_refresh: TokenCallback | None = None,
) -> GmailProvider:
    """Create a Gmail provider; credentials default to the environment."""
    return GmailProvider(
        config or GmailConfig(),
        token_source=token_source,
        on_token_refresh=on_token_refresh,
    )
