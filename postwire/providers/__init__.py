"""Mail provider abstractions.

Every backend implements the :class:`MailProvider` protocol. Use
select_provider() to build the backend named in the configuration.
"""

from postwire.config import Config

from .base import (
    AttachmentInput,
    Capability,
    GetOptions,
    ListOptions,
    MailProvider,
    SendOptions,
    StreamOptions,
    WatchEvent,
    WatchHandle,
    WatchOptions,
    supports,
)
from .gmail import GmailProvider

__all__ = [
    "AttachmentInput",
    "Capability",
    "GetOptions",
    "GmailProvider",
    "ListOptions",
    "MailProvider",
    "SendOptions",
    "StreamOptions",
    "WatchEvent",
    "WatchHandle",
    "WatchOptions",
    "select_provider",
    "supports",
]


def select_provider(config: Config) -> MailProvider:
    """Build the provider named by ``config.provider``.

    Returns:
        A MailProvider instance (not yet connected)

    Raises:
        ValueError: If the provider is unknown
    """
    if config.provider == "gmail":
        return GmailProvider(config.gmail)

    raise ValueError(
        f"Unknown mail provider: {config.provider!r}\n"
        "Set provider = \"gmail\" in the config.toml [client] section."
    )
