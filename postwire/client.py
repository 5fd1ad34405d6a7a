"""Mail client facade: one provider, one retry policy."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from .errors import UnsupportedCapabilityError
from .models import Email, EmailId, Folder, FolderName, SendResult
from .providers.base import (
    Capability,
    GetOptions,
    ListOptions,
    MailProvider,
    SendOptions,
    StreamOptions,
    WatchHandle,
    WatchOptions,
    supports,
)
from .retry import RetryConfig, RetryPolicy

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger("postwire")


def _resolve_retry(retry: RetryConfig | dict[str, Any] | bool | None) -> RetryConfig | None:
    if retry is False:
        return None
    if retry is None or retry is True:
        return RetryConfig()
    if isinstance(retry, dict):
        return RetryConfig.from_dict(retry)
    return retry


class MailClient:
    """Provider wrapper that applies the retry policy to every call.

    ``disconnect`` is best effort and never retried. ``stream`` is delegated
    as-is: retrying a half-consumed sequence would re-deliver items. The
    client holds no state beyond its configuration, so one instance can be
    shared across concurrent tasks.
    """

    def __init__(
        self,
        provider: MailProvider,
        retry: RetryConfig | dict[str, Any] | bool | None = None,
    ):
        self.provider = provider
        self.retry = RetryPolicy(_resolve_retry(retry))

    @classmethod
    def from_config(cls, config: Config) -> MailClient:
        """Build the configured provider and wrap it."""
        from .providers import select_provider

        provider = select_provider(config)
        return cls(provider, retry=config.retry if config.retry_enabled else False)

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def supports(self, capability: Capability) -> bool:
        return supports(self.provider, capability)

    # Connection

    async def connect(self) -> None:
        await self.retry(self.provider.connect)
        logger.info(f"Connected to {self.provider_name}")

    async def disconnect(self) -> None:
        await self.provider.disconnect()

    def is_connected(self) -> bool:
        return self.provider.is_connected()

    # Reading

    async def list(self, options: ListOptions | None = None) -> list[Email]:
        return await self.retry(lambda: self.provider.list(options))

    async def get(self, id: EmailId | str, options: GetOptions | None = None) -> Email:
        return await self.retry(lambda: self.provider.get(id, options))

    async def stream(self, options: StreamOptions | None = None) -> AsyncIterator[Email]:
        async for email in self.provider.stream(options):
            yield email

    async def get_attachment(self, email_id: EmailId | str, attachment_id: str) -> bytes:
        """Download attachment content referenced by an ``AttachmentMeta``."""
        self._require(Capability.ATTACHMENTS)
        return await self.retry(
            lambda: self.provider.get_attachment(email_id, attachment_id)  # type: ignore[attr-defined]
        )

    # Sending

    async def send(self, options: SendOptions) -> SendResult:
        return await self.retry(lambda: self.provider.send(options))

    # Folders

    async def list_folders(self) -> list[Folder]:
        return await self.retry(self.provider.list_folders)

    async def get_folder(self, name: FolderName | str) -> Folder:
        return await self.retry(lambda: self.provider.get_folder(name))

    async def create_folder(self, name: str) -> Folder:
        return await self.retry(lambda: self.provider.create_folder(name))

    async def delete_folder(self, name: FolderName | str) -> None:
        await self.retry(lambda: self.provider.delete_folder(name))

    # Mutations

    async def mark_as_read(self, id: EmailId | str) -> None:
        await self.retry(lambda: self.provider.mark_as_read(id))

    async def mark_as_unread(self, id: EmailId | str) -> None:
        await self.retry(lambda: self.provider.mark_as_unread(id))

    async def star(self, id: EmailId | str) -> None:
        await self.retry(lambda: self.provider.star(id))

    async def unstar(self, id: EmailId | str) -> None:
        await self.retry(lambda: self.provider.unstar(id))

    async def move(self, id: EmailId | str, folder: FolderName | str) -> None:
        await self.retry(lambda: self.provider.move(id, folder))

    async def delete(self, id: EmailId | str) -> None:
        await self.retry(lambda: self.provider.delete(id))

    async def add_label(self, id: EmailId | str, label: str) -> None:
        await self.retry(lambda: self.provider.add_label(id, label))

    async def remove_label(self, id: EmailId | str, label: str) -> None:
        await self.retry(lambda: self.provider.remove_label(id, label))

    # Watch

    def watch(self, options: WatchOptions | None = None) -> WatchHandle:
        """Start a change watch on providers that declare ``Capability.WATCH``.

        Raises:
            UnsupportedCapabilityError: If the provider cannot watch
        """
        self._require(Capability.WATCH)
        return self.provider.watch(options)  # type: ignore[attr-defined]

    def _require(self, capability: Capability) -> None:
        if not self.supports(capability):
            raise UnsupportedCapabilityError(self.provider_name, capability.value)

    async def __aenter__(self) -> MailClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()


def create_mail(
    provider: MailProvider,
    retry: RetryConfig | dict[str, Any] | bool | None = None,
) -> MailClient:
    return MailClient(provider, retry=retry)
