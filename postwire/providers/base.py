"""Base protocol and request options for mail providers."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

from postwire.models import Address, Email, EmailId, Folder, FolderName, SendResult


class Capability(str, Enum):
    """Optional operations a provider may declare."""
    WATCH = "watch"
    ATTACHMENTS = "attachments"


@dataclass(frozen=True)
class ListOptions:
    """Filters shared by ``list`` and ``stream``.

    ``query`` is passed through to the backend's own search syntax.
    """
    folder: FolderName | str | None = None
    limit: int | None = None
    offset: int = 0
    unread_only: bool = False
    from_addr: str | None = None
    to: str | None = None
    subject: str | None = None
    after: datetime | None = None
    before: datetime | None = None
    has_attachment: bool = False
    labels: Sequence[str] = ()
    query: str | None = None


@dataclass(frozen=True)
class StreamOptions(ListOptions):
    batch_size: int | None = None


@dataclass(frozen=True)
class GetOptions:
    format: Literal["full", "metadata", "minimal", "raw"] | None = None
    include_attachments: bool = True
    include_raw: bool = False


@dataclass(frozen=True)
class AttachmentInput:
    """An outbound attachment, given as in-memory ``content`` or a file ``path``.

    Setting ``content_id`` makes it an inline part that HTML can reference
    as ``cid:<content_id>``.
    """
    filename: str
    content: bytes | str | None = None
    path: str | Path | None = None
    mime_type: str | None = None
    content_id: str | None = None


Recipients = str | Address | Sequence[str | Address]


@dataclass(frozen=True)
class SendOptions:
    to: Recipients
    subject: str
    cc: Recipients | None = None
    bcc: Recipients | None = None
    reply_to: str | Address | None = None
    text: str | None = None
    html: str | None = None
    attachments: Sequence[AttachmentInput] = ()
    in_reply_to: EmailId | str | None = None
    references: Sequence[EmailId | str] = ()
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WatchOptions:
    folder: FolderName | str | None = None
    interval: float | None = None
    include_existing: bool = False


@dataclass(frozen=True)
class WatchEvent:
    """A change notification: ``new``, ``updated``, ``deleted`` or ``error``."""
    type: Literal["new", "updated", "deleted", "error"]
    email: Email | None = None
    id: EmailId | None = None
    error: BaseException | None = None


@runtime_checkable
class WatchHandle(Protocol):
    def stop(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[WatchEvent]:
        ...


@runtime_checkable
class MailProvider(Protocol):
    """Protocol every mail backend implements.

    ``watch`` and ``get_attachment`` are optional: callers must only use them
    when the matching :class:`Capability` is in ``capabilities``.
    """

    @property
    def name(self) -> str:
        """Return the provider identifier."""
        ...

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Return the optional capabilities this provider implements."""
        ...

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    async def list(self, options: ListOptions | None = None) -> list[Email]:
        """Return a materialized page of emails matching ``options``."""
        ...

    async def get(self, id: EmailId | str, options: GetOptions | None = None) -> Email:
        ...

    def stream(self, options: StreamOptions | None = None) -> AsyncIterator[Email]:
        """Lazily yield every matching email, one backend page at a time.

        Stopping iteration early stops further page fetches.
        """
        ...

    async def send(self, options: SendOptions) -> SendResult:
        ...

    async def list_folders(self) -> list[Folder]:
        ...

    async def get_folder(self, name: FolderName | str) -> Folder:
        ...

    async def create_folder(self, name: str) -> Folder:
        ...

    async def delete_folder(self, name: FolderName | str) -> None:
        ...

    async def mark_as_read(self, id: EmailId | str) -> None:
        ...

    async def mark_as_unread(self, id: EmailId | str) -> None:
        ...

    async def star(self, id: EmailId | str) -> None:
        ...

    async def unstar(self, id: EmailId | str) -> None:
        ...

    async def move(self, id: EmailId | str, folder: FolderName | str) -> None:
        ...

    async def delete(self, id: EmailId | str) -> None:
        ...

    async def add_label(self, id: EmailId | str, label: str) -> None:
        ...

    async def remove_label(self, id: EmailId | str, label: str) -> None:
        ...

    async def __aenter__(self) -> MailProvider:
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


def supports(provider: MailProvider, capability: Capability) -> bool:
    """Check a provider's declared capabilities."""
    return capability in provider.capabilities
