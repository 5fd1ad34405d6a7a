"""Canonical, provider-neutral email model.

Every backend translates its wire format into these types on read, and
callers build requests from them on write. All of them are value objects:
nothing in postwire mutates an entity after it has been produced.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import NewType

# Opaque backend-assigned identifiers. Plain strings on the wire, kept
# distinct here so a thread id is never passed where an email id is expected.
EmailId = NewType("EmailId", str)
ThreadId = NewType("ThreadId", str)
FolderName = NewType("FolderName", str)

USER_LABEL_PREFIX = "Label_"


@dataclass(frozen=True)
class Address:
    email: str
    name: str | None = None

    def __str__(self) -> str:
        from .codecs import format_address

        return format_address(self)


@dataclass(frozen=True)
class Label:
    """A tag attached to a message, system- or user-defined."""
    id: str
    name: str
    color: str | None = None

    @property
    def is_user(self) -> bool:
        return self.id.startswith(USER_LABEL_PREFIX)


@dataclass(frozen=True)
class AttachmentMeta:
    """Attachment metadata. Content is fetched separately, on demand."""
    id: str
    filename: str
    mime_type: str
    size: int = 0


@dataclass(frozen=True)
class EmailBody:
    html: str | None = None
    text: str = ""

    def plain(self) -> str:
        """Return the plain text, reducing the HTML part when there is none."""
        if self.text or not self.html:
            return self.text
        from .codecs import html_to_text

        return html_to_text(self.html)


class Headers(Mapping[str, str]):
    """Read-only, case-insensitive header mapping.

    Built from ``(name, value)`` pairs in message order. Indexing returns the
    first occurrence of a name; ``get_all`` returns every occurrence.
    """

    def __init__(self, items: Iterable[tuple[str, str]] | Mapping[str, str] = ()):
        if isinstance(items, Mapping):
            items = items.items()
        self._items: tuple[tuple[str, str], ...] = tuple((str(k), str(v)) for k, v in items)
        self._first: dict[str, tuple[str, str]] = {}
        for name, value in self._items:
            self._first.setdefault(name.lower(), (name, value))

    def __getitem__(self, name: str) -> str:
        return self._first[name.lower()][1]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._first

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._first.values())

    def __len__(self) -> int:
        return len(self._first)

    def get_all(self, name: str) -> list[str]:
        key = name.lower()
        return [value for n, value in self._items if n.lower() == key]

    def raw_items(self) -> tuple[tuple[str, str], ...]:
        return self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"Headers({list(self._items)!r})"


@dataclass(frozen=True)
class Email:
    """A single message in canonical form.

    ``date`` is the author-asserted send time from the Date header and
    ``received_at`` the time the backend recorded the message; they may
    differ. Sequence fields are always present, possibly empty.
    """
    id: EmailId
    thread_id: ThreadId
    folder: FolderName
    from_addr: Address
    subject: str
    body: EmailBody
    date: datetime
    received_at: datetime
    to: tuple[Address, ...] = ()
    cc: tuple[Address, ...] = ()
    bcc: tuple[Address, ...] = ()
    reply_to: Address | None = None
    is_read: bool = True
    is_starred: bool = False
    is_draft: bool = False
    labels: tuple[Label, ...] = ()
    attachments: tuple[AttachmentMeta, ...] = ()
    headers: Headers = field(default_factory=Headers)
    in_reply_to: EmailId | None = None
    references: tuple[EmailId, ...] = ()
    raw: str | None = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


class FolderType(str, Enum):
    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    SPAM = "spam"
    ARCHIVE = "archive"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Folder:
    name: FolderName
    path: str
    type: FolderType = FolderType.CUSTOM
    unread_count: int = 0
    total_count: int = 0
    children: tuple[Folder, ...] | None = None


@dataclass(frozen=True)
class SendResult:
    id: EmailId
    timestamp: datetime
    thread_id: ThreadId | None = None
