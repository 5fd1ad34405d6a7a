"""Gmail wire shapes and Gmail-specific model extensions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, NotRequired, TypedDict

from postwire.models import Email, Label


class MessagePartHeader(TypedDict):
    name: str
    value: str


class MessagePartBody(TypedDict, total=False):
    attachmentId: str
    size: int
    data: str


class MessagePart(TypedDict, total=False):
    """One node of a message's MIME tree: a leaf with a body or a container with parts."""
    partId: str
    mimeType: str
    filename: str
    headers: list[MessagePartHeader]
    body: MessagePartBody
    parts: list[MessagePart]


class GmailMessage(TypedDict):
    id: str
    threadId: str
    labelIds: NotRequired[list[str]]
    snippet: NotRequired[str]
    historyId: NotRequired[str]
    internalDate: NotRequired[str]
    sizeEstimate: NotRequired[int]
    payload: NotRequired[MessagePart]
    raw: NotRequired[str]


class LabelColor(TypedDict, total=False):
    textColor: str
    backgroundColor: str


class GmailLabelResource(TypedDict):
    id: str
    name: str
    type: NotRequired[str]
    messageListVisibility: NotRequired[str]
    labelListVisibility: NotRequired[str]
    messagesTotal: NotRequired[int]
    messagesUnread: NotRequired[int]
    color: NotRequired[LabelColor]


@dataclass(frozen=True)
class GmailLabel(Label):
    type: Literal["system", "user"] = "system"
    message_list_visibility: str | None = None
    label_list_visibility: str | None = None
    messages_total: int | None = None
    messages_unread: int | None = None


@dataclass(frozen=True)
class GmailEmail(Email):
    """Email with the extra fields the Gmail API returns."""
    snippet: str = ""
    size_estimate: int = 0
    history_id: str | None = None
    gmail_labels: tuple[GmailLabel, ...] = ()
