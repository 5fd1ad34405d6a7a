"""Gmail message parsing: wire MIME-part tree to canonical model.

Gmail returns a message as a tree of parts. Leaves carry inline base64url
``body.data`` or an ``attachmentId`` reference; containers carry ``parts``.
Envelope headers (From, To, Subject...) live on the outer part only.
"""

from __future__ import annotations

import email
import logging
import re
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from email import policy
from email.message import Message

from postwire.codecs import (
    decode_base64url,
    decode_base64url_bytes,
    decode_mime_header,
    encode_base64url,
    parse_address,
    parse_address_list,
    parse_email_date,
)
from postwire.models import (
    Address,
    AttachmentMeta,
    EmailBody,
    EmailId,
    Folder,
    FolderName,
    FolderType,
    Headers,
    ThreadId,
    USER_LABEL_PREFIX,
)

from .types import GmailEmail, GmailLabel, GmailLabelResource, GmailMessage, MessagePart

logger = logging.getLogger("postwire.gmail")

# Deeper trees are truncated rather than walked
MAX_PART_DEPTH = 64

UNREAD = "UNREAD"
STARRED = "STARRED"
DRAFT = "DRAFT"

# Folder derivation order when a message carries several folder labels
FOLDER_PRIORITY = ("INBOX", "SENT", "DRAFT", "TRASH", "SPAM")

_LABEL_FOLDER_TYPES = {
    "INBOX": FolderType.INBOX,
    "SENT": FolderType.SENT,
    "DRAFT": FolderType.DRAFTS,
    "TRASH": FolderType.TRASH,
    "SPAM": FolderType.SPAM,
}

_FOLDER_LABEL_IDS = {
    "inbox": "INBOX",
    "sent": "SENT",
    "drafts": "DRAFT",
    "draft": "DRAFT",
    "trash": "TRASH",
    "spam": "SPAM",
    "starred": "STARRED",
    "important": "IMPORTANT",
    "unread": "UNREAD",
    "all": "ALL",
}

SYSTEM_LABEL_IDS = frozenset(_FOLDER_LABEL_IDS.values()) | {
    "CHAT",
    "CATEGORY_PERSONAL",
    "CATEGORY_SOCIAL",
    "CATEGORY_PROMOTIONS",
    "CATEGORY_UPDATES",
    "CATEGORY_FORUMS",
}

_CHARSET_PARAM = re.compile(r'charset\s*=\s*"?([^";\s]+)"?', re.IGNORECASE)
_MESSAGE_ID = re.compile(r"<([^<>]+)>")


def get_header(part: MessagePart | None, name: str) -> str | None:
    """Case-insensitive header lookup on the given part only."""
    if not part:
        return None
    key = name.lower()
    for header in part.get("headers") or []:
        if header.get("name", "").lower() == key:
            return header.get("value")
    return None


def walk_parts(payload: MessagePart | None, max_depth: int = MAX_PART_DEPTH) -> Iterator[MessagePart]:
    """Yield every part depth-first, in document order.

    Uses an explicit stack, so a hostile message cannot exhaust the call
    stack. Children below ``max_depth`` are skipped with a warning.
    """
    if not payload:
        return
    stack: list[tuple[MessagePart, int]] = [(payload, 0)]
    while stack:
        part, depth = stack.pop()
        if not isinstance(part, dict):
            continue
        yield part
        children = part.get("parts") or []
        if not children:
            continue
        if depth >= max_depth:
            logger.warning(f"MIME tree deeper than {max_depth} levels; ignoring nested parts")
            continue
        stack.extend((child, depth + 1) for child in reversed(children))


def _is_attachment_disposition(part: MessagePart) -> bool:
    disposition = get_header(part, "Content-Disposition") or ""
    return disposition.strip().lower().startswith("attachment")


def _part_charset(part: MessagePart) -> str:
    match = _CHARSET_PARAM.search(get_header(part, "Content-Type") or "")
    return match.group(1) if match else "utf-8"


def _part_text(part: MessagePart) -> str | None:
    data = (part.get("body") or {}).get("data")
    if not data:
        return None
    try:
        raw = decode_base64url_bytes(data)
    except ValueError as e:
        logger.warning(f"Undecodable body in part {part.get('partId', '?')}: {e}")
        return None
    try:
        return raw.decode(_part_charset(part), errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def extract_body(payload: MessagePart | None) -> EmailBody:
    """Pick the first inline text/plain and text/html leaves, in document order."""
    text: str | None = None
    html: str | None = None

    for part in walk_parts(payload):
        if part.get("parts") or _is_attachment_disposition(part):
            continue
        mime_type = (part.get("mimeType") or "").lower()
        if mime_type == "text/plain" and text is None:
            text = _part_text(part)
        elif mime_type == "text/html" and html is None:
            html = _part_text(part)
        if text is not None and html is not None:
            break

    return EmailBody(html=html, text=text or "")


def extract_attachments(payload: MessagePart | None) -> list[AttachmentMeta]:
    """Collect leaves that reference attachment content by id."""
    attachments: list[AttachmentMeta] = []
    for part in walk_parts(payload):
        if part.get("parts"):
            continue
        body = part.get("body") or {}
        filename = part.get("filename")
        attachment_id = body.get("attachmentId")
        if filename and attachment_id:
            attachments.append(
                AttachmentMeta(
                    id=attachment_id,
                    filename=filename,
                    mime_type=part.get("mimeType") or "application/octet-stream",
                    size=body.get("size") or 0,
                )
            )
    return attachments


def labels_to_status(label_ids: Iterable[str]) -> tuple[bool, bool, bool]:
    """Return ``(is_read, is_starred, is_draft)`` from a message's labels."""
    labels = set(label_ids)
    return UNREAD not in labels, STARRED in labels, DRAFT in labels


def folder_from_labels(label_ids: Iterable[str]) -> str:
    labels = set(label_ids)
    for label_id in FOLDER_PRIORITY:
        if label_id in labels:
            return label_id
    return "INBOX"


def is_user_label(label_id: str) -> bool:
    return label_id.startswith(USER_LABEL_PREFIX)


def label_to_folder_type(label_id: str) -> FolderType:
    return _LABEL_FOLDER_TYPES.get(label_id, FolderType.CUSTOM)


def folder_to_label_id(folder: str) -> str:
    """Map a canonical folder name to a Gmail label id; unknown names pass through."""
    return _FOLDER_LABEL_IDS.get(folder.lower(), folder)


def label_to_folder(label: GmailLabelResource) -> Folder:
    return Folder(
        name=FolderName(label["name"]),
        path=label["id"],
        type=label_to_folder_type(label["id"]),
        unread_count=label.get("messagesUnread") or 0,
        total_count=label.get("messagesTotal") or 0,
    )


def label_from_resource(label: GmailLabelResource) -> GmailLabel:
    color = label.get("color") or {}
    return GmailLabel(
        id=label["id"],
        name=label["name"],
        color=color.get("backgroundColor"),
        type="user" if label.get("type") == "user" or is_user_label(label["id"]) else "system",
        message_list_visibility=label.get("messageListVisibility"),
        label_list_visibility=label.get("labelListVisibility"),
        messages_total=label.get("messagesTotal"),
        messages_unread=label.get("messagesUnread"),
    )


def _addresses(value: str | None) -> list[Address]:
    # Split before decoding: an encoded display name may contain commas
    return [
        Address(email=a.email, name=decode_mime_header(a.name) if a.name else None)
        for a in parse_address_list(value)
    ]


def _message_ids(value: str | None) -> list[EmailId]:
    if not value:
        return []
    found = _MESSAGE_ID.findall(value)
    if not found:
        found = value.split()
    return [EmailId(v.strip()) for v in found if v.strip()]


def _internal_date(message: GmailMessage) -> datetime | None:
    value = message.get("internalDate")
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc) if value else None
    except (TypeError, ValueError, OverflowError):
        return None


def _message_to_part(msg: Message, part_id: str = "", depth: int = 0) -> MessagePart:
    part: MessagePart = {
        "partId": part_id,
        "mimeType": msg.get_content_type(),
        "filename": msg.get_filename() or "",
        "headers": [{"name": k, "value": str(v)} for k, v in msg.items()],
    }
    if msg.is_multipart():
        children = msg.get_payload() if depth < MAX_PART_DEPTH else []
        part["body"] = {"size": 0}
        part["parts"] = [
            _message_to_part(child, f"{part_id}.{i}" if part_id else str(i), depth + 1)
            for i, child in enumerate(children)
        ]
    else:
        content = msg.get_payload(decode=True) or b""
        part["body"] = {"size": len(content), "data": encode_base64url(content)}
    return part


def raw_to_payload(raw: str) -> MessagePart:
    """Parse RFC 2822 text into the same part tree the API returns."""
    msg = email.message_from_string(raw, policy=policy.compat32)
    return _message_to_part(msg)


def parse_gmail_message(message: GmailMessage) -> GmailEmail:
    """Translate a Gmail API message into a :class:`GmailEmail`."""
    raw: str | None = None
    payload = message.get("payload")
    if message.get("raw"):
        raw = decode_base64url(message["raw"])
        if payload is None:
            payload = raw_to_payload(raw)

    headers = Headers(
        (h.get("name", ""), h.get("value", "")) for h in (payload or {}).get("headers") or []
    )

    from_value = get_header(payload, "From") or ""
    from_list = _addresses(from_value)
    from_addr = from_list[0] if from_list else parse_address(from_value)

    reply_to_list = _addresses(get_header(payload, "Reply-To"))

    received_at = _internal_date(message)
    date = parse_email_date(get_header(payload, "Date")) or received_at or datetime.now(timezone.utc)
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)

    label_ids = message.get("labelIds") or []
    is_read, is_starred, is_draft = labels_to_status(label_ids)
    gmail_labels = tuple(
        GmailLabel(id=label_id, name=label_id, type="user" if is_user_label(label_id) else "system")
        for label_id in label_ids
    )

    in_reply_to = _message_ids(get_header(payload, "In-Reply-To"))

    return GmailEmail(
        id=EmailId(message["id"]),
        thread_id=ThreadId(message.get("threadId") or message["id"]),
        folder=FolderName(folder_from_labels(label_ids)),
        from_addr=from_addr,
        to=tuple(_addresses(get_header(payload, "To"))),
        cc=tuple(_addresses(get_header(payload, "Cc"))),
        bcc=tuple(_addresses(get_header(payload, "Bcc"))),
        reply_to=reply_to_list[0] if reply_to_list else None,
        subject=decode_mime_header(get_header(payload, "Subject") or ""),
        body=extract_body(payload),
        date=date,
        received_at=received_at or datetime.now(timezone.utc),
        is_read=is_read,
        is_starred=is_starred,
        is_draft=is_draft,
        labels=gmail_labels,
        attachments=tuple(extract_attachments(payload)),
        headers=headers,
        in_reply_to=in_reply_to[0] if in_reply_to else None,
        references=tuple(_message_ids(get_header(payload, "References"))),
        raw=raw,
        snippet=message.get("snippet") or "",
        size_estimate=message.get("sizeEstimate") or 0,
        history_id=message.get("historyId"),
        gmail_labels=gmail_labels,
    )
