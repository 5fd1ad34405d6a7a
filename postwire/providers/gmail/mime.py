"""Outbound message encoding: SendOptions to an RFC 2822 envelope.

The Gmail send endpoint takes the finished message base64url encoded in a
``raw`` field.
"""

from __future__ import annotations

import base64
import mimetypes
import re
import secrets
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from postwire.codecs import encode_base64url, encode_header_value, format_address, is_valid_email, parse_address
from postwire.errors import ValidationError
from postwire.models import Address
from postwire.providers.base import AttachmentInput, Recipients, SendOptions

CRLF = "\r\n"
BASE64_LINE_LENGTH = 76

# RFC 5322 field name: printable ASCII except colon
_HEADER_NAME = re.compile(r"^[\x21-\x39\x3b-\x7e]+$")


def new_boundary() -> str:
    """Boundary token unique per message: timestamp plus a random component."""
    return f"----postwire-{int(time.time() * 1000)}-{secrets.token_hex(12)}"


def _recipient_list(value: Recipients | None) -> list[Address]:
    if value is None:
        return []
    if isinstance(value, (str, Address)):
        value = [value]
    addresses = []
    for item in value:
        if isinstance(item, Address):
            addresses.append(item)
        elif item and item.strip():
            addresses.append(parse_address(item))
    return addresses


def _single_line(field: str, value: str) -> str:
    """Reject values that would break out of their header line."""
    if "\r" in value or "\n" in value:
        raise ValidationError(f"Line break in {field} header value", field=field)
    return value


def _normalize_newlines(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n").replace("\n", CRLF)


def _format_recipient(address: Address) -> str:
    if address.name and not address.name.isascii():
        return f"{encode_header_value(address.name)} <{address.email}>"
    return format_address(address)


def _format_recipients(addresses: Sequence[Address]) -> str:
    return ", ".join(_format_recipient(a) for a in addresses)


def _validate(field: str, addresses: Sequence[Address]) -> None:
    for address in addresses:
        if address.name:
            _single_line(field, address.name)
        if not is_valid_email(address.email):
            raise ValidationError(f"Invalid email address in {field}: {address.email!r}", field=field)


def _angle(message_id: str) -> str:
    message_id = message_id.strip()
    if message_id.startswith("<") and message_id.endswith(">"):
        return message_id
    return f"<{message_id}>"


def _wrap_base64(content: bytes) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return CRLF.join(
        encoded[i:i + BASE64_LINE_LENGTH] for i in range(0, len(encoded), BASE64_LINE_LENGTH)
    )


def _attachment_bytes(attachment: AttachmentInput) -> bytes:
    if attachment.content is not None:
        if isinstance(attachment.content, str):
            return attachment.content.encode("utf-8")
        return bytes(attachment.content)
    if attachment.path is not None:
        return Path(attachment.path).read_bytes()
    raise ValidationError(
        f"Attachment {attachment.filename!r} needs content or a path", field="attachments"
    )


def _attachment_mime_type(attachment: AttachmentInput) -> str:
    if attachment.mime_type:
        return attachment.mime_type
    guessed, _ = mimetypes.guess_type(attachment.filename)
    return guessed or "application/octet-stream"


def _quote_param(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _text_part(subtype: str, content: str) -> list[str]:
    return [
        f"Content-Type: text/{subtype}; charset=utf-8",
        "Content-Transfer-Encoding: 8bit",
        "",
        _normalize_newlines(content),
    ]


def _attachment_part(attachment: AttachmentInput) -> list[str]:
    filename = _quote_param(encode_header_value(_single_line("attachments", attachment.filename)))
    disposition = "inline" if attachment.content_id else "attachment"
    lines = [
        f'Content-Type: {_single_line("attachments", _attachment_mime_type(attachment))}; name="{filename}"',
        f'Content-Disposition: {disposition}; filename="{filename}"',
    ]
    if attachment.content_id:
        lines.append(f"Content-ID: {_angle(_single_line('attachments', attachment.content_id))}")
    lines += ["Content-Transfer-Encoding: base64", "", _wrap_base64(_attachment_bytes(attachment))]
    return lines


def _multipart(subtype: str, boundary: str, sections: list[list[str]]) -> list[str]:
    """Header line plus body for a multipart container."""
    lines = [f'Content-Type: multipart/{subtype}; boundary="{boundary}"']
    body: list[str] = []
    for section in sections:
        body.append(f"--{boundary}")
        body.extend(section)
    body.append(f"--{boundary}--")
    return lines + [""] + body


def build_message(
    options: SendOptions,
    boundary_factory: Callable[[], str] = new_boundary,
) -> str:
    """Render ``options`` as an RFC 2822 message with CRLF line endings.

    Raises:
        ValidationError: On missing or malformed recipients, a line break in
            a header value, or an attachment without content
    """
    to = _recipient_list(options.to)
    cc = _recipient_list(options.cc)
    bcc = _recipient_list(options.bcc)
    if not (to or cc or bcc):
        raise ValidationError("At least one recipient is required", field="to")
    _validate("to", to)
    _validate("cc", cc)
    _validate("bcc", bcc)

    lines: list[str] = []
    if to:
        lines.append(f"To: {_format_recipients(to)}")
    if cc:
        lines.append(f"Cc: {_format_recipients(cc)}")
    if bcc:
        lines.append(f"Bcc: {_format_recipients(bcc)}")
    if options.reply_to:
        reply_to = _recipient_list(options.reply_to)
        _validate("reply_to", reply_to)
        lines.append(f"Reply-To: {_format_recipients(reply_to)}")

    lines.append(f"Subject: {encode_header_value(_single_line('subject', options.subject or ''))}")

    if options.in_reply_to:
        lines.append(f"In-Reply-To: {_angle(_single_line('in_reply_to', options.in_reply_to))}")
    if options.references:
        refs = " ".join(_angle(_single_line("references", r)) for r in options.references)
        lines.append(f"References: {refs}")

    for name, value in options.headers.items():
        if not _HEADER_NAME.match(name):
            raise ValidationError(f"Invalid header name: {name!r}", field="headers")
        lines.append(f"{name}: {encode_header_value(_single_line('headers', value))}")

    has_text = bool(options.text)
    has_html = bool(options.html)

    if has_text and has_html:
        body = _multipart(
            "alternative",
            boundary_factory(),
            [_text_part("plain", options.text or ""), _text_part("html", options.html or "")],
        )
    elif has_html:
        body = _text_part("html", options.html or "")
    else:
        body = _text_part("plain", options.text or "")

    if options.attachments:
        sections = [body] + [_attachment_part(a) for a in options.attachments]
        body = _multipart("mixed", boundary_factory(), sections)

    # body[0] is the top-level Content-Type line
    lines.append(body[0])
    lines.append("MIME-Version: 1.0")
    lines.extend(body[1:])

    return CRLF.join(lines)


def encode_message(options: SendOptions, boundary_factory: Callable[[], str] = new_boundary) -> str:
    """Build the message and base64url encode it for the ``raw`` field."""
    return encode_base64url(build_message(options, boundary_factory))
