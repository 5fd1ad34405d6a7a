"""Address, transfer-encoding and text codecs.

None of the parsing helpers here raise on malformed input: header content in
the wild rarely follows the grammar, so they degrade to the raw value instead.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import datetime
from email.errors import HeaderParseError
from email.header import Header, decode_header
from email.utils import format_datetime, parsedate_to_datetime

from .models import Address

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# "Display Name" <addr@host>
_QUOTED_NAME_ADDR = re.compile(r'^"((?:[^"\\]|\\.)*)"\s*<([^<>]*)>$', re.DOTALL)
# Display Name <addr@host>, <addr@host>
_NAME_ADDR = re.compile(r'^([^<>"]*?)\s*<([^<>]*)>$', re.DOTALL)
_QUOTED_PAIR = re.compile(r"\\(.)", re.DOTALL)


def parse_address(raw: str) -> Address:
    """Parse a single address.

    Understands ``"Name" <a@b>``, ``Name <a@b>``, ``<a@b>`` and ``a@b``.
    Anything else comes back as ``Address(email=raw)``.
    """
    trimmed = (raw or "").strip()

    match = _QUOTED_NAME_ADDR.match(trimmed)
    if match:
        name = _QUOTED_PAIR.sub(r"\1", match.group(1)).strip()
        return Address(email=match.group(2).strip(), name=name or None)

    match = _NAME_ADDR.match(trimmed)
    if match:
        name = match.group(1).strip()
        return Address(email=match.group(2).strip(), name=name or None)

    # Bare addr@host, or unrecognised text kept verbatim
    return Address(email=trimmed)


def split_address_list(raw: str) -> list[str]:
    """Split a comma-separated address list.

    Commas inside double quotes or angle brackets do not split, so
    ``"Doe, John" <john@x.com>, jane@y.com`` gives two elements.
    """
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False
    angle_depth = 0

    for char in raw:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\" and in_quotes:
            current.append(char)
            escaped = True
            continue
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char == "<":
                angle_depth += 1
            elif char == ">" and angle_depth:
                angle_depth -= 1
            elif char == "," and angle_depth == 0:
                parts.append("".join(current))
                current = []
                continue
        current.append(char)

    parts.append("".join(current))
    return [part.strip() for part in parts]


def parse_address_list(raw: str | None) -> list[Address]:
    """Parse a header value holding zero or more addresses."""
    if not raw or not raw.strip():
        return []
    return [parse_address(part) for part in split_address_list(raw) if part]


def format_address(address: Address) -> str:
    if address.name:
        escaped = address.name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}" <{address.email}>'
    return address.email


def format_address_list(addresses: list[Address] | tuple[Address, ...]) -> str:
    return ", ".join(format_address(a) for a in addresses)


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def get_email_domain(value: str) -> str | None:
    match = re.search(r"@([^@]+)$", value or "")
    return match.group(1) if match else None


def encode_base64url(data: str | bytes) -> str:
    """Base64 with the URL-safe alphabet and no padding."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_base64url_bytes(data: str) -> bytes:
    """Decode base64url, restoring stripped padding.

    Raises:
        ValueError: If the input is not valid base64
    """
    data = data.strip().replace("+", "-").replace("/", "_").rstrip("=")
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64url data: {e}") from e


def decode_base64url(data: str) -> str:
    """Decode base64url into UTF-8 text."""
    return decode_base64url_bytes(data).decode("utf-8", errors="replace")


_SOFT_LINE_BREAK = re.compile(r"=\r?\n")
_QP_ESCAPE = re.compile(rb"=([0-9A-Fa-f]{2})")


def decode_quoted_printable(data: str, charset: str = "utf-8") -> str:
    """Decode quoted-printable text: soft breaks removed, ``=XX`` escapes resolved."""
    data = _SOFT_LINE_BREAK.sub("", data)
    raw = _QP_ESCAPE.sub(lambda m: bytes([int(m.group(1), 16)]), data.encode("utf-8"))
    return raw.decode(charset, errors="replace")


_STYLE_BLOCK = re.compile(r"<style\b[^>]*>.*?(?:</style\s*>|$)", re.IGNORECASE | re.DOTALL)
_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?(?:</script\s*>|$)", re.IGNORECASE | re.DOTALL)
_BR = re.compile(r"<br\s*/?>", re.IGNORECASE)
_P_CLOSE = re.compile(r"</p\s*>", re.IGNORECASE)
_BLOCK_CLOSE = re.compile(r"</(?:div|li)\s*>", re.IGNORECASE)
_LI_OPEN = re.compile(r"<li\b[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_DEC_REF = re.compile(r"&#(\d+);")
_HEX_REF = re.compile(r"&#[xX]([0-9A-Fa-f]+);")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")

_NAMED_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
)


def _char_ref(match: re.Match, base: int) -> str:
    code = int(match.group(1), base)
    if 0 < code <= 0x10FFFF and not 0xD800 <= code <= 0xDFFF:
        return chr(code)
    return match.group(0)


def html_to_text(html: str) -> str:
    """Reduce HTML to readable plain text.

    A regex approximation, not a parser: malformed markup degrades instead of
    failing. Style and script blocks are dropped with their content.
    """
    if not html:
        return ""
    # Repeat until stable: removing one block can splice a new one together.
    text, previous = html, None
    while text != previous:
        previous = text
        text = _STYLE_BLOCK.sub("", text)
        text = _SCRIPT_BLOCK.sub("", text)
    text = _BR.sub("\n", text)
    text = _P_CLOSE.sub("\n\n", text)
    text = _BLOCK_CLOSE.sub("\n", text)
    text = _LI_OPEN.sub("• ", text)
    text = _ANY_TAG.sub("", text)
    for entity, char in _NAMED_ENTITIES:
        text = text.replace(entity, char)
    text = _DEC_REF.sub(lambda m: _char_ref(m, 10), text)
    text = _HEX_REF.sub(lambda m: _char_ref(m, 16), text)
    # &amp; last so "&amp;lt;" stays "&lt;"
    text = text.replace("&amp;", "&")
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def decode_mime_header(header: str | None) -> str:
    """Decode an RFC 2047 encoded header value."""
    if header is None:
        return ""
    try:
        decoded_parts = decode_header(header)
    except HeaderParseError:
        return header
    result = []
    for part, charset in decoded_parts:
        if isinstance(part, bytes):
            try:
                result.append(part.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                result.append(part.decode("utf-8", errors="replace"))
        else:
            result.append(part)
    return "".join(result)


def encode_header_value(value: str) -> str:
    """RFC 2047 encode a header value when it is not plain ASCII."""
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


def parse_email_date(value: str | None) -> datetime | None:
    """Parse an RFC 2822 date, or None when it cannot be parsed."""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def format_email_date(value: datetime) -> str:
    return format_datetime(value)
