"""Tests for outbound message encoding."""

import base64
import email
from email import policy

import pytest

from postwire.codecs import decode_base64url
from postwire.errors import ValidationError
from postwire.models import Address
from postwire.providers.base import AttachmentInput, SendOptions
from postwire.providers.gmail.mime import build_message, encode_message, new_boundary


def boundaries(*names):
    it = iter(names)
    return lambda: next(it)


def parse(text):
    return email.message_from_string(text, policy=policy.default)


class TestHeaders:
    def test_plain_text_message(self):
        """Should render headers then a text/plain body."""
        text = build_message(SendOptions(to="bob@example.com", subject="Hi", text="Hello"))
        assert text == (
            "To: bob@example.com\r\n"
            "Subject: Hi\r\n"
            "Content-Type: text/plain; charset=utf-8\r\n"
            "MIME-Version: 1.0\r\n"
            "Content-Transfer-Encoding: 8bit\r\n"
            "\r\n"
            "Hello"
        )

    def test_recipients_and_threading(self):
        """Should include cc, bcc, reply-to and threading headers."""
        text = build_message(SendOptions(
            to=[Address("bob@example.com", "Bob"), "carol@example.com"],
            cc="dave@example.com",
            bcc=["eve@example.com"],
            reply_to="replies@example.com",
            subject="Re: plans",
            text="ok",
            in_reply_to="parent@example.com",
            references=["root@example.com", "<parent@example.com>"],
            headers={"X-Mailer": "postwire"},
        ))
        lines = text.split("\r\n")
        assert lines[:8] == [
            'To: "Bob" <bob@example.com>, carol@example.com',
            "Cc: dave@example.com",
            "Bcc: eve@example.com",
            "Reply-To: replies@example.com",
            "Subject: Re: plans",
            "In-Reply-To: <parent@example.com>",
            "References: <root@example.com> <parent@example.com>",
            "X-Mailer: postwire",
        ]

    def test_non_ascii_subject_and_name(self):
        """Should RFC 2047 encode non-ASCII header text."""
        text = build_message(SendOptions(
            to=Address("bjorn@example.com", "Björn"),
            subject="Grüße",
            text="hej",
        ))
        parsed = parse(text)
        assert str(parsed["Subject"]) == "Grüße"
        assert parsed["To"].addresses[0].display_name == "Björn"
        assert parsed["To"].addresses[0].addr_spec == "bjorn@example.com"

    def test_requires_recipient(self):
        """Should reject a message with no recipients."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(SendOptions(to=[], subject="x", text="y"))
        assert exc_info.value.field == "to"

    @pytest.mark.parametrize("options, field", [
        (SendOptions(to="bob@example.com", subject="Hi\r\nBcc: eve@example.com"), "subject"),
        (SendOptions(to="bob@example.com", subject="Hi", headers={"X-Tag": "a\nBcc: eve@example.com"}), "headers"),
        (SendOptions(to=Address("bob@example.com", "Bob\r\nBcc: eve@example.com"), subject="Hi"), "to"),
        (SendOptions(to="bob@example.com", reply_to=Address("r@example.com", "R\nX: y"), subject="Hi"), "reply_to"),
        (SendOptions(to="bob@example.com", subject="Hi", in_reply_to="a@b\r\nBcc: eve@example.com"), "in_reply_to"),
    ])
    def test_rejects_line_breaks_in_headers(self, options, field):
        """Should refuse values that would add header lines."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(options)
        assert exc_info.value.field == field

    def test_rejects_bad_header_name(self):
        """Should refuse custom header names with separators."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(SendOptions(to="bob@example.com", subject="Hi", headers={"X-Tag: a\r\nBcc": "x"}))
        assert exc_info.value.field == "headers"

    def test_rejects_line_break_in_filename(self):
        """Should refuse attachment names that would add header lines."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(SendOptions(
                to="bob@example.com",
                subject="Hi",
                attachments=[AttachmentInput(filename="a.txt\r\nBcc: eve@example.com", content=b"x")],
            ))
        assert exc_info.value.field == "attachments"

    def test_rejects_invalid_address(self):
        """Should name the field holding a malformed address."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(SendOptions(to="bob@example.com", cc="not-an-address", subject="x"))
        assert exc_info.value.field == "cc"


class TestBodies:
    def test_html_only(self):
        """Should send a single text/html part."""
        text = build_message(SendOptions(to="a@b.com", subject="x", html="<p>hi</p>"))
        assert "Content-Type: text/html; charset=utf-8" in text
        assert "multipart" not in text

    def test_alternative(self):
        """Should wrap text and html in multipart/alternative."""
        text = build_message(
            SendOptions(to="a@b.com", subject="x", text="plain", html="<p>rich</p>"),
            boundary_factory=boundaries("ALT"),
        )
        assert 'Content-Type: multipart/alternative; boundary="ALT"' in text
        parsed = parse(text)
        assert parsed.get_content_type() == "multipart/alternative"
        assert parsed.get_body(("plain",)).get_content().strip() == "plain"
        assert parsed.get_body(("html",)).get_content().strip() == "<p>rich</p>"

    def test_empty_body(self):
        """Should send an empty text/plain body when none is given."""
        text = build_message(SendOptions(to="a@b.com", subject="x"))
        assert text.endswith(
            "Content-Type: text/plain; charset=utf-8\r\nMIME-Version: 1.0\r\n"
            "Content-Transfer-Encoding: 8bit\r\n\r\n"
        )

    def test_line_endings_normalized(self):
        """Should send body lines with CRLF endings and declare 8bit."""
        text = build_message(SendOptions(to="a@b.com", subject="x", text="one\ntwo\r\nthree\rfour"))
        assert text.endswith("Content-Transfer-Encoding: 8bit\r\n\r\none\r\ntwo\r\nthree\r\nfour")

    def test_utf8_body_declared(self):
        """Should declare the transfer encoding of UTF-8 parts."""
        text = build_message(
            SendOptions(to="a@b.com", subject="x", text="Grüße", html="<p>Grüße</p>"),
            boundary_factory=boundaries("ALT"),
        )
        assert text.count("Content-Transfer-Encoding: 8bit") == 2
        parsed = email.message_from_bytes(text.encode("utf-8"), policy=policy.default)
        assert parsed.get_body(("plain",)).get_content().strip() == "Grüße"


class TestAttachments:
    def test_mixed_with_attachment(self):
        """Should append base64 attachment parts after the body."""
        content = bytes(range(256)) * 2
        text = build_message(
            SendOptions(
                to="a@b.com",
                subject="files",
                text="see attached",
                html="<p>see attached</p>",
                attachments=[AttachmentInput(filename="data.bin", content=content)],
            ),
            boundary_factory=boundaries("ALT", "MIX"),
        )
        parsed = parse(text)
        assert parsed.get_content_type() == "multipart/mixed"
        parts = list(parsed.iter_parts())
        assert parts[0].get_content_type() == "multipart/alternative"
        attachment = parts[1]
        assert attachment.get_content_type() == "application/octet-stream"
        assert attachment.get_filename() == "data.bin"
        assert attachment.get_content_disposition() == "attachment"
        assert attachment.get_payload(decode=True) == content

    def test_base64_lines_wrapped(self):
        """Should keep encoded lines within 76 columns."""
        text = build_message(SendOptions(
            to="a@b.com",
            subject="x",
            text="y",
            attachments=[AttachmentInput(filename="big.txt", content="z" * 1000)],
        ))
        encoded = base64.b64encode(b"z" * 1000).decode()
        wrapped = [encoded[i:i + 76] for i in range(0, len(encoded), 76)]
        assert len(wrapped) > 1
        assert "\r\n".join(wrapped) in text

    def test_mime_type_guessed(self):
        """Should guess the type from the filename."""
        text = build_message(SendOptions(
            to="a@b.com",
            subject="x",
            attachments=[AttachmentInput(filename="report.pdf", content=b"%PDF")],
        ))
        assert 'Content-Type: application/pdf; name="report.pdf"' in text

    def test_inline_with_content_id(self):
        """Should mark parts with a content id as inline."""
        text = build_message(SendOptions(
            to="a@b.com",
            subject="x",
            html='<img src="cid:logo">',
            attachments=[AttachmentInput(filename="logo.png", content=b"\x89PNG", content_id="logo")],
        ))
        assert 'Content-Disposition: inline; filename="logo.png"' in text
        assert "Content-ID: <logo>" in text

    def test_path_attachment(self, temp_dir):
        """Should read attachment content from disk."""
        path = temp_dir / "notes.txt"
        path.write_bytes(b"from disk")
        text = build_message(SendOptions(
            to="a@b.com",
            subject="x",
            attachments=[AttachmentInput(filename="notes.txt", path=path)],
        ))
        attachment = list(parse(text).iter_attachments())[0]
        assert attachment.get_payload(decode=True) == b"from disk"

    def test_attachment_without_content(self):
        """Should reject attachments with neither content nor path."""
        with pytest.raises(ValidationError) as exc_info:
            build_message(SendOptions(to="a@b.com", subject="x", attachments=[AttachmentInput(filename="x")]))
        assert exc_info.value.field == "attachments"


class TestEncoding:
    def test_encode_message_is_base64url(self):
        """Should produce unpadded base64url of the built message."""
        options = SendOptions(to="a@b.com", subject="x", text="body ???>>>")
        raw = encode_message(options)
        assert not set(raw) & {"+", "/", "="}
        assert decode_base64url(raw) == build_message(options)

    def test_boundaries_unique(self):
        """Should generate a fresh boundary per call."""
        assert new_boundary() != new_boundary()
