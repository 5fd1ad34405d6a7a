"""Gmail implementation of :class:`~postwire.providers.base.MailProvider`."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone

import httpx

from postwire.codecs import decode_base64url_bytes
from postwire.config import GmailConfig
from postwire.errors import NotFoundError, ProviderError, UnsupportedCapabilityError
from postwire.models import Email, EmailId, Folder, FolderName, SendResult, ThreadId
from postwire.providers.base import (
    Capability,
    GetOptions,
    ListOptions,
    SendOptions,
    StreamOptions,
    WatchHandle,
    WatchOptions,
)

from .api import GmailApi
from .auth import TokenCallback, TokenSource, token_source_from_config
from .mime import encode_message
from .parser import SYSTEM_LABEL_IDS, folder_to_label_id, is_user_label, label_to_folder, parse_gmail_message

logger = logging.getLogger("postwire.gmail")

# Labels that place a message in a mailbox-like location
LOCATION_LABELS = ("INBOX", "SPAM", "TRASH")

# Largest maxResults the messages.list endpoint honours
MAX_PAGE_SIZE = 500


def _search_term(operator: str, value: str) -> str:
    value = value.strip()
    if any(c.isspace() for c in value):
        value = '"' + value.replace('"', "") + '"'
    return f"{operator}:{value}"


def _epoch_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def build_query(options: ListOptions) -> str:
    """Translate list filters into Gmail search syntax."""
    terms = []
    if options.from_addr:
        terms.append(_search_term("from", options.from_addr))
    if options.to:
        terms.append(_search_term("to", options.to))
    if options.subject:
        terms.append(_search_term("subject", options.subject))
    if options.after:
        terms.append(f"after:{_epoch_seconds(options.after)}")
    if options.before:
        terms.append(f"before:{_epoch_seconds(options.before)}")
    if options.has_attachment:
        terms.append("has:attachment")
    if options.unread_only:
        terms.append("is:unread")
    if options.query:
        terms.append(options.query)
    return " ".join(terms)


class GmailProvider:
    """Mail provider backed by the Gmail REST API.

    Folders are Gmail labels: system folders map to their fixed label ids
    and anything else is looked up by label name.
    """

    def __init__(
        self,
        config: GmailConfig,
        token_source: TokenSource | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_token_refresh: TokenCallback | None = None,
    ):
        self.config = config
        self.token_source = token_source or token_source_from_config(config, on_token_refresh)
        self.api = GmailApi(config, self.token_source, http_client)
        self._connected = False

    @property
    def name(self) -> str:
        return "gmail"

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset({Capability.ATTACHMENTS})

    # Connection

    async def connect(self) -> None:
        """Open the HTTP client and verify the credentials."""
        await self.api.open()
        profile = await self.api.get_profile()
        self._connected = True
        logger.info(f"Connected to Gmail as {profile.get('emailAddress', self.config.user_id)}")

    async def disconnect(self) -> None:
        await self.api.aclose()
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def __aenter__(self) -> GmailProvider:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    # Label resolution

    async def _resolve_label_id(self, name: str, resource_type: str = "Label") -> str:
        label_id = folder_to_label_id(name)
        if label_id in SYSTEM_LABEL_IDS or is_user_label(label_id) or label_id != name:
            return label_id

        wanted = name.lower()
        for label in await self.api.list_labels():
            if label["id"] == name or label["name"].lower() == wanted:
                return label["id"]
        raise NotFoundError(resource_type, name)

    async def _label_filter(self, options: ListOptions) -> list[str]:
        label_ids = []
        if options.folder:
            label_ids.append(await self._resolve_label_id(options.folder, "Folder"))
        for label in options.labels:
            label_ids.append(await self._resolve_label_id(label))
        return label_ids

    # Reading

    async def _fetch_email(self, message_id: str, options: GetOptions | None = None) -> Email:
        options = options or GetOptions()
        format = options.format or "full"
        message = await self.api.get_message(message_id, format)

        if options.include_raw and format != "raw":
            raw_message = await self.api.get_message(message_id, "raw")
            message = {**message, "raw": raw_message.get("raw", "")}

        email = parse_gmail_message(message)
        if not options.include_attachments:
            email = dataclasses.replace(email, attachments=())
        return email

    async def list(self, options: ListOptions | None = None) -> list[Email]:
        options = options or ListOptions()
        limit = options.limit if options.limit is not None else self.config.page_size
        offset = max(options.offset, 0)
        if limit <= 0:
            return []

        # Gmail has no offset parameter; page through enough stubs to skip past it
        wanted = offset + limit
        query = build_query(options)
        label_ids = await self._label_filter(options)
        stubs: list[dict] = []
        page_token: str | None = None
        while len(stubs) < wanted:
            response = await self.api.list_messages(
                query=query,
                label_ids=label_ids,
                max_results=min(wanted - len(stubs), MAX_PAGE_SIZE),
                page_token=page_token,
            )
            stubs.extend(response.get("messages") or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        stubs = stubs[offset:wanted]
        if not stubs:
            return []

        semaphore = asyncio.Semaphore(max(self.config.detail_concurrency, 1))

        async def fetch(message_id: str) -> Email:
            async with semaphore:
                return await self._fetch_email(message_id)

        return list(await asyncio.gather(*(fetch(stub["id"]) for stub in stubs)))

    async def get(self, id: EmailId | str, options: GetOptions | None = None) -> Email:
        return await self._fetch_email(str(id), options)

    async def stream(self, options: StreamOptions | None = None) -> AsyncIterator[Email]:
        """Yield matching emails page by page.

        Each page is requested only once the previous one has been consumed,
        and each message is fetched as it is reached.
        """
        options = options or StreamOptions()
        batch_size = min(options.batch_size or self.config.page_size, MAX_PAGE_SIZE)
        query = build_query(options)
        label_ids = await self._label_filter(options)

        to_skip = max(options.offset, 0)
        remaining = options.limit
        page_token: str | None = None
        page = 0

        while True:
            page += 1
            logger.debug(f"Fetching message page {page}")
            response = await self.api.list_messages(
                query=query,
                label_ids=label_ids,
                max_results=batch_size,
                page_token=page_token,
            )

            for stub in response.get("messages") or []:
                if to_skip:
                    to_skip -= 1
                    continue
                if remaining is not None and remaining <= 0:
                    return
                yield await self._fetch_email(stub["id"])
                if remaining is not None:
                    remaining -= 1

            page_token = response.get("nextPageToken")
            if not page_token or (remaining is not None and remaining <= 0):
                return

    async def get_attachment(self, email_id: EmailId | str, attachment_id: str) -> bytes:
        response = await self.api.get_attachment(str(email_id), attachment_id)
        data = response.get("data")
        if data is None:
            raise ProviderError("gmail", f"Attachment {attachment_id} has no data")
        try:
            return decode_base64url_bytes(data)
        except ValueError as e:
            raise ProviderError("gmail", f"Attachment {attachment_id} is not valid base64", cause=e) from e

    # Sending

    async def send(self, options: SendOptions) -> SendResult:
        result = await self.api.send_message(encode_message(options))
        thread_id = result.get("threadId")
        return SendResult(
            id=EmailId(result["id"]),
            timestamp=datetime.now(timezone.utc),
            thread_id=ThreadId(thread_id) if thread_id else None,
        )

    # Folders

    async def list_folders(self) -> list[Folder]:
        return [label_to_folder(label) for label in await self.api.list_labels()]

    async def get_folder(self, name: FolderName | str) -> Folder:
        label_id = await self._resolve_label_id(name, "Folder")
        return label_to_folder(await self.api.get_label(label_id))

    async def create_folder(self, name: str) -> Folder:
        return label_to_folder(await self.api.create_label(name))

    async def delete_folder(self, name: FolderName | str) -> None:
        label_id = await self._resolve_label_id(name, "Folder")
        await self.api.delete_label(label_id)

    # Mutations

    async def _modify(self, id: EmailId | str, add: list[str] | None = None, remove: list[str] | None = None) -> None:
        await self.api.modify_message(str(id), add_label_ids=add, remove_label_ids=remove)

    async def mark_as_read(self, id: EmailId | str) -> None:
        await self._modify(id, remove=["UNREAD"])

    async def mark_as_unread(self, id: EmailId | str) -> None:
        await self._modify(id, add=["UNREAD"])

    async def star(self, id: EmailId | str) -> None:
        await self._modify(id, add=["STARRED"])

    async def unstar(self, id: EmailId | str) -> None:
        await self._modify(id, remove=["STARRED"])

    async def move(self, id: EmailId | str, folder: FolderName | str) -> None:
        """Take the message out of INBOX/SPAM/TRASH and into ``folder``.

        User labels already on the message are kept.
        """
        label_id = await self._resolve_label_id(folder, "Folder")
        remove = [label for label in LOCATION_LABELS if label != label_id]
        await self._modify(id, add=[label_id], remove=remove)

    async def delete(self, id: EmailId | str) -> None:
        """Move to trash; Gmail purges trash after 30 days."""
        await self.api.trash_message(str(id))

    async def add_label(self, id: EmailId | str, label: str) -> None:
        await self._modify(id, add=[await self._resolve_label_id(label)])

    async def remove_label(self, id: EmailId | str, label: str) -> None:
        await self._modify(id, remove=[await self._resolve_label_id(label)])

    def watch(self, options: WatchOptions | None = None) -> WatchHandle:
        raise UnsupportedCapabilityError(self.name, Capability.WATCH.value)
