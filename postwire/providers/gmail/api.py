"""Thin async transport for the Gmail REST API.

Translates HTTP failures into the postwire error taxonomy; everything else
is returned as decoded JSON.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from postwire.config import GmailConfig
from postwire.errors import (
    AuthenticationError,
    MailError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
)

from .auth import TokenSource
from .types import GmailLabelResource, GmailMessage

logger = logging.getLogger("postwire.gmail")

# Path collection segment -> resource type named in NotFoundError
_RESOURCE_TYPES = {
    "messages": "Message",
    "threads": "Thread",
    "labels": "Label",
    "attachments": "Attachment",
    "drafts": "Draft",
}


def _resource_from_path(path: str) -> tuple[str, str]:
    segments = [s for s in path.split("/") if s]
    resource = ("Resource", path)
    for i, segment in enumerate(segments[:-1]):
        if segment in _RESOURCE_TYPES:
            resource = (_RESOURCE_TYPES[segment], segments[i + 1])
    return resource


def _retry_after_ms(value: str | None) -> float | None:
    """Retry-After as milliseconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value) * 1000.0
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds() * 1000)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if isinstance(error, str):
        return error
    return response.reason_phrase


def map_response_error(response: httpx.Response, path: str) -> MailError:
    """Build the error matching a failed Gmail response."""
    status = response.status_code
    message = _error_message(response)

    if status == 401:
        return AuthenticationError(f"Authentication failed: {message}")
    if status == 403:
        return AuthenticationError(f"Access denied: {message}")
    if status == 404:
        resource_type, resource_id = _resource_from_path(path)
        return NotFoundError(resource_type, resource_id)
    if status == 429:
        return RateLimitError(
            f"Rate limited: {message}",
            retry_after=_retry_after_ms(response.headers.get("Retry-After")),
        )
    if status >= 500:
        return ProviderError("gmail", f"Server error {status}: {message}", retryable=True)
    return ProviderError("gmail", f"Request failed with {status}: {message}")


class GmailApi:
    """Async Gmail REST client.

    Use as an async context manager, or pass an already configured
    ``httpx.AsyncClient`` that the caller owns.
    """

    def __init__(
        self,
        config: GmailConfig,
        token_source: TokenSource,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.token_source = token_source
        self._client = http_client
        self._owns_client = http_client is None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
            self._owns_client = True

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GmailApi:
        await self.open()
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ProviderError("gmail", "Client not initialized. Call connect() first.")
        return self._client

    def _user_path(self, suffix: str) -> str:
        return f"/users/{self.config.user_id}/{suffix}"

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> tuple[str, httpx.Response]:
        token = await self.token_source.get_token(self.client)
        try:
            response = await self.client.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Gmail request {method} {path} failed: {e}", cause=e) from e
        return token, response

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authorized request and return the decoded JSON body.

        A 401 from a refreshable token source drops the cached token and
        replays the request once with a fresh one.

        Raises:
            AuthenticationError: On 401/403 or a failed token refresh
            NotFoundError: On 404
            RateLimitError: On 429
            NetworkError: If the request never got a response
            ProviderError: On any other failure status
        """
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        token, response = await self._send(method, path, params, json)
        if response.status_code == 401 and self.token_source.can_refresh:
            logger.info(f"{method} {path} rejected the access token, refreshing")
            self.token_source.invalidate(token)
            _, response = await self._send(method, path, params, json)

        if response.is_error:
            error = map_response_error(response, path)
            logger.debug(f"{method} {path} -> {response.status_code}: {error}")
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("gmail", f"Invalid JSON from {method} {path}", cause=e) from e

    # Profile

    async def get_profile(self) -> dict[str, Any]:
        return await self.request("GET", self._user_path("profile"))

    # Messages

    async def list_messages(
        self,
        query: str | None = None,
        label_ids: list[str] | None = None,
        max_results: int | None = None,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        """One page of message stubs (``id``/``threadId``) plus ``nextPageToken``."""
        return await self.request(
            "GET",
            self._user_path("messages"),
            params={
                "q": query or None,
                "labelIds": label_ids or None,
                "maxResults": max_results,
                "pageToken": page_token,
            },
        )

    async def get_message(self, message_id: str, format: str = "full") -> GmailMessage:
        return await self.request(
            "GET", self._user_path(f"messages/{message_id}"), params={"format": format}
        )

    async def send_message(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        return await self.request("POST", self._user_path("messages/send"), json=body)

    async def modify_message(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> GmailMessage:
        return await self.request(
            "POST",
            self._user_path(f"messages/{message_id}/modify"),
            json={
                "addLabelIds": add_label_ids or [],
                "removeLabelIds": remove_label_ids or [],
            },
        )

    async def trash_message(self, message_id: str) -> GmailMessage:
        return await self.request("POST", self._user_path(f"messages/{message_id}/trash"))

    async def get_attachment(self, message_id: str, attachment_id: str) -> dict[str, Any]:
        return await self.request(
            "GET", self._user_path(f"messages/{message_id}/attachments/{attachment_id}")
        )

    # Labels

    async def list_labels(self) -> list[GmailLabelResource]:
        response = await self.request("GET", self._user_path("labels"))
        return response.get("labels") or []

    async def get_label(self, label_id: str) -> GmailLabelResource:
        return await self.request("GET", self._user_path(f"labels/{label_id}"))

    async def create_label(self, name: str) -> GmailLabelResource:
        return await self.request(
            "POST",
            self._user_path("labels"),
            json={
                "name": name,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            },
        )

    async def delete_label(self, label_id: str) -> None:
        await self.request("DELETE", self._user_path(f"labels/{label_id}"))
