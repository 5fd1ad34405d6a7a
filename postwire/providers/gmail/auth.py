"""Access-token sources for the Gmail API.

Every outgoing request reads the current token. When it has expired, the
first caller starts one refresh task and every concurrent caller awaits that
same task, so a burst of requests triggers at most one token exchange.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from postwire.codecs import encode_base64url
from postwire.config import GMAIL_SCOPES, GOOGLE_TOKEN_URL, GmailConfig
from postwire.errors import AuthenticationError, NetworkError, ProviderError

logger = logging.getLogger("postwire.gmail")

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600

# (claims, private key PEM) -> compact signed assertion
Signer = Callable[[dict[str, Any], str], str]
TokenCallback = Callable[[str, datetime | None], Awaitable[None] | None]


def sign_rs256(claims: dict[str, Any], private_key: str) -> str:
    """Produce a compact RS256 JWT from ``claims``."""
    try:
        key = serialization.load_pem_private_key(private_key.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise AuthenticationError("Service account private key could not be loaded", cause=e) from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthenticationError("Service account private key is not an RSA key")

    header = {"alg": "RS256", "typ": "JWT"}
    signing_input = ".".join(
        encode_base64url(json.dumps(part, separators=(",", ":")))
        for part in (header, claims)
    )
    signature = key.sign(signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256())
    return f"{signing_input}.{encode_base64url(signature)}"


async def exchange_token(http: httpx.AsyncClient, url: str, data: dict[str, str]) -> tuple[str, datetime | None]:
    """POST a token grant; return the access token and its expiry.

    Raises:
        AuthenticationError: If the grant is rejected
        NetworkError: If the token endpoint cannot be reached
        ProviderError: On other token endpoint failures
    """
    try:
        response = await http.post(url, data=data, headers={"Accept": "application/json"})
    except httpx.TransportError as e:
        raise NetworkError("Failed to reach token endpoint", cause=e) from e

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code in (400, 401, 403):
        detail = payload.get("error_description") or payload.get("error") or response.reason_phrase
        raise AuthenticationError(f"Token exchange rejected: {detail}")
    if response.is_error:
        raise ProviderError(
            "gmail",
            f"Token endpoint error {response.status_code}: {response.reason_phrase}",
            retryable=response.status_code >= 500,
        )

    token = payload.get("access_token")
    if not token:
        raise AuthenticationError("Token endpoint returned no access_token")

    expires_in = payload.get("expires_in")
    expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        if expires_in is not None
        else None
    )
    return token, expires_at


class TokenSource:
    """Caches an access token and serializes refreshes."""

    # Refresh this long before the token actually expires
    REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(self, access_token: str = "", expires_at: datetime | None = None):
        self._access_token = access_token
        self._expires_at = expires_at
        self._refresh_task: asyncio.Task[str] | None = None

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    def is_valid(self) -> bool:
        if not self._access_token:
            return False
        if self._expires_at is None:
            return True
        return datetime.now(timezone.utc) + self.REFRESH_MARGIN < self._expires_at

    @property
    def can_refresh(self) -> bool:
        return False

    def invalidate(self, token: str) -> None:
        """Forget ``token`` after the server rejected it.

        A token that was already replaced by a concurrent refresh is kept.
        """
        if self._access_token == token:
            self._access_token = ""

    async def get_token(self, http: httpx.AsyncClient) -> str:
        if self.is_valid():
            return self._access_token

        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._refresh(http))
            self._refresh_task = task
            task.add_done_callback(self._refresh_finished)
        # Shielded so one cancelled caller does not cancel everyone's refresh
        return await asyncio.shield(task)

    def _refresh_finished(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh(self, http: httpx.AsyncClient) -> str:
        token, expires_at = await self.fetch_token(http)
        self._access_token = token
        self._expires_at = expires_at
        logger.info("Gmail access token refreshed")
        await self.on_refreshed(token, expires_at)
        return token

    async def fetch_token(self, http: httpx.AsyncClient) -> tuple[str, datetime | None]:
        raise NotImplementedError

    async def on_refreshed(self, token: str, expires_at: datetime | None) -> None:
        pass


class StaticTokenSource(TokenSource):
    """A fixed access token that cannot be refreshed."""

    async def fetch_token(self, http: httpx.AsyncClient) -> tuple[str, datetime | None]:
        if not self._access_token and self._expires_at is None:
            raise AuthenticationError("No access token configured")
        raise AuthenticationError("Token expired")


class OAuthTokenSource(TokenSource):
    """User OAuth tokens, refreshed with the refresh-token grant."""

    def __init__(
        self,
        access_token: str = "",
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        expires_at: datetime | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        on_token_refresh: TokenCallback | None = None,
    ):
        super().__init__(access_token, expires_at)
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.on_token_refresh = on_token_refresh

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    async def fetch_token(self, http: httpx.AsyncClient) -> tuple[str, datetime | None]:
        if not self.refresh_token:
            raise AuthenticationError("Token expired")
        if not (self.client_id and self.client_secret):
            raise AuthenticationError("Token expired and no OAuth client credentials to refresh it")

        return await exchange_token(
            http,
            self.token_url,
            {
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )

    async def on_refreshed(self, token: str, expires_at: datetime | None) -> None:
        if self.on_token_refresh is None:
            return
        result = self.on_token_refresh(token, expires_at)
        if inspect.isawaitable(result):
            await result


class ServiceAccountTokenSource(TokenSource):
    """Service-account tokens obtained with a signed JWT-bearer assertion."""

    def __init__(
        self,
        client_email: str,
        private_key: str,
        delegate_email: str | None = None,
        scopes: list[str] | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        signer: Signer = sign_rs256,
    ):
        super().__init__()
        self.client_email = client_email
        self.private_key = private_key
        self.delegate_email = delegate_email
        self.scopes = scopes or GMAIL_SCOPES.copy()
        self.token_url = token_url
        self.signer = signer

    @property
    def can_refresh(self) -> bool:
        return True

    @classmethod
    def from_file(cls, path: str | Path, delegate_email: str | None = None, **kwargs: Any) -> ServiceAccountTokenSource:
        """Load a service account JSON key file."""
        data = json.loads(Path(path).read_text())
        try:
            return cls(
                client_email=data["client_email"],
                private_key=data["private_key"],
                delegate_email=delegate_email,
                **kwargs,
            )
        except KeyError as e:
            raise AuthenticationError(f"Service account file {path} is missing {e.args[0]}") from e

    def build_claims(self, now: int | None = None) -> dict[str, Any]:
        issued_at = int(time.time()) if now is None else now
        claims: dict[str, Any] = {
            "iss": self.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.token_url,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        if self.delegate_email:
            claims["sub"] = self.delegate_email
        return claims

    async def fetch_token(self, http: httpx.AsyncClient) -> tuple[str, datetime | None]:
        assertion = self.signer(self.build_claims(), self.private_key)
        return await exchange_token(
            http,
            self.token_url,
            {"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        )


def token_source_from_config(
    config: GmailConfig,
    on_token_refresh: TokenCallback | None = None,
) -> TokenSource:
    """Pick the token source the configuration describes."""
    if config.uses_service_account:
        return ServiceAccountTokenSource.from_file(
            config.service_account_file,
            delegate_email=config.delegate_email,
            scopes=config.scopes,
            token_url=config.token_url,
        )
    if config.refresh_token:
        return OAuthTokenSource(
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            client_id=config.client_id,
            client_secret=config.client_secret,
            expires_at=config.expires_at,
            token_url=config.token_url,
            on_token_refresh=on_token_refresh,
        )
    return StaticTokenSource(config.access_token, config.expires_at)
