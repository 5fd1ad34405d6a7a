"""Error taxonomy shared by every backend.

Backends translate transport and payload failures into these errors before
they reach the client facade. Callers decide what to do from ``retryable``
alone; ``kind`` is there for exhaustive handling::

    match exc.kind:
        case ErrorKind.AUTH_ERROR: ...
        case ErrorKind.RATE_LIMIT: ...
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class MailError(Exception):
    """Base error: ``kind``, ``message``, ``retryable`` and optional ``cause``."""

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def code(self) -> str:
        return self.kind.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, retryable={self.retryable})"


class AuthenticationError(MailError):
    kind = ErrorKind.AUTH_ERROR

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, retryable=False, cause=cause)


class RateLimitError(MailError):
    """Too many requests. ``retry_after`` is in milliseconds when known."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, retryable=True, cause=cause)
        self.retry_after = retry_after


class NotFoundError(MailError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str, cause: BaseException | None = None):
        super().__init__(f"{resource_type} not found: {resource_id}", retryable=False, cause=cause)
        self.resource_type = resource_type
        self.resource_id = resource_id


class NetworkError(MailError):
    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, retryable=True, cause=cause)


class ValidationError(MailError):
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, retryable=False)
        self.field = field


class ProviderError(MailError):
    """Backend-specific failure. Retryable only when the backend says so."""

    kind = ErrorKind.PROVIDER_ERROR

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
        cause: BaseException | None = None,
    ):
        super().__init__(message, retryable=retryable, cause=cause)
        self.provider = provider


class UnsupportedCapabilityError(ProviderError):
    """An optional capability was requested from a backend that lacks it."""

    def __init__(self, provider: str, capability: str):
        super().__init__(
            provider,
            f"Provider {provider} does not support {capability}",
            retryable=False,
        )
        self.capability = capability


def is_retryable(exc: BaseException) -> bool:
    """Retry unless the error says otherwise.

    Errors raised by unrelated code carry no ``retryable`` attribute and are
    treated as retryable.
    """
    return bool(getattr(exc, "retryable", True))
