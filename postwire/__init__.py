"""Provider-agnostic async email client."""

from .client import MailClient, create_mail
from .config import Config, GmailConfig, load_config
from .errors import (
    AuthenticationError,
    ErrorKind,
    MailError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    UnsupportedCapabilityError,
    ValidationError,
    is_retryable,
)
from .models import (
    Address,
    AttachmentMeta,
    Email,
    EmailBody,
    EmailId,
    Folder,
    FolderName,
    FolderType,
    Headers,
    Label,
    SendResult,
    ThreadId,
)
from .providers import (
    AttachmentInput,
    Capability,
    GetOptions,
    ListOptions,
    MailProvider,
    SendOptions,
    StreamOptions,
    WatchOptions,
    select_provider,
)
from .retry import Backoff, RetryConfig, RetryPolicy, with_retry

__all__ = [
    "Address",
    "AttachmentInput",
    "AttachmentMeta",
    "AuthenticationError",
    "Backoff",
    "Capability",
    "Config",
    "Email",
    "EmailBody",
    "EmailId",
    "ErrorKind",
    "Folder",
    "FolderName",
    "FolderType",
    "GetOptions",
    "GmailConfig",
    "Headers",
    "Label",
    "ListOptions",
    "MailClient",
    "MailError",
    "MailProvider",
    "NetworkError",
    "NotFoundError",
    "ProviderError",
    "RateLimitError",
    "RetryConfig",
    "RetryPolicy",
    "SendOptions",
    "SendResult",
    "StreamOptions",
    "ThreadId",
    "UnsupportedCapabilityError",
    "ValidationError",
    "WatchOptions",
    "create_mail",
    "is_retryable",
    "load_config",
    "select_provider",
    "with_retry",
]
