"""Tests for the error taxonomy."""

import pytest

from postwire.errors import (
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


class TestRetryableFlag:
    @pytest.mark.parametrize("error,expected", [
        (AuthenticationError("bad token"), False),
        (RateLimitError("slow down"), True),
        (NotFoundError("Message", "m1"), False),
        (NetworkError("reset"), True),
        (ValidationError("bad", field="to"), False),
        (ProviderError("gmail", "boom"), False),
        (ProviderError("gmail", "boom", retryable=True), True),
        (UnsupportedCapabilityError("gmail", "watch"), False),
    ])
    def test_retryable_by_kind(self, error, expected):
        """Should mark only transient failures as retryable."""
        assert error.retryable is expected
        assert is_retryable(error) is expected

    def test_foreign_errors_are_retryable(self):
        """Should treat errors without a retryable flag as retryable."""
        assert is_retryable(RuntimeError("x")) is True


class TestErrorFields:
    def test_kind_and_code(self):
        """Should expose the kind as a string code."""
        error = RateLimitError("slow down", retry_after=2000)
        assert error.kind is ErrorKind.RATE_LIMIT
        assert error.code == "RATE_LIMIT"
        assert error.retry_after == 2000

    def test_not_found_message(self):
        """Should describe the missing resource."""
        error = NotFoundError("Folder", "Work")
        assert str(error) == "Folder not found: Work"
        assert error.resource_type == "Folder"
        assert error.resource_id == "Work"

    def test_cause_is_chained(self):
        """Should keep the underlying exception as __cause__."""
        cause = ConnectionResetError("reset")
        error = NetworkError("lost connection", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_validation_field(self):
        """Should record the offending field."""
        assert ValidationError("bad address", field="cc").field == "cc"

    def test_unsupported_capability(self):
        """Should be a provider error naming the capability."""
        error = UnsupportedCapabilityError("gmail", "watch")
        assert isinstance(error, ProviderError)
        assert error.kind is ErrorKind.PROVIDER_ERROR
        assert str(error) == "Provider gmail does not support watch"

    def test_all_share_base(self):
        """Should let callers catch every library error at once."""
        for error in (AuthenticationError("x"), NetworkError("x"), ValidationError("x")):
            assert isinstance(error, MailError)
