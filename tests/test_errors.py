from __future__ import annotations

import logging

import httpx
import pytest

from activity_digest.core.errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    DataProcessingError,
    ErrorKind,
    FileSystemError,
    NetworkError,
    OperationTimeoutError,
    ProviderError,
    RateLimitError,
    Severity,
    ValidationError,
    classify,
    error_context,
    is_retryable,
    log_error,
    parse_retry_after,
    recovery_suggestions,
    severity,
    user_message,
)


def test_typed_errors_are_returned_unchanged():
    error = AuthError("bad token", service="GitLab")
    assert classify(error) is error


def test_rate_limit_message_is_retryable():
    error = classify(Exception("429 rate limit exceeded"))
    assert isinstance(error, RateLimitError)
    assert error.kind is ErrorKind.RATE_LIMIT
    assert error.retryable is True


def test_unauthorized_message_is_not_retryable():
    error = classify(Exception("401 unauthorized"))
    assert isinstance(error, AuthError)
    assert error.retryable is False


def test_status_code_attribute_takes_priority():
    class Forbidden(Exception):
        status_code = 403

    assert isinstance(classify(Forbidden("nope")), AuthError)


def test_http_status_error_reads_response_and_retry_after():
    request = httpx.Request("GET", "https://gitlab.example.com/api/v4/user")
    response = httpx.Response(429, headers={"Retry-After": "7"}, request=request)
    exc = httpx.HTTPStatusError("slow down", request=request, response=response)

    error = classify(exc)

    assert isinstance(error, RateLimitError)
    assert error.retry_after == 7.0


@pytest.mark.parametrize(
    "exc, expected",
    [
        (TimeoutError(), OperationTimeoutError),
        (Exception("connect ETIMEDOUT 10.0.0.1:443"), OperationTimeoutError),
        (httpx.ConnectError("connection refused"), NetworkError),
        (Exception("Server returned 502"), NetworkError),
        (ConnectionResetError("peer went away"), NetworkError),
        (Exception("400 Bad Request"), ValidationError),
        (Exception("422 Unprocessable Entity"), ValidationError),
    ],
)
def test_classifier_priority(exc, expected):
    assert isinstance(classify(exc), expected)


def test_other_client_errors_become_non_retryable_api_errors():
    error = classify(Exception("404 Not Found"))
    assert isinstance(error, ApiError)
    assert error.status_code == 404
    assert error.retryable is False
    assert error.code == "API_404"


def test_file_system_errors_are_recognised():
    error = classify(FileNotFoundError(2, "No such file or directory", "/tmp/missing.json"))
    assert isinstance(error, FileSystemError)
    assert error.path == "/tmp/missing.json"
    assert error.retryable is False


def test_unknown_errors_default_to_retryable_network():
    error = classify(ValueError("something odd happened"))
    assert isinstance(error, NetworkError)
    assert is_retryable(ValueError("something odd happened"))


@pytest.mark.parametrize("status, retryable", [(500, True), (503, True), (429, True), (404, False), (409, False)])
def test_api_error_retryability_follows_status(status, retryable):
    assert ApiError("failed", status, "GitLab").retryable is retryable


def test_kind_defaults():
    assert RateLimitError("x", service="s").retryable
    assert OperationTimeoutError("x", service="s").retryable
    assert ProviderError("x", provider="p").retryable
    assert not DataProcessingError("x", operation="decode").retryable
    circuit = CircuitOpenError("GitLab_GET_gitlab.example.com")
    assert circuit.kind is ErrorKind.NETWORK
    assert circuit.retryable is False


def test_severity_mapping():
    assert severity(NetworkError("x", service="s")) is Severity.WARNING
    assert severity(AuthError("x", service="s")) is Severity.ERROR
    assert severity(ValidationError("x", field="start_date")) is Severity.WARNING
    assert severity(ApiError("x", 404, "s")) is Severity.ERROR


def test_user_message_and_suggestions():
    auth = AuthError("token expired", service="GitLab")
    assert "credentials" in user_message(auth)
    assert recovery_suggestions(auth)[0] == "Check your API credentials and tokens"

    provider = ProviderError("model overloaded", provider="llm")
    assert user_message(provider) == "model overloaded"
    assert recovery_suggestions(provider)[0] == "Check the logs for more details"


def test_error_context_flattens_fields():
    payload = error_context(ApiError("boom", 502, "GitLab", endpoint="/projects"))
    assert payload["error_kind"] == "api"
    assert payload["error_code"] == "API_502"
    assert payload["retryable"] is True
    assert payload["endpoint"] == "/projects"
    assert payload["service"] == "GitLab"


def test_log_error_uses_classified_severity(caplog):
    logger = logging.getLogger("test.errors")
    with caplog.at_level(logging.DEBUG, logger="test.errors"):
        log_error(logger, AuthError("denied", service="GitLab"), "fetch user")
        log_error(logger, NetworkError("reset", service="GitLab"), "fetch projects")

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.ERROR, logging.WARNING]
    assert caplog.records[0].operation == "fetch user"
    assert "Authentication failed" in caplog.records[0].getMessage()


@pytest.mark.parametrize("value, expected", [("12", 12.0), ("-3", 0.0), ("soon", None), (None, None)])
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
