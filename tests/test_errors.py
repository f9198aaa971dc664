from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

from sessync.errors import ErrorKind, classify, describe, is_retryable

from support import http_error


def test_transport_errors_are_connection_level():
    assert classify(ServiceRequestError("Name or service not known")) is ErrorKind.CONNECTION
    assert classify(ServiceResponseError("Connection aborted")) is ErrorKind.CONNECTION
    assert classify(ConnectionResetError("reset by peer")) is ErrorKind.CONNECTION
    assert classify(TimeoutError()) is ErrorKind.CONNECTION


def test_payload_too_large_from_status():
    assert classify(http_error(413)) is ErrorKind.PAYLOAD_TOO_LARGE


def test_payload_too_large_from_error_code():
    exc = HttpResponseError(message="The request body is too large")
    exc.error_code = "RequestBodyTooLarge"
    assert classify(exc) is ErrorKind.PAYLOAD_TOO_LARGE


def test_server_and_throttling_statuses_are_transient():
    for status in (408, 429, 500, 502, 503, 504):
        assert classify(http_error(status)) is ErrorKind.TRANSIENT, status


def test_not_found_is_transient():
    exc = ResourceNotFoundError(message="The specified container does not exist.")
    exc.status_code = 404
    assert classify(exc) is ErrorKind.TRANSIENT


def test_quota_forbidden_is_transient_but_plain_forbidden_is_fatal():
    assert classify(http_error(403, "403 Quota exceeded")) is ErrorKind.TRANSIENT
    assert classify(http_error(403, "This request is not authorized")) is ErrorKind.FATAL


def test_other_client_errors_are_fatal():
    assert classify(http_error(400, "Invalid request")) is ErrorKind.FATAL
    assert classify(ClientAuthenticationError(message="Authentication failed")) is ErrorKind.FATAL


def test_message_signatures_for_untyped_errors():
    assert classify(RuntimeError("HTTP status client error (413 Request Entity Too Large)")) is ErrorKind.PAYLOAD_TOO_LARGE
    assert classify(RuntimeError("error sending request: Broken pipe")) is ErrorKind.CONNECTION
    assert classify(RuntimeError("connection reset by peer")) is ErrorKind.CONNECTION
    assert classify(RuntimeError("unexpected end of file")) is ErrorKind.CONNECTION
    assert classify(RuntimeError("EOF")) is ErrorKind.CONNECTION
    assert classify(RuntimeError("503 Service Unavailable")) is ErrorKind.TRANSIENT
    assert classify(RuntimeError("rate limit exceeded")) is ErrorKind.TRANSIENT
    assert classify(RuntimeError("Quota limit reached")) is ErrorKind.TRANSIENT
    assert classify(RuntimeError("Timeout waiting for response")) is ErrorKind.TRANSIENT
    assert classify(RuntimeError("Table not found")) is ErrorKind.TRANSIENT


def test_status_codes_in_messages_match_whole_words_only():
    assert classify(RuntimeError("row 1500 invalid")) is ErrorKind.FATAL
    assert classify(RuntimeError("field 4290 out of range")) is ErrorKind.FATAL
    assert classify(RuntimeError("column x4130 rejected")) is ErrorKind.FATAL
    assert classify(RuntimeError("upstream returned 429")) is ErrorKind.TRANSIENT
    assert classify(RuntimeError("status=500")) is ErrorKind.TRANSIENT


def test_unrecognized_errors_are_fatal():
    assert classify(ValueError("Invalid request")) is ErrorKind.FATAL
    assert classify(RuntimeError("Authentication failed")) is ErrorKind.FATAL
    assert classify(KeyError("uuid")) is ErrorKind.FATAL


def test_cause_chain_is_considered():
    try:
        try:
            raise ConnectionRefusedError("Connection refused")
        except ConnectionRefusedError as inner:
            raise RuntimeError("insert failed") from inner
    except RuntimeError as exc:
        assert describe(exc) == "insert failed | Connection refused"
        assert classify(exc) is ErrorKind.CONNECTION


def test_retryable_kinds():
    assert is_retryable(ErrorKind.CONNECTION)
    assert is_retryable(ErrorKind.TRANSIENT)
    assert not is_retryable(ErrorKind.PAYLOAD_TOO_LARGE)
    assert not is_retryable(ErrorKind.FATAL)
