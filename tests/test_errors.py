from __future__ import annotations

from dynamo_backend.errors import DynamoBackendError, ErrorKind, classify_error, format_error
from dynamo_backend.properties import Properties


def test_credentials_error_is_promoted_to_access_expired():
    err = classify_error(Properties.of(error="boom", type="AWS error", code="CredentialsError"))
    assert err.kind is ErrorKind.ACCESS_EXPIRED
    assert err.message == "boom"


def test_aws_error_keeps_operation_code_and_retryable():
    err = classify_error(
        Properties(
            [
                ("operation", "put"),
                ("error", "slow down"),
                ("type", "AWS error"),
                ("code", "ThrottlingException"),
                ("retryable", "true"),
            ]
        )
    )
    assert err.kind is ErrorKind.AWS_ERROR
    assert err.operation == "put"
    assert err.code == "ThrottlingException"
    assert err.retryable is True
    assert format_error(err) == (
        "AWS error, operation: put, code: ThrottlingException, retryable: true, message: slow down"
    )


def test_retryable_is_only_true_for_literal_true():
    err = classify_error(Properties.of(error="x", type="AWS error", code="C", retryable="yes"))
    assert err.retryable is False


def test_unknown_or_missing_type_is_other():
    assert classify_error(Properties.of(error="x")).kind is ErrorKind.OTHER
    assert classify_error(Properties.of(error="x", type="Bogus")).kind is ErrorKind.OTHER


def test_known_type_tags():
    assert classify_error(Properties.of(error="x", type="FetchProfileError")).kind is ErrorKind.FETCH_PROFILE_ERROR
    assert classify_error(Properties.of(error="x", type="AccessTokenError")).kind is ErrorKind.ACCESS_TOKEN_ERROR


def test_format_non_aws_error_uses_label():
    err = DynamoBackendError(kind=ErrorKind.INTERNAL_ERROR, message="Unknown operation: x")
    assert format_error(err) == "Internal error: Unknown operation: x"
    assert str(err) == format_error(err)
