"""
Tests for the error taxonomy and structured error context.
"""
from __future__ import annotations

import json

import pytest

from xver.errors import (
    AuthExhausted,
    ConfigurationError,
    DisconnectReason,
    ErrorContext,
    IOFailure,
    NoServerAvailable,
    TransportError,
    TrustDenied,
    XverError,
)


class TestErrorContext:
    """ErrorContext serialisation and invariants."""

    def test_to_dict_drops_none(self) -> None:
        ctx = ErrorContext(host="example.com", port=22)
        assert ctx.to_dict() == {"host": "example.com", "port": 22}

    def test_extra_is_flattened(self) -> None:
        ctx = ErrorContext(host="h", extra={"reason": "read_error"})
        assert ctx.to_dict() == {"host": "h", "reason": "read_error"}

    def test_extra_collision_rejected(self) -> None:
        ctx = ErrorContext(extra={"host": "shadow"})
        with pytest.raises(AssertionError, match="collision"):
            ctx.to_dict()

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_invalid_port(self, port: int) -> None:
        with pytest.raises(AssertionError):
            ErrorContext(port=port)


class TestHierarchy:
    """Every error is an XverError with its own type name."""

    @pytest.mark.parametrize(
        "error_class",
        [ConfigurationError, NoServerAvailable, TrustDenied, AuthExhausted, IOFailure, TransportError],
    )
    def test_subclasses(self, error_class: type[XverError]) -> None:
        error = error_class("something failed")
        assert isinstance(error, XverError)
        assert error.error_type == error_class.__name__
        assert error.to_dict()["message"] == "something failed"

    def test_no_server_is_configuration_error(self) -> None:
        assert issubclass(NoServerAvailable, ConfigurationError)

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(AssertionError):
            XverError("  ")


class TestErrorPayloads:
    """Type-specific fields land in the context."""

    def test_trust_denied(self) -> None:
        error = TrustDenied(
            "Host key verification failed",
            algorithm="ssh-ed25519",
            presented_key="AAAA",
            trusted_key="BBBB",
            context=ErrorContext(host="example.com", port=22),
        )
        data = error.to_dict()
        assert data["error_type"] == "TrustDenied"
        assert data["algorithm"] == "ssh-ed25519"
        assert data["presented_key"] == "AAAA"
        assert data["trusted_key"] == "BBBB"
        assert data["host"] == "example.com"

    def test_auth_exhausted(self) -> None:
        error = AuthExhausted("Authentication failed", tried_methods=["publickey", "password"])
        assert error.to_dict()["tried_methods"] == ["publickey", "password"]

    def test_io_failure(self) -> None:
        error = IOFailure("Failed to read", path="/home/u/.ssh/id_rsa", reason="read_error")
        data = error.to_dict()
        assert data["key_path"] == "/home/u/.ssh/id_rsa"
        assert data["reason"] == "read_error"

    def test_to_dict_is_json_serialisable(self) -> None:
        error = TransportError("Connection refused", context=ErrorContext(host="h", port=2222))
        error.context.extra["disconnect_reason"] = DisconnectReason.NETWORK_ERROR.value
        assert json.loads(json.dumps(error.to_dict()))["disconnect_reason"] == "network_error"
