"""
Error taxonomy with structured data for JSONL logging.

Every failure of a connection attempt surfaces as one of these types, so
callers can tell a bad configuration from a distrusted host or a failed
login without parsing messages.

Error hierarchy:
- XverError (base)
  - ConfigurationError (malformed configuration, fatal)
    - NoServerAvailable (empty server list)
  - TrustDenied (presented host key unknown or mismatched)
  - AuthExhausted (no authentication method left to offer)
  - IOFailure (known_hosts or identity file unreadable)
  - TransportError (network-level failure reported by the transport)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class DisconnectReason(str, Enum):
    """Reasons recorded in DISCONNECT events."""
    NORMAL = "normal"
    TRUST_DENIED = "trust_denied"
    AUTH_FAILURE = "auth_failure"
    NETWORK_ERROR = "network_error"


@dataclass
class ErrorContext:
    """
    Structured context for connection errors.

    Carries what is needed to diagnose a failed attempt and to write it
    to a JSONL event log.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    auth_method: str | None = None
    key_path: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Invariant: port must be in valid TCP range if specified
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                # Precondition: extra keys must not shadow field names
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            else:
                result[key] = value
        return result


class XverError(Exception):
    """
    Base exception for all xver errors.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        # Precondition: message must be non-empty
        assert isinstance(message, str) and message.strip(), (
            f"XverError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


class ConfigurationError(XverError):
    """
    Configuration is structurally invalid.

    Raised during normalisation, before any connection is attempted.
    Never retried.
    """
    pass


class NoServerAvailable(ConfigurationError):
    """The configuration lists no server to connect to."""
    pass


class TrustDenied(XverError):
    """
    The server presented a host key that is not trusted.

    The key is either absent from the trust table (unknown host) or
    differs from the trusted key for its algorithm (possible
    man-in-the-middle). The handshake is aborted.
    """

    def __init__(
        self,
        message: str,
        algorithm: str | None = None,
        presented_key: str | None = None,
        trusted_key: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if algorithm:
            context.extra["algorithm"] = algorithm
        if presented_key:
            context.extra["presented_key"] = presented_key
        if trusted_key:
            context.extra["trusted_key"] = trusted_key
        super().__init__(message, context)


class AuthExhausted(XverError):
    """
    Authentication failed with nothing left to offer.

    Raised when every eligible method (identity files, password
    attempts, the "none" request) was tried without success.
    """

    def __init__(
        self,
        message: str,
        tried_methods: list[str] | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if tried_methods is not None:
            context.extra["tried_methods"] = list(tried_methods)
        super().__init__(message, context)


class IOFailure(XverError):
    """
    Reading a known_hosts or identity file failed.

    A missing file is not an IOFailure; this is raised when a file that
    exists could not be read.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if path:
            context.key_path = path
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)


class TransportError(XverError):
    """Connection failed below the authentication layer."""
    pass
