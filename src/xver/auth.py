"""
SSH authentication method negotiation.

Provides:
- AuthMethod enum: NONE, PUBLICKEY, PASSWORD
- AuthOffer: A credential offered for one authentication round
- AuthAttemptState: What has been tried during one connection attempt
- AuthNegotiator: Picks the next offer each time the server reports
  which methods can continue

Selection order for each round:
1. publickey, while identity file candidates remain (missing files are
   skipped, each existing file is offered once)
2. password, up to MAX_PASSWORD_ATTEMPTS times, when a password
   provider is configured
3. none, once, when the server named no methods
4. nothing: the attempt is exhausted
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Union

from xver.config import IdentityPolicy
from xver.platform import IdentityFileStore, IdentityStore

log = logging.getLogger(__name__)

MAX_PASSWORD_ATTEMPTS = 3

PasswordProvider = Callable[[], Union[str, Awaitable[str]]]


class AuthMethod(str, Enum):
    """SSH authentication methods the negotiator can offer."""
    NONE = "none"
    PUBLICKEY = "publickey"
    PASSWORD = "password"


# Methods assumed when the server has not named any
DEFAULT_METHODS: tuple[AuthMethod, ...] = (AuthMethod.PUBLICKEY, AuthMethod.PASSWORD)


@dataclass
class AuthOffer:
    """
    A credential offered for one authentication round.

    Attributes:
        method: Authentication method
        key_path: Identity file (PUBLICKEY only)
        key_data: Identity file contents (PUBLICKEY only)
        password: Password (PASSWORD only)
    """
    method: AuthMethod
    key_path: Path | None = None
    key_data: bytes | None = None
    password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.method == AuthMethod.PUBLICKEY:
            assert self.key_path is not None and self.key_data is not None, \
                "key_path and key_data required for a publickey offer"
        if self.method == AuthMethod.PASSWORD:
            assert self.password is not None, "password required for a password offer"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (excludes secrets)."""
        result: dict[str, Any] = {"method": self.method.value}
        if self.key_path is not None:
            result["key_path"] = str(self.key_path)
        return result


@dataclass
class AuthAttemptState:
    """Mutable negotiation state for one connection attempt."""
    tried_methods: set[AuthMethod] = field(default_factory=set)
    pending_identity_files: list[Path] = field(default_factory=list)
    password_attempts: int = 0


def _coerce_methods(methods: Iterable[str | AuthMethod] | None) -> tuple[list[AuthMethod], bool]:
    """
    Convert the server's method names, dropping ones we cannot offer.

    Returns:
        (methods, server_named_methods)
    """
    names = list(methods or ())
    if not names:
        return list(DEFAULT_METHODS), False

    result: list[AuthMethod] = []
    for name in names:
        try:
            result.append(AuthMethod(name))
        except ValueError:
            continue
    return result, True


class AuthNegotiator:
    """
    State machine choosing the credential to offer in each auth round.

    One instance per connection attempt. The transport calls next_offer
    once per round and waits for the result before continuing.

    Usage:
        negotiator = AuthNegotiator(config.use_id, password_provider=ask)
        offer = await negotiator.next_offer(["publickey", "password"])
        if offer is None:
            ...  # exhausted, give up
    """

    def __init__(
        self,
        identity_policy: IdentityPolicy,
        store: IdentityStore | None = None,
        password_provider: PasswordProvider | None = None,
        ssh_dir: Path | None = None,
        max_password_attempts: int = MAX_PASSWORD_ATTEMPTS,
    ) -> None:
        """
        Initialise the negotiator.

        Args:
            identity_policy: Which identity files are candidates
            store: Identity file access (default: local filesystem)
            password_provider: Called for each password offer; without
                               one, password is never offered
            ssh_dir: Directory holding identity files (default ~/.ssh)
            max_password_attempts: Password offers allowed per attempt
        """
        assert max_password_attempts >= 0, \
            f"max_password_attempts must be non-negative, got {max_password_attempts}"
        self._store = store if store is not None else IdentityFileStore()
        self._password_provider = password_provider
        self._max_password_attempts = max_password_attempts
        self.state = AuthAttemptState(
            pending_identity_files=identity_policy.candidate_paths(ssh_dir),
        )
        self.exhausted = False
        self.last_offer: AuthOffer | None = None

    @property
    def tried_methods(self) -> list[str]:
        """Tried method names, in a stable order for logging."""
        return [m.value for m in AuthMethod if m in self.state.tried_methods]

    def _record(self, offer: AuthOffer) -> AuthOffer:
        self.state.tried_methods.add(offer.method)
        self.exhausted = False
        self.last_offer = offer
        log.debug("Offering %s", offer.to_dict())
        return offer

    def _next_identity(self) -> AuthOffer | None:
        """
        Pop candidates until one exists on the store.

        Raises:
            IOFailure: If an existing identity file cannot be read
        """
        pending = self.state.pending_identity_files
        while pending:
            path = pending.pop(0)
            if not self._store.exists(path):
                log.debug("Identity file %s not found; trying next", path)
                continue
            data = self._store.read(path)
            return AuthOffer(method=AuthMethod.PUBLICKEY, key_path=path, key_data=data)
        return None

    async def _get_password(self) -> str:
        assert self._password_provider is not None
        result = self._password_provider()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def next_offer(
        self,
        methods_remaining: Iterable[str | AuthMethod] | None = None,
        partial_success: bool = False,
    ) -> AuthOffer | None:
        """
        Choose the offer for this authentication round.

        Args:
            methods_remaining: Methods the server will accept next; empty
                               or None when the server named none
            partial_success: Whether the previous round partially succeeded

        Returns:
            The offer, or None when nothing the server accepts is left
            to try (the transport then ends the attempt)

        Raises:
            IOFailure: If an existing identity file cannot be read
        """
        methods, server_named_methods = _coerce_methods(methods_remaining)
        if partial_success:
            log.debug("Partial success; server continues with %s", [m.value for m in methods])

        if AuthMethod.PUBLICKEY in methods:
            offer = self._next_identity()
            if offer is not None:
                return self._record(offer)

        if (
            AuthMethod.PASSWORD in methods
            and self._password_provider is not None
            and self.state.password_attempts < self._max_password_attempts
        ):
            self.state.password_attempts += 1
            password = await self._get_password()
            return self._record(AuthOffer(method=AuthMethod.PASSWORD, password=password))

        if not server_named_methods and AuthMethod.NONE not in self.state.tried_methods:
            return self._record(AuthOffer(method=AuthMethod.NONE))

        log.info("Authentication methods exhausted (tried: %s)", ", ".join(self.tried_methods) or "nothing")
        self.exhausted = True
        return None
