"""
Connection orchestration over AsyncSSH.

Provides:
- XverClient: Connects to a configured server with the trust table and
  auth negotiator, runs commands, disconnects
- ExecResult: Result of command execution

For each attempt the trust table is built before the handshake. AsyncSSH
then calls back into _NegotiatingSSHClient once for the server's host key
and once per authentication round. Failures surface as the error types of
xver.errors; nothing is reused between attempts.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncssh

from xver.auth import AuthMethod, AuthNegotiator, PasswordProvider
from xver.config import CanonicalConfig, ServerTarget, find_default
from xver.errors import (
    AuthExhausted,
    DisconnectReason,
    ErrorContext,
    TransportError,
    TrustDenied,
    XverError,
)
from xver.events import EventCollector, EventEmitter
from xver.host_key import HostKeyResult, HostKeyVerifier, KnownHostsSource, build_trust
from xver.platform import IdentityStore, get_ssh_dir, read_known_hosts_lines

log = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0


@dataclass
class ExecResult:
    """Result of a command execution."""
    stdout: str
    stderr: str
    exit_code: int


class _NegotiatingSSHClient(asyncssh.SSHClient):
    """
    AsyncSSH client that defers every decision to xver.

    Host keys go to the HostKeyVerifier; publickey and password requests
    go to the AuthNegotiator, one round per call. Exceptions raised by the
    negotiator are held in `failure` instead of escaping into AsyncSSH.
    """

    def __init__(
        self,
        verifier: HostKeyVerifier,
        negotiator: AuthNegotiator,
        emitter: EventEmitter,
    ) -> None:
        super().__init__()
        self._verifier = verifier
        self._negotiator = negotiator
        self._emitter = emitter
        self.failure: XverError | None = None

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        """Accept the server's host key only if it is in the trust table."""
        accepted = self._verifier.verify(key.public_data)
        self._emitter.host_key_checked(self._verifier, host or addr[0], port)
        return accepted

    async def _offer(self, method: AuthMethod) -> Any:
        if self.failure is not None:
            return None
        try:
            offer = await self._negotiator.next_offer([method.value])
        except XverError as e:
            log.error("Authentication aborted: %s", e)
            self.failure = e
            return None
        if offer is None or offer.method != method:
            return None
        self._emitter.credential_offered(offer)
        return offer

    async def public_key_auth_requested(self) -> asyncssh.SSHKey | None:
        while True:
            offer = await self._offer(AuthMethod.PUBLICKEY)
            if offer is None:
                return None
            try:
                return asyncssh.import_private_key(offer.key_data)
            except asyncssh.KeyImportError as e:
                # Encrypted or unsupported key: move on to the next candidate
                log.warning("Skipping identity file %s: %s", offer.key_path, e)
                self._emitter.identity_skipped(offer.key_path, str(e))

    async def password_auth_requested(self) -> str | None:
        offer = await self._offer(AuthMethod.PASSWORD)
        if offer is None:
            return None
        return offer.password

    def auth_completed(self) -> None:
        log.debug("Authentication completed")


class XverClient:
    """
    Connects to configured servers.

    Usage:
        config = load_config_file("xver.json")
        async with XverClient(config) as client:
            await client.connect()
            result = await client.run("uname -a")

    Events emitted:
    - CONNECT: initiating, connected
    - TRUST: trust table built, host key verdict
    - AUTH: each credential offered, final result
    - ERROR: attempt failed
    - DISCONNECT: connection closed
    """

    def __init__(
        self,
        config: CanonicalConfig,
        event_collector: EventCollector | None = None,
        event_log_path: Path | str | None = None,
        ssh_dir: Path | None = None,
    ) -> None:
        """
        Initialise the client.

        Args:
            config: Normalised configuration
            event_collector: Optional collector for in-memory event capture
            event_log_path: Optional path for JSONL event log
            ssh_dir: Directory holding known_hosts and identity files
                     (default ~/.ssh)
        """
        self._config = config
        self._ssh_dir = ssh_dir
        self._emitter = EventEmitter(collector=event_collector, jsonl_path=event_log_path)
        self._conn: asyncssh.SSHClientConnection | None = None
        self._server: ServerTarget | None = None

    @property
    def server(self) -> ServerTarget | None:
        """The server of the current connection."""
        return self._server

    @property
    def connection(self) -> asyncssh.SSHClientConnection | None:
        return self._conn

    def _default_known_hosts_source(self) -> KnownHostsSource:
        ssh_dir = self._ssh_dir or get_ssh_dir()
        return lambda: read_known_hosts_lines(ssh_dir / "known_hosts")

    def _fail(
        self,
        error: XverError,
        server: ServerTarget,
        reason: DisconnectReason | None = None,
    ) -> XverError:
        if reason is not None:
            error.context.extra.setdefault("disconnect_reason", reason.value)
        self._emitter.failed(server, error)
        return error

    async def connect(
        self,
        server: ServerTarget | None = None,
        *,
        known_hosts_source: KnownHostsSource | None = None,
        identity_store: IdentityStore | None = None,
        password_provider: PasswordProvider | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> asyncssh.SSHClientConnection:
        """
        Run one connection attempt.

        Args:
            server: Target (default: the server flagged default, or the first)
            known_hosts_source: Zero-argument callable returning known_hosts
                                lines (default: ~/.ssh/known_hosts)
            identity_store: Identity file access (default: local filesystem)
            password_provider: Supplies the password for each password round
            connect_timeout: Seconds before the transport gives up

        Returns:
            The authenticated AsyncSSH connection

        Raises:
            NoServerAvailable: If the configuration lists no server
            ConfigurationError: If the server's pinned key is malformed
            TrustDenied: If the server's host key is not trusted
            AuthExhausted: If every authentication method failed
            IOFailure: If known_hosts or an identity file could not be read
            TransportError: If the connection failed at the network level
        """
        assert self._conn is None, "Already connected; close() first"
        if server is None:
            server = find_default(self._config.servers)
        self._server = server

        error_ctx = ErrorContext(
            host=server.hostname,
            port=server.ssh_port,
            username=server.username,
        )
        self._emitter.attempt_started(server)

        if known_hosts_source is None:
            known_hosts_source = self._default_known_hosts_source()
        try:
            table, algorithms = build_trust(server, self._config.trust_known_hosts, known_hosts_source)
        except XverError as e:
            e.context.host = server.hostname
            e.context.port = server.ssh_port
            raise self._fail(e, server)

        self._emitter.trust_built(table, algorithms)

        verifier = HostKeyVerifier(table)
        negotiator = AuthNegotiator(
            self._config.use_id,
            store=identity_store,
            password_provider=password_provider,
            ssh_dir=self._ssh_dir,
        )
        client = _NegotiatingSSHClient(verifier, negotiator, self._emitter)

        auth_start_ms = time.time() * 1000
        try:
            self._conn = await asyncssh.connect(
                server.hostname,
                port=server.ssh_port,
                username=server.username,
                client_factory=lambda: client,
                # An empty table: every host key reaches validate_host_public_key.
                # () would load ~/.ssh/known_hosts, None would skip validation.
                known_hosts=asyncssh.import_known_hosts(""),
                server_host_key_algs=algorithms,
                # None: no preloaded ~/.ssh/id_* keys, identities come from
                # public_key_auth_requested only
                client_keys=None,
                password=None,
                agent_path=None,
                public_key_auth=True,
                password_auth=True,
                kbdint_auth=False,
                gss_auth=False,
                host_based_auth=False,
                preferred_auth=(AuthMethod.PUBLICKEY.value, AuthMethod.PASSWORD.value),
                # Settings come from xver configuration only, not ~/.ssh/config
                config=None,
                connect_timeout=connect_timeout,
            )
        except asyncssh.HostKeyNotVerifiable as e:
            error_ctx.original_error = str(e)
            algorithm = verifier.presented_algorithm
            raise self._fail(
                TrustDenied(
                    f"Host key verification failed for {server.hostname}: "
                    f"{(verifier.result or HostKeyResult.UNKNOWN).value} key",
                    algorithm=algorithm,
                    presented_key=verifier.presented_key,
                    trusted_key=verifier.trusted_key(algorithm) if algorithm else None,
                    context=error_ctx,
                ),
                server,
                DisconnectReason.TRUST_DENIED,
            ) from e
        except asyncssh.PermissionDenied as e:
            self._emitter.auth_failed(server.username, negotiator.tried_methods, auth_start_ms)
            if client.failure is not None:
                raise self._fail(client.failure, server, DisconnectReason.AUTH_FAILURE) from e
            error_ctx.original_error = str(e)
            error_ctx.auth_method = ",".join(negotiator.tried_methods) or None
            raise self._fail(
                AuthExhausted(
                    f"Authentication failed for {server.username}@{server.hostname}",
                    tried_methods=negotiator.tried_methods,
                    context=error_ctx,
                ),
                server,
                DisconnectReason.AUTH_FAILURE,
            ) from e
        except (OSError, asyncio.TimeoutError, asyncssh.Error) as e:
            error_ctx.original_error = str(e)
            if isinstance(e, asyncio.TimeoutError):
                message = f"Connection to {server.hostname}:{server.ssh_port} timed out"
            else:
                message = f"Connection to {server.hostname}:{server.ssh_port} failed: {e}"
            raise self._fail(
                TransportError(message, context=error_ctx),
                server,
                DisconnectReason.NETWORK_ERROR,
            ) from e

        last_offer = negotiator.last_offer
        self._emitter.auth_succeeded(
            server.username,
            last_offer.method.value if last_offer else AuthMethod.NONE.value,
            auth_start_ms,
        )
        self._emitter.connected(server)
        return self._conn

    async def run(self, command: str) -> ExecResult:
        """
        Run a command on the connected server.

        Raises:
            TransportError: If the channel fails
        """
        assert self._conn is not None, "Not connected. Call connect() first."
        try:
            result = await self._conn.run(command, check=False)
        except (OSError, asyncssh.Error) as e:
            assert self._server is not None
            raise TransportError(
                f"Command failed on {self._server.hostname}: {e}",
                context=ErrorContext(
                    host=self._server.hostname,
                    port=self._server.ssh_port,
                    username=self._server.username,
                    original_error=str(e),
                ),
            ) from e

        stdout = result.stdout if isinstance(result.stdout, str) else (result.stdout or b"").decode("utf-8", "replace")
        stderr = result.stderr if isinstance(result.stderr, str) else (result.stderr or b"").decode("utf-8", "replace")
        exit_code = result.exit_status if result.exit_status is not None else -1
        return ExecResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def close(self) -> None:
        """Close the connection, if any, and the event log."""
        if self._conn is not None:
            assert self._server is not None
            self._emitter.disconnected(self._server, DisconnectReason.NORMAL)
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None
        self._emitter.close()

    async def __aenter__(self) -> "XverClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
