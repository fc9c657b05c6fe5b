"""
Host key trust resolution.

Provides:
- get_public_key_algorithm: Read the algorithm name out of an SSH key blob
- parse_public_key: Split a configured host key into (algorithm, base64)
- parse_known_hosts_line: Parse one known_hosts line
- build_trust: Build the trust table and host key algorithm preference order
- HostKeyVerifier: Accept or reject the key presented by a server

known_hosts lines follow the OpenSSH format:
- hostname[,hostname2] key_type key_data [comment]
- [hostname]:port key_type key_data (non-standard ports)
- |1|salt|hash key_type key_data (hashed hostnames)
- @revoked / @cert-authority marker lines are not used for trust

Unknown keys are always rejected: there is no trust-on-first-use.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence, TypeVar

from xver.config import ServerTarget, TrustPolicy
from xver.errors import ConfigurationError

log = logging.getLogger(__name__)

T = TypeVar("T")

# Host key algorithms offered to the server, most preferred first
SUPPORTED_HOST_KEY_ALGORITHMS: tuple[str, ...] = (
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "rsa-sha2-512",
    "rsa-sha2-256",
    "ssh-rsa",
)

HostKeyTable = dict[str, str]
KnownHostsSource = Callable[[], Iterable[str]]


class HostKeyResult(str, Enum):
    """Outcome of verifying a presented host key."""
    TRUSTED = "trusted"     # Matches the trusted key for its algorithm
    UNKNOWN = "unknown"     # No trusted key for this algorithm
    CHANGED = "changed"     # Trusted key exists but differs


@dataclass
class KnownHostsEntry:
    """
    Parsed known_hosts line.

    Attributes:
        hostnames: Host patterns this entry applies to
        key_type: SSH key algorithm (ssh-ed25519, ssh-rsa, ...)
        key_data: Base64-encoded public key
        marker: "@revoked" or "@cert-authority" when present
    """
    hostnames: list[str]
    key_type: str
    key_data: str
    marker: str | None = None


def read_length_prefixed(blob: bytes, max_count: int = 255) -> list[bytes]:
    """
    Split an SSH wire-format blob into its length-prefixed fields.

    Args:
        blob: Raw bytes (uint32 big-endian length followed by data, repeated)
        max_count: Stop after this many fields

    Returns:
        The fields, in order

    Raises:
        ValueError: If a length prefix runs past the end of the blob
    """
    fields: list[bytes] = []
    offset = 0
    while offset < len(blob) and len(fields) < max_count:
        if offset + 4 > len(blob):
            raise ValueError("Truncated length prefix in SSH key blob")
        (length,) = struct.unpack_from(">I", blob, offset)
        offset += 4
        if offset + length > len(blob):
            raise ValueError("Field length exceeds SSH key blob")
        fields.append(blob[offset:offset + length])
        offset += length
    return fields


def get_public_key_algorithm(key: bytes | str) -> str:
    """
    Get the algorithm name embedded in an SSH public key blob.

    Args:
        key: Raw blob, or its base64 encoding

    Returns:
        Algorithm name such as "ssh-ed25519"

    Raises:
        ValueError: If the blob is not valid base64 or not an SSH key blob
    """
    if isinstance(key, str):
        try:
            key = base64.b64decode(key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Public key is not valid base64: {e}") from e
    fields = read_length_prefixed(key, max_count=1)
    if not fields:
        raise ValueError("Public key blob is empty")
    try:
        return fields[0].decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError("Public key algorithm is not valid UTF-8") from e


def parse_public_key(text: str) -> tuple[str, str]:
    """
    Parse a configured host key.

    Accepts "algorithm base64 [comment]" or a bare "base64" key, in
    which case the algorithm is read from the key blob.

    Raises:
        ConfigurationError: If the key is malformed
    """
    parts = text.split()
    if not parts:
        raise ConfigurationError("Host public key is empty")
    if len(parts) == 1:
        try:
            return get_public_key_algorithm(parts[0]), parts[0]
        except ValueError as e:
            raise ConfigurationError(f"Malformed host public key: {e}") from e
    return parts[0], parts[1]


def strip_comment(line: str) -> str:
    """Drop everything from the first '#'."""
    return line.split("#", 1)[0]


def parse_known_hosts_line(line: str) -> KnownHostsEntry | None:
    """
    Parse a single known_hosts line.

    Returns:
        KnownHostsEntry, or None for blank, comment-only and short lines
    """
    line = strip_comment(line)
    if not line.strip():
        return None

    parts = line.split()
    marker = None
    if parts[0].startswith("@"):
        marker = parts.pop(0)

    if len(parts) < 3:
        log.debug("Ignoring malformed known_hosts line: %r", line)
        return None

    return KnownHostsEntry(
        hostnames=[h for h in parts[0].split(",") if h],
        key_type=parts[1],
        key_data=parts[2],
        marker=marker,
    )


def _check_hashed_hostname(pattern: str, hostname: str) -> bool:
    """Check a hostname against a hashed |1|salt|hash pattern."""
    parts = pattern.split("|")
    if len(parts) != 4 or parts[1] != "1":
        return False
    try:
        salt = base64.b64decode(parts[2])
        stored_hash = base64.b64decode(parts[3])
    except (ValueError, binascii.Error):
        return False
    computed = hmac.new(salt, hostname.encode("utf-8"), hashlib.sha1).digest()
    return hmac.compare_digest(stored_hash, computed)


def hostname_matches(pattern: str, hostname: str, port: int) -> bool:
    """
    Check whether a known_hosts host pattern names the server.

    A plain hostname matches regardless of port; the bracketed
    [hostname]:port form must also match the port.
    """
    if pattern.startswith("|1|"):
        return (
            _check_hashed_hostname(pattern, hostname)
            or _check_hashed_hostname(pattern, f"[{hostname}]:{port}")
        )

    bracket_match = re.match(r"^\[([^\]]+)\]:(\d+)$", pattern)
    if bracket_match:
        return (
            bracket_match.group(1).lower() == hostname.lower()
            and int(bracket_match.group(2)) == port
        )

    return pattern.lower() == hostname.lower()


def sort_like(items: Sequence[T], order: Iterable[T]) -> list[T]:
    """
    Move the items named in order to the front.

    Items found in order come first, in order's sequence (duplicates
    ignored); the rest keep their relative position. Entries of order
    that are not in items are dropped.
    """
    present = set(items)
    front: list[T] = []
    for item in order:
        if item in present and item not in front:
            front.append(item)
    return front + [item for item in items if item not in front]


def build_trust(
    server: ServerTarget,
    policy: TrustPolicy,
    known_hosts_source: KnownHostsSource,
) -> tuple[HostKeyTable, list[str]]:
    """
    Build the trusted host keys for one connection attempt.

    The server's pinned key goes in first. When the policy admits the
    server's hostname, known_hosts entries naming the server are added
    after, replacing a pinned key of the same algorithm. The policy is
    applied to the hostname rather than to the entry's host patterns, so
    hashed entries are filtered the same way as plain ones.
    known_hosts_source is not called when the policy cannot admit the
    server.

    Args:
        server: Target server
        policy: Allow/block filter over server hostnames
        known_hosts_source: Zero-argument callable returning lines

    Returns:
        (table mapping algorithm to base64 key, host key algorithms in
        preference order)

    Raises:
        ConfigurationError: If the pinned key is malformed
        IOFailure: If the known_hosts source cannot be read
    """
    table: HostKeyTable = {}

    if server.public_key:
        algorithm, key = parse_public_key(server.public_key)
        table[algorithm] = key

    if not policy.consults_known_hosts:
        log.debug("Trust policy excludes known_hosts; not reading it")
    elif not policy.admits(server.hostname):
        log.debug("Trust policy excludes %s; not reading known_hosts", server.hostname)
    else:
        for line in known_hosts_source():
            entry = parse_known_hosts_line(line)
            if entry is None:
                continue
            if entry.marker is not None:
                log.debug("Skipping %s entry for %s", entry.marker, ",".join(entry.hostnames))
                continue
            if any(
                hostname_matches(pattern, server.hostname, server.ssh_port)
                for pattern in entry.hostnames
            ):
                table[entry.key_type] = entry.key_data

    order = sort_like(SUPPORTED_HOST_KEY_ALGORITHMS, table.keys())
    log.debug(
        "Trusting %d host key(s) for %s; algorithm order %s",
        len(table), server.hostname, order,
    )
    return table, order


class HostKeyVerifier:
    """
    Checks presented host keys against a trust table.

    Usage:
        table, order = build_trust(server, policy, source)
        verifier = HostKeyVerifier(table)
        if not verifier.verify(key.public_data):
            ...  # abort the handshake
    """

    def __init__(self, table: HostKeyTable) -> None:
        self._table = dict(table)
        self.result: HostKeyResult | None = None
        self.presented_algorithm: str | None = None
        self.presented_key: str | None = None

    @property
    def table(self) -> HostKeyTable:
        return dict(self._table)

    def trusted_key(self, algorithm: str) -> str | None:
        return self._table.get(algorithm)

    def check(self, key_blob: bytes) -> HostKeyResult:
        """
        Classify a presented host key blob.

        The result and the presented key are also kept on the verifier
        for error reporting.
        """
        presented_key = base64.b64encode(key_blob).decode("ascii")
        self.presented_key = presented_key
        try:
            algorithm = get_public_key_algorithm(key_blob)
        except ValueError as e:
            log.error("Server presented an unparseable host key: %s", e)
            self.presented_algorithm = None
            self.result = HostKeyResult.UNKNOWN
            return self.result

        self.presented_algorithm = algorithm
        trusted_key = self._table.get(algorithm)
        if trusted_key is None:
            self.result = HostKeyResult.UNKNOWN
        elif trusted_key == presented_key:
            self.result = HostKeyResult.TRUSTED
        else:
            self.result = HostKeyResult.CHANGED
        return self.result

    def verify(self, key_blob: bytes) -> bool:
        """
        Accept the presented key only if it equals the trusted key.

        Returns:
            True to continue the handshake, False to abort it
        """
        result = self.check(key_blob)
        if result == HostKeyResult.TRUSTED:
            return True
        if result == HostKeyResult.CHANGED:
            log.error(
                "Unmatched host key. Provided: %s wanted: %s",
                self.presented_key,
                self._table[self.presented_algorithm],
            )
        else:
            log.warning(
                "No trusted %s host key; rejecting %s",
                self.presented_algorithm or "unknown-algorithm",
                self.presented_key,
            )
        return False
