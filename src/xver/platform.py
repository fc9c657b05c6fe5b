"""
Cross-platform paths and file access for OpenSSH-style files.

Provides:
- Platform-appropriate SSH directory, known_hosts and identity file paths
- read_known_hosts_lines: Lazy line source over a known_hosts file
- IdentityFileStore: Existence check and whole-file read for identity files
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Iterator, Protocol

from xver.errors import IOFailure

log = logging.getLogger(__name__)

# Identity file suffixes tried when every supported key type is enabled
SUPPORTED_IDENTITY_SUFFIXES: tuple[str, ...] = ("ed25519", "ecdsa", "rsa")


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_ssh_dir() -> Path:
    """
    Get the platform-appropriate SSH directory.

    Returns:
        ~/.ssh on Unix, %USERPROFILE%\\.ssh on Windows
    """
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile) / ".ssh"
    return Path.home() / ".ssh"


def get_known_hosts_path() -> Path:
    """Get the user's known_hosts file path."""
    return get_ssh_dir() / "known_hosts"


def get_identity_path(suffix: str, ssh_dir: Path | None = None) -> Path:
    """
    Get the canonical identity file path for a key type suffix.

    Args:
        suffix: Key type suffix (ed25519, ecdsa, rsa, ...)
        ssh_dir: Directory holding the identity files (default ~/.ssh)

    Returns:
        Path such as ~/.ssh/id_ed25519
    """
    assert suffix and "/" not in suffix and "\\" not in suffix, \
        f"Identity suffix must be a bare name, got {suffix!r}"
    if ssh_dir is None:
        ssh_dir = get_ssh_dir()
    return ssh_dir / f"id_{suffix}"


def read_known_hosts_lines(path: Path | str | None = None) -> Iterator[str]:
    """
    Yield the lines of a known_hosts file.

    The file is opened when iteration starts, not when this function
    is called. A missing file yields nothing.

    Args:
        path: known_hosts file (default ~/.ssh/known_hosts)

    Yields:
        Lines without trailing newline

    Raises:
        IOFailure: If the file exists but cannot be read
    """
    path = Path(path) if path is not None else get_known_hosts_path()
    if not path.exists():
        log.debug("No known_hosts file at %s", path)
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                yield line.rstrip("\r\n")
    except (OSError, UnicodeDecodeError) as e:
        raise IOFailure(
            f"Failed to read known_hosts file {path}: {e}",
            path=str(path),
            reason="read_error",
        ) from e


class IdentityStore(Protocol):
    """Backing store for identity files."""

    def exists(self, path: Path) -> bool: ...

    def read(self, path: Path) -> bytes: ...


class IdentityFileStore:
    """
    Identity files on the local filesystem.

    exists() never raises; read() raises IOFailure for any error,
    since it is only called after exists() returned True.
    """

    def exists(self, path: Path) -> bool:
        try:
            return path.is_file()
        except OSError:
            return False

    def read(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise IOFailure(
                f"Failed to read identity file {path}: {e}",
                path=str(path),
                reason="read_error",
            ) from e
