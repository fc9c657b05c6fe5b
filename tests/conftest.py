"""
Pytest fixtures for xver tests.

Provides:
- SSH key blob construction helpers
- In-memory identity file store
- Recording known_hosts source (to assert it was or was not opened)
- Event capture fixture
"""
from __future__ import annotations

import base64
import struct
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Iterable

import pytest

from xver.errors import IOFailure

if TYPE_CHECKING:
    from xver.events import EventCollector


def make_key_blob(algorithm: str, payload: bytes = b"\x01" * 32) -> bytes:
    """Build an SSH public key blob: length-prefixed algorithm then payload."""
    alg = algorithm.encode("utf-8")
    return struct.pack(">I", len(alg)) + alg + struct.pack(">I", len(payload)) + payload


def make_key_b64(algorithm: str, payload: bytes = b"\x01" * 32) -> str:
    """Base64 of make_key_blob."""
    return base64.b64encode(make_key_blob(algorithm, payload)).decode("ascii")


class MemoryIdentityStore:
    """
    Identity store backed by a dict.

    Paths in `broken` exist but fail to read.
    """

    def __init__(self, files: dict[Path, bytes] | None = None, broken: Iterable[Path] = ()) -> None:
        self.files = dict(files or {})
        self.broken = set(broken)
        self.exists_calls: list[Path] = []
        self.read_calls: list[Path] = []

    def exists(self, path: Path) -> bool:
        self.exists_calls.append(path)
        return path in self.files or path in self.broken

    def read(self, path: Path) -> bytes:
        self.read_calls.append(path)
        if path in self.broken:
            raise IOFailure(f"Failed to read identity file {path}", path=str(path), reason="read_error")
        return self.files[path]


class RecordingSource:
    """known_hosts source that records whether it was opened."""

    def __init__(self, lines: Iterable[str] = ()) -> None:
        self.lines = list(lines)
        self.calls = 0

    def __call__(self) -> Iterable[str]:
        self.calls += 1
        return iter(self.lines)


@pytest.fixture
def ssh_dir(tmp_path: Path) -> Path:
    """An empty directory standing in for ~/.ssh."""
    path = tmp_path / ".ssh"
    path.mkdir()
    return path


@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """Fixture for capturing and asserting event sequences."""
    from xver.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()
