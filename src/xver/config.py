"""
Configuration normalisation.

Provides:
- TrustPolicy: Which servers known_hosts entries are honoured for
- IdentityPolicy: Which identity files are candidates for publickey auth
- ServerTarget: One configured server
- CanonicalConfig: The normalised configuration
- normalize: Turn loosely-typed user input into a CanonicalConfig
- load_config_file: Read and normalise a JSON configuration file
- find_default: Select the server to connect to

Raw configuration format:

    {
        "openssh": {
            "trust_known_hosts": true | false
                | {"allow_pattern": "...", "block_pattern": "..."},
            "use_id": true | false | "rsa" | ["ed25519", "rsa"]
        },
        "servers": [
            {"host": "example.com:4096", "label": "prod"},
            {"hostname": "example.org", "port": 4096,
             "ssh_port": 2222, "username": "deploy",
             "public_key": "ssh-ed25519 AAAA...", "default": true}
        ]
    }
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from xver.errors import ConfigurationError, IOFailure, NoServerAvailable
from xver.matchers import ALWAYS_MATCH, NEVER_MATCH, Matcher, compile_pattern
from xver.platform import SUPPORTED_IDENTITY_SUFFIXES, get_identity_path

T = TypeVar("T")

# Port of the management endpoint named by "host:port" / "port"
DEFAULT_MANAGEMENT_PORT = 4096
# Port of the SSH endpoint itself
DEFAULT_SSH_PORT = 22
DEFAULT_USERNAME = "root"

MAX_SAFE_INTEGER = 2**53 - 1


@dataclass(frozen=True)
class TrustPolicy:
    """
    Allow/block filter over server hostnames.

    known_hosts entries for a server are honoured when allow_pattern
    matches its hostname and block_pattern does not.
    """
    allow_pattern: Matcher = NEVER_MATCH
    block_pattern: Matcher = ALWAYS_MATCH

    @property
    def consults_known_hosts(self) -> bool:
        """
        Whether any known_hosts entry could ever be honoured.

        Identity comparison against the sentinels: a regular expression
        that happens to match nothing still counts as consulting.
        """
        return self.allow_pattern is not NEVER_MATCH and self.block_pattern is not ALWAYS_MATCH

    def admits(self, hostname: str) -> bool:
        return self.allow_pattern.test(hostname) and not self.block_pattern.test(hostname)


TRUST_ALL_KNOWN_HOSTS = TrustPolicy(allow_pattern=ALWAYS_MATCH, block_pattern=NEVER_MATCH)
TRUST_NO_KNOWN_HOSTS = TrustPolicy(allow_pattern=NEVER_MATCH, block_pattern=ALWAYS_MATCH)


class IdentityMode(str, Enum):
    """How identity files are selected."""
    DISABLED = "disabled"
    ALL_SUPPORTED = "all_supported"
    SPECIFIC = "specific"


@dataclass(frozen=True)
class IdentityPolicy:
    """
    Which ~/.ssh/id_* files to offer for publickey authentication.

    Attributes:
        mode: DISABLED, ALL_SUPPORTED or SPECIFIC
        suffixes: Key type suffixes for SPECIFIC mode, in order
    """
    mode: IdentityMode = IdentityMode.DISABLED
    suffixes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        assert self.mode == IdentityMode.SPECIFIC or not self.suffixes, \
            f"suffixes are only meaningful in SPECIFIC mode, got {self.suffixes!r}"

    def suffixes_to_try(self) -> tuple[str, ...]:
        if self.mode == IdentityMode.ALL_SUPPORTED:
            return SUPPORTED_IDENTITY_SUFFIXES
        if self.mode == IdentityMode.SPECIFIC:
            return self.suffixes
        return ()

    def candidate_paths(self, ssh_dir: Path | None = None) -> list[Path]:
        """Identity file paths to try, in order."""
        return [get_identity_path(suffix, ssh_dir) for suffix in self.suffixes_to_try()]


@dataclass(frozen=True)
class ServerTarget:
    """
    A configured server.

    Attributes:
        hostname: Host name or address
        port: Management port (from "host:port" or "port")
        label: Display name, "#<index>" when not configured
        ssh_port: Port of the SSH endpoint
        username: Login name
        public_key: Pinned host key, "algorithm base64" or bare "base64"
        default: Whether this server is selected when none is named
    """
    hostname: str
    port: int = DEFAULT_MANAGEMENT_PORT
    label: str = "#0"
    ssh_port: int = DEFAULT_SSH_PORT
    username: str = DEFAULT_USERNAME
    public_key: str | None = None
    default: bool = False


@dataclass(frozen=True)
class CanonicalConfig:
    """Normalised configuration shared by every connection attempt."""
    trust_known_hosts: TrustPolicy = TRUST_NO_KNOWN_HOSTS
    use_id: IdentityPolicy = IdentityPolicy()
    servers: tuple[ServerTarget, ...] = ()

    def get_server(self, label: str) -> ServerTarget:
        """Look up a server by label."""
        for server in self.servers:
            if server.label == label:
                return server
        raise ConfigurationError(f"No server labelled {label!r}")


def to_list(value: T | Sequence[T]) -> list[T]:
    """Wrap a scalar in a list; lists and tuples are copied."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def to_int(value: Any, default: int) -> int:
    """
    Parse a safe integer, falling back to default.

    Accepts ints, integral floats and decimal strings whose magnitude
    does not exceed 2**53 - 1. Booleans and anything else give default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, float):
        if not value.is_integer():
            return default
        value = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not re.fullmatch(r"[+-]?[0-9]+", text):
            return default
        value = int(text)
    if not isinstance(value, int) or abs(value) > MAX_SAFE_INTEGER:
        return default
    return value


def _normalize_trust(raw: Any) -> TrustPolicy:
    if raw is None or raw is False:
        return TRUST_NO_KNOWN_HOSTS
    if raw is True:
        return TRUST_ALL_KNOWN_HOSTS
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            f"openssh.trust_known_hosts must be a boolean or a mapping, "
            f"got {type(raw).__name__}"
        )
    allow = ALWAYS_MATCH
    block = NEVER_MATCH
    if "allow_pattern" in raw:
        allow = compile_pattern(raw["allow_pattern"], "allow_pattern")
    if "block_pattern" in raw:
        block = compile_pattern(raw["block_pattern"], "block_pattern")
    return TrustPolicy(allow_pattern=allow, block_pattern=block)


def _normalize_identity(raw: Any) -> IdentityPolicy:
    if raw is None or raw is False:
        return IdentityPolicy(IdentityMode.DISABLED)
    if raw is True:
        return IdentityPolicy(IdentityMode.ALL_SUPPORTED)
    if not isinstance(raw, (str, list, tuple)):
        raise ConfigurationError(
            f"openssh.use_id must be a boolean, a string or a list of strings, "
            f"got {type(raw).__name__}"
        )

    suffixes: list[str] = []
    for suffix in to_list(raw):
        if not isinstance(suffix, str):
            raise ConfigurationError(
                f"openssh.use_id entries must be strings, got {type(suffix).__name__}"
            )
        if "/" in suffix or "\\" in suffix:
            raise ConfigurationError(f"openssh.use_id entry is not a key suffix: {suffix!r}")
        if suffix and suffix not in suffixes:
            suffixes.append(suffix)

    if not suffixes:
        return IdentityPolicy(IdentityMode.DISABLED)
    return IdentityPolicy(IdentityMode.SPECIFIC, tuple(suffixes))


def _normalize_server(raw: Any, index: int) -> ServerTarget:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"servers[{index}] must be a mapping, got {type(raw).__name__}")

    if "host" in raw:
        host = raw["host"]
        if not isinstance(host, str):
            raise ConfigurationError(f"servers[{index}].host must be a string")
        hostname, _, port_text = host.partition(":")
        port = to_int(port_text or None, DEFAULT_MANAGEMENT_PORT)
    elif "hostname" in raw:
        hostname = raw["hostname"]
        if not isinstance(hostname, str):
            raise ConfigurationError(f"servers[{index}].hostname must be a string")
        port = to_int(raw.get("port"), DEFAULT_MANAGEMENT_PORT)
    else:
        raise ConfigurationError(f"servers[{index}] needs either 'host' or 'hostname'")

    if not hostname:
        raise ConfigurationError(f"servers[{index}] has an empty hostname")
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"servers[{index}].port out of range: {port}")

    label = raw.get("label")
    if label is None:
        label = f"#{index}"

    username = raw.get("username")
    if username is None:
        username = DEFAULT_USERNAME
    if not isinstance(username, str) or not username:
        raise ConfigurationError(f"servers[{index}].username must be a non-empty string")

    public_key = raw.get("public_key")
    if public_key is not None and (not isinstance(public_key, str) or not public_key.strip()):
        raise ConfigurationError(f"servers[{index}].public_key must be a non-empty string")

    ssh_port = to_int(raw.get("ssh_port"), DEFAULT_SSH_PORT)
    if not 1 <= ssh_port <= 65535:
        raise ConfigurationError(f"servers[{index}].ssh_port out of range: {ssh_port}")

    default = raw.get("default")
    if default is None:
        default = False
    if not isinstance(default, bool):
        raise ConfigurationError(f"servers[{index}].default must be a boolean, got {default!r}")

    return ServerTarget(
        hostname=hostname,
        port=port,
        label=str(label),
        ssh_port=ssh_port,
        username=username,
        public_key=public_key,
        default=default,
    )


def normalize(raw: Mapping[str, Any] | None) -> CanonicalConfig:
    """
    Normalise raw configuration.

    Args:
        raw: Parsed configuration (see module docstring); None means empty

    Returns:
        CanonicalConfig

    Raises:
        ConfigurationError: If the input is structurally invalid
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(raw).__name__}")

    openssh = raw.get("openssh")
    if openssh is None:
        openssh = {}
    if not isinstance(openssh, Mapping):
        raise ConfigurationError("openssh must be a mapping")

    servers = raw.get("servers")
    if servers is None:
        servers = []
    if not isinstance(servers, (list, tuple)):
        raise ConfigurationError(f"servers must be a list, got {type(servers).__name__}")

    return CanonicalConfig(
        trust_known_hosts=_normalize_trust(openssh.get("trust_known_hosts")),
        use_id=_normalize_identity(openssh.get("use_id")),
        servers=tuple(_normalize_server(entry, i) for i, entry in enumerate(servers)),
    )


def load_config_file(path: Path | str) -> CanonicalConfig:
    """
    Read a JSON configuration file and normalise it.

    Raises:
        IOFailure: If the file cannot be read
        ConfigurationError: If the file is not valid JSON or not a valid configuration
    """
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise IOFailure(
            f"Failed to read configuration file {path}: {e}",
            path=str(path),
            reason="file_not_found" if isinstance(e, FileNotFoundError) else "read_error",
        ) from e
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
    return normalize(raw)


def find_default(servers: Iterable[ServerTarget]) -> ServerTarget:
    """
    Select the server flagged default, or else the first one.

    Raises:
        NoServerAvailable: If there are no servers
    """
    servers = list(servers)
    if not servers:
        raise NoServerAvailable("No server available: the server list is empty")
    for server in servers:
        if server.default:
            return server
    return servers[0]
