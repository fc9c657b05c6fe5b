"""xver: host key trust and authentication negotiation for SSH sessions."""

__version__ = "0.1.0"

from xver.auth import (
    MAX_PASSWORD_ATTEMPTS,
    AuthAttemptState,
    AuthMethod,
    AuthNegotiator,
    AuthOffer,
)
from xver.config import (
    DEFAULT_MANAGEMENT_PORT,
    DEFAULT_SSH_PORT,
    CanonicalConfig,
    IdentityMode,
    IdentityPolicy,
    ServerTarget,
    TrustPolicy,
    find_default,
    load_config_file,
    normalize,
)
from xver.connection import ExecResult, XverClient
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
from xver.events import Event, EventCollector, EventEmitter, EventType
from xver.host_key import (
    SUPPORTED_HOST_KEY_ALGORITHMS,
    HostKeyResult,
    HostKeyVerifier,
    build_trust,
    get_public_key_algorithm,
    sort_like,
)
from xver.matchers import ALWAYS_MATCH, NEVER_MATCH, Matcher, RegexMatcher
from xver.platform import (
    IdentityFileStore,
    get_identity_path,
    get_known_hosts_path,
    get_ssh_dir,
    read_known_hosts_lines,
)

__all__ = [
    # Connection
    "XverClient",
    "ExecResult",
    # Config
    "CanonicalConfig",
    "IdentityMode",
    "IdentityPolicy",
    "ServerTarget",
    "TrustPolicy",
    "DEFAULT_MANAGEMENT_PORT",
    "DEFAULT_SSH_PORT",
    "normalize",
    "load_config_file",
    "find_default",
    # Matchers
    "ALWAYS_MATCH",
    "NEVER_MATCH",
    "Matcher",
    "RegexMatcher",
    # Host keys
    "SUPPORTED_HOST_KEY_ALGORITHMS",
    "HostKeyResult",
    "HostKeyVerifier",
    "build_trust",
    "get_public_key_algorithm",
    "sort_like",
    # Auth
    "AuthAttemptState",
    "AuthMethod",
    "AuthNegotiator",
    "AuthOffer",
    "MAX_PASSWORD_ATTEMPTS",
    # Errors
    "XverError",
    "ConfigurationError",
    "NoServerAvailable",
    "TrustDenied",
    "AuthExhausted",
    "IOFailure",
    "TransportError",
    "ErrorContext",
    "DisconnectReason",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Platform
    "get_ssh_dir",
    "get_known_hosts_path",
    "get_identity_path",
    "read_known_hosts_lines",
    "IdentityFileStore",
]
