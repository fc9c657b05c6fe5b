"""
Testing utilities for xver.

Provides MockSSHServer for integration tests against a real AsyncSSH server.
"""
from xver.testing.mock_server import AuthAttempt, MockServerConfig, MockSSHServer

__all__ = ["AuthAttempt", "MockSSHServer", "MockServerConfig"]
