"""Exception types raised by the harness."""

from collections.abc import Sequence


class HarnessError(Exception):
    """Base class for harness errors."""


class ConfigError(HarnessError):
    """Raised when the harness configuration cannot be loaded or is invalid."""


class DiscoveryError(HarnessError):
    """Raised when test files cannot be collected. Aborts the run."""


class FocusedTestError(DiscoveryError):
    """Raised when a test is marked exclusive-only with ``test.only``."""

    def __init__(self, test_ids: Sequence[str]) -> None:
        self.test_ids = tuple(test_ids)
        super().__init__(
            "Focused tests are not allowed, remove test.only from: "
            + ", ".join(self.test_ids)
        )


class SessionEnvironmentError(HarnessError):
    """Raised when an automation session cannot be acquired or released."""


class EngineNotFoundError(HarnessError):
    """Raised when no automation engine is registered under a key."""


class WebServerError(HarnessError):
    """Raised when the configured web server cannot be started."""
