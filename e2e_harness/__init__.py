"""Browser end-to-end test harness."""

from e2e_harness.context import TestInfo
from e2e_harness.registry import test

__all__ = ["TestInfo", "test"]
