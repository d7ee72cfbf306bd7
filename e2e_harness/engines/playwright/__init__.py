"""Playwright engine module."""

from e2e_harness.engines.playwright.config import PlaywrightConfig
from e2e_harness.engines.playwright.engine import PlaywrightEngine
from e2e_harness.engines.playwright.manifest import playwright_manifest

__all__ = ["PlaywrightConfig", "PlaywrightEngine", "playwright_manifest"]
