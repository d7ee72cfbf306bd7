"""WebDriver engine module."""

from e2e_harness.engines.webdriver.config import WebDriverConfig
from e2e_harness.engines.webdriver.engine import (
    WebDriverEngine,
    WebDriverError,
    WebDriverPage,
)
from e2e_harness.engines.webdriver.manifest import webdriver_manifest

__all__ = [
    "WebDriverConfig",
    "WebDriverEngine",
    "WebDriverError",
    "WebDriverPage",
    "webdriver_manifest",
]
