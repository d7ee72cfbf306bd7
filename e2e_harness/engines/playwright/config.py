"""Configuration for the Playwright engine."""

from typing import Literal

from pydantic import Field

from e2e_harness.models.base import Model
from e2e_harness.models.config import Viewport

type BrowserName = Literal["chromium", "firefox", "webkit"]

# Descriptor names understood by playwright.devices. Each one sets the
# viewport, user agent, scale factor and touch support of the context, and
# the browser to launch unless ``browser`` is given.
type DeviceName = Literal[
    "Desktop Chrome",
    "Desktop Edge",
    "Desktop Firefox",
    "Desktop Safari",
    "Pixel 5",
    "Pixel 7",
    "Galaxy S9+",
    "iPhone 12",
    "iPhone 13",
    "iPhone 14",
    "iPad Mini",
]


class PlaywrightConfig(Model):
    """Project options for the Playwright engine."""

    browser: BrowserName | None = Field(
        default=None, description="Browser to launch (defaults to the device's)"
    )
    channel: str | None = Field(
        default=None, description="Branded browser channel, e.g. 'chrome' or 'msedge'"
    )
    device: DeviceName | None = Field(default=None, description="Device profile")
    headless: bool = True
    base_url: str | None = Field(
        default=None, description="Base for relative URLs passed to page.goto"
    )
    viewport: Viewport | None = None
    slow_mo: float = Field(default=0, ge=0, description="Delay between actions (ms)")
    ignore_https_errors: bool = False
    locale: str | None = None
