"""Configuration for the WebDriver engine."""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import Field

from e2e_harness.models.base import Model
from e2e_harness.models.config import Viewport


class WebDriverConfig(Model):
    """Project options for a W3C WebDriver server or grid."""

    server_url: str = Field(
        default="http://localhost:4444", description="WebDriver server endpoint"
    )
    browser: Literal["chrome", "firefox", "MicrosoftEdge", "safari"] = "chrome"
    headless: bool = True
    base_url: str | None = Field(
        default=None, description="Base for relative URLs passed to page.goto"
    )
    viewport: Viewport | None = None
    capabilities: Mapping[str, Any] = Field(
        default_factory=dict, description="Extra capabilities merged into the request"
    )
