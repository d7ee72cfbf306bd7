"""Playwright engine implementation."""

import logging
import uuid
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from e2e_harness.engines.base import AutomationEngine, SessionHandle
from e2e_harness.engines.playwright.config import BrowserName, PlaywrightConfig

log = logging.getLogger(__name__)

type BrowserKey = tuple[str, str | None, bool, float]


def resolve_browser(
    config: PlaywrightConfig, devices: Mapping[str, Mapping[str, Any]]
) -> BrowserName:
    """Pick the browser to launch: explicit, the device's default, or chromium."""
    if config.browser is not None:
        return config.browser
    if config.device is not None:
        return devices[config.device]["default_browser_type"]
    return "chromium"


def context_options(
    config: PlaywrightConfig, devices: Mapping[str, Mapping[str, Any]]
) -> dict[str, Any]:
    """Build new_context keyword arguments from the device profile and options."""
    options: dict[str, Any] = {}
    if config.device is not None:
        options.update(devices[config.device])
        options.pop("default_browser_type", None)
    if config.viewport is not None:
        options["viewport"] = config.viewport.model_dump()
    if config.base_url is not None:
        options["base_url"] = config.base_url
    if config.ignore_https_errors:
        options["ignore_https_errors"] = True
    if config.locale is not None:
        options["locale"] = config.locale
    return options


@dataclass(frozen=True, kw_only=True)
class PlaywrightEngine(AutomationEngine[PlaywrightConfig, BrowserContext]):
    """Runs every session in a fresh browser context.

    Browsers are launched once per worker and shared by the contexts of that
    worker; contexts never share cookies, storage or pages.
    """

    playwright: Playwright = field(repr=False)
    browsers: dict[BrowserKey, Browser] = field(default_factory=dict, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_manifest(cls) -> AsyncGenerator["PlaywrightEngine", None]:
        """Create engine with managed Playwright lifecycle."""
        async with async_playwright() as playwright:
            engine = cls(playwright=playwright)
            try:
                yield engine
            finally:
                await engine.close_browsers()

    async def launch_session(
        self, config: PlaywrightConfig, *, trace: bool
    ) -> SessionHandle[BrowserContext]:
        """Open a new context and page, starting tracing when asked to."""
        browser = await self.browser_for(config)
        context = await browser.new_context(
            **context_options(config, self.playwright.devices)
        )
        if trace:
            await context.tracing.start(screenshots=True, snapshots=True, sources=True)
        page = await context.new_page()
        return SessionHandle(
            session_id=str(uuid.uuid4()), page=page, state=context, tracing=trace
        )

    async def close_session(
        self, handle: SessionHandle[BrowserContext], *, trace_path: Path | None = None
    ) -> None:
        """Stop tracing and close the context."""
        context = handle.state
        try:
            if handle.tracing:
                await context.tracing.stop(path=trace_path)
        finally:
            await context.close()

    async def screenshot(self, handle: SessionHandle[BrowserContext], path: Path) -> None:
        await handle.page.screenshot(path=path, full_page=True)

    async def browser_for(self, config: PlaywrightConfig) -> Browser:
        """Return the worker's browser for these options, launching it once."""
        name = resolve_browser(config, self.playwright.devices)
        key: BrowserKey = (name, config.channel, config.headless, config.slow_mo)
        if (browser := self.browsers.get(key)) is not None:
            return browser

        log.info(
            "Launching browser: browser=%s, channel=%s, headless=%s",
            name,
            config.channel,
            config.headless,
        )
        browser = await getattr(self.playwright, name).launch(
            channel=config.channel,
            headless=config.headless,
            slow_mo=config.slow_mo,
        )
        self.browsers[key] = browser
        return browser

    async def close_browsers(self) -> None:
        for browser in self.browsers.values():
            await browser.close()
        self.browsers.clear()
