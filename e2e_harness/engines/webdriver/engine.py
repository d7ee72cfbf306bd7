"""WebDriver engine implementation."""

import base64
import json
import logging
import time
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar

import aiohttp
from pydantic import ValidationError
from yarl import URL

from e2e_harness.engines.base import AutomationEngine, SessionHandle
from e2e_harness.engines.webdriver.config import WebDriverConfig
from e2e_harness.engines.webdriver.models import ErrorResponse, NewSessionResponse

log = logging.getLogger(__name__)

ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"

KEYS: Mapping[str, str] = {
    "Backspace": "\ue003",
    "Tab": "\ue004",
    "Enter": "\ue007",
    "Escape": "\ue00c",
    "ArrowLeft": "\ue012",
    "ArrowUp": "\ue013",
    "ArrowRight": "\ue014",
    "ArrowDown": "\ue015",
}

HEADLESS_OPTIONS: Mapping[str, tuple[str, str]] = {
    "chrome": ("goog:chromeOptions", "--headless=new"),
    "MicrosoftEdge": ("ms:edgeOptions", "--headless=new"),
    "firefox": ("moz:firefoxOptions", "-headless"),
}


class WebDriverError(RuntimeError):
    """Raised when the WebDriver server rejects a command."""

    def __init__(self, status: int, error: str, message: str) -> None:
        self.status = status
        self.error = error
        super().__init__(f"{error} ({status}): {message}")


def build_capabilities(config: WebDriverConfig) -> dict[str, Any]:
    """Build the alwaysMatch capabilities for a new session."""
    capabilities: dict[str, Any] = {"browserName": config.browser}
    if config.headless and config.browser in HEADLESS_OPTIONS:
        key, argument = HEADLESS_OPTIONS[config.browser]
        capabilities[key] = {"args": [argument]}
    capabilities.update(config.capabilities)
    return capabilities


async def read_value(response: aiohttp.ClientResponse) -> Any:
    """Return the ``value`` of a WebDriver response, raising on errors."""
    data = await response.json(content_type=None)
    if response.status >= 400:
        try:
            error = ErrorResponse.model_validate(data).value
        except ValidationError:
            raise WebDriverError(response.status, "unknown error", str(data)) from None
        raise WebDriverError(response.status, error.error, error.message)
    return data["value"] if isinstance(data, dict) else None


@dataclass(frozen=True, kw_only=True)
class WebDriverPage:
    """Page API handed to test bodies running on the WebDriver engine.

    When ``commands`` is a list every command is appended to it and the list
    is saved as the session's trace.
    """

    http: aiohttp.ClientSession = field(repr=False)
    session_url: URL
    base_url: URL | None = None
    commands: list[dict[str, Any]] | None = field(default=None, repr=False)

    async def command(
        self, method: str, *segments: str, payload: Mapping[str, Any] | None = None
    ) -> Any:
        """Send a command to the session and return its value."""
        url = self.session_url.joinpath(*segments)
        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()
        status = 0
        try:
            async with self.http.request(method, url, json=payload) as response:
                status = response.status
                return await read_value(response)
        finally:
            if self.commands is not None:
                self.commands.append(
                    {
                        "started_at": started_at.isoformat(),
                        "method": method,
                        "path": "/".join(segments),
                        "payload": payload,
                        "status": status,
                        "duration": round(time.perf_counter() - timer, 4),
                    }
                )

    async def goto(self, url: str) -> None:
        target = str(self.base_url.join(URL(url))) if self.base_url else url
        await self.command("POST", "url", payload={"url": target})

    async def title(self) -> str:
        return await self.command("GET", "title")

    async def url(self) -> str:
        return await self.command("GET", "url")

    async def find(self, selector: str) -> str:
        """Return the id of the first element matching a CSS selector."""
        value = await self.command(
            "POST", "element", payload={"using": "css selector", "value": selector}
        )
        return value[ELEMENT_KEY]

    async def click(self, selector: str) -> None:
        element = await self.find(selector)
        await self.command("POST", "element", element, "click", payload={})

    async def fill(self, selector: str, text: str) -> None:
        element = await self.find(selector)
        await self.command("POST", "element", element, "clear", payload={})
        await self.command("POST", "element", element, "value", payload={"text": text})

    async def press(self, selector: str, key: str) -> None:
        element = await self.find(selector)
        text = KEYS.get(key, key)
        await self.command("POST", "element", element, "value", payload={"text": text})

    async def text(self, selector: str) -> str:
        element = await self.find(selector)
        return await self.command("GET", "element", element, "text")

    async def is_visible(self, selector: str) -> bool:
        try:
            element = await self.find(selector)
        except WebDriverError as e:
            if e.error == "no such element":
                return False
            raise
        return bool(await self.command("GET", "element", element, "displayed"))

    async def execute(self, script: str, *args: Any) -> Any:
        return await self.command(
            "POST", "execute", "sync", payload={"script": script, "args": list(args)}
        )

    async def screenshot(self, path: Path) -> None:
        data = await self.command("GET", "screenshot")
        path.write_bytes(base64.b64decode(data))


@dataclass(frozen=True, kw_only=True)
class WebDriverEngine(AutomationEngine[WebDriverConfig, WebDriverPage]):
    """Opens one WebDriver session per attempt."""

    trace_file: ClassVar[str] = "trace.json"

    http: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_manifest(cls) -> AsyncGenerator["WebDriverEngine", None]:
        """Create engine with managed HTTP session lifecycle."""
        timeout = aiohttp.ClientTimeout(total=120)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            yield cls(http=http)

    async def launch_session(
        self, config: WebDriverConfig, *, trace: bool
    ) -> SessionHandle[WebDriverPage]:
        """Create a remote session and size its window."""
        server = URL(config.server_url)
        payload = {"capabilities": {"alwaysMatch": build_capabilities(config)}}

        log.info(
            "Creating WebDriver session: server_url=%s, browser=%s, headless=%s",
            config.server_url,
            config.browser,
            config.headless,
        )
        async with self.http.post(server / "session", json=payload) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to create session: {response.status} {text}"
                )
            data = await response.json(content_type=None)

        session = NewSessionResponse.model_validate(data).value
        page = WebDriverPage(
            http=self.http,
            session_url=server / "session" / session.session_id,
            base_url=URL(config.base_url) if config.base_url else None,
            commands=[] if trace else None,
        )
        if config.viewport is not None:
            await page.command("POST", "window", "rect", payload=config.viewport.model_dump())

        return SessionHandle(
            session_id=session.session_id, page=page, state=page, tracing=trace
        )

    async def close_session(
        self, handle: SessionHandle[WebDriverPage], *, trace_path: Path | None = None
    ) -> None:
        """Delete the remote session, saving the command log as the trace."""
        page = handle.state
        if trace_path is not None and page.commands is not None:
            trace_path.write_text(json.dumps(page.commands, indent=2), encoding="utf-8")

        async with self.http.delete(page.session_url) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to delete session: {response.status} {text}"
                )

    async def screenshot(self, handle: SessionHandle[WebDriverPage], path: Path) -> None:
        await handle.page.screenshot(path)
