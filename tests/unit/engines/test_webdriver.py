"""Tests for WebDriver engine."""

import base64
import json
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from aioresponses import aioresponses as aioresponses_cls
from yarl import URL

from e2e_harness.engines.webdriver import (
    WebDriverConfig,
    WebDriverEngine,
    WebDriverError,
    WebDriverPage,
)
from e2e_harness.engines.webdriver.engine import ELEMENT_KEY, build_capabilities

SERVER_URL = "http://grid.test:4444"
SESSION_URL = f"{SERVER_URL}/session/abc123"
VALUE_URL = f"{SESSION_URL}/element/el-1/value"


def new_session_payload(session_id: str = "abc123") -> dict[str, object]:
    return {
        "value": {"sessionId": session_id, "capabilities": {"browserName": "chrome"}}
    }


@pytest.fixture
async def engine(
    aioresponses: aioresponses_cls,
) -> AsyncGenerator[WebDriverEngine, None]:
    """Create engine with managed HTTP session."""
    async with WebDriverEngine.from_manifest() as impl:
        yield impl


@pytest.fixture
def config() -> WebDriverConfig:
    """Options for a headless Chrome on the test grid."""
    return WebDriverConfig(server_url=SERVER_URL, base_url="http://app.test/")


class TestBuildCapabilities:
    """Tests for build_capabilities function."""

    __test__ = True

    def test_adds_headless_argument(self) -> None:
        """Requests headless Chrome through its vendor options."""
        capabilities = build_capabilities(WebDriverConfig(browser="chrome"))

        assert capabilities == {
            "browserName": "chrome",
            "goog:chromeOptions": {"args": ["--headless=new"]},
        }

    def test_headed_has_no_vendor_options(self) -> None:
        """Leaves vendor options out for headed browsers."""
        capabilities = build_capabilities(
            WebDriverConfig(browser="firefox", headless=False)
        )

        assert capabilities == {"browserName": "firefox"}

    def test_merges_extra_capabilities(self) -> None:
        """Extra capabilities override the generated ones."""
        config = WebDriverConfig(
            browser="safari",
            capabilities={"platformName": "mac", "browserName": "Safari"},
        )

        assert build_capabilities(config) == {
            "browserName": "Safari",
            "platformName": "mac",
        }


class TestLaunchSession:
    """Tests for launch_session."""

    __test__ = True

    async def test_creates_session(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Posts the capabilities and returns a handle for the new session."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())

        handle = await engine.launch_session(config, trace=False)

        assert handle.session_id == "abc123"
        assert handle.tracing is False
        assert isinstance(handle.page, WebDriverPage)
        assert handle.page.session_url == URL(SESSION_URL)

        call = aioresponses.requests[("POST", URL(f"{SERVER_URL}/session"))][0]
        assert call.kwargs["json"] == {
            "capabilities": {
                "alwaysMatch": {
                    "browserName": "chrome",
                    "goog:chromeOptions": {"args": ["--headless=new"]},
                }
            }
        }

    async def test_sets_window_size(
        self, engine: WebDriverEngine, aioresponses: aioresponses_cls
    ) -> None:
        """Resizes the window when a viewport is configured."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())
        aioresponses.post(f"{SESSION_URL}/window/rect", payload={"value": None})
        config = WebDriverConfig.model_validate(
            {"server_url": SERVER_URL, "viewport": {"width": 1280, "height": 720}}
        )

        await engine.launch_session(config, trace=False)

        call = aioresponses.requests[("POST", URL(f"{SESSION_URL}/window/rect"))][0]
        assert call.kwargs["json"] == {"width": 1280, "height": 720}

    async def test_raises_when_server_refuses(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Raises when the server cannot create a session."""
        aioresponses.post(f"{SERVER_URL}/session", status=500, body="no nodes")

        with pytest.raises(RuntimeError, match="Failed to create session: 500"):
            await engine.launch_session(config, trace=False)


class TestCloseSession:
    """Tests for close_session."""

    __test__ = True

    async def test_deletes_session(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Deletes the remote session."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())
        aioresponses.delete(SESSION_URL, payload={"value": None})
        handle = await engine.launch_session(config, trace=False)

        await engine.close_session(handle)

        assert ("DELETE", URL(SESSION_URL)) in aioresponses.requests

    async def test_writes_command_log_as_trace(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
        tmp_path: Path,
    ) -> None:
        """Saves every command of a traced session to the trace file."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())
        aioresponses.post(f"{SESSION_URL}/url", payload={"value": None})
        aioresponses.get(f"{SESSION_URL}/title", payload={"value": "TodoMVC"})
        aioresponses.delete(SESSION_URL, payload={"value": None})
        handle = await engine.launch_session(config, trace=True)
        await handle.page.goto("/todos")
        await handle.page.title()

        trace_path = tmp_path / engine.trace_file
        await engine.close_session(handle, trace_path=trace_path)

        commands = json.loads(trace_path.read_text(encoding="utf-8"))
        assert [(c["method"], c["path"]) for c in commands] == [
            ("POST", "url"),
            ("GET", "title"),
        ]
        assert commands[0]["payload"] == {"url": "http://app.test/todos"}
        assert commands[1]["status"] == 200

    async def test_raises_when_delete_fails(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Raises when the server cannot delete the session."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())
        aioresponses.delete(SESSION_URL, status=404, body="invalid session id")
        handle = await engine.launch_session(config, trace=False)

        with pytest.raises(RuntimeError, match="Failed to delete session: 404"):
            await engine.close_session(handle)


class TestWebDriverPage:
    """Tests for WebDriverPage commands."""

    __test__ = True

    @pytest.fixture
    async def page(
        self,
        engine: WebDriverEngine,
        config: WebDriverConfig,
        aioresponses: aioresponses_cls,
    ) -> WebDriverPage:
        """Page of a freshly launched session."""
        aioresponses.post(f"{SERVER_URL}/session", payload=new_session_payload())
        handle = await engine.launch_session(config, trace=False)
        return handle.page

    async def test_goto_resolves_relative_url(
        self, page: WebDriverPage, aioresponses: aioresponses_cls
    ) -> None:
        """Navigates relative to the base URL."""
        aioresponses.post(f"{SESSION_URL}/url", payload={"value": None})

        await page.goto("todos?filter=active")

        call = aioresponses.requests[("POST", URL(f"{SESSION_URL}/url"))][0]
        assert call.kwargs["json"] == {"url": "http://app.test/todos?filter=active"}

    async def test_fill_clears_then_types(
        self, page: WebDriverPage, aioresponses: aioresponses_cls
    ) -> None:
        """Finds the element, clears it and sends the text."""
        aioresponses.post(
            f"{SESSION_URL}/element", payload={"value": {ELEMENT_KEY: "el-1"}}
        )
        aioresponses.post(f"{SESSION_URL}/element/el-1/clear", payload={"value": None})
        aioresponses.post(f"{SESSION_URL}/element/el-1/value", payload={"value": None})

        await page.fill(".new-todo", "Buy groceries")

        find = aioresponses.requests[("POST", URL(f"{SESSION_URL}/element"))][0]
        assert find.kwargs["json"] == {"using": "css selector", "value": ".new-todo"}
        typed = aioresponses.requests[("POST", URL(VALUE_URL))]
        assert typed[0].kwargs["json"] == {"text": "Buy groceries"}

    async def test_press_sends_key_code(
        self, page: WebDriverPage, aioresponses: aioresponses_cls
    ) -> None:
        """Translates named keys to WebDriver key codes."""
        aioresponses.post(
            f"{SESSION_URL}/element", payload={"value": {ELEMENT_KEY: "el-1"}}
        )
        aioresponses.post(f"{SESSION_URL}/element/el-1/value", payload={"value": None})

        await page.press(".new-todo", "Enter")

        typed = aioresponses.requests[("POST", URL(VALUE_URL))]
        assert typed[0].kwargs["json"] == {"text": "\ue007"}

    async def test_is_visible_false_when_missing(
        self, page: WebDriverPage, aioresponses: aioresponses_cls
    ) -> None:
        """Reports a missing element as not visible."""
        aioresponses.post(
            f"{SESSION_URL}/element",
            status=404,
            payload={"value": {"error": "no such element", "message": "not found"}},
        )

        assert await page.is_visible(".todo-list li") is False

    async def test_command_errors_raise(
        self, page: WebDriverPage, aioresponses: aioresponses_cls
    ) -> None:
        """Raises WebDriverError with the server's error code."""
        aioresponses.get(
            f"{SESSION_URL}/title",
            status=404,
            payload={"value": {"error": "invalid session id", "message": "gone"}},
        )

        with pytest.raises(WebDriverError, match="invalid session id") as exc_info:
            await page.title()

        assert exc_info.value.status == 404
        assert exc_info.value.error == "invalid session id"

    async def test_screenshot_decodes_png(
        self, page: WebDriverPage, aioresponses: aioresponses_cls, tmp_path: Path
    ) -> None:
        """Writes the decoded screenshot to disk."""
        data = base64.b64encode(b"\x89PNG").decode()
        aioresponses.get(f"{SESSION_URL}/screenshot", payload={"value": data})
        path = tmp_path / "screenshot.png"

        await page.screenshot(path)

        assert path.read_bytes() == b"\x89PNG"
