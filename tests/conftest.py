"""Shared fixtures: in-memory stand-ins for the Playwright browser objects.

The fakes implement only the calls DeviceVisitSession makes, so the whole
visit pipeline can run without a real browser.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from scripts.device_rotation import RotationSettings, ShutdownCoordinator


class FakeResponse:
    def __init__(self, status: int, url: str = "https://example.com/", status_text: str = ""):
        self.status = status
        self.url = url
        self.status_text = status_text


class FakeConsoleMessage:
    def __init__(self, type: str, text: str):
        self.type = type
        self.text = text


class FakePageError:
    def __init__(self, message: str):
        self.message = message


class FakePage:
    def __init__(
        self,
        status: Optional[int] = 200,
        status_text: str = "OK",
        goto_error: Optional[BaseException] = None,
        screenshot_error: Optional[BaseException] = None,
        title_error: Optional[BaseException] = None,
        close_error: Optional[BaseException] = None,
        extra_responses: Optional[List[FakeResponse]] = None,
        console_messages: Optional[List[FakeConsoleMessage]] = None,
        page_errors: Optional[List[FakePageError]] = None,
        title: str = "Example Domain",
        on_settle: Optional[Callable[[], Any]] = None,
    ):
        self.status = status
        self.status_text = status_text
        self.goto_error = goto_error
        self.screenshot_error = screenshot_error
        self.title_error = title_error
        self.close_error = close_error
        self.extra_responses = extra_responses or []
        self.console_messages = console_messages or []
        self.page_errors = page_errors or []
        self._title = title
        self.on_settle = on_settle

        self.url = "about:blank"
        self.handlers: Dict[str, List[Callable]] = {}
        self.goto_calls: List[Dict[str, Any]] = []
        self.waits: List[float] = []
        self.screenshots: List[Dict[str, Any]] = []
        self.close_calls = 0
        self.closed = False

    def on(self, event: str, handler: Callable) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(payload)

    async def goto(self, url: str, **kwargs):
        self.goto_calls.append({"url": url, **kwargs})
        for response in self.extra_responses:
            self.emit("response", response)
        for message in self.console_messages:
            self.emit("console", message)
        for error in self.page_errors:
            self.emit("pageerror", error)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        if self.status is None:
            return None
        response = FakeResponse(self.status, url, self.status_text)
        self.emit("response", response)
        return response

    async def wait_for_timeout(self, timeout: float) -> None:
        self.waits.append(timeout)
        if self.on_settle is not None:
            self.on_settle()
        await asyncio.sleep(0)

    async def screenshot(self, path: str, **kwargs) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append({"path": path, **kwargs})
        return b"\x89PNG"

    async def title(self) -> str:
        if self.title_error is not None:
            raise self.title_error
        return self._title

    def is_closed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage, options: Dict[str, Any], close_error: Optional[BaseException] = None):
        self.page = page
        self.options = options
        self.close_error = close_error
        self.close_calls = 0

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeBrowser:
    def __init__(self, page: FakePage, context_close_error: Optional[BaseException] = None,
                 close_error: Optional[BaseException] = None, close_delay: float = 0):
        self.page = page
        self.close_delay = close_delay
        self.closed = False
        self.context_close_error = context_close_error
        self.close_error = close_error
        self.contexts: List[FakeContext] = []
        self.close_calls = 0

    async def new_context(self, **options) -> FakeContext:
        context = FakeContext(self.page, options, self.context_close_error)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class FakeBrowserType:
    """Launches a fresh FakeBrowser per call; page options apply to every launch."""

    def __init__(
        self,
        launch_error: Optional[BaseException] = None,
        context_close_error: Optional[BaseException] = None,
        browser_close_error: Optional[BaseException] = None,
        browser_close_delay: float = 0,
        on_launch: Optional[Callable[[], Any]] = None,
        **page_options,
    ):
        self.launch_error = launch_error
        self.context_close_error = context_close_error
        self.browser_close_error = browser_close_error
        self.browser_close_delay = browser_close_delay
        self.on_launch = on_launch
        self.page_options = page_options
        self.launches: List[Dict[str, Any]] = []
        self.browsers: List[FakeBrowser] = []

    async def launch(self, **kwargs) -> FakeBrowser:
        self.launches.append(kwargs)
        if self.launch_error is not None:
            raise self.launch_error
        browser = FakeBrowser(
            FakePage(**self.page_options),
            context_close_error=self.context_close_error,
            close_error=self.browser_close_error,
            close_delay=self.browser_close_delay,
        )
        self.browsers.append(browser)
        if self.on_launch is not None:
            self.on_launch()
        return browser


@pytest.fixture
def settings(tmp_path: Path) -> RotationSettings:
    return RotationSettings(
        interval=0,
        settle_wait=0.5,
        page_load_timeout=1,
        launch_timeout=1,
        max_iterations=5,
        screenshot_dir=str(tmp_path / "screenshots"),
        poll_interval=0.01,
        shutdown_grace=0.05,
    )


@pytest.fixture
def exit_calls() -> List[int]:
    return []


@pytest.fixture
def coordinator(exit_calls: List[int]) -> ShutdownCoordinator:
    return ShutdownCoordinator(grace_period=0.05, exit_func=exit_calls.append)
