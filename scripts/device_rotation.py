#!/usr/bin/env python3
"""
Device Rotation Tester
Visits one URL with a rotating set of emulated devices using Playwright,
saving a screenshot and basic diagnostics per visit.

Usage: python scripts/device_rotation.py <URL>
"""

import argparse
import asyncio
import os
import re
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

try:
    from playwright.async_api import async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
except ImportError:
    print("ERROR: playwright not installed. Run: pip install playwright && playwright install chromium")
    raise SystemExit(1)


INTERVAL_SECONDS = 60
SETTLE_WAIT_SECONDS = 20
PAGE_LOAD_TIMEOUT_SECONDS = 60
LAUNCH_TIMEOUT_SECONDS = 30
MAX_ITERATIONS = 1000
SCREENSHOT_PREFIX = "screenshot"
SCREENSHOT_DIR = "screenshots"
POLL_INTERVAL_SECONDS = 1
SHUTDOWN_GRACE_SECONDS = 2

LAUNCH_ARGS = [
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

USAGE = "python scripts/device_rotation.py <URL>"
EXAMPLE = "python scripts/device_rotation.py https://example.com"


class DeviceRotationError(Exception):
    pass


class ArgumentError(DeviceRotationError):
    pass


class MissingArgument(ArgumentError):
    pass


class InvalidScheme(ArgumentError):
    pass


class VisitError(DeviceRotationError):
    pass


class LaunchFailure(VisitError):
    pass


class HttpError(VisitError):
    def __init__(self, status: int, status_text: str = ""):
        self.status = status
        self.status_text = status_text
        super().__init__(f"HTTP {status} - {status_text}".rstrip(" -"))


class NavigationError(VisitError):
    pass


class ScreenshotFailure(VisitError):
    pass


class CloseFailure(VisitError):
    def __init__(self, resource: str, cause: BaseException):
        self.resource = resource
        self.cause = cause
        super().__init__(f"Error closing {resource}: {cause}")


@dataclass(frozen=True)
class RotationSettings:
    interval: float = INTERVAL_SECONDS
    settle_wait: float = SETTLE_WAIT_SECONDS
    page_load_timeout: float = PAGE_LOAD_TIMEOUT_SECONDS
    launch_timeout: float = LAUNCH_TIMEOUT_SECONDS
    max_iterations: int = MAX_ITERATIONS
    screenshot_prefix: str = SCREENSHOT_PREFIX
    screenshot_dir: str = SCREENSHOT_DIR
    poll_interval: float = POLL_INTERVAL_SECONDS
    shutdown_grace: float = SHUTDOWN_GRACE_SECONDS


@dataclass(frozen=True)
class DeviceProfile:
    name: str
    category: str
    viewport: Dict[str, int]
    user_agent: str
    device_scale_factor: float = 1
    is_mobile: bool = False
    has_touch: bool = False

    def context_options(self) -> Dict[str, Any]:
        return {
            "viewport": dict(self.viewport),
            "user_agent": self.user_agent,
            "device_scale_factor": self.device_scale_factor,
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
        }


DEVICE_PROFILES = (
    DeviceProfile(
        name="iPhone 15 Pro",
        category="mobile",
        viewport={"width": 393, "height": 659},
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
        device_scale_factor=3,
        is_mobile=True,
        has_touch=True,
    ),
    DeviceProfile(
        name="Pixel 6",
        category="mobile",
        viewport={"width": 412, "height": 839},
        user_agent="Mozilla/5.0 (Linux; Android 12; Pixel 6) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
        device_scale_factor=2.625,
        is_mobile=True,
        has_touch=True,
    ),
    DeviceProfile(
        name="iPad (gen 7)",
        category="tablet",
        viewport={"width": 810, "height": 1080},
        user_agent="Mozilla/5.0 (iPad; CPU OS 12_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/12.1 Mobile/15E148 Safari/604.1",
        device_scale_factor=2,
        is_mobile=True,
        has_touch=True,
    ),
    DeviceProfile(
        name="Desktop Chrome",
        category="desktop",
        viewport={"width": 1366, "height": 768},
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        device_scale_factor=1,
        is_mobile=False,
        has_touch=False,
    ),
    DeviceProfile(
        name="Galaxy S23",
        category="mobile",
        viewport={"width": 360, "height": 780},
        user_agent="Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
        device_scale_factor=3,
        is_mobile=True,
        has_touch=True,
    ),
)


def select_profile(iteration: int, profiles: Sequence[DeviceProfile] = DEVICE_PROFILES) -> DeviceProfile:
    if not profiles:
        raise ValueError("device profile catalog is empty")
    return profiles[iteration % len(profiles)]


def validate_url(raw: Optional[str]) -> str:
    if not raw:
        raise MissingArgument("URL is required")
    if not raw.startswith(("http://", "https://")):
        raise InvalidScheme("URL must start with http:// or https://")
    return raw


def slugify_profile_name(name: str) -> str:
    """Lowercase name with every run of characters outside [a-z0-9] collapsed to one '-'."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def format_timestamp(moment: Optional[datetime] = None) -> str:
    # 2026-10-19T08:15:30.123Z -> 2026-10-19T08-15-30-123Z
    moment = moment or datetime.now(timezone.utc)
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return re.sub(r"[:.]", "-", iso)


def screenshot_filename(prefix: str, profile_name: str, moment: Optional[datetime] = None) -> str:
    return f"{prefix}-{format_timestamp(moment)}-{slugify_profile_name(profile_name)}.png"


def error_screenshot_filename(prefix: str, profile_name: str) -> str:
    return f"error-{prefix}-{slugify_profile_name(profile_name)}.png"


def warn(message: str) -> None:
    print(message, file=sys.stderr)


@dataclass
class VisitResult:
    profile_name: str
    status: str = "unknown"
    error: Optional[str] = None
    screenshot_taken: bool = False
    http_status: int = 0
    screenshot_path: Optional[str] = None
    error_screenshot_path: Optional[str] = None
    page_title: Optional[str] = None
    final_url: Optional[str] = None
    console_errors: List[str] = field(default_factory=list)
    page_errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class RunCounters:
    iteration: int = 0
    success_count: int = 0
    error_count: int = 0

    def record(self, result: VisitResult) -> None:
        if result.succeeded:
            self.success_count += 1
        else:
            self.error_count += 1
        self.iteration += 1

    @property
    def total(self) -> int:
        return self.success_count + self.error_count

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return self.success_count / self.total * 100


class DeviceVisitSession:
    def __init__(
        self,
        profile: DeviceProfile,
        iteration: int,
        target_url: str,
        browser_type: Any,
        settings: Optional[RotationSettings] = None,
    ):
        self.profile = profile
        self.iteration = iteration
        self.target_url = target_url
        self.browser_type = browser_type
        self.settings = settings or RotationSettings()
        self.screenshot_dir = Path(self.settings.screenshot_dir)

        self.browser = None
        self.context = None
        self.page = None
        self.stage = "idle"
        self.close_errors: List[CloseFailure] = []
        self._cleanup_future: Optional[asyncio.Future] = None
        self.result = VisitResult(profile_name=profile.name)

    async def run(self) -> VisitResult:
        try:
            print(f"\n🚀 Starting test iteration {self.iteration + 1}")
            print(f"📱 Device: {self.profile.name}")
            print(f"📏 Viewport: {self.profile.viewport['width']}x{self.profile.viewport['height']}")
            print(f"🔗 URL: {self.target_url}")

            self.stage = "ensure_dir"
            self.ensure_screenshot_dir()

            self.stage = "launch"
            await self.launch_browser()
            await self.release_if_cleaned_up("browser", self.browser)

            self.stage = "new_context"
            self.context = await self.browser.new_context(
                **self.profile.context_options(),
                ignore_https_errors=True,
            )
            await self.release_if_cleaned_up("context", self.context)

            self.stage = "new_page"
            self.page = await self.context.new_page()
            await self.release_if_cleaned_up("page", self.page)
            self.attach_observers()

            self.stage = "goto"
            await self.load_page()

            self.stage = "settle"
            print(f"⏳ Waiting {self.settings.settle_wait:g}s for initialization...")
            await self.page.wait_for_timeout(self.settings.settle_wait * 1000)

            self.stage = "screenshot"
            await self.take_screenshot()

            self.stage = "page_info"
            await self.collect_page_info()

            self.stage = "done"
            self.result.status = "success"
        except Exception as exc:
            warn(f"❌ Test failed at {self.stage}: {exc}")
            self.record_failure(exc)
            await self.take_error_screenshot()
        finally:
            await self.cleanup()
        return self.result

    def record_failure(self, exc: BaseException) -> VisitResult:
        self.result.status = "error"
        self.result.error = str(exc) or exc.__class__.__name__
        if isinstance(exc, HttpError):
            self.result.http_status = exc.status
        return self.result

    def ensure_screenshot_dir(self) -> None:
        if self.screenshot_dir.is_dir():
            return
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        print(f"📁 Created directory: {self.screenshot_dir}")

    async def launch_browser(self) -> None:
        try:
            self.browser = await self.browser_type.launch(
                headless=True,
                args=LAUNCH_ARGS,
                timeout=self.settings.launch_timeout * 1000,
            )
        except PlaywrightError as exc:
            raise LaunchFailure(f"Browser launch failed: {exc}") from exc

    def attach_observers(self) -> None:
        def on_response(response) -> None:
            status = response.status
            if status >= 400:
                warn(f"⚠️ HTTP {status}: {response.url}")
                self.result.http_status = status

        def on_console(message) -> None:
            if message.type == "error":
                print(f"🔴 Console Error: {message.text}")
                self.result.console_errors.append(message.text)

        def on_page_error(error) -> None:
            text = getattr(error, "message", None) or str(error)
            warn(f"🔴 Page Error: {text}")
            self.result.page_errors.append(text)

        self.page.on("response", on_response)
        self.page.on("console", on_console)
        self.page.on("pageerror", on_page_error)

    async def load_page(self) -> None:
        try:
            response = await self.page.goto(
                self.target_url,
                wait_until="domcontentloaded",
                timeout=self.settings.page_load_timeout * 1000,
            )
        except PlaywrightTimeoutError:
            print("⏰ Page load timeout, continuing...")
            return
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {self.target_url} failed: {exc}") from exc

        if response is None:
            return
        self.result.http_status = response.status
        print(f"📊 HTTP Status: {response.status}")
        if response.status >= 400:
            raise HttpError(response.status, response.status_text)

    async def take_screenshot(self) -> None:
        screenshot_path = self.screenshot_dir / screenshot_filename(
            self.settings.screenshot_prefix, self.profile.name
        )
        try:
            await self.capture(screenshot_path, full_page=True)
        except ScreenshotFailure as exc:
            warn(f"Error taking screenshot: {exc}")
            return
        self.result.screenshot_taken = True
        self.result.screenshot_path = str(screenshot_path)
        print(f"📸 Screenshot saved: {screenshot_path}")

    async def take_error_screenshot(self) -> None:
        if self.page is None or self.cleanup_started:
            return
        screenshot_path = self.screenshot_dir / error_screenshot_filename(
            self.settings.screenshot_prefix, self.profile.name
        )
        try:
            await self.capture(screenshot_path, full_page=False)
        except ScreenshotFailure as exc:
            warn(f"Failed to take error screenshot: {exc}")
            return
        self.result.error_screenshot_path = str(screenshot_path)
        print(f"📸 Error screenshot: {screenshot_path}")

    async def capture(self, path: Path, full_page: bool) -> None:
        try:
            await self.page.screenshot(path=str(path), full_page=full_page, type="png")
        except (PlaywrightError, OSError) as exc:
            raise ScreenshotFailure(str(exc)) from exc

    async def collect_page_info(self) -> None:
        try:
            self.result.page_title = await self.page.title()
            self.result.final_url = self.page.url
        except PlaywrightError as exc:
            warn(f"Error collecting page info: {exc}")
            return
        print(f'📄 Page Title: "{self.result.page_title}"')
        print(f"🔗 Current URL: {self.result.final_url}")
        print("✅ Page loaded successfully")

    @property
    def cleanup_started(self) -> bool:
        return self._cleanup_future is not None

    def start_cleanup(self) -> asyncio.Future:
        """Start closing page, context and browser, independently of each other.

        Only the first call schedules any closes; the resources held at that
        moment are the ones closed. Later calls return the same future. Safe
        to call from the shutdown handler while run() is awaiting a stage.
        """
        if self._cleanup_future is None:
            closers = []
            if self.page is not None and not self.page.is_closed():
                closers.append(self._close("page", self.page))
            if self.context is not None:
                closers.append(self._close("context", self.context))
            if self.browser is not None:
                closers.append(self._close("browser", self.browser))
            self._cleanup_future = asyncio.gather(*closers)
        return self._cleanup_future

    async def cleanup(self) -> None:
        # Every caller waits for the closes to finish; cancelling a caller
        # does not cancel the closes.
        await asyncio.shield(self.start_cleanup())

    async def release_if_cleaned_up(self, resource: str, target: Any) -> None:
        """Close a resource acquired after cleanup started and abort the visit."""
        if not self.cleanup_started:
            return
        await self._close(resource, target)
        raise VisitError(f"Visit aborted by shutdown after {resource} was created")

    async def _close(self, resource: str, target: Any) -> None:
        try:
            await target.close()
        except Exception as exc:
            failure = CloseFailure(resource, exc)
            self.close_errors.append(failure)
            warn(str(failure))


class ShutdownCoordinator:
    """Shared shutdown state between the signal handlers and the rotation loop."""

    def __init__(
        self,
        grace_period: float = SHUTDOWN_GRACE_SECONDS,
        exit_func: Optional[Callable[[int], Any]] = None,
    ):
        self.grace_period = grace_period
        self.current_session: Optional[DeviceVisitSession] = None
        self._flag = threading.Event()
        self._exit_func = exit_func or hard_exit
        self._exit_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_shutting_down(self) -> bool:
        return self._flag.is_set()

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig.name)
            except NotImplementedError:
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self.handle_signal, signal.Signals(signum).name
                    ),
                )

    def handle_signal(self, signame: str) -> None:
        print(f"\n🛑 Received {signame}. Shutting down gracefully...")
        self._flag.set()

        loop = asyncio.get_running_loop()
        session = self.current_session
        if session is not None:
            session.start_cleanup()

        if self._exit_handle is None:
            self._exit_handle = loop.call_later(self.grace_period, self._exit_func, 0)


def hard_exit(code: int) -> None:
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


async def interruptible_sleep(
    seconds: float,
    coordinator: ShutdownCoordinator,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while not coordinator.is_shutting_down:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(poll_interval, remaining))
    return True


def print_summary(counters: RunCounters) -> None:
    print("\n📊 Progress Summary:")
    print(f"   ✅ Successful: {counters.success_count}")
    print(f"   ❌ Failed: {counters.error_count}")
    print(f"   📈 Success Rate: {counters.success_rate:.1f}%")
    print(f"   🔄 Total Tests: {counters.total}")


async def run_rotation(
    target_url: str,
    browser_type: Any,
    coordinator: ShutdownCoordinator,
    settings: Optional[RotationSettings] = None,
    profiles: Sequence[DeviceProfile] = DEVICE_PROFILES,
) -> RunCounters:
    settings = settings or RotationSettings()
    counters = RunCounters()

    print("🎯 Starting Device Rotation Test")
    print(f"📊 Target URL: {target_url}")
    print(f"⏰ Interval: {settings.interval:g} seconds")
    print(f"📱 Device Profiles: {len(profiles)}")
    print(f"📁 Screenshot Directory: {settings.screenshot_dir}")
    print("💡 Press CTRL+C to stop the test")
    print("=" * 50)

    Path(settings.screenshot_dir).mkdir(parents=True, exist_ok=True)

    while not coordinator.is_shutting_down and counters.iteration < settings.max_iterations:
        profile = select_profile(counters.iteration, profiles)

        print(f"\n{'=' * 50}")
        print(f"🔄 Iteration {counters.iteration + 1} - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"📱 Testing on: {profile.name} ({profile.category})")
        print("=" * 50)

        session = DeviceVisitSession(profile, counters.iteration, target_url, browser_type, settings)
        coordinator.current_session = session
        try:
            result = await session.run()
        finally:
            coordinator.current_session = None

        counters.record(result)
        print_summary(counters)

        if not coordinator.is_shutting_down and counters.iteration < settings.max_iterations:
            print(f"\n💤 Waiting {settings.interval:g} seconds...")
            await interruptible_sleep(settings.interval, coordinator, settings.poll_interval)

    print("\n✅ Test session completed")
    print(f"🎯 Final Results: {counters.success_count} passed, {counters.error_count} failed")
    return counters


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    exc = context.get("exception")
    if exc is None or isinstance(exc, asyncio.CancelledError):
        loop.default_exception_handler(context)
        return
    warn(f"Unhandled Rejection: {exc!r}")
    hard_exit(1)


async def main_async(target_url: str, settings: Optional[RotationSettings] = None) -> RunCounters:
    settings = settings or RotationSettings()
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(handle_loop_exception)

    coordinator = ShutdownCoordinator(grace_period=settings.shutdown_grace)
    coordinator.install(loop)

    async with async_playwright() as p:
        return await run_rotation(target_url, p.chromium, coordinator, settings)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Visit a URL with a rotating set of emulated devices")
    parser.add_argument("url", nargs="?", help="Target URL (http:// or https://)")
    args = parser.parse_args(argv)

    try:
        target_url = validate_url(args.url)
    except MissingArgument as exc:
        warn(f"❌ Error: {exc}")
        warn(f"📖 Usage: {USAGE}")
        warn(f"💡 Example: {EXAMPLE}")
        raise SystemExit(1)
    except InvalidScheme as exc:
        warn(f"❌ Error: {exc}")
        raise SystemExit(1)

    try:
        asyncio.run(main_async(target_url))
    except Exception as exc:
        warn(f"Fatal error: {exc!r}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
