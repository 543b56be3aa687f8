# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""
Shared test fixtures for the SteadyBrowser test suite.

This module provides in-memory stand-ins for the Playwright objects the
engine talks to:
- FakePage / FakeLocator with scripted ``evaluate`` answers
- FakeContext / FakeBrowser / FakePlaywright for the launch ladder
- Engine configuration rooted in a temporary directory
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from steadybrowser.core.captcha import VERIFY_BUTTON_SCRIPT
from steadybrowser.core.config import EngineConfig, ThresholdConfig, TimingConfig
from steadybrowser.core.interaction import (
    DOM_CLICK_SCRIPT,
    DOM_HOVER_SCRIPT,
    DOM_TYPE_SCRIPT,
    READ_VALUE_SCRIPT,
    SELECTED_OPTION_SCRIPT,
)
from steadybrowser.core.selector_resolver import SCAN_SCRIPT
from steadybrowser.core.stability import ANIMATION_FRAME_SCRIPT, MEASURE_SCRIPT, QUIESCENCE_SCRIPT

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 20000

_REF_SELECTOR = re.compile(r'^\[data-steady-ref="(\d+)"\]$')


# ==================== Environment Setup ====================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ.setdefault("STEADYBROWSER_LOG_LEVEL", "warning")
    os.environ.setdefault("STEADYBROWSER_LOG_FORMAT", "text")
    yield


@pytest.fixture
def no_display(monkeypatch):
    """Simulate a server without a display."""
    monkeypatch.delenv("DISPLAY", raising=False)
    monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
    monkeypatch.setattr("sys.platform", "linux")


# ==================== Fake Page ====================

class FakeLocator:
    """Stand-in for a Playwright locator addressing one element."""

    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector
        self.value = ""
        self.checked = False
        self.options: List[Tuple[str, str]] = []
        self.selected: List[Tuple[str, str]] = []
        self.exists = True

        # Failure knobs
        self.click_error: Optional[Exception] = None
        self.dom_click_error: Optional[Exception] = None
        self.hover_error: Optional[Exception] = None
        self.fill_ignored = False
        self.keyboard_ignored = False
        self.dom_type_applied = True
        self.set_checked_error: Optional[Exception] = None

        self.clicks: List[str] = []
        self.hovers: List[str] = []
        self.on_click: Optional[Callable[[], None]] = None

    @property
    def first(self) -> "FakeLocator":
        return self

    async def count(self) -> int:
        return self.page.count_for(self.selector)

    async def click(self, force: bool = False, timeout: Optional[int] = None) -> None:
        self.clicks.append("force" if force else "standard")
        if self.click_error is not None:
            raise self.click_error
        self.page.focused = self
        if self.on_click is not None:
            self.on_click()

    async def fill(self, text: str, timeout: Optional[int] = None) -> None:
        self.page.focused = self
        if not self.fill_ignored:
            self.value = text

    async def hover(self, force: bool = False, timeout: Optional[int] = None) -> None:
        self.hovers.append("force" if force else "standard")
        if self.hover_error is not None:
            raise self.hover_error

    async def select_option(
        self,
        label: Optional[str] = None,
        value: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> List[str]:
        for option in self.options:
            if (label is not None and option[1] == label) or (value is not None and option[0] == value):
                self.selected = [option]
                return [option[0]]
        raise Exception("Timeout exceeded: did not find some options")

    async def set_checked(self, checked: bool, timeout: Optional[int] = None) -> None:
        if self.set_checked_error is not None:
            raise self.set_checked_error
        self.checked = checked

    async def is_checked(self) -> bool:
        return self.checked

    async def evaluate(self, expression: str, arg: Any = None, timeout: Optional[int] = None) -> Any:
        if expression == READ_VALUE_SCRIPT:
            return self.value
        if expression == DOM_TYPE_SCRIPT:
            if self.dom_type_applied:
                self.value = arg
                return True
            return False
        if expression == DOM_CLICK_SCRIPT:
            self.clicks.append("dom")
            if self.dom_click_error is not None:
                raise self.dom_click_error
            if self.on_click is not None:
                self.on_click()
            return True
        if expression == DOM_HOVER_SCRIPT:
            self.hovers.append("dom")
            return True
        if expression == SELECTED_OPTION_SCRIPT:
            return [list(option) for option in self.selected]
        return None


class FakeKeyboard:
    """Types into the element that received the last click or fill."""

    def __init__(self, page: "FakePage"):
        self.page = page
        self.pressed: List[str] = []
        self.press_error: Optional[Exception] = None

    async def press(self, key: str) -> None:
        if self.press_error is not None:
            raise self.press_error
        self.pressed.append(key)
        focused = self.page.focused
        if key == "Backspace" and focused is not None:
            focused.value = ""

    async def type(self, text: str, delay: int = 0) -> None:
        focused = self.page.focused
        if focused is not None and not focused.keyboard_ignored:
            focused.value += text


class FakeMouse:
    def __init__(self):
        self.clicks: List[Tuple[float, float]] = []

    async def click(self, x: float, y: float, **kwargs: Any) -> None:
        self.clicks.append((x, y))


class FakeResponse:
    def __init__(self, url: str, status: int = 200):
        self.url = url
        self.status = status


class FakePage:
    """
    Stand-in for a Playwright page.

    Page state is plain data: ``metrics`` answers the stability measurement,
    ``elements`` answers the reference scan, ``html`` answers ``content()``.
    ``routes`` maps URLs to state applied on ``goto``/``reload``.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.metrics: Dict[str, Any] = {"title": "", "textLength": 0, "markupLength": 0, "interactiveCount": 0}
        self.elements: List[Dict[str, Any]] = []
        self.markers: Set[int] = set()
        self.html = "<html><head></head><body></body></html>"
        self.routes: Dict[str, Dict[str, Any]] = {}
        self.script_results: Dict[str, Any] = {}
        self.verify_button = False
        self.screenshot_bytes = PNG_BYTES
        self.viewport_size = {"width": 1280, "height": 720}

        self.goto_error: Optional[Exception] = None
        self.content_error: Optional[Exception] = None
        self.missing_selectors: Set[str] = set()
        self.history: List[str] = []

        self.goto_calls: List[str] = []
        self.reload_calls = 0
        self.screenshots: List[str] = []
        self.evaluations: List[Tuple[str, Any]] = []
        self.waited_selectors: List[str] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.focused: Optional[FakeLocator] = None
        self.keyboard = FakeKeyboard(self)
        self.mouse = FakeMouse()
        self._locators: Dict[str, FakeLocator] = {}
        self._closed = False

    # ---- state helpers ----

    def render(
        self,
        title: str = "",
        text_length: int = 0,
        markup_length: int = 0,
        interactive_count: int = 0,
        html: Optional[str] = None,
    ) -> "FakePage":
        self.metrics = {
            "title": title,
            "textLength": text_length,
            "markupLength": markup_length,
            "interactiveCount": interactive_count,
        }
        if html is not None:
            self.html = html
        return self

    def set_elements(self, *elements: Dict[str, Any]) -> None:
        self.elements = [dict(e, ref=i) for i, e in enumerate(elements, 1)]

    def rerender(self, *elements: Dict[str, Any]) -> None:
        """Replace the elements and drop every reference marker."""
        self.set_elements(*elements)
        self.markers = set()

    def _apply_route(self, url: str) -> None:
        route = self.routes.get(url)
        if route is None:
            return
        self.render(**route.get("render", {}))
        if "elements" in route:
            self.set_elements(*route["elements"])
            self.markers = set()

    def count_for(self, selector: str) -> int:
        match = _REF_SELECTOR.match(selector)
        if match:
            return 1 if int(match.group(1)) in self.markers else 0
        return 1 if self.locator(selector).exists else 0

    # ---- Playwright surface ----

    async def goto(self, url: str, **kwargs: Any) -> FakeResponse:
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        if self.url != "about:blank":
            self.history.append(self.url)
        self.url = url
        self._apply_route(url)
        return FakeResponse(url)

    async def reload(self, **kwargs: Any) -> FakeResponse:
        self.reload_calls += 1
        self._apply_route(self.url)
        return FakeResponse(self.url)

    async def go_back(self, **kwargs: Any) -> Optional[FakeResponse]:
        if not self.history:
            return None
        self.url = self.history.pop()
        self._apply_route(self.url)
        return FakeResponse(self.url)

    async def title(self) -> str:
        return self.metrics.get("title", "")

    async def content(self) -> str:
        if self.content_error is not None:
            raise self.content_error
        return self.html

    async def screenshot(self, path: Optional[str] = None, **kwargs: Any) -> bytes:
        if path is not None:
            Path(path).write_bytes(self.screenshot_bytes)
            self.screenshots.append(path)
        return self.screenshot_bytes

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluations.append((expression, arg))
        if expression == MEASURE_SCRIPT:
            return dict(self.metrics)
        if expression == SCAN_SCRIPT:
            self.markers = {e["ref"] for e in self.elements}
            return [dict(e) for e in self.elements]
        if expression == QUIESCENCE_SCRIPT:
            return {"quiet": True, "mutations": 0}
        if expression == ANIMATION_FRAME_SCRIPT:
            return True
        if expression == VERIFY_BUTTON_SCRIPT:
            return self.verify_button
        if expression in self.script_results:
            result = self.script_results[expression]
            if isinstance(result, Exception):
                raise result
            return result(arg) if callable(result) else result
        return None

    async def wait_for_load_state(self, state: str = "load", **kwargs: Any) -> None:
        return None

    async def wait_for_function(self, expression: str, **kwargs: Any) -> bool:
        return True

    async def wait_for_url(self, url: Any, **kwargs: Any) -> None:
        if callable(url) and url(self.url):
            return None
        raise Exception(f"Timeout {kwargs.get('timeout')}ms exceeded waiting for URL")

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> FakeLocator:
        self.waited_selectors.append(selector)
        if selector in self.missing_selectors:
            raise Exception(f"Timeout {kwargs.get('timeout')}ms exceeded waiting for {selector}")
        return self.locator(selector)

    async def wait_for_timeout(self, ms: int) -> None:
        return None

    def locator(self, selector: str) -> FakeLocator:
        if selector not in self._locators:
            self._locators[selector] = FakeLocator(self, selector)
        return self._locators[selector]

    def ref_locator(self, ref: int) -> FakeLocator:
        return self.locator(f'[data-steady-ref="{ref}"]')

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners.get(event, []).remove(handler)

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True


# ==================== Fake Browser Stack ====================

class FakeTracing:
    def __init__(self):
        self.started = False

    async def start(self, **kwargs: Any) -> None:
        self.started = True

    async def stop(self, path: Optional[str] = None) -> None:
        self.started = False
        if path:
            Path(path).write_bytes(b"PK")


class FakeContext:
    """Stand-in for a BrowserContext; hands out pre-seeded pages first."""

    def __init__(self, pages: Optional[List[FakePage]] = None, new_page_factory: Optional[Callable[[], FakePage]] = None):
        self.pages: List[FakePage] = list(pages or [])
        self.new_page_factory = new_page_factory or FakePage
        self.tracing = FakeTracing()
        self.init_scripts: List[str] = []
        self.routes: List[Tuple[str, Callable]] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = self.new_page_factory()
        self.pages.append(page)
        return page

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def route(self, pattern: str, handler: Callable) -> None:
        self.routes.append((pattern, handler))

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, context_factory: Optional[Callable[[], FakeContext]] = None):
        self.contexts: List[FakeContext] = []
        self.context_factory = context_factory or FakeContext
        self.closed = False

    async def new_context(self, **kwargs: Any) -> FakeContext:
        context = self.context_factory()
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    """
    Launch surface with queued failures.

    ``persistent_errors`` and ``launch_errors`` are consumed one per call;
    an empty queue means the call succeeds.
    """

    def __init__(self, page: Optional[FakePage] = None):
        self.page = page
        self.persistent_errors: List[Exception] = []
        self.launch_errors: List[Exception] = []
        self.cdp_error: Optional[Exception] = None
        self.ephemeral_page_factory: Callable[[], FakePage] = FakePage
        self.persistent_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.launch_calls: List[Dict[str, Any]] = []
        self.cdp_calls: List[str] = []
        self.remote_browser = FakeBrowser()

    def _main_context(self) -> FakeContext:
        return FakeContext(pages=[self.page] if self.page is not None else [])

    async def launch_persistent_context(self, user_data_dir: str, **options: Any) -> FakeContext:
        self.persistent_calls.append((user_data_dir, options))
        if self.persistent_errors:
            raise self.persistent_errors.pop(0)
        return self._main_context()

    async def launch(self, **options: Any) -> FakeBrowser:
        self.launch_calls.append(options)
        if self.launch_errors:
            raise self.launch_errors.pop(0)
        return FakeBrowser(lambda: FakeContext(new_page_factory=self.ephemeral_page_factory))

    async def connect_over_cdp(self, endpoint: str, **kwargs: Any) -> FakeBrowser:
        self.cdp_calls.append(endpoint)
        if self.cdp_error is not None:
            raise self.cdp_error
        return self.remote_browser


class FakePlaywright:
    def __init__(self, page: Optional[FakePage] = None):
        self.chromium = FakeChromium(page)
        self.stopped = 0

    async def stop(self) -> None:
        self.stopped += 1


class FakePlaywrightFactory:
    """Replaces ``async_playwright``: ``factory().start()`` returns the fake."""

    def __init__(self, playwright: FakePlaywright):
        self.playwright = playwright
        self.starts = 0

    def __call__(self) -> "FakePlaywrightFactory":
        return self

    async def start(self) -> FakePlaywright:
        self.starts += 1
        return self.playwright


# ==================== Fixtures ====================

@pytest.fixture
def fake_page() -> FakePage:
    """A page that has rendered a small but real document."""
    page = FakePage()
    page.render(title="Example Domain", text_length=400, markup_length=5000, interactive_count=4)
    page.html = "<html><head><title>Example Domain</title></head><body><h1>Example</h1></body></html>"
    return page


@pytest.fixture
def fake_playwright(fake_page) -> FakePlaywright:
    return FakePlaywright(fake_page)


@pytest.fixture
def playwright_factory(fake_playwright) -> FakePlaywrightFactory:
    return FakePlaywrightFactory(fake_playwright)


@pytest.fixture
def fast_timing() -> TimingConfig:
    """Timing with every wait collapsed so tests never sleep on budgets."""
    return TimingConfig(
        stable_budget_ms=0,
        network_idle_cap_ms=0,
        content_poll_interval_ms=50,
        content_poll_cap_ms=0,
        mutation_debounce_ms=50,
        mutation_ceiling_ms=0,
        hydration_extension_ms=0,
        settle_budget_ms=0,
        screenshot_paint_ms=0,
        standard_action_timeout_ms=100,
        force_action_timeout_ms=100,
        wait_selector_timeout_ms=0,
        retry_base_delay_ms=100,
        retry_max_delay_ms=100,
        lock_cleanup_delay_ms=0,
        crash_cleanup_delay_ms=0,
    )


@pytest.fixture
def engine_config(tmp_path, fast_timing) -> EngineConfig:
    """Engine configuration rooted in a temporary directory."""
    config = EngineConfig(
        data_dir=str(tmp_path / "data"),
        timing=fast_timing,
        thresholds=ThresholdConfig(),
    )
    config.search.providers = []
    return config


# ==================== Markers ====================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_browser: marks tests that need a real browser"
    )
