# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Session lifecycle for SteadyBrowser.

:class:`SessionManager` owns the Playwright connection, the active browser
context and the single active page. Launching is an escalation ladder run
by :func:`~steadybrowser.core.strategies.run_strategies`:

1. ``persistent``: persistent profile with the full hardening flags
2. ``persistent-after-cleanup``: same, after stale locks are removed
3. ``fresh-profile``: the profile directory is moved aside and recreated
4. ``non-persistent``: plain headless browser and context, no profile

Every failed rung is classified before the next one runs (display,
profile lock or crash). When all four fail, :class:`LaunchFailure` carries
the whole chain of errors.
"""

from __future__ import annotations

import asyncio
import os
import sys
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from steadybrowser.core.artifacts import timestamp_slug
from steadybrowser.core.config import EngineConfig
from steadybrowser.core.interception import ResourceBlocker
from steadybrowser.core.process_guard import LaunchErrorKind, ProcessGuard, classify_launch_error
from steadybrowser.core.strategies import Strategy, run_strategies
from steadybrowser.core.tuner import NullTuner, RuntimeTuner
from steadybrowser.exceptions import LaunchFailure, SessionError
from steadybrowser.utils.logger import get_logger

logger = get_logger("session")


class SessionState(str, Enum):
    """Lifecycle states of a session."""

    UNLAUNCHED = "unlaunched"
    LAUNCHING = "launching"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


class DegradedReason(str, Enum):
    """Why a running session is not the one that was asked for."""

    HEADLESS_FORCED = "headless_forced"    # Headful requested, no display
    CRASH_RECOVERED = "crash_recovered"    # Came up on a fallback rung


HARDENING_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-gpu-sandbox",
    "--disable-software-rasterizer",
    "--disable-gpu-compositing",
    "--in-process-gpu",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-namespace-sandbox",
    "--disable-extensions",
    "--disable-component-update",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-breakpad",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    "--disable-client-side-phishing-detection",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-sync",
    "--disable-features=TranslateUI,IsolateOrigins,site-per-process,PaintHolding,HttpsUpgrades",
    "--disable-site-isolation-trials",
    "--js-flags=--max-old-space-size=512",
    "--ignore-certificate-errors",
    "--force-color-profile=srgb",
    "--metrics-recording-only",
    "--no-first-run",
    "--password-store=basic",
    "--use-mock-keychain",
]

HEADLESS_ARGS = ["--hide-scrollbars", "--mute-audio"]

# Sites known to block headless browsers aggressively
HEADFUL_DOMAINS = (
    "youtube.com",
    "google.com/search",
    "instagram.com",
    "facebook.com",
    "twitter.com",
    "x.com",
    "tiktok.com",
    "amazon.com",
    "netflix.com",
    "y2mate",
    "savefrom.net",
    "ssyoutube",
    "ytmp3",
    "yt1s",
    "snaptik",
    "ssstik",
    "turboscribe",
)

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
if (!window.chrome) {
    window.chrome = { runtime: {} };
} else if (!window.chrome.runtime) {
    window.chrome.runtime = {};
}
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

PlaywrightFactory = Callable[[], Any]


def matches_headful_domain(url: str, domains: tuple = HEADFUL_DOMAINS) -> bool:
    """True when ``url`` matches an entry of ``domains`` (``host`` or ``host/path`` form)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    hostname = (parsed.hostname or "").lower()
    pathname = (parsed.path or "").lower()
    if not hostname:
        return False
    for entry in domains:
        if "/" in entry:
            domain_part, path_part = entry.split("/", 1)
            if domain_part in hostname and f"/{path_part}" in pathname:
                return True
        elif entry in hostname:
            return True
    return False


class SessionManager:
    """
    Owns the rendering-engine connection and the single active page.

    Args:
        config: Engine configuration
        tuner: Runtime tuner consulted for headful domains
        guard: Process guard used to clean the profile between launch rungs
        playwright_factory: Returns an object with an async ``start()``
            (``async_playwright`` by default)

    Example:
        >>> session = SessionManager(EngineConfig())
        >>> page = await session.ensure_session()
        >>> session.state
        <SessionState.READY: 'ready'>
        >>> await session.close()
    """

    def __init__(
        self,
        config: EngineConfig,
        tuner: Optional[RuntimeTuner] = None,
        guard: Optional[ProcessGuard] = None,
        playwright_factory: PlaywrightFactory = async_playwright,
    ) -> None:
        self.config = config
        self.tuner = tuner or NullTuner()
        self.guard = guard or ProcessGuard()
        self.playwright_factory = playwright_factory
        self.blocker = ResourceBlocker(
            block_trackers=config.launch.block_trackers,
            block_media=config.launch.block_media,
        )

        self.state = SessionState.UNLAUNCHED
        self.degraded_reason: Optional[DegradedReason] = None
        self.headless = config.launch.headless
        self.launch_rung: Optional[str] = None
        self.trace_path: Optional[Path] = None

        self._display_broken = False
        self._requested_headful = False
        self._headful_denied = False
        self._playwright: Any = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._trace_active = False
        self._launch_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def page(self) -> Optional[Page]:
        return self._page

    @property
    def context(self) -> Optional[BrowserContext]:
        return self._context

    @property
    def is_live(self) -> bool:
        return self.state in (SessionState.READY, SessionState.DEGRADED) and self._context is not None

    @property
    def profile_dir(self) -> Path:
        return self.config.profile_dir

    @property
    def tracing(self) -> bool:
        return self._trace_active

    def describe(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "degraded_reason": self.degraded_reason.value if self.degraded_reason else None,
            "headless": self.headless,
            "launch_rung": self.launch_rung,
            "profile": self.config.profile_name,
            "display_broken": self._display_broken,
            "tracing": self._trace_active,
        }

    # ------------------------------------------------------------------
    # Mode decisions
    # ------------------------------------------------------------------

    def is_headless_environment(self) -> bool:
        """True on a server without X11/Wayland, or after any display launch failure."""
        if sys.platform.startswith("win") or sys.platform == "darwin":
            return False
        if self._display_broken:
            return True
        return not os.environ.get("DISPLAY") and not os.environ.get("WAYLAND_DISPLAY")

    def should_use_headful(self, url: str) -> bool:
        """Sites that block headless browsers get headful mode when a display exists."""
        if self.is_headless_environment():
            return False
        try:
            if self.tuner.should_force_headful(url):
                logger.debug(f"Tuner says {url} requires headful mode")
                return True
        except Exception as e:
            logger.warning(f"Tuner headful lookup failed for {url}: {e}")
        return matches_headful_domain(url)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_session(self, headless_override: Optional[bool] = None) -> Page:
        """
        Return a live page, launching or relaunching as needed.

        Args:
            headless_override: Requested mode; a change closes the current
                session and launches a new one in that mode

        Raises:
            LaunchFailure: Every launch rung failed
        """
        async with self._launch_lock:
            if headless_override is not None and headless_override != self.headless:
                if not headless_override and self.is_headless_environment():
                    logger.warning("Headful mode requested but no display is available, staying headless")
                    self._headful_denied = True
                    if self.is_live:
                        self.state = SessionState.DEGRADED
                        self.degraded_reason = DegradedReason.HEADLESS_FORCED
                else:
                    logger.info(f"Switching session to {'headless' if headless_override else 'headful'} mode")
                    self.headless = headless_override
                    await self.close()

            if self._page is not None and not await self._page_alive(self._page):
                logger.warning("Active page is closed or unresponsive, relaunching session")
                await self.close()

            if self._context is None:
                await self._launch()

            if self._page is None or self._page.is_closed():
                self._page = await self._open_page()
            return self._page

    async def _page_alive(self, page: Page) -> bool:
        if page.is_closed():
            return False
        try:
            await asyncio.wait_for(page.evaluate("() => document.readyState"), timeout=5.0)
            return True
        except Exception as e:
            logger.debug(f"Page liveness probe failed: {e}")
            return False

    async def _open_page(self) -> Page:
        assert self._context is not None
        pages = [p for p in self._context.pages if not p.is_closed()]
        return pages[0] if pages else await self._context.new_page()

    async def _start_playwright(self) -> None:
        if self._playwright is None:
            self._playwright = await self.playwright_factory().start()

    def _launch_args(self, headless: bool) -> List[str]:
        args = list(HARDENING_ARGS)
        launch = self.config.launch
        if launch.no_sandbox:
            args.append("--no-sandbox")
        if launch.disable_gpu:
            args.append("--disable-gpu")
        if headless:
            args.append(f"--window-size={launch.viewport_width},{launch.viewport_height}")
            args.extend(HEADLESS_ARGS)
        args.extend(launch.extra_args)
        return args

    def _context_options(self) -> Dict[str, Any]:
        launch = self.config.launch
        return {
            "viewport": {"width": launch.viewport_width, "height": launch.viewport_height},
            "user_agent": launch.user_agent,
            "device_scale_factor": 1,
        }

    async def _launch_persistent(self, user_data_dir: Path) -> BrowserContext:
        user_data_dir.mkdir(parents=True, exist_ok=True)
        options: Dict[str, Any] = dict(self._context_options())
        options.update(
            headless=self.headless,
            args=self._launch_args(self.headless),
            timeout=self.config.launch.launch_timeout_ms,
            ignore_default_args=["--enable-automation"],
        )
        if self.config.launch.channel:
            options["channel"] = self.config.launch.channel
        return await self._playwright.chromium.launch_persistent_context(str(user_data_dir), **options)

    async def _launch_after_cleanup(self) -> BrowserContext:
        self.guard.clean_stale_locks(self.profile_dir)
        self.guard.purge_crash_artifacts(self.profile_dir)
        return await self._launch_persistent(self.profile_dir)

    async def _launch_fresh_profile(self) -> BrowserContext:
        fresh = self.guard.reset_profile(self.profile_dir)
        await asyncio.sleep(self.config.timing.crash_cleanup_delay_ms / 1000)
        return await self._launch_persistent(fresh)

    async def _launch_non_persistent(self) -> BrowserContext:
        browser = await self._playwright.chromium.launch(
            headless=True,
            args=self._launch_args(True),
            timeout=self.config.launch.launch_timeout_ms,
            ignore_default_args=["--enable-automation"],
        )
        try:
            context = await browser.new_context(**self._context_options())
        except Exception:
            await browser.close()
            raise
        self._browser = browser
        return context

    async def _attach_remote(self, endpoint: str) -> Optional[BrowserContext]:
        """Attach to a remote engine; None when the endpoint is unreachable."""
        try:
            browser = await self._playwright.chromium.connect_over_cdp(
                endpoint, timeout=self.config.launch.launch_timeout_ms
            )
        except Exception as e:
            logger.warning(f"Remote engine at {endpoint} unreachable, falling back to local launch: {e}")
            return None
        self._browser = browser
        if browser.contexts:
            return browser.contexts[0]
        return await browser.new_context(**self._context_options())

    async def _on_launch_failure(self, strategy: Strategy, error: BaseException) -> None:
        message = str(error)
        kind = classify_launch_error(message)
        logger.warning(f"Launch rung '{strategy.name}' failed ({kind.value}): {message[:200]}")

        if kind == LaunchErrorKind.DISPLAY:
            if not self.headless:
                logger.warning("Display unavailable, falling back to headless permanently")
            self._display_broken = True
            self.headless = True
        elif kind == LaunchErrorKind.LOCK:
            self.guard.clean_stale_locks(self.profile_dir)
            await asyncio.sleep(self.config.timing.lock_cleanup_delay_ms / 1000)
        elif kind == LaunchErrorKind.CRASH:
            self.guard.purge_crash_artifacts(self.profile_dir)
            await asyncio.sleep(self.config.timing.crash_cleanup_delay_ms / 1000)

    async def _launch(self) -> None:
        self.state = SessionState.LAUNCHING
        self.degraded_reason = None
        self._requested_headful = not self.headless or self._headful_denied
        self._headful_denied = False
        await self._start_playwright()

        context: Optional[BrowserContext] = None
        if self.config.launch.cdp_url:
            context = await self._attach_remote(self.config.launch.cdp_url)
            if context is not None:
                self.launch_rung = "remote"

        if context is None:
            self.guard.prepare_profile(self.profile_dir)
            outcome = await run_strategies(
                [
                    Strategy("persistent", lambda: self._launch_persistent(self.profile_dir)),
                    Strategy("persistent-after-cleanup", self._launch_after_cleanup),
                    Strategy("fresh-profile", self._launch_fresh_profile),
                    Strategy("non-persistent", self._launch_non_persistent),
                ],
                on_failure=self._on_launch_failure,
            )
            if not outcome.success:
                self.state = SessionState.CLOSED
                await self._stop_playwright()
                logger.error(f"All launch attempts failed; last error: {outcome.last_error}")
                raise LaunchFailure(outcome.error_chain())
            context = outcome.value
            self.launch_rung = outcome.strategy_name

        self._context = context
        await self._prepare_context(context)
        self._page = await self._open_page()

        if self._requested_headful and self.headless:
            self.state = SessionState.DEGRADED
            self.degraded_reason = DegradedReason.HEADLESS_FORCED
        elif self.launch_rung not in ("persistent", "remote"):
            self.state = SessionState.DEGRADED
            self.degraded_reason = DegradedReason.CRASH_RECOVERED
        else:
            self.state = SessionState.READY
        logger.info(
            f"Browser session {self.state.value} via '{self.launch_rung}' "
            f"(headless={self.headless}, profile={self.config.profile_name})"
        )

    async def _prepare_context(self, context: BrowserContext) -> None:
        await context.add_init_script(STEALTH_SCRIPT)
        await self.blocker.install(context)

    async def close(self) -> None:
        """Tear down page, context, browser and Playwright. Safe to call repeatedly."""
        if self._trace_active:
            await self.stop_trace()
        for name, resource in (("context", self._context), ("browser", self._browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.debug(f"Closing {name} failed: {e}")
        self._page = None
        self._context = None
        self._browser = None
        await self._stop_playwright()
        if self.state != SessionState.UNLAUNCHED:
            self.state = SessionState.CLOSED
            logger.info("Browser session closed")

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        except Exception as e:
            logger.debug(f"Stopping Playwright failed: {e}")
        self._playwright = None

    async def switch_profile(self, name: str) -> Path:
        """Close the session and point the next launch at another profile."""
        name = name.strip()
        if not name or os.sep in name or name in (".", ".."):
            raise SessionError(f"Invalid profile name: {name!r}")
        await self.close()
        self.config.profile_name = name
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Switched browser profile to {name}")
        return self.profile_dir

    # ------------------------------------------------------------------
    # Isolated pages
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def ephemeral_page(self) -> AsyncIterator[Page]:
        """
        A separate page in the current context, always closed afterwards.

        Used by search so the active page and its element references are
        never touched.
        """
        if self._context is None:
            await self.ensure_session()
        assert self._context is not None
        page = await self._context.new_page()
        try:
            yield page
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Closing ephemeral page failed: {e}")

    @asynccontextmanager
    async def ephemeral_context(self) -> AsyncIterator[Page]:
        """
        A page in a throwaway, non-persistent headless browser.

        Carries no cookies or storage from the profile; used for the
        one-time retry of a navigation that came back blank.
        """
        await self._start_playwright()
        browser = await self._playwright.chromium.launch(
            headless=True,
            args=self._launch_args(True),
            timeout=self.config.launch.launch_timeout_ms,
            ignore_default_args=["--enable-automation"],
        )
        try:
            context = await browser.new_context(**self._context_options())
            await context.add_init_script(STEALTH_SCRIPT)
            yield await context.new_page()
        finally:
            try:
                await browser.close()
            except Exception as e:
                logger.debug(f"Closing ephemeral browser failed: {e}")

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    async def start_trace(self) -> Optional[Path]:
        """Start a structured trace; returns the output path, or None when it could not start."""
        if self._trace_active:
            return None
        await self.ensure_session()
        assert self._context is not None
        traces_dir = self.config.traces_dir
        try:
            traces_dir.mkdir(parents=True, exist_ok=True)
            path = traces_dir / f"trace-{timestamp_slug()}.zip"
            await self._context.tracing.start(screenshots=True, snapshots=True, sources=False)
        except Exception as e:
            logger.warning(f"Trace start failed: {e}")
            return None
        self.trace_path = path
        self._trace_active = True
        logger.info(f"Trace started ({path})")
        return path

    async def stop_trace(self) -> Optional[Path]:
        """Stop the active trace and write it to disk."""
        if not self._trace_active or self._context is None:
            self._trace_active = False
            return None
        path = self.trace_path
        try:
            await self._context.tracing.stop(path=str(path) if path else None)
            logger.info(f"Trace saved ({path})")
        except Exception as e:
            logger.warning(f"Trace stop failed: {e}")
            path = None
        finally:
            self._trace_active = False
        return path
