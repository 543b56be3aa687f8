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
SteadyBrowser engine.

:class:`BrowserEngine` is the public operation surface consumed by an agent
layer. It owns one session and every reliability component around it:

- :class:`~steadybrowser.core.session.SessionManager` for launch, crash
  recovery and the single active page
- :class:`~steadybrowser.core.interaction_state.InteractionState` for loop
  detection, circuit breakers and blank-domain counters
- :class:`~steadybrowser.core.stability.StabilityDetector` for render
  stability and blank-page classification
- :class:`~steadybrowser.core.selector_resolver.SelectorResolver` and
  :class:`~steadybrowser.core.interaction.InteractionExecutor` for element
  actions
- :class:`~steadybrowser.core.vision.VisionLocator` for screenshot based
  element location

Every operation returns an :class:`OperationResult`; ``str(result)`` is the
human-readable report with suggestions on failure. Gates (loop and circuit
checks, blank-domain refusal) run before any rendering-engine call.
Operations on one engine are serialised; search is the exception since it
runs on its own ephemeral pages.

Example:
    >>> async with BrowserEngine() as engine:
    ...     print(await engine.navigate("https://example.com"))
    ...     print(await engine.snapshot())
    ...     print(await engine.click(1))
"""

from __future__ import annotations

import asyncio
import functools
import json
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from playwright.async_api import Page, async_playwright

from steadybrowser.core.artifacts import ProfileHistory, save_debug_artifacts
from steadybrowser.core.captcha import CaptchaDetector, DetectedCaptcha
from steadybrowser.core.config import EngineConfig
from steadybrowser.core.content import extract_content, extract_data, format_extracted_items, scroll
from steadybrowser.core.forms import FormField, FormFiller
from steadybrowser.core.interaction import ActionOutcome, InteractionExecutor
from steadybrowser.core.interaction_state import InteractionState
from steadybrowser.core.interception import ApiInterceptor
from steadybrowser.core.locators import LocatorPolicy, StructuralLocator, VisionElementLocator
from steadybrowser.core.navigation import NAVIGATION_SUGGESTIONS, classify_navigation_error, late_render_selectors
from steadybrowser.core.results import ErrorKind, OperationResult
from steadybrowser.core.selector_resolver import ResolvedTarget, SelectorResolver
from steadybrowser.core.session import PlaywrightFactory, SessionManager
from steadybrowser.core.stability import PageMetrics, StabilityDetector
from steadybrowser.core.tuner import DomainSettings, NullTuner, RuntimeTuner
from steadybrowser.core.vision import VisionAnalyzer, VisionLocator
from steadybrowser.exceptions import (
    InteractionErrorKind,
    NavigationErrorKind,
    SearchProviderError,
    SessionError,
    StaleReferenceError,
    SteadyBrowserError,
)
from steadybrowser.search import SearchCoordinator
from steadybrowser.utils.action_logger import BrowserActionLogger
from steadybrowser.utils.logger import get_logger
from steadybrowser.utils.urls import domain_of, normalize_url

logger = get_logger("engine")

F = TypeVar("F", bound=Callable[..., Awaitable[OperationResult]])

_NAVIGATION_KINDS: Dict[NavigationErrorKind, ErrorKind] = {
    NavigationErrorKind.DNS_UNRESOLVED: ErrorKind.DNS_UNRESOLVED,
    NavigationErrorKind.CONNECTION_TIMEOUT: ErrorKind.CONNECTION_TIMEOUT,
    NavigationErrorKind.CONNECTION_REFUSED: ErrorKind.CONNECTION_REFUSED,
    NavigationErrorKind.CERTIFICATE_ERROR: ErrorKind.CERTIFICATE_ERROR,
    NavigationErrorKind.MISSING_SYSTEM_DEPENDENCY: ErrorKind.MISSING_SYSTEM_DEPENDENCY,
    NavigationErrorKind.UNCLASSIFIED: ErrorKind.NAVIGATION_UNCLASSIFIED,
}

_INTERACTION_KINDS: Dict[InteractionErrorKind, ErrorKind] = {
    InteractionErrorKind.ELEMENT_STALE: ErrorKind.ELEMENT_STALE,
    InteractionErrorKind.ELEMENT_NOT_INTERACTABLE: ErrorKind.ELEMENT_NOT_INTERACTABLE,
    InteractionErrorKind.ACTION_TIMEOUT: ErrorKind.ACTION_TIMEOUT,
}

BLANK_PAGE_WARNING = (
    "Page appears blank or nearly empty. The site may require JavaScript that cannot render. "
    "Consider searching or extracting the information elsewhere. Do NOT keep navigating to this site."
)

STALE_SUGGESTION = "Take a fresh snapshot to get current element references, then retry with the new ref."

THIN_SNAPSHOT_PROMPT_ELEMENTS = 5


def serialized(method: F) -> F:
    """Run the decorated engine operation under the engine lock."""

    @functools.wraps(method)
    async def wrapper(self: "BrowserEngine", *args: Any, **kwargs: Any) -> OperationResult:
        async with self._lock:
            return await method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class BrowserEngine:
    """
    Reliable browser automation for an autonomous agent.

    Args:
        config: Engine configuration (environment-derived by default)
        tuner: Runtime tuner for per-domain overrides and headful domains
        vision_analyzer: Coroutine ``(screenshot_path, prompt) -> str``;
            vision operations are unavailable without it
        playwright_factory: Playwright entry point, replaceable in tests
        clock: Time source for loop and circuit bookkeeping

    Example:
        >>> engine = BrowserEngine(EngineConfig(data_dir="/tmp/steady"))
        >>> result = await engine.navigate("example.com")
        >>> result.success, result.data["title"]
        (True, 'Example Domain')
        >>> await engine.close()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tuner: Optional[RuntimeTuner] = None,
        vision_analyzer: Optional[VisionAnalyzer] = None,
        playwright_factory: PlaywrightFactory = async_playwright,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.tuner = tuner or NullTuner()
        self.action_logger = BrowserActionLogger()

        self.session = SessionManager(self.config, tuner=self.tuner, playwright_factory=playwright_factory)
        self.state = InteractionState(self.config.thresholds, clock=clock)
        self.stability = StabilityDetector(self.config.timing, self.config.thresholds)
        self.resolver = SelectorResolver(self.config.ref_attribute)
        self.executor = InteractionExecutor(self.config.timing, self.stability, self.action_logger)
        self.forms = FormFiller(self.executor, self.resolver, debug_dir=self.config.debug_dir)

        self.vision = VisionLocator(vision_analyzer, Path(self.config.data_dir))
        self.vision_policy = LocatorPolicy([VisionElementLocator(self.vision)])
        self.locator_policy = LocatorPolicy([StructuralLocator(self.resolver), VisionElementLocator(self.vision)])

        self.captcha = CaptchaDetector()
        self.interceptor = ApiInterceptor(self.config.thresholds.intercepted_api_cap)
        self.search_coordinator = SearchCoordinator.from_config(self.config.search, self.session.ephemeral_page)

        self.last_url: Optional[str] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "BrowserEngine":
        """Async context manager entry. The browser launches on first use."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def history(self) -> ProfileHistory:
        return ProfileHistory(
            self.config.profile_dir / "history.json",
            cap=self.config.thresholds.profile_history_cap,
        )

    def _current_url(self) -> str:
        return self.last_url or "unknown"

    def _settings_for(self, url: Optional[str]) -> DomainSettings:
        if not url:
            return DomainSettings()
        try:
            return self.tuner.get_browser_settings_for_domain(url)
        except Exception as e:
            logger.warning(f"Tuner settings lookup failed for {url}: {e}")
            return DomainSettings()

    def _tune(self, settings: Dict[str, Any], reason: str) -> None:
        domain = domain_of(self.last_url or "")
        if not domain:
            return
        try:
            self.tuner.tune_browser_for_domain(domain, settings, reason)
            logger.info(f"Auto-tuned {domain}: {settings} ({reason})")
        except Exception as e:
            logger.warning(f"Tuner write-back for {domain} failed: {e}")

    async def _detect_captcha(self, page: Page) -> Optional[DetectedCaptcha]:
        try:
            return await self.captcha.detect(page)
        except Exception as e:
            logger.debug(f"CAPTCHA check failed: {e}")
            return None

    async def _wait_for_selectors(self, page: Page, selectors: Sequence[str]) -> List[str]:
        """Wait for each selector; returns the ones that never appeared."""
        missing = []
        for selector in selectors:
            try:
                await page.wait_for_selector(selector, timeout=self.config.timing.wait_selector_timeout_ms)
            except Exception as e:
                logger.debug(f"Wait for selector {selector!r} ended: {e}")
                missing.append(selector)
        return missing

    async def _title(self, page: Page) -> str:
        try:
            return await page.title()
        except Exception as e:
            logger.debug(f"Reading page title failed: {e}")
            return ""

    async def _save_artifacts(self, page: Page, tag: str) -> None:
        artifacts = await save_debug_artifacts(page, self.config.debug_dir, tag)
        if artifacts is not None:
            logger.warning(f"Diagnostics saved for {tag} ({artifacts.describe()})")

    def _action_gate(self, action: str, selector: Optional[str]) -> Optional[OperationResult]:
        """Loop and circuit checks for an interaction. Makes no engine call."""
        url = self._current_url()
        if self.state.detect_action_loop(action, selector):
            message = f"Action loop detected: {action} on {selector or 'the page'} repeated too often."
            self.state.record_action(action, url, selector, False, message)
            return OperationResult.refused(
                ErrorKind.LOOP_DETECTED,
                message,
                suggestion="The element may already be in the wanted state. Take a snapshot and verify, "
                "or try a different element.",
            )
        if self.state.is_circuit_open(action, url, selector):
            message = f"Circuit breaker open for {action} on {selector or 'the page'} (too many recent failures)."
            self.state.record_action(action, url, selector, False, message)
            return OperationResult.refused(
                ErrorKind.CIRCUIT_OPEN,
                message,
                suggestion="Wait a moment or try a different element.",
            )
        return None

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @serialized
    async def navigate(self, url: str, wait_selectors: Optional[Sequence[str]] = None) -> OperationResult:
        """
        Load ``url`` in the active page and wait for it to render.

        The URL gets an ``https://`` scheme when it has none. The call is
        refused without touching the browser when the URL is looping, its
        circuit is open, or its domain returned blank pages too often.

        Args:
            url: Target URL
            wait_selectors: Selectors to wait for after the load

        Returns:
            OperationResult; a blank page is reported as success with a
            ``BLANK_PAGE_SUSPECTED`` warning

        Raises:
            LaunchFailure: The browser could not be started at all
        """
        return await self._navigate(url, list(wait_selectors or []), allow_headful_retry=True)

    async def _navigate(self, url: str, wait_selectors: List[str], allow_headful_retry: bool) -> OperationResult:
        started = time.monotonic()
        target_url = normalize_url(url)
        domain = domain_of(target_url)

        if self.state.detect_navigation_loop(target_url):
            message = f"Navigation loop detected for {target_url}. Aborting to prevent infinite loop."
            self.state.record_navigation(target_url, "navigate", False, message)
            return OperationResult.refused(
                ErrorKind.LOOP_DETECTED, message, suggestion="Try a different URL or strategy.", url=target_url
            )
        if self.state.is_circuit_open("navigate", target_url):
            message = f"Circuit breaker open for {target_url} (too many recent failures)."
            self.state.record_navigation(target_url, "navigate", False, message)
            return OperationResult.refused(
                ErrorKind.CIRCUIT_OPEN,
                message,
                suggestion="Wait a moment or try a different approach.",
                url=target_url,
            )
        if domain and self.state.is_blank_blocked(domain):
            count = self.state.blank_count(domain)
            message = (
                f"This site ({domain}) has returned blank/empty pages {count} time(s). It likely requires "
                "JavaScript rendering that is unavailable in this browser mode."
            )
            logger.warning(f"Blocking navigation to {domain}: {count} prior blank pages")
            self.state.record_navigation(target_url, "navigate", False, message)
            return OperationResult.refused(
                ErrorKind.BLANK_DOMAIN_BLOCKED,
                message,
                suggestion="Stop browsing this site. Search for the information instead, or reset the "
                "blank-page history for this domain and use vision-based interaction.",
                url=target_url,
                domain=domain,
            )

        needs_headful = self.session.should_use_headful(target_url)
        page = await self.session.ensure_session(False if needs_headful else None)
        if self.interceptor.enabled and not self.interceptor.is_attached(page):
            self.interceptor.enable(page)

        settings = self._settings_for(target_url)
        self.session.blocker.set_current_url(target_url)
        self.action_logger.start_action("NAVIGATE", target_url)
        logger.info(f"Navigating to {target_url} (headless={self.session.headless})")
        try:
            await page.goto(
                target_url,
                wait_until="domcontentloaded",
                timeout=settings.navigation_timeout or self.config.timing.navigation_timeout_ms,
            )
        except Exception as e:
            failure = classify_navigation_error(e)
            logger.error(f"Navigation to {target_url} failed: {failure.raw}")
            self.action_logger.end_action(False, failure.kind.value)
            self.state.record_navigation(target_url, "navigate", False, failure.message)
            return OperationResult.error(
                _NAVIGATION_KINDS[failure.kind],
                failure.message,
                suggestion=NAVIGATION_SUGGESTIONS[failure.kind],
                url=target_url,
            )

        self.resolver.invalidate()
        self.last_url = target_url
        report = await self.stability.await_stable(page)
        await self._wait_for_selectors(page, wait_selectors + late_render_selectors(target_url))

        metrics = await self.stability.measure(page)
        blank = self.stability.is_blank(metrics)
        captcha = await self._detect_captcha(page)
        if self.config.debug_always_save_artifacts:
            await self._save_artifacts(page, "navigate")

        if blank:
            retried = await self._retry_blank(url, target_url, wait_selectors, allow_headful_retry)
            if retried is not None:
                self.action_logger.end_action(retried.success, "blank retry")
                return retried

        title = metrics.title or await self._title(page)
        self.history.record(target_url, title)
        self.state.record_navigation(target_url, "navigate", True)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        result = OperationResult.ok(
            f"Page Loaded: {title}\nURL: {target_url}",
            url=target_url,
            title=title,
            text_length=metrics.text_length,
            markup_length=metrics.markup_length,
            blank=blank,
            hydration_extended=report.extended,
            elapsed_ms=elapsed_ms,
        )
        if captcha is not None:
            result.data["captcha"] = captcha.kind.value
            result.warn(ErrorKind.CAPTCHA_DETECTED, captcha.warning())

        if blank and domain:
            count = self.state.record_blank(domain)
            if count >= self.config.thresholds.blank_domain_threshold and self.session.blocker.media_blocked_for(domain):
                self.session.blocker.allow_media(domain)
            await self._save_artifacts(page, "blank-navigate")
            result.warn(ErrorKind.BLANK_PAGE_SUSPECTED, BLANK_PAGE_WARNING)
        elif blank:
            result.warn(ErrorKind.BLANK_PAGE_SUSPECTED, BLANK_PAGE_WARNING)
        elif domain:
            self.state.clear_blank(domain)

        logger.info(
            f"Loaded {target_url} in {elapsed_ms}ms (title={title!r}, text={metrics.text_length}, blank={blank})"
        )
        self.action_logger.end_action(True, title or target_url)
        return result

    async def _retry_blank(
        self,
        url: str,
        target_url: str,
        wait_selectors: List[str],
        allow_headful_retry: bool,
    ) -> Optional[OperationResult]:
        """
        One recovery attempt for a blank load: headful when a display is
        available and this was a headless attempt, otherwise a stateless
        context. Returns None when the page stays blank.
        """
        if allow_headful_retry and self.session.headless and not self.session.is_headless_environment():
            domain = domain_of(target_url)
            logger.warning(f"{target_url} looks blank in headless mode, retrying headful")
            if domain:
                try:
                    self.tuner.mark_domain_as_headful(domain, "Auto-learned: headless returned blank page")
                except Exception as e:
                    logger.warning(f"Tuner headful write-back for {domain} failed: {e}")
            await self.session.ensure_session(headless_override=False)
            return await self._navigate(url, wait_selectors, allow_headful_retry=False)

        logger.warning(f"{target_url} looks blank, retrying in a stateless context")
        metrics = await self._navigate_ephemeral(target_url, wait_selectors)
        if metrics is None:
            return None
        self.history.record(target_url, metrics.title)
        self.state.record_navigation(target_url, "navigate", True)
        self.state.clear_blank(domain_of(target_url))
        return OperationResult.ok(
            f"Page Loaded: {metrics.title}\nURL: {target_url}\n[NOTE: Loaded via stateless context]",
            url=target_url,
            title=metrics.title,
            text_length=metrics.text_length,
            markup_length=metrics.markup_length,
            blank=False,
            stateless=True,
        )

    async def _navigate_ephemeral(self, target_url: str, wait_selectors: List[str]) -> Optional[PageMetrics]:
        try:
            async with self.session.ephemeral_context() as page:
                await page.goto(
                    target_url,
                    wait_until="domcontentloaded",
                    timeout=self.config.timing.navigation_timeout_ms,
                )
                try:
                    await page.wait_for_load_state("networkidle", timeout=self.config.timing.network_idle_cap_ms)
                except Exception as e:
                    logger.debug(f"Stateless network idle wait ended: {e}")
                await self._wait_for_selectors(page, wait_selectors)
                metrics = await self.stability.measure(page)
        except Exception as e:
            logger.warning(f"Stateless retry for {target_url} failed: {e}")
            return None
        if self.stability.is_blank(metrics):
            return None
        return metrics

    @serialized
    async def go_back(self) -> OperationResult:
        """Navigate back in the active page's history."""
        page = await self.session.ensure_session()
        try:
            response = await page.go_back(wait_until="domcontentloaded", timeout=15000)
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to go back: {e}")
        if response is None and page.url in ("", "about:blank"):
            return OperationResult.error(ErrorKind.OPERATION_FAILED, "No previous page in history.")
        self.resolver.invalidate()
        await self.stability.await_settled(page, self.config.timing.settle_budget_ms)
        self.last_url = page.url
        title = await self._title(page)
        return OperationResult.ok(f'Navigated back to: "{title}" ({page.url})', url=page.url, title=title)

    @serialized
    async def wait(self, ms: int) -> OperationResult:
        if ms < 0:
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, f"Cannot wait a negative duration ({ms}ms).")
        page = await self.session.ensure_session()
        await page.wait_for_timeout(ms)
        return OperationResult.ok(f"Waited for {ms}ms")

    @serialized
    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> OperationResult:
        page = await self.session.ensure_session()
        timeout = self.config.timing.wait_selector_timeout_ms if timeout_ms is None else timeout_ms
        try:
            await page.wait_for_selector(selector, timeout=timeout)
        except Exception as e:
            logger.debug(f"Wait for {selector!r} failed: {e}")
            return OperationResult.error(
                ErrorKind.ACTION_TIMEOUT,
                f"Timed out waiting for selector: {selector}",
                suggestion="The element may load later or never appear. Take a snapshot to see the page.",
            )
        return OperationResult.ok(f"Element found: {selector}")

    @serialized
    async def evaluate(self, script: str) -> OperationResult:
        """Evaluate a JavaScript expression or function in the active page."""
        page = await self.session.ensure_session()
        try:
            value = await page.evaluate(script)
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to evaluate script: {e}")
        if isinstance(value, (dict, list)):
            text = json.dumps(value, default=str)
        else:
            text = str(value)
        return OperationResult.ok(text, value=value)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @serialized
    async def snapshot(self) -> OperationResult:
        """
        Scan the page for interactive elements and assign references.

        A page that looks blank (and offers no elements) is reloaded once
        before the snapshot is reported. When the snapshot is thin but the
        page has substantial markup, a vision description is appended if a
        vision analyzer is configured.
        """
        page = await self.session.ensure_session()
        try:
            snap = await self.resolver.snapshot(page)
            metrics = await self.stability.measure(page)
            recovered = False
            if self.stability.is_blank(metrics) and not snap.elements:
                recovered = True
                await self._recover_blank_page(page)
                snap = await self.resolver.snapshot(page)
                metrics = await self.stability.measure(page)
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to get semantic snapshot: {e}")

        url = page.url
        if url in ("", "about:blank") and self.last_url:
            url = f"{self.last_url} (SPA state)"
        title = metrics.title
        logger.info(
            f"Snapshot: url={url!r} title={title!r} markup={metrics.markup_length} elements={len(snap.elements)}"
        )
        result = OperationResult.ok(
            snap.format(title=title, url=url),
            url=url,
            title=title,
            generation=snap.generation,
            element_count=len(snap.elements),
            recovered=recovered,
        )

        if self.config.debug_always_save_artifacts:
            await self._save_artifacts(page, "snapshot")
        if self.stability.is_blank(metrics) and not snap.elements:
            await self._save_artifacts(page, "blank-snapshot")
            result.warn(ErrorKind.BLANK_PAGE_SUSPECTED, BLANK_PAGE_WARNING)

        captcha = await self._detect_captcha(page)
        if captcha is not None:
            result.data["captcha"] = captcha.kind.value
            result.warn(ErrorKind.CAPTCHA_DETECTED, captcha.warning())

        thin = len(snap.elements) < THIN_SNAPSHOT_PROMPT_ELEMENTS
        if self.vision.available and thin and metrics.markup_length > 1500:
            try:
                description = await self.vision.describe_screen(page)
                if description and len(description) > 20:
                    result.message += f"\n\nVISION ANALYSIS (semantic snapshot was thin):\n{description}"
            except Exception as e:
                logger.warning(f"Vision fallback for thin snapshot failed: {e}")
        return result

    async def _recover_blank_page(self, page: Page) -> None:
        if page.url in ("", "about:blank") and self.last_url:
            logger.info(f"Snapshot found a blank page, reloading {self.last_url}")
            try:
                await page.goto(
                    self.last_url,
                    wait_until="domcontentloaded",
                    timeout=self.config.timing.navigation_timeout_ms,
                )
            except Exception as e:
                logger.warning(f"Recovery reload of {self.last_url} failed: {e}")
        else:
            logger.warning("Snapshot appears blank; attempting one recovery reload")
            try:
                await page.reload(wait_until="load", timeout=self.config.timing.navigation_timeout_ms)
            except Exception as e:
                logger.warning(f"Recovery reload failed: {e}")
        await self.stability.await_stable(page, 5000)

    # ------------------------------------------------------------------
    # Element actions
    # ------------------------------------------------------------------

    async def _element_action(
        self,
        action: str,
        target: Union[int, str],
        perform: Callable[[Page, ResolvedTarget, DomainSettings], Awaitable[ActionOutcome]],
    ) -> Union[OperationResult, ActionOutcome]:
        """
        Gate, resolve and perform one element action, recording the outcome.

        Returns the failure as an OperationResult, or the successful
        ActionOutcome for the caller to report.
        """
        key = str(target)
        gate = self._action_gate(action, key)
        if gate is not None:
            return gate

        url = self._current_url()
        page = await self.session.ensure_session()
        try:
            resolved = await self.resolver.resolve(page, target)
        except StaleReferenceError as e:
            self.state.record_action(action, url, key, False, str(e))
            return OperationResult.error(ErrorKind.ELEMENT_STALE, str(e), suggestion=STALE_SUGGESTION)

        settings = self._settings_for(self.last_url)
        outcome = await perform(page, resolved, settings)
        if not outcome.success:
            self.state.record_action(action, url, key, False, outcome.error)
            error = (outcome.error or "").splitlines()[0] if outcome.error else "no strategy succeeded"
            return OperationResult.error(
                _INTERACTION_KINDS[outcome.failure.kind],
                f"Failed to {action} {resolved.label}: {error}",
                suggestion=outcome.failure.suggestion,
                attempts=outcome.attempts,
            )
        self.state.record_action(action, url, key, True)
        return outcome

    @serialized
    async def click(self, target: Union[int, str]) -> OperationResult:
        """
        Click an element by reference or selector.

        Strategies escalate from a standard click to a forced click to a
        DOM-level click. A timed-out failure teaches the tuner to wait
        longer after clicks on this domain.
        """
        before_url = self.session.page.url if self.session.page is not None else None

        async def perform(page: Page, resolved: ResolvedTarget, settings: DomainSettings) -> ActionOutcome:
            outcome = await self.executor.click(page, resolved, settings)
            if not outcome.success and outcome.failure.kind == InteractionErrorKind.ACTION_TIMEOUT:
                self._tune({"wait_after_click": 2000}, "Auto-learned: click timed out")
            return outcome

        outcome = await self._element_action("click", target, perform)
        if isinstance(outcome, OperationResult):
            return outcome

        page = self.session.page
        message = f"Successfully clicked: {outcome.target}"
        data: Dict[str, Any] = {"strategy": outcome.strategy}
        if page is not None and before_url is not None and page.url != before_url:
            # Full navigation: earlier references point into the old document
            self.resolver.invalidate()
            self.last_url = page.url
            title = await self._title(page)
            message += f'\nPage navigated to: "{title}" ({page.url})'
            data["url"] = page.url
        return OperationResult.ok(message, **data)

    @serialized
    async def type(self, target: Union[int, str], text: str) -> OperationResult:
        """
        Type into a field and verify the live value.

        When only keyboard emulation produced the right value, the domain is
        tuned for slow typing.
        """

        async def perform(page: Page, resolved: ResolvedTarget, settings: DomainSettings) -> ActionOutcome:
            outcome = await self.executor.type_text(page, resolved, text, settings)
            if outcome.success and outcome.strategy == "keyboard" and not settings.use_slow_typing:
                self._tune({"use_slow_typing": True}, "Auto-learned: fill() failed")
            return outcome

        outcome = await self._element_action("type", target, perform)
        if isinstance(outcome, OperationResult):
            return outcome
        return OperationResult.ok(
            f'Successfully typed into {outcome.target}: "{text}"',
            strategy=outcome.strategy,
            length=len(text),
        )

    @serialized
    async def select(self, target: Union[int, str], value: str) -> OperationResult:
        """Select an option by label or value, or in a custom dropdown."""

        async def perform(page: Page, resolved: ResolvedTarget, settings: DomainSettings) -> ActionOutcome:
            return await self.executor.select_option(page, resolved, value, settings)

        outcome = await self._element_action("select", target, perform)
        if isinstance(outcome, OperationResult):
            return outcome
        suffix = " (custom dropdown)" if outcome.strategy == "custom_dropdown" else ""
        return OperationResult.ok(
            f'Successfully selected "{value}" in {outcome.target}{suffix}',
            strategy=outcome.strategy,
        )

    @serialized
    async def hover(self, target: Union[int, str]) -> OperationResult:

        async def perform(page: Page, resolved: ResolvedTarget, settings: DomainSettings) -> ActionOutcome:
            return await self.executor.hover(page, resolved)

        outcome = await self._element_action("hover", target, perform)
        if isinstance(outcome, OperationResult):
            return outcome
        return OperationResult.ok(f"Successfully hovered over: {outcome.target}", strategy=outcome.strategy)

    @serialized
    async def press(self, key: str) -> OperationResult:
        """Press a key chord (``Enter``, ``ctrl+a``, ``esc`` ...) on the focused element."""
        page = await self.session.ensure_session()
        outcome = await self.executor.press(page, key)
        self.state.record_action("press", self._current_url(), outcome.target, outcome.success, outcome.error)
        if not outcome.success:
            return OperationResult.error(
                _INTERACTION_KINDS[outcome.failure.kind],
                f"Failed to press key {outcome.target}: {outcome.error}",
                suggestion=outcome.failure.suggestion,
            )
        return OperationResult.ok(f"Successfully pressed key: {outcome.target}")

    @serialized
    async def scroll(self, direction: str = "down", amount: Optional[int] = None) -> OperationResult:
        page = await self.session.ensure_session()
        try:
            position = await scroll(page, direction, amount)
        except ValueError as e:
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, str(e))
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to scroll {direction}: {e}")
        direction = direction.lower().strip()
        moved = f" {amount or 600}px" if direction in ("up", "down") else ""
        return OperationResult.ok(
            f"Scrolled {direction}{moved}. {position.describe()}",
            scroll_top=position.scroll_top,
            scroll_height=position.scroll_height,
            at_top=position.at_top,
            at_bottom=position.at_bottom,
        )

    @serialized
    async def fill_form(
        self,
        fields: Sequence[Union[FormField, Dict[str, Any]]],
        submit_selector: Optional[Union[int, str]] = None,
    ) -> OperationResult:
        """
        Fill several fields and optionally submit.

        Args:
            fields: ``{"selector", "value", "action"}`` entries; action is
                ``fill`` (default), ``select``, ``check`` or ``click``
            submit_selector: Element clicked after all fields

        Returns:
            OperationResult whose message carries one ``OK``/``FAIL``/``SKIP``
            line per field
        """
        key = str(submit_selector) if submit_selector is not None else None
        gate = self._action_gate("fill_form", key)
        if gate is not None:
            return gate
        if not fields:
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, "No form fields given.")

        url = self._current_url()
        page = await self.session.ensure_session()
        before_url = page.url
        try:
            report = await self.forms.fill(page, fields, submit_selector, self._settings_for(self.last_url))
        except (KeyError, TypeError) as e:
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, f"Malformed form field: {e}")

        self.state.record_action("fill_form", url, key, report.success, None if report.success else report.summary())
        if page.url != before_url:
            self.resolver.invalidate()
            self.last_url = page.url

        results = [{"status": r.status, "action": r.action, "selector": r.selector} for r in report.results]
        if report.success:
            return OperationResult.ok(report.format(), fields=results)
        return OperationResult.error(
            ErrorKind.ELEMENT_NOT_INTERACTABLE,
            report.format(),
            suggestion="Take a fresh snapshot and retry the failed fields individually.",
            fields=results,
        )

    # ------------------------------------------------------------------
    # Vision
    # ------------------------------------------------------------------

    def _vision_unavailable(self) -> OperationResult:
        return OperationResult.error(
            ErrorKind.VISION_UNAVAILABLE,
            "Vision analysis is not configured.",
            suggestion="Use snapshot references instead, or configure a vision analyzer.",
        )

    @serialized
    async def vision_click(self, description: str) -> OperationResult:
        """Locate an element on a screenshot by description and click its coordinates."""
        if not self.vision.available:
            return self._vision_unavailable()
        gate = self._action_gate("vision_click", description)
        if gate is not None:
            return gate
        return await self._click_located(self.vision_policy, "vision_click", description)

    @serialized
    async def smart_click(self, query: str) -> OperationResult:
        """
        Click by reference, selector or visible text, falling back to vision.

        The structural locator is tried first; vision is only consulted when
        the element cannot be found in the page structure.
        """
        gate = self._action_gate("smart_click", query)
        if gate is not None:
            return gate
        return await self._click_located(self.locator_policy, "smart_click", query)

    async def _click_located(self, policy: LocatorPolicy, action: str, query: str) -> OperationResult:
        url = self._current_url()
        page = await self.session.ensure_session()
        located = await policy.locate(page, query)
        if located is None:
            message = f'Could not locate "{query}" on the page.'
            self.state.record_action(action, url, query, False, message)
            return OperationResult.error(
                ErrorKind.ELEMENT_NOT_INTERACTABLE,
                message,
                suggestion="Describe the element differently (text, color, position), or take a snapshot.",
            )

        if located.is_coordinates:
            candidate = located.candidate
            outcome = await self.executor.click_at(page, candidate.x, candidate.y)
        else:
            outcome = await self.executor.click(page, located.target, self._settings_for(self.last_url))
        self.state.record_action(action, url, query, outcome.success, outcome.error)
        if not outcome.success:
            return OperationResult.error(
                _INTERACTION_KINDS[outcome.failure.kind],
                f'Failed to click "{query}": {outcome.error}',
                suggestion=outcome.failure.suggestion,
            )

        data: Dict[str, Any] = {"source": located.source}
        if located.is_coordinates:
            candidate = located.candidate
            data.update(x=int(candidate.x), y=int(candidate.y), confidence=candidate.confidence.value)
            message = (
                f'Clicked "{query}" at ({int(candidate.x)}, {int(candidate.y)}) '
                f"[{candidate.confidence.value} confidence]"
            )
        else:
            message = f'Clicked "{query}" ({located.target.label})'
        return OperationResult.ok(message, **data)

    @serialized
    async def describe_screen(
        self,
        x: Optional[int] = None,
        y: Optional[int] = None,
        radius: int = 100,
    ) -> OperationResult:
        if not self.vision.available:
            return self._vision_unavailable()
        page = await self.session.ensure_session()
        try:
            description = await self.vision.describe_screen(page, x, y, radius)
        except SteadyBrowserError as e:
            return OperationResult.error(ErrorKind.VISION_UNAVAILABLE, e.message)
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Vision analysis failed: {e}")
        return OperationResult.ok(description)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    @serialized
    async def extract_content(self, max_chars: int = 10000) -> OperationResult:
        """Readable main text of the page, capped at ``max_chars``."""
        page = await self.session.ensure_session()
        try:
            content = await extract_content(page, max_chars=max_chars)
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to extract content: {e}")
        if content is None:
            return OperationResult.error(
                ErrorKind.OPERATION_FAILED,
                "Page has little or no readable text content.",
                suggestion="Take a snapshot or a screenshot to see what the page shows.",
            )
        return OperationResult.ok(
            content.format(),
            title=content.title,
            url=content.url,
            length=content.total_length,
            truncated=content.truncated,
        )

    @serialized
    async def extract_data(
        self,
        selector: str,
        attribute: Optional[str] = None,
        limit: int = 50,
        include_html: bool = False,
    ) -> OperationResult:
        page = await self.session.ensure_session()
        try:
            items = await extract_data(page, selector, attribute=attribute, limit=limit, include_html=include_html)
        except Exception as e:
            return OperationResult.error(
                ErrorKind.OPERATION_FAILED,
                f"Failed to extract data for {selector!r}: {e}",
                suggestion="Check the selector syntax.",
            )
        return OperationResult.ok(
            format_extracted_items(selector, items),
            items=[dict(index=item.index, **item.fields) for item in items],
        )

    # ------------------------------------------------------------------
    # API interception
    # ------------------------------------------------------------------

    @serialized
    async def enable_api_interception(self) -> OperationResult:
        page = await self.session.ensure_session()
        if self.interceptor.is_attached(page):
            return OperationResult.ok("API interception already active.")
        self.interceptor.enable(page)
        return OperationResult.ok(
            "API interception enabled. Navigate or interact with the page, "
            "then list the intercepted API endpoints."
        )

    @serialized
    async def get_intercepted_apis(self, json_only: bool = False) -> OperationResult:
        apis = self.interceptor.get_intercepted(json_only)
        return OperationResult.ok(
            self.interceptor.format_intercepted(json_only),
            apis=[api.to_dict() for api in apis],
        )

    # ------------------------------------------------------------------
    # Screenshots and artifacts
    # ------------------------------------------------------------------

    @serialized
    async def screenshot(self) -> OperationResult:
        """
        Save a screenshot of the viewport to ``<data_dir>/screenshot.png``.

        A blank page is reloaded first. A suspiciously small image is
        retaken once after another reload.
        """
        page = await self.session.ensure_session()
        timing = self.config.timing
        try:
            if page.url in ("", "about:blank") and self.last_url:
                logger.warning(f"Page is blank before screenshot, reloading {self.last_url}")
                await self._reload_last(page, "domcontentloaded", timing.navigation_timeout_ms)
                await self.stability.await_stable(page, 5000)
            else:
                try:
                    await page.wait_for_load_state("load", timeout=timing.settle_budget_ms)
                except Exception as e:
                    logger.debug(f"Load wait before screenshot ended: {e}")
                await asyncio.sleep(timing.screenshot_paint_ms / 1000)

            path = self.config.screenshot_path
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), type="png")
            size = path.stat().st_size
            min_bytes = self.config.thresholds.screenshot_min_bytes
            if size < min_bytes:
                logger.warning(f"Screenshot looks blank ({size} bytes), retrying")
                if self.last_url:
                    await self._reload_last(page, "load", 20000)
                    await self.stability.await_stable(page, 3000)
                else:
                    await self.stability.await_settled(page, 4000)
                await page.screenshot(path=str(path), type="png")
                size = path.stat().st_size
        except Exception as e:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, f"Failed to take screenshot: {e}")

        result = OperationResult.ok(f"Screenshot saved to: {path}", path=str(path), size=size)
        if size < min_bytes:
            result.warn(ErrorKind.BLANK_PAGE_SUSPECTED, f"Image appears blank ({size} bytes).")
        return result

    async def _reload_last(self, page: Page, wait_until: str, timeout_ms: int) -> None:
        try:
            await page.goto(self.last_url, wait_until=wait_until, timeout=timeout_ms)
        except Exception as e:
            logger.warning(f"Reload of {self.last_url} failed: {e}")

    @serialized
    async def save_debug_artifacts(self, tag: str = "manual") -> OperationResult:
        page = await self.session.ensure_session()
        artifacts = await save_debug_artifacts(page, self.config.debug_dir, tag)
        if artifacts is None:
            return OperationResult.error(ErrorKind.OPERATION_FAILED, "Failed to save debug artifacts.")
        return OperationResult.ok(
            f"Debug artifacts saved ({artifacts.describe()})",
            screenshot=str(artifacts.screenshot_path) if artifacts.screenshot_path else None,
            html=str(artifacts.html_path) if artifacts.html_path else None,
        )

    @serialized
    async def start_trace(self) -> OperationResult:
        path = await self.session.start_trace()
        if path is None:
            return OperationResult.error(
                ErrorKind.OPERATION_FAILED, "Browser trace start failed or tracing already active."
            )
        return OperationResult.ok(f"Browser trace started. Output: {path}", path=str(path))

    @serialized
    async def stop_trace(self) -> OperationResult:
        path = await self.session.stop_trace()
        if path is None:
            return OperationResult.ok("Browser trace stopped.")
        return OperationResult.ok(f"Browser trace saved: {path}", path=str(path))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str) -> OperationResult:
        """
        Web search through the configured providers.

        Not serialised with page operations: browser providers use their
        own ephemeral pages and never touch the active one.
        """
        if not query or not query.strip():
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, "Search query is empty.")
        try:
            response = await self.search_coordinator.search(query)
        except SearchProviderError as e:
            return OperationResult.error(
                ErrorKind.SEARCH_FAILED,
                e.message,
                suggestion="Configure an API search provider, or navigate to a search engine directly.",
                error_code=e.error_code,
            )
        return OperationResult.ok(
            response.format(),
            provider=response.provider,
            cached=response.cached,
            results=[r.to_dict() for r in response.results],
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @serialized
    async def reset_state(self) -> OperationResult:
        """Forget navigation/action history, circuit breakers and blank counters."""
        self.state.reset()
        return OperationResult.ok("Browser state reset: history, circuit breakers and blank-page counters cleared.")

    @serialized
    async def reset_blank_history(self, domain: Optional[str] = None) -> OperationResult:
        cleared = self.state.reset_blank_history(domain)
        if domain is not None and not cleared:
            return OperationResult.ok(f"No blank-page history for {domain}.", cleared=[])
        if not cleared:
            return OperationResult.ok("No blank-page history to clear.", cleared=[])
        return OperationResult.ok(f"Blank-page history cleared for: {', '.join(cleared)}", cleared=cleared)

    @serialized
    async def switch_profile(self, name: str) -> OperationResult:
        """Close the session and use another named profile from the next operation on."""
        try:
            profile_dir = await self.session.switch_profile(name)
        except SessionError as e:
            return OperationResult.refused(ErrorKind.INVALID_ARGUMENT, e.message)
        self.resolver.invalidate()
        self.interceptor.disable()
        self.last_url = None
        return OperationResult.ok(f"Browser profile switched to {name.strip()}", profile_dir=str(profile_dir))

    @serialized
    async def get_state_summary(self) -> OperationResult:
        return OperationResult.ok(self.state.get_state_summary())

    @serialized
    async def get_diagnostics(self) -> OperationResult:
        diagnostics = {
            "session": self.session.describe(),
            "state": self.state.get_diagnostics(),
            "last_url": self.last_url,
            "reference_generation": self.resolver.generation,
            "known_refs": self.resolver.known_refs,
            "api_interception": self.interceptor.enabled,
            "intercepted_apis": len(self.interceptor.get_intercepted()),
            "blocked_requests": self.session.blocker.blocked_count,
            "vision_available": self.vision.available,
            "search_providers": [p.provider_name for p in self.search_coordinator.configured_providers],
        }
        return OperationResult.ok(json.dumps(diagnostics, indent=2, default=str), **diagnostics)

    async def close(self) -> OperationResult:
        """Close the browser. The engine can be used again afterwards."""
        async with self._lock:
            self.interceptor.disable()
            self.resolver.invalidate()
            await self.session.close()
            return OperationResult.ok("Browser closed.")
