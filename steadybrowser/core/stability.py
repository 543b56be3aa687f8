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
Content-stability detection.

Single-page apps fire ``load`` on an empty shell and render afterwards, so
load events alone do not say when a page can be trusted. The
:class:`StabilityDetector` combines three signals:

1. base load signals (``load`` plus a capped ``networkidle``)
2. DOM mutation quiescence: a debounce that restarts on every mutation,
   bounded by a hard ceiling so endlessly animating pages cannot block
3. a content-size re-check, extended once for late hydration

:meth:`StabilityDetector.await_settled` is the light variant used after a
single interaction.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from playwright.async_api import Page

from steadybrowser.core.config import ThresholdConfig, TimingConfig
from steadybrowser.utils.logger import get_logger

logger = get_logger("stability")

INTERACTIVE_SELECTOR = (
    'a, button, input, select, textarea, [role="button"], [role="link"]'
)

MEASURE_SCRIPT = """
(interactiveSelector) => {
    const body = document.body;
    const text = body && body.innerText ? body.innerText.trim() : '';
    const html = document.documentElement ? document.documentElement.outerHTML : '';
    return {
        title: document.title || '',
        textLength: text.length,
        markupLength: html.replace(/\\s+/g, '').length,
        interactiveCount: document.querySelectorAll(interactiveSelector).length,
    };
}
"""

QUIESCENCE_SCRIPT = """
([debounceMs, ceilingMs]) => new Promise((resolve) => {
    const start = Date.now();
    let mutations = 0;
    let debounceTimer = null;
    let ceilingTimer = null;
    let observer = null;
    const finish = (quiet) => {
        if (observer) observer.disconnect();
        clearTimeout(debounceTimer);
        clearTimeout(ceilingTimer);
        resolve({ quiet, mutations, elapsed: Date.now() - start });
    };
    const target = document.documentElement || document;
    observer = new MutationObserver(() => {
        mutations += 1;
        clearTimeout(debounceTimer);
        debounceTimer = setTimeout(() => finish(true), debounceMs);
    });
    observer.observe(target, { childList: true, subtree: true, attributes: true, characterData: true });
    debounceTimer = setTimeout(() => finish(true), debounceMs);
    ceilingTimer = setTimeout(() => finish(false), ceilingMs);
})
"""

ANIMATION_FRAME_SCRIPT = """
() => new Promise((resolve) => {
    requestAnimationFrame(() => requestAnimationFrame(() => resolve(true)));
})
"""


@dataclass
class PageMetrics:
    """Size signals extracted from the live document.

    Attributes:
        title: Document title
        text_length: Length of trimmed ``body.innerText``
        markup_length: Length of serialized markup with whitespace removed
        interactive_count: Number of links, buttons and form controls
    """

    title: str = ""
    text_length: int = 0
    markup_length: int = 0
    interactive_count: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageMetrics":
        data = data or {}
        return cls(
            title=str(data.get("title") or ""),
            text_length=int(data.get("textLength") or 0),
            markup_length=int(data.get("markupLength") or 0),
            interactive_count=int(data.get("interactiveCount") or 0),
        )


@dataclass
class StabilityReport:
    """What :meth:`StabilityDetector.await_stable` observed."""

    load_reached: bool = False
    quiescent: bool = False
    mutations: int = 0
    extended: bool = False
    metrics: Optional[PageMetrics] = None
    elapsed_ms: float = 0.0


def is_blank(metrics: PageMetrics, thresholds: Optional[ThresholdConfig] = None) -> bool:
    """
    Conservative blank-page classification.

    A page is blank only when its text is below the text floor and its
    markup is below the markup floor, and additionally either the title is
    empty or there is no text at all. Short but real pages (login forms,
    redirect notices) keep enough text or markup to stay out.

    Example:
        >>> is_blank(PageMetrics(title="", text_length=10, markup_length=500))
        True
        >>> is_blank(PageMetrics(title="", text_length=40, markup_length=1000))
        False
    """
    thresholds = thresholds or ThresholdConfig()
    if metrics.text_length >= thresholds.blank_text_floor:
        return False
    if metrics.markup_length >= thresholds.blank_markup_floor:
        return False
    return not metrics.title.strip() or metrics.text_length == 0


def has_rendered_content(metrics: PageMetrics, thresholds: Optional[ThresholdConfig] = None) -> bool:
    """True when the page shows meaningful text or enough interactive elements."""
    thresholds = thresholds or ThresholdConfig()
    return (
        metrics.text_length > thresholds.rendered_text_length
        or metrics.interactive_count > thresholds.rendered_interactive_count
    )


class StabilityDetector:
    """
    Decides when a page has finished meaningfully rendering.

    Example:
        >>> detector = StabilityDetector(TimingConfig(), ThresholdConfig())
        >>> report = await detector.await_stable(page, budget_ms=15000)
        >>> report.metrics.text_length
        5321
    """

    def __init__(
        self,
        timing: Optional[TimingConfig] = None,
        thresholds: Optional[ThresholdConfig] = None,
    ) -> None:
        self.timing = timing or TimingConfig()
        self.thresholds = thresholds or ThresholdConfig()

    async def measure(self, page: Page) -> PageMetrics:
        """Extract :class:`PageMetrics`; a failing evaluation yields empty metrics."""
        try:
            data = await page.evaluate(MEASURE_SCRIPT, INTERACTIVE_SELECTOR)
        except Exception as e:
            logger.debug(f"Page metrics unavailable: {e}")
            return PageMetrics()
        return PageMetrics.from_dict(data)

    def is_blank(self, metrics: PageMetrics) -> bool:
        return is_blank(metrics, self.thresholds)

    async def _wait_load(self, page: Page, budget_ms: int) -> bool:
        idle_ms = min(budget_ms, self.timing.network_idle_cap_ms)
        results = await asyncio.gather(
            page.wait_for_load_state("load", timeout=budget_ms),
            page.wait_for_load_state("networkidle", timeout=idle_ms),
            return_exceptions=True,
        )
        if isinstance(results[0], BaseException):
            logger.debug(f"Load wait exceeded budget: {results[0]}")
            return False
        return True

    async def _wait_quiescence(self, page: Page, ceiling_ms: int) -> Dict[str, Any]:
        debounce = self.timing.mutation_debounce_ms
        ceiling = max(min(ceiling_ms, self.timing.mutation_ceiling_ms), debounce)
        try:
            result = await asyncio.wait_for(
                page.evaluate(QUIESCENCE_SCRIPT, [debounce, ceiling]),
                timeout=(ceiling + 1000) / 1000.0,
            )
        except Exception as e:
            logger.debug(f"Mutation quiescence wait failed: {e}")
            return {"quiet": False, "mutations": 0}
        return result or {"quiet": False, "mutations": 0}

    async def _poll_for_content(self, page: Page, window_ms: int) -> PageMetrics:
        deadline = time.monotonic() + window_ms / 1000.0
        interval = self.timing.content_poll_interval_ms / 1000.0
        metrics = await self.measure(page)
        while not has_rendered_content(metrics, self.thresholds) and time.monotonic() < deadline:
            await asyncio.sleep(min(interval, max(deadline - time.monotonic(), 0)))
            metrics = await self.measure(page)
        return metrics

    async def await_stable(self, page: Page, budget_ms: Optional[int] = None) -> StabilityReport:
        """
        Wait until the page is judged stable, never longer than about ``budget_ms``
        plus the one-time hydration extension.

        Args:
            page: Page to observe
            budget_ms: Overall wait budget, defaults to ``stable_budget_ms``

        Returns:
            StabilityReport with the final page metrics
        """
        budget = self.timing.stable_budget_ms if budget_ms is None else budget_ms
        started = time.monotonic()
        report = StabilityReport()

        def remaining_ms() -> int:
            return max(int(budget - (time.monotonic() - started) * 1000), 0)

        # Phase 1: base load signals
        report.load_reached = await self._wait_load(page, budget)

        # Phase 2: DOM mutation quiescence
        if remaining_ms() > 0:
            quiet = await self._wait_quiescence(page, remaining_ms())
            report.quiescent = bool(quiet.get("quiet"))
            report.mutations = int(quiet.get("mutations") or 0)

        # Phase 3: content re-check within the remaining budget
        metrics = await self._poll_for_content(
            page, min(remaining_ms(), self.timing.content_poll_cap_ms)
        )
        if not has_rendered_content(metrics, self.thresholds) and metrics.text_length == 0:
            report.extended = True
            logger.debug(
                f"Page still empty after {int((time.monotonic() - started) * 1000)}ms, "
                f"extending wait by {self.timing.hydration_extension_ms}ms for hydration"
            )
            metrics = await self._poll_for_content(page, self.timing.hydration_extension_ms)

        report.metrics = metrics
        report.elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug(
            f"Stability: load={report.load_reached} quiet={report.quiescent} "
            f"mutations={report.mutations} text={metrics.text_length} "
            f"interactive={metrics.interactive_count} in {report.elapsed_ms:.0f}ms"
        )
        return report

    async def await_settled(self, page: Page, max_ms: Optional[int] = None) -> None:
        """
        Light post-interaction wait: brief network quiescence plus one
        animation-frame pair.
        """
        budget = self.timing.settle_budget_ms if max_ms is None else max_ms
        try:
            await page.wait_for_load_state("networkidle", timeout=budget)
        except Exception as e:
            logger.debug(f"Settle network idle wait ended: {e}")
        try:
            await asyncio.wait_for(page.evaluate(ANIMATION_FRAME_SCRIPT), timeout=max(budget, 100) / 1000.0)
        except Exception as e:
            logger.debug(f"Settle animation frame wait ended: {e}")
