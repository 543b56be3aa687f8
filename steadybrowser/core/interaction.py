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
Multi-strategy element interaction.

Click, type, select and hover each escalate through an ordered strategy
list evaluated by :func:`~steadybrowser.core.strategies.run_strategies`:

1. structural action with a short actionability wait
2. the same action with actionability checks bypassed (``force``)
3. direct DOM invocation (focus plus native event dispatch)

Typing verifies the live field value after each strategy and escalates
on mismatch. Failures are classified into an
:class:`~steadybrowser.exceptions.InteractionErrorKind` with an actionable
suggestion; that classification is part of the result contract.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from playwright.async_api import Locator, Page

from steadybrowser.core.config import TimingConfig
from steadybrowser.core.selector_resolver import ResolvedTarget
from steadybrowser.core.stability import StabilityDetector
from steadybrowser.core.strategies import Strategy, StrategyOutcome, run_strategies
from steadybrowser.core.tuner import DomainSettings
from steadybrowser.exceptions import InteractionErrorKind
from steadybrowser.utils.action_logger import BrowserActionLogger
from steadybrowser.utils.logger import get_logger

logger = get_logger("interaction")

T = TypeVar("T")

DOM_CLICK_SCRIPT = """
(el) => {
    el.scrollIntoView({ block: 'center', behavior: 'instant' });
    if (typeof el.focus === 'function') el.focus();
    const opts = { bubbles: true, cancelable: true, view: window };
    el.dispatchEvent(new MouseEvent('mousedown', opts));
    el.dispatchEvent(new MouseEvent('mouseup', opts));
    el.click();
    return true;
}
"""

DOM_TYPE_SCRIPT = """
(el, value) => {
    el.scrollIntoView({ block: 'center', behavior: 'instant' });
    el.focus();
    if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) {
        const proto = el instanceof HTMLInputElement ? HTMLInputElement.prototype : HTMLTextAreaElement.prototype;
        const setter = Object.getOwnPropertyDescriptor(proto, 'value').set;
        setter.call(el, value);
        el.dispatchEvent(new Event('input', { bubbles: true }));
        el.dispatchEvent(new Event('change', { bubbles: true }));
        return true;
    }
    if (el.isContentEditable) {
        el.textContent = value;
        el.dispatchEvent(new Event('input', { bubbles: true }));
        return true;
    }
    return false;
}
"""

READ_VALUE_SCRIPT = """
(el) => {
    if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement || el instanceof HTMLSelectElement) {
        return el.value;
    }
    if (el.isContentEditable) return (el.textContent || '').trim();
    return null;
}
"""

SELECTED_OPTION_SCRIPT = """
(el) => {
    if (!(el instanceof HTMLSelectElement)) return null;
    return Array.from(el.selectedOptions).map((o) => [o.value, (o.label || o.text || '').trim()]);
}
"""

DOM_HOVER_SCRIPT = """
(el) => {
    el.scrollIntoView({ block: 'center', behavior: 'instant' });
    el.dispatchEvent(new MouseEvent('mouseenter', { bubbles: true }));
    el.dispatchEvent(new MouseEvent('mouseover', { bubbles: true }));
    return true;
}
"""

CUSTOM_OPTION_SCRIPT = """
(optionText) => {
    const wanted = optionText.trim().toLowerCase();
    const candidates = document.querySelectorAll(
        '[role="option"], [role="listbox"] *, li, .option, [class*="option"], [class*="dropdown"] *'
    );
    for (const el of candidates) {
        const text = (el.innerText || el.textContent || '').trim().toLowerCase();
        if (text === wanted) {
            el.scrollIntoView({ block: 'center' });
            el.click();
            return true;
        }
    }
    return false;
}
"""

_MODIFIERS = {
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
    "cmd": "Meta",
    "command": "Meta",
    "meta": "Meta",
    "super": "Meta",
}

_KEYS = {
    "enter": "Enter",
    "return": "Enter",
    "tab": "Tab",
    "escape": "Escape",
    "esc": "Escape",
    "space": "Space",
    "backspace": "Backspace",
    "delete": "Delete",
    "del": "Delete",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "home": "Home",
    "end": "End",
    "pageup": "PageUp",
    "pagedown": "PageDown",
}


def normalize_key(key: str) -> str:
    """
    Normalize a key chord to Playwright names.

    Example:
        >>> normalize_key("ctrl+a"), normalize_key("esc"), normalize_key("cmd+shift+t")
        ('Control+a', 'Escape', 'Meta+Shift+t')
    """
    parts = [p.strip() for p in key.split("+")]
    if len(parts) > 1 and parts[-1] == "":
        # "ctrl++" means the plus key itself
        parts = parts[:-2] + ["+"]
    normalized = []
    for index, part in enumerate(parts):
        lower = part.lower()
        if index < len(parts) - 1:
            normalized.append(_MODIFIERS.get(lower, part))
        else:
            normalized.append(_KEYS.get(lower, part))
    return "+".join(normalized)


@dataclass
class FailureClassification:
    """Classified interaction failure with its actionable suggestion."""

    kind: InteractionErrorKind
    category: str
    suggestion: str


def classify_failure(error: Any) -> FailureClassification:
    """
    Map a rendering-engine error to a failure kind and suggestion.

    Playwright timeout messages embed the actionability log ("element is
    not visible", "<div> intercepts pointer events"), so the specific
    causes are checked before the generic timeout.
    """
    text = str(error)
    lower = text.lower()
    if "not visible" in lower or "outside of the viewport" in lower:
        return FailureClassification(
            InteractionErrorKind.ELEMENT_NOT_INTERACTABLE,
            "off-screen",
            "The element may be off-screen or hidden. Scroll down to bring it into view, "
            "then take a fresh snapshot and retry with the new reference.",
        )
    if "intercept" in lower or "overlay" in lower or "pointer" in lower:
        return FailureClassification(
            InteractionErrorKind.ELEMENT_NOT_INTERACTABLE,
            "overlay",
            "Another element is covering this one (modal, popup or cookie banner). "
            "Close the overlay first (press Escape or click its close button), "
            "or use vision to see what is blocking it.",
        )
    if "detached" in lower or "not found" in lower or "stale" in lower or "no element" in lower:
        return FailureClassification(
            InteractionErrorKind.ELEMENT_STALE,
            "detached",
            "The element no longer exists in the DOM (the page re-rendered). "
            "Take a fresh snapshot to get new element references.",
        )
    if "timeout" in lower:
        return FailureClassification(
            InteractionErrorKind.ACTION_TIMEOUT,
            "timeout",
            "The element exists but is not becoming interactive (disabled or still loading). "
            "Wait about 2 seconds and retry, or click it by visual position with vision.",
        )
    return FailureClassification(
        InteractionErrorKind.ELEMENT_NOT_INTERACTABLE,
        "unknown",
        "Take a fresh snapshot to get current references, or describe the page with vision "
        "to see what is clickable.",
    )


class ValueMismatch(Exception):
    """The field value read back after typing differs from the intended text."""

    def __init__(self, expected: str, actual: Optional[str]) -> None:
        super().__init__(f"field value mismatch: expected {expected!r}, found {actual!r}")
        self.expected = expected
        self.actual = actual


@dataclass
class ActionOutcome:
    """
    Result of one executor operation.

    Attributes:
        success: Whether any strategy succeeded
        action: Action kind (click, type, select, hover)
        target: Human label for the target (``ref=12`` or the selector)
        strategy: Winning strategy name
        error: Last underlying error text
        failure: Classification when unsuccessful
        attempts: ``(strategy, error)`` pairs for every failed strategy
        detail: Action-specific data (selected values, typed length ...)
    """

    success: bool
    action: str
    target: str
    strategy: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[FailureClassification] = None
    attempts: List[Tuple[str, str]] = field(default_factory=list)
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_strategies(
        cls,
        action: str,
        target: str,
        outcome: StrategyOutcome,
        **detail: Any,
    ) -> "ActionOutcome":
        if outcome.success:
            return cls(
                success=True,
                action=action,
                target=target,
                strategy=outcome.strategy_name,
                attempts=outcome.error_chain(),
                detail=detail,
            )
        # Classify on the most informative error: the first structural attempt
        # carries Playwright's actionability log, the DOM fallback does not
        errors = [e for _, e in outcome.errors]
        primary = next((e for e in errors if not isinstance(e, ValueMismatch)), errors[-1] if errors else None)
        return cls(
            success=False,
            action=action,
            target=target,
            error=str(outcome.last_error) if outcome.last_error else "no strategy available",
            failure=classify_failure(primary),
            attempts=outcome.error_chain(),
            detail=detail,
        )


class InteractionExecutor:
    """
    Executes click/type/select/hover against a resolved target.

    The executor knows nothing about history or circuit breakers; the
    engine consults :class:`~steadybrowser.core.interaction_state.InteractionState`
    before calling it.

    Example:
        >>> executor = InteractionExecutor(TimingConfig(), StabilityDetector())
        >>> outcome = await executor.click(page, ResolvedTarget('[data-steady-ref="4"]', ref=4))
        >>> outcome.strategy
        'standard'
    """

    def __init__(
        self,
        timing: Optional[TimingConfig] = None,
        stability: Optional[StabilityDetector] = None,
        action_logger: Optional[BrowserActionLogger] = None,
    ) -> None:
        self.timing = timing or TimingConfig()
        self.stability = stability or StabilityDetector(self.timing)
        self.action_logger = action_logger or BrowserActionLogger()

    def _locator(self, page: Page, target: ResolvedTarget) -> Locator:
        return page.locator(target.selector).first

    async def _finish(self, page: Page, outcome: ActionOutcome, settle_ms: Optional[int]) -> ActionOutcome:
        if outcome.success:
            await self.stability.await_settled(page, settle_ms)
            self.action_logger.end_action(True, strategy=outcome.strategy)
        else:
            self.action_logger.end_action(False, f"{outcome.failure.category}: {outcome.error}")
        return outcome

    # ------------------------------------------------------------------
    # Click
    # ------------------------------------------------------------------

    async def click(
        self,
        page: Page,
        target: ResolvedTarget,
        settings: Optional[DomainSettings] = None,
    ) -> ActionOutcome:
        """Click with standard, force and DOM strategies."""
        settings = settings or DomainSettings()
        locator = self._locator(page, target)
        self.action_logger.start_action("CLICK", target.label)

        strategies = [
            Strategy("standard", lambda: locator.click(timeout=self.timing.standard_action_timeout_ms)),
            Strategy("force", lambda: locator.click(force=True, timeout=self.timing.force_action_timeout_ms)),
            Strategy(
                "dom",
                lambda: locator.evaluate(DOM_CLICK_SCRIPT, timeout=self.timing.force_action_timeout_ms),
                accept=bool,
            ),
        ]
        outcome = await run_strategies(strategies, on_failure=self._log_fallback)
        result = ActionOutcome.from_strategies("click", target.label, outcome)
        return await self._finish(page, result, settings.wait_after_click)

    # ------------------------------------------------------------------
    # Type
    # ------------------------------------------------------------------

    async def verify_field_value(self, page: Page, target: ResolvedTarget, expected: str) -> bool:
        """True when the live field value equals ``expected`` exactly."""
        try:
            actual = await self.read_field_value(page, target)
        except Exception as e:
            logger.debug(f"Value read-back failed for {target.label}: {e}")
            return False
        return actual == expected

    async def read_field_value(self, page: Page, target: ResolvedTarget) -> Optional[str]:
        return await self._locator(page, target).evaluate(
            READ_VALUE_SCRIPT, timeout=self.timing.force_action_timeout_ms
        )

    async def _verified(self, page: Page, target: ResolvedTarget, expected: str) -> str:
        actual = await self.read_field_value(page, target)
        if actual != expected:
            raise ValueMismatch(expected, actual)
        return actual

    async def type_text(
        self,
        page: Page,
        target: ResolvedTarget,
        text: str,
        settings: Optional[DomainSettings] = None,
    ) -> ActionOutcome:
        """
        Type ``text`` into a field and verify the live value.

        Strategies: ``fill``, ``keyboard`` (focus, select-all, delete, type),
        ``dom`` (native value setter plus input/change events). Domains tuned
        for slow typing skip ``fill``.
        """
        settings = settings or DomainSettings()
        locator = self._locator(page, target)
        self.action_logger.start_action("TYPE", f"{target.label} (len={len(text)})")
        typing_delay = settings.slow_typing_delay if settings.use_slow_typing else 0

        async def fill() -> str:
            await locator.fill(text, timeout=self.timing.standard_action_timeout_ms)
            return await self._verified(page, target, text)

        async def keyboard() -> str:
            await locator.click(force=True, timeout=self.timing.force_action_timeout_ms)
            await page.keyboard.press("Control+a")
            await page.keyboard.press("Backspace")
            await page.keyboard.type(text, delay=typing_delay)
            return await self._verified(page, target, text)

        async def dom() -> str:
            applied = await locator.evaluate(DOM_TYPE_SCRIPT, text, timeout=self.timing.force_action_timeout_ms)
            if not applied:
                raise ValueMismatch(text, None)
            return await self._verified(page, target, text)

        strategies = [
            Strategy("fill", fill),
            Strategy("keyboard", keyboard),
            Strategy("dom", dom),
        ]
        if settings.use_slow_typing:
            strategies = strategies[1:]

        outcome = await run_strategies(strategies, on_failure=self._log_fallback)
        result = ActionOutcome.from_strategies("type", target.label, outcome, length=len(text))
        return await self._finish(page, result, min(settings.wait_after_click, self.timing.settle_budget_ms))

    # ------------------------------------------------------------------
    # Select
    # ------------------------------------------------------------------

    async def select_option(
        self,
        page: Page,
        target: ResolvedTarget,
        value: str,
        settings: Optional[DomainSettings] = None,
    ) -> ActionOutcome:
        """Select by label, then by value, then by clicking a custom dropdown option."""
        settings = settings or DomainSettings()
        locator = self._locator(page, target)
        self.action_logger.start_action("SELECT", f"{target.label} = {value!r}")

        def matches(selected: Any) -> bool:
            return bool(selected) and any(value in (v, label) for v, label in selected)

        async def by_label() -> Any:
            await locator.select_option(label=value, timeout=self.timing.standard_action_timeout_ms)
            return await locator.evaluate(SELECTED_OPTION_SCRIPT, timeout=self.timing.force_action_timeout_ms)

        async def by_value() -> Any:
            await locator.select_option(value=value, timeout=self.timing.force_action_timeout_ms)
            return await locator.evaluate(SELECTED_OPTION_SCRIPT, timeout=self.timing.force_action_timeout_ms)

        async def custom_dropdown() -> bool:
            await locator.click(force=True, timeout=self.timing.force_action_timeout_ms)
            await asyncio.sleep(0.5)
            return await page.evaluate(CUSTOM_OPTION_SCRIPT, value)

        outcome = await run_strategies(
            [
                Strategy("label", by_label, accept=matches),
                Strategy("value", by_value, accept=matches),
                Strategy("custom_dropdown", custom_dropdown, accept=bool),
            ],
            on_failure=self._log_fallback,
        )
        result = ActionOutcome.from_strategies("select", target.label, outcome, value=value)
        return await self._finish(page, result, min(settings.wait_after_click, self.timing.settle_budget_ms))

    async def set_checked(self, page: Page, target: ResolvedTarget, checked: bool = True) -> ActionOutcome:
        """Check or uncheck a checkbox/radio, falling back to a force click."""
        locator = self._locator(page, target)
        self.action_logger.start_action("CHECK", target.label)

        async def native() -> bool:
            await locator.set_checked(checked, timeout=self.timing.standard_action_timeout_ms)
            return await locator.is_checked()

        async def force_click() -> bool:
            if await locator.is_checked() != checked:
                await locator.click(force=True, timeout=self.timing.force_action_timeout_ms)
            return await locator.is_checked()

        outcome = await run_strategies(
            [
                Strategy("native", native, accept=lambda state: state == checked),
                Strategy("force", force_click, accept=lambda state: state == checked),
            ],
            on_failure=self._log_fallback,
        )
        result = ActionOutcome.from_strategies("check", target.label, outcome, checked=checked)
        return await self._finish(page, result, None)

    # ------------------------------------------------------------------
    # Hover / keys
    # ------------------------------------------------------------------

    async def hover(self, page: Page, target: ResolvedTarget) -> ActionOutcome:
        """Hover with standard, force and DOM event strategies."""
        locator = self._locator(page, target)
        self.action_logger.start_action("HOVER", target.label)
        outcome = await run_strategies(
            [
                Strategy("standard", lambda: locator.hover(timeout=self.timing.standard_action_timeout_ms)),
                Strategy("force", lambda: locator.hover(force=True, timeout=self.timing.force_action_timeout_ms)),
                Strategy(
                    "dom",
                    lambda: locator.evaluate(DOM_HOVER_SCRIPT, timeout=self.timing.force_action_timeout_ms),
                    accept=bool,
                ),
            ],
            on_failure=self._log_fallback,
        )
        result = ActionOutcome.from_strategies("hover", target.label, outcome)
        if result.success:
            # Give menus and tooltips a moment to appear
            await asyncio.sleep(0.5)
        return await self._finish(page, result, None)

    async def press(self, page: Page, key: str) -> ActionOutcome:
        """Press a key chord on the focused element."""
        normalized = normalize_key(key)
        self.action_logger.start_action("PRESS", normalized)
        try:
            await page.keyboard.press(normalized)
        except Exception as e:
            result = ActionOutcome(
                success=False,
                action="press",
                target=normalized,
                error=str(e),
                failure=classify_failure(e),
            )
            return await self._finish(page, result, None)
        result = ActionOutcome(success=True, action="press", target=normalized, strategy="keyboard")
        return await self._finish(page, result, None)

    async def click_at(self, page: Page, x: float, y: float) -> ActionOutcome:
        """Click viewport coordinates (vision fallback)."""
        label = f"({int(x)}, {int(y)})"
        self.action_logger.start_action("CLICK", f"coordinates {label}")
        try:
            await page.mouse.click(x, y)
        except Exception as e:
            result = ActionOutcome(
                success=False, action="click", target=label, error=str(e), failure=classify_failure(e)
            )
            return await self._finish(page, result, None)
        result = ActionOutcome(success=True, action="click", target=label, strategy="coordinates")
        return await self._finish(page, result, None)

    async def _log_fallback(self, strategy: Strategy, error: BaseException) -> None:
        self.action_logger.log_step(f"{strategy.name} failed: {str(error).splitlines()[0][:160]}")

    # ------------------------------------------------------------------
    # Retries
    # ------------------------------------------------------------------

    async def with_retries(
        self,
        page: Optional[Page],
        operation_name: str,
        fn: Callable[[int], Awaitable[T]],
        attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
    ) -> T:
        """
        Run ``fn(attempt)`` with bounded attempts and linear backoff.

        Between attempts the document readiness is re-checked, bounded by
        the backoff delay, instead of sleeping blindly.

        Raises:
            The last error once all attempts failed
        """
        attempts = max(1, attempts if attempts is not None else self.timing.retry_attempts)
        base_delay = max(100, base_delay_ms if base_delay_ms is not None else self.timing.retry_base_delay_ms)
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                return await fn(attempt)
            except Exception as e:
                last_error = e
                if attempt >= attempts:
                    break
                backoff = min(base_delay * attempt, self.timing.retry_max_delay_ms)
                self.action_logger.log_retry(attempt, f"{operation_name} failed, retrying in {backoff}ms: {e}")
                if page is not None:
                    await self._await_ready(page, backoff)

        assert last_error is not None
        raise last_error

    async def _await_ready(self, page: Page, timeout_ms: int) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except Exception as e:
            logger.debug(f"Readiness wait (domcontentloaded) ended: {e}")
        try:
            await page.wait_for_function("document.readyState !== 'loading'", timeout=timeout_ms)
        except Exception as e:
            logger.debug(f"Readiness wait (readyState) ended: {e}")
