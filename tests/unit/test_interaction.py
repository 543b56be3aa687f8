# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the interaction executor."""

from __future__ import annotations

import pytest

from steadybrowser.core.interaction import (
    CUSTOM_OPTION_SCRIPT,
    InteractionExecutor,
    classify_failure,
    normalize_key,
)
from steadybrowser.core.selector_resolver import ResolvedTarget
from steadybrowser.core.stability import StabilityDetector
from steadybrowser.core.tuner import DomainSettings
from steadybrowser.exceptions import InteractionErrorKind

from tests.conftest import FakePage

TARGET = ResolvedTarget(selector="#field")


@pytest.fixture
def page() -> FakePage:
    return FakePage("https://example.com/form")


@pytest.fixture
def executor(fast_timing) -> InteractionExecutor:
    return InteractionExecutor(fast_timing, StabilityDetector(fast_timing))


@pytest.fixture
def settings() -> DomainSettings:
    return DomainSettings(wait_after_click=0)


class TestNormalizeKey:
    @pytest.mark.parametrize(
        "key, expected",
        [
            ("enter", "Enter"),
            ("esc", "Escape"),
            ("ctrl+a", "Control+a"),
            ("cmd+shift+t", "Meta+Shift+t"),
            ("Tab", "Tab"),
            ("ctrl++", "Control++"),
            ("PageDown", "PageDown"),
        ],
    )
    def test_normalize(self, key, expected):
        assert normalize_key(key) == expected


class TestClassifyFailure:
    def test_off_screen(self):
        failure = classify_failure("locator.click: element is not visible")
        assert failure.kind == InteractionErrorKind.ELEMENT_NOT_INTERACTABLE
        assert failure.category == "off-screen"
        assert "Scroll" in failure.suggestion

    def test_overlay_wins_over_timeout(self):
        failure = classify_failure("Timeout 5000ms exceeded. <div class=modal> intercepts pointer events")
        assert failure.category == "overlay"
        assert "Escape" in failure.suggestion

    def test_detached(self):
        failure = classify_failure("Element is not attached to the DOM (detached)")
        assert failure.kind == InteractionErrorKind.ELEMENT_STALE

    def test_timeout(self):
        failure = classify_failure("Timeout 5000ms exceeded")
        assert failure.kind == InteractionErrorKind.ACTION_TIMEOUT
        assert "2 seconds" in failure.suggestion

    def test_unknown(self):
        failure = classify_failure("something odd")
        assert failure.category == "unknown"
        assert "snapshot" in failure.suggestion


class TestClick:
    """Tests for click strategy escalation."""

    @pytest.mark.asyncio
    async def test_standard_click(self, page, executor, settings):
        outcome = await executor.click(page, TARGET, settings)
        assert outcome.success is True
        assert outcome.strategy == "standard"
        assert page.locator("#field").clicks == ["standard"]

    @pytest.mark.asyncio
    async def test_falls_back_to_dom_click(self, page, executor, settings):
        locator = page.locator("#field")
        locator.click_error = Exception("Timeout 100ms exceeded. <div> intercepts pointer events")
        outcome = await executor.click(page, TARGET, settings)
        assert outcome.success is True
        assert outcome.strategy == "dom"
        assert locator.clicks == ["standard", "force", "dom"]
        assert [name for name, _ in outcome.attempts] == ["standard", "force"]

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, page, executor, settings):
        locator = page.locator("#field")
        locator.click_error = Exception("Timeout 100ms exceeded")
        locator.dom_click_error = Exception("Timeout 100ms exceeded")
        outcome = await executor.click(page, TARGET, settings)
        assert outcome.success is False
        assert outcome.failure.kind == InteractionErrorKind.ACTION_TIMEOUT
        assert len(outcome.attempts) == 3


class TestTypeText:
    """Tests for verified typing."""

    @pytest.mark.asyncio
    async def test_fill_verified(self, page, executor, settings):
        outcome = await executor.type_text(page, TARGET, "hello", settings)
        assert outcome.success is True
        assert outcome.strategy == "fill"
        assert page.locator("#field").value == "hello"

    @pytest.mark.asyncio
    async def test_controlled_input_falls_back_to_keyboard(self, page, executor, settings):
        locator = page.locator("#field")
        locator.value = "old"
        locator.fill_ignored = True
        outcome = await executor.type_text(page, TARGET, "new value", settings)
        assert outcome.success is True
        assert outcome.strategy == "keyboard"
        assert locator.value == "new value"
        assert page.keyboard.pressed == ["Control+a", "Backspace"]

    @pytest.mark.asyncio
    async def test_dom_strategy_last(self, page, executor, settings):
        locator = page.locator("#field")
        locator.fill_ignored = True
        locator.keyboard_ignored = True
        outcome = await executor.type_text(page, TARGET, "abc", settings)
        assert outcome.success is True
        assert outcome.strategy == "dom"

    @pytest.mark.asyncio
    async def test_mismatch_is_never_success(self, page, executor, settings):
        locator = page.locator("#field")
        locator.fill_ignored = True
        locator.keyboard_ignored = True
        locator.dom_type_applied = False
        outcome = await executor.type_text(page, TARGET, "abc", settings)
        assert outcome.success is False
        assert "mismatch" in outcome.error or "abc" in outcome.error

    @pytest.mark.asyncio
    async def test_slow_typing_skips_fill(self, page, executor):
        locator = page.locator("#field")
        outcome = await executor.type_text(
            page, TARGET, "slow", DomainSettings(use_slow_typing=True, wait_after_click=0)
        )
        assert outcome.success is True
        assert outcome.strategy == "keyboard"
        assert locator.clicks == ["force"]

    @pytest.mark.asyncio
    async def test_verify_field_value(self, page, executor):
        page.locator("#field").value = "x"
        assert await executor.verify_field_value(page, TARGET, "x") is True
        assert await executor.verify_field_value(page, TARGET, "y") is False


class TestSelect:
    @pytest.mark.asyncio
    async def test_select_by_label(self, page, executor, settings):
        locator = page.locator("#field")
        locator.options = [("us", "United States"), ("ca", "Canada")]
        outcome = await executor.select_option(page, TARGET, "Canada", settings)
        assert outcome.success is True
        assert outcome.strategy == "label"

    @pytest.mark.asyncio
    async def test_select_by_value(self, page, executor, settings):
        locator = page.locator("#field")
        locator.options = [("us", "United States"), ("ca", "Canada")]
        outcome = await executor.select_option(page, TARGET, "us", settings)
        assert outcome.success is True
        assert outcome.strategy == "value"

    @pytest.mark.asyncio
    async def test_custom_dropdown(self, page, executor, settings):
        page.script_results[CUSTOM_OPTION_SCRIPT] = lambda text: text == "Large"
        outcome = await executor.select_option(page, TARGET, "Large", settings)
        assert outcome.success is True
        assert outcome.strategy == "custom_dropdown"

    @pytest.mark.asyncio
    async def test_no_matching_option(self, page, executor, settings):
        page.script_results[CUSTOM_OPTION_SCRIPT] = False
        outcome = await executor.select_option(page, TARGET, "Huge", settings)
        assert outcome.success is False


class TestOtherActions:
    @pytest.mark.asyncio
    async def test_set_checked(self, page, executor):
        outcome = await executor.set_checked(page, TARGET, True)
        assert outcome.success is True
        assert page.locator("#field").checked is True

    @pytest.mark.asyncio
    async def test_set_checked_force_fallback(self, page, executor):
        locator = page.locator("#field")
        locator.set_checked_error = Exception("Timeout exceeded")

        def toggle():
            locator.checked = not locator.checked

        locator.on_click = toggle
        outcome = await executor.set_checked(page, TARGET, True)
        assert outcome.success is True
        assert outcome.strategy == "force"

    @pytest.mark.asyncio
    async def test_hover_falls_back(self, page, executor):
        locator = page.locator("#field")
        locator.hover_error = Exception("element is not visible")
        outcome = await executor.hover(page, TARGET)
        assert outcome.success is True
        assert outcome.strategy == "dom"

    @pytest.mark.asyncio
    async def test_press_normalizes(self, page, executor):
        outcome = await executor.press(page, "ctrl+a")
        assert outcome.success is True
        assert page.keyboard.pressed == ["Control+a"]

    @pytest.mark.asyncio
    async def test_press_failure_is_classified(self, page, executor):
        page.keyboard.press_error = Exception('Unknown key: "Hyper"')
        outcome = await executor.press(page, "Hyper")
        assert outcome.success is False
        assert outcome.failure is not None

    @pytest.mark.asyncio
    async def test_click_at(self, page, executor):
        outcome = await executor.click_at(page, 120.0, 310.0)
        assert outcome.success is True
        assert page.mouse.clicks == [(120.0, 310.0)]


class TestWithRetries:
    @pytest.mark.asyncio
    async def test_succeeds_after_retry(self, page, executor):
        calls = []

        async def flaky(attempt):
            calls.append(attempt)
            if attempt < 3:
                raise RuntimeError("not yet")
            return "done"

        result = await executor.with_retries(page, "flaky", flaky, attempts=3, base_delay_ms=100)
        assert result == "done"
        assert calls == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_raises_last_error(self, page, executor):
        async def always(attempt):
            raise RuntimeError(f"failure {attempt}")

        with pytest.raises(RuntimeError, match="failure 2"):
            await executor.with_retries(page, "always", always, attempts=2, base_delay_ms=100)
