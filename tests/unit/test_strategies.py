# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for ordered fallback strategies."""

from __future__ import annotations

import pytest

from steadybrowser.core.strategies import Strategy, StrategyRejected, run_strategies


def succeed(value):
    async def action():
        return value
    return action


def fail(message):
    async def action():
        raise RuntimeError(message)
    return action


class TestRunStrategies:
    """Tests for first-success-wins evaluation."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        calls = []

        async def second():
            calls.append("second")
            return "ok"

        async def third():
            calls.append("third")
            return "unused"

        outcome = await run_strategies([
            Strategy("first", fail("boom")),
            Strategy("second", second),
            Strategy("third", third),
        ])
        assert outcome.success is True
        assert outcome.strategy_name == "second"
        assert outcome.value == "ok"
        assert calls == ["second"]
        assert outcome.error_chain() == [("first", "boom")]

    @pytest.mark.asyncio
    async def test_all_fail(self):
        outcome = await run_strategies([
            Strategy("a", fail("one")),
            Strategy("b", fail("two")),
        ])
        assert outcome.success is False
        assert outcome.strategy_name is None
        assert str(outcome.last_error) == "two"
        assert [name for name, _ in outcome.errors] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_rejected_value_moves_on(self):
        outcome = await run_strategies([
            Strategy("empty", succeed(None), accept=lambda v: v is not None),
            Strategy("found", succeed(42), accept=lambda v: v is not None),
        ])
        assert outcome.strategy_name == "found"
        assert isinstance(outcome.errors[0][1], StrategyRejected)

    @pytest.mark.asyncio
    async def test_failure_hook_sees_each_failure(self):
        seen = []

        async def hook(strategy, error):
            seen.append((strategy.name, str(error)))

        await run_strategies(
            [Strategy("a", fail("x")), Strategy("b", succeed(1))],
            on_failure=hook,
        )
        assert seen == [("a", "x")]

    @pytest.mark.asyncio
    async def test_empty_list(self):
        outcome = await run_strategies([])
        assert outcome.success is False
        assert outcome.last_error is None
