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
Ordered fallback strategies.

Launch rungs, click/type escalation and search providers are all ordered
lists of :class:`Strategy` objects evaluated by :func:`run_strategies`:
the first strategy that does not raise wins. Adding or removing a
fallback is a change to the list, not to control flow.

Example:
    >>> outcome = await run_strategies([
    ...     Strategy("standard", lambda: locator.click(timeout=5000)),
    ...     Strategy("force", lambda: locator.click(force=True, timeout=3000)),
    ... ])
    >>> outcome.strategy_name
    'standard'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from steadybrowser.utils.logger import get_logger

logger = get_logger("strategies")

StrategyAction = Callable[[], Awaitable[Any]]
FailureHook = Callable[["Strategy", BaseException], Awaitable[None]]


@dataclass
class Strategy:
    """A named fallback rung.

    Attributes:
        name: Short label used in logs and failure chains
        action: Zero-argument coroutine factory performing the attempt
        accept: Optional predicate on the returned value; a falsy verdict
            counts as a failure and moves on to the next strategy
    """

    name: str
    action: StrategyAction
    accept: Optional[Callable[[Any], bool]] = None


@dataclass
class StrategyOutcome:
    """Result of running a strategy list."""

    success: bool
    strategy_name: Optional[str] = None
    value: Any = None
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.errors[-1][1] if self.errors else None

    def error_chain(self) -> List[Tuple[str, str]]:
        """``(strategy name, error text)`` pairs for reporting."""
        return [(name, str(err)) for name, err in self.errors]


class StrategyRejected(Exception):
    """Raised internally when a strategy's value fails its ``accept`` check."""


async def run_strategies(
    strategies: List[Strategy],
    on_failure: Optional[FailureHook] = None,
) -> StrategyOutcome:
    """
    Try each strategy in order until one succeeds.

    Args:
        strategies: Ordered fallback list
        on_failure: Optional coroutine called with the failed strategy and
            its error before the next one is tried (error classification,
            cleanup between launch rungs ...)

    Returns:
        StrategyOutcome describing the winner or the full error chain
    """
    outcome = StrategyOutcome(success=False)
    for strategy in strategies:
        try:
            value = await strategy.action()
            if strategy.accept is not None and not strategy.accept(value):
                raise StrategyRejected(f"{strategy.name} result rejected: {value!r}")
        except Exception as e:
            logger.debug(f"Strategy '{strategy.name}' failed: {e}")
            outcome.errors.append((strategy.name, e))
            if on_failure is not None:
                await on_failure(strategy, e)
            continue
        outcome.success = True
        outcome.strategy_name = strategy.name
        outcome.value = value
        return outcome
    return outcome
