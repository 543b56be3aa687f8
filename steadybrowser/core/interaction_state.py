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
Navigation and interaction history with loop detection and circuit breakers.

The :class:`InteractionState` is consulted by every public navigation and
interaction entry point *before* any rendering-engine call. It keeps:

- bounded ring buffers of navigation and interaction records
- consecutive-failure counters per target key
- circuit breakers that open at a failure threshold and half-open after a
  reset window
- per-domain consecutive blank-page counters

Keys:
    ``nav:<url>`` for navigations and
    ``action:<kind>:<selector|none>:<url>`` for interactions.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from steadybrowser.core.config import ThresholdConfig
from steadybrowser.utils.logger import get_logger

logger = get_logger("state")

Clock = Callable[[], float]


@dataclass
class NavigationRecord:
    """One navigation attempt."""

    url: str
    timestamp_ms: float
    action: str
    success: bool
    error: Optional[str] = None


@dataclass
class InteractionRecord:
    """One interaction attempt (click, type, select ...)."""

    action: str
    selector: Optional[str]
    timestamp_ms: float
    url: str
    success: bool
    error: Optional[str] = None


@dataclass
class CircuitBreakerEntry:
    """Failure count for a key and, once tripped, when it opened."""

    failures: int = 0
    opened_at_ms: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at_ms is not None


def navigation_key(url: str) -> str:
    return f"nav:{url}"


def action_key(action: str, url: str, selector: Optional[str] = None) -> str:
    return f"action:{action}:{selector or 'none'}:{url}"


def _elapsed_label(current: float, previous: Optional[float]) -> str:
    if previous is None:
        return "0s"
    return f"+{round((current - previous) / 1000)}s"


class InteractionState:
    """
    Loop detector, circuit breaker and blank-page bookkeeping for one session.

    Args:
        thresholds: Threshold configuration
        clock: Time source returning seconds; injectable for tests

    Example:
        >>> state = InteractionState(ThresholdConfig())
        >>> state.record_navigation("https://example.com", "navigate", True)
        >>> state.detect_navigation_loop("https://example.com")
        False
    """

    def __init__(
        self,
        thresholds: Optional[ThresholdConfig] = None,
        clock: Clock = time.time,
    ) -> None:
        self.thresholds = thresholds or ThresholdConfig()
        self._clock = clock
        self._navigations: Deque[NavigationRecord] = deque(maxlen=self.thresholds.nav_history_size)
        self._actions: Deque[InteractionRecord] = deque(maxlen=self.thresholds.action_history_size)
        self._circuits: Dict[str, CircuitBreakerEntry] = {}
        self._blank_domains: Dict[str, int] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_navigation(
        self,
        url: str,
        action: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Append a navigation record and update its failure counter."""
        self._navigations.append(
            NavigationRecord(url=url, timestamp_ms=self._now_ms(), action=action,
                             success=success, error=error)
        )
        self._update_circuit(navigation_key(url), success, self.thresholds.circuit_threshold)
        logger.debug(f"Navigation recorded: {action} -> {url} ({'success' if success else 'failed'})")

    def record_action(
        self,
        action: str,
        url: str,
        selector: Optional[str],
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Append an interaction record and update its failure counter."""
        self._actions.append(
            InteractionRecord(action=action, selector=selector, timestamp_ms=self._now_ms(),
                              url=url, success=success, error=error)
        )
        self._update_circuit(
            action_key(action, url, selector),
            success,
            self.thresholds.action_circuit_threshold,
        )
        logger.debug(
            f"Action recorded: {action} on {selector or 'N/A'} at {url} "
            f"({'success' if success else 'failed'})"
        )

    def _update_circuit(self, key: str, success: bool, threshold: int) -> None:
        if success:
            self._circuits.pop(key, None)
            return
        entry = self._circuits.setdefault(key, CircuitBreakerEntry())
        entry.failures += 1
        if entry.failures >= threshold and not entry.is_open:
            entry.opened_at_ms = self._now_ms()
            logger.warning(f"Circuit breaker opened for: {key} ({entry.failures} failures)")

    # ------------------------------------------------------------------
    # Circuit breakers
    # ------------------------------------------------------------------

    def _check_key(self, key: str) -> bool:
        entry = self._circuits.get(key)
        if entry is None or not entry.is_open:
            return False
        if self._now_ms() - entry.opened_at_ms < self.thresholds.circuit_reset_ms:
            return True
        # Half-open: the next attempt runs with a clean counter
        del self._circuits[key]
        logger.info(f"Circuit breaker reset for: {key}")
        return False

    def is_circuit_open(self, action: str, url: str, selector: Optional[str] = None) -> bool:
        """
        Check the navigation circuit for ``url`` and, for interactions, the
        ``(action, selector, url)`` circuit.

        A circuit whose reset window has elapsed is cleared by this call.
        """
        nav_open = self._check_key(navigation_key(url))
        if action == "navigate":
            return nav_open
        action_open = self._check_key(action_key(action, url, selector))
        return nav_open or action_open

    def failure_count(self, key: str) -> int:
        entry = self._circuits.get(key)
        return entry.failures if entry else 0

    def open_circuits(self) -> List[str]:
        return [k for k, v in self._circuits.items() if v.is_open]

    # ------------------------------------------------------------------
    # Loop detection
    # ------------------------------------------------------------------

    def detect_navigation_loop(self, url: str, window_ms: Optional[int] = None) -> bool:
        """True once ``loop_threshold`` navigations to ``url`` fall inside the window."""
        window = self.thresholds.nav_loop_window_ms if window_ms is None else window_ms
        now = self._now_ms()
        count = sum(1 for n in self._navigations if n.url == url and now - n.timestamp_ms < window)
        if count >= self.thresholds.loop_threshold:
            logger.warning(f"Navigation loop detected for {url}: {count} visits in {window}ms")
            return True
        return False

    def detect_action_loop(
        self,
        action: str,
        selector: Optional[str],
        window_ms: Optional[int] = None,
    ) -> bool:
        """True once ``loop_threshold`` identical actions fall inside the window."""
        window = self.thresholds.action_loop_window_ms if window_ms is None else window_ms
        now = self._now_ms()
        count = sum(
            1 for a in self._actions
            if a.action == action and a.selector == selector and now - a.timestamp_ms < window
        )
        if count >= self.thresholds.loop_threshold:
            logger.warning(
                f"Action loop detected: {action} on {selector or 'N/A'}: {count} times in {window}ms"
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Blank-page counters
    # ------------------------------------------------------------------

    def record_blank(self, domain: str) -> int:
        """Increment the consecutive blank count for ``domain``."""
        count = self._blank_domains.get(domain, 0) + 1
        self._blank_domains[domain] = count
        logger.warning(f"Domain {domain} returned blank page (count: {count})")
        return count

    def clear_blank(self, domain: str) -> None:
        self._blank_domains.pop(domain, None)

    def blank_count(self, domain: str) -> int:
        return self._blank_domains.get(domain, 0)

    def is_blank_blocked(self, domain: str) -> bool:
        return self.blank_count(domain) >= self.thresholds.blank_domain_threshold

    def reset_blank_history(self, domain: Optional[str] = None) -> List[str]:
        """Clear one domain's blank counter, or all of them. Returns the cleared domains."""
        if domain is None:
            cleared = list(self._blank_domains)
            self._blank_domains.clear()
            return cleared
        if domain.startswith("www."):
            domain = domain[4:]
        if self._blank_domains.pop(domain, None) is None:
            return []
        return [domain]

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    @property
    def navigations(self) -> List[NavigationRecord]:
        return list(self._navigations)

    @property
    def actions(self) -> List[InteractionRecord]:
        return list(self._actions)

    def get_navigation_summary(self, limit: int = 10) -> str:
        recent = list(self._navigations)[-limit:]
        if not recent:
            return "No navigation history"
        lines = []
        previous = None
        for n in recent:
            status = "OK" if n.success else "FAIL"
            error = f" ({n.error})" if n.error else ""
            lines.append(f"{status} {_elapsed_label(n.timestamp_ms, previous)} {n.action} -> {n.url}{error}")
            previous = n.timestamp_ms
        return f"Recent navigation ({len(recent)}):\n" + "\n".join(lines)

    def get_action_summary(self, limit: int = 15) -> str:
        recent = list(self._actions)[-limit:]
        if not recent:
            return "No actions recorded"
        lines = []
        previous = None
        for a in recent:
            status = "OK" if a.success else "FAIL"
            selector = f" [{a.selector}]" if a.selector else ""
            error = f" ({a.error})" if a.error else ""
            lines.append(f"{status} {_elapsed_label(a.timestamp_ms, previous)} {a.action}{selector}{error}")
            previous = a.timestamp_ms
        return f"Recent actions ({len(recent)}):\n" + "\n".join(lines)

    def get_state_summary(self) -> str:
        """Summary for the agent's context window."""
        text = (
            "Browser State Summary:\n"
            f"{self.get_navigation_summary(5)}\n\n"
            f"{self.get_action_summary(10)}"
        )
        circuits = self.open_circuits()
        if circuits:
            text += f"\nCircuit breakers open: {', '.join(circuits)}"
        if self._blank_domains:
            blanks = ", ".join(f"{d} ({c})" for d, c in self._blank_domains.items())
            text += f"\nBlank-page domains: {blanks}"
        return text

    def get_diagnostics(self) -> Dict[str, Any]:
        return {
            "navigation_count": len(self._navigations),
            "action_count": len(self._actions),
            "failure_keys": list(self._circuits),
            "open_circuits": self.open_circuits(),
            "blank_domains": dict(self._blank_domains),
        }

    def reset(self) -> None:
        """Forget all history, counters and open circuits."""
        self._navigations.clear()
        self._actions.clear()
        self._circuits.clear()
        self._blank_domains.clear()
        logger.info("Interaction state reset")
