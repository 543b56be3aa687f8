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
Start/end logging for the actions the engine performs on a page.

Each record carries ``action``, ``target`` and, once finished, ``strategy``
and ``duration_ms`` as structured fields, so the JSON format exposes them
under ``extra``. Colour codes are only added to the message when the
package logger renders through a colouring :class:`HumanFormatter`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from steadybrowser.utils.logger import ROOT_LOGGER_NAME, HumanFormatter, get_logger

logger = get_logger("actions")


def colours_enabled() -> bool:
    """True when the package logger's handlers render colour."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = root.handlers
    if not handlers:
        return False
    return all(
        isinstance(h.formatter, HumanFormatter) and h.formatter.use_colors for h in handlers
    )


class BrowserActionLogger:
    """
    Consistent start/end logging for a single browser action.

    Example:
        >>> action_log = BrowserActionLogger()
        >>> action_log.start_action("CLICK", "ref=12")
        >>> action_log.log_step("standard failed: element intercepted")
        >>> action_log.end_action(True, strategy="force")
    """

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    BROWSER = "\033[38;5;75m"
    SUCCESS = "\033[38;5;82m"
    ERROR = "\033[38;5;196m"
    WARNING = "\033[38;5;220m"

    def __init__(self) -> None:
        self._started: Optional[float] = None
        self._action: Optional[str] = None
        self._target: Optional[str] = None

    def _paint(self, text: str, *codes: str) -> str:
        if not colours_enabled():
            return text
        return f"{''.join(codes)}{text}{self.RESET}"

    def _fields(self, **extra: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"action": self._action, "target": self._target, **extra}
        return {k: v for k, v in fields.items() if v is not None}

    def start_action(self, action_type: str, target: str) -> float:
        """
        Log the start of a browser action.

        Args:
            action_type: CLICK, TYPE, NAVIGATE ...
            target: Ref, selector, URL or coordinates being acted on

        Returns:
            Start time for calculating duration
        """
        self._started = time.monotonic()
        self._action = action_type
        self._target = target
        logger.info(
            f"{self._paint(f'> [BROWSER {action_type}]', self.BROWSER, self.BOLD)} "
            f"{self._paint(target, self.BROWSER)}",
            extra=self._fields(),
        )
        return self._started

    def end_action(
        self,
        success: bool,
        details: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> float:
        """
        Log the end of a browser action.

        Args:
            success: Whether the action succeeded
            details: Error summary or other detail
            strategy: Name of the strategy that won

        Returns:
            Duration of the action in milliseconds
        """
        duration_ms = 0.0
        if self._started is not None:
            duration_ms = (time.monotonic() - self._started) * 1000

        status = self._paint("[OK]" if success else "[FAIL]", self.SUCCESS if success else self.ERROR)
        suffix = ""
        if strategy:
            suffix += f" via {strategy}"
        if details:
            suffix += f" -> {details}"

        label = self._paint(f"[BROWSER {self._action}]" if self._action else "[BROWSER]", self.BROWSER)
        timing = self._paint(f"{duration_ms:.0f}ms", self.DIM)

        log_fn = logger.info if success else logger.warning
        log_fn(
            f"{status} {label} {timing}{suffix}",
            extra=self._fields(
                success=success,
                strategy=strategy,
                duration_ms=round(duration_ms, 1),
            ),
        )

        self._started = None
        self._action = None
        self._target = None
        return duration_ms

    def log_step(self, message: str) -> None:
        """Log an intermediate step within an action."""
        logger.info(f"  {self._paint('|-', self.BROWSER)} {message}", extra=self._fields())

    def log_retry(self, attempt: int, reason: str) -> None:
        """Log a retry attempt."""
        logger.info(
            f"  {self._paint(f'[RETRY {attempt}]', self.WARNING)} {reason}",
            extra=self._fields(attempt=attempt),
        )
