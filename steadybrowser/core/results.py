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
Typed operation results.

Every public engine operation returns an :class:`OperationResult`. The
calling agent reads the rendered prose (``str(result)``); the engine itself
only ever inspects ``status`` and ``error_kind``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultStatus(str, Enum):
    """Outcome of an engine operation."""

    OK = "ok"              # Work done
    ERROR = "error"        # Work attempted and failed
    REFUSED = "refused"    # Short-circuited before any engine call


class ErrorKind(str, Enum):
    """Failure and advisory kinds surfaced to callers."""

    LAUNCH_FAILURE = "launch_failure"
    DNS_UNRESOLVED = "dns_unresolved"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_REFUSED = "connection_refused"
    CERTIFICATE_ERROR = "certificate_error"
    MISSING_SYSTEM_DEPENDENCY = "missing_system_dependency"
    NAVIGATION_UNCLASSIFIED = "navigation_unclassified"
    LOOP_DETECTED = "loop_detected"
    CIRCUIT_OPEN = "circuit_open"
    BLANK_PAGE_SUSPECTED = "blank_page_suspected"
    BLANK_DOMAIN_BLOCKED = "blank_domain_blocked"
    ELEMENT_STALE = "element_stale"
    ELEMENT_NOT_INTERACTABLE = "element_not_interactable"
    ACTION_TIMEOUT = "action_timeout"
    CAPTCHA_DETECTED = "captcha_detected"
    VISION_UNAVAILABLE = "vision_unavailable"
    SEARCH_FAILED = "search_failed"
    INVALID_ARGUMENT = "invalid_argument"
    OPERATION_FAILED = "operation_failed"


@dataclass
class Advisory:
    """Non-fatal warning attached to an otherwise successful result."""

    kind: ErrorKind
    message: str

    def render(self) -> str:
        return f"[WARNING: {self.message}]"


@dataclass
class OperationResult:
    """
    Result of a public engine operation.

    Attributes:
        status: OK, ERROR or REFUSED
        message: Main human-readable text
        error_kind: Classified cause when status is not OK
        suggestion: Actionable next step for the caller
        warnings: Advisories rendered after the message
        data: Structured payload for programmatic callers

    Example:
        >>> result = OperationResult.refused(
        ...     ErrorKind.CIRCUIT_OPEN,
        ...     "Circuit breaker open for click on #submit.",
        ...     suggestion="Wait a moment or try a different approach.",
        ... )
        >>> print(result)
        Error: Circuit breaker open for click on #submit.
        <BLANKLINE>
        Suggestion: Wait a moment or try a different approach.
    """

    status: ResultStatus
    message: str
    error_kind: Optional[ErrorKind] = None
    suggestion: Optional[str] = None
    warnings: List[Advisory] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "OperationResult":
        return cls(status=ResultStatus.OK, message=message, data=data)

    @classmethod
    def error(
        cls,
        kind: ErrorKind,
        message: str,
        suggestion: Optional[str] = None,
        **data: Any,
    ) -> "OperationResult":
        return cls(
            status=ResultStatus.ERROR,
            message=message,
            error_kind=kind,
            suggestion=suggestion,
            data=data,
        )

    @classmethod
    def refused(
        cls,
        kind: ErrorKind,
        message: str,
        suggestion: Optional[str] = None,
        **data: Any,
    ) -> "OperationResult":
        return cls(
            status=ResultStatus.REFUSED,
            message=message,
            error_kind=kind,
            suggestion=suggestion,
            data=data,
        )

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.OK

    def warn(self, kind: ErrorKind, message: str) -> "OperationResult":
        """Attach an advisory and return self for chaining."""
        self.warnings.append(Advisory(kind=kind, message=message))
        return self

    def has_warning(self, kind: ErrorKind) -> bool:
        return any(w.kind == kind for w in self.warnings)

    def render(self) -> str:
        """Render the human-readable report consumed by the agent layer."""
        if self.success:
            text = self.message
        else:
            text = f"Error: {self.message}"
        if self.warnings:
            text += "\n" + "\n".join(w.render() for w in self.warnings)
        if self.suggestion and not self.success:
            text += f"\n\nSuggestion: {self.suggestion}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "suggestion": self.suggestion,
            "warnings": [{"kind": w.kind.value, "message": w.message} for w in self.warnings],
            "data": self.data,
        }

    def __str__(self) -> str:
        return self.render()
