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
Exception hierarchy for SteadyBrowser.

Public engine operations report recoverable conditions as
:class:`~steadybrowser.core.results.OperationResult` values. The exceptions
below are raised by the internal components and converted at the engine
boundary. :class:`LaunchFailure` is the only one that escapes to callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SteadyBrowserError(Exception):
    """Base class for all SteadyBrowser errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logs and diagnostics."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SteadyBrowserError):
    """Raised when configuration cannot be loaded or is invalid."""


class SessionError(SteadyBrowserError):
    """Raised when the session is used in a state that does not allow it."""


class LaunchFailure(SessionError):
    """
    Raised when every rung of the launch ladder failed.

    Attributes:
        attempts: ``(rung name, error text)`` pairs in the order tried
    """

    def __init__(self, attempts: List[Tuple[str, str]]) -> None:
        self.attempts = list(attempts)
        chain = "\n".join(f"  [{rung}] {error}" for rung, error in self.attempts)
        super().__init__(
            f"Browser launch failed after {len(self.attempts)} attempt(s):\n{chain}",
            details={"attempts": [{"rung": r, "error": e} for r, e in self.attempts]},
        )


class NavigationErrorKind(str, Enum):
    """Classified navigation failure causes."""

    DNS_UNRESOLVED = "dns_unresolved"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_REFUSED = "connection_refused"
    CERTIFICATE_ERROR = "certificate_error"
    MISSING_SYSTEM_DEPENDENCY = "missing_system_dependency"
    UNCLASSIFIED = "unclassified"


class NavigationFailure(SteadyBrowserError):
    """Raised when a navigation fails with a classified cause."""

    def __init__(self, kind: NavigationErrorKind, message: str, raw: str = "") -> None:
        super().__init__(message, details={"kind": kind.value, "raw": raw})
        self.kind = kind
        self.raw = raw


class InteractionErrorKind(str, Enum):
    """Classified interaction failure causes."""

    ELEMENT_STALE = "element_stale"
    ELEMENT_NOT_INTERACTABLE = "element_not_interactable"
    ACTION_TIMEOUT = "action_timeout"


class InteractionFailure(SteadyBrowserError):
    """Raised when every interaction strategy failed."""

    def __init__(
        self,
        kind: InteractionErrorKind,
        message: str,
        suggestion: str = "",
    ) -> None:
        super().__init__(message, details={"kind": kind.value, "suggestion": suggestion})
        self.kind = kind
        self.suggestion = suggestion


class StaleReferenceError(SteadyBrowserError):
    """Raised when an element reference cannot be re-attached after a re-render."""

    def __init__(self, ref: int, available: int = 0) -> None:
        super().__init__(
            f"Element reference {ref} is stale (page has {available} referenceable elements now)",
            details={"ref": ref, "available": available},
        )
        self.ref = ref
        self.available = available


class VisionUnavailableError(SteadyBrowserError):
    """Raised when a vision lookup is requested without a vision analyzer."""


class SearchProviderError(SteadyBrowserError):
    """
    Raised by a search provider.

    Attributes:
        provider: Provider name
        error_code: Short machine-readable code (NOT_CONFIGURED, HTTP_500 ...)
        recoverable: Whether the next provider should be tried
    """

    def __init__(
        self,
        message: str,
        provider: str = "",
        error_code: str = "",
        recoverable: bool = True,
    ) -> None:
        super().__init__(
            message,
            details={"provider": provider, "error_code": error_code, "recoverable": recoverable},
        )
        self.provider = provider
        self.error_code = error_code
        self.recoverable = recoverable
