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
Navigation failure classification.

Playwright reports navigation problems as free-form errors carrying the
Chromium network error code (``net::ERR_NAME_NOT_RESOLVED`` ...). They are
mapped here to :class:`NavigationErrorKind` values with a message and a
next-step suggestion for the caller.
"""

from __future__ import annotations

import re
from typing import Dict, List, Union

from steadybrowser.exceptions import NavigationErrorKind, NavigationFailure

_SHARED_LIBRARY = re.compile(
    r"error while loading shared libraries:\s*([^\s:]+)|([^\s:]+\.so\.[0-9]+)",
    re.IGNORECASE,
)

NAVIGATION_SUGGESTIONS: Dict[NavigationErrorKind, str] = {
    NavigationErrorKind.DNS_UNRESOLVED: "Check the URL for typos, or search for the site instead.",
    NavigationErrorKind.CONNECTION_TIMEOUT: (
        "The site may be down or slow. Wait and retry once, or find the information elsewhere."
    ),
    NavigationErrorKind.CONNECTION_REFUSED: "The host is not accepting connections. Try a different URL.",
    NavigationErrorKind.CERTIFICATE_ERROR: "The site's certificate is invalid. Use a different source.",
    NavigationErrorKind.MISSING_SYSTEM_DEPENDENCY: (
        "Install the browser's system dependencies (playwright install-deps chromium) and retry."
    ),
    NavigationErrorKind.UNCLASSIFIED: "Try a different URL or strategy.",
}

# Extra selectors waited for on pages that render their content late
LATE_RENDER_SELECTORS: Dict[str, List[str]] = {
    "docs.google.com/forms": [
        "form",
        'div[role="list"]',
        'div[role="listitem"]',
        ".freebirdFormviewerViewFormContent",
    ],
}


def classify_navigation_error(error: Union[str, BaseException]) -> NavigationFailure:
    """
    Classify a navigation error.

    Example:
        >>> failure = classify_navigation_error("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid")
        >>> failure.kind
        <NavigationErrorKind.DNS_UNRESOLVED: 'dns_unresolved'>
    """
    raw = str(error)
    lower = raw.lower()

    match = _SHARED_LIBRARY.search(raw)
    if match or "host system is missing dependencies" in lower:
        library = (match.group(1) or match.group(2)) if match else "a required library"
        return NavigationFailure(
            NavigationErrorKind.MISSING_SYSTEM_DEPENDENCY,
            f"Browser dependency missing: {library}. Install the required system library and retry.",
            raw,
        )
    if "err_name_not_resolved" in lower:
        return NavigationFailure(
            NavigationErrorKind.DNS_UNRESOLVED,
            "DNS lookup failed (host not found). The URL may be incorrect.",
            raw,
        )
    if "err_connection_timed_out" in lower or "err_timed_out" in lower or re.search(r"timeout \d+ms exceeded", lower):
        return NavigationFailure(
            NavigationErrorKind.CONNECTION_TIMEOUT,
            "Connection timed out. The site may be down or blocking automated access.",
            raw,
        )
    if "err_connection_refused" in lower:
        return NavigationFailure(
            NavigationErrorKind.CONNECTION_REFUSED,
            "Connection refused by the host.",
            raw,
        )
    if "net::err_cert" in lower or "certificate" in lower:
        return NavigationFailure(
            NavigationErrorKind.CERTIFICATE_ERROR,
            "SSL certificate error while connecting to the site.",
            raw,
        )
    return NavigationFailure(NavigationErrorKind.UNCLASSIFIED, f"Failed to navigate: {raw}", raw)


def late_render_selectors(url: str) -> List[str]:
    """Selectors to wait for on known late-rendering pages."""
    lowered = url.lower()
    selectors: List[str] = []
    for fragment, extra in LATE_RENDER_SELECTORS.items():
        if fragment in lowered:
            selectors.extend(extra)
    return selectors
