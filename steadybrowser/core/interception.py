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
Network interception: API endpoint discovery and resource blocking.

:class:`ApiInterceptor` watches XHR/fetch responses on the active page and
records the data endpoints a site talks to, so the agent can call them
directly instead of scraping rendered markup.

:class:`ResourceBlocker` installs one context-wide route handler that
aborts known tracking hosts and, while media blocking is active for the
current domain, heavy media and font requests.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page, Request, Response, Route

from steadybrowser.utils.logger import get_logger
from steadybrowser.utils.urls import domain_of

logger = get_logger("interception")

API_RESOURCE_TYPES = ("xhr", "fetch")

TRACKER_HOSTS = (
    "doubleclick.net",
    "google-analytics.com",
    "googletagmanager.com",
    "googlesyndication.com",
    "googleadservices.com",
    "connect.facebook.net",
    "hotjar.com",
    "segment.io",
    "segment.com",
    "mixpanel.com",
    "adnxs.com",
    "criteo.com",
    "scorecardresearch.com",
    "quantserve.com",
    "taboola.com",
    "outbrain.com",
)

MEDIA_RESOURCE_TYPES = ("media", "font")


@dataclass
class InterceptedApi:
    """One discovered API endpoint."""

    url: str
    method: str
    content_type: str
    status: int
    timestamp: float
    response_size: int
    is_json: bool
    domain: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def format(self) -> str:
        size = f" {round(self.response_size / 1024)}KB" if self.response_size > 0 else ""
        json_tag = " JSON" if self.is_json else ""
        mime = self.content_type.split(";")[0].strip()
        return f"{self.method} {self.url} [{self.status}{json_tag} {mime}{size}]"


class ApiInterceptor:
    """
    Collects XHR/fetch endpoints seen on a page.

    Only successful and redirect responses (200-399) are kept; entries
    are deduplicated by method and URL and capped, oldest dropped first.

    Example:
        >>> interceptor = ApiInterceptor(max_entries=50)
        >>> interceptor.enable(page)
        >>> await page.goto("https://example.com/app")
        >>> print(interceptor.format_intercepted(json_only=True))
    """

    def __init__(self, max_entries: int = 50) -> None:
        self.max_entries = max_entries
        self._entries: List[InterceptedApi] = []
        self._pages: List[Page] = []

    @property
    def enabled(self) -> bool:
        return bool(self._pages)

    def is_attached(self, page: Page) -> bool:
        return any(p is page for p in self._pages)

    def enable(self, page: Page) -> bool:
        """Start listening on ``page``. Returns False if already listening there."""
        if self.is_attached(page):
            return False
        page.on("response", self._on_response)
        self._pages.append(page)
        logger.info("API interception enabled")
        return True

    def disable(self) -> None:
        for page in self._pages:
            try:
                page.remove_listener("response", self._on_response)
            except Exception as e:
                logger.debug(f"Removing response listener failed: {e}")
        self._pages = []

    async def _on_response(self, response: Response) -> None:
        try:
            self.record(response)
        except Exception as e:
            # A listener error must never break the page
            logger.debug(f"API interception listener error: {e}")

    def record(self, response: Response) -> Optional[InterceptedApi]:
        """Record ``response`` if it looks like an API call. Returns the new entry."""
        request: Request = response.request
        if request.resource_type not in API_RESOURCE_TYPES:
            return None
        status = response.status
        if status < 200 or status >= 400:
            return None

        url = response.url
        method = request.method
        if any(e.url == url and e.method == method for e in self._entries):
            return None

        headers = response.headers
        content_type = headers.get("content-type", "")
        try:
            size = int(headers.get("content-length", "0") or 0)
        except ValueError:
            size = 0

        entry = InterceptedApi(
            url=url,
            method=method,
            content_type=content_type,
            status=status,
            timestamp=time.time(),
            response_size=size,
            is_json="json" in content_type,
            domain=(urlparse(url).hostname or ""),
        )
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            self._entries = self._entries[-self.max_entries:]
        logger.debug(f"API intercepted: {method} {url} ({content_type}, {status})")
        return entry

    def get_intercepted(self, json_only: bool = False) -> List[InterceptedApi]:
        if json_only:
            return [e for e in self._entries if e.is_json]
        return list(self._entries)

    def format_intercepted(self, json_only: bool = False) -> str:
        entries = self.get_intercepted(json_only)
        if not entries:
            return "No API endpoints intercepted yet. Navigate to a page first."
        lines = [f"{i}. {entry.format()}" for i, entry in enumerate(entries, 1)]
        return (
            f"Intercepted API Endpoints ({len(entries)}):\n"
            + "\n".join(lines)
            + "\n\nTip: call these endpoints directly over HTTP; it is much faster than browser navigation."
        )

    def clear(self) -> None:
        self._entries = []


class ResourceBlocker:
    """
    Context-wide request filter.

    Media blocking is a per-domain decision: once a domain keeps producing
    blank pages, :meth:`allow_media` turns it off there for the rest of the
    session.

    Args:
        block_trackers: Abort requests to :data:`TRACKER_HOSTS`
        block_media: Abort media/font requests by default
    """

    def __init__(self, block_trackers: bool = True, block_media: bool = True) -> None:
        self.block_trackers = block_trackers
        self.block_media = block_media
        self.current_domain = ""
        self._media_allowed: Set[str] = set()
        self.blocked_count = 0

    async def install(self, context: BrowserContext) -> None:
        if not (self.block_trackers or self.block_media):
            return
        await context.route("**/*", self._handle)
        logger.debug(
            f"Resource blocking installed (trackers={self.block_trackers}, media={self.block_media})"
        )

    def set_current_url(self, url: str) -> None:
        self.current_domain = domain_of(url)

    def allow_media(self, domain: str) -> None:
        if domain and domain not in self._media_allowed:
            logger.info(f"Media blocking disabled for {domain}")
            self._media_allowed.add(domain)

    def media_blocked_for(self, domain: str) -> bool:
        return self.block_media and domain not in self._media_allowed

    def should_block(self, url: str, resource_type: str) -> bool:
        """Decide for a single request."""
        if self.block_trackers:
            host = (urlparse(url).hostname or "").lower()
            if any(host == t or host.endswith("." + t) for t in TRACKER_HOSTS):
                return True
        if resource_type in MEDIA_RESOURCE_TYPES and self.media_blocked_for(self.current_domain):
            return True
        return False

    async def _handle(self, route: Route) -> None:
        request = route.request
        if self.should_block(request.url, request.resource_type):
            self.blocked_count += 1
            await route.abort()
        else:
            await route.continue_()
