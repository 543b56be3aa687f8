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
Abstract base class for search providers.

Providers come in two flavours: plain HTTP APIs (Serper, Brave, SearxNG)
and browser providers that scrape a results page in an isolated page.
Both raise :class:`~steadybrowser.exceptions.SearchProviderError` on
failure so the coordinator can move on to the next provider.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from steadybrowser.exceptions import SearchProviderError
from steadybrowser.search.types import SearchResponse, SearchResult, clean_snippet
from steadybrowser.utils.logger import get_logger

logger = get_logger("search")


class BaseSearchProvider(ABC):
    """
    Base class for search providers.

    Subclasses implement :meth:`_execute_search`; :meth:`search` adds the
    configuration check, timing and error normalisation.

    Example:
        >>> class MyProvider(BaseSearchProvider):
        ...     provider_name = "mine"
        ...     async def _execute_search(self, query, max_results):
        ...         return [SearchResult("t", "https://example.com")]
    """

    # Must be overridden by subclasses
    provider_name: str = "base"

    def __init__(self, api_key: Optional[str] = None, timeout_seconds: float = 15.0) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def is_configured(self) -> bool:
        """True if the provider has what it needs (an API key by default)."""
        return bool(self.api_key)

    @abstractmethod
    async def _execute_search(self, query: str, max_results: int) -> List[SearchResult]:
        """Run the query and return parsed results."""

    async def search(self, query: str, max_results: int = 8) -> SearchResponse:
        """
        Perform a search query.

        Raises:
            SearchProviderError: Not configured, transport failure or no results
        """
        if not self.is_configured():
            raise SearchProviderError(
                f"{self.provider_name} is not configured",
                provider=self.provider_name,
                error_code="NOT_CONFIGURED",
                recoverable=True,
            )

        start = time.time()
        try:
            results = await self._execute_search(query, max_results)
        except SearchProviderError:
            raise
        except Exception as e:
            raise SearchProviderError(
                f"Search failed: {e}",
                provider=self.provider_name,
                error_code="SEARCH_ERROR",
                recoverable=True,
            ) from e

        if not results:
            raise SearchProviderError(
                f"No results from {self.provider_name}",
                provider=self.provider_name,
                error_code="NO_RESULTS",
                recoverable=True,
            )

        for position, result in enumerate(results[:max_results], 1):
            result.position = position
            result.source = self.provider_name
        latency_ms = (time.time() - start) * 1000
        logger.debug(f"{self.provider_name}: {len(results)} results in {latency_ms:.0f}ms")
        return SearchResponse(
            query=query,
            results=results[:max_results],
            provider=self.provider_name,
            search_time_ms=latency_ms,
        )

    def _http_error(self, status: int, body: str) -> SearchProviderError:
        if status in (401, 403):
            return SearchProviderError(
                "Invalid API key", provider=self.provider_name, error_code="INVALID_API_KEY", recoverable=False
            )
        if status == 429:
            return SearchProviderError(
                "Rate limit exceeded", provider=self.provider_name, error_code="RATE_LIMITED", recoverable=True
            )
        return SearchProviderError(
            f"API error {status}: {body[:200]}",
            provider=self.provider_name,
            error_code=f"HTTP_{status}",
            recoverable=status >= 500,
        )

    @staticmethod
    def _results_from(items: List[Dict[str, Any]], title: str, url: str, snippet: str) -> List[SearchResult]:
        """Map raw JSON items to results using the given key names."""
        results = []
        for item in items:
            if not isinstance(item, dict) or not item.get(url):
                continue
            results.append(
                SearchResult(
                    title=clean_snippet(item.get(title), 200) or item[url],
                    url=item[url],
                    snippet=clean_snippet(item.get(snippet)),
                )
            )
        return results

    def __repr__(self) -> str:
        configured = "configured" if self.is_configured() else "not configured"
        return f"{self.__class__.__name__}({self.provider_name}, {configured})"
