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
Search coordination across API and browser providers.

Architecture:
    SearchCoordinator
    ├── API providers (aiohttp)
    │   ├── SerperProvider
    │   ├── BraveProvider
    │   └── SearxngProvider
    └── Browser providers (isolated ephemeral pages)
        ├── GoogleBrowserProvider
        ├── BingBrowserProvider
        └── DuckDuckGoBrowserProvider

Providers are tried in the configured order, unconfigured ones skipped;
the first provider returning results wins. Responses are cached per
normalised query for a fixed time. The cache belongs to the coordinator
instance, which belongs to one engine.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from steadybrowser.core.config import SearchConfig
from steadybrowser.core.strategies import Strategy, run_strategies
from steadybrowser.exceptions import SearchProviderError
from steadybrowser.search.base_provider import BaseSearchProvider
from steadybrowser.search.providers import (
    BingBrowserProvider,
    BraveProvider,
    DuckDuckGoBrowserProvider,
    GoogleBrowserProvider,
    PageFactory,
    SearxngProvider,
    SerperProvider,
)
from steadybrowser.search.types import SearchResponse
from steadybrowser.utils.logger import get_logger

logger = get_logger("search")


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


class SearchCoordinator:
    """
    Runs a query through providers in order, with a TTL cache.

    Args:
        providers: Providers in preference order
        cache_ttl_seconds: How long a response stays cached
        max_results: Results requested from each provider
        max_cache_entries: Cached responses kept; oldest are evicted first
        clock: Time source in seconds

    Example:
        >>> coordinator = SearchCoordinator.from_config(SearchConfig(), session.ephemeral_page)
        >>> response = await coordinator.search("python asyncio tutorial")
        >>> print(response.format())
    """

    def __init__(
        self,
        providers: Sequence[BaseSearchProvider],
        cache_ttl_seconds: float = 300.0,
        max_results: int = 8,
        max_cache_entries: int = 128,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.providers = list(providers)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_results = max_results
        self.max_cache_entries = max(1, max_cache_entries)
        self._clock = clock
        self._cache: Dict[str, Tuple[float, SearchResponse]] = {}

    @classmethod
    def from_config(cls, config: SearchConfig, page_factory: Optional[PageFactory] = None) -> "SearchCoordinator":
        """Build providers named in ``config.providers`` in that order."""
        timeout = config.timeout_seconds
        available = {
            "serper": lambda: SerperProvider(api_key=config.serper_api_key, timeout_seconds=timeout),
            "brave": lambda: BraveProvider(api_key=config.brave_api_key, timeout_seconds=timeout),
            "searxng": lambda: SearxngProvider(base_url=config.searxng_url, timeout_seconds=timeout),
            "google": lambda: GoogleBrowserProvider(page_factory, timeout_seconds=timeout),
            "bing": lambda: BingBrowserProvider(page_factory, timeout_seconds=timeout),
            "duckduckgo": lambda: DuckDuckGoBrowserProvider(page_factory, timeout_seconds=timeout),
        }
        providers = []
        for name in config.providers:
            factory = available.get(name.lower())
            if factory is None:
                logger.warning(f"Unknown search provider '{name}' ignored")
                continue
            providers.append(factory())
        return cls(providers, cache_ttl_seconds=config.cache_ttl_seconds, max_results=config.max_results)

    @property
    def configured_providers(self) -> List[BaseSearchProvider]:
        return [p for p in self.providers if p.is_configured()]

    def clear_cache(self) -> None:
        self._cache.clear()

    def _cached(self, key: str) -> Optional[SearchResponse]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, response = entry
        if self._clock() - stored_at >= self.cache_ttl_seconds:
            del self._cache[key]
            return None
        return replace(response, cached=True)

    def _store(self, key: str, response: SearchResponse) -> None:
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl_seconds]
        for k in expired:
            del self._cache[k]
        self._cache.pop(key, None)
        self._cache[key] = (now, response)
        while len(self._cache) > self.max_cache_entries:
            del self._cache[next(iter(self._cache))]

    async def search(self, query: str) -> SearchResponse:
        """
        Search with provider fallback.

        Raises:
            SearchProviderError: Every configured provider failed (error
                code ``ALL_FAILED``) or none is configured
        """
        key = normalize_query(query)
        cached = self._cached(key)
        if cached is not None:
            logger.debug(f"Search cache hit for {key!r}")
            return cached

        providers = self.configured_providers
        if not providers:
            raise SearchProviderError(
                "No search provider is configured", provider="coordinator", error_code="NO_PROVIDERS", recoverable=False
            )

        async def log_failure(strategy: Strategy, error: BaseException) -> None:
            logger.warning(f"Search provider '{strategy.name}' failed, trying next: {error}")

        outcome = await run_strategies(
            [Strategy(p.provider_name, self._bind(p, query)) for p in providers],
            on_failure=log_failure,
        )
        if not outcome.success:
            chain = "; ".join(f"{name}: {error}" for name, error in outcome.error_chain())
            raise SearchProviderError(
                f"All search providers failed ({chain})",
                provider="coordinator",
                error_code="ALL_FAILED",
                recoverable=True,
            )

        response: SearchResponse = outcome.value
        self._store(key, response)
        logger.info(f"Search for {key!r} answered by {response.provider} ({response.result_count} results)")
        return response

    def _bind(self, provider: BaseSearchProvider, query: str):
        return lambda: provider.search(query, self.max_results)
