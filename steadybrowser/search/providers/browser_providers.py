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
Browser-based search providers.

Each query opens an isolated, ephemeral page through the supplied page
factory (normally :meth:`SessionManager.ephemeral_page`), so searching
never moves the agent's active page or clears its element references.
The page is closed when the factory's context exits, whatever happens.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Callable, List, Optional, Sequence
from urllib.parse import quote_plus

from playwright.async_api import Page

from steadybrowser.exceptions import SearchProviderError
from steadybrowser.search.base_provider import BaseSearchProvider
from steadybrowser.search.types import SearchResult, clean_snippet
from steadybrowser.utils.logger import get_logger

logger = get_logger("search")

PageFactory = Callable[[], AsyncContextManager[Page]]

GOOGLE_RESULTS_SCRIPT = """
(limit) => {
    let items = Array.from(document.querySelectorAll('div.g'));
    if (items.length === 0) {
        items = Array.from(document.querySelectorAll('[data-hveid] [data-ved]'))
            .filter((el) => el.querySelector('a[href^="http"]') && el.querySelector('h3'));
    }
    if (items.length === 0) {
        items = Array.from(document.querySelectorAll('div')).filter((el) => {
            return el.querySelector('h3') && el.querySelector('a[href^="http"]') && !el.closest('[role="navigation"]');
        });
    }
    const seen = new Set();
    const out = [];
    for (const item of items) {
        const h3 = item.querySelector('h3');
        const link = item.querySelector('a[href^="http"]');
        if (!h3 || !link || seen.has(link.href)) continue;
        seen.add(link.href);
        const snippetEl = item.querySelector('div.VwiC3b') || item.querySelector('[data-sncf]');
        out.push({ title: h3.textContent || '', url: link.href, snippet: snippetEl ? snippetEl.innerText : '' });
        if (out.length >= limit) break;
    }
    return out;
}
"""

BING_RESULTS_SCRIPT = """
(limit) => {
    let items = Array.from(document.querySelectorAll('li.b_algo'));
    if (items.length === 0) {
        items = Array.from(document.querySelectorAll('.b_results > li'))
            .filter((el) => el.querySelector('h2') && el.querySelector('a[href^="http"]'));
    }
    return items.slice(0, limit).map((item) => {
        const nested = item.querySelector('a h2');
        const link = item.querySelector('h2 a') || (nested ? nested.closest('a') : null);
        const snippetEl = item.querySelector('div.b_caption p') || item.querySelector('.b_caption') || item.querySelector('p');
        return link ? { title: link.textContent || '', url: link.href, snippet: snippetEl ? snippetEl.innerText : '' } : null;
    }).filter(Boolean);
}
"""

DUCKDUCKGO_RESULTS_SCRIPT = """
(limit) => {
    const items = Array.from(document.querySelectorAll('.result, .result__body'));
    if (items.length > 0) {
        return items.map((item) => {
            const link = item.querySelector('.result__title a, .result__a, a.result-link');
            if (!link) return null;
            const snippetEl = item.querySelector('.result__snippet');
            return { title: link.innerText || link.textContent || '', url: link.href, snippet: snippetEl ? snippetEl.innerText : '' };
        }).filter(Boolean).slice(0, limit);
    }
    // Lite layout: plain result links in a table
    return Array.from(document.querySelectorAll('a[href^="http"]'))
        .filter((a) => !a.href.includes('duckduckgo.com') && !a.href.includes('duck.co')
            && (a.textContent || '').trim().length > 10)
        .slice(0, limit)
        .map((a) => ({ title: a.textContent.trim(), url: a.href, snippet: '' }));
}
"""


class BrowserSearchProvider(BaseSearchProvider):
    """
    Scrapes a search engine results page.

    Subclasses set :attr:`results_script` and implement :meth:`result_urls`;
    several URLs are tried in order when a provider has alternate layouts.
    """

    results_script: str = ""
    blocked_markers: Sequence[str] = ()

    def __init__(
        self,
        page_factory: Optional[PageFactory] = None,
        timeout_seconds: float = 15.0,
        network_idle_ms: int = 5000,
    ) -> None:
        super().__init__(api_key=None, timeout_seconds=timeout_seconds)
        self.page_factory = page_factory
        self.network_idle_ms = network_idle_ms

    def is_configured(self) -> bool:
        return self.page_factory is not None

    def result_urls(self, query: str) -> List[str]:
        raise NotImplementedError

    async def _execute_search(self, query: str, max_results: int) -> List[SearchResult]:
        assert self.page_factory is not None
        last_error: Optional[BaseException] = None
        for url in self.result_urls(query):
            try:
                async with self.page_factory() as page:
                    raw = await self._scrape(page, url, max_results)
            except SearchProviderError:
                raise
            except Exception as e:
                last_error = e
                logger.debug(f"{self.provider_name} search failed for {url}: {e}")
                continue
            results = [
                SearchResult(title=clean_snippet(item.get("title"), 200), url=item["url"], snippet=clean_snippet(item.get("snippet")))
                for item in raw
                if isinstance(item, dict) and item.get("url") and item.get("title")
            ]
            if results:
                return results
        if last_error is not None:
            raise last_error
        return []

    async def _scrape(self, page: Page, url: str, max_results: int) -> List[Any]:
        await page.goto(url, wait_until="load", timeout=int(self.timeout_seconds * 1000))
        try:
            await page.wait_for_load_state("networkidle", timeout=self.network_idle_ms)
        except Exception as e:
            logger.debug(f"{self.provider_name}: network idle wait ended: {e}")
        if self.blocked_markers:
            content = (await page.content()).lower()
            if any(marker in content for marker in self.blocked_markers):
                raise SearchProviderError(
                    f"{self.provider_name} blocked the request with a CAPTCHA",
                    provider=self.provider_name,
                    error_code="CAPTCHA",
                    recoverable=True,
                )
        return await page.evaluate(self.results_script, max_results) or []


class GoogleBrowserProvider(BrowserSearchProvider):
    """Google results page."""

    provider_name = "google"
    results_script = GOOGLE_RESULTS_SCRIPT
    blocked_markers = ("recaptcha", "unusual traffic")

    def result_urls(self, query: str) -> List[str]:
        return [f"https://www.google.com/search?q={quote_plus(query)}"]


class BingBrowserProvider(BrowserSearchProvider):
    """Bing results page."""

    provider_name = "bing"
    results_script = BING_RESULTS_SCRIPT

    def result_urls(self, query: str) -> List[str]:
        return [f"https://www.bing.com/search?q={quote_plus(query)}"]


class DuckDuckGoBrowserProvider(BrowserSearchProvider):
    """DuckDuckGo HTML page, then the lite page."""

    provider_name = "duckduckgo"
    results_script = DUCKDUCKGO_RESULTS_SCRIPT

    def result_urls(self, query: str) -> List[str]:
        encoded = quote_plus(query)
        return [
            f"https://duckduckgo.com/html/?q={encoded}",
            f"https://lite.duckduckgo.com/lite/?q={encoded}",
        ]
