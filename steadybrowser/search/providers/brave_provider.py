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
Brave Search API provider.

API Documentation: https://api.search.brave.com/app/documentation
"""

from __future__ import annotations

from typing import List

import aiohttp

from steadybrowser.search.base_provider import BaseSearchProvider
from steadybrowser.search.types import SearchResult


class BraveProvider(BaseSearchProvider):
    """Brave Search web results."""

    provider_name = "brave"

    BASE_URL = "https://api.search.brave.com/res/v1/web/search"

    async def _execute_search(self, query: str, max_results: int) -> List[SearchResult]:
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key or "",
        }
        params = {"q": query, "count": str(min(max_results, 20))}
        async with aiohttp.ClientSession() as session:
            async with session.get(
                self.BASE_URL,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise self._http_error(response.status, await response.text())
                data = await response.json()
        items = (data.get("web") or {}).get("results") or []
        return self._results_from(items, "title", "url", "description")
