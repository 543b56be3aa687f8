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
Serper.dev search provider (Google results over a JSON API).

API Documentation: https://serper.dev/docs
"""

from __future__ import annotations

from typing import List

import aiohttp

from steadybrowser.search.base_provider import BaseSearchProvider
from steadybrowser.search.types import SearchResult


class SerperProvider(BaseSearchProvider):
    """
    Serper.dev search provider.

    Example:
        >>> provider = SerperProvider(api_key="your-api-key")
        >>> response = await provider.search("python tutorials")
    """

    provider_name = "serper"

    BASE_URL = "https://google.serper.dev/search"

    async def _execute_search(self, query: str, max_results: int) -> List[SearchResult]:
        headers = {
            "X-API-KEY": self.api_key or "",
            "Content-Type": "application/json",
        }
        payload = {"q": query, "num": min(max_results, 100)}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.BASE_URL,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise self._http_error(response.status, await response.text())
                data = await response.json()
        return self._results_from(data.get("organic") or [], "title", "link", "snippet")
