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
SearxNG provider for a self-hosted metasearch instance.

The instance must have the JSON output format enabled.
"""

from __future__ import annotations

from typing import List, Optional

import aiohttp

from steadybrowser.search.base_provider import BaseSearchProvider
from steadybrowser.search.types import SearchResult


class SearxngProvider(BaseSearchProvider):
    """Queries ``<base_url>/search?format=json``."""

    provider_name = "searxng"

    def __init__(self, base_url: Optional[str] = None, timeout_seconds: float = 15.0) -> None:
        super().__init__(api_key=None, timeout_seconds=timeout_seconds)
        self.base_url = (base_url or "").rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _execute_search(self, query: str, max_results: int) -> List[SearchResult]:
        params = {"q": query, "format": "json"}
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"{self.base_url}/search",
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise self._http_error(response.status, await response.text())
                data = await response.json(content_type=None)
        return self._results_from(data.get("results") or [], "title", "url", "content")
