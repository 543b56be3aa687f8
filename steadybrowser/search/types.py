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
Search result data structures shared by every provider.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class SearchResult:
    """
    Individual search result.

    Attributes:
        title: Result title/heading
        url: Target URL
        snippet: Text snippet/description
        position: Position in results (1-indexed)
        source: Provider that returned this result
    """

    title: str
    url: str
    snippet: str = ""
    position: int = 0
    source: str = ""

    @property
    def domain(self) -> str:
        """Extract domain from URL."""
        try:
            return urllib.parse.urlparse(self.url).netloc
        except ValueError:
            return ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "position": self.position,
            "source": self.source,
            "domain": self.domain,
        }

    def __str__(self) -> str:
        text = f"{self.position}. {self.title}\n   {self.url}"
        if self.snippet:
            text += f"\n   {self.snippet}"
        return text


@dataclass
class SearchResponse:
    """
    Complete search response.

    Attributes:
        query: Original search query
        results: Search results in rank order
        provider: Provider that produced the results
        search_time_ms: Time taken by the winning provider
        cached: Served from the coordinator cache
        timestamp: When the search was executed
    """

    query: str
    results: List[SearchResult] = field(default_factory=list)
    provider: str = ""
    search_time_ms: float = 0.0
    cached: bool = False
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    @property
    def result_count(self) -> int:
        return len(self.results)

    @property
    def top_result(self) -> Optional[SearchResult]:
        return self.results[0] if self.results else None

    def format(self) -> str:
        """Numbered ``title / url / snippet`` listing for the agent."""
        header = f'Search Results for "{self.query}" (via {self.provider}'
        header += ", cached)" if self.cached else ")"
        if not self.results:
            return f"{header}:\n(no results)"
        return header + ":\n\n" + "\n\n".join(str(r) for r in self.results)


def clean_snippet(text: Optional[str], max_length: int = 300) -> str:
    """Collapse whitespace and cap snippet length."""
    if not text:
        return ""
    cleaned = " ".join(str(text).split())
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned
