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
Element location capability.

Structural inspection and vision are two implementations of one
:class:`ElementLocator` interface. A :class:`LocatorPolicy` tries them in
order; the engine picks the policy (structural only, structural then
vision, vision only) per operation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from playwright.async_api import Page

from steadybrowser.core.selector_resolver import ResolvedTarget, SelectorResolver, parse_ref
from steadybrowser.core.strategies import Strategy, run_strategies
from steadybrowser.core.vision import Confidence, CoordinateCandidate, VisionLocator
from steadybrowser.utils.logger import get_logger

logger = get_logger("locators")

_CSS_HINT_CHARS = ("#", ".", "[", "//", "xpath=", "css=", "text=", "role=")


@dataclass
class LocatedElement:
    """Where an element is: a live selector or viewport coordinates."""

    source: str
    target: Optional[ResolvedTarget] = None
    candidate: Optional[CoordinateCandidate] = None

    @property
    def is_coordinates(self) -> bool:
        return self.target is None and self.candidate is not None


@runtime_checkable
class ElementLocator(Protocol):
    """Finds an element for a query (ref, selector or description)."""

    name: str

    async def locate(self, page: Page, query: str) -> Optional[LocatedElement]:
        ...


def looks_like_selector(query: str) -> bool:
    query = query.strip()
    return query.startswith(_CSS_HINT_CHARS) or (" " not in query and any(c in query for c in "#.[>:="))


class StructuralLocator:
    """Locates elements by reference, selector or exact visible text."""

    name = "structural"

    def __init__(self, resolver: SelectorResolver) -> None:
        self.resolver = resolver

    async def locate(self, page: Page, query: str) -> Optional[LocatedElement]:
        if parse_ref(query) is not None:
            target = await self.resolver.resolve(page, query)
            return LocatedElement(source=self.name, target=target)

        selector = query if looks_like_selector(query) else f"text={json.dumps(query)}"
        try:
            count = await page.locator(selector).count()
        except Exception as e:
            logger.debug(f"Structural lookup for {query!r} failed: {e}")
            return None
        if count == 0:
            return None
        return LocatedElement(source=self.name, target=ResolvedTarget(selector=selector))


class VisionElementLocator:
    """Locates elements from a screenshot through :class:`VisionLocator`."""

    name = "vision"

    def __init__(self, vision: VisionLocator, min_confidence: Confidence = Confidence.LOW) -> None:
        self.vision = vision
        self.min_confidence = min_confidence

    async def locate(self, page: Page, query: str) -> Optional[LocatedElement]:
        if not self.vision.available:
            return None
        candidate = await self.vision.locate_element(page, query)
        if not candidate.found:
            return None
        order = [Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH]
        if order.index(candidate.confidence) < order.index(self.min_confidence):
            return None
        return LocatedElement(source=self.name, candidate=candidate)


class LocatorPolicy:
    """
    Ordered locator list; the first locator that finds the element wins.

    Example:
        >>> policy = LocatorPolicy([StructuralLocator(resolver), VisionElementLocator(vision)])
        >>> located = await policy.locate(page, "the Inbox folder in the left sidebar")
        >>> located.source
        'vision'
    """

    def __init__(self, locators: Sequence[ElementLocator]) -> None:
        self.locators: List[ElementLocator] = list(locators)

    async def locate(self, page: Page, query: str) -> Optional[LocatedElement]:
        strategies = [
            Strategy(loc.name, (lambda loc=loc: loc.locate(page, query)), accept=lambda v: v is not None)
            for loc in self.locators
        ]
        outcome = await run_strategies(strategies)
        if outcome.success:
            return outcome.value
        for name, error in outcome.errors:
            logger.debug(f"Locator {name} gave up on {query!r}: {error}")
        return None
