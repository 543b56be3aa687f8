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
Element references and their re-attachment.

A snapshot scans the visible interactive elements in document order and
stamps each with an ordinal marker attribute (``data-steady-ref="12"``).
The agent then addresses elements by that integer. Client-side re-renders
drop the markers, so :class:`SelectorResolver` re-runs the same scan,
re-stamps markers in the same order and only accepts the element at the
requested ordinal if it still looks like the one originally described.
Otherwise the reference is reported stale; a different element is never
substituted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from playwright.async_api import Page

from steadybrowser.exceptions import StaleReferenceError
from steadybrowser.utils.logger import get_logger

logger = get_logger("resolver")

SCAN_SCRIPT = """
(attr) => {
    const SELECTOR = [
        'a[href]', 'button', 'input:not([type="hidden"])', 'select', 'textarea', 'summary',
        '[role="button"]', '[role="link"]', '[role="checkbox"]', '[role="radio"]',
        '[role="tab"]', '[role="menuitem"]', '[role="option"]', '[role="combobox"]',
        '[role="textbox"]', '[role="switch"]', '[contenteditable="true"]', '[onclick]',
    ].join(', ');
    const isVisible = (el) => {
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) return false;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity || '1') === 0) return false;
        return true;
    };
    const nameOf = (el) => {
        const label = el.getAttribute('aria-label') || el.getAttribute('title') || '';
        if (label) return label;
        if (el.id) {
            const forLabel = document.querySelector('label[for="' + CSS.escape(el.id) + '"]');
            if (forLabel && forLabel.innerText) return forLabel.innerText;
        }
        const text = (el.innerText || el.textContent || '').trim();
        if (text) return text;
        return el.getAttribute('placeholder') || el.getAttribute('name') || el.getAttribute('alt') || '';
    };
    document.querySelectorAll('[' + attr + ']').forEach((el) => el.removeAttribute(attr));
    const elements = Array.from(document.querySelectorAll(SELECTOR)).filter(isVisible);
    return elements.map((el, index) => {
        const ref = index + 1;
        el.setAttribute(attr, String(ref));
        const tag = el.tagName.toLowerCase();
        return {
            ref,
            tag,
            role: el.getAttribute('role') || '',
            name: nameOf(el).replace(/\\s+/g, ' ').trim().slice(0, 120),
            type: el.getAttribute('type') || '',
            href: el.getAttribute('href') || '',
            value: (tag === 'input' || tag === 'textarea' || tag === 'select') ? String(el.value || '').slice(0, 80) : '',
            checked: (el.type === 'checkbox' || el.type === 'radio') ? !!el.checked : null,
        };
    });
}
"""

_ROLE_BY_TAG = {
    "a": "link",
    "button": "button",
    "select": "combobox",
    "textarea": "textbox",
    "summary": "button",
}

_REF_PATTERN = re.compile(r"^\s*(?:ref\s*=\s*|\[|@|#ref)?\s*(\d+)\s*\]?\s*$", re.IGNORECASE)


@dataclass
class ElementDescriptor:
    """What a snapshot saw at one ordinal."""

    ref: int
    tag: str
    role: str = ""
    name: str = ""
    type: str = ""
    href: str = ""
    value: str = ""
    checked: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementDescriptor":
        return cls(
            ref=int(data.get("ref") or 0),
            tag=str(data.get("tag") or ""),
            role=str(data.get("role") or ""),
            name=str(data.get("name") or ""),
            type=str(data.get("type") or ""),
            href=str(data.get("href") or ""),
            value=str(data.get("value") or ""),
            checked=data.get("checked"),
        )

    @property
    def effective_role(self) -> str:
        if self.role:
            return self.role
        if self.tag == "input":
            if self.type in ("checkbox", "radio"):
                return self.type
            if self.type in ("submit", "button", "reset"):
                return "button"
            return "textbox"
        return _ROLE_BY_TAG.get(self.tag, self.tag)

    def fingerprint(self) -> str:
        """Identity used to confirm a re-attached element is the same one."""
        return f"{self.tag}|{self.effective_role}|{self.name[:60].lower()}"

    def describe(self) -> str:
        parts = [f"[{self.ref}] {self.effective_role}"]
        if self.name:
            parts.append(f'"{self.name}"')
        if self.value:
            parts.append(f"value={self.value!r}")
        if self.checked is not None:
            parts.append("checked" if self.checked else "unchecked")
        if self.href and self.effective_role == "link":
            parts.append(f"-> {self.href[:80]}")
        return " ".join(parts)


@dataclass
class ResolvedTarget:
    """A live-element locator string for a ref or raw selector.

    Attributes:
        selector: Playwright selector addressing the element
        ref: Element reference, when one was given
        reattached: True when markers had to be re-stamped
        descriptor: Snapshot descriptor for the ref, when known
    """

    selector: str
    ref: Optional[int] = None
    reattached: bool = False
    descriptor: Optional[ElementDescriptor] = None

    @property
    def label(self) -> str:
        return f"ref={self.ref}" if self.ref is not None else self.selector


@dataclass
class Snapshot:
    """Result of one reference scan."""

    generation: int
    elements: List[ElementDescriptor] = field(default_factory=list)

    def format(self, title: str = "", url: str = "", limit: int = 200) -> str:
        """Render the semantic snapshot consumed by the agent."""
        lines = []
        if title or url:
            lines.append(f"Page: {title}")
            lines.append(f"URL: {url}")
            lines.append("")
        if not self.elements:
            lines.append("(no visible interactive elements)")
        for descriptor in self.elements[:limit]:
            lines.append(descriptor.describe())
        if len(self.elements) > limit:
            lines.append(f"... {len(self.elements) - limit} more elements")
        return "\n".join(lines)


def parse_ref(target: Union[int, str]) -> Optional[int]:
    """
    Interpret ``target`` as an element reference.

    Example:
        >>> parse_ref("ref=12"), parse_ref("[3]"), parse_ref("#main")
        (12, 3, None)
    """
    if isinstance(target, bool):
        return None
    if isinstance(target, int):
        return target
    match = _REF_PATTERN.match(str(target))
    return int(match.group(1)) if match else None


class SelectorResolver:
    """
    Maps element references to live locators.

    Args:
        ref_attribute: Marker attribute stamped on scanned elements

    Example:
        >>> resolver = SelectorResolver()
        >>> snapshot = await resolver.snapshot(page)
        >>> target = await resolver.resolve(page, 3)
        >>> target.selector
        '[data-steady-ref="3"]'
    """

    def __init__(self, ref_attribute: str = "data-steady-ref") -> None:
        self.ref_attribute = ref_attribute
        self._generation = 0
        self._descriptors: Dict[int, ElementDescriptor] = {}

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def known_refs(self) -> int:
        return len(self._descriptors)

    def selector_for(self, ref: int) -> str:
        return f'[{self.ref_attribute}="{ref}"]'

    def invalidate(self) -> None:
        """Forget all references (full page load). Old refs can no longer resolve."""
        if self._descriptors:
            logger.debug(f"Invalidating {len(self._descriptors)} element references")
        self._descriptors = {}
        self._generation += 1

    async def _scan(self, page: Page) -> List[ElementDescriptor]:
        raw = await page.evaluate(SCAN_SCRIPT, self.ref_attribute)
        return [ElementDescriptor.from_dict(item) for item in (raw or [])]

    async def snapshot(self, page: Page) -> Snapshot:
        """Run the scan, stamp markers and start a new reference generation."""
        elements = await self._scan(page)
        self._generation += 1
        self._descriptors = {d.ref: d for d in elements}
        logger.debug(f"Snapshot generation {self._generation}: {len(elements)} elements")
        return Snapshot(generation=self._generation, elements=elements)

    async def _marker_present(self, page: Page, ref: int) -> bool:
        try:
            return await page.locator(self.selector_for(ref)).count() > 0
        except Exception as e:
            logger.debug(f"Marker probe for ref {ref} failed: {e}")
            return False

    async def resolve(self, page: Page, target: Union[int, str]) -> ResolvedTarget:
        """
        Resolve a ref or selector to a live locator string.

        Raw selectors pass through untouched.

        Raises:
            StaleReferenceError: The ref is unknown in this page generation or
                the element at its ordinal is no longer the same element
        """
        ref = parse_ref(target)
        if ref is None:
            return ResolvedTarget(selector=str(target))

        descriptor = self._descriptors.get(ref)
        if descriptor is None:
            raise StaleReferenceError(ref, available=len(self._descriptors))

        if await self._marker_present(page, ref):
            return ResolvedTarget(selector=self.selector_for(ref), ref=ref, descriptor=descriptor)

        # Slow path: markers were dropped by a re-render
        logger.info(f"Element ref {ref} lost its marker, re-attaching references")
        try:
            rescanned = await self._scan(page)
        except Exception as e:
            logger.warning(f"Reference re-scan failed: {e}")
            raise StaleReferenceError(ref, available=0) from e

        current = {d.ref: d for d in rescanned}
        # Markers were re-stamped for every ordinal; refs whose element
        # changed must not resolve through the fast path later
        self._descriptors = {
            r: d for r, d in self._descriptors.items()
            if r in current and current[r].fingerprint() == d.fingerprint()
        }
        candidate = current.get(ref)
        if candidate is None or candidate.fingerprint() != descriptor.fingerprint():
            logger.warning(
                f"Element ref {ref} is stale after re-render "
                f"(expected {descriptor.fingerprint()!r}, "
                f"found {candidate.fingerprint() if candidate else 'nothing'!r})"
            )
            raise StaleReferenceError(ref, available=len(rescanned))

        return ResolvedTarget(
            selector=self.selector_for(ref),
            ref=ref,
            reattached=True,
            descriptor=descriptor,
        )
