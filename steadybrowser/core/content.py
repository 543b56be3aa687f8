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
Read-only content operations on the active page.

Readable-text extraction, structured extraction by CSS selector and
scrolling. All three run a single in-page script; the engine wraps the
returned values into operation results.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.async_api import Page

from steadybrowser.utils.logger import get_logger

logger = get_logger("content")

DEFAULT_SCROLL_AMOUNT = 600
SCROLL_DIRECTIONS = ("up", "down", "top", "bottom")

EXTRACT_CONTENT_SCRIPT = """
() => {
    const NOISE = [
        'script', 'style', 'noscript', 'iframe', 'svg',
        'nav', 'footer', 'header', 'aside',
        '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]',
        '.cookie-banner', '.cookie-consent', '#cookie-notice',
        '.ad', '.ads', '.advertisement', '[class*="advert"]',
        '.sidebar', '.popup', '.modal', '.overlay',
    ];
    const MAIN = ['main', 'article', '[role="main"]', '#content', '#main', '.content', '.post', '.article'];
    const BLOCK = ['p', 'div', 'li', 'tr', 'br', 'section', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6'];
    if (!document.body) return { title: document.title || '', url: location.href, text: '' };

    const clone = document.body.cloneNode(true);
    NOISE.forEach((sel) => clone.querySelectorAll(sel).forEach((el) => el.remove()));

    let source = clone;
    for (const sel of MAIN) {
        const candidate = clone.querySelector(sel);
        if (candidate && (candidate.textContent || '').trim().length > 200) { source = candidate; break; }
    }

    const lines = [];
    const textOf = (el) => (el.textContent || '').replace(/\\s+/g, ' ').trim();
    const walk = (node) => {
        if (node.nodeType === Node.TEXT_NODE) {
            const text = (node.textContent || '').trim();
            if (text.length > 1) lines.push(text);
            return;
        }
        if (node.nodeType !== Node.ELEMENT_NODE) return;
        const tag = node.tagName.toLowerCase();
        if (BLOCK.includes(tag)) lines.push('');
        if (/^h[1-6]$/.test(tag)) {
            lines.push('#'.repeat(parseInt(tag[1], 10)) + ' ' + textOf(node));
            return;
        }
        if (tag === 'li') { lines.push('- ' + textOf(node)); return; }
        if (tag === 'a') {
            const href = node.href || node.getAttribute('href') || '';
            const text = textOf(node);
            if (text && href && !href.startsWith('javascript:')) lines.push('[' + text + '](' + href + ')');
            else if (text) lines.push(text);
            return;
        }
        for (const child of Array.from(node.childNodes)) walk(child);
    };
    walk(source);

    const cleaned = lines
        .map((l) => l.replace(/\\s+/g, ' ').trim())
        .filter((l, i, arr) => l.length > 0 || (i > 0 && arr[i - 1].length > 0))
        .join('\\n')
        .replace(/\\n{3,}/g, '\\n\\n')
        .trim();
    return { title: document.title || '', url: location.href, text: cleaned };
}
"""

EXTRACT_DATA_SCRIPT = """
({ sel, attr, lim, html }) => {
    const elements = Array.from(document.querySelectorAll(sel)).slice(0, lim);
    return elements.map((el, index) => {
        const item = { index };
        if (attr) {
            item.value = el.getAttribute(attr) || '';
        } else {
            item.text = (el.innerText || el.textContent || '').trim().slice(0, 500);
            item.tag = el.tagName.toLowerCase();
            for (const name of ['href', 'src', 'name', 'id']) {
                const value = el.getAttribute(name);
                if (value) item[name] = value;
            }
            if (el.value) item.value = String(el.value);
            const cls = el.className ? String(el.className).slice(0, 100) : '';
            if (cls) item.class = cls;
        }
        if (html) item.outerHtml = el.outerHTML.slice(0, 1000);
        return item;
    });
}
"""

SCROLL_SCRIPT = """
({ direction, amount }) => {
    const root = document.scrollingElement || document.documentElement;
    if (direction === 'top') window.scrollTo(0, 0);
    else if (direction === 'bottom') window.scrollTo(0, root.scrollHeight);
    else window.scrollBy(0, direction === 'down' ? amount : -amount);
}
"""

SCROLL_POSITION_SCRIPT = """
() => {
    const scrollTop = window.scrollY;
    const scrollHeight = document.documentElement.scrollHeight;
    const clientHeight = window.innerHeight;
    return {
        scrollTop: Math.round(scrollTop),
        scrollHeight,
        clientHeight,
        atTop: scrollTop <= 10,
        atBottom: scrollTop + clientHeight >= scrollHeight - 50,
    };
}
"""


@dataclass
class ExtractedContent:
    """Readable text of the current page."""

    title: str
    url: str
    text: str
    total_length: int
    truncated: bool = False

    def format(self) -> str:
        header = f'PAGE: "{self.title}"\nURL: {self.url}\nExtracted: {self.total_length} chars'
        return f"{header}\n\n{self.text}"


@dataclass
class ScrollPosition:
    """Viewport position after a scroll."""

    scroll_top: int = 0
    scroll_height: int = 0
    client_height: int = 0
    at_top: bool = False
    at_bottom: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScrollPosition":
        data = data or {}
        return cls(
            scroll_top=int(data.get("scrollTop") or 0),
            scroll_height=int(data.get("scrollHeight") or 0),
            client_height=int(data.get("clientHeight") or 0),
            at_top=bool(data.get("atTop")),
            at_bottom=bool(data.get("atBottom")),
        )

    def describe(self) -> str:
        text = f"Position: {self.scroll_top}/{self.scroll_height}px"
        if self.at_top:
            text += " (at top)"
        if self.at_bottom:
            text += " (at bottom)"
        return text


@dataclass
class ExtractedItem:
    """One element returned by :func:`extract_data`."""

    index: int
    fields: Dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        if "tag" in self.fields:
            primary = self.fields.get("text", "")
            extras = [
                f"{key}={value}"
                for key, value in self.fields.items()
                if key not in ("text", "tag", "outerHtml")
            ]
        else:
            # Attribute mode carries only the attribute value
            primary = self.fields.get("value", "")
            extras = []
        line = f"{self.index + 1}. {primary or '(empty)'}"
        if extras:
            line += f" [{', '.join(extras)}]"
        if "outerHtml" in self.fields:
            line += f"\n   html: {self.fields['outerHtml']}"
        return line


async def extract_content(
    page: Page,
    max_chars: int = 10000,
    min_chars: int = 20,
) -> Optional[ExtractedContent]:
    """
    Extract the readable main text of the page.

    Navigation, footer, asides and ad/cookie noise are removed from a clone
    of the body (the live DOM is untouched). The first ``main``/``article``
    like container with more than 200 characters is preferred.

    Returns:
        ExtractedContent, or None when fewer than ``min_chars`` characters
        of meaningful text were found
    """
    raw = await page.evaluate(EXTRACT_CONTENT_SCRIPT) or {}
    text = str(raw.get("text") or "")
    total = len(text)
    if total < min_chars:
        logger.debug(f"Content extraction found only {total} chars")
        return None
    truncated = total > max_chars
    if truncated:
        text = text[:max_chars] + f"\n\n... [truncated, {total} total chars]"
    return ExtractedContent(
        title=str(raw.get("title") or ""),
        url=str(raw.get("url") or page.url),
        text=text,
        total_length=total,
        truncated=truncated,
    )


async def extract_data(
    page: Page,
    selector: str,
    attribute: Optional[str] = None,
    limit: int = 50,
    include_html: bool = False,
) -> List[ExtractedItem]:
    """Collect text (or one attribute) from every element matching ``selector``."""
    raw = await page.evaluate(
        EXTRACT_DATA_SCRIPT,
        {"sel": selector, "attr": attribute, "lim": max(1, limit), "html": include_html},
    )
    items = []
    for entry in raw or []:
        entry = dict(entry)
        index = int(entry.pop("index", len(items)))
        items.append(ExtractedItem(index=index, fields=entry))
    return items


def format_extracted_items(selector: str, items: List[ExtractedItem]) -> str:
    if not items:
        return f'No elements found matching "{selector}".'
    lines = [item.format() for item in items]
    return f'Extracted {len(items)} element(s) matching "{selector}":\n' + "\n".join(lines)


async def scroll(
    page: Page,
    direction: str = "down",
    amount: Optional[int] = None,
    settle_ms: int = 300,
) -> ScrollPosition:
    """
    Scroll the page and report the resulting position.

    Args:
        direction: ``up``, ``down``, ``top`` or ``bottom``
        amount: Pixels for ``up``/``down`` (default 600)
        settle_ms: Pause for lazy-loaded content after scrolling

    Raises:
        ValueError: Unknown direction
    """
    direction = direction.lower().strip()
    if direction not in SCROLL_DIRECTIONS:
        raise ValueError(f"Unknown scroll direction {direction!r}; use one of {', '.join(SCROLL_DIRECTIONS)}")
    pixels = amount if amount and amount > 0 else DEFAULT_SCROLL_AMOUNT
    await page.evaluate(SCROLL_SCRIPT, {"direction": direction, "amount": pixels})
    if settle_ms > 0:
        await asyncio.sleep(settle_ms / 1000)
    try:
        info = await page.evaluate(SCROLL_POSITION_SCRIPT)
    except Exception as e:
        logger.debug(f"Reading scroll position failed: {e}")
        info = None
    return ScrollPosition.from_dict(info)
