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
On-disk artifacts: profile navigation history and debug captures.

Layout under the data directory::

    profiles/<name>/history.json           capped navigation history
    browser-debug/<tag>-<timestamp>.png    diagnostic screenshot
    browser-debug/<tag>-<timestamp>.html   diagnostic markup
    browser-traces/trace-<timestamp>.zip   structured trace (see session)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import Page

from steadybrowser.utils.logger import get_logger

logger = get_logger("artifacts")


def timestamp_slug() -> str:
    """UTC ISO timestamp usable in file names (``2026-01-31T12-00-00-123456+00-00``)."""
    return datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")


class ProfileHistory:
    """
    Append-only navigation history stored next to the profile.

    The file is a JSON list of ``{url, title, timestamp}``; only the newest
    ``cap`` entries are kept. Write failures are logged, never raised.
    """

    def __init__(self, path: Path, cap: int = 200) -> None:
        self.path = Path(path)
        self.cap = cap

    def entries(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Profile history unreadable ({self.path}): {e}")
            return []
        return data if isinstance(data, list) else []

    def record(self, url: str, title: str = "") -> None:
        entries = self.entries()
        entries.append(
            {
                "url": url,
                "title": title,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(entries[-self.cap:], indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Profile history write failed: {e}")


@dataclass
class DebugArtifacts:
    """Paths written by :func:`save_debug_artifacts`."""

    screenshot_path: Optional[Path] = None
    html_path: Optional[Path] = None

    def describe(self) -> str:
        parts = []
        if self.screenshot_path:
            parts.append(f"screenshot: {self.screenshot_path}")
        if self.html_path:
            parts.append(f"html: {self.html_path}")
        return ", ".join(parts) if parts else "no artifacts"


async def save_debug_artifacts(
    page: Page,
    debug_dir: Path,
    tag: str,
    html: Optional[str] = None,
) -> Optional[DebugArtifacts]:
    """
    Capture a screenshot and (optionally) markup for later inspection.

    Args:
        page: Page to capture
        debug_dir: Target directory, created if missing
        tag: File name prefix such as ``blank-navigate``
        html: Markup to store; when None the live page content is read

    Returns:
        DebugArtifacts, or None when the capture failed
    """
    try:
        debug_dir = Path(debug_dir)
        debug_dir.mkdir(parents=True, exist_ok=True)
        base = f"{tag}-{timestamp_slug()}"
        screenshot_path = debug_dir / f"{base}.png"
        await page.screenshot(path=str(screenshot_path), type="png")

        if html is None:
            html = await page.content()
        html_path = None
        if html and html.strip():
            html_path = debug_dir / f"{base}.html"
            html_path.write_text(html, encoding="utf-8")
        logger.debug(f"Debug artifacts saved for {tag}: {screenshot_path}")
        return DebugArtifacts(screenshot_path=screenshot_path, html_path=html_path)
    except Exception as e:
        logger.warning(f"Failed to save debug artifacts ({tag}): {e}")
        return None
