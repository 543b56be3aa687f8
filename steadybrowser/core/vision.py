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
Vision-assisted element location.

Used only when structural inspection is not enough (canvas UIs, shadow
components, unlabeled icons). The pipeline is:

    screenshot -> vision prompt -> coordinate parsing -> candidate scoring
    -> candidate verification

A cheap single-element lookup is tried first. Only when it comes back
absent or low-confidence does the locator ask for up to ``limit``
candidates, rank them with positional hints derived from the description
("left sidebar" favors low x) and verify the best few with a narrowly
scoped second query.

The vision model itself is an external collaborator: any coroutine taking
``(screenshot_path, prompt)`` and returning text.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from playwright.async_api import Page
from pydantic import BaseModel, Field, ValidationError, field_validator

from steadybrowser.exceptions import VisionUnavailableError
from steadybrowser.utils.logger import get_logger

logger = get_logger("vision")

# Single capture file reused by every lookup
VISION_CAPTURE_FILE = "vision-capture.png"

VisionAnalyzer = Callable[[str, str], Awaitable[str]]

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_COORD_FALLBACK = re.compile(r'["\s{,]x["\s]*:\s*(-?\d+(?:\.\d+)?)[,\s]*["\s]*y["\s]*:\s*(-?\d+(?:\.\d+)?)')


class Confidence(str, Enum):
    """Confidence tier reported by the vision model."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CoordinateCandidate(BaseModel):
    """A location proposed by the vision model, in screenshot pixels."""

    x: float = Field(default=-1)
    y: float = Field(default=-1)
    confidence: Confidence = Field(default=Confidence.LOW)
    description: str = Field(default="")

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return -1.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> Confidence:
        try:
            return Confidence(str(value).lower())
        except ValueError:
            return Confidence.LOW

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def found(self) -> bool:
        return self.x >= 0 and self.y >= 0

    @classmethod
    def not_found(cls, reason: str = "Element not found") -> "CoordinateCandidate":
        return cls(x=-1, y=-1, confidence=Confidence.LOW, description=reason)


def _strip_fences(response: str) -> str:
    return _FENCE.sub("", response).replace("```", "").strip()


def parse_coordinate_response(response: str) -> CoordinateCandidate:
    """
    Parse a single-element answer tolerantly.

    JSON first; then a regex for ``"x": N, "y": N`` with the confidence
    forced to low; otherwise a not-found candidate.
    """
    cleaned = _strip_fences(response)
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return CoordinateCandidate.model_validate(data)
    except (json.JSONDecodeError, ValidationError):
        pass

    match = _COORD_FALLBACK.search(response)
    if match:
        return CoordinateCandidate(
            x=float(match.group(1)),
            y=float(match.group(2)),
            confidence=Confidence.LOW,
            description="Parsed from non-JSON response",
        )

    logger.warning(f"Could not parse coordinates from: {response[:200]}")
    return CoordinateCandidate.not_found("Failed to parse response")


def parse_candidates_response(response: str) -> List[CoordinateCandidate]:
    """Parse a JSON array of candidates; unparsable answers yield an empty list."""
    cleaned = _strip_fences(response)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse multi-element response: {response[:200]}")
        return []
    if not isinstance(data, list):
        return []
    candidates = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            candidate = CoordinateCandidate.model_validate(item)
        except ValidationError:
            continue
        if candidate.found:
            candidates.append(candidate)
    return candidates


def region_hints(description: str) -> List[str]:
    """Positional hints derived from keywords in the description."""
    d = description.lower()
    hints = []
    if "left" in d:
        hints.append("Prefer elements on the LEFT side of the screen (lower x).")
    if "right" in d:
        hints.append("Prefer elements on the RIGHT side of the screen (higher x).")
    if "top" in d or "upper" in d:
        hints.append("Prefer elements near the TOP of the screen (lower y).")
    if "bottom" in d or "lower" in d:
        hints.append("Prefer elements near the BOTTOM of the screen (higher y).")
    if "sidebar" in d or "folders" in d:
        hints.append("Sidebar lists usually occupy the left 20-30% of the screen width.")
    if "address bar" in d or "path bar" in d or "location bar" in d:
        hints.append("Address and location bars sit near the top and span the width.")
    if "toolbar" in d or "ribbon" in d:
        hints.append("Toolbars and ribbons sit at the top of the window.")
    if "taskbar" in d:
        hints.append("The taskbar runs along the bottom edge of the screen.")
    return hints


def score_candidate(
    description: str,
    candidate: CoordinateCandidate,
    width: int,
    height: int,
) -> float:
    """
    Rank a candidate by confidence and description-derived position bias.

    Coordinates are normalized to ``[0, 1]`` by the screen size.
    """
    d = description.lower()
    x = candidate.x / width if width > 0 else 0.5
    y = candidate.y / height if height > 0 else 0.5

    score = 0.0
    if candidate.confidence == Confidence.HIGH:
        score += 3
    elif candidate.confidence == Confidence.MEDIUM:
        score += 1

    if "left" in d:
        score += (1 - x) * 2
    if "right" in d:
        score += x * 2
    if "top" in d or "upper" in d:
        score += (1 - y) * 2
    if "bottom" in d or "lower" in d:
        score += y * 2
    if "sidebar" in d or "folders" in d:
        score += (1 - x) * 2
    if "address bar" in d or "path bar" in d or "location bar" in d:
        score += (1 - y) * 2
    if "toolbar" in d or "ribbon" in d:
        score += (1 - y) * 1.5
    if "taskbar" in d:
        score += y * 2
    return score


class VisionLocator:
    """
    Locates UI elements on a screenshot through a vision model.

    Args:
        analyzer: Coroutine ``(screenshot_path, prompt) -> str``
        screenshot_dir: Directory holding the capture file, overwritten on
            every lookup
        candidate_limit: Candidates requested in the multi-element tier
        verify_top: How many ranked candidates are verified

    Example:
        >>> locator = VisionLocator(my_vision_fn, Path("/tmp/shots"))
        >>> candidate = await locator.locate_element(page, "the blue Sign in button")
        >>> candidate.found, candidate.confidence
        (True, <Confidence.HIGH: 'high'>)
    """

    def __init__(
        self,
        analyzer: Optional[VisionAnalyzer],
        screenshot_dir: Path,
        candidate_limit: int = 5,
        verify_top: int = 3,
    ) -> None:
        self.analyzer = analyzer
        self.screenshot_dir = Path(screenshot_dir)
        self.candidate_limit = candidate_limit
        self.verify_top = verify_top

    @property
    def capture_path(self) -> Path:
        return self.screenshot_dir / VISION_CAPTURE_FILE

    @property
    def available(self) -> bool:
        return self.analyzer is not None

    def _require_analyzer(self) -> VisionAnalyzer:
        if self.analyzer is None:
            raise VisionUnavailableError(
                "Vision analyzer not configured, cannot locate elements by description"
            )
        return self.analyzer

    async def capture(self, page: Page) -> Tuple[str, int, int]:
        """Screenshot the viewport; returns ``(path, width, height)``."""
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        path = self.capture_path
        await page.screenshot(path=str(path))
        viewport = page.viewport_size or {"width": 1280, "height": 720}
        return str(path), int(viewport["width"]), int(viewport["height"])

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    @staticmethod
    def _hint_block(description: str) -> str:
        hints = region_hints(description)
        if not hints:
            return ""
        return "REGION HINTS:\n- " + "\n- ".join(hints)

    def single_prompt(self, description: str, width: int, height: int) -> str:
        return (
            f"You are a precise UI element locator. Analyze this screenshot ({width}x{height} pixels) "
            f"and find the element described below.\n\n"
            f'ELEMENT TO FIND: "{description}"\n\n'
            f"{self._hint_block(description)}\n\n"
            "Respond with ONLY a JSON object in exactly this format:\n"
            '{"x": <number>, "y": <number>, "confidence": "<high|medium|low>", "description": "<what you found>"}\n\n'
            "Rules:\n"
            "- x and y are pixel coordinates of the CENTER of the element, measured from the top-left corner\n"
            '- "high": clearly visible and unambiguous\n'
            '- "medium": probably correct but partially obscured or ambiguous\n'
            '- "low": a guess\n'
            '- If the element is not visible at all, return {"x": -1, "y": -1, "confidence": "low", '
            '"description": "Element not found"}\n'
        )

    def multi_prompt(self, description: str, width: int, height: int) -> str:
        return (
            f"You are a precise UI element locator. Analyze this screenshot ({width}x{height} pixels) "
            f"and find ALL elements matching the description below.\n\n"
            f'ELEMENTS TO FIND: "{description}"\n\n'
            f"{self._hint_block(description)}\n\n"
            "Respond with ONLY a JSON array in this format:\n"
            '[{"x": <number>, "y": <number>, "confidence": "<high|medium|low>", '
            '"description": "<what this element is>"}]\n\n'
            "Rules:\n"
            "- x and y point to the CENTER of each element, measured from the top-left corner\n"
            f"- Return at most {self.candidate_limit} elements, most relevant first\n"
            "- If nothing matches, return []\n"
        )

    def verify_prompt(self, description: str, candidate: CoordinateCandidate, width: int, height: int) -> str:
        return (
            "You are verifying a UI element at a specific location.\n\n"
            f'TARGET DESCRIPTION: "{description}"\n'
            f"PROPOSED COORDINATES: x={int(candidate.x)}, y={int(candidate.y)}\n"
            f"SCREEN SIZE: {width}x{height}\n\n"
            "Look only at the region within about 120px of the proposed coordinates and decide "
            "whether the target description matches what is there.\n\n"
            'Respond with ONLY a JSON object: {"match": true|false, "note": "short reason"}\n'
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def locate_element(self, page: Page, description: str) -> CoordinateCandidate:
        """Screenshot the page and locate ``description`` on it."""
        self._require_analyzer()
        path, width, height = await self.capture(page)
        return await self.locate_in_screenshot(path, width, height, description)

    async def locate_in_screenshot(
        self,
        screenshot_path: str,
        width: int,
        height: int,
        description: str,
    ) -> CoordinateCandidate:
        """
        Two-tier lookup on an existing screenshot.

        Returns:
            The accepted candidate, or a not-found candidate
        """
        analyzer = self._require_analyzer()
        response = await analyzer(screenshot_path, self.single_prompt(description, width, height))
        primary = parse_coordinate_response(response)
        if primary.found and primary.confidence != Confidence.LOW:
            logger.info(
                f"Vision located '{description}' at ({int(primary.x)}, {int(primary.y)}) "
                f"[{primary.confidence.value}]"
            )
            return primary

        logger.info(f"Vision single-shot for '{description}' inconclusive, requesting candidates")
        candidates = await self.locate_candidates(screenshot_path, width, height, description)
        if not candidates:
            return primary

        ranked = sorted(
            candidates,
            key=lambda c: score_candidate(description, c, width, height),
            reverse=True,
        )
        for candidate in ranked[: self.verify_top]:
            if await self.verify_candidate(screenshot_path, width, height, description, candidate):
                logger.info(
                    f"Vision verified candidate for '{description}' at ({int(candidate.x)}, {int(candidate.y)})"
                )
                return candidate

        logger.info(f"No candidate verified for '{description}', using best-scored")
        return ranked[0]

    async def locate_candidates(
        self,
        screenshot_path: str,
        width: int,
        height: int,
        description: str,
    ) -> List[CoordinateCandidate]:
        analyzer = self._require_analyzer()
        response = await analyzer(screenshot_path, self.multi_prompt(description, width, height))
        return parse_candidates_response(response)[: self.candidate_limit]

    async def verify_candidate(
        self,
        screenshot_path: str,
        width: int,
        height: int,
        description: str,
        candidate: CoordinateCandidate,
    ) -> bool:
        analyzer = self._require_analyzer()
        try:
            response = await analyzer(
                screenshot_path, self.verify_prompt(description, candidate, width, height)
            )
            parsed = json.loads(_strip_fences(response))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Candidate verification failed: {e}")
            return False
        return isinstance(parsed, dict) and parsed.get("match") is True

    async def describe_screen(
        self,
        page: Page,
        x: Optional[int] = None,
        y: Optional[int] = None,
        radius: int = 100,
    ) -> str:
        """Describe the whole screen, or the area around ``(x, y)``."""
        analyzer = self._require_analyzer()
        path, width, height = await self.capture(page)
        if x is not None and y is not None:
            prompt = (
                f"Describe what is visible in this screenshot near ({x}, {y}) within a {radius}px radius. "
                f"The screenshot is {width}x{height} pixels. Focus on interactive elements "
                "(buttons, links, inputs, menus) and their current state."
            )
        else:
            prompt = (
                f"Describe this screenshot ({width}x{height} pixels). List the visible interactive "
                "elements (buttons, links, inputs, menus, dropdowns) and their approximate positions. "
                "Be concise but thorough."
            )
        return await analyzer(path, prompt)
