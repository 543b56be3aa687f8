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
CAPTCHA and bot-challenge detection.

Detection only: a challenge found after a navigation or a snapshot is
reported as a warning so the calling agent can decide to wait, switch to
headful mode or hand over to a human. Nothing here attempts to solve it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from playwright.async_api import Page

from steadybrowser.utils.logger import get_logger

logger = get_logger("captcha")


class CaptchaKind(str, Enum):
    """Challenge families the detector recognises."""

    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"
    TURNSTILE = "turnstile"
    GENERIC = "generic"


@dataclass
class DetectedCaptcha:
    """A challenge found on the current page.

    Attributes:
        kind: Challenge family
        label: Human-readable name used in warnings
        marker: Markup fragment that triggered the detection
        has_button: A plain verify button/checkbox is present (generic challenges)
    """

    kind: CaptchaKind
    label: str
    marker: str = ""
    has_button: bool = False

    def warning(self) -> str:
        text = f"CAPTCHA detected ({self.label})."
        if self.has_button:
            text += " A verification button is present; clicking it may be enough."
        else:
            text += " Automated interaction is likely blocked on this page."
        return text


# Markup fragments checked in order; first match wins
DETECTION_PATTERNS: List[Tuple[CaptchaKind, str, Tuple[str, ...]]] = [
    (CaptchaKind.RECAPTCHA, "Google reCAPTCHA", ("g-recaptcha", "recaptcha/api.js")),
    (CaptchaKind.HCAPTCHA, "hCaptcha", ("h-captcha", "hcaptcha.com")),
    (CaptchaKind.TURNSTILE, "Cloudflare Turnstile", ("cf-turnstile", "challenges.cloudflare.com")),
]

HUMAN_CHECK_PHRASES = (
    "Please verify you are a human",
    "Verify you are human",
    "are you a robot",
)

VERIFY_BUTTON_SCRIPT = """
() => {
    const candidates = Array.from(document.querySelectorAll(
        'button, input[type="button"], [role="button"], input[type="checkbox"]'
    ));
    return candidates.some((el) => {
        const text = (el.innerText || el.textContent || el.value || '');
        return text.includes('Verify') || text.includes('human');
    });
}
"""


class CaptchaDetector:
    """
    Detects CAPTCHAs by inspecting page markup.

    The page may still be navigating when the check runs (late redirects
    are common on challenge pages); reading content then fails with a
    "navigating" error, in which case the check is retried.

    Example:
        >>> detector = CaptchaDetector()
        >>> found = await detector.detect(page)
        >>> found.kind if found else None
        <CaptchaKind.TURNSTILE: 'turnstile'>
    """

    def __init__(self, retries: int = 3, retry_delay_ms: int = 500) -> None:
        self.retries = retries
        self.retry_delay_ms = retry_delay_ms

    @staticmethod
    def classify_markup(content: str) -> Optional[DetectedCaptcha]:
        """Classify raw markup without touching the page (generic button check excluded)."""
        for kind, label, markers in DETECTION_PATTERNS:
            for marker in markers:
                if marker in content:
                    return DetectedCaptcha(kind=kind, label=label, marker=marker)
        lowered = content.lower()
        for phrase in HUMAN_CHECK_PHRASES:
            if phrase.lower() in lowered:
                return DetectedCaptcha(kind=CaptchaKind.GENERIC, label="Generic CAPTCHA Page", marker=phrase)
        return None

    async def detect(self, page: Page) -> Optional[DetectedCaptcha]:
        """
        Detect a challenge on ``page``.

        Returns:
            DetectedCaptcha if found, None otherwise

        Raises:
            Exception: Content read errors other than in-flight navigation
        """
        remaining = self.retries
        while remaining > 0:
            try:
                content = await page.content()
                found = self.classify_markup(content)
                if found is not None and found.kind == CaptchaKind.GENERIC:
                    found.has_button = bool(await page.evaluate(VERIFY_BUTTON_SCRIPT))
                    if found.has_button:
                        found.label = "Verification Button/Checkbox"
                if found is not None:
                    logger.info(f"CAPTCHA detected: {found.label} (marker {found.marker!r})")
                return found
            except Exception as e:
                if "navigating" not in str(e).lower():
                    raise
                remaining -= 1
                logger.info(f"Page is navigating, retrying CAPTCHA check ({remaining} left)")
                await asyncio.sleep(self.retry_delay_ms / 1000)
        return None


async def detect_captcha(page: Page) -> Optional[DetectedCaptcha]:
    """Module-level shortcut for :meth:`CaptchaDetector.detect`."""
    return await CaptchaDetector().detect(page)

