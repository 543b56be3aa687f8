# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for vision-assisted element location."""

from __future__ import annotations

import json
import re
from typing import List

import pytest

from steadybrowser.core.locators import (
    LocatorPolicy,
    StructuralLocator,
    VisionElementLocator,
    looks_like_selector,
)
from steadybrowser.core.selector_resolver import SelectorResolver
from steadybrowser.core.vision import (
    Confidence,
    CoordinateCandidate,
    VisionLocator,
    parse_candidates_response,
    parse_coordinate_response,
    region_hints,
    score_candidate,
)
from steadybrowser.exceptions import VisionUnavailableError

from tests.conftest import FakePage

_PROPOSED = re.compile(r"PROPOSED COORDINATES: x=(\d+), y=(\d+)")


class ScriptedAnalyzer:
    """Answers vision prompts by kind: single, multi or verify."""

    def __init__(self, single: str, multi: str = "[]", verify=None):
        self.single = single
        self.multi = multi
        self.verify = verify or (lambda x, y: False)
        self.prompts: List[str] = []

    async def __call__(self, screenshot_path: str, prompt: str) -> str:
        self.prompts.append(prompt)
        if prompt.startswith("You are verifying"):
            match = _PROPOSED.search(prompt)
            return json.dumps({"match": self.verify(int(match.group(1)), int(match.group(2)))})
        if "find ALL elements" in prompt:
            return self.multi
        return self.single


@pytest.fixture
def page() -> FakePage:
    return FakePage("https://mail.example/inbox")


class TestParsing:
    """Tests for tolerant parsing of model answers."""

    def test_json_object(self):
        candidate = parse_coordinate_response('{"x": 120, "y": 48, "confidence": "HIGH", "description": "Sign in"}')
        assert candidate.found is True
        assert (candidate.x, candidate.y) == (120, 48)
        assert candidate.confidence == Confidence.HIGH

    def test_fenced_json(self):
        candidate = parse_coordinate_response('```json\n{"x": 5, "y": 6, "confidence": "medium"}\n```')
        assert candidate.confidence == Confidence.MEDIUM

    def test_regex_fallback_forces_low_confidence(self):
        candidate = parse_coordinate_response('I think it is at "x": 300, "y": 200 roughly, confidence high')
        assert (candidate.x, candidate.y) == (300, 200)
        assert candidate.confidence == Confidence.LOW

    def test_garbage_is_not_found(self):
        candidate = parse_coordinate_response("I cannot see any button.")
        assert candidate.found is False

    def test_unknown_confidence_becomes_low(self):
        candidate = parse_coordinate_response('{"x": 1, "y": 2, "confidence": "certain"}')
        assert candidate.confidence == Confidence.LOW

    def test_candidates_array_drops_not_found(self):
        response = json.dumps([
            {"x": 10, "y": 20, "confidence": "high"},
            {"x": -1, "y": -1, "confidence": "low"},
            "noise",
        ])
        candidates = parse_candidates_response(response)
        assert [(c.x, c.y) for c in candidates] == [(10, 20)]

    def test_candidates_not_a_list(self):
        assert parse_candidates_response('{"x": 1, "y": 1}') == []
        assert parse_candidates_response("nothing here") == []


class TestScoring:
    def test_hints(self):
        hints = region_hints("Inbox in the left sidebar")
        assert any("LEFT" in h for h in hints)
        assert any("Sidebar" in h for h in hints)
        assert region_hints("Submit") == []

    def test_left_sidebar_prefers_low_x(self):
        left = CoordinateCandidate(x=100, y=300, confidence=Confidence.MEDIUM)
        right = CoordinateCandidate(x=1200, y=300, confidence=Confidence.MEDIUM)
        description = "left sidebar item labeled Inbox"
        assert score_candidate(description, left, 1280, 720) > score_candidate(description, right, 1280, 720)

    def test_confidence_dominates_without_hints(self):
        high = CoordinateCandidate(x=900, y=300, confidence=Confidence.HIGH)
        low = CoordinateCandidate(x=100, y=300, confidence=Confidence.LOW)
        assert score_candidate("Inbox", high, 1280, 720) > score_candidate("Inbox", low, 1280, 720)


class TestVisionLocator:
    """Tests for the two-tier lookup."""

    @pytest.mark.asyncio
    async def test_unavailable_without_analyzer(self, page, tmp_path):
        locator = VisionLocator(None, tmp_path)
        assert locator.available is False
        with pytest.raises(VisionUnavailableError):
            await locator.locate_element(page, "Sign in")

    @pytest.mark.asyncio
    async def test_confident_single_shot(self, page, tmp_path):
        analyzer = ScriptedAnalyzer('{"x": 640, "y": 40, "confidence": "high", "description": "Sign in"}')
        candidate = await VisionLocator(analyzer, tmp_path).locate_element(page, "Sign in button")
        assert (candidate.x, candidate.y) == (640, 40)
        assert len(analyzer.prompts) == 1
        assert page.screenshots and page.screenshots[0].startswith(str(tmp_path))

    @pytest.mark.asyncio
    async def test_left_sidebar_item_lands_in_left_third(self, page, tmp_path):
        analyzer = ScriptedAnalyzer(
            single='{"x": 1100, "y": 200, "confidence": "low", "description": "Inbox count badge"}',
            multi=json.dumps([
                {"x": 1100, "y": 200, "confidence": "high", "description": "Inbox badge in message pane"},
                {"x": 140, "y": 210, "confidence": "medium", "description": "Inbox folder"},
            ]),
            verify=lambda x, y: x < 427,
        )
        candidate = await VisionLocator(analyzer, tmp_path).locate_element(page, "left sidebar item labeled Inbox")
        assert candidate.found is True
        assert candidate.x < 1280 / 3
        assert any("find ALL elements" in p for p in analyzer.prompts)

    @pytest.mark.asyncio
    async def test_verification_overrides_score(self, page, tmp_path):
        analyzer = ScriptedAnalyzer(
            single='{"x": -1, "y": -1, "confidence": "low"}',
            multi=json.dumps([
                {"x": 800, "y": 300, "confidence": "high"},
                {"x": 200, "y": 300, "confidence": "medium"},
            ]),
            verify=lambda x, y: x == 200,
        )
        candidate = await VisionLocator(analyzer, tmp_path).locate_element(page, "Inbox")
        assert candidate.x == 200

    @pytest.mark.asyncio
    async def test_unverified_falls_back_to_best_scored(self, page, tmp_path):
        analyzer = ScriptedAnalyzer(
            single="no idea",
            multi=json.dumps([
                {"x": 800, "y": 300, "confidence": "high"},
                {"x": 200, "y": 300, "confidence": "low"},
            ]),
        )
        candidate = await VisionLocator(analyzer, tmp_path).locate_element(page, "Inbox")
        assert candidate.x == 800

    @pytest.mark.asyncio
    async def test_no_candidates_returns_primary(self, page, tmp_path):
        analyzer = ScriptedAnalyzer(single="nothing", multi="[]")
        candidate = await VisionLocator(analyzer, tmp_path).locate_element(page, "Inbox")
        assert candidate.found is False

    @pytest.mark.asyncio
    async def test_describe_screen_region(self, page, tmp_path):
        analyzer = ScriptedAnalyzer(single="A login form with two inputs")
        text = await VisionLocator(analyzer, tmp_path).describe_screen(page, x=100, y=200)
        assert text == "A login form with two inputs"
        assert "near (100, 200)" in analyzer.prompts[0]

    @pytest.mark.asyncio
    async def test_repeated_lookups_reuse_one_capture_file(self, page, tmp_path):
        analyzer = ScriptedAnalyzer('{"x": 640, "y": 40, "confidence": "high"}')
        locator = VisionLocator(analyzer, tmp_path)
        await locator.locate_element(page, "Sign in")
        await locator.locate_element(page, "Sign in")
        await locator.describe_screen(page)
        assert [p.name for p in tmp_path.glob("*.png")] == ["vision-capture.png"]
        assert len(set(page.screenshots)) == 1


class TestLocators:
    """Tests for the locator policy."""

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("#login", True),
            ("button.primary", True),
            ("[name=q]", True),
            ("Sign in", False),
            ("Inbox", False),
        ],
    )
    def test_looks_like_selector(self, query, expected):
        assert looks_like_selector(query) is expected

    @pytest.mark.asyncio
    async def test_structural_text_lookup(self, page):
        located = await StructuralLocator(SelectorResolver()).locate(page, "Sign in")
        assert located.source == "structural"
        assert located.target.selector == 'text="Sign in"'
        assert located.is_coordinates is False

    @pytest.mark.asyncio
    async def test_structural_miss(self, page):
        page.locator("#gone").exists = False
        assert await StructuralLocator(SelectorResolver()).locate(page, "#gone") is None

    @pytest.mark.asyncio
    async def test_vision_locator_without_analyzer(self, page, tmp_path):
        assert await VisionElementLocator(VisionLocator(None, tmp_path)).locate(page, "Inbox") is None

    @pytest.mark.asyncio
    async def test_policy_falls_through_to_vision(self, page, tmp_path):
        page.locator('text="Inbox"').exists = False
        analyzer = ScriptedAnalyzer('{"x": 120, "y": 220, "confidence": "high"}')
        policy = LocatorPolicy([
            StructuralLocator(SelectorResolver()),
            VisionElementLocator(VisionLocator(analyzer, tmp_path)),
        ])
        located = await policy.locate(page, "Inbox")
        assert located.source == "vision"
        assert located.is_coordinates is True
        assert (located.candidate.x, located.candidate.y) == (120, 220)

    @pytest.mark.asyncio
    async def test_min_confidence_filters(self, page, tmp_path):
        analyzer = ScriptedAnalyzer('{"x": 120, "y": 220, "confidence": "medium"}')
        locator = VisionElementLocator(VisionLocator(analyzer, tmp_path), min_confidence=Confidence.HIGH)
        assert await locator.locate(page, "Inbox") is None

    @pytest.mark.asyncio
    async def test_policy_nothing_found(self, page, tmp_path):
        page.locator('text="Inbox"').exists = False
        policy = LocatorPolicy([StructuralLocator(SelectorResolver())])
        assert await policy.locate(page, "Inbox") is None
