# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for content extraction, scrolling and debug artifacts."""

from __future__ import annotations

import json

import pytest

from steadybrowser.core.artifacts import DebugArtifacts, ProfileHistory, save_debug_artifacts
from steadybrowser.core.content import (
    EXTRACT_CONTENT_SCRIPT,
    EXTRACT_DATA_SCRIPT,
    SCROLL_POSITION_SCRIPT,
    SCROLL_SCRIPT,
    extract_content,
    extract_data,
    format_extracted_items,
    scroll,
)

from tests.conftest import FakePage


@pytest.fixture
def page():
    return FakePage("https://example.com/article")


class TestExtractContent:
    @pytest.mark.asyncio
    async def test_returns_readable_text(self, page):
        page.script_results[EXTRACT_CONTENT_SCRIPT] = {
            "title": "Article",
            "url": "https://example.com/article",
            "text": "# Heading\n\nA paragraph of readable text.",
        }
        content = await extract_content(page)
        assert content.title == "Article"
        assert content.truncated is False
        assert content.format().startswith('PAGE: "Article"\nURL: https://example.com/article')

    @pytest.mark.asyncio
    async def test_too_little_text(self, page):
        page.script_results[EXTRACT_CONTENT_SCRIPT] = {"title": "", "url": page.url, "text": "hi"}
        assert await extract_content(page) is None

    @pytest.mark.asyncio
    async def test_truncates_long_text(self, page):
        page.script_results[EXTRACT_CONTENT_SCRIPT] = {"title": "Long", "url": page.url, "text": "x" * 500}
        content = await extract_content(page, max_chars=100)
        assert content.truncated is True
        assert content.total_length == 500
        assert content.text.endswith("[truncated, 500 total chars]")


class TestExtractData:
    @pytest.mark.asyncio
    async def test_text_mode(self, page):
        page.script_results[EXTRACT_DATA_SCRIPT] = [
            {"index": 0, "text": "First", "tag": "a", "href": "/one"},
            {"index": 1, "text": "", "tag": "a"},
        ]
        items = await extract_data(page, "a.result")
        assert page.evaluations[-1][1] == {"sel": "a.result", "attr": None, "lim": 50, "html": False}
        assert items[0].format() == "1. First [href=/one]"
        assert items[1].format() == "2. (empty)"

    @pytest.mark.asyncio
    async def test_attribute_mode(self, page):
        page.script_results[EXTRACT_DATA_SCRIPT] = [{"index": 0, "value": "/pricing"}]
        items = await extract_data(page, "a", attribute="href", limit=0)
        assert page.evaluations[-1][1]["lim"] == 1
        text = format_extracted_items("a", items)
        assert text == 'Extracted 1 element(s) matching "a":\n1. /pricing'

    def test_no_matches(self):
        assert format_extracted_items(".missing", []) == 'No elements found matching ".missing".'


class TestScroll:
    @pytest.mark.asyncio
    async def test_unknown_direction(self, page):
        with pytest.raises(ValueError):
            await scroll(page, "sideways")

    @pytest.mark.asyncio
    async def test_reports_position(self, page):
        page.script_results[SCROLL_POSITION_SCRIPT] = {
            "scrollTop": 600,
            "scrollHeight": 1200,
            "clientHeight": 600,
            "atTop": False,
            "atBottom": True,
        }
        position = await scroll(page, "Down", settle_ms=0)
        assert (SCROLL_SCRIPT, {"direction": "down", "amount": 600}) in page.evaluations
        assert position.describe() == "Position: 600/1200px (at bottom)"

    @pytest.mark.asyncio
    async def test_position_failure_is_tolerated(self, page):
        page.script_results[SCROLL_POSITION_SCRIPT] = RuntimeError("detached")
        position = await scroll(page, "top", amount=100, settle_ms=0)
        assert position.scroll_top == 0


class TestArtifacts:
    def test_history_is_capped(self, tmp_path):
        history = ProfileHistory(tmp_path / "profiles" / "default" / "history.json", cap=3)
        for i in range(5):
            history.record(f"https://example.com/{i}", title=str(i))
        entries = history.entries()
        assert [e["url"] for e in entries] == [f"https://example.com/{i}" for i in (2, 3, 4)]
        assert json.loads(history.path.read_text())[0]["title"] == "2"

    def test_unreadable_history(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        assert ProfileHistory(path).entries() == []

    @pytest.mark.asyncio
    async def test_save_debug_artifacts(self, page, tmp_path):
        page.html = "<html><body>blank</body></html>"
        artifacts = await save_debug_artifacts(page, tmp_path / "debug", "blank-navigate")
        assert artifacts.screenshot_path.exists()
        assert artifacts.html_path.read_text() == page.html
        assert artifacts.screenshot_path.name.startswith("blank-navigate-")

    @pytest.mark.asyncio
    async def test_save_failure_returns_none(self, page, tmp_path):
        page.content_error = RuntimeError("Target closed")
        assert await save_debug_artifacts(page, tmp_path, "broken") is None

    def test_describe(self):
        assert DebugArtifacts().describe() == "no artifacts"
