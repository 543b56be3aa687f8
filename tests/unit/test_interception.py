# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for API interception and resource blocking."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Dict, Optional

import pytest

from steadybrowser.core.interception import ApiInterceptor, ResourceBlocker

from tests.conftest import FakeContext, FakePage


def make_response(
    url: str,
    status: int = 200,
    resource_type: str = "fetch",
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
):
    return SimpleNamespace(
        url=url,
        status=status,
        headers=headers if headers is not None else {"content-type": "application/json", "content-length": "2048"},
        request=SimpleNamespace(resource_type=resource_type, method=method),
    )


class FakeRoute:
    def __init__(self, url: str, resource_type: str):
        self.request = SimpleNamespace(url=url, resource_type=resource_type)
        self.outcome = None

    async def abort(self) -> None:
        self.outcome = "abort"

    async def continue_(self) -> None:
        self.outcome = "continue"


class TestApiInterceptor:
    """Tests for API endpoint discovery."""

    def test_records_json_fetch(self):
        interceptor = ApiInterceptor()
        entry = interceptor.record(make_response("https://api.example.com/v1/items"))
        assert entry.is_json is True
        assert entry.domain == "api.example.com"
        assert entry.format() == "GET https://api.example.com/v1/items [200 JSON application/json 2KB]"

    def test_ignores_documents_and_errors(self):
        interceptor = ApiInterceptor()
        assert interceptor.record(make_response("https://example.com/", resource_type="document")) is None
        assert interceptor.record(make_response("https://api.example.com/x", status=500)) is None
        assert interceptor.get_intercepted() == []

    def test_deduplicates_by_method_and_url(self):
        interceptor = ApiInterceptor()
        interceptor.record(make_response("https://api.example.com/x"))
        interceptor.record(make_response("https://api.example.com/x"))
        interceptor.record(make_response("https://api.example.com/x", method="POST"))
        assert len(interceptor.get_intercepted()) == 2

    def test_cap_drops_oldest(self):
        interceptor = ApiInterceptor(max_entries=2)
        for i in range(3):
            interceptor.record(make_response(f"https://api.example.com/{i}"))
        assert [e.url for e in interceptor.get_intercepted()] == [
            "https://api.example.com/1",
            "https://api.example.com/2",
        ]

    def test_json_only_filter(self):
        interceptor = ApiInterceptor()
        interceptor.record(make_response("https://api.example.com/a"))
        interceptor.record(make_response("https://api.example.com/b", headers={"content-type": "text/html"}))
        assert [e.url for e in interceptor.get_intercepted(json_only=True)] == ["https://api.example.com/a"]

    def test_format_empty(self):
        assert "No API endpoints intercepted yet" in ApiInterceptor().format_intercepted()

    def test_enable_and_disable(self):
        page = FakePage()
        interceptor = ApiInterceptor()
        assert interceptor.enable(page) is True
        assert interceptor.enable(page) is False
        assert len(page.listeners["response"]) == 1
        interceptor.disable()
        assert interceptor.enabled is False
        assert page.listeners["response"] == []

    @pytest.mark.asyncio
    async def test_listener_never_raises(self):
        interceptor = ApiInterceptor()
        await interceptor._on_response(SimpleNamespace(request=None))
        assert interceptor.get_intercepted() == []


class TestResourceBlocker:
    """Tests for tracker and media blocking."""

    def test_trackers_blocked(self):
        blocker = ResourceBlocker(block_trackers=True, block_media=False)
        assert blocker.should_block("https://www.google-analytics.com/collect", "xhr") is True
        assert blocker.should_block("https://example.com/app.js", "script") is False

    def test_media_blocked_until_allowed(self):
        blocker = ResourceBlocker(block_trackers=False, block_media=True)
        blocker.set_current_url("https://www.video.example/watch")
        assert blocker.should_block("https://cdn.video.example/a.mp4", "media") is True
        blocker.allow_media("video.example")
        assert blocker.should_block("https://cdn.video.example/a.mp4", "media") is False

    @pytest.mark.asyncio
    async def test_install_and_handle(self):
        context = FakeContext()
        blocker = ResourceBlocker()
        await blocker.install(context)
        pattern, handler = context.routes[0]
        assert pattern == "**/*"

        blocked = FakeRoute("https://doubleclick.net/ad", "script")
        allowed = FakeRoute("https://example.com/", "document")
        await handler(blocked)
        await handler(allowed)
        assert blocked.outcome == "abort"
        assert allowed.outcome == "continue"
        assert blocker.blocked_count == 1

    @pytest.mark.asyncio
    async def test_nothing_installed_when_disabled(self):
        context = FakeContext()
        await ResourceBlocker(block_trackers=False, block_media=False).install(context)
        assert context.routes == []
