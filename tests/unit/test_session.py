# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the session launch ladder and lifecycle."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from steadybrowser.core.process_guard import ProcessGuard
from steadybrowser.core.session import (
    STEALTH_SCRIPT,
    DegradedReason,
    SessionManager,
    SessionState,
    matches_headful_domain,
)
from steadybrowser.exceptions import LaunchFailure, SessionError

from tests.conftest import FakePage

LOCK_ERROR = Exception("Failed to create a ProcessSingleton for your profile directory")
CRASH_ERROR = Exception("Browser closed: process did exit with exit code 139")
DISPLAY_ERROR = Exception("Missing X server or $DISPLAY")


class QuietGuard(ProcessGuard):
    """Guard that never sweeps real processes."""

    def find_profile_processes(self, profile_dir: Path) -> List[int]:
        return []


@pytest.fixture
def session(engine_config, playwright_factory) -> SessionManager:
    return SessionManager(engine_config, guard=QuietGuard(), playwright_factory=playwright_factory)


@pytest.fixture
def chromium(fake_playwright):
    return fake_playwright.chromium


class TestLaunchLadder:
    """Tests for the four-rung launch escalation."""

    @pytest.mark.asyncio
    async def test_persistent_launch(self, session, chromium, fake_page, no_display):
        page = await session.ensure_session()
        assert page is fake_page
        assert session.state == SessionState.READY
        assert session.launch_rung == "persistent"
        assert chromium.persistent_calls[0][0] == str(session.profile_dir)
        assert STEALTH_SCRIPT in session.context.init_scripts

    @pytest.mark.asyncio
    async def test_lock_then_crash_recovers_on_fresh_profile(self, session, chromium, no_display):
        session.profile_dir.mkdir(parents=True)
        (session.profile_dir / "Preferences").write_text("{}")
        chromium.persistent_errors = [LOCK_ERROR, CRASH_ERROR]

        await session.ensure_session()

        assert session.launch_rung == "fresh-profile"
        assert session.state == SessionState.DEGRADED
        assert session.degraded_reason == DegradedReason.CRASH_RECOVERED
        assert len(chromium.persistent_calls) == 3
        assert (session.profile_dir.with_name("default.broken") / "Preferences").exists()

    @pytest.mark.asyncio
    async def test_non_persistent_last_resort(self, session, chromium, no_display):
        chromium.persistent_errors = [LOCK_ERROR, LOCK_ERROR, CRASH_ERROR]
        page = await session.ensure_session()
        assert session.launch_rung == "non-persistent"
        assert session.degraded_reason == DegradedReason.CRASH_RECOVERED
        assert isinstance(page, FakePage)
        assert chromium.launch_calls[0]["headless"] is True

    @pytest.mark.asyncio
    async def test_all_rungs_fail(self, session, chromium, fake_playwright, no_display):
        chromium.persistent_errors = [LOCK_ERROR, LOCK_ERROR, CRASH_ERROR]
        chromium.launch_errors = [CRASH_ERROR]

        with pytest.raises(LaunchFailure) as exc_info:
            await session.ensure_session()

        assert [rung for rung, _ in exc_info.value.attempts] == [
            "persistent",
            "persistent-after-cleanup",
            "fresh-profile",
            "non-persistent",
        ]
        assert "4 attempt(s)" in str(exc_info.value)
        assert session.state == SessionState.CLOSED
        assert fake_playwright.stopped == 1

    @pytest.mark.asyncio
    async def test_display_failure_forces_headless(self, engine_config, playwright_factory, chromium, monkeypatch):
        monkeypatch.setenv("DISPLAY", ":0")
        monkeypatch.setattr("sys.platform", "linux")
        engine_config.launch.headless = False
        session = SessionManager(engine_config, guard=QuietGuard(), playwright_factory=playwright_factory)
        chromium.persistent_errors = [DISPLAY_ERROR]

        await session.ensure_session()

        assert session.headless is True
        assert session.state == SessionState.DEGRADED
        assert session.degraded_reason == DegradedReason.HEADLESS_FORCED
        assert chromium.persistent_calls[1][1]["headless"] is True
        assert session.is_headless_environment() is True

    @pytest.mark.asyncio
    async def test_remote_unreachable_falls_back(self, engine_config, playwright_factory, chromium, no_display):
        engine_config.launch.cdp_url = "http://127.0.0.1:9222"
        chromium.cdp_error = Exception("connect ECONNREFUSED 127.0.0.1:9222")
        session = SessionManager(engine_config, guard=QuietGuard(), playwright_factory=playwright_factory)

        await session.ensure_session()

        assert chromium.cdp_calls == ["http://127.0.0.1:9222"]
        assert session.launch_rung == "persistent"
        assert session.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_remote_attach(self, engine_config, playwright_factory, chromium, no_display):
        engine_config.launch.cdp_url = "http://127.0.0.1:9222"
        session = SessionManager(engine_config, guard=QuietGuard(), playwright_factory=playwright_factory)

        await session.ensure_session()

        assert session.launch_rung == "remote"
        assert session.state == SessionState.READY
        assert chromium.persistent_calls == []


class TestLifecycle:
    """Tests for reuse, relaunch and teardown."""

    @pytest.mark.asyncio
    async def test_session_is_reused(self, session, chromium, playwright_factory, no_display):
        first = await session.ensure_session()
        second = await session.ensure_session()
        assert first is second
        assert len(chromium.persistent_calls) == 1
        assert playwright_factory.starts == 1

    @pytest.mark.asyncio
    async def test_closed_page_triggers_relaunch(self, session, chromium, fake_page, no_display):
        await session.ensure_session()
        await fake_page.close()
        page = await session.ensure_session()
        assert page is not fake_page
        assert len(chromium.persistent_calls) == 2

    @pytest.mark.asyncio
    async def test_headful_request_without_display_stays_headless(self, session, chromium, no_display):
        await session.ensure_session()
        await session.ensure_session(headless_override=False)
        assert session.headless is True
        assert len(chromium.persistent_calls) == 1
        assert session.state == SessionState.DEGRADED
        assert session.degraded_reason == DegradedReason.HEADLESS_FORCED

    @pytest.mark.asyncio
    async def test_headful_request_before_launch_marks_degraded(self, session, chromium, no_display):
        await session.ensure_session(headless_override=False)
        assert session.headless is True
        assert session.state == SessionState.DEGRADED
        assert session.degraded_reason == DegradedReason.HEADLESS_FORCED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, session, fake_playwright, no_display):
        await session.ensure_session()
        await session.close()
        await session.close()
        assert session.state == SessionState.CLOSED
        assert session.page is None
        assert fake_playwright.stopped == 1

    @pytest.mark.asyncio
    async def test_switch_profile(self, session, chromium, no_display):
        await session.ensure_session()
        path = await session.switch_profile("work")
        assert path.name == "work"
        assert path.is_dir()
        assert session.state == SessionState.CLOSED

        await session.ensure_session()
        assert chromium.persistent_calls[-1][0] == str(path)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "  ", "..", "a/b"])
    async def test_switch_profile_rejects_bad_names(self, session, name):
        with pytest.raises(SessionError):
            await session.switch_profile(name)

    def test_describe(self, session):
        description = session.describe()
        assert description["state"] == "unlaunched"
        assert description["profile"] == "default"


class TestIsolatedPages:
    @pytest.mark.asyncio
    async def test_ephemeral_page_is_closed(self, session, fake_page, no_display):
        await session.ensure_session()
        async with session.ephemeral_page() as page:
            assert page is not fake_page
            assert page.is_closed() is False
        assert page.is_closed() is True
        assert session.page is fake_page

    @pytest.mark.asyncio
    async def test_ephemeral_context_uses_separate_browser(self, session, chromium, no_display):
        async with session.ephemeral_context() as page:
            assert isinstance(page, FakePage)
        assert chromium.launch_calls[0]["headless"] is True
        assert chromium.persistent_calls == []


class TestTracing:
    @pytest.mark.asyncio
    async def test_trace_round_trip(self, session, no_display):
        path = await session.start_trace()
        assert path is not None
        assert session.tracing is True
        assert await session.start_trace() is None

        saved = await session.stop_trace()
        assert saved == path
        assert saved.exists()
        assert session.tracing is False

    @pytest.mark.asyncio
    async def test_stop_without_trace(self, session):
        assert await session.stop_trace() is None


class TestHeadfulDomains:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://www.youtube.com/watch?v=1", True),
            ("https://www.google.com/search?q=x", True),
            ("https://www.google.com/maps", False),
            ("https://example.com/", False),
            ("not a url", False),
        ],
    )
    def test_matches(self, url, expected):
        assert matches_headful_domain(url) is expected

    def test_no_display_never_headful(self, session, no_display):
        assert session.should_use_headful("https://www.youtube.com/") is False

    def test_display_headful_for_known_domain(self, session, monkeypatch):
        monkeypatch.setenv("DISPLAY", ":0")
        monkeypatch.setattr("sys.platform", "linux")
        assert session.should_use_headful("https://www.youtube.com/") is True
        assert session.should_use_headful("https://example.com/") is False
