# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for multi-field form filling."""

from __future__ import annotations

import pytest

from steadybrowser.core.forms import FieldResult, FormField, FormFiller, FormFillReport
from steadybrowser.core.interaction import InteractionExecutor
from steadybrowser.core.selector_resolver import SelectorResolver
from steadybrowser.core.stability import StabilityDetector
from steadybrowser.core.tuner import DomainSettings

from tests.conftest import FakePage


@pytest.fixture
def page() -> FakePage:
    return FakePage("https://example.com/signup")


@pytest.fixture
def filler(fast_timing) -> FormFiller:
    executor = InteractionExecutor(fast_timing, StabilityDetector(fast_timing))
    return FormFiller(executor, SelectorResolver())


class TestFormField:
    def test_from_dict_defaults(self):
        field = FormField.from_dict({"selector": 3})
        assert field.selector == 3
        assert field.value == ""
        assert field.action == "fill"

    def test_action_lowercased(self):
        assert FormField.from_dict({"selector": "#a", "action": "SELECT", "value": 2}).action == "select"

    @pytest.mark.parametrize("value, expected", [("true", True), ("", True), ("No", False), ("0", False)])
    def test_wants_checked(self, value, expected):
        assert FormField("#terms", value, "check").wants_checked is expected


class TestFormFillReport:
    def test_success_summary(self):
        report = FormFillReport(field_count=2, submit_requested=True)
        report.results = [FieldResult("OK", "fill", "#a"), FieldResult("OK", "fill", "#b")]
        assert report.summary() == "Form filled successfully (2 fields + submit)."

    def test_partial_summary_and_details(self):
        report = FormFillReport(field_count=2)
        report.results = [
            FieldResult("OK", "fill", "#a", ' = "x"'),
            FieldResult("FAIL", "check", "#b", "element is not visible"),
        ]
        assert report.success is False
        assert report.format() == (
            "Form partially filled (1/2 fields OK, 1 failed).\n\n"
            'Details:\nOK fill "#a" = "x"\nFAIL check "#b": element is not visible'
        )


class TestFormFiller:
    """Tests for field-by-field filling."""

    @pytest.mark.asyncio
    async def test_fill_and_check(self, page, filler):
        report = await filler.fill(
            page,
            [
                {"selector": "#name", "value": "Ada Lovelace"},
                {"selector": "#terms", "value": "true", "action": "check"},
            ],
            settings=DomainSettings(wait_after_click=0),
        )
        assert report.success is True
        assert page.locator("#name").value == "Ada Lovelace"
        assert page.locator("#terms").checked is True
        assert report.results[0].format() == 'OK fill "#name" = "Ada Lovelace"'

    @pytest.mark.asyncio
    async def test_unknown_action_and_stale_ref_are_skipped(self, page, filler):
        report = await filler.fill(
            page,
            [
                FormField("#name", "x", "drag"),
                FormField(12, "x", "fill"),
            ],
            submit_selector=99,
        )
        assert [r.status for r in report.results] == ["SKIP", "SKIP", "SKIP"]
        assert report.results[1].detail == "stale ref"
        assert report.results[2].action == "submit"

    @pytest.mark.asyncio
    async def test_failure_is_reported_per_field(self, page, filler):
        page.locator("#terms").set_checked_error = Exception("element is not visible")
        report = await filler.fill(
            page,
            [
                {"selector": "#name", "value": "Ada"},
                {"selector": "#terms", "value": "true", "action": "check"},
            ],
        )
        assert [r.status for r in report.results] == ["OK", "FAIL"]
        assert "1/2 fields OK" in report.summary()
