# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for operation result rendering."""

from __future__ import annotations

from steadybrowser.core.results import ErrorKind, OperationResult, ResultStatus


class TestOperationResult:
    def test_ok_render(self):
        result = OperationResult.ok("Navigated to https://example.com", url="https://example.com")
        assert result.success is True
        assert str(result) == "Navigated to https://example.com"
        assert result.data == {"url": "https://example.com"}

    def test_error_render_with_suggestion(self):
        result = OperationResult.error(
            ErrorKind.DNS_UNRESOLVED,
            "Could not resolve host",
            suggestion="Check the URL for typos.",
        )
        assert result.status == ResultStatus.ERROR
        assert result.render() == "Error: Could not resolve host\n\nSuggestion: Check the URL for typos."

    def test_warnings_follow_message(self):
        result = OperationResult.ok("Navigated").warn(ErrorKind.BLANK_PAGE_SUSPECTED, "Page appears blank")
        assert result.has_warning(ErrorKind.BLANK_PAGE_SUSPECTED)
        assert not result.has_warning(ErrorKind.CAPTCHA_DETECTED)
        assert result.render() == "Navigated\n[WARNING: Page appears blank]"

    def test_suggestion_hidden_on_success(self):
        result = OperationResult.ok("Clicked")
        result.suggestion = "unused"
        assert "Suggestion" not in result.render()

    def test_refused_to_dict(self):
        result = OperationResult.refused(ErrorKind.CIRCUIT_OPEN, "Circuit open", suggestion="Wait.")
        result.warn(ErrorKind.LOOP_DETECTED, "Repeated click")
        assert result.to_dict() == {
            "status": "refused",
            "message": "Circuit open",
            "error_kind": "circuit_open",
            "suggestion": "Wait.",
            "warnings": [{"kind": "loop_detected", "message": "Repeated click"}],
            "data": {},
        }
