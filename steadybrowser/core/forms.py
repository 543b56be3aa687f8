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
Multi-field form filling.

:class:`FormFiller` drives the :class:`InteractionExecutor` field by field,
wrapping each field in :meth:`InteractionExecutor.with_retries`. A fill is
reported ``OK`` only after the live value was read back and equals the
intended text; every other outcome is ``FAIL`` or ``SKIP``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from playwright.async_api import Page

from steadybrowser.core.artifacts import save_debug_artifacts
from steadybrowser.core.interaction import ActionOutcome, InteractionExecutor
from steadybrowser.core.selector_resolver import SelectorResolver
from steadybrowser.core.tuner import DomainSettings
from steadybrowser.exceptions import InteractionFailure, StaleReferenceError
from steadybrowser.utils.logger import get_logger

logger = get_logger("forms")

FIELD_ACTIONS = ("fill", "select", "check", "click")

SUBMIT_FEEDBACK_SELECTOR = '[role="alert"], .error, .success, .notification, [aria-invalid="true"]'


@dataclass
class FormField:
    """One field of a form fill request.

    Attributes:
        selector: Element reference or selector
        value: Text to fill, option to select, or ``true``/``false`` for check
        action: ``fill``, ``select``, ``check`` or ``click``
    """

    selector: Union[int, str]
    value: str = ""
    action: str = "fill"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormField":
        return cls(
            selector=data["selector"],
            value=str(data.get("value", "")),
            action=str(data.get("action") or "fill").lower(),
        )

    @property
    def wants_checked(self) -> bool:
        return self.value.strip().lower() not in ("false", "0", "no", "off")


@dataclass
class FieldResult:
    """Per-field outcome line."""

    status: str
    action: str
    selector: str
    detail: str = ""

    def format(self) -> str:
        if self.status == "OK":
            return f'OK {self.action} "{self.selector}"{self.detail}'
        return f'{self.status} {self.action} "{self.selector}": {self.detail}'


@dataclass
class FormFillReport:
    """Outcome of :meth:`FormFiller.fill`."""

    field_count: int
    results: List[FieldResult] = field(default_factory=list)
    submit_requested: bool = False

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status != "OK")

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        if self.success:
            submit = " + submit" if self.submit_requested else ""
            return f"Form filled successfully ({self.field_count} fields{submit})."
        # A failed submit counts against the total as well
        ok = max(self.field_count - self.failed, 0)
        return f"Form partially filled ({ok}/{self.field_count} fields OK, {self.failed} failed)."

    def format(self) -> str:
        details = "\n".join(r.format() for r in self.results)
        return f"{self.summary()}\n\nDetails:\n{details}"


def _preview(value: str, limit: int = 30) -> str:
    return value[:limit] + ("..." if len(value) > limit else "")


class FormFiller:
    """
    Fills forms through the executor with bounded retries per field.

    Args:
        executor: Executor performing the individual actions
        resolver: Resolver for element references
        debug_dir: Where failure diagnostics are written, None to skip them
    """

    def __init__(
        self,
        executor: InteractionExecutor,
        resolver: SelectorResolver,
        debug_dir: Optional[Path] = None,
        submit_wait_ms: int = 8000,
    ) -> None:
        self.executor = executor
        self.resolver = resolver
        self.debug_dir = debug_dir
        self.submit_wait_ms = submit_wait_ms

    async def fill(
        self,
        page: Page,
        fields: Sequence[Union[FormField, Dict[str, Any]]],
        submit_selector: Optional[Union[int, str]] = None,
        settings: Optional[DomainSettings] = None,
    ) -> FormFillReport:
        settings = settings or DomainSettings()
        parsed = [f if isinstance(f, FormField) else FormField.from_dict(f) for f in fields]
        report = FormFillReport(field_count=len(parsed), submit_requested=submit_selector is not None)

        for form_field in parsed:
            report.results.append(await self._fill_field(page, form_field, settings))

        if submit_selector is not None:
            report.results.append(await self._submit(page, submit_selector, settings))
        logger.info(report.summary())
        return report

    async def _fill_field(self, page: Page, form_field: FormField, settings: DomainSettings) -> FieldResult:
        label = str(form_field.selector)
        action = form_field.action
        if action not in FIELD_ACTIONS:
            return FieldResult("SKIP", action, label, f"unknown action (use {', '.join(FIELD_ACTIONS)})")
        try:
            target = await self.resolver.resolve(page, form_field.selector)
        except StaleReferenceError:
            return FieldResult("SKIP", action, label, "stale ref")

        try:
            if action == "fill":
                await self._run(page, f"fill({label})", 3, 350,
                                lambda: self.executor.type_text(page, target, form_field.value, settings))
                return FieldResult("OK", action, label, f' = "{_preview(form_field.value)}"')
            if action == "select":
                await self._run(page, f"select({label})", 2, 300,
                                lambda: self.executor.select_option(page, target, form_field.value, settings))
                return FieldResult("OK", action, label, f' = "{form_field.value}"')
            if action == "check":
                wanted = form_field.wants_checked
                await self._run(page, f"check({label})", 2, 250,
                                lambda: self.executor.set_checked(page, target, wanted))
                return FieldResult("OK", action, label, f" = {str(wanted).lower()}")
            await self._run(page, f"click({label})", 2, 300,
                            lambda: self.executor.click(page, target, settings))
            return FieldResult("OK", action, label)
        except Exception as e:
            note = await self._diagnostics(page, f"fillform-{action}-failure")
            return FieldResult("FAIL", action, label, f"{str(e)[:120]}{note}")

    async def _submit(
        self,
        page: Page,
        submit_selector: Union[int, str],
        settings: DomainSettings,
    ) -> FieldResult:
        label = str(submit_selector)
        try:
            target = await self.resolver.resolve(page, submit_selector)
        except StaleReferenceError:
            return FieldResult("SKIP", "submit", label, "stale ref")

        before_url = page.url
        try:
            await self._run(page, f"submit({label})", 2, 400,
                            lambda: self.executor.click(page, target, settings))
        except Exception as e:
            note = await self._diagnostics(page, "fillform-submit-failure")
            return FieldResult("FAIL", "submit", label, f"{e}{note}")

        await self._await_submit_effect(page, before_url)
        try:
            title = await page.title()
        except Exception as e:
            logger.debug(f"Reading title after submit failed: {e}")
            title = ""
        changed = " [url changed]" if page.url != before_url else ""
        return FieldResult("OK", "submit", label, f' -> "{title}" ({page.url}){changed}')

    async def _run(
        self,
        page: Page,
        name: str,
        attempts: int,
        base_delay_ms: int,
        perform: Callable[[], Awaitable[ActionOutcome]],
    ) -> ActionOutcome:
        async def attempt(_: int) -> ActionOutcome:
            outcome = await perform()
            if not outcome.success:
                raise InteractionFailure(
                    outcome.failure.kind,
                    outcome.error or f"{outcome.action} failed",
                    outcome.failure.suggestion,
                )
            return outcome

        return await self.executor.with_retries(page, name, attempt, attempts=attempts, base_delay_ms=base_delay_ms)

    async def _await_submit_effect(self, page: Page, before_url: str) -> None:
        """Wait for a URL change, network idle or a feedback element, whichever comes first."""
        timeout = self.submit_wait_ms
        waits = [
            asyncio.ensure_future(page.wait_for_url(lambda url: url != before_url, timeout=timeout)),
            asyncio.ensure_future(page.wait_for_load_state("networkidle", timeout=timeout)),
            asyncio.ensure_future(page.wait_for_selector(SUBMIT_FEEDBACK_SELECTOR, timeout=timeout)),
        ]
        done, pending = await asyncio.wait(waits, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if task.exception() is not None:
                logger.debug(f"Submit wait ended: {task.exception()}")
        await self.executor.stability.await_settled(page, 3000)

    async def _diagnostics(self, page: Page, tag: str) -> str:
        if self.debug_dir is None:
            return ""
        artifacts = await save_debug_artifacts(page, self.debug_dir, tag)
        if artifacts is None or artifacts.screenshot_path is None:
            return ""
        return f" [diag: {artifacts.screenshot_path}]"


