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
Runtime tuning collaborator.

The engine asks a :class:`RuntimeTuner` whether a domain must run headful
and which per-domain timings to use, and writes back what it learns
("this domain returns blank pages headless"). Two implementations ship:
:class:`NullTuner` (defaults only, learns nothing) and
:class:`JsonFileTuner` (persists overrides and a capped learning log).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

from steadybrowser.utils.logger import get_logger
from steadybrowser.utils.urls import normalize_url

logger = get_logger("tuner")


@dataclass
class DomainSettings:
    """Per-domain browser timings and behavior.

    All durations are in milliseconds.
    """

    navigation_timeout: int = 30000
    click_timeout: int = 15000
    type_timeout: int = 10000
    wait_after_click: int = 1000
    use_slow_typing: bool = False
    slow_typing_delay: int = 50
    force_headful: bool = False

    def merged(self, overrides: Dict[str, Any]) -> "DomainSettings":
        """Return a copy with known keys from ``overrides`` applied."""
        known = {f.name for f in fields(self)}
        values = asdict(self)
        values.update({k: v for k, v in overrides.items() if k in known})
        return DomainSettings(**values)


@runtime_checkable
class RuntimeTuner(Protocol):
    """Read and write path for learned per-domain browser behavior."""

    def should_force_headful(self, url: str) -> bool:
        ...

    def get_browser_settings_for_domain(self, url: str) -> DomainSettings:
        ...

    def mark_domain_as_headful(self, domain: str, reason: str) -> str:
        ...

    def tune_browser_for_domain(self, domain: str, settings: Dict[str, Any], reason: str) -> str:
        ...


def _hostname(url: str) -> str:
    try:
        return (urlparse(normalize_url(url)).hostname or "").lower()
    except ValueError:
        return ""


class NullTuner:
    """Tuner that always answers with defaults and discards write-backs."""

    def __init__(self, defaults: Optional[DomainSettings] = None) -> None:
        self.defaults = defaults or DomainSettings()

    def should_force_headful(self, url: str) -> bool:
        return False

    def get_browser_settings_for_domain(self, url: str) -> DomainSettings:
        return self.defaults

    def mark_domain_as_headful(self, domain: str, reason: str) -> str:
        return f"Ignored headful request for {domain}"

    def tune_browser_for_domain(self, domain: str, settings: Dict[str, Any], reason: str) -> str:
        return f"Ignored settings for {domain}"


class JsonFileTuner:
    """
    Tuner persisting domain overrides to a JSON file.

    Domains match by substring of the URL hostname, so an override stored
    for ``example.com`` also applies to ``app.example.com``.

    Example:
        >>> tuner = JsonFileTuner(Path("~/.steadybrowser/tuning.json"))
        >>> tuner.tune_browser_for_domain("example.com", {"use_slow_typing": True}, "inputs drop keys")
        >>> tuner.get_browser_settings_for_domain("https://app.example.com").use_slow_typing
        True
    """

    MAX_LEARNINGS = 100

    def __init__(self, path: Path, defaults: Optional[DomainSettings] = None) -> None:
        self.path = Path(path)
        self.defaults = defaults or DomainSettings()
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._learnings: List[Dict[str, Any]] = []
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            state = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load tuning state, using defaults: {e}")
            return
        self._overrides = dict(state.get("domain_overrides") or {})
        self._learnings = list(state.get("learnings") or [])

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(
                    {"domain_overrides": self._overrides, "learnings": self._learnings},
                    indent=2,
                ),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"Failed to save tuning state: {e}")

    def _find_override(self, url: str) -> Optional[Dict[str, Any]]:
        host = _hostname(url)
        if not host:
            return None
        for domain, override in self._overrides.items():
            if domain in host:
                return override
        return None

    def should_force_headful(self, url: str) -> bool:
        override = self._find_override(url)
        return bool(override and override.get("force_headful"))

    def get_browser_settings_for_domain(self, url: str) -> DomainSettings:
        override = self._find_override(url)
        if override:
            return self.defaults.merged(override)
        return self.defaults

    def tune_browser_for_domain(self, domain: str, settings: Dict[str, Any], reason: str) -> str:
        old = dict(self._overrides.get(domain, {}))
        new = {**old, **settings}
        self._overrides[domain] = new
        self._learnings.append({
            "domain": domain,
            "old_value": old,
            "new_value": new,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        self._learnings = self._learnings[-self.MAX_LEARNINGS:]
        self._save()
        logger.info(f"Updated browser settings for {domain}: {json.dumps(settings)}")
        return f"Browser settings for {domain} updated: {json.dumps(settings)}"

    def mark_domain_as_headful(self, domain: str, reason: str) -> str:
        return self.tune_browser_for_domain(domain, {"force_headful": True}, reason)

    def get_tuning_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self._learnings[-limit:]
