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
Engine configuration for SteadyBrowser.

Every threshold, window and timeout used by the reliability components
lives here. Values load from ``STEADYBROWSER_``-prefixed environment
variables (nested groups use ``__`` as separator), from a YAML/JSON file,
or programmatically.

Example:
    >>> from steadybrowser.core.config import EngineConfig
    >>> config = EngineConfig()  # Loads from environment
    >>> config.thresholds.loop_threshold
    5

    Environment overrides:
        STEADYBROWSER_PROFILE_NAME=work
        STEADYBROWSER_LAUNCH__HEADLESS=false
        STEADYBROWSER_THRESHOLDS__CIRCUIT_THRESHOLD=3
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from steadybrowser.exceptions import ConfigurationError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


class LaunchConfig(BaseModel):
    """Rendering-engine launch options.

    Attributes:
        headless: Preferred mode; forced on when no display is available
        channel: Optional Chromium channel (``chrome``, ``msedge``)
        viewport_width: Viewport width in CSS pixels
        viewport_height: Viewport height in CSS pixels
        user_agent: User agent applied to every context
        launch_timeout_ms: Timeout for a single launch attempt
        no_sandbox: Pass ``--no-sandbox``
        disable_gpu: Pass ``--disable-gpu``
        extra_args: Additional command-line flags
        cdp_url: Remote protocol endpoint; local launch is the fallback
        block_trackers: Abort requests to known tracking hosts
        block_media: Abort media and font requests by default
    """

    headless: bool = Field(default=True, description="Run headless by default")
    channel: Optional[str] = Field(default=None, description="Chromium channel")
    viewport_width: int = Field(default=1280, ge=320, description="Viewport width")
    viewport_height: int = Field(default=720, ge=240, description="Viewport height")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User agent string")
    launch_timeout_ms: int = Field(default=30000, ge=1000, description="Launch timeout")
    no_sandbox: bool = Field(default=True, description="Disable the Chromium sandbox")
    disable_gpu: bool = Field(default=True, description="Disable GPU acceleration")
    extra_args: List[str] = Field(default_factory=list, description="Extra launch flags")
    cdp_url: Optional[str] = Field(default=None, description="Remote CDP endpoint")
    block_trackers: bool = Field(default=True, description="Block tracking endpoints")
    block_media: bool = Field(default=True, description="Block heavy media resources")


class ThresholdConfig(BaseModel):
    """Empirically tuned reliability thresholds.

    Attributes:
        loop_threshold: Repeats inside the window that count as a loop
        nav_loop_window_ms: Window for navigation loop detection
        action_loop_window_ms: Window for interaction loop detection
        circuit_threshold: Consecutive navigation failures that open a circuit
        action_circuit_threshold: Consecutive interaction failures that open a circuit
        circuit_reset_ms: Time after which an open circuit half-opens
        nav_history_size: Navigation ring buffer capacity
        action_history_size: Interaction ring buffer capacity
        blank_domain_threshold: Blank navigations before a domain is refused
        blank_text_floor: Body text length below which a page may be blank
        blank_markup_floor: Markup length (whitespace removed) below which a page may be blank
        rendered_text_length: Body text length that counts as rendered content
        rendered_interactive_count: Interactive elements that count as rendered content
        profile_history_cap: Entries kept in ``history.json``
        screenshot_min_bytes: Screenshots smaller than this are retried
        intercepted_api_cap: Maximum intercepted API endpoints kept
    """

    loop_threshold: int = Field(default=5, ge=2)
    nav_loop_window_ms: int = Field(default=20000, ge=0)
    action_loop_window_ms: int = Field(default=15000, ge=0)
    circuit_threshold: int = Field(default=5, ge=1)
    action_circuit_threshold: int = Field(default=3, ge=1)
    circuit_reset_ms: int = Field(default=30000, ge=0)
    nav_history_size: int = Field(default=50, ge=1)
    action_history_size: int = Field(default=100, ge=1)
    blank_domain_threshold: int = Field(default=2, ge=1)
    blank_text_floor: int = Field(default=30, ge=0)
    blank_markup_floor: int = Field(default=1200, ge=0)
    rendered_text_length: int = Field(default=100, ge=0)
    rendered_interactive_count: int = Field(default=3, ge=0)
    profile_history_cap: int = Field(default=200, ge=1)
    screenshot_min_bytes: int = Field(default=15000, ge=0)
    intercepted_api_cap: int = Field(default=50, ge=1)


class TimingConfig(BaseModel):
    """Bounded waits, in milliseconds."""

    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    stable_budget_ms: int = Field(default=15000, ge=0)
    network_idle_cap_ms: int = Field(default=8000, ge=0)
    content_poll_interval_ms: int = Field(default=500, ge=50)
    content_poll_cap_ms: int = Field(default=10000, ge=0)
    mutation_debounce_ms: int = Field(default=500, ge=50)
    mutation_ceiling_ms: int = Field(default=5000, ge=0)
    hydration_extension_ms: int = Field(default=3000, ge=0)
    settle_budget_ms: int = Field(default=2000, ge=0)
    screenshot_paint_ms: int = Field(default=1000, ge=0)
    standard_action_timeout_ms: int = Field(default=5000, ge=100)
    force_action_timeout_ms: int = Field(default=3000, ge=100)
    wait_selector_timeout_ms: int = Field(default=10000, ge=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=250, ge=100)
    retry_max_delay_ms: int = Field(default=1200, ge=100)
    lock_cleanup_delay_ms: int = Field(default=1500, ge=0)
    crash_cleanup_delay_ms: int = Field(default=1000, ge=0)


class SearchConfig(BaseModel):
    """Search provider settings."""

    providers: List[str] = Field(
        default_factory=lambda: ["serper", "brave", "searxng", "google", "bing", "duckduckgo"],
        description="Provider order, first non-empty result wins",
    )
    cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    max_results: int = Field(default=8, ge=1, le=50)
    timeout_seconds: float = Field(default=15.0, ge=1.0)
    serper_api_key: Optional[str] = Field(default=None)
    brave_api_key: Optional[str] = Field(default=None)
    searxng_url: Optional[str] = Field(default=None)


class EngineConfig(BaseSettings):
    """Top-level engine configuration loaded from environment variables.

    Attributes:
        data_dir: Root for profiles, traces, debug captures and screenshots
        profile_name: Active profile under ``<data_dir>/profiles``
        ref_attribute: DOM attribute carrying element reference ordinals
        debug_always_save_artifacts: Capture debug artifacts on every navigation
    """

    data_dir: str = Field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), ".steadybrowser"),
        description="Data directory",
    )
    profile_name: str = Field(default="default", description="Browser profile name")
    ref_attribute: str = Field(default="data-steady-ref", description="Reference marker attribute")
    debug_always_save_artifacts: bool = Field(default=False)

    launch: LaunchConfig = Field(default_factory=LaunchConfig)
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    model_config = {
        "env_prefix": "STEADYBROWSER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @property
    def profiles_root(self) -> Path:
        return Path(self.data_dir) / "profiles"

    @property
    def profile_dir(self) -> Path:
        return self.profiles_root / self.profile_name

    @property
    def traces_dir(self) -> Path:
        return Path(self.data_dir) / "browser-traces"

    @property
    def debug_dir(self) -> Path:
        return Path(self.data_dir) / "browser-debug"

    @property
    def screenshot_path(self) -> Path:
        return Path(self.data_dir) / "screenshot.png"


def load_config_from_file(path: str) -> EngineConfig:
    """Load configuration from a YAML or JSON file.

    Environment variables still apply to keys the file does not set.

    Args:
        path: Path to configuration file

    Returns:
        EngineConfig instance

    Raises:
        ConfigurationError: If the file is missing or its format is invalid
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(f)
            elif path.endswith(".json"):
                data = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {path}")
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return EngineConfig(**data)
