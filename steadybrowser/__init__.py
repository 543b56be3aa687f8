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
SteadyBrowser - a reliability engine for agent-driven browser automation.

Wraps a Playwright Chromium session with launch recovery, render-stability
detection, loop detection, circuit breakers, stale-reference protection and
vision fallbacks, exposing one :class:`BrowserEngine` operation surface.
"""

__version__ = "0.1.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from steadybrowser.core.config import EngineConfig, load_config_from_file
from steadybrowser.core.results import ErrorKind, OperationResult, ResultStatus
from steadybrowser.core.tuner import DomainSettings, JsonFileTuner, NullTuner
from steadybrowser.engine import BrowserEngine
from steadybrowser.exceptions import (
    ConfigurationError,
    LaunchFailure,
    SessionError,
    SteadyBrowserError,
)

__all__ = [
    # Engine
    "BrowserEngine",
    # Configuration
    "EngineConfig",
    "load_config_from_file",
    # Results
    "ErrorKind",
    "OperationResult",
    "ResultStatus",
    # Tuning
    "DomainSettings",
    "JsonFileTuner",
    "NullTuner",
    # Errors
    "ConfigurationError",
    "LaunchFailure",
    "SessionError",
    "SteadyBrowserError",
]
