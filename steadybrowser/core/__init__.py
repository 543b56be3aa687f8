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

"""Core browser reliability components."""

from steadybrowser.core.config import EngineConfig, LaunchConfig, SearchConfig, ThresholdConfig, TimingConfig
from steadybrowser.core.forms import FormField, FormFiller, FormFillReport
from steadybrowser.core.interaction import ActionOutcome, InteractionExecutor
from steadybrowser.core.interaction_state import InteractionState
from steadybrowser.core.process_guard import ProcessGuard
from steadybrowser.core.results import ErrorKind, OperationResult, ResultStatus
from steadybrowser.core.selector_resolver import ResolvedTarget, SelectorResolver, Snapshot
from steadybrowser.core.session import DegradedReason, SessionManager, SessionState
from steadybrowser.core.stability import PageMetrics, StabilityDetector
from steadybrowser.core.tuner import DomainSettings, JsonFileTuner, NullTuner, RuntimeTuner
from steadybrowser.core.vision import CoordinateCandidate, VisionLocator

__all__ = [
    "ActionOutcome",
    "CoordinateCandidate",
    "DegradedReason",
    "DomainSettings",
    "EngineConfig",
    "ErrorKind",
    "FormField",
    "FormFillReport",
    "FormFiller",
    "InteractionExecutor",
    "InteractionState",
    "JsonFileTuner",
    "LaunchConfig",
    "NullTuner",
    "OperationResult",
    "PageMetrics",
    "ProcessGuard",
    "ResolvedTarget",
    "ResultStatus",
    "RuntimeTuner",
    "SearchConfig",
    "SelectorResolver",
    "SessionManager",
    "SessionState",
    "Snapshot",
    "StabilityDetector",
    "ThresholdConfig",
    "TimingConfig",
    "VisionLocator",
]
