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

"""Utility helpers for SteadyBrowser."""

from steadybrowser.utils.action_logger import BrowserActionLogger
from steadybrowser.utils.logger import (
    LogFormat,
    configure_logging,
    get_logger,
    logger,
    setup_logger,
)
from steadybrowser.utils.urls import domain_of, normalize_url

__all__ = [
    "BrowserActionLogger",
    "LogFormat",
    "configure_logging",
    "domain_of",
    "get_logger",
    "logger",
    "normalize_url",
    "setup_logger",
]
