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

"""URL helpers shared by navigation, blank-page tracking and the tuner."""

from __future__ import annotations

from urllib.parse import urlparse


def normalize_url(url: str) -> str:
    """
    Add an https scheme when the URL has none.

    Example:
        >>> normalize_url("example.com/path")
        'https://example.com/path'
    """
    url = url.strip()
    if url.startswith(("http://", "https://", "about:", "data:", "file:")):
        return url
    return "https://" + url


def domain_of(url: str) -> str:
    """
    Return the lowercase hostname of a URL without a leading ``www.``.

    Returns an empty string when the URL has no parsable host.
    """
    try:
        host = urlparse(normalize_url(url)).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host
