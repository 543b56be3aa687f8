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
Profile lock and orphaned-process cleanup.

Chromium guards a profile directory with ``SingletonLock`` (a symlink whose
target is ``<hostname>-<pid>``) plus ``SingletonSocket`` and
``SingletonCookie``. A crashed or killed browser leaves these behind and
the next persistent launch fails with a "profile in use" error. The
:class:`ProcessGuard` makes launches idempotent by cleaning that state
before each attempt.

All cleanup is best effort: failures are logged and never raised, the
launch ladder retries regardless.
"""

from __future__ import annotations

import os
import re
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from steadybrowser.utils.logger import get_logger

logger = get_logger("process_guard")

LOCK_FILES = ("SingletonLock", "SingletonSocket", "SingletonCookie")

CRASH_DIRS = (
    "GPUCache",
    "ShaderCache",
    "GrShaderCache",
    "Crashpad",
    "crash_reports",
    "BrowserMetrics",
)

CRASH_FILES = ("Local State.tmp", "lockfile", ".org.chromium.Chromium.lock")

_PID_SUFFIX = re.compile(r"-(\d+)$")

DISPLAY_ERROR = re.compile(r"display|Xlib|X11|cannot open|main display", re.IGNORECASE)
LOCK_ERROR = re.compile(r"process_singleton|profile|SingletonLock|lock", re.IGNORECASE)
CRASH_ERROR = re.compile(r"crash|signal|exit.?code|gpu.?process|process.*exit", re.IGNORECASE)

# Characters with a meaning in the extended regular expressions pgrep uses
_ERE_SPECIAL = re.compile(r"([.^$*+?()\[\]{}|\\])")


def user_data_dir_flag(profile_dir: Path) -> str:
    """The ``--user-data-dir`` argument a browser on ``profile_dir`` runs with."""
    path = Path(profile_dir)
    if not path.is_absolute():
        path = path.resolve()
    return f"--user-data-dir={path}"


def _ere_escape(text: str) -> str:
    return _ERE_SPECIAL.sub(r"\\\1", text)


class LaunchErrorKind(str, Enum):
    """Classification of a failed launch attempt."""

    DISPLAY = "display"    # No usable display server
    LOCK = "lock"          # Profile held by another (possibly dead) process
    CRASH = "crash"        # Browser process died during startup
    OTHER = "other"


def classify_launch_error(error: Union[str, BaseException]) -> LaunchErrorKind:
    """
    Classify a launch failure by its message.

    Display errors are checked first: a missing X server message often also
    mentions the profile, and forcing headless is the only useful response.

    Example:
        >>> classify_launch_error("Missing X server or $DISPLAY")
        <LaunchErrorKind.DISPLAY: 'display'>
    """
    text = str(error)
    if DISPLAY_ERROR.search(text):
        return LaunchErrorKind.DISPLAY
    if LOCK_ERROR.search(text):
        return LaunchErrorKind.LOCK
    if CRASH_ERROR.search(text):
        return LaunchErrorKind.CRASH
    return LaunchErrorKind.OTHER


@dataclass
class CleanupReport:
    """What a cleanup pass did."""

    killed_pids: List[int] = field(default_factory=list)
    removed_locks: List[str] = field(default_factory=list)
    removed_artifacts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.killed_pids or self.removed_locks or self.removed_artifacts)


class ProcessGuard:
    """
    Cleans stale profile locks, orphaned browser processes and crash artifacts.

    Example:
        >>> guard = ProcessGuard()
        >>> report = guard.prepare_profile(Path("~/.steadybrowser/profiles/default"))
        >>> report.killed_pids
        []
    """

    def __init__(self, own_pid: Optional[int] = None) -> None:
        self._own_pid = own_pid if own_pid is not None else os.getpid()
        self._is_windows = sys.platform.startswith("win")

    # ------------------------------------------------------------------
    # Lock handling
    # ------------------------------------------------------------------

    def read_lock_owner(self, profile_dir: Path) -> Optional[int]:
        """
        Extract the pid that owns the profile's ``SingletonLock``.

        Returns:
            The owning pid, or None when there is no lock or it cannot be parsed
        """
        lock_path = Path(profile_dir) / "SingletonLock"
        try:
            if lock_path.is_symlink():
                target = os.readlink(lock_path)
            elif lock_path.exists():
                target = lock_path.read_text(encoding="utf-8", errors="ignore").strip()
            else:
                return None
        except OSError as e:
            logger.debug(f"Cannot read lock {lock_path}: {e}")
            return None

        match = _PID_SUFFIX.search(target)
        if match:
            return int(match.group(1))
        if target.isdigit():
            return int(target)
        return None

    def is_process_alive(self, pid: int) -> bool:
        """Check whether ``pid`` refers to a running process (signal 0 probe)."""
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but belongs to another user
            return True
        except OSError:
            return False
        return True

    def kill_process(self, pid: int) -> bool:
        """Force-terminate ``pid``. Never kills the current process."""
        if pid == self._own_pid or pid <= 0:
            return False
        kill_signal = getattr(signal, "SIGKILL", signal.SIGTERM)
        try:
            os.kill(pid, kill_signal)
            logger.warning(f"Killed orphaned browser process {pid}")
            return True
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.debug(f"Could not kill process {pid}: {e}")
            return False

    def find_profile_processes(self, profile_dir: Path) -> List[int]:
        """
        List pids of browsers launched with exactly this profile directory.

        ``pgrep -f`` narrows the candidates to command lines carrying
        ``--user-data-dir=<profile_dir>`` as a whole argument; each candidate
        is then confirmed against its own argument vector, so sibling
        profiles sharing a path prefix (``default-work``, ``default.broken``)
        are never returned. Empty on Windows or when pgrep is unavailable.
        """
        if self._is_windows or shutil.which("pgrep") is None:
            return []
        flag = user_data_dir_flag(profile_dir)
        try:
            result = subprocess.run(
                ["pgrep", "-f", "--", f"{_ere_escape(flag)}( |$)"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"pgrep sweep failed: {e}")
            return []

        pids = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line.isdigit():
                continue
            pid = int(line)
            if pid != self._own_pid and flag in self.process_arguments(pid):
                pids.append(pid)
        return pids

    def process_arguments(self, pid: int) -> List[str]:
        """
        Argument vector of ``pid``; empty when the process is gone.

        Reads ``/proc/<pid>/cmdline`` and falls back to ``ps`` where there is
        no procfs. The ``ps`` output is split on whitespace, which keeps
        ``--user-data-dir=`` arguments intact as long as the path has no spaces.
        """
        cmdline = Path(f"/proc/{pid}/cmdline")
        try:
            raw = cmdline.read_bytes()
        except FileNotFoundError:
            if Path("/proc/self").exists():
                return []
        except OSError as e:
            logger.debug(f"Cannot read {cmdline}: {e}")
            return []
        else:
            return [arg for arg in raw.decode("utf-8", errors="replace").split("\0") if arg]

        try:
            result = subprocess.run(
                ["ps", "-p", str(pid), "-o", "command="],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ps lookup for {pid} failed: {e}")
            return []
        return result.stdout.split()

    def remove_lock_files(self, profile_dir: Path, report: Optional[CleanupReport] = None) -> CleanupReport:
        """Remove Singleton* lock artifacts, including dangling symlinks."""
        report = report or CleanupReport()
        for name in LOCK_FILES:
            path = Path(profile_dir) / name
            try:
                # lstat so that dangling symlinks are still found
                os.lstat(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                report.errors.append(f"{name}: {e}")
                continue
            try:
                os.unlink(path)
                report.removed_locks.append(name)
            except OSError as e:
                report.errors.append(f"{name}: {e}")
                logger.debug(f"Could not remove {path}: {e}")
        return report

    def clean_stale_locks(self, profile_dir: Path) -> CleanupReport:
        """
        Kill the lock owner if it is still alive, sweep other processes
        holding the profile path, then remove the lock artifacts.
        """
        report = CleanupReport()
        profile_dir = Path(profile_dir)
        if not profile_dir.exists():
            return report

        owner = self.read_lock_owner(profile_dir)
        if owner is not None and owner != self._own_pid and self.is_process_alive(owner):
            if self.kill_process(owner):
                report.killed_pids.append(owner)

        for pid in self.find_profile_processes(profile_dir):
            if pid not in report.killed_pids and self.kill_process(pid):
                report.killed_pids.append(pid)

        self.remove_lock_files(profile_dir, report)
        if report.changed:
            logger.info(
                f"Profile lock cleanup for {profile_dir.name}: "
                f"killed={report.killed_pids} locks={report.removed_locks}"
            )
        return report

    # ------------------------------------------------------------------
    # Crash artifacts
    # ------------------------------------------------------------------

    def purge_crash_artifacts(self, profile_dir: Path) -> CleanupReport:
        """Delete volatile cache and crash-report state from a profile."""
        report = CleanupReport()
        profile_dir = Path(profile_dir)
        if not profile_dir.exists():
            return report

        for base in (profile_dir, profile_dir / "Default"):
            for name in CRASH_DIRS:
                path = base / name
                if path.is_dir():
                    try:
                        shutil.rmtree(path)
                        report.removed_artifacts.append(str(path.relative_to(profile_dir)))
                    except OSError as e:
                        report.errors.append(f"{path}: {e}")

        for name in CRASH_FILES:
            path = profile_dir / name
            if path.exists() or path.is_symlink():
                try:
                    path.unlink()
                    report.removed_artifacts.append(name)
                except OSError as e:
                    report.errors.append(f"{path}: {e}")

        if report.removed_artifacts:
            logger.info(f"Purged crash artifacts: {', '.join(report.removed_artifacts)}")
        return report

    def prepare_profile(self, profile_dir: Path) -> CleanupReport:
        """Pre-launch pass: create the profile directory and clear stale locks."""
        profile_dir = Path(profile_dir)
        try:
            profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create profile directory {profile_dir}: {e}")
            return CleanupReport(errors=[str(e)])
        return self.clean_stale_locks(profile_dir)

    def reset_profile(self, profile_dir: Path) -> Path:
        """
        Move a broken profile aside and create an empty one in its place.

        Returns:
            Path of the fresh profile directory
        """
        profile_dir = Path(profile_dir)
        if profile_dir.exists():
            self.clean_stale_locks(profile_dir)
            backup = profile_dir.with_name(f"{profile_dir.name}.broken")
            try:
                if backup.exists():
                    shutil.rmtree(backup)
                profile_dir.rename(backup)
                logger.warning(f"Moved broken profile aside to {backup}")
            except OSError as e:
                logger.warning(f"Could not move profile aside ({e}), deleting instead")
                shutil.rmtree(profile_dir, ignore_errors=True)
        profile_dir.mkdir(parents=True, exist_ok=True)
        return profile_dir
