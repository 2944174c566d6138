"""
Security utilities for VidFriends media ingestion.
- Storage key sanitization and path traversal protection
- Safe subprocess execution (argument arrays only)
- Cancellable subprocess execution bound to a timeout and a cancel event
"""

import re
import subprocess
import threading
import time
import pathlib
import posixpath
import logging
from typing import Optional, Sequence

from vidfriends.core.constants import CONTROL_CHARS

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SEC = 0.1


class SubprocessCancelled(Exception):
    """Raised when a running subprocess is killed because its cancel event fired."""


# ── Object name / path safety ─────────────────────────────────────────

def sanitize_object_name(name: str) -> str:
    """
    Reduce a downloaded file path to its basename for use as a storage
    object name.  Only separators and control characters are touched;
    returns "" when no usable name remains.
    """
    if not name:
        return ""
    safe = posixpath.basename(name.replace('\\', '/'))
    safe = re.sub(CONTROL_CHARS, '_', safe).strip()
    if safe in ('.', '..'):
        return ""
    return safe


def join_object_key(prefix: str, name: str) -> str:
    """Join a prefix and name into a normalized '/'-separated object key."""
    key = posixpath.normpath(posixpath.join(prefix.strip('/'), name.lstrip('/')))
    if key in ('.', ''):
        return ""
    return key


def safe_storage_path(root: pathlib.Path, key: str) -> pathlib.Path:
    """
    Resolve an object key beneath root.  Enforces that realpath(result)
    stays within realpath(root); raises ValueError otherwise.
    """
    key = key.strip().lstrip('/')
    if not key:
        raise ValueError("Empty storage key")

    real_root = root.resolve(strict=False)
    candidate = (root / key).resolve(strict=False)
    if candidate != real_root and real_root not in candidate.parents:
        raise ValueError(f"Path traversal detected: {key}")
    return candidate


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: remove any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


def run_subprocess_cancellable(args: Sequence[str], timeout: float,
                               cancel_event: Optional[threading.Event] = None) -> subprocess.CompletedProcess:
    """
    Run a subprocess capturing stdout/stderr, killing it when the timeout
    elapses (TimeoutExpired) or cancel_event is set (SubprocessCancelled).
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    args = [str(a) for a in args]
    logger.debug("Running subprocess: %s", ' '.join(args))

    deadline = time.monotonic() + timeout
    proc = subprocess.Popen(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        shell=False,
    )

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            _kill_and_reap(proc)
            raise subprocess.TimeoutExpired(args, timeout)
        if cancel_event is not None and cancel_event.is_set():
            _kill_and_reap(proc)
            raise SubprocessCancelled(f"{args[0]} cancelled")
        try:
            stdout, stderr = proc.communicate(timeout=min(_POLL_INTERVAL_SEC, remaining))
        except subprocess.TimeoutExpired:
            continue
        return subprocess.CompletedProcess(args, proc.returncode, stdout, stderr)


def _kill_and_reap(proc: subprocess.Popen):
    proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Subprocess %s did not exit after kill", proc.pid)
