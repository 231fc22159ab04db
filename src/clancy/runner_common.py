"""Shared helpers for the process runner implementations."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from contextlib import suppress
from typing import TextIO

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal

READ_CHUNK_SIZE = 4096
"""Maximum bytes read from a child stream per call."""


def build_child_env(overrides: Mapping[str, str] | None) -> dict[str, str]:
    """Return the inherited environment extended/overridden by *overrides*."""
    env = dict(os.environ)
    for key, value in (overrides or {}).items():
        env[str(key)] = str(value)
    return env


def process_isolation_kwargs() -> dict[str, object]:
    """Return subprocess kwargs that give the child its own process group.

    The agent can then be signalled as a whole (including anything it
    spawned) when the loop is interrupted.
    """
    if os.name == "nt":
        flags = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def describe_exit(returncode: int | None) -> str | None:
    """Return a runner error message for an abnormal exit, or ``None``."""
    if returncode is None:
        return "process did not report an exit status"
    if returncode == 0:
        return None
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    return f"exit status {returncode}"


def decode_output(data: bytes | bytearray) -> str:
    """Decode captured child output, replacing undecodable bytes."""
    return bytes(data).decode("utf-8", errors="replace")


def write_through(chunk: bytes, stream: TextIO) -> None:
    """Write raw child output to *stream* immediately, unbuffered."""
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        stream.flush()
        buffer.write(chunk)
        buffer.flush()
        return
    stream.write(decode_output(chunk))
    stream.flush()


def terminate_process_with_fallback(
    proc: subprocess.Popen[bytes],
    *,
    process_name: str,
    terminate_timeout_seconds: float = 1.5,
) -> None:
    """Request graceful terminate first, then force-kill if still alive."""
    if proc.poll() is not None:
        return

    _signal_process(proc, graceful=True)
    try:
        proc.wait(timeout=max(0.1, float(terminate_timeout_seconds)))
        return
    except subprocess.TimeoutExpired:
        logger.warning("%s did not exit after terminate; forcing kill.", process_name)

    _signal_process(proc, graceful=False)
    try:
        proc.wait(timeout=5.0)
    except subprocess.TimeoutExpired:  # pragma: no cover - extreme edge case
        logger.warning("%s ignored kill.", process_name)


def _signal_process(proc: subprocess.Popen[bytes], *, graceful: bool) -> None:
    """Best-effort signal delivery to the child and, on POSIX, its group."""
    if os.name != "nt":
        pid = int(getattr(proc, "pid", 0) or 0)
        if pid > 0:
            with suppress(OSError):
                os.killpg(os.getpgid(pid), signal.SIGTERM if graceful else signal.SIGKILL)
    with suppress(OSError):
        if graceful:
            proc.terminate()
        else:
            proc.kill()
