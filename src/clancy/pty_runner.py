"""Pseudo-terminal backed agent runner for POSIX hosts."""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import pty
import select
import subprocess
import sys
import termios
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from typing import TextIO

from clancy.agent_runner import AgentRunner, register_agent
from clancy.runner_common import (
    READ_CHUNK_SIZE,
    build_child_env,
    decode_output,
    describe_exit,
    process_isolation_kwargs,
    terminate_process_with_fallback,
    write_through,
)
from clancy.schemas import StepResult
from clancy.template import QuoteStyle

logger = logging.getLogger(__name__)

DEFAULT_SHELL: tuple[str, ...] = ("sh", "-c")
_POLL_INTERVAL_SECONDS = 0.1


class PtyRunner(AgentRunner):
    """Run the agent under ``sh -c`` attached to a pseudo-terminal.

    The child sees a real terminal on stdin/stdout/stderr, so tools that
    colorize or line-buffer only when interactive behave as they would for a
    user.  Everything the child writes is streamed to *stdout* as it arrives
    and captured for the stop-condition check.

    Parameters
    ----------
    shell:
        Argv prefix the command line is appended to.
    stdout:
        Stream receiving the live output.  Defaults to ``sys.stdout`` at the
        time of each run.
    """

    name = "pty"
    quote_style = QuoteStyle.POSIX

    def __init__(
        self,
        shell: Sequence[str] = DEFAULT_SHELL,
        stdout: TextIO | None = None,
    ) -> None:
        self.shell = tuple(shell)
        self.stdout = stdout

    def run(self, command: str, env: Mapping[str, str] | None = None) -> StepResult:
        started = time.monotonic()
        master_fd, slave_fd = pty.openpty()
        try:
            _copy_window_size(slave_fd)
            try:
                proc = subprocess.Popen(
                    [*self.shell, command],
                    stdin=slave_fd,
                    stdout=slave_fd,
                    stderr=slave_fd,
                    env=build_child_env(env),
                    close_fds=True,
                    preexec_fn=_acquire_controlling_tty,
                    **process_isolation_kwargs(),
                )
            except (OSError, subprocess.SubprocessError) as exc:
                logger.warning("Could not start agent shell %s: %s", self.shell[0], exc)
                return StepResult(
                    error=f"failed to start pty process: {exc}",
                    duration_seconds=time.monotonic() - started,
                )
            # Only the child holds the slave end now, so EOF follows its exit.
            os.close(slave_fd)
            slave_fd = -1

            captured = bytearray()
            stream = self.stdout or sys.stdout

            def _collect(chunk: bytes) -> None:
                captured.extend(chunk)
                write_through(chunk, stream)

            exited = threading.Event()
            pump = threading.Thread(
                target=_pump_pty,
                args=(master_fd, _collect, exited),
                daemon=True,
            )
            pump.start()
            try:
                proc.wait()
            except KeyboardInterrupt:
                terminate_process_with_fallback(proc, process_name="agent")
                raise
            finally:
                exited.set()
                pump.join()

            return StepResult(
                output=decode_output(captured),
                error=describe_exit(proc.returncode),
                exit_code=proc.returncode,
                duration_seconds=time.monotonic() - started,
            )
        finally:
            with suppress(OSError):
                os.close(master_fd)
            if slave_fd >= 0:
                with suppress(OSError):
                    os.close(slave_fd)


def _pump_pty(
    master_fd: int,
    collect: Callable[[bytes], None],
    exited: threading.Event,
) -> None:
    """Copy the pty master into *collect* until the stream closes.

    Stops on EOF, on ``EIO`` (Linux reports a closed slave that way), or
    once the child has exited and no more output is pending; the last case
    covers background processes that inherited the terminal.
    """
    while True:
        try:
            ready, _, _ = select.select([master_fd], [], [], _POLL_INTERVAL_SECONDS)
        except (OSError, ValueError):
            return
        if not ready:
            if exited.is_set():
                return
            continue
        try:
            chunk = os.read(master_fd, READ_CHUNK_SIZE)
        except OSError as exc:
            if exc.errno != errno.EIO:
                logger.debug("pty read failed: %s", exc)
            return
        if not chunk:
            return
        collect(chunk)


def _acquire_controlling_tty() -> None:
    """Make the pty slave (already on fd 0) the new session's controlling tty.

    Runs in the child after ``setsid``, so ``/dev/tty`` resolves to the pty.
    """
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def _copy_window_size(target_fd: int) -> None:
    """Give the pty the controlling terminal's dimensions when there is one."""
    try:
        if not sys.stdout.isatty():
            return
        size = fcntl.ioctl(sys.stdout.fileno(), termios.TIOCGWINSZ, b"\0" * 8)
        fcntl.ioctl(target_fd, termios.TIOCSWINSZ, size)
    except (OSError, ValueError) as exc:
        logger.debug("Could not copy terminal size to pty: %s", exc)


register_agent("pty", PtyRunner)
