"""Pipe-backed agent runner for hosts without pseudo-terminal support."""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import sys
import threading
import time
from collections.abc import Mapping, Sequence
from functools import partial
from typing import IO, TextIO

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

WINDOWS_SHELL: tuple[str, ...] = ("cmd", "/C")
POSIX_SHELL: tuple[str, ...] = ("sh", "-c")


def default_shell() -> tuple[str, ...]:
    """Return the host shell argv prefix: ``cmd /C`` on Windows, else ``sh -c``."""
    return WINDOWS_SHELL if os.name == "nt" else POSIX_SHELL


class PipeRunner(AgentRunner):
    """Run the agent under the host shell with stdout and stderr on pipes.

    Each stream is pumped by its own thread; chunks are written through to
    the matching console stream and merged, in arrival order, into the
    captured output.  The child inherits this process's stdin.

    This is the default runner on Windows, where the prompt is injected as a
    double-quoted ``cmd`` argument.  Elsewhere it runs under ``sh -c`` with
    POSIX quoting, for agents that should not see a terminal.
    """

    name = "pipe"

    def __init__(
        self,
        shell: Sequence[str] | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.shell = tuple(shell) if shell is not None else default_shell()
        self.quote_style = QuoteStyle.WINDOWS if os.name == "nt" else QuoteStyle.POSIX
        self.stdout = stdout
        self.stderr = stderr

    def run(self, command: str, env: Mapping[str, str] | None = None) -> StepResult:
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                [*self.shell, command],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=build_child_env(env),
                **process_isolation_kwargs(),
            )
        except OSError as exc:
            logger.warning("Could not start agent shell %s: %s", self.shell[0], exc)
            return StepResult(
                error=f"failed to start process: {exc}",
                duration_seconds=time.monotonic() - started,
            )
        if proc.stdout is None or proc.stderr is None:
            raise RuntimeError("agent subprocess pipes are unexpectedly unavailable")

        sinks = {
            "stdout": self.stdout or sys.stdout,
            "stderr": self.stderr or sys.stderr,
        }
        captured = bytearray()
        stream_queue: queue.Queue[tuple[str, bytes | object]] = queue.Queue()
        done_sentinel = object()

        def _pump_stream(stream_name: str, stream: IO[bytes]) -> None:
            try:
                for chunk in iter(partial(stream.read1, READ_CHUNK_SIZE), b""):  # type: ignore[attr-defined]
                    stream_queue.put((stream_name, chunk))
            finally:
                stream_queue.put((stream_name, done_sentinel))

        pumps = [
            threading.Thread(target=_pump_stream, args=(name, stream), daemon=True)
            for name, stream in (("stdout", proc.stdout), ("stderr", proc.stderr))
        ]
        for pump in pumps:
            pump.start()

        closed_streams: set[str] = set()
        try:
            while len(closed_streams) < len(pumps):
                stream_name, payload = stream_queue.get()
                if payload is done_sentinel:
                    closed_streams.add(stream_name)
                    continue
                chunk = bytes(payload)  # type: ignore[arg-type]
                captured.extend(chunk)
                write_through(chunk, sinks[stream_name])
            proc.wait()
        except KeyboardInterrupt:
            terminate_process_with_fallback(proc, process_name="agent")
            raise
        finally:
            for pump in pumps:
                pump.join(timeout=1.0)
            proc.stdout.close()
            proc.stderr.close()

        return StepResult(
            output=decode_output(captured),
            error=describe_exit(proc.returncode),
            exit_code=proc.returncode,
            duration_seconds=time.monotonic() - started,
        )


register_agent("pipe", PipeRunner)
