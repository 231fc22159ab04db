"""Console progress output for interactive loop runs."""

from __future__ import annotations

import os
import sys
from typing import TextIO

from clancy.config import format_duration
from clancy.loop import LoopReporter
from clancy.schemas import StepResult

CYAN = "\033[36m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
BOLD = "\033[1m"
RESET = "\033[0m"

RULE = "\u2501" * 62
_ERROR_PREVIEW_CHARS = 55


def truncate_error(message: str, limit: int = _ERROR_PREVIEW_CHARS) -> str:
    return f"{message[:limit]}..."


class ConsoleReporter(LoopReporter):
    """Draws step headers and status boxes around the live agent output.

    Colors are dropped when ``NO_COLOR`` is set in the environment.
    """

    def __init__(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        *,
        color: bool | None = None,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self.color = (not os.environ.get("NO_COLOR")) if color is None else color

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr or sys.stderr

    def _paint(self, code: str, text: str) -> str:
        return f"{code}{text}{RESET}" if self.color else text

    def _box(self, stream: TextIO, code: str, *lines: str) -> None:
        print(self._paint(code, RULE), file=stream)
        for line in lines:
            print(self._paint(code, f"  {line}"), file=stream)
        print(self._paint(code, RULE), file=stream, flush=True)

    def _title(self, text: str) -> None:
        if self.stdout.isatty():
            self.stdout.write(f"\033]0;{text}\007")
            self.stdout.flush()

    # -- LoopReporter hooks ----------------------------------------------

    def step_started(self, step: int, max_steps: int) -> None:
        if step > 1:
            self.stdout.write("\n\n")
        self._title(f"Clancy: Step {step}/{max_steps}")
        self._box(self.stdout, CYAN, f"CLANCY LOOP | STEP {step:02d}/{max_steps:02d}")
        # Breathing room before the agent's own output.
        print(file=self.stdout, flush=True)

    def step_finished(self, step: int, result: StepResult) -> None:
        print(file=self.stdout, flush=True)

    def step_failed(self, step: int, error: str) -> None:
        self._box(
            self.stderr,
            RED,
            "CRITICAL: Agent execution failed!",
            truncate_error(error),
        )

    def step_succeeded(self, step: int) -> None:
        self._box(self.stdout, GREEN, f"SUCCESS! Stop phrase found in step {step:02d}")
        self._title("Clancy: Done")

    def step_retrying(self, step: int) -> None:
        self._box(self.stdout, YELLOW, f"Stop phrase NOT found in step {step:02d}. Retrying...")

    def cooldown_started(self, delay_seconds: float) -> None:
        line = f"COOLDOWN: Waiting {format_duration(delay_seconds)} before next step..."
        print("\n" + self._paint(BOLD + YELLOW, line), file=self.stdout, flush=True)
