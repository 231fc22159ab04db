"""Pydantic models for structured data throughout the loop."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

class StopMode(str, Enum):
    """How the stop phrase is matched against captured agent output."""

    EXACT = "exact"
    CONTAINS = "contains"
    SUFFIX = "suffix"


class LoopPolicy(BaseModel):
    """Immutable per-run limits and stopping criteria."""

    model_config = ConfigDict(frozen=True)

    max_steps: int = Field(default=10, ge=1)
    timeout_seconds: float = Field(default=0.0, ge=0)
    """Wall-clock budget for the whole run; ``0`` means unbounded."""
    delay_seconds: float = Field(default=0.0, ge=0)
    """Cooldown between non-final steps; ``0`` disables it."""
    stop_phrase: str = ""
    stop_mode: StopMode = StopMode.EXACT


class AgentSpec(BaseModel):
    """The command template to run and the environment overrides it gets."""

    model_config = ConfigDict(frozen=True)

    command: str
    env: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------

class StepResult(BaseModel):
    """Captured output of a single agent invocation."""

    output: str = ""
    error: str | None = None
    exit_code: int | None = None
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None


# ---------------------------------------------------------------------------
# Loop outcome
# ---------------------------------------------------------------------------

class OutcomeKind(str, Enum):
    """Terminal state of a loop run."""

    SUCCEEDED = "succeeded"
    STEPS_EXHAUSTED = "steps_exhausted"
    TIMED_OUT = "timed_out"


class TimeoutPhase(str, Enum):
    """Where the deadline was observed when a run timed out."""

    STEP = "step"
    COOLDOWN = "cooldown"


class LoopOutcome(BaseModel):
    """Terminal value of :meth:`clancy.loop.LoopEngine.execute`.

    Exactly one of the three :class:`OutcomeKind` values.  ``success_step``
    is only set for successful runs and ``timeout_phase`` only for timed out
    runs; use the classmethod constructors rather than building instances by
    hand.
    """

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    steps_run: int = 0
    max_steps: int = 0
    success_step: int | None = None
    timeout_phase: TimeoutPhase | None = None

    @classmethod
    def succeeded(cls, step: int, max_steps: int) -> LoopOutcome:
        return cls(
            kind=OutcomeKind.SUCCEEDED,
            steps_run=step,
            max_steps=max_steps,
            success_step=step,
        )

    @classmethod
    def exhausted(cls, max_steps: int) -> LoopOutcome:
        return cls(kind=OutcomeKind.STEPS_EXHAUSTED, steps_run=max_steps, max_steps=max_steps)

    @classmethod
    def timed_out(cls, phase: TimeoutPhase, steps_run: int, max_steps: int) -> LoopOutcome:
        return cls(
            kind=OutcomeKind.TIMED_OUT,
            steps_run=steps_run,
            max_steps=max_steps,
            timeout_phase=phase,
        )

    @property
    def success(self) -> bool:
        return self.kind == OutcomeKind.SUCCEEDED

    @property
    def reason(self) -> str | None:
        """Human-readable failure reason, or ``None`` for a successful run."""
        if self.kind == OutcomeKind.SUCCEEDED:
            return None
        if self.kind == OutcomeKind.TIMED_OUT:
            if self.timeout_phase == TimeoutPhase.COOLDOWN:
                return "global timeout reached during cooldown"
            return "global timeout reached"
        return f"max steps ({self.max_steps}) reached without success"
