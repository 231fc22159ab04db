"""Retry-until-done loop engine.

The :class:`LoopEngine` drives repeated agent invocations through an
:class:`~clancy.agent_runner.AgentRunner`, checking the captured output for
the stop phrase after every step.  It stops on success, when the step budget
is spent, or when the wall-clock deadline passes.

Deadlines are only observed at step boundaries and during the cooldown
between steps: a step that is already running is never interrupted, so a
single step can overrun the deadline by its own duration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from clancy.agent_runner import AgentRunner
from clancy.schemas import AgentSpec, LoopOutcome, LoopPolicy, StepResult, TimeoutPhase
from clancy.stop_condition import matches

logger = logging.getLogger(__name__)


class LoopReporter:
    """Receives progress notifications from the engine.

    The base class ignores every event; subclass it and override the hooks
    you care about (see :class:`clancy.display.ConsoleReporter`).
    """

    def loop_started(self, policy: LoopPolicy) -> None:
        pass

    def step_started(self, step: int, max_steps: int) -> None:
        pass

    def step_finished(self, step: int, result: StepResult) -> None:
        pass

    def step_failed(self, step: int, error: str) -> None:
        pass

    def step_succeeded(self, step: int) -> None:
        pass

    def step_retrying(self, step: int) -> None:
        pass

    def cooldown_started(self, delay_seconds: float) -> None:
        pass

    def loop_finished(self, outcome: LoopOutcome) -> None:
        pass


class LoopEngine:
    """Runs an agent command repeatedly until it signals success.

    Parameters
    ----------
    runner:
        Executes one step.  Tests pass a scripted fake.
    reporter:
        Progress hooks; defaults to a silent :class:`LoopReporter`.
    clock:
        Monotonic time source in seconds.
    sleep:
        Blocking wait used for the cooldown.
    """

    def __init__(
        self,
        runner: AgentRunner,
        *,
        reporter: LoopReporter | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.reporter = reporter or LoopReporter()
        self.clock = clock
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def execute(self, policy: LoopPolicy, agent: AgentSpec, command: str) -> LoopOutcome:
        """Run *command* up to ``policy.max_steps`` times and return the outcome."""
        outcome = self._execute(policy, agent, command)
        if outcome.success:
            logger.info("Loop succeeded at step %d", outcome.success_step)
        else:
            logger.info("Loop stopped after %d step(s): %s", outcome.steps_run, outcome.reason)
        self.reporter.loop_finished(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, policy: LoopPolicy, agent: AgentSpec, command: str) -> LoopOutcome:
        deadline = self.clock() + policy.timeout_seconds if policy.timeout_seconds > 0 else None
        max_steps = policy.max_steps
        logger.info(
            "Starting loop: max_steps=%d, timeout=%ss, delay=%ss, stop_mode=%s",
            max_steps,
            policy.timeout_seconds or "none",
            policy.delay_seconds,
            policy.stop_mode.value,
        )
        self.reporter.loop_started(policy)

        for step in range(1, max_steps + 1):
            self.reporter.step_started(step, max_steps)

            # Check before spawning so an expired run never starts more work.
            if self._expired(deadline):
                logger.warning("Deadline passed before step %d", step)
                return LoopOutcome.timed_out(TimeoutPhase.STEP, step - 1, max_steps)

            logger.debug("Step %d/%d: running %r", step, max_steps, command)
            result = self.runner.run(command, agent.env)
            self.reporter.step_finished(step, result)
            if result.error is not None:
                logger.warning("Step %d: agent execution failed: %s", step, result.error)
                self.reporter.step_failed(step, result.error)

            if matches(result.output, policy.stop_phrase, policy.stop_mode):
                self.reporter.step_succeeded(step)
                return LoopOutcome.succeeded(step, max_steps)

            if step == max_steps:
                break

            logger.info("Step %d: stop phrase not found; retrying", step)
            self.reporter.step_retrying(step)
            if policy.delay_seconds > 0 and not self._cooldown(policy.delay_seconds, deadline):
                logger.warning("Deadline passed during cooldown after step %d", step)
                return LoopOutcome.timed_out(TimeoutPhase.COOLDOWN, step, max_steps)

        return LoopOutcome.exhausted(max_steps)

    def _expired(self, deadline: float | None) -> bool:
        return deadline is not None and self.clock() >= deadline

    def _cooldown(self, delay_seconds: float, deadline: float | None) -> bool:
        """Wait out the cooldown; return False when the deadline cut it short."""
        self.reporter.cooldown_started(delay_seconds)
        if deadline is None:
            self.sleep(delay_seconds)
            return True
        remaining = deadline - self.clock()
        if remaining < delay_seconds:
            if remaining > 0:
                self.sleep(remaining)
            return False
        self.sleep(delay_seconds)
        return True


def run_loop(
    policy: LoopPolicy,
    agent: AgentSpec,
    prompt: str,
    runner: AgentRunner,
    *,
    reporter: LoopReporter | None = None,
) -> LoopOutcome:
    """Inject *prompt* into the agent's command template and run the loop."""
    command = runner.prepare_command(agent.command, prompt)
    return LoopEngine(runner, reporter=reporter).execute(policy, agent, command)
