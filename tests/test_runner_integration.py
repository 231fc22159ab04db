"""End-to-end loop runs against a stub agent CLI."""

from __future__ import annotations

import io
import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from clancy.agent_runner import AgentRunner
from clancy.loop import run_loop
from clancy.schemas import AgentSpec, LoopPolicy, OutcomeKind, StopMode, TimeoutPhase
from clancy.template import QuoteStyle

pytestmark = pytest.mark.integration


AGENT_STUB_SCRIPT = """
import os
import sys
import time
from pathlib import Path

counter = Path(os.environ["STUB_COUNTER"])
count = int(counter.read_text()) + 1 if counter.exists() else 1
counter.write_text(str(count))

print(f"prompt: {sys.argv[1]}", flush=True)
time.sleep(float(os.environ.get("STUB_SLEEP", "0")))

if os.environ.get("STUB_MODE") == "crash":
    print("agent crashed", file=sys.stderr, flush=True)
    sys.exit(2)
if count >= int(os.environ.get("STUB_FINISH_AT", "1")):
    print("DONE", flush=True)
"""


def _make_stub_cli(tmp_path: Path, name: str, script_body: str) -> str:
    """Create a cross-platform executable wrapper for a Python stub script."""
    impl = tmp_path / f"{name}_impl.py"
    impl.write_text(textwrap.dedent(script_body), encoding="utf-8")

    if os.name == "nt":
        wrapper = tmp_path / f"{name}.cmd"
        wrapper.write_text(
            f'@echo off\r\n"{sys.executable}" "{impl}" %*\r\n',
            encoding="utf-8",
        )
        return str(wrapper)

    wrapper = tmp_path / name
    wrapper.write_text(
        f'#!/usr/bin/env sh\n"{sys.executable}" "{impl}" "$@"\n',
        encoding="utf-8",
    )
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IEXEC)
    return str(wrapper)


def _platform_runner() -> AgentRunner:
    sink = io.TextIOWrapper(io.BytesIO(), encoding="utf-8")
    if os.name == "nt":
        from clancy.pipe_runner import PipeRunner

        return PipeRunner(stdout=sink, stderr=sink)
    from clancy.pty_runner import PtyRunner

    return PtyRunner(stdout=sink)


def _command_template(runner: AgentRunner, cli: str) -> str:
    if runner.quote_style == QuoteStyle.WINDOWS:
        return f'"{cli}" "${{PROMPT}}"'
    return f"'{cli}' '${{PROMPT}}'"


@pytest.fixture
def stub_agent(tmp_path: Path):
    cli = _make_stub_cli(tmp_path, "agent-stub", AGENT_STUB_SCRIPT)
    counter = tmp_path / "count.txt"
    runner = _platform_runner()

    def _spec(**env: str) -> AgentSpec:
        return AgentSpec(
            command=_command_template(runner, cli),
            env={"STUB_COUNTER": str(counter), **env},
        )

    return runner, _spec, counter


def test_loop_stops_when_agent_prints_stop_phrase(stub_agent) -> None:
    runner, spec, counter = stub_agent
    policy = LoopPolicy(max_steps=5, stop_phrase="DONE", stop_mode=StopMode.SUFFIX)

    outcome = run_loop(policy, spec(STUB_FINISH_AT="3"), "keep going", runner)

    assert outcome.kind == OutcomeKind.SUCCEEDED
    assert outcome.success_step == 3
    assert counter.read_text() == "3"


def test_prompt_with_quotes_reaches_agent_intact(stub_agent) -> None:
    runner, spec, _counter = stub_agent
    policy = LoopPolicy(max_steps=1, stop_phrase="prompt: don't stop", stop_mode=StopMode.CONTAINS)

    outcome = run_loop(policy, spec(), "don't stop", runner)

    assert outcome.success


def test_crashing_agent_exhausts_steps(stub_agent) -> None:
    runner, spec, counter = stub_agent
    policy = LoopPolicy(max_steps=2, stop_phrase="DONE", stop_mode=StopMode.SUFFIX)

    outcome = run_loop(policy, spec(STUB_MODE="crash"), "try", runner)

    assert outcome.kind == OutcomeKind.STEPS_EXHAUSTED
    assert outcome.reason == "max steps (2) reached without success"
    assert counter.read_text() == "2"


@pytest.mark.slow
def test_deadline_stops_loop_after_overrunning_step(stub_agent) -> None:
    runner, spec, counter = stub_agent
    policy = LoopPolicy(
        max_steps=5,
        timeout_seconds=0.2,
        stop_phrase="DONE",
        stop_mode=StopMode.SUFFIX,
    )

    outcome = run_loop(policy, spec(STUB_FINISH_AT="99", STUB_SLEEP="0.5"), "slow", runner)

    assert outcome.kind == OutcomeKind.TIMED_OUT
    assert outcome.timeout_phase == TimeoutPhase.STEP
    assert outcome.steps_run == 1
    assert counter.read_text() == "1"
