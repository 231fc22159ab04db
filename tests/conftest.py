"""Shared pytest configuration: markers, ordering and scripted runners."""

from __future__ import annotations

from collections.abc import Callable, Mapping

import pytest

from clancy.agent_runner import AgentRunner
from clancy.schemas import StepResult


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: real subprocess/pty tests")
    config.addinivalue_line("markers", "slow: tests that wait on real timers")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


class ScriptedRunner(AgentRunner):
    """Returns queued step results instead of spawning processes.

    The last scripted result repeats once the script runs out.  *on_run* is
    called before each step, e.g. to advance a fake clock.
    """

    name = "scripted"

    def __init__(
        self,
        results: list[StepResult],
        on_run: Callable[[], None] | None = None,
    ) -> None:
        self.results = list(results)
        self.on_run = on_run
        self.calls: list[tuple[str, dict[str, str]]] = []

    def run(self, command: str, env: Mapping[str, str] | None = None) -> StepResult:
        self.calls.append((command, dict(env or {})))
        if self.on_run is not None:
            self.on_run()
        index = min(len(self.calls), len(self.results)) - 1
        return self.results[index]


class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` moves time forward."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_runner() -> Callable[..., ScriptedRunner]:
    def _make(*outputs: str | StepResult, on_run: Callable[[], None] | None = None) -> ScriptedRunner:
        results = [
            item if isinstance(item, StepResult) else StepResult(output=item, exit_code=0)
            for item in outputs
        ]
        return ScriptedRunner(results, on_run=on_run)

    return _make
