"""Abstract base class for agent process runners.

Every runner (pseudo-terminal backed on POSIX, pipe backed on Windows)
implements the same interface so the loop engine can dispatch to any of
them interchangeably, and tests can substitute a scripted fake.
"""

from __future__ import annotations

import abc
import os
from collections.abc import Mapping

from clancy.schemas import StepResult
from clancy.template import QuoteStyle, resolve_command


class AgentRunner(abc.ABC):
    """Common interface for executing one agent step.

    Subclasses must implement :meth:`run`, which executes a fully resolved
    command line and returns a :class:`StepResult`.
    """

    #: Human-readable name used in log messages.
    name: str = "base"

    #: Quoting convention used when injecting the prompt into a template.
    quote_style: QuoteStyle = QuoteStyle.POSIX

    @abc.abstractmethod
    def run(self, command: str, env: Mapping[str, str] | None = None) -> StepResult:
        """Execute *command* once and return its captured output.

        Parameters
        ----------
        command:
            Shell command line with the prompt already injected.
        env:
            Variables layered on top of the inherited process environment.

        The call blocks until the child exits.  Captured output is returned
        even when the child fails; failures are reported through
        :attr:`StepResult.error`, never raised.
        """

    def prepare_command(self, template: str, prompt: str) -> str:
        """Inject *prompt* into *template* using this runner's quoting."""
        return resolve_command(template, prompt, style=self.quote_style)


# -- Registry ------------------------------------------------------------

_REGISTRY: dict[str, type[AgentRunner]] = {}

AUTO_RUNNER = "auto"


def register_agent(key: str, cls: type[AgentRunner]) -> None:
    """Register a runner class under a lookup key."""
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise ValueError("Runner key must be a non-empty string")
    if normalized_key == AUTO_RUNNER:
        raise ValueError(f"Runner key '{AUTO_RUNNER}' is reserved")
    if not isinstance(cls, type) or not issubclass(cls, AgentRunner):
        raise TypeError("Registered runner must be an AgentRunner subclass")

    existing = _REGISTRY.get(normalized_key)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Runner '{normalized_key}' is already registered with {existing.__name__}"
        )

    _REGISTRY[normalized_key] = cls


def get_agent_class(key: str) -> type[AgentRunner]:
    """Look up a registered runner class by key."""
    normalized_key = (key or "").strip()
    if normalized_key not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY)) or "(none)"
        raise KeyError(f"Unknown runner '{normalized_key}'. Available: {available}")
    return _REGISTRY[normalized_key]


def list_agents() -> list[str]:
    """Return all registered runner keys."""
    return sorted(_REGISTRY)


def load_builtin_runners() -> None:
    """Import the runner modules available on this platform.

    The pseudo-terminal runner needs ``termios`` and is only importable on
    POSIX hosts.
    """
    import clancy.pipe_runner  # noqa: F401

    if os.name != "nt":
        import clancy.pty_runner  # noqa: F401


def default_runner_key() -> str:
    """Return the runner key used when the configuration says ``auto``."""
    return "pipe" if os.name == "nt" else "pty"


def create_runner(key: str = AUTO_RUNNER) -> AgentRunner:
    """Instantiate the runner registered under *key* (``auto`` = host default)."""
    load_builtin_runners()
    normalized_key = (key or AUTO_RUNNER).strip().lower()
    if normalized_key == AUTO_RUNNER:
        normalized_key = default_runner_key()
    return get_agent_class(normalized_key)()
