"""Clancy - rerun an agent command until it reports that it is done."""

from importlib.metadata import PackageNotFoundError, version

from clancy.schemas import AgentSpec, LoopOutcome, LoopPolicy, StepResult, StopMode

__all__ = ["AgentSpec", "LoopOutcome", "LoopPolicy", "StepResult", "StopMode"]

try:
    __version__ = version("clancy")
except PackageNotFoundError:
    __version__ = "0.0.0"
