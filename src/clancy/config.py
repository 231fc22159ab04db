"""YAML configuration loading, validation and template generation.

A configuration file describes the agent command, the loop limits and the
prompt source::

    agent:
      command: "opencode run '${PROMPT}'"
      env:
        NO_COLOR: "true"
    loop:
      max_steps: 10
      timeout: "30m"
      stop_phrase: "DONE"
      stop_mode: "exact"
    input:
      prompt: "file:./tasks/task.md"

Everything is validated here, at load time, so the loop engine only ever
receives a well-formed :class:`~clancy.schemas.LoopPolicy`.
"""

from __future__ import annotations

import logging
import math
import re
import secrets
import string
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from clancy.schemas import AgentSpec, LoopPolicy, StopMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "clancy.yaml"
DEFAULT_MAX_STEPS = 10
DEFAULT_TIMEOUT = "30m"
PROMPT_FILE_PREFIX = "file:"

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_CONFIG_ID_ALPHABET = string.ascii_lowercase + string.digits
_CONFIG_ID_LENGTH = 6


class ConfigError(ValueError):
    """Raised when a configuration file cannot be loaded or is invalid."""


class PromptError(ValueError):
    """Raised when the configured prompt source cannot be read."""


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts Go-style strings (``"300ms"``, ``"1.5h"``, ``"1h30m"``), bare
    numbers (seconds) and ``"0"``.  Negative, non-finite or malformed values
    raise :class:`ValueError`.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("invalid duration ''")
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_duration_units(text)
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"invalid duration {value!r}")
    return seconds


def _parse_duration_units(text: str) -> float:
    body = text[1:] if text.startswith("+") else text
    if text.startswith("-"):
        raise ValueError(f"invalid duration {text!r}: must not be negative")
    total = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART_RE.match(body, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"invalid duration {text!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render *seconds* compactly (``30m``, ``1m30s``, ``250ms``)."""
    if seconds <= 0:
        return "0s"
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    whole = int(seconds)
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    frac = seconds - whole
    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or frac or not parts:
        parts.append(f"{secs + frac:g}s")
    return "".join(parts)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class AgentConfig(BaseModel):
    """``agent:`` section."""

    command: str
    env: dict[str, str] = Field(default_factory=dict)
    runner: str = "auto"

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("agent.command must not be empty")
        return value

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        # YAML turns `true` and `8080` into bool/int; the environment wants text.
        if value is None:
            return {}
        if isinstance(value, dict):
            return {
                str(k): (str(v).lower() if isinstance(v, bool) else "" if v is None else str(v))
                for k, v in value.items()
            }
        return value

    @field_validator("runner", mode="before")
    @classmethod
    def _normalize_runner(cls, value: Any) -> Any:
        if value is None:
            return "auto"
        return str(value).strip().lower() or "auto"


class LoopConfig(BaseModel):
    """``loop:`` section, with durations already converted to seconds."""

    max_steps: int = DEFAULT_MAX_STEPS
    timeout: float = Field(default_factory=lambda: parse_duration(DEFAULT_TIMEOUT))
    delay: float = 0.0
    stop_phrase: str = ""
    stop_mode: StopMode = StopMode.EXACT

    @field_validator("max_steps", mode="before")
    @classmethod
    def _default_max_steps(cls, value: Any) -> Any:
        if value is None or (not isinstance(value, bool) and value in (0, "0")):
            return DEFAULT_MAX_STEPS
        return value

    @field_validator("max_steps")
    @classmethod
    def _positive_max_steps(cls, value: int) -> int:
        if value < 1:
            raise ValueError("loop.max_steps must be >= 1")
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> float:
        if value is None or value == "":
            return parse_duration(DEFAULT_TIMEOUT)
        return parse_duration(value)

    @field_validator("delay", mode="before")
    @classmethod
    def _parse_delay(cls, value: Any) -> float:
        if value is None or value == "":
            return 0.0
        return parse_duration(value)

    @field_validator("stop_phrase", mode="before")
    @classmethod
    def _stringify_phrase(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("stop_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return StopMode.EXACT
        if isinstance(value, str):
            return value.strip().lower()
        return value


class InputConfig(BaseModel):
    """``input:`` section."""

    prompt: str = ""

    @field_validator("prompt", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ClancyConfig(BaseModel):
    """A fully validated configuration file."""

    version: int = 1
    agent: AgentConfig
    loop: LoopConfig = Field(default_factory=LoopConfig)
    input: InputConfig = Field(default_factory=InputConfig)

    @model_validator(mode="before")
    @classmethod
    def _empty_sections(cls, data: Any) -> Any:
        # A bare `loop:` key parses as None; treat it like an omitted section.
        if isinstance(data, dict):
            return {k: ({} if v is None and k in {"loop", "input"} else v) for k, v in data.items()}
        return data

    def policy(self) -> LoopPolicy:
        return LoopPolicy(
            max_steps=self.loop.max_steps,
            timeout_seconds=self.loop.timeout,
            delay_seconds=self.loop.delay,
            stop_phrase=self.loop.stop_phrase,
            stop_mode=self.loop.stop_mode,
        )

    def agent_spec(self) -> AgentSpec:
        return AgentSpec(command=self.agent.command, env=dict(self.agent.env))

    def resolve_prompt(self) -> str:
        return resolve_prompt(self.input.prompt)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(path: str | Path) -> ClancyConfig:
    """Read and validate the YAML configuration at *path*."""
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse config file: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("failed to parse config file: top level must be a mapping")

    try:
        config = ClancyConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {_summarize_validation_error(exc)}") from exc

    logger.debug(
        "Loaded config %s: max_steps=%d, timeout=%ss, stop_mode=%s",
        config_path,
        config.loop.max_steps,
        config.loop.timeout,
        config.loop.stop_mode.value,
    )
    return config


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        message = str(err.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def resolve_prompt(raw: str) -> str:
    """Return the prompt text, reading it from disk for ``file:`` sources.

    Relative paths are resolved against the current working directory.
    """
    if not raw.startswith(PROMPT_FILE_PREFIX):
        return raw
    path = Path(raw[len(PROMPT_FILE_PREFIX):].strip())
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PromptError(f"failed to read prompt file '{path}': {exc}") from exc


# ---------------------------------------------------------------------------
# Template generation
# ---------------------------------------------------------------------------

CONFIG_TEMPLATE = """\
version: 1

agent:
  # The command to run. ${PROMPT} is replaced with the content from input.prompt.
  # Note: Ensure usage of quotes compatible with your shell.
  command: "opencode run '${PROMPT}'"
  env:
    # Optional environment variables
    NO_COLOR: "true"

loop:
  max_steps: 10          # Stop after 10 iterations
  timeout: "30m"         # Stop after 30 minutes
  delay: "0s"            # Cooldown between steps
  stop_phrase: "DONE"    # The success signal
  stop_mode: "exact"     # "exact", "contains" or "suffix"

input:
  # Can be a string literal or "file:path/to/prompt.md"
  prompt: "file:./tasks/task.md"
"""


def generate_config(directory: str | Path = ".") -> Path:
    """Write a starter configuration file and return its path.

    Uses ``clancy.yaml`` unless it already exists, in which case a name
    with a short random suffix (``clancy-x7k2q9.yaml``) is chosen.
    """
    target_dir = Path(directory)
    target = target_dir / DEFAULT_CONFIG_FILENAME
    while target.exists():
        suffix = "".join(secrets.choice(_CONFIG_ID_ALPHABET) for _ in range(_CONFIG_ID_LENGTH))
        target = target_dir / f"clancy-{suffix}.yaml"
    with target.open("x", encoding="utf-8") as fh:
        fh.write(CONFIG_TEMPLATE)
    logger.info("Generated configuration file %s", target)
    return target
