"""Prompt injection into agent command templates."""

from __future__ import annotations

import os
from enum import Enum

PROMPT_PLACEHOLDER = "${PROMPT}"
"""Token in ``agent.command`` that is replaced with the escaped prompt."""


class QuoteStyle(str, Enum):
    """Quoting convention the template author wrapped ``${PROMPT}`` in."""

    POSIX = "posix"
    WINDOWS = "windows"


def default_quote_style() -> QuoteStyle:
    """Return the quoting convention of the host shell."""
    return QuoteStyle.WINDOWS if os.name == "nt" else QuoteStyle.POSIX


def escape_prompt(prompt: str, style: QuoteStyle) -> str:
    """Escape *prompt* for embedding inside a quoted template segment.

    POSIX templates wrap the placeholder in single quotes, so each ``'``
    closes the quoted segment, emits a double-quoted literal quote and
    reopens it.  Windows templates wrap it in double quotes, where a
    backslash-escaped ``"`` is the command-line convention.
    """
    if style == QuoteStyle.WINDOWS:
        return prompt.replace('"', '\\"')
    return prompt.replace("'", "'\"'\"'")


def resolve_command(template: str, prompt: str, *, style: QuoteStyle | None = None) -> str:
    """Substitute every placeholder in *template* with the escaped *prompt*."""
    if PROMPT_PLACEHOLDER not in template:
        return template
    quote_style = style if style is not None else default_quote_style()
    return template.replace(PROMPT_PLACEHOLDER, escape_prompt(prompt, quote_style))
