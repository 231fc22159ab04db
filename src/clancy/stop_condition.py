"""Success-signal detection in captured agent output."""

from __future__ import annotations

from clancy.schemas import StopMode


def matches(output: str, phrase: str, mode: StopMode | str) -> bool:
    """Return True when *output* satisfies the stop *phrase* under *mode*.

    Matching is case-sensitive.  ``exact`` and ``suffix`` ignore surrounding
    whitespace in *output*; ``contains`` looks at the raw text, so an empty
    phrase always matches.
    """
    stop_mode = StopMode(mode)
    if stop_mode == StopMode.EXACT:
        return output.strip() == phrase
    if stop_mode == StopMode.SUFFIX:
        return output.strip().endswith(phrase)
    return phrase in output
