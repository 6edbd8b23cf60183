"""Mapping from arbitrary node and card text to safe path segments."""

import re
from typing import Set


_ILLEGAL = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')

# Leaves room for a " (nn)" suffix and the ".md" extension under the usual 255 byte limit
MAX_SEGMENT_BYTES = 200

DEFAULT_NAME = "untitled"


def sanitize(name: str) -> str:
    """
    Return a filesystem-safe path segment for ``name``.

    Illegal and control characters become ``_``, surrounding whitespace is
    trimmed and an empty result becomes ``"untitled"``. Deterministic and
    idempotent: ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    result = _ILLEGAL.sub("_", str(name or ""))

    encoded = result.encode("utf-8")
    if len(encoded) > MAX_SEGMENT_BYTES:
        result = encoded[:MAX_SEGMENT_BYTES].decode("utf-8", errors="ignore")

    result = result.strip()

    if result in ("", ".", ".."):
        return DEFAULT_NAME
    if result.lower() == ".git":
        return "_" + result[1:]
    return result


def disambiguate(name: str, taken: Set[str], suffix: str = "") -> str:
    """
    Return ``name + suffix`` or the first free ``name (n) + suffix``, n >= 2.

    ``taken`` holds casefolded entry names already used in the directory and
    is updated with the returned entry.
    """
    candidate = f"{name}{suffix}"
    n = 2
    while candidate.casefold() in taken:
        candidate = f"{name} ({n}){suffix}"
        n += 1
    taken.add(candidate.casefold())
    return candidate
