"""Branch and tag filter patterns.

The syntax is the one GitHub Actions uses for `branches` / `tags` filters:

- `*` matches zero or more characters, but not `/`
- `**` matches zero or more of any character
- `?` matches zero or one of the preceding character
- `+` matches one or more of the preceding character
- `[...]` matches one character listed or included in a range
- `\\` escapes the next character
- a leading `!` negates the pattern

A filter is an ordered list of patterns; the last pattern that matches a ref
decides whether it is included.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class RefPattern:
    source: str
    negated: bool
    regex: re.Pattern[str] = field(compare=False, repr=False)

    def matches(self, ref_name: str) -> bool:
        return self.regex.fullmatch(ref_name) is not None

    def __str__(self) -> str:
        return f"!{self.source}" if self.negated else self.source


def _translate_class(pattern: str, start: int) -> tuple[str, int]:
    end = pattern.find("]", start + 1)
    if end == -1:
        raise ConfigurationError(f"Unterminated character class in pattern {pattern!r}")
    body = pattern[start + 1 : end]
    if not body:
        raise ConfigurationError(f"Empty character class in pattern {pattern!r}")

    prefix = ""
    if body[0] in "!^":
        prefix = "^"
        body = body[1:]
        if not body:
            raise ConfigurationError(f"Empty character class in pattern {pattern!r}")

    # Keep '-' unescaped so ranges survive.
    chars = "".join(ch if ch == "-" else re.escape(ch) for ch in body)
    return f"[{prefix}{chars}]", end + 1


def _translate(pattern: str) -> str:
    out: list[str] = []
    i = 0
    # Whether the last emitted token can take a `?` / `+` quantifier.
    after_atom = False

    while i < len(pattern):
        ch = pattern[i]

        if ch == "*":
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
            else:
                out.append("[^/]*")
                i += 1
            after_atom = False
            continue

        if ch in "?+":
            if not after_atom:
                raise ConfigurationError(
                    f"'{ch}' must follow a character or class in pattern {pattern!r}"
                )
            out.append(ch)
            after_atom = False
            i += 1
            continue

        if ch == "[":
            token, i = _translate_class(pattern, i)
            out.append(token)
            after_atom = True
            continue

        if ch == "\\":
            if i + 1 >= len(pattern):
                raise ConfigurationError(f"Trailing escape in pattern {pattern!r}")
            out.append(re.escape(pattern[i + 1]))
            after_atom = True
            i += 2
            continue

        out.append(re.escape(ch))
        after_atom = True
        i += 1

    return "".join(out)


def compile_pattern(source: str) -> RefPattern:
    if not isinstance(source, str):
        raise ConfigurationError(f"Ref pattern must be a string, got {type(source).__name__}")

    negated = source.startswith("!")
    body = source[1:] if negated else source
    if not body:
        raise ConfigurationError(f"Empty ref pattern: {source!r}")

    try:
        regex = re.compile(_translate(body))
    except re.error as e:
        raise ConfigurationError(f"Invalid ref pattern {source!r}: {e}") from e
    return RefPattern(source=body, negated=negated, regex=regex)


def compile_filter(sources: Iterable[str]) -> tuple[RefPattern, ...]:
    """Compile an ordered filter list; at least one pattern must be positive."""

    if isinstance(sources, str):
        sources = [sources]
    patterns = tuple(compile_pattern(s) for s in sources)
    if not any(not p.negated for p in patterns):
        raise ConfigurationError(
            "A ref filter needs at least one positive pattern, got: "
            + ", ".join(str(p) for p in patterns)
        )
    return patterns


def filter_matches(patterns: Sequence[RefPattern], ref_name: str) -> bool:
    included = False
    for pattern in patterns:
        if pattern.matches(ref_name):
            included = not pattern.negated
    return included
