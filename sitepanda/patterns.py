"""
Path Glob Patterns
==================
Glob patterns select which pages have their content saved (``--match``)
and which discovered links are followed (``--follow-match``).

Syntax, with ``/`` as the segment separator:

- ``*``       any run of characters within one segment
- ``**``      any run of characters across segments
- ``?``       one character other than ``/``
- ``[abc]``   one character from the class; ``[!abc]`` negates; ``a-z`` ranges
- ``{a,b}``   alternation (alternatives may contain globs)
- ``\\x``      the literal character ``x``

Patterns are compiled once to regular expressions and matched against the
percent-decoded URL path.  An empty pattern set matches everything.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

from .errors import PatternError
from .utils import match_path

logger = logging.getLogger(__name__)

_SEPARATOR = "/"


class _GlobParser:
    """Recursive-descent translation of one glob pattern into a regex."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.pos = 0

    def parse(self) -> str:
        regex = self._sequence(in_alternation=False)
        if self.pos < len(self.pattern):
            raise PatternError(self.pattern, f"unexpected {self.pattern[self.pos]!r} at {self.pos}")
        return regex

    def _sequence(self, in_alternation: bool) -> str:
        out: List[str] = []
        pattern = self.pattern
        while self.pos < len(pattern):
            ch = pattern[self.pos]
            if in_alternation and ch in ",}":
                break
            if ch == "\\":
                if self.pos + 1 >= len(pattern):
                    raise PatternError(pattern, "dangling escape at end of pattern")
                out.append(re.escape(pattern[self.pos + 1]))
                self.pos += 2
            elif ch == "*":
                if pattern.startswith("**", self.pos):
                    out.append(".*")
                    self.pos += 2
                else:
                    out.append(f"[^{re.escape(_SEPARATOR)}]*")
                    self.pos += 1
            elif ch == "?":
                out.append(f"[^{re.escape(_SEPARATOR)}]")
                self.pos += 1
            elif ch == "[":
                out.append(self._char_class())
            elif ch == "{":
                out.append(self._alternation())
            elif ch in "]}":
                raise PatternError(pattern, f"unmatched {ch!r} at {self.pos}")
            else:
                out.append(re.escape(ch))
                self.pos += 1
        return "".join(out)

    def _char_class(self) -> str:
        pattern = self.pattern
        start = self.pos
        self.pos += 1
        negate = False
        if self.pos < len(pattern) and pattern[self.pos] == "!":
            negate = True
            self.pos += 1

        items: List[str] = []
        while True:
            if self.pos >= len(pattern):
                raise PatternError(pattern, f"unterminated character class at {start}")
            ch = pattern[self.pos]
            if ch == "]" and items:
                self.pos += 1
                break
            if ch == "]":
                raise PatternError(pattern, f"empty character class at {start}")
            if ch == "\\":
                if self.pos + 1 >= len(pattern):
                    raise PatternError(pattern, "dangling escape in character class")
                ch = pattern[self.pos + 1]
                self.pos += 1
            self.pos += 1
            if (self.pos + 1 < len(pattern) and pattern[self.pos] == "-"
                    and pattern[self.pos + 1] != "]"):
                hi = pattern[self.pos + 1]
                if hi < ch:
                    raise PatternError(pattern, f"invalid range {ch}-{hi}")
                items.append(f"{re.escape(ch)}-{re.escape(hi)}")
                self.pos += 2
            else:
                items.append(re.escape(ch))

        body = "".join(items)
        return f"[^{body}]" if negate else f"[{body}]"

    def _alternation(self) -> str:
        pattern = self.pattern
        start = self.pos
        self.pos += 1
        alternatives = []
        while True:
            alternatives.append(self._sequence(in_alternation=True))
            if self.pos >= len(pattern):
                raise PatternError(pattern, f"unterminated alternation at {start}")
            ch = pattern[self.pos]
            self.pos += 1
            if ch == "}":
                break
        return "(?:" + "|".join(alternatives) + ")"


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a glob *pattern* to a regex; raises ``PatternError``."""
    regex = _GlobParser(pattern).parse()
    try:
        return re.compile(regex, re.DOTALL)
    except re.error as exc:
        raise PatternError(pattern, str(exc)) from exc


def split_pattern_args(values: Optional[Iterable[str]]) -> List[str]:
    """Flatten repeatable, comma-separated CLI values into a pattern list.

    Commas inside ``{...}`` alternations are not treated as separators.
    """
    patterns: List[str] = []
    for value in values or []:
        depth = 0
        current = []
        escaped = False
        for ch in value:
            if escaped:
                current.append(ch)
                escaped = False
                continue
            if ch == "\\":
                escaped = True
            elif ch == "{":
                depth += 1
            elif ch == "}" and depth:
                depth -= 1
            elif ch == "," and depth == 0:
                piece = "".join(current).strip()
                if piece:
                    patterns.append(piece)
                current = []
                continue
            current.append(ch)
        piece = "".join(current).strip()
        if piece:
            patterns.append(piece)
    return patterns


class PatternSet:
    """An ordered collection of compiled path globs."""

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns: List[str] = list(patterns or [])
        self._compiled = [compile_pattern(p) for p in self.patterns]

    def __len__(self) -> int:
        return len(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def __repr__(self) -> str:
        return f"PatternSet({self.patterns!r})"

    def matches(self, path: str) -> bool:
        """True if any pattern fully matches *path*."""
        return any(rx.fullmatch(path) for rx in self._compiled)

    def allows(self, path: str) -> bool:
        """An empty set allows every path; otherwise any pattern must match."""
        if not self._compiled:
            return True
        return self.matches(path)

    def allows_url(self, url: str) -> bool:
        return self.allows(match_path(url))


def should_process_content(url: str, patterns: PatternSet) -> bool:
    """Decide whether the page at *url* has its content saved."""
    path = match_path(url)
    allowed = patterns.allows(path)
    if patterns and not allowed:
        logger.debug(f"[MATCH] {path} matches none of {patterns.patterns}")
    return allowed
