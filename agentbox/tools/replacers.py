"""Cascading text replacement.

Each replacer is a generator that yields ``(start, end)`` offsets of the
spans of ``content`` which the caller probably meant by ``find``.
Replacers are tried from strict to tolerant:

1. simple: the text exactly as given
2. line_trimmed: same lines, ignoring leading/trailing whitespace per line
3. whitespace_normalized: runs of whitespace collapsed to one space
4. indentation_flexible: same block after removing common indentation
5. escape_normalized: ``\\n``, ``\\t``, quotes etc. unescaped
6. block_anchor: first and last lines match, middle lines scored by
   Levenshtein similarity (blocks of three or more lines only)

The first replacer that locates anything decides the outcome, and only the
spans it located are replaced. If it located more than one and
``replace_all`` is false the edit is ambiguous; later, more tolerant
replacers are not consulted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator

from agentbox.errors import AmbiguousMatchError, InvalidArgumentError, NotFoundError


Span = tuple[int, int]
Replacer = Callable[[str, str], Iterator[Span]]

SINGLE_CANDIDATE_THRESHOLD = 0.0
MULTIPLE_CANDIDATES_THRESHOLD = 0.3


def levenshtein(a: str, b: str) -> int:
    if not a or not b:
        return max(len(a), len(b))
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def _line_starts(lines: list[str]) -> list[int]:
    starts = []
    offset = 0
    for line in lines:
        starts.append(offset)
        offset += len(line) + 1
    return starts


def _line_span(lines: list[str], starts: list[int], first: int, last: int) -> Span:
    """Offsets covering lines ``first..last`` inclusive, without the final newline."""
    return starts[first], starts[last] + len(lines[last])


def _occurrences(content: str, search: str) -> Iterator[Span]:
    if not search:
        return
    index = content.find(search)
    while index != -1:
        yield index, index + len(search)
        index = content.find(search, index + len(search))


def simple_replacer(content: str, find: str) -> Iterator[Span]:
    yield from _occurrences(content, find)


def line_trimmed_replacer(content: str, find: str) -> Iterator[Span]:
    original = content.split("\n")
    starts = _line_starts(original)
    search = find.split("\n")
    if search and search[-1] == "":
        search.pop()
    if not search:
        return

    for i in range(len(original) - len(search) + 1):
        if all(original[i + j].strip() == search[j].strip() for j in range(len(search))):
            yield _line_span(original, starts, i, i + len(search) - 1)


def _normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def whitespace_normalized_replacer(content: str, find: str) -> Iterator[Span]:
    normalized_find = _normalize_whitespace(find)
    if not normalized_find:
        return
    lines = content.split("\n")
    starts = _line_starts(lines)
    words = find.split()
    pattern = re.compile(r"\s+".join(re.escape(w) for w in words))

    for i, line in enumerate(lines):
        normalized_line = _normalize_whitespace(line)
        if normalized_line == normalized_find:
            yield _line_span(lines, starts, i, i)
        elif normalized_find in normalized_line:
            for match in pattern.finditer(line):
                yield starts[i] + match.start(), starts[i] + match.end()

    find_lines = find.split("\n")
    if len(find_lines) > 1:
        for i in range(len(lines) - len(find_lines) + 1):
            block = "\n".join(lines[i:i + len(find_lines)])
            if _normalize_whitespace(block) == normalized_find:
                yield _line_span(lines, starts, i, i + len(find_lines) - 1)


def _remove_indentation(text: str) -> str:
    lines = text.split("\n")
    non_empty = [line for line in lines if line.strip()]
    if not non_empty:
        return text
    indent = min(len(line) - len(line.lstrip()) for line in non_empty)
    return "\n".join(line if not line.strip() else line[indent:] for line in lines)


def indentation_flexible_replacer(content: str, find: str) -> Iterator[Span]:
    normalized_find = _remove_indentation(find)
    content_lines = content.split("\n")
    starts = _line_starts(content_lines)
    find_lines = find.split("\n")

    for i in range(len(content_lines) - len(find_lines) + 1):
        block = "\n".join(content_lines[i:i + len(find_lines)])
        if _remove_indentation(block) == normalized_find:
            yield _line_span(content_lines, starts, i, i + len(find_lines) - 1)


_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "'": "'", '"': '"',
    "`": "`", "\\": "\\", "\n": "\n", "$": "$",
}


def _unescape(text: str) -> str:
    return re.sub(r"\\(n|t|r|'|\"|`|\\|\n|\$)", lambda m: _ESCAPES[m.group(1)], text)


def escape_normalized_replacer(content: str, find: str) -> Iterator[Span]:
    unescaped_find = _unescape(find)
    if not unescaped_find:
        return
    yield from _occurrences(content, unescaped_find)

    lines = content.split("\n")
    starts = _line_starts(lines)
    find_lines = unescaped_find.split("\n")
    for i in range(len(lines) - len(find_lines) + 1):
        block = "\n".join(lines[i:i + len(find_lines)])
        if _unescape(block) == unescaped_find:
            yield _line_span(lines, starts, i, i + len(find_lines) - 1)


def _middle_similarity(original: list[str], search: list[str], start: int, end: int) -> float:
    actual_size = end - start + 1
    lines_to_check = min(len(search) - 2, actual_size - 2)
    if lines_to_check <= 0:
        return 1.0

    total = 0.0
    for j in range(1, min(len(search) - 1, actual_size - 1)):
        original_line = original[start + j].strip()
        search_line = search[j].strip()
        longest = max(len(original_line), len(search_line))
        if longest == 0:
            continue
        total += 1 - levenshtein(original_line, search_line) / longest
    return total / lines_to_check


def block_anchor_replacer(content: str, find: str) -> Iterator[Span]:
    original = content.split("\n")
    starts = _line_starts(original)
    search = find.split("\n")
    if len(search) < 3:
        return
    if search[-1] == "":
        search.pop()

    first, last = search[0].strip(), search[-1].strip()
    candidates: list[tuple[int, int]] = []
    for i, line in enumerate(original):
        if line.strip() != first:
            continue
        for j in range(i + 2, len(original)):
            if original[j].strip() == last:
                candidates.append((i, j))
                break

    if not candidates:
        return

    if len(candidates) == 1:
        start, end = candidates[0]
        if _middle_similarity(original, search, start, end) >= SINGLE_CANDIDATE_THRESHOLD:
            yield _line_span(original, starts, start, end)
        return

    best, best_score = None, -1.0
    for start, end in candidates:
        score = _middle_similarity(original, search, start, end)
        if score > best_score:
            best, best_score = (start, end), score
    if best is not None and best_score >= MULTIPLE_CANDIDATES_THRESHOLD:
        yield _line_span(original, starts, *best)


REPLACERS: list[tuple[str, Replacer]] = [
    ("simple", simple_replacer),
    ("line_trimmed", line_trimmed_replacer),
    ("whitespace_normalized", whitespace_normalized_replacer),
    ("indentation_flexible", indentation_flexible_replacer),
    ("escape_normalized", escape_normalized_replacer),
    ("block_anchor", block_anchor_replacer),
]


@dataclass(frozen=True)
class Replacement:
    content: str
    replacements: int
    strategy: str


def replace(content: str, old_string: str, new_string: str, replace_all: bool = False) -> Replacement:
    """Replace ``old_string`` in ``content`` using the first replacer that matches.

    Raises:
        InvalidArgumentError: ``old_string`` equals ``new_string``
        NotFoundError: no replacer located ``old_string``
        AmbiguousMatchError: more than one location and ``replace_all`` is false
    """
    if old_string == new_string:
        raise InvalidArgumentError("oldString and newString must be different")
    if old_string == "":
        return Replacement(content=new_string + content, replacements=1, strategy="prepend")

    for name, replacer in REPLACERS:
        spans: dict[int, int] = {}
        for start, end in replacer(content, old_string):
            if end <= start:
                continue
            # Keep the longest span starting at each offset.
            spans[start] = max(end, spans.get(start, end))
        if not spans:
            continue

        located = _non_overlapping(spans)
        if len(located) > 1 and not replace_all:
            raise AmbiguousMatchError(
                "oldString found multiple times and requires more code context "
                "to uniquely identify the intended match",
                details={"matches": len(located), "strategy": name},
            )

        pieces = []
        cursor = 0
        for start, end in located:
            pieces.append(content[cursor:start])
            pieces.append(new_string)
            cursor = end
        pieces.append(content[cursor:])
        return Replacement(content="".join(pieces), replacements=len(located), strategy=name)

    raise NotFoundError("oldString not found in content")


def _non_overlapping(spans: dict[int, int]) -> list[Span]:
    located: list[Span] = []
    cursor = -1
    for start in sorted(spans):
        if start < cursor:
            continue
        located.append((start, spans[start]))
        cursor = spans[start]
    return located
