"""Tests for the cascading text replacement."""

from __future__ import annotations

import pytest

from agentbox.errors import AmbiguousMatchError, InvalidArgumentError, NotFoundError
from agentbox.tools.replacers import levenshtein, replace


def test_levenshtein():
    assert levenshtein("", "abc") == 3
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("same", "same") == 0


def test_exact_match():
    outcome = replace("a = 1\nb = 2\n", "b = 2", "b = 3")
    assert outcome.content == "a = 1\nb = 3\n"
    assert outcome.replacements == 1
    assert outcome.strategy == "simple"


def test_equal_strings_rejected():
    with pytest.raises(InvalidArgumentError):
        replace("x", "x", "x")


def test_ambiguous_without_replace_all():
    with pytest.raises(AmbiguousMatchError) as exc_info:
        replace("foo\nfoo\n", "foo", "bar")
    assert exc_info.value.details["matches"] == 2


def test_replace_all_replaces_every_occurrence():
    outcome = replace("foo bar foo", "foo", "baz", replace_all=True)
    assert outcome.content == "baz bar baz"
    assert outcome.replacements == 2


def test_not_found():
    with pytest.raises(NotFoundError):
        replace("hello world", "goodbye", "hi")


def test_line_trimmed_match_ignores_surrounding_whitespace():
    content = "def f():\n    if x:\n        return 1\n"
    outcome = replace(content, "if x:\nreturn 1", "    if y:\n        return 2")

    assert outcome.strategy == "line_trimmed"
    assert outcome.content == "def f():\n    if y:\n        return 2\n"


def test_whitespace_normalized_match():
    outcome = replace("total  =   a +  b\n", "total = a + b", "total = a - b")
    assert outcome.strategy == "whitespace_normalized"
    assert outcome.content == "total = a - b\n"


def test_indentation_flexible_match():
    content = "class A:\n    def f(self):\n        pass\n"
    outcome = replace(content, "  def f(self):\n      pass", "    def g(self):\n        pass")
    assert outcome.content == "class A:\n    def g(self):\n        pass\n"
    assert outcome.strategy in ("line_trimmed", "indentation_flexible")


def test_escape_normalized_match():
    content = 'print("a\tb")\n'
    outcome = replace(content, 'print(\\"a\\tb\\")', 'print("ab")')
    assert outcome.strategy == "escape_normalized"
    assert outcome.content == 'print("ab")\n'


def test_block_anchor_match_tolerates_middle_differences():
    content = "start()\nalpha = compute(1)\nbeta = compute(2)\nfinish()\n"
    find = "start()\nalpha = compute(10)\nbeta = compute(20)\nfinish()"
    outcome = replace(content, find, "done()")

    assert outcome.strategy == "block_anchor"
    assert outcome.content == "done()\n"


def test_empty_old_string_prepends():
    outcome = replace("body\n", "", "header\n")
    assert outcome.content == "header\nbody\n"
    assert outcome.strategy == "prepend"


def test_line_trimmed_match_does_not_count_line_prefixes():
    content = "  x = 1\n  x = 10\n"

    outcome = replace(content, "x = 1 ", "y = 2")

    assert outcome.strategy == "line_trimmed"
    assert outcome.replacements == 1
    assert outcome.content == "y = 2\n  x = 10\n"


def test_replace_all_only_touches_located_spans():
    content = "  x = 1\n  x = 10\n"

    outcome = replace(content, "x = 1 ", "y = 2", replace_all=True)

    assert outcome.replacements == 1
    assert outcome.content == "y = 2\n  x = 10\n"


def test_line_trimmed_replace_all_replaces_each_matching_line():
    content = "  a()\nb()\n    a()\n"

    outcome = replace(content, "a() ", "c()", replace_all=True)

    assert outcome.replacements == 2
    assert outcome.content == "c()\nb()\nc()\n"
