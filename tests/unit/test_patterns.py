"""Unit tests for branch/tag filter patterns."""

from __future__ import annotations

import pytest

from ci_matrix_orchestrator.orchestrator.workflow.errors import ConfigurationError
from ci_matrix_orchestrator.orchestrator.workflow.patterns import (
    compile_filter,
    compile_pattern,
    filter_matches,
)


@pytest.mark.parametrize(
    ("pattern", "ref", "expected"),
    [
        ("master", "master", True),
        ("master", "master2", False),
        ("v[0-9]+.*", "v2.3.1", True),
        ("v[0-9]+.*", "v10.0", True),
        ("v[0-9]+.*", "v2", False),
        ("v[0-9]+.*", "version", False),
        ("v[0-9]+.?*", "v2", True),
        ("v[0-9]+.?*", "v2-rc1", True),
        ("v[0-9]+.?*", "vx", False),
        ("feature/*", "feature/x", True),
        ("feature/*", "feature/x/y", False),
        ("feature/**", "feature/x/y", True),
        ("releases/v?1", "releases/1", True),
        ("releases/v?1", "releases/v1", True),
        ("a\\*b", "a*b", True),
        ("a\\*b", "axb", False),
    ],
)
def test_pattern_matching(pattern: str, ref: str, expected: bool) -> None:
    assert compile_pattern(pattern).matches(ref) is expected


def test_negated_pattern_is_parsed() -> None:
    p = compile_pattern("!release/**")
    assert p.negated
    assert p.source == "release/**"
    assert str(p) == "!release/**"


def test_last_matching_pattern_wins() -> None:
    patterns = compile_filter(["releases/**", "!releases/**-alpha", "releases/keep-alpha"])
    assert filter_matches(patterns, "releases/1.0")
    assert not filter_matches(patterns, "releases/1.0-alpha")
    assert filter_matches(patterns, "releases/keep-alpha")
    assert not filter_matches(patterns, "main")


@pytest.mark.parametrize(
    "bad",
    ["", "!", "+v", "v[0-9", "v[]", "*+", "v\\", "v[9-0]"],
)
def test_malformed_patterns_are_configuration_errors(bad: str) -> None:
    with pytest.raises(ConfigurationError):
        compile_pattern(bad)


def test_filter_requires_a_positive_pattern() -> None:
    with pytest.raises(ConfigurationError):
        compile_filter(["!main"])
    with pytest.raises(ConfigurationError):
        compile_filter([])
