# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

from modulex.common.fixed_point import solve_fixed_point
from modulex.preprocessor import substitute_variables


def rewrite(_name, value, resolved):
    return substitute_variables(value, resolved)


def test_chain_resolution():
    bound = {"a": "{{b}}", "b": "{{c}}", "d": "{{a}}-{{b}}"}
    result = solve_fixed_point({"c": "1"}, bound, rewrite)
    assert result.resolved == {"c": "1", "b": "1", "a": "1", "d": "1-1"}
    assert result.unresolved == {}
    assert result.iterations <= len(bound)
    assert result.cycles() == []
    assert result.dangling() == []


def test_no_bound_entries():
    result = solve_fixed_point({"a": "1"}, {}, rewrite)
    assert result.resolved == {"a": "1"}
    assert result.iterations == 0


def test_cycles_and_dangling():
    result = solve_fixed_point(
        {"x": "1"},
        {
            "a": "{{b}}",
            "b": "{{a}}",
            "c": "{{a}}",
            "d": "{{zz}}",
            "e": "{{x}}",
            "f": "{{c}}",
            "self": "{{self}}",
        },
        rewrite,
    )
    assert result.resolved == {"x": "1", "e": "1"}
    assert sorted(result.unresolved) == ["a", "b", "c", "d", "f", "self"]
    assert result.cycles() == [["a", "b"], ["self"]]
    assert result.dangling() == [("c", "a", True), ("d", "zz", False)]


def test_partial_rewrite_is_kept():
    result = solve_fixed_point({"x": "1"}, {"a": "{{x}}-{{missing}}"}, rewrite)
    value, missing = result.unresolved["a"]
    assert value == "1-{{missing}}"
    assert missing == frozenset({"missing"})
