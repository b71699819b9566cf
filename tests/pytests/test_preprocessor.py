# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Tier choices and template variables of the module documents.
"""

from pytest import fixture

from modulex.common.context import ProcessingContext
from modulex.common.settings import CompilerConfig
from modulex.preprocessor import (
    Preprocessor,
    find_variables,
    substitute_variables,
)


@fixture()
def config():
    return CompilerConfig(
        tier="test",
        aws_region="us-east-1",
        aws_account_id="123456789012",
        git_sha="0123abcd",
    )


def preprocess(document, config):
    context = ProcessingContext()
    preprocessor = Preprocessor(context, config)
    return preprocessor.preprocess(document), context, preprocessor


def test_find_and_substitute_variables():
    assert find_variables("{{ A }}-{{B}}") == ["A", "B"]
    text, missing = substitute_variables("{{A}}-{{C}}", {"A": "x"})
    assert text == "x-{{C}}"
    assert missing == ["C"]


def test_exact_tier_beats_default(config):
    for description in (
        {":test": "exact", ":Default": "default"},
        {":Default": "default", ":test": "exact"},
    ):
        result, context, _ = preprocess(
            {"Name": "Sample", "Description": description}, config
        )
        assert not context.has_errors
        assert result["Description"] == "exact"


def test_default_choice(config):
    result, _, _ = preprocess(
        {"Name": "Sample", "Description": {":prod": "prod", ":Default": "default"}},
        config,
    )
    assert result["Description"] == "default"


def test_unmatched_choice_is_dropped(config):
    result, context, _ = preprocess(
        {
            "Name": "Sample",
            "Description": {":prod": "prod"},
            "Pragmas": [{":prod": "no-functions"}, "keep"],
        },
        config,
    )
    assert not context.has_errors
    assert "Description" not in result
    assert result["Pragmas"] == ["keep"]


def test_choice_merged_in_parent_map(config):
    result, _, _ = preprocess(
        {
            "Name": "Sample",
            "Parameters": [
                {
                    "Name": "Setting",
                    ":test": {"Value": "test-value"},
                    ":Default": {"Value": "default-value"},
                }
            ],
        },
        config,
    )
    assert result["Parameters"] == [{"Name": "Setting", "Value": "test-value"}]


def test_variables_resolution(config):
    """
    A variable referring to another one resolves to its final value
    """
    result, context, preprocessor = preprocess(
        {
            "Name": "Sample",
            "Version": 1.2,
            "Variables": {"A": "{{B}}", "B": "x"},
            "Description": "{{A}} {{Module}} v{{Version}} ({{Tier}}, {{AwsRegion}})",
        },
        config,
    )
    assert not context.has_errors
    assert preprocessor.variables["A"] == "x"
    assert result["Description"] == "x Sample v1.2 (test, us-east-1)"
    assert "Variables" not in result


def test_variables_cycle(config):
    _, context, _ = preprocess(
        {
            "Name": "Sample",
            "Variables": {"A": "{{B}}", "B": "{{A}}", "C": "{{A}}"},
            "Description": "{{A}}-{{C}}",
        },
        config,
    )
    messages = context.messages()
    assert "circular dependency on 'A', 'B' @ Variables/A" in messages
    assert "circular dependency on 'A' @ Variables/C" in messages
    assert len(messages) == 2


def test_unknown_variable(config):
    _, context, _ = preprocess(
        {"Name": "Sample", "Description": "{{Missing}}"},
        config,
    )
    assert context.messages() == ["unknown variable reference 'Missing' @ Description"]


def test_invalid_variables(config):
    _, context, _ = preprocess(
        {"Name": "Sample", "Variables": {"A": ["not", "a", "string"]}},
        config,
    )
    assert context.messages() == ["must be a string value @ Variables/A"]


def test_preprocessing_is_idempotent(config):
    document = {
        "Name": "Sample",
        "Variables": {"Prefix": "{{Tier}}-{{Module}}"},
        "Description": {":test": "{{Prefix}} module", ":Default": "module"},
        "Parameters": [{"Name": "Setting", "Value": "{{GitSha}}"}],
    }
    once, _, _ = preprocess(document, config)
    twice, context, _ = preprocess(once, config)
    assert not context.has_errors
    assert once == twice
    assert once["Parameters"][0]["Value"] == "0123abcd"
    assert "Variables" in document
