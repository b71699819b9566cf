# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Resolution of the !Ref, !GetAtt and !Sub expressions.
"""

from pytest import fixture
from troposphere import GetAtt, Ref

from modulex.common.context import ProcessingContext
from modulex.common.settings import CompilerConfig
from modulex.converter import ModuleConverter
from modulex.imports import ImportStore
from modulex.references import ExpressionRewriter, ReferenceResolver


@fixture()
def config():
    return CompilerConfig(
        tier="test",
        aws_region="us-east-1",
        aws_account_id="123456789012",
        dead_letter_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/dlq",
    )


def resolve(document, config):
    context = ProcessingContext()
    module = ModuleConverter(context, config, ImportStore()).convert(document)
    assert not context.has_errors, context.messages()
    ReferenceResolver(context).resolve(module)
    return module, context


def worker(**kwargs):
    function = {"Name": "Worker", "Memory": 128, "Timeout": 30}
    function.update(kwargs)
    return function


def test_sub_inlined_to_string(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Other", "Value": "mid"},
                {"Name": "Composed", "Value": {"Fn::Sub": "${Other}-${!Literal}"}},
            ],
            "Functions": [
                worker(Environment={"Greeting": {"Fn::Sub": "prefix-${Other}-suffix"}})
            ],
        },
        config,
    )
    assert not context.has_errors, context.messages()
    assert module.get_function("Worker").environment["Greeting"] == "prefix-mid-suffix"
    assert module.get_parameter("Composed").reference == "mid-${Literal}"


def test_sub_with_expressions(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}},
                {"Name": "Queue", "Resource": {"Type": "AWS::SQS::Queue"}},
                {
                    "Name": "Description",
                    "Value": {
                        "Fn::Sub": "${Topic} to ${Queue.QueueName} in ${AWS::Region}"
                    },
                },
            ],
        },
        config,
    )
    assert not context.has_errors, context.messages()
    text, arguments = module.get_parameter("Description").reference["Fn::Sub"]
    assert text == "${P0} to ${P1} in ${AWS::Region}"
    assert isinstance(arguments["P0"], Ref)
    assert arguments["P0"].to_dict() == {"Ref": "Topic"}
    assert isinstance(arguments["P1"], GetAtt)
    assert arguments["P1"].to_dict() == {"Fn::GetAtt": ["Queue", "QueueName"]}


def test_sub_arguments_numbering(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}},
                {
                    "Name": "Description",
                    "Value": {
                        "Fn::Sub": [
                            "${Prefix} ${Topic} ${P0}",
                            {"Prefix": {"Ref": "AWS::StackName"}, "P0": "given"},
                        ]
                    },
                },
            ],
        },
        config,
    )
    assert not context.has_errors, context.messages()
    text, arguments = module.get_parameter("Description").reference["Fn::Sub"]
    assert text == "${Prefix} ${P1} ${P0}"
    assert sorted(arguments) == ["P0", "P1", "Prefix"]
    assert arguments["P0"] == "given"
    assert arguments["P1"].to_dict() == {"Ref": "Topic"}


def test_chained_references(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Last", "Value": {"Ref": "Middle"}},
                {"Name": "Middle", "Value": {"Ref": "First"}},
                {"Name": "First", "Value": "value"},
                {
                    "Name": "Queue",
                    "Resource": {
                        "Type": "AWS::SQS::Queue",
                        "Properties": {"QueueName": {"Ref": "Last"}},
                    },
                },
            ],
        },
        config,
    )
    assert not context.has_errors, context.messages()
    assert module.get_parameter("Last").reference == "value"
    assert module.get_parameter("Queue").resource.properties == {"QueueName": "value"}


def test_circular_references(config):
    _, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "A", "Value": {"Ref": "B"}},
                {"Name": "B", "Value": {"Fn::Sub": "${A}"}},
                {"Name": "C", "Value": {"Ref": "A"}},
            ],
        },
        config,
    )
    assert context.messages() == [
        "circular !Ref dependency on 'A', 'B' @ Parameters/A",
        "circular !Ref dependency on 'A' @ Parameters/C",
    ]


def test_unknown_references(config):
    _, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "A", "Value": {"Ref": "Missing"}},
                {
                    "Name": "Queue",
                    "Resource": {
                        "Type": "AWS::SQS::Queue",
                        "Properties": {"QueueName": {"Ref": "Nowhere"}},
                    },
                },
            ],
            "Functions": [worker(Environment={"Value": {"Ref": "A"}})],
        },
        config,
    )
    assert context.messages() == [
        "could not find 'Missing' @ Parameters/A",
        "could not find 'Nowhere' @ Parameters/Queue/Resource/Properties",
    ]


def test_expression_without_intrinsic(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [{"Name": "A", "Value": {"Key": "value"}}],
        },
        config,
    )
    assert context.messages() == [
        "expression for 'A' does not contain a !Ref, !GetAtt or !Sub @ Parameters/A"
    ]
    assert module.get_parameter("A").reference == {"Key": "value"}


def test_attributes_of_values(config):
    _, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "A", "Value": "x"},
                {"Name": "B", "Value": {"Fn::GetAtt": ["A", "Arn"]}},
            ],
        },
        config,
    )
    assert context.messages() == ["item 'A' does not have attributes @ Parameters/B"]


def test_function_references(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Handler", "Value": {"Fn::GetAtt": "Worker.Arn"}},
                {"Name": "Role", "Value": {"Ref": "ModuleRole"}},
            ],
            "Functions": [worker()],
        },
        config,
    )
    assert not context.has_errors, context.messages()
    assert module.get_parameter("Handler").reference.to_dict() == {
        "Fn::GetAtt": ["Worker", "Arn"]
    }
    assert module.get_parameter("Role").reference.to_dict() == {"Ref": "ModuleRole"}


def test_sources_binding(config):
    module, context = resolve(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}},
                {"Name": "Queue", "Resource": {"Type": "AWS::SQS::Queue"}},
            ],
            "Functions": [
                worker(
                    Sources=[
                        {"Topic": "Topic"},
                        {"Topic": "Queue"},
                        {"Sqs": "Missing"},
                    ]
                )
            ],
        },
        config,
    )
    assert context.messages() == [
        "parameter for function source must be an SNS topic resource: 'Queue'"
        " @ Functions/Worker/Sources/[1]",
        "could not find parameter for SQS queue: 'Missing' @ Functions/Worker/Sources/[2]",
    ]
    topic_source = module.get_function("Worker").sources[0]
    assert topic_source.parameter is module.get_parameter("Topic")


def test_expression_rewriter_problems():
    rewriter = ExpressionRewriter(lambda name, attribute, problems: None)
    rewriter.substitute(
        {"List": [{"Ref": 12}, {"Fn::GetAtt": "NoAttribute"}, {"Fn::Sub": 3}]}
    )
    assert rewriter.problems == [
        "invalid !Ref expression",
        "invalid !GetAtt expression",
        "invalid !Sub expression",
    ]
    assert rewriter.missing == set()
