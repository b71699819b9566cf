# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Resolution of the imports from the parameter store, with stubbed SSM responses.
"""

import boto3
from botocore.stub import Stubber
from pytest import fixture, raises

from modulex.common.context import ProcessingContext
from modulex.common.settings import CompilerConfig
from modulex.converter import ModuleConverter
from modulex.exceptions import ModuleSchemaError
from modulex.imports import ImportResolver, ImportStore, qualify_import_key
from modulex.model.parameters import (
    CollectionParameter,
    ImportInputParameter,
    ReferencedResourceParameter,
    SecretParameter,
    ValueParameter,
)


@fixture()
def config():
    return CompilerConfig(
        tier="test",
        aws_region="us-east-1",
        aws_account_id="123456789012",
        dead_letter_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/dlq",
    )


@fixture()
def ssm_client():
    return boto3.client(
        "ssm",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def resolve(document, config, client):
    context = ProcessingContext()
    store = ImportStore(client=client)
    module = ModuleConverter(context, config, store).convert(document)
    ImportResolver(context, config, store).resolve(module)
    return module, context


def test_qualify_import_key():
    assert qualify_import_key("Other/Value", "test") == "/test/Other/Value"
    assert qualify_import_key("/prod/Other/", "test") == "/prod/Other/"
    with raises(ModuleSchemaError):
        qualify_import_key("Other/Value")
    with raises(ModuleSchemaError):
        qualify_import_key("/Other//Value", "test")


def test_import_values(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_response(
        "get_parameters",
        {
            "Parameters": [
                {"Name": "/test/Other/Topic", "Type": "String", "Value": "arn:aws:sns:us-east-1:123456789012:topic"},
                {"Name": "/test/Other/Value", "Type": "String", "Value": "hello"},
            ],
        },
        {"Names": ["/test/Other/Topic", "/test/Other/Value"], "WithDecryption": False},
    )
    with stubber:
        module, context = resolve(
            {
                "Name": "Sample",
                "Parameters": [
                    {"Name": "Greeting", "Import": "Other/Value"},
                    {
                        "Name": "Topic",
                        "Import": "Other/Topic",
                        "Resource": {"Type": "AWS::SNS::Topic", "Allow": "Publish"},
                    },
                ],
            },
            config,
            ssm_client,
        )
        stubber.assert_no_pending_responses()
    assert not context.has_errors, context.messages()
    greeting = module.get_parameter("Greeting")
    assert isinstance(greeting, ValueParameter)
    assert greeting.reference == "hello"
    topic = module.get_parameter("Topic")
    assert isinstance(topic, ReferencedResourceParameter)
    assert topic.arns == ["arn:aws:sns:us-east-1:123456789012:topic"]
    assert topic.resource.allow == ["sns:Publish"]


def test_import_prefix(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_response(
        "get_parameters_by_path",
        {
            "Parameters": [
                {"Name": "/test/Other/First", "Type": "String", "Value": "1"},
                {"Name": "/test/Other/Nested/Second", "Type": "SecureString", "Value": "cipher"},
                {"Name": "/test/Other/Nested/Third", "Type": "StringList", "Value": "a,b"},
            ]
        },
        {"Path": "/test/Other", "Recursive": True, "WithDecryption": False},
    )
    with stubber:
        module, context = resolve(
            {
                "Name": "Sample",
                "Parameters": [{"Name": "Other", "Import": "Other/", "Scope": "all"}],
            },
            config,
            ssm_client,
        )
    assert not context.has_errors, context.messages()
    other = module.get_parameter("Other")
    assert isinstance(other, CollectionParameter)
    assert other.scope == "all"
    assert [child.name for child in other.parameters] == ["First", "Nested"]
    assert module.get_parameter("Other::First").reference == "1"
    second = module.get_parameter("Other::Nested::Second")
    assert isinstance(second, SecretParameter)
    assert second.encryption_context == {
        "PARAMETER_ARN": "arn:aws:ssm:us-east-1:123456789012:parameter/test/Other/Nested/Second"
    }
    third = module.get_parameter("Other::Nested::Third")
    assert isinstance(third, ValueParameter)
    assert third.values == ["a", "b"]
    assert third.reference == "a,b"
    assert second.env_name == "OTHER_NESTED_SECOND"


def test_missing_import(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_response(
        "get_parameters",
        {"Parameters": [], "InvalidParameters": ["/test/Other/Value"]},
        {"Names": ["/test/Other/Value"], "WithDecryption": False},
    )
    with stubber:
        _, context = resolve(
            {
                "Name": "Sample",
                "Parameters": [{"Name": "Greeting", "Import": "Other/Value"}],
            },
            config,
            ssm_client,
        )
    assert context.messages() == [
        "import parameter '/test/Other/Value' not found @ Parameters/Greeting"
    ]


def test_store_failure(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_client_error(
        "get_parameters",
        service_error_code="AccessDeniedException",
        service_message="access denied",
    )
    with stubber:
        _, context = resolve(
            {
                "Name": "Sample",
                "Parameters": [{"Name": "Greeting", "Import": "Other/Value"}],
            },
            config,
            ssm_client,
        )
    assert context.messages() == ["failed to resolve imports: access denied"]


def test_import_input_and_handler_topic(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_response(
        "get_parameters",
        {
            "Parameters": [
                {"Name": "/test/Acme/WidgetCustomResourceTopic", "Type": "String", "Value": "arn:aws:sns:us-east-1:123456789012:widget"},
                {"Name": "/test/Other/Subnets", "Type": "StringList", "Value": "subnet-1,subnet-2"},
            ],
        },
        {
            "Names": ["/test/Acme/WidgetCustomResourceTopic", "/test/Other/Subnets"],
            "WithDecryption": False,
        },
    )
    with stubber:
        module, context = resolve(
            {
                "Name": "Sample",
                "Inputs": [{"Import": "Other/Subnets", "Section": "Network"}],
                "Parameters": [{"Name": "Widget", "Resource": {"Type": "Acme::Widget"}}],
            },
            config,
            ssm_client,
        )
    assert not context.has_errors, context.messages()
    subnets = module.get_parameter("Subnets")
    assert isinstance(subnets, ImportInputParameter)
    assert subnets.input_type == "CommaDelimitedList"
    assert subnets.default == "subnet-1,subnet-2"
    assert subnets.section == "Network"
    widget = module.get_parameter("Widget")
    assert (
        widget.resource.properties["ServiceToken"]
        == "arn:aws:sns:us-east-1:123456789012:widget"
    )


def test_secure_string_import(config, ssm_client):
    stubber = Stubber(ssm_client)
    stubber.add_response(
        "get_parameters",
        {
            "Parameters": [
                {"Name": "/test/Other/Value", "Type": "SecureString", "Value": "cipher"}
            ],
        },
        {"Names": ["/test/Other/Value"], "WithDecryption": False},
    )
    with stubber:
        module, context = resolve(
            {
                "Name": "Sample",
                "Parameters": [{"Name": "Password", "Import": "Other/Value"}],
            },
            config,
            ssm_client,
        )
    assert not context.has_errors
    password = module.get_parameter("Password")
    assert isinstance(password, SecretParameter)
    assert password.secret == "cipher"
