# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Deployment of the module stacks, with stubbed CloudFormation responses.
"""

import json
from datetime import datetime

import boto3
from botocore.exceptions import ClientError
from botocore.stub import ANY, Stubber
from pytest import fixture, raises

from modulex.common.aws import (
    PROTECTED_RESOURCE_TYPES,
    create_or_update_stack,
    define_stack_parameters,
    define_stack_policy,
    get_stack,
    get_stack_name,
    list_modules,
)
from modulex.common.settings import CompilerConfig
from modulex.exceptions import DeploymentError
from modulex.model.module import Module

STACK_NAME = "test-Sample"


@fixture()
def session():
    return boto3.session.Session(
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@fixture()
def client(session):
    return session.client("cloudformation")


def stack_description(status: str) -> dict:
    return {
        "Stacks": [
            {
                "StackName": STACK_NAME,
                "CreationTime": datetime(2022, 1, 1),
                "StackStatus": status,
            }
        ]
    }


def add_missing_stack(stubber: Stubber) -> None:
    stubber.add_client_error(
        "describe_stacks",
        service_error_code="ValidationError",
        service_message=f"Stack with id {STACK_NAME} does not exist",
    )


def test_stack_helpers():
    config = CompilerConfig(tier="test")
    module = Module("Sample")
    assert get_stack_name(config, module) == STACK_NAME
    assert get_stack_name(config, module, "Other.Name") == "test-Other-Name"
    assert get_stack_name(CompilerConfig(), module) == "Sample"
    assert define_stack_parameters({"Stage": "dev", "Count": 2}) == [
        {"ParameterKey": "Stage", "ParameterValue": "dev"},
        {"ParameterKey": "Count", "ParameterValue": "2"},
    ]
    assert define_stack_parameters(None) == []
    deny = define_stack_policy()["Statement"][1]
    assert deny["Effect"] == "Deny"
    assert deny["Condition"]["StringEquals"]["ResourceType"] == PROTECTED_RESOURCE_TYPES


def test_get_stack(client):
    stubber = Stubber(client)
    add_missing_stack(stubber)
    stubber.add_response(
        "describe_stacks", stack_description("CREATE_COMPLETE"), {"StackName": STACK_NAME}
    )
    stubber.add_client_error(
        "describe_stacks", service_error_code="AccessDenied", service_message="denied"
    )
    with stubber:
        assert get_stack(client, STACK_NAME) is None
        assert get_stack(client, STACK_NAME)["StackStatus"] == "CREATE_COMPLETE"
        with raises(ClientError):
            get_stack(client, STACK_NAME)


def test_create_stack(client):
    stubber = Stubber(client)
    add_missing_stack(stubber)
    stubber.add_response(
        "create_stack",
        {"StackId": f"arn:aws:cloudformation:us-east-1:123456789012:stack/{STACK_NAME}/id"},
        {
            "StackName": STACK_NAME,
            "Capabilities": ANY,
            "Parameters": [],
            "OnFailure": "DELETE",
            "EnableTerminationProtection": True,
            "StackPolicyBody": json.dumps(define_stack_policy()),
            "TemplateBody": "{}",
        },
    )
    with stubber:
        assert create_or_update_stack(
            client, STACK_NAME, {"TemplateBody": "{}"}, [], protect=True
        ) == (True, None)
        stubber.assert_no_pending_responses()


def test_update_without_changes(client):
    stubber = Stubber(client)
    stubber.add_response("describe_stacks", stack_description("UPDATE_COMPLETE"))
    stubber.add_response(
        "describe_stack_events",
        {
            "StackEvents": [
                {
                    "StackId": "stack-id",
                    "EventId": "event-2",
                    "StackName": STACK_NAME,
                    "Timestamp": datetime(2022, 1, 2),
                }
            ]
        },
    )
    stubber.add_client_error(
        "update_stack",
        service_error_code="ValidationError",
        service_message="No updates are to be performed.",
    )
    with stubber:
        assert create_or_update_stack(
            client, STACK_NAME, {"TemplateBody": "{}"}, []
        ) == (False, "event-2")


def test_update_in_progress_stack(client):
    stubber = Stubber(client)
    stubber.add_response("describe_stacks", stack_description("UPDATE_IN_PROGRESS"))
    with stubber, raises(DeploymentError):
        create_or_update_stack(client, STACK_NAME, {"TemplateBody": "{}"}, [])


def test_list_modules(session, client, monkeypatch):
    monkeypatch.setattr(session, "client", lambda *args, **kwargs: client)
    stubber = Stubber(client)
    stubber.add_response(
        "list_stacks",
        {
            "StackSummaries": [
                {
                    "StackName": "test-Sample",
                    "CreationTime": datetime(2022, 1, 1),
                    "StackStatus": "CREATE_COMPLETE",
                },
                {
                    "StackName": "test-Deleted",
                    "CreationTime": datetime(2022, 1, 1),
                    "StackStatus": "DELETE_COMPLETE",
                },
                {
                    "StackName": "prod-Sample",
                    "CreationTime": datetime(2022, 1, 1),
                    "StackStatus": "CREATE_COMPLETE",
                },
            ]
        },
    )
    with stubber:
        stacks = list_modules(session, "test")
    assert [stack["StackName"] for stack in stacks] == ["test-Sample"]
