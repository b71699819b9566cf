# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Deployment of the module stacks with AWS CloudFormation, and listing of the deployed modules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.files import FileArtifact
    from modulex.common.settings import CompilerConfig
    from modulex.model.module import Module

import json
from time import sleep

from botocore.exceptions import ClientError
from compose_x_common.compose_x_common import keyisset
from tabulate import tabulate

from modulex.common.logging import LOG
from modulex.exceptions import DeploymentError

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]
NO_UPDATES_MESSAGE = "No updates are to be performed."
POLL_INTERVAL = 5
CAN_UPDATE_STATUSES = [
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
]
SUCCESS_STATUSES = ["CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"]
FAILED_STATUSES = [
    "CREATE_FAILED",
    "DELETE_COMPLETE",
    "DELETE_FAILED",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_COMPLETE",
    "IMPORT_ROLLBACK_FAILED",
]
PROTECTED_RESOURCE_TYPES = [
    "AWS::ApiGateway::RestApi",
    "AWS::AppSync::GraphQLApi",
    "AWS::DynamoDB::Table",
    "AWS::EC2::Instance",
    "AWS::EMR::Cluster",
    "AWS::Kinesis::Stream",
    "AWS::KinesisFirehose::DeliveryStream",
    "AWS::KMS::Key",
    "AWS::Neptune::DBCluster",
    "AWS::Neptune::DBInstance",
    "AWS::RDS::DBInstance",
    "AWS::Redshift::Cluster",
    "AWS::S3::Bucket",
]


def define_stack_policy() -> dict:
    """
    Denies the replacement and deletion of the stateful resources
    """
    return {
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": "*",
                "Action": "Update:*",
                "Resource": "*",
            },
            {
                "Effect": "Deny",
                "Principal": "*",
                "Action": ["Update:Replace", "Update:Delete"],
                "Resource": "*",
                "Condition": {"StringEquals": {"ResourceType": PROTECTED_RESOURCE_TYPES}},
            },
        ]
    }


def define_update_policy() -> dict:
    return {
        "Statement": [
            {"Effect": "Allow", "Principal": "*", "Action": "Update:*", "Resource": "*"}
        ]
    }


def get_stack_name(config: CompilerConfig, module: Module, alt_name: str = None) -> str:
    name = alt_name if alt_name else module.name
    return f"{config.tier}-{name}".replace(".", "-") if config.tier else name


def get_stack(client, name: str) -> dict | None:
    """
    :return: the stack description, None if the stack does not exist
    """
    try:
        stacks_r = client.describe_stacks(StackName=name)
    except ClientError as error:
        if (
            error.response["Error"]["Code"] == "ValidationError"
            and "does not exist" in error.response["Error"]["Message"]
        ):
            return None
        raise
    if not keyisset("Stacks", stacks_r):
        return None
    return stacks_r["Stacks"][0]


def define_stack_parameters(inputs: dict) -> list:
    return [
        {"ParameterKey": key, "ParameterValue": str(value)}
        for key, value in (inputs if inputs else {}).items()
    ]


def upload_template(
    session, config: CompilerConfig, module: Module, template_file: FileArtifact
) -> str | None:
    """
    Uploads the template to ``{module}/cloudformation-v{version}-{md5}.json`` in the deployment bucket.

    :return: the URL of the template, None when there is no deployment bucket
    """
    if not config.deployment_bucket_name:
        return None
    key = f"{module.name}/cloudformation-v{module.version}-{template_file.content_hash}.json"
    return template_file.upload(session, config.deployment_bucket_name, key)


def create_or_update_stack(
    client,
    stack_name: str,
    template_args: dict,
    parameters: list,
    allow_data_loss: bool = False,
    protect: bool = False,
) -> tuple:
    """
    :return: whether the stack changes, and the latest event id before the operation
    :rtype: tuple
    """
    stack = get_stack(client, stack_name)
    if stack and stack["StackStatus"] == "ROLLBACK_COMPLETE":
        LOG.warning(f"{stack_name} - Stack in ROLLBACK_COMPLETE. Deleting it first")
        client.delete_stack(StackName=stack_name)
        client.get_waiter("stack_delete_complete").wait(StackName=stack_name)
        stack = None
    if stack is None:
        client.create_stack(
            StackName=stack_name,
            Capabilities=CAPABILITIES,
            Parameters=parameters,
            OnFailure="DELETE",
            EnableTerminationProtection=protect,
            StackPolicyBody=json.dumps(define_stack_policy()),
            **template_args,
        )
        LOG.info(f"{stack_name} - Creating stack")
        return True, None
    if stack["StackStatus"] not in CAN_UPDATE_STATUSES:
        raise DeploymentError(
            f"{stack_name} - cannot update stack in status {stack['StackStatus']}"
        )
    last_event_id = get_last_event_id(client, stack_name)
    update_args = {}
    if allow_data_loss:
        update_args["StackPolicyDuringUpdateBody"] = json.dumps(define_update_policy())
    try:
        client.update_stack(
            StackName=stack_name,
            Capabilities=CAPABILITIES,
            Parameters=parameters,
            **template_args,
            **update_args,
        )
    except ClientError as error:
        if error.response["Error"]["Message"] == NO_UPDATES_MESSAGE:
            LOG.info(f"{stack_name} - {NO_UPDATES_MESSAGE}")
            return False, last_event_id
        raise
    if protect:
        client.update_termination_protection(
            EnableTerminationProtection=True, StackName=stack_name
        )
    LOG.info(f"{stack_name} - Updating stack")
    return True, last_event_id


def get_last_event_id(client, stack_name: str) -> str | None:
    events_r = client.describe_stack_events(StackName=stack_name)
    if not keyisset("StackEvents", events_r):
        return None
    return events_r["StackEvents"][0]["EventId"]


def get_new_events(client, stack_name: str, last_event_id: str = None) -> list:
    """
    :return: the events more recent than last_event_id, oldest first
    """
    events = []
    paginator = client.get_paginator("describe_stack_events")
    for page in paginator.paginate(StackName=stack_name):
        for event in page["StackEvents"]:
            if event["EventId"] == last_event_id:
                return list(reversed(events))
            events.append(event)
    return list(reversed(events))


def wait_for_stack(client, stack_name: str, last_event_id: str = None) -> bool:
    """
    Polls the stack events until the stack reaches a terminal status.

    :return: whether the stack operation succeeded
    :rtype: bool
    """
    while True:
        for event in get_new_events(client, stack_name, last_event_id):
            last_event_id = event["EventId"]
            message = (
                f"{event['ResourceStatus']} {event['LogicalResourceId']} "
                f"({event['ResourceType']})"
            )
            if keyisset("ResourceStatusReason", event):
                message = f"{message}: {event['ResourceStatusReason']}"
            if event["ResourceStatus"].endswith("FAILED"):
                LOG.error(message)
            else:
                LOG.info(message)
        stack = get_stack(client, stack_name)
        if stack is None:
            LOG.error(f"{stack_name} - stack deleted")
            return False
        status = stack["StackStatus"]
        if status in SUCCESS_STATUSES:
            print_stack_outputs(stack)
            return True
        if status in FAILED_STATUSES:
            LOG.error(f"{stack_name} - {status}")
            return False
        sleep(POLL_INTERVAL)


def print_stack_outputs(stack: dict) -> None:
    if not keyisset("Outputs", stack):
        return
    print(
        tabulate(
            [
                [output["OutputKey"], output["OutputValue"]]
                for output in stack["Outputs"]
            ],
            ["OUTPUT", "VALUE"],
            tablefmt="rst",
        )
    )


def deploy_module(
    session,
    config: CompilerConfig,
    template_file: FileArtifact,
    module: Module,
    allow_data_loss: bool = False,
    protect: bool = False,
    inputs: dict = None,
    alt_name: str = None,
) -> bool:
    """
    Creates or updates the stack of the module, and waits for the operation to complete.

    :param boto3.session.Session session:
    :param CompilerConfig config:
    :param FileArtifact template_file: the module template
    :param Module module:
    :param bool allow_data_loss: allow the replacement and deletion of the stateful resources
    :param bool protect: enable the termination protection of the stack
    :param dict inputs: values of the stack parameters
    :param str alt_name: alternative module name for the stack
    :return: whether the deployment succeeded
    :rtype: bool
    """
    client = session.client("cloudformation")
    stack_name = get_stack_name(config, module, alt_name)
    url = upload_template(session, config, module, template_file)
    template_args = {"TemplateURL": url} if url else {"TemplateBody": template_file.body}
    try:
        changing, last_event_id = create_or_update_stack(
            client,
            stack_name,
            template_args,
            define_stack_parameters(inputs),
            allow_data_loss=allow_data_loss,
            protect=protect,
        )
    except ClientError as error:
        LOG.error(f"{stack_name} - {error}")
        return False
    except DeploymentError as error:
        LOG.error(error)
        return False
    if not changing:
        return True
    return wait_for_stack(client, stack_name, last_event_id)


def list_modules(session, tier: str) -> list:
    """
    Lists the stacks of the modules deployed in the tier.

    :param boto3.session.Session session:
    :param str tier:
    :return: the stacks summaries
    :rtype: list
    """
    client = session.client("cloudformation")
    prefix = f"{tier}-"
    stacks = []
    paginator = client.get_paginator("list_stacks")
    for page in paginator.paginate():
        for stack in page["StackSummaries"]:
            if (
                stack["StackName"].startswith(prefix)
                and stack["StackStatus"] != "DELETE_COMPLETE"
            ):
                stacks.append(stack)
    if not stacks:
        LOG.info(f"No modules deployed in tier {tier}")
        return stacks
    print(
        tabulate(
            [
                [
                    stack["StackName"][len(prefix) :],
                    stack["StackStatus"],
                    stack.get("LastUpdatedTime", stack["CreationTime"]),
                ]
                for stack in sorted(stacks, key=lambda item: item["StackName"])
            ],
            ["MODULE", "STATUS", "DATE"],
            tablefmt="rst",
        )
    )
    return stacks
