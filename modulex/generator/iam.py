# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Execution role shared by the functions of the module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.settings import CompilerConfig
    from modulex.generator.resources import ValueRenderer
    from modulex.model.module import Module

from troposphere import AWS_NO_VALUE, AWS_STACK_NAME, If, Ref, Sub
from troposphere.iam import Policy, Role

from modulex.iam import define_statement, service_role_trust_policy
from modulex.model.parameters import (
    CloudFormationResourceParameter,
    InputParameter,
    ReferencedResourceParameter,
)
from modulex.resource_mapping import expand_resource_arns

MODULE_ROLE_T = "ModuleRole"
SECRETS_T = "Secrets"
SECRETS_IS_EMPTY_CON_T = "SecretsIsEmpty"
LOG_STREAM_ACTIONS = ["logs:CreateLogStream", "logs:PutLogEvents"]
DECRYPT_ACTIONS = ["kms:Decrypt", "kms:Encrypt", "kms:GenerateDataKey"]
VPC_ACTIONS = [
    "ec2:CreateNetworkInterface",
    "ec2:DeleteNetworkInterface",
    "ec2:DescribeNetworkInterfaces",
]


def get_resource_arns(parameter, renderer: ValueRenderer) -> list:
    """
    :return: the IAM resources matching the parameter, with sub-resources for buckets and tables
    :rtype: list
    """
    if isinstance(parameter, ReferencedResourceParameter):
        arns = [renderer.render(arn) for arn in parameter.arns]
    elif isinstance(parameter, CloudFormationResourceParameter) and parameter.generated_name:
        arns = [f"arn:aws:s3:::{parameter.generated_name}"]
    else:
        arns = [renderer.render(parameter.reference)]
    resources = []
    for arn in arns:
        resources += expand_resource_arns(parameter.resource.type_name, arn)
    return resources


def define_module_statements(
    module: Module, config: CompilerConfig, renderer: ValueRenderer
) -> list:
    """
    Baseline statements of the functions, plus one statement per resource with Allow.

    :param Module module:
    :param CompilerConfig config:
    :param ValueRenderer renderer:
    :rtype: list[dict]
    """
    statements = [
        define_statement("ModuleLogStreamAccess", LOG_STREAM_ACTIONS, ["arn:aws:logs:*:*:*"])
    ]
    if module.secrets:
        statements.append(
            define_statement("SecretsDecryption", DECRYPT_ACTIONS, list(module.secrets))
        )
    statements.append(
        If(
            SECRETS_IS_EMPTY_CON_T,
            Ref(AWS_NO_VALUE),
            define_statement(
                "SecretsParameterDecryption", DECRYPT_ACTIONS, Ref(SECRETS_T)
            ),
        )
    )
    if config.dead_letter_queue_arn:
        statements.append(
            define_statement(
                "ModuleDeadLetterQueueLogging",
                ["sqs:SendMessage"],
                [config.dead_letter_queue_arn],
            )
        )
    if any(function.vpc for function in module.functions):
        statements.append(
            define_statement("ModuleVpcNetworkInterfaces", VPC_ACTIONS, ["*"])
        )
    for parameter in module.iter_parameters():
        if parameter.resource is None or not parameter.resource.allow:
            continue
        if isinstance(parameter, InputParameter) and parameter.is_conditional_resource:
            resources = expand_resource_arns(
                parameter.resource.type_name, renderer.render(parameter.reference)
            )
        else:
            resources = get_resource_arns(parameter, renderer)
        statements.append(
            define_statement(parameter.logical_id, parameter.resource.allow, resources)
        )
    return statements


def define_module_role(
    module: Module, config: CompilerConfig, renderer: ValueRenderer
) -> Role:
    """
    :return: the execution role of the module functions
    :rtype: Role
    """
    return Role(
        MODULE_ROLE_T,
        AssumeRolePolicyDocument=service_role_trust_policy("lambda"),
        Policies=[
            Policy(
                PolicyName=Sub(f"${{{AWS_STACK_NAME}}}ModulePolicy"),
                PolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": define_module_statements(module, config, renderer),
                },
            )
        ],
    )
