# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Lambda functions of the module and their log groups.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.settings import CompilerConfig
    from modulex.generator.resources import ValueRenderer
    from modulex.model.functions import Function as ModuleFunction
    from modulex.model.module import Module

from troposphere import AWS_NO_VALUE, AWS_STACK_NAME, GetAtt, Ref, Sub
from troposphere.awslambda import (
    Code,
    DeadLetterConfig,
    Environment,
    Function,
    VPCConfig,
)
from troposphere.logs import LogGroup

from modulex.model.parameters import (
    CollectionParameter,
    InputParameter,
    SecretParameter,
)

from .iam import MODULE_ROLE_T

DEPLOYMENT_BUCKET_NAME_T = "DeploymentBucketName"
LOG_RETENTION_DAYS = 7


def secret_value(parameter: SecretParameter) -> str:
    """
    Ciphertext, followed by the encryption context as ``|key=value`` pairs
    """
    parts = [parameter.secret]
    for key, value in sorted(parameter.encryption_context.items()):
        parts.append(f"{key}={value}")
    return "|".join(parts)


def define_function_environment(
    function: ModuleFunction,
    module: Module,
    config: CompilerConfig,
    renderer: ValueRenderer,
) -> dict:
    """
    Environment variables of the function: the user defined ones, the module parameters in
    the scope of the function (STR_ for plain values, SEC_ for encrypted ones), and the module
    settings.

    :rtype: dict
    """
    variables = {
        key.upper(): renderer.render_string(value)
        for key, value in function.environment.items()
    }
    for parameter in module.iter_parameters():
        if isinstance(parameter, CollectionParameter) or not parameter.in_scope(
            function.name
        ):
            continue
        if isinstance(parameter, SecretParameter):
            variables[f"SEC_{parameter.env_name}"] = secret_value(parameter)
        elif isinstance(parameter, InputParameter) and parameter.is_secret:
            variables[f"SEC_{parameter.env_name}"] = Ref(parameter.logical_id)
        else:
            variables[f"STR_{parameter.env_name}"] = renderer.render_string(
                parameter.reference
            )
    variables.update(
        {
            "MODULE_NAME": module.name,
            "MODULE_ID": Ref(AWS_STACK_NAME),
            "MODULE_VERSION": module.version,
            "LAMBDA_NAME": function.name,
            "LAMBDA_RUNTIME": function.runtime,
        }
    )
    if config.dead_letter_queue_url:
        variables["DEADLETTERQUEUE"] = config.dead_letter_queue_url
    if module.secrets:
        variables["DEFAULTSECRETKEY"] = module.secrets[0]
    return variables


def define_function(
    function: ModuleFunction,
    module: Module,
    config: CompilerConfig,
    renderer: ValueRenderer,
) -> Function:
    """
    :param ModuleFunction function:
    :param Module module:
    :param CompilerConfig config:
    :param ValueRenderer renderer:
    :rtype: troposphere.awslambda.Function
    """
    vpc_config = Ref(AWS_NO_VALUE)
    if function.vpc:
        vpc_config = VPCConfig(
            SubnetIds=renderer.render(function.vpc["SubnetIds"]),
            SecurityGroupIds=renderer.render(function.vpc["SecurityGroupIds"]),
        )
    return Function(
        function.name,
        Description=function.description
        if function.description
        else Ref(AWS_NO_VALUE),
        Code=Code(
            S3Bucket=Ref(DEPLOYMENT_BUCKET_NAME_T),
            S3Key=f"Modules/{module.name}/Assets/{function.package_path}",
        ),
        Handler=function.handler,
        Runtime=function.runtime,
        MemorySize=function.memory,
        Timeout=function.timeout,
        Role=GetAtt(MODULE_ROLE_T, "Arn"),
        ReservedConcurrentExecutions=function.reserved_concurrency
        if function.reserved_concurrency is not None
        else Ref(AWS_NO_VALUE),
        DeadLetterConfig=DeadLetterConfig(TargetArn=config.dead_letter_queue_arn)
        if config.dead_letter_queue_arn
        else Ref(AWS_NO_VALUE),
        Environment=Environment(
            Variables=define_function_environment(function, module, config, renderer)
        ),
        VpcConfig=vpc_config,
    )


def define_function_log_group(function: ModuleFunction) -> LogGroup:
    return LogGroup(
        f"{function.name}LogGroup",
        LogGroupName=Sub(f"/aws/lambda/${{{function.name}}}"),
        RetentionInDays=LOG_RETENTION_DAYS,
    )
