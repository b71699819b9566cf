# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Module for the ModuleXSettings class and the immutable compiler configuration
"""

from __future__ import annotations

import subprocess
from copy import deepcopy
from datetime import datetime as dt
from os import environ, path
from typing import NamedTuple

import boto3
from botocore.exceptions import ClientError
from compose_x_common.aws import get_account_id
from compose_x_common.compose_x_common import keyisset, set_else_none

from modulex.common.logging import LOG
from modulex.exceptions import DeploymentTierSetupError

TIER_ENV_VAR = "LAMBDASHARPTIER"
RESERVED_TIER_NAMES = ["Default"]


class CompilerConfig(NamedTuple):
    """
    Immutable configuration handed to every compilation stage.
    """

    tier: str = None
    git_sha: str = None
    aws_region: str = None
    aws_account_id: str = None
    deployment_bucket_name: str = None
    dead_letter_queue_url: str = None
    build_configuration: str = "Release"
    module_source: str = None
    output_dir: str = None

    @property
    def dead_letter_queue_arn(self) -> str | None:
        """
        Derives the queue ARN from its URL, i.e.
        https://sqs.eu-west-1.amazonaws.com/012345678912/queue -> arn:aws:sqs:eu-west-1:012345678912:queue
        """
        if not self.dead_letter_queue_url:
            return None
        queue_name = self.dead_letter_queue_url.rstrip("/").split("/")[-1]
        return f"arn:aws:sqs:{self.aws_region}:{self.aws_account_id}:{queue_name}"

    @property
    def tier_lowercase(self) -> str | None:
        return self.tier.lower() if self.tier else None


def get_git_sha(source_dir: str = None) -> str | None:
    """
    Function to get the current commit SHA of the module directory, if any.

    :param str source_dir: directory of the module
    :rtype: str
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=source_dir,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip() or None
    except (OSError, subprocess.CalledProcessError):
        LOG.debug(f"No git SHA available for {source_dir}")
        return None


class ModuleXSettings:
    """
    Class to handle the settings to use for modulex, built from the CLI arguments.

    :ivar boto3.session.Session session: session used for all AWS API calls
    :ivar str tier: deployment tier
    """

    command_arg = "command"
    input_file_arg = "ModuleFile"
    name_arg = "Name"
    tier_arg = "Tier"
    profile_arg = "ProfileName"
    region_arg = "RegionName"
    account_id_arg = "AwsAccountId"
    gitsha_arg = "GitSha"
    bucket_arg = "DeploymentBucketName"
    dlq_arg = "DeadLetterQueueUrl"
    configuration_arg = "BuildConfiguration"
    skip_compile_arg = "SkipCompile"
    dryrun_arg = "DryRun"
    output_dir_arg = "OutputDirectory"
    cf_output_arg = "CloudFormationOutput"
    format_arg = "TemplateFormat"
    inputs_file_arg = "InputsFile"
    input_values_arg = "InputValues"
    allow_data_loss_arg = "AllowDataLoss"
    protect_arg = "Protect"
    force_arg = "Force"

    new_arg = "new"
    deploy_arg = "deploy"
    info_arg = "info"
    list_arg = "list"

    default_format = "json"
    allowed_formats = ["json", "yaml"]
    default_module_file = "Module.yml"
    default_output_dir = f"/tmp/modulex/{dt.utcnow().strftime('%s')}"
    dryrun_levels = ["everything", "cloudformation"]

    active_commands = [
        {
            "name": deploy_arg,
            "help": "Compiles the module, uploads the artifacts and creates/updates the stack",
        },
        {"name": list_arg, "help": "Lists the modules deployed in the tier"},
        {"name": info_arg, "help": "Shows the deployment tier settings"},
    ]
    neutral_commands = [
        {"name": new_arg, "help": "Creates a new module definition file"},
    ]
    all_commands = active_commands + neutral_commands

    def __init__(self, session=None, **kwargs):
        self.__args = deepcopy(kwargs)
        self.command = set_else_none(self.command_arg, kwargs)
        self.session = session
        if self.session is None:
            self.session = (
                boto3.session.Session(profile_name=kwargs[self.profile_arg])
                if keyisset(self.profile_arg, kwargs)
                else boto3.session.Session()
            )
        self.input_file = set_else_none(
            self.input_file_arg, kwargs, alt_value=self.default_module_file
        )
        self.tier = set_else_none(
            self.tier_arg, kwargs, alt_value=environ.get(TIER_ENV_VAR)
        )
        if self.tier in RESERVED_TIER_NAMES:
            raise ValueError(
                f"Tier {self.tier} is reserved. Cannot use any of", RESERVED_TIER_NAMES
            )
        self.aws_region = set_else_none(
            self.region_arg, kwargs, alt_value=self.session.region_name
        )
        self.aws_account_id = set_else_none(self.account_id_arg, kwargs)
        self.git_sha = set_else_none(self.gitsha_arg, kwargs)
        self.deployment_bucket_name = set_else_none(self.bucket_arg, kwargs)
        self.dead_letter_queue_url = set_else_none(self.dlq_arg, kwargs)
        self.build_configuration = set_else_none(
            self.configuration_arg, kwargs, alt_value="Release"
        )
        self.skip_compile = keyisset(self.skip_compile_arg, kwargs)
        self.dryrun = set_else_none(self.dryrun_arg, kwargs)
        self.output_dir = set_else_none(
            self.output_dir_arg, kwargs, alt_value=self.default_output_dir
        )
        self.cf_output = set_else_none(self.cf_output_arg, kwargs)
        self.format = set_else_none(
            self.format_arg, kwargs, alt_value=self.default_format
        )
        self.name = set_else_none(self.name_arg, kwargs)
        self.inputs_file = set_else_none(self.inputs_file_arg, kwargs)
        self.input_values = set_else_none(self.input_values_arg, kwargs, alt_value=[])
        self.allow_data_loss = keyisset(self.allow_data_loss_arg, kwargs)
        self.protect = keyisset(self.protect_arg, kwargs)
        self.force = keyisset(self.force_arg, kwargs)

    def __repr__(self):
        return f"ModuleXSettings({self.command}, tier={self.tier}, region={self.aws_region})"

    @property
    def module_dir(self) -> str:
        return path.dirname(path.abspath(self.input_file))

    def set_account_id(self) -> None:
        """
        Sets the account ID from STS when it was not given as argument
        """
        if self.aws_account_id:
            return
        self.aws_account_id = get_account_id(self.session)

    def set_git_sha(self) -> None:
        if self.git_sha:
            return
        self.git_sha = get_git_sha(self.module_dir)

    def set_deployment_tier_from_ssm(self) -> None:
        """
        Completes the deployment bucket and dead-letter queue from the tier SSM parameters,
        ``/{tier}/LambdaSharp/DeploymentBucket`` and ``/{tier}/LambdaSharp/DeadLetterQueue``
        """
        if self.deployment_bucket_name and self.dead_letter_queue_url:
            return
        if not self.tier:
            raise DeploymentTierSetupError(
                "A deployment tier must be set with --tier or " + TIER_ENV_VAR
            )
        client = self.session.client("ssm")
        names = {
            f"/{self.tier}/LambdaSharp/DeploymentBucket": "deployment_bucket_name",
            f"/{self.tier}/LambdaSharp/DeadLetterQueue": "dead_letter_queue_url",
        }
        try:
            parameters_r = client.get_parameters(Names=list(names.keys()))
        except ClientError as error:
            LOG.error(error)
            raise
        for parameter in parameters_r["Parameters"]:
            attribute = names[parameter["Name"]]
            if not getattr(self, attribute):
                setattr(self, attribute, parameter["Value"])

    def to_config(self) -> CompilerConfig:
        """
        :return: the immutable configuration for the compilation stages
        :rtype: CompilerConfig
        """
        return CompilerConfig(
            tier=self.tier,
            git_sha=self.git_sha,
            aws_region=self.aws_region,
            aws_account_id=self.aws_account_id,
            deployment_bucket_name=self.deployment_bucket_name,
            dead_letter_queue_url=self.dead_letter_queue_url,
            build_configuration=self.build_configuration,
            module_source=self.input_file,
            output_dir=self.output_dir,
        )
