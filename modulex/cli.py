# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Console script for modulex.
"""

from __future__ import annotations

import argparse
import sys
from os import path

import yaml
from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from modulex.common.aws import deploy_module, list_modules
from modulex.common.files import FileArtifact, upload_artifact
from modulex.common.logging import LOG, VALID_LEVELS, set_log_level
from modulex.common.settings import ModuleXSettings
from modulex.compiler import ModuleCompiler
from modulex.exceptions import DeploymentTierSetupError

NEW_MODULE_TEMPLATE = """Name: {name}
Version: 1.0
Description: {name} module

Parameters:

  - Name: Topic
    Description: Topic the module functions publish to
    Scope: all
    Resource:
      Type: AWS::SNS::Topic
      Allow: sns:Publish

Functions:

  - Name: Function
    Description: Module function
    Memory: 128
    Timeout: 30
    Runtime: python3.12
    Handler: index.handler
"""


class ArgparseHelper(argparse._HelpAction):
    """
    Used to help print top level '--help' arguments from argparse
    when used with subparsers
    """

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help()
        print()
        subparsers_actions = [
            action
            for action in parser._actions
            if isinstance(action, argparse._SubParsersAction)
        ]
        for subparsers_action in subparsers_actions:
            for choice, subparser in list(subparsers_action.choices.items()):
                if choice in [cmd["name"] for cmd in ModuleXSettings.all_commands]:
                    print(f"Command '{choice}'")
                    print(subparser.format_usage())
        parser.exit()


def main_parser():
    """
    Console script for modulex.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "-h",
        "--help",
        action=ArgparseHelper,
        help="show this help message and exit",
    )
    cmd_parsers = parser.add_subparsers(
        dest=ModuleXSettings.command_arg, help="Command to execute."
    )
    common_parser = argparse.ArgumentParser(add_help=False)
    tier_parser = argparse.ArgumentParser(add_help=False)
    deploy_parser = argparse.ArgumentParser(add_help=False)
    common_parser.add_argument(
        "--loglevel", type=str, help="Log level. Defaults to INFO", required=False
    )
    tier_parser.add_argument(
        "-T",
        "--tier",
        dest=ModuleXSettings.tier_arg,
        required=False,
        help="Deployment tier. Defaults to the LAMBDASHARPTIER environment variable",
    )
    tier_parser.add_argument(
        "--profile",
        dest=ModuleXSettings.profile_arg,
        required=False,
        help="AWS profile to use",
    )
    tier_parser.add_argument(
        "--aws-region",
        dest=ModuleXSettings.region_arg,
        required=False,
        help="AWS region. Defaults to the region of the profile/environment",
    )
    tier_parser.add_argument(
        "--aws-account-id",
        dest=ModuleXSettings.account_id_arg,
        required=False,
        help="AWS account ID. Defaults to the account of the credentials",
    )
    tier_parser.add_argument(
        "--gitsha",
        dest=ModuleXSettings.gitsha_arg,
        required=False,
        help="Git SHA of the module sources",
    )
    tier_parser.add_argument(
        "--deployment-bucket-name",
        dest=ModuleXSettings.bucket_arg,
        required=False,
        help="Bucket for the module artifacts. Defaults to the tier deployment bucket",
    )
    tier_parser.add_argument(
        "--deployment-deadletter-queue-url",
        dest=ModuleXSettings.dlq_arg,
        required=False,
        help="Dead-letter queue of the functions. Defaults to the tier dead-letter queue",
    )
    deploy_parser.add_argument(
        "--input",
        dest=ModuleXSettings.input_file_arg,
        default=ModuleXSettings.default_module_file,
        help="Path to the module file",
    )
    deploy_parser.add_argument(
        "-c",
        "--configuration",
        dest=ModuleXSettings.configuration_arg,
        default="Release",
        help="Build configuration of the functions projects",
    )
    deploy_parser.add_argument(
        "--skip-compile",
        dest=ModuleXSettings.skip_compile_arg,
        action="store_true",
        help="Reuse the functions and files packages built previously",
    )
    deploy_parser.add_argument(
        "--dryrun",
        dest=ModuleXSettings.dryrun_arg,
        nargs="?",
        const="everything",
        choices=ModuleXSettings.dryrun_levels,
        help="Compile without deploying. 'cloudformation' only generates the template",
    )
    deploy_parser.add_argument(
        "--output",
        dest=ModuleXSettings.output_dir_arg,
        default=ModuleXSettings.default_output_dir,
        help="Output directory of the artifacts",
    )
    deploy_parser.add_argument(
        "--cf-output",
        dest=ModuleXSettings.cf_output_arg,
        required=False,
        help="Path of the generated template",
    )
    deploy_parser.add_argument(
        "--format",
        dest=ModuleXSettings.format_arg,
        choices=ModuleXSettings.allowed_formats,
        default=ModuleXSettings.default_format,
        help="Format of the generated template",
    )
    deploy_parser.add_argument(
        "--name",
        dest=ModuleXSettings.name_arg,
        required=False,
        help="Alternative module name for the stack",
    )
    deploy_parser.add_argument(
        "--inputs",
        dest=ModuleXSettings.inputs_file_arg,
        required=False,
        help="YAML/JSON file with the values of the module inputs",
    )
    deploy_parser.add_argument(
        "--parameter",
        dest=ModuleXSettings.input_values_arg,
        action="append",
        default=[],
        help="Value of a module input, Key=Value",
    )
    deploy_parser.add_argument(
        "--allow-data-loss",
        dest=ModuleXSettings.allow_data_loss_arg,
        action="store_true",
        help="Allow the replacement and deletion of stateful resources",
    )
    deploy_parser.add_argument(
        "--protect",
        dest=ModuleXSettings.protect_arg,
        action="store_true",
        help="Enable the termination protection of the stack",
    )
    cmd_parsers.add_parser(
        name=ModuleXSettings.deploy_arg,
        help=ModuleXSettings.active_commands[0]["help"],
        parents=[common_parser, tier_parser, deploy_parser],
    )
    cmd_parsers.add_parser(
        name=ModuleXSettings.list_arg,
        help=ModuleXSettings.active_commands[1]["help"],
        parents=[common_parser, tier_parser],
    )
    cmd_parsers.add_parser(
        name=ModuleXSettings.info_arg,
        help=ModuleXSettings.active_commands[2]["help"],
        parents=[common_parser, tier_parser],
    )
    new_parser = cmd_parsers.add_parser(
        name=ModuleXSettings.new_arg,
        help=ModuleXSettings.neutral_commands[0]["help"],
        parents=[common_parser],
    )
    new_parser.add_argument(ModuleXSettings.name_arg, metavar="name")
    new_parser.add_argument(
        "--force",
        dest=ModuleXSettings.force_arg,
        action="store_true",
        help="Overwrite the existing module file",
    )
    new_parser.add_argument(
        "--input",
        dest=ModuleXSettings.input_file_arg,
        default=ModuleXSettings.default_module_file,
        help="Path to the module file to create",
    )
    return parser


def new_module(settings: ModuleXSettings) -> int:
    if path.exists(settings.input_file) and not settings.force:
        LOG.error(f"{settings.input_file} already exists. Use --force to overwrite it")
        return 1
    with open(settings.input_file, "w") as module_fd:
        module_fd.write(NEW_MODULE_TEMPLATE.format(name=settings.name))
    LOG.info(f"Module {settings.name} created in {settings.input_file}")
    return 0


def mask_account_id(account_id: str) -> str:
    if not account_id:
        return ""
    return "*" * (len(account_id) - 4) + account_id[-4:]


def show_info(settings: ModuleXSettings) -> int:
    settings.set_git_sha()
    settings.set_account_id()
    settings.set_deployment_tier_from_ssm()
    print(f"Deployment tier: {settings.tier}")
    print(f"Git SHA: {settings.git_sha if settings.git_sha else ''}")
    print(f"AWS Region: {settings.aws_region}")
    print(f"AWS Account Id: {mask_account_id(settings.aws_account_id)}")
    print(f"Deployment S3 Bucket: {settings.deployment_bucket_name}")
    return 0


def load_inputs(settings: ModuleXSettings) -> dict:
    """
    Values of the stack parameters, from the inputs file and the --parameter arguments
    """
    inputs = {}
    if settings.inputs_file:
        with open(settings.inputs_file) as inputs_fd:
            content = yaml.safe_load(inputs_fd.read())
        if not isinstance(content, dict):
            raise ValueError(f"{settings.inputs_file} must contain a mapping")
        inputs.update(content)
    for value in settings.input_values:
        if "=" not in value:
            raise ValueError(f"Invalid parameter {value}. Expected Key=Value")
        key, _, parameter_value = value.partition("=")
        inputs[key] = parameter_value
    return inputs


def setup_deployment_tier(settings: ModuleXSettings) -> None:
    settings.set_git_sha()
    try:
        settings.set_account_id()
        settings.set_deployment_tier_from_ssm()
    except (ClientError, DeploymentTierSetupError):
        if not settings.dryrun:
            raise
        LOG.warning("Dry run - deployment tier settings not available")


def deploy(settings: ModuleXSettings) -> int:
    setup_deployment_tier(settings)
    config = settings.to_config()
    compiler = ModuleCompiler(
        config,
        session=settings.session,
        package=settings.dryrun != "cloudformation",
        skip_compile=settings.skip_compile,
    )
    result = compiler.compile_file(settings.input_file)
    for message in result.context.messages():
        LOG.error(message)
    if not result.success:
        LOG.error(f"Compilation of {settings.input_file} failed")
        return 1
    module = result.module
    template_file = FileArtifact(
        path.basename(settings.cf_output) if settings.cf_output else "cloudformation",
        file_format=settings.format,
        template=result.template,
    )
    template_file.write(
        path.dirname(path.abspath(settings.cf_output))
        if settings.cf_output
        else settings.output_dir
    )
    if settings.dryrun:
        LOG.info(f"Dry run ({settings.dryrun}) - {module.name} not deployed")
        return 0
    for artifact in module.assets:
        if not path.exists(path.join(settings.output_dir, artifact)):
            LOG.warning(f"{artifact} was not packaged. Expecting it in the deployment bucket")
            continue
        upload_artifact(
            settings.session,
            path.join(settings.output_dir, artifact),
            config.deployment_bucket_name,
            f"Modules/{module.name}/Assets/{artifact}",
        )
    if deploy_module(
        settings.session,
        config,
        template_file,
        module,
        allow_data_loss=settings.allow_data_loss,
        protect=settings.protect,
        inputs=load_inputs(settings),
        alt_name=settings.name,
    ):
        return 0
    return 1


def main():
    """
    Main entry point for CLI
    :return: status code
    """
    parser = main_parser()
    if len(sys.argv) == 1:
        parser.print_help()
        return 0
    args = parser.parse_args()
    if args.loglevel and not set_log_level(LOG, args.loglevel):
        print(
            f"Log level value {args.loglevel} is invalid. Must me one of {VALID_LEVELS}"
        )
    LOG.debug(args)
    try:
        settings = ModuleXSettings(**vars(args))
        if settings.command == ModuleXSettings.new_arg:
            return new_module(settings)
        if settings.command == ModuleXSettings.info_arg:
            return show_info(settings)
        if settings.command == ModuleXSettings.list_arg:
            if not settings.tier:
                LOG.error("A deployment tier must be set with --tier")
                return 1
            list_modules(settings.session, settings.tier)
            return 0
        return deploy(settings)
    except (
        ClientError,
        NoCredentialsError,
        ProfileNotFound,
        DeploymentTierSetupError,
        ValueError,
        OSError,
    ) as error:
        LOG.error(error)
        return 1


if __name__ == "__main__":
    sys.exit(main())  # pragma: no cover
