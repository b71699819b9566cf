# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Module to test the modulex settings and the compiler configuration.
"""

import boto3
from botocore.exceptions import ClientError
from botocore.stub import Stubber
from pytest import fixture, raises

from modulex.common.settings import TIER_ENV_VAR, CompilerConfig, ModuleXSettings
from modulex.exceptions import DeploymentTierSetupError


@fixture()
def session():
    return boto3.session.Session(
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@fixture()
def ssm_stubber(session, monkeypatch):
    client = session.client("ssm")
    monkeypatch.setattr(session, "client", lambda *args, **kwargs: client)
    return Stubber(client)


def test_compiler_config():
    config = CompilerConfig(
        tier="Test",
        aws_region="eu-west-1",
        aws_account_id="012345678912",
        dead_letter_queue_url="https://sqs.eu-west-1.amazonaws.com/012345678912/queue/",
    )
    assert config.dead_letter_queue_arn == "arn:aws:sqs:eu-west-1:012345678912:queue"
    assert config.tier_lowercase == "test"
    assert CompilerConfig().dead_letter_queue_arn is None
    assert CompilerConfig().tier_lowercase is None
    assert config._replace(tier="prod").tier == "prod"
    assert config.build_configuration == "Release"


def test_settings_from_arguments(session):
    settings = ModuleXSettings(
        session=session,
        **{
            ModuleXSettings.command_arg: ModuleXSettings.deploy_arg,
            ModuleXSettings.tier_arg: "test",
            ModuleXSettings.account_id_arg: "123456789012",
            ModuleXSettings.input_file_arg: "use-cases/module.yml",
            ModuleXSettings.input_values_arg: ["Stage=dev"],
            ModuleXSettings.protect_arg: True,
        },
    )
    assert settings.command == "deploy"
    assert settings.aws_region == "us-east-1"
    assert settings.format == "json"
    assert settings.protect
    assert not settings.allow_data_loss
    assert settings.input_values == ["Stage=dev"]
    settings.set_account_id()
    assert settings.aws_account_id == "123456789012"
    config = settings.to_config()
    assert config.tier == "test"
    assert config.module_source == "use-cases/module.yml"
    assert config.build_configuration == "Release"


def test_tier_from_environment(session, monkeypatch):
    monkeypatch.setenv(TIER_ENV_VAR, "staging")
    assert ModuleXSettings(session=session).tier == "staging"
    assert ModuleXSettings(session=session, Tier="prod").tier == "prod"


def test_reserved_tier(session):
    with raises(ValueError):
        ModuleXSettings(session=session, Tier="Default")


def test_deployment_tier_from_ssm(session, ssm_stubber):
    ssm_stubber.add_response(
        "get_parameters",
        {
            "Parameters": [
                {
                    "Name": "/test/LambdaSharp/DeploymentBucket",
                    "Type": "String",
                    "Value": "test-deployment-bucket",
                },
                {
                    "Name": "/test/LambdaSharp/DeadLetterQueue",
                    "Type": "String",
                    "Value": "https://sqs.us-east-1.amazonaws.com/123456789012/test-dlq",
                },
            ],
        },
        {
            "Names": [
                "/test/LambdaSharp/DeploymentBucket",
                "/test/LambdaSharp/DeadLetterQueue",
            ]
        },
    )
    settings = ModuleXSettings(
        session=session, Tier="test", DeploymentBucketName="my-bucket"
    )
    with ssm_stubber:
        settings.set_deployment_tier_from_ssm()
        ssm_stubber.assert_no_pending_responses()
    assert settings.deployment_bucket_name == "my-bucket"
    assert (
        settings.dead_letter_queue_url
        == "https://sqs.us-east-1.amazonaws.com/123456789012/test-dlq"
    )


def test_deployment_tier_requires_tier(session, monkeypatch):
    monkeypatch.delenv(TIER_ENV_VAR, raising=False)
    settings = ModuleXSettings(session=session)
    with raises(DeploymentTierSetupError):
        settings.set_deployment_tier_from_ssm()


def test_deployment_tier_ssm_failure(session, ssm_stubber):
    ssm_stubber.add_client_error(
        "get_parameters", service_error_code="AccessDeniedException"
    )
    settings = ModuleXSettings(session=session, Tier="test")
    with ssm_stubber, raises(ClientError) as error:
        settings.set_deployment_tier_from_ssm()
    assert "AccessDeniedException" in str(error.value)
