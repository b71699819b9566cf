# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

import boto3
from pytest import fixture, raises

from modulex.cli import load_inputs, main_parser, mask_account_id, new_module
from modulex.common.settings import ModuleXSettings


@fixture()
def session():
    return boto3.session.Session(
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def test_deploy_arguments():
    args = main_parser().parse_args(
        [
            "deploy",
            "--tier",
            "test",
            "--input",
            "Module.yml",
            "--dryrun",
            "--parameter",
            "Stage=dev",
            "--parameter",
            "Count=2",
        ]
    )
    assert args.command == "deploy"
    assert getattr(args, ModuleXSettings.tier_arg) == "test"
    assert getattr(args, ModuleXSettings.dryrun_arg) == "everything"
    assert getattr(args, ModuleXSettings.input_values_arg) == ["Stage=dev", "Count=2"]
    assert getattr(args, ModuleXSettings.format_arg) == "json"
    with raises(SystemExit):
        main_parser().parse_args(["deploy", "--format", "xml"])


def test_new_module(tmp_path, session):
    module_file = str(tmp_path / "Module.yml")
    settings = ModuleXSettings(
        session=session, command="new", Name="Sample", ModuleFile=module_file
    )
    assert new_module(settings) == 0
    with open(module_file) as module_fd:
        assert module_fd.read().startswith("Name: Sample\n")
    assert new_module(settings) == 1
    settings.force = True
    assert new_module(settings) == 0


def test_mask_account_id():
    assert mask_account_id("123456789012") == "********9012"
    assert mask_account_id(None) == ""


def test_load_inputs(tmp_path, session):
    inputs_file = tmp_path / "inputs.yml"
    inputs_file.write_text("Stage: dev\nCount: 2\n")
    settings = ModuleXSettings(
        session=session,
        InputsFile=str(inputs_file),
        InputValues=["Stage=prod", "Url=https://example.com/?a=b"],
    )
    assert load_inputs(settings) == {
        "Stage": "prod",
        "Count": 2,
        "Url": "https://example.com/?a=b",
    }
    settings.input_values = ["Invalid"]
    with raises(ValueError):
        load_inputs(settings)
