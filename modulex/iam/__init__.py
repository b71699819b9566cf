# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
IAM helpers: trust policies, statements, and the IAM actions short-hands per resource type.
"""

from __future__ import annotations

import json
from functools import lru_cache

from importlib_resources import files as pkg_files


def service_role_trust_policy(service_name: str, sid: str = None) -> dict:
    """
    Simple function to format the trust relationship for a Role and an AWS Service

    :param str service_name: name of the service, i.e. lambda
    :param str sid: statement ID
    :return: policy document
    :rtype: dict
    """
    statement = {
        "Effect": "Allow",
        "Principal": {"Service": [f"{service_name}.amazonaws.com"]},
        "Action": ["sts:AssumeRole"],
    }
    if sid:
        statement["Sid"] = sid
    policy_doc = {"Version": "2012-10-17", "Statement": [statement]}
    return policy_doc


def define_statement(sid: str, actions: list, resources, effect: str = "Allow") -> dict:
    """
    :param str sid: statement ID, alphanumeric
    :param list[str] actions:
    :param resources: resource ARN or list of ARNs/expressions
    :param str effect:
    :rtype: dict
    """
    return {
        "Sid": sid,
        "Effect": effect,
        "Action": actions,
        "Resource": resources,
    }


@lru_cache()
def get_iam_mappings() -> dict:
    """
    Loads the IAM actions short-hands, per resource type.

    :return: resource type -> short-hand -> list of actions
    :rtype: dict
    """
    source = pkg_files("modulex").joinpath("iam/iam_mappings.json")
    return json.loads(source.read_text())


def get_shorthand_actions(type_name: str, shorthand: str) -> list | None:
    """
    :param str type_name: AWS resource type
    :param str shorthand: i.e. ReadOnly
    :return: the IAM actions, or None if the short-hand is not defined for the type
    """
    type_mappings = get_iam_mappings().get(type_name, {})
    return type_mappings.get(shorthand)
