# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Most commonly used functions and patterns shared across all modules.
"""

from __future__ import annotations

import re
from hashlib import md5

from .logging import LOG

NONALPHANUM = re.compile(r"([^a-zA-Z\d]+)")
CLOUDFORMATION_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9]*$")
NESTED_NAME_SEPARATOR = "::"


def to_logical_id(full_name: str) -> str:
    """
    Turns a nested parameter name, i.e. Parent::Child, into its CloudFormation logical ID

    :param str full_name:
    :rtype: str
    """
    return NONALPHANUM.sub("", full_name)


def to_env_name(full_name: str) -> str:
    """
    Environment variable suffix for a parameter, i.e. Parent::Child -> PARENT_CHILD

    :param str full_name:
    :rtype: str
    """
    return full_name.replace(NESTED_NAME_SEPARATOR, "_").upper()


def md5_hex(content) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return md5(content).hexdigest()
