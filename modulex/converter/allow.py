# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Expansion of the ``Allow`` attribute of resources into IAM actions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext

import re

from modulex.exceptions import ModuleSchemaError
from modulex.iam import get_shorthand_actions

ALLOW_SEPARATORS = re.compile(r"[,\s]+")


def split_allow(allow) -> list:
    """
    :param allow: comma/space separated string, or list of strings
    :return: the individual entries
    :rtype: list[str]
    :raises ModuleSchemaError: for any other value type
    """
    if isinstance(allow, str):
        return [entry for entry in ALLOW_SEPARATORS.split(allow) if entry]
    if isinstance(allow, list) and all(isinstance(entry, str) for entry in allow):
        entries = []
        for entry in allow:
            entries += [item for item in ALLOW_SEPARATORS.split(entry) if item]
        return entries
    raise ModuleSchemaError("invalid allow value")


def expand_allow(allow, type_name: str, context: ProcessingContext) -> list:
    """
    Expands the short-hands for the resource type, keeps the IAM actions (containing ``:``)
    as they are, and drops "None" entries.

    :param allow: the Allow attribute
    :param str type_name: resource type
    :param ProcessingContext context:
    :return: the de-duplicated actions, sorted
    :rtype: list[str]
    """
    if allow is None:
        return []
    actions = set()
    for entry in split_allow(allow):
        if entry == "None":
            continue
        if ":" in entry:
            actions.add(entry)
            continue
        mapped = get_shorthand_actions(type_name, entry)
        if mapped is None:
            context.add_reference_error(
                f"could not find IAM mapping for short-hand '{entry}' on AWS type '{type_name}'"
            )
            continue
        actions.update(mapped)
    return sorted(actions)
