# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Loading and schema validation of the module documents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext

import json
from collections import OrderedDict

import jsonschema
from cfn_flip import load_yaml
from importlib_resources import files as pkg_files

from modulex.common.logging import LOG


def to_plain(node):
    """
    Converts the ordered mappings of the CloudFormation YAML loader into plain dict / list.
    """
    if isinstance(node, (dict, OrderedDict)):
        return {key: to_plain(value) for key, value in node.items()}
    if isinstance(node, (list, tuple)):
        return [to_plain(item) for item in node]
    return node


def load_module_document(file_path: str) -> dict:
    """
    Loads a module file. CloudFormation short form functions (!Ref, !GetAtt, !Sub...) are
    rendered in their long form, i.e. ``{"Fn::GetAtt": ["Resource", "Arn"]}``

    :param str file_path:
    :return: the module document
    :rtype: dict
    """
    with open(file_path, encoding="utf-8") as module_fd:
        content = module_fd.read()
    return parse_module_document(content)


def parse_module_document(content: str) -> dict:
    return to_plain(load_yaml(content))


def get_module_schema() -> dict:
    source = pkg_files("modulex").joinpath("specs/module.spec.json")
    return json.loads(source.read_text())


def validate_module_document(document: dict, context: ProcessingContext) -> bool:
    """
    Validates the preprocessed document against the module JSON schema. Every violation is
    recorded as an error at its path in the document.

    :param dict document:
    :param ProcessingContext context:
    :return: whether the document is valid
    :rtype: bool
    """
    validator = jsonschema.Draft7Validator(get_module_schema())
    valid = True
    errors = sorted(
        validator.iter_errors(document), key=lambda e: [str(p) for p in e.path]
    )
    for error in errors:
        valid = False
        with context.at_location(*error.absolute_path):
            context.add_error(error.message)
    if valid:
        LOG.debug("Module document is valid")
    return valid
