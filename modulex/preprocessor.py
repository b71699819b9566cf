# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Preprocessing of the raw module document.

Resolves the tier choices (``:prod``, ``:Default`` keys) then substitutes the ``{{Name}}``
template variables, built-in ones and the ones declared in the ``Variables`` section.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig

import re

from modulex.common.fixed_point import solve_fixed_point
from modulex.common.logging import LOG

VARIABLE_PATTERN = re.compile(r"\{\{[^\{\}]*\}\}")
DEFAULT_CHOICE = ":Default"
VARIABLES_SECTION = "Variables"


class _NoValue:
    """Marker for a choice map that resolved to nothing"""

    def __repr__(self):
        return "NO_VALUE"


NO_VALUE = _NoValue()


def find_variables(text: str) -> list:
    """
    :param str text:
    :return: the names of the ``{{Name}}`` tokens in text, stripped
    :rtype: list[str]
    """
    return [token[2:-2].strip() for token in VARIABLE_PATTERN.findall(text)]


def substitute_variables(text: str, variables: dict) -> tuple:
    """
    Replaces every ``{{Name}}`` token for which a variable is known.

    :param str text:
    :param dict variables:
    :return: the substituted text and the list of names that could not be found
    :rtype: tuple[str, list]
    """
    missing = []

    def replace(match):
        name = match.group(0)[2:-2].strip()
        if name in variables:
            return str(variables[name])
        missing.append(name)
        return match.group(0)

    return VARIABLE_PATTERN.sub(replace, text), missing


def is_scalar(value) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


class Preprocessor:
    """
    Resolves choices and template variables in the module document.

    :ivar ProcessingContext context:
    :ivar CompilerConfig config:
    :ivar dict variables: resolved variables
    :ivar set unresolved: declared variables left unresolved, already reported
    """

    def __init__(self, context: ProcessingContext, config: CompilerConfig):
        self.context = context
        self.config = config
        self.variables = {}
        self.unresolved = set()

    def preprocess(self, document) -> dict:
        """
        :param dict document: the raw module document
        :return: the document with choices resolved and variables substituted
        :rtype: dict
        """
        if not isinstance(document, dict):
            self.context.add_error("module document must be a map")
            return {}
        resolved = self.resolve_choices(document)
        if resolved is NO_VALUE or not isinstance(resolved, dict):
            return {}
        variables = self.define_variables(resolved)
        self.variables = self.resolve_variables(variables)
        self.unresolved = set(variables) - set(self.variables)
        LOG.debug(f"Preprocessor - {len(self.variables)} variables resolved")
        return self.substitute(resolved)

    def resolve_choices(self, node):
        """
        Depth-first resolution of the ``:<tier>`` / ``:Default`` keys.

        :param node: any document node
        :return: the resolved node, or NO_VALUE when a choice map did not match
        """
        if isinstance(node, list):
            items = []
            for index, item in enumerate(node):
                with self.context.at_location(index):
                    value = self.resolve_choices(item)
                    if value is not NO_VALUE:
                        items.append(value)
            return items
        if not isinstance(node, dict):
            return node
        exact_key = f":{self.config.tier}" if self.config.tier else None
        has_choices = False
        chosen_key = None
        others = {}
        for key, value in node.items():
            if isinstance(key, str) and key.startswith(":"):
                has_choices = True
                if key == exact_key:
                    chosen_key = key
                elif key == DEFAULT_CHOICE and chosen_key is None:
                    chosen_key = key
                continue
            with self.context.at_location(key):
                resolved = self.resolve_choices(value)
            if resolved is not NO_VALUE:
                others[key] = resolved
        if not has_choices:
            return others
        if chosen_key is None:
            return others if others else NO_VALUE
        with self.context.at_location(chosen_key):
            chosen = self.resolve_choices(node[chosen_key])
            if not others:
                return chosen
            if chosen is NO_VALUE:
                return others
            if not isinstance(chosen, dict):
                self.context.add_error("choice value is not a map")
                return others
        others.update(chosen)
        return others

    def define_variables(self, document: dict) -> dict:
        """
        Seeds the built-in variables and extracts the ``Variables`` section out of the document.

        :param dict document:
        :return: all the variables, by name
        :rtype: dict
        """
        variables = {}
        with self.context.at_location("Name"):
            if not isinstance(document.get("Name"), str):
                self.context.add_error("`Name` attribute expected to be a string")
            else:
                variables["Module"] = document["Name"]
        if is_scalar(document.get("Version")) and document.get("Version") is not None:
            variables["Version"] = str(document["Version"])
        for name, value in (
            ("Tier", self.config.tier),
            ("GitSha", self.config.git_sha),
            ("AwsRegion", self.config.aws_region),
            ("AwsAccountId", self.config.aws_account_id),
        ):
            if value is not None:
                variables[name] = value
        if VARIABLES_SECTION not in document:
            return variables
        section = document.pop(VARIABLES_SECTION)
        with self.context.at_location(VARIABLES_SECTION):
            if section is None:
                return variables
            if not isinstance(section, dict):
                self.context.add_error("'Variables' section expected be a map")
                return variables
            for name, value in section.items():
                with self.context.at_location(name):
                    if value is None or not is_scalar(value):
                        self.context.add_error("must be a string value")
                        continue
                    variables[str(name).strip()] = (
                        value if isinstance(value, str) else str(value)
                    )
        return variables

    def resolve_variables(self, variables: dict) -> dict:
        """
        Resolves variables referring to other variables.

        :param dict variables:
        :return: the resolved variables. Unresolvable ones are reported and left out.
        :rtype: dict
        """
        free = {}
        bound = {}
        for name, value in variables.items():
            if isinstance(value, str) and VARIABLE_PATTERN.search(value):
                bound[name] = value
            else:
                free[name] = value

        def rewrite(_name, value, resolved):
            return substitute_variables(value, resolved)

        result = solve_fixed_point(free, bound, rewrite)
        for cycle in result.cycles():
            with self.context.at_location(VARIABLES_SECTION, cycle[0]):
                names = ", ".join(f"'{name}'" for name in cycle)
                self.context.add_reference_error(f"circular dependency on {names}")
        for name, missing, is_bound in result.dangling():
            with self.context.at_location(VARIABLES_SECTION, name):
                if is_bound:
                    self.context.add_reference_error(
                        f"circular dependency on '{missing}'"
                    )
                else:
                    self.context.add_reference_error(
                        f"unknown variable reference '{missing}'"
                    )
        return result.resolved

    def substitute(self, node):
        """
        Substitutes the resolved variables in every string scalar of the document.
        Tokens that cannot be resolved are reported.
        """
        if isinstance(node, dict):
            substituted = {}
            for key, value in node.items():
                with self.context.at_location(key):
                    substituted[key] = self.substitute(value)
            return substituted
        if isinstance(node, list):
            items = []
            for index, item in enumerate(node):
                with self.context.at_location(index):
                    items.append(self.substitute(item))
            return items
        if not isinstance(node, str):
            return node
        text, missing = substitute_variables(node, self.variables)
        for name in missing:
            if name not in self.unresolved:
                self.context.add_reference_error(f"unknown variable reference '{name}'")
        return text
