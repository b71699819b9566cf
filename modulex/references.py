# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Resolution of the !Ref, !GetAtt and !Sub expressions of the module.

Parameters are resolved first, with the same free / bound promotion loop as the template
variables. The resource properties, function environments and VPC settings, and the outputs
are then rewritten against the resolved parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.model.module import Module

import re

from troposphere import AWS_NO_VALUE, AWSHelperFn, GetAtt, If, Ref

from modulex.common.fixed_point import solve_fixed_point
from modulex.common.logging import LOG
from modulex.model.functions import ParameterSource
from modulex.model.outputs import ExportOutput
from modulex.model.parameters import (
    CloudFormationResourceParameter,
    InputParameter,
    PackageParameter,
    ReferencedResourceParameter,
    ValueParameter,
)

SUBVARIABLE_PATTERN = re.compile(r"\$\{(?!\!)([^\}]+)\}")
RESERVED_REFERENCES = ("ModuleRole", "ModuleRestApi", "ModuleRestApiStage")
PSEUDO_PARAMETER_PREFIX = "AWS::"
S3_BUCKET_TYPE = "AWS::S3::Bucket"


def contains_expression(value) -> bool:
    """
    :return: whether the value holds a map, i.e. an intrinsic function not resolved yet
    :rtype: bool
    """
    if isinstance(value, dict):
        return True
    if isinstance(value, list):
        return any(contains_expression(item) for item in value)
    return False


def contains_intrinsic(value) -> bool:
    if isinstance(value, dict):
        if any(key == "Ref" or key.startswith("Fn::") for key in value):
            return True
        return any(contains_intrinsic(item) for item in value.values())
    if isinstance(value, list):
        return any(contains_intrinsic(item) for item in value)
    return False


def is_managed(parameter) -> bool:
    if isinstance(parameter, CloudFormationResourceParameter):
        return True
    return isinstance(parameter, InputParameter) and parameter.is_conditional_resource


class ExpressionRewriter:
    """
    Rewrites the Ref, Fn::GetAtt and Fn::Sub maps found in a value, for one lookup table.

    :ivar lookup: callable(name, attribute) returning the expression for the name, None when unknown
    :ivar set missing: names the lookup could not resolve
    :ivar list problems: error messages of malformed or invalid expressions
    """

    def __init__(self, lookup):
        self.lookup = lookup
        self.missing = set()
        self.problems = []

    def substitute(self, value):
        """
        :param value: any nested structure of dict, list and scalars
        :return: the rewritten value. The input is not modified.
        """
        if isinstance(value, AWSHelperFn):
            return value
        if isinstance(value, list):
            return [self.substitute(item) for item in value]
        if not isinstance(value, dict):
            return value
        if len(value) == 1:
            key, argument = next(iter(value.items()))
            if key == "Ref":
                return self.substitute_ref(value, argument)
            if key == "Fn::GetAtt":
                return self.substitute_getatt(value, argument)
            if key == "Fn::Sub":
                return self.substitute_sub(value, argument)
        return {key: self.substitute(item) for key, item in value.items()}

    def resolve(self, name: str, attribute: str = None):
        found = self.lookup(name, attribute, self.problems)
        if found is None:
            self.missing.add(name)
        return found

    def substitute_ref(self, original: dict, name):
        if not isinstance(name, str):
            self.problems.append("invalid !Ref expression")
            return original
        if name.startswith(PSEUDO_PARAMETER_PREFIX):
            return Ref(name)
        found = self.resolve(name)
        return original if found is None else found

    def substitute_getatt(self, original: dict, argument):
        if isinstance(argument, str) and "." in argument:
            argument = argument.split(".", 1)
        if (
            not isinstance(argument, list)
            or len(argument) != 2
            or not all(isinstance(item, str) for item in argument)
        ):
            self.problems.append("invalid !GetAtt expression")
            return original
        found = self.resolve(argument[0], argument[1])
        return original if found is None else found

    def substitute_sub(self, original: dict, argument):
        """
        Inlines the ${Name} and ${Name.Attribute} placeholders that resolve to a string. Other
        resolved placeholders become new arguments of the !Sub, named P0, P1... skipping the names
        already given as arguments. Placeholders already given as arguments are kept.
        """
        if isinstance(argument, str):
            text, arguments = argument, {}
        elif (
            isinstance(argument, list)
            and len(argument) == 2
            and isinstance(argument[0], str)
            and isinstance(argument[1], dict)
        ):
            text = argument[0]
            arguments = {
                key: self.substitute(item) for key, item in argument[1].items()
            }
        else:
            self.problems.append("invalid !Sub expression")
            return original
        replaced = []

        def replace(match):
            placeholder = match.group(1).strip()
            if placeholder in arguments or placeholder.startswith(
                PSEUDO_PARAMETER_PREFIX
            ):
                return match.group(0)
            name, _, attribute = placeholder.partition(".")
            found = self.resolve(name, attribute if attribute else None)
            if found is None:
                return match.group(0)
            replaced.append(name)
            if isinstance(found, str):
                return found
            index = 0
            while f"P{index}" in arguments:
                index += 1
            arguments[f"P{index}"] = found
            return f"${{P{index}}}"

        text = SUBVARIABLE_PATTERN.sub(replace, text)
        if not replaced:
            if isinstance(argument, list):
                return {"Fn::Sub": [argument[0], arguments]}
            return original
        if not arguments and not SUBVARIABLE_PATTERN.search(text):
            return text.replace("${!", "${")
        if arguments:
            return {"Fn::Sub": [text, arguments]}
        return {"Fn::Sub": text}


class ReferenceResolver:
    """
    Resolves all the expressions of the module in place.

    :ivar ProcessingContext context:
    :ivar dict table: full name -> parameter
    :ivar set direct_names: names resolved to Ref / GetAtt without lookup, the functions and reserved resources
    """

    def __init__(self, context: ProcessingContext):
        self.context = context
        self.table = {}
        self.direct_names = set(RESERVED_REFERENCES)
        self.unresolved = {}

    def resolve(self, module: Module) -> None:
        self.table = {
            parameter.full_name: parameter for parameter in module.iter_parameters()
        }
        self.direct_names = set(RESERVED_REFERENCES) | set(module.function_names)
        self.link_sources(module)
        self.link_packages(module)
        resolved = self.resolve_parameters()
        self.rewrite_resources(resolved)
        self.rewrite_functions(module, resolved)
        self.rewrite_outputs(module, resolved)

    def link_sources(self, module: Module) -> None:
        """
        Binds the function sources to the resource parameters they listen to.
        """
        for function in module.functions:
            for source in function.sources:
                if not isinstance(source, ParameterSource):
                    continue
                with self.context.at_location(*source.location):
                    parameter = self.table.get(source.parameter_name)
                    if parameter is None:
                        self.context.add_reference_error(
                            f"could not find parameter for {source.description}: '{source.parameter_name}'"
                        )
                    elif (
                        parameter.resource is None
                        or parameter.resource.type_name not in source.resource_types
                    ):
                        self.context.add_reference_error(
                            f"parameter for function source must be an {source.description} resource:"
                            f" '{source.parameter_name}'"
                        )
                    else:
                        source.parameter = parameter

    def link_packages(self, module: Module) -> None:
        for parameter in module.iter_parameters():
            if not isinstance(parameter, PackageParameter):
                continue
            with self.context.at_location(*parameter.location, "Package", "Bucket"):
                bucket = self.table.get(parameter.bucket)
                if bucket is None:
                    self.context.add_reference_error(
                        f"could not find parameter for package bucket: '{parameter.bucket}'"
                    )
                elif not is_managed(bucket) or bucket.resource.type_name != S3_BUCKET_TYPE:
                    self.context.add_reference_error(
                        f"parameter for package bucket must be an {S3_BUCKET_TYPE} resource: '{parameter.bucket}'"
                    )
                else:
                    parameter.bucket_parameter = bucket

    def lookup(self, resolved: dict):
        """
        Attributes of an input creating its resource are only defined when the resource is
        created, i.e. ``!If [TopicCreated, !GetAtt TopicCreatedInstance.TopicName, !Ref AWS::NoValue]``

        :param dict resolved: full name -> resolved reference
        :return: the lookup function for the expressions rewriter
        """

        def lookup(name: str, attribute: str, problems: list):
            if name in self.direct_names:
                return Ref(name) if attribute is None else GetAtt(name, attribute)
            if name not in resolved:
                return None
            if attribute is None:
                return resolved[name]
            parameter = self.table[name]
            if isinstance(parameter, CloudFormationResourceParameter):
                return GetAtt(parameter.logical_id, attribute)
            if isinstance(parameter, PackageParameter):
                return GetAtt(parameter.logical_id, attribute)
            if is_managed(parameter):
                return If(
                    parameter.condition_name,
                    GetAtt(parameter.instance_logical_id, attribute),
                    Ref(AWS_NO_VALUE),
                )
            problems.append(f"item '{name}' does not have attributes")
            return resolved[name]

        return lookup

    def resolve_parameters(self) -> dict:
        """
        Runs the promotion loop over the parameters references, and reports the ones left bound.

        :return: full name -> resolved reference
        :rtype: dict
        """
        free = {}
        bound = {}
        for name, parameter in self.table.items():
            if isinstance(
                parameter, (ValueParameter, ReferencedResourceParameter)
            ) and contains_expression(parameter.reference):
                bound[name] = parameter.reference
            else:
                free[name] = parameter.reference
        LOG.debug(f"References: {len(free)} free, {len(bound)} bound")
        problems = {}

        def rewrite(name, value, resolved):
            rewriter = ExpressionRewriter(self.lookup(resolved))
            new_value = rewriter.substitute(value)
            problems[name] = rewriter.problems
            if not rewriter.missing and not contains_intrinsic(value):
                problems[name] = problems[name] + [
                    f"expression for '{name}' does not contain a !Ref, !GetAtt or !Sub"
                ]
            if not rewriter.missing:
                LOG.debug(f"Resolved {name}")
            return new_value, rewriter.missing

        result = solve_fixed_point(free, bound, rewrite)
        for name, messages in problems.items():
            if not messages:
                continue
            with self.context.at_location(*self.table[name].location):
                for message in dict.fromkeys(messages):
                    self.context.add_reference_error(message)
        self.report_unresolved(result)
        self.unresolved = result.unresolved
        for name, value in result.resolved.items():
            parameter = self.table[name]
            if name not in bound:
                continue
            if isinstance(parameter, ReferencedResourceParameter):
                parameter.set_arns(
                    [self.rewrite(arn, result.resolved) for arn in parameter.arns]
                )
            else:
                parameter.reference = value
        LOG.info(
            f"Resolved {len(result.resolved)} parameters in {result.iterations} iterations"
        )
        return result.resolved

    def report_unresolved(self, result) -> None:
        for cycle in result.cycles():
            with self.context.at_location(*self.table[cycle[0]].location):
                names = ", ".join(f"'{name}'" for name in cycle)
                self.context.add_reference_error(f"circular !Ref dependency on {names}")
        for name, missing, is_bound in result.dangling():
            with self.context.at_location(*self.table[name].location):
                if is_bound:
                    self.context.add_reference_error(
                        f"circular !Ref dependency on '{missing}'"
                    )
                else:
                    self.context.add_reference_error(f"could not find '{missing}'")

    def rewrite(self, value, resolved: dict):
        """
        Rewrites a value once all the parameters are resolved, reporting the problems at the
        current location. References to parameters already reported are not reported again.
        """
        rewriter = ExpressionRewriter(self.lookup(resolved))
        new_value = rewriter.substitute(value)
        for message in dict.fromkeys(rewriter.problems):
            self.context.add_reference_error(message)
        for name in sorted(rewriter.missing):
            if name not in self.unresolved:
                self.context.add_reference_error(f"could not find '{name}'")
        return new_value

    def rewrite_resources(self, resolved: dict) -> None:
        for parameter in self.table.values():
            if not is_managed(parameter):
                continue
            with self.context.at_location(*parameter.location, "Resource", "Properties"):
                parameter.resource.properties = self.rewrite(
                    parameter.resource.properties, resolved
                )

    def rewrite_functions(self, module: Module, resolved: dict) -> None:
        for function in module.functions:
            with self.context.at_location(*function.location):
                with self.context.at_location("Environment"):
                    function.environment = self.rewrite(function.environment, resolved)
                if function.vpc:
                    with self.context.at_location("VPC"):
                        function.vpc = self.rewrite(function.vpc, resolved)

    def rewrite_outputs(self, module: Module, resolved: dict) -> None:
        for output in module.outputs:
            if not isinstance(output, ExportOutput):
                continue
            with self.context.at_location(*output.location, "Value"):
                output.value = self.rewrite(output.value, resolved)
