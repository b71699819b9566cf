# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Helpers to build the module template with troposphere.
"""

from __future__ import annotations

from troposphere import AWSObject, Output, Parameter, Template

from modulex.common.logging import LOG


def build_template(description: str = None, *parameters) -> Template:
    """
    Creates a new template with the parameters

    :param str description:
    :param parameters: troposphere Parameter objects
    :rtype: Template
    """
    template = Template(description if description else "Module template")
    template.set_version()
    add_parameters(template, parameters)
    return template


def add_parameters(template: Template, parameters) -> None:
    """
    :param Template template:
    :param list[Parameter] parameters:
    """
    for parameter in parameters:
        if not isinstance(parameter, Parameter):
            raise TypeError("Expected", Parameter, "got", type(parameter))
        if parameter.title not in template.parameters:
            template.add_parameter(parameter)


def add_resource(template: Template, resource: AWSObject, replace: bool = False):
    """
    Adds the resource to the template, unless a resource with the same title is already defined

    :param Template template:
    :param AWSObject resource:
    :param bool replace: replace the existing resource
    :return: the resource in the template
    """
    if resource.title in template.resources:
        if not replace:
            LOG.debug(f"Resource {resource.title} already in the template")
            return template.resources[resource.title]
        del template.resources[resource.title]
    return template.add_resource(resource)


def add_outputs(template: Template, outputs) -> None:
    """
    :param Template template:
    :param list[Output] outputs:
    :raises ValueError: when two different outputs have the same title
    """
    for output in outputs:
        if not isinstance(output, Output):
            raise TypeError("Expected", Output, "got", type(output))
        if output.title in template.outputs:
            raise ValueError(f"duplicate output '{output.title}'")
        template.add_output(output)


def add_condition(template: Template, name: str, condition) -> None:
    if name not in template.conditions:
        template.add_condition(name, condition)
