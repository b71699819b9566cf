# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Stack parameters and resources defined by the module parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Template
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig
    from modulex.generator.resources import ValueRenderer
    from modulex.model.module import Module

from troposphere import Equals, Join, Parameter, Ref, Sub
from troposphere.ssm import Parameter as SSMParameter

from modulex.common.troposphere_tools import add_condition, add_parameters, add_resource
from modulex.model.parameters import (
    CloudFormationResourceParameter,
    InputParameter,
    PackageParameter,
)

from .functions import DEPLOYMENT_BUCKET_NAME_T
from .iam import SECRETS_IS_EMPTY_CON_T, SECRETS_T
from .resources import build_resource

TIER_T = "Tier"
TIER_LOWERCASE_T = "TierLowercase"
DEPLOYMENT_PREFIX_T = "DeploymentPrefix"
INPUT_PARAMETER_ATTRIBUTES = {
    "ConstraintDescription": str,
    "AllowedPattern": str,
    "AllowedValues": list,
    "MinLength": int,
    "MaxLength": int,
    "MinValue": float,
    "MaxValue": float,
}


def define_module_parameters(config: CompilerConfig) -> list:
    """
    Parameters set by the deployment of every module.

    :param CompilerConfig config:
    :rtype: list[Parameter]
    """
    tier = config.tier if config.tier else ""
    return [
        Parameter(
            TIER_T,
            Type="String",
            Default=tier,
            Description="Module deployment tier",
        ),
        Parameter(
            TIER_LOWERCASE_T,
            Type="String",
            Default=tier.lower(),
            Description="Module deployment tier (lowercase)",
        ),
        Parameter(
            DEPLOYMENT_BUCKET_NAME_T,
            Type="String",
            Default=config.deployment_bucket_name
            if config.deployment_bucket_name
            else "",
            Description="Bucket of the module assets",
        ),
        Parameter(
            DEPLOYMENT_PREFIX_T,
            Type="String",
            Default=f"{tier}-" if tier else "",
            Description="Prefix of the module exports and resources names",
        ),
        Parameter(
            SECRETS_T,
            Type="CommaDelimitedList",
            Default="",
            Description="Additional KMS key ARNs the functions can decrypt with",
        ),
    ]


def define_input_parameter(parameter: InputParameter) -> Parameter:
    """
    :param InputParameter parameter:
    :rtype: Parameter
    """
    properties = {
        "Type": "String" if parameter.is_secret else parameter.input_type,
    }
    if parameter.description:
        properties["Description"] = parameter.description
    if parameter.default is not None:
        properties["Default"] = parameter.default
    if parameter.no_echo:
        properties["NoEcho"] = True
    for key, value in parameter.constraints.items():
        cast = INPUT_PARAMETER_ATTRIBUTES[key]
        properties[key] = value if cast is list else cast(value)
    return Parameter(parameter.logical_id, **properties)


def define_interface_metadata(module: Module) -> dict:
    """
    Groups the inputs by section, and labels them, for the stack creation console.

    :rtype: dict
    """
    groups = {}
    labels = {}
    for parameter in module.inputs:
        section = parameter.section if parameter.section else "Module Settings"
        groups.setdefault(section, []).append(parameter.logical_id)
        if parameter.label:
            labels[parameter.logical_id] = {"default": parameter.label}
    return {
        "ParameterGroups": [
            {"Label": {"default": section}, "Parameters": names}
            for section, names in groups.items()
        ],
        "ParameterLabels": labels,
    }


class ParametersGenerator:
    """
    :ivar ProcessingContext context:
    :ivar Template template:
    :ivar CompilerConfig config:
    :ivar ValueRenderer renderer:
    """

    def __init__(
        self,
        context: ProcessingContext,
        template: Template,
        config: CompilerConfig,
        renderer: ValueRenderer,
    ):
        self.context = context
        self.template = template
        self.config = config
        self.renderer = renderer

    def add_module_parameters(self) -> None:
        add_parameters(self.template, define_module_parameters(self.config))
        add_condition(
            self.template,
            SECRETS_IS_EMPTY_CON_T,
            Equals(Join(",", Ref(SECRETS_T)), ""),
        )

    def add_parameters(
        self, module: Module, notifications: dict = None, dependencies: dict = None
    ) -> None:
        """
        Adds the stack parameters of the inputs and the resources of the parameters.

        :param Module module:
        :param dict notifications: bucket full name -> S3 LambdaConfigurations to attach
        :param dict dependencies: resource full name -> additional logical ids to depend on
        """
        notifications = notifications if notifications else {}
        dependencies = dependencies if dependencies else {}
        for parameter in module.iter_parameters():
            with self.context.at_location(*parameter.location):
                if isinstance(parameter, InputParameter):
                    self.add_input(parameter, module)
                elif isinstance(parameter, CloudFormationResourceParameter):
                    properties = dict(parameter.resource.properties)
                    if parameter.full_name in notifications:
                        properties["NotificationConfiguration"] = {
                            "LambdaConfigurations": notifications[parameter.full_name]
                        }
                    self.add_managed_resource(
                        parameter.logical_id,
                        parameter,
                        module,
                        properties,
                        extra_dependencies=dependencies.get(parameter.full_name, []),
                    )
                elif isinstance(parameter, PackageParameter):
                    self.add_package(parameter, module)
                if parameter.export:
                    self.add_export(parameter, module)

    def add_input(self, parameter: InputParameter, module: Module) -> None:
        add_parameters(self.template, [define_input_parameter(parameter)])
        if not parameter.is_conditional_resource:
            return
        add_condition(
            self.template,
            parameter.condition_name,
            Equals(Ref(parameter.logical_id), parameter.default),
        )
        self.add_managed_resource(
            parameter.instance_logical_id,
            parameter,
            module,
            dict(parameter.resource.properties),
            Condition=parameter.condition_name,
        )

    def depends_on(self, parameter, module: Module) -> list:
        titles = []
        for name in parameter.resource.depends_on:
            target = module.get_parameter(name)
            if isinstance(target, InputParameter):
                titles.append(target.instance_logical_id)
            elif target is not None:
                titles.append(target.logical_id)
        return titles

    def add_managed_resource(
        self,
        logical_id: str,
        parameter,
        module: Module,
        properties: dict,
        extra_dependencies: list = None,
        **attributes,
    ) -> None:
        depends_on = self.depends_on(parameter, module)
        if extra_dependencies:
            depends_on += extra_dependencies
        if depends_on:
            attributes["DependsOn"] = depends_on
        try:
            resource = build_resource(
                logical_id,
                parameter.resource.type_name,
                self.renderer.render(properties),
                **attributes,
            )
        except (TypeError, ValueError, AttributeError) as error:
            self.context.add_error(
                f"invalid properties for type '{parameter.resource.type_name}': {error}"
            )
            return
        add_resource(self.template, resource)

    def add_package(self, parameter: PackageParameter, module: Module) -> None:
        """
        The package is copied from the deployment bucket into the destination bucket by the
        S3 package loader custom resource of the deployment tier.
        """
        if parameter.bucket_parameter is None:
            return
        package_path = (
            parameter.package_path
            if parameter.package_path
            else f"{parameter.logical_id}.zip"
        )
        properties = {
            "ServiceToken": parameter.resource.properties.get("ServiceToken"),
            "DestinationBucketName": Ref(parameter.bucket_parameter.logical_id),
            "DestinationKeyPrefix": parameter.prefix,
            "SourceBucketName": Ref(DEPLOYMENT_BUCKET_NAME_T),
            "SourcePackageKey": f"Modules/{module.name}/Assets/{package_path}",
        }
        try:
            resource = build_resource(
                parameter.logical_id, parameter.resource.type_name, properties
            )
        except (TypeError, ValueError) as error:
            self.context.add_error(f"invalid package resource: {error}")
            return
        add_resource(self.template, resource)

    def add_export(self, parameter, module: Module) -> None:
        """
        Publishes the parameter value in the parameter store, at ``/{tier}/{module}/{export}``,
        where the other modules of the tier import it from.
        """
        add_resource(
            self.template,
            SSMParameter(
                f"{parameter.logical_id}ExportParameter",
                Name=Sub(
                    f"/${{{TIER_T}}}/{module.name}/{parameter.export.strip('/')}"
                ),
                Type="String",
                Value=self.renderer.render_string(parameter.reference),
                Description=parameter.description
                if parameter.description
                else f"{module.name} {parameter.full_name}",
            ),
        )
