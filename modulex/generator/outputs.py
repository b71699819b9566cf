# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Outputs of the module stack, and the resources exposing the custom resource handlers and the
macros to the other modules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Template
    from modulex.common.context import ProcessingContext
    from modulex.generator.resources import ValueRenderer
    from modulex.model.module import Module

from troposphere import AWS_STACK_NAME, Export, GetAtt, Output, Ref, Sub
from troposphere.cloudformation import Macro
from troposphere.sns import Subscription, Topic
from troposphere.ssm import Parameter as SSMParameter

from modulex.common import NONALPHANUM
from modulex.common.troposphere_tools import add_outputs, add_resource
from modulex.model.outputs import (
    CustomResourceHandlerOutput,
    ExportOutput,
    MacroOutput,
)

from .parameters import DEPLOYMENT_PREFIX_T, TIER_T
from .sources import define_permission


def define_module_outputs(module: Module) -> list:
    return [
        Output("ModuleName", Description="Module name", Value=module.name),
        Output("ModuleVersion", Description="Module version", Value=module.version),
    ]


class OutputsGenerator:
    """
    :ivar ProcessingContext context:
    :ivar Template template:
    :ivar ValueRenderer renderer:
    """

    def __init__(
        self, context: ProcessingContext, template: Template, renderer: ValueRenderer
    ):
        self.context = context
        self.template = template
        self.renderer = renderer

    def add_outputs(self, module: Module) -> None:
        add_outputs(self.template, define_module_outputs(module))
        for output in module.outputs:
            with self.context.at_location(*output.location):
                try:
                    if isinstance(output, ExportOutput):
                        self.add_export(output)
                    elif isinstance(output, CustomResourceHandlerOutput):
                        self.add_custom_resource_handler(output, module)
                    elif isinstance(output, MacroOutput):
                        self.add_macro(output)
                except ValueError as error:
                    self.context.add_error(str(error))

    def add_export(self, output: ExportOutput) -> None:
        """
        Exports the value from the stack as ``${AWS::StackName}::{Name}``
        """
        value = self.renderer.render_string(output.value)
        description = output.description if output.description else output.name
        add_outputs(
            self.template,
            [
                Output(output.name, Description=description, Value=value),
                Output(
                    f"{output.name}Export",
                    Description=description,
                    Value=value,
                    Export=Export(Sub(f"${{{AWS_STACK_NAME}}}::{output.name}")),
                ),
            ],
        )

    def add_custom_resource_handler(
        self, output: CustomResourceHandlerOutput, module: Module
    ) -> None:
        """
        The custom resources requests are sent to a topic the handler function subscribes to.
        The topic is exported, and published in the parameter store for the modules importing
        the custom resource type.
        """
        name = NONALPHANUM.sub("", output.name)
        topic = add_resource(
            self.template,
            Topic(
                f"{name}CustomResourceTopic",
                Subscription=[
                    Subscription(
                        Endpoint=GetAtt(output.handler, "Arn"), Protocol="lambda"
                    )
                ],
            ),
        )
        add_resource(
            self.template,
            define_permission(
                f"{name}CustomResourcePermission",
                output.handler,
                "sns.amazonaws.com",
                SourceArn=Ref(topic),
            ),
        )
        add_resource(
            self.template,
            SSMParameter(
                f"{name}CustomResourceTopicParameter",
                Name=Sub(
                    f"/${{{TIER_T}}}/{module.name}/{output.name}CustomResourceTopic"
                ),
                Type="String",
                Value=Ref(topic),
                Description=f"Topic of the {module.name}::{output.name} custom resources",
            ),
        )
        add_outputs(
            self.template,
            [
                Output(
                    f"{name}Handler",
                    Description=output.description
                    if output.description
                    else f"{output.name} custom resource handler",
                    Value=Ref(topic),
                    Export=Export(
                        Sub(f"${{{DEPLOYMENT_PREFIX_T}}}CustomResource-{output.name}")
                    ),
                )
            ],
        )

    def add_macro(self, output: MacroOutput) -> None:
        add_resource(
            self.template,
            Macro(
                f"{NONALPHANUM.sub('', output.name)}Macro",
                Name=Sub(f"${{{DEPLOYMENT_PREFIX_T}}}{output.name}"),
                Description=output.description
                if output.description
                else f"{output.name} macro",
                FunctionName=GetAtt(output.handler, "Arn"),
            ),
        )
