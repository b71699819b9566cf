# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Event sources of the functions: subscriptions, rules, event source mappings, bucket notifications
and permissions. The API sources are only collected here, see :mod:`modulex.generator.api`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Template

    from modulex.common.context import ProcessingContext
    from modulex.generator.resources import ValueRenderer
    from modulex.model.functions import Function as ModuleFunction

import json

from troposphere import AWS_ACCOUNT_ID, GetAtt, Ref, Sub
from troposphere.awslambda import EventSourceMapping, Permission
from troposphere.cloudformation import Macro
from troposphere.events import InputTransformer, Rule, Target
from troposphere.sns import SubscriptionResource

from modulex.common.logging import LOG
from modulex.common.troposphere_tools import add_resource
from modulex.exceptions import ModuleReferenceError
from modulex.model.functions import (
    AlexaSource,
    ApiSource,
    DynamoDBSource,
    KinesisSource,
    MacroSource,
    S3Source,
    ScheduleSource,
    SqsSource,
    TopicSource,
)
from modulex.model.parameters import (
    CloudFormationResourceParameter,
    ReferencedResourceParameter,
)

from .iam import MODULE_ROLE_T


def define_permission(
    title: str, function_name: str, principal: str, **kwargs
) -> Permission:
    return Permission(
        title,
        Action="lambda:InvokeFunction",
        FunctionName=Ref(function_name),
        Principal=principal,
        **kwargs,
    )


class SourcesGenerator:
    """
    Creates the resources wiring the sources to the functions.

    :ivar ProcessingContext context:
    :ivar Template template:
    :ivar ValueRenderer renderer:
    :ivar list routes: (function, ApiSource) collected for the REST API
    :ivar dict bucket_notifications: bucket full name -> list of LambdaConfigurations
    :ivar dict bucket_dependencies: bucket full name -> logical ids of the permissions to depend on
    """

    def __init__(
        self, context: ProcessingContext, template: Template, renderer: ValueRenderer
    ):
        self.context = context
        self.template = template
        self.renderer = renderer
        self.routes = []
        self.bucket_notifications = {}
        self.bucket_dependencies = {}

    def source_arns(self, source) -> list:
        parameter = source.parameter
        if isinstance(parameter, ReferencedResourceParameter):
            return [self.renderer.render(arn) for arn in parameter.arns]
        return [self.renderer.render(parameter.reference)]

    def add_function_sources(self, function: ModuleFunction) -> None:
        """
        :param ModuleFunction function:
        """
        for index, source in enumerate(function.sources, start=1):
            with self.context.at_location(*source.location):
                self.add_source(function, source, f"{function.name}Source{index}")

    def add_source(self, function: ModuleFunction, source, prefix: str) -> None:
        if isinstance(source, ApiSource):
            self.routes.append((function, source))
        elif isinstance(source, TopicSource):
            self.add_topic_source(function, source, prefix)
        elif isinstance(source, ScheduleSource):
            self.add_schedule_source(function, source, prefix)
        elif isinstance(source, S3Source):
            self.add_s3_source(function, source, prefix)
        elif isinstance(source, SqsSource):
            self.add_event_source_mapping(
                function, prefix, self.source_arns(source)[0], source.batch_size
            )
        elif isinstance(source, DynamoDBSource):
            parameter = source.parameter
            if isinstance(parameter, CloudFormationResourceParameter):
                stream_arn = GetAtt(parameter.logical_id, "StreamArn")
            else:
                stream_arn = self.source_arns(source)[0]
            self.add_event_source_mapping(
                function,
                prefix,
                stream_arn,
                source.batch_size,
                StartingPosition=source.starting_position,
            )
        elif isinstance(source, KinesisSource):
            self.add_event_source_mapping(
                function,
                prefix,
                self.source_arns(source)[0],
                source.batch_size,
                StartingPosition=source.starting_position,
            )
        elif isinstance(source, AlexaSource):
            extra = {"EventSourceToken": source.skill_id} if source.skill_id else {}
            add_resource(
                self.template,
                define_permission(
                    f"{prefix}Permission",
                    function.name,
                    "alexa-appkit.amazon.com",
                    **extra,
                ),
            )
        elif isinstance(source, MacroSource):
            add_resource(
                self.template,
                Macro(
                    f"{prefix}Macro",
                    Name=Sub(f"${{DeploymentPrefix}}{source.name}"),
                    FunctionName=GetAtt(function.name, "Arn"),
                ),
            )
        else:
            raise TypeError(f"Unsupported source {source} for {function.name}")

    def add_topic_source(self, function, source: TopicSource, prefix: str) -> None:
        arns = self.source_arns(source)
        for count, arn in enumerate(arns, start=1):
            suffix = str(count) if len(arns) > 1 else ""
            add_resource(
                self.template,
                define_permission(
                    f"{prefix}Permission{suffix}",
                    function.name,
                    "sns.amazonaws.com",
                    SourceArn=arn,
                ),
            )
            add_resource(
                self.template,
                SubscriptionResource(
                    f"{prefix}Subscription{suffix}",
                    Endpoint=GetAtt(function.name, "Arn"),
                    Protocol="lambda",
                    TopicArn=arn,
                ),
            )

    def add_schedule_source(self, function, source: ScheduleSource, prefix: str) -> None:
        name = source.name if source.name else prefix
        rule = add_resource(
            self.template,
            Rule(
                f"{prefix}ScheduleEvent",
                ScheduleExpression=source.expression,
                Targets=[
                    Target(
                        Id=prefix,
                        Arn=GetAtt(function.name, "Arn"),
                        InputTransformer=InputTransformer(
                            InputPathsMap={"id": "$.id", "time": "$.time"},
                            InputTemplate='{"Id":<id>,"Time":<time>,"Name":'
                            + json.dumps(name)
                            + "}",
                        ),
                    )
                ],
            ),
        )
        add_resource(
            self.template,
            define_permission(
                f"{prefix}Permission",
                function.name,
                "events.amazonaws.com",
                SourceArn=GetAtt(rule, "Arn"),
            ),
        )

    def add_s3_source(self, function, source: S3Source, prefix: str) -> None:
        """
        The bucket must be created by the module to attach the notification configuration to it.
        The bucket depends on the permission so S3 can validate the configuration.
        """
        bucket = source.parameter
        if not isinstance(bucket, CloudFormationResourceParameter):
            raise ModuleReferenceError(
                f"S3 source requires a bucket created by the module: '{source.parameter_name}'"
            )
        bucket_arn = (
            f"arn:aws:s3:::{bucket.generated_name}"
            if bucket.generated_name
            else self.renderer.render(bucket.reference)
        )
        permission = add_resource(
            self.template,
            define_permission(
                f"{prefix}Permission",
                function.name,
                "s3.amazonaws.com",
                SourceAccount=Ref(AWS_ACCOUNT_ID),
                SourceArn=bucket_arn,
            ),
        )
        rules = []
        if source.prefix:
            rules.append({"Name": "prefix", "Value": source.prefix})
        if source.suffix:
            rules.append({"Name": "suffix", "Value": source.suffix})
        for event in source.events:
            configuration = {"Event": event, "Function": GetAtt(function.name, "Arn")}
            if rules:
                configuration["Filter"] = {"S3Key": {"Rules": rules}}
            self.bucket_notifications.setdefault(bucket.full_name, []).append(
                configuration
            )
        self.bucket_dependencies.setdefault(bucket.full_name, []).append(
            permission.title
        )
        LOG.debug(f"{function.name} - notifications of {bucket.full_name}: {source.events}")

    def add_event_source_mapping(
        self, function, prefix: str, arn, batch_size: int, **kwargs
    ) -> None:
        add_resource(
            self.template,
            EventSourceMapping(
                f"{prefix}EventMapping",
                BatchSize=batch_size,
                Enabled=True,
                EventSourceArn=arn,
                FunctionName=Ref(function.name),
                DependsOn=[MODULE_ROLE_T],
                **kwargs,
            ),
        )
