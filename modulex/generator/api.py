# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
REST API of the module, built from the Api and SlackCommand sources of the functions.

The routes are partitioned by their leading path segment, recursively, so routes sharing a
prefix share the same API resources.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Template
    from modulex.common.context import ProcessingContext
    from modulex.model.module import Module

import json

from troposphere import (
    AWS_ACCOUNT_ID,
    AWS_NO_VALUE,
    AWS_REGION,
    AWS_STACK_NAME,
    AWS_URL_SUFFIX,
    GetAtt,
    Output,
    Ref,
    Sub,
)
from troposphere.apigateway import (
    Account,
    Deployment,
    Integration,
    IntegrationResponse,
    Method,
    MethodResponse,
    MethodSetting,
    Resource,
    RestApi,
    Stage,
)
from troposphere.iam import Role

from modulex.common import NONALPHANUM, md5_hex
from modulex.common.logging import LOG
from modulex.common.troposphere_tools import add_outputs, add_resource
from modulex.iam import service_role_trust_policy

from .sources import define_permission

REST_API_T = "ModuleRestApi"
REST_API_ROLE_T = "ModuleRestApiRole"
REST_API_ACCOUNT_T = "ModuleRestApiAccount"
REST_API_STAGE_T = "ModuleRestApiStage"
REST_API_DEPLOYMENT_T = "ModuleRestApiDeployment"
STAGE_NAME = "LATEST"
API_GATEWAY_LOGS_POLICY = (
    "arn:aws:iam::aws:policy/service-role/AmazonAPIGatewayPushToCloudWatchLogs"
)
SLACK_REQUEST_TEMPLATE = """{
#set($allParams = $input.params())
"body": "$util.escapeJavaScript($input.body)",
"headers": {
#foreach($param in $allParams.get('header').keySet())
"$param": "$util.escapeJavaScript($allParams.get('header').get($param))"#if($foreach.hasNext),#end
#end
}
}"""
SLACK_RESPONSE_TEMPLATE = '{"response_type":"in_channel","text":""}'


def segment_title(segment: str) -> str:
    """
    :param str segment: path segment, i.e. items or {id}
    :return: the segment for logical IDs, i.e. Items or Id
    """
    cleaned = NONALPHANUM.sub("", segment)
    return cleaned[:1].upper() + cleaned[1:]


def invocation_uri(function_name: str) -> Sub:
    return Sub(
        f"arn:aws:apigateway:${{{AWS_REGION}}}:lambda:path/2015-03-31/functions/"
        f"${{{function_name}.Arn}}/invocations"
    )


def define_integration(function, source) -> Integration:
    """
    RequestResponse integrations proxy the request to the function. SlackCommand integrations
    invoke the function asynchronously and reply right away, as Slack expects a response within
    3 seconds.
    """
    if source.integration == "SlackCommand":
        return Integration(
            Type="AWS",
            IntegrationHttpMethod="POST",
            Uri=invocation_uri(function.name),
            PassthroughBehavior="WHEN_NO_TEMPLATES",
            RequestParameters={
                "integration.request.header.X-Amz-Invocation-Type": "'Event'"
            },
            RequestTemplates={"application/x-www-form-urlencoded": SLACK_REQUEST_TEMPLATE},
            IntegrationResponses=[
                IntegrationResponse(
                    StatusCode="200",
                    ResponseTemplates={"application/json": SLACK_RESPONSE_TEMPLATE},
                )
            ],
        )
    return Integration(
        Type="AWS_PROXY",
        IntegrationHttpMethod="POST",
        Uri=invocation_uri(function.name),
    )


class ApiGenerator:
    """
    :ivar Template template:
    :ivar ProcessingContext context:
    :ivar list[Method] methods: methods created, in order
    :ivar dict resource_paths: API resource title -> path segments it stands for
    """

    def __init__(self, template: Template, context: ProcessingContext):
        self.template = template
        self.context = context
        self.methods = []
        self.resource_paths = {}

    def generate(self, module: Module, routes: list) -> None:
        """
        :param Module module:
        :param list routes: (function, ApiSource)
        """
        if not routes:
            return
        add_resource(
            self.template,
            RestApi(
                REST_API_T,
                Name=Sub(f"${{{AWS_STACK_NAME}}} Module API"),
                Description=f"{module.name} API (v{module.version})",
                FailOnWarnings=True,
            ),
        )
        add_resource(
            self.template,
            Role(
                REST_API_ROLE_T,
                AssumeRolePolicyDocument=service_role_trust_policy("apigateway"),
                ManagedPolicyArns=[API_GATEWAY_LOGS_POLICY],
            ),
        )
        add_resource(
            self.template,
            Account(REST_API_ACCOUNT_T, CloudWatchRoleArn=GetAtt(REST_API_ROLE_T, "Arn")),
        )
        self.add_resources(
            routes, 0, GetAtt(REST_API_T, "RootResourceId"), REST_API_T
        )
        deployment = self.add_deployment()
        add_resource(
            self.template,
            Stage(
                REST_API_STAGE_T,
                StageName=STAGE_NAME,
                Description="Module API LATEST stage",
                RestApiId=Ref(REST_API_T),
                DeploymentId=Ref(deployment),
                MethodSettings=[
                    MethodSetting(
                        DataTraceEnabled=True,
                        HttpMethod="*",
                        LoggingLevel="INFO",
                        ResourcePath="/*",
                    )
                ],
                DependsOn=[deployment.title, REST_API_ACCOUNT_T],
            ),
        )
        add_outputs(
            self.template,
            [
                Output(
                    REST_API_T,
                    Description="Module REST API URL",
                    Value=Sub(
                        f"https://${{{REST_API_T}}}.execute-api.${{{AWS_REGION}}}"
                        f".${{{AWS_URL_SUFFIX}}}/{STAGE_NAME}/"
                    ),
                )
            ],
        )

    def add_resources(self, routes: list, depth: int, parent_id, prefix: str) -> None:
        """
        Attaches the methods of the routes ending at this depth, and groups the other routes by
        their next path segment, creating one API resource per group.

        :param list routes: (function, ApiSource) sharing the same first ``depth`` segments
        :param int depth:
        :param parent_id: ID of the API resource matching these segments
        :param str prefix: logical ID prefix of the API resource
        """
        groups = {}
        for function, source in routes:
            if len(source.path) == depth:
                self.add_method(function, source, parent_id, prefix)
            else:
                groups.setdefault(source.path[depth], []).append((function, source))
        for segment, group in groups.items():
            resource_prefix = self.define_resource_prefix(
                prefix, tuple(group[0][1].path[: depth + 1])
            )
            resource = add_resource(
                self.template,
                Resource(
                    f"{resource_prefix}Resource",
                    ParentId=parent_id,
                    PathPart=segment,
                    RestApiId=Ref(REST_API_T),
                ),
            )
            self.add_resources(group, depth + 1, Ref(resource), resource_prefix)

    def define_resource_prefix(self, prefix: str, path: tuple) -> str:
        """
        Logical ID prefix of the API resource for the path. Segments that only differ by their
        non-alphanumeric characters, i.e. ``{id}`` and ``id``, get a numeric suffix.

        :param str prefix: logical ID prefix of the parent resource
        :param tuple path: path segments of the resource
        :rtype: str
        """
        base = f"{prefix}{segment_title(path[-1])}"
        resource_prefix = base
        index = 2
        while self.resource_paths.get(resource_prefix, path) != path:
            resource_prefix = f"{base}{index}"
            index += 1
        if resource_prefix != base:
            LOG.debug(f"/{'/'.join(path)} - API resource renamed to {resource_prefix}")
        self.resource_paths[resource_prefix] = path
        return resource_prefix

    def add_method(self, function, source, resource_id, prefix: str) -> None:
        title = f"{prefix}{source.method}"
        if title in self.template.resources:
            with self.context.at_location(*source.location):
                self.context.add_error(
                    f"duplicate API route '{source.method} /{'/'.join(source.path)}'"
                )
            return
        method = add_resource(
            self.template,
            Method(
                title,
                AuthorizationType="NONE",
                HttpMethod=source.method,
                OperationName=source.operation_name
                if source.operation_name
                else Ref(AWS_NO_VALUE),
                ApiKeyRequired=source.api_key_required
                if source.api_key_required is not None
                else Ref(AWS_NO_VALUE),
                ResourceId=resource_id,
                RestApiId=Ref(REST_API_T),
                Integration=define_integration(function, source),
                MethodResponses=[
                    MethodResponse(
                        StatusCode="200", ResponseModels={"application/json": "Empty"}
                    )
                ]
                if source.integration == "SlackCommand"
                else Ref(AWS_NO_VALUE),
            ),
        )
        self.methods.append(method)
        http_method = "*" if source.method == "ANY" else source.method
        add_resource(
            self.template,
            define_permission(
                f"{title}Permission",
                function.name,
                "apigateway.amazonaws.com",
                SourceArn=Sub(
                    f"arn:aws:execute-api:${{{AWS_REGION}}}:${{{AWS_ACCOUNT_ID}}}:${{{REST_API_T}}}"
                    f"/{STAGE_NAME}/{http_method}/{'/'.join(source.path)}"
                ),
            ),
        )

    def add_deployment(self) -> Deployment:
        """
        The deployment logical ID is derived from the methods definitions so any change of a
        method creates a new deployment.
        """
        definitions = json.dumps(
            [
                {method.title: method.to_dict()}
                for method in sorted(self.methods, key=lambda item: item.title)
            ],
            sort_keys=True,
        )
        return add_resource(
            self.template,
            Deployment(
                f"{REST_API_DEPLOYMENT_T}{md5_hex(definitions)}",
                Description=Sub(f"${{{AWS_STACK_NAME}}} API"),
                RestApiId=Ref(REST_API_T),
                DependsOn=[method.title for method in self.methods],
            ),
        )
