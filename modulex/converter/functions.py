# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Conversion of the Functions section and of their event sources.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext

from compose_x_common.compose_x_common import keyisset, keypresent

from modulex.common import CLOUDFORMATION_ID_PATTERN
from modulex.exceptions import ModuleSchemaError, ModuleStructureError
from modulex.model.functions import (
    AlexaSource,
    ApiSource,
    DynamoDBSource,
    Function,
    KinesisSource,
    MacroSource,
    S3Source,
    ScheduleSource,
    SlackCommandSource,
    SqsSource,
    TopicSource,
)

SOURCE_KINDS = (
    "Api",
    "Schedule",
    "S3",
    "SlackCommand",
    "Topic",
    "Sqs",
    "Alexa",
    "DynamoDB",
    "Kinesis",
    "Macro",
)
API_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "ANY")
API_INTEGRATIONS = ("RequestResponse", "SlackCommand")
STARTING_POSITIONS = ("TRIM_HORIZON", "LATEST")


def parse_int(node: dict, attribute: str, required: bool = True):
    """
    :param dict node:
    :param str attribute:
    :param bool required:
    :return: the integer value, None if not set and not required
    :raises ModuleSchemaError: when missing or not an integer
    """
    if not keypresent(attribute, node) or node[attribute] is None:
        if required:
            raise ModuleSchemaError(f"missing {attribute} field")
        return None
    value = node[attribute]
    if isinstance(value, bool):
        raise ModuleSchemaError(f"invalid {attribute} value")
    try:
        return int(str(value))
    except ValueError:
        raise ModuleSchemaError(f"invalid {attribute} value")


def parse_batch_size(node: dict, default: int, maximum: int) -> int:
    batch_size = parse_int(node, "BatchSize", required=False)
    if batch_size is None:
        return default
    if not 1 <= batch_size <= maximum:
        raise ModuleSchemaError(f"invalid BatchSize value: {batch_size}")
    return batch_size


def parse_id_list(value, attribute: str) -> list:
    """
    VPC ids, as a comma separated string or a list. Items can be expressions.
    """
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return value
    raise ModuleSchemaError(f"invalid {attribute} value")


def parse_api(value: str) -> tuple:
    """
    Parses ``METHOD /path/segments``, the method and path being separated by a space or a colon.

    :param str value:
    :return: method and path segments
    :rtype: tuple[str, list]
    """
    if not isinstance(value, str):
        raise ModuleSchemaError("invalid api format")
    value = value.strip()
    separators = [index for index in (value.find(" "), value.find(":")) if index > 0]
    if not separators:
        raise ModuleSchemaError("invalid api format")
    split_at = min(separators)
    method = value[:split_at].strip().upper()
    path = value[split_at + 1 :].strip()
    if method == "*":
        method = "ANY"
    if method not in API_METHODS or not path.startswith("/"):
        raise ModuleSchemaError("invalid api format")
    return method, [segment for segment in path.split("/") if segment]


class FunctionConverter:
    """
    Converts the function definitions.
    """

    def __init__(self, context: ProcessingContext):
        self.context = context

    def convert_functions(self, nodes) -> list:
        if nodes is None:
            return []
        if not isinstance(nodes, list):
            self.context.add_error("'Functions' section expected to be a list")
            return []
        functions = []
        names = set()
        for index, node in enumerate(nodes):
            name = node.get("Name") if isinstance(node, dict) else None
            with self.context.at_location(name if isinstance(name, str) and name else index):
                function = self.convert_function(node)
                if function is None:
                    continue
                if function.name in names:
                    raise ModuleStructureError(f"duplicate name '{function.name}'")
                names.add(function.name)
                functions.append(function)
        return functions

    def convert_function(self, node) -> Function | None:
        if not isinstance(node, dict):
            raise ModuleSchemaError("function definition expected to be a map")
        name = node.get("Name")
        if not name:
            raise ModuleSchemaError("missing function name")
        if not isinstance(name, str) or not CLOUDFORMATION_ID_PATTERN.match(name):
            raise ModuleSchemaError("function name is not valid")
        memory = timeout = reserved = None
        with self.context.at_location("Memory"):
            memory = parse_int(node, "Memory")
        with self.context.at_location("Timeout"):
            timeout = parse_int(node, "Timeout")
        with self.context.at_location("ReservedConcurrency"):
            reserved = parse_int(node, "ReservedConcurrency", required=False)
        vpc = None
        if keypresent("VPC", node):
            with self.context.at_location("VPC"):
                vpc = self.convert_vpc(node["VPC"])
        environment = node.get("Environment") or {}
        if not isinstance(environment, dict):
            with self.context.at_location("Environment"):
                self.context.add_error("'Environment' attribute expected to be a map")
            environment = {}
        function = Function(
            name,
            memory=memory,
            timeout=timeout,
            description=node.get("Description"),
            handler=node.get("Handler"),
            runtime=node.get("Runtime"),
            language=node.get("Language"),
            project=node.get("Project"),
            reserved_concurrency=reserved,
            vpc=vpc,
            environment={str(key): value for key, value in environment.items()},
            location=self.context.snapshot(),
        )
        sources = node.get("Sources") or []
        if not isinstance(sources, list):
            with self.context.at_location("Sources"):
                self.context.add_error("'Sources' attribute expected to be a list")
            return function
        for index, source_node in enumerate(sources):
            with self.context.at_location("Sources", index):
                source = self.convert_source(source_node)
                if source is not None:
                    function.sources.append(source)
        return function

    @staticmethod
    def convert_vpc(node) -> dict:
        if (
            not isinstance(node, dict)
            or not keyisset("SubnetIds", node)
            or not keyisset("SecurityGroupIds", node)
        ):
            raise ModuleSchemaError(
                "Lambda function contains a VPC definition that does not include SubnetIds or SecurityGroupIds"
            )
        return {
            "SubnetIds": parse_id_list(node["SubnetIds"], "SubnetIds"),
            "SecurityGroupIds": parse_id_list(
                node["SecurityGroupIds"], "SecurityGroupIds"
            ),
        }

    def convert_source(self, node):
        """
        Converts one source block into exactly one source variant.

        :param dict node:
        :rtype: modulex.model.functions.FunctionSource
        """
        if not node:
            raise ModuleSchemaError("empty event")
        if not isinstance(node, dict):
            raise ModuleSchemaError("source definition expected to be a map")
        kinds = [kind for kind in SOURCE_KINDS if keypresent(kind, node)]
        if not kinds:
            raise ModuleSchemaError("unknown source")
        if len(kinds) > 1:
            raise ModuleSchemaError(
                f"attributes '{kinds[0]}' and '{kinds[1]}' are not allowed at the same time"
            )
        kind = kinds[0]
        location = self.context.snapshot()
        value = node[kind]
        if kind == "Api":
            method, path = parse_api(value)
            integration = node.get("Integration", "RequestResponse")
            if integration not in API_INTEGRATIONS:
                raise ModuleSchemaError("invalid Integration value")
            return ApiSource(
                method,
                path,
                integration=integration,
                operation_name=node.get("OperationName"),
                api_key_required=node.get("ApiKeyRequired"),
                location=location,
            )
        if kind == "SlackCommand":
            if not isinstance(value, str) or not value.strip():
                raise ModuleSchemaError("invalid SlackCommand path")
            return SlackCommandSource(
                [segment for segment in value.split("/") if segment],
                location=location,
            )
        if kind == "Alexa":
            skill_id = value.strip() if isinstance(value, str) else None
            return AlexaSource(
                None if not skill_id or skill_id == "*" else skill_id,
                location=location,
            )
        if kind == "Schedule":
            if not isinstance(value, str) or not value:
                raise ModuleSchemaError("invalid Schedule expression")
            return ScheduleSource(value, name=node.get("Name"), location=location)
        if kind == "Macro":
            if not isinstance(value, str) or not value:
                raise ModuleSchemaError("invalid Macro name")
            return MacroSource(value, location=location)
        if not isinstance(value, str) or not value:
            raise ModuleSchemaError(f"missing {kind} parameter name")
        if kind == "Topic":
            return TopicSource(value, location=location)
        if kind == "S3":
            events = node.get("Events")
            if events is not None and (
                not isinstance(events, list)
                or not all(isinstance(event, str) for event in events)
            ):
                raise ModuleSchemaError("invalid Events value")
            return S3Source(
                value,
                events=events,
                prefix=node.get("Prefix"),
                suffix=node.get("Suffix"),
                location=location,
            )
        if kind == "Sqs":
            return SqsSource(
                value, batch_size=parse_batch_size(node, 10, 10), location=location
            )
        starting_position = node.get("StartingPosition")
        if starting_position is not None and starting_position not in STARTING_POSITIONS:
            raise ModuleSchemaError(
                f"invalid StartingPosition value: {starting_position}"
            )
        source_class = DynamoDBSource if kind == "DynamoDB" else KinesisSource
        return source_class(
            value,
            batch_size=parse_batch_size(node, 100, 100),
            starting_position=starting_position,
            location=location,
        )
