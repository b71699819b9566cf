# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Conversion of the Parameters and Inputs sections into parameter variants.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig
    from modulex.imports import ImportStore

from copy import deepcopy

from compose_x_common.compose_x_common import keyisset, keypresent
from troposphere import If, Ref

from modulex.common import CLOUDFORMATION_ID_PATTERN
from modulex.common.logging import LOG
from modulex.converter.allow import expand_allow
from modulex.exceptions import (
    ModuleReferenceError,
    ModuleSchemaError,
    ModuleStructureError,
)
from modulex.imports import qualify_import_key
from modulex.model.parameters import (
    ALL_FUNCTIONS_SCOPE,
    CloudFormationResourceParameter,
    CollectionParameter,
    ImportInputParameter,
    ImportParameter,
    PackageParameter,
    ReferencedResourceParameter,
    Resource,
    SecretParameter,
    ValueInputParameter,
    ValueParameter,
)
from modulex.resource_mapping import (
    CUSTOM_RESOURCE_TYPE,
    arn_reference,
    get_resource_class,
)

EXCLUSIVE_ATTRIBUTES = (
    ("Secret", ("Resource", "Values", "Value", "Package", "Import")),
    ("Values", ("EncryptionContext", "Value", "Package", "Import")),
    ("Value", ("EncryptionContext", "Package", "Import")),
    ("Package", ("Resource", "EncryptionContext", "Import")),
    ("Import", ("EncryptionContext",)),
)
INPUT_CONSTRAINTS = (
    "ConstraintDescription",
    "AllowedPattern",
    "AllowedValues",
    "MinLength",
    "MaxLength",
    "MinValue",
    "MaxValue",
)
REFERENCED_RESOURCE_TYPE = "AWS"
PACKAGE_LOADER_HANDLER = "LambdaSharp"
PACKAGE_LOADER_TYPE = "S3PackageLoader"


def check_exclusive_attributes(node: dict, pairs=EXCLUSIVE_ATTRIBUTES) -> list:
    """
    :param dict node: parameter definition
    :return: the error messages for every pair of mutually exclusive attributes present
    :rtype: list[str]
    """
    messages = []
    for attribute, conflicts in pairs:
        if not keypresent(attribute, node):
            continue
        for conflict in conflicts:
            if keypresent(conflict, node):
                messages.append(
                    f"attributes '{attribute}' and '{conflict}' are not allowed at the same time"
                )
    return messages


def convert_scope(scope):
    """
    :param scope: "all", "*", comma separated function names, or list of function names
    :return: None, "all" or list of function names
    """
    if scope is None:
        return None
    if isinstance(scope, str):
        if scope.strip() in (ALL_FUNCTIONS_SCOPE, "*"):
            return ALL_FUNCTIONS_SCOPE
        return [name.strip() for name in scope.split(",") if name.strip()]
    if isinstance(scope, list) and all(isinstance(name, str) for name in scope):
        if ALL_FUNCTIONS_SCOPE in scope or "*" in scope:
            return ALL_FUNCTIONS_SCOPE
        return scope
    raise ModuleSchemaError("invalid Scope value")


def to_list(value, attribute: str) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise ModuleSchemaError(f"invalid {attribute} value")


def is_intrinsic(value) -> bool:
    return isinstance(value, dict) and len(value) == 1 and (
        "Ref" in value or next(iter(value)).startswith("Fn::")
    )


class ParameterConverter:
    """
    Converts the parameter definitions, recursively.

    :ivar ProcessingContext context:
    :ivar CompilerConfig config:
    :ivar ImportStore import_store: store the imports are queued into
    """

    def __init__(
        self,
        context: ProcessingContext,
        config: CompilerConfig,
        import_store: ImportStore,
    ):
        self.context = context
        self.config = config
        self.import_store = import_store

    def queue_import(self, key: str) -> str:
        qualified = qualify_import_key(key, self.config.tier)
        self.import_store.add(qualified)
        return qualified

    def queue_handler_topic(self, handler: str, type_name: str) -> str:
        """
        Queues the import of the SNS topic of a custom resource handler,
        published by the handler module at ``/{tier}/{Handler}/{Type}CustomResourceTopic``
        """
        if not self.config.tier:
            raise ModuleSchemaError(
                f"custom resource {handler}::{type_name} requires a deployment tier"
            )
        return self.queue_import(
            f"/{self.config.tier}/{handler}/{type_name}CustomResourceTopic"
        )

    def convert_parameters(self, nodes, parent=None) -> list:
        """
        :param list nodes: the parameters definitions
        :param ModuleParameter parent:
        :return: the converted parameters
        :rtype: list
        """
        if nodes is None:
            return []
        if not isinstance(nodes, list):
            self.context.add_error("'Parameters' section expected to be a list")
            return []
        parameters = []
        names = set()
        for index, node in enumerate(nodes):
            name = node.get("Name") if isinstance(node, dict) else None
            with self.context.at_location(
                name if isinstance(name, str) and name else index
            ):
                parameter = self.convert_parameter(node, parent)
                if parameter is None:
                    continue
                if parameter.name in names:
                    raise ModuleStructureError(f"duplicate name '{parameter.name}'")
                names.add(parameter.name)
                parameters.append(parameter)
        return parameters

    def convert_parameter(self, node, parent=None):
        """
        Dispatches on the value attribute of the parameter.

        :param dict node:
        :param ModuleParameter parent:
        :return: the parameter, None when the definition is invalid
        """
        if not isinstance(node, dict):
            raise ModuleSchemaError("parameter definition expected to be a map")
        name = node.get("Name")
        if not name:
            raise ModuleSchemaError("missing parameter name")
        if not isinstance(name, str) or not CLOUDFORMATION_ID_PATTERN.match(name):
            raise ModuleSchemaError("parameter name is not valid")
        conflicts = check_exclusive_attributes(node)
        for message in conflicts:
            self.context.add_error(message)
        if conflicts:
            return None
        common = {
            "parent": parent,
            "description": node.get("Description"),
            "scope": convert_scope(node.get("Scope")),
            "export": node.get("Export"),
            "location": self.context.snapshot(),
        }
        if keypresent("Secret", node):
            parameter = self.convert_secret(name, node, common)
        elif keypresent("Values", node):
            parameter = self.convert_values(name, node, common)
        elif keypresent("Package", node):
            parameter = self.convert_package(name, node, common, parent)
        elif keypresent("Import", node):
            parameter = self.convert_import(name, node, common)
        elif keypresent("Value", node):
            parameter = self.convert_value(name, node, common)
        elif keypresent("Resource", node):
            with self.context.at_location("Resource"):
                resource = self.convert_resource(node["Resource"], managed=True)
            if resource is None:
                return None
            parameter = CloudFormationResourceParameter(name, resource, **common)
            parameter.set_reference()
        elif keypresent("Parameters", node):
            parameter = CollectionParameter(name, **common)
        else:
            raise ModuleSchemaError(
                "parameter must define one of Value, Values, Secret, Package, Import, Resource or Parameters"
            )
        if parameter is None:
            return None
        if keypresent("Parameters", node):
            self.convert_nested(parameter, node)
        return parameter

    def convert_nested(self, parameter, node: dict) -> None:
        if keypresent("Values", node) and keypresent("Resource", node):
            self.context.add_error(
                "multiple values with a resource cannot have nested parameters"
            )
            return
        if parameter.export:
            self.context.add_error("exporting Parameters is not supported")
        with self.context.at_location("Parameters"):
            for child in self.convert_parameters(node["Parameters"], parent=parameter):
                parameter.add_child(child)

    def convert_secret(self, name: str, node: dict, common: dict):
        if common["export"]:
            raise ModuleSchemaError("exporting Secret is not supported")
        secret = node["Secret"]
        if not isinstance(secret, str) or not secret:
            raise ModuleSchemaError("secret has no value")
        context = node.get("EncryptionContext")
        if context is not None and (
            not isinstance(context, dict)
            or not all(isinstance(value, str) for value in context.values())
        ):
            raise ModuleSchemaError("EncryptionContext expected to be a map of strings")
        return SecretParameter(name, secret, encryption_context=context, **common)

    def convert_values(self, name: str, node: dict, common: dict):
        values = node["Values"]
        if not isinstance(values, list):
            raise ModuleSchemaError("'Values' attribute expected to be a list")
        if not keypresent("Resource", node):
            return ValueParameter(name, values=values, **common)
        with self.context.at_location("Resource"):
            resource = self.convert_resource(node["Resource"], managed=False, name=name)
        if resource is None:
            return None
        collection = CollectionParameter(name, **common)
        for index, value in enumerate(values, start=1):
            with self.context.at_location("Values", index - 1):
                self.validate_resource_arn(value)
            collection.add_child(
                ReferencedResourceParameter(
                    f"Index{index}",
                    arns=[value],
                    resource=deepcopy(resource),
                    location=common["location"],
                )
            )
        return collection

    def convert_value(self, name: str, node: dict, common: dict):
        value = node["Value"]
        if not keypresent("Resource", node):
            return ValueParameter(name, value=value, **common)
        with self.context.at_location("Resource"):
            resource = self.convert_resource(node["Resource"], managed=False, name=name)
        if resource is None:
            return None
        with self.context.at_location("Value"):
            self.validate_resource_arn(value)
        return ReferencedResourceParameter(name, arns=[value], resource=resource, **common)

    @staticmethod
    def validate_resource_arn(value) -> None:
        """
        A referenced resource must be an ARN, a wildcard, or an expression resolved later on.
        """
        if is_intrinsic(value):
            return
        if not isinstance(value, str):
            raise ModuleSchemaError("resource reference must be a literal value")
        if not value.startswith("arn:") and value != "*":
            raise ModuleSchemaError(
                f"resource name must be a valid ARN or wildcard: {value}"
            )

    def convert_package(self, name: str, node: dict, common: dict, parent):
        if parent is not None:
            raise ModuleSchemaError("parameter package cannot be nested")
        if common["export"]:
            raise ModuleSchemaError("exporting Package is not supported")
        package = node["Package"]
        if not isinstance(package, dict):
            raise ModuleSchemaError("'Package' attribute expected to be a map")
        with self.context.at_location("Package"):
            if not keyisset("Files", package):
                raise ModuleSchemaError("missing 'Files' attribute")
            if not keyisset("Bucket", package):
                raise ModuleSchemaError("missing 'Bucket' attribute")
        parameter = PackageParameter(
            name,
            files=package["Files"],
            bucket=package["Bucket"],
            prefix=package.get("Prefix"),
            **common,
        )
        parameter.resource = Resource(f"Custom::{PACKAGE_LOADER_HANDLER}{PACKAGE_LOADER_TYPE}")
        parameter.resource.service_token_import = self.queue_handler_topic(
            PACKAGE_LOADER_HANDLER, PACKAGE_LOADER_TYPE
        )
        return parameter

    def convert_import(self, name: str, node: dict, common: dict):
        with self.context.at_location("Import"):
            key = self.queue_import(node["Import"])
        resource = None
        if keypresent("Resource", node):
            with self.context.at_location("Resource"):
                resource = self.convert_resource(node["Resource"], managed=False, name=name)
        return ImportParameter(name, import_key=key, resource=resource, **common)

    def convert_resource(self, node, managed: bool, name: str = None):
        """
        :param dict node: the Resource attribute
        :param bool managed: whether the resource is created by the module
        :param str name: name of the parameter, for referenced resources
        :return: the resource, None when invalid
        :rtype: Resource
        """
        if not isinstance(node, dict):
            raise ModuleSchemaError("'Resource' attribute expected to be a map")
        type_name = node.get("Type")
        if not type_name:
            if managed:
                raise ModuleSchemaError("missing Type field")
            type_name = REFERENCED_RESOURCE_TYPE
        if not isinstance(type_name, str):
            raise ModuleSchemaError("invalid Type value")
        properties = node.get("Properties")
        if properties is not None and not isinstance(properties, dict):
            raise ModuleSchemaError("'Properties' attribute expected to be a map")
        if not managed and properties:
            raise ModuleSchemaError(f"referenced resource '{name}' cannot set properties")
        allow = []
        depends_on = []
        with self.context.at_location("Allow"):
            allow = expand_allow(node.get("Allow"), type_name, self.context)
        with self.context.at_location("DependsOn"):
            depends_on = to_list(node.get("DependsOn"), "DependsOn")
        resource = Resource(
            type_name,
            properties=deepcopy(properties) if properties else {},
            allow=allow,
            depends_on=depends_on,
            arn_attribute=node.get("ArnAttribute"),
        )
        if managed:
            with self.context.at_location("Type"):
                self.validate_resource_type(resource)
        return resource

    def validate_resource_type(self, resource: Resource) -> None:
        """
        Validates AWS types against troposphere, and normalizes the custom resource types
        following the ``{Handler}::{Type}`` convention.

        :raises ModuleXBaseException: when the type is not supported
        """
        type_name = resource.type_name
        if type_name == CUSTOM_RESOURCE_TYPE or type_name.startswith("Custom::"):
            if not keyisset("ServiceToken", resource.properties):
                raise ModuleSchemaError(
                    "missing ServiceToken in custom resource properties"
                )
            return
        if type_name.startswith("AWS::"):
            resource_class = get_resource_class(type_name)
            if resource_class is None:
                raise ModuleReferenceError(f"unsupported resource type: {type_name}")
            for property_name in resource.properties:
                if property_name not in resource_class.props:
                    self.context.add_error(
                        f"unknown property '{property_name}' for type '{type_name}'"
                    )
            return
        parts = type_name.split("::")
        if len(parts) != 2:
            raise ModuleSchemaError(
                "custom resource type must have format {MODULE}::{TYPE}"
            )
        handler, suffix = parts
        if not CLOUDFORMATION_ID_PATTERN.match(handler):
            raise ModuleSchemaError(f"custom resource prefix must be alphanumeric: {handler}")
        if not CLOUDFORMATION_ID_PATTERN.match(suffix):
            raise ModuleSchemaError(f"custom resource suffix must be alphanumeric: {suffix}")
        resource.type_name = f"Custom::{handler}{suffix}"
        if not keyisset("ServiceToken", resource.properties):
            resource.service_token_import = self.queue_handler_topic(handler, suffix)
            LOG.debug(f"Queued handler topic {resource.service_token_import} for {type_name}")

    def convert_inputs(self, nodes) -> list:
        """
        :param list nodes: definitions of the Inputs section
        :return: the input parameters
        :rtype: list
        """
        if nodes is None:
            return []
        if not isinstance(nodes, list):
            self.context.add_error("'Inputs' section expected to be a list")
            return []
        inputs = []
        for index, node in enumerate(nodes):
            label = None
            if isinstance(node, dict):
                label = node.get("Input") or node.get("Name")
            with self.context.at_location(label if isinstance(label, str) else index):
                parameter = self.convert_input(node)
                if parameter is not None:
                    inputs.append(parameter)
        return inputs

    def convert_input(self, node):
        if not isinstance(node, dict):
            raise ModuleSchemaError("input definition expected to be a map")
        conflicts = check_exclusive_attributes(node, (("Input", ("Import",)),))
        if conflicts:
            raise ModuleSchemaError(conflicts[0])
        common = {
            "description": node.get("Description"),
            "scope": convert_scope(node.get("Scope")),
            "section": node.get("Section"),
            "label": node.get("Label"),
            "no_echo": bool(node.get("NoEcho", False)),
            "constraints": {
                key: node[key] for key in INPUT_CONSTRAINTS if keypresent(key, node)
            },
            "location": self.context.snapshot(),
        }
        if keypresent("Import", node):
            with self.context.at_location("Import"):
                key = self.queue_import(node["Import"])
            name = node.get("Name") or key.rstrip("/").split("/")[-1]
            self.validate_input_name(name)
            resource = None
            if keypresent("Resource", node):
                with self.context.at_location("Resource"):
                    resource = self.convert_resource(node["Resource"], managed=False, name=name)
            return ImportInputParameter(name, import_key=key, resource=resource, **common)
        name = node.get("Input")
        if not name:
            raise ModuleSchemaError("missing Input name")
        self.validate_input_name(name)
        input_type = node.get("Type", "String")
        if input_type == "Secret":
            common["no_echo"] = True
        default = node.get("Default")
        if default is not None and not isinstance(default, (str, int, float)):
            raise ModuleSchemaError("Default expected to be a literal value")
        resource = None
        if keypresent("Resource", node):
            with self.context.at_location("Resource"):
                resource = self.convert_resource(
                    node["Resource"], managed=default is not None, name=name
                )
        parameter = ValueInputParameter(
            name,
            input_type=input_type,
            default=str(default) if default is not None else None,
            resource=resource,
            **common,
        )
        if parameter.is_conditional_resource:
            parameter.reference = If(
                parameter.condition_name,
                arn_reference(
                    parameter.instance_logical_id,
                    resource.type_name,
                    resource.arn_attribute,
                ),
                Ref(parameter.logical_id),
            )
        return parameter

    @staticmethod
    def validate_input_name(name) -> None:
        if not isinstance(name, str) or not CLOUDFORMATION_ID_PATTERN.match(name):
            raise ModuleSchemaError("input name is not valid")
