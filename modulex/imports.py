# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Resolution of the imports from the AWS SSM parameter store.

All the keys and prefixes requested during the conversion are fetched in a single batch,
then spliced back into the module as typed parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig
    from modulex.model.module import Module

import re
from typing import NamedTuple

import boto3
from botocore.exceptions import ClientError

from modulex.common.logging import LOG
from modulex.exceptions import ImportResolutionError, ModuleSchemaError
from modulex.model.parameters import (
    CollectionParameter,
    ImportInputParameter,
    ImportParameter,
    ReferencedResourceParameter,
    SecretParameter,
    ValueParameter,
)

IMPORT_PATTERN = re.compile(r"^/?[a-zA-Z][a-zA-Z0-9_]*(/[a-zA-Z][a-zA-Z0-9_]*)*/?$")
STRING_TYPE = "String"
STRING_LIST_TYPE = "StringList"
SECURE_STRING_TYPE = "SecureString"
GET_PARAMETERS_MAX_NAMES = 10


class ResolvedImport(NamedTuple):
    key: str
    type: str
    value: str


def qualify_import_key(key, tier: str = None) -> str:
    """
    Validates the import key. Keys without leading / are relative to the tier.

    :param str key: i.e. Other/Value, /prod/Other/ or /prod/Other/Value
    :param str tier: deployment tier
    :return: the absolute key
    :rtype: str
    :raises ModuleSchemaError: when the key is not valid
    """
    if not isinstance(key, str) or not IMPORT_PATTERN.match(key):
        raise ModuleSchemaError("import value is invalid")
    if key.startswith("/"):
        return key
    if not tier:
        raise ModuleSchemaError(f"relative import '{key}' requires a deployment tier")
    return f"/{tier}/{key}"


class ImportStore:
    """
    Backing store of the imports, the AWS SSM parameter store.

    :ivar set pending: keys and prefixes (ending with /) to resolve
    :ivar dict resolved: key -> ResolvedImport
    :ivar dict prefixes: prefix -> list of ResolvedImport found under it
    """

    def __init__(self, session=None, client=None):
        self.session = session
        self._client = client
        self.pending = set()
        self.resolved = {}
        self.prefixes = {}
        self._missing = set()

    @property
    def client(self):
        if self._client is None:
            if self.session is None:
                self.session = boto3.session.Session()
            self._client = self.session.client("ssm")
        return self._client

    def add(self, key: str) -> None:
        self.pending.add(key)

    @property
    def missing_imports(self) -> list:
        return sorted(self._missing)

    def batch_resolve_imports(self) -> None:
        """
        Fetches all the pending prefixes and keys. Keys found under a prefix are not fetched again.
        """
        if not self.pending:
            return
        prefixes = sorted(key for key in self.pending if key.endswith("/"))
        keys = sorted(key for key in self.pending if not key.endswith("/"))
        LOG.info(
            f"Resolving {len(keys)} imports and {len(prefixes)} import prefixes"
        )
        try:
            for prefix in prefixes:
                self.fetch_prefix(prefix)
            keys = [key for key in keys if key not in self.resolved]
            for index in range(0, len(keys), GET_PARAMETERS_MAX_NAMES):
                self.fetch_keys(keys[index : index + GET_PARAMETERS_MAX_NAMES])
        except ClientError as error:
            LOG.error(error)
            raise ImportResolutionError(
                f"failed to resolve imports: {error.response['Error']['Message']}"
            )
        for key in keys:
            if key not in self.resolved:
                self._missing.add(key)
        for prefix in prefixes:
            if not self.prefixes.get(prefix):
                self._missing.add(prefix)
        self.pending.clear()

    def fetch_prefix(self, prefix: str) -> None:
        found = []
        paginator = self.client.get_paginator("get_parameters_by_path")
        for page in paginator.paginate(
            Path=prefix.rstrip("/") or "/", Recursive=True, WithDecryption=False
        ):
            for parameter in page["Parameters"]:
                resolved = ResolvedImport(
                    parameter["Name"], parameter["Type"], parameter["Value"]
                )
                self.resolved[resolved.key] = resolved
                found.append(resolved)
        self.prefixes[prefix] = sorted(found, key=lambda item: item.key)

    def fetch_keys(self, keys: list) -> None:
        parameters_r = self.client.get_parameters(Names=keys, WithDecryption=False)
        for parameter in parameters_r["Parameters"]:
            self.resolved[parameter["Name"]] = ResolvedImport(
                parameter["Name"], parameter["Type"], parameter["Value"]
            )

    def try_get_value(self, key: str) -> ResolvedImport | None:
        return self.resolved.get(key)

    def try_get_values(self, prefix: str) -> list | None:
        return self.prefixes.get(prefix)


class ImportResolver:
    """
    Splices the resolved imports into the module parameters.
    """

    def __init__(
        self, context: ProcessingContext, config: CompilerConfig, store: ImportStore
    ):
        self.context = context
        self.config = config
        self.store = store

    def resolve(self, module: Module) -> None:
        try:
            self.store.batch_resolve_imports()
        except ImportResolutionError as error:
            self.context.add_error(error.args[0], ImportResolutionError)
            return
        self.resolve_parameters(module.parameters, None, module)
        for parameter in module.iter_parameters():
            if isinstance(parameter, ImportInputParameter):
                self.resolve_input(parameter)
            if parameter.resource and parameter.resource.service_token_import:
                self.resolve_service_token(parameter)

    def resolve_parameters(self, parameters: list, parent, module: Module) -> None:
        for parameter in list(parameters):
            if isinstance(parameter, ImportParameter):
                with self.context.at_location(*parameter.location):
                    resolved = self.materialize(parameter)
                if resolved is None:
                    continue
                if parent is None:
                    module.parameters[module.parameters.index(parameter)] = resolved
                else:
                    parent.replace_child(parameter, resolved)
                parameter = resolved
            self.resolve_parameters(parameter.parameters, parameter, module)

    def materialize(self, parameter: ImportParameter):
        """
        Replaces the import placeholder with the parameter matching the imported value(s).

        :param ImportParameter parameter:
        :rtype: ModuleParameter
        """
        key = parameter.import_key
        if key.endswith("/"):
            values = self.store.try_get_values(key)
            if not values:
                self.context.add_reference_error("could not find import")
                return None
            node = CollectionParameter(parameter.name)
            parameter.copy_attributes_to(node)
            self.build_tree(node, key, values, parameter)
            return node
        resolved = self.store.try_get_value(key)
        if resolved is None:
            self.context.add_reference_error(f"import parameter '{key}' not found")
            return None
        materialized = self.typed_parameter(parameter.name, resolved, parameter)
        if materialized is None:
            return None
        return parameter.copy_attributes_to(materialized)

    def build_tree(self, node, prefix: str, values: list, placeholder) -> None:
        """
        Rebuilds the nested parameters from the keys found under the prefix, grouped by path segment.
        """
        groups = {}
        for resolved in values:
            relative = resolved.key[len(prefix) :].strip("/")
            if not relative:
                continue
            segment = relative.split("/", 1)[0]
            groups.setdefault(segment, []).append(resolved)
        for segment in sorted(groups):
            child_key = f"{prefix}{segment}"
            leaf = self.store.try_get_value(child_key)
            child = None
            if leaf is not None:
                child = self.typed_parameter(segment, leaf, placeholder)
            if child is None:
                child = ValueParameter(segment, value="")
            child.location = node.location
            node.add_child(child)
            nested = [item for item in groups[segment] if item.key != child_key]
            if nested:
                self.build_tree(child, f"{child_key}/", nested, placeholder)

    def typed_parameter(self, name: str, resolved: ResolvedImport, placeholder):
        if resolved.type == STRING_TYPE:
            if placeholder.resource is not None:
                return ReferencedResourceParameter(
                    name, arns=[resolved.value], resource=placeholder.resource
                )
            return ValueParameter(name, value=resolved.value)
        if resolved.type == STRING_LIST_TYPE:
            if placeholder.resource is not None:
                return ReferencedResourceParameter(
                    name,
                    arns=resolved.value.split(","),
                    resource=placeholder.resource,
                )
            return ValueParameter(name, values=resolved.value.split(","))
        if resolved.type == SECURE_STRING_TYPE:
            return SecretParameter(
                name,
                secret=resolved.value,
                encryption_context={"PARAMETER_ARN": self.parameter_arn(resolved.key)},
            )
        self.context.add_reference_error(
            f"unrecognized import type '{resolved.type}' for import key '{resolved.key}'"
        )
        return None

    def parameter_arn(self, key: str) -> str:
        return f"arn:aws:ssm:{self.config.aws_region}:{self.config.aws_account_id}:parameter{key}"

    def resolve_input(self, parameter: ImportInputParameter) -> None:
        with self.context.at_location(*parameter.location):
            resolved = self.store.try_get_value(parameter.import_key)
            if resolved is None:
                self.context.add_reference_error(
                    f"import parameter '{parameter.import_key}' not found"
                )
                return
            if resolved.type == STRING_LIST_TYPE:
                parameter.input_type = "CommaDelimitedList"
            elif resolved.type == SECURE_STRING_TYPE:
                parameter.input_type = "Secret"
                parameter.no_echo = True
            elif resolved.type != STRING_TYPE:
                self.context.add_reference_error(
                    f"unrecognized import type '{resolved.type}' for import key '{resolved.key}'"
                )
                return
            parameter.default = resolved.value

    def resolve_service_token(self, parameter) -> None:
        resource = parameter.resource
        with self.context.at_location(*parameter.location):
            resolved = self.store.try_get_value(resource.service_token_import)
            if resolved is None:
                self.context.add_reference_error(
                    "unable to find custom resource handler topic"
                )
                return
            resource.properties["ServiceToken"] = resolved.value
