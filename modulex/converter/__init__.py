# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Conversion of the preprocessed module document into the typed Module model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig
    from modulex.imports import ImportStore

import re

from botocore.exceptions import ClientError

from modulex.common.fixed_point import solve_fixed_point
from modulex.common.logging import LOG
from modulex.exceptions import (
    ModuleReferenceError,
    ModuleSchemaError,
    ModuleStructureError,
)
from modulex.model.module import Module
from modulex.model.parameters import (
    ALL_FUNCTIONS_SCOPE,
    CloudFormationResourceParameter,
    InputParameter,
    ValueParameter,
)

from .functions import FunctionConverter
from .outputs import OutputConverter
from .parameters import ParameterConverter

VERSION_PATTERN = re.compile(r"^\d+\.\d+(\.\d+){0,2}$")
SECRET_ALIAS_PATTERN = re.compile(r"^[0-9a-zA-Z/_\-]+$")
RESERVED_NAMES = (
    "Module",
    "ModuleName",
    "ModuleVersion",
    "ModuleRole",
    "ModuleRestApi",
    "ModuleRestApiRole",
    "ModuleRestApiAccount",
    "ModuleRestApiStage",
    "ModuleIsNotNested",
    "Tier",
    "TierLowercase",
    "DeploymentBucketName",
    "DeploymentPrefix",
    "Secrets",
    "SecretsIsEmpty",
    "Version",
)


def is_managed_resource(parameter) -> bool:
    if isinstance(parameter, CloudFormationResourceParameter):
        return True
    return isinstance(parameter, InputParameter) and parameter.is_conditional_resource


class ModuleConverter:
    """
    Builds the Module from its document, validating every section and collecting all the errors.

    :ivar ProcessingContext context:
    :ivar CompilerConfig config:
    :ivar ImportStore import_store: imports found are queued into it
    :ivar kms_client: used to resolve the KMS key aliases of the Secrets section
    """

    def __init__(
        self,
        context: ProcessingContext,
        config: CompilerConfig,
        import_store: ImportStore,
        kms_client=None,
    ):
        self.context = context
        self.config = config
        self.import_store = import_store
        self.kms_client = kms_client
        self.parameters_converter = ParameterConverter(context, config, import_store)

    def convert(self, document: dict) -> Module:
        """
        :param dict document: the preprocessed module document
        :return: the module, to discard if any error was recorded
        :rtype: Module
        """
        name = document.get("Name")
        if not isinstance(name, str) or not name:
            with self.context.at_location("Name"):
                self.context.add_error("missing module name")
            name = ""
        version = str(document.get("Version", "1.0"))
        if not VERSION_PATTERN.match(version):
            with self.context.at_location("Version"):
                self.context.add_error(
                    "`Version` expected to have format: Major.Minor[.Build[.Revision]]"
                )
        pragmas = document.get("Pragmas") or []
        module = Module(
            name,
            version=version,
            description=document.get("Description"),
            pragmas=pragmas if isinstance(pragmas, list) else [pragmas],
            secrets=self.convert_secrets(document.get("Secrets")),
        )
        with self.context.at_location("Functions"):
            module.functions = FunctionConverter(self.context).convert_functions(
                document.get("Functions")
            )
        with self.context.at_location("Inputs"):
            module.parameters += self.parameters_converter.convert_inputs(
                document.get("Inputs")
            )
        with self.context.at_location("Parameters"):
            module.parameters += self.parameters_converter.convert_parameters(
                document.get("Parameters")
            )
        self.check_names(module)
        self.check_scopes(module)
        self.check_dependencies(module)
        module.parameters.append(
            ValueParameter("Version", value=version, export="Version")
        )
        with self.context.at_location("Outputs"):
            module.outputs = OutputConverter(
                self.context, module.function_names
            ).convert_outputs(document.get("Outputs"))
        if module.functions and not self.config.dead_letter_queue_url:
            self.context.add_error(
                "deploying functions requires a dead-letter queue",
                ModuleReferenceError,
            )
        LOG.info(
            f"Converted module {module.name} - {len(module.functions)} functions,"
            f" {len(list(module.iter_parameters()))} parameters"
        )
        return module

    def convert_secrets(self, secrets) -> list:
        if secrets is None:
            return []
        if not isinstance(secrets, list):
            with self.context.at_location("Secrets"):
                self.context.add_error("'Secrets' section expected to be a list")
            return []
        arns = []
        for index, secret in enumerate(secrets):
            with self.context.at_location("Secrets", index):
                arns.append(self.convert_secret(secret))
        return arns

    def convert_secret(self, secret) -> str:
        """
        :param str secret: KMS key ARN or alias
        :return: the KMS key ARN
        :rtype: str
        """
        if not isinstance(secret, str) or not secret.strip():
            raise ModuleSchemaError("secret has no value")
        secret = secret.strip()
        if secret in ("aws/ssm", "alias/aws/ssm"):
            raise ModuleSchemaError("cannot grant permission to decrypt with aws/ssm")
        if secret.startswith("arn:"):
            region = re.escape(self.config.aws_region or "") or r"[a-z0-9\-]+"
            account = re.escape(self.config.aws_account_id or "") or r"[0-9]{12}"
            if not re.match(
                rf"^arn:aws:kms:{region}:{account}:key/[a-fA-F0-9\-]+$", secret
            ):
                raise ModuleSchemaError(
                    "secret key must be a valid ARN for the current region and account ID"
                )
            return secret
        alias = secret[len("alias/") :] if secret.startswith("alias/") else secret
        if not SECRET_ALIAS_PATTERN.match(alias):
            raise ModuleSchemaError(f"secret key must be a valid alias: {secret}")
        return self.resolve_key_alias(alias)

    def resolve_key_alias(self, alias: str) -> str:
        if self.kms_client is None:
            return f"arn:aws:kms:{self.config.aws_region}:{self.config.aws_account_id}:alias/{alias}"
        try:
            key_r = self.kms_client.describe_key(KeyId=f"alias/{alias}")
            return key_r["KeyMetadata"]["Arn"]
        except ClientError as error:
            LOG.error(error)
            raise ModuleReferenceError(f"failed to resolve key alias: {alias}")

    def check_names(self, module: Module) -> None:
        """
        Logical IDs must be unique across parameters and functions, and not collide with the
        resources generated for the module.
        """
        seen = set(module.function_names)
        for function in module.functions:
            if function.name in RESERVED_NAMES:
                with self.context.at_location(*function.location):
                    self.context.add_error(
                        f"reserved name '{function.name}'", ModuleStructureError
                    )
        for parameter in module.iter_parameters():
            with self.context.at_location(*parameter.location):
                if parameter.logical_id in RESERVED_NAMES:
                    self.context.add_error(
                        f"reserved name '{parameter.name}'", ModuleStructureError
                    )
                elif parameter.logical_id in seen:
                    self.context.add_error(
                        f"duplicate name '{parameter.logical_id}'", ModuleStructureError
                    )
                seen.add(parameter.logical_id)

    def check_scopes(self, module: Module) -> None:
        for parameter in module.iter_parameters():
            if parameter.scope is None or parameter.scope == ALL_FUNCTIONS_SCOPE:
                continue
            with self.context.at_location(*parameter.location, "Scope"):
                for function_name in parameter.scope:
                    if function_name not in module.function_names:
                        self.context.add_reference_error(
                            f"could not find function '{function_name}'"
                        )

    def check_dependencies(self, module: Module) -> None:
        """
        Validates the DependsOn of the resources, and reports the cycles they form.
        """
        table = {parameter.full_name: parameter for parameter in module.iter_parameters()}
        resources = {}
        for parameter in table.values():
            if not is_managed_resource(parameter):
                continue
            valid = []
            with self.context.at_location(*parameter.location, "Resource", "DependsOn"):
                for dependency in parameter.resource.depends_on:
                    target = table.get(dependency)
                    if dependency == parameter.full_name:
                        self.context.add_error(
                            f"dependency cannot be on itself '{dependency}'",
                            ModuleStructureError,
                        )
                    elif target is None:
                        self.context.add_reference_error(
                            f"could not find dependency '{dependency}'"
                        )
                    elif not is_managed_resource(target):
                        self.context.add_error(
                            f"cannot depend on literal parameter '{dependency}'"
                        )
                    else:
                        valid.append(dependency)
            resources[parameter.full_name] = valid

        def rewrite(_name, dependencies, resolved):
            return dependencies, {name for name in dependencies if name not in resolved}

        result = solve_fixed_point(
            {name: deps for name, deps in resources.items() if not deps},
            {name: deps for name, deps in resources.items() if deps},
            rewrite,
        )
        for cycle in result.cycles():
            with self.context.at_location(*table[cycle[0]].location):
                names = ", ".join(f"'{name}'" for name in cycle)
                self.context.add_error(
                    f"circular DependsOn on {names}", ModuleStructureError
                )
