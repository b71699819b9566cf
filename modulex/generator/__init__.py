# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Generation of the CloudFormation template of a resolved module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext
    from modulex.common.settings import CompilerConfig
    from modulex.model.module import Module

import re

from troposphere import Template

from modulex.common import md5_hex
from modulex.common.logging import LOG
from modulex.common.troposphere_tools import add_resource, build_template
from modulex.model.functions import S3Source
from modulex.model.parameters import CloudFormationResourceParameter

from .api import ApiGenerator
from .functions import define_function, define_function_log_group
from .iam import define_module_role
from .outputs import OutputsGenerator
from .parameters import ParametersGenerator, define_interface_metadata
from .resources import ValueRenderer
from .sources import SourcesGenerator

MANIFEST_VERSION = "2018-07-04"
BUCKET_NAME_MAX_LENGTH = 63
INVALID_BUCKET_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def define_bucket_name(
    tier: str, module_name: str, logical_id: str, account_id: str, region: str
) -> str:
    """
    Unique bucket name, ``{tier}-{module}-{logicalid}-{account}-{region}-{hash8}``. The leading
    part is truncated to fit the 63 characters limit of the bucket names.

    :rtype: str
    """
    tier = tier if tier else ""
    account_id = account_id if account_id else ""
    region = region if region else ""
    hash8 = md5_hex(f"{tier}/{module_name}/{logical_id}/{account_id}/{region}")[:8]
    prefix = INVALID_BUCKET_NAME_CHARS.sub(
        "", f"{tier}-{module_name}-{logical_id}".lower()
    )
    suffix = INVALID_BUCKET_NAME_CHARS.sub("", f"-{account_id}-{region}-{hash8}".lower())
    prefix = prefix[: BUCKET_NAME_MAX_LENGTH - len(suffix)].rstrip("-")
    return f"{prefix}{suffix}"


def define_manifest(module: Module) -> dict:
    return {
        "Version": MANIFEST_VERSION,
        "ModuleName": module.name,
        "ModuleVersion": module.version,
        "Pragmas": module.pragmas,
        "Assets": module.assets,
    }


class ModuleGenerator:
    """
    Builds the template of the module, once the references are resolved.

    :ivar ProcessingContext context:
    :ivar CompilerConfig config:
    :ivar ValueRenderer renderer:
    """

    def __init__(self, context: ProcessingContext, config: CompilerConfig):
        self.context = context
        self.config = config
        self.renderer = ValueRenderer()

    def generate(self, module: Module) -> Template:
        """
        :param Module module:
        :rtype: Template
        """
        template = build_template(module.full_description)
        parameters = ParametersGenerator(
            self.context, template, self.config, self.renderer
        )
        parameters.add_module_parameters()
        template.set_metadata(
            {
                "AWS::CloudFormation::Interface": define_interface_metadata(module),
                "LambdaSharp::Manifest": define_manifest(module),
            }
        )
        self.set_bucket_names(module)

        sources = SourcesGenerator(self.context, template, self.renderer)
        if module.functions:
            add_resource(
                template, define_module_role(module, self.config, self.renderer)
            )
        for function in module.functions:
            with self.context.at_location(*function.location):
                add_resource(
                    template,
                    define_function(function, module, self.config, self.renderer),
                )
                add_resource(template, define_function_log_group(function))
                try:
                    sources.add_function_sources(function)
                except ValueError as error:
                    self.context.add_error(str(error))
        parameters.add_parameters(
            module, sources.bucket_notifications, sources.bucket_dependencies
        )
        ApiGenerator(template, self.context).generate(module, sources.routes)
        OutputsGenerator(self.context, template, self.renderer).add_outputs(module)
        LOG.info(
            f"{module.name} - {len(template.resources)} resources, "
            f"{len(template.outputs)} outputs"
        )
        return template

    def set_bucket_names(self, module: Module) -> None:
        """
        Names the buckets the S3 sources of the functions use, so the notifications set on the
        bucket do not create a circular dependency with the function permissions.
        The references to these buckets are replaced with the literal name and ARN.
        """
        buckets = {}
        for function in module.functions:
            for source in function.sources:
                if isinstance(source, S3Source) and isinstance(
                    source.parameter, CloudFormationResourceParameter
                ):
                    buckets[source.parameter.full_name] = source.parameter
        for bucket in buckets.values():
            if bucket.resource.type_name != "AWS::S3::Bucket":
                continue
            name = bucket.resource.properties.get("BucketName")
            if name is None:
                name = define_bucket_name(
                    self.config.tier,
                    module.name,
                    bucket.logical_id,
                    self.config.aws_account_id,
                    self.config.aws_region,
                )
                bucket.resource.properties["BucketName"] = name
            elif not isinstance(name, str):
                LOG.warning(
                    f"{bucket.full_name} - BucketName is not a literal. Cannot back-patch it"
                )
                continue
            bucket.generated_name = name
            bucket.reference = name
            self.renderer.set_literal(bucket.logical_id, name, f"arn:aws:s3:::{name}")
            LOG.debug(f"{bucket.full_name} - bucket name set to {name}")
