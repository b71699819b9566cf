# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Mapping of the AWS resource types to their troposphere classes, and ARN handling per type.
"""

from __future__ import annotations

import pkgutil
from functools import lru_cache
from importlib import import_module

import troposphere
from troposphere import AWSObject, GetAtt, Join, Ref

from modulex.common import NONALPHANUM
from modulex.common.logging import LOG

CUSTOM_RESOURCE_TYPE = "AWS::CloudFormation::CustomResource"

# Types for which !Ref returns the ARN
REF_ARN_TYPES = (
    "AWS::ApplicationAutoScaling::ScalingPolicy",
    "AWS::AutoScaling::ScalingPolicy",
    "AWS::Batch::ComputeEnvironment",
    "AWS::Batch::JobDefinition",
    "AWS::Batch::JobQueue",
    "AWS::CertificateManager::Certificate",
    "AWS::CloudFormation::Stack",
    "AWS::CloudFormation::WaitCondition",
    "AWS::ECS::Service",
    "AWS::ECS::TaskDefinition",
    "AWS::ElasticLoadBalancingV2::Listener",
    "AWS::ElasticLoadBalancingV2::ListenerRule",
    "AWS::ElasticLoadBalancingV2::LoadBalancer",
    "AWS::ElasticLoadBalancingV2::TargetGroup",
    "AWS::IAM::ManagedPolicy",
    "AWS::Lambda::Alias",
    "AWS::Lambda::Version",
    "AWS::OpsWorks::UserProfile",
    "AWS::SNS::Topic",
    "AWS::StepFunctions::Activity",
    "AWS::StepFunctions::StateMachine",
)


@lru_cache()
def get_resource_types_mapping() -> dict:
    """
    Imports all the troposphere modules once and maps the resource types to their class.

    :return: resource type -> troposphere AWSObject class
    :rtype: dict
    """
    mapping = {}
    for module_info in pkgutil.iter_modules(troposphere.__path__):
        if module_info.name.startswith("_") or module_info.name in (
            "template_generator",
            "openstack",
            "utils",
            "validators",
        ):
            continue
        try:
            res_module = import_module(f"troposphere.{module_info.name}")
        except ImportError as error:
            LOG.debug(f"Skipping troposphere.{module_info.name}: {error}")
            continue
        for attribute in vars(res_module).values():
            if (
                isinstance(attribute, type)
                and issubclass(attribute, AWSObject)
                and isinstance(getattr(attribute, "resource_type", None), str)
                and attribute.__module__ == res_module.__name__
            ):
                mapping.setdefault(attribute.resource_type, attribute)
    LOG.debug(f"Mapped {len(mapping)} AWS resource types")
    return mapping


def get_resource_class(type_name: str):
    """
    :param str type_name: i.e. AWS::SNS::Topic
    :return: the troposphere class for the type, None if not known
    """
    return get_resource_types_mapping().get(type_name)


def is_supported_type(type_name: str) -> bool:
    return get_resource_class(type_name) is not None


@lru_cache()
def custom_resource_class(type_name: str):
    """
    Creates a troposphere class for a custom resource type, accepting any property

    :param str type_name: i.e. Custom::HandlerType
    """
    from troposphere.cloudformation import CustomResource

    return type(
        NONALPHANUM.sub("", type_name),
        (CustomResource,),
        {"resource_type": type_name},
    )


def arn_reference(logical_id: str, type_name: str, arn_attribute: str = None):
    """
    Expression returning the ARN of a resource of the stack.

    :param str logical_id:
    :param str type_name:
    :param str arn_attribute: overrides the default ARN attribute
    :return: Ref or GetAtt
    """
    if arn_attribute:
        return GetAtt(logical_id, arn_attribute)
    if type_name in REF_ARN_TYPES:
        return Ref(logical_id)
    return GetAtt(logical_id, "Arn")


def expand_resource_arns(type_name: str, arn) -> list:
    """
    Returns the IAM resources to grant access to for an ARN, with the sub-resources of
    buckets and tables.

    :param str type_name:
    :param arn: literal or expression
    :rtype: list
    """
    if type_name == "AWS::S3::Bucket":
        return [arn, Join("", [arn, "/*"])] if not isinstance(arn, str) else [arn, f"{arn}/*"]
    if type_name == "AWS::DynamoDB::Table":
        if isinstance(arn, str):
            return [arn, f"{arn}/stream/*", f"{arn}/index/*"]
        return [arn, Join("", [arn, "/stream/*"]), Join("", [arn, "/index/*"])]
    return [arn]
