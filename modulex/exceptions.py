#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Custom exceptions for modulex
"""


class ModuleXBaseException(Exception):
    """
    Top class for modulex Exceptions
    """

    def __init__(self, msg, *args):
        super().__init__(msg, *args)


class ModuleSchemaError(ModuleXBaseException):
    """
    Missing required field, mutually exclusive attributes or invalid literal format
    """


class ModuleReferenceError(ModuleXBaseException):
    """
    Missing import, unresolved !Ref / !GetAtt / !Sub, circular dependency or unsupported type
    """


class ModuleStructureError(ModuleXBaseException):
    """
    Duplicate names, reserved name collisions and DependsOn cycles
    """


class ImportResolutionError(ModuleReferenceError):
    """
    Raised when the import backing store cannot be queried
    """


class DeploymentTierSetupError(ModuleXBaseException):
    """
    Exception when the deployment tier is missing one of its prerequisites (bucket, dead-letter queue)
    """


class DeploymentError(ModuleXBaseException):
    """
    Exception when the CloudFormation stack could not be created or updated
    """
