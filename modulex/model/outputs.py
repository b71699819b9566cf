# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Output variants of a module.
"""

from __future__ import annotations


class ModuleOutput:
    kind = None

    def __init__(self, name: str, description: str = None, location: tuple = ()):
        self.name = name
        self.description = description
        self.location = location

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"


class ExportOutput(ModuleOutput):
    """
    Value exported by the stack as ``${AWS::StackName}::{Name}``

    :ivar value: literal or expression
    """

    kind = "Export"

    def __init__(self, name: str, value, **kwargs):
        super().__init__(name, **kwargs)
        self.value = value


class CustomResourceHandlerOutput(ModuleOutput):
    """
    Function handling the custom resources of type ``Custom::{Name}``

    :ivar str handler: function name
    """

    kind = "CustomResource"

    def __init__(self, name: str, handler: str, **kwargs):
        super().__init__(name, **kwargs)
        self.handler = handler


class MacroOutput(ModuleOutput):
    """
    CloudFormation macro handled by a function of the module.
    """

    kind = "Macro"

    def __init__(self, name: str, handler: str, **kwargs):
        super().__init__(name, **kwargs)
        self.handler = handler
