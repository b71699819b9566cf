# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Module class, root of the typed model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .functions import Function
    from .outputs import ModuleOutput
    from .parameters import ModuleParameter

from .parameters import InputParameter, PackageParameter, iter_parameters


class Module:
    """
    Class to represent a module once converted from its document.

    :ivar str name:
    :ivar str version: Major.Minor[.Build[.Revision]]
    :ivar str description:
    :ivar list pragmas:
    :ivar list[str] secrets: KMS key ARNs the functions can decrypt with
    :ivar list[ModuleParameter] parameters: root parameters, inputs included
    :ivar list[Function] functions:
    :ivar list[ModuleOutput] outputs:
    """

    def __init__(
        self,
        name: str,
        version: str = "1.0",
        description: str = None,
        pragmas: list = None,
        secrets: list = None,
    ):
        self.name = name
        self.version = version
        self.description = description
        self.pragmas = pragmas if pragmas else []
        self.secrets = secrets if secrets else []
        self.parameters: list = []
        self.functions: list = []
        self.outputs: list = []

    def __repr__(self):
        return f"Module({self.name}, v{self.version})"

    @property
    def full_description(self) -> str:
        if self.description:
            return f"{self.description} (v{self.version})"
        return f"{self.name} (v{self.version})"

    def iter_parameters(self):
        """Depth-first iteration over all the parameters"""
        return iter_parameters(self.parameters)

    def get_parameter(self, full_name: str) -> ModuleParameter | None:
        for parameter in self.iter_parameters():
            if parameter.full_name == full_name:
                return parameter
        return None

    def get_function(self, name: str) -> Function | None:
        for function in self.functions:
            if function.name == name:
                return function
        return None

    @property
    def inputs(self) -> list:
        return [
            parameter
            for parameter in self.parameters
            if isinstance(parameter, InputParameter)
        ]

    @property
    def function_names(self) -> list:
        return [function.name for function in self.functions]

    @property
    def assets(self) -> list:
        """Artifacts of the functions and of the Package parameters, in the deployment bucket"""
        assets = [function.package_path for function in self.functions]
        for parameter in self.iter_parameters():
            if isinstance(parameter, PackageParameter) and parameter.package_path:
                assets.append(parameter.package_path)
        return assets
