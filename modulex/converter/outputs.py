# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Conversion of the Outputs section.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.common.context import ProcessingContext

from compose_x_common.compose_x_common import keyisset, keypresent

from modulex.common import CLOUDFORMATION_ID_PATTERN
from modulex.exceptions import ModuleReferenceError, ModuleSchemaError
from modulex.model.outputs import CustomResourceHandlerOutput, ExportOutput, MacroOutput

OUTPUT_KINDS = ("Export", "CustomResource", "Macro")


class OutputConverter:
    def __init__(self, context: ProcessingContext, function_names: list):
        self.context = context
        self.function_names = function_names

    def convert_outputs(self, nodes) -> list:
        if nodes is None:
            return []
        if not isinstance(nodes, list):
            self.context.add_error("'Outputs' section expected to be a list")
            return []
        outputs = []
        for index, node in enumerate(nodes):
            with self.context.at_location(index):
                output = self.convert_output(node)
                if output is not None:
                    outputs.append(output)
        return outputs

    def convert_output(self, node):
        if not isinstance(node, dict):
            raise ModuleSchemaError("output definition expected to be a map")
        kinds = [kind for kind in OUTPUT_KINDS if keypresent(kind, node)]
        if not kinds:
            raise ModuleSchemaError("unknown output type")
        if len(kinds) > 1:
            raise ModuleSchemaError(
                f"attributes '{kinds[0]}' and '{kinds[1]}' are not allowed at the same time"
            )
        kind = kinds[0]
        name = node[kind]
        location = self.context.snapshot()
        if kind == "Export":
            if not isinstance(name, str) or not CLOUDFORMATION_ID_PATTERN.match(name):
                raise ModuleSchemaError("export name is not valid")
            return ExportOutput(
                name,
                node.get("Value", {"Ref": name}),
                description=node.get("Description"),
                location=location,
            )
        if not isinstance(name, str) or not name:
            raise ModuleSchemaError(f"missing {kind} name")
        if not keyisset("Handler", node):
            raise ModuleSchemaError("missing Handler")
        if node["Handler"] not in self.function_names:
            raise ModuleReferenceError(f"could not find function '{node['Handler']}'")
        if kind == "CustomResource":
            return CustomResourceHandlerOutput(
                name,
                node["Handler"],
                description=node.get("Description"),
                location=location,
            )
        return MacroOutput(
            name, node["Handler"], description=node.get("Description"), location=location
        )
