# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Parameter variants of a module.

The set of variants is closed: every stage handling parameters dispatches on these classes
and reports anything else as unsupported.
"""

from __future__ import annotations

from troposphere import Ref

from modulex.common import NESTED_NAME_SEPARATOR, to_env_name, to_logical_id
from modulex.resource_mapping import CUSTOM_RESOURCE_TYPE, arn_reference

ALL_FUNCTIONS_SCOPE = "all"


class Resource:
    """
    AWS resource attached to a parameter, either managed by the module or referenced by ARN.

    :ivar str type_name: resource type, i.e. AWS::SNS::Topic or Custom::HandlerType
    :ivar dict properties: resource properties, possibly holding !Ref / !GetAtt / !Sub
    :ivar list[str] allow: IAM actions, expanded and sorted
    :ivar list[str] depends_on: full names of the parameters the resource depends on
    :ivar str arn_attribute: attribute to use for the ARN instead of the default one
    :ivar str service_token_import: import key of the custom resource handler topic
    """

    def __init__(
        self,
        type_name: str,
        properties: dict = None,
        allow: list = None,
        depends_on: list = None,
        arn_attribute: str = None,
    ):
        self.type_name = type_name
        self.properties = properties if properties is not None else {}
        self.allow = allow if allow else []
        self.depends_on = depends_on if depends_on else []
        self.arn_attribute = arn_attribute
        self.service_token_import = None

    def __repr__(self):
        return f"Resource({self.type_name})"

    @property
    def is_custom(self) -> bool:
        return (
            not self.type_name.startswith("AWS::")
            or self.type_name == CUSTOM_RESOURCE_TYPE
        )


class ModuleParameter:
    """
    Base class for all parameters.

    :ivar str name: name, unique within the parent scope
    :ivar ModuleParameter parent:
    :ivar list[ModuleParameter] parameters: nested parameters
    :ivar reference: literal value, intrinsic function, or resolved expression
    :ivar tuple location: location of the parameter in the document, for errors reported later on
    """

    kind = None
    resource = None

    def __init__(
        self,
        name: str,
        parent: ModuleParameter = None,
        description: str = None,
        scope=None,
        export: str = None,
        location: tuple = (),
    ):
        self.name = name
        self.parent = parent
        self.description = description
        self.scope = scope
        self.export = export
        self.location = location
        self.parameters: list = []
        self.reference = None

    def __repr__(self):
        return f"{type(self).__name__}({self.full_name})"

    @property
    def full_name(self) -> str:
        if self.parent:
            return f"{self.parent.full_name}{NESTED_NAME_SEPARATOR}{self.name}"
        return self.name

    @property
    def logical_id(self) -> str:
        return to_logical_id(self.full_name)

    @property
    def env_name(self) -> str:
        return to_env_name(self.full_name)

    def in_scope(self, function_name: str) -> bool:
        """
        Whether the parameter is exposed to the function. Parameters without scope are exposed
        to all functions.
        """
        if self.scope is None or self.scope == ALL_FUNCTIONS_SCOPE:
            return True
        return function_name in self.scope

    def add_child(self, parameter: ModuleParameter) -> None:
        parameter.parent = self
        self.parameters.append(parameter)

    def replace_child(self, current: ModuleParameter, new: ModuleParameter) -> None:
        index = self.parameters.index(current)
        new.parent = self
        self.parameters[index] = new

    def copy_attributes_to(self, new: ModuleParameter) -> ModuleParameter:
        """
        Copies the common attributes, used when a placeholder is replaced by its resolved variant.
        """
        new.parent = self.parent
        new.description = self.description
        new.scope = self.scope
        new.export = self.export
        new.location = self.location
        for child in self.parameters:
            new.add_child(child)
        return new


class ValueParameter(ModuleParameter):
    """
    Literal value, list of values, or expression computed from other parameters.

    :ivar list values: when defined with ``Values``
    """

    kind = "Value"

    def __init__(self, name: str, value=None, values: list = None, **kwargs):
        super().__init__(name, **kwargs)
        self.values = values
        if values is not None:
            if all(isinstance(item, str) for item in values):
                self.reference = ",".join(values)
            else:
                self.reference = {"Fn::Join": [",", values]}
        else:
            self.reference = value


class CollectionParameter(ModuleParameter):
    """
    Nesting node, only holding child parameters.
    """

    kind = "Collection"

    def __init__(self, name: str, **kwargs):
        super().__init__(name, **kwargs)
        self.reference = ""


class SecretParameter(ModuleParameter):
    """
    KMS encrypted value, decrypted by the function at runtime.

    :ivar str secret: base64 ciphertext
    :ivar dict encryption_context:
    """

    kind = "Secret"

    def __init__(
        self, name: str, secret: str, encryption_context: dict = None, **kwargs
    ):
        super().__init__(name, **kwargs)
        self.secret = secret
        self.encryption_context = encryption_context if encryption_context else {}
        self.reference = secret


class PackageParameter(ModuleParameter):
    """
    Files packaged in a zip and copied into a bucket of the module at deployment.

    :ivar str files: path or glob of the files to package
    :ivar str bucket: full name of the AWS::S3::Bucket parameter to copy the package to
    :ivar str prefix: destination key prefix
    :ivar str package_path: content addressed artifact name, set by the packager
    """

    kind = "Package"

    def __init__(
        self,
        name: str,
        files: str,
        bucket: str,
        prefix: str = None,
        package_path: str = None,
        **kwargs,
    ):
        super().__init__(name, **kwargs)
        self.files = files
        self.bucket = bucket
        self.prefix = prefix if prefix else ""
        self.package_path = package_path
        self.bucket_parameter = None


class ReferencedResourceParameter(ModuleParameter):
    """
    Existing resource(s), addressed by ARN, the functions get permissions on.

    :ivar list arns:
    """

    kind = "ReferencedResource"

    def __init__(self, name: str, arns: list, resource: Resource, **kwargs):
        super().__init__(name, **kwargs)
        self.resource = resource
        self.set_arns(arns)

    def set_arns(self, arns: list) -> None:
        self.arns = list(arns)
        if len(self.arns) == 1:
            self.reference = self.arns[0]
        elif all(isinstance(arn, str) for arn in self.arns):
            self.reference = ",".join(self.arns)
        else:
            self.reference = {"Fn::Join": [",", self.arns]}


class CloudFormationResourceParameter(ModuleParameter):
    """
    Resource created and managed in the module stack.
    """

    kind = "CloudFormationResource"

    def __init__(self, name: str, resource: Resource, **kwargs):
        super().__init__(name, **kwargs)
        self.resource = resource
        self.generated_name = None

    def set_reference(self) -> None:
        """
        Sets the reference to the ARN of the resource, to call once the parent is known.
        """
        if self.resource.is_custom:
            self.reference = Ref(self.logical_id)
        else:
            self.reference = arn_reference(
                self.logical_id, self.resource.type_name, self.resource.arn_attribute
            )


class ImportParameter(ModuleParameter):
    """
    Placeholder for a parameter imported from the parameter store. The import resolver
    replaces it with the variant matching the imported value type.

    :ivar str import_key: full key, or prefix ending with /
    """

    kind = "Import"

    def __init__(self, name: str, import_key: str, resource: Resource = None, **kwargs):
        super().__init__(name, **kwargs)
        self.import_key = import_key
        self.resource = resource


class InputParameter(ModuleParameter):
    """
    Base class for the inputs, exposed as stack parameters.

    :ivar str input_type: CloudFormation parameter type, or Secret
    :ivar str section: parameter group of the stack interface
    :ivar str label:
    :ivar default: default value
    :ivar bool no_echo:
    :ivar dict constraints: AllowedPattern, AllowedValues, MinLength, etc.
    """

    kind = "Input"

    def __init__(
        self,
        name: str,
        input_type: str = "String",
        section: str = None,
        label: str = None,
        default=None,
        no_echo: bool = False,
        constraints: dict = None,
        resource: Resource = None,
        **kwargs,
    ):
        super().__init__(name, **kwargs)
        self.input_type = input_type
        self.section = section
        self.label = label
        self.default = default
        self.no_echo = no_echo
        self.constraints = constraints if constraints else {}
        self.resource = resource
        self.reference = Ref(self.logical_id)

    @property
    def is_secret(self) -> bool:
        return self.input_type == "Secret"

    @property
    def is_conditional_resource(self) -> bool:
        """A default value with a resource means the resource is created when the input is left to default"""
        return self.resource is not None and self.default is not None

    @property
    def condition_name(self) -> str:
        return f"{self.logical_id}Created"

    @property
    def instance_logical_id(self) -> str:
        return f"{self.logical_id}CreatedInstance"


class ValueInputParameter(InputParameter):
    kind = "ValueInput"


class ImportInputParameter(InputParameter):
    """
    Input whose default value is imported from the parameter store.

    :ivar str import_key:
    """

    kind = "ImportInput"

    def __init__(self, name: str, import_key: str, **kwargs):
        super().__init__(name, **kwargs)
        self.import_key = import_key

    @property
    def is_conditional_resource(self) -> bool:
        """The default value is the imported one, the resource is always referenced"""
        return False


RESOURCE_PARAMETERS = (ReferencedResourceParameter, CloudFormationResourceParameter)


def iter_parameters(parameters: list):
    """
    Depth-first iteration over parameters and their nested parameters

    :param list[ModuleParameter] parameters:
    """
    for parameter in parameters:
        yield parameter
        yield from iter_parameters(parameter.parameters)
