# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Rendering of the resolved values and of the resources properties into troposphere objects.
"""

from __future__ import annotations

from inspect import isfunction

from compose_x_common.compose_x_common import keyisset, keypresent
from troposphere import (
    And,
    AWSHelperFn,
    AWSProperty,
    Base64,
    Cidr,
    Condition,
    Equals,
    FindInMap,
    GetAtt,
    GetAZs,
    If,
    ImportValue,
    Join,
    Not,
    Or,
    Ref,
    Select,
    Split,
    Sub,
    Tags,
    encode_to_dict,
)

from modulex.resource_mapping import (
    CUSTOM_RESOURCE_TYPE,
    custom_resource_class,
    get_resource_class,
)

# Functions taking a list of arguments
LIST_FUNCTIONS = {
    "Fn::And": And,
    "Fn::Cidr": Cidr,
    "Fn::Equals": Equals,
    "Fn::FindInMap": FindInMap,
    "Fn::If": If,
    "Fn::Join": Join,
    "Fn::Not": Not,
    "Fn::Or": Or,
    "Fn::Select": Select,
    "Fn::Split": Split,
}
SINGLE_FUNCTIONS = {
    "Fn::Base64": Base64,
    "Fn::GetAZs": GetAZs,
    "Fn::ImportValue": ImportValue,
    "Condition": Condition,
}


class IntrinsicFunction(AWSHelperFn):
    """
    Function with no dedicated troposphere helper, i.e. Fn::Length, rendered as is.
    """

    def __init__(self, data: dict):
        self.data = data


def to_helper(value):
    """
    Turns the intrinsic functions maps into troposphere helpers, recursively.

    :param value: plain value, possibly holding {"Ref": ..} or {"Fn::X": ..} maps
    :return: the value with troposphere helpers
    """
    if isinstance(value, AWSHelperFn):
        return value
    if isinstance(value, list):
        return [to_helper(item) for item in value]
    if not isinstance(value, dict):
        return value
    if len(value) != 1:
        return {key: to_helper(item) for key, item in value.items()}
    key, argument = next(iter(value.items()))
    if key == "Ref" and isinstance(argument, str):
        return Ref(argument)
    if key == "Fn::GetAtt":
        if isinstance(argument, str):
            argument = argument.split(".", 1)
        return GetAtt(*argument)
    if key == "Fn::Sub":
        if isinstance(argument, list):
            return Sub(argument[0], dict_values=to_helper(argument[1]))
        return Sub(argument)
    if key in LIST_FUNCTIONS and isinstance(argument, list):
        return LIST_FUNCTIONS[key](*to_helper(argument))
    if key in SINGLE_FUNCTIONS:
        return SINGLE_FUNCTIONS[key](to_helper(argument))
    if key.startswith("Fn::"):
        return IntrinsicFunction({key: encode_to_dict(to_helper(argument))})
    return {key: to_helper(argument)}


def replace_references(value, references: dict, attributes: dict):
    """
    Replaces the Ref and Fn::GetAtt of some resources with literal values.

    :param value: encoded value, only made of dict, list and scalars
    :param dict references: logical id -> literal replacing the Ref
    :param dict attributes: (logical id, attribute) -> literal replacing the Fn::GetAtt
    """
    if isinstance(value, list):
        return [replace_references(item, references, attributes) for item in value]
    if not isinstance(value, dict):
        return value
    if len(value) == 1:
        key, argument = next(iter(value.items()))
        if key == "Ref" and argument in references:
            return references[argument]
        if key == "Fn::GetAtt" and isinstance(argument, list):
            if tuple(argument) in attributes:
                return attributes[tuple(argument)]
    return {
        key: replace_references(item, references, attributes)
        for key, item in value.items()
    }


class ValueRenderer:
    """
    Renders the values of the model for the template. Resources given a literal name can
    have their references replaced with it.

    :ivar dict references: logical id -> literal
    :ivar dict attributes: (logical id, attribute) -> literal
    """

    def __init__(self):
        self.references = {}
        self.attributes = {}

    def set_literal(self, logical_id: str, reference, arn: str = None) -> None:
        self.references[logical_id] = reference
        if arn:
            self.attributes[(logical_id, "Arn")] = arn

    def render(self, value):
        if not self.references and not self.attributes:
            return to_helper(value)
        return to_helper(
            replace_references(encode_to_dict(value), self.references, self.attributes)
        )

    def render_string(self, value):
        """
        Renders a value to use as environment variable or parameter value. Lists are joined.
        """
        rendered = self.render(value)
        if isinstance(rendered, list):
            if all(isinstance(item, (str, int, float)) for item in rendered):
                return ",".join(str(item) for item in rendered)
            return Join(",", rendered)
        if isinstance(rendered, bool):
            return str(rendered).lower()
        if isinstance(rendered, (int, float)):
            return str(rendered)
        if rendered is None:
            return ""
        return rendered


def handle_list(properties, property_class):
    """
    Function to handle list properties

    :param property_class:
    :param properties:
    :return:
    """
    rendered_properties = []
    for property_definition in properties:
        if (
            isinstance(property_definition, dict)
            and isinstance(property_class, type)
            and issubclass(property_class, AWSProperty)
        ):
            record = import_record_properties(property_definition, property_class)
            rendered_properties.append(property_class(**record))
        else:
            rendered_properties.append(property_definition)
    return rendered_properties


def import_non_functions(props, prop_name, top_class, properties):
    """
    Function to set property for flat object or recursive to sub properties

    :param dict props:
    :param str prop_name:
    :param top_class:
    :param dict properties:
    """
    value = properties[prop_name]
    expected = top_class.props[prop_name][0]
    if isinstance(value, AWSHelperFn):
        props[prop_name] = value
    elif expected is Tags and isinstance(value, list):
        props[prop_name] = Tags(
            {tag["Key"]: tag["Value"] for tag in value if isinstance(tag, dict)}
        )
    elif expected in (str, int, float) and isinstance(value, (str, int, float)):
        props[prop_name] = expected(value)
    elif isinstance(value, dict):
        try:
            if issubclass(expected, AWSProperty):
                props[prop_name] = expected(**import_record_properties(value, expected))
            else:
                props[prop_name] = value
        except TypeError:
            props[prop_name] = value
    else:
        props[prop_name] = value


def import_record_properties(properties: dict, top_class) -> dict:
    """
    Generic function importing the properties of a resource or property class, turning the
    nested maps into their troposphere property classes.

    :param dict properties:
    :param top_class: The class we are going to import properties for
    :return: The properties for the class
    :rtype: dict
    """
    props = {}
    for prop_name in top_class.props:
        if not keypresent(prop_name, properties):
            continue
        prop_type = top_class.props[prop_name][0]
        if (
            keyisset(prop_name, properties)
            and isinstance(prop_type, list)
            and isinstance(properties[prop_name], list)
        ):
            props[prop_name] = handle_list(properties[prop_name], prop_type[0])
        elif isfunction(prop_type):
            props[prop_name] = properties[prop_name]
        else:
            import_non_functions(props, prop_name, top_class, properties)
    return props


def build_resource(logical_id: str, type_name: str, properties: dict, **attributes):
    """
    Creates the troposphere object of the resource

    :param str logical_id:
    :param str type_name: AWS or custom resource type
    :param dict properties: rendered properties
    :param attributes: DependsOn, Condition, etc.
    :raises TypeError: when a property does not have the expected type
    :raises ValueError: when a required property is missing
    """
    resource_class = get_resource_class(type_name)
    if resource_class is None or type_name == CUSTOM_RESOURCE_TYPE:
        resource = custom_resource_class(type_name)(
            logical_id, **attributes, **properties
        )
    else:
        resource = resource_class(
            logical_id,
            **attributes,
            **import_record_properties(properties, resource_class),
        )
    resource.to_dict()
    return resource
