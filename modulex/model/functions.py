# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Function and event sources variants.
"""

from __future__ import annotations

DEFAULT_RUNTIME = "python3.12"
DEFAULT_HANDLER = "index.handler"


class Function:
    """
    Lambda function of the module.

    :ivar str name:
    :ivar int memory: MB
    :ivar int timeout: seconds
    :ivar int reserved_concurrency:
    :ivar dict vpc: SubnetIds and SecurityGroupIds
    :ivar dict environment: user defined environment variables
    :ivar list[FunctionSource] sources:
    :ivar str package_path: artifact name in the deployment bucket
    """

    def __init__(
        self,
        name: str,
        memory: int,
        timeout: int,
        description: str = None,
        handler: str = None,
        runtime: str = None,
        language: str = None,
        project: str = None,
        reserved_concurrency: int = None,
        vpc: dict = None,
        environment: dict = None,
        location: tuple = (),
    ):
        self.name = name
        self.memory = memory
        self.timeout = timeout
        self.description = description
        self.handler = handler if handler else DEFAULT_HANDLER
        self.runtime = runtime if runtime else DEFAULT_RUNTIME
        self.language = language if language else language_from_runtime(self.runtime)
        self.project = project
        self.reserved_concurrency = reserved_concurrency
        self.vpc = vpc
        self.environment = environment if environment else {}
        self.location = location
        self.sources: list = []
        self.package_path = f"{name}.zip"

    def __repr__(self):
        return f"Function({self.name})"


def language_from_runtime(runtime: str) -> str:
    """
    :param str runtime: Lambda runtime, i.e. python3.12 or nodejs18.x
    :return: language tag
    """
    for prefix, language in (
        ("python", "python"),
        ("nodejs", "javascript"),
        ("dotnet", "csharp"),
        ("java", "java"),
        ("go", "go"),
        ("ruby", "ruby"),
        ("provided", "custom"),
    ):
        if runtime.startswith(prefix):
            return language
    return "unknown"


class FunctionSource:
    """
    Base class of the event sources

    :ivar tuple location:
    """

    kind = None

    def __init__(self, location: tuple = ()):
        self.location = location

    def __repr__(self):
        return f"{type(self).__name__}"


class ParameterSource(FunctionSource):
    """
    Source relying on a resource parameter of the module.

    :ivar str parameter_name: full name of the parameter
    :ivar ModuleParameter parameter: set when the references are linked
    """

    resource_types = ()
    description = None

    def __init__(self, parameter_name: str, **kwargs):
        super().__init__(**kwargs)
        self.parameter_name = parameter_name
        self.parameter = None

    def __repr__(self):
        return f"{type(self).__name__}({self.parameter_name})"


class TopicSource(ParameterSource):
    kind = "Topic"
    resource_types = ("AWS::SNS::Topic",)
    description = "SNS topic"


class ScheduleSource(FunctionSource):
    """
    :ivar str expression: rate() or cron() expression
    :ivar str name: passed to the function in the event
    """

    kind = "Schedule"

    def __init__(self, expression: str, name: str = None, **kwargs):
        super().__init__(**kwargs)
        self.expression = expression
        self.name = name


class ApiSource(FunctionSource):
    """
    :ivar str method: HTTP method, ANY for *
    :ivar list[str] path: path segments
    :ivar str integration: RequestResponse or SlackCommand
    """

    kind = "Api"

    def __init__(
        self,
        method: str,
        path: list,
        integration: str = "RequestResponse",
        operation_name: str = None,
        api_key_required: bool = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.method = method
        self.path = path
        self.integration = integration
        self.operation_name = operation_name
        self.api_key_required = api_key_required

    def __repr__(self):
        return f"ApiSource({self.method} /{'/'.join(self.path)})"


class SlackCommandSource(ApiSource):
    kind = "SlackCommand"

    def __init__(self, path: list, **kwargs):
        super().__init__("POST", path, integration="SlackCommand", **kwargs)


class S3Source(ParameterSource):
    """
    :ivar list[str] events: S3 notification events
    :ivar str prefix: object key prefix filter
    :ivar str suffix: object key suffix filter
    """

    kind = "S3"
    resource_types = ("AWS::S3::Bucket",)
    description = "S3 bucket"

    def __init__(
        self,
        parameter_name: str,
        events: list = None,
        prefix: str = None,
        suffix: str = None,
        **kwargs,
    ):
        super().__init__(parameter_name, **kwargs)
        self.events = events if events else ["s3:ObjectCreated:*"]
        self.prefix = prefix
        self.suffix = suffix


class SqsSource(ParameterSource):
    kind = "Sqs"
    resource_types = ("AWS::SQS::Queue",)
    description = "SQS queue"

    def __init__(self, parameter_name: str, batch_size: int = 10, **kwargs):
        super().__init__(parameter_name, **kwargs)
        self.batch_size = batch_size


class AlexaSource(FunctionSource):
    """
    :ivar str skill_id: None allows all skills
    """

    kind = "Alexa"

    def __init__(self, skill_id: str = None, **kwargs):
        super().__init__(**kwargs)
        self.skill_id = skill_id


class StreamSource(ParameterSource):
    """
    :ivar int batch_size:
    :ivar str starting_position: TRIM_HORIZON or LATEST
    """

    def __init__(
        self,
        parameter_name: str,
        batch_size: int = 100,
        starting_position: str = None,
        **kwargs,
    ):
        super().__init__(parameter_name, **kwargs)
        self.batch_size = batch_size
        self.starting_position = (
            starting_position if starting_position else "LATEST"
        )


class DynamoDBSource(StreamSource):
    kind = "DynamoDB"
    resource_types = ("AWS::DynamoDB::Table",)
    description = "DynamoDB table"


class KinesisSource(StreamSource):
    kind = "Kinesis"
    resource_types = ("AWS::Kinesis::Stream",)
    description = "Kinesis stream"


class MacroSource(FunctionSource):
    """
    Registers the function as a CloudFormation macro.
    """

    kind = "Macro"

    def __init__(self, name: str, **kwargs):
        super().__init__(**kwargs)
        self.name = name
