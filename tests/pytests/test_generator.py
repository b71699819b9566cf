# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Templates generated for the modules.
"""

from copy import deepcopy

from pytest import fixture

from modulex.common.settings import CompilerConfig
from modulex.compiler import ModuleCompiler
from modulex.generator import define_bucket_name


@fixture()
def config():
    return CompilerConfig(
        tier="test",
        aws_region="us-east-1",
        aws_account_id="123456789012",
        deployment_bucket_name="deployment-bucket",
        dead_letter_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/dlq",
    )


def worker(name="Worker", **kwargs):
    function = {"Name": name, "Memory": 128, "Timeout": 30}
    function.update(kwargs)
    return function


def compile_template(document, config) -> dict:
    result = ModuleCompiler(config).compile_document(deepcopy(document))
    assert result.success, result.context.messages()
    return result.template.to_dict()


def get_statement(template: dict, sid: str) -> dict:
    policy = template["Resources"]["ModuleRole"]["Properties"]["Policies"][0]
    for statement in policy["PolicyDocument"]["Statement"]:
        if statement.get("Sid") == sid:
            return statement
    raise KeyError(sid)


def test_define_bucket_name():
    name = define_bucket_name("test", "Sample", "Bucket", "123456789012", "us-east-1")
    assert name.startswith("test-sample-bucket-123456789012-us-east-1-")
    assert len(name) == 50
    assert name == define_bucket_name(
        "test", "Sample", "Bucket", "123456789012", "us-east-1"
    )
    assert name != define_bucket_name(
        "prod", "Sample", "Bucket", "123456789012", "us-east-1"
    )
    long_name = define_bucket_name(
        "test", "AVeryLongModuleNameForTesting", "TheBucketOfTheModule", "123456789012", "eu-central-1"
    )
    assert len(long_name) == 63
    assert "--" not in long_name
    assert long_name.endswith("-123456789012-eu-central-1-" + long_name[-8:])


def test_s3_source_bucket(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Parameters": [
                {
                    "Name": "Bucket",
                    "Resource": {"Type": "AWS::S3::Bucket", "Allow": "ReadWrite"},
                }
            ],
            "Functions": [worker(Sources=[{"S3": "Bucket", "Suffix": ".png"}])],
        },
        config,
    )
    bucket_name = define_bucket_name(
        "test", "Sample", "Bucket", "123456789012", "us-east-1"
    )
    bucket = template["Resources"]["Bucket"]
    assert bucket["Properties"]["BucketName"] == bucket_name
    assert bucket["DependsOn"] == ["WorkerSource1Permission"]
    configuration = bucket["Properties"]["NotificationConfiguration"][
        "LambdaConfigurations"
    ][0]
    assert configuration["Event"] == "s3:ObjectCreated:*"
    assert configuration["Function"] == {"Fn::GetAtt": ["Worker", "Arn"]}
    assert configuration["Filter"] == {
        "S3Key": {"Rules": [{"Name": "suffix", "Value": ".png"}]}
    }
    variables = template["Resources"]["Worker"]["Properties"]["Environment"][
        "Variables"
    ]
    assert variables["STR_BUCKET"] == bucket_name
    permission = template["Resources"]["WorkerSource1Permission"]["Properties"]
    assert permission["SourceArn"] == f"arn:aws:s3:::{bucket_name}"
    assert permission["Principal"] == "s3.amazonaws.com"
    assert get_statement(template, "Bucket")["Resource"] == [
        f"arn:aws:s3:::{bucket_name}",
        f"arn:aws:s3:::{bucket_name}/*",
    ]
    assert template == compile_template(
        {
            "Name": "Sample",
            "Parameters": [
                {
                    "Name": "Bucket",
                    "Resource": {"Type": "AWS::S3::Bucket", "Allow": "ReadWrite"},
                }
            ],
            "Functions": [worker(Sources=[{"S3": "Bucket", "Suffix": ".png"}])],
        },
        config,
    )


def test_function_resources(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Version": "2.1",
            "Secrets": ["alias/my-key"],
            "Parameters": [
                {"Name": "Setting", "Value": "value", "Scope": "Other"},
                {"Name": "Greeting", "Value": {"Fn::Sub": "hello-${Setting}"}},
                {
                    "Name": "Password",
                    "Secret": "AQICAHcipher",
                    "EncryptionContext": {"Purpose": "test"},
                },
                {"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic", "Allow": "Publish"}},
            ],
            "Functions": [
                worker(
                    Environment={"Mode": "fast"},
                    VPC={"SubnetIds": "subnet-1, subnet-2", "SecurityGroupIds": ["sg-1"]},
                ),
                worker("Other"),
            ],
        },
        config,
    )
    resources = template["Resources"]
    function = resources["Worker"]["Properties"]
    assert function["Code"] == {
        "S3Bucket": {"Ref": "DeploymentBucketName"},
        "S3Key": "Modules/Sample/Assets/Worker.zip",
    }
    assert function["Role"] == {"Fn::GetAtt": ["ModuleRole", "Arn"]}
    assert function["DeadLetterConfig"] == {
        "TargetArn": "arn:aws:sqs:us-east-1:123456789012:dlq"
    }
    assert function["VpcConfig"] == {
        "SubnetIds": ["subnet-1", "subnet-2"],
        "SecurityGroupIds": ["sg-1"],
    }
    variables = function["Environment"]["Variables"]
    assert variables["MODE"] == "fast"
    assert variables["STR_GREETING"] == "hello-value"
    assert variables["SEC_PASSWORD"] == "AQICAHcipher|Purpose=test"
    assert variables["STR_TOPIC"] == {"Ref": "Topic"}
    assert variables["STR_VERSION"] == "2.1"
    assert variables["MODULE_NAME"] == "Sample"
    assert variables["DEFAULTSECRETKEY"] == "arn:aws:kms:us-east-1:123456789012:alias/my-key"
    assert "STR_SETTING" not in variables
    other_variables = resources["Other"]["Properties"]["Environment"]["Variables"]
    assert other_variables["STR_SETTING"] == "value"
    assert resources["WorkerLogGroup"]["Properties"]["RetentionInDays"] == 7
    assert get_statement(template, "Topic")["Resource"] == [{"Ref": "Topic"}]
    assert get_statement(template, "SecretsDecryption")["Resource"] == [
        "arn:aws:kms:us-east-1:123456789012:alias/my-key"
    ]
    assert get_statement(template, "ModuleVpcNetworkInterfaces")["Resource"] == ["*"]
    version = resources["VersionExportParameter"]["Properties"]
    assert version["Name"] == {"Fn::Sub": "/${Tier}/Sample/Version"}
    assert version["Value"] == "2.1"
    assert template["Outputs"]["ModuleVersion"]["Value"] == "2.1"
    manifest = template["Metadata"]["LambdaSharp::Manifest"]
    assert manifest["ModuleName"] == "Sample"
    assert manifest["Assets"] == ["Worker.zip", "Other.zip"]
    assert template["Parameters"]["Tier"]["Default"] == "test"
    assert template["Parameters"]["DeploymentPrefix"]["Default"] == "test-"


def test_sources_resources(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Parameters": [
                {"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}},
                {"Name": "Queue", "Resource": {"Type": "AWS::SQS::Queue"}},
            ],
            "Functions": [
                worker(
                    Sources=[
                        {"Topic": "Topic"},
                        {"Schedule": "rate(1 hour)", "Name": "hourly"},
                        {"Sqs": "Queue", "BatchSize": 5},
                        {"Alexa": "*"},
                    ]
                )
            ],
        },
        config,
    )
    resources = template["Resources"]
    subscription = resources["WorkerSource1Subscription"]
    assert subscription["Type"] == "AWS::SNS::Subscription"
    assert subscription["Properties"]["TopicArn"] == {"Ref": "Topic"}
    assert resources["WorkerSource1Permission"]["Properties"]["Principal"] == "sns.amazonaws.com"
    rule = resources["WorkerSource2ScheduleEvent"]["Properties"]
    assert rule["ScheduleExpression"] == "rate(1 hour)"
    assert '"Name":"hourly"' in rule["Targets"][0]["InputTransformer"]["InputTemplate"]
    mapping = resources["WorkerSource3EventMapping"]
    assert mapping["Properties"]["BatchSize"] == 5
    assert mapping["Properties"]["EventSourceArn"] == {"Fn::GetAtt": ["Queue", "Arn"]}
    assert mapping["DependsOn"] == ["ModuleRole"]
    alexa = resources["WorkerSource4Permission"]["Properties"]
    assert alexa["Principal"] == "alexa-appkit.amazon.com"
    assert "EventSourceToken" not in alexa


def test_api_resources_tree(config):
    """
    Routes sharing their leading segments share the API resources
    """
    document = {
        "Name": "Sample",
        "Functions": [
            worker("List", Sources=[{"Api": "GET /items"}]),
            worker("Get", Sources=[{"Api": "GET /items/{id}"}]),
        ],
    }
    template = compile_template(document, config)
    resources = template["Resources"]
    api_resources = {
        title: resource
        for title, resource in resources.items()
        if resource["Type"] == "AWS::ApiGateway::Resource"
    }
    assert sorted(api_resources) == [
        "ModuleRestApiItemsIdResource",
        "ModuleRestApiItemsResource",
    ]
    assert api_resources["ModuleRestApiItemsResource"]["Properties"]["PathPart"] == "items"
    assert api_resources["ModuleRestApiItemsIdResource"]["Properties"]["ParentId"] == {
        "Ref": "ModuleRestApiItemsResource"
    }
    methods = {
        title: resource
        for title, resource in resources.items()
        if resource["Type"] == "AWS::ApiGateway::Method"
    }
    assert sorted(methods) == ["ModuleRestApiItemsGET", "ModuleRestApiItemsIdGET"]
    assert methods["ModuleRestApiItemsIdGET"]["Properties"]["ResourceId"] == {
        "Ref": "ModuleRestApiItemsIdResource"
    }
    assert methods["ModuleRestApiItemsGET"]["Properties"]["Integration"]["Type"] == "AWS_PROXY"
    deployments = [
        title
        for title, resource in resources.items()
        if resource["Type"] == "AWS::ApiGateway::Deployment"
    ]
    assert len(deployments) == 1
    assert resources["ModuleRestApiStage"]["Properties"]["DeploymentId"] == {
        "Ref": deployments[0]
    }
    assert "ModuleRestApi" in template["Outputs"]

    same = compile_template(document, config)
    assert deployments[0] in same["Resources"]

    changed_document = deepcopy(document)
    changed_document["Functions"][1]["Sources"][0]["OperationName"] = "GetItem"
    changed = compile_template(changed_document, config)
    assert deployments[0] not in changed["Resources"]
    assert any(
        title.startswith("ModuleRestApiDeployment") for title in changed["Resources"]
    )


def test_api_colliding_segments(config):
    """
    Segments with the same alphanumeric characters keep their own API resources and methods
    """
    template = compile_template(
        {
            "Name": "Sample",
            "Functions": [
                worker("Get", Sources=[{"Api": "GET /items/{id}"}]),
                worker("Named", Sources=[{"Api": "GET /items/id"}]),
            ],
        },
        config,
    )
    resources = template["Resources"]
    assert resources["ModuleRestApiItemsIdResource"]["Properties"]["PathPart"] == "{id}"
    assert resources["ModuleRestApiItemsId2Resource"]["Properties"]["PathPart"] == "id"
    assert resources["ModuleRestApiItemsIdGET"]["Properties"]["ResourceId"] == {
        "Ref": "ModuleRestApiItemsIdResource"
    }
    assert resources["ModuleRestApiItemsId2GET"]["Properties"]["ResourceId"] == {
        "Ref": "ModuleRestApiItemsId2Resource"
    }
    assert resources["ModuleRestApiItemsId2GETPermission"]["Properties"]["SourceArn"] == {
        "Fn::Sub": "arn:aws:execute-api:${AWS::Region}:${AWS::AccountId}:${ModuleRestApi}"
        "/LATEST/GET/items/id"
    }


def test_api_duplicate_route(config):
    result = ModuleCompiler(config).compile_document(
        {
            "Name": "Sample",
            "Functions": [
                worker("First", Sources=[{"Api": "GET /items"}]),
                worker("Second", Sources=[{"Api": "GET /items"}]),
            ],
        }
    )
    assert result.template is None
    assert result.context.messages() == [
        "duplicate API route 'GET /items' @ Functions/Second/Sources/[0]"
    ]


def test_slack_command(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Functions": [worker(Sources=[{"SlackCommand": "/slack"}])],
        },
        config,
    )
    method = template["Resources"]["ModuleRestApiSlackPOST"]["Properties"]
    assert method["HttpMethod"] == "POST"
    assert method["Integration"]["Type"] == "AWS"
    assert method["Integration"]["RequestParameters"] == {
        "integration.request.header.X-Amz-Invocation-Type": "'Event'"
    }


def test_conditional_input_resource(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Inputs": [
                {
                    "Input": "Topic",
                    "Default": "",
                    "Section": "Messaging",
                    "Label": "Notifications topic",
                    "Resource": {"Type": "AWS::SNS::Topic", "Allow": "Publish"},
                },
                {"Input": "Stage", "Default": "dev", "AllowedValues": ["dev", "prod"]},
            ],
            "Functions": [worker()],
        },
        config,
    )
    assert template["Parameters"]["Topic"]["Default"] == ""
    assert template["Parameters"]["Stage"]["AllowedValues"] == ["dev", "prod"]
    assert template["Conditions"]["TopicCreated"] == {
        "Fn::Equals": [{"Ref": "Topic"}, ""]
    }
    instance = template["Resources"]["TopicCreatedInstance"]
    assert instance["Type"] == "AWS::SNS::Topic"
    assert instance["Condition"] == "TopicCreated"
    reference = {
        "Fn::If": ["TopicCreated", {"Ref": "TopicCreatedInstance"}, {"Ref": "Topic"}]
    }
    assert get_statement(template, "Topic")["Resource"] == [reference]
    variables = template["Resources"]["Worker"]["Properties"]["Environment"]["Variables"]
    assert variables["STR_TOPIC"] == reference
    assert variables["STR_STAGE"] == {"Ref": "Stage"}
    interface = template["Metadata"]["AWS::CloudFormation::Interface"]
    assert interface["ParameterGroups"] == [
        {"Label": {"default": "Messaging"}, "Parameters": ["Topic"]},
        {"Label": {"default": "Module Settings"}, "Parameters": ["Stage"]},
    ]
    assert interface["ParameterLabels"] == {
        "Topic": {"default": "Notifications topic"}
    }


def test_conditional_input_attributes(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Inputs": [
                {"Input": "Topic", "Default": "", "Resource": {"Type": "AWS::SNS::Topic"}}
            ],
            "Parameters": [
                {"Name": "TopicName", "Value": {"Fn::GetAtt": ["Topic", "TopicName"]}}
            ],
            "Functions": [worker()],
        },
        config,
    )
    variables = template["Resources"]["Worker"]["Properties"]["Environment"]["Variables"]
    assert variables["STR_TOPICNAME"] == {
        "Fn::If": [
            "TopicCreated",
            {"Fn::GetAtt": ["TopicCreatedInstance", "TopicName"]},
            {"Ref": "AWS::NoValue"},
        ]
    }


def test_outputs(config):
    template = compile_template(
        {
            "Name": "Sample",
            "Parameters": [{"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}}],
            "Functions": [worker()],
            "Outputs": [
                {"Export": "Topic", "Description": "The topic"},
                {"CustomResource": "Widget", "Handler": "Worker"},
                {"Macro": "Transform", "Handler": "Worker"},
            ],
        },
        config,
    )
    outputs = template["Outputs"]
    assert outputs["Topic"]["Value"] == {"Ref": "Topic"}
    assert outputs["TopicExport"]["Export"] == {
        "Name": {"Fn::Sub": "${AWS::StackName}::Topic"}
    }
    assert outputs["WidgetHandler"]["Export"] == {
        "Name": {"Fn::Sub": "${DeploymentPrefix}CustomResource-Widget"}
    }
    resources = template["Resources"]
    topic = resources["WidgetCustomResourceTopic"]["Properties"]
    assert topic["Subscription"] == [
        {"Endpoint": {"Fn::GetAtt": ["Worker", "Arn"]}, "Protocol": "lambda"}
    ]
    assert resources["WidgetCustomResourceTopicParameter"]["Properties"]["Name"] == {
        "Fn::Sub": "/${Tier}/Sample/WidgetCustomResourceTopic"
    }
    assert resources["WidgetCustomResourcePermission"]["Properties"]["SourceArn"] == {
        "Ref": "WidgetCustomResourceTopic"
    }
    macro = resources["TransformMacro"]
    assert macro["Type"] == "AWS::CloudFormation::Macro"
    assert macro["Properties"]["Name"] == {"Fn::Sub": "${DeploymentPrefix}Transform"}


def test_duplicate_outputs(config):
    result = ModuleCompiler(config).compile_document(
        {
            "Name": "Sample",
            "Parameters": [{"Name": "Topic", "Resource": {"Type": "AWS::SNS::Topic"}}],
            "Outputs": [{"Export": "Topic"}, {"Export": "Topic"}],
        }
    )
    assert not result.success
    assert result.template is None
    assert result.context.messages() == ["duplicate output 'Topic' @ Outputs/[1]"]
