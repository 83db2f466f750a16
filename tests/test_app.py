import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Match, Template

from app import DEFAULT_STACK_NAME, build_app
from pipeline_config import ConfigurationError
from pipeline_stack import DeliveryPipelineStack


@pytest.fixture(autouse=True)
def no_default_env(monkeypatch):
    monkeypatch.delenv("CDK_DEFAULT_ACCOUNT", raising=False)
    monkeypatch.delenv("CDK_DEFAULT_REGION", raising=False)


def test_default_stack():
    app = build_app(cdk.App())
    stack = app.node.find_child(DEFAULT_STACK_NAME)

    assert isinstance(stack, DeliveryPipelineStack)
    assert Template.from_stack(stack).to_json()["Description"].startswith("Template to create CodePipeline")


def test_stack_name_and_environment_from_context():
    app = build_app(cdk.App(context={
        "stack_name": "OrdersPipeline",
        "account": "123456789012",
        "region": "eu-west-2",
    }))
    stack = app.node.find_child("OrdersPipeline")

    assert stack.account == "123456789012"
    assert stack.region == "eu-west-2"


def test_environment_falls_back_to_cli_defaults(monkeypatch):
    monkeypatch.setenv("CDK_DEFAULT_ACCOUNT", "210987654321")
    monkeypatch.setenv("CDK_DEFAULT_REGION", "us-east-1")

    stack = build_app(cdk.App()).node.find_child(DEFAULT_STACK_NAME)

    assert stack.account == "210987654321"
    assert stack.region == "us-east-1"


def test_tags_from_context_reach_resources():
    app = build_app(cdk.App(context={"tags": {"team": "platform"}}))
    template = Template.from_stack(app.node.find_child(DEFAULT_STACK_NAME))

    for resource_type in ("AWS::S3::Bucket", "AWS::ECR::Repository", "AWS::IAM::Role",
                          "AWS::CodeBuild::Project", "AWS::CodePipeline::Pipeline"):
        template.has_resource_properties(resource_type, {
            "Tags": Match.array_with([{"Key": "team", "Value": "platform"}]),
        })


def test_invalid_context_fails_synthesis():
    with pytest.raises(ConfigurationError):
        build_app(cdk.App(context={"pipeline": {"max_image_count": 0}}))
