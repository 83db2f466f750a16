import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Template

from pipeline_config import PipelineSettings
from pipeline_stack import DeliveryPipelineStack


@pytest.fixture
def settings():
    return PipelineSettings(
        project_name="orders",
        repository_name="orders-service",
        docker_image_repository="orders",
    )


@pytest.fixture
def stack(settings):
    app = cdk.App()
    return DeliveryPipelineStack(app, "TestPipelineStack", settings=settings)


@pytest.fixture
def template(stack):
    return Template.from_stack(stack)


@pytest.fixture
def template_json(template):
    return template.to_json()
