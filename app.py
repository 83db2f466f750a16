#!/usr/bin/env python3
import logging
import os

import aws_cdk as cdk

from pipeline_config import PipelineSettings
from pipeline_stack import DeliveryPipelineStack


logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_STACK_NAME = "BuildPipelineDockerEcs"
DESCRIPTION = ("Template to create CodePipeline to build and deploy a Spring boot application "
               "as a docker container on ECS")


def build_app(app=None):
    """Create the app and its pipeline stack from context, without synthesizing."""
    app = app or cdk.App()

    settings = PipelineSettings.from_context(app.node)
    stack_name = app.node.try_get_context("stack_name") or DEFAULT_STACK_NAME
    env = cdk.Environment(
        account=app.node.try_get_context("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=app.node.try_get_context("region") or os.environ.get("CDK_DEFAULT_REGION"),
    )
    logger.info('Synthesizing %s for account=%s region=%s', stack_name, env.account, env.region)

    DeliveryPipelineStack(app, stack_name, settings=settings, env=env, description=DESCRIPTION)

    for tag_key, tag_value in settings.tags.items():
        cdk.Tags.of(app).add(tag_key, tag_value)

    return app


if __name__ == "__main__":
    build_app().synth()
