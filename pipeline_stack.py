import logging
from typing import List, Optional

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_s3 as s3,
    aws_ecr as ecr,
    aws_iam as iam,
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
)

from pipeline_config import PipelineSettings
from pipeline_policies import (
    codebuild_statements,
    codepipeline_statements,
    cloudformation_statements,
)


logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

CACHE_MODES = [
    "LOCAL_CUSTOM_CACHE",
    "LOCAL_DOCKER_LAYER_CACHE",
    "LOCAL_SOURCE_CACHE",
]


class DeliveryPipelineStack(cdk.Stack):
    """
    Checkout from GitHub, build a docker image with CodeBuild, push it to ECR
    and deploy the built template to ECS through a CloudFormation change set.
    """

    def __init__(self, scope: Construct, id: str, settings: Optional[PipelineSettings] = None, **kwargs) -> None:
        # The plain template deploys into accounts that were never bootstrapped
        kwargs.setdefault("synthesizer", cdk.DefaultStackSynthesizer(generate_bootstrap_version_rule=False))
        super().__init__(scope, id, **kwargs)

        self.settings = settings or PipelineSettings()
        self.settings.validate()

        # Define the deploy-time parameters
        self.project_name = self.create_parameter(
            "ProjectName", "The name of the project.", self.settings.project_name)
        self.repository_owner = self.create_parameter(
            "RepositoryOwner", "The owner of the GitHub repository.", self.settings.repository_owner)
        self.repository_name = self.create_parameter(
            "RepositoryName", "The name of the GitHub repository.", self.settings.repository_name)
        self.repository_branch = self.create_parameter(
            "RepositoryBranch", "The name of the branch.", self.settings.repository_branch)
        self.docker_image_repository = self.create_parameter(
            "DockerImageRepository", "The name of the ECR Repository", self.settings.docker_image_repository)

        # Define the artifacts bucket, build artifacts are only kept for a week
        self.artifacts_bucket = s3.Bucket(
            self, "ArtifactsBucket",
            bucket_name=cdk.Fn.sub(f"{self.settings.bucket_prefix}.${{ProjectName}}"),
            lifecycle_rules=[
                s3.LifecycleRule(
                    id="DeleteBuildArtifactsAfterOneWeek",
                    expiration=cdk.Duration.days(self.settings.artifact_expiration_days),
                    enabled=True,
                )
            ],
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )
        self.keep_logical_id(self.artifacts_bucket, "ArtifactsBucket")

        # Define the image registry, old images get expired
        self.ecr_repository = ecr.Repository(
            self, "ECRRepository",
            repository_name=self.docker_image_repository.value_as_string,
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )
        self.ecr_repository.add_lifecycle_rule(
            rule_priority=1,
            description=f"Maintain maximum of {self.settings.max_image_count} versions",
            tag_status=ecr.TagStatus.ANY,
            max_image_count=self.settings.max_image_count,
        )
        self.keep_logical_id(self.ecr_repository, "ECRRepository")

        artifacts_objects_arn = self.artifacts_bucket.arn_for_objects("*")
        log_group_arn = cdk.Fn.sub(
            "arn:aws:logs:${AWS::Region}:${AWS::AccountId}:log-group:/aws/codebuild/${ProjectName}-build-package")
        log_stream_arn = cdk.Fn.sub(
            "arn:aws:logs:${AWS::Region}:${AWS::AccountId}:log-group:/aws/codebuild/${ProjectName}-build-package:*")

        # Define the service roles, each one only holds its own inline policy
        self.codebuild_role = self.create_service_role(
            "CodeBuildServiceRole", "codebuild.amazonaws.com", "CodeBuildTrustPolicy",
            codebuild_statements(log_group_arn, log_stream_arn, artifacts_objects_arn))
        self.cloudformation_role = self.create_service_role(
            "CloudFormationServiceRole", "cloudformation.amazonaws.com", "CloudFormationTrustPolicy",
            cloudformation_statements())

        self.build_project = codebuild.CfnProject(
            self, "CodeBuildProject",
            name=cdk.Fn.sub("${ProjectName}-build-package"),
            source=codebuild.CfnProject.SourceProperty(
                type="CODEPIPELINE",
                build_spec=self.settings.buildspec,
            ),
            artifacts=codebuild.CfnProject.ArtifactsProperty(type="CODEPIPELINE"),
            # Local caching pays off for builds pulling large base images
            cache=codebuild.CfnProject.ProjectCacheProperty(type="LOCAL", modes=CACHE_MODES),
            service_role=self.codebuild_role.role_arn,
            environment=codebuild.CfnProject.EnvironmentProperty(
                type="LINUX_CONTAINER",
                compute_type=self.settings.build_compute_type,
                image=self.settings.build_image,
                privileged_mode=True,
                environment_variables=[
                    codebuild.CfnProject.EnvironmentVariableProperty(
                        name="S3_BUCKET", value=self.artifacts_bucket.bucket_name),
                    codebuild.CfnProject.EnvironmentVariableProperty(
                        name="ECR_REPO",
                        value=cdk.Fn.sub(
                            "${AWS::AccountId}.dkr.ecr.${AWS::Region}.amazonaws.com/${DockerImageRepository}")),
                ],
            ),
        )

        self.pipeline_role = self.create_service_role(
            "CodePipelineServiceRole", "codepipeline.amazonaws.com", "CodePipelineTrustPolicy",
            codepipeline_statements(self.build_project.attr_arn, artifacts_objects_arn))

        self.pipeline = codepipeline.CfnPipeline(
            self, "CodePipeline",
            name=cdk.Fn.sub("${ProjectName}-pipeline"),
            role_arn=self.pipeline_role.role_arn,
            artifact_store=codepipeline.CfnPipeline.ArtifactStoreProperty(
                type="S3",
                location=self.artifacts_bucket.bucket_name,
            ),
            stages=[
                self.checkout_stage(),
                self.build_stage(),
                self.deploy_stage(),
            ],
        )

        cdk.CfnOutput(self, "PipelineName", value=self.pipeline.ref,
                      description="Name of the delivery pipeline")
        cdk.CfnOutput(self, "ArtifactsBucketName", value=self.artifacts_bucket.bucket_name,
                      description="Bucket holding pipeline artifacts")
        cdk.CfnOutput(self, "ECRRepositoryUri", value=self.ecr_repository.repository_uri,
                      description="Registry the build pushes images to")
        cdk.CfnOutput(self, "BuildProjectName", value=self.build_project.ref,
                      description="CodeBuild project packaging the application")

    def create_parameter(self, id, description, default=None):
        if default is None:
            logger.info('Parameter %s has no default, it must be supplied at deploy time', id)
        return cdk.CfnParameter(self, id, type="String", description=description, default=default)

    def create_service_role(self, id, service, policy_name, statements: List[iam.PolicyStatement]):
        role = iam.Role(
            self, id,
            assumed_by=iam.ServicePrincipal(service),
            inline_policies={policy_name: iam.PolicyDocument(statements=statements)},
        )
        self.keep_logical_id(role, id)
        return role

    @staticmethod
    def keep_logical_id(construct, logical_id):
        # Stacks created from the plain template are updated in place
        construct.node.default_child.override_logical_id(logical_id)

    def checkout_stage(self):
        return codepipeline.CfnPipeline.StageDeclarationProperty(
            name="Checkout",
            actions=[
                codepipeline.CfnPipeline.ActionDeclarationProperty(
                    name="Checkout",
                    action_type_id=codepipeline.CfnPipeline.ActionTypeIdProperty(
                        category="Source", owner="ThirdParty", provider="GitHub", version="1"),
                    configuration={
                        "Owner": self.repository_owner.value_as_string,
                        "Repo": self.repository_name.value_as_string,
                        "Branch": self.repository_branch.value_as_string,
                        "OAuthToken": self.settings.github_token,
                    },
                    output_artifacts=[codepipeline.CfnPipeline.OutputArtifactProperty(name="SourceOutput")],
                )
            ],
        )

    def build_stage(self):
        return codepipeline.CfnPipeline.StageDeclarationProperty(
            name="Build",
            actions=[
                codepipeline.CfnPipeline.ActionDeclarationProperty(
                    name="Build",
                    action_type_id=codepipeline.CfnPipeline.ActionTypeIdProperty(
                        category="Build", owner="AWS", provider="CodeBuild", version="1"),
                    configuration={"ProjectName": self.build_project.ref},
                    input_artifacts=[codepipeline.CfnPipeline.InputArtifactProperty(name="SourceOutput")],
                    output_artifacts=[codepipeline.CfnPipeline.OutputArtifactProperty(name="BuildOutput")],
                )
            ],
        )

    def deploy_stage(self):
        """
        Deploy stage: create a change set from the built template, then execute it.
        The build is expected to emit template-output.yaml and config.json.
        """
        change_set_name = cdk.Fn.sub("${ProjectName}-changeset")
        stack_name = self.project_name.value_as_string
        action_type = codepipeline.CfnPipeline.ActionTypeIdProperty(
            category="Deploy", owner="AWS", provider="CloudFormation", version="1")

        return codepipeline.CfnPipeline.StageDeclarationProperty(
            name="Deploy",
            actions=[
                codepipeline.CfnPipeline.ActionDeclarationProperty(
                    name="Prepare",
                    action_type_id=action_type,
                    configuration={
                        "ActionMode": "CHANGE_SET_REPLACE",
                        "Capabilities": "CAPABILITY_IAM",
                        "TemplatePath": "BuildOutput::template-output.yaml",
                        "TemplateConfiguration": "BuildOutput::config.json",
                        "ChangeSetName": change_set_name,
                        "StackName": stack_name,
                        "RoleArn": self.cloudformation_role.role_arn,
                    },
                    input_artifacts=[codepipeline.CfnPipeline.InputArtifactProperty(name="BuildOutput")],
                    run_order=1,
                ),
                codepipeline.CfnPipeline.ActionDeclarationProperty(
                    name="Execute",
                    action_type_id=action_type,
                    configuration={
                        "ActionMode": "CHANGE_SET_EXECUTE",
                        "ChangeSetName": change_set_name,
                        "StackName": stack_name,
                    },
                    run_order=2,
                ),
            ],
        )
