from typing import List

import aws_cdk as cdk
from aws_cdk import aws_iam as iam


# Stack and change-set lifecycle the pipeline drives on behalf of the Deploy stage
CLOUDFORMATION_DEPLOY_ACTIONS = [
    "cloudformation:DescribeStacks",
    "cloudformation:CreateStack",
    "cloudformation:DeleteStack",
    "cloudformation:UpdateStack",
    "cloudformation:CreateChangeSet",
    "cloudformation:DeleteChangeSet",
    "cloudformation:DescribeChangeSet",
    "cloudformation:ExecuteChangeSet",
    "cloudformation:SetStackPolicy",
    "cloudformation:ValidateTemplate",
    "iam:PassRole",
]

ARTIFACT_OBJECT_ACTIONS = [
    "s3:GetObject",
    "s3:GetObjectVersion",
    "s3:PutObject",
    "s3:ListBucket",
]

BUILD_LOG_ACTIONS = [
    "logs:CreateLogGroup",
    "logs:CreateLogStream",
    "logs:PutLogEvents",
]

# Network, load balancer and service resources the application template creates
NETWORK_ACTIONS = [
    "ec2:CreateVpc",
    "ec2:DescribeVpcs",
    "ec2:DeleteVpc",
    "ec2:ModifyVpcAttribute",
    "ec2:CreateInternetGateway",
    "ec2:DescribeInternetGateways",
    "ec2:DeleteInternetGateway",
    "ec2:AttachInternetGateway",
    "ec2:DetachInternetGateway",
    "ec2:DescribeAvailabilityZones",
    "ec2:DescribeAccountAttributes",
    "ec2:CreateSubnet",
    "ec2:DescribeSubnets",
    "ec2:DeleteSubnet",
    "ec2:ModifySubnetAttribute",
    "ec2:CreateSecurityGroup",
    "ec2:DescribeSecurityGroups",
    "ec2:DeleteSecurityGroup",
    "ec2:CreateRouteTable",
    "ec2:DescribeRouteTables",
    "ec2:DeleteRouteTable",
    "ec2:AuthorizeSecurityGroupIngress",
    "ec2:AssociateRouteTable",
    "ec2:DisassociateRouteTable",
    "ec2:CreateRoute",
    "ec2:DeleteRoute",
]

LOAD_BALANCER_ACTIONS = [
    "elasticloadbalancing:CreateLoadBalancer",
    "elasticloadbalancing:DescribeLoadBalancers",
    "elasticloadbalancing:DeleteLoadBalancer",
    "elasticloadbalancing:CreateTargetGroup",
    "elasticloadbalancing:DeleteTargetGroup",
    "elasticloadbalancing:DescribeTargetGroups",
    "elasticloadbalancing:CreateListener",
    "elasticloadbalancing:DescribeListeners",
    "elasticloadbalancing:DeleteListener",
    "elasticloadbalancing:CreateRule",
    "elasticloadbalancing:DescribeRules",
    "elasticloadbalancing:DeleteRule",
]

ECS_ACTIONS = [
    "ecs:CreateCluster",
    "ecs:DescribeClusters",
    "ecs:DeleteCluster",
    "ecs:RegisterTaskDefinition",
    "ecs:DeregisterTaskDefinition",
    "ecs:CreateService",
    "ecs:DescribeServices",
    "ecs:DeleteService",
    "ecs:UpdateService",
]

ROLE_MANAGEMENT_ACTIONS = [
    "iam:GetRole",
    "iam:CreateRole",
    "iam:DeleteRole",
    "iam:GetRolePolicy",
    "iam:PutRolePolicy",
    "iam:DeleteRolePolicy",
    "iam:AttachRolePolicy",
    "iam:DetachRolePolicy",
    "iam:PassRole",
]


def codepipeline_statements(build_project_arn: str, artifacts_objects_arn: str) -> List[iam.PolicyStatement]:
    """
    Permissions for the pipeline service role: run the build,
    drive the change set deployment and move artifacts between stages.
    """
    return [
        iam.PolicyStatement(
            actions=["codebuild:BatchGetBuilds", "codebuild:StartBuild"],
            resources=[build_project_arn],
        ),
        iam.PolicyStatement(
            actions=CLOUDFORMATION_DEPLOY_ACTIONS,
            resources=["*"],
        ),
        iam.PolicyStatement(
            actions=ARTIFACT_OBJECT_ACTIONS,
            resources=[artifacts_objects_arn],
        ),
    ]


def codebuild_statements(log_group_arn: str, log_stream_arn: str, artifacts_objects_arn: str) -> List[iam.PolicyStatement]:
    """Permissions for the build service role: write build logs, read/write artifacts, push images."""
    return [
        iam.PolicyStatement(
            actions=BUILD_LOG_ACTIONS,
            resources=[log_group_arn, log_stream_arn],
        ),
        iam.PolicyStatement(
            actions=["s3:*"],
            resources=[artifacts_objects_arn],
        ),
        # Image pushes go to whatever repository ECR_REPO points at
        iam.PolicyStatement(
            actions=["ecr:*"],
            resources=["*"],
        ),
    ]


def cloudformation_statements() -> List[iam.PolicyStatement]:
    return [
        iam.PolicyStatement(actions=NETWORK_ACTIONS, resources=["*"]),
        iam.PolicyStatement(actions=LOAD_BALANCER_ACTIONS, resources=["*"]),
        iam.PolicyStatement(actions=["logs:*"], resources=["*"]),
        iam.PolicyStatement(actions=ECS_ACTIONS, resources=["*"]),
        iam.PolicyStatement(
            actions=ROLE_MANAGEMENT_ACTIONS,
            resources=[cdk.Fn.sub("arn:aws:iam::${AWS::AccountId}:role/*")],
        ),
    ]
