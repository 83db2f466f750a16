import json
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, Optional

from constructs import Node


logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Compute types CodeBuild accepts for LINUX_CONTAINER environments
COMPUTE_TYPES = (
    "BUILD_GENERAL1_SMALL",
    "BUILD_GENERAL1_MEDIUM",
    "BUILD_GENERAL1_LARGE",
    "BUILD_GENERAL1_2XLARGE",
)


INTEGER_SETTINGS = ("github_token_version", "max_image_count", "artifact_expiration_days")


class ConfigurationError(ValueError):
    """Raised when the pipeline context cannot produce a valid template."""


def _context_mapping(node: Node, key: str) -> dict:
    value = node.try_get_context(key) or {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ConfigurationError(f"Context key '{key}' is not valid JSON") from None
    if not isinstance(value, dict):
        raise ConfigurationError(f"Context key '{key}' must be a mapping")
    return value


def _as_int(name: str, value) -> int:
    # bool is an int subclass, True must not turn into 1
    if isinstance(value, bool):
        raise ConfigurationError(f"Pipeline setting '{name}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigurationError(f"Pipeline setting '{name}' must be an integer")


@dataclass
class PipelineSettings:
    """
    Values the pipeline template is synthesized from.
    Fields left as None become CloudFormation parameters without a default.
    """
    project_name: Optional[str] = None
    repository_owner: Optional[str] = "S-Polimetla"
    repository_name: Optional[str] = None
    repository_branch: Optional[str] = "master"
    docker_image_repository: Optional[str] = None
    github_token_parameter: str = "/github/polimetla_access_token"
    github_token_version: int = 1
    bucket_prefix: str = "io.polimetla.codepipeline"
    build_image: str = "aws/codebuild/standard:2.0"
    build_compute_type: str = "BUILD_GENERAL1_SMALL"
    buildspec: str = "buildspec.yaml"
    max_image_count: int = 5
    artifact_expiration_days: int = 7
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_context(cls, node: Node) -> "PipelineSettings":
        """
        Build settings from the "pipeline" and "tags" context keys of cdk.json.
        On the command line either pass the whole mapping as JSON
        (-c pipeline='{"max_image_count": 3}') or a single setting
        (-c max_image_count=3); single settings win over the mapping.
        """
        pipeline_context = _context_mapping(node, "pipeline")
        tags = _context_mapping(node, "tags")

        known = {f.name for f in fields(cls)} - {"tags"}
        unknown = sorted(set(pipeline_context) - known)
        if unknown:
            raise ConfigurationError(f"Unknown pipeline settings: {', '.join(unknown)}")

        values = dict(pipeline_context)
        for name in sorted(known):
            override = node.try_get_context(name)
            if override is not None:
                values[name] = override

        # -c overrides arrive as strings
        for name in INTEGER_SETTINGS:
            if name in values:
                values[name] = _as_int(name, values[name])

        settings = cls(tags={str(k): str(v) for k, v in tags.items()}, **values)
        settings.validate()
        logger.info('Loaded pipeline settings: %s', settings)
        return settings

    def validate(self) -> None:
        if self.max_image_count < 1:
            raise ConfigurationError("max_image_count must be at least 1")
        if self.artifact_expiration_days < 1:
            raise ConfigurationError("artifact_expiration_days must be at least 1")
        if self.github_token_version < 1:
            raise ConfigurationError("github_token_version must be at least 1")
        if not self.github_token_parameter.startswith("/"):
            raise ConfigurationError("github_token_parameter must be a full SSM path starting with '/'")
        if not self.buildspec:
            raise ConfigurationError("buildspec must not be empty")
        if not self.bucket_prefix:
            raise ConfigurationError("bucket_prefix must not be empty")
        if self.build_compute_type not in COMPUTE_TYPES:
            raise ConfigurationError(f"Unsupported build_compute_type: {self.build_compute_type}")

    @property
    def github_token(self) -> str:
        # Dynamic reference, resolved by CloudFormation at deploy time
        return f"{{{{resolve:ssm:{self.github_token_parameter}:{self.github_token_version}}}}}"
