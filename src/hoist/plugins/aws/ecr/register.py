"""Register the AWS ECR plugin."""
from typing import Sequence, Type

from hoist.core.registry import Registry
from hoist.plugins.aws.ecr.registry import EcrRegistry


def namespace() -> str:
    """Returns the namespace for the AWS ECR plugin."""
    return "aws_ecr"


def registries() -> Sequence[Type[Registry]]:
    """Returns all AWS ECR registries."""
    return [EcrRegistry]
