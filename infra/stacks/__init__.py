"""CDK Stacks package."""

from stacks.deployment_stack import DeploymentStack

__all__ = ["DeploymentStack"]
