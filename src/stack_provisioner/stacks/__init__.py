"""Reusable stacks: functions returning lists of resource nodes."""

from stack_provisioner.stacks.lambda_api import lambda_api_stack

__all__ = ["lambda_api_stack"]
