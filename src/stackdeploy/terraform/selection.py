"""Choose the provisioning client for a stack."""

from __future__ import annotations

import structlog

from stackdeploy.config.settings import Settings
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import TerraformClient
from stackdeploy.terraform.cli import TerraformCli
from stackdeploy.terraform.cloud import TerraformCloud

logger = structlog.get_logger()


async def select_terraform_client(
    stack: SynthesizedStack,
    is_speculative: bool,
    settings: Settings | None = None,
) -> TerraformClient:
    """
    Return a remote-workspace client when the stack declares a usable remote
    backend, otherwise a local terraform client.

    The probe runs on every call; nothing is cached between phases.
    """
    backend = stack.remote_backend()
    if backend:
        cloud = TerraformCloud(stack, backend, is_speculative, settings)
        if await cloud.is_remote_workspace():
            logger.info("terraform_client_selected", stack_name=stack.name, client="remote")
            return cloud
        logger.info("remote_backend_unusable", stack_name=stack.name, fallback="local")

    logger.info("terraform_client_selected", stack_name=stack.name, client="local")
    return TerraformCli(stack, settings)
