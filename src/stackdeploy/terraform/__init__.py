"""Provisioning clients: local terraform process and remote workspaces."""

from stackdeploy.terraform.base import ChunkCallback, PlannedChange, TerraformClient, TerraformPlan
from stackdeploy.terraform.cli import TerraformCli
from stackdeploy.terraform.cloud import TerraformCloud, TerraformCloudApi
from stackdeploy.terraform.selection import select_terraform_client

__all__ = [
    "ChunkCallback",
    "PlannedChange",
    "TerraformCli",
    "TerraformClient",
    "TerraformCloud",
    "TerraformCloudApi",
    "TerraformPlan",
    "select_terraform_client",
]
