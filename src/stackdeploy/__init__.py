"""stackdeploy: synthesize, plan, approve and apply Terraform stacks."""

from stackdeploy.execution import Project, ProjectUpdate, Status
from stackdeploy.stacks import SynthesizedStack
from stackdeploy.terraform import TerraformPlan

__all__ = ["Project", "ProjectUpdate", "Status", "SynthesizedStack", "TerraformPlan"]
