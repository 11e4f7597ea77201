"""State, events and guards of a single project execution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypedDict

from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import TerraformPlan


class TargetAction(str, Enum):
    SYNTH = "synth"
    DIFF = "diff"
    DEPLOY = "deploy"
    DESTROY = "destroy"


class MachineState(str, Enum):
    IDLE = "idle"
    SYNTH = "synth"
    DIFF = "diff"
    WAITING_FOR_APPROVAL = "waitingForApproval"
    APPROVED = "approved"
    DEPLOY = "deploy"
    DESTROY = "destroy"
    GATHER_OUTPUT = "gatherOutput"
    DONE = "done"
    ERROR = "error"


class ApprovalEvent(str, Enum):
    APPROVAL_GIVEN = "APPROVAL_GIVEN"
    APPROVAL_ABORTED = "APPROVAL_ABORTED"


@dataclass(frozen=True)
class StartEvent:
    """START: begin a run for one target action and optional stack."""

    target_action: TargetAction
    target_stack: str | None = None


class ExecutionContext(TypedDict, total=False):
    target_action: TargetAction
    target_stack: str | None
    auto_approve: bool
    synth_command: str
    target_dir: str
    stacks: list[SynthesizedStack] | None
    plan: TerraformPlan | None
    outputs: dict[str, Any]
    outputs_by_construct_id: dict[str, Any]
    message: str | None
    failed: bool
    failure_exit_code: int | None
    approval: ApprovalEvent | None


@dataclass(frozen=True)
class ProgressEvent:
    """A chunk of streamed output from a running phase."""

    stack_name: str
    state_name: str
    stdout: str


@dataclass(frozen=True)
class Transition:
    previous: MachineState
    current: MachineState
    context: ExecutionContext


def on_target_action(context: ExecutionContext, value: TargetAction | str) -> bool:
    return context.get("target_action") == TargetAction(value)


def auto_approve(context: ExecutionContext) -> bool:
    return bool(context.get("auto_approve"))
