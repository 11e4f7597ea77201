"""Execution package: the project lifecycle state machine and its projection."""

from stackdeploy.execution.context import (
    ApprovalEvent,
    ExecutionContext,
    MachineState,
    ProgressEvent,
    StartEvent,
    TargetAction,
    Transition,
    auto_approve,
    on_target_action,
)
from stackdeploy.execution.machine import ProjectExecution, ProjectServices, failure_message
from stackdeploy.execution.project import Project, Status
from stackdeploy.execution.updates import ProjectUpdate, UpdateSink

__all__ = [
    "ApprovalEvent",
    "ExecutionContext",
    "MachineState",
    "ProgressEvent",
    "Project",
    "ProjectExecution",
    "ProjectServices",
    "ProjectUpdate",
    "StartEvent",
    "Status",
    "TargetAction",
    "Transition",
    "UpdateSink",
    "auto_approve",
    "failure_message",
    "on_target_action",
]
