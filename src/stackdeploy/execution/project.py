"""
Programmatic entrypoint.

``Project`` wraps the execution state machine, turns its transitions into
``ProjectUpdate`` events for the caller and exposes one awaitable method per
target action.

Precondition: only one request (synth/diff/deploy/destroy) may be
outstanding on a ``Project`` at a time. Await the previous one before
issuing the next.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import structlog

from stackdeploy.config.settings import Settings, get_settings
from stackdeploy.core.errors import ExecutionFailed, ExitCode
from stackdeploy.execution.context import (
    ApprovalEvent,
    ExecutionContext,
    MachineState,
    ProgressEvent,
    StartEvent,
    TargetAction,
    Transition,
    on_target_action,
)
from stackdeploy.execution.machine import ClientFactory, ProjectExecution, ProjectServices
from stackdeploy.execution.updates import (
    Deployed,
    Deploying,
    DeployUpdate,
    Destroyed,
    Destroying,
    DestroyUpdate,
    Diffed,
    Diffing,
    ProjectUpdate,
    Synthed,
    Synthing,
    UpdateSink,
)
from stackdeploy.logging import bind_run_context
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.stacks.synth import Synthesizer
from stackdeploy.terraform.base import TerraformPlan

logger = structlog.get_logger()


class Status(str, Enum):
    STARTING = "starting"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    PLANNING = "planning"
    PLANNED = "planned"
    DEPLOYING = "deploying"
    DESTROYING = "destroying"
    OUTPUT_FETCHED = "output fetched"
    DONE = "done"


class Project:
    """A synthesizable project whose stacks can be diffed, deployed and destroyed."""

    def __init__(
        self,
        *,
        synth_command: str,
        target_dir: str,
        on_update: UpdateSink,
        auto_approve: bool | None = None,
        synthesizer: Synthesizer | None = None,
        client_factory: ClientFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.synth_command = synth_command
        self.target_dir = target_dir
        self.auto_approve = self._settings.auto_approve if auto_approve is None else auto_approve
        self._on_update = on_update
        self._synthesizer = synthesizer
        self._client_factory = client_factory

        self.status = Status.STARTING
        self.current_state = MachineState.IDLE
        self.stack_name: str | None = None
        self.current_plan: TerraformPlan | None = None
        self.stacks: list[SynthesizedStack] | None = None
        self.outputs: dict[str, Any] | None = None
        self._execution: ProjectExecution | None = None

    async def synth(self) -> Status:
        return await self._run(TargetAction.SYNTH)

    async def diff(self, stack_name: str | None = None) -> Status:
        return await self._run(TargetAction.DIFF, stack_name)

    async def deploy(self, stack_name: str | None = None) -> Status:
        return await self._run(TargetAction.DEPLOY, stack_name)

    async def destroy(self, stack_name: str | None = None) -> Status:
        return await self._run(TargetAction.DESTROY, stack_name)

    def approve(self) -> bool:
        """Continue a run that is waiting for approval."""
        return self._send(ApprovalEvent.APPROVAL_GIVEN)

    def abort(self) -> bool:
        """Stop a run that is waiting for approval; the run still ends in ``done``."""
        return self._send(ApprovalEvent.APPROVAL_ABORTED)

    def _send(self, event: ApprovalEvent) -> bool:
        if self._execution is None:
            logger.warning("event_ignored", approval_event=event.value, reason="no_active_run")
            return False
        return self._execution.send(event)

    async def _run(self, action: TargetAction, stack_name: str | None = None) -> Status:
        self.stack_name = stack_name
        bind_run_context(target_action=action.value, target_stack=stack_name)
        services = ProjectServices(
            synthesizer=self._synthesizer,
            client_factory=self._client_factory,
            on_progress=self._handle_progress,
            settings=self._settings,
        )
        execution = ProjectExecution(
            synth_command=self.synth_command,
            target_dir=self.target_dir,
            services=services,
            auto_approve=self.auto_approve,
        )
        execution.on_transition(self._handle_transition)
        self._execution = execution

        context = await execution.run(StartEvent(target_action=action, target_stack=stack_name))
        if execution.state is MachineState.ERROR:
            raise ExecutionFailed(
                context.get("message") or f"{action.value} failed",
                exit_code=context.get("failure_exit_code") or ExitCode.RUN_FAILED,
                details={"target_action": action.value},
            )
        return Status.DONE

    def _handle_transition(self, transition: Transition) -> None:
        self.current_state = transition.current
        ctx = transition.context

        if transition.previous is MachineState.SYNTH:
            self.stacks = ctx.get("stacks") or []
            self.status = Status.SYNTHESIZED
            self._emit(Synthed(stacks=self.stacks, error_message=ctx.get("message")))
        elif transition.previous is MachineState.DIFF and transition.current is not MachineState.ERROR:
            self.current_plan = ctx.get("plan")
            self.status = Status.PLANNED
            self._emit(Diffed(stack_name=self._stack_name(ctx), plan=ctx["plan"]))
        elif transition.previous is MachineState.GATHER_OUTPUT and transition.current is MachineState.DONE:
            self.status = Status.OUTPUT_FETCHED
            self.outputs = ctx.get("outputs") or {}
            if on_target_action(ctx, TargetAction.DEPLOY):
                self._emit(
                    Deployed(
                        stack_name=self._stack_name(ctx),
                        outputs=self.outputs,
                        outputs_by_construct_id=ctx.get("outputs_by_construct_id") or {},
                    )
                )
            if on_target_action(ctx, TargetAction.DESTROY):
                self._emit(Destroyed(stack_name=self._stack_name(ctx)))

        if transition.current is MachineState.SYNTH:
            self.status = Status.SYNTHESIZING
            self._emit(Synthing())
        elif transition.current is MachineState.DIFF:
            self.status = Status.PLANNING
            self._emit(Diffing(stack_name=self._stack_name(ctx)))
        elif transition.current is MachineState.DEPLOY:
            self.status = Status.DEPLOYING
            self._emit(Deploying(stack_name=self._stack_name(ctx)))
        elif transition.current is MachineState.DESTROY:
            self.status = Status.DESTROYING
            self._emit(Destroying(stack_name=self._stack_name(ctx)))
        elif transition.current is MachineState.DONE:
            self.status = Status.DONE

    def _handle_progress(self, event: ProgressEvent) -> None:
        if event.state_name == MachineState.DEPLOY.value:
            self._emit(DeployUpdate(stack_name=event.stack_name, deploy_output=event.stdout))
        elif event.state_name == MachineState.DESTROY.value:
            self._emit(DestroyUpdate(stack_name=event.stack_name, destroy_output=event.stdout))

    def _stack_name(self, ctx: ExecutionContext) -> str | None:
        if ctx.get("target_stack"):
            return ctx["target_stack"]
        stacks = ctx.get("stacks") or []
        if len(stacks) == 1:
            return stacks[0].name
        return None

    def _emit(self, update: ProjectUpdate) -> None:
        try:
            self._on_update(update)
        except Exception:
            logger.exception("update_sink_failed", update_type=update.type)
