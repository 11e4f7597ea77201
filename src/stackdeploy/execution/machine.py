"""
Project execution state machine.

One instance drives exactly one run through
synth -> diff -> (approval) -> deploy | destroy -> gatherOutput, ending in
``done`` or ``error``. Phases run strictly one after another; a failing phase
records its message and moves straight to ``error``. Nothing is retried.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from langgraph.graph import END, StateGraph

from stackdeploy.config.settings import Settings
from stackdeploy.core.errors import ExternalToolError, InternalError, StackDeployError, exit_code_for
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
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.stacks.outputs import get_construct_ids_for_outputs
from stackdeploy.stacks.resolver import resolve_stack
from stackdeploy.stacks.synth import CommandSynthesizer, Synthesizer
from stackdeploy.terraform.base import TerraformClient, TerraformPlan
from stackdeploy.terraform.selection import select_terraform_client

logger = structlog.get_logger()

ClientFactory = Callable[[SynthesizedStack, bool], Awaitable[TerraformClient]]
ProgressCallback = Callable[[ProgressEvent], None]
TransitionListener = Callable[[Transition], None]


class ProjectServices:
    """The asynchronous work each phase invokes."""

    def __init__(
        self,
        synthesizer: Synthesizer | None = None,
        client_factory: ClientFactory | None = None,
        on_progress: ProgressCallback | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._synthesizer = synthesizer or CommandSynthesizer(settings)
        self._client_factory = client_factory or (
            lambda stack, is_speculative: select_terraform_client(stack, is_speculative, settings)
        )
        self._on_progress = on_progress

    async def synth(self, context: ExecutionContext) -> list[SynthesizedStack]:
        return await self._synthesizer.synth(context["synth_command"], context["target_dir"])

    async def diff(self, context: ExecutionContext) -> TerraformPlan:
        stack = resolve_stack(context.get("stacks"), context.get("target_stack"))
        client = await self._client_factory(stack, on_target_action(context, TargetAction.DIFF))
        await client.init()
        return await client.plan(on_target_action(context, TargetAction.DESTROY))

    async def deploy(self, context: ExecutionContext) -> None:
        plan = _require_plan(context, destroy=False)
        stack = resolve_stack(context.get("stacks"), context.get("target_stack"))
        client = await self._client_factory(stack, False)
        await client.apply(plan, self._chunk_sink(stack, MachineState.DEPLOY))

    async def destroy(self, context: ExecutionContext) -> None:
        plan = _require_plan(context, destroy=True)
        stack = resolve_stack(context.get("stacks"), context.get("target_stack"))
        client = await self._client_factory(stack, False)
        await client.destroy(self._chunk_sink(stack, MachineState.DESTROY), plan)

    async def gather_outputs(self, context: ExecutionContext) -> tuple[dict[str, Any], dict[str, Any]]:
        if on_target_action(context, TargetAction.DESTROY):
            return {}, {}

        stack = resolve_stack(context.get("stacks"), context.get("target_stack"))
        client = await self._client_factory(stack, False)
        outputs = await client.output()
        return outputs, get_construct_ids_for_outputs(stack.parsed(), outputs)

    def _chunk_sink(self, stack: SynthesizedStack, state: MachineState) -> Callable[[str], None]:
        def sink(chunk: str) -> None:
            if self._on_progress is not None:
                self._on_progress(ProgressEvent(stack_name=stack.name, state_name=state.value, stdout=chunk))

        return sink


def _require_plan(context: ExecutionContext, *, destroy: bool) -> TerraformPlan:
    plan = context.get("plan")
    if plan is None:
        raise InternalError("No plan file found, diff needs to be run first")
    if plan.is_destroy != destroy:
        raise InternalError(
            "Stored plan does not match the requested action",
            details={"plan_is_destroy": plan.is_destroy, "requested_destroy": destroy},
        )
    return plan


def failure_message(state: MachineState, error: Exception) -> str:
    """Render a phase failure the way it is stored in the context."""
    if state is MachineState.DIFF and isinstance(error, ExternalToolError):
        return f"terraform plan errored with: \n{error.diagnostic or error.message}"
    if isinstance(error, StackDeployError):
        return error.message
    return str(error)


class ProjectExecution:
    """Runs one project execution and reports every state change."""

    def __init__(
        self,
        *,
        synth_command: str,
        target_dir: str,
        services: ProjectServices | None = None,
        auto_approve: bool = False,
    ) -> None:
        self._services = services or ProjectServices()
        self.state = MachineState.IDLE
        self.context: ExecutionContext = {
            "synth_command": synth_command,
            "target_dir": target_dir,
            "auto_approve": auto_approve,
            "stacks": None,
            "plan": None,
            "outputs": {},
            "outputs_by_construct_id": {},
            "message": None,
            "failed": False,
            "failure_exit_code": None,
            "approval": None,
        }
        self._listeners: list[TransitionListener] = []
        self._decision: asyncio.Future[ApprovalEvent] | None = None
        self._graph = self._build_graph()

    def on_transition(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    async def run(self, start: StartEvent) -> ExecutionContext:
        """Handle START and drive the run to ``done`` or ``error``."""
        if self.state is not MachineState.IDLE:
            raise InternalError(
                "An execution can only be started once",
                details={"state": self.state.value},
            )
        initial: ExecutionContext = {
            **self.context,
            "target_action": TargetAction(start.target_action),
            "target_stack": start.target_stack,
        }
        self.context = initial
        return await self._graph.ainvoke(initial)

    def send(self, event: ApprovalEvent) -> bool:
        """Deliver an approval decision; ignored unless waiting for one."""
        if self.state is not MachineState.WAITING_FOR_APPROVAL or self._decision is None or self._decision.done():
            logger.warning("event_ignored", approval_event=event.value, state=self.state.value)
            return False
        self._decision.set_result(event)
        return True

    def _build_graph(self) -> Any:
        graph = StateGraph(ExecutionContext)
        graph.add_node(MachineState.SYNTH.value, self._synth)
        graph.add_node(MachineState.DIFF.value, self._diff)
        graph.add_node(MachineState.WAITING_FOR_APPROVAL.value, self._wait_for_approval)
        graph.add_node(MachineState.APPROVED.value, self._approved)
        graph.add_node(MachineState.DEPLOY.value, self._deploy)
        graph.add_node(MachineState.DESTROY.value, self._destroy)
        graph.add_node(MachineState.GATHER_OUTPUT.value, self._gather_output)
        graph.add_node(MachineState.DONE.value, self._done)
        graph.add_node(MachineState.ERROR.value, self._error)

        graph.set_entry_point(MachineState.SYNTH.value)

        graph.add_conditional_edges(
            MachineState.SYNTH.value,
            self._after_synth,
            {s.value: s.value for s in (MachineState.DONE, MachineState.DIFF, MachineState.ERROR)},
        )
        graph.add_conditional_edges(
            MachineState.DIFF.value,
            self._after_diff,
            {
                s.value: s.value
                for s in (
                    MachineState.DONE,
                    MachineState.APPROVED,
                    MachineState.WAITING_FOR_APPROVAL,
                    MachineState.ERROR,
                )
            },
        )
        graph.add_conditional_edges(
            MachineState.WAITING_FOR_APPROVAL.value,
            self._after_approval,
            {s.value: s.value for s in (MachineState.APPROVED, MachineState.DONE)},
        )
        graph.add_conditional_edges(
            MachineState.APPROVED.value,
            self._after_approved,
            {s.value: s.value for s in (MachineState.DEPLOY, MachineState.DESTROY, MachineState.ERROR)},
        )
        for phase in (MachineState.DEPLOY, MachineState.DESTROY):
            graph.add_conditional_edges(
                phase.value,
                self._next_or_error(MachineState.GATHER_OUTPUT),
                {s.value: s.value for s in (MachineState.GATHER_OUTPUT, MachineState.ERROR)},
            )
        graph.add_conditional_edges(
            MachineState.GATHER_OUTPUT.value,
            self._next_or_error(MachineState.DONE),
            {s.value: s.value for s in (MachineState.DONE, MachineState.ERROR)},
        )
        graph.add_edge(MachineState.DONE.value, END)
        graph.add_edge(MachineState.ERROR.value, END)

        return graph.compile()

    # Routing (guards are evaluated against the context at transition time)

    @staticmethod
    def _after_synth(context: ExecutionContext) -> str:
        if context.get("failed"):
            return MachineState.ERROR.value
        if on_target_action(context, TargetAction.SYNTH):
            return MachineState.DONE.value
        return MachineState.DIFF.value

    @staticmethod
    def _after_diff(context: ExecutionContext) -> str:
        if context.get("failed"):
            return MachineState.ERROR.value
        if on_target_action(context, TargetAction.DIFF):
            return MachineState.DONE.value
        if auto_approve(context):
            return MachineState.APPROVED.value
        return MachineState.WAITING_FOR_APPROVAL.value

    @staticmethod
    def _after_approval(context: ExecutionContext) -> str:
        if context.get("approval") is ApprovalEvent.APPROVAL_GIVEN:
            return MachineState.APPROVED.value
        return MachineState.DONE.value

    @staticmethod
    def _after_approved(context: ExecutionContext) -> str:
        if context.get("failed"):
            return MachineState.ERROR.value
        if on_target_action(context, TargetAction.DEPLOY):
            return MachineState.DEPLOY.value
        return MachineState.DESTROY.value

    @staticmethod
    def _next_or_error(next_state: MachineState) -> Callable[[ExecutionContext], str]:
        def route(context: ExecutionContext) -> str:
            return MachineState.ERROR.value if context.get("failed") else next_state.value

        return route

    # States

    async def _synth(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.SYNTH, context)
        try:
            stacks = await self._services.synth(context)
        except Exception as exc:
            return self._fail(MachineState.SYNTH, exc)
        return {"stacks": stacks}

    async def _diff(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.DIFF, context)
        try:
            plan = await self._services.diff(context)
        except Exception as exc:
            return self._fail(MachineState.DIFF, exc)
        return {"plan": plan}

    async def _wait_for_approval(self, context: ExecutionContext) -> ExecutionContext:
        self._decision = asyncio.get_running_loop().create_future()
        self._enter(MachineState.WAITING_FOR_APPROVAL, context)
        decision = await self._decision
        self._decision = None
        return {"approval": decision}

    async def _approved(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.APPROVED, context)
        if not (
            on_target_action(context, TargetAction.DEPLOY) or on_target_action(context, TargetAction.DESTROY)
        ):
            return self._fail(
                MachineState.APPROVED,
                InternalError(f"Nothing to approve for target action {context.get('target_action')}"),
            )
        return {}

    async def _deploy(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.DEPLOY, context)
        try:
            await self._services.deploy(context)
        except Exception as exc:
            return self._fail(MachineState.DEPLOY, exc)
        return {}

    async def _destroy(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.DESTROY, context)
        try:
            await self._services.destroy(context)
        except Exception as exc:
            return self._fail(MachineState.DESTROY, exc)
        return {}

    async def _gather_output(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.GATHER_OUTPUT, context)
        try:
            outputs, outputs_by_construct_id = await self._services.gather_outputs(context)
        except Exception as exc:
            return self._fail(MachineState.GATHER_OUTPUT, exc)
        return {"outputs": outputs, "outputs_by_construct_id": outputs_by_construct_id}

    async def _done(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.DONE, context)
        return {}

    async def _error(self, context: ExecutionContext) -> ExecutionContext:
        self._enter(MachineState.ERROR, context)
        return {}

    def _fail(self, state: MachineState, error: Exception) -> ExecutionContext:
        message = failure_message(state, error)
        logger.error(
            "phase_failed",
            state=state.value,
            error_type=type(error).__name__,
            message=message,
            exc_info=not isinstance(error, StackDeployError),
        )
        return {"failed": True, "message": message, "failure_exit_code": exit_code_for(error)}

    def _enter(self, state: MachineState, context: ExecutionContext) -> None:
        previous = self.state
        self.state = state
        self.context = dict(context)  # type: ignore[assignment]
        logger.info(
            "state_transition",
            previous=previous.value,
            current=state.value,
            target_action=context.get("target_action"),
        )
        transition = Transition(previous=previous, current=state, context=self.context)
        for listener in list(self._listeners):
            listener(transition)
