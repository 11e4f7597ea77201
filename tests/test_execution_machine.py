"""Tests for execution/machine.py and the guards in execution/context.py."""

import asyncio

import pytest
from stackdeploy.core.errors import ExitCode, ExternalToolError, InternalError, UsageError
from stackdeploy.execution.context import (
    ApprovalEvent,
    MachineState,
    StartEvent,
    TargetAction,
    auto_approve,
    on_target_action,
)
from stackdeploy.execution.machine import ProjectExecution, ProjectServices, failure_message


def _execution(synthesizer, client, make_factory, *, auto_approve=False, on_progress=None):
    factory = make_factory(client)
    services = ProjectServices(synthesizer=synthesizer, client_factory=factory, on_progress=on_progress)
    execution = ProjectExecution(
        synth_command="python main.py",
        target_dir="/tmp/project",
        services=services,
        auto_approve=auto_approve,
    )
    states: list[MachineState] = []
    execution.on_transition(lambda t: states.append(t.current))
    return execution, states, factory


class TestGuards:
    def test_on_target_action(self):
        ctx = {"target_action": TargetAction.DEPLOY}
        assert on_target_action(ctx, "deploy")
        assert on_target_action(ctx, TargetAction.DEPLOY)
        assert not on_target_action(ctx, "destroy")

    def test_auto_approve_missing_is_false(self):
        assert auto_approve({}) is False
        assert auto_approve({"auto_approve": None}) is False
        assert auto_approve({"auto_approve": True}) is True


class TestFailureMessage:
    def test_plan_failure_carries_diagnostic(self):
        error = ExternalToolError("terraform plan failed", diagnostic="Error: no credentials")
        message = failure_message(MachineState.DIFF, error)
        assert message.startswith("terraform plan errored with:")
        assert "Error: no credentials" in message

    def test_other_phase_uses_message(self):
        error = ExternalToolError("terraform apply failed", diagnostic="boom")
        assert failure_message(MachineState.DEPLOY, error) == "terraform apply failed"

    def test_plain_exception(self):
        assert failure_message(MachineState.SYNTH, RuntimeError("kaput")) == "kaput"


class TestProjectExecution:
    @pytest.mark.asyncio
    async def test_synth_only_stops_after_synth(self, stub_synthesizer, stub_client, make_factory):
        execution, states, factory = _execution(stub_synthesizer, stub_client, make_factory)

        context = await execution.run(StartEvent(TargetAction.SYNTH))

        assert states == [MachineState.SYNTH, MachineState.DONE]
        assert [s.name for s in context["stacks"]] == ["test"]
        assert factory.calls == []
        assert stub_synthesizer.calls == [("python main.py", "/tmp/project")]

    @pytest.mark.asyncio
    async def test_diff_only_never_deploys(self, stub_synthesizer, stub_client, make_factory):
        execution, states, factory = _execution(stub_synthesizer, stub_client, make_factory, auto_approve=True)

        context = await execution.run(StartEvent(TargetAction.DIFF))

        assert states == [MachineState.SYNTH, MachineState.DIFF, MachineState.DONE]
        assert stub_client.calls == ["init", "plan"]
        assert context["plan"].is_destroy is False
        assert factory.calls == [("test", True)]

    @pytest.mark.asyncio
    async def test_auto_approved_deploy(self, stub_synthesizer, make_client, make_factory):
        client = make_client(outputs={"url": "http://x"})
        execution, states, factory = _execution(stub_synthesizer, client, make_factory, auto_approve=True)

        context = await execution.run(StartEvent(TargetAction.DEPLOY, "test"))

        assert states == [
            MachineState.SYNTH,
            MachineState.DIFF,
            MachineState.APPROVED,
            MachineState.DEPLOY,
            MachineState.GATHER_OUTPUT,
            MachineState.DONE,
        ]
        assert MachineState.WAITING_FOR_APPROVAL not in states
        assert client.calls == ["init", "plan", "apply", "output"]
        assert context["outputs"] == {"url": "http://x"}
        # diff, deploy and output each resolve their own client
        assert factory.calls == [("test", False), ("test", False), ("test", False)]

    @pytest.mark.asyncio
    async def test_destroy_plans_destroy_and_skips_outputs(self, stub_synthesizer, stub_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, stub_client, make_factory, auto_approve=True)

        context = await execution.run(StartEvent(TargetAction.DESTROY, "test"))

        assert MachineState.DESTROY in states
        assert stub_client.calls == ["init", "plan:destroy", "destroy"]
        assert context["outputs"] == {}
        assert context["outputs_by_construct_id"] == {}
        assert execution.state is MachineState.DONE

    @pytest.mark.asyncio
    async def test_waits_for_approval(self, stub_synthesizer, stub_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, stub_client, make_factory)
        execution.on_transition(
            lambda t: t.current is MachineState.WAITING_FOR_APPROVAL and execution.send(ApprovalEvent.APPROVAL_GIVEN)
        )

        await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states[:4] == [
            MachineState.SYNTH,
            MachineState.DIFF,
            MachineState.WAITING_FOR_APPROVAL,
            MachineState.APPROVED,
        ]
        assert execution.state is MachineState.DONE
        assert "apply" in stub_client.calls

    @pytest.mark.asyncio
    async def test_approval_can_arrive_late(self, stub_synthesizer, stub_client, make_factory):
        execution, _, _ = _execution(stub_synthesizer, stub_client, make_factory)
        run = asyncio.create_task(execution.run(StartEvent(TargetAction.DEPLOY)))

        while execution.state is not MachineState.WAITING_FOR_APPROVAL:
            await asyncio.sleep(0)
        assert stub_client.calls == ["init", "plan"]

        assert execution.send(ApprovalEvent.APPROVAL_GIVEN) is True
        await run
        assert stub_client.calls == ["init", "plan", "apply", "output"]

    @pytest.mark.asyncio
    async def test_aborted_approval_is_done_without_error(self, stub_synthesizer, stub_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, stub_client, make_factory)
        execution.on_transition(
            lambda t: t.current is MachineState.WAITING_FOR_APPROVAL and execution.send(ApprovalEvent.APPROVAL_ABORTED)
        )

        context = await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states[-1] is MachineState.DONE
        assert context["message"] is None
        assert "apply" not in stub_client.calls

    @pytest.mark.asyncio
    async def test_approval_outside_waiting_state_is_ignored(self, stub_synthesizer, stub_client, make_factory):
        execution, _, _ = _execution(stub_synthesizer, stub_client, make_factory)
        assert execution.send(ApprovalEvent.APPROVAL_GIVEN) is False

    @pytest.mark.asyncio
    async def test_approval_after_finished_run_is_ignored(self, stub_synthesizer, stub_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, stub_client, make_factory)
        await execution.run(StartEvent(TargetAction.SYNTH))

        assert execution.send(ApprovalEvent.APPROVAL_GIVEN) is False
        assert execution.send(ApprovalEvent.APPROVAL_ABORTED) is False
        assert states[-1] is MachineState.DONE

    @pytest.mark.asyncio
    async def test_plan_failure_never_applies(self, stub_synthesizer, failing_plan_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, failing_plan_client, make_factory, auto_approve=True)

        context = await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states == [MachineState.SYNTH, MachineState.DIFF, MachineState.ERROR]
        assert "no credentials" in context["message"]
        assert "plan errored with" in context["message"]
        assert context["failure_exit_code"] == ExitCode.EXTERNAL_TOOL_ERROR
        assert failing_plan_client.calls == ["init", "plan"]

    @pytest.mark.asyncio
    async def test_synth_failure(self, make_synthesizer, stub_client, make_factory):
        synthesizer = make_synthesizer(error=ExternalToolError("Synth command failed", diagnostic="ts error"))
        execution, states, _ = _execution(synthesizer, stub_client, make_factory)

        context = await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states == [MachineState.SYNTH, MachineState.ERROR]
        assert context["message"] == "Synth command failed"
        assert stub_client.calls == []

    @pytest.mark.asyncio
    async def test_unknown_stack_is_reported(self, stub_synthesizer, stub_client, make_factory):
        execution, states, _ = _execution(stub_synthesizer, stub_client, make_factory)

        context = await execution.run(StartEvent(TargetAction.DIFF, "nope"))

        assert states[-1] is MachineState.ERROR
        assert context["message"] == "Unknown stack: nope"
        assert context["failure_exit_code"] == ExitCode.USAGE_ERROR

    @pytest.mark.asyncio
    async def test_apply_failure_skips_outputs(self, stub_synthesizer, make_client, make_factory):
        client = make_client(apply_error=ExternalToolError("terraform apply failed", diagnostic="quota"))
        execution, states, _ = _execution(stub_synthesizer, client, make_factory, auto_approve=True)

        context = await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states[-2:] == [MachineState.DEPLOY, MachineState.ERROR]
        assert "output" not in client.calls
        assert context["message"] == "terraform apply failed"

    @pytest.mark.asyncio
    async def test_output_failure_is_terminal(self, stub_synthesizer, make_client, make_factory):
        client = make_client(output_error=ExternalToolError("terraform output failed"))
        execution, states, _ = _execution(stub_synthesizer, client, make_factory, auto_approve=True)

        await execution.run(StartEvent(TargetAction.DEPLOY))

        assert states[-2:] == [MachineState.GATHER_OUTPUT, MachineState.ERROR]

    @pytest.mark.asyncio
    async def test_streamed_chunks_reach_progress_callback(self, stub_synthesizer, make_client, make_factory):
        client = make_client(chunks=("line 1\n", "line 2\n"))
        events = []
        execution, _, _ = _execution(
            stub_synthesizer, client, make_factory, auto_approve=True, on_progress=events.append
        )

        await execution.run(StartEvent(TargetAction.DEPLOY))

        assert [(e.stack_name, e.state_name, e.stdout) for e in events] == [
            ("test", "deploy", "line 1\n"),
            ("test", "deploy", "line 2\n"),
        ]

    @pytest.mark.asyncio
    async def test_run_only_once(self, stub_synthesizer, stub_client, make_factory):
        execution, _, _ = _execution(stub_synthesizer, stub_client, make_factory)
        await execution.run(StartEvent(TargetAction.SYNTH))

        with pytest.raises(InternalError):
            await execution.run(StartEvent(TargetAction.SYNTH))


class TestProjectServices:
    @pytest.mark.asyncio
    async def test_deploy_without_plan_is_internal_error(self, stub_synthesizer, stub_client, make_factory, make_stack):
        services = ProjectServices(synthesizer=stub_synthesizer, client_factory=make_factory(stub_client))
        ctx = {"target_action": TargetAction.DEPLOY, "stacks": [make_stack("test")], "plan": None}

        with pytest.raises(InternalError, match="diff needs to be run first"):
            await services.deploy(ctx)
        assert stub_client.calls == []

    @pytest.mark.asyncio
    async def test_destroy_rejects_apply_plan(self, stub_synthesizer, stub_client, make_factory, make_stack):
        services = ProjectServices(synthesizer=stub_synthesizer, client_factory=make_factory(stub_client))
        plan = await stub_client.plan(destroy=False)
        ctx = {"target_action": TargetAction.DESTROY, "stacks": [make_stack("test")], "plan": plan}

        with pytest.raises(InternalError):
            await services.destroy(ctx)

    @pytest.mark.asyncio
    async def test_diff_before_synth_is_internal_error(self, stub_synthesizer, stub_client, make_factory):
        services = ProjectServices(synthesizer=stub_synthesizer, client_factory=make_factory(stub_client))

        with pytest.raises(InternalError):
            await services.diff({"target_action": TargetAction.DIFF, "stacks": None})

    @pytest.mark.asyncio
    async def test_ambiguous_stack_is_usage_error(self, stub_synthesizer, stub_client, make_factory, make_stack):
        services = ProjectServices(synthesizer=stub_synthesizer, client_factory=make_factory(stub_client))
        ctx = {"target_action": TargetAction.DIFF, "stacks": [make_stack("a"), make_stack("b")]}

        with pytest.raises(UsageError, match="Please select a stack to use"):
            await services.diff(ctx)

    @pytest.mark.asyncio
    async def test_outputs_mapped_to_constructs(self, stub_synthesizer, make_client, make_factory, make_stack):
        stack = make_stack(
            "web",
            {"output": {"url": {"value": "${x}", "//": {"metadata": {"path": "web/frontend/url"}}}}},
        )
        client = make_client(outputs={"url": "http://x"})
        services = ProjectServices(synthesizer=stub_synthesizer, client_factory=make_factory(client))

        outputs, by_construct = await services.gather_outputs(
            {"target_action": TargetAction.DEPLOY, "stacks": [stack], "target_stack": "web"}
        )

        assert outputs == {"url": "http://x"}
        assert by_construct == {"frontend": {"url": "http://x"}}
