"""Root test configuration."""

import json
import logging
from typing import Any

import pytest
import structlog
from stackdeploy.core.errors import ExternalToolError
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import PlannedChange, TerraformPlan


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def build_stack(name: str, document: dict[str, Any] | None = None, working_directory: str = ".") -> SynthesizedStack:
    return SynthesizedStack(
        name=name,
        content=json.dumps(document or {"resource": {"null_resource": {"test": {}}}}),
        working_directory=working_directory,
    )


class StubClient:
    """Records every provisioning call and replays canned results."""

    def __init__(
        self,
        *,
        plan_error: Exception | None = None,
        apply_error: Exception | None = None,
        output_error: Exception | None = None,
        outputs: dict[str, Any] | None = None,
        chunks: tuple[str, ...] = (),
    ) -> None:
        self.plan_error = plan_error
        self.apply_error = apply_error
        self.output_error = output_error
        self.outputs = outputs or {}
        self.chunks = chunks
        self.calls: list[str] = []

    async def init(self) -> None:
        self.calls.append("init")

    async def plan(self, destroy: bool = False) -> TerraformPlan:
        self.calls.append("plan:destroy" if destroy else "plan")
        if self.plan_error:
            raise self.plan_error
        action = "delete" if destroy else "create"
        return TerraformPlan(
            plan_file="plan",
            is_destroy=destroy,
            changes=[PlannedChange(address="null_resource.test", actions=(action,))],
        )

    async def apply(self, plan: TerraformPlan, on_chunk) -> None:
        self.calls.append("apply")
        for chunk in self.chunks:
            on_chunk(chunk)
        if self.apply_error:
            raise self.apply_error

    async def destroy(self, on_chunk, plan: TerraformPlan | None = None) -> None:
        self.calls.append("destroy")
        for chunk in self.chunks:
            on_chunk(chunk)
        if self.apply_error:
            raise self.apply_error

    async def output(self) -> dict[str, Any]:
        self.calls.append("output")
        if self.output_error:
            raise self.output_error
        return self.outputs


class StubSynthesizer:
    def __init__(self, stacks: list[SynthesizedStack] | None = None, error: Exception | None = None) -> None:
        self.stacks = stacks if stacks is not None else [build_stack("test")]
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def synth(self, synth_command: str, target_dir: str) -> list[SynthesizedStack]:
        self.calls.append((synth_command, target_dir))
        if self.error:
            raise self.error
        return self.stacks


class RecordingFactory:
    """Client factory that always hands out the same stub client."""

    def __init__(self, client: StubClient) -> None:
        self.client = client
        self.calls: list[tuple[str, bool]] = []

    async def __call__(self, stack: SynthesizedStack, is_speculative: bool) -> StubClient:
        self.calls.append((stack.name, is_speculative))
        return self.client


@pytest.fixture
def make_stack():
    return build_stack


@pytest.fixture
def stub_client():
    return StubClient()


@pytest.fixture
def failing_plan_client():
    return StubClient(plan_error=ExternalToolError("terraform plan failed", diagnostic="no credentials"))


@pytest.fixture
def stub_synthesizer():
    return StubSynthesizer()


@pytest.fixture
def make_client():
    return StubClient


@pytest.fixture
def make_synthesizer():
    return StubSynthesizer


@pytest.fixture
def make_factory():
    return RecordingFactory
