"""
Local-process Terraform client.

Drives the ``terraform`` binary inside a synthesized stack's working
directory. Long-running commands (apply, destroy) stream their stdout to a
chunk callback while the command is still running.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from stackdeploy.config.settings import Settings, get_settings
from stackdeploy.core.errors import ExternalToolError
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import ChunkCallback, TerraformPlan

logger = structlog.get_logger()

PLAN_FILE = "plan"


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


class TerraformCli:
    """Runs terraform as a local process for one stack."""

    def __init__(self, stack: SynthesizedStack, settings: Settings | None = None) -> None:
        self.stack = stack
        self._settings = settings or get_settings()
        self._cwd = Path(stack.working_directory)

    async def init(self) -> None:
        await self._run_checked("init", "-input=false", "-no-color")

    async def plan(self, destroy: bool = False) -> TerraformPlan:
        args = ["plan", "-input=false", "-no-color", f"-out={PLAN_FILE}"]
        if destroy:
            args.append("-destroy")
        await self._run_checked(*args)

        shown = await self._run_checked("show", "-json", PLAN_FILE)
        try:
            plan_json = json.loads(shown.stdout)
        except json.JSONDecodeError as exc:
            raise ExternalToolError(
                "terraform show returned invalid JSON",
                diagnostic=shown.stdout,
            ) from exc

        plan = TerraformPlan.from_plan_json(str(self._cwd / PLAN_FILE), destroy, plan_json)
        logger.info(
            "plan_created",
            stack_name=self.stack.name,
            destroy=destroy,
            changes=len(plan.applyable_changes),
        )
        return plan

    async def apply(self, plan: TerraformPlan, on_chunk: ChunkCallback) -> None:
        await self._run_checked(
            "apply",
            "-auto-approve",
            "-input=false",
            "-no-color",
            plan.plan_file,
            on_chunk=on_chunk,
        )

    async def destroy(self, on_chunk: ChunkCallback, plan: TerraformPlan | None = None) -> None:
        """Apply a saved destroy plan, or run a fresh destroy when none was given."""
        if plan is not None and plan.is_destroy:
            await self.apply(plan, on_chunk)
            return
        await self._run_checked(
            "destroy",
            "-auto-approve",
            "-input=false",
            "-no-color",
            on_chunk=on_chunk,
        )

    async def output(self) -> dict[str, Any]:
        result = await self._run_checked("output", "-json")
        raw = json.loads(result.stdout) if result.stdout.strip() else {}
        return {name: (entry or {}).get("value") for name, entry in raw.items()}

    async def _run_checked(self, *args: str, on_chunk: ChunkCallback | None = None) -> CommandResult:
        result = await self._run(*args, on_chunk=on_chunk)
        if result.returncode != 0:
            logger.error(
                "terraform_command_failed",
                stack_name=self.stack.name,
                command=args[0],
                returncode=result.returncode,
            )
            raise ExternalToolError(
                f"terraform {args[0]} failed with exit code {result.returncode}:\n{result.stderr}",
                diagnostic=result.stderr,
                returncode=result.returncode,
            )
        return result

    async def _run(self, *args: str, on_chunk: ChunkCallback | None = None) -> CommandResult:
        """Run a terraform command, streaming stdout lines when a callback is given."""
        logger.debug("terraform_command", stack_name=self.stack.name, args=list(args))
        process = await asyncio.create_subprocess_exec(
            self._settings.terraform_binary,
            *args,
            cwd=str(self._cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert process.stdout is not None and process.stderr is not None

        stdout_parts: list[str] = []

        async def pump_stdout() -> None:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace")
                stdout_parts.append(text)
                if on_chunk is not None:
                    on_chunk(text)

        _, stderr = await asyncio.gather(pump_stdout(), process.stderr.read())
        returncode = await process.wait()
        return CommandResult(
            returncode=returncode,
            stdout="".join(stdout_parts),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
