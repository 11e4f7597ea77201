from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from stackdeploy.cli.ux import confirm_async, console, error, header, info, is_interactive, print_table, success, warning
from stackdeploy.config.settings import get_settings
from stackdeploy.core.errors import ExitCode, main_with_error_handling
from stackdeploy.execution.project import Project
from stackdeploy.execution.updates import ProjectUpdate
from stackdeploy.logging import configure_logging

ACTIONS = {
    "synth": "Synthesize the project and list its stacks",
    "diff": "Plan changes for a stack without applying them",
    "deploy": "Plan and apply changes for a stack",
    "destroy": "Plan and destroy all resources of a stack",
}


class UpdateRenderer:
    """Prints project updates and asks for approval when a plan is ready."""

    def __init__(self, action: str, *, auto_approve: bool, interactive: bool) -> None:
        self.action = action
        self.auto_approve = auto_approve
        self.interactive = interactive
        self.project: Project | None = None
        self._approval_task: asyncio.Task[None] | None = None

    def __call__(self, update: ProjectUpdate) -> None:
        if update.type == "synthing":
            info("Synthesizing")
        elif update.type == "synthed":
            if update.error_message:
                error(update.error_message)
            else:
                success(f"Synthesized {len(update.stacks)} stack(s): {', '.join(s.name for s in update.stacks)}")
        elif update.type == "diffing":
            info(f"Planning {update.stack_name or ''}".rstrip())
        elif update.type == "diffed":
            self._render_plan(update)
            if self.action in ("deploy", "destroy") and not self.auto_approve:
                self._approval_task = asyncio.get_running_loop().create_task(self._ask_approval())
        elif update.type in ("deploying", "destroying"):
            header(f"{update.type.capitalize()} {update.stack_name or ''}".rstrip())
        elif update.type == "deploy update":
            console.print(update.deploy_output, end="", markup=False, highlight=False)
        elif update.type == "destroy update":
            console.print(update.destroy_output, end="", markup=False, highlight=False)
        elif update.type == "deployed":
            success(f"Deployed {update.stack_name or ''}".rstrip())
            if update.outputs:
                print_table("Outputs", ["Name", "Value"], [[k, str(v)] for k, v in update.outputs.items()])
        elif update.type == "destroyed":
            success(f"Destroyed {update.stack_name or ''}".rstrip())

    def _render_plan(self, update: ProjectUpdate) -> None:
        plan = update.plan  # type: ignore[union-attr]
        changes = plan.applyable_changes
        if not changes:
            success("No changes. Infrastructure is up-to-date.")
            return
        print_table(
            f"Planned changes for {update.stack_name or 'stack'}",  # type: ignore[union-attr]
            ["Resource", "Actions"],
            [[change.address, ", ".join(change.actions)] for change in changes],
        )

    async def _ask_approval(self) -> None:
        assert self.project is not None
        if not self.interactive:
            warning("Approval required but no interactive terminal is attached; pass --auto-approve")
            self.project.abort()
            return
        if await confirm_async(f"Do you want to {self.action} these changes?"):
            self.project.approve()
        else:
            warning("Aborted, nothing was changed")
            self.project.abort()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stackdeploy", description="Synthesize, plan and apply Terraform stacks")
    parser.add_argument("--log-level", default=None, help="Log level (default: STACKDEPLOY_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    for action, help_text in ACTIONS.items():
        action_parser = subparsers.add_parser(action, help=help_text)
        action_parser.add_argument("--app", required=True, help="Command that synthesizes the project")
        action_parser.add_argument("--dir", default=".", help="Project directory (default: current directory)")
        if action != "synth":
            action_parser.add_argument("stack", nargs="?", help="Stack to operate on")
        if action in ("deploy", "destroy"):
            action_parser.add_argument(
                "--auto-approve",
                action="store_true",
                default=None,
                help="Skip the interactive approval",
            )

    return parser


async def _execute(args: argparse.Namespace) -> None:
    settings = get_settings()
    auto_approve = getattr(args, "auto_approve", None)
    if auto_approve is None:
        auto_approve = settings.auto_approve

    renderer = UpdateRenderer(args.command, auto_approve=auto_approve, interactive=is_interactive())
    project = Project(
        synth_command=args.app,
        target_dir=args.dir,
        on_update=renderer,
        auto_approve=auto_approve,
        settings=settings,
    )
    renderer.project = project

    stack = getattr(args, "stack", None)
    if args.command == "synth":
        await project.synth()
    elif args.command == "diff":
        await project.diff(stack)
    elif args.command == "deploy":
        await project.deploy(stack)
    else:
        await project.destroy(stack)


@main_with_error_handling(render=error)
def run_command(args: argparse.Namespace) -> int:
    asyncio.run(_execute(args))
    return ExitCode.SUCCESS


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(ExitCode.USAGE_ERROR)

    configure_logging((args.log_level or get_settings().log_level).upper(), json=False)
    sys.exit(run_command(args))


if __name__ == "__main__":  # pragma: no cover - exercised via module entrypoint
    main()
