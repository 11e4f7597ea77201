"""
Synthesizer collaborator.

Runs the project's synth command and reads back the stacks it wrote to
the output directory manifest.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol

import structlog

from stackdeploy.config.settings import Settings, get_settings
from stackdeploy.core.errors import ExternalToolError, UsageError
from stackdeploy.stacks.models import StackAnnotation, SynthesizedStack

logger = structlog.get_logger()

MANIFEST_FILE = "manifest.json"


class Synthesizer(Protocol):
    """Produces the ordered stack collection for a run."""

    async def synth(self, synth_command: str, target_dir: str) -> list[SynthesizedStack]:
        ...


class CommandSynthesizer:
    """Synthesize by running a shell command and reading ``manifest.json``."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def synth(self, synth_command: str, target_dir: str) -> list[SynthesizedStack]:
        out_dir = Path(target_dir, self._settings.output_dir).resolve()
        env = {**os.environ, "CDKTF_OUTDIR": str(out_dir)}

        logger.info("synth_started", command=synth_command, target_dir=target_dir)
        process = await asyncio.create_subprocess_shell(
            synth_command,
            cwd=target_dir,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            diagnostic = stderr.decode("utf-8", errors="replace") or stdout.decode(
                "utf-8", errors="replace"
            )
            logger.error("synth_failed", command=synth_command, returncode=process.returncode)
            raise ExternalToolError(
                f"Synth command failed with exit code {process.returncode}:\n{diagnostic}",
                diagnostic=diagnostic,
                returncode=process.returncode,
            )

        stacks = load_manifest(out_dir)
        logger.info("synth_finished", stack_count=len(stacks))
        return stacks


def load_manifest(out_dir: Path) -> list[SynthesizedStack]:
    """Read stacks, in manifest order, from a synthesized output directory."""
    manifest_path = out_dir / MANIFEST_FILE
    if not manifest_path.exists():
        raise ExternalToolError(
            f"No {MANIFEST_FILE} found in {out_dir}, did the synth command write its output there?"
        )

    manifest = json.loads(manifest_path.read_text())
    stacks: list[SynthesizedStack] = []
    for name, entry in (manifest.get("stacks") or {}).items():
        annotations = tuple(_parse_annotation(a) for a in entry.get("annotations") or [])
        errors = [a for a in annotations if a.level.endswith("error")]
        if errors:
            messages = "\n".join(f"[{a.construct_path}] {a.message}" for a in errors)
            raise UsageError(f"Stack {name} has errors:\n{messages}")

        stack_path = out_dir / entry["synthesizedStackPath"]
        stacks.append(
            SynthesizedStack(
                name=entry.get("name", name),
                content=stack_path.read_text(),
                working_directory=str(out_dir / entry["workingDirectory"]),
                annotations=annotations,
            )
        )
    return stacks


def _parse_annotation(raw: dict[str, Any]) -> StackAnnotation:
    return StackAnnotation(
        construct_path=raw.get("constructPath", ""),
        level=str(raw.get("level", "")).lower(),
        message=raw.get("message", ""),
    )
