"""Pick the single stack a run operates on."""

from __future__ import annotations

from typing import Sequence

from stackdeploy.core.errors import InternalError, UsageError
from stackdeploy.stacks.models import SynthesizedStack


def resolve_stack(
    stacks: Sequence[SynthesizedStack] | None,
    stack_name: str | None = None,
) -> SynthesizedStack:
    """
    Resolve the target stack from the synthesized collection.

    Args:
        stacks: Stacks produced by synthesis, or None if synthesis has not run
        stack_name: Exact stack name to select; optional when only one exists

    Raises:
        InternalError: stacks were requested before synthesis produced them
        UsageError: the name is unknown, or no name was given and the
            selection is ambiguous
    """
    if stacks is None:
        raise InternalError("Trying to access a stack before it has been synthesized")

    if stack_name:
        for stack in stacks:
            if stack.name == stack_name:
                return stack
        raise UsageError(f"Unknown stack: {stack_name}")

    if len(stacks) != 1:
        raise UsageError("Please select a stack to use")

    return stacks[0]
