"""Map Terraform outputs back to the constructs that declared them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OutputMap:
    """Resolved outputs of a stack plus their originating construct paths."""

    values: dict[str, Any] = field(default_factory=dict)
    construct_ids: dict[str, list[str]] = field(default_factory=dict)

    def by_construct_id(self) -> dict[str, Any]:
        """Nest each output value under its construct path."""
        nested: dict[str, Any] = {}
        for name, path in self.construct_ids.items():
            if name not in self.values or not path:
                continue
            node = nested
            for segment in path[:-1]:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    node[segment] = child
                node = child
            node[path[-1]] = self.values[name]
        return nested


def construct_paths_for_outputs(stack_document: dict[str, Any]) -> dict[str, list[str]]:
    """Read ``"//".metadata.path`` for every declared output, minus the stack name."""
    paths: dict[str, list[str]] = {}
    for output_id, output in (stack_document.get("output") or {}).items():
        metadata = ((output or {}).get("//") or {}).get("metadata") or {}
        path = metadata.get("path")
        if not path:
            continue
        paths[output_id] = path.split("/")[1:]
    return paths


def get_construct_ids_for_outputs(
    stack_document: dict[str, Any],
    outputs: dict[str, Any],
) -> dict[str, Any]:
    """Return output values keyed by the construct tree that produced them."""
    output_map = OutputMap(
        values=dict(outputs),
        construct_ids=construct_paths_for_outputs(stack_document),
    )
    return output_map.by_construct_id()
