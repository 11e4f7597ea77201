"""Data models for synthesized stacks."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class StackAnnotation:
    """A message attached to a construct during synthesis."""

    construct_path: str
    level: str
    message: str


@dataclass(frozen=True)
class SynthesizedStack:
    """One named unit of synthesized Terraform configuration."""

    name: str
    content: str
    working_directory: str
    annotations: tuple[StackAnnotation, ...] = field(default_factory=tuple)

    def parsed(self) -> dict[str, Any]:
        """Parse the configuration document (never cached)."""
        return json.loads(self.content)

    def remote_backend(self) -> dict[str, Any] | None:
        """Return the declared ``remote`` backend block, if any."""
        terraform = self.parsed().get("terraform") or {}
        backend = terraform.get("backend") or {}
        return backend.get("remote")
