from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

ChunkCallback = Callable[[str], None]


@dataclass(frozen=True)
class PlannedChange:
    """A single resource change in a plan."""

    address: str
    actions: tuple[str, ...]

    @property
    def is_noop(self) -> bool:
        return self.actions in (("no-op",), ("read",))


@dataclass(frozen=True)
class TerraformPlan:
    """Result of a plan: what apply/destroy must reuse, plus a readable summary."""

    plan_file: str
    is_destroy: bool = False
    changes: list[PlannedChange] = field(default_factory=list)
    raw: dict[str, Any] | None = None

    @property
    def needs_apply(self) -> bool:
        return any(not change.is_noop for change in self.changes)

    @property
    def applyable_changes(self) -> list[PlannedChange]:
        return [change for change in self.changes if not change.is_noop]

    @classmethod
    def from_plan_json(cls, plan_file: str, is_destroy: bool, plan_json: dict[str, Any]) -> TerraformPlan:
        """Build from ``terraform show -json`` output."""
        changes = [
            PlannedChange(
                address=rc.get("address", ""),
                actions=tuple((rc.get("change") or {}).get("actions") or ()),
            )
            for rc in plan_json.get("resource_changes") or []
        ]
        return cls(plan_file=plan_file, is_destroy=is_destroy, changes=changes, raw=plan_json)


class TerraformClient(Protocol):
    """Capabilities shared by the local and remote provisioning clients."""

    async def init(self) -> None:
        ...

    async def plan(self, destroy: bool = False) -> TerraformPlan:
        ...

    async def apply(self, plan: TerraformPlan, on_chunk: ChunkCallback) -> None:
        ...

    async def destroy(self, on_chunk: ChunkCallback, plan: TerraformPlan | None = None) -> None:
        ...

    async def output(self) -> dict[str, Any]:
        ...
