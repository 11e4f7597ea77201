from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from stackdeploy.interpolation.tokens import Interpolation


@runtime_checkable
class InterpolatingParent(Protocol):
    """Anything that can build a reference to one of its attributes."""

    def interpolation_for_attribute(self, attribute: str) -> Interpolation:
        ...


@dataclass(frozen=True)
class TerraformReference:
    """Addressable resource or data source, e.g. ``data.http.example``."""

    fqn: str

    def interpolation_for_attribute(self, attribute: str) -> Interpolation:
        return Interpolation(f"{self.fqn}.{attribute}")
