"""Caller-facing progress events, discriminated by ``type``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Union

from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import TerraformPlan


@dataclass(frozen=True)
class Synthing:
    type: Literal["synthing"] = field(default="synthing", init=False)


@dataclass(frozen=True)
class Synthed:
    stacks: list[SynthesizedStack]
    error_message: str | None = None
    type: Literal["synthed"] = field(default="synthed", init=False)


@dataclass(frozen=True)
class Diffing:
    stack_name: str | None
    type: Literal["diffing"] = field(default="diffing", init=False)


@dataclass(frozen=True)
class Diffed:
    stack_name: str | None
    plan: TerraformPlan
    type: Literal["diffed"] = field(default="diffed", init=False)


@dataclass(frozen=True)
class Deploying:
    stack_name: str | None
    type: Literal["deploying"] = field(default="deploying", init=False)


@dataclass(frozen=True)
class DeployUpdate:
    stack_name: str
    deploy_output: str
    type: Literal["deploy update"] = field(default="deploy update", init=False)


@dataclass(frozen=True)
class Deployed:
    stack_name: str | None
    outputs: dict[str, Any]
    outputs_by_construct_id: dict[str, Any]
    type: Literal["deployed"] = field(default="deployed", init=False)


@dataclass(frozen=True)
class Destroying:
    stack_name: str | None
    type: Literal["destroying"] = field(default="destroying", init=False)


@dataclass(frozen=True)
class DestroyUpdate:
    stack_name: str
    destroy_output: str
    type: Literal["destroy update"] = field(default="destroy update", init=False)


@dataclass(frozen=True)
class Destroyed:
    stack_name: str | None
    type: Literal["destroyed"] = field(default="destroyed", init=False)


ProjectUpdate = Union[
    Synthing,
    Synthed,
    Diffing,
    Diffed,
    Deploying,
    DeployUpdate,
    Deployed,
    Destroying,
    DestroyUpdate,
    Destroyed,
]

UpdateSink = Callable[[ProjectUpdate], None]
