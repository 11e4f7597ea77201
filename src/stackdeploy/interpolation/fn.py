"""Terraform function expressions for values only known at apply time."""

from __future__ import annotations

import json
from typing import Any

from stackdeploy.interpolation.tokens import Interpolation, TokenValue


def _render(value: Any) -> str:
    if isinstance(value, (Interpolation, TokenValue)):
        return value.expression
    if hasattr(value, "interpolation_as_list"):
        return value.interpolation_as_list().expression
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return json.dumps(value)


class Fn:
    @staticmethod
    def element(values: Any, index: Any) -> Interpolation:
        return Interpolation(f"element({_render(values)}, {_render(index)})")

    @staticmethod
    def lookup(mapping: Any, key: Any, default: Any = None) -> Interpolation:
        return Interpolation(f"lookup({_render(mapping)}, {_render(key)}, {_render(default)})")
