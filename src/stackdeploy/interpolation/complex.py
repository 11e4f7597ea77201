"""
References into computed nested blocks, lists and maps.

Every reference is a pure function of its parent and attribute path: it
builds expressions and never holds a resolved value.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from stackdeploy.core.errors import InterpolationError
from stackdeploy.interpolation.addressable import InterpolatingParent
from stackdeploy.interpolation.tokens import Interpolation, Token, TokenValue


class ReferenceKind(str, Enum):
    OBJECT = "object"
    LIST_ITEM = "list_item"


class ComplexComputedAttribute:
    """Typed accessors shared by nested-block references."""

    reference_kind: ReferenceKind

    def __init__(self, terraform_resource: InterpolatingParent, terraform_attribute: str) -> None:
        self.terraform_resource = terraform_resource
        self.terraform_attribute = terraform_attribute

    def interpolation_for_attribute(self, terraform_attribute: str) -> Interpolation:
        raise NotImplementedError

    def get_string_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_string(self.interpolation_for_attribute(terraform_attribute))

    def get_number_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_number(self.interpolation_for_attribute(terraform_attribute))

    def get_list_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_list(self.interpolation_for_attribute(terraform_attribute))

    def get_boolean_attribute(self, terraform_attribute: str) -> Interpolation:
        return self.interpolation_for_attribute(terraform_attribute)

    def get_number_list_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_number_list(self.interpolation_for_attribute(terraform_attribute))

    def get_string_map_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_string_map(self.interpolation_for_attribute(terraform_attribute))

    def get_number_map_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_number_map(self.interpolation_for_attribute(terraform_attribute))

    def get_boolean_map_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_boolean_map(self.interpolation_for_attribute(terraform_attribute))

    def get_any_map_attribute(self, terraform_attribute: str) -> TokenValue:
        return Token.as_any_map(self.interpolation_for_attribute(terraform_attribute))

    def interpolation_as_list(self) -> Interpolation:
        return self.terraform_resource.interpolation_for_attribute(self.terraform_attribute)


class ComplexObject(ComplexComputedAttribute):
    """A single-instance nested block, addressed as ``attr[0].property``."""

    reference_kind = ReferenceKind.OBJECT

    def interpolation_for_attribute(self, terraform_attribute: str) -> Interpolation:
        return self.terraform_resource.interpolation_for_attribute(
            f"{self.terraform_attribute}[0].{terraform_attribute}"
        )


class ComplexListItem(ComplexComputedAttribute):
    """An element of a list whose length is only known after Terraform evaluates it."""

    reference_kind = ReferenceKind.LIST_ITEM

    def interpolation_for_attribute(self, terraform_attribute: str) -> Interpolation:
        raise InterpolationError(
            f"Cannot directly access property {terraform_attribute} in list which is only known at runtime.\n"
            f'Use Fn.lookup(Fn.element(your_list, your_index), "{terraform_attribute}", default_value) instead',
            details={"attribute": self.terraform_attribute},
        )

    @property
    def fqn(self) -> TokenValue:
        return Token.as_string(self.interpolation_as_list())


def is_complex_list_item(value: Any) -> bool:
    return getattr(value, "reference_kind", None) is ReferenceKind.LIST_ITEM


class _ComplexMap:
    def __init__(self, terraform_resource: InterpolatingParent, terraform_attribute: str) -> None:
        self.terraform_resource = terraform_resource
        self.terraform_attribute = terraform_attribute

    def _interpolation_for_key(self, key: str) -> Interpolation:
        return self.terraform_resource.interpolation_for_attribute(f'{self.terraform_attribute}["{key}"]')


class StringMap(_ComplexMap):
    def lookup(self, key: str) -> TokenValue:
        return Token.as_string(self._interpolation_for_key(key))


class NumberMap(_ComplexMap):
    def lookup(self, key: str) -> TokenValue:
        return Token.as_number(self._interpolation_for_key(key))


class BooleanMap(_ComplexMap):
    def lookup(self, key: str) -> Interpolation:
        return self._interpolation_for_key(key)


class AnyMap(_ComplexMap):
    def lookup(self, key: str) -> TokenValue:
        return Token.as_any(self._interpolation_for_key(key))
