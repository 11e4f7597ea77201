"""Attribute interpolation: references to values Terraform computes at apply time."""

from stackdeploy.interpolation.addressable import InterpolatingParent, TerraformReference
from stackdeploy.interpolation.complex import (
    AnyMap,
    BooleanMap,
    ComplexComputedAttribute,
    ComplexListItem,
    ComplexObject,
    NumberMap,
    ReferenceKind,
    StringMap,
    is_complex_list_item,
)
from stackdeploy.interpolation.fn import Fn
from stackdeploy.interpolation.tokens import Interpolation, Token, TokenKind, TokenValue

__all__ = [
    "AnyMap",
    "BooleanMap",
    "ComplexComputedAttribute",
    "ComplexListItem",
    "ComplexObject",
    "Fn",
    "Interpolation",
    "InterpolatingParent",
    "NumberMap",
    "ReferenceKind",
    "StringMap",
    "TerraformReference",
    "Token",
    "TokenKind",
    "TokenValue",
    "is_complex_list_item",
]
