"""
Deferred values.

An ``Interpolation`` is a reference expression Terraform evaluates at apply
time. ``Token`` wraps one in a typed ``TokenValue`` so authoring code can
pass it where a string, number, list or map is expected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Interpolation:
    """A raw, resolvable reference into the configuration tree."""

    expression: str

    def resolve(self) -> str:
        return f"${{{self.expression}}}"

    def __str__(self) -> str:
        return self.resolve()


class TokenKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    LIST = "list"
    NUMBER_LIST = "number_list"
    STRING_MAP = "string_map"
    NUMBER_MAP = "number_map"
    BOOLEAN_MAP = "boolean_map"
    ANY_MAP = "any_map"
    ANY = "any"


@dataclass(frozen=True)
class TokenValue:
    """An interpolation tagged with the type it stands in for."""

    kind: TokenKind
    interpolation: Interpolation

    @property
    def expression(self) -> str:
        return self.interpolation.expression

    def resolve(self) -> str:
        return self.interpolation.resolve()

    def __str__(self) -> str:
        return self.resolve()


class Token:
    """Typed wrappers around interpolations."""

    @staticmethod
    def as_string(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.STRING, value)

    @staticmethod
    def as_number(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.NUMBER, value)

    @staticmethod
    def as_list(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.LIST, value)

    @staticmethod
    def as_number_list(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.NUMBER_LIST, value)

    @staticmethod
    def as_string_map(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.STRING_MAP, value)

    @staticmethod
    def as_number_map(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.NUMBER_MAP, value)

    @staticmethod
    def as_boolean_map(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.BOOLEAN_MAP, value)

    @staticmethod
    def as_any_map(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.ANY_MAP, value)

    @staticmethod
    def as_any(value: Interpolation) -> TokenValue:
        return TokenValue(TokenKind.ANY, value)
