from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


class BaseScope(int):
    """Base class for scope tags.

    The integer value is the scope level: a lower level lives longer. A pseudo
    scope never caches instances, so it has no lifetime of its own to violate.
    """

    def __new__(cls, *args: Any, **_kwargs: Any) -> BaseScope:  # noqa: D102, PYI034
        return super().__new__(cls, *args)

    def __init__(self, level: int, *, pseudo: bool = False, name: str | None = None) -> None:
        self.pseudo = pseudo
        self.level = level
        self.scope_name = name or f"scope{level}"

    def __set_name__(
        self,
        owner: type[BaseScopes],
        name: str,
    ) -> None:
        self.owner = owner
        self.scope_name = name

    def is_broader_than(self, other: BaseScope) -> bool:
        """Return whether instances of this scope outlive instances of ``other``."""
        if self.pseudo or other.pseudo:
            return False
        return self.level < other.level

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BaseScope):
            return NotImplemented
        return self.level == other.level and self.pseudo == other.pseudo

    def __hash__(self) -> int:
        return hash((self.level, self.pseudo))

    def __repr__(self) -> str:
        return f"Scope.{self.scope_name}({self.level}, pseudo={self.pseudo})"

    def __str__(self) -> str:
        return self.scope_name


@dataclass(frozen=True, kw_only=True)
class BaseScopes:
    """Base class for scopes collection."""

    pseudo: tuple[BaseScope, ...] = field(init=False)

    def __post_init__(self) -> None:
        for name, value in self.__dict__.items():
            if isinstance(value, BaseScope):
                value.scope_name = name
        object.__setattr__(
            self,
            "pseudo",
            tuple(scope for scope in self if scope.pseudo),
        )

    def __iter__(self) -> Iterator[BaseScope]:
        for value in self.__dict__.values():
            if isinstance(value, BaseScope):
                yield value


@dataclass(frozen=True)
class Scopes(BaseScopes):
    """Enum like class for scopes."""

    SINGLETON: BaseScope = field(default=BaseScope(0))
    SESSION: BaseScope = field(default=BaseScope(1))
    REQUEST: BaseScope = field(default=BaseScope(2))
    UNSCOPED: BaseScope = field(default=BaseScope(-1, pseudo=True))
    WEAK_SINGLETON: BaseScope = field(default=BaseScope(-2, pseudo=True))


Scope = Scopes()
"""Enum like instance for scopes."""
