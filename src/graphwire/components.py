from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, TypeAlias

from graphwire.generics import is_wildcard, matches_type, raw_class, type_closure
from graphwire.markers import (
    AllMarker,
    ArgumentMarker,
    MaybeMarker,
    Produces,
    ProviderMarker,
    annotation_metadata,
    strip_annotated,
)
from graphwire.scope import BaseScope, Scope

TypeDescriptor: TypeAlias = Any
"""A type expression: a class, a parameterized generic alias or a wildcard."""

QualifierTag: TypeAlias = Hashable
"""Any hashable value used to tell apart components exposing the same type."""

CreateFunction: TypeAlias = Callable[[list[Any]], Any]
"""Builds an instance from the injected values, in dependency order."""

DestroyFunction: TypeAlias = Callable[[Any], None]
"""Tears down an instance produced by the matching create function."""

_MARKER_TYPES = (AllMarker, ArgumentMarker, MaybeMarker, ProviderMarker, Produces)


@dataclass(frozen=True, slots=True)
class Key:
    """A requested type plus the qualifiers a matching component must carry."""

    type: TypeDescriptor
    qualifiers: frozenset[QualifierTag] = frozenset()

    @classmethod
    def of(cls, annotation: Any, *qualifiers: QualifierTag) -> Key:
        """Build a key from a type annotation.

        Qualifiers found in ``Annotated`` metadata are merged with the explicitly
        passed ones. GraphWire markers (``Maybe``, ``All``, ``Provider``) in the
        metadata are ignored.

        Args:
            annotation: A type or ``Annotated[T, Qualifier(...)]`` token.
            *qualifiers: Extra qualifiers.

        Examples:
            .. code-block:: python

                Key.of(Annotated[Database, Qualifier("replica")])
                Key.of(Database, Qualifier("replica"))

        """
        found = [
            item for item in annotation_metadata(annotation) if not isinstance(item, _MARKER_TYPES)
        ]
        return cls(
            type=strip_annotated(annotation),
            qualifiers=frozenset((*found, *qualifiers)),
        )

    @property
    def raw_class(self) -> type[Any]:
        return raw_class(self.type)

    @property
    def has_wildcards(self) -> bool:
        return is_wildcard(self.type)

    def __str__(self) -> str:
        type_name = _format_type(self.type)
        if not self.qualifiers:
            return type_name
        qualifiers = " ".join(sorted(f"@{qualifier!r}" for qualifier in self.qualifiers))
        return f"{qualifiers} {type_name}"


class DependencyModifier(Enum):
    """How many matches a dependency accepts and when it is resolved."""

    REQUIRED = auto()
    """Exactly one match, resolved while the owner is constructed."""

    OPTIONAL = auto()
    """Zero or one match; ``None`` is injected when nothing matches."""

    COLLECTION = auto()
    """Any number of matches, injected as a tuple, list, set or frozenset."""

    DEFERRED = auto()
    """Exactly one match, resolved each time the injected provider is called."""

    @property
    def is_singular(self) -> bool:
        return self is not DependencyModifier.COLLECTION

    @property
    def requires_match(self) -> bool:
        return self in (DependencyModifier.REQUIRED, DependencyModifier.DEFERRED)


@dataclass(frozen=True, slots=True)
class Dependency:
    """An edge from a component to the key it needs."""

    target: Key
    modifier: DependencyModifier = DependencyModifier.REQUIRED
    name: str | None = None
    """Parameter or attribute the value is injected into, used in diagnostics."""
    collection_type: Callable[[Iterable[Any]], Any] = tuple
    """Builds the injected value from the matches of a collection dependency."""
    empty_is_missing: bool = False
    """Treat a collection without matches like an unmatched optional dependency."""

    @property
    def is_deferred(self) -> bool:
        return self.modifier is DependencyModifier.DEFERRED

    def __str__(self) -> str:
        label = self.modifier.name.lower()
        if self.name is None:
            return f"{label} [{self.target}]"
        return f"{label} [{self.target}] of parameter '{self.name}'"


class InstanceIdentity:
    """Compare externally supplied instances by identity, not equality."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, InstanceIdentity) and other.value is self.value

    def __hash__(self) -> int:
        return id(self.value)

    def __repr__(self) -> str:
        return f"InstanceIdentity({self.value!r})"


@dataclass(frozen=True, eq=False, kw_only=True)
class Component:
    """A registered way to produce instances of one or more types.

    Components are immutable once built by a binding extractor. Two components
    are equal when they expose the same type with the same qualifiers and come
    from the same origin (``discriminator``): the same class, producer method,
    producer field or externally supplied instance.
    """

    type: TypeDescriptor
    """The most specific type instances are created as."""
    owner_type: TypeDescriptor
    """The class the component was declared on."""
    discriminator: Hashable
    create: CreateFunction
    destroy: DestroyFunction | None = None
    qualifiers: frozenset[QualifierTag] = frozenset()
    scope: BaseScope = Scope.UNSCOPED
    dependencies: tuple[Dependency, ...] = ()
    is_external: bool = False
    """True for instances supplied through ``register_instance``."""
    exposed_types: frozenset[TypeDescriptor] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "exposed_types", type_closure(self.type))

    @property
    def key(self) -> Key:
        return Key(self.type, self.qualifiers)

    def provides(self, key: Key) -> bool:
        """Return whether this component matches the given key."""
        if not self.qualifiers >= key.qualifiers:
            return False
        return any(matches_type(exposed, key.type) for exposed in self.exposed_types)

    def _identity(self) -> tuple[Any, ...]:
        return (self.type, self.qualifiers, self.discriminator)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Component):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __str__(self) -> str:
        return str(self.key)

    def __repr__(self) -> str:
        return f"Component({self.key}, scope={self.scope!s})"


def _format_type(value: Any) -> str:
    if isinstance(value, type) and not hasattr(value, "__origin__"):
        return value.__qualname__
    return repr(value).replace("typing.", "")
