from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from graphwire.components import Component, Key
from graphwire.exceptions import GraphWireDuplicateComponentError, GraphWireMissingComponentError
from graphwire.generics import raw_class

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _IndexState:
    components: frozenset[Component]
    by_class: Mapping[type[Any], frozenset[Component]]


_EMPTY_STATE = _IndexState(components=frozenset(), by_class=MappingProxyType({}))


class TypeIndex:
    """Multi-map from requested types to the components that can satisfy them.

    Components are grouped by every raw class in their type closure, so a
    lookup only inspects components sharing the raw class of the requested
    type and then applies the generics-aware match.

    The index is copy-on-write: mutations build a new immutable state and swap
    it in with a single assignment. Readers never lock and always see either
    the state before or the state after a mutation, never a mix of both.
    """

    def __init__(self, components: Iterable[Component] = ()) -> None:
        self._state = _EMPTY_STATE
        self._lock = threading.Lock()
        initial = frozenset(components)
        if initial:
            self._state = _with_changes(self._state, additions=initial, removals=frozenset())

    def resolve(self, key: Key) -> set[Component]:
        """Return every component whose exposed types and qualifiers match ``key``."""
        bucket = self._state.by_class.get(key.raw_class, frozenset())
        return {component for component in bucket if component.provides(key)}

    def contains(self, key: Key) -> bool:
        """Return whether at least one component matches ``key``."""
        bucket = self._state.by_class.get(key.raw_class, frozenset())
        return any(component.provides(key) for component in bucket)

    def __contains__(self, component: object) -> bool:
        return component in self._state.components

    def __iter__(self) -> Iterator[Component]:
        return iter(self._state.components)

    def __len__(self) -> int:
        return len(self._state.components)

    def components(self) -> frozenset[Component]:
        """Return an immutable snapshot of all stored components."""
        return self._state.components

    def put(self, components: Iterable[Component]) -> None:
        """Add a batch of components.

        Raises:
            GraphWireDuplicateComponentError: If any component of the batch is
                already stored. Nothing is added in that case.

        """
        batch = frozenset(components)
        with self._lock:
            self._state = _with_changes(self._state, additions=batch, removals=frozenset())
        logger.debug("Added %d component(s) to the index", len(batch))

    def remove(self, components: Iterable[Component]) -> None:
        """Remove a batch of components.

        Raises:
            GraphWireMissingComponentError: If any component of the batch is not
                stored. Nothing is removed in that case.

        """
        batch = frozenset(components)
        with self._lock:
            self._state = _with_changes(self._state, additions=frozenset(), removals=batch)
        logger.debug("Removed %d component(s) from the index", len(batch))

    def with_changes(
        self,
        *,
        additions: Iterable[Component] = (),
        removals: Iterable[Component] = (),
    ) -> TypeIndex:
        """Return a detached index with the given changes applied.

        The live index is not modified. This is the view consistency checks run
        against before a batch is committed.
        """
        proposed = TypeIndex()
        proposed._state = _with_changes(
            self._state,
            additions=frozenset(additions),
            removals=frozenset(removals),
        )
        return proposed

    def replace_with(self, other: TypeIndex) -> None:
        """Adopt the state of a detached index produced by ``with_changes``."""
        with self._lock:
            self._state = other._state


def _with_changes(
    state: _IndexState,
    *,
    additions: frozenset[Component],
    removals: frozenset[Component],
) -> _IndexState:
    duplicates = additions & (state.components - removals)
    if duplicates:
        formatted = ", ".join(sorted(str(component) for component in duplicates))
        msg = f"Components already registered: {formatted}"
        raise GraphWireDuplicateComponentError(msg)

    missing = removals - state.components
    if missing:
        formatted = ", ".join(sorted(str(component) for component in missing))
        msg = f"Components not registered: {formatted}"
        raise GraphWireMissingComponentError(msg)

    by_class = dict(state.by_class)
    for component in removals:
        for cls in _grouping_classes(component):
            remaining = by_class[cls] - {component}
            if remaining:
                by_class[cls] = remaining
            else:
                del by_class[cls]
    for component in additions:
        for cls in _grouping_classes(component):
            by_class[cls] = by_class.get(cls, frozenset()) | {component}

    return _IndexState(
        components=(state.components - removals) | additions,
        by_class=MappingProxyType(by_class),
    )


def _grouping_classes(component: Component) -> set[type[Any]]:
    return {raw_class(exposed) for exposed in component.exposed_types}
