from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from graphwire.components import Component, Dependency, DependencyModifier
from graphwire.exceptions import (
    GraphWireAmbiguousDependencyError,
    GraphWireCyclicDependencyError,
    GraphWireDefinitionError,
    GraphWireDependencyError,
    GraphWireScopeConflictError,
    GraphWireUnsatisfiedDependencyError,
)
from graphwire.proxies import ProxyStrategy
from graphwire.scope import BaseScope, Scope
from graphwire.type_index import TypeIndex

logger = logging.getLogger(__name__)


def needs_proxy(owner_scope: BaseScope, dependency_scope: BaseScope) -> bool:
    """Return whether a direct reference across these scopes must be proxied.

    Pseudo-scoped dependencies are created on demand and never need a proxy.
    A dependency on a scope that outlives the owner does not need one either.
    Unscoped owners have no lifetime of their own, so any non-root scope they
    reference directly is proxied.
    """
    if dependency_scope.pseudo or dependency_scope == owner_scope:
        return False
    if dependency_scope.level <= Scope.SINGLETON.level:
        # The root scope is always active and outlives every other scope.
        return False
    return owner_scope.pseudo or dependency_scope.level > owner_scope.level


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """Outcome of validating a batch of store mutations.

    Attributes:
        index: Detached index with the batch applied. Commit it with
            ``TypeIndex.replace_with`` when ``errors`` is empty.
        errors: Every violation found, cycle errors first.

    """

    index: TypeIndex
    errors: tuple[GraphWireDependencyError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise the first violation, listing the others as notes."""
        if not self.errors:
            return
        first, *others = self.errors
        for other in others:
            first.add_note(f"also: {other}")
        raise first


class ConsistencyEngine:
    """Validate store mutations against the proposed resulting store.

    Checks run on a detached copy of the index, so the live index is untouched
    until the caller commits the diagnosis. Only dependencies that could have
    been affected by the batch are re-checked: those of added components and
    those of remaining components whose target matches an added or removed
    component. Every other dependency was valid before and still resolves to
    the same components.
    """

    def __init__(self, *, proxy_strategy: ProxyStrategy) -> None:
        self._proxy_strategy = proxy_strategy

    def validate(
        self,
        index: TypeIndex,
        additions: Iterable[Component] = (),
        removals: Iterable[Component] = (),
    ) -> Diagnosis:
        """Check a batch of additions and removals.

        Args:
            index: The live index.
            additions: Components to add.
            removals: Components to remove.

        Returns:
            The diagnosis holding the proposed index and the violations found.

        Raises:
            GraphWireDuplicateComponentError: If an addition is already stored.
            GraphWireMissingComponentError: If a removal is not stored.

        """
        added = frozenset(additions)
        removed = frozenset(removals)
        proposed = index.with_changes(additions=added, removals=removed)

        errors: list[GraphWireDependencyError] = []
        cycle = self._find_cycle(proposed, added)
        if cycle:
            errors.append(GraphWireCyclicDependencyError(cycle))

        changed = added | removed
        for component in proposed:
            for dependency in component.dependencies:
                if component in added or any(
                    other.provides(dependency.target) for other in changed
                ):
                    error = self._check_dependency(proposed, component, dependency)
                    if error is not None:
                        errors.append(error)

        if errors:
            logger.debug("Rejected batch (+%d/-%d): %s", len(added), len(removed), errors[0])
        return Diagnosis(index=proposed, errors=tuple(errors))

    def _check_dependency(
        self,
        index: TypeIndex,
        component: Component,
        dependency: Dependency,
    ) -> GraphWireDependencyError | None:
        if dependency.modifier is DependencyModifier.COLLECTION:
            return None

        matches = index.resolve(dependency.target)
        if len(matches) > 1:
            formatted = ", ".join(sorted(str(match) for match in matches))
            return GraphWireAmbiguousDependencyError(
                f"Multiple candidates for dependency [{dependency.target}] "
                f"required for {dependency} of [{component}]: {formatted}",
                component=component,
                dependency=dependency,
                candidates=sorted(matches, key=str),
            )
        if not matches:
            if not dependency.modifier.requires_match:
                return None
            return GraphWireUnsatisfiedDependencyError(
                f"Missing dependency [{dependency.target}] required for "
                f"{dependency} of [{component}]",
                component=component,
                dependency=dependency,
            )

        if dependency.is_deferred:
            return None
        (match,) = matches
        return self._check_scope(component, match)

    def _check_scope(
        self,
        component: Component,
        dependency: Component,
    ) -> GraphWireScopeConflictError | None:
        if not needs_proxy(component.scope, dependency.scope):
            return None

        try:
            self._proxy_strategy.create_proxy_factory(dependency.type)
        except GraphWireDefinitionError as error:
            conflict = GraphWireScopeConflictError(
                f"Type [{component}] with scope [{component.scope}] is dependent on "
                f"[{dependency}] with normal scope [{dependency.scope}]; "
                "this requires the use of a provider or proxy",
            )
            conflict.__cause__ = error
            return conflict
        return None

    def _find_cycle(self, index: TypeIndex, start: frozenset[Component]) -> list[Component]:
        visited: set[Component] = set()
        visiting: list[Component] = []

        def visit(component: Component) -> bool:
            visiting.append(component)
            for dependency in component.dependencies:
                if dependency.is_deferred:
                    continue
                for target in index.resolve(dependency.target):
                    if target in visiting:
                        del visiting[: visiting.index(target)]
                        return True
                    if target not in visited and visit(target):
                        return True
            visiting.pop()
            visited.add(component)
            return False

        for component in sorted(start, key=str):
            if component not in visited and visit(component):
                return visiting
        return []
