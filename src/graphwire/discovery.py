from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from graphwire.components import Component, Dependency, Key
from graphwire.exceptions import GraphWireDefinitionError, GraphWireError
from graphwire.extraction import BindingExtractor
from graphwire.type_index import TypeIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    """Candidates found for a set of seed keys.

    Attributes:
        accepted: Components not yet in the store, including everything
            discovered transitively.
        problems: One line per dependency that could not be discovered, with
            its "required by" chain.

    """

    accepted: frozenset[Component]
    problems: tuple[str, ...] = ()


class Discoverer:
    """Propose the components needed to register a set of types.

    A seed key that the store, or what was proposed so far, can already
    resolve proposes nothing; any other seed is extracted. When
    ``auto_discovery`` is enabled, dependencies of the proposed components that
    require a match and that neither the store nor the proposal can satisfy are
    extracted as well, recursively. Optional and collection dependencies are
    satisfied by whatever happens to be registered and never trigger
    discovery.

    Discovery reads the store but never mutates it.
    """

    def __init__(
        self,
        index: TypeIndex,
        *,
        binding_extractor: BindingExtractor,
        auto_discovery: bool = True,
    ) -> None:
        self._index = index
        self._binding_extractor = binding_extractor
        self._auto_discovery = auto_discovery

    def discover(self, seed_keys: Iterable[Key]) -> DiscoveryResult:
        """Return the components needed to make ``seed_keys`` resolvable.

        Raises:
            GraphWireDefinitionError: If a seed itself cannot be turned into a
                component. Failures of the other seeds are attached with
                ``add_suppressed``.

        """
        proposal = _Proposal(self._index)
        for components in self._extract_seeds(seed_keys, skip=proposal.resolves):
            proposal.add(components)
        return self._complete(proposal)

    def extend(self, components: Iterable[Component]) -> DiscoveryResult:
        """Return ``components`` plus the dependencies discovered for them.

        Components already in the store are left out of the result.
        """
        proposal = _Proposal(self._index)
        proposal.add(components)
        return self._complete(proposal)

    def extract(self, keys: Iterable[Key]) -> list[Component]:
        """Extract the components of exactly the types in ``keys``.

        Raises:
            GraphWireDefinitionError: If a key cannot be turned into a
                component. Failures of the other keys are attached with
                ``add_suppressed``.

        """
        extracted: list[Component] = []
        for components in self._extract_seeds(keys, skip=lambda _key: False):
            extracted.extend(components)
        return extracted

    def _extract_seeds(
        self,
        keys: Iterable[Key],
        *,
        skip: Callable[[Key], bool],
    ) -> Iterator[list[Component]]:
        seed_error: GraphWireDefinitionError | None = None
        for key in keys:
            if skip(key):
                continue
            try:
                components = self._attempt(key)
            except GraphWireDefinitionError as error:
                if seed_error is None:
                    seed_error = error
                else:
                    seed_error.add_suppressed(error)
                continue
            yield components

        if seed_error is not None:
            raise seed_error

    def _complete(self, proposal: _Proposal) -> DiscoveryResult:
        problems: list[str] = []
        while self._auto_discovery and proposal.unresolved:
            key, dependency = proposal.unresolved.popleft()
            if proposal.resolves(key):
                continue
            try:
                components = self._attempt(key)
            except GraphWireError as error:
                problem = (
                    f"{proposal.chain(key)}, via {dependency}, is not registered "
                    f"and cannot be discovered (reason: {error})"
                )
                logger.debug("Discovery problem: %s", problem)
                problems.append(problem)
                continue
            proposal.add(components)

        return DiscoveryResult(accepted=proposal.components(), problems=tuple(problems))

    def _attempt(self, key: Key) -> list[Component]:
        if key.has_wildcards:
            raise GraphWireDefinitionError(key.type, "is a wildcard type and cannot be discovered")

        components = self._binding_extractor.extract(key.type)
        if not components:
            raise GraphWireDefinitionError(key.type, "did not produce any component")
        if not components[0].qualifiers >= key.qualifiers:
            formatted = ", ".join(sorted(repr(qualifier) for qualifier in key.qualifiers))
            msg = f"is missing the required qualifiers: {formatted}"
            raise GraphWireDefinitionError(key.type, msg)
        return components


class _Proposal:
    """Components proposed so far, resolvable together with the live store."""

    def __init__(self, index: TypeIndex) -> None:
        self._index = index
        self._proposed = TypeIndex()
        self._via: dict[Key, Key] = {}
        self.unresolved: deque[tuple[Key, Dependency]] = deque()

    def components(self) -> frozenset[Component]:
        return self._proposed.components()

    def resolves(self, key: Key) -> bool:
        return self._index.contains(key) or self._proposed.contains(key)

    def add(self, components: Iterable[Component]) -> None:
        fresh = [
            component
            for component in components
            if component not in self._proposed and component not in self._index
        ]
        self._proposed.put(fresh)

        for component in fresh:
            for dependency in component.dependencies:
                if not dependency.modifier.requires_match:
                    continue
                if self.resolves(dependency.target):
                    continue
                self._via.setdefault(dependency.target, component.key)
                self.unresolved.append((dependency.target, dependency))

    def chain(self, key: Key) -> str:
        links = [f"[{key}]"]
        seen = {key}
        while key in self._via:
            key = self._via[key]
            if key in seen:
                break
            seen.add(key)
            links.append(f"[{key}]")
        return " required by ".join(links)
