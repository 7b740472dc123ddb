from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from graphwire.components import Component, Dependency, Key


class GraphWireError(Exception):
    """Represent a base class for all GraphWire-specific failures.

    Catch this type when you want to handle any GraphWire error path without
    matching each concrete exception class individually.
    """


class GraphWireDefinitionError(GraphWireError):
    """Signal that a type, producer or instance is structurally unusable.

    Raised during registration and discovery for abstract types, protocols,
    classes exposing unresolved type variables, conflicting scope declarations,
    illegal producer signatures and required constructor parameters without
    annotations. Definition errors are always detected before the store is
    touched.

    Attributes:
        type: The offending type or producer, when known.
        suppressed: Further definition errors found in the same batch.

    """

    def __init__(self, type_: Any, message: str) -> None:
        self.type = type_
        self.suppressed: list[GraphWireError] = []
        super().__init__(f"[{_describe(type_)}] {message}")

    def add_suppressed(self, error: GraphWireError) -> None:
        """Attach a secondary error discovered while processing the same batch."""
        self.suppressed.append(error)
        self.add_note(f"suppressed: {error}")


class GraphWireDependencyError(GraphWireError):
    """Base class for store consistency violations.

    Every subclass is raised before any mutation is applied, so the store is
    left exactly as it was before the failing ``register``/``remove`` call.
    """


class GraphWireUnsatisfiedDependencyError(GraphWireDependencyError):
    """Signal that a required dependency has no matching component.

    Raised when a newly registered component needs a key nothing provides, or
    when a removal would take away the only provider of a key some remaining
    component requires.
    """

    def __init__(
        self,
        message: str,
        *,
        component: Component | None = None,
        dependency: Dependency | None = None,
    ) -> None:
        self.component = component
        self.dependency = dependency
        super().__init__(message)


class GraphWireAmbiguousDependencyError(GraphWireDependencyError):
    """Signal that a singular dependency would match more than one component."""

    def __init__(
        self,
        message: str,
        *,
        component: Component | None = None,
        dependency: Dependency | None = None,
        candidates: Sequence[Component] = (),
    ) -> None:
        self.component = component
        self.dependency = dependency
        self.candidates = tuple(candidates)
        super().__init__(message)


class GraphWireCyclicDependencyError(GraphWireDependencyError):
    """Signal a dependency cycle that no deferred edge breaks.

    Attributes:
        cycle: Components on the cycle, in dependency order. The last component
            depends on the first one.

    """

    def __init__(self, cycle: Sequence[Component]) -> None:
        self.cycle = tuple(cycle)
        super().__init__("Cyclic dependency detected:\n" + format_cycle(self.cycle))


class GraphWireScopeConflictError(GraphWireDependencyError):
    """Signal a direct dependency on a narrower scope that cannot be proxied.

    Typical fixes include injecting ``Provider[T]`` instead of ``T`` or making
    the narrower-scoped type proxyable (not ``@final``, not a builtin).
    """


class GraphWireDuplicateComponentError(GraphWireDependencyError):
    """Signal that a component in a batch is already present in the store."""


class GraphWireMissingComponentError(GraphWireDependencyError):
    """Signal that a component in a removal batch is not present in the store."""


class GraphWireResolutionError(GraphWireError):
    """Base class for failures while turning components into instances."""


class GraphWireUnsatisfiedResolutionError(GraphWireResolutionError):
    """Signal that ``get_instance`` found no component for the requested key."""

    def __init__(self, key: Key) -> None:
        self.key = key
        super().__init__(f"No such instance: [{key}]")


class GraphWireAmbiguousResolutionError(GraphWireResolutionError):
    """Signal that ``get_instance`` found more than one component for the key."""

    def __init__(self, key: Key, candidates: Sequence[Component]) -> None:
        self.key = key
        self.candidates = tuple(candidates)
        formatted = ", ".join(sorted(str(candidate) for candidate in self.candidates))
        super().__init__(f"Multiple matching instances: [{key}]: {formatted}")


class GraphWireScopeNotActiveError(GraphWireResolutionError):
    """Signal resolution of a scoped component while its scope is not active.

    Typical fix is entering the scope first, for example
    ``with container.enter_scope(Scope.REQUEST): ...``.
    """


class GraphWireCreationError(GraphWireResolutionError):
    """Signal that user construction code or a life-cycle callback raised.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, component: Component, message: str) -> None:
        self.component = component
        super().__init__(f"[{component}] {message}")


class GraphWireAutoDiscoveryError(GraphWireError):
    """Signal that discovery could not produce a registrable closure.

    The validation error that rejected the discovered candidates is the
    ``__cause__``. Each unresolvable branch found during discovery is attached
    to ``suppressed`` with its full "required by" chain.
    """

    def __init__(self, message: str, problems: Sequence[str]) -> None:
        self.problems = tuple(problems)
        self.suppressed: list[GraphWireError] = [
            GraphWireDefinitionError(None, problem) for problem in self.problems
        ]
        details = "".join(f"\n    -> {problem}" for problem in self.problems)
        super().__init__(f"{message}{details}")


def format_cycle(cycle: Sequence[Any]) -> str:
    """Render a cycle as an indented loop diagram."""
    lines = ["     -----", "    |     |"]
    for item in cycle:
        lines.extend(["    |     V", f"    | {item}", "    |     |"])
    lines.append("     -----")
    return "\n".join(lines)


def _describe(type_: Any) -> str:
    if type_ is None:
        return "discovery"
    if isinstance(type_, str):
        return type_
    return getattr(type_, "__qualname__", None) or repr(type_)
