from __future__ import annotations

import logging
import threading
import types
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, TypeVar, overload

if TYPE_CHECKING:
    from typing_extensions import Self

from graphwire.components import Component, Key, QualifierTag
from graphwire.consistency import ConsistencyEngine
from graphwire.discovery import Discoverer, DiscoveryResult
from graphwire.exceptions import (
    GraphWireAutoDiscoveryError,
    GraphWireDefinitionError,
    GraphWireDependencyError,
    GraphWireError,
    GraphWireMissingComponentError,
    GraphWireUnsatisfiedResolutionError,
)
from graphwire.extraction import AnnotationBindingExtractor, BindingExtractor
from graphwire.instantiation import InstantiationContext
from graphwire.lifecycle import LifeCycleCallbacks
from graphwire.lock_mode import LockMode
from graphwire.markers import strip_annotated
from graphwire.proxies import ProxyStrategy, SubclassProxyStrategy
from graphwire.scope import BaseScope
from graphwire.scope_resolvers import (
    ContextScopeResolver,
    ScopeId,
    ScopeResolver,
    ScopeResolverManager,
    default_scope_resolvers,
)
from graphwire.type_index import TypeIndex

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Container:
    """Register components and build instances from them.

    Every registration and removal is validated against the resulting store
    before it is applied: the store never holds a required dependency without
    exactly one match, a dependency cycle not broken by a provider, or a
    direct reference into a narrower scope that cannot be proxied. A failed
    call leaves the store exactly as it was.

    Registrations and removals are serialized by a single writer lock. Lookups
    do not take it and always see a complete store.

    Args:
        auto_discovery: Register the dependencies of registered types, and types
            requested through ``get_instance``, when nothing provides them yet.
        binding_extractor: Turns types and instances into components.
        lifecycle_callbacks: Locates post-construct and pre-destroy methods for
            the default binding extractor.
        proxy_strategy: Creates the proxies bridging scope differences.
        scope_resolvers: Resolvers for custom scopes, or replacements for the
            builtin ones.
        lock_mode: ``LockMode.NONE`` disables scope cache slot locks.

    Examples:
        .. code-block:: python

            container = Container()
            container.register(UserService)

            with container.enter_scope(Scope.REQUEST):
                service = container.get_instance(UserService)

    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        auto_discovery: bool = True,
        binding_extractor: BindingExtractor | None = None,
        lifecycle_callbacks: LifeCycleCallbacks | None = None,
        proxy_strategy: ProxyStrategy | None = None,
        scope_resolvers: Iterable[ScopeResolver] = (),
        lock_mode: LockMode = LockMode.THREAD,
    ) -> None:
        self._auto_discovery = auto_discovery
        self._binding_extractor = binding_extractor or AnnotationBindingExtractor(
            lifecycle_callbacks=lifecycle_callbacks,
        )
        self._proxy_strategy = proxy_strategy or SubclassProxyStrategy()
        self._scope_resolvers = ScopeResolverManager(
            [*default_scope_resolvers(lock_mode=lock_mode), *scope_resolvers],
        )

        self._index = TypeIndex()
        self._lock = threading.RLock()
        self._consistency = ConsistencyEngine(proxy_strategy=self._proxy_strategy)
        self._discoverer = Discoverer(
            self._index,
            binding_extractor=self._binding_extractor,
            auto_discovery=auto_discovery,
        )
        self._context = InstantiationContext(
            self._index,
            scope_resolvers=self._scope_resolvers,
            proxy_strategy=self._proxy_strategy,
        )

        self.register_instance(self)

    def register(self, *types_: Any) -> None:
        """Register one or more types together with everything they produce.

        Each type may carry qualifiers through ``Annotated[T, Qualifier(...)]``;
        the class must then be declared with those qualifiers. Each type is
        registered itself even when a registered subtype already provides it. With
        auto-discovery enabled, unregistered dependencies are discovered and
        registered in the same transaction.

        Raises:
            GraphWireDefinitionError: If a type cannot be turned into components.
            GraphWireDependencyError: If the result would violate store rules.
            GraphWireAutoDiscoveryError: If discovered dependencies could not
                complete the registration.

        """
        keys = [Key.of(type_) for type_ in types_]
        with self._lock:
            components = self._discoverer.extract(keys)
            self._commit_discovered(keys, self._discoverer.extend(components))

    def register_instance(self, instance: Any, *qualifiers: QualifierTag) -> None:
        """Register an externally constructed instance as a singleton.

        The container never destroys registered instances.

        Raises:
            GraphWireDuplicateComponentError: If the same instance is already
                registered with the same qualifiers.
            GraphWireDependencyError: If it would make a dependency ambiguous.

        """
        component = self._binding_extractor.extract_instance(instance, qualifiers)
        with self._lock:
            self._commit(additions=[component])

    def remove(self, *types_: Any) -> None:
        """Remove types registered with ``register`` along with their producers.

        Cached instances of the removed components are destroyed.

        Raises:
            GraphWireMissingComponentError: If a type is not registered.
            GraphWireDependencyError: If a remaining component still needs one
                of the removed components.

        """
        with self._lock:
            removals: list[Component] = []
            for type_ in types_:
                owner = strip_annotated(type_)
                owned = [
                    component
                    for component in self._index
                    if not component.is_external and component.owner_type == owner
                ]
                if not owned:
                    msg = f"Type not registered: [{Key.of(type_)}]"
                    raise GraphWireMissingComponentError(msg)
                removals.extend(owned)
            self._commit(removals=removals)

    def remove_instance(self, instance: Any, *qualifiers: QualifierTag) -> None:
        """Remove an instance registered with ``register_instance``.

        Raises:
            GraphWireMissingComponentError: If the instance is not registered
                with exactly these qualifiers.
            GraphWireDependencyError: If a remaining component still needs it.

        """
        component = self._binding_extractor.extract_instance(instance, qualifiers)
        with self._lock:
            self._commit(removals=[component])

    @overload
    def get_instance(self, type_: type[T], *qualifiers: QualifierTag) -> T: ...

    @overload
    def get_instance(self, type_: Any, *qualifiers: QualifierTag) -> Any: ...

    def get_instance(self, type_: Any, *qualifiers: QualifierTag) -> Any:
        """Return an instance of the single component matching the request.

        Args:
            type_: Requested type, possibly ``Annotated`` with qualifiers or
                containing ``Any``/``TypeVar`` wildcards.
            *qualifiers: Extra qualifiers the component must carry.

        Raises:
            GraphWireUnsatisfiedResolutionError: If nothing matches.
            GraphWireAmbiguousResolutionError: If several components match.
            GraphWireScopeNotActiveError: If the component's scope is not active.
            GraphWireCreationError: If construction code raised.

        """
        key = Key.of(type_, *qualifiers)
        if self._auto_discovery and not key.has_wildcards and not self._index.contains(key):
            self._register_just_in_time(key)
        return self._context.create(key)

    @overload
    def get_instances(self, type_: type[T], *qualifiers: QualifierTag) -> list[T]: ...

    @overload
    def get_instances(self, type_: Any, *qualifiers: QualifierTag) -> list[Any]: ...

    def get_instances(self, type_: Any, *qualifiers: QualifierTag) -> list[Any]:
        """Return instances of every component matching the request.

        Components whose scope is not active are skipped. Nothing is
        discovered, so the result may be empty.

        Raises:
            GraphWireCreationError: If construction code raised.

        """
        return self._context.create_all(Key.of(type_, *qualifiers))

    def contains(self, type_: Any, *qualifiers: QualifierTag) -> bool:
        """Return whether at least one registered component matches the request."""
        return self._index.contains(Key.of(type_, *qualifiers))

    def enter_scope(self, scope: BaseScope) -> AbstractContextManager[ScopeId]:
        """Activate ``scope`` for the current thread or task until the block exits.

        Instances cached in the scope are destroyed on exit.

        Raises:
            GraphWireDefinitionError: If ``scope`` is not entered explicitly,
                like ``Scope.SINGLETON`` or ``Scope.UNSCOPED``.

        """
        resolver = self._scope_resolvers.get(scope)
        if not isinstance(resolver, ContextScopeResolver):
            raise GraphWireDefinitionError(scope, f"scope [{scope}] cannot be entered")
        return resolver.enter()

    def destroy_instance(self, instance: Any) -> None:
        """Destroy an unscoped instance and the unscoped dependents created for it.

        Scoped instances are destroyed with their scope; other instances are
        ignored.
        """
        self._context.destroy(instance)

    def close(self) -> None:
        """Destroy every unscoped instance still tracked and every cached instance."""
        with self._lock:
            self._context.close()
            self._scope_resolvers.close()

    def __iter__(self) -> Iterator[Component]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def _register_just_in_time(self, key: Key) -> None:
        with self._lock:
            if self._index.contains(key):
                return
            try:
                self._commit_discovered([key], self._discoverer.discover([key]))
            except GraphWireError as error:
                raise GraphWireUnsatisfiedResolutionError(key) from error

    def _commit_discovered(self, keys: list[Key], result: DiscoveryResult) -> None:
        try:
            self._commit(additions=result.accepted)
        except GraphWireDependencyError as error:
            if not result.problems:
                raise
            formatted = ", ".join(str(key) for key in keys)
            msg = f"Unable to register [{formatted}]"
            raise GraphWireAutoDiscoveryError(msg, result.problems) from error

    def _commit(
        self,
        *,
        additions: Iterable[Component] = (),
        removals: Iterable[Component] = (),
    ) -> None:
        added = frozenset(additions)
        removed = frozenset(removals)
        for component in added:
            self._scope_resolvers.get(component.scope)

        diagnosis = self._consistency.validate(self._index, added, removed)
        diagnosis.raise_for_errors()
        self._index.replace_with(diagnosis.index)

        for component in removed:
            if not component.is_external:
                self._scope_resolvers.get(component.scope).remove(component)

        if added:
            logger.debug("Registered %d component(s): %s", len(added), sorted(map(str, added)))
        if removed:
            logger.debug("Removed %d component(s): %s", len(removed), sorted(map(str, removed)))
