from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Callable
from functools import partial
from typing import Any

from graphwire.components import (
    Component,
    Dependency,
    DependencyModifier,
    DestroyFunction,
    Key,
)
from graphwire.consistency import needs_proxy
from graphwire.exceptions import (
    GraphWireAmbiguousResolutionError,
    GraphWireCreationError,
    GraphWireError,
    GraphWireUnsatisfiedResolutionError,
)
from graphwire.extraction import NOT_FOUND
from graphwire.proxies import ProxyStrategy
from graphwire.scope_resolvers import CreatedInstance, ScopeResolverManager
from graphwire.type_index import TypeIndex

logger = logging.getLogger(__name__)

_MIN_PRUNE_THRESHOLD = 64


class Creation:
    """An instance plus the unscoped dependents created for it.

    Scoped dependents belong to their scope and external instances to the
    caller, so neither is recorded here.
    """

    __slots__ = (
        "_created",
        "_instance",
        "_reference",
        "_released",
        "component",
        "dependents",
    )

    def __init__(self, component: Component) -> None:
        self.component = component
        self.dependents: list[CreatedInstance] = []
        self._instance: Any = None
        self._reference: weakref.ref[Any] | None = None
        self._created = False
        self._released = False

    @property
    def instance(self) -> Any:
        """The instance, or ``None`` once a weakly held instance was collected."""
        if self._reference is not None:
            return self._reference()
        return self._instance

    @property
    def is_alive(self) -> bool:
        return self._reference is None or self._reference() is not None

    @property
    def needs_release(self) -> bool:
        """Whether releasing this creation would run any destroy callback."""
        return self.component.destroy is not None or bool(self.dependents)

    def complete(self, instance: Any) -> None:
        """Record the fully constructed instance."""
        self._instance = instance
        self._created = True

    def hold_weakly(self) -> None:
        """Keep only a weak reference to the instance.

        Raises:
            TypeError: If the instance does not support weak references.

        """
        self._reference = weakref.ref(self._instance)
        self._instance = None

    def release(self) -> None:
        """Destroy the instance, then its dependents in reverse creation order.

        An instance whose construction did not complete is not destroyed
        itself, only the dependents already created for it. Failing destroy
        callbacks are logged and suppressed so that the remaining dependents
        are still destroyed.
        """
        if self._released:
            return
        self._released = True

        destroy = self.component.destroy
        if self._created and destroy is not None and not self.component.is_external:
            self._destroy(destroy)

        for dependent in reversed(self.dependents):
            dependent.release()
        self.dependents.clear()

    def _destroy(self, destroy: DestroyFunction) -> None:
        if not self.is_alive:
            logger.debug("Instance of %s was already collected", self.component)
            return
        try:
            destroy(self.instance)
        except Exception:
            logger.warning("Failed to destroy instance of %s", self.component, exc_info=True)


class InstantiationContext:
    """Build object graphs for keys resolved against a type index.

    Each component is obtained through the resolver of its scope. A direct
    reference from a component to one with a narrower scope is bridged by a
    proxy that resolves the current instance on every use, so an inactive
    scope surfaces only when the proxy is used. ``Provider[T]`` dependencies
    receive a callable resolving ``T`` on each call.

    Unscoped instances that have something to destroy are tracked until
    ``destroy`` or ``close`` is called for them. They are tracked through weak
    references: an instance collected before that is forgotten without running
    its own destroy callbacks, and its dependents are destroyed once it is
    forgotten. Instances that do not support weak references are not tracked.
    """

    def __init__(
        self,
        index: TypeIndex,
        *,
        scope_resolvers: ScopeResolverManager,
        proxy_strategy: ProxyStrategy,
    ) -> None:
        self._index = index
        self._scope_resolvers = scope_resolvers
        self._proxy_strategy = proxy_strategy
        self._local = threading.local()
        self._tracked: dict[int, CreatedInstance] = {}
        self._tracked_lock = threading.Lock()
        self._prune_threshold = _MIN_PRUNE_THRESHOLD

    def create(self, key: Key) -> Any:
        """Return an instance of the single component matching ``key``.

        Raises:
            GraphWireUnsatisfiedResolutionError: If nothing matches ``key``.
            GraphWireAmbiguousResolutionError: If several components match.
            GraphWireScopeNotActiveError: If the component's scope is not active.
            GraphWireCreationError: If construction code raised.

        """
        matches = self._index.resolve(key)
        if not matches:
            raise GraphWireUnsatisfiedResolutionError(key)
        if len(matches) > 1:
            raise GraphWireAmbiguousResolutionError(key, sorted(matches, key=str))
        (component,) = matches
        return self._root_instance(component)

    def create_all(self, key: Key) -> list[Any]:
        """Return instances of every component matching ``key``.

        Components whose scope is not active are skipped.
        """
        instances: list[Any] = []
        for component in sorted(self._index.resolve(key), key=str):
            if not self._scope_resolvers.get(component.scope).is_active():
                logger.debug("Skipping %s: scope %s is not active", component, component.scope)
                continue
            instances.append(self._root_instance(component))
        return instances

    def destroy(self, instance: Any) -> bool:
        """Destroy an unscoped instance obtained from this context.

        Returns:
            ``True`` when the instance was tracked and has been destroyed.

        """
        with self._tracked_lock:
            creation = self._tracked.pop(id(instance), None)
        if creation is None or creation.instance is not instance:
            logger.debug("Instance %r is not tracked; nothing to destroy", instance)
            return False
        creation.release()
        return True

    def close(self) -> None:
        """Destroy every tracked unscoped instance, newest first."""
        with self._tracked_lock:
            tracked = list(self._tracked.values())
            self._tracked.clear()
        for creation in reversed(tracked):
            creation.release()

    def _root_instance(self, component: Component) -> Any:
        creation = self._obtain(component)
        instance = creation.instance
        if component.scope.pseudo and creation.needs_release:
            self._track(instance, creation)
        return instance

    def _track(self, instance: Any, creation: CreatedInstance) -> None:
        try:
            creation.hold_weakly()
        except TypeError:
            logger.debug("Not tracking %s: no weak reference support", creation.component)
            return

        collected: list[CreatedInstance] = []
        with self._tracked_lock:
            previous = self._tracked.get(id(instance))
            if previous is not None and not previous.is_alive:
                collected.append(previous)
            self._tracked[id(instance)] = creation
            if len(self._tracked) > self._prune_threshold:
                collected.extend(self._prune())

        if collected:
            logger.debug("Forgetting %d collected unscoped instance(s)", len(collected))
        for forgotten in collected:
            forgotten.release()

    def _prune(self) -> list[CreatedInstance]:
        alive = {key: creation for key, creation in self._tracked.items() if creation.is_alive}
        collected = [creation for creation in self._tracked.values() if not creation.is_alive]
        self._tracked = alive
        self._prune_threshold = max(_MIN_PRUNE_THRESHOLD, 2 * len(alive))
        return collected

    def _obtain(self, component: Component) -> CreatedInstance:
        stack = self._stack()
        if component in stack:
            chain = " -> ".join(str(item) for item in (*stack, component))
            msg = f"is already being created on this thread: {chain}"
            raise GraphWireCreationError(component, msg)

        resolver = self._scope_resolvers.get(component.scope)
        return resolver.get(component, partial(self._instantiate, component))

    def _instantiate(self, component: Component) -> Creation:
        creation = Creation(component)
        stack = self._stack()
        stack.append(component)
        try:
            values = [
                self._inject(component, dependency, creation)
                for dependency in component.dependencies
            ]
            creation.complete(component.create(values))
        except GraphWireError:
            creation.release()
            raise
        except Exception as error:
            creation.release()
            msg = f"creation failed: {error!r}"
            raise GraphWireCreationError(component, msg) from error
        finally:
            stack.pop()
        return creation

    def _inject(self, owner: Component, dependency: Dependency, creation: Creation) -> Any:
        target = dependency.target
        if dependency.modifier is DependencyModifier.DEFERRED:
            return partial(self.create, target)

        if dependency.modifier is DependencyModifier.COLLECTION:
            values = []
            for match in sorted(self._index.resolve(target), key=str):
                if self._scope_resolvers.get(match.scope).is_active():
                    values.append(self._direct_value(match, creation))
            if not values and dependency.empty_is_missing:
                return NOT_FOUND
            return dependency.collection_type(values)

        matches = self._index.resolve(target)
        if len(matches) > 1:
            raise GraphWireAmbiguousResolutionError(target, sorted(matches, key=str))
        if not matches:
            if dependency.modifier is DependencyModifier.OPTIONAL:
                return NOT_FOUND
            raise GraphWireUnsatisfiedResolutionError(target)

        (match,) = matches
        if needs_proxy(owner.scope, match.scope):
            factory = self._proxy_strategy.create_proxy_factory(match.type)
            return factory(self._proxy_target(match))
        return self._direct_value(match, creation)

    def _direct_value(self, component: Component, creation: Creation) -> Any:
        dependent = self._obtain(component)
        if component.scope.pseudo and dependent.needs_release:
            creation.dependents.append(dependent)
        return dependent.instance

    def _proxy_target(self, component: Component) -> Callable[[], Any]:
        def resolve() -> Any:
            return self._obtain(component).instance

        return resolve

    def _stack(self) -> list[Component]:
        stack: list[Component] | None = getattr(self._local, "stack", None)
        if stack is None:
            stack = []
            self._local.stack = stack
        return stack
