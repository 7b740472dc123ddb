from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Protocol

from graphwire.components import Component
from graphwire.exceptions import (
    GraphWireCreationError,
    GraphWireDefinitionError,
    GraphWireScopeNotActiveError,
)
from graphwire.lock_mode import LockMode
from graphwire.scope import BaseScope, Scope

logger = logging.getLogger(__name__)

ScopeId = Hashable


class CreatedInstance(Protocol):
    """An instance together with the means to tear it down."""

    @property
    def instance(self) -> Any: ...

    @property
    def is_alive(self) -> bool: ...

    @property
    def needs_release(self) -> bool: ...

    def hold_weakly(self) -> None:
        """Keep only a weak reference to the instance."""
        ...

    def release(self) -> None:
        """Destroy the instance and the dependents created for it."""
        ...


class _Shared:
    """A strong view of a weakly cached instance, released by its resolver."""

    __slots__ = ("instance",)

    is_alive = True
    needs_release = False

    def __init__(self, instance: Any) -> None:
        self.instance = instance

    def hold_weakly(self) -> None:
        pass

    def release(self) -> None:
        pass


class ScopeResolver(ABC):
    """Cache instances of components for the currently active scope id.

    Instances are cached per ``(scope id, component)`` slot. Concurrent calls
    to ``get`` for the same slot construct the component at most once: the
    first caller builds it while the others wait for the result. A failed
    construction leaves the slot empty.

    Subclasses define how the current scope id is found by overriding
    ``current_scope_id``.
    """

    def __init__(self, scope: BaseScope, *, lock_mode: LockMode = LockMode.THREAD) -> None:
        self._scope = scope
        self._lock_mode = lock_mode
        self._instances: dict[ScopeId, dict[Component, CreatedInstance]] = {}
        self._slot_locks: dict[tuple[ScopeId, Component], threading.Lock] = {}
        self._slot_locks_lock = threading.Lock()

    @property
    def scope(self) -> BaseScope:
        return self._scope

    @abstractmethod
    def current_scope_id(self) -> ScopeId | None:
        """Return the id of the active scope, or ``None`` when it is not active."""

    def is_active(self) -> bool:
        return self.current_scope_id() is not None

    def get(
        self,
        component: Component,
        creator: Callable[[], CreatedInstance],
    ) -> CreatedInstance:
        """Return the cached instance of ``component``, creating it when missing.

        Args:
            component: Component whose instance is requested.
            creator: Builds a new instance, called at most once per slot.

        Raises:
            GraphWireScopeNotActiveError: If the scope is not active.

        """
        scope_id = self.current_scope_id()
        if scope_id is None:
            msg = f"Scope [{self._scope}] not active for [{component}]"
            raise GraphWireScopeNotActiveError(msg)

        cached = self._cached(scope_id, component)
        if cached is not None:
            return cached

        if self._lock_mode is LockMode.NONE:
            return self._create(scope_id, component, creator)

        slot_lock = self._get_slot_lock((scope_id, component))
        with slot_lock:
            # Double-check after acquiring the slot lock
            cached = self._cached(scope_id, component)
            if cached is not None:
                return cached
            return self._create(scope_id, component, creator)

    def remove(self, component: Component) -> None:
        """Destroy and forget the instances of ``component`` in every scope id."""
        released: list[CreatedInstance] = []
        with self._slot_locks_lock:
            for instances in self._instances.values():
                created = instances.pop(component, None)
                if created is not None:
                    released.append(created)
        for created in released:
            created.release()

    def destroy_scope(self, scope_id: ScopeId) -> None:
        """Destroy every instance cached for ``scope_id``, newest first."""
        with self._slot_locks_lock:
            instances = self._instances.pop(scope_id, {})
            for slot in [slot for slot in self._slot_locks if slot[0] == scope_id]:
                del self._slot_locks[slot]

        logger.debug("Destroying %d instance(s) of scope %s", len(instances), self._scope)
        for created in reversed(list(instances.values())):
            created.release()

    def close(self) -> None:
        """Destroy the instances of every scope id."""
        for scope_id in list(self._instances):
            self.destroy_scope(scope_id)

    def _cached(self, scope_id: ScopeId, component: Component) -> CreatedInstance | None:
        return self._instances.get(scope_id, {}).get(component)

    def _create(
        self,
        scope_id: ScopeId,
        component: Component,
        creator: Callable[[], CreatedInstance],
    ) -> CreatedInstance:
        created = creator()
        with self._slot_locks_lock:
            self._instances.setdefault(scope_id, {})[component] = created
        return created

    def _get_slot_lock(self, slot: tuple[ScopeId, Component]) -> threading.Lock:
        """Get or create the lock guarding a cache slot.

        Uses double-checked locking to minimize lock contention.
        """
        if slot not in self._slot_locks:
            with self._slot_locks_lock:
                # Second check after acquiring lock - race timing dependent
                if slot not in self._slot_locks:  # pragma: no cover - race timing dependent
                    self._slot_locks[slot] = threading.Lock()
        return self._slot_locks[slot]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._scope!s})"


class SingletonScopeResolver(ScopeResolver):
    """Always-active scope holding one instance per component."""

    _SCOPE_ID = "singleton"

    def __init__(
        self,
        scope: BaseScope = Scope.SINGLETON,
        *,
        lock_mode: LockMode = LockMode.THREAD,
    ) -> None:
        super().__init__(scope, lock_mode=lock_mode)

    def current_scope_id(self) -> ScopeId | None:
        return self._SCOPE_ID


class UnscopedScopeResolver(ScopeResolver):
    """Pseudo-scope that creates a new instance on every request."""

    def __init__(self, scope: BaseScope = Scope.UNSCOPED) -> None:
        super().__init__(scope, lock_mode=LockMode.NONE)

    def current_scope_id(self) -> ScopeId | None:
        return None

    def is_active(self) -> bool:
        return True

    def get(
        self,
        component: Component,
        creator: Callable[[], CreatedInstance],
    ) -> CreatedInstance:
        return creator()


class WeakSingletonScopeResolver(ScopeResolver):
    """Always-active scope sharing one instance per component while it is in use.

    Instances are cached through weak references. Once the last outside
    reference is dropped the instance is collected, and the next request
    creates a new one. The dependents created for a collected instance are
    destroyed when it is replaced or when the resolver is closed; its own
    pre-destroy callbacks do not run.
    """

    _SCOPE_ID = "weak_singleton"

    def __init__(
        self,
        scope: BaseScope = Scope.WEAK_SINGLETON,
        *,
        lock_mode: LockMode = LockMode.THREAD,
    ) -> None:
        super().__init__(scope, lock_mode=lock_mode)

    def current_scope_id(self) -> ScopeId | None:
        return self._SCOPE_ID

    def _cached(self, scope_id: ScopeId, component: Component) -> CreatedInstance | None:
        created = super()._cached(scope_id, component)
        if created is None:
            return None
        instance = created.instance
        if instance is None:
            return None
        return _Shared(instance)

    def _create(
        self,
        scope_id: ScopeId,
        component: Component,
        creator: Callable[[], CreatedInstance],
    ) -> CreatedInstance:
        created = creator()
        instance = created.instance
        try:
            created.hold_weakly()
        except TypeError as error:
            created.release()
            msg = "must support weak references to be a weak singleton"
            raise GraphWireCreationError(component, msg) from error

        with self._slot_locks_lock:
            instances = self._instances.setdefault(scope_id, {})
            previous = instances.get(component)
            instances[component] = created
        if previous is not None:
            logger.debug("Replacing collected instance of %s", component)
            previous.release()
        return _Shared(instance)


class ContextScopeResolver(ScopeResolver):
    """Scope activated explicitly with ``enter``.

    The active scope id lives in a ``contextvars.ContextVar``, so it is local
    to the calling thread and to the current asyncio task. Entering again
    while the scope is active starts a nested scope id that shadows the outer
    one until it exits.

    Examples:
        .. code-block:: python

            with resolver.enter():
                handle_request()

    """

    _ids = itertools.count(1)

    def __init__(self, scope: BaseScope, *, lock_mode: LockMode = LockMode.THREAD) -> None:
        super().__init__(scope, lock_mode=lock_mode)
        self._current: ContextVar[ScopeId | None] = ContextVar(
            f"graphwire_scope_{scope.scope_name}",
            default=None,
        )

    def current_scope_id(self) -> ScopeId | None:
        return self._current.get()

    @contextmanager
    def enter(self) -> Iterator[ScopeId]:
        """Activate a fresh scope id and destroy its instances on exit."""
        scope_id = (self._scope.scope_name, next(self._ids))
        token = self._current.set(scope_id)
        try:
            yield scope_id
        finally:
            self._current.reset(token)
            self.destroy_scope(scope_id)


class ScopeResolverManager:
    """Map scope tags to the resolvers managing them."""

    def __init__(self, resolvers: Iterable[ScopeResolver]) -> None:
        self._resolvers: dict[BaseScope, ScopeResolver] = {}
        for resolver in resolvers:
            self._resolvers[resolver.scope] = resolver

    def get(self, scope: BaseScope) -> ScopeResolver:
        """Return the resolver for ``scope``.

        Raises:
            GraphWireDefinitionError: If no resolver manages ``scope``.

        """
        resolver = self._resolvers.get(scope)
        if resolver is None:
            raise GraphWireDefinitionError(scope, f"has no scope resolver for scope [{scope}]")
        return resolver

    def __contains__(self, scope: object) -> bool:
        return scope in self._resolvers

    def __iter__(self) -> Iterator[ScopeResolver]:
        return iter(self._resolvers.values())

    def close(self) -> None:
        """Close every resolver, narrowest scope first."""
        for resolver in sorted(self._resolvers.values(), key=lambda item: -item.scope.level):
            resolver.close()


def default_scope_resolvers(*, lock_mode: LockMode = LockMode.THREAD) -> list[ScopeResolver]:
    """Return resolvers for the builtin scopes."""
    return [
        SingletonScopeResolver(lock_mode=lock_mode),
        UnscopedScopeResolver(),
        WeakSingletonScopeResolver(lock_mode=lock_mode),
        ContextScopeResolver(Scope.SESSION, lock_mode=lock_mode),
        ContextScopeResolver(Scope.REQUEST, lock_mode=lock_mode),
    ]
