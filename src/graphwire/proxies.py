from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from graphwire.exceptions import GraphWireDefinitionError
from graphwire.generics import raw_class

T = TypeVar("T")

ProxyFactory = Callable[[Callable[[], T]], T]
"""Turns a zero-argument resolver callable into a surrogate instance."""

_RESOLVER_ATTRIBUTE = "__graphwire_resolver__"
_FORWARDED_DUNDERS = (
    "__repr__",
    "__str__",
    "__eq__",
    "__ne__",
    "__lt__",
    "__le__",
    "__gt__",
    "__ge__",
    "__hash__",
    "__bool__",
    "__len__",
    "__iter__",
    "__contains__",
    "__getitem__",
    "__setitem__",
    "__delitem__",
    "__call__",
    "__enter__",
    "__exit__",
)


@runtime_checkable
class ProxyStrategy(Protocol):
    """Create surrogates that re-resolve their target on every use.

    The consistency engine calls ``create_proxy_factory`` at registration time
    for every dependency that needs bridging, so a type that cannot be proxied
    is rejected before the store changes.
    """

    def create_proxy_factory(self, type_: Any) -> ProxyFactory[Any]:
        """Return a factory producing proxies for ``type_``.

        Raises:
            GraphWireDefinitionError: If ``type_`` cannot be proxied.

        """
        ...

    def wrap(self, type_: Any, resolver: Callable[[], Any]) -> Any:
        """Return a proxy for ``type_`` that forwards to ``resolver()``."""
        ...


class SubclassProxyStrategy:
    """Proxy classes by generating a forwarding subclass at runtime.

    Attribute reads, writes and deletes as well as the common special methods
    are forwarded to the instance returned by the resolver, which is invoked on
    every access. The proxy passes ``isinstance`` checks for the proxied class.

    Classes decorated with ``typing.final``, builtin types and classes whose
    instances cannot be allocated without running their constructor are
    rejected.
    """

    def __init__(self) -> None:
        self._proxy_classes: dict[type[Any], type[Any]] = {}
        self._lock = threading.Lock()

    def create_proxy_factory(self, type_: Any) -> ProxyFactory[Any]:
        cls = raw_class(type_)
        with self._lock:
            proxy_class = self._proxy_classes.get(cls)
            if proxy_class is None:
                proxy_class = self._build_proxy_class(cls)
                self._proxy_classes[cls] = proxy_class

        def factory(resolver: Callable[[], Any]) -> Any:
            proxy = object.__new__(proxy_class)
            object.__setattr__(proxy, _RESOLVER_ATTRIBUTE, resolver)
            return proxy

        return factory

    def wrap(self, type_: Any, resolver: Callable[[], Any]) -> Any:
        return self.create_proxy_factory(type_)(resolver)

    def _build_proxy_class(self, cls: type[Any]) -> type[Any]:
        if cls is object or cls.__module__ == "builtins":
            msg = "cannot be proxied: builtin types are not extensible"
            raise GraphWireDefinitionError(cls, msg)
        if getattr(cls, "__final__", False):
            raise GraphWireDefinitionError(cls, "cannot be proxied: class is marked final")

        namespace: dict[str, Any] = {
            "__getattribute__": _proxy_getattribute,
            "__setattr__": _proxy_setattr,
            "__delattr__": _proxy_delattr,
            "__module__": cls.__module__,
            "__qualname__": f"{cls.__qualname__}Proxy",
        }
        for name in _FORWARDED_DUNDERS:
            if getattr(cls, name, None) is not None:
                namespace[name] = _forwarding_method(name)

        try:
            proxy_class = type(cls)(f"{cls.__name__}Proxy", (cls,), namespace)
            object.__new__(proxy_class)
        except TypeError as error:
            msg = f"cannot be proxied: {error}"
            raise GraphWireDefinitionError(cls, msg) from error
        return proxy_class


def is_proxy(value: Any) -> bool:
    """Return whether ``value`` is a proxy produced by ``SubclassProxyStrategy``."""
    try:
        object.__getattribute__(value, _RESOLVER_ATTRIBUTE)
    except AttributeError:
        return False
    return True


def _target(proxy: Any) -> Any:
    return object.__getattribute__(proxy, _RESOLVER_ATTRIBUTE)()


def _proxy_getattribute(self: Any, name: str) -> Any:
    return getattr(_target(self), name)


def _proxy_setattr(self: Any, name: str, value: Any) -> None:
    setattr(_target(self), name, value)


def _proxy_delattr(self: Any, name: str) -> None:
    delattr(_target(self), name)


def _forwarding_method(name: str) -> Callable[..., Any]:
    def method(self: Any, *args: Any, **kwargs: Any) -> Any:
        return getattr(_target(self), name)(*args, **kwargs)

    method.__name__ = name
    return method
