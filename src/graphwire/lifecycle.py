from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

_POST_CONSTRUCT_MARKER = "__graphwire_post_construct__"
_PRE_DESTROY_MARKER = "__graphwire_pre_destroy__"


def post_construct(method: F) -> F:
    """Mark a zero-argument method to run right after construction.

    A failure aborts construction and surfaces as ``GraphWireCreationError``.
    """
    setattr(method, _POST_CONSTRUCT_MARKER, True)
    return method


def pre_destroy(method: F) -> F:
    """Mark a zero-argument method to run right before an instance is dropped.

    Failures are logged and suppressed so that sibling instances still get
    destroyed.
    """
    setattr(method, _PRE_DESTROY_MARKER, True)
    return method


@dataclass(frozen=True, slots=True)
class LifeCycleMethods:
    """The callbacks located for a single class."""

    post_construct: tuple[Callable[[Any], None], ...] = ()
    pre_destroy: tuple[Callable[[Any], None], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.post_construct and not self.pre_destroy


class LifeCycleCallbacks(Protocol):
    """Locate the life-cycle callbacks of a class."""

    def find(self, cls: type[Any]) -> LifeCycleMethods:
        """Return the callbacks declared on ``cls`` and its bases."""
        ...


class AnnotationLifeCycleCallbacks:
    """Locate methods decorated with ``post_construct`` and ``pre_destroy``.

    Post-construct callbacks run base class first, pre-destroy callbacks run
    subclass first. A method overridden in a subclass runs once, using the
    subclass definition.
    """

    def __init__(self) -> None:
        self._cache: dict[type[Any], LifeCycleMethods] = {}

    def find(self, cls: type[Any]) -> LifeCycleMethods:
        cached = self._cache.get(cls)
        if cached is not None:
            return cached

        post: list[Callable[[Any], None]] = []
        pre: list[Callable[[Any], None]] = []
        seen_names: set[str] = set()
        for klass in cls.__mro__:
            for name, member in vars(klass).items():
                if name in seen_names:
                    continue
                seen_names.add(name)
                if getattr(member, _POST_CONSTRUCT_MARKER, False):
                    post.append(member)
                if getattr(member, _PRE_DESTROY_MARKER, False):
                    pre.append(member)

        methods = LifeCycleMethods(post_construct=tuple(reversed(post)), pre_destroy=tuple(pre))
        self._cache[cls] = methods
        return methods
