from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, NamedTuple, TypeVar, get_args, get_origin

T = TypeVar("T")
_ANNOTATED_MARKER_MIN_ARGS = 2


class Qualifier(NamedTuple):
    """Differentiate multiple components exposing the same type.

    Attach ``Qualifier`` metadata to ``typing.Annotated`` for dependencies, or
    pass it to ``qualified`` for classes, so GraphWire only matches components
    carrying all the requested qualifiers.

    Examples:
        .. code-block:: python

            from typing import Annotated, TypeAlias


            @qualified(Qualifier("replica"))
            class ReplicaDatabase(Database): ...


            ReplicaDb: TypeAlias = Annotated[Database, Qualifier("replica")]

    """

    value: Any


class MaybeMarker:
    """Marker that indicates a dependency is optional and may resolve to ``None``."""


@dataclass(frozen=True)
class ProviderMarker:
    """Marker for lazy deferred-resolution provider callables."""

    dependency_key: Any


@dataclass(frozen=True)
class AllMarker:
    """Marker for collecting every component matching a dependency key."""

    dependency_key: Any


class ArgumentMarker:
    """Marker for constructor parameters supplied when an assisted factory is called."""


@dataclass(frozen=True)
class Produces:
    """Mark a class attribute as a producer field.

    Examples:
        .. code-block:: python

            class Settings:
                timeout: Annotated[int, Produces(), Qualifier("timeout")] = 30

    """

    scope: Any = None


if TYPE_CHECKING:
    Provider = Callable[[], T]
    """Mark a dependency as a deferred provider callable.

    At runtime ``Provider[T]`` becomes ``Annotated[T, ProviderMarker(...)]`` and is
    injected as ``Callable[[], T]``. Each call resolves ``T`` again, so deferred
    dependencies never take part in cycle or scope checks.
    """

    All = tuple[T, ...]
    """Resolve all components matching a dependency key.

    ``All[T]`` type-checks as ``tuple[T, ...]`` and always resolves to a tuple.
    It resolves to an empty tuple when nothing matches.
    """

    Maybe = T | None  # type: ignore[misc]
    """Mark a dependency as explicitly optional.

    At runtime ``Maybe[T]`` becomes ``Annotated[T, MaybeMarker()]``.
    """

    Argument = Annotated[T, ArgumentMarker()]
    """Mark a constructor parameter as supplied by an assisted factory call.

    At runtime ``Argument[T]`` becomes ``Annotated[T, ArgumentMarker()]``.
    """

else:

    class Maybe:
        """Mark a dependency as explicitly optional.

        At runtime ``Maybe[T]`` resolves to ``Annotated[T, MaybeMarker()]``.
        """

        def __class_getitem__(cls, item: T) -> Annotated[T, MaybeMarker]:
            if get_origin(item) is Annotated:
                args = get_args(item)
                inner = args[0]
                metadata = args[1:]
                return _build_annotated((inner, *metadata, MaybeMarker()))
            return _build_annotated((item, MaybeMarker()))

    class Provider:
        """Mark a dependency for deferred provider injection."""

        def __class_getitem__(cls, item: T) -> Annotated[T, ProviderMarker]:
            marker = ProviderMarker(dependency_key=item)
            if get_origin(item) is Annotated:
                args = get_args(item)
                return _build_annotated((args[0], *args[1:], marker))
            return _build_annotated((item, marker))

    class All:
        """Resolve all components matching a dependency key.

        At runtime ``All[T]`` resolves to ``Annotated[T, AllMarker(dependency_key=T)]``.
        Qualifiers inside ``T`` are kept, so ``All[Annotated[T, Qualifier('x')]]``
        collects only components qualified with ``'x'``.
        """

        def __class_getitem__(cls, item: Any) -> Any:
            marker = AllMarker(dependency_key=item)
            if get_origin(item) is Annotated:
                args = get_args(item)
                return _build_annotated((args[0], *args[1:], marker))
            return _build_annotated((item, marker))

    class Argument:
        """Mark a constructor parameter as supplied by an assisted factory call.

        At runtime ``Argument[T]`` resolves to ``Annotated[T, ArgumentMarker()]``.
        Classes with such parameters are only created through a factory
        declared with ``assisted``.

        Examples:
            .. code-block:: python

                class Report:
                    def __init__(self, db: Database, title: Argument[str]) -> None: ...


                @assisted
                class ReportFactory(ABC):
                    @abstractmethod
                    def create(self, title: str) -> Report: ...

        """

        def __class_getitem__(cls, item: T) -> Annotated[T, ArgumentMarker]:
            if get_origin(item) is Annotated:
                args = get_args(item)
                return _build_annotated((args[0], *args[1:], ArgumentMarker()))
            return _build_annotated((item, ArgumentMarker()))


def is_maybe_annotation(annotation: Any) -> bool:
    """Return True when annotation is Annotated[..., MaybeMarker()]."""
    return any(isinstance(item, MaybeMarker) for item in annotation_metadata(annotation))


def is_provider_annotation(annotation: Any) -> bool:
    """Return True when annotation is Annotated[..., ProviderMarker(...)]."""
    return any(isinstance(item, ProviderMarker) for item in annotation_metadata(annotation))


def is_all_annotation(annotation: Any) -> bool:
    """Return True when annotation is Annotated[..., AllMarker(...)]."""
    return any(isinstance(item, AllMarker) for item in annotation_metadata(annotation))


def is_argument_annotation(annotation: Any) -> bool:
    """Return True when annotation is Annotated[..., ArgumentMarker()]."""
    return any(isinstance(item, ArgumentMarker) for item in annotation_metadata(annotation))


def find_produces_marker(annotation: Any) -> Produces | None:
    """Return the ``Produces`` marker of a producer field annotation, if any."""
    return next(
        (item for item in annotation_metadata(annotation) if isinstance(item, Produces)),
        None,
    )


def annotation_metadata(annotation: Any) -> tuple[Any, ...]:
    """Return the ``Annotated`` metadata of an annotation, or an empty tuple."""
    if get_origin(annotation) is not Annotated:
        return ()
    annotation_args = get_args(annotation)
    if len(annotation_args) < _ANNOTATED_MARKER_MIN_ARGS:
        return ()
    return tuple(annotation_args[1:])


def strip_annotated(annotation: Any) -> Any:
    """Recursively unwrap Annotated[T, ...] into T."""
    if get_origin(annotation) is not Annotated:
        return annotation
    return strip_annotated(get_args(annotation)[0])


def build_annotated_key(params: tuple[object, ...]) -> Any:
    """Return Annotated[...] with a pre-built params tuple (Py 3.10+ compatible)."""
    try:
        return Annotated.__class_getitem__(params)  # type: ignore[attr-defined]
    except AttributeError:
        return Annotated.__getitem__(params)  # type: ignore[attr-defined]


def _build_annotated(params: tuple[object, ...]) -> Any:
    return build_annotated_key(params)


__all__ = [
    "All",
    "AllMarker",
    "Argument",
    "ArgumentMarker",
    "Maybe",
    "MaybeMarker",
    "Produces",
    "Provider",
    "ProviderMarker",
    "Qualifier",
]
