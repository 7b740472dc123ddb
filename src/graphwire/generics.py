"""Type algebra used for matching components against requested types.

Requested types may contain wildcards: ``typing.Any`` stands for an unbounded
wildcard and a ``TypeVar`` for a wildcard bounded by the TypeVar's bound (or
any of its constraints). Apart from wildcards, generic arguments are matched
invariantly, so ``Box[Apple]`` does not match a request for ``Box[Fruit]`` but
does match ``Box[TypeVar("F", bound=Fruit)]``.
"""

from __future__ import annotations

import types
from collections.abc import Mapping
from typing import Annotated, Any, Generic, Protocol, TypeVar, Union, get_args, get_origin


def contains_typevar(value: Any) -> bool:
    """Return whether a type expression still contains a ``TypeVar``.

    Args:
        value: Type expression or object to inspect.

    Returns:
        ``True`` when any nested node contains a TypeVar, else ``False``.

    """
    if isinstance(value, TypeVar):
        return True

    origin = get_origin(value)
    if origin is not None:
        return any(contains_typevar(argument) for argument in get_args(value))

    parameters = getattr(value, "__parameters__", ())
    return any(isinstance(parameter, TypeVar) for parameter in parameters)


def substitute_typevars(value: Any, *, mapping: Mapping[TypeVar, Any]) -> Any:
    """Substitute TypeVars in a type expression using a resolved mapping.

    Args:
        value: Type expression template that may contain TypeVars.
        mapping: Mapping from template TypeVars to concrete type arguments.

    Returns:
        The substituted type expression with available TypeVars replaced.

    """
    if isinstance(value, TypeVar):
        return mapping.get(value, value)

    origin = get_origin(value)
    if origin is None:
        return value

    arguments = get_args(value)
    if not arguments:
        return value

    substituted_arguments = tuple(
        substitute_typevars(argument, mapping=mapping) for argument in arguments
    )
    return _rebuild_alias(origin=origin, args=substituted_arguments, fallback=value)


def raw_class(value: Any) -> type[Any]:
    """Return the class used to group a type expression in an index.

    Wildcards, unions and other non-class expressions map to ``object``.
    """
    value = _strip_annotated(value)
    if _is_union(value):
        return object
    origin = get_origin(value) or value
    if isinstance(origin, type) and origin is not Any:
        return origin
    return object


def type_closure(value: Any) -> frozenset[Any]:
    """Return the type and all of its supertypes with generic arguments applied.

    For ``class Juicer(Converter[Orange, OrangeJuice])`` the closure of
    ``Juicer`` contains ``Juicer``, ``Converter[Orange, OrangeJuice]`` and
    ``object``. Type variables of parameterized generic classes are substituted
    along the way, so ``Slicer[Apple]`` exposes ``Converter[Apple, Sliced[Apple]]``
    when ``class Slicer(Converter[T, Sliced[T]], Generic[T])``.
    """
    seen: set[Any] = set()
    pending = [_strip_annotated(value)]

    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)

        origin = get_origin(current) or current
        if not isinstance(origin, type):
            continue

        mapping: dict[TypeVar, Any] = {}
        if get_origin(current) is not None:
            parameters = getattr(origin, "__parameters__", ())
            mapping = dict(zip(parameters, get_args(current), strict=False))

        bases = origin.__dict__.get("__orig_bases__", origin.__bases__)
        for base in bases:
            if base is Generic or base is Protocol:
                continue
            if get_origin(base) in (Generic, Protocol):
                continue
            pending.append(substitute_typevars(base, mapping=mapping))

    seen.add(object)
    return frozenset(seen)


def is_assignable(source: Any, target: Any) -> bool:
    """Return whether a value of ``source`` type can be used where ``target`` is requested.

    Args:
        source: A fully specified type expression (no wildcards).
        target: The requested type, possibly containing wildcards.

    """
    return any(matches_type(candidate, target) for candidate in type_closure(source))


def matches_type(candidate: Any, target: Any) -> bool:
    """Return whether a single exposed type satisfies a requested type.

    Unlike ``is_assignable`` no supertypes of ``candidate`` are considered;
    callers pass every member of a precomputed type closure instead.
    """
    target = _strip_annotated(target)
    if target is Any or target is object:
        return True
    if isinstance(target, TypeVar):
        return _within_bounds(candidate, target)
    if _is_union(target):
        return any(matches_type(candidate, member) for member in get_args(target))

    target_origin = get_origin(target)
    candidate_origin = get_origin(candidate)
    if target_origin is None:
        return (candidate_origin or candidate) is target

    if candidate_origin is not target_origin:
        return False

    candidate_arguments = get_args(candidate)
    target_arguments = get_args(target)
    if len(candidate_arguments) != len(target_arguments):
        return False

    return all(
        _argument_matches(argument, target_argument)
        for argument, target_argument in zip(candidate_arguments, target_arguments, strict=True)
    )


def is_wildcard(value: Any) -> bool:
    """Return whether a requested type contains ``Any`` or ``TypeVar`` wildcards."""
    value = _strip_annotated(value)
    if value is Any or isinstance(value, TypeVar):
        return True
    return any(is_wildcard(argument) for argument in get_args(value))


def _argument_matches(argument: Any, target_argument: Any) -> bool:
    if target_argument is Any:
        return True
    if isinstance(target_argument, TypeVar):
        return is_assignable(argument, target_argument)
    if argument == target_argument:
        return True

    # Nested wildcards, e.g. Converter[Apple, Sliced[Any]].
    if get_origin(target_argument) is not None and is_wildcard(target_argument):
        return matches_type(argument, target_argument)
    return False


def _within_bounds(candidate: Any, typevar: TypeVar) -> bool:
    constraints = getattr(typevar, "__constraints__", ())
    if constraints:
        return any(is_assignable(candidate, constraint) for constraint in constraints)
    bound = getattr(typevar, "__bound__", None)
    if bound is None:
        return True
    return is_assignable(candidate, bound)


def _is_union(value: Any) -> bool:
    origin = get_origin(value)
    return origin is Union or origin is types.UnionType


def _strip_annotated(value: Any) -> Any:
    if get_origin(value) is Annotated:
        return _strip_annotated(get_args(value)[0])
    return value


def _rebuild_alias(*, origin: Any, args: tuple[Any, ...], fallback: Any) -> Any:
    try:
        if len(args) == 1:
            return origin[args[0]]
        return origin[args]
    except TypeError:
        return fallback
