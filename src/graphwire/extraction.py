from __future__ import annotations

import inspect
import types
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from inspect import Parameter
from typing import Any, Protocol, TypeVar, Union, get_args, get_origin, get_type_hints

from graphwire._internal.discovery_policy import ConcreteTypeDiscoveryPolicy
from graphwire._internal.type_checks import generic_origin, is_runtime_class
from graphwire.components import (
    Component,
    Dependency,
    DependencyModifier,
    InstanceIdentity,
    Key,
    QualifierTag,
)
from graphwire.exceptions import (
    GraphWireCreationError,
    GraphWireDefinitionError,
    GraphWireError,
)
from graphwire.generics import contains_typevar, raw_class, substitute_typevars
from graphwire.lifecycle import AnnotationLifeCycleCallbacks, LifeCycleCallbacks
from graphwire.markers import (
    find_produces_marker,
    is_all_annotation,
    is_argument_annotation,
    is_maybe_annotation,
    is_provider_annotation,
    strip_annotated,
)
from graphwire.scope import BaseScope, Scope

C = TypeVar("C", bound=type[Any])
F = TypeVar("F", bound=Callable[..., Any])


class _NotFound:
    """Injected for optional dependencies without a match."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND: Any = _NotFound()

_SCOPE_ATTRIBUTE = "__graphwire_scopes__"
_QUALIFIERS_ATTRIBUTE = "__graphwire_qualifiers__"
_PRODUCER_ATTRIBUTE = "__graphwire_producer__"
_ASSISTED_ATTRIBUTE = "__graphwire_assisted__"
_ASSISTED_VALUES_ATTRIBUTE = "__graphwire_assisted_values__"
_COLLECTION_TYPES: tuple[type[Any], ...] = (list, set, frozenset)
_IMPLICIT_FIRST_PARAMETER_NAMES = {"self", "cls"}
_MISSING_ANNOTATION: Any = object()


def scoped(scope: BaseScope) -> Callable[[C], C]:
    """Declare the scope of a class component.

    Examples:
        .. code-block:: python

            @scoped(Scope.SINGLETON)
            class Database: ...

    """

    def decorator(cls: C) -> C:
        declared = cls.__dict__.get(_SCOPE_ATTRIBUTE, ())
        setattr(cls, _SCOPE_ATTRIBUTE, (*declared, scope))
        return cls

    return decorator


def qualified(*qualifiers: QualifierTag) -> Callable[[C], C]:
    """Attach qualifiers to a class component."""

    def decorator(cls: C) -> C:
        declared = cls.__dict__.get(_QUALIFIERS_ATTRIBUTE, frozenset())
        setattr(cls, _QUALIFIERS_ATTRIBUTE, declared | frozenset(qualifiers))
        return cls

    return decorator


def assisted(cls: C) -> C:
    """Declare an abstract class as an assisted factory.

    The class must have exactly one abstract method. Its return annotation
    names the concrete product, and its parameters supply the product
    constructor parameters marked with ``Argument[T]``, matched by name. All
    other product parameters are injected: required ones are resolved again
    for every product.

    Examples:
        .. code-block:: python

            @assisted
            class ReportFactory(ABC):
                @abstractmethod
                def create(self, title: str) -> Report: ...

    """
    setattr(cls, _ASSISTED_ATTRIBUTE, True)
    return cls


@dataclass(frozen=True, slots=True)
class _ProducerDeclaration:
    scope: BaseScope
    qualifiers: frozenset[QualifierTag]


def produces(
    *qualifiers: QualifierTag,
    scope: BaseScope = Scope.UNSCOPED,
) -> Callable[[F], F]:
    """Mark a method as a producer of its return type.

    Instance methods depend on a component of the declaring class; static
    methods do not. The produced type is taken from the return annotation.

    Examples:
        .. code-block:: python

            class Clients:
                @produces(Qualifier("internal"), scope=Scope.SINGLETON)
                def http_client(self, settings: Settings) -> HttpClient:
                    return HttpClient(settings.internal_url)

    """

    def decorator(method: F) -> F:
        target = method.__func__ if isinstance(method, staticmethod) else method
        setattr(target, _PRODUCER_ATTRIBUTE, _ProducerDeclaration(scope, frozenset(qualifiers)))
        return method

    return decorator


class BindingExtractor(Protocol):
    """Turn declarations into component descriptors."""

    def extract(self, type_: Any) -> list[Component]:
        """Return the class component for ``type_`` followed by its producers.

        Raises:
            GraphWireDefinitionError: If ``type_`` cannot be turned into components.

        """
        ...

    def extract_instance(
        self,
        instance: Any,
        qualifiers: Iterable[QualifierTag] = (),
    ) -> Component:
        """Wrap an externally constructed instance as a singleton component."""
        ...


@dataclass(frozen=True, slots=True)
class _Injection:
    dependency: Dependency
    kind: Any
    has_default: bool
    argument: bool = False


class AnnotationBindingExtractor:
    """Extract components from constructor type hints and decorators.

    Constructor parameters become dependencies. Their annotations select the
    dependency modifier: ``Provider[T]`` is deferred, ``All[T]``, ``list[T]``,
    ``set[T]`` and ``frozenset[T]`` are collections, ``Maybe[T]``, ``T | None``
    and parameters with defaults are optional, and everything else is required.
    An optional collection without matches is treated like an unmatched
    optional dependency. Qualifiers are read from ``Annotated`` metadata.

    Classes declared with ``assisted`` become factory components whose
    single abstract method creates the product.
    """

    def __init__(
        self,
        *,
        lifecycle_callbacks: LifeCycleCallbacks | None = None,
        policy: ConcreteTypeDiscoveryPolicy | None = None,
    ) -> None:
        self._lifecycle_callbacks = lifecycle_callbacks or AnnotationLifeCycleCallbacks()
        self._policy = policy or ConcreteTypeDiscoveryPolicy()

    def extract(self, type_: Any) -> list[Component]:
        cls = generic_origin(type_)
        if is_runtime_class(cls) and cls.__dict__.get(_ASSISTED_ATTRIBUTE, False):
            return [self._assisted_component(type_, cls)]

        reason = self._policy.rejection_reason(cls)
        if reason is not None:
            raise GraphWireDefinitionError(type_, reason)
        if contains_typevar(type_):
            raise GraphWireDefinitionError(type_, "has unresolved type variables")

        typevar_map = self._typevar_map(type_)
        injections = self._class_injections(cls, typevar_map)
        arguments = sorted(
            str(injection.dependency.name) for injection in injections if injection.argument
        )
        if arguments:
            msg = (
                f"has call time arguments ({', '.join(arguments)}) "
                "and can only be created by an assisted factory"
            )
            raise GraphWireDefinitionError(type_, msg)

        components = [self._class_component(type_, cls, injections)]
        components.extend(self._producer_components(type_, cls, components[0], typevar_map))
        return components

    def extract_instance(
        self,
        instance: Any,
        qualifiers: Iterable[QualifierTag] = (),
    ) -> Component:
        if instance is None:
            raise GraphWireDefinitionError(None, "instance cannot be None")
        return Component(
            type=type(instance),
            owner_type=type(instance),
            discriminator=InstanceIdentity(instance),
            create=lambda _values: instance,
            qualifiers=frozenset(qualifiers),
            scope=Scope.SINGLETON,
            is_external=True,
        )

    def _class_injections(
        self,
        cls: type[Any],
        typevar_map: dict[TypeVar, Any],
    ) -> list[_Injection]:
        return self._extract_injections(
            provider=cls.__init__,
            provider_name=cls.__qualname__,
            skip_first_parameter=True,
            typevar_map=typevar_map,
        )

    def _class_component(
        self,
        type_: Any,
        cls: type[Any],
        injections: list[_Injection],
    ) -> Component:
        scope = _declared_scope(type_, cls)
        callbacks = self._lifecycle_callbacks.find(cls)

        def create(values: list[Any]) -> Any:
            args, kwargs = _call_arguments(injections, values)
            instance = type_(*args, **kwargs)
            for callback in callbacks.post_construct:
                callback(instance)
            return instance

        destroy: Callable[[Any], None] | None = None
        if callbacks.pre_destroy:

            def destroy(instance: Any) -> None:
                for callback in callbacks.pre_destroy:
                    callback(instance)

        return Component(
            type=type_,
            owner_type=type_,
            discriminator=type_,
            create=create,
            destroy=destroy,
            qualifiers=frozenset(cls.__dict__.get(_QUALIFIERS_ATTRIBUTE, frozenset())),
            scope=scope,
            dependencies=tuple(
                injection.dependency for injection in injections if not injection.argument
            ),
        )

    def _producer_components(
        self,
        type_: Any,
        cls: type[Any],
        owner: Component,
        typevar_map: dict[TypeVar, Any],
    ) -> list[Component]:
        components: list[Component] = []
        for name, member in vars(cls).items():
            function = member.__func__ if isinstance(member, staticmethod) else member
            declaration = getattr(function, _PRODUCER_ATTRIBUTE, None)
            if isinstance(declaration, _ProducerDeclaration):
                components.append(
                    self._method_producer(
                        type_=type_,
                        name=name,
                        function=function,
                        is_static=isinstance(member, staticmethod),
                        declaration=declaration,
                        owner=owner,
                        typevar_map=typevar_map,
                    ),
                )

        components.extend(self._field_producers(type_, cls))
        return components

    def _method_producer(  # noqa: PLR0913
        self,
        *,
        type_: Any,
        name: str,
        function: Callable[..., Any],
        is_static: bool,
        declaration: _ProducerDeclaration,
        owner: Component,
        typevar_map: dict[TypeVar, Any],
    ) -> Component:
        provider_name = f"{generic_origin(type_).__qualname__}.{name}"
        annotations, annotation_error = _resolved_type_hints(function)
        return_annotation = annotations.get("return", _MISSING_ANNOTATION)
        if return_annotation is _MISSING_ANNOTATION or return_annotation is None:
            msg = f"producer '{provider_name}' must declare a return type annotation"
            if annotation_error is not None:
                msg = f"{msg} (original annotation error: {annotation_error})"
            raise GraphWireDefinitionError(type_, msg)

        produced = Key.of(substitute_typevars(return_annotation, mapping=typevar_map))
        if contains_typevar(produced.type):
            msg = f"producer '{provider_name}' returns a type with unresolved type variables"
            raise GraphWireDefinitionError(type_, msg)

        injections = self._extract_injections(
            provider=function,
            provider_name=provider_name,
            skip_first_parameter=not is_static,
            typevar_map=typevar_map,
        )
        if any(injection.argument for injection in injections):
            msg = f"producer '{provider_name}' cannot have call time arguments"
            raise GraphWireDefinitionError(type_, msg)
        dependencies = [injection.dependency for injection in injections]
        if not is_static:
            dependencies.insert(0, Dependency(owner.key, DependencyModifier.REQUIRED, "self"))

        def create(values: list[Any]) -> Any:
            if is_static:
                args, kwargs = _call_arguments(injections, values)
                return function(*args, **kwargs)
            args, kwargs = _call_arguments(injections, values[1:])
            return function(values[0], *args, **kwargs)

        return Component(
            type=produced.type,
            owner_type=type_,
            discriminator=("method", type_, name),
            create=create,
            qualifiers=produced.qualifiers | declaration.qualifiers,
            scope=declaration.scope,
            dependencies=tuple(dependencies),
        )

    def _field_producers(self, type_: Any, cls: type[Any]) -> list[Component]:
        annotations, _annotation_error = _resolved_type_hints(cls, own_only=True)
        components: list[Component] = []
        for name, annotation in annotations.items():
            marker = find_produces_marker(annotation)
            if marker is None:
                continue
            if name not in vars(cls):
                msg = f"producer field '{name}' has no value"
                raise GraphWireDefinitionError(type_, msg)
            produced = Key.of(annotation)
            if contains_typevar(produced.type):
                msg = f"producer field '{name}' has a type with unresolved type variables"
                raise GraphWireDefinitionError(type_, msg)

            components.append(
                Component(
                    type=produced.type,
                    owner_type=type_,
                    discriminator=("field", type_, name),
                    create=lambda _values, field_name=name: getattr(cls, field_name),
                    qualifiers=produced.qualifiers,
                    scope=marker.scope or Scope.UNSCOPED,
                ),
            )
        return components

    def _assisted_component(self, type_: Any, cls: type[Any]) -> Component:
        if contains_typevar(type_):
            raise GraphWireDefinitionError(type_, "has unresolved type variables")

        abstract_methods = sorted(getattr(cls, "__abstractmethods__", ()))
        if len(abstract_methods) != 1:
            msg = "must have a single abstract method to qualify for assisted injection"
            raise GraphWireDefinitionError(type_, msg)
        (method_name,) = abstract_methods
        method = getattr(cls, method_name)
        provider_name = f"{cls.__qualname__}.{method_name}"

        annotations, annotation_error = _resolved_type_hints(method)
        return_annotation = annotations.get("return", _MISSING_ANNOTATION)
        if return_annotation is _MISSING_ANNOTATION or return_annotation is None:
            msg = f"factory method '{provider_name}' must declare a return type annotation"
            if annotation_error is not None:
                msg = f"{msg} (original annotation error: {annotation_error})"
            raise GraphWireDefinitionError(type_, msg)

        product_type = substitute_typevars(
            strip_annotated(return_annotation),
            mapping=self._typevar_map(type_),
        )
        if contains_typevar(product_type):
            msg = f"factory method '{provider_name}' returns a type with unresolved type variables"
            raise GraphWireDefinitionError(type_, msg)
        product_cls = generic_origin(product_type)
        reason = self._policy.rejection_reason(product_cls)
        if reason is not None:
            msg = f"factory method '{provider_name}' must return a concrete type, but it {reason}"
            raise GraphWireDefinitionError(type_, msg)

        injections = self._class_injections(product_cls, self._typevar_map(product_type))
        product = self._class_component(product_type, product_cls, injections)
        signature = inspect.signature(method)
        _check_factory_parameters(type_, provider_name, signature, annotations, injections)

        def produce(factory: Any, *args: Any, **kwargs: Any) -> Any:
            bound = signature.bind(factory, *args, **kwargs)
            bound.apply_defaults()
            injected = iter(getattr(factory, _ASSISTED_VALUES_ATTRIBUTE))
            values: list[Any] = []
            for injection in injections:
                if injection.argument:
                    values.append(bound.arguments[str(injection.dependency.name)])
                elif injection.dependency.modifier is DependencyModifier.REQUIRED:
                    values.append(next(injected)())
                else:
                    values.append(next(injected))
            try:
                return product.create(values)
            except GraphWireError:
                raise
            except Exception as error:
                msg = f"creation failed: {error!r}"
                raise GraphWireCreationError(product, msg) from error

        implementation = type(cls)(
            cls.__name__,
            (cls,),
            {
                method_name: produce,
                "__module__": cls.__module__,
                "__qualname__": cls.__qualname__,
            },
        )

        def create(values: list[Any]) -> Any:
            factory = implementation()
            setattr(factory, _ASSISTED_VALUES_ATTRIBUTE, tuple(values))
            return factory

        return Component(
            type=type_,
            owner_type=type_,
            discriminator=("assisted", type_),
            create=create,
            qualifiers=frozenset(cls.__dict__.get(_QUALIFIERS_ATTRIBUTE, frozenset())),
            scope=_declared_scope(type_, cls),
            dependencies=tuple(
                _assisted_dependency(injection.dependency)
                for injection in injections
                if not injection.argument
            ),
        )

    def _extract_injections(
        self,
        *,
        provider: Callable[..., Any],
        provider_name: str,
        skip_first_parameter: bool,
        typevar_map: dict[TypeVar, Any],
    ) -> list[_Injection]:
        try:
            parameters = tuple(inspect.signature(provider).parameters.values())
        except (TypeError, ValueError):
            return []
        if (
            skip_first_parameter
            and parameters
            and parameters[0].name in _IMPLICIT_FIRST_PARAMETER_NAMES
        ):
            parameters = parameters[1:]

        annotations, annotation_error = _resolved_type_hints(provider)
        injections: list[_Injection] = []
        for parameter in parameters:
            if parameter.kind in (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD):
                continue
            annotation = self._parameter_annotation(
                parameter=parameter,
                annotations=annotations,
                annotation_error=annotation_error,
                provider_name=provider_name,
            )
            if annotation is _MISSING_ANNOTATION:
                continue

            annotation = substitute_typevars(annotation, mapping=typevar_map)
            argument = is_argument_annotation(annotation)
            if argument:
                dependency = Dependency(Key.of(annotation), name=parameter.name)
            else:
                dependency = self._dependency(parameter, annotation)
            injections.append(
                _Injection(
                    dependency=dependency,
                    kind=parameter.kind,
                    has_default=parameter.default is not Parameter.empty,
                    argument=argument,
                ),
            )
        return injections

    def _dependency(self, parameter: Parameter, annotation: Any) -> Dependency:
        target = Key.of(annotation)
        optional = is_maybe_annotation(annotation) or parameter.default is not Parameter.empty
        optional_inner = _optional_inner(target.type)
        if optional_inner is not None:
            target = Key.of(optional_inner, *target.qualifiers)
            optional = True

        if is_provider_annotation(annotation):
            return Dependency(target, DependencyModifier.DEFERRED, parameter.name)

        collection = _collection_target(target.type)
        if is_all_annotation(annotation):
            collection = (tuple, target.type)
        if collection is not None:
            collection_type, element = collection
            return Dependency(
                target=Key.of(element, *target.qualifiers),
                modifier=DependencyModifier.COLLECTION,
                name=parameter.name,
                collection_type=collection_type,
                empty_is_missing=optional,
            )

        modifier = DependencyModifier.OPTIONAL if optional else DependencyModifier.REQUIRED
        return Dependency(target=target, modifier=modifier, name=parameter.name)

    def _parameter_annotation(
        self,
        *,
        parameter: Parameter,
        annotations: dict[str, Any],
        annotation_error: Exception | None,
        provider_name: str,
    ) -> Any:
        annotation = annotations.get(parameter.name, _MISSING_ANNOTATION)
        if annotation is not _MISSING_ANNOTATION:
            return annotation

        raw_annotation = parameter.annotation
        if raw_annotation is not Parameter.empty and not isinstance(raw_annotation, str):
            return raw_annotation

        if parameter.default is not Parameter.empty:
            return _MISSING_ANNOTATION

        msg = (
            f"unable to infer dependency for required parameter '{parameter.name}' "
            f"of '{provider_name}'; add a type annotation"
        )
        if annotation_error is None:
            raise GraphWireDefinitionError(provider_name, msg)
        msg = f"{msg} (original annotation error: {annotation_error})"
        raise GraphWireDefinitionError(provider_name, msg) from annotation_error

    def _typevar_map(self, type_: Any) -> dict[TypeVar, Any]:
        if get_origin(type_) is None:
            return {}
        parameters = getattr(get_origin(type_), "__parameters__", ())
        return dict(zip(parameters, get_args(type_), strict=False))


def _call_arguments(
    injections: list[_Injection],
    values: list[Any],
) -> tuple[list[Any], dict[str, Any]]:
    args: list[Any] = []
    kwargs: dict[str, Any] = {}
    for injection, value in zip(injections, values, strict=True):
        if value is NOT_FOUND:
            if injection.has_default:
                continue
            value = None
        if injection.kind is Parameter.POSITIONAL_ONLY:
            args.append(value)
        else:
            kwargs[str(injection.dependency.name)] = value
    return args, kwargs


def _declared_scope(type_: Any, cls: type[Any]) -> BaseScope:
    declared_scopes = set(cls.__dict__.get(_SCOPE_ATTRIBUTE, ()))
    if len(declared_scopes) > 1:
        formatted = ", ".join(sorted(str(scope) for scope in declared_scopes))
        raise GraphWireDefinitionError(type_, f"has conflicting scopes: {formatted}")
    return declared_scopes.pop() if declared_scopes else Scope.UNSCOPED


def _assisted_dependency(dependency: Dependency) -> Dependency:
    if dependency.modifier is not DependencyModifier.REQUIRED:
        return dependency
    return Dependency(dependency.target, DependencyModifier.DEFERRED, dependency.name)


def _check_factory_parameters(
    type_: Any,
    provider_name: str,
    signature: inspect.Signature,
    annotations: dict[str, Any],
    injections: list[_Injection],
) -> None:
    arguments = {
        str(injection.dependency.name): injection.dependency.target
        for injection in injections
        if injection.argument
    }
    parameters = list(signature.parameters.values())[1:]
    if len(parameters) != len(arguments) or any(
        parameter.kind in (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD)
        for parameter in parameters
    ):
        expected = ", ".join(sorted(arguments)) or "none"
        msg = (
            f"factory method '{provider_name}' should have {len(arguments)} "
            f"argument(s): {expected}"
        )
        raise GraphWireDefinitionError(type_, msg)

    for parameter in parameters:
        target = arguments.get(parameter.name)
        if target is None:
            msg = f"factory method '{provider_name}' has an unknown argument: {parameter.name}"
            raise GraphWireDefinitionError(type_, msg)
        annotation = annotations.get(parameter.name)
        if annotation is not None and raw_class(annotation) is not raw_class(target.type):
            msg = (
                f"factory method '{provider_name}' has argument '{parameter.name}' "
                f"that should be of type [{target}] but was: [{Key.of(annotation)}]"
            )
            raise GraphWireDefinitionError(type_, msg)


def _collection_target(annotation: Any) -> tuple[type[Any], Any] | None:
    origin = get_origin(annotation)
    args = get_args(annotation)
    if origin not in _COLLECTION_TYPES or len(args) != 1:
        return None
    return origin, args[0]


def _optional_inner(annotation: Any) -> Any | None:
    origin = get_origin(annotation)
    if origin is not Union and origin is not types.UnionType:
        return None
    members = [member for member in get_args(annotation) if member is not type(None)]
    if len(members) != 1 or len(members) == len(get_args(annotation)):
        return None
    return members[0]


def _resolved_type_hints(
    target: Any,
    *,
    own_only: bool = False,
) -> tuple[dict[str, Any], Exception | None]:
    try:
        hints = get_type_hints(target, include_extras=True)
    except (AttributeError, NameError, TypeError) as error:
        return {}, error
    if own_only:
        own = inspect.get_annotations(target)
        hints = {name: hint for name, hint in hints.items() if name in own}
    return hints, None
