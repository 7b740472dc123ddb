"""Tests for the public Container surface."""

from typing import Annotated, Any, Generic, TypeVar

import pytest

from graphwire import (
    GraphWireAmbiguousResolutionError,
    GraphWireDefinitionError,
    GraphWireDuplicateComponentError,
    GraphWireMissingComponentError,
    GraphWireUnsatisfiedDependencyError,
)
from graphwire.container import Container
from graphwire.extraction import produces, qualified, scoped
from graphwire.markers import Produces, Qualifier
from graphwire.scope import Scope

A = TypeVar("A")
B = TypeVar("B")
S = TypeVar("S")


class Fruit:
    pass


F = TypeVar("F", bound=Fruit)


class Apple(Fruit):
    pass


class Orange(Fruit):
    pass


class OrangeJuice:
    pass


class Sliced(Generic[S]):
    pass


class Converter(Generic[A, B]):
    pass


class Juicer(Converter[Orange, OrangeJuice]):
    pass


class Slicer(Converter[F, Sliced[F]], Generic[F]):
    pass


class JuiceBar:
    def __init__(self, converter: Converter[Orange, OrangeJuice]) -> None:
        self.converter = converter


class Cache:
    pass


@qualified(Qualifier("primary"))
class PrimaryCache(Cache):
    pass


@qualified(Qualifier("replica"))
class ReplicaCache(Cache):
    pass


class Reader:
    def __init__(self, cache: Annotated[Cache, Qualifier("replica")]) -> None:
        self.cache = cache


class Database:
    def __init__(self, url: str) -> None:
        self.url = url


class Infrastructure:
    url: Annotated[str, Produces(), Qualifier("url")] = "sqlite://memory"

    @produces(scope=Scope.SINGLETON)
    def database(self, url: Annotated[str, Qualifier("url")]) -> Database:
        return Database(url)


class Repository:
    def __init__(self, database: Database) -> None:
        self.database = database


class Config:
    def __init__(self, name: str) -> None:
        self.name = name


class Widget:
    pass


class TestRegistration:
    def test_container_registers_itself(self, container: Container) -> None:
        """The container can be injected like any other component."""
        assert container.get_instance(Container) is container
        assert len(container) == 1

    def test_register_several_types(self, container: Container) -> None:
        """register accepts several types at once."""
        container.register(Widget, Apple)

        assert container.contains(Widget)
        assert container.contains(Fruit)
        assert len(container) == 3

    def test_register_qualified_type(self, container: Container) -> None:
        """Annotated registrations must match the class qualifiers."""
        container.register(Annotated[PrimaryCache, Qualifier("primary")])

        assert container.contains(Cache, Qualifier("primary"))

    def test_register_qualifier_the_class_lacks(self, container: Container) -> None:
        """A qualifier is never added to a class that does not declare it."""
        with pytest.raises(GraphWireDefinitionError, match="missing the required qualifiers"):
            container.register(Annotated[Widget, Qualifier("special")])

    def test_register_unresolved_generic(self, container: Container) -> None:
        """Generic classes must be registered with arguments."""
        with pytest.raises(GraphWireDefinitionError, match="unresolved type variables"):
            container.register(Slicer)

    def test_remove_unregistered(self, container: Container) -> None:
        """Removing a type that was never registered fails."""
        with pytest.raises(GraphWireMissingComponentError, match="Type not registered"):
            container.remove(Widget)


class TestQualifiers:
    def test_dependency_qualifier_selects_component(self, container: Container) -> None:
        """Qualified dependencies pick the component carrying the qualifier."""
        container.register(PrimaryCache, ReplicaCache, Reader)

        assert isinstance(container.get_instance(Reader).cache, ReplicaCache)

    def test_lookup_by_qualifier(self, container: Container) -> None:
        """get_instance narrows by qualifiers."""
        container.register(PrimaryCache, ReplicaCache)

        assert isinstance(container.get_instance(Cache, Qualifier("primary")), PrimaryCache)
        assert isinstance(
            container.get_instance(Annotated[Cache, Qualifier("replica")]),
            ReplicaCache,
        )
        with pytest.raises(GraphWireAmbiguousResolutionError):
            container.get_instance(Cache)

    def test_qualified_dependency_without_match(self, container_no_discovery: Container) -> None:
        """An unqualified component does not satisfy a qualified dependency."""
        with pytest.raises(GraphWireUnsatisfiedDependencyError):
            container_no_discovery.register(Cache, Reader)


class TestProducers:
    def test_method_and_field_producers(self, container: Container) -> None:
        """Producers registered with their class provide their return types."""
        container.register(Infrastructure)

        database = container.get_instance(Database)

        assert database.url == "sqlite://memory"
        assert database is container.get_instance(Database)
        assert container.get_instance(str, Qualifier("url")) == "sqlite://memory"

    def test_producer_satisfies_dependencies(self, container: Container) -> None:
        """Produced components are injected like class components."""
        container.register(Infrastructure, Repository)

        assert container.get_instance(Repository).database.url == "sqlite://memory"

    def test_remove_takes_producers_along(self, container: Container) -> None:
        """Removing a class removes everything it produces."""
        container.register(Infrastructure)

        container.remove(Infrastructure)

        assert not container.contains(Database)
        assert not container.contains(str, Qualifier("url"))

    def test_remove_blocked_by_dependent(self, container: Container) -> None:
        """Producers still needed by other components keep their class registered."""
        container.register(Infrastructure, Repository)

        with pytest.raises(GraphWireUnsatisfiedDependencyError):
            container.remove(Infrastructure)

        assert container.contains(Database)


class TestGenerics:
    def test_bounded_wildcard_lookup(self, container: Container) -> None:
        """Converter[? extends Fruit, ?] matches both converters."""
        container.register(Juicer, Slicer[Apple])

        converters = container.get_instances(Converter[F, Any])

        assert {type(converter) for converter in converters} == {Juicer, Slicer}

    def test_wildcard_narrowed_by_argument(self, container: Container) -> None:
        """Converter[?, OrangeJuice] matches only the juicer."""
        container.register(Juicer, Slicer[Apple])

        assert isinstance(container.get_instance(Converter[Any, OrangeJuice]), Juicer)

    def test_parameterized_dependency(self, container: Container) -> None:
        """Dependencies on parameterized generics are matched by their arguments."""
        container.register(Juicer, Slicer[Apple], JuiceBar)

        assert isinstance(container.get_instance(JuiceBar).converter, Juicer)

    def test_exact_parameterization(self, container: Container) -> None:
        """A parameterized class is found under its generic bases."""
        container.register(Slicer[Apple])

        assert isinstance(container.get_instance(Converter[Apple, Sliced[Apple]]), Slicer)
        assert container.get_instances(Converter[Orange, Any]) == []


class TestInstances:
    def test_registered_instance_is_returned(self, container: Container) -> None:
        """Registered instances are singletons returned as is."""
        config = Config("prod")
        container.register_instance(config, Qualifier("prod"))

        assert container.get_instance(Config, Qualifier("prod")) is config
        assert container.get_instance(Config) is config

    def test_register_same_instance_twice(self, container: Container) -> None:
        """The same instance with the same qualifiers is a duplicate."""
        config = Config("prod")
        container.register_instance(config)

        with pytest.raises(GraphWireDuplicateComponentError):
            container.register_instance(config)

    def test_equal_instances_are_distinct(self, container: Container) -> None:
        """Instances are compared by identity."""
        container.register_instance(Config("a"))
        container.register_instance(Config("b"))

        assert sorted(config.name for config in container.get_instances(Config)) == ["a", "b"]

    def test_remove_instance_needs_same_qualifiers(self, container: Container) -> None:
        """An instance is removed with the qualifiers it was registered with."""
        config = Config("prod")
        container.register_instance(config, Qualifier("prod"))

        with pytest.raises(GraphWireMissingComponentError):
            container.remove_instance(config)

        container.remove_instance(config, Qualifier("prod"))
        assert not container.contains(Config)

    def test_remove_does_not_touch_instances(self, container: Container) -> None:
        """remove only handles types registered with register."""
        container.register_instance(Config("prod"))

        with pytest.raises(GraphWireMissingComponentError):
            container.remove(Config)

    def test_instance_satisfies_dependency(self, container: Container) -> None:
        """Registered instances are injected into other components."""

        @scoped(Scope.SINGLETON)
        class Service:
            def __init__(self, config: Config) -> None:
                self.config = config

        config = Config("prod")
        container.register_instance(config)

        assert container.get_instance(Service).config is config
