"""Tests for store consistency checks."""

from typing import final

import pytest

from graphwire.consistency import ConsistencyEngine, needs_proxy
from graphwire.container import Container
from graphwire.exceptions import (
    GraphWireAmbiguousDependencyError,
    GraphWireCyclicDependencyError,
    GraphWireDuplicateComponentError,
    GraphWireScopeConflictError,
    GraphWireUnsatisfiedDependencyError,
)
from graphwire.extraction import AnnotationBindingExtractor, scoped
from graphwire.markers import Maybe, Provider
from graphwire.scope import BaseScope, Scope
from graphwire.type_index import TypeIndex


class Repository:
    pass


class SqlRepository(Repository):
    pass


class Service:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository


class Reporter:
    def __init__(self, repository: Maybe[Repository]) -> None:
        self.repository = repository


class Chicken:
    def __init__(self, egg: "Egg") -> None:
        self.egg = egg


class Egg:
    def __init__(self, chicken: Chicken) -> None:
        self.chicken = chicken


class LazyChicken:
    def __init__(self, egg: Provider["LazyEgg"]) -> None:
        self.egg = egg


class LazyEgg:
    def __init__(self, chicken: LazyChicken) -> None:
        self.chicken = chicken


class Ouroboros:
    def __init__(self, tail: "Ouroboros") -> None:
        self.tail = tail


@final
@scoped(Scope.REQUEST)
class RequestData:
    pass


@scoped(Scope.REQUEST)
class RequestState:
    pass


@scoped(Scope.SINGLETON)
class DataCache:
    def __init__(self, data: RequestData) -> None:
        self.data = data


@scoped(Scope.SINGLETON)
class StateCache:
    def __init__(self, state: RequestState) -> None:
        self.state = state


@scoped(Scope.SINGLETON)
class LazyDataCache:
    def __init__(self, data: Provider[RequestData]) -> None:
        self.data = data


def snapshot(container: Container) -> frozenset[object]:
    return frozenset(container)


class TestCycles:
    def test_two_element_cycle_is_rejected(self, container: Container) -> None:
        """Chicken -> Egg -> Chicken is reported with both components."""
        with pytest.raises(GraphWireCyclicDependencyError) as exc_info:
            container.register(Chicken)

        assert [component.type for component in exc_info.value.cycle] == [Chicken, Egg]
        assert not container.contains(Chicken)
        assert not container.contains(Egg)

    def test_self_cycle_is_rejected(self, container: Container) -> None:
        """A component depending on itself is a one-element cycle."""
        with pytest.raises(GraphWireCyclicDependencyError) as exc_info:
            container.register(Ouroboros)

        assert [component.type for component in exc_info.value.cycle] == [Ouroboros]

    def test_provider_breaks_cycle(self, container: Container) -> None:
        """A deferred edge makes the cycle legal."""
        container.register(LazyChicken)

        egg = container.get_instance(LazyEgg)

        assert isinstance(egg.chicken, LazyChicken)
        assert isinstance(egg.chicken.egg(), LazyEgg)

    def test_cycle_message_draws_the_loop(self, container: Container) -> None:
        """The error message lists the cycle members."""
        with pytest.raises(GraphWireCyclicDependencyError, match="Cyclic dependency") as exc_info:
            container.register(Chicken)

        assert "Chicken" in str(exc_info.value)
        assert "Egg" in str(exc_info.value)


class TestSatisfiability:
    def test_missing_dependency(self, container_no_discovery: Container) -> None:
        """A required dependency without a match is rejected."""
        with pytest.raises(GraphWireUnsatisfiedDependencyError) as exc_info:
            container_no_discovery.register(Service)

        assert exc_info.value.component is not None
        assert exc_info.value.component.type is Service
        assert exc_info.value.dependency is not None
        assert exc_info.value.dependency.name == "repository"
        assert not container_no_discovery.contains(Service)

    def test_addition_making_dependency_ambiguous(self, container: Container) -> None:
        """Adding a second match for a required dependency is rejected."""
        container.register(Service)
        before = snapshot(container)

        with pytest.raises(GraphWireAmbiguousDependencyError) as exc_info:
            container.register(SqlRepository)

        assert exc_info.value.component is not None
        assert exc_info.value.component.type is Service
        assert len(exc_info.value.candidates) == 2
        assert snapshot(container) == before

    def test_optional_dependency_may_be_missing(self, container_no_discovery: Container) -> None:
        """Optional dependencies accept zero matches."""
        container_no_discovery.register(Reporter)

        assert container_no_discovery.get_instance(Reporter).repository is None

    def test_optional_dependency_may_not_be_ambiguous(self, container: Container) -> None:
        """Optional dependencies still accept at most one match."""
        container.register(Reporter, Repository)

        with pytest.raises(GraphWireAmbiguousDependencyError):
            container.register(SqlRepository)

    def test_batch_is_validated_as_a_whole(self, container_no_discovery: Container) -> None:
        """Components in one batch satisfy each other."""
        container_no_discovery.register(Service, SqlRepository)

        assert isinstance(container_no_discovery.get_instance(Service).repository, SqlRepository)

    def test_duplicate_instance(self, container: Container) -> None:
        """The same instance cannot be registered twice."""
        repository = Repository()
        container.register_instance(repository)

        with pytest.raises(GraphWireDuplicateComponentError):
            container.register_instance(repository)


class TestRemovalSafety:
    def test_removing_required_dependency_fails_twice(self, container: Container) -> None:
        """Removal of a needed component fails and can be repeated with the same result."""
        container.register(Service)
        before = snapshot(container)

        for _ in range(2):
            with pytest.raises(GraphWireUnsatisfiedDependencyError):
                container.remove(Repository)
            assert snapshot(container) == before

    def test_removing_dependent_first_succeeds(self, container: Container) -> None:
        """Removing the dependent and then its dependency works."""
        container.register(Service)

        container.remove(Service)
        container.remove(Repository)

        assert not container.contains(Repository)

    def test_removing_both_in_one_batch(self, container: Container) -> None:
        """A batch may remove a component together with its dependents."""
        container.register(Service)

        container.remove(Repository, Service)

        assert not container.contains(Service)

    def test_removing_optional_dependency(self, container: Container) -> None:
        """Optional dependencies do not block removal."""
        container.register(Reporter, Repository)

        container.remove(Repository)

        assert container.get_instance(Reporter).repository is None


class TestScopeCompatibility:
    def test_unproxyable_narrower_dependency(self, container: Container) -> None:
        """A singleton cannot hold a final request-scoped class directly."""
        before = snapshot(container)

        with pytest.raises(GraphWireScopeConflictError, match="provider or proxy"):
            container.register(DataCache)

        assert snapshot(container) == before

    def test_proxyable_narrower_dependency(self, container: Container) -> None:
        """A proxyable request-scoped class can be held by a singleton."""
        container.register(StateCache)

        assert container.contains(StateCache)

    def test_provider_skips_scope_check(self, container: Container) -> None:
        """Provider[T] dependencies are never scope checked."""
        container.register(LazyDataCache)

        assert container.contains(LazyDataCache)

    @pytest.mark.parametrize(
        ("owner", "dependency", "expected"),
        [
            (Scope.SINGLETON, Scope.REQUEST, True),
            (Scope.SESSION, Scope.REQUEST, True),
            (Scope.UNSCOPED, Scope.REQUEST, True),
            (Scope.REQUEST, Scope.REQUEST, False),
            (Scope.REQUEST, Scope.SINGLETON, False),
            (Scope.UNSCOPED, Scope.SINGLETON, False),
            (Scope.SINGLETON, Scope.UNSCOPED, False),
            (Scope.REQUEST, Scope.SESSION, False),
        ],
    )
    def test_needs_proxy(self, owner: BaseScope, dependency: BaseScope, expected: bool) -> None:
        """Only references into narrower, non-root scopes are proxied."""
        assert needs_proxy(owner, dependency) is expected


class TestEngine:
    def test_validate_does_not_touch_index(
        self,
        index: TypeIndex,
        engine: ConsistencyEngine,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        """Validation works on a detached copy."""
        components = extractor.extract(Service) + extractor.extract(Repository)

        diagnosis = engine.validate(index, additions=components)

        assert diagnosis.is_valid
        assert len(index) == 0
        assert len(diagnosis.index) == 2

    def test_collects_errors(
        self,
        index: TypeIndex,
        engine: ConsistencyEngine,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        """Every violation is reported and the first one is raised."""
        components = extractor.extract(Service) + extractor.extract(Chicken)

        diagnosis = engine.validate(index, additions=components)

        assert not diagnosis.is_valid
        assert {type(error) for error in diagnosis.errors} == {GraphWireUnsatisfiedDependencyError}
        assert len(diagnosis.errors) == 2
        with pytest.raises(GraphWireUnsatisfiedDependencyError):
            diagnosis.raise_for_errors()

    def test_cycle_errors_come_first(
        self,
        index: TypeIndex,
        engine: ConsistencyEngine,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        """Cycles are reported before any other violation."""
        components = [
            *extractor.extract(Chicken),
            *extractor.extract(Egg),
            *extractor.extract(Service),
        ]

        diagnosis = engine.validate(index, additions=components)

        assert isinstance(diagnosis.errors[0], GraphWireCyclicDependencyError)
        assert isinstance(diagnosis.errors[1], GraphWireUnsatisfiedDependencyError)
