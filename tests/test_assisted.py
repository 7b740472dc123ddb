"""Tests for assisted factories and call time arguments."""

from abc import ABC, abstractmethod

import pytest

from graphwire.components import DependencyModifier, Key
from graphwire.container import Container
from graphwire.exceptions import (
    GraphWireCreationError,
    GraphWireDefinitionError,
    GraphWireUnsatisfiedDependencyError,
)
from graphwire.extraction import AnnotationBindingExtractor, assisted, produces, scoped
from graphwire.markers import Argument, Maybe, Provider
from graphwire.scope import Scope


class Printer:
    pass


class Logo:
    pass


class Report:
    def __init__(
        self,
        printer: Printer,
        title: Argument[str],
        pages: Argument[int],
        logo: Maybe[Logo],
    ) -> None:
        self.printer = printer
        self.title = title
        self.pages = pages
        self.logo = logo


@assisted
class ReportFactory(ABC):
    @abstractmethod
    def create(self, title: str, pages: int = 1) -> Report: ...


class Draft:
    def __init__(self, printer: Provider[Printer], note: Argument[str]) -> None:
        self.printer = printer
        self.note = note


@assisted
@scoped(Scope.SINGLETON)
class DraftFactory(ABC):
    @abstractmethod
    def make(self, note: str) -> Draft: ...


class Jammed:
    def __init__(self, printer: Printer, reason: Argument[str]) -> None:
        raise RuntimeError(reason)


@assisted
class JammedFactory(ABC):
    @abstractmethod
    def create(self, reason: str) -> Jammed: ...


class TestAssistedExtraction:
    def test_factory_dependencies(self, extractor: AnnotationBindingExtractor) -> None:
        """Required product dependencies become deferred factory dependencies."""
        (component,) = extractor.extract(ReportFactory)
        modifiers = {
            dependency.name: (dependency.target, dependency.modifier)
            for dependency in component.dependencies
        }

        assert component.type is ReportFactory
        assert component.scope == Scope.UNSCOPED
        assert modifiers == {
            "printer": (Key(Printer), DependencyModifier.DEFERRED),
            "logo": (Key(Logo), DependencyModifier.OPTIONAL),
        }

    def test_factory_scope_comes_from_factory(
        self,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        (component,) = extractor.extract(DraftFactory)

        assert component.scope == Scope.SINGLETON

    def test_product_with_arguments_needs_factory(
        self,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        """Classes taking call time arguments cannot be registered directly."""
        with pytest.raises(GraphWireDefinitionError, match="assisted factory"):
            extractor.extract(Report)

    def test_producer_with_arguments(self, extractor: AnnotationBindingExtractor) -> None:
        class Reports:
            @produces()
            def report(self, title: Argument[str]) -> Logo:
                return Logo()

        with pytest.raises(GraphWireDefinitionError, match="cannot have call time arguments"):
            extractor.extract(Reports)

    def test_needs_single_abstract_method(self, extractor: AnnotationBindingExtractor) -> None:
        @assisted
        class Nothing(ABC):
            pass

        @assisted
        class TooMuch(ABC):
            @abstractmethod
            def first(self) -> Printer: ...

            @abstractmethod
            def second(self) -> Printer: ...

        for factory in (Nothing, TooMuch):
            with pytest.raises(GraphWireDefinitionError, match="single abstract method"):
                extractor.extract(factory)

    def test_needs_return_annotation(self, extractor: AnnotationBindingExtractor) -> None:
        @assisted
        class Vague(ABC):
            @abstractmethod
            def create(self, title: str):  # type: ignore[no-untyped-def]  # noqa: ANN201
                ...

        with pytest.raises(GraphWireDefinitionError, match="must declare a return type"):
            extractor.extract(Vague)

    def test_product_must_be_concrete(self, extractor: AnnotationBindingExtractor) -> None:
        @assisted
        class Abstracted(ABC):
            @abstractmethod
            def create(self) -> ReportFactory: ...

        with pytest.raises(GraphWireDefinitionError, match="must return a concrete type"):
            extractor.extract(Abstracted)

    def test_factory_needs_every_argument(self, extractor: AnnotationBindingExtractor) -> None:
        @assisted
        class Short(ABC):
            @abstractmethod
            def create(self, title: str) -> Report: ...

        with pytest.raises(GraphWireDefinitionError, match="should have 2 argument"):
            extractor.extract(Short)

    def test_factory_argument_names_must_match(
        self,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        @assisted
        class Renamed(ABC):
            @abstractmethod
            def create(self, heading: str, pages: int) -> Report: ...

        with pytest.raises(GraphWireDefinitionError, match="unknown argument: heading"):
            extractor.extract(Renamed)

    def test_factory_argument_types_must_match(
        self,
        extractor: AnnotationBindingExtractor,
    ) -> None:
        @assisted
        class Mistyped(ABC):
            @abstractmethod
            def create(self, title: int, pages: int) -> Report: ...

        with pytest.raises(GraphWireDefinitionError, match="argument 'title' that should be"):
            extractor.extract(Mistyped)


class TestAssistedCreation:
    def test_arguments_are_passed_by_name(self, container: Container) -> None:
        container.register(ReportFactory)
        factory = container.get_instance(ReportFactory)

        report = factory.create("Q3", pages=4)

        assert isinstance(factory, ReportFactory)
        assert isinstance(report, Report)
        assert report.title == "Q3"
        assert report.pages == 4
        assert isinstance(report.printer, Printer)
        assert report.logo is None

    def test_factory_defaults_apply(self, container: Container) -> None:
        container.register(ReportFactory)

        assert container.get_instance(ReportFactory).create("Q4").pages == 1

    def test_required_dependencies_are_resolved_per_product(
        self,
        container: Container,
    ) -> None:
        """Every product gets its own unscoped dependencies."""
        container.register(ReportFactory)
        factory = container.get_instance(ReportFactory)

        first = factory.create("first")
        second = factory.create("second")

        assert first.printer is not second.printer

    def test_optional_dependency_is_injected(self, container: Container) -> None:
        container.register(ReportFactory, Logo)

        assert isinstance(container.get_instance(ReportFactory).create("Q1").logo, Logo)

    def test_provider_is_passed_through(self, container: Container) -> None:
        container.register(DraftFactory)
        factory = container.get_instance(DraftFactory)

        draft = factory.make("todo")

        assert factory is container.get_instance(DraftFactory)
        assert draft.note == "todo"
        assert isinstance(draft.printer(), Printer)
        assert draft.printer() is not draft.printer()

    def test_failing_product(self, container: Container) -> None:
        container.register(JammedFactory)
        factory = container.get_instance(JammedFactory)

        with pytest.raises(GraphWireCreationError, match="creation failed") as info:
            factory.create("paper jam")

        assert isinstance(info.value.__cause__, RuntimeError)

    def test_missing_dependency_is_found_at_registration(
        self,
        container_no_discovery: Container,
    ) -> None:
        """Deferred product dependencies still need a match in the store."""
        with pytest.raises(GraphWireUnsatisfiedDependencyError):
            container_no_discovery.register(ReportFactory)
