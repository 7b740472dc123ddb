"""Shared pytest fixtures for graphwire tests."""

import pytest

from graphwire.consistency import ConsistencyEngine
from graphwire.container import Container
from graphwire.extraction import AnnotationBindingExtractor
from graphwire.proxies import SubclassProxyStrategy
from graphwire.type_index import TypeIndex


@pytest.fixture()
def container() -> Container:
    """Default container with auto-discovery enabled."""
    return Container()


@pytest.fixture()
def container_no_discovery() -> Container:
    """Container with auto_discovery=False."""
    return Container(auto_discovery=False)


@pytest.fixture()
def extractor() -> AnnotationBindingExtractor:
    """AnnotationBindingExtractor instance."""
    return AnnotationBindingExtractor()


@pytest.fixture()
def index() -> TypeIndex:
    """Empty type index."""
    return TypeIndex()


@pytest.fixture()
def engine() -> ConsistencyEngine:
    """Consistency engine proxying with SubclassProxyStrategy."""
    return ConsistencyEngine(proxy_strategy=SubclassProxyStrategy())
