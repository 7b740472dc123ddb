from graphwire.components import Component, Dependency, DependencyModifier, Key
from graphwire.container import Container
from graphwire.exceptions import (
    GraphWireAmbiguousDependencyError,
    GraphWireAmbiguousResolutionError,
    GraphWireAutoDiscoveryError,
    GraphWireCreationError,
    GraphWireCyclicDependencyError,
    GraphWireDefinitionError,
    GraphWireDependencyError,
    GraphWireDuplicateComponentError,
    GraphWireError,
    GraphWireMissingComponentError,
    GraphWireResolutionError,
    GraphWireScopeConflictError,
    GraphWireScopeNotActiveError,
    GraphWireUnsatisfiedDependencyError,
    GraphWireUnsatisfiedResolutionError,
)
from graphwire.extraction import (
    AnnotationBindingExtractor,
    BindingExtractor,
    assisted,
    produces,
    qualified,
    scoped,
)
from graphwire.lifecycle import (
    AnnotationLifeCycleCallbacks,
    LifeCycleCallbacks,
    post_construct,
    pre_destroy,
)
from graphwire.lock_mode import LockMode
from graphwire.markers import All, Argument, Maybe, Produces, Provider, Qualifier
from graphwire.proxies import ProxyStrategy, SubclassProxyStrategy
from graphwire.scope import BaseScope, Scope
from graphwire.scope_resolvers import (
    ContextScopeResolver,
    ScopeResolver,
    SingletonScopeResolver,
    UnscopedScopeResolver,
    WeakSingletonScopeResolver,
)

__all__ = [
    "All",
    "AnnotationBindingExtractor",
    "AnnotationLifeCycleCallbacks",
    "Argument",
    "BaseScope",
    "BindingExtractor",
    "Component",
    "Container",
    "ContextScopeResolver",
    "Dependency",
    "DependencyModifier",
    "GraphWireAmbiguousDependencyError",
    "GraphWireAmbiguousResolutionError",
    "GraphWireAutoDiscoveryError",
    "GraphWireCreationError",
    "GraphWireCyclicDependencyError",
    "GraphWireDefinitionError",
    "GraphWireDependencyError",
    "GraphWireDuplicateComponentError",
    "GraphWireError",
    "GraphWireMissingComponentError",
    "GraphWireResolutionError",
    "GraphWireScopeConflictError",
    "GraphWireScopeNotActiveError",
    "GraphWireUnsatisfiedDependencyError",
    "GraphWireUnsatisfiedResolutionError",
    "Key",
    "LifeCycleCallbacks",
    "LockMode",
    "Maybe",
    "Produces",
    "Provider",
    "ProxyStrategy",
    "Qualifier",
    "Scope",
    "ScopeResolver",
    "SingletonScopeResolver",
    "SubclassProxyStrategy",
    "UnscopedScopeResolver",
    "WeakSingletonScopeResolver",
    "assisted",
    "post_construct",
    "pre_destroy",
    "produces",
    "qualified",
    "scoped",
]
