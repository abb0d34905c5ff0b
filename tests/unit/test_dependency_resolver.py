import random

import pytest

from dockform.errors import CircularDependencyError
from dockform.MODELS.orchestration_config import ManifestDocument
from dockform.MODELS.service_definition import ServiceSpec
from dockform.RUNNERS.dependency_resolver import DependencyResolver


def make_services(graph):
    return {name: ServiceSpec(depends_on=deps) for name, deps in graph.items()}


def assert_respects_dependencies(order, graph):
    assert sorted(order) == sorted(graph)
    position = {name: i for i, name in enumerate(order)}
    for name, deps in graph.items():
        for dep in deps:
            if dep in graph:
                assert position[dep] < position[name], f"{dep} must start before {name}"


def test_resolve_order():
    graph = {
        'web': ['api', 'cache'],
        'api': ['db'],
        'cache': [],
        'db': [],
    }
    order = DependencyResolver().resolve_order(make_services(graph))
    assert_respects_dependencies(order, graph)


def test_accepts_manifest_document():
    document = ManifestDocument(services=make_services({'web': ['db'], 'db': []}))
    assert DependencyResolver().resolve_order(document) == ['db', 'web']


def test_shutdown_order_is_reversed():
    graph = {'web': ['db'], 'db': []}
    resolver = DependencyResolver()
    assert resolver.resolve_shutdown_order(make_services(graph)) == ['web', 'db']


def test_services_without_depends_on():
    services = {'a': ServiceSpec(), 'b': ServiceSpec(image='nginx')}
    assert sorted(DependencyResolver().resolve_order(services)) == ['a', 'b']


def test_undefined_dependencies_are_ignored():
    graph = {'web': ['db', 'ghost']}
    assert DependencyResolver().resolve_order(make_services(graph)) == ['web']


def test_two_service_cycle():
    services = make_services({'a': ['b'], 'b': ['a']})
    with pytest.raises(CircularDependencyError, match="Circular dependency detected involving"):
        DependencyResolver().resolve_order(services)


def test_self_dependency_is_a_cycle():
    with pytest.raises(CircularDependencyError, match="involving a"):
        DependencyResolver().resolve_order(make_services({'a': ['a']}))


def test_longer_cycle_behind_acyclic_prefix():
    services = make_services({'entry': ['x'], 'x': ['y'], 'y': ['z'], 'z': ['x']})
    with pytest.raises(CircularDependencyError):
        DependencyResolver().resolve_order(services)


def test_random_acyclic_graphs():
    rng = random.Random(1234)
    resolver = DependencyResolver()
    for _ in range(50):
        names = [f"svc{i}" for i in range(rng.randint(1, 12))]
        # Edges only point to earlier names, so the graph is acyclic
        graph = {
            name: rng.sample(names[:i], rng.randint(0, i)) for i, name in enumerate(names)
        }
        shuffled = dict(rng.sample(list(graph.items()), len(graph)))
        order = resolver.resolve_order(make_services(shuffled))
        assert_respects_dependencies(order, graph)


def test_long_dependency_chain():
    count = 5000
    graph = {f"svc{i}": [f"svc{i + 1}"] if i + 1 < count else [] for i in range(count)}
    order = DependencyResolver().resolve_order(make_services(graph))
    assert order == [f"svc{i}" for i in reversed(range(count))]


def test_long_chain_closing_into_a_cycle():
    count = 5000
    graph = {f"svc{i}": [f"svc{(i + 1) % count}"] for i in range(count)}
    with pytest.raises(CircularDependencyError, match="involving svc0"):
        DependencyResolver().resolve_order(make_services(graph))
