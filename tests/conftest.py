"""Common fixtures: a registry of fake operations and a graph builder."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from docflow.core.config import Settings
from docflow.core.errors import HandlerError
from docflow.execution.service import WorkflowService
from docflow.graph.models import ArtifactRef, Edge, Graph, Node
from docflow.operations import OperationHandler, OperationRegistry, register_builtins
from docflow.store import MemoryWorkflowStore


class TransformHandler(OperationHandler):
    """Appends ``config["suffix"]`` to every uri and stamps the node tag."""

    operation = "transform"

    async def execute(self, inputs, config):
        suffix = config.get("suffix", "")
        return [
            ArtifactRef(uri=a.uri + suffix, kind=a.kind, metadata={**a.metadata, **config.get("stamp", {})})
            for a in inputs
        ]


class SlowHandler(OperationHandler):
    """Sleeps ``config["delay"]`` seconds, then passes inputs through."""

    operation = "slow"

    def __init__(self) -> None:
        self.started = 0
        self.finished = 0

    async def execute(self, inputs, config):
        self.started += 1
        await asyncio.sleep(config.get("delay", 0.05))
        self.finished += 1
        return list(inputs)


class ConcurrencyProbe(OperationHandler):
    """Records how many instances were running at once."""

    operation = "probe"

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0

    async def execute(self, inputs, config):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(config.get("delay", 0.05))
        finally:
            self.active -= 1
        return list(inputs)


class ExclusiveHandler(ConcurrencyProbe):
    operation = "exclusive"
    parallel_safe = False


class ExplodingHandler(OperationHandler):
    operation = "explode"

    def __init__(self) -> None:
        self.calls = 0

    async def execute(self, inputs, config):
        self.calls += 1
        raise HandlerError("boom", operation=self.operation, retryable=config.get("retryable", True))


class FlakyHandler(OperationHandler):
    """Fails the first ``failures`` calls with a retryable error."""

    operation = "flaky"

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.calls = 0

    async def execute(self, inputs, config):
        self.calls += 1
        if self.calls <= self.failures:
            raise HandlerError(f"transient failure #{self.calls}", operation=self.operation)
        return list(inputs)


class ClassifyHandler(OperationHandler):
    operation = "classify"

    async def execute(self, inputs, config):
        label = config.get("label", "unknown")
        return [
            ArtifactRef(uri=a.uri, kind="classification", metadata={**a.metadata, "classification": label})
            for a in inputs
        ]


class BadResultHandler(OperationHandler):
    operation = "bad-result"

    async def execute(self, inputs, config):
        return [42]


@pytest.fixture
def handlers() -> dict[str, OperationHandler]:
    return {
        "transform": TransformHandler(),
        "slow": SlowHandler(),
        "probe": ConcurrencyProbe(),
        "exclusive": ExclusiveHandler(),
        "explode": ExplodingHandler(),
        "flaky": FlakyHandler(),
        "classify": ClassifyHandler(),
        "bad-result": BadResultHandler(),
    }


@pytest.fixture
def registry(handlers) -> OperationRegistry:
    return register_builtins(OperationRegistry(handlers.values()))


def make_graph(
    nodes: list[str | tuple[str, str] | tuple[str, str, dict]],
    edges: list[tuple] = (),
    **attrs: Any,
) -> Graph:
    """
    ``nodes``: ids (operation "transform"), ``(id, operation)`` or
    ``(id, operation, config)``.  ``edges``: ``(source, target)`` or
    ``(source, target, condition)``.
    """
    built_nodes = []
    for spec in nodes:
        if isinstance(spec, str):
            built_nodes.append(Node(id=spec, operation="transform", label=spec))
        else:
            node_id, operation, *rest = spec
            built_nodes.append(Node(id=node_id, operation=operation, label=node_id, config=rest[0] if rest else {}))
    built_edges = [
        Edge(id=f"{e[0]}->{e[1]}", source=e[0], target=e[1], condition=e[2] if len(e) > 2 else None)
        for e in edges
    ]
    attrs.setdefault("name", "test workflow")
    return Graph(nodes=built_nodes, edges=built_edges, **attrs)


@pytest.fixture
def graph_factory() -> Callable[..., Graph]:
    return make_graph


@pytest.fixture
def chain_graph() -> Graph:
    return make_graph(
        [("input", "file-input"), "transform", ("output", "file-output")],
        [("input", "transform"), ("transform", "output")],
    )


@pytest.fixture
def diamond_graph() -> Graph:
    return make_graph(
        [("input", "file-input"), ("A", "probe"), ("B", "probe"), ("merge", "file-output")],
        [("input", "A"), ("input", "B"), ("A", "merge"), ("B", "merge")],
    )


@pytest.fixture
def cyclic_graph() -> Graph:
    return make_graph(["X", "Y"], [("X", "Y"), ("Y", "X")])


@pytest.fixture
def settings() -> Settings:
    return Settings(
        QUEUE_ENABLED=False,
        STORE_BACKEND="memory",
        NODE_TIMEOUT_SECONDS=5.0,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def store() -> MemoryWorkflowStore:
    return MemoryWorkflowStore()


@pytest.fixture
def service(store, registry) -> WorkflowService:
    return WorkflowService(store, registry, max_parallel=4, node_timeout=5.0)
