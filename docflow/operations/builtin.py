"""
Built-in orchestration primitives.

These move artifact references around the graph; they never open the
documents themselves.  Real transforms (split, merge, OCR, classification)
are registered by the host application.
"""

from __future__ import annotations

import fnmatch
import os
from typing import Any

from docflow.core.errors import HandlerError
from docflow.graph.conditions import ConditionContext, parse_condition
from docflow.graph.models import ArtifactRef
from docflow.operations.registry import OperationHandler, OperationRegistry


class FileInputHandler(OperationHandler):
    """Entry point: emits the run's input artifacts plus any configured ``files``."""

    operation = "file-input"
    description = "Provide input documents"
    estimated_cost = 0.1

    async def execute(self, inputs: list[ArtifactRef], config: dict[str, Any]) -> list[ArtifactRef]:
        extra = ArtifactRef.coerce_many(config.get("files"))
        return [*inputs, *extra]


class FileOutputHandler(OperationHandler):
    """Sink: tags artifacts with the configured destination."""

    operation = "file-output"
    description = "Collect output documents"
    estimated_cost = 0.1

    async def execute(self, inputs: list[ArtifactRef], config: dict[str, Any]) -> list[ArtifactRef]:
        destination = config.get("destination")
        if destination is None:
            return list(inputs)
        return [
            ArtifactRef(uri=a.uri, kind=a.kind, metadata={**a.metadata, "destination": destination})
            for a in inputs
        ]


class FileFilterHandler(OperationHandler):
    """
    Keep only artifacts matching every configured filter.

    Config:
        extensions: list of extensions, e.g. [".pdf", "png"]
        pattern: glob on the file name, e.g. "invoice_*"
        kind: exact artifact kind
        min_count: fail if fewer artifacts survive
    """

    operation = "file-filter"
    description = "Filter documents by extension, name or kind"
    estimated_cost = 0.1

    async def execute(self, inputs: list[ArtifactRef], config: dict[str, Any]) -> list[ArtifactRef]:
        extensions = {
            (e if e.startswith(".") else f".{e}").lower()
            for e in config.get("extensions") or []
        }
        pattern = config.get("pattern")
        kind = config.get("kind")

        kept = []
        for artifact in inputs:
            name = os.path.basename(artifact.uri)
            if extensions and os.path.splitext(name)[1].lower() not in extensions:
                continue
            if pattern and not fnmatch.fnmatch(name, pattern):
                continue
            if kind and artifact.kind != kind:
                continue
            kept.append(artifact)

        min_count = int(config.get("min_count") or 0)
        if len(kept) < min_count:
            raise HandlerError(
                f"Only {len(kept)} document(s) matched the filter, {min_count} required",
                operation=self.operation,
                retryable=False,
            )
        return kept


class ConditionHandler(OperationHandler):
    """
    Branch point.  Passes inputs through and stamps ``condition_met``
    from a configured metadata check so outgoing edge conditions can use it.

    Config:
        field / operator / value: a predicate over merged input metadata
    """

    operation = "condition"
    description = "Evaluate a branch condition"
    estimated_cost = 0.05

    async def execute(self, inputs: list[ArtifactRef], config: dict[str, Any]) -> list[ArtifactRef]:
        predicate = {k: config[k] for k in ("field", "operator", "value") if k in config}
        condition = parse_condition(predicate) if "field" in predicate else None
        met = True
        if condition is not None:
            met = condition.evaluate(ConditionContext(source="_inputs", outputs={"_inputs": inputs}))
        return [
            ArtifactRef(uri=a.uri, kind=a.kind, metadata={**a.metadata, "condition_met": met})
            for a in inputs
        ]


BUILTIN_HANDLERS: tuple[type[OperationHandler], ...] = (
    FileInputHandler,
    FileOutputHandler,
    FileFilterHandler,
    ConditionHandler,
)


def register_builtins(registry: OperationRegistry) -> OperationRegistry:
    for handler_cls in BUILTIN_HANDLERS:
        registry.register(handler_cls())
    return registry


def default_registry() -> OperationRegistry:
    return register_builtins(OperationRegistry())
