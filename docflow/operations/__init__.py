"""Operation handler contract, registry and built-in primitives."""

from docflow.operations.builtin import default_registry, register_builtins
from docflow.operations.registry import OperationHandler, OperationRegistry
from docflow.operations.stats import OperationTimings

__all__ = [
    "OperationHandler",
    "OperationRegistry",
    "OperationTimings",
    "default_registry",
    "register_builtins",
]
