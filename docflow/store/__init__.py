"""Graph and run-history persistence."""

from docflow.core.constants import StoreBackend
from docflow.store.base import WorkflowStore
from docflow.store.memory import MemoryWorkflowStore

__all__ = ["MemoryWorkflowStore", "WorkflowStore", "create_store"]


def create_store(backend: str, database_url: str | None = None, echo: bool = False) -> WorkflowStore:
    """
    Build the configured store backend.

    Raises:
        ValueError: unknown backend name, or "sql" without a database URL.
    """
    if StoreBackend(backend) == StoreBackend.SQL:
        from docflow.store.sql import SqlWorkflowStore

        if not database_url:
            raise ValueError("The sql store backend needs a database URL")
        return SqlWorkflowStore(database_url, echo=echo)
    return MemoryWorkflowStore()
