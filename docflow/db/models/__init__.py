"""Re-export all models so Base.metadata sees every table."""

from docflow.db.base import Base
from docflow.db.models.workflow_execution import WorkflowExecution
from docflow.db.models.workflow_graph import WorkflowGraph

__all__ = ["Base", "WorkflowExecution", "WorkflowGraph"]
