"""Shared constants and enums used across the application."""

from enum import StrEnum


class NodeStatus(StrEnum):
    """Lifecycle of a single node within one run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


class NodeType(StrEnum):
    """Role of a node in the graph (informational)."""

    INPUT = "input"
    PROCESS = "process"
    CONDITION = "condition"
    OUTPUT = "output"


class RunStatus(StrEnum):
    """Overall status of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})


class LogLevel(StrEnum):
    """Severity of an execution log entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class JobStatus(StrEnum):
    """Job lifecycle inside the queue."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


class JobType(StrEnum):
    """Known job types.  Only WORKFLOW_EXECUTION ships with a handler."""

    WORKFLOW_EXECUTION = "workflow-execution"
    BATCH_SPLIT = "batch-split"
    BATCH_MERGE = "batch-merge"
    BATCH_OCR = "batch-ocr"
    BATCH_TEMPLATE = "batch-template"


class StoreBackend(StrEnum):
    """Persistence backend for graphs and run history."""

    MEMORY = "memory"
    SQL = "sql"
