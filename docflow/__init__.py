"""
docflow: workflow orchestration engine for document-processing pipelines.

A workflow is a directed acyclic graph of operation nodes.  The engine
validates the graph, derives an execution plan, runs it while tracking
per-node and per-run progress, and can hand long runs to a durable,
retrying job queue.
"""

__version__ = "0.1.0"
