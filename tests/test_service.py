import asyncio

import pytest

from docflow.core.constants import NodeStatus, RunStatus
from docflow.core.errors import (
    CycleError,
    ExecutionNotFoundError,
    InactiveWorkflowError,
    ValidationError,
    WorkflowNotFoundError,
)


class TestWorkflows:
    @pytest.mark.asyncio
    async def test_create_and_update_bump_version(self, service, chain_graph):
        created = await service.create_workflow(chain_graph, owner_id="user-1")
        assert created.version == 1
        assert created.owner_id == "user-1"

        updated = await service.update_workflow(created.id, {"name": "renamed", "description": None})
        assert updated.version == 2
        assert updated.name == "renamed"
        assert updated.description == chain_graph.description

        stored = await service.get_workflow(created.id)
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_update_replaces_nodes_from_dicts(self, service, chain_graph):
        created = await service.create_workflow(chain_graph)
        updated = await service.update_workflow(
            created.id,
            {"nodes": [{"id": "only", "operation": "file-input"}], "edges": []},
        )
        assert updated.node_ids == ["only"]
        assert updated.edges == []

    @pytest.mark.asyncio
    async def test_list_filters_by_owner(self, service, graph_factory):
        await service.create_workflow(graph_factory(["a"]), owner_id="alice")
        await service.create_workflow(graph_factory(["b"]), owner_id="bob")
        assert [g.node_ids for g in await service.list_workflows("alice")] == [["a"]]
        assert len(await service.list_workflows()) == 2

    @pytest.mark.asyncio
    async def test_missing_workflow(self, service):
        with pytest.raises(WorkflowNotFoundError):
            await service.get_workflow("wf_missing")
        with pytest.raises(WorkflowNotFoundError):
            await service.delete_workflow("wf_missing")

    @pytest.mark.asyncio
    async def test_analysis_of_invalid_draft(self, service, graph_factory):
        draft = await service.create_workflow(graph_factory([("a", "file-input"), ("b", "nope")], [("a", "b")]))
        report = await service.analyze_workflow(draft.id)
        assert report["is_valid"] is False
        assert report["plan"] is None
        assert report["problems"] == ["node 'b' uses unknown operation 'nope'"]
        assert report["analysis"]["topological_order"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_analysis_includes_plan(self, service, diamond_graph):
        created = await service.create_workflow(diamond_graph)
        report = await service.analyze_workflow(created.id)
        assert report["is_valid"] is True
        assert [s["node_ids"] for s in report["plan"]["steps"]] == [["input"], ["A", "B"], ["merge"]]


class TestRuns:
    @pytest.mark.asyncio
    async def test_in_process_run_completes(self, service, chain_graph):
        graph = await service.create_workflow(chain_graph)
        submitted = await service.submit_run(graph.id, ["doc.pdf"], owner_id="user-1")
        assert submitted.status in (RunStatus.PENDING, RunStatus.RUNNING)
        assert submitted.graph_version == 1

        record = await service.wait_for_run(submitted.id, timeout=5)
        assert record.status == RunStatus.COMPLETED
        assert [a.uri for a in record.output_artifacts] == ["doc.pdf"]

        stored = await service.store.load_execution(submitted.id)
        assert stored.status == RunStatus.COMPLETED
        assert [r.id for r in await service.list_runs(graph.id)] == [submitted.id]

    @pytest.mark.asyncio
    async def test_cycle_rejected_before_any_node_runs(self, service, handlers, graph_factory):
        graph = await service.create_workflow(graph_factory([("X", "explode"), ("Y", "explode")], [("X", "Y"), ("Y", "X")]))
        with pytest.raises(CycleError) as exc_info:
            await service.submit_run(graph.id, ["doc.pdf"])
        assert exc_info.value.cycle == ["X", "Y"]
        assert handlers["explode"].calls == 0
        assert await service.list_runs(graph.id) == []

    @pytest.mark.asyncio
    async def test_invalid_graph_rejected(self, service, graph_factory):
        graph = await service.create_workflow(graph_factory([("a", "no-such-operation")]))
        with pytest.raises(ValidationError):
            await service.submit_run(graph.id)

    @pytest.mark.asyncio
    async def test_inactive_workflow_rejected(self, service, chain_graph):
        chain_graph.is_active = False
        graph = await service.create_workflow(chain_graph)
        with pytest.raises(InactiveWorkflowError):
            await service.submit_run(graph.id)

    @pytest.mark.asyncio
    async def test_failed_run_keeps_error(self, service, graph_factory):
        graph = await service.create_workflow(graph_factory([("in", "file-input"), ("bad", "explode")], [("in", "bad")]))
        submitted = await service.submit_run(graph.id, ["doc"])
        record = await service.wait_for_run(submitted.id, timeout=5)
        assert record.status == RunStatus.FAILED
        assert record.failed_node_id == "bad"
        assert record.node_results["bad"].status == NodeStatus.ERROR

    @pytest.mark.asyncio
    async def test_cancel_in_process_run(self, service, handlers, graph_factory):
        graph = await service.create_workflow(
            graph_factory(
                [("in", "file-input"), ("slow", "slow", {"delay": 0.2}), ("after", "transform")],
                [("in", "slow"), ("slow", "after")],
            )
        )
        submitted = await service.submit_run(graph.id, ["doc"])
        while handlers["slow"].started == 0:
            await asyncio.sleep(0.01)

        cancelled = await service.cancel_run(submitted.id)
        assert cancelled.status == RunStatus.CANCELLED

        record = await service.wait_for_run(submitted.id, timeout=5)
        assert record.status == RunStatus.CANCELLED
        assert record.node_results["after"].status == NodeStatus.IDLE
        assert record.output_artifacts == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, service):
        with pytest.raises(ExecutionNotFoundError):
            await service.cancel_run("run_missing")
        assert await service.get_run("run_missing") is None

    @pytest.mark.asyncio
    async def test_close_stops_active_runs(self, service, graph_factory):
        graph = await service.create_workflow(
            graph_factory([("in", "file-input"), ("slow", "slow", {"delay": 0.1}), ("after", "transform")], [("in", "slow"), ("slow", "after")])
        )
        submitted = await service.submit_run(graph.id, ["doc"])
        await service.close()
        record = await service.store.load_execution(submitted.id)
        assert record.status == RunStatus.CANCELLED
