from datetime import timedelta

import pytest
import pytest_asyncio

from docflow.core.constants import LogLevel, RunStatus
from docflow.execution.records import ExecutionRecord
from docflow.graph.models import ArtifactRef
from docflow.store import MemoryWorkflowStore, create_store
from docflow.store.sql import SqlWorkflowStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def workflow_store(request, tmp_path):
    store = create_store(request.param, f"sqlite+aiosqlite:///{tmp_path / 'docflow.db'}")
    await store.initialize()
    yield store
    await store.close()


def test_create_store_backends(tmp_path):
    assert isinstance(create_store("memory"), MemoryWorkflowStore)
    assert isinstance(create_store("sql", f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"), SqlWorkflowStore)
    with pytest.raises(ValueError):
        create_store("sql", None)
    with pytest.raises(ValueError):
        create_store("mongo")


class TestGraphs:
    @pytest.mark.asyncio
    async def test_save_load_overwrite(self, workflow_store, chain_graph):
        chain_graph.owner_id = "alice"
        await workflow_store.save(chain_graph)

        loaded = await workflow_store.load(chain_graph.id)
        assert loaded.node_ids == ["input", "transform", "output"]
        assert [e.id for e in loaded.edges] == ["input->transform", "transform->output"]

        chain_graph.version = 2
        chain_graph.name = "renamed"
        await workflow_store.save(chain_graph)
        loaded = await workflow_store.load(chain_graph.id)
        assert loaded.version == 2
        assert loaded.name == "renamed"

    @pytest.mark.asyncio
    async def test_list_and_delete(self, workflow_store, graph_factory):
        first = graph_factory(["a"], owner_id="alice")
        second = graph_factory(["b"], owner_id="bob")
        await workflow_store.save(first)
        await workflow_store.save(second)

        assert [g.id for g in await workflow_store.list_graphs("alice")] == [first.id]
        assert len(await workflow_store.list_graphs()) == 2

        assert await workflow_store.delete(first.id) is True
        assert await workflow_store.delete(first.id) is False
        assert await workflow_store.load(first.id) is None

    @pytest.mark.asyncio
    async def test_loaded_graph_is_a_copy(self, workflow_store, chain_graph):
        await workflow_store.save(chain_graph)
        loaded = await workflow_store.load(chain_graph.id)
        loaded.nodes.pop()
        again = await workflow_store.load(chain_graph.id)
        assert len(again.nodes) == 3


class TestExecutions:
    @pytest.mark.asyncio
    async def test_save_and_reload_execution(self, workflow_store):
        record = ExecutionRecord(graph_id="wf_1", input_artifacts=[ArtifactRef("in.pdf")], owner_id="alice")
        record.start()
        record.add_log(LogLevel.INFO, "Run started", steps=3)
        await workflow_store.save_execution(record)

        record.complete([ArtifactRef("out.pdf", kind="pdf")])
        await workflow_store.save_execution(record)

        loaded = await workflow_store.load_execution(record.id)
        assert loaded.status == RunStatus.COMPLETED
        assert loaded.progress == 100
        assert loaded.output_artifacts[0].kind == "pdf"
        assert loaded.logs[0].data == {"steps": 3}
        assert loaded.started_at == record.started_at

    @pytest.mark.asyncio
    async def test_list_executions_newest_first(self, workflow_store):
        older = ExecutionRecord(graph_id="wf_1")
        newer = ExecutionRecord(graph_id="wf_1")
        other = ExecutionRecord(graph_id="wf_2")
        older.created_at = newer.created_at - timedelta(seconds=5)
        for record in (older, newer, other):
            await workflow_store.save_execution(record)

        listed = await workflow_store.list_executions("wf_1")
        assert [r.id for r in listed] == [newer.id, older.id]
        assert len(await workflow_store.list_executions(limit=1)) == 1
        assert await workflow_store.load_execution("run_missing") is None
