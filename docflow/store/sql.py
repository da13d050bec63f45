"""
SQL-backed store (SQLAlchemy async).

PostgreSQL via asyncpg in deployment, SQLite via aiosqlite in tests.  Each
call runs in its own session and commits on success.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from docflow.core.logging import get_logger
from docflow.db.models import Base
from docflow.db.session import make_engine, make_sessionmaker
from docflow.execution.records import ExecutionRecord
from docflow.graph.models import Graph
from docflow.repositories import workflows as repo
from docflow.store.base import WorkflowStore

logger = get_logger(__name__)


class SqlWorkflowStore(WorkflowStore):

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.engine = make_engine(database_url, echo=echo)
        self.async_session = make_sessionmaker(self.engine)

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQL store initialised", url=self.engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ─── Graphs ────────────────────────────────────────

    async def load(self, graph_id: str) -> Graph | None:
        async with self.session() as db:
            return await repo.get_graph(db, graph_id)

    async def save(self, graph: Graph) -> None:
        async with self.session() as db:
            await repo.upsert_graph(db, graph)

    async def delete(self, graph_id: str) -> bool:
        async with self.session() as db:
            return await repo.delete_graph(db, graph_id)

    async def list_graphs(self, owner_id: str | None = None) -> list[Graph]:
        async with self.session() as db:
            return await repo.list_graphs(db, owner_id=owner_id)

    # ─── Executions ────────────────────────────────────

    async def load_execution(self, execution_id: str) -> ExecutionRecord | None:
        async with self.session() as db:
            return await repo.get_execution(db, execution_id)

    async def save_execution(self, record: ExecutionRecord) -> None:
        async with self.session() as db:
            await repo.upsert_execution(db, record)

    async def list_executions(self, graph_id: str | None = None, limit: int = 50) -> list[ExecutionRecord]:
        async with self.session() as db:
            return await repo.list_executions(db, graph_id=graph_id, limit=limit)
