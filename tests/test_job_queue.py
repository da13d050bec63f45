import asyncio
from datetime import timedelta

import pytest

from docflow.bootstrap import build_services
from docflow.core.constants import JobStatus, JobType, RunStatus
from docflow.core.errors import HandlerError, QueueUnavailableError, UnknownJobTypeError
from docflow.graph.models import utcnow
from docflow.operations import OperationHandler
from docflow.queue import Job, JobQueue, MemoryJobStore, RedisJobStore
from docflow.queue.celery_app import create_celery_app
from docflow.store import MemoryWorkflowStore

ZERO_STATS = {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0}


def make_celery(settings, eager=False):
    return create_celery_app(
        settings,
        broker_url="memory://",
        result_backend="cache+memory://",
        task_always_eager=eager,
    )


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def queue(settings, job_store):
    queue = JobQueue(make_celery(settings), job_store, max_attempts=3, backoff_base=2.0)
    queue.register_handler("echo", lambda payload, ctx: {"echo": payload})
    return queue


def enqueue(queue, job_type="echo", **payload):
    """Put a job straight into the index, as submit() would, without a broker round trip."""
    job = Job(type=job_type, payload=payload, max_attempts=queue.max_attempts)
    queue.store.save(job)
    return job.id


class TestSubmission:
    def test_submit_indexes_a_waiting_job(self, queue):
        job_id = queue.submit("echo", {"x": 1}, owner_id="alice")
        job = queue.get_status(job_id)
        assert job.status == JobStatus.WAITING
        assert job.payload == {"x": 1}
        assert [j.id for j in queue.list_for_owner("alice")] == [job_id]
        assert queue.list_for_owner("bob") == []
        assert queue.stats() == {**ZERO_STATS, "waiting": 1, "available": True}

    def test_submit_keeps_a_caller_chosen_id(self, queue):
        assert queue.submit("echo", {}, job_id="job_fixed") == "job_fixed"

    def test_unknown_job_type_raises(self, queue):
        with pytest.raises(UnknownJobTypeError):
            queue.submit(JobType.BATCH_OCR, {})

    def test_disabled_queue_is_unavailable(self, settings, job_store):
        queue = JobQueue(make_celery(settings), job_store, enabled=False)
        queue.register_handler("echo", lambda payload, ctx: None)
        assert queue.submit("echo", {}) is None
        assert queue.stats() == {**ZERO_STATS, "available": False}
        assert queue.last_error.message == "Job queue is disabled"


class TestUnavailableBackend:
    @pytest.fixture
    def down_queue(self, settings):
        store = RedisJobStore.from_url("redis://127.0.0.1:1/0", timeout=0.2)
        queue = JobQueue(make_celery(settings), store)
        queue.register_handler("echo", lambda payload, ctx: None)
        return queue

    def test_submit_returns_none_and_stats_report_zero(self, down_queue):
        assert down_queue.submit("echo", {"x": 1}, owner_id="alice") is None
        assert down_queue.stats() == {**ZERO_STATS, "available": False}
        assert isinstance(down_queue.last_error, QueueUnavailableError)
        assert down_queue.last_error.to_dict()["error"] == "QueueUnavailableError"

    def test_reads_degrade_instead_of_raising(self, down_queue):
        assert down_queue.check_connection() is False
        assert down_queue.get_status("job_1") is None
        assert down_queue.list_for_owner("alice") == []
        assert down_queue.cancel("job_1") is False
        assert down_queue.cleanup() == 0


class TestProcessing:
    def test_success_stores_the_result(self, queue):
        job_id = enqueue(queue, value=3)
        assert queue.process(job_id) is None
        job = queue.get_status(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"echo": {"value": 3}}
        assert job.attempts == 1
        assert job.progress == 100
        assert job.finished_at is not None

    def test_retry_with_exponential_backoff(self, queue):
        calls = []

        def flaky(payload, ctx):
            calls.append(ctx.attempt)
            if ctx.attempt < 3:
                raise HandlerError(f"attempt {ctx.attempt} failed")
            return "ok"

        queue.register_handler("flaky", flaky)
        job_id = enqueue(queue, "flaky")

        assert queue.process(job_id) == 2.0
        job = queue.get_status(job_id)
        assert job.status == JobStatus.DELAYED
        assert job.failure_reason == "attempt 1 failed"
        assert job.next_attempt_at > utcnow()

        assert queue.process(job_id) == 4.0
        assert queue.process(job_id) is None
        job = queue.get_status(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result == "ok"
        assert calls == [1, 2, 3]

    def test_backoff_doubles(self, queue):
        assert [queue.backoff_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_failure_after_last_attempt_keeps_the_error(self, queue):
        def always_fails(payload, ctx):
            raise RuntimeError(f"disk full on attempt {ctx.attempt}")

        queue.register_handler("doomed", always_fails)
        job_id = enqueue(queue, "doomed")
        delays = [queue.process(job_id) for _ in range(3)]
        assert delays == [2.0, 4.0, None]
        job = queue.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "disk full on attempt 3"
        assert queue.process(job_id) is None
        assert queue.get_status(job_id).attempts == 3

    def test_non_retryable_errors_fail_immediately(self, queue):
        def invalid(payload, ctx):
            raise HandlerError("bad payload", retryable=False)

        queue.register_handler("invalid", invalid)
        job_id = enqueue(queue, "invalid")
        assert queue.process(job_id) is None
        assert queue.get_status(job_id).status == JobStatus.FAILED

    def test_progress_reports_are_stored(self, queue):
        seen = []

        def reporting(payload, ctx):
            ctx.report_progress(40)
            ctx.report_progress(20)
            seen.append(queue.get_status(ctx.job_id).progress)
            return None

        queue.register_handler("reporting", reporting)
        job_id = enqueue(queue, "reporting")
        queue.process(job_id)
        assert seen == [40]

    def test_missing_job_is_dropped(self, queue):
        assert queue.process("job_missing") is None


class TestCancellation:
    def test_waiting_job_fails_immediately(self, queue):
        job_id = queue.submit("echo", {})
        assert queue.cancel(job_id) is True
        job = queue.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "Cancelled"
        assert queue.cancel(job_id) is False
        assert queue.process(job_id) is None
        assert queue.get_status(job_id).result is None

    def test_unknown_job(self, queue):
        assert queue.cancel("job_missing") is False

    def test_active_job_is_flagged_and_not_retried(self, queue):
        observed = []

        def cancelled_midway(payload, ctx):
            observed.append(queue.cancel(ctx.job_id))
            observed.append(ctx.is_cancelled())
            raise HandlerError("interrupted")

        queue.register_handler("long", cancelled_midway)
        job_id = enqueue(queue, "long")
        assert queue.process(job_id) is None
        assert observed == [True, True]
        job = queue.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.cancel_requested is True


class TestCleanup:
    def test_old_finished_jobs_are_removed(self, queue):
        old_done = Job(type="echo", status=JobStatus.COMPLETED, finished_at=utcnow() - timedelta(hours=2))
        old_failed = Job(type="echo", status=JobStatus.FAILED, finished_at=utcnow() - timedelta(hours=2))
        recent = Job(type="echo", status=JobStatus.COMPLETED, finished_at=utcnow())
        waiting = Job(type="echo")
        for job in (old_done, old_failed, recent, waiting):
            queue.store.save(job)

        removed = queue.cleanup(completed_max_age=3600, failed_max_age=3 * 3600)

        assert removed == 1
        assert queue.get_status(old_done.id) is None
        assert queue.get_status(old_failed.id) is not None
        assert queue.get_status(recent.id) is not None
        assert queue.get_status(waiting.id) is not None


class TestWorkflowRuns:
    @pytest.fixture
    def queued_settings(self, settings):
        return settings.model_copy(update={"QUEUE_ENABLED": True})

    @pytest.mark.asyncio
    async def test_eager_worker_executes_the_run(self, queued_settings, registry, chain_graph):
        services = build_services(
            queued_settings,
            store=MemoryWorkflowStore(),
            registry=registry,
            celery_app=make_celery(queued_settings, eager=True),
            job_store=MemoryJobStore(),
        )
        service = services.service
        graph = await service.create_workflow(chain_graph)

        record = await service.submit_run(graph.id, ["doc.pdf"], owner_id="alice")

        assert record.job_id is not None
        assert record.status == RunStatus.COMPLETED
        assert [a.uri for a in record.output_artifacts] == ["doc.pdf"]
        job = services.queue.get_status(record.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result["execution_id"] == record.id
        assert job.owner_id == "alice"

    @pytest.mark.asyncio
    async def test_cancel_pending_queued_run(self, queued_settings, registry, chain_graph):
        services = build_services(
            queued_settings,
            store=MemoryWorkflowStore(),
            registry=registry,
            celery_app=make_celery(queued_settings),
            job_store=MemoryJobStore(),
        )
        service = services.service
        graph = await service.create_workflow(chain_graph)
        record = await service.submit_run(graph.id, ["doc.pdf"])
        assert record.status == RunStatus.PENDING

        cancelled = await service.cancel_run(record.id)

        assert cancelled.status == RunStatus.CANCELLED
        job = services.queue.get_status(record.job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "Cancelled"

    @pytest.mark.asyncio
    async def test_unreachable_queue_falls_back_to_in_process(self, queued_settings, registry, chain_graph):
        services = build_services(
            queued_settings,
            store=MemoryWorkflowStore(),
            registry=registry,
            celery_app=make_celery(queued_settings),
            job_store=RedisJobStore.from_url("redis://127.0.0.1:1/0", timeout=0.2),
        )
        service = services.service
        graph = await service.create_workflow(chain_graph)

        submitted = await service.submit_run(graph.id, ["doc.pdf"])

        assert submitted.job_id is None
        assert any("running in-process" in entry.message for entry in submitted.logs)
        record = await service.wait_for_run(submitted.id, timeout=5)
        assert record.status == RunStatus.COMPLETED
        await service.close()


class CancelOwnJob(OperationHandler):
    """Cancels the job it runs under, then passes inputs through."""

    operation = "cancel-own-job"

    def __init__(self) -> None:
        self.cancel = None

    async def execute(self, inputs, config):
        self.cancel()
        return list(inputs)


def attempt(queue, job_id):
    """One worker attempt, off the event loop as a Celery worker would run it."""
    return asyncio.to_thread(queue.process, job_id)


class TestWorkflowRunAttempts:
    @pytest.fixture
    def worker(self, settings, registry):
        queued = settings.model_copy(update={"QUEUE_ENABLED": True, "QUEUE_MAX_ATTEMPTS": 3})
        return build_services(
            queued,
            store=MemoryWorkflowStore(),
            registry=registry,
            celery_app=make_celery(queued),
            job_store=MemoryJobStore(),
        )

    @pytest.fixture
    def flaky_graph(self, graph_factory):
        return graph_factory([("in", "file-input"), ("work", "flaky")], [("in", "work")])

    @pytest.mark.asyncio
    async def test_failed_attempt_keeps_the_run_open_and_the_next_one_restarts_it(self, worker, handlers, flaky_graph):
        service, queue = worker.service, worker.queue
        graph = await service.create_workflow(flaky_graph)
        record = await service.submit_run(graph.id, ["doc.pdf"])

        assert await attempt(queue, record.job_id) == 2.0
        run = await service.get_run(record.id)
        assert run.status == RunStatus.RUNNING
        assert run.attempt == 1
        assert run.failed_node_id == "work"
        assert queue.get_status(record.job_id).status == JobStatus.DELAYED

        assert await attempt(queue, record.job_id) is None
        run = await service.get_run(record.id)
        job = queue.get_status(record.job_id)
        assert run.status == RunStatus.COMPLETED
        assert run.progress == 100
        assert run.error is None
        assert run.attempt == job.attempts == 2
        assert job.status == JobStatus.COMPLETED
        assert handlers["flaky"].calls == 2
        assert any("Run restarted (attempt 2)" in entry.message for entry in run.logs)

    @pytest.mark.asyncio
    async def test_only_the_last_attempt_fails_the_run(self, worker, graph_factory):
        service, queue = worker.service, worker.queue
        graph = await service.create_workflow(graph_factory([("in", "file-input"), ("bad", "explode")], [("in", "bad")]))
        record = await service.submit_run(graph.id, ["doc.pdf"])

        assert await attempt(queue, record.job_id) == 2.0
        assert (await service.get_run(record.id)).status == RunStatus.RUNNING
        assert await attempt(queue, record.job_id) == 4.0
        assert (await service.get_run(record.id)).status == RunStatus.RUNNING
        assert await attempt(queue, record.job_id) is None

        run = await service.get_run(record.id)
        job = queue.get_status(record.job_id)
        assert run.status == RunStatus.FAILED
        assert run.failed_node_id == "bad"
        assert run.attempt == job.attempts == 3
        assert job.status == JobStatus.FAILED
        assert "boom" in job.failure_reason

    @pytest.mark.asyncio
    async def test_cancel_between_attempts_finishes_the_run(self, worker, handlers, flaky_graph):
        service, queue = worker.service, worker.queue
        graph = await service.create_workflow(flaky_graph)
        record = await service.submit_run(graph.id, ["doc.pdf"])
        assert await attempt(queue, record.job_id) == 2.0

        cancelled = await service.cancel_run(record.id)

        assert cancelled.status == RunStatus.CANCELLED
        job = queue.get_status(record.job_id)
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "Cancelled"

        # The retry is still in the broker; delivering it must not revive the run
        assert await attempt(queue, record.job_id) is None
        run = await service.get_run(record.id)
        assert run.is_terminal
        assert run.status == RunStatus.CANCELLED
        assert handlers["flaky"].calls == 1

    @pytest.mark.asyncio
    async def test_job_cancelled_on_the_queue_cancels_its_run_on_next_delivery(self, worker, flaky_graph):
        service, queue = worker.service, worker.queue
        graph = await service.create_workflow(flaky_graph)
        record = await service.submit_run(graph.id, ["doc.pdf"])
        assert await attempt(queue, record.job_id) == 2.0

        assert queue.cancel(record.job_id) is True
        assert (await service.get_run(record.id)).status == RunStatus.RUNNING

        assert await attempt(queue, record.job_id) is None
        run = await service.get_run(record.id)
        assert run.status == RunStatus.CANCELLED
        assert run.logs[-1].message == "Cancelled while queued"

    @pytest.mark.asyncio
    async def test_run_cancelled_mid_flight_fails_its_job(self, worker, registry, graph_factory):
        service, queue = worker.service, worker.queue
        canceller = registry.register(CancelOwnJob())
        graph = await service.create_workflow(
            graph_factory(
                [("in", "file-input"), ("stop", "cancel-own-job"), ("out", "file-output")],
                [("in", "stop"), ("stop", "out")],
            )
        )
        record = await service.submit_run(graph.id, ["doc.pdf"])
        canceller.cancel = lambda: queue.cancel(record.job_id)

        assert await attempt(queue, record.job_id) is None

        run = await service.get_run(record.id)
        job = queue.get_status(record.job_id)
        assert run.status == RunStatus.CANCELLED
        assert run.output_artifacts == []
        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "Cancelled"
        assert job.cancel_requested is True
        assert job.attempts == 1
