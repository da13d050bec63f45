"""
Celery configuration for the job queue.

Loaded by ``create_celery_app`` via ``config_from_object``.  Broker and
result backend URLs, and the worker pool size, come from Settings and are
applied on top of these defaults.
"""

# ═══════════════════════════════════════════════════════════
#  Serialization: JSON only
# ═══════════════════════════════════════════════════════════

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# ═══════════════════════════════════════════════════════════
#  Timezone
# ═══════════════════════════════════════════════════════════

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Task Execution
# ═══════════════════════════════════════════════════════════

# Acknowledge after completion so a crashed worker's job is redelivered
task_acks_late = True
task_reject_on_worker_lost = True

# One job per worker slot: run-level concurrency equals worker_concurrency
worker_prefetch_multiplier = 1

# Workflow runs can take a while (OCR, large batches)
task_soft_time_limit = 1800   # 30 min: raises SoftTimeLimitExceeded
task_time_limit = 1860        # 31 min: hard kill

# ═══════════════════════════════════════════════════════════
#  Retry Policy
# ═══════════════════════════════════════════════════════════
# Retries are driven by JobQueue (attempt counting + exponential backoff),
# so Celery's own retry ceiling is lifted on the task itself.

task_default_retry_delay = 2

# ═══════════════════════════════════════════════════════════
#  Broker connection
# ═══════════════════════════════════════════════════════════

broker_connection_retry_on_startup = True
broker_connection_max_retries = 3

# ═══════════════════════════════════════════════════════════
#  Result Expiry: auto-clean after 24h
# ═══════════════════════════════════════════════════════════

result_expires = 86400

# ═══════════════════════════════════════════════════════════
#  Worker Settings
# ═══════════════════════════════════════════════════════════

worker_max_tasks_per_child = 50

# Worker events off; job state lives in the job index
worker_send_task_events = False
task_send_sent_event = False

# ═══════════════════════════════════════════════════════════
#  Task Routes
# ═══════════════════════════════════════════════════════════
#   celery -A docflow.worker worker -Q jobs --concurrency 3

task_routes = {
    "docflow.queue.process_job": {"queue": "jobs"},
}

task_default_queue = "jobs"
