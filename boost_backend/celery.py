"""
Celery configuration for the optimization worker pool.

Execution and scan jobs are routed to separate queues so each job type gets
its own worker process and concurrency limit:

    celery -A boost_backend worker -Q executions -c $EXECUTION_CONCURRENCY
    celery -A boost_backend worker -Q scans -c $SCAN_CONCURRENCY
"""

import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "boost_backend.settings")

app = Celery("boost_backend")

# namespace='CELERY' means all celery-related configuration keys
# should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "executions": {
        "exchange": "executions",
        "routing_key": "executions",
    },
    "scans": {
        "exchange": "scans",
        "routing_key": "scans",
    },
}

app.conf.task_default_queue = "executions"

app.conf.task_routes = {
    "optimizations.tasks.run_execution": {"queue": "executions"},
    "optimizations.tasks.run_scan": {"queue": "scans"},
}
