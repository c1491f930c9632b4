"""
Celery tasks consumed by the worker pools.

Queue messages carry only an identifier ({execution_id} or {job_id}); all
state lives in the database so redelivered messages are harmless.
"""
import logging

from celery import shared_task

from .executions import process_execution
from .models import ScanJob
from .scans import mark_scan_failed, run_scan_job

logger = logging.getLogger(__name__)


@shared_task(name='optimizations.tasks.run_execution', bind=True, acks_late=True)
def run_execution(self, execution_id):
    """Run one queued optimization execution. Failures are stored as execution_failed."""
    payload = process_execution(execution_id)
    if payload is None:
        return {'ok': True, 'execution_id': execution_id, 'skipped': True}
    return {'ok': True, 'execution_id': execution_id, 'summary': payload['summary']}


@shared_task(name='optimizations.tasks.run_scan', bind=True, acks_late=True)
def run_scan(self, job_id):
    """Run one public crawl scan job."""
    try:
        kpis = run_scan_job(job_id)
    except Exception as e:
        logger.exception("Scan job %s failed", job_id)
        job = ScanJob.objects.filter(job_id=job_id).first()
        if job is not None:
            mark_scan_failed(job, 'scan_failed', str(e))
        raise
    return {'ok': True, 'job_id': job_id, 'kpis': kpis}
