"""
Execution lifecycle store.

Every status transition is a conditional UPDATE on the current status, so a
transition either happens exactly once or not at all:

    queued  -> running   claim_running()
    running -> done      mark_done()      progress becomes 100
    queued|running -> failed   mark_failed()

Progress writes are guarded the same way (``progress < new``) so a stale
writer can never move progress backwards.
"""
import logging
import math
import secrets
import time
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from engine.generators import KIND_DETERMINISTIC, strategy_for_ruleset
from engine.pipeline import build_apply_payload, run_prepare
from sites.inventory import get_site_by_url, load_inventory_slice

from .exceptions import EnqueueFailed, ExecutionFailed, ExecutionNotFound, SiteNotFound
from .models import OptimizationExecution, OptimizationResult

logger = logging.getLogger(__name__)

QUEUED = OptimizationExecution.STATUS_QUEUED
RUNNING = OptimizationExecution.STATUS_RUNNING
DONE = OptimizationExecution.STATUS_DONE
FAILED = OptimizationExecution.STATUS_FAILED

RECOVERY_FAIL = 'fail'
RECOVERY_INLINE = 'inline'


def make_execution_id():
    return f"exec_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def progress_percent(done, total):
    """Map completed/total to a running percentage in [1, 99]; 100 means done."""
    if not total:
        return 1
    return max(1, min(99, math.floor(done / total * 95)))


def should_run_async(ruleset, entity_count):
    """Large batches and AI-assisted rulesets go through the worker queue."""
    if settings.OPTIMIZATION_FORCE_ASYNC:
        return True
    if entity_count > settings.OPTIMIZATION_SYNC_LIMIT:
        return True
    return strategy_for_ruleset(ruleset).kind != KIND_DETERMINISTIC


def create_execution(site, ruleset, request_payload, run_async):
    """Create the execution queued (worker) or already running (inline)."""
    now = timezone.now()
    execution = OptimizationExecution.objects.create(
        execution_id=make_execution_id(),
        site=site,
        ruleset=ruleset,
        request_payload=request_payload,
        status=QUEUED if run_async else RUNNING,
        progress=0 if run_async else 1,
        started_at=None if run_async else now,
    )
    logger.info("Created execution %s (%s, ruleset=%s)", execution.execution_id, execution.status, ruleset)
    return execution


def claim_running(execution):
    """queued -> running. Returns False if another caller got there first."""
    claimed = OptimizationExecution.objects.filter(pk=execution.pk, status=QUEUED).update(
        status=RUNNING, progress=1, started_at=timezone.now(),
    )
    execution.refresh_from_db()
    if claimed:
        logger.info("Execution %s is running", execution.execution_id)
    return bool(claimed)


def set_progress(execution, done, total):
    pct = progress_percent(done, total)
    OptimizationExecution.objects.filter(
        pk=execution.pk, status=RUNNING, progress__lt=pct,
    ).update(progress=pct)


def mark_done(execution, result_payload):
    updated = OptimizationExecution.objects.filter(pk=execution.pk, status=RUNNING).update(
        status=DONE,
        progress=100,
        result_payload=result_payload,
        response_summary=result_payload.get('summary'),
        ended_at=timezone.now(),
    )
    execution.refresh_from_db()
    if updated:
        logger.info("Execution %s done", execution.execution_id)
    return bool(updated)


def mark_failed(execution, code, message, detail=None):
    updated = OptimizationExecution.objects.filter(
        pk=execution.pk, status__in=[QUEUED, RUNNING],
    ).update(
        status=FAILED,
        error_payload={'code': code, 'message': message, 'detail': detail},
        ended_at=timezone.now(),
    )
    execution.refresh_from_db()
    if updated:
        logger.error("Execution %s failed: %s (%s)", execution.execution_id, code, message)
    return bool(updated)


def persist_result(execution, result):
    """Upsert one entity result; re-running an execution overwrites its rows."""
    OptimizationResult.objects.update_or_create(
        execution=execution,
        wp_id=result['wp_id'],
        lang=result.get('lang') or '',
        defaults={
            'site_id': execution.site_id,
            'entity_type': result.get('entity_type') or '',
            'post_type': result.get('post_type') or '',
            'status': result.get('status') or '',
            'decision': result['decision'],
            'public_source': result.get('public_source'),
            'before_payload': result.get('before'),
            'after_payload': result.get('after'),
            'diff_payload': result.get('diff'),
            'apply_payload': result['apply'],
        },
    )


def load_request_inventory(site, request):
    """Inventory slice for a prepare request, with the request focus keyword copied onto each entity."""
    inventory = load_inventory_slice(site, request.get('scope'), request.get('filters'))
    focus_keyword = request.get('focus_keyword')
    if focus_keyword:
        for entity in inventory:
            entity['focus_keyword'] = focus_keyword
    return inventory


def execute(execution, inventory=None):
    """
    Run a running execution to completion and mark it done.

    Safe to repeat: results are upserted per (execution, wp_id, lang).
    """
    request = execution.request_payload or {}
    if inventory is None:
        inventory = load_request_inventory(execution.site, request)

    results = run_prepare(
        inventory,
        execution.ruleset,
        site_samples=request.get('site_samples') or [],
        focus_keyword=request.get('focus_keyword'),
        on_progress=lambda done, total: set_progress(execution, done, total),
        on_result=lambda result: persist_result(execution, result),
    )
    payload = build_apply_payload(
        execution.site.url,
        execution.ruleset,
        execution.execution_id,
        results,
        created_at=execution.created_at.isoformat(),
    )
    mark_done(execution, payload)
    return payload


def run_execution_now(execution, inventory=None):
    """execute(), recording any failure on the execution before re-raising."""
    try:
        return execute(execution, inventory=inventory)
    except Exception as e:
        logger.exception("Execution %s crashed", execution.execution_id)
        mark_failed(execution, 'execution_failed', str(e))
        raise


def enqueue_execution(execution):
    """Hand the execution to the worker queue; a failed publish fails the execution."""
    from .tasks import run_execution

    try:
        run_execution.delay(execution.execution_id)
    except Exception as e:
        logger.error("Could not enqueue execution %s: %s", execution.execution_id, e)
        mark_failed(execution, 'enqueue_failed', str(e))
        return False
    return True


def prepare(tenant, site_url, ruleset, scope=None, filters=None, site_samples=None, focus_keyword=None):
    """
    Start an optimization run.

    Returns (execution, payload). payload is the full result for inline runs
    and None when the run was queued for a worker.
    """
    site = get_site_by_url(tenant, site_url)
    if site is None:
        raise SiteNotFound(detail={'site_url': site_url})

    request_payload = {
        'site_url': site_url,
        'ruleset': ruleset,
        'scope': scope or {},
        'filters': filters or {},
        'site_samples': list(site_samples or []),
        'focus_keyword': focus_keyword,
    }
    inventory = load_request_inventory(site, request_payload)
    run_async = should_run_async(ruleset, len(inventory))
    execution = create_execution(site, ruleset, request_payload, run_async=run_async)

    if run_async:
        if not enqueue_execution(execution):
            raise EnqueueFailed(detail={'execution_id': execution.execution_id})
        return execution, None

    try:
        payload = run_execution_now(execution, inventory=inventory)
    except Exception as e:
        raise ExecutionFailed(str(e), detail={'execution_id': execution.execution_id}) from e
    execution.refresh_from_db()
    return execution, payload


def process_execution(execution_id):
    """
    Worker entry point for one queue message.

    Deliveries are at-least-once: a finished execution is left alone, a
    queued one is claimed, a running one (redelivery) is run again.
    """
    execution = OptimizationExecution.objects.select_related('site').filter(execution_id=execution_id).first()
    if execution is None:
        logger.warning("Execution %s not found, dropping job", execution_id)
        return None
    if execution.is_terminal:
        logger.info("Execution %s already %s, skipping", execution_id, execution.status)
        return None
    if execution.status == QUEUED and not claim_running(execution) and execution.is_terminal:
        return None
    return run_execution_now(execution)


def get_execution_for_tenant(tenant, execution_id):
    execution = (
        OptimizationExecution.objects.select_related('site')
        .filter(execution_id=execution_id, site__user=tenant)
        .first()
    )
    if execution is None:
        raise ExecutionNotFound(detail={'execution_id': execution_id})
    return execution


def is_stuck(execution, now=None):
    if execution.status != QUEUED:
        return False
    now = now or timezone.now()
    return now - execution.created_at > timedelta(seconds=settings.EXECUTION_STUCK_QUEUED_SECONDS)


def recover_if_stuck(execution):
    """
    Deal with an execution no worker has picked up.

    EXECUTION_STUCK_RECOVERY='fail' marks it failed with worker_not_running.
    'inline' claims it and runs it in the calling process; the claim is a
    conditional update, so concurrent pollers trigger at most one run.
    """
    if not is_stuck(execution):
        return execution

    if settings.EXECUTION_STUCK_RECOVERY == RECOVERY_INLINE:
        if claim_running(execution):
            logger.warning("Execution %s stuck in queue, running inline", execution.execution_id)
            try:
                run_execution_now(execution)
            except Exception as e:
                # run_execution_now has already stored execution_failed
                logger.warning("Inline recovery of %s failed: %s", execution.execution_id, e)
    else:
        logger.warning("Execution %s stuck in queue, marking failed", execution.execution_id)
        mark_failed(
            execution,
            'worker_not_running',
            'Execution stayed queued too long; no worker picked it up',
            detail={'queued_seconds': settings.EXECUTION_STUCK_QUEUED_SECONDS},
        )

    execution.refresh_from_db()
    return execution


def execution_status_payload(execution):
    """Poll response for one execution."""
    body = {
        'ok': True,
        'execution_id': execution.execution_id,
        'status': execution.status,
        'progress': execution.progress,
        'ruleset': execution.ruleset,
        'created_at': execution.created_at.isoformat() if execution.created_at else None,
        'started_at': execution.started_at.isoformat() if execution.started_at else None,
        'ended_at': execution.ended_at.isoformat() if execution.ended_at else None,
        'applied_at': execution.applied_at.isoformat() if execution.applied_at else None,
    }
    if execution.status == DONE:
        body['result'] = execution.result_payload
    if execution.status == FAILED:
        body['error'] = execution.error_payload
    return body
