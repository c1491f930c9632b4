"""
Public crawl scans: crawl and score every entity in an inventory slice and
summarize the site as KPIs.
"""
import logging
import secrets

from django.utils import timezone

from engine.crawler import crawl_public
from engine.scoring import score_signals
from sites.inventory import MAX_SLICE_LIMIT, load_inventory_slice

from .executions import progress_percent
from .models import ScanJob, ScanResult

logger = logging.getLogger(__name__)

SCAN_START_PROGRESS = 5


def make_scan_job_id():
    ts = timezone.now().strftime('%Y%m%dT%H%M%S%f')
    return f"scan_{ts}_{secrets.token_hex(4)}"


def create_scan_job(site, scope=None, scan_type='scan_1', execution_ref='', apply_ref='', enqueue=True):
    job = ScanJob.objects.create(
        job_id=make_scan_job_id(),
        site=site,
        scan_type=scan_type,
        scope=scope or {},
        execution_ref=execution_ref or '',
        apply_ref=apply_ref or '',
    )
    logger.info("Created scan job %s for site %s", job.job_id, site.id)
    if enqueue:
        enqueue_scan(job)
    return job


def enqueue_scan(job):
    from .tasks import run_scan

    try:
        run_scan.delay(job.job_id)
    except Exception as e:
        logger.error("Could not enqueue scan %s: %s", job.job_id, e)
        mark_scan_failed(job, 'enqueue_failed', str(e))
        return False
    return True


def mark_scan_failed(job, code, message):
    ScanJob.objects.filter(pk=job.pk, status__in=['queued', 'running']).update(
        status='failed',
        error_payload={'code': code, 'message': message},
        ended_at=timezone.now(),
    )
    job.refresh_from_db()


def _crawl_failed_row(job, entity, error):
    return ScanResult(
        job=job,
        wp_id=entity.get('wp_id'),
        lang=entity.get('lang') or '',
        entity_type=entity.get('entity_type') or '',
        url=entity.get('permalink') or '',
        http_status=0,
        indexable=False,
        score=0,
        metrics={'error': str(error)},
        issues=[{'code': 'crawl_failed'}],
    )


def scan_entity(job, entity, crawl=None):
    """Crawl and score one entity; returns the unsaved ScanResult."""
    crawl = crawl or crawl_public
    try:
        page = crawl(entity.get('permalink'))
    except Exception as e:
        logger.warning("Scan %s: crawl failed for %s: %s", job.job_id, entity.get('permalink'), e)
        return _crawl_failed_row(job, entity, e)

    scored = score_signals(page['signals'])
    return ScanResult(
        job=job,
        wp_id=entity.get('wp_id'),
        lang=entity.get('lang') or '',
        entity_type=entity.get('entity_type') or '',
        url=page['url'],
        http_status=page['http_status'],
        indexable=page['signals'].get('indexable', False),
        score=scored['score'],
        metrics={**page['signals'], 'timing_ms': page['timing_ms']},
        issues=scored['issues'],
    )


def summarize(rows):
    if not rows:
        return {'entities_seen': 0, 'avg_score': 0, 'indexable_rate': 0}
    return {
        'entities_seen': len(rows),
        'avg_score': round(sum(r.score for r in rows) / len(rows)),
        'indexable_rate': round(sum(1 for r in rows if r.indexable) / len(rows) * 100),
    }


def run_scan_job(job_id, crawl=None):
    """
    Worker entry point for one scan message.

    A redelivered job that is still running starts over; finished jobs are
    left alone.
    """
    job = ScanJob.objects.select_related('site').filter(job_id=job_id).first()
    if job is None:
        logger.warning("Scan job %s not found, dropping", job_id)
        return None
    if job.status in ('done', 'failed'):
        logger.info("Scan job %s already %s, skipping", job_id, job.status)
        return None

    ScanJob.objects.filter(pk=job.pk).update(
        status='running', progress=SCAN_START_PROGRESS, started_at=job.started_at or timezone.now(),
    )
    job.results.all().delete()

    scope = job.scope or {}
    inventory = load_inventory_slice(job.site, scope, {'limit': scope.get('limit') or MAX_SLICE_LIMIT})

    rows = []
    for index, entity in enumerate(inventory):
        row = scan_entity(job, entity, crawl=crawl)
        row.save()
        rows.append(row)
        pct = progress_percent(index + 1, len(inventory))
        ScanJob.objects.filter(pk=job.pk, progress__lt=pct).update(progress=pct)

    kpis = summarize(rows)
    ScanJob.objects.filter(pk=job.pk, status='running').update(
        status='done', progress=100, kpis=kpis, ended_at=timezone.now(),
    )
    logger.info("Scan job %s done: %s", job_id, kpis)
    job.refresh_from_db()
    return kpis


def scan_status_payload(job):
    return {
        'ok': True,
        'job_id': job.job_id,
        'type': job.scan_type,
        'scope': job.scope,
        'execution_ref': job.execution_ref or None,
        'apply_ref': job.apply_ref or None,
        'status': job.status,
        'progress': job.progress,
        'kpis': job.kpis,
        'error': job.error_payload,
        'created_at': job.created_at.isoformat() if job.created_at else None,
        'started_at': job.started_at.isoformat() if job.started_at else None,
        'ended_at': job.ended_at.isoformat() if job.ended_at else None,
    }
