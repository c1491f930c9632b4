"""
Apply recorder: bookkeeping for changes a client reports as applied.

A batch is stored at most once per idempotency_key. Replays (plugin retries
after a network error) return the stored apply_id and counts untouched.
"""
import logging
import secrets

from django.db import IntegrityError, transaction
from django.db.models.functions import Coalesce
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from sites.inventory import get_site_by_url

from .exceptions import ExecutionNotFound, InvalidPayload, SiteNotFound
from .models import ApplyBatch, ApplyItem, OptimizationExecution, OptimizationResult

logger = logging.getLogger(__name__)

ITEM_STATUSES = ('success', 'failed', 'skipped')


def make_apply_id():
    ts = timezone.now().strftime('%Y%m%dT%H%M%S%f')
    return f"apply_{ts}_{secrets.token_hex(4)}"


def count_items(items):
    counts = {'total': len(items)}
    for item_status in ITEM_STATUSES:
        counts[item_status] = sum(1 for i in items if i.get('status') == item_status)
    return counts


def _find_batch(idempotency_key, site):
    return ApplyBatch.objects.select_related('execution').filter(
        idempotency_key=idempotency_key, site=site,
    ).first()


def _replay_response(batch):
    logger.info("Apply %s replayed for idempotency_key=%s", batch.apply_id, batch.idempotency_key)
    return {
        'ok': True,
        'apply_id': batch.apply_id,
        'execution_id': batch.execution.execution_id,
        'idempotency_key': batch.idempotency_key,
        'idempotent': True,
        'received': batch.received(),
    }


def _to_datetime(value):
    if not value:
        return None
    if isinstance(value, str):
        return parse_datetime(value)
    return value


def _project_item(batch, item, applied_at):
    """Copy an applied item onto the execution's result row for that entity."""
    OptimizationResult.objects.filter(
        execution=batch.execution,
        wp_id=item['wp_id'],
        lang=item.get('lang') or '',
    ).update(
        applied_at=applied_at,
        applied_status=item['status'],
        applied_fields=item.get('applied_fields') or {},
        applied_error=item.get('error_payload'),
        apply_id=batch.apply_id,
    )


def record_applied(tenant, payload, raw_payload=None):
    """
    Record a validated apply confirmation for one of the tenant's executions.

    payload: {site: {site_url, connector_used?, plugin?, plugin_version?},
              execution: {execution_id},
              apply_batch: {idempotency_key, mode?, applied_at?},
              items: [{wp_id, lang?, entity_type?, status, applied_fields?,
                       wp_modified_gmt_after?, error_payload?}]}
    """
    site_info = payload['site']
    batch_info = payload['apply_batch']
    execution_id = payload['execution']['execution_id']
    idempotency_key = batch_info['idempotency_key']
    items = payload.get('items') or []

    site = get_site_by_url(tenant, site_info['site_url'])
    if site is None:
        raise SiteNotFound(detail={'site_url': site_info['site_url']})

    execution = OptimizationExecution.objects.filter(execution_id=execution_id, site=site).first()
    if execution is None:
        raise ExecutionNotFound(detail={'execution_id': execution_id})

    existing = _find_batch(idempotency_key, site)
    if existing is not None:
        return _replay_response(existing)

    counts = count_items(items)
    applied_at = _to_datetime(batch_info.get('applied_at')) or timezone.now()

    try:
        with transaction.atomic():
            batch = ApplyBatch.objects.create(
                apply_id=make_apply_id(),
                idempotency_key=idempotency_key,
                site=site,
                execution=execution,
                mode=batch_info.get('mode') or 'manual',
                connector_used=site_info.get('connector_used') or '',
                plugin=site_info.get('plugin') or '',
                plugin_version=site_info.get('plugin_version') or '',
                applied_at=applied_at,
                items_total=counts['total'],
                items_success=counts['success'],
                items_failed=counts['failed'],
                items_skipped=counts['skipped'],
                raw_payload=raw_payload if raw_payload is not None else payload,
            )
            for item in items:
                ApplyItem.objects.update_or_create(
                    batch=batch,
                    wp_id=item['wp_id'],
                    lang=item.get('lang') or '',
                    defaults={
                        'entity_type': item.get('entity_type') or '',
                        'status': item['status'],
                        'applied_fields': item.get('applied_fields') or {},
                        'wp_modified_gmt_after': _to_datetime(item.get('wp_modified_gmt_after')),
                        'error': item.get('error_payload'),
                    },
                )
                _project_item(batch, item, applied_at)

            OptimizationExecution.objects.filter(pk=execution.pk).update(
                applied_at=Coalesce('applied_at', applied_at),
            )
    except IntegrityError:
        # Lost a race with a concurrent request carrying the same key
        existing = _find_batch(idempotency_key, site)
        if existing is None:
            raise InvalidPayload(
                'idempotency_key already used by another site',
                detail={'idempotency_key': idempotency_key},
            )
        return _replay_response(existing)

    logger.info(
        "Recorded apply %s for execution %s (%s items)",
        batch.apply_id, execution_id, counts['total'],
    )
    return {
        'ok': True,
        'apply_id': batch.apply_id,
        'execution_id': execution_id,
        'idempotency_key': idempotency_key,
        'idempotent': False,
        'received': batch.received(),
    }
