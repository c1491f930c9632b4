"""
Views for the optimization pipeline, public crawl scans and performance
opportunities.
All endpoints are called by the WordPress plugin with a site API key.
"""
import logging

from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from integrations.authentication import APIKeyAuthentication
from integrations.permissions import IsAPIKeyAuthenticated
from sites.inventory import get_site_by_url

from . import apply as apply_service
from . import executions, performance, scans
from .exceptions import InvalidPayload, OptimizationError, ScanNotFound, SiteNotFound
from .models import ScanJob
from .serializers import (
    ApplyPayloadSerializer, OpportunitiesQuerySerializer, PrepareRequestSerializer, ScanCreateSerializer,
)

logger = logging.getLogger(__name__)


def error_response(exc):
    return Response({'error': exc.as_dict()}, status=exc.status_code)


def invalid_payload(serializer):
    return error_response(InvalidPayload(detail=serializer.errors))


def poll_url(execution_id):
    return f"/api/v2/optimizations/executions/{execution_id}"


@api_view(['POST'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def prepare(request):
    """
    Start an optimization run over a slice of the site's inventory.

    POST /api/v2/optimizations/prepare
    Body: { "site_url": "...", "ruleset": "quick_boost", "scope": {...},
            "filters": {...}, "site_samples": [...], "focus_keyword": "..." }

    Small deterministic runs execute inline and return the full result (200).
    Everything else is queued and returns 202 with a poll link.
    """
    serializer = PrepareRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_payload(serializer)
    data = serializer.validated_data

    try:
        execution, payload = executions.prepare(
            request.auth['tenant'],
            data['site_url'],
            data['ruleset'],
            scope=dict(data.get('scope') or {}),
            filters=dict(data.get('filters') or {}),
            site_samples=data.get('site_samples'),
            focus_keyword=data.get('focus_keyword'),
        )
    except OptimizationError as e:
        return error_response(e)

    if payload is None:
        return Response({
            'ok': True,
            'execution_id': execution.execution_id,
            'status': execution.status,
            'progress': execution.progress,
            'poll': poll_url(execution.execution_id),
        }, status=status.HTTP_202_ACCEPTED)

    return Response({
        **payload,
        'execution_id': execution.execution_id,
        'status': execution.status,
        'progress': execution.progress,
    }, status=status.HTTP_200_OK)


@api_view(['GET'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def get_execution(request, execution_id):
    """
    Poll an execution.

    GET /api/v2/optimizations/executions/<execution_id>

    An execution left queued past EXECUTION_STUCK_QUEUED_SECONDS is
    recovered here (failed or run inline, per EXECUTION_STUCK_RECOVERY).
    """
    try:
        execution = executions.get_execution_for_tenant(request.auth['tenant'], execution_id)
    except OptimizationError as e:
        return error_response(e)

    execution = executions.recover_if_stuck(execution)
    return Response(executions.execution_status_payload(execution))


@api_view(['POST'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def record_applied(request):
    """
    Record which proposed changes the plugin actually applied.

    POST /api/v2/optimizations/applied
    Body: { "site": {"site_url", "connector_used"}, "execution": {"execution_id"},
            "apply_batch": {"idempotency_key", "mode", "applied_at"}, "items": [...] }

    Replaying the same idempotency_key returns the original apply_id with
    "idempotent": true and stores nothing.
    """
    serializer = ApplyPayloadSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_payload(serializer)

    try:
        result = apply_service.record_applied(
            request.auth['tenant'], serializer.validated_data, raw_payload=request.data,
        )
    except OptimizationError as e:
        return error_response(e)

    code = status.HTTP_200_OK if result['idempotent'] else status.HTTP_201_CREATED
    return Response(result, status=code)


@api_view(['POST'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def create_scan(request):
    """
    Queue a public crawl scan of the site's inventory.

    POST /api/v2/scans/
    Body: { "site_url": "...", "scan_type": "scan_1", "scope": {...},
            "execution_ref": "...", "apply_ref": "..." }
    """
    serializer = ScanCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_payload(serializer)
    data = serializer.validated_data

    site = get_site_by_url(request.auth['tenant'], data['site_url'])
    if site is None:
        return error_response(SiteNotFound(detail={'site_url': data['site_url']}))

    job = scans.create_scan_job(
        site,
        scope=data.get('scope'),
        scan_type=data['scan_type'],
        execution_ref=data.get('execution_ref'),
        apply_ref=data.get('apply_ref'),
    )
    return Response({
        'ok': True,
        'job_id': job.job_id,
        'status': job.status,
        'progress': job.progress,
        'poll': f"/api/v2/scans/{job.job_id}/",
    }, status=status.HTTP_202_ACCEPTED)


@api_view(['GET'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def get_scan(request, job_id):
    """GET /api/v2/scans/<job_id>/"""
    job = ScanJob.objects.filter(job_id=job_id, site__user=request.auth['tenant']).first()
    if job is None:
        return error_response(ScanNotFound(detail={'job_id': job_id}))
    return Response(scans.scan_status_payload(job))


@api_view(['GET'])
@authentication_classes([APIKeyAuthentication])
@permission_classes([IsAPIKeyAuthenticated])
def performance_opportunities(request):
    """
    Published products ranked by SEO opportunity, from stored scan scores.

    GET /api/v2/performance/opportunities?site_url=...&limit=50&lang=fr
    """
    serializer = OpportunitiesQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return invalid_payload(serializer)
    data = serializer.validated_data

    site = get_site_by_url(request.auth['tenant'], data['site_url'])
    if site is None:
        return error_response(SiteNotFound(detail={'site_url': data['site_url']}))

    out = performance.list_opportunities(site, limit=data['limit'], lang=data['lang'] or None)
    return Response({'ok': True, **out})
