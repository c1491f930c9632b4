"""
Plugin API routes, mounted under /api/v2/.

App views are imported on first request so this module can be loaded before
the app registry is ready.
"""
import importlib

from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.urls import path
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET


def _lazy(module, attr):
    @csrf_exempt
    def view(*args, **kwargs):
        return getattr(importlib.import_module(module), attr)(*args, **kwargs)
    return view


@require_GET
def health(request):
    """Unauthenticated liveness check; 503 when the database is unreachable."""
    try:
        connection.ensure_connection()
    except DatabaseError:
        return JsonResponse({'ok': False, 'service': 'boost-backend', 'database': 'unavailable'}, status=503)
    return JsonResponse({'ok': True, 'service': 'boost-backend', 'database': 'ok'})


urlpatterns = [
    path('health/', health),
    # Optimization pipeline
    path('optimizations/prepare', _lazy('optimizations.views', 'prepare')),
    path('optimizations/applied', _lazy('optimizations.views', 'record_applied')),
    path('optimizations/executions/<str:execution_id>', _lazy('optimizations.views', 'get_execution')),
    path('executions/<str:execution_id>', _lazy('optimizations.views', 'get_execution')),
    # Public crawl scans
    path('scans/', _lazy('optimizations.views', 'create_scan')),
    path('scans/<str:job_id>/', _lazy('optimizations.views', 'get_scan')),
    # Performance
    path('performance/opportunities', _lazy('optimizations.views', 'performance_opportunities')),
]
