"""
Root URLconf: Django admin plus the versioned plugin API.

Unmatched routes and unhandled errors answer with the same JSON error
envelope the API views use, so the plugin never has to parse an HTML page.
"""
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path

from optimizations.exceptions import OptimizationError, RouteNotFound


def _envelope(exc):
    return JsonResponse({'error': exc.as_dict()}, status=exc.status_code)


def route_not_found(request, exception=None):
    return _envelope(RouteNotFound(detail={'path': request.path}))


def server_error(request):
    return _envelope(OptimizationError())


urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v2/', include('boost_backend.api_urls')),
]

handler404 = route_not_found
handler500 = server_error
