"""
Custom permissions for WordPress integrations.
"""
import logging
from rest_framework import permissions

logger = logging.getLogger(__name__)


class IsAPIKeyAuthenticated(permissions.BasePermission):
    """
    Permission to allow API key authenticated requests.
    """
    def has_permission(self, request, view):
        if hasattr(request, 'auth') and isinstance(request.auth, dict):
            return request.auth.get('auth_type') == 'api_key'
        logger.debug("No request.auth or not dict")
        return False
