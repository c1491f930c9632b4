"""
Custom authentication for API key-based requests from the WordPress plugin.
"""
import logging
from rest_framework import authentication, exceptions
from django.utils import timezone

logger = logging.getLogger(__name__)


class APIKeyAuthentication(authentication.BaseAuthentication):
    """
    Authenticate WordPress plugin requests using site API keys (sk_boost_...).

    API keys can be provided in:
    - Authorization header: "Bearer sk_boost_xxx"
    - X-API-Key header: "sk_boost_xxx"

    The authenticated user is the tenant owning the key's site.
    """

    def authenticate(self, request):
        api_key = self._extract_api_key(request)

        if not api_key:
            return None

        if not api_key.startswith('sk_boost_'):
            logger.debug(f"API key has invalid prefix: {api_key[:10]}...")
            return None

        return self._authenticate_site_key(api_key)

    def authenticate_header(self, request):
        return 'Bearer'

    def _extract_api_key(self, request):
        """Extract API key from request headers."""
        api_key = None

        # Check Authorization header first
        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if auth_header.startswith('Bearer '):
            api_key = auth_header.split('Bearer ')[1].strip()

        # Fall back to X-API-Key header
        if not api_key:
            api_key = request.META.get('HTTP_X_API_KEY', '').strip()

        return api_key if api_key else None

    def _authenticate_site_key(self, api_key):
        from sites.models import APIKey

        try:
            api_key_obj = APIKey.objects.select_related('site', 'site__user').get(
                key_hash=APIKey.hash_key(api_key),
                is_active=True
            )
        except APIKey.DoesNotExist:
            logger.warning("Site API key not found in database")
            raise exceptions.AuthenticationFailed('Invalid API key')

        if api_key_obj.expires_at and api_key_obj.expires_at < timezone.now():
            raise exceptions.AuthenticationFailed('API key has expired')

        api_key_obj.mark_used()

        return (api_key_obj.site.user, {
            'api_key': api_key_obj,
            'site': api_key_obj.site,
            'tenant': api_key_obj.site.user,
            'auth_type': 'api_key',
        })
