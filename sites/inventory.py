"""
Tenant-aware site lookup and inventory slicing for optimization runs.
"""
from .models import Site, InventoryEntity

DEFAULT_SLICE_LIMIT = 50
MAX_SLICE_LIMIT = 500


def normalize_site_url(url):
    """Compare site URLs without trailing slash or case differences in the host."""
    return (url or '').strip().rstrip('/').lower()


def get_site_by_url(tenant, site_url):
    """Return the tenant's site registered under site_url, or None."""
    if tenant is None or not site_url:
        return None
    wanted = normalize_site_url(site_url)
    for site in Site.objects.filter(user=tenant, is_active=True):
        if normalize_site_url(site.url) == wanted:
            return site
    return None


def _as_list(value):
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return list(value) or None
    return [value]


def load_inventory_slice(site, scope=None, filters=None):
    """
    Load the entities an optimization run should process, as plain dicts.

    scope:   entity_types[], langs[] (or a single lang)
    filters: statuses[], only_wp_ids[], cursor_wp_id, limit (default 50, max 500)
    """
    scope = scope or {}
    filters = filters or {}

    qs = InventoryEntity.objects.filter(site=site)

    entity_types = _as_list(scope.get('entity_types'))
    if entity_types:
        qs = qs.filter(entity_type__in=entity_types)

    langs = _as_list(scope.get('langs')) or _as_list(scope.get('lang'))
    if langs:
        qs = qs.filter(lang__in=langs)

    statuses = _as_list(filters.get('statuses'))
    if statuses:
        qs = qs.filter(status__in=statuses)

    only_wp_ids = _as_list(filters.get('only_wp_ids'))
    if only_wp_ids:
        qs = qs.filter(wp_id__in=only_wp_ids)

    cursor = filters.get('cursor_wp_id')
    if cursor is not None:
        qs = qs.filter(wp_id__gt=cursor)

    try:
        limit = int(filters.get('limit') or DEFAULT_SLICE_LIMIT)
    except (TypeError, ValueError):
        limit = DEFAULT_SLICE_LIMIT
    limit = max(1, min(limit, MAX_SLICE_LIMIT))

    return [e.as_entity() for e in qs.order_by('wp_id', 'lang')[:limit]]
