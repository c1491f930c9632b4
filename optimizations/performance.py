"""
Performance opportunities: rank a site's published products by how much an
SEO fix is likely to be worth.

Heuristic only. It needs nothing beyond the inventory and the stored scan
results: a low score on an expensive product ranks first.
"""
import logging
import math

from sites.models import InventoryEntity

from .models import ScanResult

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
MAX_CANDIDATES = 2000
NEUTRAL_SCORE = 50

# Lower rank wins; within a rank the newest result wins.
BASELINE_SCAN_RANK = {
    'scan_2_before': 0,
    'scan_1': 1,
}


def _to_number(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) else 0


def price_from_wc(wc):
    """First non-zero of price, regular_price, sale_price."""
    if not isinstance(wc, dict):
        return 0
    for key in ('price', 'regular_price', 'sale_price'):
        price = _to_number(wc.get(key))
        if price:
            return price
    return 0


def compute_opportunity(score, price):
    if not isinstance(score, (int, float)) or not math.isfinite(score):
        score = NEUTRAL_SCORE
    price = max(0, price or 0)

    # log-damped, price capped at 5000
    price_weight = 1 + math.log(1 + min(price, 5000))
    opportunity = max(0, (100 - score) * price_weight)
    estimated_value = (opportunity / 100) * min(price, 1000) * 0.25

    return {
        'opportunity_score': round(opportunity, 1),
        'estimated_value_month': round(estimated_value, 2),
    }


def latest_scan_scores(site):
    """
    Map (wp_id, lang) to the row that best describes the page before any
    change: a scan_2_before result if there is one, otherwise the newest scan_1.
    """
    rows = (
        ScanResult.objects
        .filter(job__site=site, wp_id__isnull=False, job__scan_type__in=BASELINE_SCAN_RANK)
        .order_by('-created_at', '-id')
        .values('wp_id', 'lang', 'score', 'issues', 'metrics', 'job__scan_type')
    )
    latest = {}
    for row in rows:
        key = (row['wp_id'], row['lang'] or '')
        rank = BASELINE_SCAN_RANK[row['job__scan_type']]
        if key not in latest or rank < latest[key][0]:
            latest[key] = (rank, row)
    return {key: row for key, (rank, row) in latest.items()}


def list_opportunities(site, limit=DEFAULT_LIMIT, lang=None):
    try:
        limit = int(limit or DEFAULT_LIMIT)
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    limit = max(1, min(limit, MAX_LIMIT))

    products = InventoryEntity.objects.filter(site=site, entity_type='product', status='publish')
    if lang:
        products = products.filter(lang=lang)
    products = products.order_by('wp_id', 'lang')[:MAX_CANDIDATES]

    scans = latest_scan_scores(site)
    items = []
    for product in products:
        scan = scans.get((product.wp_id, product.lang)) or scans.get((product.wp_id, ''))
        score = scan['score'] if scan else None
        price = price_from_wc(product.wc)
        items.append({
            'wp_id': product.wp_id,
            'lang': product.lang,
            'title': product.title,
            'permalink': product.permalink,
            'price': price,
            'seo_score': score,
            **compute_opportunity(score, price),
            'issues': scan['issues'] if scan else None,
            'metrics': scan['metrics'] if scan else None,
        })

    items.sort(key=lambda item: item['opportunity_score'], reverse=True)
    top = items[:limit]
    estimated_total = sum(item['estimated_value_month'] for item in top)

    logger.debug("Opportunities for site %s: %s candidates, %s returned", site.id, len(items), len(top))
    return {
        'site_id': site.id,
        'items': top,
        'meta': {
            'total': len(items),
            'returned': len(top),
            'estimated_value_month_total': round(estimated_total, 2),
        },
    }
