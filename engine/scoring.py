"""
SEO scoring from crawl signals.

Two independent scores are computed from the same signals:

- ``score`` (0-100): public page quality shown to users.
- ``seo_fields_score`` (0-20): quality of the editable SEO fields, used by
  the freeze and delta rules of the decision policy.

Both start at their maximum and subtract fixed penalties, then clamp.
Scoring is pure: the same signals always produce the same result.
"""

SCORE_MAX = 100
FIELDS_SCORE_MAX = 20

TITLE_MIN_LEN = 20
TITLE_MAX_LEN = 60
META_MIN_LEN = 80
META_MAX_LEN = 165

# CMS defaults and filler text that should never ship as a title/meta/H1.
PLACEHOLDER_PHRASES = (
    'hello world',
    'sample page',
    'lorem ipsum',
    'coming soon',
    'under construction',
    'just another wordpress site',
    'untitled',
    'auto draft',
    'default title',
    'page d\'exemple',
    'bonjour tout le monde',
    'ceci est un exemple',
    'en construction',
    'your title here',
    'insert title',
)

# (code, field, public penalty, fields penalty)
PENALTIES = {
    'not_indexable': ('robots', 60, 6),
    'title_missing': ('title', 40, 4),
    'title_too_long': ('title', 15, 2),
    'title_too_short': ('title', 10, 2),
    'title_placeholder': ('title', 30, 4),
    'meta_missing': ('meta_description', 30, 4),
    'meta_too_short': ('meta_description', 10, 2),
    'meta_too_long': ('meta_description', 10, 2),
    'meta_placeholder': ('meta_description', 20, 3),
    'h1_missing': ('h1', 20, 2),
    'h1_multiple': ('h1', 10, 2),
    'h1_placeholder': ('h1', 20, 3),
    'canonical_missing': ('canonical', 5, 1),
    'title_equals_meta': ('meta_description', 0, 1),
    'slug_missing': ('slug', 0, 1),
}


def clamp_score(value, upper):
    return max(0, min(upper, value))


def is_placeholder(text):
    t = (text or '').strip().lower()
    if not t:
        return False
    return any(phrase in t for phrase in PLACEHOLDER_PHRASES)


def _find_conditions(signals, slug):
    title = (signals.get('title') or '').strip()
    meta = (signals.get('meta_description') or '').strip()
    h1 = [h for h in (signals.get('h1') or []) if h]
    h1_count = int(signals.get('h1_count') if signals.get('h1_count') is not None else len(h1))

    found = []
    if not signals.get('indexable', False):
        found.append('not_indexable')

    if not title:
        found.append('title_missing')
    else:
        if len(title) > TITLE_MAX_LEN:
            found.append('title_too_long')
        if len(title) < TITLE_MIN_LEN:
            found.append('title_too_short')
        if is_placeholder(title):
            found.append('title_placeholder')

    if not meta:
        found.append('meta_missing')
    else:
        if len(meta) < META_MIN_LEN:
            found.append('meta_too_short')
        if len(meta) > META_MAX_LEN:
            found.append('meta_too_long')
        if is_placeholder(meta):
            found.append('meta_placeholder')

    if h1_count == 0:
        found.append('h1_missing')
    elif h1_count > 1:
        found.append('h1_multiple')
    if any(is_placeholder(h) for h in h1):
        found.append('h1_placeholder')

    if not signals.get('canonical'):
        found.append('canonical_missing')

    if title and meta and title.lower() == meta.lower():
        found.append('title_equals_meta')

    # slug=None means slug tracking was not requested
    if slug is not None and not str(slug).strip():
        found.append('slug_missing')

    return found, {
        'title_len': len(title),
        'meta_len': len(meta),
        'h1_count': h1_count,
        'text_len': int(signals.get('text_len') or 0),
        'indexable': bool(signals.get('indexable', False)),
    }


def score_signals(signals, slug=None):
    """
    Score crawl signals.

    Returns {score, seo_fields_score, issues, fields_issues, metrics}. Pass
    ``slug`` (possibly empty) to penalize entities without a slug.
    """
    signals = signals or {}
    found, metrics = _find_conditions(signals, slug)

    score = SCORE_MAX
    fields_score = FIELDS_SCORE_MAX
    issues = []
    fields_issues = []
    for code in found:
        field, public_penalty, fields_penalty = PENALTIES[code]
        if public_penalty:
            score -= public_penalty
            issues.append({'code': code, 'field': field, 'penalty': public_penalty})
        if fields_penalty:
            fields_score -= fields_penalty
            fields_issues.append({'code': code, 'field': field, 'penalty': fields_penalty})

    return {
        'score': clamp_score(score, SCORE_MAX),
        'seo_fields_score': clamp_score(fields_score, FIELDS_SCORE_MAX),
        'issues': issues,
        'fields_issues': fields_issues,
        'metrics': metrics,
    }


def score_signals_with_overrides(signals, overrides, slug=None):
    """Re-score crawled signals as if the given fields (title, meta_description, ...) were applied."""
    merged = dict(signals or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    return score_signals(merged, slug=slug)
