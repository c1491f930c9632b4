"""
Per-entity optimization pipeline.

``process_entity`` runs one entity through crawl -> score -> generate -> diff
-> estimate -> decide and returns a result record. ``iter_prepare`` drives it
sequentially over a batch and yields one Step per entity; ``run_prepare``
consumes the steps and reports progress and results through callbacks.

Entities are processed one at a time so a batch never crawls the target
site or calls the generation service concurrently.
"""
import logging
from dataclasses import dataclass

from . import generators
from .crawler import crawl_public
from .diff import compute_diff
from .policy import PolicyInput, evaluate
from .scoring import score_signals, score_signals_with_overrides

logger = logging.getLogger(__name__)


@dataclass
class Step:
    result: dict
    completed: int
    total: int


def _identity(entity):
    return {
        'wp_id': entity.get('wp_id'),
        'lang': entity.get('lang'),
        'entity_type': entity.get('entity_type'),
        'post_type': entity.get('post_type'),
        'status': entity.get('status'),
    }


def crawl_failed_result(entity, error):
    return {
        **_identity(entity),
        'public_source': {'url': entity.get('permalink'), 'http_status': 0, 'error': str(error)},
        'before': None,
        'after': None,
        'diff': None,
        'decision': {'action': 'skip', 'risk': 'none', 'reason': 'crawl_failed'},
        'apply': {'allowed': False, 'reason': 'crawl_failed', 'update': None},
    }


def build_before(entity, signals, scan):
    return {
        'core': {
            'post_title': entity.get('title') or signals.get('title') or None,
            'post_excerpt': entity.get('excerpt') or None,
        },
        'seo': {
            'title': signals.get('title') or None,
            'meta_description': signals.get('meta_description') or None,
            'robots': signals.get('robots') or None,
            'canonical': signals.get('canonical') or None,
        },
        'scan': scan,
    }


def build_before_fields(entity, before):
    """Flat field map the generators see as the current state."""
    return {
        'post_title': before['core']['post_title'] or '',
        'post_excerpt': before['core']['post_excerpt'] or '',
        'meta_description': before['seo']['meta_description'] or '',
        'yoast_title': before['seo']['title'] or '',
        'yoast_metadesc': before['seo']['meta_description'] or '',
        'slug': entity.get('slug') or '',
    }


def process_entity(entity, ruleset, site_samples=None, focus_keyword=None, crawl=None):
    """Run one entity through the pipeline; any crawl or parse error becomes a crawl_failed result."""
    crawl = crawl or crawl_public
    url = entity.get('permalink')
    try:
        page = crawl(url)
    except Exception as e:
        logger.warning("Crawl failed for wp_id=%s url=%s: %s", entity.get('wp_id'), url, e)
        return crawl_failed_result(entity, e)

    signals = page['signals']
    slug = entity.get('slug') or ''
    scan = score_signals(signals, slug=slug)
    before = build_before(entity, signals, scan)

    context = generators.GenerationContext(
        entity=entity,
        signals=signals,
        before_fields=build_before_fields(entity, before),
        ruleset=ruleset,
        site_samples=list(site_samples or []),
        focus_keyword=focus_keyword,
    )
    generated = generators.generate(context)
    after = {'core': generated.core, 'seo': generated.seo}

    diff = {
        'core': compute_diff(before['core'], after['core']),
        'seo': compute_diff(before['seo'], after['seo']),
    }

    estimate = score_signals_with_overrides(signals, {
        'title': after['seo'].get('title'),
        'meta_description': after['seo'].get('meta_description'),
    }, slug=slug)

    score_before = scan['seo_fields_score']
    score_after = estimate['seo_fields_score']
    decision = evaluate(PolicyInput(
        entity_type=entity.get('entity_type'),
        status=entity.get('status'),
        http_status=page['http_status'],
        seo_fields_score_before=score_before,
        score_before=score_before,
        score_after=score_after,
    ))

    update = None
    if decision.allowed:
        update = {
            'connector_target': 'auto',
            'fields': {
                'core': after['core'],
                'seo': after['seo'],
                'apply_fields': {
                    'post_title': after['core'].get('post_title') or None,
                    'post_excerpt': after['core'].get('post_excerpt') or None,
                    'meta_description': after['seo'].get('meta_description') or None,
                    'yoast_title': after['seo'].get('title') or None,
                    'yoast_metadesc': after['seo'].get('meta_description') or None,
                    'slug': entity.get('slug') or None,
                },
            },
        }

    return {
        **_identity(entity),
        'public_source': {
            'url': page['url'],
            'http_status': page['http_status'],
            'timing_ms': page['timing_ms'],
            'signals': signals,
        },
        'before': before,
        'after': after,
        'diff': diff,
        'decision': decision.as_dict(),
        'apply': {
            'allowed': decision.allowed,
            'reason': decision.reason,
            'seo_score': {
                'before': score_before,
                'after': score_after,
                'delta': score_after - score_before,
                'scan_before': scan['score'],
                'scan_after': estimate['score'],
            },
            'engine': generated.generator,
            'update': update,
        },
    }


def iter_prepare(inventory, ruleset, site_samples=None, focus_keyword=None, crawl=None):
    """Yield one Step per entity, in inventory order."""
    total = len(inventory)
    for index, entity in enumerate(inventory):
        result = process_entity(entity, ruleset, site_samples=site_samples,
                                focus_keyword=focus_keyword, crawl=crawl)
        yield Step(result=result, completed=index + 1, total=total)


def run_prepare(inventory, ruleset, site_samples=None, focus_keyword=None,
                on_progress=None, on_result=None, crawl=None):
    """Process a batch and return the list of result records."""
    results = []
    for step in iter_prepare(inventory, ruleset, site_samples=site_samples,
                             focus_keyword=focus_keyword, crawl=crawl):
        results.append(step.result)
        if on_result:
            on_result(step.result)
        if on_progress:
            on_progress(step.completed, step.total)
    return results


def build_apply_payload(site_url, ruleset, execution_id, results, created_at=None):
    """Response body for a finished prepare run."""
    allowed = sum(1 for r in results if (r.get('apply') or {}).get('allowed'))
    return {
        'ok': True,
        'execution': {
            'execution_id': execution_id,
            'site_url': site_url,
            'ruleset': ruleset,
            'created_at': created_at,
        },
        'summary': {
            'items_total': len(results),
            'items_allowed': allowed,
            'items_skipped': len(results) - allowed,
        },
        'results': results,
    }
