"""
Proposed-field generation.

Two strategies share one contract, ``generate(context) -> GeneratedFields``:

- DeterministicStrategy: clamps the current fields to safe lengths.
- AIAssistedStrategy: asks OpenAI for rewritten fields and falls back to the
  deterministic strategy on any provider or contract failure.

The ruleset name picks the strategy through RULESET_STRATEGIES.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from ai.providers import AIProviderError, call_openai_json

logger = logging.getLogger(__name__)

ELLIPSIS = '…'
SEO_TITLE_MAX = 60
POST_TITLE_MAX = 70
META_MAX = 155
EXCERPT_MAX = 160
MAX_SITE_SAMPLES = 3
SAMPLE_MAX_CHARS = 800

KIND_DETERMINISTIC = 'deterministic'
KIND_OPENAI = 'openai'
KIND_FALLBACK = 'deterministic_fallback'

AI_REQUIRED_FIELDS = ('post_title', 'post_excerpt', 'meta_description', 'yoast_title', 'yoast_metadesc')


@dataclass
class GenerationContext:
    entity: dict
    signals: dict
    before_fields: dict
    ruleset: str = 'quick_boost'
    site_samples: list = field(default_factory=list)
    focus_keyword: Optional[str] = None


@dataclass
class GeneratedFields:
    core: dict
    seo: dict
    generator: dict
    ai_output: Optional[dict] = None


class ContractError(ValueError):
    pass


def clamp(text, max_len):
    """Trim and cut to max_len, marking truncation with an ellipsis."""
    s = (text or '').strip()
    if len(s) <= max_len:
        return s
    return s[:max_len - 1].rstrip() + ELLIPSIS


def pick_keyword(text):
    """Naive focus keyword: the first token of at least 4 letters."""
    t = re.sub(r'[^\w\s-]', ' ', (text or '').lower())
    for word in t.split():
        if len(word) >= 4:
            return word
    return None


def is_keyword_relevant(keyword, text):
    """A keyword is relevant when it, or its first 4+ char token, appears in text."""
    kw = (keyword or '').strip().lower()
    if not kw:
        return False
    haystack = (text or '').lower()
    if kw in haystack:
        return True
    main = next((w for w in kw.split() if len(w) >= 4), None)
    return bool(main and main in haystack)


def relevant_focus_keyword(context):
    """Entity or request keyword, dropped to None when it does not match the title."""
    entity = context.entity
    candidate = entity.get('focus_keyword') or context.focus_keyword
    source = entity.get('title') or context.signals.get('title') or ''
    return candidate if is_keyword_relevant(candidate, source) else None


class DeterministicStrategy:
    kind = KIND_DETERMINISTIC

    def generate(self, context):
        entity, signals = context.entity, context.signals

        base_title = (signals.get('title') or entity.get('title') or '').strip()
        base_meta = (signals.get('meta_description') or '').strip()
        seo_title = clamp(base_title, SEO_TITLE_MAX) or clamp(entity.get('title'), SEO_TITLE_MAX)
        meta = clamp(base_meta or entity.get('excerpt') or base_title, META_MAX)

        focus_keyword = relevant_focus_keyword(context)
        if focus_keyword is None:
            focus_keyword = pick_keyword(entity.get('title') or signals.get('title'))

        return GeneratedFields(
            core={
                'post_title': clamp(entity.get('title') or seo_title, POST_TITLE_MAX),
                'post_excerpt': clamp(entity.get('excerpt') or meta, EXCERPT_MAX),
            },
            seo={
                'title': seo_title,
                'meta_description': meta,
                # never lift an existing noindex
                'robots': signals.get('robots') or 'index,follow',
                'canonical': signals.get('canonical') or entity.get('canonical') or entity.get('permalink'),
                'focus_keyword': focus_keyword,
            },
            generator={'kind': self.kind},
        )


def build_prompt(context, focus_keyword):
    samples = [str(s)[:SAMPLE_MAX_CHARS] for s in (context.site_samples or [])[:MAX_SITE_SAMPLES]]
    sample_lines = '\n'.join(f'- sample_{i + 1}: {s}' for i, s in enumerate(samples)) or '- (none)'
    before = context.before_fields
    entity = context.entity

    system = '\n'.join([
        'You are an SEO editor for WordPress content.',
        'Propose improved SEO fields (post title, excerpt, meta description, Yoast title/metadesc, optional slug)',
        'that raise search quality without changing any fact.',
        '',
        'Rules:',
        '- Answer with one valid JSON object and nothing else.',
        '- Never invent facts: no specs, prices, guarantees, certifications or medical claims.',
        '- Write in the entity language and keep the brand voice inferred from the site samples.',
        '- Title 40-65 characters, meta description 120-170 characters.',
        '- Use the focus keyword naturally when one is given; no keyword stuffing.',
    ])
    user = '\n'.join([
        'CONTEXT',
        f"- language: {entity.get('lang') or 'en'}",
        f'- ruleset: {context.ruleset}',
        f"- focus_keyword: {focus_keyword or '(none)'}",
        '',
        'SITE WRITING SAMPLES (brand voice)',
        sample_lines,
        '',
        'CURRENT FIELDS',
        *(f'- {k}: {before.get(k) or ""}' for k in AI_REQUIRED_FIELDS + ('slug',)),
        '',
        'SOURCE (truth)',
        f"- source_title: {entity.get('title') or context.signals.get('title') or ''}",
        f"- source_excerpt: {entity.get('excerpt') or ''}",
        '',
        'Return JSON with top-level keys:',
        '- fields: {post_title, post_excerpt, meta_description, yoast_title, yoast_metadesc, slug?}',
        '- quality: {language, brand_voice, brand_voice_evidence}',
        '- notes: [max 3 strings]',
    ])
    return system, user


def validate_ai_fields(output):
    fields = output.get('fields') if isinstance(output, dict) else None
    if not isinstance(fields, dict):
        raise ContractError('missing fields object')
    for name in AI_REQUIRED_FIELDS:
        if not isinstance(fields.get(name), str):
            raise ContractError(f'fields.{name} must be a string')
    if fields.get('slug') is not None and not isinstance(fields['slug'], str):
        raise ContractError('fields.slug must be a string')
    return fields


class AIAssistedStrategy:
    kind = KIND_OPENAI

    def __init__(self, fallback=None):
        self.fallback = fallback or DeterministicStrategy()

    def generate(self, context):
        focus_keyword = relevant_focus_keyword(context)
        system, user = build_prompt(context, focus_keyword)
        temperature = 0.6 if context.ruleset == 'deep_boost' else 0.3
        try:
            result = call_openai_json(system, user, temperature=temperature)
            fields = validate_ai_fields(result['output'])
        except AIProviderError as e:
            return self._fall_back(context, e.code, e.message)
        except ContractError as e:
            return self._fall_back(context, 'openai_bad_contract', str(e))

        before, signals = context.before_fields, context.signals
        return GeneratedFields(
            core={
                'post_title': fields['post_title'].strip() or before.get('post_title') or '',
                'post_excerpt': fields['post_excerpt'].strip() or before.get('post_excerpt') or '',
            },
            seo={
                'title': (fields['yoast_title'] or fields['post_title']).strip() or signals.get('title') or '',
                'meta_description': (fields['yoast_metadesc'] or fields['meta_description']).strip()
                or signals.get('meta_description') or '',
                'robots': signals.get('robots') or None,
                'canonical': signals.get('canonical') or None,
                'focus_keyword': focus_keyword,
            },
            generator={'kind': self.kind, 'model': result['model'], 'timing_ms': result['timing_ms']},
            ai_output=result['output'],
        )

    def _fall_back(self, context, reason, message):
        logger.warning(
            "AI generation failed for wp_id=%s (%s: %s), using deterministic fallback",
            context.entity.get('wp_id'), reason, message,
        )
        generated = self.fallback.generate(context)
        generated.generator = {'kind': KIND_FALLBACK, 'reason': reason}
        return generated


DETERMINISTIC = DeterministicStrategy()
AI_ASSISTED = AIAssistedStrategy(fallback=DETERMINISTIC)

RULESET_STRATEGIES = {
    'quick': DETERMINISTIC,
    'quick_boost': DETERMINISTIC,
    'safe_boost': AI_ASSISTED,
    'deep_boost': AI_ASSISTED,
    'ai_boost': AI_ASSISTED,
}


def strategy_for_ruleset(ruleset):
    """Quick rulesets are deterministic; every other ruleset is AI-assisted."""
    return RULESET_STRATEGIES.get((ruleset or 'quick_boost').strip().lower(), AI_ASSISTED)


def generate(context):
    return strategy_for_ruleset(context.ruleset).generate(context)
