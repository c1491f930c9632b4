"""
Tests for engine app - crawler, scoring, diff, decision policy, generators
and the per-entity pipeline.
"""
import time
from types import SimpleNamespace
from unittest import mock

import httpx
import openai
import pytest
import requests
import responses

from engine import generators
from engine.crawler import CrawlTimeout, _read_body, crawl_public, decode_body, extract_signals, normalize_robots
from engine.diff import compute_diff
from engine.pipeline import build_apply_payload, process_entity, run_prepare
from engine.policy import PolicyInput, evaluate
from engine.scoring import FIELDS_SCORE_MAX, SCORE_MAX, score_signals, score_signals_with_overrides


LONG_TITLE = 'Handmade oak dining tables built to last for generations in our Vermont workshop'
GOOD_META = (
    'Solid oak tables made to order in Vermont. '
    'Free delivery across New England and a lifetime guarantee.'
)


def page_html(title='Oak dining tables | Vermont Woodworks', meta=GOOD_META, h1=('Oak dining tables',),
              canonical='https://shop.example.com/tables', robots=None, body='Our tables are built by hand.'):
    head = [f'<title>{title}</title>'] if title is not None else []
    if meta is not None:
        head.append(f'<meta name="description" content="{meta}">')
    if canonical:
        head.append(f'<link rel="canonical" href="{canonical}">')
    if robots:
        head.append(f'<meta name="robots" content="{robots}">')
    h1_html = ''.join(f'<h1>{h}</h1>' for h in h1)
    return (
        f"<html><head>{''.join(head)}</head>"
        f"<body>{h1_html}<p>{body}</p><script>var tracking = 1;</script></body></html>"
    )


def good_signals(**overrides):
    signals = {
        'title': 'Oak dining tables | Vermont Woodworks',
        'meta_description': GOOD_META,
        'canonical': 'https://shop.example.com/tables',
        'robots': 'index,follow',
        'h1': ['Oak dining tables'],
        'h1_count': 1,
        'text_len': 1200,
        'indexable': True,
    }
    signals.update(overrides)
    return signals


def make_entity(**overrides):
    entity = {
        'wp_id': 42,
        'lang': 'en',
        'entity_type': 'post',
        'post_type': 'product',
        'status': 'publish',
        'slug': 'oak-dining-tables',
        'permalink': 'https://shop.example.com/tables',
        'canonical': None,
        'title': 'Oak dining tables',
        'excerpt': 'Solid oak tables made to order.',
        'focus_keyword': None,
    }
    entity.update(overrides)
    return entity


def fake_crawl(signals=None, http_status=200):
    def _crawl(url):
        return {
            'url': url,
            'http_status': http_status,
            'timing_ms': 12,
            'redirects': 0,
            'signals': signals or good_signals(),
        }
    return _crawl


class TestExtractSignals:

    def test_extracts_head_and_body_signals(self):
        signals = extract_signals(page_html(), 200)

        assert signals['title'] == 'Oak dining tables | Vermont Woodworks'
        assert signals['meta_description'] == GOOD_META
        assert signals['canonical'] == 'https://shop.example.com/tables'
        assert signals['robots'] == 'index,follow'
        assert signals['h1'] == ['Oak dining tables']
        assert signals['h1_count'] == 1
        assert signals['indexable'] is True

    def test_script_text_is_not_counted(self):
        signals = extract_signals(page_html(h1=(), body='Hello'), 200)
        assert signals['text_len'] == len('Hello')

    def test_meta_name_is_case_insensitive(self):
        html = '<html><head><META NAME="Description" content="Upper case meta"></head></html>'
        assert extract_signals(html, 200)['meta_description'] == 'Upper case meta'

    def test_noindex_makes_page_not_indexable(self):
        signals = extract_signals(page_html(robots='noindex, follow'), 200)
        assert signals['robots'] == 'noindex,nofollow'
        assert signals['indexable'] is False

    def test_non_200_is_not_indexable(self):
        assert extract_signals(page_html(), 404)['indexable'] is False

    def test_missing_fields(self):
        signals = extract_signals('<html><body></body></html>', 200)
        assert signals['title'] == ''
        assert signals['meta_description'] == ''
        assert signals['canonical'] is None
        assert signals['h1_count'] == 0

    @pytest.mark.parametrize('value, expected', [
        (None, 'index,follow'),
        ('', 'index,follow'),
        ('nofollow', 'index,follow'),
        ('index, follow', 'index,follow'),
        ('NOINDEX', 'noindex,nofollow'),
        ('noindex,nofollow', 'noindex,nofollow'),
    ])
    def test_normalize_robots(self, value, expected):
        assert normalize_robots(value) == expected


class TestCrawlPublic:

    @responses.activate
    def test_sends_bot_headers(self, settings):
        settings.CRAWLER_USER_AGENT = 'TestBot/2.0'
        responses.add(responses.GET, 'https://shop.example.com/tables', body=page_html(),
                      status=200, content_type='text/html')

        result = crawl_public('https://shop.example.com/tables')

        assert result['http_status'] == 200
        assert result['redirects'] == 0
        assert result['signals']['title'] == 'Oak dining tables | Vermont Woodworks'
        sent = responses.calls[0].request
        assert sent.headers['User-Agent'] == 'TestBot/2.0'
        assert sent.headers['Accept'] == 'text/html,application/xhtml+xml'

    @responses.activate
    def test_follows_relative_redirect(self):
        responses.add(responses.GET, 'https://shop.example.com/old', status=301,
                      headers={'Location': '/tables'})
        responses.add(responses.GET, 'https://shop.example.com/tables', body=page_html(),
                      status=200, content_type='text/html')

        result = crawl_public('https://shop.example.com/old')

        assert result['url'] == 'https://shop.example.com/tables'
        assert result['http_status'] == 200
        assert result['redirects'] == 1

    @responses.activate
    def test_redirect_chain_stops_after_max_hops(self):
        # six same-origin 302s: /r0 -> /r1 -> ... -> /r6
        for i in range(6):
            responses.add(responses.GET, f'https://shop.example.com/r{i}', status=302,
                          headers={'Location': f'/r{i + 1}'}, body='')
        responses.add(responses.GET, 'https://shop.example.com/r6', body=page_html(), status=200,
                      content_type='text/html')

        result = crawl_public('https://shop.example.com/r0', max_redirects=5)

        assert result['url'] == 'https://shop.example.com/r5'
        assert result['http_status'] == 302
        assert result['redirects'] == 5
        assert len(responses.calls) == 6
        assert result['signals']['indexable'] is False

    @responses.activate
    def test_network_errors_propagate(self):
        responses.add(responses.GET, 'https://shop.example.com/down',
                      body=requests.exceptions.ConnectionError('connection refused'))

        with pytest.raises(requests.RequestException):
            crawl_public('https://shop.example.com/down')

    @responses.activate
    def test_utf8_page_without_header_charset(self):
        body = '<html><head><meta charset="utf-8"><title>Café crème</title></head><body><h1>Été</h1></body></html>'
        responses.add(responses.GET, 'https://shop.example.fr/cafe', body=body.encode('utf-8'),
                      status=200, content_type='text/html')

        signals = crawl_public('https://shop.example.fr/cafe')['signals']

        assert signals['title'] == 'Café crème'
        assert signals['h1'] == ['Été']

    @responses.activate
    def test_utf8_page_without_any_declared_charset(self):
        body = '<html><head><title>Crêpes maison</title></head></html>'
        responses.add(responses.GET, 'https://shop.example.fr/crepes', body=body.encode('utf-8'),
                      status=200, content_type='text/html')

        assert crawl_public('https://shop.example.fr/crepes')['signals']['title'] == 'Crêpes maison'

    @responses.activate
    def test_header_charset_is_honoured(self):
        body = '<html><head><title>Pâtisserie</title></head></html>'
        responses.add(responses.GET, 'https://shop.example.fr/patisserie', body=body.encode('iso-8859-1'),
                      status=200, content_type='text/html; charset=ISO-8859-1')

        assert crawl_public('https://shop.example.fr/patisserie')['signals']['title'] == 'Pâtisserie'

    @responses.activate
    def test_unknown_header_charset_does_not_raise(self):
        body = '<html><head><title>Bientôt</title></head></html>'
        responses.add(responses.GET, 'https://shop.example.fr/soon', body=body.encode('utf-8'),
                      status=200, content_type='text/html; charset=utf8mb4')

        assert crawl_public('https://shop.example.fr/soon')['signals']['title'] == 'Bientôt'

    def test_decode_body_falls_back_to_windows_1252(self):
        assert decode_body('Déjà vu'.encode('cp1252')) == 'Déjà vu'
        assert decode_body(b'<meta charset="x-made-up">ok') == '<meta charset="x-made-up">ok'

    def test_no_request_once_deadline_has_passed(self):
        session = mock.Mock()
        with pytest.raises(CrawlTimeout):
            crawl_public('https://shop.example.com/tables', session=session, timeout=0)
        session.get.assert_not_called()

    def test_slow_body_hits_the_same_deadline(self):
        response = mock.Mock(url='https://shop.example.com/slow', headers={})
        response.iter_content.return_value = iter([b'<html>', b'<body>'])

        with pytest.raises(CrawlTimeout):
            _read_body(response, deadline=time.monotonic() - 1)

    def test_body_deadline_covers_redirected_fetch(self):
        redirect = mock.Mock(status_code=301, headers={'Location': '/slow'})
        slow = mock.Mock(status_code=200, headers={'Content-Type': 'text/html'}, url='https://shop.example.com/slow')

        def trickle(chunk_size):
            yield b'<html>'
            time.sleep(0.6)
            yield b'</html>'

        slow.iter_content.side_effect = trickle
        session = mock.Mock()
        session.get.side_effect = [redirect, slow]

        with pytest.raises(CrawlTimeout):
            crawl_public('https://shop.example.com/old', session=session, timeout=0.3)
        assert session.get.call_count == 2
        assert session.get.call_args.kwargs['timeout'] <= 0.3


class TestScoring:

    def test_perfect_page(self):
        result = score_signals(good_signals())
        assert result['score'] == SCORE_MAX
        assert result['seo_fields_score'] == FIELDS_SCORE_MAX
        assert result['issues'] == []
        assert result['fields_issues'] == []

    def test_empty_signals_clamp_at_zero(self):
        result = score_signals({})
        assert result['score'] == 0
        # not_indexable 6, title 4, meta 4, h1 2, canonical 1
        assert result['seo_fields_score'] == 3
        codes = {i['code'] for i in result['fields_issues']}
        assert codes == {'not_indexable', 'title_missing', 'meta_missing', 'h1_missing', 'canonical_missing'}

    def test_is_pure(self):
        signals = good_signals(title='Hello world', h1=['A', 'B'], h1_count=2)
        first = score_signals(signals, slug='')
        second = score_signals(signals, slug='')
        assert first == second

    @pytest.mark.parametrize('signals', [
        {},
        {'indexable': False, 'title': 'x' * 300, 'meta_description': 'y' * 400, 'h1': ['Lorem ipsum'] * 5},
        good_signals(),
        good_signals(title='Sample Page', meta_description='Sample Page', canonical=None),
        good_signals(meta_description='short', h1=[], h1_count=0),
    ])
    def test_scores_stay_in_range(self, signals):
        result = score_signals(signals, slug='')
        assert 0 <= result['score'] <= 100
        assert 0 <= result['seo_fields_score'] <= 20

    def test_title_length_penalties(self):
        too_long = score_signals(good_signals(title=LONG_TITLE))
        too_short = score_signals(good_signals(title='Tables'))
        assert [i['code'] for i in too_long['fields_issues']] == ['title_too_long']
        assert [i['code'] for i in too_short['fields_issues']] == ['title_too_short']

    def test_placeholder_title(self):
        result = score_signals(good_signals(title='Hello world! Welcome to our shop'))
        assert 'title_placeholder' in {i['code'] for i in result['issues']}

    def test_title_equals_meta_only_affects_fields_score(self):
        text = 'Oak dining tables made to order in Vermont with free delivery and a lifetime guarantee'
        result = score_signals(good_signals(title=text, meta_description=text))
        assert 'title_equals_meta' in {i['code'] for i in result['fields_issues']}
        assert 'title_equals_meta' not in {i['code'] for i in result['issues']}

    def test_slug_missing_only_when_slug_given(self):
        assert score_signals(good_signals())['seo_fields_score'] == 20
        assert score_signals(good_signals(), slug='')['seo_fields_score'] == 19
        assert score_signals(good_signals(), slug='oak-tables')['seo_fields_score'] == 20

    def test_overrides_rescore(self):
        signals = good_signals(title=LONG_TITLE)
        before = score_signals(signals)
        after = score_signals_with_overrides(signals, {'title': 'Oak dining tables | Vermont', 'meta_description': None})
        assert after['seo_fields_score'] > before['seo_fields_score']
        assert after['metrics']['meta_len'] == len(GOOD_META)
        assert signals['title'] == LONG_TITLE


class TestComputeDiff:

    def test_classifies_every_key(self):
        before = {'title': 'Old', 'meta': 'Same', 'robots': 'index,follow'}
        after = {'title': 'New', 'meta': 'Same', 'canonical': 'https://x.test/'}
        assert compute_diff(before, after) == {
            'title': 'changed',
            'meta': 'unchanged',
            'robots': 'removed',
            'canonical': 'added',
        }

    def test_none_value_counts_as_present(self):
        assert compute_diff({'slug': None}, {'slug': None}) == {'slug': 'unchanged'}
        assert compute_diff({}, {'slug': None}) == {'slug': 'added'}

    def test_structured_values_compare_by_content(self):
        assert compute_diff({'h1': {'a': 1, 'b': 2}}, {'h1': {'b': 2, 'a': 1}}) == {'h1': 'unchanged'}


class TestDecisionPolicy:

    def policy_input(self, **overrides):
        values = {
            'entity_type': 'post',
            'status': 'publish',
            'http_status': 200,
            'seo_fields_score_before': 5,
            'score_before': 5,
            'score_after': 15,
        }
        values.update(overrides)
        return PolicyInput(**values)

    def test_unpublished_wins_over_score_rules(self):
        decision = evaluate(self.policy_input(status='draft', seo_fields_score_before=5, score_after=5))
        assert decision.action == 'skip'
        assert decision.reason == 'not_published'

    def test_variation_is_checked_first(self):
        decision = evaluate(self.policy_input(entity_type='variation', status='draft', http_status=500))
        assert decision.reason == 'variation_policy'

    def test_http_not_200(self):
        assert evaluate(self.policy_input(http_status=301)).reason == 'http_not_200'

    def test_frozen_score(self):
        decision = evaluate(self.policy_input(seo_fields_score_before=20, score_before=20, score_after=20))
        assert decision.action == 'skip'
        assert decision.reason == 'frozen_score'
        assert decision.risk == 'none'

    def test_delta_below_threshold(self):
        decision = evaluate(self.policy_input(seo_fields_score_before=10, score_before=10, score_after=10))
        assert decision.reason == 'delta_below_threshold'

    def test_allow_path(self):
        decision = evaluate(self.policy_input())
        assert decision.as_dict() == {'action': 'update', 'risk': 'low', 'reason': 'policy_pass'}
        assert decision.allowed is True

    def test_thresholds_come_from_settings(self, settings):
        settings.OPTIMIZATION_FREEZE_SCORE = 15
        settings.OPTIMIZATION_MIN_DELTA = 5
        assert evaluate(self.policy_input(seo_fields_score_before=16)).reason == 'frozen_score'
        assert evaluate(self.policy_input(score_before=5, score_after=8)).reason == 'delta_below_threshold'

    def test_explicit_thresholds_override_settings(self):
        assert evaluate(self.policy_input(seo_fields_score_before=12), freeze_score=10).reason == 'frozen_score'


def make_context(ruleset='quick_boost', **entity_overrides):
    entity = make_entity(**entity_overrides)
    signals = good_signals(title=LONG_TITLE)
    before_fields = {
        'post_title': entity['title'],
        'post_excerpt': entity['excerpt'],
        'meta_description': signals['meta_description'],
        'yoast_title': signals['title'],
        'yoast_metadesc': signals['meta_description'],
        'slug': entity['slug'],
    }
    return generators.GenerationContext(
        entity=entity,
        signals=signals,
        before_fields=before_fields,
        ruleset=ruleset,
        site_samples=['We build furniture the slow way.'],
    )


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


AI_FIELDS = {
    'fields': {
        'post_title': 'Oak Dining Tables',
        'post_excerpt': 'Made to order in Vermont.',
        'meta_description': 'Solid oak dining tables made to order in Vermont, delivered across New England.',
        'yoast_title': 'Oak Dining Tables Made in Vermont',
        'yoast_metadesc': 'Solid oak dining tables made to order in Vermont, delivered across New England.',
    },
    'quality': {'language': 'en'},
    'notes': [],
}


class TestGenerators:

    def test_clamp(self):
        assert generators.clamp('  short  ', 10) == 'short'
        clamped = generators.clamp('x' * 100, 60)
        assert len(clamped) == 60
        assert clamped.endswith('…')

    def test_pick_keyword(self):
        assert generators.pick_keyword('The oak tables, handmade') == 'tables'
        assert generators.pick_keyword('An ox') is None

    def test_keyword_relevance(self):
        assert generators.is_keyword_relevant('oak tables', 'Handmade oak tables') is True
        assert generators.is_keyword_relevant('dining chairs', 'Oak dining tables') is False
        assert generators.is_keyword_relevant('tables for sale', 'Oak dining tables') is True
        assert generators.is_keyword_relevant('', 'anything') is False

    def test_deterministic_output(self):
        generated = generators.DETERMINISTIC.generate(make_context())
        assert generated.generator == {'kind': 'deterministic'}
        assert len(generated.seo['title']) <= 60
        assert generated.seo['title'].endswith('…')
        assert generated.seo['meta_description'] == GOOD_META
        assert generated.seo['robots'] == 'index,follow'
        assert generated.seo['canonical'] == 'https://shop.example.com/tables'
        assert generated.core['post_title'] == 'Oak dining tables'

    def test_deterministic_keeps_noindex(self):
        context = make_context()
        context.signals['robots'] = 'noindex,nofollow'
        assert generators.DETERMINISTIC.generate(context).seo['robots'] == 'noindex,nofollow'

    def test_irrelevant_focus_keyword_falls_back_to_title_token(self):
        context = make_context(focus_keyword='garden chairs')
        generated = generators.DETERMINISTIC.generate(context)
        assert generated.seo['focus_keyword'] == 'dining'

    def test_ruleset_mapping(self):
        assert generators.strategy_for_ruleset('quick_boost') is generators.DETERMINISTIC
        assert generators.strategy_for_ruleset('deep_boost') is generators.AI_ASSISTED
        assert generators.strategy_for_ruleset('something_new') is generators.AI_ASSISTED

    def test_prompt_uses_at_most_three_samples(self):
        context = make_context(ruleset='safe_boost')
        context.site_samples = ['s' * 2000, 'two', 'three', 'four']
        _, user = generators.build_prompt(context, None)
        assert 'sample_3' in user
        assert 'sample_4' not in user
        assert 's' * 801 not in user

    def test_missing_key_falls_back_to_deterministic(self, settings):
        settings.OPENAI_API_KEY = ''
        context = make_context(ruleset='safe_boost')

        generated = generators.generate(context)
        expected = generators.DETERMINISTIC.generate(make_context(ruleset='safe_boost'))

        assert generated.generator == {'kind': 'deterministic_fallback', 'reason': 'openai_missing_key'}
        assert generated.core == expected.core
        assert generated.seo == expected.seo

    def test_timeout_falls_back_to_deterministic(self, settings):
        settings.OPENAI_API_KEY = 'sk-test'
        request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
        with mock.patch('ai.providers.openai.OpenAI') as client_cls:
            client_cls.return_value.chat.completions.create.side_effect = openai.APITimeoutError(request=request)
            generated = generators.generate(make_context(ruleset='deep_boost'))

        expected = generators.DETERMINISTIC.generate(make_context(ruleset='deep_boost'))
        assert generated.generator == {'kind': 'deterministic_fallback', 'reason': 'openai_timeout'}
        assert (generated.core, generated.seo) == (expected.core, expected.seo)

    def test_http_error_falls_back_to_deterministic(self, settings):
        settings.OPENAI_API_KEY = 'sk-test'
        request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
        error = openai.InternalServerError('upstream unavailable',
                                           response=httpx.Response(503, request=request), body=None)
        with mock.patch('ai.providers.openai.OpenAI') as client_cls:
            client_cls.return_value.chat.completions.create.side_effect = error
            generated = generators.generate(make_context(ruleset='safe_boost'))

        expected = generators.DETERMINISTIC.generate(make_context(ruleset='safe_boost'))
        assert generated.generator == {'kind': 'deterministic_fallback', 'reason': 'openai_http_error'}
        assert (generated.core, generated.seo) == (expected.core, expected.seo)

    def test_malformed_output_falls_back(self, settings):
        settings.OPENAI_API_KEY = 'sk-test'
        with mock.patch('ai.providers.openai.OpenAI') as client_cls:
            client_cls.return_value.chat.completions.create.return_value = completion('{"fields": {"post_title": 3}}')
            generated = generators.generate(make_context(ruleset='safe_boost'))
        assert generated.generator == {'kind': 'deterministic_fallback', 'reason': 'openai_bad_contract'}

    def test_non_json_output_falls_back(self, settings):
        settings.OPENAI_API_KEY = 'sk-test'
        with mock.patch('ai.providers.openai.OpenAI') as client_cls:
            client_cls.return_value.chat.completions.create.return_value = completion('Sure! Here are your fields')
            generated = generators.generate(make_context(ruleset='safe_boost'))
        assert generated.generator['reason'] == 'openai_bad_json'

    def test_ai_success(self, settings):
        import json
        settings.OPENAI_API_KEY = 'sk-test'
        settings.OPENAI_MODEL = 'gpt-test'
        with mock.patch('ai.providers.openai.OpenAI') as client_cls:
            create = client_cls.return_value.chat.completions.create
            create.return_value = completion('```json\n' + json.dumps(AI_FIELDS) + '\n```')
            generated = generators.generate(make_context(ruleset='deep_boost'))

        assert generated.generator['kind'] == 'openai'
        assert generated.generator['model'] == 'gpt-test'
        assert generated.seo['title'] == 'Oak Dining Tables Made in Vermont'
        assert generated.core['post_excerpt'] == 'Made to order in Vermont.'
        assert create.call_args.kwargs['temperature'] == 0.6
        assert create.call_args.kwargs['response_format'] == {'type': 'json_object'}


class TestPipeline:

    def test_allowed_update_for_overlong_title(self):
        crawl = fake_crawl(good_signals(title=LONG_TITLE))
        result = process_entity(make_entity(), 'quick_boost', crawl=crawl)

        assert result['decision'] == {'action': 'update', 'risk': 'low', 'reason': 'policy_pass'}
        assert result['apply']['allowed'] is True
        seo_score = result['apply']['seo_score']
        assert seo_score['before'] == 18
        assert seo_score['after'] == 20
        assert seo_score['delta'] == 2
        assert result['diff']['seo']['title'] == 'changed'
        assert result['diff']['seo']['meta_description'] == 'unchanged'
        fields = result['apply']['update']['fields']['apply_fields']
        assert fields['yoast_title'] == result['after']['seo']['title']
        assert fields['slug'] == 'oak-dining-tables'
        assert result['apply']['engine'] == {'kind': 'deterministic'}

    def test_good_page_is_frozen(self):
        result = process_entity(make_entity(), 'quick_boost', crawl=fake_crawl())
        assert result['decision']['reason'] == 'frozen_score'
        assert result['apply']['allowed'] is False
        assert result['apply']['update'] is None

    def test_draft_reports_not_published(self):
        crawl = fake_crawl(good_signals(title=LONG_TITLE))
        result = process_entity(make_entity(status='draft'), 'quick_boost', crawl=crawl)
        assert result['decision']['reason'] == 'not_published'

    def test_crawl_failure_becomes_skip_result(self):
        def broken(url):
            raise requests.ConnectionError('connection refused')

        result = process_entity(make_entity(), 'quick_boost', crawl=broken)

        assert result['decision'] == {'action': 'skip', 'risk': 'none', 'reason': 'crawl_failed'}
        assert result['public_source']['http_status'] == 0
        assert 'connection refused' in result['public_source']['error']
        assert result['apply']['allowed'] is False

    def test_run_prepare_isolates_failures_and_reports_progress(self):
        def crawl(url):
            if url.endswith('/broken'):
                raise requests.Timeout('timed out')
            return fake_crawl(good_signals(title=LONG_TITLE))(url)

        inventory = [
            make_entity(wp_id=1, permalink='https://shop.example.com/a'),
            make_entity(wp_id=2, permalink='https://shop.example.com/broken'),
            make_entity(wp_id=3, permalink='https://shop.example.com/c'),
        ]
        progress = []
        seen = []

        results = run_prepare(inventory, 'quick_boost', crawl=crawl,
                              on_progress=lambda done, total: progress.append((done, total)),
                              on_result=lambda r: seen.append(r['wp_id']))

        assert [r['wp_id'] for r in results] == [1, 2, 3]
        assert results[1]['decision']['reason'] == 'crawl_failed'
        assert results[2]['decision']['reason'] == 'policy_pass'
        assert progress == [(1, 3), (2, 3), (3, 3)]
        assert seen == [1, 2, 3]

    def test_any_crawl_error_is_isolated(self):
        def broken(url):
            raise LookupError('unknown encoding: utf8mb4')

        result = process_entity(make_entity(), 'quick_boost', crawl=broken)

        assert result['decision']['reason'] == 'crawl_failed'
        assert 'utf8mb4' in result['public_source']['error']

    @responses.activate
    def test_bogus_charset_page_does_not_abort_batch(self):
        responses.add(responses.GET, 'https://shop.example.com/a', body=page_html(title=LONG_TITLE).encode('utf-8'),
                      status=200, content_type='text/html; charset=utf8mb4')
        responses.add(responses.GET, 'https://shop.example.com/b', body=page_html(title=LONG_TITLE),
                      status=200, content_type='text/html; charset=utf-8')
        inventory = [
            make_entity(wp_id=1, permalink='https://shop.example.com/a'),
            make_entity(wp_id=2, permalink='https://shop.example.com/b'),
        ]

        results = run_prepare(inventory, 'quick_boost')

        assert [r['wp_id'] for r in results] == [1, 2]
        assert [r['public_source']['http_status'] for r in results] == [200, 200]
        assert results[0]['public_source']['signals']['title'] == LONG_TITLE
        assert results[0]['decision']['reason'] != 'crawl_failed'

    def test_build_apply_payload_summary(self):
        results = [
            process_entity(make_entity(wp_id=1), 'quick_boost', crawl=fake_crawl(good_signals(title=LONG_TITLE))),
            process_entity(make_entity(wp_id=2), 'quick_boost', crawl=fake_crawl()),
        ]
        payload = build_apply_payload('https://shop.example.com', 'quick_boost', 'exec_1_abcd', results)
        assert payload['ok'] is True
        assert payload['execution']['execution_id'] == 'exec_1_abcd'
        assert payload['summary'] == {'items_total': 2, 'items_allowed': 1, 'items_skipped': 1}
