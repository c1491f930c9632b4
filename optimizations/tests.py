"""
Tests for optimizations app - execution lifecycle, prepare/poll endpoints,
worker consumer, apply recorder and public crawl scans.
"""
from datetime import timedelta
from unittest import mock

import pytest
import requests
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from optimizations import executions
from optimizations.models import (
    ApplyBatch, ApplyItem, OptimizationExecution, OptimizationResult, ScanJob, ScanResult,
)


LONG_TITLE = 'Handmade oak dining tables built to last for generations in our Vermont workshop'
GOOD_META = (
    'Solid oak tables made to order in Vermont. '
    'Free delivery across New England and a lifetime guarantee.'
)


def signals_for(url, title=LONG_TITLE):
    return {
        'title': title,
        'meta_description': GOOD_META,
        'canonical': url,
        'robots': 'index,follow',
        'h1': ['Oak dining tables'],
        'h1_count': 1,
        'text_len': 900,
        'indexable': True,
    }


def fake_crawl(url):
    if url.endswith('/broken'):
        raise requests.ConnectionError('connection refused')
    return {'url': url, 'http_status': 200, 'timing_ms': 5, 'redirects': 0, 'signals': signals_for(url)}


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def create_site(create_user):
    def _create_site(user=None, name="Test Site", url="https://shop.example.com"):
        from sites.models import Site
        if user is None:
            user = create_user()
        return Site.objects.create(user=user, name=name, url=url)
    return _create_site


@pytest.fixture
def create_api_key(create_site):
    def _create_api_key(site=None, name="Test Key"):
        from sites.models import APIKey
        if site is None:
            site = create_site()
        full_key, key_prefix, key_hash = APIKey.generate_key()
        api_key = APIKey.objects.create(
            site=site,
            name=name,
            key_hash=key_hash,
            key_prefix=key_prefix
        )
        return api_key, full_key
    return _create_api_key


@pytest.fixture
def api_key_client(api_client, create_api_key):
    api_key, full_key = create_api_key()
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {full_key}')
    return api_client, api_key


@pytest.fixture
def create_entities():
    def _create_entities(site, count=3, **overrides):
        from sites.models import InventoryEntity
        entities = []
        for i in range(1, count + 1):
            values = {
                'site': site,
                'wp_id': i,
                'lang': 'en',
                'entity_type': 'post',
                'status': 'publish',
                'slug': f'post-{i}',
                'permalink': f'{site.url}/post-{i}',
                'title': f'Oak dining tables {i}',
                'excerpt': 'Solid oak tables made to order.',
            }
            values.update(overrides)
            entities.append(InventoryEntity.objects.create(**values))
        return entities
    return _create_entities


@pytest.fixture
def crawl():
    with mock.patch('engine.pipeline.crawl_public', side_effect=fake_crawl) as patched:
        yield patched


def make_queued_execution(site, ruleset='quick_boost', age_seconds=0):
    execution = executions.create_execution(
        site, ruleset, {'site_url': site.url, 'ruleset': ruleset, 'scope': {}, 'filters': {}},
        run_async=True,
    )
    if age_seconds:
        OptimizationExecution.objects.filter(pk=execution.pk).update(
            created_at=timezone.now() - timedelta(seconds=age_seconds),
        )
        execution.refresh_from_db()
    return execution


class TestProgressPercent:

    @pytest.mark.parametrize('done, total, expected', [
        (0, 10, 1),
        (1, 10, 9),
        (5, 10, 47),
        (10, 10, 95),
        (1, 1, 95),
        (3, 0, 1),
    ])
    def test_clamped_between_1_and_99(self, done, total, expected):
        assert executions.progress_percent(done, total) == expected

    def test_large_batches_never_reach_100(self):
        assert max(executions.progress_percent(i, 1000) for i in range(1001)) <= 99


@pytest.mark.django_db
class TestLifecycle:

    def test_execution_id_format(self):
        execution_id = executions.make_execution_id()
        prefix, ts, rand = execution_id.split('_')
        assert prefix == 'exec'
        assert ts.isdigit()
        assert len(rand) == 8

    def test_created_state_depends_on_mode(self, create_site):
        site = create_site()
        queued = executions.create_execution(site, 'safe_boost', {}, run_async=True)
        running = executions.create_execution(site, 'quick_boost', {}, run_async=False)
        assert (queued.status, queued.progress, queued.started_at) == ('queued', 0, None)
        assert (running.status, running.progress) == ('running', 1)
        assert running.started_at is not None

    def test_progress_never_goes_backwards(self, create_site):
        execution = executions.create_execution(create_site(), 'quick_boost', {}, run_async=False)
        executions.set_progress(execution, 5, 10)
        executions.set_progress(execution, 2, 10)
        execution.refresh_from_db()
        assert execution.progress == 47

    def test_terminal_states_are_final(self, create_site):
        execution = executions.create_execution(create_site(), 'quick_boost', {}, run_async=False)
        assert executions.mark_done(execution, {'summary': {'items_total': 0}}) is True
        assert executions.mark_failed(execution, 'execution_failed', 'late failure') is False
        assert executions.claim_running(execution) is False
        execution.refresh_from_db()
        assert execution.status == 'done'
        assert execution.progress == 100
        assert execution.error_payload is None

    def test_claim_running_only_once(self, create_site):
        execution = make_queued_execution(create_site())
        assert executions.claim_running(execution) is True
        assert executions.claim_running(execution) is False
        assert execution.status == 'running'

    def test_should_run_async(self, settings):
        settings.OPTIMIZATION_SYNC_LIMIT = 50
        settings.OPTIMIZATION_FORCE_ASYNC = False
        assert executions.should_run_async('quick_boost', 10) is False
        assert executions.should_run_async('quick_boost', 51) is True
        assert executions.should_run_async('safe_boost', 1) is True
        settings.OPTIMIZATION_FORCE_ASYNC = True
        assert executions.should_run_async('quick_boost', 1) is True


@pytest.mark.django_db
class TestPrepareEndpoint:

    def test_requires_api_key(self, api_client):
        response = api_client.post('/api/v2/optimizations/prepare', {}, format='json')
        assert response.status_code == 401

    def test_invalid_payload(self, api_key_client):
        client, api_key = api_key_client
        response = client.post('/api/v2/optimizations/prepare', {'ruleset': 'quick_boost'}, format='json')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'invalid_payload'
        assert 'site_url' in response.data['error']['detail']

    def test_unknown_site(self, api_key_client):
        client, api_key = api_key_client
        response = client.post('/api/v2/optimizations/prepare', {
            'site_url': 'https://other.example.com',
        }, format='json')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'site_not_found'

    def test_inline_run_returns_full_result(self, api_key_client, create_entities, crawl):
        client, api_key = api_key_client
        create_entities(api_key.site, count=3)

        response = client.post('/api/v2/optimizations/prepare', {
            'site_url': 'https://shop.example.com/',
            'ruleset': 'quick_boost',
        }, format='json')

        assert response.status_code == 200
        assert response.data['status'] == 'done'
        assert response.data['progress'] == 100
        assert response.data['summary'] == {'items_total': 3, 'items_allowed': 3, 'items_skipped': 0}
        execution = OptimizationExecution.objects.get(execution_id=response.data['execution_id'])
        assert execution.result_payload['summary']['items_total'] == 3
        assert execution.results.count() == 3
        assert crawl.call_count == 3

    def test_inline_progress_is_monotonic(self, api_key_client, create_entities):
        client, api_key = api_key_client
        create_entities(api_key.site, count=5)
        readings = []

        def observing_crawl(url):
            execution = OptimizationExecution.objects.get()
            readings.append((execution.status, execution.progress))
            return fake_crawl(url)

        with mock.patch('engine.pipeline.crawl_public', side_effect=observing_crawl):
            response = client.post('/api/v2/optimizations/prepare', {
                'site_url': 'https://shop.example.com', 'ruleset': 'quick_boost',
            }, format='json')

        execution = OptimizationExecution.objects.get()
        readings.append((execution.status, execution.progress))
        progress = [p for _, p in readings]

        assert response.status_code == 200
        assert progress == sorted(progress)
        assert all(status == 'running' and 1 <= p <= 99 for status, p in readings[:-1])
        assert readings[-1] == ('done', 100)

    def test_crawl_failure_does_not_abort_batch(self, api_key_client, create_entities, crawl):
        from sites.models import InventoryEntity
        client, api_key = api_key_client
        create_entities(api_key.site, count=3)
        InventoryEntity.objects.filter(wp_id=2).update(permalink='https://shop.example.com/broken')

        response = client.post('/api/v2/optimizations/prepare', {
            'site_url': 'https://shop.example.com', 'ruleset': 'quick_boost',
        }, format='json')

        assert response.status_code == 200
        reasons = {r['wp_id']: r['decision']['reason'] for r in response.data['results']}
        assert reasons == {1: 'policy_pass', 2: 'crawl_failed', 3: 'policy_pass'}
        stored = OptimizationResult.objects.get(wp_id=2)
        assert stored.decision['reason'] == 'crawl_failed'

    def test_focus_keyword_and_filters_are_applied(self, api_key_client, create_entities, crawl):
        client, api_key = api_key_client
        create_entities(api_key.site, count=4)

        response = client.post('/api/v2/optimizations/prepare', {
            'site_url': 'https://shop.example.com',
            'ruleset': 'quick_boost',
            'filters': {'only_wp_ids': [2, 4]},
            'focus_keyword': 'oak tables',
        }, format='json')

        assert response.status_code == 200
        results = response.data['results']
        assert [r['wp_id'] for r in results] == [2, 4]
        assert all(r['after']['seo']['focus_keyword'] == 'oak tables' for r in results)

    def test_ai_ruleset_is_queued(self, api_key_client, create_entities, crawl):
        client, api_key = api_key_client
        create_entities(api_key.site, count=2)

        response = client.post('/api/v2/optimizations/prepare', {
            'site_url': 'https://shop.example.com', 'ruleset': 'safe_boost',
        }, format='json')

        assert response.status_code == 202
        execution_id = response.data['execution_id']
        assert response.data['poll'] == f'/api/v2/optimizations/executions/{execution_id}'

        # eager Celery ran the worker; OpenAI is not configured so generation fell back
        poll = client.get(response.data['poll'])
        assert poll.status_code == 200
        assert poll.data['status'] == 'done'
        assert poll.data['progress'] == 100
        engines = {r['apply']['engine']['kind'] for r in poll.data['result']['results']}
        assert engines == {'deterministic_fallback'}

    def test_oversized_batch_is_queued(self, api_key_client, create_entities, crawl, settings):
        settings.OPTIMIZATION_SYNC_LIMIT = 2
        client, api_key = api_key_client
        create_entities(api_key.site, count=3)

        with mock.patch('optimizations.tasks.run_execution') as task:
            response = client.post('/api/v2/optimizations/prepare', {
                'site_url': 'https://shop.example.com', 'ruleset': 'quick_boost',
            }, format='json')

        assert response.status_code == 202
        assert response.data['status'] == 'queued'
        assert response.data['progress'] == 0
        task.delay.assert_called_once_with(response.data['execution_id'])
        assert crawl.call_count == 0

    def test_enqueue_failure_marks_execution_failed(self, api_key_client, create_entities):
        client, api_key = api_key_client
        create_entities(api_key.site, count=1)

        with mock.patch('optimizations.tasks.run_execution') as task:
            task.delay.side_effect = ConnectionError('redis unavailable')
            response = client.post('/api/v2/optimizations/prepare', {
                'site_url': 'https://shop.example.com', 'ruleset': 'deep_boost',
            }, format='json')

        assert response.status_code == 503
        assert response.data['error']['code'] == 'enqueue_failed'
        execution = OptimizationExecution.objects.get(execution_id=response.data['error']['detail']['execution_id'])
        assert execution.status == 'failed'
        assert execution.error_payload['code'] == 'enqueue_failed'
        assert 'redis unavailable' in execution.error_payload['message']


@pytest.mark.django_db
class TestGetExecution:

    def test_unknown_execution(self, api_key_client):
        client, api_key = api_key_client
        response = client.get('/api/v2/optimizations/executions/exec_0_missing')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'execution_not_found'

    def test_other_tenant_cannot_read(self, api_key_client, create_user, create_site):
        client, api_key = api_key_client
        other_site = create_site(user=create_user(email='other@example.com'), url='https://other.example.com')
        execution = make_queued_execution(other_site)

        response = client.get(f'/api/v2/optimizations/executions/{execution.execution_id}')
        assert response.status_code == 404

    def test_short_alias_route(self, api_key_client):
        client, api_key = api_key_client
        execution = make_queued_execution(api_key.site)
        response = client.get(f'/api/v2/executions/{execution.execution_id}')
        assert response.status_code == 200
        assert response.data['status'] == 'queued'
        assert 'result' not in response.data

    def test_recent_queued_execution_is_left_alone(self, api_key_client):
        client, api_key = api_key_client
        execution = make_queued_execution(api_key.site, age_seconds=30)
        response = client.get(f'/api/v2/optimizations/executions/{execution.execution_id}')
        assert response.data['status'] == 'queued'

    def test_stuck_execution_fails_with_worker_not_running(self, api_key_client, settings):
        settings.EXECUTION_STUCK_RECOVERY = 'fail'
        settings.EXECUTION_STUCK_QUEUED_SECONDS = 180
        client, api_key = api_key_client
        execution = make_queued_execution(api_key.site, age_seconds=600)

        response = client.get(f'/api/v2/optimizations/executions/{execution.execution_id}')

        assert response.status_code == 200
        assert response.data['status'] == 'failed'
        assert response.data['error']['code'] == 'worker_not_running'

    def test_stuck_execution_runs_inline_once(self, api_key_client, create_entities, crawl, settings):
        settings.EXECUTION_STUCK_RECOVERY = 'inline'
        client, api_key = api_key_client
        create_entities(api_key.site, count=2)
        execution = make_queued_execution(api_key.site, age_seconds=600)
        url = f'/api/v2/optimizations/executions/{execution.execution_id}'

        first = client.get(url)
        second = client.get(url)

        assert first.data['status'] == 'done'
        assert first.data['progress'] == 100
        assert first.data['result']['summary']['items_total'] == 2
        assert second.data['status'] == 'done'
        assert crawl.call_count == 2


@pytest.mark.django_db
class TestWorker:

    def test_queued_execution_is_claimed_and_run(self, create_site, create_entities, crawl):
        from optimizations.tasks import run_execution
        site = create_site()
        create_entities(site, count=2)
        execution = make_queued_execution(site)

        result = run_execution.apply(args=[execution.execution_id]).get()

        execution.refresh_from_db()
        assert result['summary']['items_total'] == 2
        assert execution.status == 'done'
        assert execution.started_at is not None
        assert execution.ended_at is not None

    def test_redelivered_done_execution_is_noop(self, create_site, create_entities, crawl):
        site = create_site()
        create_entities(site, count=2)
        execution = make_queued_execution(site)
        executions.process_execution(execution.execution_id)
        calls = crawl.call_count

        assert executions.process_execution(execution.execution_id) is None
        assert crawl.call_count == calls
        assert OptimizationResult.objects.filter(execution=execution).count() == 2

    def test_redelivered_running_execution_reruns_without_duplicates(self, create_site, create_entities, crawl):
        site = create_site()
        create_entities(site, count=2)
        execution = make_queued_execution(site)
        executions.claim_running(execution)
        executions.persist_result(execution, {
            'wp_id': 1, 'lang': 'en', 'decision': {'action': 'skip', 'risk': 'none', 'reason': 'crawl_failed'},
            'apply': {'allowed': False},
        })

        executions.process_execution(execution.execution_id)

        execution.refresh_from_db()
        assert execution.status == 'done'
        assert OptimizationResult.objects.filter(execution=execution).count() == 2
        assert OptimizationResult.objects.get(execution=execution, wp_id=1).decision['reason'] == 'policy_pass'

    def test_unknown_execution_is_dropped(self):
        assert executions.process_execution('exec_0_nothere') is None

    def test_crash_marks_execution_failed(self, create_site, create_entities):
        site = create_site()
        create_entities(site, count=1)
        execution = make_queued_execution(site)

        with mock.patch('optimizations.executions.run_prepare', side_effect=RuntimeError('database went away')):
            with pytest.raises(RuntimeError):
                executions.process_execution(execution.execution_id)

        execution.refresh_from_db()
        assert execution.status == 'failed'
        assert execution.error_payload['code'] == 'execution_failed'
        assert 'database went away' in execution.error_payload['message']


def apply_payload(execution_id, key='idem-1', items=None, site_url='https://shop.example.com'):
    return {
        'site': {'site_url': site_url, 'connector_used': 'yoast'},
        'execution': {'execution_id': execution_id},
        'apply_batch': {'idempotency_key': key, 'mode': 'manual'},
        'items': items if items is not None else [
            {'wp_id': 1, 'lang': 'en', 'status': 'success', 'applied_fields': {'yoast_title': 'New title'}},
            {'wp_id': 2, 'lang': 'en', 'status': 'failed', 'error_payload': {'code': 'wp_error'}},
            {'wp_id': 3, 'lang': 'en', 'status': 'skipped'},
        ],
    }


@pytest.mark.django_db
class TestRecordApplied:

    @pytest.fixture
    def finished_execution(self, api_key_client, create_entities, crawl):
        client, api_key = api_key_client
        create_entities(api_key.site, count=3)
        execution, _ = executions.prepare(api_key.site.user, api_key.site.url, 'quick_boost')
        return execution

    def test_first_call_records_batch(self, api_key_client, finished_execution):
        client, api_key = api_key_client

        response = client.post('/api/v2/optimizations/applied',
                               apply_payload(finished_execution.execution_id), format='json')

        assert response.status_code == 201
        assert response.data['idempotent'] is False
        assert response.data['apply_id'].startswith('apply_')
        assert response.data['received'] == {'total': 3, 'success': 1, 'failed': 1, 'skipped': 1}
        batch = ApplyBatch.objects.get()
        assert batch.connector_used == 'yoast'
        assert batch.items.count() == 3

        result = OptimizationResult.objects.get(execution=finished_execution, wp_id=1)
        assert result.applied_status == 'success'
        assert result.applied_fields == {'yoast_title': 'New title'}
        assert result.apply_id == batch.apply_id
        assert OptimizationResult.objects.get(execution=finished_execution, wp_id=2).applied_error == {'code': 'wp_error'}

        finished_execution.refresh_from_db()
        assert finished_execution.applied_at is not None

    def test_replay_is_idempotent(self, api_key_client, finished_execution):
        client, api_key = api_key_client
        first = client.post('/api/v2/optimizations/applied',
                            apply_payload(finished_execution.execution_id), format='json')
        second = client.post('/api/v2/optimizations/applied', apply_payload(
            finished_execution.execution_id,
            items=[{'wp_id': 1, 'lang': 'en', 'status': 'failed'}],
        ), format='json')

        assert second.status_code == 200
        assert second.data['idempotent'] is True
        assert second.data['apply_id'] == first.data['apply_id']
        assert second.data['received'] == first.data['received']
        assert ApplyBatch.objects.count() == 1
        statuses = list(ApplyItem.objects.order_by('wp_id').values_list('wp_id', 'status'))
        assert statuses == [(1, 'success'), (2, 'failed'), (3, 'skipped')]

    def test_execution_applied_at_keeps_first_apply(self, api_key_client, finished_execution):
        client, api_key = api_key_client
        client.post('/api/v2/optimizations/applied', apply_payload(finished_execution.execution_id), format='json')
        finished_execution.refresh_from_db()
        first_applied_at = finished_execution.applied_at

        client.post('/api/v2/optimizations/applied', apply_payload(
            finished_execution.execution_id, key='idem-2',
            items=[{'wp_id': 2, 'lang': 'en', 'status': 'success'}],
        ), format='json')

        finished_execution.refresh_from_db()
        assert finished_execution.applied_at == first_applied_at
        assert ApplyBatch.objects.count() == 2

    def test_unknown_execution(self, api_key_client):
        client, api_key = api_key_client
        response = client.post('/api/v2/optimizations/applied', apply_payload('exec_0_missing'), format='json')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'execution_not_found'

    def test_unknown_site(self, api_key_client, finished_execution):
        client, api_key = api_key_client
        response = client.post('/api/v2/optimizations/applied', apply_payload(
            finished_execution.execution_id, site_url='https://elsewhere.example.com',
        ), format='json')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'site_not_found'

    def test_missing_idempotency_key(self, api_key_client, finished_execution):
        client, api_key = api_key_client
        payload = apply_payload(finished_execution.execution_id)
        del payload['apply_batch']['idempotency_key']
        response = client.post('/api/v2/optimizations/applied', payload, format='json')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'invalid_payload'

    def test_concurrent_duplicate_replays_winner(self, api_key_client, finished_execution):
        from optimizations import apply
        client, api_key = api_key_client
        first = client.post('/api/v2/optimizations/applied',
                            apply_payload(finished_execution.execution_id), format='json')
        real_find = apply._find_batch
        calls = []

        def lose_race(key, site):
            # first lookup misses, as if the winner committed right after it
            calls.append(key)
            if len(calls) == 1:
                return None
            return real_find(key, site)

        with mock.patch('optimizations.apply._find_batch', side_effect=lose_race):
            result = apply.record_applied(
                api_key.site.user, apply_payload(finished_execution.execution_id),
            )

        assert result['idempotent'] is True
        assert result['apply_id'] == first.data['apply_id']
        assert ApplyBatch.objects.count() == 1
        assert ApplyItem.objects.count() == 3

    def test_key_used_by_another_site_is_rejected(self, api_key_client, finished_execution,
                                                  create_user, create_site):
        client, api_key = api_key_client
        client.post('/api/v2/optimizations/applied', apply_payload(finished_execution.execution_id), format='json')

        other_site = create_site(user=create_user(email='other@example.com'), url='https://other.example.com')
        other_execution = make_queued_execution(other_site)
        other_client = APIClient()
        from sites.models import APIKey
        full_key, key_prefix, key_hash = APIKey.generate_key()
        APIKey.objects.create(site=other_site, name='Other', key_hash=key_hash, key_prefix=key_prefix)
        other_client.credentials(HTTP_AUTHORIZATION=f'Bearer {full_key}')

        response = other_client.post('/api/v2/optimizations/applied', apply_payload(
            other_execution.execution_id, site_url='https://other.example.com',
        ), format='json')

        assert response.status_code == 400
        assert response.data['error']['code'] == 'invalid_payload'
        assert ApplyBatch.objects.count() == 1
        assert ApplyBatch.objects.get().site == api_key.site

    def test_duplicate_items_rejected(self, api_key_client, finished_execution):
        client, api_key = api_key_client
        response = client.post('/api/v2/optimizations/applied', apply_payload(
            finished_execution.execution_id,
            items=[{'wp_id': 1, 'lang': 'en', 'status': 'success'}, {'wp_id': 1, 'lang': 'en', 'status': 'failed'}],
        ), format='json')
        assert response.status_code == 400


@pytest.mark.django_db
class TestScans:

    def test_scan_crawls_inventory_and_computes_kpis(self, api_key_client, create_entities):
        from sites.models import InventoryEntity
        client, api_key = api_key_client
        create_entities(api_key.site, count=2)
        InventoryEntity.objects.filter(wp_id=2).update(permalink='https://shop.example.com/broken')

        with mock.patch('optimizations.scans.crawl_public', side_effect=fake_crawl):
            response = client.post('/api/v2/scans/', {'site_url': 'https://shop.example.com'}, format='json')

        assert response.status_code == 202
        assert response.data['job_id'].startswith('scan_')

        poll = client.get(f"/api/v2/scans/{response.data['job_id']}/")
        assert poll.status_code == 200
        assert poll.data['status'] == 'done'
        assert poll.data['progress'] == 100
        # one page with an overlong title (85), one crawl failure (0)
        assert poll.data['kpis'] == {'entities_seen': 2, 'avg_score': 42, 'indexable_rate': 50}

        failed = ScanResult.objects.get(wp_id=2)
        assert failed.score == 0
        assert failed.issues == [{'code': 'crawl_failed'}]

    def test_finished_scan_is_not_rerun(self, create_site, create_entities):
        from optimizations.scans import create_scan_job, run_scan_job
        site = create_site()
        create_entities(site, count=1)
        job = create_scan_job(site, enqueue=False)

        with mock.patch('optimizations.scans.crawl_public', side_effect=fake_crawl) as patched:
            run_scan_job(job.job_id)
            assert run_scan_job(job.job_id) is None
        assert patched.call_count == 1
        assert ScanResult.objects.filter(job=job).count() == 1

    def test_scan_of_unknown_site(self, api_key_client):
        client, api_key = api_key_client
        response = client.post('/api/v2/scans/', {'site_url': 'https://nope.example.com'}, format='json')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'site_not_found'

    def test_other_tenant_scan_is_hidden(self, api_key_client, create_user, create_site):
        from optimizations.scans import create_scan_job
        client, api_key = api_key_client
        other_site = create_site(user=create_user(email='other@example.com'), url='https://other.example.com')
        job = create_scan_job(other_site, enqueue=False)

        response = client.get(f'/api/v2/scans/{job.job_id}/')
        assert response.status_code == 404
        assert response.data['error']['code'] == 'scan_not_found'
        assert ScanJob.objects.filter(job_id=job.job_id).exists()

    def test_scan_type_and_refs_are_recorded(self, api_key_client):
        client, api_key = api_key_client
        with mock.patch('optimizations.scans.enqueue_scan'):
            response = client.post('/api/v2/scans/', {
                'site_url': 'https://shop.example.com',
                'scan_type': 'scan_2_before',
                'execution_ref': 'exec_1_abc',
                'apply_ref': 'apply_1_def',
            }, format='json')

        assert response.status_code == 202
        poll = client.get(f"/api/v2/scans/{response.data['job_id']}/")
        assert poll.data['type'] == 'scan_2_before'
        assert poll.data['execution_ref'] == 'exec_1_abc'
        assert poll.data['apply_ref'] == 'apply_1_def'

    def test_decode_error_becomes_crawl_failed_row(self, create_site):
        from optimizations.scans import create_scan_job, scan_entity
        job = create_scan_job(create_site(), enqueue=False)

        def broken(url):
            raise LookupError('unknown encoding: utf8mb4')

        row = scan_entity(job, {'wp_id': 7, 'lang': 'fr', 'permalink': 'https://shop.example.com/p7'}, crawl=broken)

        assert row.score == 0
        assert row.issues == [{'code': 'crawl_failed'}]
        assert 'utf8mb4' in row.metrics['error']

    def test_default_scan_type_is_baseline(self, create_site):
        from optimizations.scans import create_scan_job, scan_status_payload
        job = create_scan_job(create_site(), enqueue=False)
        payload = scan_status_payload(job)
        assert payload['type'] == 'scan_1'
        assert payload['execution_ref'] is None

    def test_unknown_scan_type_is_rejected(self, api_key_client):
        client, api_key = api_key_client
        response = client.post('/api/v2/scans/', {
            'site_url': 'https://shop.example.com', 'scan_type': 'deep',
        }, format='json')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'invalid_payload'


def add_scan_result(site, scan_type, wp_id, score, lang='en'):
    job = ScanJob.objects.create(
        job_id=f'scan_test_{ScanJob.objects.count()}', site=site, scan_type=scan_type, status='done',
    )
    return ScanResult.objects.create(
        job=job, wp_id=wp_id, lang=lang, url=f'{site.url}/post-{wp_id}',
        http_status=200, indexable=True, score=score,
    )


OPPORTUNITIES_URL = '/api/v2/performance/opportunities'


@pytest.mark.django_db
class TestPerformanceOpportunities:

    @pytest.fixture
    def products(self, api_key_client, create_entities):
        from sites.models import InventoryEntity
        client, api_key = api_key_client
        site = api_key.site
        create_entities(site, count=3, entity_type='product')
        InventoryEntity.objects.create(site=site, wp_id=4, entity_type='page', status='publish',
                                       permalink=f'{site.url}/about')
        InventoryEntity.objects.create(site=site, wp_id=5, entity_type='product', status='draft',
                                       permalink=f'{site.url}/draft')
        return site

    def test_compute_opportunity(self):
        from optimizations.performance import compute_opportunity
        assert compute_opportunity(None, 0) == {'opportunity_score': 50.0, 'estimated_value_month': 0.0}
        assert compute_opportunity(40, 20) == {'opportunity_score': 242.7, 'estimated_value_month': 12.13}
        assert compute_opportunity(100, 5000)['opportunity_score'] == 0

    def test_price_from_wc(self):
        from optimizations.performance import price_from_wc
        assert price_from_wc(None) == 0
        assert price_from_wc({'price': '', 'regular_price': '19.5'}) == 19.5
        assert price_from_wc({'price': 'n/a', 'sale_price': 9}) == 9
        assert price_from_wc({'price': 'inf'}) == 0

    def test_ranks_published_products_by_latest_baseline_score(self, api_key_client, products):
        client, api_key = api_key_client
        add_scan_result(products, 'scan_1', 1, 90)
        add_scan_result(products, 'scan_2_before', 1, 30)
        add_scan_result(products, 'scan_1', 1, 80)
        add_scan_result(products, 'scan_1', 2, 70)
        add_scan_result(products, 'scan_1', 2, 60)
        add_scan_result(products, 'scan_2_after', 2, 10)

        response = client.get(OPPORTUNITIES_URL, {'site_url': 'https://shop.example.com'})

        assert response.status_code == 200
        assert response.data['ok'] is True
        assert response.data['site_id'] == products.id
        items = response.data['items']
        assert [i['wp_id'] for i in items] == [1, 3, 2]
        assert [i['seo_score'] for i in items] == [30, None, 60]
        assert [i['opportunity_score'] for i in items] == [70, 50, 40]
        assert items[1]['issues'] is None
        assert response.data['meta'] == {'total': 3, 'returned': 3, 'estimated_value_month_total': 0}

    def test_price_raises_opportunity(self, api_key_client, products):
        from sites.models import InventoryEntity
        client, api_key = api_key_client
        InventoryEntity.objects.filter(site=products, wp_id=3).update(wc={'price': '20'})
        add_scan_result(products, 'scan_1', 3, 40)

        response = client.get(OPPORTUNITIES_URL, {'site_url': 'https://shop.example.com'})

        top = response.data['items'][0]
        assert top['wp_id'] == 3
        assert top['price'] == 20
        assert top['estimated_value_month'] == 12.13
        assert response.data['meta']['estimated_value_month_total'] == 12.13

    def test_limit_and_lang(self, api_key_client, products):
        client, api_key = api_key_client
        limited = client.get(OPPORTUNITIES_URL, {'site_url': 'https://shop.example.com', 'limit': 2})
        assert limited.data['meta']['total'] == 3
        assert len(limited.data['items']) == 2

        french = client.get(OPPORTUNITIES_URL, {'site_url': 'https://shop.example.com', 'lang': 'fr'})
        assert french.data['items'] == []

    def test_other_sites_scans_are_ignored(self, api_key_client, products, create_user, create_site):
        client, api_key = api_key_client
        other_site = create_site(user=create_user(email='other@example.com'), url='https://other.example.com')
        add_scan_result(other_site, 'scan_1', 1, 0)

        response = client.get(OPPORTUNITIES_URL, {'site_url': 'https://shop.example.com'})
        assert response.data['items'][0]['seo_score'] is None

    def test_site_url_is_required(self, api_key_client):
        client, api_key = api_key_client
        response = client.get(OPPORTUNITIES_URL)
        assert response.status_code == 400
        assert response.data['error']['code'] == 'invalid_payload'

    def test_unknown_site(self, api_key_client):
        client, api_key = api_key_client
        response = client.get(OPPORTUNITIES_URL, {'site_url': 'https://nope.example.com'})
        assert response.status_code == 404
        assert response.data['error']['code'] == 'site_not_found'


@pytest.mark.django_db
class TestProjectRoutes:

    def test_health_needs_no_key(self, api_client):
        response = api_client.get('/api/v2/health/')
        assert response.status_code == 200
        assert response.json() == {'ok': True, 'service': 'boost-backend', 'database': 'ok'}

    def test_health_reports_database_outage(self, api_client):
        from django.db import OperationalError
        with mock.patch('boost_backend.api_urls.connection.ensure_connection',
                        side_effect=OperationalError('down')):
            response = api_client.get('/api/v2/health/')
        assert response.status_code == 503
        assert response.json()['database'] == 'unavailable'

    def test_unknown_route_uses_error_envelope(self, api_client):
        response = api_client.get('/api/v2/nowhere/')
        assert response.status_code == 404
        assert response.json()['error'] == {
            'code': 'not_found',
            'message': 'The requested resource was not found.',
            'detail': {'path': '/api/v2/nowhere/'},
            'status': 404,
        }


class TestMigrateLocked:

    def test_delegates_to_migrate(self):
        from django.core.management import call_command
        with mock.patch('optimizations.management.commands.migrate_locked.call_command') as migrate:
            call_command('migrate_locked', verbosity=0)
        migrate.assert_called_once_with('migrate', verbosity=0, interactive=False)
