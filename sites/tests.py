"""
Tests for sites app - API keys, tenant site lookup and inventory slicing.
"""
import pytest
from django.contrib.auth import get_user_model

from sites.inventory import get_site_by_url, load_inventory_slice, normalize_site_url
from sites.models import APIKey, InventoryEntity, Site


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
def site(create_user):
    return Site.objects.create(user=create_user(), name="Shop", url="https://Shop.example.com/")


@pytest.fixture
def inventory(site):
    rows = [
        (1, 'en', 'post', 'publish'),
        (1, 'fr', 'post', 'publish'),
        (2, 'en', 'page', 'publish'),
        (3, 'en', 'product', 'draft'),
        (4, 'en', 'variation', 'publish'),
        (5, 'de', 'post', 'publish'),
    ]
    for wp_id, lang, entity_type, status in rows:
        InventoryEntity.objects.create(
            site=site,
            wp_id=wp_id,
            lang=lang,
            entity_type=entity_type,
            status=status,
            slug=f'item-{wp_id}',
            permalink=f'https://shop.example.com/{lang}/item-{wp_id}',
            title=f'Item {wp_id}',
        )
    return rows


class TestAPIKeyGeneration:

    def test_generate_key(self):
        full_key, key_prefix, key_hash = APIKey.generate_key()
        assert full_key.startswith('sk_boost_')
        assert key_prefix == full_key[:16]
        assert key_hash == APIKey.hash_key(full_key)
        assert len(key_hash) == 64

    def test_keys_are_unique(self):
        assert APIKey.generate_key()[0] != APIKey.generate_key()[0]


@pytest.mark.django_db
class TestSiteLookup:

    def test_normalize_site_url(self):
        assert normalize_site_url(' https://Shop.example.com/ ') == 'https://shop.example.com'

    def test_matches_ignoring_case_and_trailing_slash(self, site):
        assert get_site_by_url(site.user, 'https://shop.example.com') == site

    def test_other_tenant_does_not_match(self, site, create_user):
        other = create_user(email='other@example.com')
        assert get_site_by_url(other, 'https://shop.example.com') is None

    def test_inactive_site_does_not_match(self, site):
        site.is_active = False
        site.save()
        assert get_site_by_url(site.user, site.url) is None


@pytest.mark.django_db
class TestInventorySlice:

    def test_default_order_is_wp_id_then_lang(self, site, inventory):
        keys = [(e['wp_id'], e['lang']) for e in load_inventory_slice(site)]
        assert keys == [(1, 'en'), (1, 'fr'), (2, 'en'), (3, 'en'), (4, 'en'), (5, 'de')]

    def test_entities_are_plain_dicts(self, site, inventory):
        entity = load_inventory_slice(site)[0]
        assert entity['permalink'] == 'https://shop.example.com/en/item-1'
        assert entity['canonical'] is None
        assert entity['focus_keyword'] is None

    def test_scope_filters(self, site, inventory):
        posts = load_inventory_slice(site, scope={'entity_types': ['post'], 'langs': ['en', 'de']})
        assert [(e['wp_id'], e['lang']) for e in posts] == [(1, 'en'), (5, 'de')]
        french = load_inventory_slice(site, scope={'lang': 'fr'})
        assert [e['wp_id'] for e in french] == [1]

    def test_filters(self, site, inventory):
        drafts = load_inventory_slice(site, filters={'statuses': ['draft']})
        assert [e['wp_id'] for e in drafts] == [3]
        picked = load_inventory_slice(site, filters={'only_wp_ids': [2, 5]})
        assert [e['wp_id'] for e in picked] == [2, 5]
        after_cursor = load_inventory_slice(site, filters={'cursor_wp_id': 3})
        assert [e['wp_id'] for e in after_cursor] == [4, 5]

    def test_limit(self, site, inventory):
        assert len(load_inventory_slice(site, filters={'limit': 2})) == 2
        assert len(load_inventory_slice(site, filters={'limit': 'lots'})) == 6

    def test_limit_is_capped(self, site):
        InventoryEntity.objects.bulk_create([
            InventoryEntity(site=site, wp_id=i, permalink=f'https://shop.example.com/p{i}')
            for i in range(1, 521)
        ])
        assert len(load_inventory_slice(site)) == 50
        assert len(load_inventory_slice(site, filters={'limit': 10000})) == 500

    def test_other_site_is_excluded(self, site, inventory, create_user):
        other = Site.objects.create(user=create_user(email='o@example.com'), name='Other', url='https://o.example.com')
        assert load_inventory_slice(other) == []
