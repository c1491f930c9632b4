"""
Site, API Key and inventory models.
"""
import secrets
import hashlib
from django.db import models
from django.conf import settings
from django.utils import timezone


class Site(models.Model):
    """
    Represents a WordPress website registered by a tenant.
    One tenant (user) can have multiple sites.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sites'
    )
    name = models.CharField(max_length=255)
    url = models.URLField(help_text="Base URL of the WordPress site")
    cms = models.CharField(max_length=50, default='wordpress')
    plugin = models.CharField(max_length=100, blank=True)
    plugin_version = models.CharField(max_length=50, blank=True)
    is_active = models.BooleanField(default=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sites'
        ordering = ['-created_at']
        unique_together = [['user', 'url']]

    def __str__(self):
        return f"{self.name} ({self.url})"


class APIKey(models.Model):
    """
    API Key for authenticating WordPress plugin requests.
    Keys are hashed before storage and prefixed with 'sk_boost_'.
    """
    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name='api_keys'
    )
    name = models.CharField(
        max_length=255,
        help_text="Human-readable name for the API key"
    )
    key_hash = models.CharField(
        max_length=64,
        unique=True,
        db_index=True,
        help_text="SHA-256 hash of the API key"
    )
    key_prefix = models.CharField(
        max_length=20,
        help_text="First 16 characters of the key for display"
    )
    is_active = models.BooleanField(default=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    last_used_at = models.DateTimeField(null=True, blank=True)
    usage_count = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'api_keys'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.key_prefix}...)"

    @staticmethod
    def generate_key():
        """
        Generate a new API key.
        Returns: (full_key, prefix, hash)
        """
        prefix = 'sk_boost'
        random_part = secrets.token_urlsafe(32)
        full_key = f"{prefix}_{random_part}"
        key_hash = hashlib.sha256(full_key.encode()).hexdigest()
        key_prefix = full_key[:16]

        return full_key, key_prefix, key_hash

    @staticmethod
    def hash_key(key):
        """Hash an API key for comparison."""
        return hashlib.sha256(key.encode()).hexdigest()

    def revoke(self):
        """Revoke this API key."""
        self.is_active = False
        self.revoked_at = timezone.now()
        self.save(update_fields=['is_active', 'revoked_at'])

    def mark_used(self):
        """Mark this key as used (update last_used_at and increment usage_count)."""
        self.last_used_at = timezone.now()
        self.usage_count += 1
        self.save(update_fields=['last_used_at', 'usage_count'])


class InventoryEntity(models.Model):
    """
    One WordPress content item (post/page/product/variation) synced by the plugin.
    Identity is (site, wp_id, lang). The optimization pipeline only reads it.
    """
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='inventory')
    wp_id = models.IntegerField(help_text="WordPress post ID")
    lang = models.CharField(max_length=16, default='en')
    entity_type = models.CharField(max_length=50, default='post',
        help_text="post, page, product, variation, ...")
    post_type = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, default='publish')
    slug = models.CharField(max_length=500, blank=True)
    permalink = models.URLField(max_length=2000)
    canonical = models.URLField(max_length=2000, blank=True)
    title = models.CharField(max_length=500, blank=True)
    excerpt = models.TextField(blank=True)
    focus_keyword = models.CharField(max_length=255, blank=True)
    modified_gmt = models.DateTimeField(null=True, blank=True)
    wc = models.JSONField(null=True, blank=True,
        help_text="WooCommerce product meta (price, regular_price, sale_price)")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'wp_inventory_entities'
        ordering = ['wp_id']
        unique_together = [['site', 'wp_id', 'lang']]
        indexes = [
            models.Index(fields=['site', 'entity_type'], name='wp_inventor_site_id_1f0c2a_idx'),
            models.Index(fields=['site', 'status'], name='wp_inventor_site_id_8d3e41_idx'),
        ]

    def __str__(self):
        return f"{self.entity_type} #{self.wp_id} [{self.lang}] ({self.site.name})"

    def as_entity(self):
        """Plain dict consumed by the optimization pipeline."""
        return {
            'wp_id': self.wp_id,
            'lang': self.lang,
            'entity_type': self.entity_type,
            'post_type': self.post_type,
            'status': self.status,
            'slug': self.slug,
            'permalink': self.permalink,
            'canonical': self.canonical or None,
            'title': self.title,
            'excerpt': self.excerpt,
            'focus_keyword': self.focus_keyword or None,
        }
