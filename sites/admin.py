from django.contrib import admin
from .models import Site, APIKey, InventoryEntity


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ('name', 'url', 'user', 'is_active', 'last_synced_at', 'created_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('name', 'url', 'user__email')
    readonly_fields = ('created_at', 'updated_at', 'last_synced_at')


@admin.register(APIKey)
class APIKeyAdmin(admin.ModelAdmin):
    list_display = ('name', 'key_prefix', 'site', 'is_active', 'last_used_at', 'usage_count', 'created_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('name', 'key_prefix', 'site__name')
    readonly_fields = ('key_hash', 'key_prefix', 'created_at', 'last_used_at', 'usage_count', 'revoked_at')


@admin.register(InventoryEntity)
class InventoryEntityAdmin(admin.ModelAdmin):
    list_display = ('wp_id', 'lang', 'entity_type', 'status', 'title', 'site', 'updated_at')
    list_filter = ('entity_type', 'status', 'lang')
    search_fields = ('title', 'slug', 'permalink', 'site__name')
