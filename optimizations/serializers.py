"""
Request serializers for the optimization and scan endpoints.
"""
from rest_framework import serializers

from engine.generators import RULESET_STRATEGIES

from .models import ScanJob


class ScopeSerializer(serializers.Serializer):
    entity_types = serializers.ListField(child=serializers.CharField(), required=False)
    langs = serializers.ListField(child=serializers.CharField(), required=False)
    lang = serializers.CharField(required=False)


class FiltersSerializer(serializers.Serializer):
    statuses = serializers.ListField(child=serializers.CharField(), required=False)
    only_wp_ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    cursor_wp_id = serializers.IntegerField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)


class PrepareRequestSerializer(serializers.Serializer):
    """POST /api/v2/optimizations/prepare"""
    site_url = serializers.URLField()
    ruleset = serializers.ChoiceField(choices=sorted(RULESET_STRATEGIES), default='quick_boost')
    scope = ScopeSerializer(required=False, default=dict)
    filters = FiltersSerializer(required=False, default=dict)
    site_samples = serializers.ListField(
        child=serializers.CharField(allow_blank=True), required=False, default=list, max_length=10,
    )
    focus_keyword = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=200)


class ApplySiteSerializer(serializers.Serializer):
    site_url = serializers.URLField()
    connector_used = serializers.CharField(required=False, allow_blank=True, max_length=50)
    plugin = serializers.CharField(required=False, allow_blank=True, max_length=100)
    plugin_version = serializers.CharField(required=False, allow_blank=True, max_length=50)


class ApplyExecutionSerializer(serializers.Serializer):
    execution_id = serializers.CharField(max_length=64)


class ApplyBatchSerializer(serializers.Serializer):
    idempotency_key = serializers.CharField(max_length=255)
    mode = serializers.CharField(required=False, max_length=30, default='manual')
    applied_at = serializers.DateTimeField(required=False)


class ApplyItemSerializer(serializers.Serializer):
    wp_id = serializers.IntegerField()
    lang = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=16)
    entity_type = serializers.CharField(required=False, allow_blank=True, max_length=50)
    status = serializers.ChoiceField(choices=['success', 'failed', 'skipped'])
    applied_fields = serializers.DictField(required=False, default=dict)
    wp_modified_gmt_after = serializers.DateTimeField(required=False, allow_null=True)
    error_payload = serializers.DictField(required=False, allow_null=True)


class ApplyPayloadSerializer(serializers.Serializer):
    """POST /api/v2/optimizations/applied"""
    site = ApplySiteSerializer()
    execution = ApplyExecutionSerializer()
    apply_batch = ApplyBatchSerializer()
    items = ApplyItemSerializer(many=True, required=False, default=list)

    def validate_items(self, items):
        seen = set()
        for item in items:
            key = (item['wp_id'], item.get('lang') or '')
            if key in seen:
                raise serializers.ValidationError(f"duplicate item wp_id={key[0]} lang={key[1]!r}")
            seen.add(key)
        return items


class ScanCreateSerializer(serializers.Serializer):
    """POST /api/v2/scans/"""
    site_url = serializers.URLField()
    scan_type = serializers.ChoiceField(choices=[c for c, _ in ScanJob.TYPE_CHOICES], default='scan_1')
    scope = serializers.DictField(required=False, default=dict)
    execution_ref = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    apply_ref = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')


class OpportunitiesQuerySerializer(serializers.Serializer):
    """GET /api/v2/performance/opportunities query string"""
    site_url = serializers.URLField()
    limit = serializers.IntegerField(required=False, default=50)
    lang = serializers.CharField(max_length=16, required=False, allow_blank=True, default='')
