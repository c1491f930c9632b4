from django.contrib import admin
from .models import (
    OptimizationExecution, OptimizationResult, ApplyBatch, ApplyItem, ScanJob, ScanResult,
)


class OptimizationResultInline(admin.TabularInline):
    model = OptimizationResult
    extra = 0
    fields = ('wp_id', 'lang', 'entity_type', 'status', 'applied_status', 'apply_id')
    readonly_fields = fields
    can_delete = False


@admin.register(OptimizationExecution)
class OptimizationExecutionAdmin(admin.ModelAdmin):
    list_display = ('execution_id', 'site', 'ruleset', 'status', 'progress', 'created_at', 'ended_at', 'applied_at')
    list_filter = ('status', 'ruleset', 'created_at')
    search_fields = ('execution_id', 'site__name', 'site__url')
    readonly_fields = ('created_at', 'started_at', 'ended_at', 'applied_at')
    inlines = [OptimizationResultInline]


class ApplyItemInline(admin.TabularInline):
    model = ApplyItem
    extra = 0
    can_delete = False


@admin.register(ApplyBatch)
class ApplyBatchAdmin(admin.ModelAdmin):
    list_display = ('apply_id', 'idempotency_key', 'execution', 'site', 'items_total', 'items_success', 'items_failed', 'applied_at')
    search_fields = ('apply_id', 'idempotency_key', 'execution__execution_id')
    readonly_fields = ('created_at',)
    inlines = [ApplyItemInline]


@admin.register(ScanJob)
class ScanJobAdmin(admin.ModelAdmin):
    list_display = ('job_id', 'site', 'scan_type', 'status', 'progress', 'created_at', 'ended_at')
    list_filter = ('status', 'scan_type')
    search_fields = ('job_id', 'site__name', 'execution_ref', 'apply_ref')


@admin.register(ScanResult)
class ScanResultAdmin(admin.ModelAdmin):
    list_display = ('job', 'url', 'http_status', 'indexable', 'score')
    list_filter = ('indexable',)
    search_fields = ('url', 'job__job_id')
