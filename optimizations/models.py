"""
Models for optimization executions, per-entity results, apply confirmations
and public crawl scans.
"""
from django.db import models
from sites.models import Site


class OptimizationExecution(models.Model):
    """
    One batch optimization run.

    Status only moves queued -> running -> done|failed or queued -> failed;
    done and failed are terminal.
    """
    STATUS_QUEUED = 'queued'
    STATUS_RUNNING = 'running'
    STATUS_DONE = 'done'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_QUEUED, 'Queued'),
        (STATUS_RUNNING, 'Running'),
        (STATUS_DONE, 'Done'),
        (STATUS_FAILED, 'Failed'),
    ]
    TERMINAL_STATUSES = (STATUS_DONE, STATUS_FAILED)

    execution_id = models.CharField(max_length=64, unique=True)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='executions')
    ruleset = models.CharField(max_length=50)
    connector_target = models.CharField(max_length=50, default='auto')
    mode = models.CharField(max_length=30, default='prepare_only')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_QUEUED)
    progress = models.PositiveSmallIntegerField(default=0)

    request_payload = models.JSONField(default=dict)
    result_payload = models.JSONField(null=True, blank=True)
    response_summary = models.JSONField(null=True, blank=True)
    error_payload = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    applied_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'optimization_executions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='opt_exec_status_created_idx'),
        ]

    def __str__(self):
        return f"{self.execution_id} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class OptimizationResult(models.Model):
    """Per-entity outcome of an execution, unique per (execution, wp_id, lang)."""
    execution = models.ForeignKey(OptimizationExecution, on_delete=models.CASCADE, related_name='results')
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='optimization_results')
    wp_id = models.IntegerField()
    lang = models.CharField(max_length=16, blank=True, default='')
    entity_type = models.CharField(max_length=50, blank=True)
    post_type = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, blank=True)

    decision = models.JSONField(default=dict)
    public_source = models.JSONField(null=True, blank=True)
    before_payload = models.JSONField(null=True, blank=True)
    after_payload = models.JSONField(null=True, blank=True)
    diff_payload = models.JSONField(null=True, blank=True)
    apply_payload = models.JSONField(default=dict)

    # Latest applied state, projected from apply confirmations
    applied_at = models.DateTimeField(null=True, blank=True)
    applied_status = models.CharField(max_length=20, blank=True)
    applied_fields = models.JSONField(null=True, blank=True)
    applied_error = models.JSONField(null=True, blank=True)
    apply_id = models.CharField(max_length=64, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'optimization_results'
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(fields=['execution', 'wp_id', 'lang'], name='uniq_result_execution_entity'),
        ]

    def __str__(self):
        return f"{self.execution.execution_id} #{self.wp_id} [{self.lang}]"


class ApplyBatch(models.Model):
    """A client's confirmation of applied changes, recorded once per idempotency key."""
    apply_id = models.CharField(max_length=64, unique=True)
    idempotency_key = models.CharField(max_length=255, unique=True)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='apply_batches')
    execution = models.ForeignKey(OptimizationExecution, on_delete=models.CASCADE, related_name='apply_batches')
    mode = models.CharField(max_length=30, default='manual')
    connector_used = models.CharField(max_length=50, blank=True)
    plugin = models.CharField(max_length=100, blank=True)
    plugin_version = models.CharField(max_length=50, blank=True)
    applied_at = models.DateTimeField()
    items_total = models.IntegerField(default=0)
    items_success = models.IntegerField(default=0)
    items_failed = models.IntegerField(default=0)
    items_skipped = models.IntegerField(default=0)
    raw_payload = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'optimization_apply_batches'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.apply_id} ({self.idempotency_key})"

    def received(self):
        return {
            'total': self.items_total,
            'success': self.items_success,
            'failed': self.items_failed,
            'skipped': self.items_skipped,
        }


class ApplyItem(models.Model):
    STATUS_CHOICES = [
        ('success', 'Success'),
        ('failed', 'Failed'),
        ('skipped', 'Skipped'),
    ]

    batch = models.ForeignKey(ApplyBatch, on_delete=models.CASCADE, related_name='items')
    wp_id = models.IntegerField()
    lang = models.CharField(max_length=16, blank=True, default='')
    entity_type = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    applied_fields = models.JSONField(default=dict)
    wp_modified_gmt_after = models.DateTimeField(null=True, blank=True)
    error = models.JSONField(null=True, blank=True)

    class Meta:
        db_table = 'optimization_apply_items'
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['batch', 'wp_id', 'lang'], name='uniq_apply_item_entity'),
        ]

    def __str__(self):
        return f"{self.batch.apply_id} #{self.wp_id} [{self.lang}] {self.status}"


class ScanJob(models.Model):
    """
    A public crawl scan over a site's inventory, run by the scan worker.
    """
    STATUS_CHOICES = OptimizationExecution.STATUS_CHOICES
    TYPE_CHOICES = [
        ('scan_1', 'Baseline scan'),
        ('scan_2_before', 'Before apply'),
        ('scan_2_after', 'After apply'),
    ]

    job_id = models.CharField(max_length=64, unique=True)
    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name='scan_jobs')
    scan_type = models.CharField(max_length=30, choices=TYPE_CHOICES, default='scan_1')
    scope = models.JSONField(default=dict)
    execution_ref = models.CharField(max_length=64, blank=True, default='',
        help_text="Execution this scan measures")
    apply_ref = models.CharField(max_length=64, blank=True, default='',
        help_text="Apply batch this scan measures")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='queued')
    progress = models.PositiveSmallIntegerField(default=0)
    kpis = models.JSONField(null=True, blank=True)
    error_payload = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'scan_jobs'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.job_id} ({self.status})"


class ScanResult(models.Model):
    job = models.ForeignKey(ScanJob, on_delete=models.CASCADE, related_name='results')
    wp_id = models.IntegerField(null=True, blank=True)
    lang = models.CharField(max_length=16, blank=True, default='')
    entity_type = models.CharField(max_length=50, blank=True)
    url = models.URLField(max_length=2000)
    http_status = models.IntegerField(null=True, blank=True)
    indexable = models.BooleanField(null=True)
    score = models.IntegerField(default=0)
    metrics = models.JSONField(default=dict)
    issues = models.JSONField(default=list)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'scan_results'
        ordering = ['id']

    def __str__(self):
        return f"{self.job.job_id} {self.url} ({self.score})"
