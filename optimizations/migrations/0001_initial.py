from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('sites', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='OptimizationExecution',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('execution_id', models.CharField(max_length=64, unique=True)),
                ('ruleset', models.CharField(max_length=50)),
                ('connector_target', models.CharField(default='auto', max_length=50)),
                ('mode', models.CharField(default='prepare_only', max_length=30)),
                ('status', models.CharField(choices=[('queued', 'Queued'), ('running', 'Running'), ('done', 'Done'), ('failed', 'Failed')], default='queued', max_length=20)),
                ('progress', models.PositiveSmallIntegerField(default=0)),
                ('request_payload', models.JSONField(default=dict)),
                ('result_payload', models.JSONField(blank=True, null=True)),
                ('response_summary', models.JSONField(blank=True, null=True)),
                ('error_payload', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='executions', to='sites.site')),
            ],
            options={
                'db_table': 'optimization_executions',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'created_at'], name='opt_exec_status_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='OptimizationResult',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wp_id', models.IntegerField()),
                ('lang', models.CharField(blank=True, default='', max_length=16)),
                ('entity_type', models.CharField(blank=True, max_length=50)),
                ('post_type', models.CharField(blank=True, max_length=50)),
                ('status', models.CharField(blank=True, max_length=20)),
                ('decision', models.JSONField(default=dict)),
                ('public_source', models.JSONField(blank=True, null=True)),
                ('before_payload', models.JSONField(blank=True, null=True)),
                ('after_payload', models.JSONField(blank=True, null=True)),
                ('diff_payload', models.JSONField(blank=True, null=True)),
                ('apply_payload', models.JSONField(default=dict)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('applied_status', models.CharField(blank=True, max_length=20)),
                ('applied_fields', models.JSONField(blank=True, null=True)),
                ('applied_error', models.JSONField(blank=True, null=True)),
                ('apply_id', models.CharField(blank=True, max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('execution', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='optimizations.optimizationexecution')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='optimization_results', to='sites.site')),
            ],
            options={
                'db_table': 'optimization_results',
                'ordering': ['created_at', 'id'],
                'constraints': [models.UniqueConstraint(fields=('execution', 'wp_id', 'lang'), name='uniq_result_execution_entity')],
            },
        ),
        migrations.CreateModel(
            name='ApplyBatch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('apply_id', models.CharField(max_length=64, unique=True)),
                ('idempotency_key', models.CharField(max_length=255, unique=True)),
                ('mode', models.CharField(default='manual', max_length=30)),
                ('connector_used', models.CharField(blank=True, max_length=50)),
                ('plugin', models.CharField(blank=True, max_length=100)),
                ('plugin_version', models.CharField(blank=True, max_length=50)),
                ('applied_at', models.DateTimeField()),
                ('items_total', models.IntegerField(default=0)),
                ('items_success', models.IntegerField(default=0)),
                ('items_failed', models.IntegerField(default=0)),
                ('items_skipped', models.IntegerField(default=0)),
                ('raw_payload', models.JSONField(default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('execution', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='apply_batches', to='optimizations.optimizationexecution')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='apply_batches', to='sites.site')),
            ],
            options={
                'db_table': 'optimization_apply_batches',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ApplyItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wp_id', models.IntegerField()),
                ('lang', models.CharField(blank=True, default='', max_length=16)),
                ('entity_type', models.CharField(blank=True, max_length=50)),
                ('status', models.CharField(choices=[('success', 'Success'), ('failed', 'Failed'), ('skipped', 'Skipped')], max_length=20)),
                ('applied_fields', models.JSONField(default=dict)),
                ('wp_modified_gmt_after', models.DateTimeField(blank=True, null=True)),
                ('error', models.JSONField(blank=True, null=True)),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='optimizations.applybatch')),
            ],
            options={
                'db_table': 'optimization_apply_items',
                'ordering': ['id'],
                'constraints': [models.UniqueConstraint(fields=('batch', 'wp_id', 'lang'), name='uniq_apply_item_entity')],
            },
        ),
        migrations.CreateModel(
            name='ScanJob',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('job_id', models.CharField(max_length=64, unique=True)),
                ('scan_type', models.CharField(default='full', max_length=30)),
                ('scope', models.JSONField(default=dict)),
                ('status', models.CharField(choices=[('queued', 'Queued'), ('running', 'Running'), ('done', 'Done'), ('failed', 'Failed')], default='queued', max_length=20)),
                ('progress', models.PositiveSmallIntegerField(default=0)),
                ('kpis', models.JSONField(blank=True, null=True)),
                ('error_payload', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='scan_jobs', to='sites.site')),
            ],
            options={
                'db_table': 'scan_jobs',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ScanResult',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wp_id', models.IntegerField(blank=True, null=True)),
                ('lang', models.CharField(blank=True, default='', max_length=16)),
                ('entity_type', models.CharField(blank=True, max_length=50)),
                ('url', models.URLField(max_length=2000)),
                ('http_status', models.IntegerField(blank=True, null=True)),
                ('indexable', models.BooleanField(null=True)),
                ('score', models.IntegerField(default=0)),
                ('metrics', models.JSONField(default=dict)),
                ('issues', models.JSONField(default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('job', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='optimizations.scanjob')),
            ],
            options={
                'db_table': 'scan_results',
                'ordering': ['id'],
            },
        ),
    ]
