from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Site',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('url', models.URLField(help_text='Base URL of the WordPress site')),
                ('cms', models.CharField(default='wordpress', max_length=50)),
                ('plugin', models.CharField(blank=True, max_length=100)),
                ('plugin_version', models.CharField(blank=True, max_length=50)),
                ('is_active', models.BooleanField(default=True)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sites', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'sites',
                'ordering': ['-created_at'],
                'unique_together': {('user', 'url')},
            },
        ),
        migrations.CreateModel(
            name='APIKey',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Human-readable name for the API key', max_length=255)),
                ('key_hash', models.CharField(db_index=True, help_text='SHA-256 hash of the API key', max_length=64, unique=True)),
                ('key_prefix', models.CharField(help_text='First 16 characters of the key for display', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('last_used_at', models.DateTimeField(blank=True, null=True)),
                ('usage_count', models.IntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('revoked_at', models.DateTimeField(blank=True, null=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='api_keys', to='sites.site')),
            ],
            options={
                'db_table': 'api_keys',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='InventoryEntity',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wp_id', models.IntegerField(help_text='WordPress post ID')),
                ('lang', models.CharField(default='en', max_length=16)),
                ('entity_type', models.CharField(default='post', help_text='post, page, product, variation, ...', max_length=50)),
                ('post_type', models.CharField(blank=True, max_length=50)),
                ('status', models.CharField(default='publish', max_length=20)),
                ('slug', models.CharField(blank=True, max_length=500)),
                ('permalink', models.URLField(max_length=2000)),
                ('canonical', models.URLField(blank=True, max_length=2000)),
                ('title', models.CharField(blank=True, max_length=500)),
                ('excerpt', models.TextField(blank=True)),
                ('focus_keyword', models.CharField(blank=True, max_length=255)),
                ('modified_gmt', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='inventory', to='sites.site')),
            ],
            options={
                'db_table': 'wp_inventory_entities',
                'ordering': ['wp_id'],
                'unique_together': {('site', 'wp_id', 'lang')},
                'indexes': [
                    models.Index(fields=['site', 'entity_type'], name='wp_inventor_site_id_1f0c2a_idx'),
                    models.Index(fields=['site', 'status'], name='wp_inventor_site_id_8d3e41_idx'),
                ],
            },
        ),
    ]
