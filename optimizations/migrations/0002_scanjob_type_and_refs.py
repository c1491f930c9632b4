# Generated manually

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('optimizations', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='scanjob',
            name='scan_type',
            field=models.CharField(choices=[('scan_1', 'Baseline scan'), ('scan_2_before', 'Before apply'), ('scan_2_after', 'After apply')], default='scan_1', max_length=30),
        ),
        migrations.AddField(
            model_name='scanjob',
            name='execution_ref',
            field=models.CharField(blank=True, default='', max_length=64, help_text='Execution this scan measures'),
        ),
        migrations.AddField(
            model_name='scanjob',
            name='apply_ref',
            field=models.CharField(blank=True, default='', max_length=64, help_text='Apply batch this scan measures'),
        ),
    ]
