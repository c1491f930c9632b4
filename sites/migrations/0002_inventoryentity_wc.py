# Generated manually

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('sites', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='inventoryentity',
            name='wc',
            field=models.JSONField(blank=True, null=True, help_text='WooCommerce product meta (price, regular_price, sale_price)'),
        ),
    ]
