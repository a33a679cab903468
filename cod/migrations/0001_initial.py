from decimal import Decimal

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='PaymentSettings',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('cod_enabled', models.BooleanField(default=True)),
                ('pricing_type', models.CharField(choices=[('fixed', 'Fixed'), ('percentage', 'Percentage'), ('tiered', 'Tiered'), ('dynamic', 'Dynamic')], default='fixed', max_length=12)),
                ('fixed_amount', models.DecimalField(decimal_places=2, default=50, max_digits=10)),
                ('percentage', models.DecimalField(decimal_places=2, default=Decimal('2.5'), max_digits=5)),
                ('min_charge', models.DecimalField(decimal_places=2, default=30, max_digits=10)),
                ('max_charge', models.DecimalField(decimal_places=2, default=200, max_digits=10)),
                ('tiers', models.JSONField(blank=True, default=list)),
                ('location_based_enabled', models.BooleanField(default=False)),
                ('zones', models.JSONField(blank=True, default=list)),
                ('courier_charges_enabled', models.BooleanField(default=False)),
                ('couriers', models.JSONField(blank=True, default=list)),
                ('min_order_value', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('max_order_value', models.DecimalField(blank=True, decimal_places=2, default=10000, max_digits=10, null=True)),
                ('excluded_products', models.JSONField(blank=True, default=list)),
                ('excluded_categories', models.JSONField(blank=True, default=list)),
                ('excluded_pincodes', models.JSONField(blank=True, default=list)),
                ('excluded_states', models.JSONField(blank=True, default=list)),
                ('time_restrictions_enabled', models.BooleanField(default=False)),
                ('start_time', models.CharField(default='09:00', max_length=5)),
                ('end_time', models.CharField(default='18:00', max_length=5)),
                ('days_of_week', models.JSONField(blank=True, default=list)),
                ('total_cod_orders', models.PositiveIntegerField(default=0)),
                ('total_cod_revenue', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('average_cod_charge', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('analytics_updated_at', models.DateTimeField(blank=True, null=True)),
                ('online_payment_enabled', models.BooleanField(default=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Payment settings',
                'verbose_name_plural': 'Payment settings',
            },
        ),
    ]
