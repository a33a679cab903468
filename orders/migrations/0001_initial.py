from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('catalog', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_id', models.CharField(editable=False, max_length=40, unique=True)),
                ('email', models.EmailField(max_length=254)),
                ('full_name', models.CharField(max_length=200)),
                ('phone_number', models.CharField(max_length=20)),
                ('address_line1', models.CharField(max_length=255)),
                ('address_line2', models.CharField(blank=True, default='', max_length=255)),
                ('city', models.CharField(max_length=100)),
                ('state', models.CharField(max_length=100)),
                ('pin_code', models.CharField(max_length=10)),
                ('country', models.CharField(default='India', max_length=100)),
                ('subtotal', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('discount', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('cod_charge', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('total', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('discount_code', models.CharField(blank=True, max_length=50, null=True)),
                ('payment_method', models.CharField(choices=[('cod', 'Cash on Delivery'), ('online', 'Online')], default='cod', max_length=10)),
                ('payment_id', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('payment_status', models.CharField(default='pending', max_length=30)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'), ('shipped', 'Shipped'), ('delivered', 'Delivered'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=20)),
                ('shiprocket_order_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('shipment_id', models.CharField(blank=True, default='', max_length=100)),
                ('awb_code', models.CharField(blank=True, db_index=True, default='', max_length=100)),
                ('courier_name', models.CharField(blank=True, default='', max_length=200)),
                ('courier_id', models.CharField(blank=True, default='', max_length=50)),
                ('shipping_status', models.CharField(blank=True, db_index=True, default='', max_length=50)),
                ('expected_delivery_date', models.DateTimeField(blank=True, null=True)),
                ('pickup_scheduled_date', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('label_url', models.URLField(blank=True, default='', max_length=500)),
                ('manifest_url', models.URLField(blank=True, default='', max_length=500)),
                ('invoice_url', models.URLField(blank=True, default='', max_length=500)),
                ('pickup_data', models.JSONField(blank=True, default=dict)),
                ('tracking_data', models.JSONField(blank=True, default=dict)),
                ('cancellation_requested', models.BooleanField(db_index=True, default=False)),
                ('cancellation_requested_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('admin_cancellation_reason', models.TextField(blank=True, default='')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('replacement_requested', models.BooleanField(db_index=True, default=False)),
                ('replacement_status', models.CharField(blank=True, choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected'), ('completed', 'Completed')], default='', max_length=10)),
                ('replacement_reason', models.TextField(blank=True, default='')),
                ('replacement_admin_notes', models.TextField(blank=True, default='')),
                ('replacement_requested_at', models.DateTimeField(blank=True, null=True)),
                ('replacement_approved_at', models.DateTimeField(blank=True, null=True)),
                ('replacement_rejected_at', models.DateTimeField(blank=True, null=True)),
                ('replacement_rejection_reason', models.TextField(blank=True, default='')),
                ('replacement_completed_at', models.DateTimeField(blank=True, null=True)),
                ('replacement_shipment_id', models.CharField(blank=True, default='', max_length=100)),
                ('replacement_courier', models.CharField(blank=True, default='', max_length=100)),
                ('replacement_shiprocket_order_id', models.CharField(blank=True, default='', max_length=100)),
                ('customer_notified', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='orders', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
                    models.Index(fields=['user', 'created_at'], name='order_user_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('quantity', models.PositiveIntegerField(default=1)),
                ('color', models.CharField(blank=True, default='', max_length=50)),
                ('size', models.CharField(blank=True, default='', max_length=20)),
                ('sku', models.CharField(blank=True, default='', max_length=100)),
                ('image_url', models.CharField(blank=True, default='', max_length=500)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='orders.order')),
                ('product', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='order_items', to='catalog.product')),
            ],
            options={
                'ordering': ['id'],
            },
        ),
    ]
