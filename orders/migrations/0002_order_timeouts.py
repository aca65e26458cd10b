from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='order',
            name='ready_expires_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name='order',
            name='cancelled_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name='order',
            name='cancellation_reason',
            field=models.CharField(blank=True, choices=[('payment_timeout', 'Payment Timeout'), ('no_show_timeout', 'No-show Timeout')], max_length=30, null=True),
        ),
        migrations.AddField(
            model_name='order',
            name='no_show_recorded',
            field=models.BooleanField(default=False),
        ),
        migrations.AddIndex(
            model_name='order',
            index=models.Index(fields=['order_status', 'ready_expires_at'], name='orders_status_ready_exp_idx'),
        ),
    ]
