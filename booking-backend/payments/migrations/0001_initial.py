from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source", models.CharField(choices=[("webhook", "Webhook"), ("poll", "Poll"), ("checkout", "Checkout"), ("capture", "Capture"), ("refund", "Refund"), ("expiry", "Expiry"), ("admin", "Admin")], max_length=16)),
                ("event_type", models.CharField(blank=True, default="", max_length=64)),
                ("gateway_status", models.CharField(blank=True, default="", max_length=32)),
                ("previous_status", models.CharField(blank=True, default="", max_length=20)),
                ("local_status", models.CharField(blank=True, default="", max_length=20)),
                ("applied", models.BooleanField(default=False)),
                ("dedupe_key", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="payment_events", to="orders.order")),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
