import datetime

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("branches", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Resource",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=160)),
                ("resource_type", models.CharField(choices=[("room", "Room"), ("equipment", "Equipment")], db_index=True, default="room", max_length=16)),
                ("description", models.TextField(blank=True, default="")),
                ("capacity", models.PositiveIntegerField(default=1)),
                ("price_per_hour", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("open_time", models.TimeField(default=datetime.time(8, 0))),
                ("close_time", models.TimeField(default=datetime.time(22, 0))),
                ("open_days", models.PositiveSmallIntegerField(default=31)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("branch", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="resources", to="branches.branch")),
            ],
            options={
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=160)),
                ("description", models.TextField(blank=True, default="")),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("stock", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("branch", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="products", to="branches.branch")),
            ],
            options={
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="WeeklyScheduleEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("weekday", models.PositiveSmallIntegerField(choices=[(0, "Monday"), (1, "Tuesday"), (2, "Wednesday"), (3, "Thursday"), (4, "Friday"), (5, "Saturday"), (6, "Sunday")])),
                ("start_time", models.TimeField()),
                ("end_time", models.TimeField()),
                ("resource", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="schedule_entries", to="catalog.resource")),
            ],
            options={
                "verbose_name_plural": "Weekly schedule entries",
                "ordering": ["resource_id", "weekday", "start_time"],
            },
        ),
        migrations.AddIndex(
            model_name="resource",
            index=models.Index(fields=["branch", "resource_type", "is_active"], name="resource_branch_type_idx"),
        ),
        migrations.AddConstraint(
            model_name="resource",
            constraint=models.CheckConstraint(check=models.Q(("capacity__gte", 1)), name="resource_capacity_positive"),
        ),
        migrations.AddConstraint(
            model_name="resource",
            constraint=models.CheckConstraint(check=models.Q(("close_time__gt", models.F("open_time"))), name="resource_close_after_open"),
        ),
        migrations.AddConstraint(
            model_name="product",
            constraint=models.CheckConstraint(check=models.Q(("stock__gte", 0)), name="product_stock_non_negative"),
        ),
        migrations.AddIndex(
            model_name="weeklyscheduleentry",
            index=models.Index(fields=["resource", "weekday"], name="schedule_resource_day_idx"),
        ),
        migrations.AddConstraint(
            model_name="weeklyscheduleentry",
            constraint=models.CheckConstraint(check=models.Q(("end_time__gt", models.F("start_time"))), name="schedule_entry_end_after_start"),
        ),
    ]
