from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PendingMutationRecord",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("url", models.TextField()),
                ("method", models.CharField(max_length=10)),
                ("headers", models.JSONField(default=dict)),
                ("body", models.JSONField(blank=True, null=True)),
                ("timestamp", models.BigIntegerField(db_index=True)),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("entity_type", models.CharField(db_index=True, max_length=100)),
                ("conflict_strategy", models.CharField(max_length=32)),
                ("status", models.CharField(db_index=True, default="pending", max_length=16)),
                ("last_error", models.TextField(blank=True, default="")),
            ],
            options={
                "db_table": "safetyfirst_offline_pending_mutations",
                "ordering": ["timestamp", "id"],
            },
        ),
    ]
