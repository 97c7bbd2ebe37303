from django.db import models


class PendingMutationRecord(models.Model):
    """Durable row behind DatabaseQueueStore, one per queued offline write."""

    id = models.CharField(primary_key=True, max_length=64)
    url = models.TextField()
    method = models.CharField(max_length=10)
    headers = models.JSONField(default=dict)
    body = models.JSONField(null=True, blank=True)
    timestamp = models.BigIntegerField(db_index=True)  # client enqueue time, ms
    retry_count = models.PositiveIntegerField(default=0)
    entity_type = models.CharField(max_length=100, db_index=True)
    conflict_strategy = models.CharField(max_length=32)
    status = models.CharField(max_length=16, default="pending", db_index=True)
    last_error = models.TextField(blank=True, default="")
    body_is_raw = models.BooleanField(default=False)

    class Meta:
        db_table = "safetyfirst_offline_pending_mutations"
        ordering = ["timestamp", "id"]

    def __str__(self):
        return f"{self.method} {self.url} ({self.status})"
