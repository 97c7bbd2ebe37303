"""Django signals sent by the offline sync layer.

Lets server-side code (audit trails, metrics, admin alerts) observe offline
activity without a channel layer or a WebSocket connection.
"""

from django.dispatch import Signal

mutation_queued = Signal()
"""
Sent after a mutating API request has been written to the queue store.

Kwargs sent:
    sender (type): the OfflineMutationQueue class
    mutation (PendingMutation): the record as persisted
"""

sync_completed = Signal()
"""
Sent at the end of every sync pass, including passes with nothing to do.

Kwargs sent:
    sender (type): the SyncOrchestrator class
    result (SyncResult): counts of synced, failed, conflicts and abandoned
"""

mutation_abandoned = Signal()
"""
Sent when a mutation reaches the retry ceiling and stops being replayed.

Kwargs sent:
    sender (type): the SyncOrchestrator class
    mutation (PendingMutation): the record, status already set to abandoned
"""
