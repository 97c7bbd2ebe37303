"""
Django management command to inspect and drive the offline mutation queue.

Usage:
    python manage.py offline_queue --list
    python manage.py offline_queue --sync
    python manage.py offline_queue --retry-abandoned
    python manage.py offline_queue --discard 1700000000000-a1b2c3d4e
    python manage.py offline_queue --clear-cache
"""

import datetime

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from safetyfirst_offline.exceptions import MutationNotFoundError
from safetyfirst_offline.worker import get_worker


class Command(BaseCommand):
    help = "Inspect, replay or clean up queued offline mutations"

    def add_arguments(self, parser):
        parser.add_argument(
            "--list",
            action="store_true",
            help="List queued mutations in replay order (default when no action is given)",
        )
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Run one sync pass now",
        )
        parser.add_argument(
            "--retry-abandoned",
            action="store_true",
            help="Give abandoned mutations a fresh retry budget",
        )
        parser.add_argument(
            "--discard",
            type=str,
            default=None,
            metavar="ID",
            help="Remove one queued mutation by id without replaying it",
        )
        parser.add_argument(
            "--clear-cache",
            action="store_true",
            help="Drop cached API responses and pages",
        )

    def handle(self, *args, **options):
        worker = get_worker()
        acted = False

        if options["discard"]:
            acted = True
            try:
                async_to_sync(worker.discard_pending)(options["discard"])
            except MutationNotFoundError as e:
                raise CommandError(e.message)
            self.stdout.write(self.style.SUCCESS(f"Discarded {options['discard']}"))

        if options["retry_abandoned"]:
            acted = True
            count = async_to_sync(self._retry_abandoned)(worker)
            self.stdout.write(self.style.SUCCESS(f"Re-queued {count} abandoned mutation(s)"))

        if options["sync"]:
            acted = True
            result = async_to_sync(worker.sync_now)()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Synced {result.synced}, failed {result.failed}, "
                    f"conflicts {result.conflicts}, abandoned {result.abandoned}"
                )
            )

        if options["clear_cache"]:
            acted = True
            async_to_sync(worker.clear_caches)()
            self.stdout.write(self.style.SUCCESS("Cleared API and page caches"))

        if options["list"] or not acted:
            self._list(worker)

    async def _retry_abandoned(self, worker):
        count = await worker.retry_abandoned()
        # Let a sync started by the re-queue finish before the loop goes away
        await worker.scheduler.drain()
        return count

    def _list(self, worker):
        mutations = async_to_sync(worker.pending_mutations)()
        if not mutations:
            self.stdout.write("No queued mutations.")
            return

        for mutation in mutations:
            queued_at = datetime.datetime.fromtimestamp(
                mutation.timestamp / 1000, tz=datetime.timezone.utc
            )
            line = (
                f"{mutation.id}  {mutation.method:<6} {mutation.url}  "
                f"[{mutation.entity_type}, {mutation.conflict_strategy}] "
                f"queued {queued_at:%Y-%m-%d %H:%M:%S}Z retries={mutation.retry_count}"
            )
            if mutation.is_abandoned:
                self.stdout.write(self.style.WARNING(f"{line} ABANDONED: {mutation.last_error}"))
            else:
                self.stdout.write(line)
        self.stdout.write(self.style.SUCCESS(f"{len(mutations)} queued mutation(s)"))
