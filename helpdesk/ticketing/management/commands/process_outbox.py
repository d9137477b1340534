from django.core.management.base import BaseCommand
from ticketing.outbox import process_pending


class Command(BaseCommand):
    help = "Dispatch pending notification events from the outbox."

    def add_arguments(self, parser):
        parser.add_argument("--batch-size", type=int, default=10)
        parser.add_argument(
            "--drain", action="store_true",
            help="Keep processing batches until nothing is left to dispatch.",
        )

    def handle(self, *args, **options):
        total = {"processed": 0, "failed": 0}
        while True:
            counts = process_pending(options["batch_size"])
            total["processed"] += counts["processed"]
            total["failed"] += counts["failed"]
            if not options["drain"] or not (counts["processed"] or counts["failed"]):
                break
        self.stdout.write(
            self.style.SUCCESS(f"Processed {total['processed']} events; {total['failed']} failed.")
        )
