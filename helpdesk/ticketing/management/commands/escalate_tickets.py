from django.core.management.base import BaseCommand
from ticketing.escalation import escalate_overdue_tickets


class Command(BaseCommand):
    help = "Escalate tickets that missed their acknowledgement or resolution deadline."

    def handle(self, *args, **options):
        counts = escalate_overdue_tickets()
        self.stdout.write(
            self.style.SUCCESS(
                f"Escalated {counts['acknowledgement']} unacknowledged and {counts['resolution']} unresolved "
                f"tickets ({counts['skipped']} skipped, {counts['errors']} errors)."
            )
        )
