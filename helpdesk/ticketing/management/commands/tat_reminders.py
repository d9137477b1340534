from django.core.management.base import BaseCommand
from ticketing.notifications import send_tat_reminders


class Command(BaseCommand):
    help = "Email assignees about tickets whose resolution falls due today (weekdays only)."

    def handle(self, *args, **options):
        result = send_tat_reminders()
        if 'skipped' in result:
            self.stdout.write(f"TAT reminders skipped: {result['skipped']}")
            return
        self.stdout.write(self.style.SUCCESS(f"Sent {result['sent']} TAT reminder(s)."))
