from django.core.management.base import BaseCommand
from ticketing.notifications import send_admin_reminders


class Command(BaseCommand):
    help = "Email every admin a summary of their pending tickets."

    def handle(self, *args, **options):
        result = send_admin_reminders()
        if 'skipped' in result:
            self.stdout.write(f"Admin reminders skipped: {result['skipped']}")
            return
        self.stdout.write(self.style.SUCCESS(f"Sent {result['sent']} pending-ticket summary email(s)."))
