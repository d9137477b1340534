import smtplib
from datetime import datetime, timedelta
from io import StringIO
from unittest import mock

import requests
from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from ticketing import notifications
from ticketing.constants import ROLE_ADMIN
from ticketing.models import (
    Category, Domain, Notification, NotificationConfig, OutboxEvent, Scope, Subcategory, Ticket,
    TicketIntegration,
)

from .utils import make_user


def slack_response(ok=True, ts='1700000000.000100', error=None, status_code=200):
    response = mock.Mock(status_code=status_code, text='')
    response.json.return_value = {'ok': ok, 'ts': ts, 'error': error}
    return response


class ConfigPrecedenceTests(TestCase):
    def setUp(self):
        domain = Domain.objects.create(name='Hostel')
        self.scope = Scope.objects.create(domain=domain, name='Hostel A')
        self.category = Category.objects.create(name='Maintenance', domain=domain)
        self.subcategory = Subcategory.objects.create(category=self.category, name='Plumbing')

        self.global_config = NotificationConfig.objects.create(slack_channel='#global')
        self.scope_config = NotificationConfig.objects.create(scope=self.scope, slack_channel='#hostel-a')
        self.category_config = NotificationConfig.objects.create(category=self.category, slack_channel='#maintenance')
        self.sub_config = NotificationConfig.objects.create(
            category=self.category, subcategory=self.subcategory, slack_channel='#plumbing',
        )

    def test_subcategory_beats_everything(self):
        config = notifications.resolve_notification_config(self.scope, self.category, self.subcategory)
        self.assertEqual(config, self.sub_config)

    def test_category_beats_scope(self):
        config = notifications.resolve_notification_config(self.scope, self.category, None)
        self.assertEqual(config, self.category_config)

    def test_scope_beats_global(self):
        other = Category.objects.create(name='Electrical')
        config = notifications.resolve_notification_config(self.scope, other, None)
        self.assertEqual(config, self.scope_config)

    def test_global_default(self):
        self.assertEqual(notifications.resolve_notification_config(), self.global_config)

    def test_inactive_configs_are_ignored(self):
        self.sub_config.is_active = False
        self.sub_config.save()
        config = notifications.resolve_notification_config(self.scope, self.category, self.subcategory)
        self.assertEqual(config, self.category_config)

    def test_higher_priority_wins_at_same_level(self):
        urgent = NotificationConfig.objects.create(scope=self.scope, slack_channel='#urgent', priority=10)
        self.assertEqual(notifications.resolve_notification_config(self.scope), urgent)


@override_settings(SLACK_BOT_TOKEN='xoxb-test', APP_URL='https://desk.campus.test')
class DispatchTests(TestCase):
    def setUp(self):
        self.student = make_user('student')
        self.admin = make_user('admin', ROLE_ADMIN)
        self.category = Category.objects.create(name='IT Support')
        self.ticket = Ticket.objects.create(
            description='Wifi down', created_by=self.student, assigned_to=self.admin, category=self.category,
        )
        NotificationConfig.objects.create(
            category=self.category, slack_channel='#it-support', email_recipients=['it-team@campus.test'],
        )

    def event(self, event_type, **payload):
        return OutboxEvent(event_type=event_type, payload=dict(payload, ticket_id=self.ticket.pk))

    @mock.patch('ticketing.slack.requests.post')
    def test_created_starts_a_slack_thread_and_emails(self, post):
        post.return_value = slack_response()
        notifications.dispatch_event(self.event('ticket.created'))

        integration = TicketIntegration.objects.get(ticket=self.ticket)
        self.assertEqual(integration.slack_channel, '#it-support')
        self.assertEqual(integration.slack_thread_ts, '1700000000.000100')
        self.assertEqual(post.call_args.kwargs['json']['channel'], '#it-support')

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(sorted(mail.outbox[0].to), ['it-team@campus.test', 'student@campus.test'])
        self.assertIn('https://desk.campus.test/tickets/', mail.outbox[0].body)

    @mock.patch('ticketing.slack.requests.post')
    def test_follow_ups_reply_in_thread(self, post):
        TicketIntegration.objects.create(ticket=self.ticket, slack_channel='#it-support', slack_thread_ts='111.222')
        post.return_value = slack_response(ts='333.444')
        notifications.dispatch_event(self.event('ticket.status_changed', previous_status='open'))

        self.assertEqual(post.call_args.kwargs['json']['thread_ts'], '111.222')
        self.assertEqual(TicketIntegration.objects.get(ticket=self.ticket).slack_thread_ts, '111.222')
        self.assertEqual(mail.outbox[0].to, ['student@campus.test'])

    @mock.patch('ticketing.slack.requests.post')
    def test_slack_failure_is_recorded(self, post):
        post.side_effect = requests.ConnectionError('boom')
        notifications.dispatch_event(self.event('ticket.assigned'))

        failed = Notification.objects.get(channel='slack')
        self.assertFalse(failed.sent)
        self.assertIn('boom', failed.error)
        # Email still goes out
        self.assertEqual(mail.outbox[0].to, ['admin@campus.test'])

    @mock.patch('ticketing.slack.requests.post')
    def test_slack_error_response(self, post):
        post.return_value = slack_response(ok=False, error='channel_not_found')
        notifications.dispatch_event(self.event('ticket.created'))
        self.assertEqual(Notification.objects.get(channel='slack').error, 'Slack: channel_not_found')

    @mock.patch('ticketing.slack.requests.post')
    def test_disabled_channels(self, post):
        NotificationConfig.objects.update(enable_slack=False, enable_email=False)
        notifications.dispatch_event(self.event('ticket.created'))
        post.assert_not_called()
        self.assertEqual(mail.outbox, [])

    @mock.patch('ticketing.slack.requests.post')
    def test_internal_comments_are_not_announced(self, post):
        notifications.dispatch_event(self.event('ticket.comment_added', author_id=self.admin.pk, internal=True))
        post.assert_not_called()
        self.assertEqual(mail.outbox, [])

    @mock.patch('ticketing.slack.requests.post')
    def test_student_comment_emails_the_assignee(self, post):
        post.return_value = slack_response()
        notifications.dispatch_event(self.event('ticket.comment_added', author_id=self.student.pk, internal=False))
        self.assertEqual(mail.outbox[0].to, ['admin@campus.test'])

    @override_settings(SLACK_BOT_TOKEN='')
    @mock.patch('ticketing.slack.requests.post')
    def test_slack_skipped_without_token(self, post):
        notifications.dispatch_event(self.event('ticket.created'))
        post.assert_not_called()
        self.assertEqual(len(mail.outbox), 1)

    @override_settings(SLACK_BOT_TOKEN='')
    @mock.patch('ticketing.notifications.send_mail', side_effect=smtplib.SMTPServerDisconnected('gone'))
    def test_email_failure_is_logged_and_recorded(self, send):
        with self.assertLogs('ticketing', level='ERROR') as logs:
            notifications.notify_ticket_created(self.ticket)

        self.assertIn('gone', logs.output[0])
        failed = Notification.objects.filter(channel='email')
        self.assertTrue(failed.exists())
        self.assertFalse(failed.filter(sent=True).exists())
        self.assertEqual(failed.first().error, 'gone')

    def test_missing_ticket_is_ignored(self):
        event = OutboxEvent(event_type='ticket.created', payload={'ticket_id': 999999})
        notifications.dispatch_event(event)
        self.assertEqual(mail.outbox, [])


@override_settings(SLACK_BOT_TOKEN='')
class ReminderTests(TestCase):
    def setUp(self):
        self.student = make_user('student')
        self.admin = make_user('admin', ROLE_ADMIN)
        self.monday = timezone.make_aware(datetime(2024, 6, 10, 9, 0))

    def make_ticket(self, due, **kwargs):
        return Ticket.objects.create(
            description='Broken chair', created_by=self.student, assigned_to=self.admin,
            resolution_due_at=due, **kwargs
        )

    def test_reminds_tickets_due_today(self):
        self.make_ticket(self.monday + timedelta(hours=6))
        self.make_ticket(self.monday + timedelta(days=1))
        self.make_ticket(self.monday + timedelta(hours=2), status='resolved')

        self.assertEqual(notifications.send_tat_reminders(self.monday), {'sent': 1})
        self.assertEqual(mail.outbox[0].to, ['admin@campus.test'])
        self.assertIn('15:00', mail.outbox[0].body)

    def test_no_reminders_on_weekends(self):
        saturday = self.monday - timedelta(days=2)
        self.assertEqual(notifications.send_tat_reminders(saturday), {'skipped': 'weekend'})

    @override_settings(ENABLE_TAT_REMINDERS=False)
    def test_reminders_can_be_disabled(self):
        self.assertEqual(notifications.send_tat_reminders(self.monday), {'skipped': 'disabled'})

    def test_pending_summary_per_admin(self):
        self.make_ticket(self.monday)
        self.make_ticket(self.monday)
        self.assertEqual(notifications.send_admin_reminders(), {'sent': 1})
        self.assertEqual(mail.outbox[0].subject, 'You have 2 pending ticket(s)')

    @mock.patch('ticketing.notifications.send_mail', side_effect=ConnectionRefusedError('refused'))
    def test_reminder_failure_is_logged(self, send):
        self.make_ticket(self.monday)
        with self.assertLogs('ticketing', level='ERROR'):
            self.assertEqual(notifications.send_admin_reminders(), {'sent': 0})

    def test_remind_spocs_command(self):
        self.make_ticket(self.monday)
        out = StringIO()
        call_command('remind_spocs', stdout=out)
        self.assertIn('Sent 1 pending-ticket summary', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)

    @override_settings(ENABLE_SPOC_REMINDERS=False)
    def test_remind_spocs_disabled(self):
        out = StringIO()
        call_command('remind_spocs', stdout=out)
        self.assertIn('skipped: disabled', out.getvalue())
