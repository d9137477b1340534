from datetime import datetime, timedelta
from types import SimpleNamespace

from django.test import SimpleTestCase
from django.utils import timezone

from ticketing.tat import (
    add_business_hours, calculate_deadlines, humanize_delta, parse_tat, remaining_business_hours, tat_state,
)


def local(*args):
    return timezone.make_aware(datetime(*args))


class BusinessHoursTests(SimpleTestCase):
    def test_same_day(self):
        monday = local(2024, 6, 10, 10, 0)
        self.assertEqual(add_business_hours(monday, 5), local(2024, 6, 10, 15, 0))

    def test_weekend_is_skipped(self):
        friday_evening = local(2024, 6, 7, 18, 0)
        self.assertEqual(add_business_hours(friday_evening, 10), local(2024, 6, 10, 4, 0))

    def test_start_on_weekend_begins_monday(self):
        saturday = local(2024, 6, 8, 12, 0)
        self.assertEqual(add_business_hours(saturday, 2), local(2024, 6, 10, 2, 0))

    def test_two_business_days(self):
        monday = local(2024, 6, 10, 10, 0)
        self.assertEqual(add_business_hours(monday, 48), local(2024, 6, 12, 10, 0))

    def test_remaining_hours_ignore_weekend(self):
        start = local(2024, 6, 7, 18, 0)
        end = local(2024, 6, 10, 4, 0)
        self.assertEqual(remaining_business_hours(start, end), 10.0)

    def test_remaining_hours_when_end_has_passed(self):
        start = local(2024, 6, 10, 10, 0)
        self.assertEqual(remaining_business_hours(start, start - timedelta(hours=3)), 0.0)


class DeadlineTests(SimpleTestCase):
    def test_acknowledgement_is_a_tenth_of_the_sla(self):
        monday = local(2024, 6, 10, 10, 0)
        deadlines = calculate_deadlines(monday, 48)
        self.assertEqual(deadlines['acknowledgement_due_at'], local(2024, 6, 10, 15, 0))
        self.assertEqual(deadlines['resolution_due_at'], local(2024, 6, 12, 10, 0))

    def test_default_sla(self):
        monday = local(2024, 6, 10, 10, 0)
        self.assertEqual(calculate_deadlines(monday)['resolution_due_at'], local(2024, 6, 12, 10, 0))


class ParseTatTests(SimpleTestCase):
    def test_units(self):
        self.assertEqual(parse_tat('2 days'), 48)
        self.assertEqual(parse_tat('1 week'), 168)
        self.assertEqual(parse_tat('4h'), 4)
        self.assertEqual(parse_tat('36'), 36)
        self.assertEqual(parse_tat('1.5 hours'), 1.5)

    def test_rejects_garbage(self):
        self.assertIsNone(parse_tat('soon'))
        self.assertIsNone(parse_tat('0'))
        self.assertIsNone(parse_tat(None))


class TatStateTests(SimpleTestCase):
    def setUp(self):
        self.now = local(2024, 6, 10, 10, 0)

    def test_overdue(self):
        ticket = SimpleNamespace(resolution_due_at=self.now - timedelta(hours=1))
        self.assertEqual(tat_state(ticket, self.now), ('overdue', 'overdue by 1 hour'))

    def test_due_today(self):
        ticket = SimpleNamespace(resolution_due_at=self.now + timedelta(hours=3))
        self.assertEqual(tat_state(ticket, self.now), ('due_today', 'due in 3 hours'))

    def test_on_track(self):
        ticket = SimpleNamespace(resolution_due_at=self.now + timedelta(days=2))
        self.assertEqual(tat_state(ticket, self.now), ('on_track', 'due in 2 days'))

    def test_no_deadline(self):
        self.assertEqual(tat_state(SimpleNamespace(resolution_due_at=None), self.now), (None, ''))

    def test_humanize(self):
        self.assertEqual(humanize_delta(timedelta(days=1, hours=2, minutes=5)), '1 day, 2 hours')
        self.assertEqual(humanize_delta(timedelta(minutes=45)), '45 minutes')
