from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from ticketing.constants import RESOLVED, ROLE_ADMIN, ROLE_SNR_ADMIN, ROLE_SUPER_ADMIN
from ticketing.models import (
    Category, CategoryField, Comment, Domain, EscalationRule, NotificationConfig, Subcategory, Ticket,
)

from .utils import make_user


class APITestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.student = make_user('student')
        self.other_student = make_user('other')
        self.admin = make_user('admin', ROLE_ADMIN)
        self.senior = make_user('senior', ROLE_SNR_ADMIN)
        self.root = make_user('root', ROLE_SUPER_ADMIN)
        self.category = Category.objects.create(name='IT Support', default_admin=self.admin)
        self.subcategory = Subcategory.objects.create(category=self.category, name='Wifi')

    def login(self, user):
        self.client.force_authenticate(user=user)

    def make_ticket(self, **kwargs):
        kwargs.setdefault('description', 'Wifi down')
        kwargs.setdefault('created_by', self.student)
        kwargs.setdefault('assigned_to', self.admin)
        kwargs.setdefault('category', self.category)
        return Ticket.objects.create(**kwargs)


class TicketAPITests(APITestCase):
    def test_create_ticket(self):
        self.login(self.student)
        response = self.client.post('/api/tickets/', {
            'category_id': self.category.pk,
            'subcategory_id': self.subcategory.pk,
            'description': 'No signal on floor 3',
            'priority': 'high',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        ticket = response.data['ticket']
        self.assertEqual(ticket['status'], 'open')
        self.assertEqual(ticket['priority'], 'high')
        self.assertEqual(ticket['assigned_to']['username'], 'admin')

    def test_unknown_category(self):
        self.login(self.student)
        response = self.client.post('/api/tickets/', {'category_id': 999, 'description': 'x'}, format='json')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error']['code'], 'NOT_FOUND')

    def test_field_errors_are_reported(self):
        CategoryField.objects.create(subcategory=self.subcategory, name='Building', required=True)
        self.login(self.student)
        response = self.client.post('/api/tickets/', {
            'category_id': self.category.pk, 'subcategory_id': self.subcategory.pk, 'description': 'x',
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'VALIDATION_ERROR')
        self.assertEqual(response.data['error']['details']['errors'], {'building': 'Building is required'})

    def test_weekly_limit(self):
        for n in range(3):
            self.make_ticket(description=f'issue {n}')
        self.login(self.student)
        response = self.client.post('/api/tickets/', {'category_id': self.category.pk, 'description': 'x'}, format='json')
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.data['error']['code'], 'WEEKLY_LIMIT_EXCEEDED')

    def test_list_is_scoped_to_the_user(self):
        mine = self.make_ticket()
        self.make_ticket(created_by=self.other_student)
        self.login(self.student)
        response = self.client.get('/api/tickets/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([t['id'] for t in response.data['results']], [mine.pk])
        self.assertEqual(response.data['stats']['total'], 1)

    def test_cannot_view_someone_elses_ticket(self):
        ticket = self.make_ticket(created_by=self.other_student)
        self.login(self.student)
        response = self.client.get(f'/api/tickets/{ticket.pk}/')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['error']['code'], 'FORBIDDEN')

    def test_missing_ticket(self):
        self.login(self.root)
        self.assertEqual(self.client.get('/api/tickets/424242/').status_code, 404)

    def test_internal_comments_hidden_from_students(self):
        ticket = self.make_ticket()
        Comment.objects.create(ticket=ticket, created_by=self.admin, text='router is old', is_internal=True)
        Comment.objects.create(ticket=ticket, created_by=self.admin, text='on it')

        self.login(self.student)
        self.assertEqual([c['text'] for c in self.client.get(f'/api/tickets/{ticket.pk}/').data['comments']], ['on it'])
        self.login(self.admin)
        self.assertEqual(len(self.client.get(f'/api/tickets/{ticket.pk}/comments/').data), 2)

    def test_status_change(self):
        ticket = self.make_ticket()
        self.login(self.admin)
        response = self.client.post(f'/api/tickets/{ticket.pk}/status/', {'status': 'in_progress'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['ticket']['status'], 'in_progress')

    def test_invalid_status_change(self):
        ticket = self.make_ticket(status='closed')
        self.login(self.admin)
        response = self.client.post(f'/api/tickets/{ticket.pk}/status/', {'status': 'in_progress'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'INVALID_STATUS_TRANSITION')

    def test_reopen_warning(self):
        ticket = self.make_ticket(status=RESOLVED, reopen_count=2)
        self.login(self.student)
        response = self.client.post(f'/api/tickets/{ticket.pk}/reopen/', {'reason': 'again'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['warning'], 'This ticket has been reopened 3 times')
        self.assertEqual(response.data['ticket']['escalation_level'], 1)

    def test_forward_limit_conflict(self):
        ticket = self.make_ticket(forward_count=3)
        self.login(self.root)
        response = self.client.post(f'/api/tickets/{ticket.pk}/forward/', {'assigned_to': self.senior.pk}, format='json')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error']['code'], 'CONFLICT')

    def test_feedback(self):
        ticket = self.make_ticket(status=RESOLVED)
        self.login(self.student)
        response = self.client.post(f'/api/tickets/{ticket.pk}/feedback/', {'rating': 5}, format='json')
        self.assertEqual(response.status_code, 201)
        again = self.client.post(f'/api/tickets/{ticket.pk}/feedback/', {'rating': 4}, format='json')
        self.assertEqual(again.data['error']['code'], 'ALREADY_EXISTS')

    def test_student_activity_hides_admin_entries(self):
        ticket = self.make_ticket()
        self.login(self.admin)
        self.client.post(f'/api/tickets/{ticket.pk}/comments/', {'text': 'check', 'is_internal': True}, format='json')
        self.login(self.student)
        actions = [a['action'] for a in self.client.get(f'/api/tickets/{ticket.pk}/activity/').data]
        self.assertNotIn('internal_note', actions)

    def test_bulk_actions_need_staff(self):
        ticket = self.make_ticket()
        self.login(self.student)
        response = self.client.post('/api/tickets/bulk-close/', {'ticket_ids': [ticket.pk]}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_bulk_status(self):
        first, second = self.make_ticket(), self.make_ticket(status='closed')
        self.login(self.root)
        response = self.client.post('/api/tickets/bulk-status/', {
            'ticket_ids': [first.pk, second.pk], 'status': 'resolved',
        }, format='json')
        self.assertEqual(response.data['updated'], [first.pk])
        self.assertEqual(len(response.data['failed']), 1)

    def test_export(self):
        self.make_ticket()
        self.login(self.root)
        response = self.client.get('/api/tickets/export/')
        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn(b'ticket_number', response.content)

    def test_merge_tickets(self):
        target = self.make_ticket()
        duplicate = self.make_ticket(description='Wifi still down')
        self.login(self.admin)

        response = self.client.post(f'/api/tickets/{target.pk}/merge/', {
            'source_ticket_ids': [duplicate.pk], 'reason': 'Same outage',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        duplicate.refresh_from_db()
        self.assertEqual(duplicate.status, 'merged')
        self.assertEqual(duplicate.merged_into, target)

    def test_merge_rejects_self_and_students(self):
        target = self.make_ticket()
        self.login(self.admin)
        response = self.client.post(f'/api/tickets/{target.pk}/merge/', {
            'source_ticket_ids': [target.pk], 'reason': 'dup',
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'VALIDATION_ERROR')

        self.login(self.student)
        response = self.client.post(f'/api/tickets/{target.pk}/merge/', {
            'source_ticket_ids': [self.make_ticket().pk], 'reason': 'dup',
        }, format='json')
        self.assertEqual(response.status_code, 403)

    def test_archive_hides_ticket_from_default_list(self):
        ticket = self.make_ticket(status=RESOLVED)
        self.login(self.root)

        response = self.client.post(f'/api/tickets/{ticket.pk}/archive/', {'reason': 'Done'}, format='json')

        self.assertEqual(response.data['ticket']['status'], 'archived')
        self.assertEqual(self.client.get('/api/tickets/').data['results'], [])
        archived = self.client.get('/api/tickets/', {'status': 'archived'})
        self.assertEqual([t['id'] for t in archived.data['results']], [ticket.pk])


class ConfigurationAPITests(APITestCase):
    def test_students_cannot_change_catalogue(self):
        self.login(self.student)
        self.assertEqual(self.client.post('/api/categories/', {'name': 'Mess'}, format='json').status_code, 403)
        self.assertEqual(self.client.get('/api/categories/').status_code, 200)

    def test_create_category_generates_slug(self):
        self.login(self.root)
        response = self.client.post('/api/categories/', {'name': 'IT Support'}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['slug'], 'it-support-2')

    def test_field_logic_is_checked(self):
        self.login(self.root)
        response = self.client.post('/api/fields/', {
            'subcategory': self.subcategory.pk, 'name': 'Room', 'validation': {'dependsOn': 'Room'},
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'VALIDATION_ERROR')

    def test_schema(self):
        CategoryField.objects.create(subcategory=self.subcategory, name='Building')
        self.login(self.student)
        response = self.client.get(f'/api/categories/{self.category.pk}/schema/')
        self.assertEqual(response.data['subcategories'][0]['fields'][0]['slug'], 'building')

    def test_escalation_rules(self):
        domain = Domain.objects.create(name='Hostel')
        self.login(self.root)
        payload = {'domain': domain.pk, 'level': 1, 'escalate_to': self.senior.pk, 'tat_hours': 24}
        self.assertEqual(self.client.post('/api/escalation-rules/', payload, format='json').status_code, 201)
        duplicate = self.client.post('/api/escalation-rules/', payload, format='json')
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.data['error']['code'], 'ALREADY_EXISTS')

        rule = EscalationRule.objects.get()
        self.client.delete(f'/api/escalation-rules/{rule.pk}/')
        rule.refresh_from_db()
        self.assertFalse(rule.is_active)

    def test_escalation_rule_update_rejects_duplicate_level(self):
        self.login(self.root)
        self.client.post('/api/escalation-rules/', {'level': 1, 'escalate_to': self.senior.pk}, format='json')
        second = self.client.post('/api/escalation-rules/', {'level': 2, 'escalate_to': self.senior.pk}, format='json')

        response = self.client.patch(f"/api/escalation-rules/{second.data['id']}/", {'level': 1}, format='json')

        self.assertEqual(response.status_code, 409)
        self.assertEqual(EscalationRule.objects.filter(level=1, is_active=True).count(), 1)

    def test_escalation_rules_are_super_admin_only(self):
        self.login(self.admin)
        self.assertEqual(self.client.get('/api/escalation-rules/').status_code, 403)

    def test_resolve_notification_config(self):
        NotificationConfig.objects.create(slack_channel='#global')
        NotificationConfig.objects.create(category=self.category, slack_channel='#it')
        self.login(self.root)
        response = self.client.get('/api/notification-configs/resolve/', {'category': self.category.pk})
        self.assertEqual(response.data['slack_channel'], '#it')

    def test_student_management(self):
        self.login(self.root)
        response = self.client.post('/api/students/', {'full_name': 'Asha Rao', 'email': 'asha@campus.test'},
                                    format='json')
        self.assertEqual(response.status_code, 201)
        duplicate = self.client.post('/api/students/', {'full_name': 'Asha', 'email': 'asha@campus.test'},
                                     format='json')
        self.assertEqual(duplicate.status_code, 409)

        deactivated = self.client.post(f"/api/students/{response.data['id']}/deactivate/")
        self.assertFalse(deactivated.data['is_active'])

    def test_student_list_tolerates_bad_paging(self):
        self.login(self.root)
        response = self.client.get('/api/students/', {'page_size': '0'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['page_size'], 1)
        self.assertEqual(self.client.get('/api/students/', {'page': 'x'}).status_code, 200)

    def test_role_change(self):
        self.login(self.root)
        response = self.client.post(f'/api/staff/{self.student.pk}/role/', {'role': 'admin'}, format='json')
        self.assertEqual(response.data['role'], 'admin')


class OperationalAPITests(APITestCase):
    def test_health_is_public(self):
        response = self.client.get('/api/health/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['database'], 'ok')

    def test_cron_requires_secret(self):
        self.assertEqual(self.client.post('/api/cron/escalate/').status_code, 403)

    @override_settings(CRON_SECRET='s3cret')
    def test_cron_with_secret(self):
        response = self.client.post('/api/cron/escalate/', HTTP_AUTHORIZATION='Bearer s3cret')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['errors'], 0)
        wrong = self.client.post('/api/cron/escalate/', HTTP_AUTHORIZATION='Bearer nope')
        self.assertEqual(wrong.status_code, 403)

    @override_settings(CRON_SECRET='s3cret')
    def test_cron_outbox_rejects_bad_batch(self):
        auth = {'HTTP_AUTHORIZATION': 'Bearer s3cret'}
        response = self.client.post('/api/cron/outbox/?batch=many', **auth)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.client.post('/api/cron/outbox/?batch=5', **auth).status_code, 200)

    def test_hierarchy(self):
        self.login(self.student)
        response = self.client.get('/api/hierarchy/')
        self.assertEqual(response.data[0]['subcategories'][0]['name'], 'Wifi')

    def test_analytics_for_staff_only(self):
        self.login(self.student)
        self.assertEqual(self.client.get('/api/analytics/').status_code, 403)
        self.login(self.root)
        self.assertIn('categories', self.client.get('/api/analytics/').data)
