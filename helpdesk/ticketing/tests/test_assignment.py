from django.test import TestCase

from ticketing import services
from ticketing.assignment import create_admin_assignment, find_best_assignee, resolve_assignee
from ticketing.constants import ROLE_ADMIN, ROLE_SUPER_ADMIN
from ticketing.errors import Forbidden, NotFound
from ticketing.models import AdminAssignment, AdminProfile, Category, CategoryAssignment, Domain, Scope
from ticketing.scopes import check_scope_access, resolve_ticket_scope

from .utils import HostelSetup, make_student, make_user


class ScopeResolutionTests(HostelSetup, TestCase):
    def setUp(self):
        self.build_hostels()
        self.student_user, self.student = make_student('resident', hostel=self.hostel_b)

    def test_dynamic_scope_follows_student_hostel(self):
        self.assertEqual(resolve_ticket_scope(self.category, self.student_user), self.scope_b)

    def test_location_naming_a_scope_takes_precedence(self):
        scope = resolve_ticket_scope(self.category, self.student_user, location='hostel a')
        self.assertEqual(scope, self.scope_a)

    def test_fixed_scope(self):
        self.category.scope_mode = 'fixed'
        self.assertEqual(resolve_ticket_scope(self.category, self.student_user), self.scope_a)

    def test_no_scope_mode(self):
        self.category.scope_mode = 'none'
        self.assertIsNone(resolve_ticket_scope(self.category, self.student_user))

    def test_dynamic_scope_needs_student_profile(self):
        outsider = make_user('visitor')
        with self.assertRaises(NotFound):
            resolve_ticket_scope(self.category, outsider)

    def test_student_without_hostel_gets_no_scope(self):
        user, _ = make_student('day_scholar')
        self.assertIsNone(resolve_ticket_scope(self.category, user))

    def test_scope_access(self):
        self.assertTrue(check_scope_access(self.student_user, self.scope_b))
        self.assertFalse(check_scope_access(self.student_user, self.scope_a))
        self.assertTrue(check_scope_access(self.student_user, None))


class HostelTicketRoutingTests(HostelSetup, TestCase):
    def setUp(self):
        self.build_hostels()
        self.warden_a = make_user('warden_a', ROLE_ADMIN)
        self.warden_b = make_user('warden_b', ROLE_ADMIN)
        AdminProfile.objects.create(user=self.warden_a, primary_domain=self.domain, primary_scope=self.scope_a)
        AdminProfile.objects.create(user=self.warden_b, primary_domain=self.domain, primary_scope=self.scope_b)
        self.student_user, _ = make_student('resident', hostel=self.hostel_b)

    def test_ticket_goes_to_own_hostel_warden(self):
        ticket = services.create_ticket(self.student_user, {
            'category_id': self.category.pk,
            'subcategory_id': self.subcategory.pk,
            'description': 'Leaking tap in the washroom',
        })
        self.assertEqual(ticket.scope, self.scope_b)
        self.assertEqual(ticket.assigned_to, self.warden_b)
        self.assertEqual(ticket.metadata['assignment_source'], 'domain_scope')

    def test_cannot_raise_ticket_for_another_hostel(self):
        with self.assertRaises(Forbidden):
            services.create_ticket(self.student_user, {
                'category_id': self.category.pk,
                'description': 'Leaking tap',
                'location': 'Hostel A',
            })

    def test_ambiguous_match_falls_through_to_subcategory_admin(self):
        second = make_user('warden_b2', ROLE_ADMIN)
        AdminProfile.objects.create(user=second, primary_domain=self.domain, primary_scope=self.scope_b)
        plumber = make_user('plumber', ROLE_ADMIN)
        self.subcategory.assigned_admin = plumber
        self.subcategory.save()

        admin, source = resolve_assignee(self.category, self.subcategory, self.scope_b)
        self.assertEqual((admin, source), (plumber, 'subcategory'))

    def test_category_assignees_used_when_nothing_more_specific(self):
        AdminProfile.objects.all().delete()
        caretaker = make_user('caretaker', ROLE_ADMIN)
        CategoryAssignment.objects.create(category=self.category, user=caretaker)
        admin, source = resolve_assignee(self.category, None, self.scope_b)
        self.assertEqual((admin, source), (caretaker, 'domain_scope'))


class AssignmentRuleTests(TestCase):
    def setUp(self):
        self.domain = Domain.objects.create(name='Academics')
        self.scope = Scope.objects.create(domain=self.domain, name='CSE')
        self.exact = make_user('exact', ROLE_ADMIN)
        self.domain_wide = make_user('domain_wide', ROLE_ADMIN)
        self.catch_all = make_user('catch_all', ROLE_ADMIN)

    def test_most_specific_rule_wins(self):
        AdminAssignment.objects.create(user=self.catch_all)
        AdminAssignment.objects.create(user=self.domain_wide, domain=self.domain)
        AdminAssignment.objects.create(user=self.exact, domain=self.domain, scope=self.scope)

        self.assertEqual(find_best_assignee(self.domain, self.scope), self.exact)
        other_scope = Scope.objects.create(domain=self.domain, name='ECE')
        self.assertEqual(find_best_assignee(self.domain, other_scope), self.domain_wide)
        self.assertEqual(find_best_assignee(None, None), self.catch_all)

    def test_inactive_admins_are_skipped(self):
        AdminAssignment.objects.create(user=self.exact, domain=self.domain, scope=self.scope)
        self.exact.is_active = False
        self.exact.save()
        self.assertIsNone(find_best_assignee(self.domain, self.scope))

    def test_super_admin_is_the_last_resort(self):
        root = make_user('root', ROLE_SUPER_ADMIN)
        category = Category.objects.create(name='Misc')
        self.assertEqual(resolve_assignee(category), (root, 'super_admin'))

    def test_no_one_to_assign(self):
        category = Category.objects.create(name='Misc')
        self.assertEqual(resolve_assignee(category), (None, None))

    def test_create_assignment_checks_references(self):
        with self.assertRaises(NotFound):
            create_admin_assignment(self.exact.pk, domain_id=9999)
        assignment = create_admin_assignment(self.exact.pk, domain_id=self.domain.pk, scope_id=self.scope.pk)
        self.assertEqual(assignment.scope, self.scope)
