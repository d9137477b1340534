from django.contrib.auth.models import User

from ticketing.constants import ROLE_STUDENT
from ticketing.models import Category, Domain, Hostel, Scope, Student, Subcategory

PASSWORD = 'password123'


def make_user(username, role=ROLE_STUDENT, **extra):
    extra.setdefault('email', f'{username}@campus.test')
    user = User.objects.create_user(username=username, password=PASSWORD, **extra)
    user.profile.role = role
    user.profile.save()
    return user


def make_student(username, hostel=None, **extra):
    user = make_user(username, ROLE_STUDENT)
    student = Student.objects.create(user=user, hostel=hostel, **extra)
    return user, student


class HostelSetup:
    """Two hostels with a dynamic 'Hostel' domain and a maintenance category."""

    def build_hostels(self):
        self.hostel_a = Hostel.objects.create(name='Hostel A', code='HA')
        self.hostel_b = Hostel.objects.create(name='Hostel B', code='HB')
        self.domain = Domain.objects.create(name='Hostel', scope_mode='dynamic')
        self.scope_a = Scope.objects.create(
            domain=self.domain, name='Hostel A', student_field_key='hostel_id', reference_id=self.hostel_a.pk,
        )
        self.scope_b = Scope.objects.create(
            domain=self.domain, name='Hostel B', student_field_key='hostel_id', reference_id=self.hostel_b.pk,
        )
        self.category = Category.objects.create(
            name='Hostel Maintenance', domain=self.domain, scope=self.scope_a, scope_mode='dynamic', sla_hours=48,
        )
        self.subcategory = Subcategory.objects.create(category=self.category, name='Plumbing')
