"""Student roster management and CSV import."""
import csv
import io
import logging

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Q

from .constants import ROLE_CHOICES, ROLE_STUDENT, STUDENT_CSV_HEADERS
from .errors import AlreadyExists, NotFound, ValidationFailed
from .models import AdminProfile, Batch, ClassSection, Hostel, Student

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('full_name', 'email')


def split_name(full_name):
    parts = (full_name or '').strip().split(None, 1)
    first = parts[0] if parts else ''
    last = parts[1] if len(parts) > 1 else ''
    return first, last


def search_students(q='', hostel_id=None, batch_year=None, active=None):
    qs = Student.objects.select_related('user', 'hostel', 'class_section', 'batch')
    if q:
        qs = qs.filter(
            Q(user__first_name__icontains=q) | Q(user__last_name__icontains=q)
            | Q(user__email__icontains=q) | Q(roll_no__icontains=q)
        )
    if hostel_id:
        qs = qs.filter(hostel_id=hostel_id)
    if batch_year:
        qs = qs.filter(batch__year=batch_year)
    if active is not None:
        qs = qs.filter(user__is_active=active)
    return qs.order_by('user__first_name', 'user__last_name')


def _lookup(model, value):
    value = (value or '').strip()
    if not value:
        return None
    obj = model.objects.filter(name__iexact=value).first()
    if obj is None:
        raise ValidationFailed(f"Unknown {model._meta.verbose_name} '{value}'")
    return obj


def _batch(year):
    if year in (None, ''):
        return None
    try:
        year = int(str(year).strip())
    except ValueError:
        raise ValidationFailed(f"Invalid batch year '{year}'")
    batch = Batch.objects.filter(year=year).first()
    if batch is None:
        raise ValidationFailed(f"Unknown batch year {year}")
    return batch


def _apply_profile(student, data):
    if 'roll_no' in data:
        student.roll_no = (data.get('roll_no') or '').strip() or None
    if 'room_number' in data or 'room_no' in data:
        student.room_no = (data.get('room_number') or data.get('room_no') or '').strip()
    if 'hostel' in data:
        student.hostel = _lookup(Hostel, data.get('hostel'))
    if 'class_section' in data:
        student.class_section = _lookup(ClassSection, data.get('class_section'))
    if 'batch_year' in data:
        student.batch = _batch(data.get('batch_year'))
    for key in ('department', 'blood_group', 'parent_name', 'parent_phone'):
        if key in data:
            setattr(student, key, (data.get(key) or '').strip())


@transaction.atomic
def create_student(data):
    email = (data.get('email') or '').strip().lower()
    if not email:
        raise ValidationFailed("Email is required")
    if User.objects.filter(email__iexact=email).exists():
        raise AlreadyExists(f"A user with email {email} already exists")
    roll_no = (data.get('roll_no') or '').strip()
    if roll_no and Student.objects.filter(roll_no=roll_no).exists():
        raise AlreadyExists(f"Roll number {roll_no} is already taken")

    first, last = split_name(data.get('full_name'))
    user = User.objects.create_user(username=email, email=email, first_name=first, last_name=last)
    user.set_unusable_password()
    user.save()
    user.profile.role = ROLE_STUDENT
    user.profile.phone = (data.get('mobile') or '').strip()
    user.profile.save()

    student = Student(user=user)
    _apply_profile(student, data)
    student.save()
    logger.info("Student %s created", email)
    return student


@transaction.atomic
def update_student(student, data):
    user = student.user
    if data.get('full_name'):
        user.first_name, user.last_name = split_name(data['full_name'])
    if data.get('email'):
        email = data['email'].strip().lower()
        if User.objects.filter(email__iexact=email).exclude(pk=user.pk).exists():
            raise AlreadyExists(f"A user with email {email} already exists")
        user.email = email
    user.save()
    if 'mobile' in data:
        user.profile.phone = (data.get('mobile') or '').strip()
        user.profile.save(update_fields=['phone'])
    roll_no = (data.get('roll_no') or '').strip()
    if roll_no and Student.objects.filter(roll_no=roll_no).exclude(pk=student.pk).exists():
        raise AlreadyExists(f"Roll number {roll_no} is already taken")
    _apply_profile(student, data)
    student.save()
    return student


def set_active(student, active):
    student.user.is_active = active
    student.user.save(update_fields=['is_active'])
    return student


def get_student(pk):
    try:
        return Student.objects.select_related('user').get(pk=pk)
    except (Student.DoesNotExist, ValueError):
        raise NotFound('Student', pk)


def csv_template():
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(STUDENT_CSV_HEADERS)
    writer.writerow([
        'Asha Rao', 'asha.rao@example.edu', '9876543210', '22CS041', '214', 'Hostel A',
        'CSE-A', '2022', 'Computer Science', 'O+', 'R. Rao', '9876500000',
    ])
    return buffer.getvalue()


def bulk_upload(file_obj):
    """Create or update students from a CSV file.

    Each row is handled independently. Returns
    ``{'created': [...], 'updated': [...], 'failed': [{'row', 'email', 'error'}]}``.
    """
    content = file_obj.read()
    if isinstance(content, bytes):
        try:
            content = content.decode('utf-8-sig')
        except UnicodeDecodeError:
            raise ValidationFailed("CSV file must be UTF-8 encoded")
    reader = csv.DictReader(io.StringIO(content))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in REQUIRED_COLUMNS if c not in headers]
    if missing:
        raise ValidationFailed(f"CSV is missing required columns: {', '.join(missing)}",
                               {'expected': STUDENT_CSV_HEADERS})

    result = {'created': [], 'updated': [], 'failed': []}
    for row_number, raw in enumerate(reader, start=2):
        row = {k.strip(): (v or '').strip() for k, v in raw.items() if k and isinstance(v, (str, type(None)))}
        email = row.get('email', '').lower()
        try:
            if not row.get('full_name') or not email:
                raise ValidationFailed("full_name and email are required")
            with transaction.atomic():
                existing = Student.objects.filter(user__email__iexact=email).select_related('user').first()
                if existing:
                    update_student(existing, row)
                    result['updated'].append(existing.pk)
                else:
                    result['created'].append(create_student(row).pk)
        except (ValidationFailed, AlreadyExists) as exc:
            result['failed'].append({'row': row_number, 'email': email, 'error': exc.message})
    logger.info("Student CSV import: %d created, %d updated, %d failed",
                len(result['created']), len(result['updated']), len(result['failed']))
    return result


# Staff

@transaction.atomic
def upsert_admin_profile(user, data):
    profile, _ = AdminProfile.objects.get_or_create(user=user)
    for key in ('designation', 'department', 'specialization'):
        if key in data:
            setattr(profile, key, data.get(key) or '')
    if 'employee_id' in data:
        profile.employee_id = data.get('employee_id') or None
    if 'primary_domain_id' in data:
        profile.primary_domain_id = data.get('primary_domain_id') or None
    if 'primary_scope_id' in data:
        profile.primary_scope_id = data.get('primary_scope_id') or None
    profile.save()
    return profile


def change_role(user, role):
    if role not in dict(ROLE_CHOICES):
        raise ValidationFailed(f"Unknown role '{role}'")
    user.profile.role = role
    user.profile.save(update_fields=['role'])
    logger.info("Role of %s changed to %s", user.username, role)
    return user
