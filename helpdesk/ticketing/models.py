import random
import string
import time

from django.contrib.auth.models import User
from django.db import models
from django.urls import reverse
from django.utils import timezone
from django.utils.text import slugify

from .constants import (
    FIELD_TYPES, MULTI_SELECT_TYPES, OUTBOX_STATUS_CHOICES, OPEN, PRIORITY_CHOICES,
    ROLE_CHOICES, ROLE_STUDENT, SCOPE_MODE_CHOICES, STATUS_CHOICES,
    STUDENT_FIELD_KEYS, VISIBILITY_CHOICES,
)


def generate_ticket_number():
    """TKT-<epoch millis>-<6 random chars>"""
    suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"TKT-{int(time.time() * 1000)}-{suffix}"


class Profile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_STUDENT)
    phone = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return f"{self.user.username} - {self.get_role_display()}"


# Master data

class Batch(models.Model):
    year = models.PositiveIntegerField(unique=True)
    name = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['-year']

    def __str__(self):
        return self.name or str(self.year)


class Hostel(models.Model):
    name = models.CharField(max_length=100, unique=True)
    code = models.CharField(max_length=20, unique=True, null=True, blank=True)
    capacity = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class ClassSection(models.Model):
    name = models.CharField(max_length=100, unique=True)
    department = models.CharField(max_length=100, blank=True)
    batch = models.ForeignKey(Batch, on_delete=models.SET_NULL, null=True, blank=True, related_name='sections')
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Domain(models.Model):
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    scope_mode = models.CharField(max_length=10, choices=SCOPE_MODE_CHOICES, default='none')
    is_active = models.BooleanField(default=True)

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Scope(models.Model):
    domain = models.ForeignKey(Domain, on_delete=models.CASCADE, related_name='scopes')
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100)
    reference_type = models.CharField(max_length=30, blank=True)
    reference_id = models.IntegerField(null=True, blank=True)
    # Student profile attribute a dynamic category reads to pick this scope
    student_field_key = models.CharField(max_length=30, choices=STUDENT_FIELD_KEYS, null=True, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        unique_together = ('domain', 'slug')

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.domain.name} / {self.name}"


# People

class Student(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='student')
    roll_no = models.CharField(max_length=50, unique=True, null=True, blank=True)
    room_no = models.CharField(max_length=20, blank=True)
    hostel = models.ForeignKey(Hostel, on_delete=models.SET_NULL, null=True, blank=True, related_name='students')
    class_section = models.ForeignKey(ClassSection, on_delete=models.SET_NULL, null=True, blank=True, related_name='students')
    batch = models.ForeignKey(Batch, on_delete=models.SET_NULL, null=True, blank=True, related_name='students')
    department = models.CharField(max_length=100, blank=True)
    blood_group = models.CharField(max_length=5, blank=True)
    parent_name = models.CharField(max_length=255, blank=True)
    parent_phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user.get_full_name() or self.user.username} ({self.roll_no or '-'})"

    @property
    def batch_year(self):
        return self.batch.year if self.batch_id else None

    def profile_snapshot(self):
        """Flat dict of profile values used by form conditions and scope lookup."""
        return {
            'hostel_id': self.hostel_id,
            'hostel': self.hostel.name if self.hostel_id else None,
            'class_section_id': self.class_section_id,
            'class_section': self.class_section.name if self.class_section_id else None,
            'batch_id': self.batch_id,
            'batch_year': self.batch_year,
            'department': self.department,
            'room_no': self.room_no,
            'roll_no': self.roll_no,
            'blood_group': self.blood_group,
        }


class AdminProfile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='admin_profile')
    designation = models.CharField(max_length=100, blank=True)
    department = models.CharField(max_length=100, blank=True)
    employee_id = models.CharField(max_length=50, unique=True, null=True, blank=True)
    specialization = models.CharField(max_length=255, blank=True)
    primary_domain = models.ForeignKey(Domain, on_delete=models.SET_NULL, null=True, blank=True, related_name='admins')
    primary_scope = models.ForeignKey(Scope, on_delete=models.SET_NULL, null=True, blank=True, related_name='admins')

    def __str__(self):
        return f"{self.user.username} ({self.designation or 'admin'})"


class Committee(models.Model):
    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    contact_email = models.EmailField(blank=True)
    head = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='headed_committees')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class CommitteeMember(models.Model):
    committee = models.ForeignKey(Committee, on_delete=models.CASCADE, related_name='members')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='committee_memberships')
    role = models.CharField(max_length=50, default='member')

    class Meta:
        unique_together = ('committee', 'user')


# Catalogue

class Category(models.Model):
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    icon = models.CharField(max_length=50, blank=True)
    color = models.CharField(max_length=20, blank=True)
    domain = models.ForeignKey(Domain, on_delete=models.SET_NULL, null=True, blank=True, related_name='categories')
    scope = models.ForeignKey(Scope, on_delete=models.SET_NULL, null=True, blank=True, related_name='categories')
    scope_mode = models.CharField(max_length=10, choices=SCOPE_MODE_CHOICES, default='none')
    parent = models.ForeignKey('self', on_delete=models.SET_NULL, null=True, blank=True, related_name='children')
    default_admin = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='default_categories')
    sla_hours = models.PositiveIntegerField(default=48)
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['display_order', 'name']
        verbose_name_plural = 'categories'

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Subcategory(models.Model):
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name='subcategories')
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255)
    description = models.TextField(blank=True)
    assigned_admin = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_subcategories')
    sla_hours = models.PositiveIntegerField(null=True, blank=True)
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'name']
        unique_together = ('category', 'slug')
        verbose_name_plural = 'subcategories'

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.category.name} / {self.name}"


class CategoryField(models.Model):
    subcategory = models.ForeignKey(Subcategory, on_delete=models.CASCADE, related_name='fields')
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255)
    field_type = models.CharField(max_length=20, choices=FIELD_TYPES, default='text')
    required = models.BooleanField(default=False)
    placeholder = models.CharField(max_length=255, blank=True)
    help_text = models.CharField(max_length=500, blank=True)
    # Constraints plus dependsOn / showWhenValue / hideWhenValue / requiredWhenValue
    validation = models.JSONField(default=dict, blank=True)
    assigned_admin = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_fields')
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'id']
        unique_together = ('subcategory', 'slug')

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name).replace('-', '_')
        super().save(*args, **kwargs)

    @property
    def rules(self):
        return self.validation or {}

    @property
    def is_multi_select(self):
        return self.field_type in MULTI_SELECT_TYPES or bool(self.rules.get('multiSelect'))

    def option_values(self):
        return [o.value for o in self.options.all() if o.is_active]

    def __str__(self):
        return f"{self.subcategory} / {self.name}"


class FieldOption(models.Model):
    field = models.ForeignKey(CategoryField, on_delete=models.CASCADE, related_name='options')
    label = models.CharField(max_length=255)
    value = models.CharField(max_length=255)
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'id']

    def __str__(self):
        return self.label


# Assignment and escalation

class CategoryAssignment(models.Model):
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name='assignments')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='category_assignments')
    assignment_type = models.CharField(max_length=50, default='primary')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('category', 'user')


class AdminAssignment(models.Model):
    """Routing rule: tickets in (domain, scope) go to ``user``. Nulls act as wildcards."""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='admin_assignments')
    domain = models.ForeignKey(Domain, on_delete=models.CASCADE, null=True, blank=True, related_name='admin_assignments')
    scope = models.ForeignKey(Scope, on_delete=models.CASCADE, null=True, blank=True, related_name='admin_assignments')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.user.username} -> {self.domain or '*'} / {self.scope or '*'}"


class EscalationRule(models.Model):
    domain = models.ForeignKey(Domain, on_delete=models.CASCADE, null=True, blank=True, related_name='escalation_rules')
    scope = models.ForeignKey(Scope, on_delete=models.CASCADE, null=True, blank=True, related_name='escalation_rules')
    level = models.PositiveIntegerField()
    escalate_to = models.ForeignKey(User, on_delete=models.CASCADE, related_name='escalation_rules')
    tat_hours = models.PositiveIntegerField(default=48)
    notify_channel = models.CharField(max_length=20, default='slack')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['level', '-created_at']

    def __str__(self):
        return f"L{self.level} {self.domain or '*'} / {self.scope or '*'} -> {self.escalate_to.username}"


# Tickets

class TicketGroup(models.Model):
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='ticket_groups')
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class Ticket(models.Model):
    ticket_number = models.CharField(default=generate_ticket_number, max_length=40, unique=True)
    title = models.CharField(max_length=255, blank=True)
    description = models.TextField()
    location = models.CharField(max_length=255, blank=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=OPEN)

    category = models.ForeignKey(Category, on_delete=models.SET_NULL, null=True, blank=True, related_name='tickets')
    subcategory = models.ForeignKey(Subcategory, on_delete=models.SET_NULL, null=True, blank=True, related_name='tickets')
    scope = models.ForeignKey(Scope, on_delete=models.SET_NULL, null=True, blank=True, related_name='tickets')
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='created_tickets')
    assigned_to = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_tickets')
    group = models.ForeignKey(TicketGroup, on_delete=models.SET_NULL, null=True, blank=True, related_name='tickets')
    merged_into = models.ForeignKey('self', on_delete=models.SET_NULL, null=True, blank=True, related_name='merged_tickets')

    escalation_level = models.PositiveIntegerField(default=0)
    escalated_at = models.DateTimeField(null=True, blank=True)
    forward_count = models.PositiveIntegerField(default=0)
    reopen_count = models.PositiveIntegerField(default=0)
    tat_extensions = models.PositiveIntegerField(default=0)

    acknowledgement_due_at = models.DateTimeField(null=True, blank=True)
    resolution_due_at = models.DateTimeField(null=True, blank=True)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    reopened_at = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.ticket_number} - {self.title or self.description[:40]}"

    def assign_to(self, user):
        self.assigned_to = user
        self.assigned_at = timezone.now()
        self.save(update_fields=['assigned_to', 'assigned_at', 'updated_at'])

    def get_absolute_url(self):
        return reverse('ticket_detail', args=[self.pk])

    @property
    def domain(self):
        return self.category.domain if self.category_id else None

    @property
    def is_overdue(self):
        return bool(
            self.resolution_due_at
            and self.resolution_due_at < timezone.now()
            and self.status not in ('resolved', 'closed', 'cancelled')
        )


class TicketActivity(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='activities')
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=50)
    details = models.JSONField(default=dict, blank=True)
    visibility = models.CharField(max_length=20, choices=VISIBILITY_CHOICES, default='student_visible')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name_plural = 'ticket activities'

    def __str__(self):
        return f"{self.action} on {self.ticket.ticket_number}"


class Comment(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='comments')
    text = models.TextField()
    created_by = models.ForeignKey(User, on_delete=models.CASCADE)
    is_internal = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"Comment on {self.ticket.ticket_number} by {self.created_by.username}"


class Attachment(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='attachments')
    file = models.FileField(upload_to='attachments/%Y/%m/')
    file_name = models.CharField(max_length=255, blank=True)
    file_size = models.PositiveIntegerField(default=0)
    mime_type = models.CharField(max_length=100, blank=True)
    uploaded_by = models.ForeignKey(User, on_delete=models.CASCADE)
    uploaded_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Attachment {self.file_name} for {self.ticket.ticket_number}"


class TicketFeedback(models.Model):
    ticket = models.OneToOneField(Ticket, on_delete=models.CASCADE, related_name='feedback')
    user = models.ForeignKey(User, on_delete=models.CASCADE)
    rating = models.PositiveSmallIntegerField()
    feedback = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class TicketCommitteeTag(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='committee_tags')
    committee = models.ForeignKey(Committee, on_delete=models.CASCADE, related_name='ticket_tags')
    tagged_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('ticket', 'committee')


class TicketWatcher(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='watchers')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='watched_tickets')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('ticket', 'user')


class TicketTag(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name='tags')
    tag = models.CharField(max_length=50)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('ticket', 'tag')


class SavedFilter(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='saved_filters')
    name = models.CharField(max_length=100)
    config = models.JSONField(default=dict)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-is_default', 'name']


# Notifications and outbox

class NotificationConfig(models.Model):
    """Channel settings. Most specific wins: subcategory, category, scope, global."""
    scope = models.ForeignKey(Scope, on_delete=models.CASCADE, null=True, blank=True, related_name='notification_configs')
    category = models.ForeignKey(Category, on_delete=models.CASCADE, null=True, blank=True, related_name='notification_configs')
    subcategory = models.ForeignKey(Subcategory, on_delete=models.CASCADE, null=True, blank=True, related_name='notification_configs')
    enable_slack = models.BooleanField(default=True)
    enable_email = models.BooleanField(default=True)
    slack_channel = models.CharField(max_length=255, blank=True)
    slack_cc_user_ids = models.JSONField(default=list, blank=True)
    email_recipients = models.JSONField(default=list, blank=True)
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-priority', '-created_at']

    def __str__(self):
        target = self.subcategory or self.category or self.scope or 'global'
        return f"Notifications for {target}"


class TicketIntegration(models.Model):
    ticket = models.OneToOneField(Ticket, on_delete=models.CASCADE, related_name='integration')
    slack_channel = models.CharField(max_length=255, blank=True)
    slack_thread_ts = models.CharField(max_length=64, blank=True)
    email_thread_id = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)


class Notification(models.Model):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, null=True, blank=True, related_name='notifications')
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='notifications')
    channel = models.CharField(max_length=20)
    notification_type = models.CharField(max_length=50)
    recipient = models.CharField(max_length=255, blank=True)
    sent = models.BooleanField(default=False)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']


class OutboxEvent(models.Model):
    event_type = models.CharField(max_length=50)
    aggregate_type = models.CharField(max_length=50, default='ticket')
    aggregate_id = models.CharField(max_length=50, blank=True)
    payload = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=OUTBOX_STATUS_CHOICES, default='pending')
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    last_error = models.TextField(blank=True)
    priority = models.IntegerField(default=5)
    idempotency_key = models.CharField(max_length=255, unique=True, null=True, blank=True)
    scheduled_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['priority', 'created_at']

    def __str__(self):
        return f"{self.event_type} [{self.status}]"
