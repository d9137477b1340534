"""Ticket operations.

Every write goes through here so that views and the API share the same
rules: status transitions, TAT bookkeeping, activity rows and outbox
events.
"""
import csv
import io
import logging
import os
from datetime import timedelta

from django.contrib.auth.models import User
from django.db import transaction
from django.utils import timezone

from . import outbox
from .activity import log_activity
from .assignment import resolve_assignee
from .constants import (
    ACKNOWLEDGED, ALLOWED_ATTACHMENT_EXTENSIONS, ARCHIVED, AUTO_ESCALATE_REOPEN_COUNT,
    AUTO_ESCALATE_TAT_EXTENSIONS, AWAITING_STUDENT, CANCELLED, CLOSED, EVENT_COMMENT_ADDED,
    EVENT_STATUS_CHANGED, EVENT_TICKET_ASSIGNED, EVENT_TICKET_CREATED, IN_PROGRESS, LIMITS,
    LOW_RATING_THRESHOLD, MERGED, REOPENED, RESOLVED, ROLE_STUDENT, STATUS_TRANSITIONS,
)
from .errors import (
    AlreadyExists, Conflict, Forbidden, InvalidStatusTransition, NotFound, ValidationFailed,
    WeeklyLimitExceeded,
)
from .escalation import escalate_to_next_level
from .field_logic import strip_profile_keys, validate_answers
from .models import (
    Attachment, Category, Comment, SavedFilter, Student, Subcategory, Ticket, TicketFeedback,
    TicketGroup, TicketTag, TicketWatcher,
)
from .rbac import can_assign_ticket, can_change_status, can_manage_ticket, can_view_ticket, get_user_role, is_staff_role
from .scopes import check_scope_access, resolve_ticket_scope
from .tat import add_business_hours, calculate_deadlines, parse_tat

logger = logging.getLogger(__name__)


def can_transition(current, new):
    return new in STATUS_TRANSITIONS.get(current, [])


def tickets_created_this_week(user, now=None):
    since = (now or timezone.now()) - timedelta(days=7)
    return Ticket.objects.filter(created_by=user, created_at__gte=since).count()


def check_weekly_limit(user):
    if get_user_role(user) != ROLE_STUDENT:
        return
    limit = LIMITS['WEEKLY_TICKET_LIMIT']
    if tickets_created_this_week(user) >= limit:
        raise WeeklyLimitExceeded(limit)


def validate_upload(uploaded, existing_count=0):
    if existing_count >= LIMITS['MAX_ATTACHMENTS']:
        raise ValidationFailed(f"A ticket can have at most {LIMITS['MAX_ATTACHMENTS']} attachments")
    ext = os.path.splitext(uploaded.name)[1].lower()
    if ext not in ALLOWED_ATTACHMENT_EXTENSIONS:
        raise ValidationFailed(f"File type {ext or '(none)'} is not allowed",
                               {'allowed': list(ALLOWED_ATTACHMENT_EXTENSIONS)})
    if uploaded.size > LIMITS['MAX_FILE_SIZE']:
        raise ValidationFailed("File is larger than 10 MB")


def add_attachment(ticket, user, uploaded):
    if not can_view_ticket(user, ticket):
        raise Forbidden("You cannot add attachments to this ticket")
    validate_upload(uploaded, ticket.attachments.count())
    attachment = Attachment.objects.create(
        ticket=ticket,
        uploaded_by=user,
        file=uploaded,
        file_name=uploaded.name,
        file_size=uploaded.size,
        mime_type=getattr(uploaded, 'content_type', '') or '',
    )
    log_activity(ticket, user, 'attachment_added', {'file_name': uploaded.name})
    return attachment


def profile_for(user, submitted=None):
    student = Student.objects.select_related('hostel', 'class_section', 'batch').filter(user=user).first()
    profile = student.profile_snapshot() if student else {}
    if submitted and not isinstance(submitted, dict):
        raise ValidationFailed("profile must be an object")
    profile.update(submitted or {})
    return profile


def create_ticket(user, data, files=()):
    """Create a ticket from form/API data.

    ``data`` keys: category_id, subcategory_id, description, title, location,
    priority, metadata (answers to the dynamic fields) and profile.
    """
    check_weekly_limit(user)

    description = (data.get('description') or '').strip()
    if not description:
        raise ValidationFailed("Description is required", {'errors': {'description': 'Description is required'}})

    try:
        category = Category.objects.select_related('domain', 'scope', 'default_admin').get(
            pk=data.get('category_id'), is_active=True)
    except (Category.DoesNotExist, ValueError, TypeError):
        raise NotFound('Category', data.get('category_id'))

    subcategory = None
    if data.get('subcategory_id'):
        subcategory = Subcategory.objects.select_related('assigned_admin').filter(
            pk=data['subcategory_id'], is_active=True).first()
        if subcategory is None:
            raise NotFound('Subcategory', data['subcategory_id'])
        if subcategory.category_id != category.pk:
            raise ValidationFailed("Subcategory does not belong to the selected category")

    profile = profile_for(user, data.get('profile'))
    metadata = data.get('metadata') or {}
    if not isinstance(metadata, dict):
        raise ValidationFailed("metadata must be an object")
    answers = metadata
    fields = []
    if subcategory is not None:
        fields = list(subcategory.fields.filter(is_active=True).select_related('assigned_admin').prefetch_related('options'))
        answers = strip_profile_keys(metadata, [f.slug for f in fields])
        errors = validate_answers(fields, answers, profile)
        if errors:
            raise ValidationFailed("Some fields are invalid", {'errors': errors})

    location = (data.get('location') or '').strip()
    scope = resolve_ticket_scope(category, user, location)
    if scope is not None and not check_scope_access(user, scope):
        raise Forbidden("You cannot raise tickets for that location")

    sla_hours = (subcategory.sla_hours if subcategory and subcategory.sla_hours else None) or category.sla_hours
    assignee, source = resolve_assignee(category, subcategory, scope, fields, answers)

    uploads = list(files or [])
    for position, uploaded in enumerate(uploads):
        validate_upload(uploaded, position)

    now = timezone.now()
    deadlines = calculate_deadlines(now, sla_hours)
    with transaction.atomic():
        ticket = Ticket.objects.create(
            title=(data.get('title') or '').strip() or description[:80],
            description=description,
            location=location,
            priority=data.get('priority') or 'medium',
            category=category,
            subcategory=subcategory,
            scope=scope,
            created_by=user,
            assigned_to=assignee,
            assigned_at=now if assignee else None,
            metadata=dict(metadata, assignment_source=source, sla_hours=sla_hours),
            **deadlines,
        )
        for uploaded in uploads:
            Attachment.objects.create(
                ticket=ticket, uploaded_by=user, file=uploaded, file_name=uploaded.name,
                file_size=uploaded.size, mime_type=getattr(uploaded, 'content_type', '') or '',
            )
        log_activity(ticket, user, 'created', {
            'category': category.name,
            'subcategory': subcategory.name if subcategory else None,
            'assigned_to': assignee.username if assignee else None,
        })
        outbox.enqueue(EVENT_TICKET_CREATED, ticket, idempotency_key=f'ticket.created:{ticket.pk}', priority=1)

    logger.info("Ticket %s created by %s (assigned via %s)", ticket.ticket_number, user.username, source)
    return ticket


def _apply_status(ticket, new_status, now):
    ticket.status = new_status
    fields = ['status', 'updated_at']
    if new_status == ACKNOWLEDGED and not ticket.acknowledged_at:
        ticket.acknowledged_at = now
        fields.append('acknowledged_at')
    elif new_status == RESOLVED:
        ticket.resolved_at = now
        fields.append('resolved_at')
    elif new_status == CLOSED:
        ticket.closed_at = now
        fields.append('closed_at')
    elif new_status == REOPENED:
        ticket.reopen_count += 1
        ticket.reopened_at = now
        ticket.resolved_at = None
        ticket.closed_at = None
        fields += ['reopen_count', 'reopened_at', 'resolved_at', 'closed_at']
    return fields


def update_status(ticket, new_status, user, comment=None, check_permission=True):
    previous = ticket.status
    if new_status == previous:
        raise ValidationFailed(f"Ticket is already {ticket.get_status_display()}")
    if not can_transition(previous, new_status):
        raise InvalidStatusTransition(previous, new_status)
    if check_permission and not can_change_status(user, ticket, new_status):
        raise Forbidden("You don't have permission to change the status to this value.")

    with transaction.atomic():
        fields = _apply_status(ticket, new_status, timezone.now())
        ticket.save(update_fields=fields)
        if comment:
            Comment.objects.create(ticket=ticket, created_by=user, text=comment)
        log_activity(ticket, user, 'status_changed', {'from': previous, 'to': new_status, 'comment': comment or ''})
        outbox.enqueue(EVENT_STATUS_CHANGED, ticket, {'previous_status': previous, 'status': new_status})

    logger.info("Ticket %s: %s -> %s by %s", ticket.ticket_number, previous, new_status, user.username)
    return ticket


def assign(ticket, assignee, by, note=''):
    if not can_assign_ticket(by):
        raise Forbidden("You don't have permission to assign tickets.")
    if not is_staff_role(assignee):
        raise ValidationFailed("Tickets can only be assigned to admins")
    previous = ticket.assigned_to
    with transaction.atomic():
        ticket.assign_to(assignee)
        log_activity(ticket, by, 'assigned', {
            'from': previous.username if previous else None,
            'to': assignee.username,
            'note': note,
        })
        outbox.enqueue(EVENT_TICKET_ASSIGNED, ticket, {'assigned_to': assignee.pk})
    return ticket


def forward(ticket, to, by, reason=''):
    if ticket.forward_count >= LIMITS['MAX_FORWARDS']:
        raise Conflict(f"Ticket has already been forwarded {ticket.forward_count} times")
    if not can_manage_ticket(by, ticket):
        raise Forbidden("You cannot forward this ticket")
    assign(ticket, to, by, note=reason)
    ticket.forward_count += 1
    ticket.save(update_fields=['forward_count', 'updated_at'])
    log_activity(ticket, by, 'forwarded', {'to': to.username, 'reason': reason, 'count': ticket.forward_count})
    return ticket


def add_comment(ticket, user, text, internal=False):
    text = (text or '').strip()
    if not text:
        raise ValidationFailed("Comment cannot be empty")
    if not can_view_ticket(user, ticket):
        raise Forbidden("You don't have permission to comment on this ticket.")
    staff = is_staff_role(user)
    if internal and not staff:
        raise Forbidden("Only admins can add internal notes")

    with transaction.atomic():
        comment = Comment.objects.create(ticket=ticket, created_by=user, text=text, is_internal=internal)
        log_activity(ticket, user, 'internal_note' if internal else 'comment', {'comment_id': comment.pk},
                     visibility='admin_only' if internal else 'student_visible')
        outbox.enqueue(EVENT_COMMENT_ADDED, ticket, {'author_id': user.pk, 'internal': internal})

        # A student answering a question puts the ticket back in the admin's court
        if not staff and ticket.created_by_id == user.id and ticket.status == AWAITING_STUDENT:
            update_status(ticket, IN_PROGRESS, user, check_permission=False)
    return comment


def ask_question(ticket, admin, question):
    if not can_manage_ticket(admin, ticket):
        raise Forbidden("You cannot ask questions on this ticket")
    if not can_transition(ticket.status, AWAITING_STUDENT):
        raise InvalidStatusTransition(ticket.status, AWAITING_STUDENT)
    comment = add_comment(ticket, admin, question)
    update_status(ticket, AWAITING_STUDENT, admin)
    return comment


def _check_owner_or_staff(ticket, user, action):
    if is_staff_role(user):
        if not can_view_ticket(user, ticket):
            raise Forbidden(f"You cannot {action} this ticket")
        return
    if ticket.created_by_id != user.id:
        raise Forbidden(f"You can only {action} your own tickets")


def escalate(ticket, user, reason=''):
    """Manual escalation by the student or an admin."""
    if ticket.status == CLOSED:
        raise ValidationFailed("Closed tickets cannot be escalated")
    _check_owner_or_staff(ticket, user, 'escalate')
    if ticket.escalation_level >= LIMITS['MAX_ESCALATION_LEVELS']:
        raise ValidationFailed("Ticket is already at the highest escalation level")
    ticket, _ = escalate_to_next_level(ticket, reason or 'Manual escalation', user=user)
    return ticket


def reopen(ticket, user, reason=''):
    """Returns (ticket, warning). Escalates on the third reopen."""
    if ticket.status not in (RESOLVED, CLOSED):
        raise ValidationFailed("Only resolved or closed tickets can be reopened")
    _check_owner_or_staff(ticket, user, 'reopen')

    with transaction.atomic():
        update_status(ticket, REOPENED, user, comment=reason or None, check_permission=False)
        sla_hours = (ticket.metadata or {}).get('sla_hours') or LIMITS['DEFAULT_TAT_HOURS']
        deadlines = calculate_deadlines(timezone.now(), sla_hours)
        ticket.acknowledgement_due_at = deadlines['acknowledgement_due_at']
        ticket.resolution_due_at = deadlines['resolution_due_at']
        ticket.save(update_fields=['acknowledgement_due_at', 'resolution_due_at', 'updated_at'])

        if ticket.reopen_count == AUTO_ESCALATE_REOPEN_COUNT:
            escalate_to_next_level(ticket, f"Reopened {ticket.reopen_count} times", user=user)

    warning = None
    if ticket.reopen_count >= AUTO_ESCALATE_REOPEN_COUNT:
        warning = f"This ticket has been reopened {ticket.reopen_count} times"
    return ticket, warning


def set_tat(ticket, user, tat, mark_in_progress=False):
    if not can_manage_ticket(user, ticket):
        raise Forbidden("Only admins can set the TAT")
    hours = parse_tat(tat)
    if hours is None:
        raise ValidationFailed(f"Could not understand TAT '{tat}'. Use e.g. '48 hours', '2 days' or '1 week'.")

    now = timezone.now()
    due = add_business_hours(now, hours)
    with transaction.atomic():
        ticket.resolution_due_at = due
        metadata = dict(ticket.metadata or {})
        metadata.update({
            'tat': str(tat),
            'tatSetAt': now.isoformat(),
            'tatSetBy': user.username,
            'tatDate': due.isoformat(),
        })
        ticket.metadata = metadata
        ticket.save(update_fields=['resolution_due_at', 'metadata', 'updated_at'])
        log_activity(ticket, user, 'tat_set', {'tat': str(tat), 'hours': hours, 'due': due.isoformat()})
        if mark_in_progress and ticket.status != IN_PROGRESS and can_transition(ticket.status, IN_PROGRESS):
            update_status(ticket, IN_PROGRESS, user)
    return ticket


def extend_tat(ticket, user, hours, reason=''):
    """Push the resolution deadline. Returns (ticket, warning)."""
    if not is_staff_role(user):
        raise Forbidden("Only admins can extend the TAT")
    if ticket.status == CLOSED:
        raise ValidationFailed("Cannot extend the TAT of a closed ticket")
    if not ticket.resolution_due_at:
        raise ValidationFailed("Ticket has no TAT to extend")
    try:
        hours = float(hours)
    except (TypeError, ValueError):
        raise ValidationFailed("Extension hours must be a number")
    if hours <= 0:
        raise ValidationFailed("Extension hours must be positive")

    with transaction.atomic():
        ticket.resolution_due_at = add_business_hours(ticket.resolution_due_at, hours)
        ticket.tat_extensions += 1
        ticket.save(update_fields=['resolution_due_at', 'tat_extensions', 'updated_at'])
        log_activity(ticket, user, 'tat_extended', {
            'hours': hours, 'reason': reason, 'extensions': ticket.tat_extensions,
        }, visibility='admin_only')
        if ticket.tat_extensions in AUTO_ESCALATE_TAT_EXTENSIONS:
            escalate_to_next_level(ticket, f"TAT extended {ticket.tat_extensions} times", user=user)

    warning = None
    if ticket.tat_extensions >= AUTO_ESCALATE_TAT_EXTENSIONS[0]:
        warning = f"TAT has been extended {ticket.tat_extensions} times"
    return ticket, warning


def submit_feedback(ticket, user, rating, text=''):
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationFailed("Rating must be a number between 1 and 5")
    if not 1 <= rating <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    if ticket.status not in (RESOLVED, CLOSED):
        raise ValidationFailed("Feedback can only be given on resolved or closed tickets")
    if get_user_role(user) == ROLE_STUDENT and ticket.created_by_id != user.id:
        raise Forbidden("You can only give feedback on your own tickets")
    if TicketFeedback.objects.filter(ticket=ticket).exists():
        raise AlreadyExists("Feedback has already been submitted for this ticket")

    with transaction.atomic():
        feedback = TicketFeedback.objects.create(ticket=ticket, user=user, rating=rating, feedback=text or '')
        log_activity(ticket, user, 'feedback', {'rating': rating})
        if rating <= LOW_RATING_THRESHOLD:
            escalate_to_next_level(ticket, f"Low satisfaction rating ({rating}/5)", user=user)
    return feedback


# Tags and watchers

def add_tag(ticket, user, tag):
    tag = (tag or '').strip().lower()
    if not tag:
        raise ValidationFailed("Tag cannot be empty")
    obj, _ = TicketTag.objects.get_or_create(ticket=ticket, tag=tag)
    return obj


def remove_tag(ticket, tag):
    TicketTag.objects.filter(ticket=ticket, tag=(tag or '').strip().lower()).delete()


def watch(ticket, user):
    if not can_view_ticket(user, ticket) and not is_staff_role(user):
        raise Forbidden("You cannot watch this ticket")
    obj, _ = TicketWatcher.objects.get_or_create(ticket=ticket, user=user)
    return obj


def unwatch(ticket, user):
    TicketWatcher.objects.filter(ticket=ticket, user=user).delete()


# Merge and archive

def merge_tickets(target, source_ids, user, reason):
    """Fold duplicate tickets into ``target``.

    Each source is marked merged and points at the target; both sides get an
    activity entry carrying the reason.
    """
    reason = (reason or '').strip()
    if not reason:
        raise ValidationFailed("A reason is required to merge tickets")
    source_ids = sorted({int(pk) for pk in source_ids or []})
    if not source_ids:
        raise ValidationFailed("Select at least one ticket to merge")
    if target.pk in source_ids:
        raise ValidationFailed("Cannot merge a ticket into itself")
    if not can_manage_ticket(user, target):
        raise Forbidden("Only admins can merge tickets")
    if target.status in (MERGED, ARCHIVED):
        raise ValidationFailed(f"Cannot merge into a {target.get_status_display().lower()} ticket")

    with transaction.atomic():
        sources = list(Ticket.objects.select_for_update().filter(pk__in=source_ids))
        missing = set(source_ids) - {t.pk for t in sources}
        if missing:
            raise NotFound('Ticket', min(missing))
        for ticket in sources:
            if ticket.status in (MERGED, ARCHIVED):
                raise ValidationFailed(f"Ticket {ticket.ticket_number} is already {ticket.status}")
            if not can_manage_ticket(user, ticket):
                raise Forbidden(f"You cannot merge ticket {ticket.ticket_number}")

        for ticket in sources:
            previous = ticket.status
            ticket.status = MERGED
            ticket.merged_into = target
            ticket.save(update_fields=['status', 'merged_into', 'updated_at'])
            log_activity(ticket, user, 'merged', {
                'merged_into': target.ticket_number, 'from': previous, 'reason': reason,
            })
            outbox.enqueue(EVENT_STATUS_CHANGED, ticket, {'previous_status': previous, 'status': MERGED})
        log_activity(target, user, 'merged_from', {
            'merged_from': [t.ticket_number for t in sources], 'reason': reason,
        })

    logger.info("Tickets %s merged into %s by %s",
                ', '.join(t.ticket_number for t in sources), target.ticket_number, user.username)
    return target, sources


def archive_ticket(ticket, user, reason=''):
    if not can_manage_ticket(user, ticket):
        raise Forbidden("Only admins can archive tickets")
    if ticket.status == ARCHIVED:
        raise ValidationFailed("Ticket is already archived")
    previous = ticket.status
    with transaction.atomic():
        ticket.status = ARCHIVED
        ticket.archived_at = timezone.now()
        ticket.save(update_fields=['status', 'archived_at', 'updated_at'])
        log_activity(ticket, user, 'archived', {'from': previous, 'reason': reason or ''})
    logger.info("Ticket %s archived by %s", ticket.ticket_number, user.username)
    return ticket


# Bulk actions

def bulk_assign(tickets, assignee, by):
    updated = []
    for ticket in tickets:
        assign(ticket, assignee, by, note='bulk')
        updated.append(ticket.pk)
    return {'updated': updated}


def bulk_update_status(tickets, new_status, by, comment=None):
    updated, failed = [], []
    for ticket in tickets:
        try:
            update_status(ticket, new_status, by, comment=comment)
        except (InvalidStatusTransition, ValidationFailed, Forbidden) as exc:
            failed.append({'id': ticket.pk, 'ticket_number': ticket.ticket_number, 'error': exc.message})
            continue
        updated.append(ticket.pk)
    return {'updated': updated, 'failed': failed}


def bulk_close(tickets, by):
    return bulk_update_status(tickets, CLOSED, by)


EXPORT_COLUMNS = [
    'ticket_number', 'title', 'status', 'priority', 'category', 'subcategory', 'location',
    'created_by', 'assigned_to', 'escalation_level', 'created_at', 'resolution_due_at', 'resolved_at',
]


def export_csv(tickets):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for t in tickets:
        writer.writerow([
            t.ticket_number, t.title, t.status, t.priority,
            t.category.name if t.category_id else '',
            t.subcategory.name if t.subcategory_id else '',
            t.location,
            t.created_by.username,
            t.assigned_to.username if t.assigned_to_id else '',
            t.escalation_level,
            t.created_at.isoformat() if t.created_at else '',
            t.resolution_due_at.isoformat() if t.resolution_due_at else '',
            t.resolved_at.isoformat() if t.resolved_at else '',
        ])
    return buffer.getvalue()


# Groups

def create_group(user, name, description='', ticket_ids=()):
    if not is_staff_role(user):
        raise Forbidden("Only admins can group tickets")
    name = (name or '').strip()
    if not name:
        raise ValidationFailed("Group name is required")
    group = TicketGroup.objects.create(name=name, description=description or '', created_by=user)
    if ticket_ids:
        add_to_group(group, ticket_ids)
    return group


def add_to_group(group, ticket_ids):
    if group.is_archived:
        raise Conflict("Cannot add tickets to an archived group")
    return Ticket.objects.filter(pk__in=ticket_ids).update(group=group)


def remove_from_group(group, ticket_ids):
    return Ticket.objects.filter(pk__in=ticket_ids, group=group).update(group=None)


def archive_group(group):
    group.is_archived = True
    group.save(update_fields=['is_archived', 'updated_at'])
    return group


def group_bulk_status(group, new_status, by, comment=None):
    return bulk_update_status(group.tickets.all(), new_status, by, comment=comment)


def group_stats(group):
    tickets = group.tickets.all()
    return {
        'total': tickets.count(),
        'open': tickets.exclude(status__in=(RESOLVED, CLOSED, CANCELLED)).count(),
        'resolved': tickets.filter(status__in=(RESOLVED, CLOSED)).count(),
    }


# Saved filters

def save_filter(user, name, config, is_default=False):
    name = (name or '').strip()
    if not name:
        raise ValidationFailed("Filter name is required")
    with transaction.atomic():
        if is_default:
            SavedFilter.objects.filter(user=user, is_default=True).update(is_default=False)
        saved, _ = SavedFilter.objects.update_or_create(
            user=user, name=name, defaults={'config': config or {}, 'is_default': is_default},
        )
    return saved


def get_ticket(pk):
    try:
        return Ticket.objects.select_related(
            'category__domain', 'subcategory', 'scope', 'created_by', 'assigned_to',
        ).get(pk=pk)
    except (Ticket.DoesNotExist, ValueError):
        raise NotFound('Ticket', pk)


def get_user(pk):
    try:
        return User.objects.get(pk=pk)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound('User', pk)
