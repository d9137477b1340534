import logging

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from . import outbox
from .activity import log_activity
from .constants import EVENT_TICKET_ESCALATED, FINAL_STATUSES, LIMITS
from .errors import AlreadyExists, NotFound, ValidationFailed
from .models import Domain, EscalationRule, Scope, Ticket
from .tat import add_business_hours

logger = logging.getLogger(__name__)


def _null_safe(field, value):
    """Filter on ``field`` where None only matches NULL."""
    if value is None:
        return Q(**{f'{field}__isnull': True})
    return Q(**{field: value})


def list_rules(domain=None, scope=None):
    qs = EscalationRule.objects.filter(is_active=True).select_related('domain', 'scope', 'escalate_to')
    if domain is not None:
        qs = qs.filter(domain=domain)
    if scope is not None:
        qs = qs.filter(scope=scope)
    return qs.order_by('level', '-created_at')


def _check_duplicate(domain, scope, level, exclude=None):
    duplicate = EscalationRule.objects.filter(
        _null_safe('domain', domain), _null_safe('scope', scope), level=level, is_active=True,
    )
    if exclude is not None:
        duplicate = duplicate.exclude(pk=exclude.pk)
    if duplicate.exists():
        raise AlreadyExists(f"An escalation rule for level {level} already exists for this domain and scope")


def create_rule(escalate_to_id, level, domain_id=None, scope_id=None, tat_hours=48, notify_channel='slack'):
    try:
        user = User.objects.get(pk=escalate_to_id)
    except User.DoesNotExist:
        raise NotFound('User', escalate_to_id)
    if int(level) < 1:
        raise ValidationFailed("Escalation level must be at least 1")
    domain = Domain.objects.get(pk=domain_id) if domain_id else None
    scope = Scope.objects.get(pk=scope_id) if scope_id else None

    _check_duplicate(domain, scope, level)

    rule = EscalationRule.objects.create(
        domain=domain, scope=scope, level=level, escalate_to=user,
        tat_hours=tat_hours, notify_channel=notify_channel,
    )
    logger.info("Escalation rule created: %s", rule)
    return rule


def update_rule(rule, **changes):
    """Apply ``changes`` to ``rule``.

    ``domain`` and ``scope`` may be passed as instances or as ``domain_id`` and
    ``scope_id``; an explicit None moves the rule to the global level.
    """
    for key in ('level', 'tat_hours', 'notify_channel', 'is_active'):
        if key in changes and changes[key] is not None:
            setattr(rule, key, changes[key])
    if int(rule.level) < 1:
        raise ValidationFailed("Escalation level must be at least 1")
    if 'domain' in changes:
        rule.domain = changes['domain']
    elif 'domain_id' in changes:
        rule.domain = Domain.objects.get(pk=changes['domain_id']) if changes['domain_id'] else None
    if 'scope' in changes:
        rule.scope = changes['scope']
    elif 'scope_id' in changes:
        rule.scope = Scope.objects.get(pk=changes['scope_id']) if changes['scope_id'] else None
    if changes.get('escalate_to_id'):
        try:
            rule.escalate_to = User.objects.get(pk=changes['escalate_to_id'])
        except User.DoesNotExist:
            raise NotFound('User', changes['escalate_to_id'])
    if rule.is_active:
        _check_duplicate(rule.domain, rule.scope, rule.level, exclude=rule)
    rule.save()
    logger.info("Escalation rule updated: %s", rule)
    return rule


def delete_rule(rule):
    rule.is_active = False
    rule.save(update_fields=['is_active', 'updated_at'])


def find_applicable_escalations(domain, scope, hours_elapsed):
    """Active rules for exactly this domain/scope whose TAT has run out."""
    return list(
        EscalationRule.objects.filter(
            _null_safe('domain', domain), _null_safe('scope', scope),
            is_active=True, tat_hours__lte=hours_elapsed,
        ).select_related('escalate_to').order_by('level')
    )


def rule_for_level(domain, scope, level):
    return (
        EscalationRule.objects.filter(
            _null_safe('domain', domain), _null_safe('scope', scope), level=level, is_active=True,
        ).select_related('escalate_to').first()
    )


@transaction.atomic
def escalate_to_next_level(ticket, reason, user=None):
    """Bump the ticket one escalation level and hand it to that level's admin."""
    new_level = ticket.escalation_level + 1
    domain = ticket.category.domain if ticket.category_id else None
    rule = rule_for_level(domain, ticket.scope, new_level)

    now = timezone.now()
    extension = LIMITS['ESCALATION_TAT_EXTENSION_HOURS']
    ticket.escalation_level = new_level
    ticket.escalated_at = now
    if ticket.acknowledgement_due_at:
        ticket.acknowledgement_due_at = add_business_hours(ticket.acknowledgement_due_at, extension)
    if ticket.resolution_due_at:
        ticket.resolution_due_at = add_business_hours(ticket.resolution_due_at, extension)

    previous_assignee = ticket.assigned_to
    if rule and rule.escalate_to_id != ticket.assigned_to_id:
        metadata = dict(ticket.metadata or {})
        metadata['previous_assigned_to'] = previous_assignee.pk if previous_assignee else None
        ticket.metadata = metadata
        ticket.assigned_to = rule.escalate_to
        ticket.assigned_at = now
    ticket.save()

    log_activity(ticket, user, 'escalated', {
        'reason': reason,
        'level': new_level,
        'escalated_to': rule.escalate_to.username if rule else None,
        'previous_assigned_to': previous_assignee.username if previous_assignee else None,
    }, visibility='admin_only')
    outbox.enqueue(EVENT_TICKET_ESCALATED, ticket, {
        'level': new_level,
        'reason': reason,
        'assigned_to': ticket.assigned_to_id,
    })
    logger.warning("Ticket %s escalated to level %d: %s", ticket.ticket_number, new_level, reason)
    return ticket, rule


def overdue_tickets(kind, now=None):
    now = now or timezone.now()
    qs = Ticket.objects.filter(
        resolved_at__isnull=True, closed_at__isnull=True,
    ).exclude(status__in=FINAL_STATUSES).filter(escalation_level__lt=LIMITS['MAX_ESCALATION_LEVELS'])
    if kind == 'acknowledgement':
        qs = qs.filter(acknowledgement_due_at__lt=now, acknowledged_at__isnull=True)
    else:
        qs = qs.filter(resolution_due_at__lt=now)
    return qs.select_related('category__domain', 'scope', 'assigned_to')


def escalate_overdue_tickets(now=None):
    """Escalate tickets past their acknowledgement or resolution deadline.

    Each ticket is escalated at most once per run.
    """
    counts = {'acknowledgement': 0, 'resolution': 0, 'skipped': 0, 'errors': 0}
    seen = set()
    reasons = {
        'acknowledgement': 'Not acknowledged within SLA',
        'resolution': 'Not resolved within SLA',
    }
    for kind in ('acknowledgement', 'resolution'):
        for ticket in overdue_tickets(kind, now):
            if ticket.pk in seen:
                continue
            seen.add(ticket.pk)
            if not ticket.category_id:
                counts['skipped'] += 1
                continue
            try:
                escalate_to_next_level(ticket, reasons[kind])
            except Exception:
                logger.exception("Failed to escalate ticket %s", ticket.ticket_number)
                counts['errors'] += 1
                continue
            counts[kind] += 1
    return counts
