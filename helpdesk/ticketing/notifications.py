import logging
import smtplib
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.models import User
from django.core.mail import send_mail
from django.db.models import Count
from django.utils import timezone

from . import slack
from .constants import (
    ACTIVE_STATUSES, EVENT_COMMENT_ADDED, EVENT_STATUS_CHANGED, EVENT_TICKET_ASSIGNED,
    EVENT_TICKET_CREATED, EVENT_TICKET_ESCALATED, ROLE_SUPER_ADMIN,
)
from .errors import ExternalServiceError
from .models import Notification, NotificationConfig, Ticket, TicketIntegration

logger = logging.getLogger(__name__)


def resolve_notification_config(scope=None, category=None, subcategory=None):
    """Most specific active config wins.

    subcategory, then category (no subcategory), then scope (no category or
    subcategory), then the global default where all three are empty.
    """
    active = NotificationConfig.objects.filter(is_active=True).order_by('-priority', '-created_at')

    if subcategory is not None:
        config = active.filter(subcategory=subcategory).first()
        if config:
            return config

    if category is not None:
        config = active.filter(category=category, subcategory__isnull=True).first()
        if config:
            return config

    if scope is not None:
        config = active.filter(scope=scope, category__isnull=True, subcategory__isnull=True).first()
        if config:
            return config

    return active.filter(scope__isnull=True, category__isnull=True, subcategory__isnull=True).first()


def config_for_ticket(ticket):
    return resolve_notification_config(ticket.scope, ticket.category, ticket.subcategory)


def slack_channel_for(ticket, config=None):
    integration = TicketIntegration.objects.filter(ticket=ticket).first()
    if integration and integration.slack_channel:
        return integration.slack_channel
    config = config if config is not None else config_for_ticket(ticket)
    if config and config.slack_channel:
        return config.slack_channel
    return settings.SLACK_DEFAULT_CHANNEL


def ticket_link(ticket):
    return f"{settings.APP_URL.rstrip('/')}{ticket.get_absolute_url()}"


def display_name(user):
    if user is None:
        return 'Unassigned'
    return user.get_full_name() or user.username


def _record(ticket, channel, kind, recipient='', user=None, sent=True, error=''):
    return Notification.objects.create(
        ticket=ticket, user=user, channel=channel, notification_type=kind,
        recipient=recipient, sent=sent, error=error,
    )


def email(ticket, kind, subject, message, recipients):
    recipients = sorted({r for r in recipients if r})
    if not recipients:
        return 0
    error = ''
    try:
        sent = send_mail(
            subject,
            message,
            settings.DEFAULT_FROM_EMAIL,
            recipients,
            fail_silently=False,
        )
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email %s for %s failed: %s", kind, ticket.ticket_number, exc)
        sent, error = 0, str(exc)
    for recipient in recipients:
        _record(ticket, 'email', kind, recipient=recipient, sent=bool(sent), error=error)
    return sent


def post_to_slack(ticket, kind, text, config=None):
    """Post in the ticket's Slack thread, starting one on the first message."""
    if config is not None and not config.enable_slack:
        return None
    if not slack.is_configured():
        logger.debug("Slack not configured, skipping %s for %s", kind, ticket.ticket_number)
        return None

    channel = slack_channel_for(ticket, config)
    integration, _ = TicketIntegration.objects.get_or_create(ticket=ticket)
    if config is not None and config.slack_cc_user_ids:
        text = f"{text}\ncc {slack.mention(config.slack_cc_user_ids)}"
    try:
        ts = slack.post_message(channel, text, thread_ts=integration.slack_thread_ts or None)
    except ExternalServiceError as exc:
        logger.error("Slack notification %s for %s failed: %s", kind, ticket.ticket_number, exc.message)
        _record(ticket, 'slack', kind, recipient=channel, sent=False, error=exc.message)
        return None

    if not integration.slack_thread_ts and ts:
        integration.slack_channel = channel
        integration.slack_thread_ts = ts
        integration.save(update_fields=['slack_channel', 'slack_thread_ts', 'updated_at'])
    _record(ticket, 'slack', kind, recipient=channel)
    return ts


def _email_enabled(config):
    return config is None or config.enable_email


def notify_ticket_created(ticket):
    config = config_for_ticket(ticket)
    category = ticket.category.name if ticket.category_id else 'General'
    post_to_slack(ticket, 'ticket_created', (
        f"*New ticket {ticket.ticket_number}* ({category})\n"
        f"{ticket.description[:300]}\n"
        f"Raised by {display_name(ticket.created_by)}, assigned to {display_name(ticket.assigned_to)}\n"
        f"{ticket_link(ticket)}"
    ), config)

    if not _email_enabled(config):
        return
    recipients = [ticket.created_by.email]
    if config:
        recipients.extend(config.email_recipients or [])
    email(ticket, 'ticket_created', f'Ticket {ticket.ticket_number} received', (
        f"Hello {display_name(ticket.created_by)},\n\n"
        f"Your ticket {ticket.ticket_number} in {category} has been received.\n"
        f"Assigned to: {display_name(ticket.assigned_to)}\n"
        f"Resolution due: {ticket.resolution_due_at or 'not set'}\n\n"
        f"{ticket_link(ticket)}\n"
    ), recipients)


def notify_ticket_assigned(ticket):
    """Send notification when a ticket is assigned to an admin"""
    if not ticket.assigned_to:
        return
    config = config_for_ticket(ticket)
    post_to_slack(ticket, 'ticket_assigned',
                  f"{ticket.ticket_number} assigned to {display_name(ticket.assigned_to)}", config)
    if not _email_enabled(config):
        return
    email(ticket, 'ticket_assigned', f'Ticket {ticket.ticket_number} has been assigned to you', (
        f"Hello {display_name(ticket.assigned_to)},\n\n"
        f"You have been assigned ticket {ticket.ticket_number}: {ticket.title or ticket.description[:80]}\n\n"
        f"Priority: {ticket.get_priority_display()}\n"
        f"Description: {ticket.description}\n\n"
        f"{ticket_link(ticket)}\n"
    ), [ticket.assigned_to.email])


def notify_status_change(ticket, previous_status):
    """Tell the student their ticket moved"""
    config = config_for_ticket(ticket)
    current = ticket.get_status_display()
    post_to_slack(ticket, 'status_changed',
                  f"{ticket.ticket_number}: {previous_status} -> {current}", config)
    if not _email_enabled(config):
        return
    email(ticket, 'status_changed', f'Ticket {ticket.ticket_number} is now {current}', (
        f"Ticket {ticket.ticket_number}\n\n"
        f"Status has been changed from {previous_status} to {current}.\n"
        f"Assigned to: {display_name(ticket.assigned_to)}\n\n"
        f"{ticket_link(ticket)}\n"
    ), [ticket.created_by.email])


def notify_comment(ticket, author_id, internal):
    if internal:
        return
    config = config_for_ticket(ticket)
    author = User.objects.filter(pk=author_id).first()
    post_to_slack(ticket, 'comment_added', f"New comment on {ticket.ticket_number} by {display_name(author)}", config)
    if not _email_enabled(config):
        return
    # The other side of the conversation hears about it
    if author_id == ticket.created_by_id:
        recipient = ticket.assigned_to.email if ticket.assigned_to else None
    else:
        recipient = ticket.created_by.email
    email(ticket, 'comment_added', f'New comment on ticket {ticket.ticket_number}',
          f"{display_name(author)} commented on {ticket.ticket_number}.\n\n{ticket_link(ticket)}\n", [recipient])


def notify_escalated(ticket, level, reason):
    config = config_for_ticket(ticket)
    post_to_slack(ticket, 'escalated', (
        f":rotating_light: {ticket.ticket_number} escalated to level {level} ({reason}). "
        f"Now with {display_name(ticket.assigned_to)}"
    ), config)
    if not _email_enabled(config):
        return
    recipients = [ticket.assigned_to.email] if ticket.assigned_to else super_admin_emails()
    email(ticket, 'escalated', f'Ticket {ticket.ticket_number} escalated', (
        f"Ticket {ticket.ticket_number} has been escalated to level {level}.\n"
        f"Reason: {reason}\n\n{ticket_link(ticket)}\n"
    ), recipients)


def dispatch_event(event):
    """Route an outbox event to its notifier."""
    payload = event.payload or {}
    ticket = Ticket.objects.select_related(
        'category', 'subcategory', 'scope', 'created_by', 'assigned_to',
    ).filter(pk=payload.get('ticket_id')).first()
    if ticket is None:
        logger.warning("Outbox event %s refers to missing ticket %s", event.pk, payload.get('ticket_id'))
        return

    if event.event_type == EVENT_TICKET_CREATED:
        notify_ticket_created(ticket)
    elif event.event_type == EVENT_TICKET_ASSIGNED:
        notify_ticket_assigned(ticket)
    elif event.event_type == EVENT_STATUS_CHANGED:
        notify_status_change(ticket, payload.get('previous_status', ''))
    elif event.event_type == EVENT_COMMENT_ADDED:
        notify_comment(ticket, payload.get('author_id'), payload.get('internal', False))
    elif event.event_type == EVENT_TICKET_ESCALATED:
        notify_escalated(ticket, payload.get('level'), payload.get('reason', ''))
    else:
        logger.warning("No handler for outbox event type %s", event.event_type)


# Scheduled reminders

def send_tat_reminders(now=None):
    """Remind assignees about tickets whose resolution falls due today. Weekdays only."""
    if not settings.ENABLE_TAT_REMINDERS:
        return {'skipped': 'disabled'}
    now = timezone.localtime(now or timezone.now())
    if now.weekday() >= 5:
        return {'skipped': 'weekend'}

    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    due = Ticket.objects.filter(
        status__in=ACTIVE_STATUSES, assigned_to__isnull=False,
        resolution_due_at__gte=start, resolution_due_at__lt=end,
    ).select_related('assigned_to')

    sent = 0
    for ticket in due:
        email(ticket, 'tat_reminder', f'Ticket {ticket.ticket_number} is due today', (
            f"Hello {display_name(ticket.assigned_to)},\n\n"
            f"Ticket {ticket.ticket_number} is due for resolution at {timezone.localtime(ticket.resolution_due_at):%H:%M}.\n\n"
            f"{ticket_link(ticket)}\n"
        ), [ticket.assigned_to.email])
        sent += 1
    logger.info("TAT reminders sent for %d ticket(s)", sent)
    return {'sent': sent}


def send_admin_reminders():
    """One summary per admin with their open ticket count."""
    if not settings.ENABLE_SPOC_REMINDERS:
        return {'skipped': 'disabled'}
    pending = (
        Ticket.objects.filter(status__in=ACTIVE_STATUSES, assigned_to__isnull=False)
        .values('assigned_to').annotate(total=Count('id'))
    )
    sent = 0
    for row in pending:
        admin = User.objects.filter(pk=row['assigned_to'], is_active=True).first()
        if admin is None or not admin.email:
            continue
        try:
            send_mail(
                f"You have {row['total']} pending ticket(s)",
                f"Hello {display_name(admin)},\n\nYou have {row['total']} ticket(s) waiting for action.\n\n"
                f"{settings.APP_URL.rstrip('/')}/dashboard/admin/\n",
                settings.DEFAULT_FROM_EMAIL,
                [admin.email],
                fail_silently=False,
            )
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Pending-ticket reminder to %s failed: %s", admin.email, exc)
            continue
        sent += 1
    logger.info("Pending-ticket reminders sent to %d admin(s)", sent)
    return {'sent': sent}


def super_admin_emails():
    return list(
        User.objects.filter(profile__role=ROLE_SUPER_ADMIN, is_active=True)
        .exclude(email='').values_list('email', flat=True)
    )
