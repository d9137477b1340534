"""Transactional outbox for ticket side effects.

Services write an ``OutboxEvent`` inside the same transaction as the ticket
change; ``process_pending`` later hands each event to the notification
dispatcher. Failed events are retried with exponential backoff and parked
as ``dead_letter`` once ``max_attempts`` is reached.
"""
import logging
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.utils import timezone

from .models import OutboxEvent

logger = logging.getLogger(__name__)

BACKOFF_BASE_MINUTES = 2


def enqueue(event_type, ticket, payload=None, idempotency_key=None, priority=5):
    if idempotency_key:
        existing = OutboxEvent.objects.filter(idempotency_key=idempotency_key).first()
        if existing:
            return existing
    body = {'ticket_id': ticket.pk, 'ticket_number': ticket.ticket_number}
    body.update(payload or {})
    try:
        with transaction.atomic():
            return OutboxEvent.objects.create(
                event_type=event_type,
                aggregate_type='ticket',
                aggregate_id=str(ticket.pk),
                payload=body,
                priority=priority,
                idempotency_key=idempotency_key,
            )
    except IntegrityError:
        # Lost a race on the idempotency key
        return OutboxEvent.objects.get(idempotency_key=idempotency_key)


def backoff_delay(attempts):
    return timedelta(minutes=BACKOFF_BASE_MINUTES ** attempts)


def claim_batch(batch_size=10, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        events = list(
            OutboxEvent.objects.select_for_update()
            .filter(status__in=('pending', 'failed'), scheduled_at__lte=now)
            .order_by('priority', 'created_at')[:batch_size]
        )
        ids = [e.pk for e in events]
        OutboxEvent.objects.filter(pk__in=ids).update(status='processing')
    for event in events:
        event.status = 'processing'
    return events


def mark_failed(event, error):
    event.attempts += 1
    event.last_error = str(error)[:2000]
    if event.attempts >= event.max_attempts:
        event.status = 'dead_letter'
        logger.error("Outbox event %s (%s) moved to dead letter: %s", event.pk, event.event_type, error)
    else:
        event.status = 'failed'
        event.scheduled_at = timezone.now() + backoff_delay(event.attempts)
        logger.warning("Outbox event %s failed (attempt %d): %s", event.pk, event.attempts, error)
    event.save(update_fields=['attempts', 'last_error', 'status', 'scheduled_at'])


def process_pending(batch_size=10, handler=None):
    """Dispatch due events. Returns a dict of counts."""
    if handler is None:
        from .notifications import dispatch_event
        handler = dispatch_event

    counts = {'processed': 0, 'failed': 0}
    for event in claim_batch(batch_size):
        try:
            handler(event)
        except Exception as exc:
            mark_failed(event, exc)
            counts['failed'] += 1
            continue
        event.status = 'completed'
        event.processed_at = timezone.now()
        event.save(update_fields=['status', 'processed_at'])
        counts['processed'] += 1
    return counts
