import logging

from django.contrib.auth.models import User
from django.db import IntegrityError, transaction

from .activity import log_activity
from .constants import ROLE_COMMITTEE
from .errors import AlreadyExists, Forbidden, NotFound, ValidationFailed
from .models import Committee, CommitteeMember, Ticket, TicketCommitteeTag
from .rbac import committee_ids_for, is_staff_role

logger = logging.getLogger(__name__)


def create_committee(name, description='', contact_email='', head=None):
    name = (name or '').strip()
    if not name:
        raise ValidationFailed("Committee name is required")
    if Committee.objects.filter(name__iexact=name).exists():
        raise AlreadyExists(f"Committee '{name}' already exists")
    committee = Committee.objects.create(name=name, description=description or '', contact_email=contact_email or '', head=head)
    if head is not None:
        add_member(committee, head, role='head')
    return committee


def update_committee(committee, **changes):
    name = changes.get('name')
    if name and Committee.objects.filter(name__iexact=name).exclude(pk=committee.pk).exists():
        raise AlreadyExists(f"Committee '{name}' already exists")
    for key in ('name', 'description', 'contact_email', 'is_active'):
        if changes.get(key) is not None:
            setattr(committee, key, changes[key])
    committee.save()
    return committee


def add_member(committee, user, role='member'):
    try:
        with transaction.atomic():
            member = CommitteeMember.objects.create(committee=committee, user=user, role=role)
    except IntegrityError:
        raise AlreadyExists(f"{user.username} is already a member of {committee.name}")
    # Members without a staff role see the committee dashboard
    if not is_staff_role(user) and user.profile.role != ROLE_COMMITTEE:
        user.profile.role = ROLE_COMMITTEE
        user.profile.save(update_fields=['role'])
    return member


def remove_member(committee, user_id):
    deleted, _ = CommitteeMember.objects.filter(committee=committee, user_id=user_id).delete()
    if not deleted:
        raise NotFound('Committee member', user_id)


def tag_ticket(ticket, committee, by, reason=''):
    if not is_staff_role(by):
        raise Forbidden("Only admins can tag committees")
    tag, created = TicketCommitteeTag.objects.get_or_create(
        ticket=ticket, committee=committee, defaults={'tagged_by': by, 'reason': reason or ''},
    )
    if not created:
        raise AlreadyExists(f"Ticket is already tagged to {committee.name}")
    log_activity(ticket, by, 'committee_tagged', {'committee': committee.name, 'reason': reason})
    return tag


def untag_ticket(ticket, committee_id, by):
    if not is_staff_role(by):
        raise Forbidden("Only admins can untag committees")
    TicketCommitteeTag.objects.filter(ticket=ticket, committee_id=committee_id).delete()


def tickets_for_member(user):
    """Tickets tagged to any of the user's committees, plus ones they raised."""
    ids = committee_ids_for(user)
    tagged = Ticket.objects.filter(committee_tags__committee_id__in=ids)
    created = Ticket.objects.filter(created_by=user)
    return (tagged | created).distinct()


def get_committee(pk):
    try:
        return Committee.objects.get(pk=pk)
    except (Committee.DoesNotExist, ValueError):
        raise NotFound('Committee', pk)


def get_member_user(pk):
    try:
        return User.objects.get(pk=pk)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound('User', pk)
