import logging

from django.contrib.auth.models import User

from .constants import ROLE_ADMIN, ROLE_SNR_ADMIN, ROLE_SUPER_ADMIN
from .errors import NotFound
from .models import AdminAssignment, AdminProfile, CategoryAssignment, Domain, Scope

logger = logging.getLogger(__name__)


def list_admin_assignments(user=None, domain=None):
    qs = AdminAssignment.objects.select_related('user', 'domain', 'scope')
    if user is not None:
        qs = qs.filter(user=user)
    if domain is not None:
        qs = qs.filter(domain=domain)
    return qs


def create_admin_assignment(user_id, domain_id=None, scope_id=None):
    try:
        user = User.objects.get(pk=user_id)
    except User.DoesNotExist:
        raise NotFound('User', user_id)
    domain = scope = None
    if domain_id:
        domain = Domain.objects.filter(pk=domain_id).first()
        if domain is None:
            raise NotFound('Domain', domain_id)
    if scope_id:
        scope = Scope.objects.filter(pk=scope_id).first()
        if scope is None:
            raise NotFound('Scope', scope_id)
    assignment = AdminAssignment.objects.create(user=user, domain=domain, scope=scope)
    logger.info("Admin assignment created: %s", assignment)
    return assignment


def find_best_assignee(domain, scope):
    """Most specific admin assignment rule wins.

    Exact domain + scope, then the domain with no scope, then a catch-all
    rule with neither. Returns the user or None.
    """
    qs = AdminAssignment.objects.select_related('user').filter(user__is_active=True)
    candidates = []
    if domain is not None and scope is not None:
        candidates.append(qs.filter(domain=domain, scope=scope))
    if domain is not None:
        candidates.append(qs.filter(domain=domain, scope__isnull=True))
    candidates.append(qs.filter(domain__isnull=True, scope__isnull=True))

    for rules in candidates:
        rule = rules.first()
        if rule:
            return rule.user
    return None


def _field_level_admin(fields, metadata):
    for field in fields:
        if field.assigned_admin_id and field.assigned_admin.is_active and metadata.get(field.slug):
            return field.assigned_admin
    return None


def _domain_scope_admin(category, scope):
    """The single admin whose domain/scope responsibility matches, if exactly one does."""
    if not category.domain_id:
        return None

    matched = set()
    profiles = AdminProfile.objects.filter(primary_domain_id=category.domain_id, user__is_active=True)
    if scope is not None:
        profiles = profiles.filter(primary_scope=scope)
    matched.update(profiles.values_list('user_id', flat=True))

    rules = AdminAssignment.objects.filter(domain_id=category.domain_id, user__is_active=True)
    rules = rules.filter(scope=scope) if scope is not None else rules.filter(scope__isnull=True)
    matched.update(rules.values_list('user_id', flat=True))

    if not matched:
        # Category assignees only count when nothing more specific exists
        matched.update(
            CategoryAssignment.objects.filter(category=category, user__is_active=True).values_list('user_id', flat=True)
        )

    if len(matched) == 1:
        return User.objects.get(pk=matched.pop())
    if len(matched) > 1:
        logger.info("Ambiguous domain/scope match for category %s (%d admins)", category.pk, len(matched))
    return None


def super_admin_fallback():
    return (
        User.objects.filter(is_active=True, profile__role=ROLE_SUPER_ADMIN).order_by('id').first()
    )


def resolve_assignee(category, subcategory=None, scope=None, fields=(), metadata=None):
    """Pick the admin for a new ticket.

    1. a field-level admin whose field was answered
    2. a unique domain/scope match
    3. the subcategory admin
    4. the category default admin
    5. admin assignment rules (``find_best_assignee``)
    6. any super admin
    """
    metadata = metadata or {}

    admin = _field_level_admin(fields, metadata)
    if admin:
        return admin, 'field'

    admin = _domain_scope_admin(category, scope)
    if admin:
        return admin, 'domain_scope'

    if subcategory is not None and subcategory.assigned_admin_id and subcategory.assigned_admin.is_active:
        return subcategory.assigned_admin, 'subcategory'

    if category.default_admin_id and category.default_admin.is_active:
        return category.default_admin, 'category'

    admin = find_best_assignee(category.domain, scope)
    if admin:
        return admin, 'assignment_rule'

    admin = super_admin_fallback()
    if admin:
        return admin, 'super_admin'

    logger.warning("No assignee found for category %s", category.pk)
    return None, None


def assignable_admins():
    return User.objects.filter(
        is_active=True, profile__role__in=(ROLE_ADMIN, ROLE_SNR_ADMIN, ROLE_SUPER_ADMIN)
    ).order_by('first_name', 'username')
