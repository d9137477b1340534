from functools import wraps

from django.contrib import messages
from django.contrib.auth.mixins import UserPassesTestMixin
from django.core.exceptions import PermissionDenied
from django.shortcuts import redirect
from rest_framework import permissions

from .constants import (
    CLOSED, RESOLVED, ROLE_ADMIN, ROLE_COMMITTEE, ROLE_SNR_ADMIN, ROLE_STUDENT, ROLE_SUPER_ADMIN,
    STAFF_ROLES,
)
from .models import CategoryAssignment, CommitteeMember, Profile, TicketCommitteeTag, TicketWatcher


def get_user_role(user):
    """Get the role of a user from their profile.
    Superusers/staff automatically behave as super admins
    if no explicit profile has been assigned yet."""
    if user is None or not user.is_authenticated:
        return None
    try:
        return user.profile.role
    except (Profile.DoesNotExist, AttributeError):
        if user.is_superuser or user.is_staff:
            return ROLE_SUPER_ADMIN
        return None


def is_staff_role(user):
    return get_user_role(user) in STAFF_ROLES


DASHBOARDS = {
    ROLE_SUPER_ADMIN: 'superadmin_dashboard',
    ROLE_SNR_ADMIN: 'snr_admin_dashboard',
    ROLE_ADMIN: 'admin_dashboard',
    ROLE_COMMITTEE: 'committee_dashboard',
    ROLE_STUDENT: 'student_dashboard',
}


def dashboard_url_for(user):
    """Name of the home page url for the user's role."""
    return DASHBOARDS.get(get_user_role(user), 'student_dashboard')


def role_required(*roles):
    def decorator(view_func):
        @wraps(view_func)
        def _wrapped_view(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return redirect('login')
            if get_user_role(request.user) in roles:
                return view_func(request, *args, **kwargs)
            raise PermissionDenied
        return _wrapped_view
    return decorator


super_admin_required = role_required(ROLE_SUPER_ADMIN)
staff_required = role_required(*STAFF_ROLES)
student_required = role_required(ROLE_STUDENT)


class RoleRequiredMixin(UserPassesTestMixin):
    allowed_roles = ()

    def test_func(self):
        return self.request.user.is_authenticated and get_user_role(self.request.user) in self.allowed_roles

    def handle_no_permission(self):
        if not self.request.user.is_authenticated:
            return redirect('login')
        messages.error(self.request, "You do not have access to that page.", extra_tags='role_mismatch')
        return redirect(dashboard_url_for(self.request.user))


class StudentRequiredMixin(RoleRequiredMixin):
    allowed_roles = (ROLE_STUDENT,)


class StaffRequiredMixin(RoleRequiredMixin):
    allowed_roles = STAFF_ROLES


# DRF permission classes
class IsSuperAdmin(permissions.BasePermission):
    message = "Only super admins can manage this resource."

    def has_permission(self, request, view):
        return get_user_role(request.user) == ROLE_SUPER_ADMIN


class IsStaffRole(permissions.BasePermission):
    message = "Only admins can perform this action."

    def has_permission(self, request, view):
        return is_staff_role(request.user)


class IsCommitteeOrStaff(permissions.BasePermission):
    def has_permission(self, request, view):
        return get_user_role(request.user) in STAFF_ROLES + (ROLE_COMMITTEE,)


class ReadOnlyOrSuperAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return request.user and request.user.is_authenticated
        return get_user_role(request.user) == ROLE_SUPER_ADMIN


# Permission check functions
def committee_ids_for(user):
    return list(CommitteeMember.objects.filter(user=user).values_list('committee_id', flat=True))


def can_view_ticket(user, ticket):
    """Check if a user can view a specific ticket."""
    role = get_user_role(user)

    if role in (ROLE_SUPER_ADMIN, ROLE_SNR_ADMIN):
        return True
    if role == ROLE_ADMIN:
        if ticket.assigned_to_id == user.id:
            return True
        if ticket.category_id and CategoryAssignment.objects.filter(category_id=ticket.category_id, user=user).exists():
            return True
        return TicketWatcher.objects.filter(ticket=ticket, user=user).exists()
    if role == ROLE_COMMITTEE:
        if ticket.created_by_id == user.id:
            return True
        return TicketCommitteeTag.objects.filter(ticket=ticket, committee_id__in=committee_ids_for(user)).exists()
    if role == ROLE_STUDENT:
        return ticket.created_by_id == user.id
    return False


def can_manage_ticket(user, ticket):
    """Staff who can see a ticket can work it."""
    return is_staff_role(user) and can_view_ticket(user, ticket)


def can_assign_ticket(user):
    return get_user_role(user) in (ROLE_SUPER_ADMIN, ROLE_SNR_ADMIN, ROLE_ADMIN)


def can_change_status(user, ticket, new_status):
    """Staff work the tickets they can see; students may only close their own resolved ticket."""
    if can_manage_ticket(user, ticket):
        return True
    if get_user_role(user) == ROLE_STUDENT:
        return ticket.created_by_id == user.id and ticket.status == RESOLVED and new_status == CLOSED
    return False
