from .models import TicketActivity


def log_activity(ticket, user, action, details=None, visibility='student_visible'):
    return TicketActivity.objects.create(
        ticket=ticket,
        user=user,
        action=action,
        details=details or {},
        visibility=visibility,
    )


def timeline_for(ticket, staff_view):
    qs = ticket.activities.select_related('user')
    if not staff_view:
        qs = qs.filter(visibility='student_visible')
    return qs
