from datetime import datetime, time, timedelta

from django.db.models import Avg, Count, Q
from django.utils import timezone

from .constants import (
    ACKNOWLEDGED, ARCHIVED, AWAITING_STUDENT, CLOSED, FINAL_STATUSES, IN_PROGRESS, LIMITS, OPEN, REOPENED,
    RESOLVED, ROLE_ADMIN, ROLE_COMMITTEE, ROLE_SNR_ADMIN, ROLE_STUDENT, ROLE_SUPER_ADMIN,
)
from .models import AdminProfile, CategoryAssignment, Ticket
from .rbac import committee_ids_for, get_user_role
from .tat import tat_state

SORTS = {
    'newest': '-created_at',
    'oldest': 'created_at',
    'updated': '-updated_at',
    'due': 'resolution_due_at',
}

FILTER_KEYS = (
    'search', 'tat', 'status', 'escalated', 'from', 'to', 'user', 'category',
    'subcategory', 'location', 'scope', 'sort', 'page',
)


def parse_filters(params):
    filters = {key: (params.get(key) or '').strip() for key in FILTER_KEYS}
    if filters['sort'] not in SORTS:
        filters['sort'] = 'newest'
    try:
        filters['page'] = max(int(filters['page'] or 1), 1)
    except ValueError:
        filters['page'] = 1
    return filters


def base_queryset(user):
    """Tickets the user may see on their dashboard."""
    role = get_user_role(user)
    qs = Ticket.objects.select_related('category', 'subcategory', 'scope', 'created_by', 'assigned_to')

    if role == ROLE_SUPER_ADMIN:
        return qs
    if role == ROLE_SNR_ADMIN:
        profile = AdminProfile.objects.filter(user=user).first()
        condition = Q(assigned_to=user)
        if profile and profile.primary_domain_id:
            condition |= Q(assigned_to__isnull=True, category__domain_id=profile.primary_domain_id)
        return qs.filter(condition)
    if role == ROLE_ADMIN:
        category_ids = CategoryAssignment.objects.filter(user=user).values_list('category_id', flat=True)
        return qs.filter(
            Q(assigned_to=user)
            | Q(category_id__in=category_ids) & (
                Q(assigned_to__isnull=True) | Q(escalation_level__gt=0)
            )
        )
    if role == ROLE_COMMITTEE:
        return qs.filter(
            Q(created_by=user) | Q(committee_tags__committee_id__in=committee_ids_for(user))
        ).distinct()
    if role == ROLE_STUDENT:
        return qs.filter(created_by=user)
    return qs.none()


def _parse_date(value):
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        return None


def apply_filters(qs, filters, now=None):
    now = now or timezone.now()
    search = filters.get('search')
    if search:
        condition = (
            Q(ticket_number__icontains=search) | Q(title__icontains=search)
            | Q(description__icontains=search) | Q(location__icontains=search)
        )
        if search.isdigit():
            condition |= Q(pk=int(search))
        qs = qs.filter(condition)

    status = filters.get('status')
    if status == 'escalated':
        qs = qs.filter(escalation_level__gt=0)
    elif status:
        qs = qs.filter(status__in=[s for s in status.split(',') if s])
    else:
        qs = qs.exclude(status=ARCHIVED)

    if filters.get('escalated') in ('true', '1', 'yes'):
        qs = qs.filter(escalation_level__gt=0)

    date_from = _parse_date(filters.get('from'))
    if date_from:
        qs = qs.filter(created_at__gte=timezone.make_aware(datetime.combine(date_from, time.min)))
    date_to = _parse_date(filters.get('to'))
    if date_to:
        qs = qs.filter(created_at__lt=timezone.make_aware(datetime.combine(date_to + timedelta(days=1), time.min)))

    user = filters.get('user')
    if user:
        qs = qs.filter(
            Q(created_by__username__icontains=user) | Q(created_by__email__icontains=user)
            | Q(created_by__first_name__icontains=user) | Q(created_by__last_name__icontains=user)
        )

    for key in ('category', 'subcategory', 'scope'):
        value = filters.get(key)
        if value and value.isdigit():
            qs = qs.filter(**{f'{key}_id': int(value)})
        elif value:
            qs = qs.filter(**{f'{key}__name__iexact': value})

    if filters.get('location'):
        qs = qs.filter(location__icontains=filters['location'])

    tat = filters.get('tat')
    if tat:
        active = qs.exclude(status__in=FINAL_STATUSES)
        local_now = timezone.localtime(now)
        end_of_day = local_now.replace(hour=23, minute=59, second=59, microsecond=999999)
        if tat == 'overdue':
            qs = active.filter(resolution_due_at__lt=now)
        elif tat == 'due_today':
            qs = active.filter(resolution_due_at__gte=now, resolution_due_at__lte=end_of_day)
        elif tat == 'on_track':
            qs = active.filter(resolution_due_at__gt=end_of_day)
        elif tat == 'none':
            qs = active.filter(resolution_due_at__isnull=True)

    return qs.order_by(SORTS.get(filters.get('sort'), '-created_at'), '-id')


def stats_for(qs, now=None):
    now = now or timezone.now()
    counts = qs.aggregate(
        total=Count('id', distinct=True),
        open=Count('id', filter=Q(status=OPEN), distinct=True),
        in_progress=Count('id', filter=Q(status__in=(ACKNOWLEDGED, IN_PROGRESS, REOPENED)), distinct=True),
        awaiting_student=Count('id', filter=Q(status=AWAITING_STUDENT), distinct=True),
        resolved=Count('id', filter=Q(status__in=(RESOLVED, CLOSED)), distinct=True),
        escalated=Count('id', filter=Q(escalation_level__gt=0), distinct=True),
        overdue=Count('id', filter=Q(resolution_due_at__lt=now) & ~Q(status__in=FINAL_STATUSES), distinct=True),
    )
    return counts


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def paginate(qs, page=1, page_size=None):
    page_size = _as_int(page_size, LIMITS['DEFAULT_PAGE_SIZE'])
    page_size = min(max(page_size, 1), LIMITS['MAX_PAGE_SIZE'])
    total = qs.count()
    total_pages = max((total + page_size - 1) // page_size, 1)
    page = min(max(_as_int(page, 1), 1), total_pages)
    start = (page - 1) * page_size
    return {
        'results': list(qs[start:start + page_size]),
        'page': page,
        'page_size': page_size,
        'total': total,
        'total_pages': total_pages,
        'has_next': page < total_pages,
        'has_previous': page > 1,
    }


def annotate_tat(tickets, now=None):
    """Attach ``tat_state`` and ``tat_display`` for table badges."""
    now = now or timezone.now()
    for t in tickets:
        t.tat_state, t.tat_display = tat_state(t, now)
    return tickets


def dashboard_data(user, params):
    filters = parse_filters(params)
    base = base_queryset(user)
    filtered = apply_filters(base, filters)
    page = paginate(filtered, filters['page'])
    annotate_tat(page['results'])
    return {
        'filters': filters,
        'stats': stats_for(base),
        'page': page,
    }


def category_analytics(qs=None):
    qs = qs if qs is not None else Ticket.objects.all()
    rows = (
        qs.values('category__id', 'category__name')
        .annotate(
            total=Count('id'),
            resolved=Count('id', filter=Q(status__in=(RESOLVED, CLOSED))),
            escalated=Count('id', filter=Q(escalation_level__gt=0)),
            avg_rating=Avg('feedback__rating'),
        )
        .order_by('-total')
    )
    return [_with_rate(r) for r in rows]


def admin_analytics(qs=None):
    qs = qs if qs is not None else Ticket.objects.all()
    rows = (
        qs.filter(assigned_to__isnull=False)
        .values('assigned_to__id', 'assigned_to__username', 'assigned_to__first_name', 'assigned_to__last_name')
        .annotate(
            total=Count('id'),
            resolved=Count('id', filter=Q(status__in=(RESOLVED, CLOSED))),
            escalated=Count('id', filter=Q(escalation_level__gt=0)),
            avg_rating=Avg('feedback__rating'),
        )
        .order_by('-total')
    )
    return [_with_rate(r) for r in rows]


def _with_rate(row):
    row = dict(row)
    row['resolution_rate'] = round(row['resolved'] * 100 / row['total'], 1) if row['total'] else 0.0
    if row.get('avg_rating') is not None:
        row['avg_rating'] = round(row['avg_rating'], 2)
    return row
