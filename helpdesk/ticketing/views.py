import logging

from django.contrib import messages
from django.contrib.auth import authenticate, login, logout
from django.contrib.auth.decorators import login_required
from django.contrib.auth.mixins import LoginRequiredMixin
from django.core.exceptions import PermissionDenied
from django.http import HttpResponse, HttpResponseForbidden, JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.urls import reverse
from django.utils import timezone
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_POST
from django.views.generic import DetailView, FormView, ListView

from . import committees, dashboard, services, students
from .activity import timeline_for
from .constants import (
    FINAL_STATUSES, ROLE_ADMIN, ROLE_COMMITTEE, ROLE_SNR_ADMIN, ROLE_STUDENT, ROLE_SUPER_ADMIN,
    STATUS_TRANSITIONS,
)
from .errors import HelpdeskError
from .forms import (
    AttachmentForm, CommentForm, CommitteeTagForm, ExtendTatForm, FeedbackForm, ReasonForm,
    RegisterForm, SetTatForm, StatusForm, StudentProfileForm, StudentUploadForm, TicketAssignForm,
    TicketForm, field_answers,
)
from .models import Category, Student, Subcategory, Ticket
from .rbac import (
    RoleRequiredMixin, can_manage_ticket, can_view_ticket, dashboard_url_for, get_user_role,
    is_staff_role, role_required, staff_required, super_admin_required,
)
from .tat import tat_state

logger = logging.getLogger(__name__)


def custom_login(request):
    """Custom login view for the application"""
    if request.user.is_authenticated:
        return redirect(dashboard_url_for(request.user))
    if request.method == 'POST':
        username = request.POST.get('username')
        password = request.POST.get('password')
        user = authenticate(request, username=username, password=password)

        if user is not None:
            login(request, user)
            next_url = request.POST.get('next') or request.GET.get('next')
            if not url_has_allowed_host_and_scheme(next_url, allowed_hosts={request.get_host()},
                                                   require_https=request.is_secure()):
                next_url = dashboard_url_for(user)
            return redirect(next_url)
        messages.error(request, "Invalid username or password")

    return render(request, 'ticketing/login.html')


def custom_logout(request):
    logout(request)
    messages.success(request, "You have been logged out successfully")
    return redirect('login')


def register(request):
    """Student self-registration. Staff accounts are created by a super admin."""
    if request.method == 'POST':
        form = RegisterForm(request.POST)
        if form.is_valid():
            user = form.save()
            Student.objects.get_or_create(user=user)
            messages.success(request, f"Account created for {user.username}. You can now log in.")
            return redirect('login')
    else:
        form = RegisterForm()
    return render(request, 'ticketing/register.html', {'form': form})


@login_required
def home(request):
    return redirect(dashboard_url_for(request.user))


def _render_dashboard(request, title):
    data = dashboard.dashboard_data(request.user, request.GET)
    context = {
        'title': title,
        'filters': data['filters'],
        'stats': data['stats'],
        'page': data['page'],
        'tickets': data['page']['results'],
        'categories': Category.objects.filter(is_active=True),
    }
    return render(request, 'ticketing/dashboard.html', context)


@role_required(ROLE_STUDENT)
def student_dashboard(request):
    return _render_dashboard(request, "My tickets")


@role_required(ROLE_ADMIN)
def admin_dashboard(request):
    return _render_dashboard(request, "Admin dashboard")


@role_required(ROLE_SNR_ADMIN)
def snr_admin_dashboard(request):
    return _render_dashboard(request, "Senior admin dashboard")


@role_required(ROLE_SUPER_ADMIN)
def superadmin_dashboard(request):
    return _render_dashboard(request, "Super admin dashboard")


@role_required(ROLE_COMMITTEE)
def committee_dashboard(request):
    return _render_dashboard(request, "Committee dashboard")


class TicketListView(LoginRequiredMixin, ListView):
    model = Ticket
    template_name = 'ticketing/ticket_list.html'
    context_object_name = 'tickets'
    paginate_by = 20

    def get_queryset(self):
        self.filters = dashboard.parse_filters(self.request.GET)
        return dashboard.apply_filters(dashboard.base_queryset(self.request.user), self.filters)

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        dashboard.annotate_tat(context['tickets'])
        context['filters'] = self.filters
        return context


class TicketDetailView(LoginRequiredMixin, DetailView):
    model = Ticket
    template_name = 'ticketing/ticket_detail.html'
    context_object_name = 'ticket'

    def get_object(self, queryset=None):
        ticket = super().get_object(queryset)
        if not can_view_ticket(self.request.user, ticket):
            raise PermissionDenied
        return ticket

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        ticket = self.object
        user = self.request.user
        staff = is_staff_role(user)
        comments = ticket.comments.select_related('created_by').order_by('created_at')
        if not staff:
            comments = comments.filter(is_internal=False)
        context['staff_view'] = staff
        context['can_manage'] = can_manage_ticket(user, ticket)
        context['comments'] = comments
        context['attachments'] = ticket.attachments.order_by('-uploaded_at')
        context['timeline'] = timeline_for(ticket, staff)
        context['tat_state'], context['tat_display'] = tat_state(ticket, timezone.now())
        context['next_statuses'] = STATUS_TRANSITIONS.get(ticket.status, [])
        context['is_final'] = ticket.status in FINAL_STATUSES
        context['comment_form'] = CommentForm()
        context['attachment_form'] = AttachmentForm()
        context['status_form'] = StatusForm(initial={'status': ticket.status})
        context['reason_form'] = ReasonForm()
        if staff:
            context['assign_form'] = TicketAssignForm(initial={'assigned_to': ticket.assigned_to_id})
            context['tat_form'] = SetTatForm()
            context['extend_form'] = ExtendTatForm()
            context['committee_form'] = CommitteeTagForm()
        elif not hasattr(ticket, 'feedback'):
            context['feedback_form'] = FeedbackForm()
        return context


class TicketCreateView(RoleRequiredMixin, FormView):
    allowed_roles = (ROLE_STUDENT, ROLE_COMMITTEE)
    form_class = TicketForm
    template_name = 'ticketing/ticket_form.html'

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        subcategory_id = self.request.GET.get('subcategory') or self.request.POST.get('subcategory')
        context['fields'] = []
        if subcategory_id and str(subcategory_id).isdigit():
            subcategory = Subcategory.objects.filter(pk=subcategory_id, is_active=True).first()
            if subcategory:
                context['fields'] = subcategory.fields.filter(is_active=True).prefetch_related('options')
        context['weekly_count'] = services.tickets_created_this_week(self.request.user)
        return context

    def form_valid(self, form):
        subcategory = form.cleaned_data.get('subcategory')
        fields = list(subcategory.fields.filter(is_active=True)) if subcategory else []
        data = {
            'category_id': form.cleaned_data['category'].pk,
            'subcategory_id': subcategory.pk if subcategory else None,
            'title': form.cleaned_data.get('title'),
            'description': form.cleaned_data['description'],
            'location': form.cleaned_data.get('location'),
            'priority': form.cleaned_data.get('priority'),
            'metadata': field_answers(self.request.POST, fields),
        }
        try:
            ticket = services.create_ticket(self.request.user, data, self.request.FILES.getlist('attachments'))
        except HelpdeskError as exc:
            for slug, error in (exc.details or {}).get('errors', {}).items():
                messages.error(self.request, f"{slug}: {error}")
            form.add_error(None, exc.message)
            return self.form_invalid(form)

        if self.request.headers.get('x-requested-with') == 'XMLHttpRequest':
            return JsonResponse({
                'success': True,
                'redirect_url': ticket.get_absolute_url(),
                'ticket_number': ticket.ticket_number,
            })
        messages.success(self.request, f"Ticket {ticket.ticket_number} created.")
        return redirect(ticket.get_absolute_url())


def _ticket_action(request, pk, action, success_message):
    """Run a service call for a POSTed ticket form and bounce back to the ticket."""
    ticket = get_object_or_404(Ticket, pk=pk)
    if not can_view_ticket(request.user, ticket):
        return HttpResponseForbidden("Access denied")
    try:
        result = action(ticket)
    except HelpdeskError as exc:
        messages.error(request, exc.message)
    else:
        warning = result[1] if isinstance(result, tuple) else None
        if warning:
            messages.warning(request, warning)
        messages.success(request, success_message)
    return redirect('ticket_detail', pk=pk)


def _invalid(request, pk, form):
    for errors in form.errors.values():
        for error in errors:
            messages.error(request, error)
    return redirect('ticket_detail', pk=pk)


@login_required
@require_POST
def change_status(request, pk):
    form = StatusForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.update_status(t, form.cleaned_data['status'], request.user, form.cleaned_data['comment']),
        "Status updated",
    )


@staff_required
@require_POST
def assign_ticket(request, pk):
    form = TicketAssignForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    assignee = form.cleaned_data['assigned_to']
    return _ticket_action(
        request, pk,
        lambda t: services.assign(t, assignee, request.user, form.cleaned_data['note']),
        f"Ticket assigned to {assignee.get_full_name() or assignee.username}",
    )


@staff_required
@require_POST
def forward_ticket(request, pk):
    form = TicketAssignForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.forward(t, form.cleaned_data['assigned_to'], request.user, form.cleaned_data['note']),
        "Ticket forwarded",
    )


@login_required
@require_POST
def add_comment(request, pk):
    form = CommentForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.add_comment(t, request.user, form.cleaned_data['text'], form.cleaned_data['is_internal']),
        "Comment added successfully",
    )


@staff_required
@require_POST
def ask_question(request, pk):
    form = CommentForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.ask_question(t, request.user, form.cleaned_data['text']),
        "Question sent to the student",
    )


@login_required
@require_POST
def add_attachment(request, pk):
    form = AttachmentForm(request.POST, request.FILES)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.add_attachment(t, request.user, form.cleaned_data['file']),
        "Attachment added successfully",
    )


@login_required
@require_POST
def escalate_ticket(request, pk):
    form = ReasonForm(request.POST)
    form.is_valid()
    return _ticket_action(
        request, pk,
        lambda t: services.escalate(t, request.user, form.cleaned_data.get('reason', '')),
        "Ticket escalated",
    )


@login_required
@require_POST
def reopen_ticket(request, pk):
    form = ReasonForm(request.POST)
    form.is_valid()
    return _ticket_action(
        request, pk,
        lambda t: services.reopen(t, request.user, form.cleaned_data.get('reason', '')),
        "Ticket reopened",
    )


@staff_required
@require_POST
def set_tat(request, pk):
    form = SetTatForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.set_tat(t, request.user, form.cleaned_data['tat'], form.cleaned_data['mark_in_progress']),
        "TAT updated",
    )


@staff_required
@require_POST
def extend_tat(request, pk):
    form = ExtendTatForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.extend_tat(t, request.user, form.cleaned_data['hours'], form.cleaned_data['reason']),
        "TAT extended",
    )


@login_required
@require_POST
def submit_feedback(request, pk):
    form = FeedbackForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    return _ticket_action(
        request, pk,
        lambda t: services.submit_feedback(t, request.user, form.cleaned_data['rating'], form.cleaned_data['feedback']),
        "Thanks for your feedback",
    )


@staff_required
@require_POST
def tag_committee(request, pk):
    form = CommitteeTagForm(request.POST)
    if not form.is_valid():
        return _invalid(request, pk, form)
    committee = form.cleaned_data['committee']
    return _ticket_action(
        request, pk,
        lambda t: committees.tag_ticket(t, committee, request.user, form.cleaned_data['reason']),
        f"Ticket tagged to {committee.name}",
    )


@staff_required
def analytics(request):
    qs = dashboard.base_queryset(request.user)
    context = {
        'stats': dashboard.stats_for(qs),
        'categories': dashboard.category_analytics(qs),
        'admins': dashboard.admin_analytics(qs) if get_user_role(request.user) != ROLE_ADMIN else [],
    }
    return render(request, 'ticketing/analytics.html', context)


@staff_required
def export_tickets(request):
    filters = dashboard.parse_filters(request.GET)
    qs = dashboard.apply_filters(dashboard.base_queryset(request.user), filters)
    response = HttpResponse(services.export_csv(qs), content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="tickets.csv"'
    return response


@login_required
def student_profile(request):
    student = Student.objects.select_related('hostel', 'class_section', 'batch').filter(user=request.user).first()
    form = None
    if student:
        initial = {'mobile': request.user.profile.phone, 'room_no': student.room_no}
        form = StudentProfileForm(request.POST or None, initial=initial)
        if request.method == 'POST' and form.is_valid():
            students.update_student(student, form.cleaned_data)
            messages.success(request, "Profile updated")
            return redirect('student_profile')
    return render(request, 'ticketing/profile.html', {'student': student, 'form': form})


@super_admin_required
def upload_students(request):
    result = None
    if request.method == 'POST':
        form = StudentUploadForm(request.POST, request.FILES)
        if form.is_valid():
            try:
                result = students.bulk_upload(form.cleaned_data['file'])
            except HelpdeskError as exc:
                messages.error(request, exc.message)
            else:
                messages.success(
                    request,
                    f"{len(result['created'])} created, {len(result['updated'])} updated, {len(result['failed'])} failed",
                )
    else:
        form = StudentUploadForm()
    return render(request, 'ticketing/student_upload.html', {
        'form': form,
        'result': result,
        'template_url': reverse('api-student-template'),
    })
