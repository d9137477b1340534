import logging

from django.conf import settings
from django.contrib.auth.models import User
from django.db import connection
from django.db.models import Q
from django.http import HttpResponse
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from . import catalogue, committees, dashboard, escalation, notifications, outbox, services, students
from .activity import timeline_for
from .assignment import create_admin_assignment
from .constants import ROLE_SNR_ADMIN, ROLE_SUPER_ADMIN, STAFF_ROLES
from .errors import Forbidden, ValidationFailed
from .models import (
    AdminAssignment, AdminProfile, Batch, Category, CategoryAssignment, CategoryField, ClassSection,
    Committee, Domain, Hostel, NotificationConfig, SavedFilter, Scope, Subcategory, Ticket,
    TicketGroup,
)
from .rbac import (
    IsStaffRole, IsSuperAdmin, ReadOnlyOrSuperAdmin, can_view_ticket, get_user_role, is_staff_role,
)
from .serializers import (
    ActivitySerializer, AdminAssignmentSerializer, AdminProfileSerializer, AttachmentSerializer,
    BatchSerializer, BulkSerializer, CategoryAssignmentSerializer, CategoryFieldSerializer,
    CategorySerializer, ClassSectionSerializer, CommentCreateSerializer, CommentSerializer,
    CommitteeSerializer, DomainSerializer, EscalationRuleSerializer, ExtendTatSerializer,
    FeedbackCreateSerializer, FeedbackSerializer, FieldOptionSerializer, HostelSerializer,
    NotificationConfigSerializer, ReasonSerializer, RoleChangeSerializer, SavedFilterSerializer,
    ScopeSerializer, SetTatSerializer, StatusUpdateSerializer, StudentSerializer,
    StudentWriteSerializer, SubcategorySerializer, TicketAssignSerializer, TicketCreateSerializer,
    TicketGroupSerializer, TicketListSerializer, TicketMergeSerializer, TicketSerializer,
)

logger = logging.getLogger(__name__)


class TicketViewSet(viewsets.ModelViewSet):
    serializer_class = TicketSerializer
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    http_method_names = ['get', 'post', 'head', 'options']

    def get_queryset(self):
        return dashboard.base_queryset(self.request.user)

    def get_serializer_class(self):
        if self.action == 'list':
            return TicketListSerializer
        if self.action == 'create':
            return TicketCreateSerializer
        return TicketSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['staff_view'] = is_staff_role(self.request.user)
        return context

    def get_object(self):
        ticket = services.get_ticket(self.kwargs['pk'])
        if not can_view_ticket(self.request.user, ticket):
            raise Forbidden("You don't have permission to view this ticket.")
        return ticket

    def _detail(self, ticket, warning=None, status_code=status.HTTP_200_OK):
        ticket.refresh_from_db()
        data = {'ticket': TicketSerializer(ticket, context=self.get_serializer_context()).data}
        if warning:
            data['warning'] = warning
        return Response(data, status=status_code)

    def list(self, request, *args, **kwargs):
        data = dashboard.dashboard_data(request.user, request.query_params)
        page = data['page']
        return Response({
            'results': TicketListSerializer(page['results'], many=True).data,
            'page': page['page'],
            'page_size': page['page_size'],
            'total': page['total'],
            'total_pages': page['total_pages'],
            'stats': data['stats'],
        })

    def create(self, request, *args, **kwargs):
        serializer = TicketCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ticket = services.create_ticket(request.user, serializer.validated_data, request.FILES.getlist('attachments'))
        return self._detail(ticket, status_code=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def stats(self, request):
        return Response(dashboard.stats_for(dashboard.base_queryset(request.user)))

    @action(detail=True, methods=['post'], url_path='status')
    def change_status(self, request, pk=None):
        ticket = self.get_object()
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.update_status(ticket, serializer.validated_data['status'], request.user,
                               comment=serializer.validated_data.get('comment'))
        return self._detail(ticket)

    @action(detail=True, methods=['post'])
    def assign(self, request, pk=None):
        ticket = self.get_object()
        serializer = TicketAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        assignee = services.get_user(serializer.validated_data['assigned_to'])
        services.assign(ticket, assignee, request.user, note=serializer.validated_data.get('note', ''))
        return self._detail(ticket)

    @action(detail=True, methods=['post'])
    def forward(self, request, pk=None):
        ticket = self.get_object()
        serializer = TicketAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        assignee = services.get_user(serializer.validated_data['assigned_to'])
        services.forward(ticket, assignee, request.user, reason=serializer.validated_data.get('note', ''))
        return self._detail(ticket)

    @action(detail=True, methods=['get', 'post'])
    def comments(self, request, pk=None):
        ticket = self.get_object()
        if request.method == 'GET':
            qs = ticket.comments.select_related('created_by')
            if not is_staff_role(request.user):
                qs = qs.filter(is_internal=False)
            return Response(CommentSerializer(qs, many=True).data)
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = services.add_comment(ticket, request.user, serializer.validated_data['text'],
                                       internal=serializer.validated_data['is_internal'])
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def question(self, request, pk=None):
        ticket = self.get_object()
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.ask_question(ticket, request.user, serializer.validated_data['text'])
        return self._detail(ticket)

    @action(detail=True, methods=['post'])
    def escalate(self, request, pk=None):
        ticket = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.escalate(ticket, request.user, serializer.validated_data.get('reason', ''))
        return self._detail(ticket)

    @action(detail=True, methods=['post'])
    def reopen(self, request, pk=None):
        ticket = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ticket, warning = services.reopen(ticket, request.user, serializer.validated_data.get('reason', ''))
        return self._detail(ticket, warning)

    @action(detail=True, methods=['post'], permission_classes=[IsStaffRole])
    def merge(self, request, pk=None):
        target = self.get_object()
        serializer = TicketMergeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        services.merge_tickets(target, data['source_ticket_ids'], request.user, data['reason'])
        return self._detail(target)

    @action(detail=True, methods=['post'], permission_classes=[IsStaffRole])
    def archive(self, request, pk=None):
        ticket = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.archive_ticket(ticket, request.user, serializer.validated_data.get('reason', ''))
        return self._detail(ticket)

    @action(detail=True, methods=['post'], url_path='tat')
    def set_tat(self, request, pk=None):
        ticket = self.get_object()
        serializer = SetTatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.set_tat(ticket, request.user, serializer.validated_data['tat'],
                         mark_in_progress=serializer.validated_data['mark_in_progress'])
        return self._detail(ticket)

    @action(detail=True, methods=['post'], url_path='extend-tat')
    def extend_tat(self, request, pk=None):
        ticket = self.get_object()
        serializer = ExtendTatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ticket, warning = services.extend_tat(ticket, request.user, serializer.validated_data['hours'],
                                              serializer.validated_data.get('reason', ''))
        return self._detail(ticket, warning)

    @action(detail=True, methods=['post'])
    def feedback(self, request, pk=None):
        ticket = self.get_object()
        serializer = FeedbackCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        feedback = services.submit_feedback(ticket, request.user, serializer.validated_data['rating'],
                                            serializer.validated_data.get('feedback', ''))
        return Response(FeedbackSerializer(feedback).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def attachments(self, request, pk=None):
        ticket = self.get_object()
        uploaded = request.FILES.get('file')
        if not uploaded:
            raise ValidationFailed("A file is required")
        attachment = services.add_attachment(ticket, request.user, uploaded)
        return Response(AttachmentSerializer(attachment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def activity(self, request, pk=None):
        ticket = self.get_object()
        return Response(ActivitySerializer(timeline_for(ticket, is_staff_role(request.user)), many=True).data)

    @action(detail=True, methods=['post'])
    def tags(self, request, pk=None):
        ticket = self.get_object()
        if not is_staff_role(request.user):
            raise Forbidden("Only admins can tag tickets")
        if request.data.get('remove'):
            services.remove_tag(ticket, request.data.get('tag'))
        else:
            services.add_tag(ticket, request.user, request.data.get('tag'))
        return self._detail(ticket)

    @action(detail=True, methods=['post'])
    def watch(self, request, pk=None):
        ticket = self.get_object()
        if request.data.get('remove'):
            services.unwatch(ticket, request.user)
        else:
            services.watch(ticket, request.user)
        return Response({'watching': not request.data.get('remove')})

    @action(detail=True, methods=['post'], url_path='committees')
    def tag_committee(self, request, pk=None):
        ticket = self.get_object()
        committee = committees.get_committee(request.data.get('committee_id'))
        if request.data.get('remove'):
            committees.untag_ticket(ticket, committee.pk, request.user)
            return Response({'ok': True})
        committees.tag_ticket(ticket, committee, request.user, request.data.get('reason', ''))
        return Response({'ok': True}, status=status.HTTP_201_CREATED)

    def _selected(self, request):
        serializer = BulkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ids = serializer.validated_data['ticket_ids']
        tickets = [t for t in Ticket.objects.filter(pk__in=ids) if can_view_ticket(request.user, t)]
        return serializer.validated_data, tickets

    @action(detail=False, methods=['post'], url_path='bulk-status', permission_classes=[IsStaffRole])
    def bulk_status(self, request):
        data, tickets = self._selected(request)
        if not data.get('status'):
            raise ValidationFailed("status is required")
        return Response(services.bulk_update_status(tickets, data['status'], request.user, data.get('comment')))

    @action(detail=False, methods=['post'], url_path='bulk-assign', permission_classes=[IsStaffRole])
    def bulk_assign(self, request):
        data, tickets = self._selected(request)
        if not data.get('assigned_to'):
            raise ValidationFailed("assigned_to is required")
        return Response(services.bulk_assign(tickets, services.get_user(data['assigned_to']), request.user))

    @action(detail=False, methods=['post'], url_path='bulk-close', permission_classes=[IsStaffRole])
    def bulk_close(self, request):
        _, tickets = self._selected(request)
        return Response(services.bulk_close(tickets, request.user))

    @action(detail=False, methods=['get'], permission_classes=[IsStaffRole])
    def export(self, request):
        filters = dashboard.parse_filters(request.query_params)
        qs = dashboard.apply_filters(dashboard.base_queryset(request.user), filters)
        ids = request.query_params.get('ids')
        if ids:
            qs = qs.filter(pk__in=[int(i) for i in ids.split(',') if i.isdigit()])
        response = HttpResponse(services.export_csv(qs), content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="tickets.csv"'
        return response


# Master data

class SoftDeleteMixin:
    def perform_destroy(self, instance):
        catalogue.soft_delete(instance)


class MasterDataMixin:
    permission_classes = [ReadOnlyOrSuperAdmin]

    def get_queryset(self):
        qs = super().get_queryset()
        if self.request.query_params.get('include_inactive') != 'true':
            qs = qs.filter(is_active=True)
        return qs

    def perform_destroy(self, instance):
        catalogue.delete_master(instance)


class BatchViewSet(MasterDataMixin, viewsets.ModelViewSet):
    queryset = Batch.objects.all()
    serializer_class = BatchSerializer


class HostelViewSet(MasterDataMixin, viewsets.ModelViewSet):
    queryset = Hostel.objects.all()
    serializer_class = HostelSerializer


class ClassSectionViewSet(MasterDataMixin, viewsets.ModelViewSet):
    queryset = ClassSection.objects.all()
    serializer_class = ClassSectionSerializer


class DomainViewSet(MasterDataMixin, viewsets.ModelViewSet):
    queryset = Domain.objects.all()
    serializer_class = DomainSerializer


class ScopeViewSet(MasterDataMixin, viewsets.ModelViewSet):
    queryset = Scope.objects.select_related('domain')
    serializer_class = ScopeSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        domain = self.request.query_params.get('domain')
        return qs.filter(domain_id=domain) if domain else qs


# Catalogue

class CategoryViewSet(SoftDeleteMixin, viewsets.ModelViewSet):
    serializer_class = CategorySerializer
    permission_classes = [ReadOnlyOrSuperAdmin]

    def get_queryset(self):
        qs = Category.objects.all()
        if self.request.query_params.get('include_inactive') != 'true':
            qs = qs.filter(is_active=True)
        return qs

    def perform_create(self, serializer):
        slug = serializer.validated_data.get('slug') or catalogue.unique_slug(Category, serializer.validated_data['name'])
        serializer.save(slug=slug)

    @action(detail=True, methods=['get'])
    def schema(self, request, pk=None):
        return Response(catalogue.category_schema(self.get_object()))

    @action(detail=True, methods=['get', 'post'], permission_classes=[IsSuperAdmin])
    def assignments(self, request, pk=None):
        category = self.get_object()
        if request.method == 'POST':
            serializer = CategoryAssignmentSerializer(data=dict(request.data.items(), category=category.pk))
            serializer.is_valid(raise_exception=True)
            CategoryAssignment.objects.update_or_create(
                category=category, user=serializer.validated_data['user'],
                defaults={'assignment_type': serializer.validated_data.get('assignment_type', 'primary')},
            )
        return Response(CategoryAssignmentSerializer(category.assignments.all(), many=True).data)


class SubcategoryViewSet(SoftDeleteMixin, viewsets.ModelViewSet):
    serializer_class = SubcategorySerializer
    permission_classes = [ReadOnlyOrSuperAdmin]

    def get_queryset(self):
        qs = Subcategory.objects.filter(is_active=True).select_related('category')
        category = self.request.query_params.get('category')
        return qs.filter(category_id=category) if category else qs

    def perform_create(self, serializer):
        data = serializer.validated_data
        slug = data.get('slug') or catalogue.unique_slug(Subcategory, data['name'], category=data['category'])
        serializer.save(slug=slug)


class CategoryFieldViewSet(SoftDeleteMixin, viewsets.ModelViewSet):
    serializer_class = CategoryFieldSerializer
    permission_classes = [ReadOnlyOrSuperAdmin]

    def get_queryset(self):
        qs = CategoryField.objects.filter(is_active=True).prefetch_related('options')
        subcategory = self.request.query_params.get('subcategory')
        return qs.filter(subcategory_id=subcategory) if subcategory else qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        field = catalogue.save_field(CategoryField(**serializer.validated_data))
        return Response(CategoryFieldSerializer(field).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        field = serializer.instance
        for key, value in serializer.validated_data.items():
            setattr(field, key, value)
        catalogue.save_field(field)

    @action(detail=True, methods=['put'], permission_classes=[IsSuperAdmin])
    def options(self, request, pk=None):
        field = self.get_object()
        options = request.data.get('options') if isinstance(request.data, dict) else request.data
        if not isinstance(options, list):
            raise ValidationFailed("options must be a list")
        created = catalogue.replace_options(field, options)
        return Response(FieldOptionSerializer(created, many=True).data)


# People

class StudentViewSet(viewsets.ViewSet):
    permission_classes = [IsSuperAdmin]

    def list(self, request):
        params = request.query_params
        active = {'true': True, 'false': False}.get(params.get('active'))
        qs = students.search_students(params.get('search', ''), params.get('hostel'), params.get('batch_year'), active)
        page = dashboard.paginate(qs, params.get('page', 1), params.get('page_size'))
        page['results'] = StudentSerializer(page['results'], many=True).data
        return Response(page)

    def retrieve(self, request, pk=None):
        return Response(StudentSerializer(students.get_student(pk)).data)

    def create(self, request):
        serializer = StudentWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        student = students.create_student(serializer.validated_data)
        return Response(StudentSerializer(student).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = StudentWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        student = students.update_student(students.get_student(pk), serializer.validated_data)
        return Response(StudentSerializer(student).data)

    @action(detail=True, methods=['post'])
    def deactivate(self, request, pk=None):
        return Response(StudentSerializer(students.set_active(students.get_student(pk), False)).data)

    @action(detail=True, methods=['post'])
    def reactivate(self, request, pk=None):
        return Response(StudentSerializer(students.set_active(students.get_student(pk), True)).data)

    @action(detail=False, methods=['post'], url_path='bulk-upload', parser_classes=[MultiPartParser])
    def bulk_upload(self, request):
        upload = request.FILES.get('file')
        if not upload:
            raise ValidationFailed("Upload a CSV file in the 'file' field")
        return Response(students.bulk_upload(upload))

    @action(detail=False, methods=['get'])
    def template(self, request):
        response = HttpResponse(students.csv_template(), content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="students_template.csv"'
        return response


class StaffViewSet(viewsets.ViewSet):
    permission_classes = [IsSuperAdmin]

    def list(self, request):
        users = User.objects.filter(profile__role__in=STAFF_ROLES).order_by('first_name', 'username')
        profiles = {p.user_id: p for p in AdminProfile.objects.filter(user__in=users)}
        data = []
        for u in users:
            profile = profiles.get(u.pk) or AdminProfile(user=u)
            data.append(AdminProfileSerializer(profile).data)
        return Response(data)

    def partial_update(self, request, pk=None):
        user = services.get_user(pk)
        profile = students.upsert_admin_profile(user, request.data)
        return Response(AdminProfileSerializer(profile).data)

    @action(detail=True, methods=['post'])
    def role(self, request, pk=None):
        serializer = RoleChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = students.change_role(services.get_user(pk), serializer.validated_data['role'])
        return Response({'id': user.pk, 'role': user.profile.role})


class CommitteeViewSet(viewsets.ModelViewSet):
    serializer_class = CommitteeSerializer
    permission_classes = [ReadOnlyOrSuperAdmin]

    def get_queryset(self):
        return Committee.objects.filter(is_active=True).prefetch_related('members__user')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        committee = committees.create_committee(data['name'], data.get('description', ''),
                                                data.get('contact_email', ''), data.get('head'))
        return Response(CommitteeSerializer(committee).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        committees.update_committee(serializer.instance, **serializer.validated_data)

    def perform_destroy(self, instance):
        catalogue.soft_delete(instance)

    @action(detail=True, methods=['post'], permission_classes=[IsSuperAdmin])
    def members(self, request, pk=None):
        committee = self.get_object()
        user = committees.get_member_user(request.data.get('user_id'))
        if request.data.get('remove'):
            committees.remove_member(committee, user.pk)
        else:
            committees.add_member(committee, user, request.data.get('role') or 'member')
        return Response(CommitteeSerializer(committee).data)

    @action(detail=False, methods=['get'], permission_classes=[permissions.IsAuthenticated])
    def tickets(self, request):
        qs = committees.tickets_for_member(request.user).select_related('category', 'created_by', 'assigned_to')
        return Response(TicketListSerializer(qs, many=True).data)


# Routing configuration

class AdminAssignmentViewSet(viewsets.ModelViewSet):
    serializer_class = AdminAssignmentSerializer
    permission_classes = [IsSuperAdmin]
    http_method_names = ['get', 'post', 'delete', 'head', 'options']

    def get_queryset(self):
        qs = AdminAssignment.objects.select_related('user', 'domain', 'scope')
        user = self.request.query_params.get('user')
        return qs.filter(user_id=user) if user else qs

    def create(self, request, *args, **kwargs):
        assignment = create_admin_assignment(
            request.data.get('user'), request.data.get('domain'), request.data.get('scope'),
        )
        return Response(AdminAssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)


class EscalationRuleViewSet(viewsets.ModelViewSet):
    serializer_class = EscalationRuleSerializer
    permission_classes = [IsSuperAdmin]

    def get_queryset(self):
        params = self.request.query_params
        qs = escalation.list_rules()
        if params.get('domain'):
            qs = qs.filter(domain_id=params['domain'])
        if params.get('scope'):
            qs = qs.filter(scope_id=params['scope'])
        return qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        rule = escalation.create_rule(
            data['escalate_to'].pk, data['level'],
            domain_id=data['domain'].pk if data.get('domain') else None,
            scope_id=data['scope'].pk if data.get('scope') else None,
            tat_hours=data.get('tat_hours', 48),
            notify_channel=data.get('notify_channel', 'slack'),
        )
        return Response(EscalationRuleSerializer(rule).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        changes = dict(serializer.validated_data)
        if changes.get('escalate_to'):
            changes['escalate_to_id'] = changes.pop('escalate_to').pk
        escalation.update_rule(serializer.instance, **changes)

    def perform_destroy(self, instance):
        escalation.delete_rule(instance)


class NotificationConfigViewSet(SoftDeleteMixin, viewsets.ModelViewSet):
    serializer_class = NotificationConfigSerializer
    permission_classes = [IsSuperAdmin]

    def get_queryset(self):
        return NotificationConfig.objects.filter(is_active=True).select_related('scope', 'category', 'subcategory')

    @action(detail=False, methods=['get'])
    def resolve(self, request):
        params = request.query_params
        scope = Scope.objects.filter(pk=params.get('scope')).first() if params.get('scope') else None
        category = Category.objects.filter(pk=params.get('category')).first() if params.get('category') else None
        subcategory = Subcategory.objects.filter(pk=params.get('subcategory')).first() if params.get('subcategory') else None
        config = notifications.resolve_notification_config(scope, category, subcategory)
        return Response(NotificationConfigSerializer(config).data if config else None)


class TicketGroupViewSet(viewsets.ModelViewSet):
    serializer_class = TicketGroupSerializer
    permission_classes = [IsStaffRole]

    def get_queryset(self):
        qs = TicketGroup.objects.all().order_by('-created_at')
        if self.request.query_params.get('archived') != 'true':
            qs = qs.filter(is_archived=False)
        return qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        group = services.create_group(request.user, data['name'], data.get('description', ''), data.get('ticket_ids', []))
        return Response(TicketGroupSerializer(group).data, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        services.archive_group(instance)

    @action(detail=True, methods=['post'])
    def tickets(self, request, pk=None):
        group = self.get_object()
        ids = request.data.get('ticket_ids') or []
        if request.data.get('remove'):
            services.remove_from_group(group, ids)
        else:
            services.add_to_group(group, ids)
        return Response(dict(TicketGroupSerializer(group).data, stats=services.group_stats(group)))

    @action(detail=True, methods=['post'], url_path='bulk-status')
    def bulk_status(self, request, pk=None):
        group = self.get_object()
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.group_bulk_status(
            group, serializer.validated_data['status'], request.user, serializer.validated_data.get('comment'),
        ))


class SavedFilterViewSet(viewsets.ModelViewSet):
    serializer_class = SavedFilterSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return SavedFilter.objects.filter(user=self.request.user)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        saved = services.save_filter(request.user, data['name'], data.get('config'), data.get('is_default', False))
        return Response(SavedFilterSerializer(saved).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsStaffRole])
def analytics(request):
    qs = dashboard.base_queryset(request.user)
    return Response({
        'stats': dashboard.stats_for(qs),
        'categories': dashboard.category_analytics(qs),
        'admins': dashboard.admin_analytics(qs) if get_user_role(request.user) in (ROLE_SUPER_ADMIN, ROLE_SNR_ADMIN) else [],
    })


@api_view(['GET'])
@permission_classes([permissions.AllowAny])
def health(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
        db_status = 'ok'
    except Exception:
        logger.exception("Health check database query failed")
        db_status = 'error'
    code = status.HTTP_200_OK if db_status == 'ok' else status.HTTP_503_SERVICE_UNAVAILABLE
    return Response({'status': db_status, 'database': db_status}, status=code)


class CronPermission(permissions.BasePermission):
    """Scheduled jobs authenticate with ``Authorization: Bearer <CRON_SECRET>``."""

    def has_permission(self, request, view):
        if get_user_role(request.user) == ROLE_SUPER_ADMIN:
            return True
        secret = settings.CRON_SECRET
        return bool(secret) and request.headers.get('Authorization') == f'Bearer {secret}'


@api_view(['POST', 'GET'])
@permission_classes([CronPermission])
def cron_escalate(request):
    return Response(escalation.escalate_overdue_tickets())


@api_view(['POST', 'GET'])
@permission_classes([CronPermission])
def cron_outbox(request):
    batch = request.query_params.get('batch', '10')
    if not batch.isdigit() or int(batch) < 1:
        raise ValidationFailed("batch must be a positive integer")
    return Response(outbox.process_pending(int(batch)))


@api_view(['POST', 'GET'])
@permission_classes([CronPermission])
def cron_tat_reminders(request):
    return Response(notifications.send_tat_reminders())


@api_view(['POST', 'GET'])
@permission_classes([CronPermission])
def cron_remind_spocs(request):
    return Response(notifications.send_admin_reminders())


@api_view(['GET'])
@permission_classes([permissions.IsAuthenticated])
def hierarchy(request):
    rows = []
    for category in catalogue.active_hierarchy():
        rows.append({
            'id': category.pk,
            'name': category.name,
            'slug': category.slug,
            'subcategories': [{'id': s.pk, 'name': s.name, 'slug': s.slug} for s in category.subcategories.all()],
        })
    return Response(rows)


@api_view(['GET'])
@permission_classes([permissions.IsAuthenticated])
def admins(request):
    qs = User.objects.filter(is_active=True, profile__role__in=STAFF_ROLES)
    search = request.query_params.get('search')
    if search:
        qs = qs.filter(Q(username__icontains=search) | Q(first_name__icontains=search) | Q(email__icontains=search))
    return Response([{'id': u.pk, 'name': u.get_full_name() or u.username, 'email': u.email} for u in qs])

