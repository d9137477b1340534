from django.contrib.auth.models import User
from rest_framework import serializers

from .constants import LIMITS, PRIORITY_CHOICES, ROLE_CHOICES, STATUS_CHOICES
from .models import (
    AdminAssignment, AdminProfile, Attachment, Batch, Category, CategoryAssignment, CategoryField,
    ClassSection, Comment, Committee, CommitteeMember, Domain, EscalationRule, FieldOption, Hostel,
    NotificationConfig, Profile, SavedFilter, Scope, Student, Subcategory, Ticket, TicketActivity,
    TicketFeedback, TicketGroup,
)


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'full_name']

    def get_full_name(self, obj):
        return obj.get_full_name() or obj.username


class ProfileSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = Profile
        fields = ['user', 'role', 'phone']


class CommentSerializer(serializers.ModelSerializer):
    created_by = UserSerializer(read_only=True)

    class Meta:
        model = Comment
        fields = ['id', 'text', 'is_internal', 'created_by', 'created_at']
        read_only_fields = ['created_by', 'created_at']


class AttachmentSerializer(serializers.ModelSerializer):
    uploaded_by = UserSerializer(read_only=True)

    class Meta:
        model = Attachment
        fields = ['id', 'file', 'file_name', 'file_size', 'mime_type', 'uploaded_by', 'uploaded_at']
        read_only_fields = fields


class ActivitySerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = TicketActivity
        fields = ['id', 'action', 'details', 'visibility', 'user', 'created_at']


class FeedbackSerializer(serializers.ModelSerializer):
    class Meta:
        model = TicketFeedback
        fields = ['id', 'rating', 'feedback', 'created_at']


class TicketListSerializer(serializers.ModelSerializer):
    created_by = UserSerializer(read_only=True)
    assigned_to = UserSerializer(read_only=True)
    category_name = serializers.CharField(source='category.name', default=None, read_only=True)
    subcategory_name = serializers.CharField(source='subcategory.name', default=None, read_only=True)
    scope_name = serializers.CharField(source='scope.name', default=None, read_only=True)

    class Meta:
        model = Ticket
        fields = [
            'id', 'ticket_number', 'title', 'description', 'location', 'priority', 'status',
            'category', 'category_name', 'subcategory', 'subcategory_name', 'scope', 'scope_name',
            'created_by', 'assigned_to', 'escalation_level', 'reopen_count', 'forward_count',
            'tat_extensions', 'acknowledgement_due_at', 'resolution_due_at', 'resolved_at',
            'closed_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TicketSerializer(TicketListSerializer):
    comments = serializers.SerializerMethodField()
    attachments = AttachmentSerializer(many=True, read_only=True)
    feedback = FeedbackSerializer(read_only=True)
    tags = serializers.SlugRelatedField(many=True, read_only=True, slug_field='tag')

    class Meta(TicketListSerializer.Meta):
        fields = TicketListSerializer.Meta.fields + [
            'metadata', 'merged_into', 'archived_at', 'comments', 'attachments', 'feedback', 'tags',
        ]
        read_only_fields = fields

    def get_comments(self, obj):
        qs = obj.comments.select_related('created_by')
        if not self.context.get('staff_view'):
            qs = qs.filter(is_internal=False)
        return CommentSerializer(qs, many=True).data


class TicketCreateSerializer(serializers.Serializer):
    category_id = serializers.IntegerField()
    subcategory_id = serializers.IntegerField(required=False, allow_null=True)
    title = serializers.CharField(required=False, allow_blank=True, max_length=255)
    description = serializers.CharField()
    location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    priority = serializers.ChoiceField(choices=PRIORITY_CHOICES, required=False, default='medium')
    metadata = serializers.JSONField(required=False, default=dict)
    profile = serializers.JSONField(required=False, default=dict)

    def validate_metadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("metadata must be an object")
        return value


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUS_CHOICES)
    comment = serializers.CharField(required=False, allow_blank=True)


class TicketAssignSerializer(serializers.Serializer):
    assigned_to = serializers.IntegerField()
    note = serializers.CharField(required=False, allow_blank=True)


class CommentCreateSerializer(serializers.Serializer):
    text = serializers.CharField()
    is_internal = serializers.BooleanField(required=False, default=False)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class TicketMergeSerializer(serializers.Serializer):
    source_ticket_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    reason = serializers.CharField()


class SetTatSerializer(serializers.Serializer):
    tat = serializers.CharField()
    mark_in_progress = serializers.BooleanField(required=False, default=False)


class ExtendTatSerializer(serializers.Serializer):
    hours = serializers.FloatField(min_value=0.5)
    reason = serializers.CharField(required=False, allow_blank=True)


class FeedbackCreateSerializer(serializers.Serializer):
    rating = serializers.IntegerField()
    feedback = serializers.CharField(required=False, allow_blank=True)


class BulkSerializer(serializers.Serializer):
    ticket_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False, max_length=LIMITS['MAX_PAGE_SIZE'])
    status = serializers.ChoiceField(choices=STATUS_CHOICES, required=False)
    assigned_to = serializers.IntegerField(required=False)
    comment = serializers.CharField(required=False, allow_blank=True)


# Master data

class BatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = Batch
        fields = ['id', 'year', 'name', 'is_active']


class HostelSerializer(serializers.ModelSerializer):
    class Meta:
        model = Hostel
        fields = ['id', 'name', 'code', 'capacity', 'is_active']


class ClassSectionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClassSection
        fields = ['id', 'name', 'department', 'batch', 'is_active']


class DomainSerializer(serializers.ModelSerializer):
    class Meta:
        model = Domain
        fields = ['id', 'name', 'slug', 'description', 'scope_mode', 'is_active']
        extra_kwargs = {'slug': {'required': False}}


class ScopeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Scope
        fields = ['id', 'domain', 'name', 'slug', 'reference_type', 'reference_id', 'student_field_key', 'is_active']
        extra_kwargs = {'slug': {'required': False}}
        validators = []


# Catalogue

class FieldOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = FieldOption
        fields = ['id', 'label', 'value', 'display_order', 'is_active']


class CategoryFieldSerializer(serializers.ModelSerializer):
    options = FieldOptionSerializer(many=True, read_only=True)

    class Meta:
        model = CategoryField
        fields = [
            'id', 'subcategory', 'name', 'slug', 'field_type', 'required', 'placeholder', 'help_text',
            'validation', 'assigned_admin', 'display_order', 'is_active', 'options',
        ]
        extra_kwargs = {'slug': {'required': False}}
        validators = []

    def validate_validation(self, value):
        if value in (None, ''):
            return {}
        if not isinstance(value, dict):
            raise serializers.ValidationError("validation must be an object")
        return value


class SubcategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Subcategory
        fields = ['id', 'category', 'name', 'slug', 'description', 'assigned_admin', 'sla_hours', 'display_order', 'is_active']
        extra_kwargs = {'slug': {'required': False}}
        validators = []


class CategorySerializer(serializers.ModelSerializer):
    subcategories = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = [
            'id', 'name', 'slug', 'description', 'icon', 'color', 'domain', 'scope', 'scope_mode',
            'parent', 'default_admin', 'sla_hours', 'display_order', 'is_active', 'subcategories',
        ]
        extra_kwargs = {'slug': {'required': False}}

    def get_subcategories(self, obj):
        return SubcategorySerializer(obj.subcategories.filter(is_active=True), many=True).data


class CategoryAssignmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = CategoryAssignment
        fields = ['id', 'category', 'user', 'assignment_type', 'created_at']
        read_only_fields = ['created_at']


# People

class StudentSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)
    is_active = serializers.BooleanField(source='user.is_active', read_only=True)
    mobile = serializers.CharField(source='user.profile.phone', read_only=True)
    hostel_name = serializers.CharField(source='hostel.name', default=None, read_only=True)
    class_section_name = serializers.CharField(source='class_section.name', default=None, read_only=True)
    batch_year = serializers.IntegerField(read_only=True)

    class Meta:
        model = Student
        fields = [
            'id', 'user', 'is_active', 'mobile', 'roll_no', 'room_no', 'hostel', 'hostel_name',
            'class_section', 'class_section_name', 'batch', 'batch_year', 'department', 'blood_group',
            'parent_name', 'parent_phone',
        ]
        read_only_fields = fields


class StudentWriteSerializer(serializers.Serializer):
    full_name = serializers.CharField(required=False)
    email = serializers.EmailField(required=False)
    mobile = serializers.CharField(required=False, allow_blank=True)
    roll_no = serializers.CharField(required=False, allow_blank=True)
    room_number = serializers.CharField(required=False, allow_blank=True)
    hostel = serializers.CharField(required=False, allow_blank=True)
    class_section = serializers.CharField(required=False, allow_blank=True)
    batch_year = serializers.CharField(required=False, allow_blank=True)
    department = serializers.CharField(required=False, allow_blank=True)
    blood_group = serializers.CharField(required=False, allow_blank=True)
    parent_name = serializers.CharField(required=False, allow_blank=True)
    parent_phone = serializers.CharField(required=False, allow_blank=True)


class AdminProfileSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)
    role = serializers.CharField(source='user.profile.role', read_only=True)

    class Meta:
        model = AdminProfile
        fields = ['id', 'user', 'role', 'designation', 'department', 'employee_id', 'specialization',
                  'primary_domain', 'primary_scope']


class RoleChangeSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=ROLE_CHOICES)


class CommitteeMemberSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = CommitteeMember
        fields = ['id', 'user', 'role']


class CommitteeSerializer(serializers.ModelSerializer):
    members = CommitteeMemberSerializer(many=True, read_only=True)

    class Meta:
        model = Committee
        fields = ['id', 'name', 'description', 'contact_email', 'head', 'is_active', 'members', 'created_at']
        read_only_fields = ['created_at']
        validators = []
        extra_kwargs = {'name': {'validators': []}}


# Routing configuration

class AdminAssignmentSerializer(serializers.ModelSerializer):
    user_detail = UserSerializer(source='user', read_only=True)

    class Meta:
        model = AdminAssignment
        fields = ['id', 'user', 'user_detail', 'domain', 'scope', 'created_at']
        read_only_fields = ['created_at']


class EscalationRuleSerializer(serializers.ModelSerializer):
    escalate_to_detail = UserSerializer(source='escalate_to', read_only=True)

    class Meta:
        model = EscalationRule
        fields = ['id', 'domain', 'scope', 'level', 'escalate_to', 'escalate_to_detail', 'tat_hours',
                  'notify_channel', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_level(self, value):
        if value < 1:
            raise serializers.ValidationError("Level must be at least 1")
        return value


class NotificationConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationConfig
        fields = ['id', 'scope', 'category', 'subcategory', 'enable_slack', 'enable_email', 'slack_channel',
                  'slack_cc_user_ids', 'email_recipients', 'priority', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate(self, attrs):
        subcategory = attrs.get('subcategory')
        category = attrs.get('category')
        if subcategory is not None and category is not None and subcategory.category_id != category.pk:
            raise serializers.ValidationError("Subcategory does not belong to the category")
        return attrs


class TicketGroupSerializer(serializers.ModelSerializer):
    ticket_ids = serializers.ListField(child=serializers.IntegerField(), write_only=True, required=False)
    ticket_count = serializers.SerializerMethodField()

    class Meta:
        model = TicketGroup
        fields = ['id', 'name', 'description', 'is_archived', 'ticket_ids', 'ticket_count', 'created_at']
        read_only_fields = ['is_archived', 'created_at']

    def get_ticket_count(self, obj):
        return obj.tickets.count()


class SavedFilterSerializer(serializers.ModelSerializer):
    class Meta:
        model = SavedFilter
        fields = ['id', 'name', 'config', 'is_default', 'created_at']
        read_only_fields = ['created_at']
