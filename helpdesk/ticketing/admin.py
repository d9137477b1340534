from django.contrib import admin
from .models import (
    AdminAssignment, AdminProfile, Attachment, Batch, Category, CategoryAssignment, CategoryField,
    ClassSection, Comment, Committee, CommitteeMember, Domain, EscalationRule, FieldOption, Hostel,
    Notification, NotificationConfig, OutboxEvent, Profile, Scope, Student, Subcategory, Ticket,
    TicketActivity, TicketFeedback,
)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'role', 'phone')
    search_fields = ('user__username', 'user__email')
    list_filter = ('role',)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('user', 'roll_no', 'hostel', 'room_no', 'class_section', 'batch')
    list_filter = ('hostel', 'batch', 'class_section')
    search_fields = ('user__username', 'user__email', 'user__first_name', 'roll_no')


@admin.register(AdminProfile)
class AdminProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'designation', 'department', 'primary_domain', 'primary_scope')
    list_filter = ('primary_domain',)
    search_fields = ('user__username', 'employee_id')


@admin.register(Hostel, Batch, ClassSection)
class MasterDataAdmin(admin.ModelAdmin):
    list_display = ('__str__', 'is_active')
    list_filter = ('is_active',)


@admin.register(Domain)
class DomainAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'scope_mode', 'is_active')
    list_filter = ('scope_mode', 'is_active')


@admin.register(Scope)
class ScopeAdmin(admin.ModelAdmin):
    list_display = ('name', 'domain', 'student_field_key', 'reference_id', 'is_active')
    list_filter = ('domain', 'is_active')


class SubcategoryInline(admin.TabularInline):
    model = Subcategory
    extra = 0
    fields = ('name', 'slug', 'assigned_admin', 'sla_hours', 'display_order', 'is_active')


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'domain', 'scope_mode', 'default_admin', 'sla_hours', 'is_active')
    list_filter = ('domain', 'is_active')
    search_fields = ('name', 'slug')
    inlines = [SubcategoryInline]


class FieldOptionInline(admin.TabularInline):
    model = FieldOption
    extra = 0


@admin.register(CategoryField)
class CategoryFieldAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'subcategory', 'field_type', 'required', 'display_order')
    list_filter = ('field_type', 'required')
    search_fields = ('name', 'slug')
    inlines = [FieldOptionInline]


@admin.register(CategoryAssignment)
class CategoryAssignmentAdmin(admin.ModelAdmin):
    list_display = ('category', 'user', 'assignment_type')


@admin.register(AdminAssignment)
class AdminAssignmentAdmin(admin.ModelAdmin):
    list_display = ('user', 'domain', 'scope', 'created_at')
    list_filter = ('domain',)


@admin.register(EscalationRule)
class EscalationRuleAdmin(admin.ModelAdmin):
    list_display = ('level', 'domain', 'scope', 'escalate_to', 'tat_hours', 'notify_channel', 'is_active')
    list_filter = ('domain', 'level', 'is_active')


@admin.register(NotificationConfig)
class NotificationConfigAdmin(admin.ModelAdmin):
    list_display = ('scope', 'category', 'subcategory', 'enable_slack', 'enable_email', 'slack_channel', 'priority')
    list_filter = ('enable_slack', 'enable_email', 'is_active')


class CommitteeMemberInline(admin.TabularInline):
    model = CommitteeMember
    extra = 0


@admin.register(Committee)
class CommitteeAdmin(admin.ModelAdmin):
    list_display = ('name', 'contact_email', 'head', 'is_active')
    inlines = [CommitteeMemberInline]


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ('ticket_number', 'title', 'status', 'priority', 'category', 'created_by', 'assigned_to',
                    'escalation_level', 'created_at')
    list_filter = ('status', 'priority', 'category', 'escalation_level', 'created_at')
    search_fields = ('ticket_number', 'title', 'description', 'created_by__username', 'assigned_to__username')
    date_hierarchy = 'created_at'


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ('ticket', 'created_by', 'is_internal', 'created_at')
    list_filter = ('is_internal', 'created_at')
    search_fields = ('ticket__ticket_number', 'created_by__username', 'text')


@admin.register(Attachment)
class AttachmentAdmin(admin.ModelAdmin):
    list_display = ('ticket', 'file_name', 'uploaded_by', 'uploaded_at')
    list_filter = ('uploaded_at',)
    search_fields = ('ticket__ticket_number', 'uploaded_by__username', 'file_name')


@admin.register(TicketActivity)
class TicketActivityAdmin(admin.ModelAdmin):
    list_display = ('ticket', 'action', 'user', 'visibility', 'created_at')
    list_filter = ('action', 'visibility', 'created_at')
    search_fields = ('ticket__ticket_number', 'user__username', 'action')


@admin.register(TicketFeedback)
class TicketFeedbackAdmin(admin.ModelAdmin):
    list_display = ('ticket', 'user', 'rating', 'created_at')
    list_filter = ('rating',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('ticket', 'channel', 'notification_type', 'recipient', 'sent', 'created_at')
    list_filter = ('channel', 'sent')


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ('event_type', 'aggregate_id', 'status', 'attempts', 'scheduled_at', 'processed_at')
    list_filter = ('status', 'event_type')
    search_fields = ('idempotency_key',)
