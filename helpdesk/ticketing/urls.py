from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views
from . import api

# API router setup
router = DefaultRouter()
router.register(r'tickets', api.TicketViewSet, basename='api-ticket')
router.register(r'categories', api.CategoryViewSet, basename='api-category')
router.register(r'subcategories', api.SubcategoryViewSet, basename='api-subcategory')
router.register(r'fields', api.CategoryFieldViewSet, basename='api-field')
router.register(r'domains', api.DomainViewSet, basename='api-domain')
router.register(r'scopes', api.ScopeViewSet, basename='api-scope')
router.register(r'hostels', api.HostelViewSet, basename='api-hostel')
router.register(r'batches', api.BatchViewSet, basename='api-batch')
router.register(r'class-sections', api.ClassSectionViewSet, basename='api-class-section')
router.register(r'students', api.StudentViewSet, basename='api-student')
router.register(r'staff', api.StaffViewSet, basename='api-staff')
router.register(r'committees', api.CommitteeViewSet, basename='api-committee')
router.register(r'admin-assignments', api.AdminAssignmentViewSet, basename='api-admin-assignment')
router.register(r'escalation-rules', api.EscalationRuleViewSet, basename='api-escalation-rule')
router.register(r'notification-configs', api.NotificationConfigViewSet, basename='api-notification-config')
router.register(r'groups', api.TicketGroupViewSet, basename='api-group')
router.register(r'filters', api.SavedFilterViewSet, basename='api-filter')

urlpatterns = [
    # Authentication
    path('', views.home, name='home'),
    path('login/', views.custom_login, name='login'),
    path('register/', views.register, name='register'),
    path('logout/', views.custom_logout, name='logout'),

    # Dashboards
    path('dashboard/student/', views.student_dashboard, name='student_dashboard'),
    path('dashboard/admin/', views.admin_dashboard, name='admin_dashboard'),
    path('dashboard/snr-admin/', views.snr_admin_dashboard, name='snr_admin_dashboard'),
    path('dashboard/superadmin/', views.superadmin_dashboard, name='superadmin_dashboard'),
    path('dashboard/committee/', views.committee_dashboard, name='committee_dashboard'),
    path('dashboard/analytics/', views.analytics, name='analytics'),
    path('profile/', views.student_profile, name='student_profile'),
    path('students/upload/', views.upload_students, name='upload_students'),

    # Ticket web views
    path('tickets/', views.TicketListView.as_view(), name='ticket_list'),
    path('tickets/create/', views.TicketCreateView.as_view(), name='ticket_create'),
    path('tickets/export/', views.export_tickets, name='ticket_export'),
    path('tickets/<int:pk>/', views.TicketDetailView.as_view(), name='ticket_detail'),
    path('tickets/<int:pk>/status/', views.change_status, name='ticket_status'),
    path('tickets/<int:pk>/assign/', views.assign_ticket, name='assign_ticket'),
    path('tickets/<int:pk>/forward/', views.forward_ticket, name='forward_ticket'),
    path('tickets/<int:pk>/question/', views.ask_question, name='ask_question'),
    path('tickets/<int:pk>/escalate/', views.escalate_ticket, name='escalate_ticket'),
    path('tickets/<int:pk>/reopen/', views.reopen_ticket, name='reopen_ticket'),
    path('tickets/<int:pk>/tat/', views.set_tat, name='set_tat'),
    path('tickets/<int:pk>/tat/extend/', views.extend_tat, name='extend_tat'),
    path('tickets/<int:pk>/feedback/', views.submit_feedback, name='submit_feedback'),
    path('tickets/<int:pk>/committee/', views.tag_committee, name='tag_committee'),

    # Comments and attachments
    path('tickets/<int:pk>/comment/', views.add_comment, name='add_comment'),
    path('tickets/<int:pk>/attachment/', views.add_attachment, name='add_attachment'),

    # API endpoints
    path('api/health/', api.health, name='api_health'),
    path('api/analytics/', api.analytics, name='api_analytics'),
    path('api/hierarchy/', api.hierarchy, name='api_hierarchy'),
    path('api/admins/', api.admins, name='api_admins'),
    path('api/cron/escalate/', api.cron_escalate, name='cron_escalate'),
    path('api/cron/outbox/', api.cron_outbox, name='cron_outbox'),
    path('api/cron/tat-reminders/', api.cron_tat_reminders, name='cron_tat_reminders'),
    path('api/cron/remind-spocs/', api.cron_remind_spocs, name='cron_remind_spocs'),
    path('api/', include(router.urls)),
]
