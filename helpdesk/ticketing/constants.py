ROLE_SUPER_ADMIN = 'super_admin'
ROLE_SNR_ADMIN = 'snr_admin'
ROLE_ADMIN = 'admin'
ROLE_COMMITTEE = 'committee'
ROLE_STUDENT = 'student'

ROLE_CHOICES = [
    (ROLE_SUPER_ADMIN, 'Super Admin'),
    (ROLE_SNR_ADMIN, 'Senior Admin'),
    (ROLE_ADMIN, 'Admin'),
    (ROLE_COMMITTEE, 'Committee'),
    (ROLE_STUDENT, 'Student'),
]

STAFF_ROLES = (ROLE_SUPER_ADMIN, ROLE_SNR_ADMIN, ROLE_ADMIN)

OPEN = 'open'
ACKNOWLEDGED = 'acknowledged'
IN_PROGRESS = 'in_progress'
AWAITING_STUDENT = 'awaiting_student_response'
RESOLVED = 'resolved'
CLOSED = 'closed'
REOPENED = 'reopened'
CANCELLED = 'cancelled'
MERGED = 'merged'
ARCHIVED = 'archived'

STATUS_CHOICES = [
    (OPEN, 'Open'),
    (ACKNOWLEDGED, 'Acknowledged'),
    (IN_PROGRESS, 'In Progress'),
    (AWAITING_STUDENT, 'Awaiting Student Response'),
    (RESOLVED, 'Resolved'),
    (CLOSED, 'Closed'),
    (REOPENED, 'Reopened'),
    (CANCELLED, 'Cancelled'),
    (MERGED, 'Merged'),
    (ARCHIVED, 'Archived'),
]

STATUS_TRANSITIONS = {
    OPEN: [ACKNOWLEDGED, IN_PROGRESS, AWAITING_STUDENT, RESOLVED, CANCELLED],
    ACKNOWLEDGED: [IN_PROGRESS, AWAITING_STUDENT, RESOLVED, CANCELLED],
    IN_PROGRESS: [ACKNOWLEDGED, AWAITING_STUDENT, RESOLVED, CANCELLED],
    AWAITING_STUDENT: [IN_PROGRESS, RESOLVED, CANCELLED],
    RESOLVED: [CLOSED, REOPENED],
    CLOSED: [REOPENED],
    REOPENED: [ACKNOWLEDGED, IN_PROGRESS, AWAITING_STUDENT, RESOLVED, CLOSED, CANCELLED],
    CANCELLED: [],
    MERGED: [],
    ARCHIVED: [],
}

# Statuses a ticket can no longer be worked in
FINAL_STATUSES = (RESOLVED, CLOSED, CANCELLED, MERGED, ARCHIVED)
ACTIVE_STATUSES = (OPEN, ACKNOWLEDGED, IN_PROGRESS, AWAITING_STUDENT, REOPENED)

PRIORITY_CHOICES = [
    ('low', 'Low'),
    ('medium', 'Medium'),
    ('high', 'High'),
    ('urgent', 'Urgent'),
]

SCOPE_MODE_CHOICES = [
    ('fixed', 'Fixed'),
    ('dynamic', 'Dynamic'),
    ('none', 'None'),
]

STUDENT_FIELD_KEYS = [
    ('hostel_id', 'Hostel'),
    ('class_section_id', 'Class Section'),
    ('batch_id', 'Batch'),
]

FIELD_TYPES = [
    ('text', 'Text'),
    ('textarea', 'Text Area'),
    ('number', 'Number'),
    ('date', 'Date'),
    ('select', 'Select'),
    ('multi_select', 'Multi Select'),
    ('boolean', 'Yes / No'),
    ('upload', 'Upload'),
]
MULTI_SELECT_TYPES = ('multi_select', 'multiselect', 'select_multiple')

VISIBILITY_CHOICES = [
    ('student_visible', 'Visible to student'),
    ('admin_only', 'Admin only'),
]

OUTBOX_STATUS_CHOICES = [
    ('pending', 'Pending'),
    ('processing', 'Processing'),
    ('completed', 'Completed'),
    ('failed', 'Failed'),
    ('dead_letter', 'Dead letter'),
]

EVENT_TICKET_CREATED = 'ticket.created'
EVENT_TICKET_ASSIGNED = 'ticket.assigned'
EVENT_STATUS_CHANGED = 'ticket.status_changed'
EVENT_COMMENT_ADDED = 'ticket.comment_added'
EVENT_TICKET_ESCALATED = 'ticket.escalated'

LIMITS = {
    'MAX_ATTACHMENTS': 5,
    'MAX_FILE_SIZE': 10 * 1024 * 1024,
    'DEFAULT_PAGE_SIZE': 20,
    'MAX_PAGE_SIZE': 100,
    'DEFAULT_TAT_HOURS': 48,
    'MAX_ESCALATION_LEVELS': 3,
    'WEEKLY_TICKET_LIMIT': 3,
    'MAX_FORWARDS': 3,
    'ESCALATION_TAT_EXTENSION_HOURS': 48,
}

ALLOWED_ATTACHMENT_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.pdf')

# Reopen count at which a ticket escalates automatically
AUTO_ESCALATE_REOPEN_COUNT = 3
# TAT extension counts that escalate automatically
AUTO_ESCALATE_TAT_EXTENSIONS = (3, 5, 7)
LOW_RATING_THRESHOLD = 2

STUDENT_CSV_HEADERS = [
    'full_name', 'email', 'mobile', 'roll_no', 'room_number', 'hostel',
    'class_section', 'batch_year', 'department', 'blood_group',
    'parent_name', 'parent_phone',
]
