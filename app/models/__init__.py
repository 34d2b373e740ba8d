from app.models.enrollment import Enrollment, EnrollmentStatus, TERMINAL_STATUSES
from app.models.webhook_event import WebhookEvent, WebhookProcessingStatus
from app.models.activity_log import ActivityLog, SYSTEM_ACTOR
from app.models.student_location import StudentLocation

__all__ = [
    "Enrollment", "EnrollmentStatus", "TERMINAL_STATUSES",
    "WebhookEvent", "WebhookProcessingStatus",
    "ActivityLog", "SYSTEM_ACTOR",
    "StudentLocation",
]
