from clipdash.domain.models.notification_preference import NotificationPreference
from clipdash.domain.models.platform_account import PlatformAccount
from clipdash.domain.models.publish_event import PublishEvent
from clipdash.domain.models.scheduled_post import ScheduledPost
from clipdash.domain.models.upload import Upload
from clipdash.domain.models.user import User

__all__ = [
    "User",
    "NotificationPreference",
    "PlatformAccount",
    "Upload",
    "ScheduledPost",
    "PublishEvent",
]
