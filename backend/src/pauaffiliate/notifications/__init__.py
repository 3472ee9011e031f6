"""In-app notifications."""

from pauaffiliate.notifications.models import Notification, NotificationType

__all__ = ["Notification", "NotificationType"]
