"""In-app notifications and the emails that accompany them.

Notifications are best effort: every failure is logged and swallowed so a
mail outage never undoes a settlement or a withdrawal.
"""

from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from pauaffiliate.auth.models import UserAccount
from pauaffiliate.auth.profiles import ProfileStore, profile_store
from pauaffiliate.email.service import EmailService, email_service, format_naira
from pauaffiliate.logging_config import get_logger
from pauaffiliate.notifications.models import Notification, NotificationRecord, NotificationType
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import Database, db
from pauaffiliate.withdrawals.models import WithdrawalRecord

logger = get_logger(__name__)


class NotificationService:
    """Service for user notifications."""

    def __init__(
        self,
        database: Database | None = None,
        emails: EmailService | None = None,
        profiles: ProfileStore | None = None,
    ):
        """Initialize notification service."""
        self.db = database or db
        self.emails = emails or email_service
        self.profiles = profiles or profile_store
        self.logger = get_logger(__name__)

    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
    ) -> NotificationRecord | None:
        """Store an in-app notification.

        Returns:
            The notification, or None if it could not be stored
        """
        try:
            with self.db.session() as session:
                notification = Notification(user_id=user_id, title=title, message=message, type=type.value)
                session.add(notification)
                session.flush()
                record = NotificationRecord.model_validate(notification)
        except SQLAlchemyError as e:
            self.logger.error("notification_create_failed", user_id=user_id, title=title, error=str(e))
            return None

        self.logger.info("notification_created", user_id=user_id, title=title, type=type.value)
        return record

    def get_notifications(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[NotificationRecord]:
        """Get a user's notifications, newest first."""
        with self.db.session() as session:
            query = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.read.is_(False))
            rows = query.order_by(Notification.created_at.desc()).limit(limit).all()
            return [NotificationRecord.model_validate(row) for row in rows]

    # ==================== SALES ====================

    async def notify_sale(
        self,
        affiliate_id: str,
        business_id: str,
        product_name: str,
        commission_amount: Decimal,
        business_revenue: Decimal,
        customer_email: str | None = None,
    ) -> None:
        """Tell the affiliate about their commission and the business about the sale."""
        try:
            self.create_notification(
                affiliate_id,
                "New Sale! 🎉",
                f"You earned {format_naira(commission_amount)} commission from a sale of {product_name}.",
                NotificationType.SUCCESS,
            )
            self.create_notification(
                business_id,
                "New Sale",
                f"{product_name} was sold through a referral. {format_naira(business_revenue)} "
                "was added to your wallet.",
                NotificationType.SUCCESS,
            )

            affiliate = self.profiles.get_user(affiliate_id)
            if affiliate:
                await self.emails.send_sale_notification_email(
                    affiliate.email,
                    affiliate.display_name,
                    product_name,
                    commission_amount,
                    customer_email,
                )
        except Exception as e:
            self.logger.error("sale_notification_failed", affiliate_id=affiliate_id, error=str(e))

    # ==================== WITHDRAWALS ====================

    async def notify_withdrawal_request(self, user: UserAccount, withdrawal: WithdrawalRecord) -> None:
        """Notify the requester, the monitor address and every admin of a new request."""
        try:
            self.create_notification(
                user.id,
                "Withdrawal Request Submitted",
                f"Your request to withdraw {format_naira(withdrawal.amount)} is awaiting review.",
                NotificationType.INFO,
            )

            recipients = [user.email]
            if settings.withdrawal_monitor_email and settings.withdrawal_monitor_email != user.email:
                recipients.append(settings.withdrawal_monitor_email)
            for recipient in recipients:
                await self.emails.send_withdrawal_request_email(
                    recipient,
                    user.display_name,
                    withdrawal.amount,
                    withdrawal.bank_name,
                    withdrawal.account_number,
                    withdrawal.account_name,
                )

            message = (
                f"A new withdrawal request has been submitted by {user.email} for "
                f"{format_naira(withdrawal.amount)}.\n\n"
                f"Bank Details:\n"
                f"• Bank: {withdrawal.bank_name}\n"
                f"• Account: {withdrawal.account_number}\n"
                f"• Name: {withdrawal.account_name}\n\n"
                "Please review and process this request in the admin panel."
            )
            admins = self.profiles.get_admins()
            for admin in admins:
                self.create_notification(
                    admin.id, "New Withdrawal Request - Action Required", message, NotificationType.WARNING
                )
                await self.emails.send_general_email(
                    admin.email, admin.name or "Admin", "New Withdrawal Request - Action Required", message
                )
            self.logger.info("withdrawal_request_admins_notified", withdrawal_id=withdrawal.id, admins=len(admins))
        except Exception as e:
            self.logger.error("withdrawal_request_notification_failed", withdrawal_id=withdrawal.id, error=str(e))

    async def notify_withdrawal_status(self, withdrawal: WithdrawalRecord) -> None:
        """Tell the requester their withdrawal changed state."""
        try:
            status = withdrawal.status.value
            type = NotificationType.ERROR if status == "rejected" else NotificationType.SUCCESS
            message = f"Your withdrawal of {format_naira(withdrawal.amount)} was {status}."
            if withdrawal.review_notes:
                message += f" Notes: {withdrawal.review_notes}"
            self.create_notification(withdrawal.user_id, f"Withdrawal {status.capitalize()}", message, type)

            user = self.profiles.get_user(withdrawal.user_id)
            if user:
                await self.emails.send_withdrawal_status_email(
                    user.email,
                    user.display_name,
                    withdrawal.amount,
                    status,
                    withdrawal.bank_name,
                    withdrawal.account_number,
                    withdrawal.account_name,
                    withdrawal.review_notes,
                )
        except Exception as e:
            self.logger.error("withdrawal_status_notification_failed", withdrawal_id=withdrawal.id, error=str(e))


# Singleton instance
notification_service = NotificationService()
