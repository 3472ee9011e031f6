"""Email service for PAUAffiliate using SendGrid."""

from decimal import Decimal
from html import escape
from typing import Optional

import httpx

from pauaffiliate.logging_config import get_logger
from pauaffiliate.settings import settings

logger = get_logger(__name__)

BRAND = "PAUAffiliate"


def format_naira(amount) -> str:
    return f"₦{Decimal(str(amount)):,.2f}"


class EmailService:
    """Email service using SendGrid API.

    Handles transactional emails:
    - Withdrawal request confirmation
    - Withdrawal status updates
    - Sale notifications for affiliates
    - General notifications
    """

    SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize email service."""
        self.api_key = api_key or settings.sendgrid_api_key
        self.from_email = settings.sendgrid_from_email
        self.from_name = settings.sendgrid_from_name
        self.enabled = bool(self.api_key)
        self.transport = transport

        if not self.enabled:
            logger.warning("email_service_disabled", reason="SENDGRID_API_KEY not set")

    async def _send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """Send an email via SendGrid API.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML body
            text_content: Plain text body (optional)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.warning("email_not_sent", reason="service_disabled", to=to_email)
            return False

        payload = {
            "personalizations": [
                {
                    "to": [{"email": to_email}],
                    "subject": subject,
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "content": [
                {"type": "text/html", "value": html_content},
            ],
        }

        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.SENDGRID_API_URL,
                    json=payload,
                    headers=headers,
                    timeout=30.0,
                )

                if response.status_code in (200, 201, 202):
                    logger.info("email_sent", to=to_email, subject=subject)
                    return True
                else:
                    logger.error(
                        "email_send_failed",
                        to=to_email,
                        status=response.status_code,
                        body=response.text[:200],
                    )
                    return False

        except httpx.RequestError as e:
            logger.error("email_send_error", to=to_email, error=str(e))
            return False

    def _layout(self, heading: str, body: str) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 560px; margin: 0 auto; padding: 20px 0 48px; }}
                .details {{ background-color: #f4f4f4; border-radius: 6px; padding: 16px; margin: 20px 0; }}
                .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #eee; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <h1>{heading}</h1>
                {body}
                <div class="footer">
                    <p>{BRAND} Team</p>
                </div>
            </div>
        </body>
        </html>
        """

    @staticmethod
    def _bank_details(bank_name: str, account_number: str, account_name: str) -> str:
        return f"""
                <div class="details">
                    <p><strong>Bank:</strong> {escape(bank_name)}</p>
                    <p><strong>Account Number:</strong> {escape(account_number)}</p>
                    <p><strong>Account Name:</strong> {escape(account_name)}</p>
                </div>
        """

    async def send_withdrawal_request_email(
        self,
        to_email: str,
        user_name: Optional[str],
        amount: Decimal,
        bank_name: str,
        account_number: str,
        account_name: str,
    ) -> bool:
        """Confirm to the requester that a withdrawal request was received."""
        name = escape(user_name or "User")
        subject = f"Withdrawal Request Submitted - {BRAND}"
        html_content = self._layout(
            "Withdrawal Request Submitted",
            f"""
                <p>Hello {name},</p>
                <p>We received your request to withdraw <strong>{format_naira(amount)}</strong>.</p>
                {self._bank_details(bank_name, account_number, account_name)}
                <p>Our team will review it shortly. You will get another email once it has been processed.</p>
            """,
        )
        text_content = f"""
Hello {user_name or "User"},

We received your request to withdraw {format_naira(amount)} to {bank_name} ({account_number}, {account_name}).
Our team will review it shortly.

{BRAND} Team
"""
        return await self._send_email(to_email, subject, html_content, text_content)

    async def send_withdrawal_status_email(
        self,
        to_email: str,
        user_name: Optional[str],
        amount: Decimal,
        status: str,
        bank_name: str,
        account_number: str,
        account_name: str,
        notes: Optional[str] = None,
    ) -> bool:
        """Tell the requester their withdrawal was approved, rejected or completed."""
        name = escape(user_name or "User")
        label = status.capitalize()
        subject = f"Withdrawal {label} - {BRAND}"
        notes_html = f"<p><strong>Notes:</strong> {escape(notes)}</p>" if notes else ""
        html_content = self._layout(
            f"Withdrawal {label}",
            f"""
                <p>Hello {name},</p>
                <p>Your withdrawal of <strong>{format_naira(amount)}</strong> is now <strong>{escape(status)}</strong>.</p>
                {self._bank_details(bank_name, account_number, account_name)}
                {notes_html}
            """,
        )
        text_content = f"""
Hello {user_name or "User"},

Your withdrawal of {format_naira(amount)} is now {status}.
{f"Notes: {notes}" if notes else ""}

{BRAND} Team
"""
        return await self._send_email(to_email, subject, html_content, text_content)

    async def send_sale_notification_email(
        self,
        to_email: str,
        user_name: Optional[str],
        product_name: str,
        commission_amount: Decimal,
        customer_email: Optional[str] = None,
    ) -> bool:
        """Tell an affiliate they earned a commission."""
        name = escape(user_name or "User")
        subject = f"🎉 New Sale! You earned {format_naira(commission_amount)} - {BRAND}"
        html_content = self._layout(
            "🎉 New Sale!",
            f"""
                <p>Hello {name},</p>
                <p>Great news! You just earned a commission from a new sale.</p>
                <div class="details">
                    <p><strong>Product:</strong> {escape(product_name)}</p>
                    <p><strong>Commission Earned:</strong> {format_naira(commission_amount)}</p>
                    <p><strong>Customer:</strong> {escape(customer_email or "")}</p>
                </div>
                <p>Your commission has been added to your wallet.</p>
                <p>Keep up the great work!</p>
            """,
        )
        return await self._send_email(to_email, subject, html_content)

    async def send_general_email(
        self,
        to_email: str,
        user_name: Optional[str],
        title: str,
        message: str,
    ) -> bool:
        """Send a free-form notification."""
        subject = f"{title} - {BRAND}"
        html_content = self._layout(
            escape(title),
            f"""
                <p>Hello {escape(user_name or "User")},</p>
                <p>{escape(message)}</p>
            """,
        )
        return await self._send_email(to_email, subject, html_content, f"{title}\n\n{message}\n")


# Singleton instance
email_service = EmailService()
