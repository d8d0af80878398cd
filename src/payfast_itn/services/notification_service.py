"""
결제 알림 서비스
notification_queue에 이메일 발송 요청을 적재 (실제 발송은 디스패처가 담당)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any, Dict, Optional

from payfast_itn.core.base_service import BaseService
from payfast_itn.core.interfaces import IDatabaseHelper, INotificationService

logger = logging.getLogger(__name__)


def format_date(value: Optional[datetime]) -> str:
    """en-ZA 표기 (DD/MM/YYYY)"""
    if not value:
        return "-"
    return value.strftime("%d/%m/%Y")


@dataclass(slots=True)
class EmailContent:
    subject: str
    html: str


def _detail_list(rows: Dict[str, Any]) -> str:
    items = "".join(
        f"<li><strong>{escape(label)}:</strong> {escape(str(value))}</li>"
        for label, value in rows.items()
        if value not in (None, "")
    )
    return f"<ul>{items}</ul>"


def _footer(mode: str) -> str:
    return (
        "<p>Thank you for choosing EduDash Pro!</p>"
        f'<p style="color: #666; font-size: 0.9em;">Mode: {escape(mode)}</p>'
    )


def render_activation_email(
    *,
    plan_name: str,
    plan_tier: str,
    billing: str,
    amount: str,
    payment_id: str,
    pf_payment_id: str,
    start_date: datetime,
    end_date: datetime,
    mode: str,
    school_name: Optional[str] = None,
) -> EmailContent:
    personal = school_name is None
    subject = (
        f"Personal Subscription Activated - {plan_name}"
        if personal
        else f"Subscription Activated - {plan_name}"
    )
    scope_label = "personal subscription" if personal else "subscription"
    details = {
        "School": school_name,
        "Plan": f"{plan_name} ({plan_tier})",
        "Billing": billing,
        "Amount": f"R{amount}",
        "Transaction ID": payment_id,
        "PayFast ID": pf_payment_id,
        "Start Date": format_date(start_date),
        "End Date": format_date(end_date),
    }
    html = (
        "<h2>Payment Successful!</h2>"
        f"<p>Your {scope_label} to <strong>{escape(plan_name)}</strong> has been activated.</p>"
        "<h3>Subscription Details:</h3>"
        f"{_detail_list(details)}"
        f"{_footer(mode)}"
    )
    return EmailContent(subject=subject, html=html)


def render_renewal_email(
    *,
    plan_name: str,
    amount: str,
    payment_id: str,
    pf_payment_id: str,
    end_date: datetime,
    mode: str,
) -> EmailContent:
    details = {
        "Plan": plan_name,
        "Amount": f"R{amount}",
        "Transaction ID": payment_id,
        "PayFast ID": pf_payment_id,
        "Next Billing Date": format_date(end_date),
    }
    html = (
        "<h2>Subscription Renewed</h2>"
        f"<p>Your subscription to <strong>{escape(plan_name)}</strong> has been renewed.</p>"
        f"{_detail_list(details)}"
        f"{_footer(mode)}"
    )
    return EmailContent(subject=f"Subscription Renewed - {plan_name}", html=html)


def render_cancellation_email(*, payment_id: str, support_email: str, mode: str) -> EmailContent:
    html = (
        "<h2>Subscription Cancelled</h2>"
        "<p>Your subscription has been cancelled and your account has been moved to the Free plan.</p>"
        "<p>You can subscribe again at any time from your dashboard.</p>"
        f"<p>If this was unexpected, please contact {escape(support_email)}</p>"
        f'<p style="color: #666; font-size: 0.9em;">Transaction ID: {escape(payment_id)} | Mode: {escape(mode)}</p>'
    )
    return EmailContent(subject="Subscription Cancelled", html=html)


def render_payment_failed_email(*, payment_id: str, support_email: str) -> EmailContent:
    html = (
        "<h2>Payment Failed</h2>"
        "<p>We were unable to process your payment.</p>"
        "<h3>What to do next:</h3>"
        "<ul>"
        "<li>Please check your payment details are correct</li>"
        "<li>Ensure sufficient funds are available</li>"
        "<li>Try the payment again or use a different payment method</li>"
        "</ul>"
        f"<p>If you need assistance, please contact {escape(support_email)}</p>"
        f'<p style="color: #666; font-size: 0.9em;">Transaction ID: {escape(payment_id)}</p>'
    )
    return EmailContent(subject="Payment Failed - Action Required", html=html)


class NotificationService(BaseService, INotificationService):
    """이메일 알림 큐 적재 서비스 - 실패해도 예외를 전파하지 않음"""

    def __init__(self, db_helper: IDatabaseHelper):
        super().__init__(db_helper)

    async def queue_email(
        self,
        recipient: Optional[str],
        subject: str,
        html: str,
        metadata: Dict[str, Any] = None,
    ) -> bool:
        if not recipient or not recipient.strip():
            self.logger.info("[PAYFAST] email skipped: no recipient for '%s'", subject)
            return False

        row = {
            "notification_type": "email",
            "recipient": recipient.strip(),
            "subject": subject,
            "body": html,
            "metadata": metadata or {},
        }
        try:
            queued = await self.db_helper.enqueue_notification(row)
        except Exception as e:
            self.logger.error("[PAYFAST] email enqueue failed: recipient=%s error=%s", recipient, e)
            return False

        if queued:
            self.logger.info("[PAYFAST] email queued: %s -> %s", subject, recipient)
        return bool(queued)

    async def send(self, recipient: Optional[str], content: EmailContent, metadata: Dict[str, Any] = None) -> bool:
        return await self.queue_email(recipient, content.subject, content.html, metadata)
