"""NotificationService 및 이메일 템플릿 테스트"""
from datetime import datetime, timezone

import pytest

from payfast_itn.services.notification_service import (
    NotificationService,
    format_date,
    render_activation_email,
    render_cancellation_email,
    render_payment_failed_email,
    render_renewal_email,
)

START = datetime(2025, 1, 31, tzinfo=timezone.utc)
END = datetime(2025, 2, 28, tzinfo=timezone.utc)


def _activation(**overrides):
    kwargs = dict(
        plan_name="School Pro",
        plan_tier="school_pro",
        billing="monthly",
        amount="899.00",
        payment_id="SUB_SCHOOL_PRO_1",
        pf_payment_id="123456",
        start_date=START,
        end_date=END,
        mode="sandbox",
    )
    kwargs.update(overrides)
    return render_activation_email(**kwargs)


def test_activation_email_for_school():
    content = _activation(school_name="Little <Stars>")
    assert content.subject == "Subscription Activated - School Pro"
    assert "Little &lt;Stars&gt;" in content.html
    assert "31/01/2025" in content.html
    assert "28/02/2025" in content.html
    assert "R899.00" in content.html


def test_activation_email_for_personal_subscription():
    content = _activation(school_name=None)
    assert content.subject == "Personal Subscription Activated - School Pro"
    assert "School:" not in content.html


def test_other_templates():
    renewal = render_renewal_email(
        plan_name="Parent Plus", amount="199.00", payment_id="P1", pf_payment_id="9", end_date=END, mode="production",
    )
    assert renewal.subject == "Subscription Renewed - Parent Plus"
    assert "28/02/2025" in renewal.html

    cancelled = render_cancellation_email(payment_id="P1", support_email="help@example.org", mode="sandbox")
    assert cancelled.subject == "Subscription Cancelled"
    assert "help@example.org" in cancelled.html

    failed = render_payment_failed_email(payment_id="P1", support_email="help@example.org")
    assert failed.subject == "Payment Failed - Action Required"


def test_format_date_placeholder():
    assert format_date(None) == "-"


@pytest.mark.asyncio
async def test_queue_email_inserts_pending_row(fake_db):
    service = NotificationService(fake_db)

    queued = await service.queue_email(" parent@example.org ", "Hello", "<p>x</p>", {"payment_id": "P1"})

    assert queued is True
    assert fake_db.notifications == [{
        "notification_type": "email",
        "recipient": "parent@example.org",
        "subject": "Hello",
        "body": "<p>x</p>",
        "metadata": {"payment_id": "P1"},
    }]


@pytest.mark.asyncio
async def test_queue_email_skips_blank_recipient(fake_db):
    service = NotificationService(fake_db)
    assert await service.queue_email("", "Hello", "<p>x</p>") is False
    assert await service.queue_email(None, "Hello", "<p>x</p>") is False
    assert fake_db.notifications == []


@pytest.mark.asyncio
async def test_queue_email_failure_is_swallowed(fake_db):
    fake_db.fail_on.add("enqueue_notification")
    service = NotificationService(fake_db)
    assert await service.send("parent@example.org", _activation()) is False
