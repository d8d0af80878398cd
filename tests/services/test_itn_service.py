"""ITNService.process 파이프라인 테스트"""
import json
from urllib.parse import urlencode

import pytest

from payfast_itn.core.responses import ITNRejected, PersistenceError
from payfast_itn.services.itn_service import ITNService, resolve_client_ip
from payfast_itn.services.notification_service import NotificationService
from payfast_itn.services.signature import compute_signature
from payfast_itn.services.subscription_service import SubscriptionService

MERCHANT_ID = "10000100"
PASSPHRASE = "jt7NOE43FZPn"
PAYFAST_IP = "197.97.145.150"


class FakeValidator:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.bodies = []

    async def validate(self, raw_body):
        self.bodies.append(raw_body)
        if self.error:
            raise self.error
        return self.result


def _body(passphrase=PASSPHRASE, signature=None, **overrides) -> str:
    fields = {
        "m_payment_id": "SUB_SCHOOL_PRO_1",
        "pf_payment_id": "1089250",
        "payment_status": "COMPLETE",
        "item_name": "EduDash Pro School Pro Subscription",
        "amount_gross": "899.00",
        "email_address": "payer@example.org",
        "merchant_id": MERCHANT_ID,
        "custom_str1": "school_pro",
        "custom_str2": "school",
        "custom_str3": "school-1",
        "custom_str4": json.dumps({"billing": "monthly", "seats": 5}),
    }
    fields.update(overrides)
    pairs = [(k, v) for k, v in fields.items() if v is not None]
    if signature is None:
        signature = compute_signature(pairs, passphrase)
    return urlencode(pairs + [("signature", signature)])


def _seed(db, status="pending"):
    db.transactions["SUB_SCHOOL_PRO_1"] = {
        "id": "SUB_SCHOOL_PRO_1", "status": status, "school_id": "school-1", "amount": 899.0, "user_id": "user-1",
    }
    db.plans["school_pro"] = {"id": "plan-pro", "tier": "school_pro", "name": "School Pro", "max_teachers": 10}
    db.schools["school-1"] = {"id": "school-1", "name": "Little Stars", "contact_email": "office@stars.org"}


def _service(db, mode="production", validator=None, passphrase=PASSPHRASE, subscription_service=None):
    subscription_service = subscription_service or SubscriptionService(db, NotificationService(db))
    return ITNService(
        db,
        validator or FakeValidator(),
        subscription_service,
        mode=mode,
        merchant_id=MERCHANT_ID,
        passphrase=passphrase,
        trusted_ips={PAYFAST_IP},
    )


@pytest.mark.asyncio
async def test_complete_itn_activates_subscription(fake_db):
    _seed(fake_db)
    validator = FakeValidator()
    body = _body()

    result = await _service(fake_db, validator=validator).process(body, PAYFAST_IP)

    assert (result.status_code, result.body) == (200, "OK")
    assert result.outcome == "activated"
    tx = fake_db.transactions["SUB_SCHOOL_PRO_1"]
    assert tx["status"] == "completed"
    assert tx["payfast_payment_id"] == "1089250"
    assert tx["completed_at"] is not None
    assert fake_db.subscriptions[0]["status"] == "active"
    assert fake_db.tier_value("school", "school-1") == "school_pro"
    assert validator.bodies == [body]

    log = fake_db.itn_logs[0]
    assert log["is_valid"] is True
    assert log["raw_post_data"] == body
    assert log["amount"] == 899.0
    assert log["ip_address"] == PAYFAST_IP
    assert any(e["event_type"] == "user_payfast_payment" for e in fake_db.events)


@pytest.mark.asyncio
async def test_duplicate_delivery_has_no_side_effects(fake_db):
    _seed(fake_db)
    service = _service(fake_db)
    body = _body()

    await service.process(body, PAYFAST_IP)
    writes, notifications = len(fake_db.tier_writes), len(fake_db.notifications)

    again = await service.process(body, PAYFAST_IP)

    assert again.duplicate
    assert (again.status_code, again.body) == (200, "OK")
    assert len(fake_db.subscriptions) == 1
    assert len(fake_db.tier_writes) == writes
    assert len(fake_db.notifications) == notifications
    assert len(fake_db.claims) == 1
    assert len(fake_db.itn_logs) == 2


@pytest.mark.asyncio
async def test_lost_claim_is_treated_as_duplicate(fake_db):
    _seed(fake_db)
    fake_db.lose_claim = True

    result = await _service(fake_db).process(_body(), PAYFAST_IP)

    assert result.duplicate
    assert fake_db.subscriptions == []


@pytest.mark.asyncio
async def test_unknown_ip_rejected_in_production(fake_db):
    _seed(fake_db)
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(), "8.8.8.8")
    assert (exc.value.status_code, exc.value.message) == (403, "Unauthorized IP")
    assert fake_db.itn_logs == []


@pytest.mark.asyncio
async def test_unknown_ip_allowed_in_sandbox(fake_db):
    _seed(fake_db)
    result = await _service(fake_db, mode="sandbox").process(_body(), "8.8.8.8")
    assert result.outcome == "activated"


@pytest.mark.asyncio
async def test_missing_payment_id(fake_db):
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(m_payment_id=None), PAYFAST_IP)
    assert (exc.value.status_code, exc.value.message) == (400, "Missing m_payment_id")


@pytest.mark.asyncio
async def test_merchant_mismatch(fake_db):
    _seed(fake_db)
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(merchant_id="999"), PAYFAST_IP)
    assert exc.value.message == "Invalid merchant_id"
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "pending"


@pytest.mark.asyncio
async def test_bad_signature_rejected_in_production_after_audit(fake_db):
    _seed(fake_db)
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(signature="0" * 32), PAYFAST_IP)

    assert (exc.value.status_code, exc.value.message) == (400, "Signature invalid")
    assert fake_db.itn_logs[0]["is_valid"] is False
    assert "Signature: invalid" in fake_db.itn_logs[0]["processing_notes"]
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "pending"
    assert fake_db.subscriptions == []


@pytest.mark.asyncio
async def test_bad_signature_tolerated_in_sandbox(fake_db):
    _seed(fake_db)
    result = await _service(fake_db, mode="sandbox").process(_body(signature="0" * 32), PAYFAST_IP)
    assert result.outcome == "activated"
    assert fake_db.itn_logs[0]["is_valid"] is False


@pytest.mark.asyncio
async def test_signature_skipped_without_passphrase(fake_db):
    _seed(fake_db)
    result = await _service(fake_db, passphrase="").process(_body(signature="whatever"), PAYFAST_IP)

    assert result.outcome == "activated"
    assert "Signature: skipped" in fake_db.itn_logs[0]["processing_notes"]
    assert fake_db.itn_logs[0]["is_valid"] is False


@pytest.mark.asyncio
async def test_failed_revalidation_rejected_in_production(fake_db):
    _seed(fake_db)
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db, validator=FakeValidator(result=False)).process(_body(), PAYFAST_IP)
    assert exc.value.message == "PayFast validation failed"


@pytest.mark.asyncio
async def test_revalidation_error_counts_as_failure(fake_db):
    _seed(fake_db)
    validator = FakeValidator(error=RuntimeError("timeout"))
    result = await _service(fake_db, mode="sandbox", validator=validator).process(_body(), PAYFAST_IP)
    assert result.outcome == "activated"
    assert "PayFast: Invalid" in fake_db.itn_logs[0]["processing_notes"]


@pytest.mark.asyncio
async def test_audit_log_failure_does_not_block(fake_db):
    _seed(fake_db)
    fake_db.fail_on.add("insert_itn_log")
    result = await _service(fake_db).process(_body(), PAYFAST_IP)
    assert result.outcome == "activated"


@pytest.mark.asyncio
async def test_transaction_not_found(fake_db):
    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(), PAYFAST_IP)
    assert (exc.value.status_code, exc.value.message) == (404, "Transaction not found")


@pytest.mark.asyncio
async def test_plan_not_found_leaves_state_untouched(fake_db):
    _seed(fake_db)
    fake_db.plans.clear()

    with pytest.raises(ITNRejected) as exc:
        await _service(fake_db).process(_body(), PAYFAST_IP)

    assert (exc.value.status_code, exc.value.message) == (400, "Plan not found")
    assert fake_db.claims == []
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "pending"


@pytest.mark.asyncio
async def test_lookup_failure_is_persistence_error(fake_db):
    _seed(fake_db)
    fake_db.fail_on.add("get_transaction")
    with pytest.raises(PersistenceError):
        await _service(fake_db).process(_body(), PAYFAST_IP)


@pytest.mark.asyncio
async def test_reconcile_failure_releases_claim_for_retry(fake_db):
    _seed(fake_db)
    fake_db.fail_on.add("insert_subscription")
    service = _service(fake_db)

    with pytest.raises(PersistenceError):
        await service.process(_body(), PAYFAST_IP)

    assert fake_db.releases == [("SUB_SCHOOL_PRO_1", "completed", "pending")]
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "pending"
    assert fake_db.tier_writes == []

    # 재전송 시 정상 처리
    fake_db.fail_on.clear()
    result = await service.process(_body(), PAYFAST_IP)
    assert result.outcome == "activated"


@pytest.mark.asyncio
async def test_unexpected_reconcile_error_is_wrapped(fake_db):
    _seed(fake_db)

    class Exploding:
        async def reconcile(self, ctx):
            raise KeyError("plan")

    with pytest.raises(PersistenceError):
        await _service(fake_db, subscription_service=Exploding()).process(_body(), PAYFAST_IP)
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "pending"


@pytest.mark.asyncio
async def test_cancel_after_complete_is_processed(fake_db):
    _seed(fake_db, status="completed")
    fake_db.subscriptions.append({"id": "sub-1", "school_id": "school-1", "owner_type": "school", "status": "active"})

    result = await _service(fake_db).process(_body(payment_status="CANCELLED"), PAYFAST_IP)

    assert result.outcome == "cancelled"
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["status"] == "cancelled"
    assert fake_db.transactions["SUB_SCHOOL_PRO_1"]["completed_at"] is None
    assert fake_db.subscriptions[0]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_unknown_status_keeps_transaction_pending(fake_db):
    _seed(fake_db)
    result = await _service(fake_db).process(_body(payment_status="PENDING"), PAYFAST_IP)
    assert result.outcome == "pending"
    assert fake_db.subscriptions == []


@pytest.mark.asyncio
async def test_pending_after_complete_does_not_reopen_transaction(fake_db):
    _seed(fake_db)
    service = _service(fake_db)

    await service.process(_body(), PAYFAST_IP)
    completed_at = fake_db.transactions["SUB_SCHOOL_PRO_1"]["completed_at"]
    writes, notifications = len(fake_db.tier_writes), len(fake_db.notifications)

    late = await service.process(_body(payment_status="PENDING"), PAYFAST_IP)

    assert late.duplicate
    assert (late.status_code, late.body) == (200, "OK")
    tx = fake_db.transactions["SUB_SCHOOL_PRO_1"]
    assert tx["status"] == "completed"
    assert tx["completed_at"] == completed_at
    assert len(fake_db.claims) == 1

    replay = await service.process(_body(), PAYFAST_IP)

    assert replay.duplicate
    assert len(fake_db.subscriptions) == 1
    assert len(fake_db.tier_writes) == writes
    assert len(fake_db.notifications) == notifications


def test_resolve_client_ip_precedence():
    assert resolve_client_ip({"x-forwarded-for": " 197.97.145.150 , 10.0.0.1", "x-real-ip": "1.1.1.1"}) == "197.97.145.150"
    assert resolve_client_ip({"cf-connecting-ip": "2.2.2.2", "x-real-ip": "1.1.1.1"}) == "2.2.2.2"
    assert resolve_client_ip({"x-real-ip": "1.1.1.1"}) == "1.1.1.1"
    assert resolve_client_ip({}) == ""
