"""
PayFast ITN 처리 서비스

처리 순서:
- 발신 IP 확인 (production)
- 본문 파싱 / m_payment_id, merchant_id 확인
- 서명 검증 + PayFast 서버 재검증
- 감사 로그 기록
- 멱등성 확인 후 거래 상태 선점 (조건부 업데이트)
- 구독 조정 및 부가 작업 실행
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from payfast_itn.core.base_service import BaseService
from payfast_itn.core.billing import TransactionStatus, map_payment_status, normalize_amount
from payfast_itn.core.interfaces import IDatabaseHelper, IPaymentValidator
from payfast_itn.core.responses import ITNRejected, PersistenceError
from payfast_itn.core.tiers import TierCatalog
from payfast_itn.schemas import ITNPayload
from payfast_itn.services.signature import SignatureCheck, check_signature, parse_itn_body
from payfast_itn.services.subscription_service import ReconcileContext, SubscriptionService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ITNResult:
    """웹훅 응답과 처리 요약"""
    outcome: str
    status_code: int = 200
    body: str = "OK"
    payment_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def duplicate(self) -> bool:
        return self.outcome == "duplicate"


def resolve_client_ip(headers) -> str:
    """프록시 헤더 우선순위: X-Forwarded-For(첫 항목) > CF-Connecting-IP > X-Real-IP"""
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return (headers.get("cf-connecting-ip") or headers.get("x-real-ip") or "").strip()


class ITNService(BaseService):
    """PayFast ITN 처리 서비스"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        validator: IPaymentValidator,
        subscription_service: SubscriptionService,
        *,
        mode: str,
        merchant_id: str,
        passphrase: str,
        trusted_ips: Iterable[str] = (),
    ):
        super().__init__(db_helper)
        self.validator = validator
        self.subscription_service = subscription_service
        self.mode = mode
        self.merchant_id = merchant_id
        self.passphrase = passphrase
        self.trusted_ips = frozenset(trusted_ips)

    @property
    def is_sandbox(self) -> bool:
        return self.mode == "sandbox"

    async def process(self, raw_body: str, client_ip: str = "") -> ITNResult:
        """ITN 1건 처리. 거부 사유는 ITNRejected, 필수 저장 실패는 PersistenceError로 전달"""

        if not self.is_sandbox and client_ip and client_ip not in self.trusted_ips:
            logger.error("[PAYFAST] ITN from unauthorized IP: %s", client_ip)
            raise ITNRejected("Unauthorized IP", 403)

        pairs = parse_itn_body(raw_body)
        payload = ITNPayload.from_pairs(pairs)
        logger.info(
            "[PAYFAST] ITN received: payment=%s pf_payment=%s status=%s amount=%s has_signature=%s ip=%s",
            payload.m_payment_id or None,
            payload.pf_payment_id or None,
            payload.payment_status or None,
            payload.amount_gross or None,
            bool(payload.signature),
            client_ip or None,
        )

        if not payload.m_payment_id:
            raise ITNRejected("Missing m_payment_id", 400)

        if payload.merchant_id != self.merchant_id:
            logger.error(
                "[PAYFAST] merchant_id mismatch: expected=%s got=%s",
                self.merchant_id,
                payload.merchant_id,
            )
            raise ITNRejected("Invalid merchant_id", 400)

        signature_check = check_signature(pairs, payload.signature, self.passphrase)
        validated = await self._revalidate(raw_body)

        await self._record_itn_log(payload, raw_body, client_ip, signature_check, validated)

        if signature_check is SignatureCheck.INVALID:
            if not self.is_sandbox:
                raise ITNRejected("Signature invalid", 400)
            logger.warning("[PAYFAST] sandbox: signature invalid, continuing")
        elif signature_check is SignatureCheck.SKIPPED:
            logger.warning("[PAYFAST] passphrase not configured; signature verification skipped")

        if not validated:
            if not self.is_sandbox:
                raise ITNRejected("PayFast validation failed", 400)
            logger.warning("[PAYFAST] sandbox: PayFast validation failed, continuing")

        return await self._apply(payload)

    async def _revalidate(self, raw_body: str) -> bool:
        try:
            return await self.validator.validate(raw_body)
        except Exception as e:
            logger.error("[PAYFAST] validation call failed: %s", e)
            return False

    async def _record_itn_log(
        self,
        payload: ITNPayload,
        raw_body: str,
        client_ip: str,
        signature_check: SignatureCheck,
        validated: bool,
    ) -> bool:
        """감사 로그는 실패해도 처리를 계속한다"""
        amount: Optional[Decimal] = normalize_amount(payload.amount_gross)
        row = {
            "merchant_id": payload.merchant_id or None,
            "merchant_key": payload.merchant_key or None,
            "return_url": payload.return_url or None,
            "cancel_url": payload.cancel_url or None,
            "notify_url": payload.notify_url or None,
            "name_first": payload.name_first or None,
            "name_last": payload.name_last or None,
            "email_address": payload.email_address or None,
            "m_payment_id": payload.m_payment_id,
            "amount": float(amount) if amount is not None else None,
            "item_name": payload.item_name or None,
            "item_description": payload.item_description or None,
            "payment_status": payload.payment_status or None,
            "pf_payment_id": payload.pf_payment_id or None,
            "signature": payload.signature or None,
            "raw_post_data": raw_body,
            "ip_address": client_ip or None,
            "is_valid": signature_check is SignatureCheck.VALID and validated,
            "processing_notes": (
                f"Signature: {signature_check.value}, PayFast: {'Valid' if validated else 'Invalid'}, mode: {self.mode}"
            ),
        }
        try:
            return await self.db_helper.insert_itn_log(row)
        except Exception as e:
            logger.error("[PAYFAST] ITN audit log failed: %s", e)
            return False

    async def _apply(self, payload: ITNPayload) -> ITNResult:
        payment_id = payload.m_payment_id
        new_status = map_payment_status(payload.payment_status)

        transaction = await self.db_helper.get_transaction(payment_id)
        if not transaction:
            logger.error("[PAYFAST] transaction not found: %s", payment_id)
            raise ITNRejected("Transaction not found", 404)

        seen_status = transaction.get("status") or TransactionStatus.PENDING.value
        if new_status.is_terminal and seen_status == new_status.value:
            logger.info("[PAYFAST] transaction already %s, skipping: %s", seen_status, payment_id)
            return ITNResult(outcome="duplicate", payment_id=payment_id)

        # 종료 상태의 거래는 pending으로 되돌리지 않는다
        if not new_status.is_terminal and seen_status != TransactionStatus.PENDING.value:
            logger.info(
                "[PAYFAST] transaction already %s, ignoring %s ITN: %s",
                seen_status,
                new_status.value,
                payment_id,
            )
            return ITNResult(outcome="duplicate", payment_id=payment_id)

        plan = None
        if new_status is TransactionStatus.COMPLETED:
            plan = await self.db_helper.get_active_plan(TierCatalog.normalize(payload.custom.plan_tier))
            if not plan:
                logger.error("[PAYFAST] plan not found for tier: %s", payload.custom.plan_tier)
                raise ITNRejected("Plan not found", 400)

        now = datetime.now(timezone.utc)
        claimed = await self.db_helper.claim_transaction(payment_id, seen_status, {
            "status": new_status.value,
            "payfast_payment_id": payload.pf_payment_id or None,
            "completed_at": now.isoformat() if new_status is TransactionStatus.COMPLETED else None,
            "updated_at": now.isoformat(),
        })
        if not claimed:
            logger.info("[PAYFAST] transaction claimed by concurrent delivery, skipping: %s", payment_id)
            return ITNResult(outcome="duplicate", payment_id=payment_id)

        ctx = ReconcileContext(
            transaction=transaction,
            payload=payload,
            status=new_status,
            plan=plan,
            mode=self.mode,
            now=now,
        )
        try:
            outcome = await self.subscription_service.reconcile(ctx)
        except Exception as e:
            released = await self.db_helper.release_transaction(payment_id, new_status.value, seen_status)
            logger.error(
                "[PAYFAST] reconcile failed, claim released=%s: payment=%s error=%s",
                released,
                payment_id,
                e,
            )
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError("subscription reconcile", e) from e

        post_commit = await self.run_post_commit(outcome.post_commit)
        logger.info(
            "[PAYFAST] ITN processed: payment=%s status=%s action=%s post_commit=%s",
            payment_id,
            new_status.value,
            outcome.action,
            post_commit,
        )

        await self.log_user_action(
            transaction.get("user_id") or payload.custom.owner_id or None,
            "payfast_payment",
            {
                "payment_id": payment_id,
                "status": new_status.value,
                "action": outcome.action,
                "school_id": outcome.school_id,
                "post_commit": post_commit,
            },
        )

        return ITNResult(
            outcome=outcome.action,
            payment_id=payment_id,
            details={
                "status": new_status.value,
                "school_id": outcome.school_id,
                "subscription_id": outcome.subscription_id,
                "post_commit": post_commit,
            },
        )
