"""
PayFast 결제 요청 생성 서비스
정기결제 파라미터를 서명해 결제 페이지 URL을 만들고 대기 거래를 기록한다.
"""
import json
import time
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from payfast_itn.core.base_service import BaseService
from payfast_itn.core.billing import BillingFrequency, Scope, TransactionStatus, format_amount
from payfast_itn.core.interfaces import IDatabaseHelper, IPaymentService
from payfast_itn.core.responses import AuthorizationException, BusinessException, ValidationException
from payfast_itn.core.tiers import TierCatalog
from payfast_itn.schemas import PaymentRequest
from payfast_itn.services.signature import checkout_pairs, sign_checkout


def build_payment_id(tier: str, user_id: str, now_ms: Optional[int] = None) -> str:
    """SUB_{TIER}_{user 앞 8자}_{epoch ms}"""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"SUB_{tier.upper()}_{user_id[:8]}_{stamp}"


class PaymentService(BaseService, IPaymentService):
    """결제 요청 생성 서비스"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        *,
        mode: str,
        merchant_id: str,
        merchant_key: str,
        passphrase: str,
        process_url: str,
        base_url: str,
    ):
        super().__init__(db_helper)
        self.mode = mode
        self.merchant_id = merchant_id
        self.merchant_key = merchant_key
        self.passphrase = passphrase
        self.process_url = process_url
        self.base_url = base_url.rstrip("/")

    async def create_payment(self, request: PaymentRequest, user_id: str) -> Dict[str, Any]:
        if not self.merchant_id or not self.merchant_key:
            self.logger.error("[PAYFAST] merchant credentials not configured")
            raise BusinessException("PayFast 설정이 누락되었습니다", "PAYFAST_NOT_CONFIGURED", 500)

        if request.user_id != user_id:
            raise AuthorizationException("다른 사용자의 결제를 생성할 수 없습니다")

        self.validate_required_fields(request.model_dump(), ["user_id", "tier", "email"])

        tier = TierCatalog.normalize(request.tier)
        plan = TierCatalog.get_plan(tier)
        amount: Optional[Decimal] = request.amount if request.amount is not None else (plan.price if plan else None)
        if amount is None:
            raise ValidationException(f"알 수 없는 티어이며 금액이 지정되지 않았습니다: {request.tier}")

        scope = Scope.parse(request.scope) or Scope.INDIVIDUAL
        billing = BillingFrequency.parse(request.billing) or BillingFrequency.MONTHLY
        if scope is Scope.ORGANIZATION and not request.school_id:
            raise ValidationException("조직 구독에는 school_id가 필요합니다")

        payment_id = build_payment_id(tier, user_id)
        amount_text = format_amount(amount)
        plan_name = plan.name if plan else tier

        # PayFast 문서의 필드 순서를 그대로 유지해야 서명이 일치한다
        fields: Dict[str, Any] = {
            "merchant_id": self.merchant_id,
            "merchant_key": self.merchant_key,
            "return_url": f"{self.base_url}/dashboard/parent/subscription?payment=success",
            "cancel_url": f"{self.base_url}/dashboard/parent/subscription?payment=cancelled",
            "notify_url": f"{self.base_url}/api/payfast/webhook",
            "name_first": request.first_name or request.email.split("@")[0],
            "name_last": request.last_name or "User",
            "email_address": request.email,
            "m_payment_id": payment_id,
            "amount": amount_text,
            "item_name": request.item_name or f"EduDash Pro {plan_name} Subscription",
            "item_description": request.item_description or (plan.description if plan else None),
            "custom_str1": tier,
            "custom_str2": scope.value,
            "custom_str3": request.school_id if scope is Scope.ORGANIZATION else user_id,
            "custom_str4": json.dumps({"billing": billing.value, "seats": request.seats}),
        }
        if request.subscription_type:
            fields.update({
                "subscription_type": request.subscription_type,
                "billing_date": request.billing_date,
                "recurring_amount": amount_text,
                "frequency": request.frequency,
                "cycles": request.cycles,
            })

        # sandbox 계정은 passphrase 없이 서명한다
        passphrase = None if self.mode == "sandbox" else (self.passphrase or None)
        signature = sign_checkout(fields, passphrase)

        await self.db_helper.create_transaction({
            "id": payment_id,
            "user_id": user_id,
            "school_id": request.school_id if scope is Scope.ORGANIZATION else None,
            "amount": float(amount),
            "status": TransactionStatus.PENDING.value,
            "tier": tier,
            "metadata": {
                "scope": scope.value,
                "billing": billing.value,
                "seats": request.seats,
                "mode": self.mode,
            },
        })

        query = urlencode(checkout_pairs(fields) + [("signature", signature)])
        payment_url = f"{self.process_url}?{query}"

        self.logger.info(
            "[PAYFAST] payment created: payment=%s tier=%s scope=%s amount=%s mode=%s",
            payment_id,
            tier,
            scope.value,
            amount_text,
            self.mode,
        )
        await self.log_user_action(user_id, "payfast_checkout", {
            "payment_id": payment_id,
            "tier": tier,
            "amount": amount_text,
        })

        return {"payment_url": payment_url, "payment_id": payment_id, "mode": self.mode}
