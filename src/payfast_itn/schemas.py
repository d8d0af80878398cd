"""
PayFast ITN 페이로드 및 결제 요청/응답 스키마
"""
import json
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, Field

from payfast_itn.core.billing import BillingFrequency, Scope

logger = logging.getLogger(__name__)

RECURRING_TOKEN = "token_payment_type"
RECURRING_SUBSCRIPTION = "subscription_id"
RECURRING_RENEWAL_TAG = "renewal_tag"


def _parse_extras(raw: Optional[str]) -> Tuple[BillingFrequency, int]:
    """custom_str4 JSON에서 billing/seats 추출 (잘못된 값은 monthly / 1)"""

    billing = BillingFrequency.MONTHLY
    seats = 1
    if not raw or not raw.strip():
        return billing, seats

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        logger.warning("[PAYFAST] failed to decode custom_str4 payload: %s", raw[:200])
        return billing, seats

    if not isinstance(parsed, dict):
        logger.warning("[PAYFAST] custom_str4 parsed to non-dict type: %s", type(parsed).__name__)
        return billing, seats

    billing = BillingFrequency.parse(parsed.get("billing")) or BillingFrequency.MONTHLY

    seats_raw = parsed.get("seats")
    if not isinstance(seats_raw, bool):
        try:
            seats = int(seats_raw)
        except (TypeError, ValueError):
            seats = 1
    if seats < 1:
        seats = 1

    return billing, seats


class ITNCustomData(BaseModel):
    """custom_str1..4 슬롯에 실어 보낸 결제 컨텍스트"""
    plan_tier: str = Field("", description="custom_str1: 구독 티어 키")
    scope: Optional[Scope] = Field(None, description="custom_str2: 조직/개인 범위")
    owner_id: str = Field("", description="custom_str3: 소유자 ID")
    billing: BillingFrequency = Field(BillingFrequency.MONTHLY, description="custom_str4.billing")
    seats: int = Field(1, ge=1, description="custom_str4.seats")

    @classmethod
    def from_fields(cls, fields: Dict[str, str]) -> "ITNCustomData":
        billing, seats = _parse_extras(fields.get("custom_str4"))
        return cls(
            plan_tier=(fields.get("custom_str1") or "").strip(),
            scope=Scope.parse(fields.get("custom_str2")),
            owner_id=(fields.get("custom_str3") or "").strip(),
            billing=billing,
            seats=seats,
        )


class ITNPayload(BaseModel):
    """수신 시점에 한 번 파싱한 ITN 필드"""
    merchant_id: str = ""
    merchant_key: str = ""
    m_payment_id: str = ""
    pf_payment_id: str = ""
    payment_status: str = ""
    amount_gross: str = ""
    item_name: str = ""
    item_description: str = ""
    email_address: str = ""
    name_first: str = ""
    name_last: str = ""
    token_payment_type: str = ""
    subscription_id: str = ""
    signature: str = ""
    return_url: str = ""
    cancel_url: str = ""
    notify_url: str = ""
    custom: ITNCustomData = Field(default_factory=ITNCustomData)
    raw_fields: Dict[str, str] = Field(default_factory=dict, description="원본 필드 (마지막 값 우선)")

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "ITNPayload":
        fields: Dict[str, str] = {}
        for key, value in pairs:
            fields[key] = value

        known = {name: fields.get(name, "") for name in cls.model_fields if name not in ("custom", "raw_fields")}
        return cls(**known, custom=ITNCustomData.from_fields(fields), raw_fields=fields)

    @property
    def recurring_indicator(self) -> Optional[str]:
        """정기결제 갱신 여부 판단 근거 (우선순위 순)"""
        if self.token_payment_type.strip().lower() == "recurring":
            return RECURRING_TOKEN
        if self.subscription_id.strip():
            return RECURRING_SUBSCRIPTION
        tagged = f"{self.item_name} {self.item_description}".lower()
        if "renewal" in tagged:
            return RECURRING_RENEWAL_TAG
        return None

    @property
    def is_recurring(self) -> bool:
        return self.recurring_indicator is not None


class PaymentRequest(BaseModel):
    """PayFast 결제 생성 요청"""
    user_id: str = Field(..., min_length=1, description="결제 요청 사용자 ID (토큰 사용자와 일치해야 함)")
    tier: str = Field(..., min_length=1, description="구독 티어 키")
    email: str = Field(..., min_length=3, description="결제자 이메일")
    amount: Optional[Decimal] = Field(None, gt=0, description="청구 금액 (없으면 티어 정가)")
    scope: str = Field("user", description="school 또는 user")
    school_id: Optional[str] = Field(None, description="조직 구독일 때 대상 학교 ID")
    billing: str = Field("monthly", description="monthly 또는 annual")
    seats: int = Field(1, ge=1, description="조직 구독 좌석 수")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    item_name: Optional[str] = None
    item_description: Optional[str] = None
    subscription_type: Optional[str] = Field("1", description="1 = 정기결제, 2 = 수시결제")
    frequency: str = Field("3", description="3=월, 4=분기, 5=반기, 6=연")
    cycles: str = Field("0", description="결제 횟수 (0 = 해지 시까지)")
    billing_date: Optional[str] = Field(None, description="첫 청구일 YYYY-MM-DD")


class PaymentResponse(BaseModel):
    """PayFast 결제 생성 응답"""
    payment_url: str = Field(..., description="서명이 포함된 PayFast 결제 페이지 URL")
    payment_id: str = Field(..., description="m_payment_id")
    mode: str = Field(..., description="sandbox 또는 production")
