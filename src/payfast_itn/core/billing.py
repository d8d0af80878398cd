"""
결제/구독 상태 값과 청구 주기 계산

PayFast 상태 매핑, 청구 주기 날짜 계산, 금액 정규화처럼
DB나 네트워크에 의존하지 않는 순수 함수만 모아둔다.
"""
import calendar
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional


class TransactionStatus(str, Enum):
    """payment_transactions.status"""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class SubscriptionStatus(str, Enum):
    """subscriptions.status"""
    ACTIVE = "active"
    PENDING = "pending"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


class BillingFrequency(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"

    @classmethod
    def parse(cls, value: Any) -> Optional["BillingFrequency"]:
        if not isinstance(value, str):
            return None
        return _FREQUENCY_ALIASES.get(value.strip().lower())


_FREQUENCY_ALIASES = {
    "monthly": BillingFrequency.MONTHLY,
    "month": BillingFrequency.MONTHLY,
    "annual": BillingFrequency.ANNUAL,
    "annually": BillingFrequency.ANNUAL,
    "yearly": BillingFrequency.ANNUAL,
    "year": BillingFrequency.ANNUAL,
}


class OwnerType(str, Enum):
    """subscriptions.owner_type 저장값"""
    SCHOOL = "school"
    USER = "user"


class Scope(str, Enum):
    """구독 소유 범위 (조직 단위 / 개인 단위)"""
    ORGANIZATION = "organization"
    INDIVIDUAL = "individual"

    @classmethod
    def parse(cls, value: Any) -> Optional["Scope"]:
        if not isinstance(value, str):
            return None
        return _SCOPE_ALIASES.get(value.strip().lower())

    @property
    def owner_type(self) -> OwnerType:
        return OwnerType.SCHOOL if self is Scope.ORGANIZATION else OwnerType.USER


_SCOPE_ALIASES = {
    "school": Scope.ORGANIZATION,
    "organization": Scope.ORGANIZATION,
    "organisation": Scope.ORGANIZATION,
    "org": Scope.ORGANIZATION,
    "user": Scope.INDIVIDUAL,
    "individual": Scope.INDIVIDUAL,
    "personal": Scope.INDIVIDUAL,
    "parent": Scope.INDIVIDUAL,
}


PAYFAST_STATUS_MAP = {
    "COMPLETE": TransactionStatus.COMPLETED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "FAILED": TransactionStatus.FAILED,
}


def map_payment_status(external_status: Optional[str]) -> TransactionStatus:
    """PayFast payment_status -> 내부 거래 상태 (알 수 없는 값은 pending)"""

    return PAYFAST_STATUS_MAP.get(external_status or "", TransactionStatus.PENDING)


_FRACTION = re.compile(r"\.(\d+)(?=[+-]\d|$)")


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """ISO 포맷 문자열을 UTC 기준 datetime으로 변환 (Z 접미 처리 포함)"""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            text = value.strip().replace('Z', '+00:00')
            # PostgREST는 소수 초의 끝자리 0을 생략한다 (.12345)
            text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def add_months(anchor: datetime, months: int) -> datetime:
    """달력 기준 월 더하기. 대상 월에 같은 날짜가 없으면 말일로 맞춘다."""

    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))


def add_billing_period(anchor: datetime, frequency: BillingFrequency) -> datetime:
    """청구 주기 1회만큼 이동한 날짜 (monthly: +1개월, annual: +1년)"""

    if frequency is BillingFrequency.ANNUAL:
        return add_months(anchor, 12)
    return add_months(anchor, 1)


AMOUNT_CENTS_THRESHOLD = Decimal("1000")
_TWO_PLACES = Decimal("0.01")


def to_amount(raw: Any) -> Optional[Decimal]:
    """저장된 통화 단위 금액을 소수 둘째 자리 Decimal로 (파싱 불가 시 None)"""
    if raw is None:
        return None
    try:
        text = str(raw).strip()
        if not text:
            return None
        amount = Decimal(text)
    except (InvalidOperation, TypeError, ValueError):
        return None

    if not amount.is_finite():
        return None
    return amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_amount(raw: Any) -> Optional[Decimal]:
    """PayFast에서 들어온 금액 중 센트 단위로 보이는 값(> 1000)을 통화 단위로 환산

    예전 결제 요청 일부가 금액을 센트로 보냈기 때문에 남겨둔 호환 처리.
    payment_transactions.amount처럼 이미 저장된 값에는 to_amount를 쓴다.
    """

    amount = to_amount(raw)
    if amount is None:
        return None
    if amount > AMOUNT_CENTS_THRESHOLD:
        amount = amount / Decimal(100)
    return amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(amount: Optional[Decimal]) -> str:
    if amount is None:
        return "0.00"
    return f"{amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP):.2f}"
