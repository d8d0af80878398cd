"""
구독 티어 카탈로그 및 티어 표기 규칙 관리
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

FREE_TIER = "free"


class TierNaming(str, Enum):
    """티어 문자열 표기 방식

    aligned: 모든 테이블에 소문자 표기
    legacy: user_ai_tiers만 대문자, 나머지는 소문자 (예전 웹 웹훅과 동일)
    """
    ALIGNED = "aligned"
    LEGACY = "legacy"


class TierTarget(str, Enum):
    """티어 값이 비정규화되어 기록되는 위치"""
    ORGANIZATION = "organization"  # preschools.subscription_tier / organizations.plan_tier
    TIER_RECORD = "tier_record"  # user_ai_tiers.tier
    USAGE_RECORD = "usage_record"  # user_ai_usage.current_tier


@dataclass(frozen=True)
class TierPlan:
    """결제 가능한 티어 정의"""
    tier: str
    name: str
    price: Decimal
    description: str


class TierCatalog:
    """티어 설정 관리자"""

    # 정가 (ZAR). 프로모션 금액은 결제 요청 시 별도로 전달된다.
    TIER_PLANS: Dict[str, TierPlan] = {
        "parent_starter": TierPlan(
            tier="parent_starter",
            name="Parent Starter",
            price=Decimal("99.00"),
            description="Monthly subscription - 30 Homework Helper/month, AI lesson support, Child-safe explanations",
        ),
        "parent_plus": TierPlan(
            tier="parent_plus",
            name="Parent Plus",
            price=Decimal("199.00"),
            description="Monthly subscription - 100 Homework Helper/month, Priority processing, Up to 3 children",
        ),
        "school_starter": TierPlan(
            tier="school_starter",
            name="School Starter",
            price=Decimal("299.00"),
            description="Monthly subscription - Basic school management and AI features",
        ),
        "school_premium": TierPlan(
            tier="school_premium",
            name="School Premium",
            price=Decimal("499.00"),
            description="Monthly subscription - Advanced school management and unlimited AI features",
        ),
        "school_pro": TierPlan(
            tier="school_pro",
            name="School Pro",
            price=Decimal("899.00"),
            description="Monthly subscription - Full school management and unlimited AI features",
        ),
    }

    @staticmethod
    def normalize(tier: Optional[str]) -> str:
        """대소문자/구분자 차이를 제거한 기준 티어 키"""
        if not tier:
            return ""
        return tier.strip().lower().replace("-", "_").replace(" ", "_")

    @classmethod
    def get_plan(cls, tier: Optional[str]) -> Optional[TierPlan]:
        return cls.TIER_PLANS.get(cls.normalize(tier))

    @classmethod
    def format_tier(
        cls,
        tier: Optional[str],
        target: TierTarget,
        naming: TierNaming = TierNaming.ALIGNED,
    ) -> str:
        """대상 테이블에 기록할 티어 문자열

        모든 티어 쓰기 작업은 이 함수를 거쳐야 표기가 어긋나지 않는다.
        """
        key = cls.normalize(tier) or FREE_TIER
        if naming is TierNaming.LEGACY and target is TierTarget.TIER_RECORD:
            return key.upper()
        return key


def format_tier(tier: Optional[str], target: TierTarget, naming: TierNaming = TierNaming.ALIGNED) -> str:
    return TierCatalog.format_tier(tier, target, naming)
