"""티어 표기 규칙 테스트"""
from decimal import Decimal

from payfast_itn.core.tiers import FREE_TIER, TierCatalog, TierNaming, TierTarget, format_tier


def test_aligned_naming_is_lowercase_everywhere():
    for target in TierTarget:
        assert format_tier("Parent_Plus", target, TierNaming.ALIGNED) == "parent_plus"


def test_legacy_naming_uppercases_tier_record_only():
    assert format_tier("parent_plus", TierTarget.TIER_RECORD, TierNaming.LEGACY) == "PARENT_PLUS"
    assert format_tier("parent_plus", TierTarget.USAGE_RECORD, TierNaming.LEGACY) == "parent_plus"
    assert format_tier("parent_plus", TierTarget.ORGANIZATION, TierNaming.LEGACY) == "parent_plus"


def test_empty_tier_formats_as_free():
    assert format_tier(None, TierTarget.USAGE_RECORD) == FREE_TIER
    assert format_tier("", TierTarget.TIER_RECORD, TierNaming.LEGACY) == "FREE"


def test_normalize_handles_separators():
    assert TierCatalog.normalize(" School-Pro ") == "school_pro"
    assert TierCatalog.normalize("parent plus") == "parent_plus"
    assert TierCatalog.normalize(None) == ""


def test_catalog_lookup():
    plan = TierCatalog.get_plan("SCHOOL_PREMIUM")
    assert plan is not None
    assert plan.price == Decimal("499.00")
    assert TierCatalog.get_plan("enterprise") is None
