"""공용 테스트 더블 및 환경 설정"""
import os

# Settings()는 import 시점에 환경변수를 검증하므로 가장 먼저 채워둔다
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "aaa.bbb.ccc")
os.environ.setdefault("PAYFAST_MODE", "sandbox")
os.environ.setdefault("PAYFAST_MERCHANT_ID", "10000100")
os.environ.setdefault("PAYFAST_MERCHANT_KEY", "46f0cd694581a")

import itertools
from typing import Any, Dict, List, Optional

import pytest

from payfast_itn.core.responses import PersistenceError


class FakeDbHelper:
    """DatabaseHelper와 같은 메서드를 가진 메모리 기반 스텁

    fail_on에 메서드 이름을 넣으면 해당 호출에서 실패를 흉내낸다
    (필수 작업은 PersistenceError, 부가 작업은 예외).
    """

    def __init__(self):
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.plans: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: List[Dict[str, Any]] = []
        self.schools: Dict[str, Dict[str, Any]] = {}
        self.members: Dict[str, List[str]] = {}
        self.tier_writes: List[tuple] = []
        self.notifications: List[Dict[str, Any]] = []
        self.itn_logs: List[Dict[str, Any]] = []
        self.invoices: List[tuple] = []
        self.events: List[Dict[str, Any]] = []
        self.claims: List[tuple] = []
        self.releases: List[tuple] = []
        self.fail_on: set = set()
        self.lose_claim = False
        self._ids = itertools.count(1)

    def _check(self, name: str, primary: bool = True):
        if name in self.fail_on:
            if primary:
                raise PersistenceError(name, RuntimeError("boom"))
            raise RuntimeError(f"{name} failed")

    # payment_transactions

    async def get_transaction(self, transaction_id):
        self._check("get_transaction")
        row = self.transactions.get(transaction_id)
        return dict(row) if row else None

    async def claim_transaction(self, transaction_id, expected_status, updates):
        self._check("claim_transaction")
        self.claims.append((transaction_id, expected_status, dict(updates)))
        row = self.transactions.get(transaction_id)
        if self.lose_claim or not row or row.get("status") != expected_status:
            return False
        row.update(updates)
        return True

    async def release_transaction(self, transaction_id, claimed_status, previous_status):
        self.releases.append((transaction_id, claimed_status, previous_status))
        row = self.transactions.get(transaction_id)
        if not row or row.get("status") != claimed_status:
            return False
        row.update({"status": previous_status, "completed_at": None})
        return True

    async def create_transaction(self, data):
        self._check("create_transaction")
        self.transactions[data["id"]] = dict(data)
        return dict(data)

    # subscription_plans / subscriptions

    async def get_active_plan(self, tier):
        self._check("get_active_plan")
        return self.plans.get(tier)

    async def find_subscription(self, owner_type, school_id):
        self._check("find_subscription")
        for sub in self.subscriptions:
            if sub.get("owner_type") == owner_type and sub.get("school_id") == school_id:
                return dict(sub)
        return None

    async def find_current_subscription(self, school_id):
        self._check("find_current_subscription")
        current = [
            sub for sub in self.subscriptions
            if sub.get("school_id") == school_id and sub.get("status") in ("active", "pending")
        ]
        current.sort(key=lambda sub: sub.get("end_date") or "", reverse=True)
        return dict(current[0]) if current else None

    async def insert_subscription(self, data):
        self._check("insert_subscription")
        row = {"id": f"sub-{next(self._ids)}", **data}
        self.subscriptions.append(row)
        return dict(row)

    async def update_subscription(self, subscription_id, data):
        self._check("update_subscription")
        for sub in self.subscriptions:
            if sub["id"] == subscription_id:
                sub.update(data)
                return dict(sub)
        raise PersistenceError("subscription update")

    async def set_active_subscription_status(self, school_id, status):
        self._check("set_active_subscription_status")
        changed = 0
        for sub in self.subscriptions:
            if sub.get("school_id") == school_id and sub.get("status") == "active":
                sub["status"] = status
                changed += 1
        return changed

    # preschools

    async def find_personal_school(self, owner_id):
        self._check("find_personal_school")
        for school in self.schools.values():
            if school.get("is_personal") and school.get("owner_user_id") == owner_id:
                return dict(school)
        return None

    async def create_personal_school(self, data):
        self._check("create_personal_school")
        row = {"id": f"school-{next(self._ids)}", **data}
        self.schools[row["id"]] = row
        return dict(row)

    async def get_school(self, school_id):
        school = self.schools.get(school_id)
        return dict(school) if school else None

    # 부가 작업 (best-effort)

    async def set_school_tier(self, school_id, tier):
        self._check("set_school_tier", primary=False)
        self.tier_writes.append(("school", school_id, tier))
        return True

    async def set_organization_tier(self, organization_id, tier):
        self._check("set_organization_tier", primary=False)
        self.tier_writes.append(("organization", organization_id, tier))
        return True

    async def set_member_tiers(self, organization_id, tier):
        self._check("set_member_tiers", primary=False)
        self.tier_writes.append(("members", organization_id, tier))
        return True

    async def get_member_user_ids(self, organization_id):
        return list(self.members.get(organization_id, []))

    async def set_usage_tiers(self, user_ids, tier):
        self._check("set_usage_tiers", primary=False)
        for user_id in user_ids:
            self.tier_writes.append(("usage", user_id, tier))
        return True

    async def set_user_tier(self, user_id, tier, metadata=None):
        self._check("set_user_tier", primary=False)
        self.tier_writes.append(("user_tier", user_id, tier))
        return True

    async def set_user_usage_tier(self, user_id, tier):
        self._check("set_user_usage_tier", primary=False)
        self.tier_writes.append(("usage", user_id, tier))
        return True

    async def enqueue_notification(self, row):
        self._check("enqueue_notification", primary=False)
        self.notifications.append(dict(row))
        return True

    async def insert_itn_log(self, row):
        self._check("insert_itn_log", primary=False)
        self.itn_logs.append(dict(row))
        return True

    async def mark_invoice(self, invoice_number, school_id, status, paid_at=None):
        self._check("mark_invoice", primary=False)
        self.invoices.append((invoice_number, school_id, status, paid_at))
        return True

    async def log_system_event(self, user_id=None, event_type="info", event_data=None, ip_address=None, user_agent=None):
        self.events.append({"user_id": user_id, "event_type": event_type, "event_data": event_data or {}})
        return True

    async def health_check(self):
        return True

    # 테스트 헬퍼

    def tier_value(self, kind: str, target_id: str) -> Optional[str]:
        values = [tier for k, tid, tier in self.tier_writes if k == kind and tid == target_id]
        return values[-1] if values else None


@pytest.fixture
def fake_db():
    return FakeDbHelper()
