"""
구독 조정 서비스
거래 상태 전이(completed / cancelled / failed)를 구독, 티어, 청구서, 알림에 반영
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional

from payfast_itn.core.base_service import BaseService, PostCommitAction
from payfast_itn.core.billing import (
    BillingFrequency,
    Scope,
    SubscriptionStatus,
    TransactionStatus,
    add_billing_period,
    format_amount,
    normalize_amount,
    parse_iso_datetime,
    to_amount,
)
from payfast_itn.core.interfaces import IDatabaseHelper, ISubscriptionService
from payfast_itn.core.tiers import FREE_TIER, TierCatalog, TierNaming, TierTarget
from payfast_itn.schemas import ITNPayload
from payfast_itn.services.notification_service import (
    NotificationService,
    render_activation_email,
    render_cancellation_email,
    render_payment_failed_email,
    render_renewal_email,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileContext:
    transaction: Dict[str, Any]
    payload: ITNPayload
    status: TransactionStatus
    plan: Optional[Dict[str, Any]]
    mode: str
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ReconcileOutcome:
    action: str
    school_id: Optional[str] = None
    subscription_id: Optional[str] = None
    end_date: Optional[datetime] = None
    post_commit: List[PostCommitAction] = field(default_factory=list)


class SubscriptionService(BaseService, ISubscriptionService):
    """구독 조정 서비스

    reconcile()은 필수 상태 변경만 직접 수행하고, 티어 반영/알림/청구서 갱신은
    PostCommitAction 목록으로 돌려준다.
    """

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        notifier: NotificationService,
        naming: TierNaming = TierNaming.ALIGNED,
        support_email: str = "support@edudashpro.org.za",
    ):
        super().__init__(db_helper)
        self.notifier = notifier
        self.naming = naming
        self.support_email = support_email

    def _tier(self, tier: Optional[str], target: TierTarget) -> str:
        return TierCatalog.format_tier(tier, target, self.naming)

    async def reconcile(self, ctx: ReconcileContext) -> ReconcileOutcome:
        if ctx.status is TransactionStatus.COMPLETED:
            return await self._reconcile_completed(ctx)
        if ctx.status in (TransactionStatus.CANCELLED, TransactionStatus.FAILED):
            return await self._reconcile_unpaid(ctx)
        return ReconcileOutcome(action="pending")

    # completed

    async def _reconcile_completed(self, ctx: ReconcileContext) -> ReconcileOutcome:
        custom = ctx.payload.custom
        tx = ctx.transaction
        invoice_actions = self._invoice_actions(tx, "paid", ctx.now)

        if custom.scope is Scope.ORGANIZATION and tx.get("school_id"):
            school_id = tx["school_id"]
        elif custom.scope is Scope.INDIVIDUAL and custom.owner_id:
            school_id = await self._ensure_personal_school(custom.owner_id, ctx)
        else:
            self.logger.warning(
                "[PAYFAST] completed payment without resolvable owner: payment=%s scope=%s owner=%s school=%s",
                ctx.payload.m_payment_id,
                custom.scope,
                custom.owner_id or None,
                tx.get("school_id"),
            )
            return ReconcileOutcome(action="finalized", post_commit=invoice_actions)

        if ctx.payload.is_recurring:
            current = await self.db_helper.find_current_subscription(school_id)
            if current:
                outcome = await self._renew(ctx, current, school_id)
                outcome.post_commit.extend(invoice_actions)
                return outcome
            self.logger.info(
                "[PAYFAST] recurring payment (%s) without current subscription; activating: school=%s",
                ctx.payload.recurring_indicator,
                school_id,
            )

        outcome = await self._activate(ctx, custom.scope, school_id)
        outcome.post_commit.extend(invoice_actions)
        return outcome

    async def _ensure_personal_school(self, owner_id: str, ctx: ReconcileContext) -> str:
        """개인 구독 컨테이너를 찾고 없으면 생성 (생성 실패는 필수 작업 실패)"""
        existing = await self.db_helper.find_personal_school(owner_id)
        if existing:
            return existing["id"]

        created = await self.db_helper.create_personal_school({
            "name": f"Personal Account - {owner_id}",
            "is_personal": True,
            "owner_user_id": owner_id,
            "subscription_tier": self._tier(ctx.plan["tier"], TierTarget.ORGANIZATION),
            "metadata": {
                "created_by_payment": True,
                "payment_id": ctx.payload.m_payment_id,
            },
        })
        self.logger.info("[PAYFAST] personal school created: owner=%s school=%s", owner_id, created["id"])
        return created["id"]

    async def _activate(self, ctx: ReconcileContext, scope: Scope, school_id: str) -> ReconcileOutcome:
        plan = ctx.plan
        custom = ctx.payload.custom
        owner_type = scope.owner_type
        start_date = ctx.now
        end_date = add_billing_period(start_date, custom.billing)

        if scope is Scope.ORGANIZATION:
            seats_total = max(custom.seats, plan.get("max_teachers") or 1)
            seats_used = 0
        else:
            seats_total = 1
            seats_used = 1

        price_paid = to_amount(ctx.transaction.get("amount"))
        metadata: Dict[str, Any] = {
            "plan_name": plan.get("name"),
            "price_paid": float(price_paid) if price_paid is not None else None,
            "transaction_id": ctx.payload.m_payment_id,
            "pf_payment_id": ctx.payload.pf_payment_id or None,
            "activated_by_payment": True,
        }
        if scope is Scope.INDIVIDUAL:
            metadata["owner_user_id"] = custom.owner_id

        subscription_data = {
            "school_id": school_id,
            "plan_id": plan["id"],
            "status": SubscriptionStatus.ACTIVE.value,
            "owner_type": owner_type.value,
            "billing_frequency": custom.billing.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "next_billing_date": end_date.isoformat(),
            "seats_total": seats_total,
            "seats_used": seats_used,
            "metadata": metadata,
        }

        existing = await self.db_helper.find_subscription(owner_type.value, school_id)
        if existing:
            await self.db_helper.update_subscription(existing["id"], subscription_data)
            subscription_id = existing["id"]
        else:
            saved = await self.db_helper.insert_subscription(subscription_data)
            subscription_id = saved.get("id")

        self.logger.info(
            "[PAYFAST] subscription activated: school=%s owner_type=%s plan=%s billing=%s end=%s",
            school_id,
            owner_type.value,
            plan.get("tier"),
            custom.billing.value,
            end_date.isoformat(),
        )

        actions = self._tier_actions(scope, school_id, plan["tier"], custom.owner_id, ctx)
        actions.append(PostCommitAction(
            name="activation_email",
            run=partial(self._send_activation_email, ctx, scope, school_id, start_date, end_date),
        ))

        return ReconcileOutcome(
            action="activated",
            school_id=school_id,
            subscription_id=subscription_id,
            end_date=end_date,
            post_commit=actions,
        )

    async def _renew(self, ctx: ReconcileContext, current: Dict[str, Any], school_id: str) -> ReconcileOutcome:
        """정기결제 갱신 - 기존 구독의 종료일을 한 주기 연장"""
        frequency = BillingFrequency.parse(current.get("billing_frequency")) or ctx.payload.custom.billing
        current_end = parse_iso_datetime(current.get("end_date"))
        anchor = current_end if current_end and current_end > ctx.now else ctx.now
        new_end = add_billing_period(anchor, frequency)

        metadata = dict(current.get("metadata") or {})
        metadata["last_renewal"] = {
            "transaction_id": ctx.payload.m_payment_id,
            "pf_payment_id": ctx.payload.pf_payment_id or None,
            "indicator": ctx.payload.recurring_indicator,
            "renewed_at": ctx.now.isoformat(),
        }

        await self.db_helper.update_subscription(current["id"], {
            "status": SubscriptionStatus.ACTIVE.value,
            "end_date": new_end.isoformat(),
            "next_billing_date": new_end.isoformat(),
            "updated_at": ctx.now.isoformat(),
            "metadata": metadata,
        })

        self.logger.info(
            "[PAYFAST] subscription renewed: subscription=%s anchor=%s new_end=%s",
            current["id"],
            anchor.isoformat(),
            new_end.isoformat(),
        )

        plan_name = (ctx.plan or {}).get("name") or metadata.get("plan_name") or ""
        actions = [PostCommitAction(
            name="renewal_email",
            run=partial(self._send_renewal_email, ctx, school_id, plan_name, new_end),
        )]
        return ReconcileOutcome(
            action="renewed",
            school_id=school_id,
            subscription_id=current["id"],
            end_date=new_end,
            post_commit=actions,
        )

    def _tier_actions(
        self,
        scope: Scope,
        school_id: str,
        tier: str,
        owner_id: str,
        ctx: ReconcileContext,
    ) -> List[PostCommitAction]:
        org_tier = self._tier(tier, TierTarget.ORGANIZATION)
        actions = [
            PostCommitAction("school_tier", partial(self.db_helper.set_school_tier, school_id, org_tier)),
            PostCommitAction("organization_tier", partial(self.db_helper.set_organization_tier, school_id, org_tier)),
        ]

        if scope is Scope.ORGANIZATION:
            actions.append(PostCommitAction("member_tiers", partial(self._apply_member_tiers, school_id, tier)))
        else:
            tier_metadata = {
                "payment_id": ctx.payload.m_payment_id,
                "pf_payment_id": ctx.payload.pf_payment_id or None,
                "payment_date": ctx.now.isoformat(),
            }
            actions.append(PostCommitAction(
                "user_tier",
                partial(self.db_helper.set_user_tier, owner_id, self._tier(tier, TierTarget.TIER_RECORD), tier_metadata),
            ))
            actions.append(PostCommitAction(
                "user_usage_tier",
                partial(self.db_helper.set_user_usage_tier, owner_id, self._tier(tier, TierTarget.USAGE_RECORD)),
            ))
        return actions

    async def _apply_member_tiers(self, school_id: str, tier: str) -> bool:
        """조직 소속 사용자 전원의 티어/사용량 레코드 반영"""
        tiers_ok = await self.db_helper.set_member_tiers(school_id, self._tier(tier, TierTarget.TIER_RECORD))
        user_ids = await self.db_helper.get_member_user_ids(school_id)
        usage_ok = await self.db_helper.set_usage_tiers(user_ids, self._tier(tier, TierTarget.USAGE_RECORD))
        self.logger.info("[PAYFAST] member tiers updated: school=%s users=%s", school_id, len(user_ids))
        return tiers_ok and usage_ok

    def _invoice_actions(self, tx: Dict[str, Any], status: str, now: datetime) -> List[PostCommitAction]:
        invoice_number = (tx.get("metadata") or {}).get("invoice_number")
        if not invoice_number:
            return []
        paid_at = now if status == "paid" else None
        return [PostCommitAction(
            "invoice_status",
            partial(self.db_helper.mark_invoice, invoice_number, tx.get("school_id"), status, paid_at),
        )]

    def _email_metadata(self, ctx: ReconcileContext, **extra: Any) -> Dict[str, Any]:
        metadata = {
            "payment_id": ctx.payload.m_payment_id,
            "pf_payment_id": ctx.payload.pf_payment_id or None,
            "plan_tier": (ctx.plan or {}).get("tier") or ctx.payload.custom.plan_tier or None,
            "status": ctx.status.value,
            "mode": ctx.mode,
        }
        metadata.update({k: v for k, v in extra.items() if v is not None})
        return metadata

    async def _recipient_for(self, ctx: ReconcileContext, school_id: Optional[str]) -> tuple:
        """(수신자, 학교 이름) - 조직 구독은 학교 연락처, 개인 구독은 결제자 이메일"""
        if ctx.payload.custom.scope is Scope.ORGANIZATION and school_id:
            school = await self.db_helper.get_school(school_id)
            if not school:
                return None, None
            return school.get("contact_email"), school.get("name") or ""
        return ctx.payload.email_address, None

    async def _send_activation_email(
        self,
        ctx: ReconcileContext,
        scope: Scope,
        school_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> bool:
        recipient, school_name = await self._recipient_for(ctx, school_id)
        content = render_activation_email(
            plan_name=ctx.plan.get("name") or ctx.plan["tier"],
            plan_tier=ctx.plan["tier"],
            billing=ctx.payload.custom.billing.value,
            amount=format_amount(normalize_amount(ctx.payload.amount_gross)),
            payment_id=ctx.payload.m_payment_id,
            pf_payment_id=ctx.payload.pf_payment_id,
            start_date=start_date,
            end_date=end_date,
            mode=ctx.mode,
            school_name=school_name if scope is Scope.ORGANIZATION else None,
        )
        metadata = self._email_metadata(
            ctx,
            school_id=school_id if scope is Scope.ORGANIZATION else None,
            user_id=ctx.payload.custom.owner_id if scope is Scope.INDIVIDUAL else None,
        )
        return await self.notifier.send(recipient, content, metadata)

    async def _send_renewal_email(self, ctx: ReconcileContext, school_id: str, plan_name: str,
                                  end_date: datetime) -> bool:
        recipient, _ = await self._recipient_for(ctx, school_id)
        content = render_renewal_email(
            plan_name=plan_name,
            amount=format_amount(normalize_amount(ctx.payload.amount_gross)),
            payment_id=ctx.payload.m_payment_id,
            pf_payment_id=ctx.payload.pf_payment_id,
            end_date=end_date,
            mode=ctx.mode,
        )
        return await self.notifier.send(recipient, content, self._email_metadata(ctx, school_id=school_id))

    # cancelled / failed

    async def _reconcile_unpaid(self, ctx: ReconcileContext) -> ReconcileOutcome:
        tx = ctx.transaction
        custom = ctx.payload.custom
        cancelled = ctx.status is TransactionStatus.CANCELLED
        subscription_status = SubscriptionStatus.CANCELLED if cancelled else SubscriptionStatus.PAYMENT_FAILED

        school_ids: List[str] = []
        if tx.get("school_id"):
            school_ids.append(tx["school_id"])
        if custom.scope is Scope.INDIVIDUAL and custom.owner_id:
            personal = await self.db_helper.find_personal_school(custom.owner_id)
            if personal and personal["id"] not in school_ids:
                school_ids.append(personal["id"])

        changed = 0
        for school_id in school_ids:
            changed += await self.db_helper.set_active_subscription_status(school_id, subscription_status.value)

        self.logger.info(
            "[PAYFAST] payment %s: payment=%s scope=%s owner=%s subscriptions_updated=%s",
            ctx.status.value,
            ctx.payload.m_payment_id,
            custom.scope,
            custom.owner_id or None,
            changed,
        )

        actions = self._invoice_actions(tx, ctx.status.value, ctx.now)

        if cancelled and custom.scope is Scope.INDIVIDUAL and custom.owner_id:
            actions.append(PostCommitAction(
                "user_tier_downgrade",
                partial(self.db_helper.set_user_tier, custom.owner_id, self._tier(FREE_TIER, TierTarget.TIER_RECORD)),
            ))
            actions.append(PostCommitAction(
                "user_usage_downgrade",
                partial(self.db_helper.set_user_usage_tier, custom.owner_id, self._tier(FREE_TIER, TierTarget.USAGE_RECORD)),
            ))
            content = render_cancellation_email(
                payment_id=ctx.payload.m_payment_id,
                support_email=self.support_email,
                mode=ctx.mode,
            )
            actions.append(PostCommitAction(
                "cancellation_email",
                partial(self.notifier.send, ctx.payload.email_address, content,
                        self._email_metadata(ctx, user_id=custom.owner_id)),
            ))
        elif not cancelled:
            content = render_payment_failed_email(
                payment_id=ctx.payload.m_payment_id,
                support_email=self.support_email,
            )
            actions.append(PostCommitAction(
                "payment_failed_email",
                partial(self.notifier.send, ctx.payload.email_address, content, self._email_metadata(ctx)),
            ))

        return ReconcileOutcome(
            action=subscription_status.value,
            school_id=school_ids[0] if school_ids else None,
            post_commit=actions,
        )
