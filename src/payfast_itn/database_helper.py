"""
데이터베이스 연결 및 CRUD 작업을 위한 헬퍼 모듈

필수 작업(거래/구독/개인 컨테이너)은 실패 시 PersistenceError를 발생시키고,
부가 작업(티어 반영, 알림 큐, 감사 로그, 청구서)은 실패를 로그로 남기고 False를 반환한다.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from supabase import Client
import logging

from payfast_itn.core.interfaces import IDatabaseHelper
from payfast_itn.core.responses import PersistenceError

logger = logging.getLogger(__name__)

CURRENT_SUBSCRIPTION_STATUSES = ("active", "pending")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseHelper(IDatabaseHelper):
    def __init__(self, admin_client: Client):
        self.admin_client = admin_client

    def _get_client(self) -> Client:
        """서비스 롤 클라이언트 반환 (RLS 우회 필요)"""
        return self.admin_client

    # payment_transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """결제 거래 조회"""
        try:
            client = self._get_client()
            result = client.table('payment_transactions').select('*').eq('id', transaction_id).limit(1).execute()
        except Exception as e:
            logger.error(f"[PAYFAST] 거래 조회 실패: {transaction_id} {e}")
            raise PersistenceError("transaction lookup", e) from e
        return result.data[0] if result.data else None

    async def claim_transaction(self, transaction_id: str, expected_status: str, updates: Dict[str, Any]) -> bool:
        """거래 상태가 아직 expected_status일 때만 갱신 (동시 ITN 중 하나만 성공)"""
        try:
            client = self._get_client()
            result = (
                client.table('payment_transactions')
                .update(updates)
                .eq('id', transaction_id)
                .eq('status', expected_status)
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 거래 상태 전이 실패: {transaction_id} {e}")
            raise PersistenceError("transaction claim", e) from e
        return bool(result.data)

    async def release_transaction(self, transaction_id: str, claimed_status: str, previous_status: str) -> bool:
        """후속 필수 작업 실패 시 선점한 상태를 되돌려 재전송 처리가 가능하게 함"""
        try:
            client = self._get_client()
            result = (
                client.table('payment_transactions')
                .update({
                    'status': previous_status,
                    'completed_at': None,
                    'updated_at': _utcnow_iso(),
                })
                .eq('id', transaction_id)
                .eq('status', claimed_status)
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"[PAYFAST] 거래 상태 복구 실패: {transaction_id} {e}")
            return False

    async def create_transaction(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """대기 상태 결제 거래 생성"""
        try:
            client = self._get_client()
            result = client.table('payment_transactions').insert(data).execute()
        except Exception as e:
            logger.error(f"[PAYFAST] 거래 생성 실패: {e}")
            raise PersistenceError("transaction insert", e) from e
        if not result.data:
            raise PersistenceError("transaction insert")
        return result.data[0]

    # subscription_plans / subscriptions

    async def get_active_plan(self, tier: str) -> Optional[Dict[str, Any]]:
        """활성 구독 플랜 조회"""
        try:
            client = self._get_client()
            result = (
                client.table('subscription_plans')
                .select('id, tier, name, max_teachers')
                .eq('tier', tier)
                .eq('is_active', True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 플랜 조회 실패: tier={tier} {e}")
            raise PersistenceError("plan lookup", e) from e
        return result.data[0] if result.data else None

    async def find_subscription(self, owner_type: str, school_id: str) -> Optional[Dict[str, Any]]:
        """소유자 키(owner_type, school_id)로 구독 조회"""
        try:
            client = self._get_client()
            result = (
                client.table('subscriptions')
                .select('*')
                .eq('owner_type', owner_type)
                .eq('school_id', school_id)
                .order('created_at', desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 구독 조회 실패: school_id={school_id} {e}")
            raise PersistenceError("subscription lookup", e) from e
        return result.data[0] if result.data else None

    async def find_current_subscription(self, school_id: str) -> Optional[Dict[str, Any]]:
        """갱신 대상인 최신 active/pending 구독 조회"""
        try:
            client = self._get_client()
            result = (
                client.table('subscriptions')
                .select('*')
                .eq('school_id', school_id)
                .in_('status', list(CURRENT_SUBSCRIPTION_STATUSES))
                .order('end_date', desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 현재 구독 조회 실패: school_id={school_id} {e}")
            raise PersistenceError("current subscription lookup", e) from e
        return result.data[0] if result.data else None

    async def insert_subscription(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """구독 생성"""
        try:
            client = self._get_client()
            result = client.table('subscriptions').insert(data).execute()
        except Exception as e:
            logger.error(f"[PAYFAST] 구독 생성 실패: {e}")
            raise PersistenceError("subscription insert", e) from e
        return result.data[0] if result.data else {}

    async def update_subscription(self, subscription_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """구독 갱신"""
        try:
            client = self._get_client()
            result = client.table('subscriptions').update(data).eq('id', subscription_id).execute()
        except Exception as e:
            logger.error(f"[PAYFAST] 구독 갱신 실패: {subscription_id} {e}")
            raise PersistenceError("subscription update", e) from e
        return result.data[0] if result.data else {}

    async def set_active_subscription_status(self, school_id: str, status: str) -> int:
        """해당 소유자의 active 구독을 지정 상태로 전환하고 변경 건수 반환"""
        try:
            client = self._get_client()
            result = (
                client.table('subscriptions')
                .update({'status': status, 'updated_at': _utcnow_iso()})
                .eq('school_id', school_id)
                .eq('status', 'active')
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 구독 상태 변경 실패: school_id={school_id} {e}")
            raise PersistenceError("subscription status update", e) from e
        return len(result.data or [])

    # preschools / organizations

    async def find_personal_school(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """개인 구독용 컨테이너(개인 학교) 조회"""
        try:
            client = self._get_client()
            result = (
                client.table('preschools')
                .select('id')
                .eq('owner_user_id', owner_id)
                .eq('is_personal', True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"[PAYFAST] 개인 학교 조회 실패: owner={owner_id} {e}")
            raise PersistenceError("personal school lookup", e) from e
        return result.data[0] if result.data else None

    async def create_personal_school(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """개인 구독용 컨테이너 생성"""
        try:
            client = self._get_client()
            result = client.table('preschools').insert(data).execute()
        except Exception as e:
            logger.error(f"[PAYFAST] 개인 학교 생성 실패: {e}")
            raise PersistenceError("personal school insert", e) from e
        if not result.data:
            raise PersistenceError("personal school insert")
        return result.data[0]

    async def get_school(self, school_id: str) -> Optional[Dict[str, Any]]:
        """알림용 학교 이름/연락처 조회"""
        try:
            client = self._get_client()
            result = client.table('preschools').select('id, name, contact_email').eq('id', school_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"학교 조회 실패: {school_id} {e}")
            return None

    async def set_school_tier(self, school_id: str, tier: str) -> bool:
        try:
            client = self._get_client()
            client.table('preschools').update({'subscription_tier': tier}).eq('id', school_id).execute()
            return True
        except Exception as e:
            logger.error(f"preschools 티어 갱신 실패: {school_id} {e}")
            return False

    async def set_organization_tier(self, organization_id: str, tier: str) -> bool:
        try:
            client = self._get_client()
            client.table('organizations').update({'plan_tier': tier}).eq('id', organization_id).execute()
            return True
        except Exception as e:
            logger.error(f"organizations 티어 갱신 실패: {organization_id} {e}")
            return False

    # user_ai_tiers / user_ai_usage

    async def set_member_tiers(self, organization_id: str, tier: str) -> bool:
        """조직 소속 사용자 전체의 티어 레코드 갱신"""
        try:
            client = self._get_client()
            client.table('user_ai_tiers').update({
                'tier': tier,
                'updated_at': _utcnow_iso(),
            }).eq('organization_id', organization_id).execute()
            return True
        except Exception as e:
            logger.error(f"조직 사용자 티어 갱신 실패: {organization_id} {e}")
            return False

    async def get_member_user_ids(self, organization_id: str) -> List[str]:
        try:
            client = self._get_client()
            result = client.table('user_ai_tiers').select('user_id').eq('organization_id', organization_id).execute()
            return [row['user_id'] for row in result.data or [] if row.get('user_id')]
        except Exception as e:
            logger.error(f"조직 사용자 목록 조회 실패: {organization_id} {e}")
            return []

    async def set_usage_tiers(self, user_ids: List[str], tier: str) -> bool:
        """여러 사용자의 사용량 레코드 current_tier 갱신"""
        if not user_ids:
            return True
        try:
            client = self._get_client()
            client.table('user_ai_usage').update({
                'current_tier': tier,
                'updated_at': _utcnow_iso(),
            }).in_('user_id', user_ids).execute()
            return True
        except Exception as e:
            logger.error(f"사용량 티어 일괄 갱신 실패: {len(user_ids)}명 {e}")
            return False

    async def set_user_tier(self, user_id: str, tier: str, metadata: Dict[str, Any] = None) -> bool:
        """개인 사용자 티어 레코드 upsert"""
        try:
            record = {
                'user_id': user_id,
                'tier': tier,
                'is_active': True,
                'updated_at': _utcnow_iso(),
            }
            if metadata:
                record['metadata'] = metadata
            client = self._get_client()
            client.table('user_ai_tiers').upsert(record, on_conflict='user_id').execute()
            return True
        except Exception as e:
            logger.error(f"사용자 티어 갱신 실패: {user_id} {e}")
            return False

    async def set_user_usage_tier(self, user_id: str, tier: str) -> bool:
        """개인 사용자 사용량 레코드 upsert"""
        try:
            client = self._get_client()
            client.table('user_ai_usage').upsert({
                'user_id': user_id,
                'current_tier': tier,
                'updated_at': _utcnow_iso(),
            }, on_conflict='user_id').execute()
            return True
        except Exception as e:
            logger.error(f"사용자 사용량 티어 갱신 실패: {user_id} {e}")
            return False

    # notification_queue / payfast_itn_logs / billing_invoices / system_logs

    async def enqueue_notification(self, row: Dict[str, Any]) -> bool:
        try:
            client = self._get_client()
            result = client.table('notification_queue').insert(row).execute()
            return bool(result.data)
        except Exception as e:
            logger.error(f"알림 큐 적재 실패: {row.get('recipient')} {e}")
            return False

    async def insert_itn_log(self, row: Dict[str, Any]) -> bool:
        """ITN 감사 로그 기록"""
        try:
            client = self._get_client()
            result = client.table('payfast_itn_logs').insert(row).execute()
            return bool(result.data)
        except Exception as e:
            logger.error(f"[PAYFAST] ITN 감사 로그 기록 실패: {row.get('m_payment_id')} {e}")
            return False

    async def mark_invoice(self, invoice_number: str, school_id: Optional[str], status: str,
                           paid_at: Optional[datetime] = None) -> bool:
        """청구서 상태 갱신"""
        try:
            update_data: Dict[str, Any] = {'status': status}
            if paid_at:
                update_data['paid_at'] = paid_at.isoformat()

            client = self._get_client()
            query = client.table('billing_invoices').update(update_data).eq('invoice_number', invoice_number)
            if school_id:
                query = query.eq('school_id', school_id)
            query.execute()
            return True
        except Exception as e:
            logger.error(f"청구서 상태 갱신 실패: {invoice_number} {e}")
            return False

    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict = None, ip_address: str = None,
                               user_agent: str = None) -> bool:
        """시스템 이벤트 로그 기록"""
        try:
            log_data = {
                'user_id': user_id,
                'event_type': event_type,
                'event_data': event_data or {},
                'ip_address': ip_address,
                'user_agent': user_agent
            }

            result = self._get_client().table('system_logs').insert(log_data).execute()
            return len(result.data) > 0
        except Exception as e:
            logger.error(f"시스템 로그 기록 실패: {e}")
            return False

    async def health_check(self) -> bool:
        """DB 연결 확인"""
        try:
            self._get_client().table('subscription_plans').select('id').limit(1).execute()
            return True
        except Exception as e:
            logger.error(f"DB 헬스체크 실패: {e}")
            return False
