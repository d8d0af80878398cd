"""
서비스 인터페이스 정의
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List


class IAuthService(ABC):
    """인증 서비스 인터페이스"""

    @abstractmethod
    async def verify_auth(self, credentials) -> Any:
        """토큰 검증"""
        pass


class IDatabaseHelper(ABC):
    """데이터베이스 헬퍼 인터페이스"""

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """결제 거래 조회"""
        pass

    @abstractmethod
    async def claim_transaction(self, transaction_id: str, expected_status: str, updates: Dict[str, Any]) -> bool:
        """상태가 expected_status일 때만 거래를 갱신 (조건부 업데이트)"""
        pass

    @abstractmethod
    async def get_active_plan(self, tier: str) -> Optional[Dict[str, Any]]:
        """활성 구독 플랜 조회"""
        pass

    @abstractmethod
    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict = None, ip_address: str = None,
                               user_agent: str = None) -> bool:
        """시스템 이벤트 로깅"""
        pass


class INotificationService(ABC):
    """알림 서비스 인터페이스"""

    @abstractmethod
    async def queue_email(self, recipient: Optional[str], subject: str, html: str,
                          metadata: Dict[str, Any] = None) -> bool:
        """이메일 발송 요청을 큐에 적재"""
        pass


class ISubscriptionService(ABC):
    """구독 조정 서비스 인터페이스"""

    @abstractmethod
    async def reconcile(self, ctx) -> Any:
        """거래 상태 전이에 따른 구독/티어 반영"""
        pass


class IPaymentValidator(ABC):
    """PayFast 서버 재검증 인터페이스"""

    @abstractmethod
    async def validate(self, raw_body: str) -> bool:
        """ITN 원문을 PayFast에 다시 보내 진위 확인"""
        pass


class IPaymentService(ABC):
    """결제 요청 생성 서비스 인터페이스"""

    @abstractmethod
    async def create_payment(self, request, user_id: str) -> Dict[str, Any]:
        """서명된 PayFast 결제 URL 생성"""
        pass


__all__: List[str] = [
    "IAuthService",
    "IDatabaseHelper",
    "INotificationService",
    "ISubscriptionService",
    "IPaymentValidator",
    "IPaymentService",
]
