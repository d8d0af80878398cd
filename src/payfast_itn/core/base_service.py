"""
서비스 기본 클래스
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from payfast_itn.core.responses import BusinessException
from payfast_itn.core.interfaces import IDatabaseHelper

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PostCommitAction:
    """주 상태 전이가 끝난 뒤 실행되는 부가 작업

    실패해도 거래/구독 상태에는 영향을 주지 않는다.
    """
    name: str
    run: Callable[[], Awaitable[Any]]


class BaseService:
    """모든 서비스의 기본 클래스"""

    def __init__(self, db_helper: IDatabaseHelper):
        self.db_helper = db_helper
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run_post_commit(self, actions: List[PostCommitAction]) -> Dict[str, bool]:
        """부가 작업을 각각 독립된 실패 경계 안에서 순서대로 실행"""
        summary: Dict[str, bool] = {}
        for action in actions:
            try:
                result = await action.run()
                summary[action.name] = result is not False
                if result is False:
                    self.logger.warning("[PAYFAST] post-commit action reported failure: %s", action.name)
            except Exception as e:
                summary[action.name] = False
                self.logger.error("[PAYFAST] post-commit action %s failed: %s", action.name, e)
        return summary

    async def log_user_action(self, user_id: Optional[str], action: str, data: Dict[str, Any] = None):
        """사용자 액션 로깅"""
        try:
            await self.db_helper.log_system_event(
                event_type=f"user_{action}",
                event_data=data or {},
                user_id=user_id
            )
        except Exception as e:
            self.logger.warning(f"액션 로깅 실패: {e}")

    def validate_required_fields(self, data: Dict[str, Any], required_fields: list):
        """필수 필드 검증"""
        missing_fields = [field for field in required_fields if not data.get(field)]
        if missing_fields:
            raise BusinessException(
                f"필수 필드가 누락되었습니다: {', '.join(missing_fields)}",
                "MISSING_REQUIRED_FIELDS",
                400
            )
