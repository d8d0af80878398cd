"""
서비스 팩토리 - 의존성 주입 설정
"""
from supabase import Client, create_client
import logging

from payfast_itn.core.config import settings
from payfast_itn.core.container import container
from payfast_itn.core.interfaces import (
    IAuthService, IDatabaseHelper, INotificationService,
    IPaymentService, IPaymentValidator, ISubscriptionService,
)
from payfast_itn.core.tiers import TierNaming
from payfast_itn.database_helper import DatabaseHelper
from payfast_itn.services.auth_service import AuthService
from payfast_itn.services.itn_service import ITNService
from payfast_itn.services.notification_service import NotificationService
from payfast_itn.services.payfast_client import PayFastValidationClient
from payfast_itn.services.payment_service import PaymentService
from payfast_itn.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class ServiceFactory:
    """서비스 의존성 등록 및 초기화"""

    @staticmethod
    def configure_dependencies():
        """의존성 주입 컨테이너 설정"""
        # 쓰기 작업은 RLS를 우회하는 service role 클라이언트로만 수행
        supabase_admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        supabase_auth = supabase_admin
        if settings.SUPABASE_ANON_KEY:
            supabase_auth = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        container.register_singleton(Client, supabase_admin)

        db_helper = DatabaseHelper(supabase_admin)
        container.register_singleton(IDatabaseHelper, db_helper)
        container.register_singleton(DatabaseHelper, db_helper)

        auth_service = AuthService(supabase_auth, db_helper)
        container.register_singleton(IAuthService, auth_service)

        if not settings.PAYFAST_PASSPHRASE:
            logger.warning("[PAYFAST] PAYFAST_PASSPHRASE가 설정되지 않아 ITN 서명 검증을 건너뜁니다.")
        if not settings.PAYFAST_MERCHANT_ID:
            logger.warning("[PAYFAST] PAYFAST_MERCHANT_ID가 설정되지 않았습니다.")

        validator = PayFastValidationClient(
            settings.payfast_validate_url,
            timeout=settings.PAYFAST_VALIDATE_TIMEOUT,
        )
        container.register_singleton(IPaymentValidator, validator)

        notifier = NotificationService(db_helper)
        container.register_singleton(INotificationService, notifier)

        subscription_service = SubscriptionService(
            db_helper,
            notifier,
            naming=TierNaming(settings.PAYFAST_TIER_NAMING),
            support_email=settings.SUPPORT_EMAIL,
        )
        container.register_singleton(ISubscriptionService, subscription_service)

        itn_service = ITNService(
            db_helper,
            validator,
            subscription_service,
            mode=settings.PAYFAST_MODE,
            merchant_id=settings.PAYFAST_MERCHANT_ID,
            passphrase=settings.PAYFAST_PASSPHRASE,
            trusted_ips=settings.trusted_ips,
        )
        container.register_singleton(ITNService, itn_service)

        payment_service = PaymentService(
            db_helper,
            mode=settings.PAYFAST_MODE,
            merchant_id=settings.PAYFAST_MERCHANT_ID,
            merchant_key=settings.PAYFAST_MERCHANT_KEY,
            passphrase=settings.PAYFAST_PASSPHRASE,
            process_url=settings.payfast_process_url,
            base_url=settings.BASE_URL,
        )
        container.register_singleton(IPaymentService, payment_service)

        logger.info(
            "[PAYFAST] services configured: mode=%s naming=%s",
            settings.PAYFAST_MODE,
            settings.PAYFAST_TIER_NAMING,
        )

    @staticmethod
    def get_db_helper() -> IDatabaseHelper:
        """DB 헬퍼 조회"""
        return container.get(IDatabaseHelper)

    @staticmethod
    def get_auth_service() -> IAuthService:
        """인증 서비스 조회"""
        return container.get(IAuthService)

    @staticmethod
    def get_itn_service() -> ITNService:
        """ITN 처리 서비스 조회"""
        return container.get(ITNService)

    @staticmethod
    def get_payment_service() -> IPaymentService:
        """결제 요청 서비스 조회"""
        return container.get(IPaymentService)
