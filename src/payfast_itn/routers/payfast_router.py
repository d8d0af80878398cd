"""
PayFast Router

- ITN(Instant Transaction Notification) 웹훅 수신
- 정기결제 결제 페이지 URL 생성
웹훅 응답은 PayFast가 읽는 plain text로만 돌려준다.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payfast_itn.core.middleware import SERVER_ERROR_BODY
from payfast_itn.core.responses import BusinessException, ITNRejected, PersistenceError, success_response
from payfast_itn.schemas import PaymentRequest, PaymentResponse
from payfast_itn.services.itn_service import resolve_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payfast", tags=["payfast"])
security = HTTPBearer()

# 서비스 전역 변수 (main.py에서 설정됨)
auth_service = None
itn_service = None
payment_service = None


def set_dependencies(auth_svc, itn_svc, payment_svc):
    """의존성 설정 (main.py에서 호출)"""
    global auth_service, itn_service, payment_service
    auth_service = auth_svc
    itn_service = itn_svc
    payment_service = payment_svc


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """현재 사용자 정보를 가져오는 의존성"""
    if auth_service is None:
        raise HTTPException(status_code=503, detail="인증 서비스가 초기화되지 않았습니다")
    return await auth_service.verify_auth(credentials)


@router.get("/webhook")
async def webhook_status():
    """헬스 체크용 (PayFast는 POST만 사용)"""
    return success_response(
        data={"endpoint": "payfast-webhook", "accepts": "POST application/x-www-form-urlencoded"},
        message="PayFast webhook is alive",
    )


@router.post("/webhook", response_class=PlainTextResponse)
async def payfast_webhook(request: Request):
    if itn_service is None:
        logger.error("[PAYFAST] ITN service not configured")
        return PlainTextResponse(SERVER_ERROR_BODY, status_code=500)

    raw = await request.body()
    client_ip = resolve_client_ip(request.headers)

    try:
        result = await itn_service.process(raw.decode("utf-8", errors="replace"), client_ip)
    except ITNRejected as e:
        logger.warning("[PAYFAST] ITN rejected (%s): %s", e.status_code, e.message)
        return PlainTextResponse(e.message, status_code=e.status_code)
    except PersistenceError as e:
        logger.error("[PAYFAST] ITN persistence failure: %s", e)
        return PlainTextResponse(SERVER_ERROR_BODY, status_code=500)
    except Exception as e:
        logger.exception("[PAYFAST] ITN processing error: %s", e)
        return PlainTextResponse(SERVER_ERROR_BODY, status_code=500)

    return PlainTextResponse(result.body, status_code=result.status_code)


@router.post("/create-payment")
async def create_payment(request: PaymentRequest, current_user=Depends(get_current_user)):
    """정기결제용 PayFast 결제 URL 생성"""
    if payment_service is None:
        raise HTTPException(status_code=503, detail="결제 서비스가 초기화되지 않았습니다")

    try:
        created = await payment_service.create_payment(request, current_user.id)
    except BusinessException as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return success_response(data=PaymentResponse(**created), message="결제 요청이 생성되었습니다")
