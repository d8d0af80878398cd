"""
전역 예외 처리 미들웨어
"""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
import logging

from payfast_itn.core.responses import (
    error_response,
    BusinessException,
    ITNRejected,
    PersistenceError,
)

logger = logging.getLogger(__name__)

SERVER_ERROR_BODY = "Server error"


async def business_exception_handler(request: Request, exc: BusinessException):
    """비즈니스 예외 처리기"""
    logger.warning(f"Business exception: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            message=exc.message,
            error_code=exc.error_code
        ).model_dump()
    )


async def itn_rejected_handler(request: Request, exc: ITNRejected):
    """ITN 거부는 PayFast가 읽을 수 있도록 평문으로 응답"""
    logger.warning("[PAYFAST] ITN rejected: status=%s reason=%s", exc.status_code, exc.message)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


async def persistence_error_handler(request: Request, exc: PersistenceError):
    """필수 저장 실패 - 재전송 가능한 500 응답"""
    logger.error("[PAYFAST] persistence failure: %s", exc, exc_info=exc.cause)
    return PlainTextResponse(SERVER_ERROR_BODY, status_code=500)


async def http_exception_handler_custom(request: Request, exc: HTTPException):
    """HTTP 예외 처리기"""
    logger.warning(f"HTTP exception: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            message=exc.detail,
            error_code="HTTP_ERROR"
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception):
    """일반 예외 처리기"""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content=error_response(
            message="내부 서버 오류가 발생했습니다",
            error_code="INTERNAL_SERVER_ERROR"
        ).model_dump()
    )


def setup_exception_handlers(app):
    """예외 처리기 설정"""
    app.add_exception_handler(ITNRejected, itn_rejected_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler_custom)
    app.add_exception_handler(Exception, general_exception_handler)
