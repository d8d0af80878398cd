from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from contextlib import asynccontextmanager
import logging
from datetime import datetime

from payfast_itn import __version__
from payfast_itn.core.config import settings
from payfast_itn.core.factory import ServiceFactory
from payfast_itn.core.middleware import setup_exception_handlers
from payfast_itn.core.responses import success_response
from payfast_itn.routers import payfast_router

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ServiceFactory.configure_dependencies()

db_helper = ServiceFactory.get_db_helper()
auth_service = ServiceFactory.get_auth_service()
itn_service = ServiceFactory.get_itn_service()
payment_service = ServiceFactory.get_payment_service()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        await db_helper.log_system_event(
            event_type='server_start',
            event_data={'status': 'success', 'mode': settings.PAYFAST_MODE, 'timestamp': datetime.now().isoformat()}
        )
    except Exception as e:
        logger.error(f"시작 로그 기록 실패: {e}")

    yield

    try:
        await db_helper.log_system_event(
            event_type='server_stop',
            event_data={'status': 'success', 'timestamp': datetime.now().isoformat()}
        )
    except Exception as e:
        logger.error(f"종료 로그 기록 실패: {e}")


app = FastAPI(
    title="EduDash Pro PayFast Service",
    description="PayFast ITN webhook reconciliation and subscription checkout",
    version=__version__,
    lifespan=lifespan,
    debug=settings.DEBUG
)

# 예외 처리 미들웨어 설정
setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

payfast_router.set_dependencies(auth_service, itn_service, payment_service)


@app.get("/")
async def root():
    return success_response(
        data={"message": "EduDash Pro PayFast Service"},
        message="서버가 정상적으로 실행 중입니다"
    )


@app.get("/health")
async def health_check():
    database_ok = await db_helper.health_check()
    return success_response(
        data={
            "database": {"checked": True, "connected": database_ok},
            "payfast_mode": settings.PAYFAST_MODE,
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
            "environment": "development" if settings.DEBUG else "production"
        },
        message="헬스 체크"
    )


app.include_router(payfast_router.router)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG
    )
