import logging
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from leave_service.api.leaves import router as leaves_router
from leave_service.api.leaves import stats_router as leave_stats_router
from leave_service.core.config import Settings, settings as default_settings
from leave_service.core.db import create_engine_from_settings, create_sessionmaker, init_db
from leave_service.core.deps import get_leave_service
from leave_service.core.events import close_events, init_events
from leave_service.core.exceptions import LeaveServiceError, StoreError, ValidationError
from leave_service.services.leave_service import LeaveRequestService

logger = logging.getLogger(__name__)


async def handle_service_error(request: Request, exc: LeaveServiceError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.error(
            "Store failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # 잘못된 JSON / 정수가 아닌 id 등 FastAPI 단계의 검증 실패도 같은 형식으로 응답
    errors = exc.errors()
    location = ".".join(str(part) for part in errors[0]["loc"]) if errors else "request"
    error = ValidationError(f"Invalid request: {location}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    앱 팩토리. 엔진 / 세션 팩토리 / 이벤트 publisher 는 모두 app.state 에 둔다.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="Leave Service",
        version="0.1.0",
        description="Leave request service (REST + MySQL + SQLAlchemy + RabbitMQ producer)",
    )
    engine = create_engine_from_settings(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = create_sessionmaker(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LeaveServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)

    @app.on_event("startup")
    async def on_startup() -> None:
        # 1) leaves 테이블 생성 (재시도 포함, 실패 시 ConfigurationError로 기동 중단)
        await init_db(
            engine,
            max_retries=settings.DB_INIT_MAX_RETRIES,
            retry_delay=settings.DB_INIT_RETRY_DELAY_SECONDS,
        )
        # 2) RabbitMQ 연결 (옵션)
        await init_events(app, settings.RABBITMQ_URL)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await close_events(app)
        await engine.dispose()

    @app.get("/health")
    async def health_check(service: LeaveRequestService = Depends(get_leave_service)):
        try:
            await service.check_health()
        except StoreError:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "error",
                    "service": "leave-service",
                    "database": "unreachable",
                },
            )
        return {
            "status": "ok",
            "service": "leave-service",
            "database": "ok",
        }

    @app.get("/")
    async def root():
        return {
            "message": "Leave Service is running",
            "docs": "/docs",
        }

    app.include_router(leaves_router)
    app.include_router(leave_stats_router)
    return app


logging.basicConfig(
    level=default_settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app()


if __name__ == "__main__":
    uvicorn.run("leave_service.main:app", host="0.0.0.0", port=3087)
