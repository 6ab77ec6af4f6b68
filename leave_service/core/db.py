import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from leave_service.core.config import Settings
from leave_service.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Base 클래스 (모든 모델의 부모)
Base = declarative_base()


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    SQLAlchemy Async Engine 생성.
    드라이버별로 connect timeout 인자 이름이 달라서 URL을 보고 골라 넣는다.
    """
    url = settings.DATABASE_URL
    timeout = settings.DB_TIMEOUT_SECONDS

    if url.startswith("sqlite"):
        # SQLite는 풀 옵션을 받지 않는 StaticPool을 쓸 수 있으므로 pool 인자 생략
        return create_async_engine(
            url,
            echo=settings.DB_ECHO,
            connect_args={"timeout": timeout},
        )

    connect_args = {}
    if url.startswith("mysql+asyncmy"):
        connect_args["connect_timeout"] = int(timeout)

    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args=connect_args,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    # 세션 팩토리
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def init_db(
    engine: AsyncEngine,
    *,
    max_retries: int,
    retry_delay: float,
) -> None:
    """
    애플리케이션 시작 시 한 번 호출해서 leaves, leave_locks 테이블을 생성.
    이미 있으면 아무 일도 안 함 (CREATE TABLE IF NOT EXISTS 느낌).

    DB 컨테이너가 늦게 뜨는 경우를 위해 고정 간격으로 max_retries 번까지
    재시도하고, 그래도 실패하면 ConfigurationError로 기동을 중단한다.
    """
    # 모델을 import 해야 metadata에 테이블이 등록된다
    from leave_service.models import leave  # noqa: F401

    attempts = max(1, max_retries)
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            last_error = exc
            logger.warning(
                "Database initialization failed (attempt %d/%d): %s",
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                await asyncio.sleep(retry_delay)
            continue

        logger.info("Database tables initialized successfully")
        return

    raise ConfigurationError(
        f"Database unreachable after {attempts} attempts: {last_error}"
    )
