from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.repositories.leave import SqlAlchemyLeaveRepository
from leave_service.services.leave_service import LeaveRequestService


# 의존성으로 DB 세션을 반환하는 함수
async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    app.state 에 올려둔 세션 팩토리로 요청마다 세션을 만들고, 끝나면 닫는다.
    전역 엔진 대신 app.state를 쓰므로 테스트에서 앱마다 다른 DB를 붙일 수 있다.
    """
    async with request.app.state.sessionmaker() as session:
        yield session


async def get_leave_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> LeaveRequestService:
    return LeaveRequestService.from_settings(
        SqlAlchemyLeaveRepository(db),
        request.app.state.settings,
        publisher=getattr(request.app.state, "leave_events", None),
    )
