import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Protocol

from sqlalchemy import select, text
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.core.exceptions import StoreError
from leave_service.models.leave import EmployeeLock, LeaveRecord, LeaveStatus, utcnow

logger = logging.getLogger(__name__)


class LeaveRepository(Protocol):
    """
    서비스가 의존하는 저장소 인터페이스.

    locked() 가 작업 단위 하나: 같은 직원의 쓰기를 직렬화하고 끝날 때 커밋한다.
    insert / update_status 는 locked() 블록이 정상 종료돼야 반영된다.
    locked() 안에서 쓰기를 결정하는 조회는 for_update=True 로 읽는다.
    """

    async def insert(self, data: dict) -> LeaveRecord: ...

    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[LeaveRecord]: ...

    async def find_emp_id(self, record_id: int) -> Optional[str]: ...

    async def query(
        self,
        emp_id: Optional[str] = None,
        status: Optional[str] = None,
        *,
        for_update: bool = False,
    ) -> List[LeaveRecord]: ...

    async def update_status(self, record_id: int, status: str) -> Optional[LeaveRecord]: ...

    def locked(self, emp_id: str): ...

    async def ping(self) -> None: ...


def employee_lock_statement(dialect_name: str, emp_id: str, now: Optional[datetime] = None):
    """
    leave_locks 에 직원 행을 넣거나(없으면) 갱신한다(있으면).
    어느 쪽이든 그 행에 배타 잠금이 걸리고 트랜잭션이 끝날 때 풀린다.
    """
    now = now or utcnow()
    if dialect_name == "mysql":
        stmt = mysql_insert(EmployeeLock).values(emp_id=emp_id, locked_at=now)
        return stmt.on_duplicate_key_update(locked_at=stmt.inserted.locked_at)

    stmt = sqlite_insert(EmployeeLock).values(emp_id=emp_id, locked_at=now)
    return stmt.on_conflict_do_update(
        index_elements=[EmployeeLock.emp_id],
        set_={"locked_at": stmt.excluded.locked_at},
    )


class SqlAlchemyLeaveRepository:
    """
    AsyncSession 기반 LeaveRepository.
    세션 하나 = 요청 하나. 커밋은 locked() 블록이 끝날 때만 한다.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def _store_errors(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Error %s", action)
            raise StoreError(f"Error {action}") from exc

    async def insert(self, data: dict) -> LeaveRecord:
        record = LeaveRecord(status=LeaveStatus.PENDING.value, **data)
        async with self._store_errors("submitting leave"):
            self._session.add(record)
            await self._session.flush()
        return record

    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[LeaveRecord]:
        # identity map에 남은 예전 status 대신 항상 DB 값을 읽는다
        stmt = (
            select(LeaveRecord)
            .where(LeaveRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()

        async with self._store_errors("fetching leave"):
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_emp_id(self, record_id: int) -> Optional[str]:
        """
        잠글 직원을 알아내기 위한 조회.
        이 조회로 열린 트랜잭션(InnoDB 스냅샷)은 돌려주기 전에 끝낸다.
        """
        stmt = select(LeaveRecord.emp_id).where(LeaveRecord.id == record_id)
        async with self._store_errors("fetching leave"):
            result = await self._session.execute(stmt)
            emp_id = result.scalar_one_or_none()
            await self._session.rollback()
        return emp_id

    async def query(
        self,
        emp_id: Optional[str] = None,
        status: Optional[str] = None,
        *,
        for_update: bool = False,
    ) -> List[LeaveRecord]:
        stmt = select(LeaveRecord).execution_options(populate_existing=True)
        if emp_id is not None:
            stmt = stmt.where(LeaveRecord.emp_id == emp_id)
        if status is not None:
            stmt = stmt.where(LeaveRecord.status == status)
        # 최신순, 같은 시각이면 id로 순서 고정
        stmt = stmt.order_by(LeaveRecord.created_at.desc(), LeaveRecord.id.desc())
        if for_update:
            stmt = stmt.with_for_update()

        async with self._store_errors("fetching leaves"):
            result = await self._session.execute(stmt)
            return list(result.scalars().all())

    async def update_status(self, record_id: int, status: str) -> Optional[LeaveRecord]:
        async with self._store_errors("updating leave status"):
            record = await self._session.get(LeaveRecord, record_id)
            if record is None:
                return None
            record.status = status
            await self._session.flush()
        return record

    @asynccontextmanager
    async def locked(self, emp_id: str) -> AsyncIterator[None]:
        """
        emp_id 단위로 check-then-write 를 직렬화한다.

        먼저 열려 있던 트랜잭션을 끝내서 잠금 전에 잡힌 스냅샷을 버리고,
        leave_locks 의 직원 행을 upsert 해서 배타 잠금을 잡는다. 행이 항상
        존재하므로 gap lock 이 아니라 레코드 잠금이고, 같은 직원의 다른
        트랜잭션은 커밋/롤백까지 여기서 대기한다.
        """
        dialect_name = self._session.bind.dialect.name
        async with self._store_errors("locking employee leaves"):
            if self._session.in_transaction():
                await self._session.rollback()
            await self._session.execute(employee_lock_statement(dialect_name, emp_id))

        try:
            yield
        except BaseException:
            await self._session.rollback()
            raise

        async with self._store_errors("committing leave changes"):
            await self._session.commit()

    async def ping(self) -> None:
        async with self._store_errors("checking database"):
            await self._session.execute(text("SELECT 1"))
