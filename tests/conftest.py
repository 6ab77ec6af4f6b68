import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from leave_service.core.config import Settings
from leave_service.core.events import LeaveEventPublisher
from leave_service.core.exceptions import StoreError
from leave_service.main import create_app
from leave_service.models.leave import LeaveRecord, LeaveStatus
from leave_service.services.leave_service import LeaveRequestService

# fixed calendar day for service tests; the 2025 dates used below fall inside
# its [-3 months, +1 year] window
TODAY = date(2025, 2, 15)

LEAVE_TYPES = ["sick", "casual", "earned", "paternity", "maternity", "marriage"]


class InMemoryLeaveRepository:
    """LeaveRepository kept in a list; ``locked`` restores the snapshot on error."""

    def __init__(self) -> None:
        self.records: List[LeaveRecord] = []
        self._next_id = 1
        self._locks: Dict[str, asyncio.Lock] = {}
        self._clock = datetime(2025, 2, 15, 9, 0, 0)
        self.calls: List[str] = []

    def add(self, emp_id, from_date, to_date, status=LeaveStatus.APPROVED.value, **extra):
        """Seed a record directly, bypassing validation."""
        data = {
            "emp_id": emp_id,
            "name": "Seed User",
            "email": "seed@example.com",
            "leave_type": "casual",
            "from_date": from_date,
            "to_date": to_date,
            "from_hour": None,
            "to_hour": None,
            "reason": "seeded leave",
        }
        data.update(extra)
        record = self._build(data)
        record.status = status
        self.records.append(record)
        return record

    def _build(self, data: dict) -> LeaveRecord:
        self._clock += timedelta(seconds=1)
        record = LeaveRecord(
            id=self._next_id,
            status=LeaveStatus.PENDING.value,
            created_at=self._clock,
            **data,
        )
        self._next_id += 1
        return record

    async def insert(self, data: dict) -> LeaveRecord:
        self.calls.append("insert")
        record = self._build(data)
        self.records.append(record)
        return record

    def _find(self, record_id: int) -> Optional[LeaveRecord]:
        return next((r for r in self.records if r.id == record_id), None)

    async def get(self, record_id: int, *, for_update: bool = False) -> Optional[LeaveRecord]:
        self.calls.append("get_for_update" if for_update else "get")
        return self._find(record_id)

    async def find_emp_id(self, record_id: int) -> Optional[str]:
        self.calls.append("find_emp_id")
        record = self._find(record_id)
        return record.emp_id if record is not None else None

    async def query(self, emp_id=None, status=None, *, for_update=False) -> List[LeaveRecord]:
        self.calls.append("query_for_update" if for_update else "query")
        rows = [
            r
            for r in self.records
            if (emp_id is None or r.emp_id == emp_id)
            and (status is None or r.status == status)
        ]
        return sorted(rows, key=lambda r: (r.created_at, r.id), reverse=True)

    async def update_status(self, record_id: int, status: str) -> Optional[LeaveRecord]:
        self.calls.append("update_status")
        record = self._find(record_id)
        if record is None:
            return None
        record.status = status
        return record

    @asynccontextmanager
    async def locked(self, emp_id: str):
        lock = self._locks.setdefault(emp_id, asyncio.Lock())
        async with lock:
            self.calls.append("lock")
            snapshot = [(r, r.status) for r in self.records]
            try:
                # give concurrent callers a chance to interleave
                await asyncio.sleep(0)
                yield
            except BaseException:
                self.records = [r for r, _ in snapshot]
                for record, status in snapshot:
                    record.status = status
                raise

    async def ping(self) -> None:
        self.calls.append("ping")


class BrokenLeaveRepository(InMemoryLeaveRepository):
    async def query(self, emp_id=None, status=None, *, for_update=False):
        raise StoreError("Error fetching leaves")

    async def ping(self) -> None:
        raise StoreError("Error checking database")


class RecordingExchange:
    def __init__(self) -> None:
        self.published = []

    async def publish(self, message, routing_key):
        self.published.append((routing_key, message))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def repository():
    return InMemoryLeaveRepository()


@pytest.fixture
def exchange():
    return RecordingExchange()


@pytest.fixture
def service(repository, exchange):
    return LeaveRequestService(
        repository,
        allocated_leaves=45,
        leave_types=LEAVE_TYPES,
        publisher=LeaveEventPublisher(exchange),
        today=lambda: TODAY,
    )


@pytest.fixture
def make_payload():
    base = {
        "emp_id": "ABC0123",
        "name": "John Doe",
        "email": "john.doe@example.com",
        "leave_type": "casual",
        "from_date": "2025-03-06",
        "to_date": "2025-03-10",
        "from_hour": None,
        "to_hour": None,
        "reason": "Family function",
    }

    def _make(**overrides):
        payload = copy.deepcopy(base)
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'leaves.db'}",
        DB_INIT_MAX_RETRIES=1,
        DB_INIT_RETRY_DELAY_SECONDS=0,
        RABBITMQ_URL=None,
        COMPANY_EMAIL_DOMAIN=None,
        ALLOCATED_LEAVES=45,
        ALLOW_STATUS_OVERWRITE=False,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
