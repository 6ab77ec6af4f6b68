import logging
from datetime import date
from typing import Any, Callable, Iterable, List, Mapping, Optional

from leave_service.core.config import Settings
from leave_service.core.events import (
    LeaveEventPublisher,
    ROUTING_KEY_STATUS_CHANGED,
    ROUTING_KEY_SUBMITTED,
)
from leave_service.core.exceptions import ConflictError, NotFoundError
from leave_service.models.leave import LeaveRecord, LeaveStatus
from leave_service.repositories.leave import LeaveRepository
from leave_service.services.balance import LeaveBalance, compute_balance
from leave_service.services.conflicts import find_overlap, overlap_message
from leave_service.services.validation import (
    parse_status,
    parse_status_filter,
    validate_emp_id,
    validate_leave_request,
)

logger = logging.getLogger(__name__)

APPROVED = LeaveStatus.APPROVED.value
PENDING = LeaveStatus.PENDING.value


class LeaveRequestService:
    """
    휴가 신청 / 조회 / 승인 / 잔여일수.

    저장소는 LeaveRepository 로 주입받고, 호출 사이에 상태를 들고 있지 않는다.
    today 는 날짜 범위 규칙을 고정된 날짜로 테스트하려고 주입 가능하게 둔다.
    """

    def __init__(
        self,
        repository: LeaveRepository,
        *,
        allocated_leaves: int,
        leave_types: Iterable[str],
        email_domain: Optional[str] = None,
        allow_status_overwrite: bool = False,
        publisher: Optional[LeaveEventPublisher] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.repository = repository
        self.allocated_leaves = allocated_leaves
        self.leave_types = list(leave_types)
        self.email_domain = email_domain
        self.allow_status_overwrite = allow_status_overwrite
        self.publisher = publisher or LeaveEventPublisher()
        self._today = today

    @classmethod
    def from_settings(
        cls,
        repository: LeaveRepository,
        settings: Settings,
        publisher: Optional[LeaveEventPublisher] = None,
    ) -> "LeaveRequestService":
        return cls(
            repository,
            allocated_leaves=settings.ALLOCATED_LEAVES,
            leave_types=settings.LEAVE_TYPES,
            email_domain=settings.COMPANY_EMAIL_DOMAIN,
            allow_status_overwrite=settings.ALLOW_STATUS_OVERWRITE,
            publisher=publisher,
        )

    async def submit(self, payload: Mapping[str, Any]) -> LeaveRecord:
        """
        검증 -> 해당 직원의 Approved 휴가와 겹치는지 확인 -> Pending 으로 저장.
        겹침 확인과 INSERT 는 같은 직원 잠금 안에서 한다.
        """
        request = validate_leave_request(
            payload,
            today=self._today(),
            allowed_leave_types=self.leave_types,
            email_domain=self.email_domain,
        )

        async with self.repository.locked(request.emp_id):
            approved = await self.repository.query(
                emp_id=request.emp_id, status=APPROVED, for_update=True
            )
            conflict = find_overlap(
                request.emp_id, request.from_date, request.to_date, approved
            )
            if conflict is not None:
                raise ConflictError(overlap_message(conflict))
            record = await self.repository.insert(request.to_record_data())

        logger.info(
            "Leave %s submitted for %s (%s to %s)",
            record.id,
            record.emp_id,
            record.from_date,
            record.to_date,
        )
        await self.publisher.publish(ROUTING_KEY_SUBMITTED, record)
        return record

    async def list_leaves(self, status: Optional[str] = None) -> List[LeaveRecord]:
        return await self.repository.query(status=parse_status_filter(status))

    async def list_employee_leaves(self, emp_id: str) -> List[LeaveRecord]:
        return await self.repository.query(emp_id=validate_emp_id(emp_id))

    async def transition(self, record_id: int, new_status: Optional[str]) -> LeaveRecord:
        """
        Pending -> Approved / Rejected.

        같은 상태로 다시 바꾸면 아무 일도 하지 않는다. 이미 Approved / Rejected 인
        레코드를 반대 상태로 바꾸는 건 allow_status_overwrite 가 아니면 충돌.
        승인할 때는 겹침 검사를 다시 해서 겹치는 두 신청이 함께 승인되지 않게 한다.

        잠금 전에는 소유 직원만 조회하고, 레코드와 Approved 목록은 잠금을 잡은 뒤
        locking read 로 다시 읽는다.
        """
        new_status = parse_status(new_status)

        emp_id = await self.repository.find_emp_id(record_id)
        if emp_id is None:
            raise NotFoundError("Leave not found")

        changed = False
        async with self.repository.locked(emp_id):
            record = await self.repository.get(record_id, for_update=True)
            if record is None:
                raise NotFoundError("Leave not found")

            previous = record.status
            if previous != new_status:
                if previous != PENDING and not self.allow_status_overwrite:
                    raise ConflictError(f"Leave request is already {previous}")

                if new_status == APPROVED:
                    approved = await self.repository.query(
                        emp_id=record.emp_id, status=APPROVED, for_update=True
                    )
                    conflict = find_overlap(
                        record.emp_id,
                        record.from_date,
                        record.to_date,
                        approved,
                        exclude_id=record.id,
                    )
                    if conflict is not None:
                        raise ConflictError(overlap_message(conflict))

                record = await self.repository.update_status(record_id, new_status)
                changed = True

        if changed:
            logger.info("Leave %s: %s -> %s", record.id, previous, new_status)
            await self.publisher.publish(
                ROUTING_KEY_STATUS_CHANGED, record, previous_status=previous
            )
        return record

    async def compute_balance(self, emp_id: str) -> LeaveBalance:
        emp_id = validate_emp_id(emp_id)
        approved = await self.repository.query(emp_id=emp_id, status=APPROVED)
        return compute_balance(emp_id, approved, self.allocated_leaves)

    async def check_health(self) -> None:
        await self.repository.ping()
