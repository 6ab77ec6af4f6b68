from dataclasses import dataclass
from typing import Iterable

from leave_service.models.leave import LeaveStatus


@dataclass
class LeaveBalance:
    emp_id: str
    allocated: int
    used: int
    remaining: int


def leave_days(record) -> int:
    # 일 단위: 시간 지정 휴가도 하루로 센다
    return (record.to_date - record.from_date).days + 1


def compute_balance(emp_id: str, records: Iterable, allocated: int) -> LeaveBalance:
    """
    allocated - (Approved 일수 합계), 0 밑으로는 내려가지 않는다.
    """
    used = sum(
        leave_days(r)
        for r in records
        if r.emp_id == emp_id and r.status == LeaveStatus.APPROVED.value
    )
    return LeaveBalance(
        emp_id=emp_id,
        allocated=allocated,
        used=used,
        remaining=max(0, allocated - used),
    )
