from datetime import date
from typing import Iterable, Optional

from leave_service.models.leave import LeaveStatus


def ranges_overlap(from_date: date, to_date: date, other_from: date, other_to: date) -> bool:
    """양 끝 포함 구간이 하루라도 겹치면 True"""
    return not (other_to < from_date or other_from > to_date)


def find_overlap(
    emp_id: str,
    from_date: date,
    to_date: date,
    records: Iterable,
    exclude_id: Optional[int] = None,
):
    """
    emp_id 의 Approved 휴가 중 [from_date, to_date] 와 겹치는 첫 레코드, 없으면 None.

    Pending / Rejected 는 막지 않는다. exclude_id 는 승인 중인 레코드 자신을 뺀다.
    """
    for record in records:
        if record.emp_id != emp_id:
            continue
        if record.status != LeaveStatus.APPROVED.value:
            continue
        if exclude_id is not None and record.id == exclude_id:
            continue
        if ranges_overlap(from_date, to_date, record.from_date, record.to_date):
            return record
    return None


def has_overlap(emp_id: str, from_date: date, to_date: date, records: Iterable) -> bool:
    return find_overlap(emp_id, from_date, to_date, records) is not None


def overlap_message(record) -> str:
    return (
        "Leave request overlaps with approved leave "
        f"from {record.from_date.isoformat()} to {record.to_date.isoformat()}"
    )
