from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Time,
)

from leave_service.core.db import Base


class LeaveStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


# 관리자가 지정할 수 있는 최종 상태
TERMINAL_STATUSES = (LeaveStatus.APPROVED.value, LeaveStatus.REJECTED.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LeaveRecord(Base):
    __tablename__ = "leaves"
    __table_args__ = (
        CheckConstraint("to_date >= from_date", name="ck_leaves_date_order"),
        CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected')",
            name="ck_leaves_status",
        ),
        # MySQL 8.0.16+ 에서만 CHECK 안의 정규식이 동작한다
        CheckConstraint(
            "REGEXP_LIKE(emp_id, '^[A-Z]{3}0[0-9]{3}$', 'c')",
            name="ck_leaves_emp_id_format",
        ).ddl_if(dialect="mysql"),
    )

    # SQLite는 INTEGER PRIMARY KEY 여야 autoincrement가 된다
    id = Column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    emp_id = Column(String(7), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(50), nullable=False)
    leave_type = Column(String(20), nullable=False)   # "sick", "casual", ...
    from_date = Column(Date, nullable=False)
    to_date = Column(Date, nullable=False)
    from_hour = Column(Time, nullable=True)
    to_hour = Column(Time, nullable=True)
    reason = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=LeaveStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class EmployeeLock(Base):
    """
    직원별 잠금용 행. 신청/승인 전에 이 행을 먼저 잠근다.

    leaves 에 아직 행이 없는 직원도 잠글 대상이 항상 존재하므로
    InnoDB gap lock 끼리 교착되지 않는다.
    """

    __tablename__ = "leave_locks"

    emp_id = Column(String(7), primary_key=True)
    locked_at = Column(DateTime, nullable=False, default=utcnow)
