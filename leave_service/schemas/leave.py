from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class LeaveCreate(BaseModel):
    """
    POST /api/leaves 요청 바디

    필수 여부와 형식 검증은 validator 규칙 테이블에서 순서대로 처리하므로
    여기서는 모든 필드를 Optional 문자열로 받는다.
    empId / emp_id 둘 다 허용.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    emp_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    leave_type: Optional[str] = None
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    from_hour: Optional[str] = None
    to_hour: Optional[str] = None
    reason: Optional[str] = None


class LeaveStatusUpdate(BaseModel):
    """PUT /api/leaves/{id} 요청 바디"""
    status: Optional[str] = None


class LeaveRecordRead(BaseModel):
    """응답용 스키마"""
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: int
    emp_id: str
    name: str
    email: str
    leave_type: str
    from_date: date
    to_date: date
    from_hour: Optional[time] = None
    to_hour: Optional[time] = None
    reason: str
    status: str
    created_at: datetime


class LeaveBalanceRead(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    emp_id: str
    allocated: int
    used: int
    remaining: int


class ErrorResponse(BaseModel):
    kind: str
    error: str
