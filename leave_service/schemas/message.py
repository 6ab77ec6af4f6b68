from datetime import date
from typing import Optional

from pydantic import BaseModel


class LeaveEventMessage(BaseModel):
    """RabbitMQ로 publish 하는 연차 이벤트 본문"""
    event: str  # "leave.submitted" | "leave.status_changed"
    leaveId: int
    empId: str
    leaveType: str
    fromDate: date
    toDate: date
    status: str
    previousStatus: Optional[str] = None
