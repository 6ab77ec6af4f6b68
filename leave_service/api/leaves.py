from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from leave_service.core.deps import get_leave_service
from leave_service.schemas.leave import (
    ErrorResponse,
    LeaveBalanceRead,
    LeaveCreate,
    LeaveRecordRead,
    LeaveStatusUpdate,
)
from leave_service.services.leave_service import LeaveRequestService

router = APIRouter(
    prefix="/api/leaves",
    tags=["leaves"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
)

stats_router = APIRouter(
    prefix="/api/leave-stats",
    tags=["leave-stats"],
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
)


@router.post(
    "",
    response_model=LeaveRecordRead,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
)
async def submit_leave(
    payload: LeaveCreate,
    service: LeaveRequestService = Depends(get_leave_service),
):
    """
    연차 신청.
    검증 규칙을 순서대로 적용하고, 이미 승인된 연차와 겹치면 409.
    생성된 레코드는 항상 Pending.
    """
    return await service.submit(payload.model_dump())


@router.get(
    "",
    response_model=List[LeaveRecordRead],
)
async def list_leaves(
    status_filter: Optional[str] = Query(None, alias="status"),
    service: LeaveRequestService = Depends(get_leave_service),
):
    """
    전체 연차 목록 (최신순). 예: GET /api/leaves?status=Pending
    """
    return await service.list_leaves(status_filter)


@router.get(
    "/{emp_id}",
    response_model=List[LeaveRecordRead],
)
async def list_employee_leaves(
    emp_id: str,
    service: LeaveRequestService = Depends(get_leave_service),
):
    return await service.list_employee_leaves(emp_id)


@router.put(
    "/{leave_id}",
    response_model=LeaveRecordRead,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)
async def update_leave_status(
    leave_id: int,
    payload: LeaveStatusUpdate,
    service: LeaveRequestService = Depends(get_leave_service),
):
    """
    관리자 승인 / 반려. body: {"status": "Approved" | "Rejected"}
    """
    return await service.transition(leave_id, payload.status)


@stats_router.get(
    "/{emp_id}",
    response_model=LeaveBalanceRead,
)
async def get_leave_stats(
    emp_id: str,
    service: LeaveRequestService = Depends(get_leave_service),
):
    """
    할당 일수 / 사용 일수 / 잔여 일수
    """
    return await service.compute_balance(emp_id)
