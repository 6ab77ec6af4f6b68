import asyncio
import json
from datetime import date

import pytest

from leave_service.core.events import ROUTING_KEY_STATUS_CHANGED, ROUTING_KEY_SUBMITTED
from leave_service.core.exceptions import ConflictError, NotFoundError, ValidationError
from leave_service.services.leave_service import LeaveRequestService

from conftest import LEAVE_TYPES, TODAY

pytestmark = pytest.mark.anyio


async def test_submit_creates_pending_record(service, repository, make_payload):
    record = await service.submit(make_payload())

    assert record.id == 1
    assert record.status == "Pending"
    assert record.from_date == date(2025, 3, 6)
    assert repository.records == [record]


async def test_submit_rejects_overlap_with_approved_leave(service, repository, make_payload):
    repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5))

    with pytest.raises(ConflictError) as exc_info:
        await service.submit(make_payload(from_date="2025-03-04", to_date="2025-03-10"))

    assert "2025-03-01 to 2025-03-05" in exc_info.value.message
    assert len(repository.records) == 1


async def test_submit_accepts_adjacent_range(service, repository, make_payload):
    repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5))

    record = await service.submit(make_payload(from_date="2025-03-06", to_date="2025-03-10"))

    assert record.status == "Pending"


async def test_pending_leave_does_not_block_submission(service, repository, make_payload):
    repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 10), status="Pending")

    assert await service.submit(make_payload())


async def test_invalid_submission_never_touches_store(service, repository, make_payload):
    with pytest.raises(ValidationError):
        await service.submit(make_payload(emp_id="abc0123"))

    assert repository.calls == []


async def test_transition_approves_pending_record(service, repository, exchange):
    pending = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Pending")

    record = await service.transition(pending.id, "Approved")

    assert record.status == "Approved"
    routing_key, message = exchange.published[-1]
    assert routing_key == ROUTING_KEY_STATUS_CHANGED
    body = json.loads(message.body)
    assert body["leaveId"] == pending.id
    assert body["status"] == "Approved"
    assert body["previousStatus"] == "Pending"


async def test_transition_unknown_id(service):
    with pytest.raises(NotFoundError):
        await service.transition(999, "Approved")


async def test_transition_invalid_status_is_rejected_before_store_access(service, repository):
    with pytest.raises(ValidationError) as exc_info:
        await service.transition(5, "Maybe")

    assert exc_info.value.message == "Invalid status"
    assert repository.calls == []


async def test_transition_to_same_status_is_idempotent(service, repository, exchange):
    record = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Rejected")

    again = await service.transition(record.id, "Rejected")

    assert again.status == "Rejected"
    assert exchange.published == []


async def test_terminal_record_cannot_flip(service, repository):
    record = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Approved")

    with pytest.raises(ConflictError):
        await service.transition(record.id, "Rejected")

    assert record.status == "Approved"


async def test_terminal_record_can_flip_when_overwrite_allowed(repository):
    service = LeaveRequestService(
        repository,
        allocated_leaves=45,
        leave_types=LEAVE_TYPES,
        allow_status_overwrite=True,
        today=lambda: TODAY,
    )
    record = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Approved")

    assert (await service.transition(record.id, "Rejected")).status == "Rejected"


async def test_approving_overlapping_request_is_a_conflict(service, repository):
    repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Approved")
    pending = repository.add("ABC0123", date(2025, 3, 4), date(2025, 3, 8), status="Pending")

    with pytest.raises(ConflictError):
        await service.transition(pending.id, "Approved")

    assert pending.status == "Pending"
    # rejecting it is still possible
    assert (await service.transition(pending.id, "Rejected")).status == "Rejected"


async def test_concurrent_approvals_keep_approved_ranges_disjoint(service, repository):
    first = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Pending")
    second = repository.add("ABC0123", date(2025, 3, 3), date(2025, 3, 7), status="Pending")

    results = await asyncio.gather(
        service.transition(first.id, "Approved"),
        service.transition(second.id, "Approved"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert [r.status for r in repository.records].count("Approved") == 1


async def test_transition_reads_record_only_under_lock(service, repository):
    pending = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 5), status="Pending")

    await service.transition(pending.id, "Approved")

    assert repository.calls == [
        "find_emp_id",
        "lock",
        "get_for_update",
        "query_for_update",
        "update_status",
    ]


async def test_submit_checks_overlap_under_lock(service, repository, make_payload):
    await service.submit(make_payload())

    assert repository.calls == ["lock", "query_for_update", "insert"]


async def test_submit_publishes_event(service, exchange, make_payload):
    record = await service.submit(make_payload())

    routing_key, message = exchange.published[0]
    assert routing_key == ROUTING_KEY_SUBMITTED
    assert message.content_type == "application/json"
    body = json.loads(message.body)
    assert body == {
        "event": "leave.submitted",
        "leaveId": record.id,
        "empId": "ABC0123",
        "leaveType": "casual",
        "fromDate": "2025-03-06",
        "toDate": "2025-03-10",
        "status": "Pending",
        "previousStatus": None,
    }


async def test_list_leaves_newest_first_and_stable(service, repository):
    older = repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 1), status="Pending")
    newer = repository.add("XYZ0001", date(2025, 3, 2), date(2025, 3, 2), status="Pending")
    repository.add("XYZ0001", date(2025, 3, 9), date(2025, 3, 9), status="Approved")

    first = await service.list_leaves("Pending")
    second = await service.list_leaves("Pending")

    assert [r.id for r in first] == [newer.id, older.id]
    assert [r.id for r in first] == [r.id for r in second]
    assert len(await service.list_leaves()) == 3


async def test_list_leaves_rejects_unknown_status(service):
    with pytest.raises(ValidationError):
        await service.list_leaves("Maybe")


async def test_list_employee_leaves(service, repository):
    repository.add("ABC0123", date(2025, 3, 1), date(2025, 3, 1))
    repository.add("XYZ0001", date(2025, 3, 2), date(2025, 3, 2))

    records = await service.list_employee_leaves("ABC0123")

    assert [r.emp_id for r in records] == ["ABC0123"]
    with pytest.raises(ValidationError):
        await service.list_employee_leaves("abc")


async def test_compute_balance(service, repository):
    repository.add("ABC0123", date(2025, 1, 1), date(2025, 1, 3))
    repository.add("ABC0123", date(2025, 2, 1), date(2025, 2, 1))

    balance = await service.compute_balance("ABC0123")

    assert (balance.allocated, balance.used, balance.remaining) == (45, 4, 41)


async def test_compute_balance_validates_emp_id(service, repository):
    with pytest.raises(ValidationError):
        await service.compute_balance("AB01234")
    assert repository.calls == []
