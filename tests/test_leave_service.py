import pytest
from datetime import date

from leave_engine.core.exceptions import AlreadyProcessed, NotAuthorizedApprover, ValidationFailure
from leave_engine.models import ApprovalLevel, LeaveRequest, Notification
from leave_engine.schemas.leave import LeaveCandidate
from leave_engine.services.approval import ApprovalWorkflow
from leave_engine.services.leave_service import LeaveRequestService
from leave_engine.services.ledger import BalanceLedger, CreditKind

TODAY = date(2024, 12, 1)


@pytest.fixture
def funded(policies, org):
    """Employee with 5 casual days in 2024."""
    BalanceLedger(policies).credit(org.employee.id, "CASUAL_LEAVE", 2024, 5, CreditKind.ACCRUAL)
    policies.commit()
    return policies


def _submit(db, org, start, end, leave_type="CASUAL_LEAVE", **kw):
    candidate = LeaveCandidate(employee_id=org.employee.id, leave_type=leave_type,
                               start_date=start, end_date=end, **kw)
    return LeaveRequestService(db).submit_request(candidate, today=TODAY)


def _snapshot(db, org, year=2024):
    return BalanceLedger(db).read_snapshot(org.employee.id, "CASUAL_LEAVE", year)


def test_short_request_is_auto_approved_and_debited(funded, org):
    result = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10))
    assert result.request.status == "APPROVED"
    assert result.request.auto_approved
    assert result.verdict.auto_approval_eligible
    assert _snapshot(funded, org).used == 1
    assert funded.query(ApprovalLevel).count() == 0


def test_longer_request_waits_for_manager(funded, org):
    result = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 11))
    assert result.request.status == "PENDING"
    levels = funded.query(ApprovalLevel).filter(ApprovalLevel.leave_request_id == result.request.id).all()
    assert [(lvl.level, lvl.approver_id) for lvl in levels] == [(1, org.manager.id)]
    assert _snapshot(funded, org).used == 0


def test_failed_validation_persists_nothing(funded, org):
    with pytest.raises(ValidationFailure) as exc:
        _submit(funded, org, date(2024, 12, 9), date(2024, 12, 16))
    codes = {e["code"] for e in exc.value.errors}
    assert {"MAX_CONSECUTIVE_EXCEEDED", "INSUFFICIENT_BALANCE"} <= codes
    assert funded.query(LeaveRequest).count() == 0


def test_comp_off_cannot_be_submitted_directly(funded, org):
    with pytest.raises(ValidationFailure) as exc:
        _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10), leave_type="compensatory_off")
    assert exc.value.errors[0]["code"] == "USE_COMP_OFF_APPLICATION"


def test_cancelling_approved_request_restores_available(funded, org):
    request = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10)).request
    assert _snapshot(funded, org).available == 4

    cancelled = LeaveRequestService(funded).cancel_request(request.id, org.employee.id)
    assert cancelled.status == "CANCELLED"
    snap = _snapshot(funded, org)
    assert snap.available == 5 and snap.used == 0


def test_cancelling_pending_request_notifies_approver(funded, org):
    request = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 11)).request
    LeaveRequestService(funded).cancel_request(request.id, org.employee.id)
    assert _snapshot(funded, org).available == 5
    assert funded.query(Notification).filter(
        Notification.recipient_id == org.manager.id,
        Notification.event == "leave.cancelled",
    ).count() == 1


def test_only_requester_can_cancel(funded, org):
    request = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 11)).request
    with pytest.raises(NotAuthorizedApprover):
        LeaveRequestService(funded).cancel_request(request.id, org.manager.id)


def test_cancelling_twice_is_already_processed(funded, org):
    request = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10)).request
    service = LeaveRequestService(funded)
    service.cancel_request(request.id, org.employee.id)
    with pytest.raises(AlreadyProcessed):
        service.cancel_request(request.id, org.employee.id)
    assert _snapshot(funded, org).available == 5


def test_modifying_approved_request_adjusts_by_delta(funded, org):
    request = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 11)).request
    ApprovalWorkflow(funded).process_approval(request.id, org.manager.id, "APPROVE")
    assert _snapshot(funded, org).used == 2

    service = LeaveRequestService(funded)
    longer = service.modify_request(request.id, org.employee.id, date(2024, 12, 10), date(2024, 12, 12),
                                    today=TODAY)
    assert longer.total_days == 3
    assert longer.status == "APPROVED"
    assert _snapshot(funded, org).used == 3

    shorter = service.modify_request(request.id, org.employee.id, date(2024, 12, 12), date(2024, 12, 12),
                                     today=TODAY)
    assert shorter.total_days == 1
    snap = _snapshot(funded, org)
    assert snap.used == 1 and snap.available == 4


def test_modifying_into_next_year_moves_the_debit(funded, org):
    BalanceLedger(funded).credit(org.employee.id, "CASUAL_LEAVE", 2025, 5, CreditKind.ACCRUAL)
    funded.commit()
    request = _submit(funded, org, date(2024, 12, 30), date(2024, 12, 31)).request
    ApprovalWorkflow(funded).process_approval(request.id, org.manager.id, "APPROVE")

    LeaveRequestService(funded).modify_request(request.id, org.employee.id, date(2025, 1, 2), date(2025, 1, 3),
                                               today=TODAY)
    assert _snapshot(funded, org, 2024).used == 0
    assert _snapshot(funded, org, 2025).used == 2


def test_modify_rejects_overlap_with_other_requests(funded, org):
    first = _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10)).request
    second = _submit(funded, org, date(2024, 12, 16), date(2024, 12, 16)).request
    with pytest.raises(ValidationFailure) as exc:
        LeaveRequestService(funded).modify_request(second.id, org.employee.id, date(2024, 12, 10),
                                                   date(2024, 12, 10), today=TODAY)
    assert "OVERLAPPING_REQUEST" in {e["code"] for e in exc.value.errors}
    funded.rollback()
    assert funded.get(LeaveRequest, first.id).status == "APPROVED"


def test_list_requests_filters_by_status(funded, org):
    _submit(funded, org, date(2024, 12, 10), date(2024, 12, 10))
    _submit(funded, org, date(2024, 12, 16), date(2024, 12, 17))
    service = LeaveRequestService(funded)
    assert len(service.list_requests(org.employee.id)) == 2
    pending = service.list_requests(org.employee.id, "pending")
    assert [r.start_date for r in pending] == [date(2024, 12, 16)]
    assert [b.leave_type for b in service.balances(org.employee.id, 2024)] == ["CASUAL_LEAVE"]
