import pytest
from datetime import date, timedelta

from leave_engine.core.exceptions import (
    AlreadyProcessed, IncompleteApprovalChain, InsufficientBalance, NotAuthorizedApprover,
)
from leave_engine.models import (
    ApprovalLevel, CompOffRequest, LeaveRequest, Notification, WorkLogEntry,
)
from leave_engine.schemas.leave import LeaveCandidate
from leave_engine.services.approval import ApprovalWorkflow
from leave_engine.services.comp_off import CompOffService
from leave_engine.services.leave_service import LeaveRequestService
from leave_engine.services.ledger import BalanceLedger, CreditKind

TODAY = date.today()
LAST_SATURDAY = TODAY - timedelta(days=(TODAY.weekday() - 5) % 7)


def _comp_off_request(db, org, hours=8):
    service = CompOffService(db)
    log = service.log_work(org.employee.id, LAST_SATURDAY, hours, "WEEKEND", today=TODAY)
    service.verify_work_log(log.id, org.manager.id, approve=True, today=TODAY)
    start = TODAY + timedelta(days=7)
    comp = service.apply_for_comp_off(org.employee.id, log.id, hours, start, start, "Rest day", today=TODAY)
    return comp


def _casual_request(db, org, days=2):
    BalanceLedger(db).credit(org.employee.id, "CASUAL_LEAVE", 2024, 5, CreditKind.ACCRUAL)
    db.commit()
    candidate = LeaveCandidate(
        employee_id=org.employee.id, leave_type="CASUAL_LEAVE",
        start_date=date(2024, 12, 10), end_date=date(2024, 12, 9 + days),
    )
    return LeaveRequestService(db).submit_request(candidate, today=date(2024, 12, 1)).request


def _levels(db, request_id):
    return db.query(ApprovalLevel).filter(ApprovalLevel.leave_request_id == request_id).order_by(
        ApprovalLevel.level).all()


def test_build_chain_for_each_leave_type(policies, org):
    workflow = ApprovalWorkflow(policies)
    assert [s.approver_id for s in workflow.build_approval_chain(org.employee.id, "CASUAL_LEAVE")] == [org.manager.id]
    assert [s.approver_id for s in workflow.build_approval_chain(org.employee.id, "COMPENSATORY_OFF")] == [
        org.manager.id, org.senior.id, org.hr.id,
    ]
    lwp = workflow.build_approval_chain(org.employee.id, "LEAVE_WITHOUT_PAY")
    assert [(s.level, s.approver_role) for s in lwp] == [(1, "DIRECT_MANAGER"), (2, "HR")]


def test_missing_skip_level_manager_names_the_role(policies, org):
    with pytest.raises(IncompleteApprovalChain) as exc:
        ApprovalWorkflow(policies).build_approval_chain(org.manager.id, "COMPENSATORY_OFF")
    assert exc.value.details["missing_role"] == "SKIP_LEVEL_MANAGER"


def test_submission_without_manager_persists_nothing(policies, make_employee):
    db = policies
    loner = make_employee()
    BalanceLedger(db).credit(loner.id, "CASUAL_LEAVE", 2024, 5, CreditKind.ACCRUAL)
    db.commit()
    candidate = LeaveCandidate(employee_id=loner.id, leave_type="CASUAL_LEAVE",
                               start_date=date(2024, 12, 10), end_date=date(2024, 12, 11))
    with pytest.raises(IncompleteApprovalChain):
        LeaveRequestService(db).submit_request(candidate, today=date(2024, 12, 1))
    assert db.query(LeaveRequest).count() == 0


def test_rejection_at_first_level_short_circuits(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    before = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)

    result = ApprovalWorkflow(db).process_approval(comp.leave_request_id, org.manager.id, "REJECT", "Busy week")

    assert result.completed
    assert result.overall_status == "REJECTED"
    assert result.request_status == "REJECTED"
    levels = _levels(db, comp.leave_request_id)
    assert [lvl.status for lvl in levels] == ["REJECTED", "PENDING", "PENDING"]
    after = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert after == before
    log = db.get(WorkLogEntry, comp.work_log_id)
    assert log.hours_reserved == 0
    assert db.get(CompOffRequest, comp.id).status == "REJECTED"


def test_full_chain_approval_debits_once(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)

    first = workflow.process_approval(comp.leave_request_id, org.manager.id, "APPROVE")
    assert not first.completed and first.next_level == 2
    second = workflow.process_approval(comp.leave_request_id, org.senior.id, "approve")
    assert not second.completed and second.next_level == 3
    unchanged = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert unchanged.used == 0

    final = workflow.process_approval(comp.leave_request_id, org.hr.id, "APPROVE")
    assert final.completed
    assert final.overall_status == "APPROVED"
    assert db.get(LeaveRequest, comp.leave_request_id).status == "APPROVED"

    snap = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert snap.used == 1.0
    assert snap.available == 0
    log = db.get(WorkLogEntry, comp.work_log_id)
    assert log.status == "CONSUMED"
    assert log.hours_redeemed == 8 and log.hours_reserved == 0


def test_approver_out_of_turn_is_not_authorized(policies, org, make_employee):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)
    with pytest.raises(NotAuthorizedApprover):
        workflow.process_approval(comp.leave_request_id, org.senior.id, "APPROVE")
    stranger = make_employee()
    with pytest.raises(NotAuthorizedApprover):
        workflow.process_approval(comp.leave_request_id, stranger.id, "APPROVE")
    assert [lvl.status for lvl in _levels(db, comp.leave_request_id)] == ["PENDING"] * 3


def test_repeat_decision_is_already_processed(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)
    workflow.process_approval(comp.leave_request_id, org.manager.id, "APPROVE")
    with pytest.raises(AlreadyProcessed):
        workflow.process_approval(comp.leave_request_id, org.manager.id, "APPROVE")


def test_decision_on_rejected_request_is_already_processed(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)
    workflow.process_approval(comp.leave_request_id, org.manager.id, "REJECT")
    with pytest.raises(AlreadyProcessed):
        workflow.process_approval(comp.leave_request_id, org.senior.id, "APPROVE")


def test_losing_a_race_for_a_level_is_already_processed(policies, org):
    db = policies
    request = _casual_request(db, org)
    level = _levels(db, request.id)[0]
    workflow = ApprovalWorkflow(db)
    workflow.process_approval(request.id, org.manager.id, "APPROVE")

    # A second writer that read the level while it was still PENDING
    with pytest.raises(AlreadyProcessed):
        workflow._claim_level(level.id, "REJECTED", "late")
    db.rollback()
    assert _levels(db, request.id)[0].status == "APPROVED"


def test_single_level_approval_debits_request_days(policies, org):
    db = policies
    request = _casual_request(db, org, days=2)
    result = ApprovalWorkflow(db).process_approval(request.id, org.manager.id, "APPROVE")
    assert result.completed and result.request_status == "APPROVED"
    snap = BalanceLedger(db).read_snapshot(org.employee.id, "CASUAL_LEAVE", 2024)
    assert snap.used == 2
    assert snap.available == 3


def test_failed_final_debit_leaves_everything_pending(policies, org):
    db = policies
    request = _casual_request(db, org, days=2)
    BalanceLedger(db).lapse(org.employee.id, "CASUAL_LEAVE", 2024, 5)
    db.commit()

    with pytest.raises(InsufficientBalance):
        ApprovalWorkflow(db).process_approval(request.id, org.manager.id, "APPROVE")

    assert db.get(LeaveRequest, request.id).status == "PENDING"
    assert _levels(db, request.id)[0].status == "PENDING"


def test_chain_view_tracks_current_level(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)
    assert workflow.get_approval_chain(comp.leave_request_id).current_level == 1
    workflow.process_approval(comp.leave_request_id, org.manager.id, "APPROVE")
    view = workflow.get_approval_chain(comp.leave_request_id)
    assert view.current_level == 2
    assert view.overall_status == "PENDING"
    assert [lvl.status for lvl in view.levels] == ["APPROVED", "PENDING", "PENDING"]


def test_next_approver_is_notified(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    ApprovalWorkflow(db).process_approval(comp.leave_request_id, org.manager.id, "APPROVE")
    notes = db.query(Notification).filter(
        Notification.recipient_id == org.senior.id,
        Notification.event == "approval.level_approved",
    ).all()
    assert len(notes) == 1


def test_inbox_lists_only_the_current_level(policies, org):
    db = policies
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)

    assert workflow.pending_for_approver(org.senior.id).items == []
    inbox = workflow.pending_for_approver(org.manager.id)
    assert [item.leave_request_id for item in inbox.items] == [comp.leave_request_id]
    assert inbox.items[0].level == 1
    assert inbox.comp_off_count == 1

    workflow.process_approval(comp.leave_request_id, org.manager.id, "APPROVE")
    assert workflow.pending_for_approver(org.manager.id).total == 0
    senior_inbox = workflow.pending_for_approver(org.senior.id)
    assert senior_inbox.total == 1
    assert senior_inbox.items[0].level == 2
    assert senior_inbox.items[0].approver_role == "SKIP_LEVEL_MANAGER"
    assert senior_inbox.comp_off_count == 1
    assert workflow.pending_for_approver(org.hr.id).total == 0


def test_inbox_counts_comp_off_separately_and_drops_decided_requests(policies, org):
    db = policies
    casual = _casual_request(db, org)
    comp = _comp_off_request(db, org)
    workflow = ApprovalWorkflow(db)

    inbox = workflow.pending_for_approver(org.manager.id)
    assert {item.leave_request_id for item in inbox.items} == {casual.id, comp.leave_request_id}
    assert inbox.total == 2
    assert inbox.comp_off_count == 1

    workflow.process_approval(casual.id, org.manager.id, "REJECT", "Release week")
    inbox = workflow.pending_for_approver(org.manager.id)
    assert [item.leave_type for item in inbox.items] == ["COMPENSATORY_OFF"]
