import pytest
from datetime import date, timedelta

from leave_engine.core.exceptions import (
    AlreadyProcessed, NotAuthorizedApprover, RedemptionBoundsError, SelfVerificationNotAllowed,
    ValidationFailure, WorkLogNotFound,
)
from leave_engine.models import CompOffRequest, Holiday, LeaveRequest, WorkLogEntry
from leave_engine.services.approval import ApprovalWorkflow
from leave_engine.services.comp_off import CompOffService, hours_to_days
from leave_engine.services.leave_service import LeaveRequestService
from leave_engine.services.ledger import BalanceLedger
from leave_engine.services.scheduler import run_comp_off_expiry

TODAY = date.today()
LAST_SATURDAY = TODAY - timedelta(days=(TODAY.weekday() - 5) % 7)


def _verified_log(db, org, hours=8.0, work_date=LAST_SATURDAY, today=TODAY):
    service = CompOffService(db)
    log = service.log_work(org.employee.id, work_date, hours, "WEEKEND", today=today)
    return service.verify_work_log(log.id, org.manager.id, approve=True, today=today)


def _codes(exc):
    return [e["code"] for e in exc.value.errors]


@pytest.mark.parametrize("hours, days", [
    (4, 0.0),
    (5, 0.5),
    (7.5, 0.5),
    (8, 1.0),
    (12, 1.0),
    (13, 1.5),
    (16, 2.0),
])
def test_hours_to_days(hours, days):
    assert hours_to_days(hours) == days


def test_log_work_creates_pending_entry(policies, org):
    log = CompOffService(policies).log_work(org.employee.id, LAST_SATURDAY, 6, "weekend", "Release", today=TODAY)
    assert log.status == "PENDING"
    assert log.days_earned == 0.5
    assert log.work_type == "WEEKEND"


def test_log_work_rejects_invalid_entries(policies, org):
    service = CompOffService(policies)
    with pytest.raises(ValidationFailure) as exc:
        service.log_work(org.employee.id, TODAY + timedelta(days=1), 13, "NIGHT_SHIFT", today=TODAY)
    assert {"INVALID_WORK_TYPE", "HOURS_OUT_OF_RANGE", "FUTURE_DATE"} <= set(_codes(exc))

    with pytest.raises(ValidationFailure) as exc:
        service.log_work(org.employee.id, TODAY - timedelta(days=45), 4, "EXTENDED_HOURS", today=TODAY)
    assert {"HOURS_BELOW_MINIMUM", "LOG_TOO_OLD"} <= set(_codes(exc))


def test_weekend_work_must_fall_on_weekend(policies, org):
    friday = LAST_SATURDAY - timedelta(days=1)
    with pytest.raises(ValidationFailure) as exc:
        CompOffService(policies).log_work(org.employee.id, friday, 8, "WEEKEND", today=TODAY)
    assert _codes(exc) == ["NOT_A_WEEKEND"]


def test_holiday_work_requires_declared_holiday(policies, org):
    db = policies
    day = LAST_SATURDAY - timedelta(days=3)
    with pytest.raises(ValidationFailure) as exc:
        CompOffService(db).log_work(org.employee.id, day, 8, "HOLIDAY", today=TODAY)
    assert _codes(exc) == ["NOT_A_HOLIDAY"]

    db.add(Holiday(date=day, name="Founders Day", region="INDIA"))
    db.commit()
    log = CompOffService(db).log_work(org.employee.id, day, 8, "HOLIDAY", today=TODAY)
    assert log.status == "PENDING"


def test_duplicate_log_for_same_date_rejected(policies, org):
    service = CompOffService(policies)
    service.log_work(org.employee.id, LAST_SATURDAY, 8, "WEEKEND", today=TODAY)
    with pytest.raises(ValidationFailure) as exc:
        service.log_work(org.employee.id, LAST_SATURDAY, 6, "WEEKEND", today=TODAY)
    assert _codes(exc) == ["DUPLICATE_LOG"]


def test_verification_credits_balance_and_sets_expiry(policies, org):
    db = policies
    log = _verified_log(db, org)
    assert log.status == "VERIFIED"
    assert log.verified_by == org.manager.id
    assert log.credit_year == TODAY.year
    assert log.expires_on > TODAY
    snap = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert snap.total_entitlement == 1.0


def test_rejected_log_credits_nothing(policies, org):
    db = policies
    service = CompOffService(db)
    log = service.log_work(org.employee.id, LAST_SATURDAY, 8, "WEEKEND", today=TODAY)
    log = service.verify_work_log(log.id, org.manager.id, approve=False, comments="Not approved overtime")
    assert log.status == "REJECTED"
    assert BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year).available == 0


def test_verifier_rules(policies, org, make_employee):
    db = policies
    service = CompOffService(db)
    own = service.log_work(org.manager.id, LAST_SATURDAY, 8, "WEEKEND", today=TODAY)
    with pytest.raises(SelfVerificationNotAllowed):
        service.verify_work_log(own.id, org.manager.id, approve=True)

    log = service.log_work(org.employee.id, LAST_SATURDAY, 8, "WEEKEND", today=TODAY)
    peer = make_employee(reporting_manager_id=org.manager.id)
    with pytest.raises(NotAuthorizedApprover):
        service.verify_work_log(log.id, peer.id, approve=True)

    # HR may verify anyone
    service.verify_work_log(log.id, org.hr.id, approve=True, today=TODAY)
    with pytest.raises(AlreadyProcessed):
        service.verify_work_log(log.id, org.manager.id, approve=True)

    with pytest.raises(WorkLogNotFound):
        service.verify_work_log(9999, org.manager.id, approve=True)


def test_redeeming_more_than_remaining_leaves_log_unchanged(policies, org):
    db = policies
    log = _verified_log(db, org, hours=8)
    start = TODAY + timedelta(days=7)
    service = CompOffService(db)
    service.apply_for_comp_off(org.employee.id, log.id, 5, start, start, today=TODAY)

    log = db.get(WorkLogEntry, log.id)
    before = (log.hours_reserved, log.hours_redeemed, log.status)
    with pytest.raises(RedemptionBoundsError) as exc:
        service.apply_for_comp_off(org.employee.id, log.id, 5, start + timedelta(days=1),
                                   start + timedelta(days=1), today=TODAY)
    assert exc.value.details["remaining_hours"] == 3
    db.rollback()
    log = db.get(WorkLogEntry, log.id)
    assert (log.hours_reserved, log.hours_redeemed, log.status) == before
    assert db.query(CompOffRequest).count() == 1


def test_redemption_hours_must_be_within_policy_bounds(policies, org):
    db = policies
    log = _verified_log(db, org, hours=8)
    start = TODAY + timedelta(days=7)
    with pytest.raises(RedemptionBoundsError):
        CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 4, start, start, today=TODAY)


def test_redemption_date_span_must_match_days(policies, org):
    db = policies
    log = _verified_log(db, org, hours=8)
    start = TODAY + timedelta(days=7)
    with pytest.raises(ValidationFailure) as exc:
        CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 8, start, start + timedelta(days=2),
                                              today=TODAY)
    assert _codes(exc) == ["DATE_SPAN_MISMATCH"]


def test_only_owner_can_redeem(policies, org):
    db = policies
    log = _verified_log(db, org)
    start = TODAY + timedelta(days=7)
    with pytest.raises(WorkLogNotFound):
        CompOffService(db).apply_for_comp_off(org.manager.id, log.id, 8, start, start, today=TODAY)


def test_application_creates_linked_leave_request(policies, org):
    db = policies
    log = _verified_log(db, org)
    start = TODAY + timedelta(days=7)
    comp = CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 5, start, start, today=TODAY)

    request = db.get(LeaveRequest, comp.leave_request_id)
    assert request.leave_type == "COMPENSATORY_OFF"
    assert request.total_days == 0.5
    assert request.is_half_day
    assert len(request.levels) == 3
    log = db.get(WorkLogEntry, log.id)
    assert log.hours_reserved == 5 and log.days_reserved == 0.5


def test_cancelling_pending_redemption_releases_hours(policies, org):
    db = policies
    log = _verified_log(db, org)
    start = TODAY + timedelta(days=7)
    comp = CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 8, start, start, today=TODAY)

    LeaveRequestService(db).cancel_request(comp.leave_request_id, org.employee.id)
    log = db.get(WorkLogEntry, log.id)
    assert log.hours_reserved == 0
    assert log.remaining_hours == 8
    assert db.get(CompOffRequest, comp.id).status == "CANCELLED"


def test_cancelling_approved_redemption_restores_balance(policies, org):
    db = policies
    log = _verified_log(db, org)
    start = TODAY + timedelta(days=7)
    comp = CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 8, start, start, today=TODAY)
    workflow = ApprovalWorkflow(db)
    for approver in (org.manager, org.senior, org.hr):
        workflow.process_approval(comp.leave_request_id, approver.id, "APPROVE")

    LeaveRequestService(db).cancel_request(comp.leave_request_id, org.employee.id)
    snap = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert snap.used == 0 and snap.available == 1.0
    log = db.get(WorkLogEntry, log.id)
    assert log.status == "VERIFIED"
    assert log.hours_redeemed == 0


def test_expiry_lapses_unredeemed_days_once(policies, org):
    db = policies
    log = _verified_log(db, org, hours=8)
    as_of = log.expires_on

    first = run_comp_off_expiry(as_of, db=db)
    assert first.success_count == 1
    log = db.get(WorkLogEntry, log.id)
    assert log.status == "EXPIRED"
    assert log.days_expired == 1.0
    snap = BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year)
    assert snap.available == 0 and snap.forfeited == 1.0

    second = run_comp_off_expiry(as_of, db=db)
    assert second.results == []
    assert BalanceLedger(db).read_snapshot(org.employee.id, "COMPENSATORY_OFF", TODAY.year) == snap


def test_expiry_keeps_reserved_hours_until_decided(policies, org):
    db = policies
    log = _verified_log(db, org, hours=8)
    start = TODAY + timedelta(days=7)
    CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 5, start, start, today=TODAY)

    run_comp_off_expiry(log.expires_on, db=db)
    log = db.get(WorkLogEntry, log.id)
    assert log.status == "VERIFIED"
    assert log.days_expired == 0.5
    assert log.days_reserved == 0.5


def test_expired_log_cannot_be_redeemed(policies, org):
    db = policies
    log = _verified_log(db, org)
    expires_on = log.expires_on
    with pytest.raises(ValidationFailure) as exc:
        CompOffService(db).apply_for_comp_off(org.employee.id, log.id, 8, expires_on + timedelta(days=1),
                                              expires_on + timedelta(days=1), today=expires_on)
    assert _codes(exc) == ["WORK_LOG_EXPIRED"]
