from datetime import date, timedelta
from fastapi import status

from leave_engine.services.ledger import BalanceLedger, CreditKind

START = date.today() + timedelta(days=14)


def _headers(employee):
    return {"X-Employee-ID": str(employee.id)}


def _fund(db, employee, days=5, year=START.year):
    BalanceLedger(db).credit(employee.id, "CASUAL_LEAVE", year, days, CreditKind.ACCRUAL)
    db.commit()


def _apply(client, employee, start=START, end=None, leave_type="CASUAL_LEAVE"):
    return client.post(
        "/api/leave/requests",
        headers=_headers(employee),
        json={
            "leave_type": leave_type,
            "start_date": start.isoformat(),
            "end_date": (end or start).isoformat(),
            "reason": "Family event",
        },
    )


def test_submit_auto_approved_request(client, policies, org):
    _fund(policies, org.employee)
    response = _apply(client, org.employee)
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["request"]["status"] == "APPROVED"
    assert data["verdict"]["is_valid"]

    balances = client.get(f"/api/leave/balances/{org.employee.id}", headers=_headers(org.employee),
                          params={"year": START.year}).json()
    assert balances[0]["used"] == 1
    assert balances[0]["available"] == 4


def test_decision_and_chain_view(client, policies, org):
    _fund(policies, org.employee)
    request_id = _apply(client, org.employee, end=START + timedelta(days=1)).json()["request"]["id"]

    chain = client.get(f"/api/leave/requests/{request_id}/approval-chain", headers=_headers(org.employee)).json()
    assert chain["current_level"] == 1
    assert chain["levels"][0]["approver_id"] == org.manager.id

    response = client.post(
        f"/api/leave/requests/{request_id}/decision",
        headers=_headers(org.manager),
        json={"decision": "approve", "comments": "Enjoy"},
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["completed"]
    assert response.json()["request_status"] == "APPROVED"

    fetched = client.get(f"/api/leave/requests/{request_id}", headers=_headers(org.employee)).json()
    assert fetched["status"] == "APPROVED"


def test_policy_violations_use_error_envelope(client, policies, org):
    response = _apply(client, org.employee, end=START + timedelta(days=6))
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    error = body["errors"][0]
    assert error["code"] == "VALIDATION_FAILED"
    codes = {e["code"] for e in error["details"]["errors"]}
    assert {"MAX_CONSECUTIVE_EXCEEDED", "INSUFFICIENT_BALANCE"} <= codes


def test_validate_endpoint_is_a_dry_run(client, policies, org):
    response = client.post(
        "/api/leave/validate",
        headers=_headers(org.employee),
        json={"leave_type": "CASUAL_LEAVE", "start_date": START.isoformat(), "end_date": START.isoformat()},
    )
    assert response.status_code == 200
    assert not response.json()["is_valid"]
    assert client.get("/api/leave/requests", headers=_headers(org.employee),
                      params={"employee_id": org.employee.id}).json() == []


def test_missing_identity_header_is_unauthorized(client, policies):
    response = client.post(
        "/api/leave/requests",
        json={"leave_type": "CASUAL_LEAVE", "start_date": START.isoformat(), "end_date": START.isoformat()},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["success"] is False


def test_read_routes_require_identity(client, policies, org):
    for path in (f"/api/leave/balances/{org.employee.id}", "/api/leave/requests",
                 "/api/leave/requests/1", "/api/leave/requests/1/approval-chain",
                 "/api/leave/approvals/pending"):
        response = client.get(path)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED, path
        assert response.json()["errors"][0]["code"] == "HTTP_401"


def test_unknown_request_is_404(client, policies, org):
    response = client.get("/api/leave/requests/4040", headers=_headers(org.employee))
    assert response.status_code == 404


def test_wrong_approver_is_forbidden(client, policies, org):
    _fund(policies, org.employee)
    request_id = _apply(client, org.employee, end=START + timedelta(days=1)).json()["request"]["id"]
    response = client.post(
        f"/api/leave/requests/{request_id}/decision",
        headers=_headers(org.senior),
        json={"decision": "APPROVE"},
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["errors"][0]["code"] == "NOT_AUTHORIZED_APPROVER"


def test_pending_approvals_follow_the_chain(client, policies, org):
    _fund(policies, org.employee)
    request_id = _apply(client, org.employee, end=START + timedelta(days=1)).json()["request"]["id"]

    inbox = client.get("/api/leave/approvals/pending", headers=_headers(org.manager))
    assert inbox.status_code == status.HTTP_200_OK
    data = inbox.json()
    assert data["total"] == 1
    assert data["comp_off_count"] == 0
    assert data["items"][0]["leave_request_id"] == request_id
    assert data["items"][0]["level"] == 1

    assert client.get("/api/leave/approvals/pending", headers=_headers(org.senior)).json()["total"] == 0

    client.post(f"/api/leave/requests/{request_id}/decision", headers=_headers(org.manager),
                json={"decision": "approve"})
    assert client.get("/api/leave/approvals/pending", headers=_headers(org.manager)).json()["items"] == []


def test_cancel_endpoint(client, policies, org):
    _fund(policies, org.employee)
    request_id = _apply(client, org.employee).json()["request"]["id"]
    response = client.post(f"/api/leave/requests/{request_id}/cancel", headers=_headers(org.employee))
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"


def test_comp_off_flow_over_http(client, policies, org):
    today = date.today()
    saturday = today - timedelta(days=(today.weekday() - 5) % 7)
    logged = client.post(
        "/api/comp-off/work-logs",
        headers=_headers(org.employee),
        json={"work_date": saturday.isoformat(), "hours_worked": 8, "work_type": "WEEKEND"},
    )
    assert logged.status_code == status.HTTP_201_CREATED
    log_id = logged.json()["id"]

    verified = client.post(
        f"/api/comp-off/work-logs/{log_id}/verify",
        headers=_headers(org.manager),
        json={"approve": True},
    )
    assert verified.json()["status"] == "VERIFIED"

    redeem_on = today + timedelta(days=7)
    applied = client.post(
        "/api/comp-off/requests",
        headers=_headers(org.employee),
        json={"work_log_id": log_id, "hours_to_redeem": 8,
              "start_date": redeem_on.isoformat(), "end_date": redeem_on.isoformat()},
    )
    assert applied.status_code == status.HTTP_201_CREATED
    assert applied.json()["days_requested"] == 1.0


def test_admin_trigger_requires_hr(client, policies, org):
    body = {"year": 2024, "month": 3}
    denied = client.post("/api/admin/jobs/monthly-accrual", headers=_headers(org.employee), json=body)
    assert denied.status_code == status.HTTP_403_FORBIDDEN

    response = client.post("/api/admin/jobs/monthly-accrual", headers=_headers(org.hr), json=body)
    assert response.status_code == 200
    data = response.json()
    assert data["success"]
    assert data["metadata"]["triggered_by"] == org.hr.id
    assert data["data"]["failure_count"] == 0
    assert data["data"]["success_count"] == 4


def test_admin_trigger_rejects_bad_month(client, policies, org):
    response = client.post("/api/admin/jobs/monthly-accrual", headers=_headers(org.hr),
                           json={"year": 2024, "month": 13})
    assert response.status_code == 422
