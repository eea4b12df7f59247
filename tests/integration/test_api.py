"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient
from lending_gateway.domain.models import Role


@pytest.fixture
def borrower_headers(headers):
    return headers("borrower_1", Role.BORROWER)


@pytest.fixture
def lender_headers(headers):
    return headers("lender_1", Role.LENDER)


@pytest.fixture
def accepted_offer_id(client: TestClient, borrower_headers, lender_headers) -> str:
    application = client.post(
        "/v1/applications",
        json={"amount": 1000.0, "interest_rate": 12.0, "term_months": 12},
        headers=borrower_headers,
    ).json()
    offer = client.post(
        "/v1/offers",
        json={
            "application_id": application["application_id"],
            "amount": 1000.0,
            "interest_rate": 12.0,
            "term_months": 12,
        },
        headers=lender_headers,
    ).json()
    response = client.post(f"/v1/offers/{offer['offer_id']}/accept", headers=borrower_headers)
    assert response.status_code == 200
    return offer["offer_id"]


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient, borrower_headers):
    """Test Prometheus metrics endpoint"""
    client.post(
        "/v1/applications",
        json={"amount": 100.0, "interest_rate": 5.0, "term_months": 1},
        headers=borrower_headers,
    )
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "lending_applications_created_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"


def test_create_application(client: TestClient, borrower_headers):
    response = client.post(
        "/v1/applications",
        json={"amount": 1000.0, "interest_rate": 12.0, "term_months": 12},
        headers=borrower_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "Open"
    assert data["borrower_id"] == "borrower_1"


def test_missing_identity_is_401(client: TestClient):
    response = client.post("/v1/applications", json={"amount": 1000.0, "interest_rate": 12.0, "term_months": 12})
    assert response.status_code == 401


def test_unverified_borrower_is_403(client: TestClient, headers):
    response = client.post(
        "/v1/applications",
        json={"amount": 1000.0, "interest_rate": 12.0, "term_months": 12},
        headers=headers("user_unverified"),
    )
    assert response.status_code == 403


def test_invalid_body_is_422(client: TestClient, borrower_headers):
    response = client.post(
        "/v1/applications",
        json={"amount": -1, "interest_rate": 12.0, "term_months": 12},
        headers=borrower_headers,
    )
    assert response.status_code == 422


def test_query_without_filters_is_422(client: TestClient, borrower_headers):
    response = client.get("/v1/applications", headers=borrower_headers)
    assert response.status_code == 422
    assert "at least one filter" in response.json()["detail"]


def test_invalid_status_filter_is_422(client: TestClient, borrower_headers):
    response = client.get("/v1/loans?status=defaulted", headers=borrower_headers)
    assert response.status_code == 422


def test_offer_for_unknown_application_is_404(client: TestClient, lender_headers):
    response = client.post(
        "/v1/offers",
        json={"application_id": "missing", "amount": 1.0, "interest_rate": 1.0, "term_months": 1},
        headers=lender_headers,
    )
    assert response.status_code == 404


def test_accept_twice_is_409(client: TestClient, accepted_offer_id, borrower_headers):
    response = client.post(f"/v1/offers/{accepted_offer_id}/accept", headers=borrower_headers)
    assert response.status_code == 409


def test_full_lifecycle(client: TestClient, accepted_offer_id, borrower_headers, lender_headers, network, wallets):
    response = client.post(
        f"/v1/offers/{accepted_offer_id}/disburse",
        headers={**lender_headers, "Idempotency-Key": "api-disb-1"},
    )
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert loan["total_principle"] == 1000.0

    # Replay returns the same loan without a second transfer
    replay = client.post(
        f"/v1/offers/{accepted_offer_id}/disburse",
        headers={**lender_headers, "Idempotency-Key": "api-disb-1"},
    )
    assert replay.json()["loan_id"] == loan["loan_id"]
    assert network.transfer_calls == ["api-disb-1"]

    loans = client.get("/v1/loans?borrower_id=borrower_1&status=active", headers=borrower_headers).json()
    assert [l["loan_id"] for l in loans] == [loan["loan_id"]]

    payable = client.get(f"/v1/loans/{loan['loan_id']}/payable", headers=lender_headers).json()
    assert payable["principal"] == 1000.0
    assert payable["total"] >= 1000.0

    response = client.post(
        f"/v1/loans/{loan['loan_id']}/settle",
        headers={**borrower_headers, "Idempotency-Key": "api-settle-1"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "closed"

    history = client.get(
        f"/v1/transactions?wallet_address={wallets['borrower_1']}",
        headers=borrower_headers,
    ).json()
    assert {t["type"] for t in history} == {"disbursement", "settlement"}


def test_rejected_transfer_is_422(client: TestClient, accepted_offer_id, lender_headers, network, wallets):
    network.balances[wallets["lender_1"]] = 1.0

    response = client.post(f"/v1/offers/{accepted_offer_id}/disburse", headers=lender_headers)

    assert response.status_code == 422
    assert "insufficient funds" in response.json()["detail"]


def test_unknown_transfer_outcome_is_503(client: TestClient, accepted_offer_id, lender_headers, network):
    network.lose_next_response = True

    response = client.post(f"/v1/offers/{accepted_offer_id}/disburse", headers=lender_headers)

    assert response.status_code == 503


def test_settle_by_lender_is_403(client: TestClient, accepted_offer_id, lender_headers):
    loan = client.post(f"/v1/offers/{accepted_offer_id}/disburse", headers=lender_headers).json()

    response = client.post(f"/v1/loans/{loan['loan_id']}/settle", headers=lender_headers)
    assert response.status_code == 403


def test_resume_requires_admin(client: TestClient, borrower_headers, headers):
    assert client.post("/v1/loans/resume", headers=borrower_headers).status_code == 403

    response = client.post("/v1/loans/resume", headers=headers("admin_1", Role.ADMIN))
    assert response.status_code == 200
    assert response.json() == {"disbursements": [], "settlements": [], "transfers": []}


def test_admin_onboards_new_borrower(client: TestClient, headers):
    admin_headers = headers("admin_1", Role.ADMIN)
    address = "0x" + "cd" * 20

    response = client.post("/v1/wallets", json={"user_id": "newcomer", "wallet_address": address}, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["wallet_address"] == address

    response = client.put("/v1/kyc/newcomer", json={"verification_status": "Verified"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["verified_by"] == "admin_1"

    response = client.post(
        "/v1/applications",
        json={"amount": 300.0, "interest_rate": 7.0, "term_months": 3},
        headers=headers("newcomer"),
    )
    assert response.status_code == 201


def test_onboarding_requires_admin(client: TestClient, borrower_headers):
    response = client.post(
        "/v1/wallets",
        json={"user_id": "newcomer", "wallet_address": "0x" + "cd" * 20},
        headers=borrower_headers,
    )
    assert response.status_code == 403

    response = client.put("/v1/kyc/borrower_1", json={"verification_status": "Verified"}, headers=borrower_headers)
    assert response.status_code == 403


def test_malformed_wallet_and_kyc_requests_are_422(client: TestClient, headers):
    admin_headers = headers("admin_1", Role.ADMIN)

    response = client.post("/v1/wallets", json={"user_id": "newcomer", "wallet_address": "0x123"}, headers=admin_headers)
    assert response.status_code == 422

    response = client.put("/v1/kyc/newcomer", json={"verification_status": "Approved"}, headers=admin_headers)
    assert response.status_code == 422


def test_duplicate_wallet_is_409(client: TestClient, headers):
    response = client.post(
        "/v1/wallets",
        json={"user_id": "borrower_1", "wallet_address": "0x" + "cd" * 20},
        headers=headers("admin_1", Role.ADMIN),
    )
    assert response.status_code == 409


def test_wallet_transfer_and_balance(client: TestClient, borrower_headers, lender_headers, network, wallets):
    response = client.post(
        "/v1/wallets/transfers",
        json={"recipient_id": "borrower_1", "amount": 100.0},
        headers={**lender_headers, "Idempotency-Key": "api-transfer-1"},
    )
    assert response.status_code == 201
    assert response.json()["type"] == "transfer"

    replay = client.post(
        "/v1/wallets/transfers",
        json={"recipient_id": "borrower_1", "amount": 100.0},
        headers={**lender_headers, "Idempotency-Key": "api-transfer-1"},
    )
    assert replay.json()["transaction_id"] == response.json()["transaction_id"]
    assert network.transfer_calls == ["api-transfer-1"]

    balance = client.get("/v1/wallets/balance", headers=borrower_headers).json()
    assert balance["wallet_address"] == wallets["borrower_1"]
    assert balance["balance"] == 600.0

    response = client.get(f"/v1/wallets/balance?wallet_address={wallets['lender_1']}", headers=borrower_headers)
    assert response.status_code == 403


def test_rejected_wallet_transfer_is_422(client: TestClient, borrower_headers):
    response = client.post(
        "/v1/wallets/transfers",
        json={"recipient_id": "lender_1", "amount": 5_000.0},
        headers=borrower_headers,
    )
    assert response.status_code == 422
    assert "insufficient funds" in response.json()["detail"]
