from datetime import timedelta

import pytest

from bazaruto.database.entities import Address
from bazaruto.utils.timeutil import utcnow

SCENARIO_DATES = {"effective_date": "2024-03-15T00:00:00Z", "expiration_date": "2025-03-15T00:00:00Z"}


def _pricing_body(customer, product, **overrides):
    body = dict(
        product_id=product.id,
        user_id=customer.id,
        coverage_amount=100_000,
        payment_frequency="annually",
        **SCENARIO_DATES,
    )
    body.update(overrides)
    return body


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["services"]["database"] == "ok"
    assert body["services"]["redis"] == "disabled"
    assert body["version"] == "1.0.0"


def test_errors_use_a_single_error_key(client):
    missing = client.get("/v1/customers/missing")
    assert missing.status_code == 404
    assert missing.json() == {"error": "customer not found: missing"}

    invalid = client.post("/v1/products", json={"name": "No category"})
    assert invalid.status_code == 400
    assert "category" in invalid.json()["error"]


def test_customer_crud(client):
    created = client.post(
        "/v1/customers",
        json={"email": "Wanjiru@Example.com", "first_name": "Wanjiru", "addresses": [{"country": "KE", "is_primary": True}]},
    )
    assert created.status_code == 201
    customer = created.json()
    assert customer["email"] == "wanjiru@example.com"
    assert customer["addresses"][0]["country"] == "KE"

    duplicate = client.post("/v1/customers", json={"email": "wanjiru@example.com"})
    assert duplicate.status_code == 400

    updated = client.put(f"/v1/customers/{customer['id']}", json={"kyc_status": "verified"})
    assert updated.json()["kyc_status"] == "verified"

    assert client.delete(f"/v1/customers/{customer['id']}").status_code == 204
    assert client.get(f"/v1/customers/{customer['id']}").status_code == 404


def test_list_pagination_headers(client, factory):
    base = utcnow()
    for i in range(3):
        factory.product(name=f"Plan {i}", category="health", created_at=base + timedelta(seconds=i))

    first = client.get("/v1/products", params={"category": "health", "per_page": 2})
    assert first.status_code == 200
    assert [p["name"] for p in first.json()] == ["Plan 0", "Plan 1"]
    assert first.headers["X-Total-Count"] == "3"
    assert 'rel="next"' in first.headers["Link"]
    assert "page=2" in first.headers["Link"]

    last = client.get("/v1/products", params={"category": "health", "per_page": 2, "page": 2})
    assert [p["name"] for p in last.json()] == ["Plan 2"]
    assert 'rel="next"' not in last.headers["Link"]

    capped = client.get("/v1/products", params={"per_page": 500})
    assert "per_page=100" in capped.headers["Link"]
    assert client.get("/v1/products", params={"page": 0}).status_code == 400


def test_pricing_endpoint(client, factory):
    customer = factory.customer()
    product = factory.product(category="auto")

    response = client.post("/v1/pricing", json=_pricing_body(customer, product))

    assert response.status_code == 200
    body = response.json()
    assert body["final_premium"] == pytest.approx(9500.0)
    assert body["breakdown"]["tax_adjustment"] == pytest.approx(8000.0)
    assert [f["factor"] for f in body["factors"]][:2] == ["coverage_amount", "risk_assessment"]

    bad = client.post("/v1/pricing", json=_pricing_body(customer, product, coverage_amount=0))
    assert bad.status_code == 400


def test_quote_updates_are_restricted(client, factory):
    customer = factory.customer()
    product = factory.product()
    quote = client.post("/v1/quotes", json=_pricing_body(customer, product)).json()
    assert quote["status"] == "pending"
    assert quote["final_price"] == pytest.approx(9500.0)

    extra = client.put(f"/v1/quotes/{quote['id']}", json={"final_price": 1})
    assert extra.status_code == 400

    expired = client.put(f"/v1/quotes/{quote['id']}", json={"status": "expired"})
    assert expired.json()["status"] == "expired"

    reopened = client.put(f"/v1/quotes/{quote['id']}", json={"status": "active"})
    assert reopened.status_code == 400
    assert "cannot move from expired to active" in reopened.json()["error"]


def test_policy_from_quote_uses_quoted_premium(client, factory):
    customer = factory.customer()
    product = factory.product()
    quote = client.post("/v1/quotes", json=_pricing_body(customer, product)).json()
    now = utcnow()

    created = client.post(
        "/v1/policies",
        json={
            "product_id": product.id,
            "user_id": customer.id,
            "coverage_amount": 100_000,
            "effective_date": now.isoformat(),
            "expiration_date": (now + timedelta(days=365)).isoformat(),
            "quote_id": quote["id"],
        },
    )

    assert created.status_code == 201
    assert created.json()["premium"] == pytest.approx(9500.0)
    assert client.get(f"/v1/quotes/{quote['id']}").json()["status"] == "used"

    immutable = client.put(f"/v1/policies/{created.json()['id']}", json={"policy_number": "P-OTHER"})
    assert immutable.status_code == 400
    assert "policy_number cannot be changed" in immutable.json()["error"]


def test_overdue_active_policy_reads_as_expired(client, factory, db):
    customer = factory.customer()
    now = utcnow()
    policy = factory.policy(
        customer,
        factory.product(),
        effective_date=now - timedelta(days=400),
        expiration_date=now - timedelta(days=35),
    )

    first = client.get(f"/v1/policies/{policy.id}")
    second = client.get(f"/v1/policies/{policy.id}")

    assert first.json()["status"] == "expired"
    assert second.json()["status"] == "expired"
    assert db.policies.get(policy.id).status == "expired"


def test_policy_renewal_and_cancellation(client, factory, db):
    customer = factory.customer()
    now = utcnow()
    expiring = factory.policy(
        customer,
        factory.product(),
        premium=1000.0,
        effective_date=now - timedelta(days=355),
        expiration_date=now + timedelta(days=10),
    )

    renewal = client.post(f"/v1/policies/{expiring.id}/renew", json={"payment_method": "card"})
    assert renewal.status_code == 200
    assert renewal.json()["status"] == "renewed"
    assert renewal.json()["premium"] == pytest.approx(978.5)
    again = client.post(f"/v1/policies/{expiring.id}/renew", json={"payment_method": "card"})
    assert again.status_code == 400

    effective = now - timedelta(days=91.25)
    running = factory.policy(
        customer,
        factory.product(),
        premium=1200.0,
        effective_date=effective,
        expiration_date=effective + timedelta(days=365),
    )
    cancelled = client.post(f"/v1/policies/{running.id}/cancel", json={"reason": "Moving abroad"})
    assert cancelled.status_code == 200
    assert cancelled.json()["refund_amount"] == pytest.approx(810.0, abs=0.05)
    refund = db.payments.get(cancelled.json()["refund_payment_id"])
    assert refund.amount == pytest.approx(-810.0, abs=0.05)

    status = client.get(f"/v1/policies/{running.id}/status").json()
    assert status["status"] == "cancelled"
    assert status["can_cancel"] is False


def test_claim_processing_denies_claim_outside_coverage(client, factory, db):
    customer = factory.customer()
    now = utcnow()
    policy = factory.policy(
        customer,
        factory.product(),
        status="expired",
        effective_date=now - timedelta(days=400),
        expiration_date=now - timedelta(days=35),
    )
    incident = now - timedelta(days=10)
    claim = factory.claim(
        customer, policy, claim_amount=60_000.0, incident_date=incident, reported_date=incident + timedelta(days=1)
    )

    workflow = client.post(f"/v1/claims/{claim.id}/process")

    assert workflow.status_code == 200
    assert workflow.json()["status"] == "failed"
    assert len(workflow.json()["stages"]) == 7
    denied = client.get(f"/v1/claims/{claim.id}").json()
    assert denied["status"] == "denied"
    assert denied["denial_reason"] == "Incident date is outside the policy coverage period"
    assert client.get(f"/v1/claims/{claim.id}/workflow").json()["id"] == workflow.json()["id"]


def test_claim_submission_rejects_inactive_policy(client, factory):
    customer = factory.customer()
    policy = factory.policy(customer, factory.product(), status="cancelled")

    response = client.post(
        "/v1/claims",
        json={
            "policy_id": policy.id,
            "user_id": customer.id,
            "title": "Windscreen",
            "description": "Cracked by a stone on the highway.",
            "claim_amount": 300,
            "incident_date": (utcnow() - timedelta(days=1)).isoformat(),
        },
    )

    assert response.status_code == 400


def test_declined_payment_is_recorded_as_failed(client, factory):
    customer = factory.customer()
    payment = client.post(
        "/v1/payments", json={"user_id": customer.id, "amount": 25_000, "payment_method": "card"}
    ).json()
    assert payment["status"] == "pending"

    processed = client.post(f"/v1/payments/{payment['id']}/process")

    assert processed.status_code == 500
    assert "payment failed" in processed.json()["error"]
    assert client.get(f"/v1/payments/{payment['id']}").json()["status"] == "failed"

    ok = client.post("/v1/payments", json={"user_id": customer.id, "amount": 120, "payment_method": "card"}).json()
    completed = client.post(f"/v1/payments/{ok['id']}/process").json()
    assert completed["status"] == "completed"
    assert completed["transaction_id"].startswith("txn_")


def test_rules_endpoints(client):
    assert client.get("/v1/rules/version").json()["version"] == "1.0.0"
    assert client.get("/v1/rules/pricing").json()["tax_rate"] == 0.08

    updated = client.put("/v1/rules/pricing", json={"tax_rate": 0.1})
    assert updated.status_code == 200
    assert updated.json()["tax_rate"] == 0.1

    invalid = client.put("/v1/rules/pricing", json={"tax_rate": -1})
    assert invalid.status_code == 400
    assert client.get("/v1/rules/pricing").json()["tax_rate"] == 0.1

    assert client.put("/v1/rules/marketing", json={}).status_code == 400
    assert client.get("/v1/rules/marketing").status_code == 400
    assert set(client.get("/v1/rules").json()) >= {"version", "pricing", "fraud_detection"}


def test_sweeps_and_job_introspection(client, factory):
    customer = factory.customer()
    now = utcnow()
    factory.policy(
        customer, factory.product(), effective_date=now - timedelta(days=370), expiration_date=now - timedelta(days=5)
    )

    unknown = client.post("/v1/jobs/sweeps/bogus")
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "unknown sweep: bogus"}

    swept = client.post("/v1/jobs/sweeps/expired_policies")
    assert swept.json() == {"sweep": "expired_policies", "processed": 1}

    assert client.get("/v1/jobs/dead").json() == []
    assert "notifications" in client.get("/v1/jobs/stats").json()


def test_risk_and_underwriting_endpoints(client, factory):
    customer = factory.customer(addresses=[Address(country="KE", is_primary=True)])
    product = factory.product()

    risk = client.post("/v1/risk", json={"user_id": customer.id, "product_id": product.id, "coverage_amount": 50_000})
    assert risk.status_code == 200
    assert len(risk.json()["assessments"]) == 8

    body = _pricing_body(customer, product, coverage_amount=50_000)
    decision = client.post("/v1/underwriting", json=body)
    assert decision.status_code == 200
    decision_id = decision.json()["id"]
    assert decision.json()["decision"] == "approved"

    assert client.get(f"/v1/underwriting/{decision_id}").json()["id"] == decision_id
    assert [d["id"] for d in client.get("/v1/underwriting", params={"user_id": customer.id}).json()] == [decision_id]
    assert client.get("/v1/underwriting").status_code == 400

    reviewed = client.post(
        f"/v1/underwriting/{decision_id}/review",
        json={"reviewer_id": "underwriter-7", "decision": "conditional", "reason": "Needs inspection"},
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["decision"] == "conditional"
    assert reviewed.json()["metadata"]["original_decision"] == "approved"
    assert client.get("/v1/underwriting/missing").status_code == 404


def test_commission_endpoints(client, factory):
    customer = factory.customer()
    product = factory.product(category="home", partner_id="broker-9")
    policy = factory.policy(customer, product, premium=1000.0)

    created = client.post("/v1/commissions", json={"policy_id": policy.id})
    assert created.status_code == 201
    commission = created.json()
    assert commission["amount"] == pytest.approx(120.0)
    assert commission["partner_id"] == "broker-9"

    paid = client.post(f"/v1/commissions/{commission['id']}/pay")
    assert paid.json()["status"] == "paid"
    assert client.post(f"/v1/commissions/{commission['id']}/pay").status_code == 400

    listed = client.get("/v1/commissions", params={"partner_id": "broker-9"}).json()
    assert [c["id"] for c in listed] == [commission["id"]]
    assert client.get("/v1/commissions").status_code == 400
    assert client.post("/v1/commissions", json={"policy_id": "missing"}).status_code == 404


def test_compliance_endpoints(client, factory):
    customer = factory.customer(kyc_status="pending")

    check = client.post(f"/v1/compliance/customers/{customer.id}")
    assert check.status_code == 200
    assert {v["code"] for v in check.json()["violations"]} == {"AML_001", "KYC_004"}
    assert check.json()["status"] == "warning"

    assert client.post("/v1/compliance/claims/missing").status_code == 404


def test_webhook_endpoints(client):
    assert "webhook_dispatcher" in client.app.state.services.bus.subscriptions()

    created = client.post(
        "/v1/webhooks",
        json={"url": "https://partner.example.com/hooks", "event_types": ["policy.created"], "secret": "s3cret"},
    )
    assert created.status_code == 201
    webhook = created.json()
    assert "secret" not in webhook
    assert webhook["signed"] is True

    assert [w["id"] for w in client.get("/v1/webhooks").json()] == [webhook["id"]]
    assert client.get(f"/v1/webhooks/{webhook['id']}/deliveries").json() == []
    assert client.post("/v1/webhooks", json={"url": "https://x.example.com", "event_types": []}).status_code == 400

    assert client.delete(f"/v1/webhooks/{webhook['id']}").status_code == 204
    assert client.get(f"/v1/webhooks/{webhook['id']}").status_code == 404
