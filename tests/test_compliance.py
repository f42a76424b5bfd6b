from datetime import timedelta

import pytest

from bazaruto.errors import InvalidInputError
from bazaruto.services.compliance import ComplianceService
from bazaruto.utils.timeutil import utcnow


def _codes(check):
    return sorted(v.code for v in check.violations)


def test_established_verified_customer_passes(db, factory, rules_manager):
    customer = factory.customer(created_at=utcnow() - timedelta(days=400))

    check = ComplianceService(db, rules_manager).check_customer(customer.id)

    assert check.violations == []
    assert check.score == 100
    assert check.status == "passed"
    assert check.recommendations == ["No compliance concerns identified"]
    assert check.valid_until - check.checked_at == timedelta(days=365)


def test_unverified_customer_is_graded_by_thresholds(db, factory, rules_manager):
    service = ComplianceService(db, rules_manager)

    new_account = factory.customer()
    check = service.check_customer(new_account.id)
    assert _codes(check) == ["AML_001"]
    assert (check.score, check.status) == (90, "passed")

    unverified = factory.customer(kyc_status="pending", aml_status="pending")
    check = service.check_customer(unverified.id)
    assert _codes(check) == ["AML_001", "AML_003", "KYC_004"]
    assert (check.score, check.status) == (60, "pending")

    rules_manager.update_section("compliance", {"pass_threshold": 95, "warning_threshold": 85})
    assert service.check_customer(new_account.id).status == "warning"

    rules_manager.update_section("compliance", {"kyc_required": False, "aml_screening_required": False})
    assert _codes(service.check_customer(unverified.id)) == ["AML_001"]


def test_customer_without_email_fails(db, factory, rules_manager):
    customer = factory.customer(email="", created_at=utcnow() - timedelta(days=400))

    check = ComplianceService(db, rules_manager).check_customer(customer.id)

    assert _codes(check) == ["DP_001", "KYC_002"]
    assert check.status == "failed"


def test_policy_checks(db, factory, rules_manager):
    service = ComplianceService(db, rules_manager)
    customer = factory.customer()
    product = factory.product()
    now = utcnow()

    assert service.check_policy(factory.policy(customer, product).id).status == "passed"

    lapsed = factory.policy(customer, product, expiration_date=now - timedelta(days=1))
    check = service.check_policy(lapsed.id, now=now)
    assert _codes(check) == ["POL_001"]
    assert check.status == "warning"

    large = factory.policy(customer, product, premium=12_000.0)
    assert _codes(service.check_policy(large.id)) == ["AML_004"]

    free = factory.policy(customer, product, premium=0.0)
    assert service.check_policy(free.id).status == "failed"


def test_claim_checks(db, factory, rules_manager):
    service = ComplianceService(db, rules_manager)
    customer = factory.customer()
    policy = factory.policy(customer, factory.product())
    now = utcnow()

    check = service.check_claim(factory.claim(customer, policy).id, now=now)
    assert check.status == "passed"
    assert check.valid_until == now + timedelta(days=180)

    future = factory.claim(customer, policy, incident_date=now + timedelta(days=2), reported_date=now)
    assert _codes(service.check_claim(future.id, now=now)) == ["CLM_002"]

    late = factory.claim(
        customer, policy, incident_date=now - timedelta(days=400), reported_date=now - timedelta(days=1)
    )
    check = service.check_claim(late.id, now=now)
    assert _codes(check) == ["CLM_003"]
    assert check.score == 90


def test_checks_refuse_when_disabled(db, factory, rules_manager):
    rules_manager.update_section("compliance", {"enabled": False})

    with pytest.raises(InvalidInputError):
        ComplianceService(db, rules_manager).check_customer(factory.customer().id)
