from datetime import timedelta

import pytest

from bazaruto.database.entities import ClaimWorkflow, Policy, WorkflowStage
from bazaruto.errors import ConflictError, NotFoundError
from bazaruto.utils.timeutil import utcnow


def test_reads_return_copies(db, factory):
    customer = factory.customer(first_name="Amina")

    fetched = db.customers.get(customer.id)
    fetched.first_name = "Changed"

    assert db.customers.get(customer.id).first_name == "Amina"


def test_soft_delete_hides_rows_from_every_read(db, factory):
    product = factory.product(category="life")
    factory.product(category="life")

    db.products.delete(product.id)

    with pytest.raises(NotFoundError):
        db.products.get(product.id)
    with pytest.raises(NotFoundError):
        db.products.delete(product.id)
    assert db.products.count({"category": "life"}) == 1
    assert product.id not in [p.id for p in db.products.list({"category": "life"})]


def test_unique_secondary_keys(db, factory):
    customer = factory.customer(email="amina@example.com")

    with pytest.raises(ConflictError):
        factory.customer(email="amina@example.com")
    assert db.customers.get_by_number("amina@example.com").id == customer.id
    with pytest.raises(NotFoundError):
        db.customers.get_by_number("nobody@example.com")


def test_deleted_number_can_be_reused(db, factory):
    first = factory.customer(email="reuse@example.com")
    db.customers.delete(first.id)

    second = factory.customer(email="reuse@example.com")

    assert db.customers.get_by_number("reuse@example.com").id == second.id


def test_list_filters_limit_and_offset(db, factory):
    base = utcnow()
    ids = [factory.product(category="auto", created_at=base + timedelta(seconds=i)).id for i in range(5)]
    factory.product(category="home")

    assert db.products.count({"category": "auto"}) == 5
    assert db.products.count() == 6
    assert [p.id for p in db.products.list({"category": "auto"}, limit=2)] == ids[:2]
    assert [p.id for p in db.products.list({"category": "auto"}, limit=2, offset=4)] == ids[4:]
    assert db.products.list({"category": "auto"}, limit=2, offset=10) == []
    assert len(db.products.list({"category": "auto", "status": None})) == 5


def test_update_missing_row_is_not_found(db, factory):
    customer = factory.customer()
    product = factory.product()
    policy = Policy(
        product_id=product.id,
        user_id=customer.id,
        policy_number="P-UNSAVED",
        premium=10.0,
        coverage_amount=100.0,
        effective_date=utcnow(),
        expiration_date=utcnow() + timedelta(days=1),
    )

    with pytest.raises(NotFoundError):
        db.policies.update(policy)


def test_policy_sweep_predicates(db, factory):
    now = utcnow()
    customer = factory.customer()
    product = factory.product()

    expired = factory.policy(customer, product, expiration_date=now - timedelta(days=1), effective_date=now - timedelta(days=366))
    soon = factory.policy(customer, product, expiration_date=now + timedelta(days=10), auto_renew=True)
    later = factory.policy(customer, product, expiration_date=now + timedelta(days=90))
    cancelled = factory.policy(customer, product, expiration_date=now + timedelta(days=5), status="cancelled")
    lapsed = factory.policy(customer, product, status="pending", grace_period_end=now - timedelta(hours=1))
    grace_open = factory.policy(customer, product, status="pending", grace_period_end=now + timedelta(days=3))

    assert [p.id for p in db.policies.list_expired(now)] == [expired.id]
    assert [p.id for p in db.policies.list_expiring_within(now, 30)] == [soon.id]
    assert {p.id for p in db.policies.list_expiring_within(now, 120)} == {soon.id, later.id}
    assert [p.id for p in db.policies.list_grace_period_expired(now)] == [lapsed.id]
    assert grace_open.id not in [p.id for p in db.policies.list_grace_period_expired(now)]
    assert cancelled.id not in [p.id for p in db.policies.list_expiring_within(now, 30)]

    assert [p.id for p in db.policies.list_due_for_auto_renewal(now, 30)] == [soon.id]
    factory.policy(customer, product, status="pending", renewed_from_id=soon.id)
    assert db.policies.has_renewal(soon.id)
    assert db.policies.list_due_for_auto_renewal(now, 30) == []


def test_cancelled_renewal_does_not_count(db, factory):
    customer = factory.customer()
    product = factory.product()
    original = factory.policy(customer, product)
    factory.policy(customer, product, status="cancelled", renewed_from_id=original.id)

    assert not db.policies.has_renewal(original.id)


def test_workflows_are_kept_per_run(db):
    first = ClaimWorkflow(claim_id="claim-1", stages=[WorkflowStage(stage_id="initial_review", name="Initial Review")])
    db.workflows.save(first)
    second = ClaimWorkflow(claim_id="claim-1", status="completed")
    db.workflows.save(second)

    assert [w.id for w in db.workflows.list_for_claim("claim-1")] == [first.id, second.id]
    assert db.workflows.get_latest_for_claim("claim-1").id == second.id
    assert db.workflows.get(first.id).stages[0].stage_id == "initial_review"
    with pytest.raises(NotFoundError):
        db.workflows.get_latest_for_claim("claim-2")
