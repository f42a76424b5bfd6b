from datetime import timedelta

import pytest

from bazaruto.database.entities import Address, WorkflowStage
from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.events import events
from bazaruto.services.claim_workflow import aggregate_status, build_stages
from bazaruto.utils.business_rules import ApprovalRules
from bazaruto.utils.timeutil import utcnow


async def _shutdown(services):
    await services.dispatcher.close(timeout=1)
    await services.bus.close()


def _established_claim(factory, **claim_overrides):
    """Customer and policy old enough that fraud scoring stays low."""
    now = utcnow()
    customer = factory.customer(
        created_at=now - timedelta(days=3 * 365),
        addresses=[Address(country="US", is_primary=True)],
    )
    policy = factory.policy(
        customer,
        factory.product(),
        effective_date=now - timedelta(days=400),
        expiration_date=now + timedelta(days=330),
        created_at=now - timedelta(days=400),
    )
    return factory.claim(customer, policy, **claim_overrides)


def _stage_ids(workflow):
    return [s.stage_id for s in workflow.stages]


@pytest.mark.asyncio
async def test_small_claim_is_approved_and_paid(services, factory, db, collect):
    completed = collect(services.bus, events.CLAIM_WORKFLOW_COMPLETED)
    claim = _established_claim(factory)

    workflow = await services.workflow.process_claim(claim.id)
    await services.dispatcher.join(timeout=2)
    await services.bus.wait_idle(timeout=1)

    assert _stage_ids(workflow) == [
        "initial_review",
        "fraud_detection",
        "policy_validation",
        "damage_assessment",
        "approval_decision",
        "payout_processing",
    ]
    assert workflow.status == "completed"
    assert all(s.result == "approved" for s in workflow.stages)
    assert workflow.stage("fraud_detection").metadata["fraud_score"] < 60
    assert "job_id" in workflow.stage("payout_processing").metadata

    paid = db.claims.get(claim.id)
    assert paid.status == "paid"
    assert paid.paid_amount == pytest.approx(500.0)

    assert [e.aggregate_id for e in completed] == [claim.id]
    assert completed[0].payload["workflow_id"] == workflow.id
    assert services.workflow.get_workflow_status(claim.id).id == workflow.id

    with pytest.raises(InvalidInputError):
        await services.workflow.process_claim(claim.id)
    await _shutdown(services)


@pytest.mark.asyncio
async def test_incident_outside_expired_policy_is_denied(services, factory, db):
    now = utcnow()
    customer = factory.customer()
    policy = factory.policy(
        customer,
        factory.product(),
        status="expired",
        effective_date=now - timedelta(days=400),
        expiration_date=now - timedelta(days=35),
    )
    incident = now - timedelta(days=10)
    claim = factory.claim(
        customer,
        policy,
        claim_amount=60_000.0,
        incident_date=incident,
        reported_date=incident + timedelta(days=1),
    )

    workflow = await services.workflow.process_claim(claim.id)

    assert len(workflow.stages) == 7
    assert "senior_review" in _stage_ids(workflow)
    assert "executive_approval" not in _stage_ids(workflow)
    assert workflow.status == "failed"
    first = workflow.stages[0]
    assert first.status == "failed"
    assert first.result == "declined"
    assert all(s.status == "pending" for s in workflow.stages[1:])

    denied = db.claims.get(claim.id)
    assert denied.status == "denied"
    assert denied.denial_reason == "Incident date is outside the policy coverage period"
    assert denied.resolved_date is not None
    await _shutdown(services)


@pytest.mark.asyncio
async def test_large_claim_is_held_for_review_then_approved(services, factory, db):
    claim = _established_claim(factory, claim_amount=20_000.0)

    workflow = await services.workflow.process_claim(claim.id)

    assert workflow.stage("damage_assessment").result == "requires_review"
    assert workflow.stage("approval_decision").result == "requires_review"
    assert workflow.stage("payout_processing").status == "skipped"
    assert workflow.status == "completed"
    assert db.claims.get(claim.id).status == "under_review"

    updated = await services.workflow.update_workflow_stage(
        claim.id, "approval_decision", "approved", comments="Adjuster report received", assigned_to="adjuster-3"
    )
    await services.dispatcher.join(timeout=2)

    approval = updated.stage("approval_decision")
    assert approval.metadata["manual_override"] is True
    assert approval.assigned_to == "adjuster-3"
    assert updated.stage("payout_processing").result == "approved"
    assert updated.status == "completed"
    assert db.claims.get(claim.id).status == "paid"
    assert db.workflows.get(updated.id).stage("payout_processing").status == "completed"
    await _shutdown(services)


@pytest.mark.asyncio
async def test_manual_decline_denies_claim(services, factory, db):
    claim = _established_claim(factory, claim_amount=20_000.0)
    await services.workflow.process_claim(claim.id)

    workflow = await services.workflow.update_workflow_stage(
        claim.id, "approval_decision", "declined", decision="Pre-existing damage"
    )

    denied = db.claims.get(claim.id)
    assert denied.status == "denied"
    assert denied.denial_reason == "Pre-existing damage"
    assert workflow.stage("payout_processing").status == "skipped"
    await _shutdown(services)


@pytest.mark.asyncio
async def test_stage_override_validation(services, factory):
    claim = _established_claim(factory, claim_amount=20_000.0)
    await services.workflow.process_claim(claim.id)

    with pytest.raises(InvalidInputError):
        await services.workflow.update_workflow_stage(claim.id, "approval_decision", "skipped")
    with pytest.raises(NotFoundError):
        await services.workflow.update_workflow_stage(claim.id, "executive_approval", "approved")
    with pytest.raises(NotFoundError):
        await services.workflow.update_workflow_stage("missing", "approval_decision", "approved")
    await _shutdown(services)


@pytest.mark.asyncio
async def test_disabled_fraud_detection_skips_stage(services, factory, rules_manager):
    rules_manager.update_section("fraud_detection", {"enabled": False})
    claim = _established_claim(factory)

    workflow = await services.workflow.process_claim(claim.id)

    assert workflow.stage("fraud_detection").status == "skipped"
    assert workflow.stage("approval_decision").result == "approved"
    await _shutdown(services)


@pytest.mark.asyncio
async def test_every_run_is_kept(services, factory):
    claim = _established_claim(factory, claim_amount=20_000.0)
    first = await services.workflow.process_claim(claim.id)
    second = await services.workflow.process_claim(claim.id)

    assert [w.id for w in services.workflow.list_workflows(claim.id)] == [first.id, second.id]
    assert services.workflow.get_workflow_status(claim.id).id == second.id
    await _shutdown(services)


def test_stage_table_depends_on_amount(factory):
    customer = factory.customer()
    policy = factory.policy(customer, factory.product())
    rules = ApprovalRules()

    small = build_stages(factory.claim(customer, policy), rules)
    huge = build_stages(factory.claim(customer, policy, claim_amount=150_000.0), rules)

    assert len(small) == 6
    assert [s.stage_id for s in huge][4:6] == ["senior_review", "executive_approval"]


def test_aggregate_status():
    def stages(*statuses):
        return [WorkflowStage(stage_id=str(i), name=str(i), status=s) for i, s in enumerate(statuses)]

    assert aggregate_status(stages("pending", "pending")) == "pending"
    assert aggregate_status(stages("completed", "in_progress")) == "in_progress"
    assert aggregate_status(stages("completed", "failed", "pending")) == "failed"
    assert aggregate_status(stages("completed", "skipped")) == "completed"
    assert aggregate_status(stages("completed", "pending")) == "in_progress"
