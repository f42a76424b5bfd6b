"""
Claim processing workflow.

A claim runs through an ordered stage table. Each stage has a handler that
returns an outcome (approved, declined or requires_review, or skipped); the
runner records it on the stage, persists the workflow after every transition
and stops at the first declined or errored stage.

A declined stage denies the claim. ``requires_review`` never blocks: the run
continues and the approval stage leaves the claim ``under_review``. Manual
overrides go through ``update_workflow_stage``; an approved or declined override
resumes the run from the next stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bazaruto.database.entities import (
    Claim,
    ClaimStatus,
    ClaimWorkflow,
    PolicyStatus,
    StageResult,
    StageStatus,
    WorkflowStage,
    WorkflowStatus,
)
from bazaruto.errors import FraudDetectionDisabledError, InvalidInputError, NotFoundError, ServiceError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.jobs.dispatcher import dispatch_safely
from bazaruto.jobs.jobs import NotificationJob, SettleClaimPayoutJob
from bazaruto.utils.business_rules import ApprovalRules
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

INITIAL_REVIEW = "initial_review"
FRAUD_DETECTION = "fraud_detection"
POLICY_VALIDATION = "policy_validation"
DAMAGE_ASSESSMENT = "damage_assessment"
SENIOR_REVIEW = "senior_review"
EXECUTIVE_APPROVAL = "executive_approval"
APPROVAL_DECISION = "approval_decision"
PAYOUT_PROCESSING = "payout_processing"

SENIOR_REVIEW_TEAM = "senior_claims_team"
EXECUTIVE_TEAM = "executive_team"

OVERRIDE_RESULTS = (StageResult.APPROVED.value, StageResult.DECLINED.value, StageResult.REQUIRES_REVIEW.value)


@dataclass
class StageOutcome:
    result: str = StageResult.APPROVED.value
    decision: str = ""
    comments: str = ""
    auto_approved: bool = False
    skipped: bool = False
    assigned_to: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Run:
    workflow: ClaimWorkflow
    rules: ApprovalRules
    timeout_hours: int


@dataclass(frozen=True)
class StageSpec:
    stage_id: str
    name: str
    include: Callable[[Claim, ApprovalRules], bool]


def _always(claim: Claim, rules: ApprovalRules) -> bool:
    return True


STAGES: List[StageSpec] = [
    StageSpec(INITIAL_REVIEW, "Initial Review", _always),
    StageSpec(FRAUD_DETECTION, "Fraud Detection", _always),
    StageSpec(POLICY_VALIDATION, "Policy Validation", _always),
    StageSpec(DAMAGE_ASSESSMENT, "Damage Assessment", _always),
    StageSpec(SENIOR_REVIEW, "Senior Review", lambda c, r: c.claim_amount > r.senior_review_threshold),
    StageSpec(EXECUTIVE_APPROVAL, "Executive Approval", lambda c, r: c.claim_amount > r.executive_approval_threshold),
    StageSpec(APPROVAL_DECISION, "Approval Decision", _always),
    StageSpec(PAYOUT_PROCESSING, "Payout Processing", _always),
]


def build_stages(claim: Claim, rules: ApprovalRules) -> List[WorkflowStage]:
    return [WorkflowStage(stage_id=s.stage_id, name=s.name) for s in STAGES if s.include(claim, rules)]


def aggregate_status(stages: List[WorkflowStage]) -> str:
    if any(s.status == StageStatus.FAILED for s in stages):
        return WorkflowStatus.FAILED.value
    if any(s.status == StageStatus.IN_PROGRESS for s in stages):
        return WorkflowStatus.IN_PROGRESS.value
    if stages and stages[-1].status in (StageStatus.COMPLETED, StageStatus.SKIPPED):
        return WorkflowStatus.COMPLETED.value
    if all(s.status == StageStatus.PENDING for s in stages):
        return WorkflowStatus.PENDING.value
    return WorkflowStatus.IN_PROGRESS.value


class ClaimWorkflowService:
    def __init__(self, db, fraud, rules_manager, bus=None, dispatcher=None) -> None:
        self._claims = db.claims
        self._policies = db.policies
        self._workflows = db.workflows
        self._fraud = fraud
        self._rules = rules_manager
        self._bus = bus
        self._dispatcher = dispatcher
        self._handlers: Dict[str, Callable[[_Run], Awaitable[StageOutcome]]] = {
            INITIAL_REVIEW: self._initial_review,
            FRAUD_DETECTION: self._fraud_detection,
            POLICY_VALIDATION: self._policy_validation,
            DAMAGE_ASSESSMENT: self._damage_assessment,
            SENIOR_REVIEW: self._senior_review,
            EXECUTIVE_APPROVAL: self._executive_approval,
            APPROVAL_DECISION: self._approval_decision,
            PAYOUT_PROCESSING: self._payout_processing,
        }

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def process_claim(self, claim_id: str) -> ClaimWorkflow:
        claim = self._claims.get(claim_id)
        if claim.status in (ClaimStatus.PAID, ClaimStatus.DENIED):
            raise InvalidInputError(f"claim {claim.claim_number} is already {claim.status}")

        config = self._rules.get_config().claim_processing
        workflow = ClaimWorkflow(claim_id=claim.id, stages=build_stages(claim, config.approval_rules))
        self._workflows.save(workflow)
        if claim.status == ClaimStatus.SUBMITTED:
            claim.status = ClaimStatus.UNDER_REVIEW.value
            claim.updated_at = utcnow()
            self._claims.update(claim)

        logger.info(
            "Processing claim %s through %d stages",
            claim.claim_number,
            len(workflow.stages),
        )
        run = _Run(workflow=workflow, rules=config.approval_rules, timeout_hours=config.workflow_timeout_hours)
        await self._run_from(run, 0)
        return workflow

    def get_workflow_status(self, claim_id: str) -> ClaimWorkflow:
        return self._workflows.get_latest_for_claim(claim_id)

    def list_workflows(self, claim_id: str) -> List[ClaimWorkflow]:
        return self._workflows.list_for_claim(claim_id)

    async def update_workflow_stage(
        self,
        claim_id: str,
        stage_id: str,
        result: str,
        decision: str = "",
        comments: str = "",
        assigned_to: Optional[str] = None,
    ) -> ClaimWorkflow:
        """Record a manual decision on a stage of the claim's latest workflow."""
        if result not in OVERRIDE_RESULTS:
            raise InvalidInputError(f"invalid stage result: {result!r}")
        workflow = self._workflows.get_latest_for_claim(claim_id)
        index = workflow.stage_index(stage_id)
        if index < 0:
            raise NotFoundError.for_entity("workflow stage", stage_id)

        now = utcnow()
        stage = workflow.stages[index]
        stage.status = StageStatus.COMPLETED.value
        stage.result = result
        stage.decision = decision or f"Manual override: {result}"
        stage.comments = comments
        stage.assigned_to = assigned_to or stage.assigned_to
        stage.auto_approved = False
        stage.started_at = stage.started_at or now
        stage.completed_at = now
        stage.metadata["manual_override"] = True
        stage.metadata["overridden_at"] = now.isoformat()
        logger.info("Manual override on claim %s stage %s: %s", claim_id, stage_id, result)

        if result == StageResult.REQUIRES_REVIEW:
            workflow.status = aggregate_status(workflow.stages)
            self._workflows.save(workflow)
            return workflow

        if stage_id == APPROVAL_DECISION:
            if result == StageResult.APPROVED:
                self._set_claim_status(claim_id, ClaimStatus.APPROVED.value)
            else:
                self._deny(claim_id, stage.decision)

        for later in workflow.stages[index + 1 :]:
            if not later.metadata.get("manual_override"):
                _reset(later)

        config = self._rules.get_config().claim_processing
        run = _Run(workflow=workflow, rules=config.approval_rules, timeout_hours=config.workflow_timeout_hours)
        await self._run_from(run, index + 1)
        return workflow

    # ------------------------------------------------------------------ #
    # Runner
    # ------------------------------------------------------------------ #
    async def _run_from(self, run: _Run, start: int) -> None:
        workflow = run.workflow
        workflow.status = WorkflowStatus.IN_PROGRESS.value
        workflow.completed_at = None
        self._workflows.save(workflow)

        for stage in workflow.stages[start:]:
            if stage.metadata.get("manual_override"):
                continue
            workflow.current_stage = stage.stage_id
            stage.status = StageStatus.IN_PROGRESS.value
            stage.started_at = utcnow()
            self._workflows.save(workflow)

            try:
                outcome = await self._handlers[stage.stage_id](run)
            except ServiceError as e:
                stage.status = StageStatus.FAILED.value
                stage.comments = f"Stage error: {e.message}"
                stage.completed_at = utcnow()
                workflow.status = WorkflowStatus.FAILED.value
                self._workflows.save(workflow)
                logger.warning("Claim %s stage %s errored: %s", workflow.claim_id, stage.stage_id, e.message)
                return

            self._apply(stage, outcome)
            if stage.result == StageResult.DECLINED:
                self._deny(workflow.claim_id, stage.decision)
                workflow.status = WorkflowStatus.FAILED.value
                self._workflows.save(workflow)
                logger.info("Claim %s declined at %s: %s", workflow.claim_id, stage.stage_id, stage.decision)
                return
            self._workflows.save(workflow)

        workflow.status = aggregate_status(workflow.stages)
        if workflow.status == WorkflowStatus.COMPLETED:
            workflow.completed_at = utcnow()
        self._workflows.save(workflow)
        claim = self._claims.get(workflow.claim_id)
        logger.info("Claim %s workflow %s: %s", claim.claim_number, workflow.id, workflow.status)

        if workflow.status == WorkflowStatus.COMPLETED:
            await publish_safely(
                self._bus,
                events.new_event(
                    events.CLAIM_WORKFLOW_COMPLETED,
                    claim.id,
                    workflow_id=workflow.id,
                    claim_number=claim.claim_number,
                    claim_status=claim.status,
                    stages=[s.stage_id for s in workflow.stages],
                ),
            )

    @staticmethod
    def _apply(stage: WorkflowStage, outcome: StageOutcome) -> None:
        stage.completed_at = utcnow()
        stage.decision = outcome.decision
        stage.comments = outcome.comments
        stage.auto_approved = outcome.auto_approved
        stage.assigned_to = outcome.assigned_to
        stage.metadata.update(outcome.metadata)
        if outcome.skipped:
            stage.status = StageStatus.SKIPPED.value
            stage.result = StageResult.NONE.value
        elif outcome.result == StageResult.DECLINED:
            stage.status = StageStatus.FAILED.value
            stage.result = outcome.result
        else:
            stage.status = StageStatus.COMPLETED.value
            stage.result = outcome.result

    def _deny(self, claim_id: str, reason: str) -> None:
        claim = self._claims.get(claim_id)
        claim.status = ClaimStatus.DENIED.value
        claim.denial_reason = reason
        claim.resolved_date = utcnow()
        claim.updated_at = claim.resolved_date
        self._claims.update(claim)

    def _set_claim_status(self, claim_id: str, status: str) -> Claim:
        claim = self._claims.get(claim_id)
        claim.status = status
        if status != ClaimStatus.DENIED:
            claim.denial_reason = None
            claim.resolved_date = None
        claim.updated_at = utcnow()
        return self._claims.update(claim)

    # ------------------------------------------------------------------ #
    # Stage handlers
    # ------------------------------------------------------------------ #
    async def _initial_review(self, run: _Run) -> StageOutcome:
        claim = self._claims.get(run.workflow.claim_id)
        problems = []
        if not (claim.title or "").strip():
            problems.append("missing title")
        if not (claim.description or "").strip():
            problems.append("missing description")
        if claim.claim_amount <= 0:
            problems.append("claim amount must be positive")
        if problems:
            return StageOutcome(StageResult.DECLINED.value, "Claim rejected: " + ", ".join(problems))

        policy = self._policies.get(claim.policy_id)
        if not policy.covers(claim.incident_date):
            return StageOutcome(
                StageResult.DECLINED.value,
                "Incident date is outside the policy coverage period",
                comments=f"Policy period {policy.effective_date.date()} to {policy.expiration_date.date()}",
            )
        return StageOutcome(StageResult.APPROVED.value, "Initial review passed", auto_approved=True)

    async def _fraud_detection(self, run: _Run) -> StageOutcome:
        try:
            score = await self._fraud.analyze_claim(run.workflow.claim_id)
        except FraudDetectionDisabledError:
            return StageOutcome(skipped=True, decision="Fraud detection is disabled")

        metadata = {
            "fraud_score": round(score.score, 2),
            "risk_level": score.risk_level,
            "requires_review": score.requires_review,
        }
        comments = "; ".join(score.recommendations)
        if score.score >= run.rules.fraud_decline_score:
            return StageOutcome(
                StageResult.DECLINED.value,
                f"High fraud risk (score {score.score:.1f})",
                comments=comments,
                metadata=metadata,
            )
        if score.score >= run.rules.fraud_review_score:
            return StageOutcome(
                StageResult.REQUIRES_REVIEW.value,
                f"Elevated fraud risk (score {score.score:.1f}); manual review required",
                comments=comments,
                metadata=metadata,
            )
        return StageOutcome(
            StageResult.APPROVED.value,
            f"Low fraud risk (score {score.score:.1f})",
            comments=comments,
            auto_approved=True,
            metadata=metadata,
        )

    async def _policy_validation(self, run: _Run) -> StageOutcome:
        claim = self._claims.get(run.workflow.claim_id)
        policy = self._policies.get(claim.policy_id)
        problems = []
        if policy.status != PolicyStatus.ACTIVE:
            problems.append(f"policy is {policy.status}")
        if claim.claim_amount > policy.coverage_amount:
            problems.append("claim amount exceeds coverage")
        if policy.user_id != claim.user_id:
            problems.append("claimant does not own the policy")
        if problems:
            return StageOutcome(StageResult.DECLINED.value, "Policy validation failed: " + ", ".join(problems))
        return StageOutcome(StageResult.APPROVED.value, "Policy is valid for this claim", auto_approved=True)

    async def _damage_assessment(self, run: _Run) -> StageOutcome:
        claim = self._claims.get(run.workflow.claim_id)
        if claim.claim_amount > run.rules.auto_approve_max_amount:
            return StageOutcome(
                StageResult.REQUIRES_REVIEW.value,
                "Claim amount requires adjuster assessment",
                metadata={"due_by": self._due_by(run)},
            )
        docs = len(claim.documents)
        if docs < run.rules.min_supporting_documents:
            return StageOutcome(
                StageResult.REQUIRES_REVIEW.value,
                f"Insufficient supporting documents ({docs}/{run.rules.min_supporting_documents})",
            )
        return StageOutcome(StageResult.APPROVED.value, "Damage assessment auto-approved", auto_approved=True)

    async def _senior_review(self, run: _Run) -> StageOutcome:
        return await self._escalate(run, SENIOR_REVIEW_TEAM, "Senior review required")

    async def _executive_approval(self, run: _Run) -> StageOutcome:
        return await self._escalate(run, EXECUTIVE_TEAM, "Executive approval required")

    async def _escalate(self, run: _Run, team: str, decision: str) -> StageOutcome:
        claim = self._claims.get(run.workflow.claim_id)
        due_by = self._due_by(run)
        await dispatch_safely(
            self._dispatcher,
            NotificationJob(
                recipient_id=team,
                notification_type="claim_review_required",
                subject=f"{decision}: claim {claim.claim_number}",
                message=f"Claim {claim.claim_number} for {claim.claim_amount:.2f} {claim.currency} needs review by {due_by}",
                priority="high",
                data={"claim_id": claim.id, "workflow_id": run.workflow.id, "due_by": due_by},
            ),
        )
        return StageOutcome(
            StageResult.REQUIRES_REVIEW.value,
            decision,
            assigned_to=team,
            metadata={"due_by": due_by},
        )

    async def _approval_decision(self, run: _Run) -> StageOutcome:
        prior = [
            s
            for s in run.workflow.stages
            if s.stage_id not in (APPROVAL_DECISION, PAYOUT_PROCESSING) and s.status != StageStatus.SKIPPED
        ]
        declined = [s for s in prior if s.result == StageResult.DECLINED]
        if declined:
            return StageOutcome(StageResult.DECLINED.value, declined[0].decision or "Claim declined")

        review = [s.stage_id for s in prior if s.result == StageResult.REQUIRES_REVIEW]
        if review:
            self._set_claim_status(run.workflow.claim_id, ClaimStatus.UNDER_REVIEW.value)
            return StageOutcome(
                StageResult.REQUIRES_REVIEW.value,
                "Claim held for manual review",
                comments="Pending: " + ", ".join(review),
            )

        self._set_claim_status(run.workflow.claim_id, ClaimStatus.APPROVED.value)
        return StageOutcome(StageResult.APPROVED.value, "Claim approved", auto_approved=True)

    async def _payout_processing(self, run: _Run) -> StageOutcome:
        approval = run.workflow.stage(APPROVAL_DECISION)
        if approval is None or approval.result != StageResult.APPROVED:
            return StageOutcome(skipped=True, decision="Claim not approved for payout")

        claim = self._claims.get(run.workflow.claim_id)
        job_id = await dispatch_safely(
            self._dispatcher, SettleClaimPayoutJob(self._claims, claim.id, claim.claim_amount)
        )
        if job_id is None:
            return StageOutcome(
                StageResult.REQUIRES_REVIEW.value,
                "Payout could not be scheduled",
                comments="Payout job dispatch failed; settle manually",
            )
        return StageOutcome(
            StageResult.APPROVED.value,
            f"Payout of {claim.claim_amount:.2f} {claim.currency} scheduled",
            auto_approved=True,
            metadata={"job_id": job_id},
        )

    @staticmethod
    def _due_by(run: _Run) -> str:
        return (utcnow() + timedelta(hours=run.timeout_hours)).isoformat()


def _reset(stage: WorkflowStage) -> None:
    stage.status = StageStatus.PENDING.value
    stage.result = StageResult.NONE.value
    stage.decision = ""
    stage.comments = ""
    stage.assigned_to = None
    stage.auto_approved = False
    stage.started_at = None
    stage.completed_at = None
    stage.metadata = {}
