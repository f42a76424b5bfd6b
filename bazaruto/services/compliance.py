"""
Regulatory compliance checks for customers, policies and claims.

Each check collects violations, scores 100 minus a penalty per violation and
grades the score against the ``compliance`` rules thresholds.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bazaruto.errors import InvalidInputError
from bazaruto.utils.business_rules import ComplianceRules
from bazaruto.utils.timeutil import ensure_aware, utcnow

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES = {"critical": 25, "high": 15, "medium": 10, "low": 5}

PENDING_THRESHOLD = 50.0
MAX_COVERAGE_AMOUNT = 10_000_000
MAX_NAME_LENGTH = 100
NEW_ACCOUNT_DAYS = 36
MAX_REPORTING_DELAY_DAYS = 365

CUSTOMER_CHECK_VALIDITY = timedelta(days=365)
POLICY_CHECK_VALIDITY = timedelta(days=365)
CLAIM_CHECK_VALIDITY = timedelta(days=180)


@dataclass
class Violation:
    code: str
    severity: str
    description: str
    rule: str
    remediation: str


@dataclass
class ComplianceCheck:
    entity_type: str
    entity_id: str
    check_type: str
    status: str
    score: float
    violations: List[Violation]
    recommendations: List[str]
    checked_at: datetime
    valid_until: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)


def compliance_score(violations: List[Violation]) -> float:
    penalty = sum(SEVERITY_PENALTIES.get(v.severity, 0) for v in violations)
    return max(0.0, 100.0 - penalty)


def compliance_status(score: float, violations: List[Violation], rules: ComplianceRules) -> str:
    if any(v.severity == "critical" for v in violations):
        return "failed"
    if score >= rules.pass_threshold:
        return "passed"
    if score >= rules.warning_threshold:
        return "warning"
    if score >= PENDING_THRESHOLD:
        return "pending"
    return "failed"


def customer_violations(customer, rules: ComplianceRules, now: datetime) -> List[Violation]:
    violations: List[Violation] = []
    full_name = f"{customer.first_name} {customer.last_name}".strip()
    cip = "Customer Identification Program"

    # KYC
    if not full_name:
        violations.append(
            Violation("KYC_001", "high", "Full name is required for KYC compliance", cip, "Provide full legal name")
        )
    if not customer.email:
        violations.append(
            Violation("KYC_002", "critical", "Email address is required for KYC compliance", cip, "Provide valid email address")
        )
    if customer.status != "active":
        violations.append(
            Violation(
                "KYC_003",
                "medium",
                "Customer account is not in active status",
                "Customer Due Diligence",
                "Activate the account or provide justification",
            )
        )
    if rules.kyc_required and customer.kyc_status != "verified":
        violations.append(
            Violation(
                "KYC_004",
                "high",
                "Identity has not been verified",
                cip,
                "Collect one of: " + ", ".join(rules.kyc_document_types),
            )
        )

    # AML
    if now - ensure_aware(customer.created_at) < timedelta(days=NEW_ACCOUNT_DAYS):
        violations.append(
            Violation(
                "AML_001",
                "medium",
                "New account requires enhanced monitoring",
                "Suspicious Activity Reporting",
                "Implement enhanced monitoring procedures",
            )
        )
    if customer.email and len(customer.email) < 5:
        violations.append(
            Violation(
                "AML_002",
                "low",
                "Email address appears suspicious",
                "Customer Due Diligence",
                "Verify email address authenticity",
            )
        )
    if rules.aml_screening_required and customer.aml_status != "cleared":
        violations.append(
            Violation(
                "AML_003",
                "high",
                "AML screening has not cleared",
                "Anti-Money Laundering Screening",
                "Complete AML screening before binding cover",
            )
        )

    # Data protection
    if not customer.email:
        violations.append(
            Violation(
                "DP_001",
                "high",
                "Email address required for data protection compliance",
                "GDPR Article 6",
                "Provide valid email address for consent management",
            )
        )
    if len(full_name) > MAX_NAME_LENGTH:
        violations.append(
            Violation("DP_002", "low", "Full name exceeds reasonable length", "Data Minimization", "Correct the recorded name")
        )
    return violations


def policy_violations(policy, rules: ComplianceRules, now: datetime) -> List[Violation]:
    violations: List[Violation] = []
    if policy.status == "active" and ensure_aware(policy.expiration_date) < now:
        violations.append(
            Violation("POL_001", "high", "Policy has expired", "Policy Validity", "Renew or lapse the policy")
        )
    if policy.coverage_amount > MAX_COVERAGE_AMOUNT:
        violations.append(
            Violation(
                "POL_002",
                "medium",
                "Coverage amount exceeds regulatory limits",
                "Coverage Limits",
                "Reduce coverage or obtain regulatory approval",
            )
        )
    if policy.premium <= 0:
        violations.append(
            Violation("POL_003", "critical", "Premium amount is invalid", "Premium Validation", "Correct the premium")
        )
    if policy.premium >= rules.aml_transaction_threshold:
        violations.append(
            Violation(
                "AML_004",
                "low",
                "Premium is above the AML reporting threshold",
                "Large Transaction Reporting",
                "File a large transaction report",
            )
        )
    return violations


def claim_violations(claim, rules: ComplianceRules, now: datetime) -> List[Violation]:
    violations: List[Violation] = []
    incident = ensure_aware(claim.incident_date)
    if claim.claim_amount <= 0:
        violations.append(
            Violation("CLM_001", "critical", "Claim amount is invalid", "Claim Validation", "Correct the claim amount")
        )
    if incident > now:
        violations.append(
            Violation("CLM_002", "high", "Incident date is in the future", "Claim Validation", "Correct the incident date")
        )
    if ensure_aware(claim.reported_date) - incident > timedelta(days=MAX_REPORTING_DELAY_DAYS):
        violations.append(
            Violation(
                "CLM_003",
                "medium",
                "Excessive delay in claim reporting",
                "Timely Reporting",
                "Document the reason for the late report",
            )
        )
    if claim.claim_amount >= rules.aml_transaction_threshold:
        violations.append(
            Violation(
                "AML_005",
                "low",
                "Claim is above the AML reporting threshold",
                "Large Transaction Reporting",
                "File a large transaction report",
            )
        )
    return violations


def _recommendations(violations: List[Violation]) -> List[str]:
    if not violations:
        return ["No compliance concerns identified"]
    return [v.remediation for v in violations]


class ComplianceService:
    def __init__(self, db, rules_manager) -> None:
        self._db = db
        self._rules = rules_manager

    def _config(self) -> ComplianceRules:
        rules = self._rules.get_config().compliance
        if not rules.enabled:
            raise InvalidInputError("compliance checks are disabled")
        return rules

    def _check(self, entity_type, entity_id, violations, rules, now, validity) -> ComplianceCheck:
        score = compliance_score(violations)
        check = ComplianceCheck(
            entity_type=entity_type,
            entity_id=entity_id,
            check_type=f"{entity_type}_compliance",
            status=compliance_status(score, violations, rules),
            score=score,
            violations=violations,
            recommendations=_recommendations(violations),
            checked_at=now,
            valid_until=now + validity,
            metadata={"rules_version": rules.version, "violation_count": len(violations)},
        )
        logger.info("Compliance check %s on %s %s: %s (%.0f)", check.id, entity_type, entity_id, check.status, score)
        return check

    def check_customer(self, customer_id: str, now: Optional[datetime] = None) -> ComplianceCheck:
        rules = self._config()
        now = now or utcnow()
        customer = self._db.customers.get(customer_id)
        return self._check(
            "customer", customer.id, customer_violations(customer, rules, now), rules, now, CUSTOMER_CHECK_VALIDITY
        )

    def check_policy(self, policy_id: str, now: Optional[datetime] = None) -> ComplianceCheck:
        rules = self._config()
        now = now or utcnow()
        policy = self._db.policies.get(policy_id)
        return self._check(
            "policy", policy.id, policy_violations(policy, rules, now), rules, now, POLICY_CHECK_VALIDITY
        )

    def check_claim(self, claim_id: str, now: Optional[datetime] = None) -> ComplianceCheck:
        rules = self._config()
        now = now or utcnow()
        claim = self._db.claims.get(claim_id)
        return self._check("claim", claim.id, claim_violations(claim, rules, now), rules, now, CLAIM_CHECK_VALIDITY)
