"""
Policy lifecycle: renewal, cancellation and the scheduled sweeps.

Renewal issues a new ``pending`` policy linked to the old one through
``renewed_from_id`` and tries to collect the renewal premium. Cancellation is
unconditional once eligibility passes; the pro-rated refund is recorded as a
negative payment and a refund failure only downgrades the result status.

The sweeps (expiry, grace period, auto-renewal, reminders) are driven by
``bazaruto.jobs.scheduler.SweepScheduler`` and return the number of policies
they handled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import Payment, Policy, PolicyStatus
from bazaruto.errors import InvalidInputError, NotFoundError, PaymentFailedError, ServiceError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.jobs.dispatcher import dispatch_safely
from bazaruto.jobs.jobs import NotificationJob
from bazaruto.utils.business_rules import PolicyLifecycleRules
from bazaruto.utils.timeutil import days_between, make_number, utcnow, years_between

logger = logging.getLogger(__name__)

RENEWED = "renewed"
PENDING_PAYMENT = "pending_payment"
CANCELLED = "cancelled"
PENDING_REFUND = "pending_refund"


@dataclass
class RenewalOptions:
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    coverage_amount: Optional[float] = None
    payment_frequency: Optional[str] = None
    auto_renew: Optional[bool] = None
    payment_method: Optional[str] = None


@dataclass
class RenewalResult:
    success: bool
    status: str
    renewal_date: datetime
    premium: float
    currency: str
    message: str
    new_policy_id: Optional[str] = None
    payment_id: Optional[str] = None
    grace_period_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CancellationOptions:
    effective_date: Optional[datetime] = None
    reason: Optional[str] = None
    refund_method: Optional[str] = None


@dataclass
class CancellationResult:
    success: bool
    status: str
    cancellation_date: datetime
    effective_date: datetime
    refund_amount: float
    refund_currency: str
    message: str
    refund_payment_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LifecycleStatus:
    policy_id: str
    policy_number: str
    status: str
    effective_date: datetime
    expiration_date: datetime
    days_until_expiry: int
    can_renew: bool
    can_cancel: bool
    auto_renew: bool
    has_renewal: bool
    grace_period_end: Optional[datetime] = None


def add_years(moment: datetime, years: int) -> datetime:
    """Same calendar day ``years`` later; 29 February falls back to the 28th."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def renewal_premium(policy: Policy, coverage_amount: float, payment_frequency: str, rules: PolicyLifecycleRules) -> float:
    renewal = rules.renewal_rules
    ratio = coverage_amount / policy.coverage_amount if policy.coverage_amount else 1.0
    multiplier = renewal.frequency_multipliers.get(payment_frequency, 1.0)
    return round(policy.premium * ratio * (1 + renewal.rate_increase) * multiplier, 2)


def refund_amount(policy: Policy, effective: datetime, fee_rate: float) -> float:
    """Unused share of the premium, less the cancellation fee."""
    term = years_between(policy.effective_date, policy.expiration_date)
    if term <= 0:
        return 0.0
    used = min(max(years_between(policy.effective_date, effective), 0.0), term)
    unused_ratio = max((term - used) / term, 0.0)
    return round(policy.premium * unused_ratio * (1 - fee_rate), 2)


class PolicyLifecycleService:
    def __init__(self, db, policies, payments, rules_manager, bus=None, dispatcher=None) -> None:
        self._db = db
        self._repo = db.policies
        self._policies = policies
        self._payments = payments
        self._rules = rules_manager
        self._bus = bus
        self._dispatcher = dispatcher

    def _lifecycle_rules(self) -> PolicyLifecycleRules:
        return self._rules.get_config().policy_lifecycle

    # ------------------------------------------------------------------ #
    # Eligibility
    # ------------------------------------------------------------------ #
    def can_renew(self, policy: Policy, now: Optional[datetime] = None, rules: Optional[PolicyLifecycleRules] = None) -> bool:
        now = now or utcnow()
        rules = rules or self._lifecycle_rules()
        return (
            policy.status == PolicyStatus.ACTIVE
            and not policy.is_expired(now)
            and days_between(now, policy.expiration_date) <= rules.renewal_rules.advance_renewal_days
            and not self._repo.has_renewal(policy.id)
        )

    @staticmethod
    def can_cancel(policy: Policy) -> bool:
        return policy.status == PolicyStatus.ACTIVE

    def _check_renewable(self, policy: Policy, now: datetime, rules: PolicyLifecycleRules) -> None:
        if policy.is_cancelled():
            raise InvalidInputError(f"policy {policy.policy_number} has been cancelled")
        if policy.status != PolicyStatus.ACTIVE:
            raise InvalidInputError(f"policy {policy.policy_number} is {policy.status}; only active policies can be renewed")
        if policy.is_expired(now):
            raise InvalidInputError(f"policy {policy.policy_number} has expired")
        window = rules.renewal_rules.advance_renewal_days
        if days_between(now, policy.expiration_date) > window:
            raise InvalidInputError(f"policy {policy.policy_number} can only be renewed within {window} days of expiration")
        if self._repo.has_renewal(policy.id):
            raise InvalidInputError(f"policy {policy.policy_number} has already been renewed")

    # ------------------------------------------------------------------ #
    # Renewal
    # ------------------------------------------------------------------ #
    def _resolve_renewal(self, policy: Policy, options: RenewalOptions, rules: PolicyLifecycleRules) -> RenewalOptions:
        effective = options.effective_date or policy.expiration_date
        return RenewalOptions(
            effective_date=effective,
            expiration_date=options.expiration_date or add_years(effective, rules.renewal_rules.renewal_term_years),
            coverage_amount=options.coverage_amount or policy.coverage_amount,
            payment_frequency=options.payment_frequency or policy.payment_frequency,
            auto_renew=policy.auto_renew if options.auto_renew is None else options.auto_renew,
            payment_method=options.payment_method,
        )

    async def renew_policy(
        self, policy_id: str, options: Optional[RenewalOptions] = None, now: Optional[datetime] = None
    ) -> RenewalResult:
        now = now or utcnow()
        rules = self._lifecycle_rules()
        policy = self._policies.get_policy(policy_id, now)
        self._check_renewable(policy, now, rules)
        opts = self._resolve_renewal(policy, options or RenewalOptions(), rules)
        if opts.expiration_date <= opts.effective_date:
            raise InvalidInputError("renewal expiration_date must be after effective_date")

        premium = renewal_premium(policy, opts.coverage_amount, opts.payment_frequency, rules)
        renewed = Policy(
            product_id=policy.product_id,
            user_id=policy.user_id,
            policy_number=make_number("P", now),
            premium=premium,
            coverage_amount=opts.coverage_amount,
            effective_date=opts.effective_date,
            expiration_date=opts.expiration_date,
            currency=policy.currency,
            payment_frequency=opts.payment_frequency,
            status=PolicyStatus.PENDING.value,
            auto_renew=opts.auto_renew,
            renewed_from_id=policy.id,
        )
        renewed = await self._policies.create_policy(renewed)

        result = RenewalResult(
            success=False,
            status=PENDING_PAYMENT,
            renewal_date=now,
            premium=premium,
            currency=renewed.currency,
            message="Renewal created but payment method required",
            new_policy_id=renewed.id,
            metadata={"previous_policy_id": policy.id, "auto_renew": opts.auto_renew},
        )
        if opts.payment_method:
            await self._collect_renewal_payment(renewed, opts.payment_method, result)

        if result.success:
            renewed.status = PolicyStatus.ACTIVE.value
        else:
            renewed.grace_period_end = now + timedelta(days=rules.grace_period_rules.renewal_days)
            result.grace_period_end = renewed.grace_period_end
        self._repo.update(renewed)
        logger.info(
            "Renewed policy %s as %s (%s, %.2f %s)",
            policy.policy_number,
            renewed.policy_number,
            result.status,
            premium,
            renewed.currency,
        )

        await publish_safely(
            self._bus,
            events.new_event(
                events.POLICY_RENEWED,
                policy.id,
                new_policy_id=renewed.id,
                user_id=policy.user_id,
                premium=premium,
                currency=renewed.currency,
                status=result.status,
            ),
        )
        await self._notify(
            renewed,
            "policy_renewal",
            "Policy Renewal Confirmation",
            f"Your policy has been renewed. New policy number: {renewed.policy_number}",
            "normal",
        )
        return result

    async def _collect_renewal_payment(self, renewed: Policy, payment_method: str, result: RenewalResult) -> None:
        try:
            payment = await self._payments.create_payment(
                Payment(
                    user_id=renewed.user_id,
                    policy_id=renewed.id,
                    amount=renewed.premium,
                    currency=renewed.currency,
                    payment_method=payment_method,
                    description=f"Renewal premium for policy {renewed.policy_number}",
                )
            )
            result.payment_id = payment.id
            await self._payments.process_payment(payment.id)
        except PaymentFailedError as e:
            result.message = "Renewal created but payment failed"
            result.metadata["payment_error"] = e.message
            return
        except ServiceError as e:
            logger.warning("Renewal payment for policy %s not collected: %s", renewed.policy_number, e.message)
            result.message = "Renewal created but payment could not be processed"
            result.metadata["payment_error"] = e.message
            return
        result.success = True
        result.status = RENEWED
        result.message = "Policy renewed successfully"

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    async def cancel_policy(
        self, policy_id: str, options: Optional[CancellationOptions] = None, now: Optional[datetime] = None
    ) -> CancellationResult:
        now = now or utcnow()
        policy = self._policies.get_policy(policy_id, now)
        if policy.is_cancelled():
            raise InvalidInputError(f"policy {policy.policy_number} has already been cancelled")
        if not self.can_cancel(policy):
            raise InvalidInputError(f"policy {policy.policy_number} is {policy.status}; only active policies can be cancelled")
        return await self._cancel(policy, options or CancellationOptions(), now, with_refund=True)

    async def _cancel(
        self, policy: Policy, options: CancellationOptions, now: datetime, with_refund: bool
    ) -> CancellationResult:
        rules = self._lifecycle_rules().cancellation_rules
        effective = options.effective_date or now
        reason = options.reason or rules.default_reason
        refund_method = options.refund_method or rules.default_refund_method
        amount = refund_amount(policy, effective, rules.cancellation_fee_rate) if with_refund else 0.0

        policy.status = PolicyStatus.CANCELLED.value
        policy.cancelled_at = now
        policy.cancellation_reason = reason
        policy = self._repo.update(policy)

        result = CancellationResult(
            success=True,
            status=CANCELLED,
            cancellation_date=now,
            effective_date=effective,
            refund_amount=amount,
            refund_currency=policy.currency,
            message="Policy cancelled successfully",
        )
        if amount > 0:
            try:
                refund = await self._payments.record_refund(
                    policy.user_id, policy.id, amount, policy.currency, refund_method, reason
                )
            except ServiceError as e:
                logger.warning("Refund for cancelled policy %s failed: %s", policy.policy_number, e.message)
                result.status = PENDING_REFUND
                result.message = "Policy cancelled but refund processing failed"
                result.metadata["refund_error"] = e.message
            else:
                result.refund_payment_id = refund.id
                result.message = "Policy cancelled and refund processed"
                result.metadata["refund_transaction_id"] = refund.transaction_id

        logger.info(
            "Cancelled policy %s (%s); refund %.2f %s", policy.policy_number, reason, amount, policy.currency
        )
        await publish_safely(
            self._bus,
            events.new_event(
                events.POLICY_CANCELLED,
                policy.id,
                user_id=policy.user_id,
                reason=reason,
                refund_amount=amount,
                currency=policy.currency,
                status=result.status,
            ),
        )
        await self._notify(
            policy,
            "policy_cancellation",
            "Policy Cancellation Confirmation",
            f"Your policy has been cancelled. Refund amount: {amount:.2f} {policy.currency}",
            "normal",
        )
        return result

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #
    def get_policy_status(self, policy_id: str, now: Optional[datetime] = None) -> LifecycleStatus:
        now = now or utcnow()
        policy = self._policies.get_policy(policy_id, now)
        return LifecycleStatus(
            policy_id=policy.id,
            policy_number=policy.policy_number,
            status=policy.status,
            effective_date=policy.effective_date,
            expiration_date=policy.expiration_date,
            days_until_expiry=int(days_between(now, policy.expiration_date)),
            can_renew=self.can_renew(policy, now),
            can_cancel=self.can_cancel(policy),
            auto_renew=policy.auto_renew,
            has_renewal=self._repo.has_renewal(policy.id),
            grace_period_end=policy.grace_period_end,
        )

    def get_upcoming_renewals(self, days_ahead: Optional[int] = None, now: Optional[datetime] = None) -> List[Policy]:
        if days_ahead is None:
            days_ahead = self._lifecycle_rules().reminder_days
        if days_ahead < 0:
            raise InvalidInputError("days_ahead must not be negative")
        return self._repo.list_expiring_within(now or utcnow(), days_ahead)

    # ------------------------------------------------------------------ #
    # Sweeps
    # ------------------------------------------------------------------ #
    async def process_expired_policies(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        processed = 0
        for policy in self._repo.list_expired(now):
            policy.status = PolicyStatus.EXPIRED.value
            try:
                policy = self._repo.update(policy)
            except ServiceError as e:
                logger.error("Failed to expire policy %s: %s", policy.policy_number, e.message)
                continue
            await publish_safely(
                self._bus,
                events.new_event(
                    events.POLICY_EXPIRED,
                    policy.id,
                    user_id=policy.user_id,
                    expiration_date=policy.expiration_date.isoformat(),
                ),
            )
            await self._notify(
                policy,
                "policy_expired",
                "Policy Expired",
                f"Your policy {policy.policy_number} has expired. Please renew to maintain coverage.",
                "high",
            )
            processed += 1
        logger.info("Processed %d expired policies", processed)
        return processed

    async def process_grace_period_expirations(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        processed = 0
        for policy in self._repo.list_grace_period_expired(now):
            # an unpaid renewal never collected a premium to refund
            with_refund = policy.status != PolicyStatus.PENDING
            try:
                await self._cancel(policy, CancellationOptions(reason="Grace period expired"), now, with_refund)
            except ServiceError as e:
                logger.error("Failed to cancel policy %s after grace period: %s", policy.policy_number, e.message)
                continue
            await publish_safely(
                self._bus,
                events.new_event(
                    events.GRACE_PERIOD_EXPIRED,
                    policy.id,
                    user_id=policy.user_id,
                    grace_period_end=policy.grace_period_end.isoformat(),
                ),
            )
            await self._notify(
                policy,
                "grace_period_expired",
                "Policy Cancelled - Grace Period Expired",
                f"Your policy {policy.policy_number} has been cancelled due to an expired grace period.",
                "high",
            )
            processed += 1
        logger.info("Processed %d grace period expirations", processed)
        return processed

    async def process_auto_renewals(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        window = self._lifecycle_rules().auto_renewal_window_days
        processed = 0
        for policy in self._repo.list_due_for_auto_renewal(now, window):
            options = RenewalOptions(auto_renew=True, payment_method=self._default_payment_method(policy.user_id))
            try:
                result = await self.renew_policy(policy.id, options, now)
            except ServiceError as e:
                logger.error("Failed to auto-renew policy %s: %s", policy.policy_number, e.message)
                continue
            if result.success:
                logger.info("Auto-renewed policy %s as %s", policy.id, result.new_policy_id)
            else:
                logger.warning("Auto-renewal of policy %s is %s: %s", policy.id, result.status, result.message)
            processed += 1
        logger.info("Processed %d auto-renewals", processed)
        return processed

    def _default_payment_method(self, user_id: str) -> Optional[str]:
        try:
            return self._db.customers.get(user_id).default_payment_method
        except NotFoundError:
            return None

    async def send_renewal_reminders(self, days_ahead: Optional[int] = None, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        if days_ahead is None:
            days_ahead = self._lifecycle_rules().reminder_days
        sent = 0
        for policy in self.get_upcoming_renewals(days_ahead, now):
            days_left = max(int(days_between(now, policy.expiration_date)), 0)
            await publish_safely(
                self._bus,
                events.new_event(
                    events.RENEWAL_REMINDER,
                    policy.id,
                    user_id=policy.user_id,
                    days_until_expiry=days_left,
                    expiration_date=policy.expiration_date.isoformat(),
                ),
            )
            await self._notify(
                policy,
                "renewal_reminder",
                "Policy Renewal Reminder",
                f"Your policy {policy.policy_number} expires in {days_left} days. Please renew to maintain coverage.",
                "normal",
            )
            sent += 1
        logger.info("Sent %d renewal reminders (window %d days)", sent, days_ahead)
        return sent

    async def _notify(self, policy: Policy, notification_type: str, subject: str, message: str, priority: str) -> None:
        await dispatch_safely(
            self._dispatcher,
            NotificationJob(
                policy.user_id,
                notification_type,
                subject,
                message,
                priority=priority,
                data={"policy_id": policy.id, "policy_number": policy.policy_number},
            ),
        )
