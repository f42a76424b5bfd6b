"""
Service wiring for the HTTP layer.

``build_services`` picks the backends (SQLAlchemy or in-memory repositories,
Redis or in-memory dead-letter store, HTTP or simulated payment gateway) and
wires every service once per application. Endpoints reach the container via
``Depends(get_services)``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from bazaruto.events.bus import EventBus
from bazaruto.jobs.dispatcher import JobDispatcher
from bazaruto.jobs.scheduler import SweepScheduler
from bazaruto.services.claim_workflow import ClaimWorkflowService
from bazaruto.services.claims import ClaimService
from bazaruto.services.commission import CommissionService
from bazaruto.services.compliance import ComplianceService
from bazaruto.services.customers import CustomerService
from bazaruto.services.fraud import FraudDetectionService
from bazaruto.services.payments import PaymentService
from bazaruto.services.policies import PolicyService
from bazaruto.services.policy_lifecycle import PolicyLifecycleService
from bazaruto.services.pricing import PricingEngine
from bazaruto.services.products import ProductService
from bazaruto.services.quotes import QuoteService
from bazaruto.services.risk import RiskAssessmentService
from bazaruto.services.underwriting import UnderwritingService
from bazaruto.services.webhooks import WebhookService
from bazaruto.utils.config_loader import AppConfig
from bazaruto.utils.rules_manager import RulesManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    db: object
    job_store: object
    redis_enabled: bool
    bus: EventBus
    dispatcher: JobDispatcher
    rules: RulesManager
    customers: CustomerService
    products: ProductService
    pricing: PricingEngine
    quotes: QuoteService
    policies: PolicyService
    claims: ClaimService
    payments: PaymentService
    risk: RiskAssessmentService
    fraud: FraudDetectionService
    underwriting: UnderwritingService
    workflow: ClaimWorkflowService
    lifecycle: PolicyLifecycleService
    commission: CommissionService
    compliance: ComplianceService
    webhooks: WebhookService
    scheduler: SweepScheduler


def select_database(config: AppConfig):
    # Use real Postgres when a URL is configured, else the in-memory stub
    if config.database.url:
        from bazaruto.database.postgres_real import PostgresDB

        return PostgresDB(connection_string=config.database.url, echo=config.database.echo)

    from bazaruto.database.postgres import PostgresDB

    logger.info("DATABASE_URL not set; using in-memory PostgresDB stub")
    return PostgresDB()


def select_job_store(config: AppConfig):
    if config.redis.url:
        from bazaruto.database.redis_real import RedisJobStore

        return RedisJobStore(
            url=config.redis.url,
            key_prefix=config.redis.dead_letter_prefix,
            max_per_queue=config.redis.max_dead_jobs_per_queue,
        )

    from bazaruto.database.redis import RedisJobStore

    return RedisJobStore(max_per_queue=config.redis.max_dead_jobs_per_queue)


def select_gateway(config: AppConfig):
    payments = config.payments
    if payments.gateway_url:
        from bazaruto.integrations.http_payments import RealPaymentsClient

        return RealPaymentsClient(
            base_url=payments.gateway_url,
            api_key=payments.api_key,
            timeout_seconds=payments.timeout_seconds,
        )

    from bazaruto.integrations.mock_payments import MockPaymentsClient

    return MockPaymentsClient(
        decline_above=payments.simulated_decline_above,
        delay_seconds=payments.simulated_delay_seconds,
    )


def build_services(
    config: AppConfig,
    db=None,
    job_store=None,
    gateway=None,
    rules_manager: Optional[RulesManager] = None,
) -> Services:
    redis_enabled = bool(config.redis.url)
    db = db if db is not None else select_database(config)
    job_store = job_store if job_store is not None else select_job_store(config)
    gateway = gateway if gateway is not None else select_gateway(config)
    rules = rules_manager or RulesManager(config.rules_path(), persist=config.rules.persist_updates)

    bus = EventBus(close_timeout=config.events.close_timeout)
    dispatcher = JobDispatcher(
        store=job_store,
        queues=config.jobs.queues,
        default_timeout=config.jobs.default_timeout,
    )

    pricing = PricingEngine(db, rules)
    risk = RiskAssessmentService(db, rules)
    fraud = FraudDetectionService(db, rules, bus)
    quotes = QuoteService(db, pricing, bus)
    policies = PolicyService(db, quotes, bus)
    payments = PaymentService(db, bus, gateway)
    lifecycle = PolicyLifecycleService(db, policies, payments, rules, bus, dispatcher)

    return Services(
        config=config,
        db=db,
        job_store=job_store,
        redis_enabled=redis_enabled,
        bus=bus,
        dispatcher=dispatcher,
        rules=rules,
        customers=CustomerService(db, bus),
        products=ProductService(db),
        pricing=pricing,
        quotes=quotes,
        policies=policies,
        claims=ClaimService(db),
        payments=payments,
        risk=risk,
        fraud=fraud,
        underwriting=UnderwritingService(risk, pricing, rules),
        workflow=ClaimWorkflowService(db, fraud, rules, bus, dispatcher),
        lifecycle=lifecycle,
        commission=CommissionService(db, rules),
        compliance=ComplianceService(db, rules),
        webhooks=WebhookService(dispatcher),
        scheduler=SweepScheduler(lifecycle, config.scheduler),
    )


def get_services(request: Request) -> Services:
    """Dependency for the application's service container"""
    return request.app.state.services
