"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bazaruto import __version__
from bazaruto.api.dependencies import Services, build_services
from bazaruto.api.endpoints.claims import api as claims_api
from bazaruto.api.endpoints.commissions import api as commissions_api
from bazaruto.api.endpoints.compliance import api as compliance_api
from bazaruto.api.endpoints.customers import api as customers_api
from bazaruto.api.endpoints.jobs import api as jobs_api
from bazaruto.api.endpoints.payments import payments_api
from bazaruto.api.endpoints.policies import api as policies_api
from bazaruto.api.endpoints.products import api as products_api
from bazaruto.api.endpoints.quotes import api as quotes_api
from bazaruto.api.endpoints.rules import api as rules_api
from bazaruto.api.endpoints.underwriting import api as underwriting_api
from bazaruto.api.endpoints.webhooks import api as webhooks_api
from bazaruto.errors import ServiceError, http_status_for
from bazaruto.events.bus import log_event
from bazaruto.services.webhooks import SUBSCRIPTION_NAME as WEBHOOK_SUBSCRIPTION
from bazaruto.utils.config_loader import AppConfig, load_app_config
from bazaruto.utils.rules_manager import RulesManager

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid request"


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        status_code = http_status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


def _health(services: Services) -> dict:
    checks = {}
    try:
        checks["database"] = "ok" if services.db.ping() else "error"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        checks["database"] = "error"

    if not services.redis_enabled:
        checks["redis"] = "disabled"
    else:
        try:
            checks["redis"] = "ok" if services.job_store.ping() else "error"
        except Exception as e:
            logger.warning("Redis health check failed: %s", e)
            checks["redis"] = "error"

    checks["event_bus"] = "ok"
    checks["jobs"] = "ok"
    healthy = all(v in ("ok", "disabled") for v in checks.values())
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp": str(int(time.time())),
        "version": __version__,
        "services": checks,
    }


def create_app(
    config: Optional[AppConfig] = None,
    db=None,
    job_store=None,
    gateway=None,
    rules_manager: Optional[RulesManager] = None,
) -> FastAPI:
    """
    Build the application.

    Backends not passed in are chosen from ``config`` (which defaults to
    config/app_config.yml plus environment overrides).
    """
    config = config or load_app_config()
    logging.basicConfig(level=config.logging.level, format=config.logging.format)

    app = FastAPI(
        title="Bazaruto Insurance Marketplace API",
        description="Products, quotes, policies, claims and payments for the Bazaruto marketplace",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    services = build_services(config, db=db, job_store=job_store, gateway=gateway, rules_manager=rules_manager)
    app.state.services = services
    _register_error_handlers(app)

    app.include_router(products_api, prefix="/v1/products", tags=["Products"])
    app.include_router(customers_api, prefix="/v1/customers", tags=["Customers"])
    app.include_router(quotes_api, prefix="/v1/quotes", tags=["Quotes"])
    app.include_router(policies_api, prefix="/v1/policies", tags=["Policies"])
    app.include_router(claims_api, prefix="/v1/claims", tags=["Claims"])
    app.include_router(payments_api, prefix="/v1/payments", tags=["Payments"])
    app.include_router(rules_api, prefix="/v1/rules", tags=["Rules"])
    app.include_router(underwriting_api, prefix="/v1")
    app.include_router(commissions_api, prefix="/v1/commissions", tags=["Commissions"])
    app.include_router(compliance_api, prefix="/v1/compliance", tags=["Compliance"])
    app.include_router(webhooks_api, prefix="/v1/webhooks", tags=["Webhooks"])
    app.include_router(jobs_api, prefix="/v1/jobs", tags=["Jobs"])

    @app.get("/healthz", tags=["Health"])
    async def health_check():
        """Health of the database, the dead-letter store, the event bus and the job dispatcher."""
        return _health(services)

    # ============================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ============================================================================
    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting Bazaruto API v%s...", __version__)

        if config.database.create_tables:
            try:
                services.db.create_tables()
                logger.info("Database tables initialized")
            except Exception as e:
                logger.error("Error initializing database: %s", e)

        if services.redis_enabled:
            if services.job_store.ping():
                logger.info("Redis connection successful")
            else:
                logger.warning("Redis connection failed")

        if "event_logger" not in services.bus.subscriptions():
            services.bus.subscribe("event_logger", log_event)
        if WEBHOOK_SUBSCRIPTION not in services.bus.subscriptions():
            services.webhooks.subscribe(services.bus)

        if config.scheduler.enabled:
            services.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Bazaruto API...")
        await services.scheduler.stop()
        await services.dispatcher.close(config.jobs.close_timeout)
        await services.bus.close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _config = app.state.services.config
    uvicorn.run(app, host=_config.server.host, port=_config.server.port)
