import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import serialize
from bazaruto.api.schemas import PricingCompareIn, PricingIn, ReviewIn, RiskIn, UnderwritingIn
from bazaruto.errors import InvalidInputError, ServiceError
from bazaruto.services.pricing import PricingRequest
from bazaruto.services.underwriting import UnderwritingRequest

logger = logging.getLogger(__name__)

api = APIRouter()


@api.post("/pricing", tags=["Pricing"])
async def calculate_pricing(body: PricingIn, services: Services = Depends(get_services)):
    """Price a request without persisting a quote."""
    return serialize(services.pricing.calculate_premium(PricingRequest(**body.model_dump())))


@api.post("/pricing/compare", tags=["Pricing"])
async def compare_pricing(body: PricingCompareIn, services: Services = Depends(get_services)):
    base = PricingRequest(**body.base.model_dump())
    scenarios = [PricingRequest(**s.model_dump()) for s in body.scenarios]
    return serialize(services.pricing.compare_pricing(base, scenarios))


@api.post("/risk", tags=["Risk"])
async def assess_risk(body: RiskIn, services: Services = Depends(get_services)):
    return serialize(services.risk.assess_risk(body.user_id, body.product_id, body.coverage_amount))


@api.post("/underwriting", tags=["Underwriting"])
async def underwrite(body: UnderwritingIn, services: Services = Depends(get_services)):
    try:
        decision = services.underwriting.process(UnderwritingRequest(**body.model_dump()))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error processing underwriting: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error processing underwriting")
    return serialize(decision)


@api.get("/underwriting", tags=["Underwriting"])
async def underwriting_history(user_id: Optional[str] = None, services: Services = Depends(get_services)):
    if not user_id:
        raise InvalidInputError("user_id is required")
    return serialize(services.underwriting.get_history(user_id))


@api.get("/underwriting/{decision_id}", tags=["Underwriting"])
async def get_decision(decision_id: str, services: Services = Depends(get_services)):
    return serialize(services.underwriting.get_decision(decision_id))


@api.post("/underwriting/{decision_id}/review", tags=["Underwriting"])
async def review_decision(decision_id: str, body: ReviewIn, services: Services = Depends(get_services)):
    decision = services.underwriting.review_decision(
        decision_id, body.reviewer_id, body.decision, reason=body.reason, comments=body.comments
    )
    return serialize(decision)
