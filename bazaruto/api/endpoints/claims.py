import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import ClaimCreate, ClaimUpdate, DocumentIn, StageOverrideIn
from bazaruto.database.entities import Claim, ClaimDocument
from bazaruto.errors import ServiceError

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def list_claims(
    request: Request,
    response: Response,
    user_id: Optional[str] = None,
    policy_id: Optional[str] = None,
    status: Optional[str] = None,
    currency: Optional[str] = None,
    page: Page = Depends(page_params),
    services: Services = Depends(get_services),
):
    filters = filters_of(user_id=user_id, policy_id=policy_id, status=status, currency=currency)
    total = services.claims.count_claims(filters)
    items = services.claims.list_claims(filters, page.per_page, page.offset)
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_claim(body: ClaimCreate, services: Services = Depends(get_services)):
    data = body.model_dump(exclude_none=True)
    data["documents"] = [ClaimDocument(**d) for d in data.get("documents", [])]
    try:
        claim = services.claims.create_claim(Claim(claim_number="", **data))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error submitting claim: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting claim")
    return serialize(claim)


@api.get("/number/{number}")
async def get_claim_by_number(number: str, services: Services = Depends(get_services)):
    return serialize(services.claims.get_by_number(number))


@api.get("/{claim_id}")
async def get_claim(claim_id: str, services: Services = Depends(get_services)):
    return serialize(services.claims.get_claim(claim_id))


@api.put("/{claim_id}")
async def update_claim(claim_id: str, body: ClaimUpdate, services: Services = Depends(get_services)):
    return serialize(services.claims.update_claim(claim_id, body.model_dump(exclude_unset=True)))


@api.delete("/{claim_id}", status_code=204)
async def delete_claim(claim_id: str, services: Services = Depends(get_services)):
    services.claims.delete_claim(claim_id)
    return Response(status_code=204)


@api.post("/{claim_id}/documents", status_code=201)
async def add_document(claim_id: str, body: DocumentIn, services: Services = Depends(get_services)):
    return serialize(services.claims.add_document(claim_id, ClaimDocument(**body.model_dump())))


# --------------------------------------------------------------------------- #
# Workflow and fraud
# --------------------------------------------------------------------------- #
@api.post("/{claim_id}/process")
async def process_claim(claim_id: str, services: Services = Depends(get_services)):
    """Run the claim through its workflow and return the persisted result."""
    try:
        workflow = await services.workflow.process_claim(claim_id)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error processing claim %s: %s", claim_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error processing claim")
    return serialize(workflow)


@api.get("/{claim_id}/workflow")
async def get_workflow(claim_id: str, services: Services = Depends(get_services)):
    return serialize(services.workflow.get_workflow_status(claim_id))


@api.put("/{claim_id}/workflow/stages/{stage_id}")
async def override_stage(
    claim_id: str, stage_id: str, body: StageOverrideIn, services: Services = Depends(get_services)
):
    try:
        workflow = await services.workflow.update_workflow_stage(
            claim_id,
            stage_id,
            body.result,
            decision=body.decision,
            comments=body.comments,
            assigned_to=body.assigned_to,
        )
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error updating stage %s of claim %s: %s", stage_id, claim_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating workflow stage")
    return serialize(workflow)


@api.get("/{claim_id}/fraud-score")
async def fraud_score(claim_id: str, services: Services = Depends(get_services)):
    return serialize(await services.fraud.analyze_claim(claim_id))
