import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import CancellationIn, PolicyCreate, PolicyUpdate, RenewalIn
from bazaruto.database.entities import Policy
from bazaruto.errors import ServiceError
from bazaruto.services.policy_lifecycle import CancellationOptions, RenewalOptions

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def list_policies(
    request: Request,
    response: Response,
    user_id: Optional[str] = None,
    product_id: Optional[str] = None,
    status: Optional[str] = None,
    currency: Optional[str] = None,
    page: Page = Depends(page_params),
    services: Services = Depends(get_services),
):
    filters = filters_of(user_id=user_id, product_id=product_id, status=status, currency=currency)
    total = services.policies.count_policies(filters)
    items = services.policies.list_policies(filters, page.per_page, page.offset)
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_policy(body: PolicyCreate, services: Services = Depends(get_services)):
    """Issue a policy, optionally from a pending quote (premium then comes from the quote)."""
    try:
        policy = await services.policies.create_policy(Policy(policy_number="", **body.model_dump()))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error creating policy: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating policy")
    return serialize(policy)


@api.get("/renewals/upcoming")
async def upcoming_renewals(
    days: Optional[int] = Query(None, ge=0, description="Window in days; defaults to the reminder window"),
    services: Services = Depends(get_services),
):
    return serialize(services.lifecycle.get_upcoming_renewals(days))


@api.get("/number/{number}")
async def get_policy_by_number(number: str, services: Services = Depends(get_services)):
    return serialize(services.policies.get_by_number(number))


@api.get("/{policy_id}")
async def get_policy(policy_id: str, services: Services = Depends(get_services)):
    return serialize(services.policies.get_policy(policy_id))


@api.put("/{policy_id}")
async def update_policy(policy_id: str, body: PolicyUpdate, services: Services = Depends(get_services)):
    return serialize(services.policies.update_policy(policy_id, body.model_dump(exclude_unset=True)))


@api.delete("/{policy_id}", status_code=204)
async def delete_policy(policy_id: str, services: Services = Depends(get_services)):
    services.policies.delete_policy(policy_id)
    return Response(status_code=204)


# --------------------------------------------------------------------------- #
# Lifecycle
# --------------------------------------------------------------------------- #
@api.post("/{policy_id}/renew")
async def renew_policy(policy_id: str, body: Optional[RenewalIn] = None, services: Services = Depends(get_services)):
    options = RenewalOptions(**body.model_dump()) if body is not None else None
    try:
        result = await services.lifecycle.renew_policy(policy_id, options)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error renewing policy %s: %s", policy_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error renewing policy")
    return serialize(result)


@api.post("/{policy_id}/cancel")
async def cancel_policy(
    policy_id: str, body: Optional[CancellationIn] = None, services: Services = Depends(get_services)
):
    options = CancellationOptions(**body.model_dump()) if body is not None else None
    try:
        result = await services.lifecycle.cancel_policy(policy_id, options)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error cancelling policy %s: %s", policy_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling policy")
    return serialize(result)


@api.get("/{policy_id}/status")
async def policy_status(policy_id: str, services: Services = Depends(get_services)):
    return serialize(services.lifecycle.get_policy_status(policy_id))
