import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import CustomerCreate, CustomerUpdate
from bazaruto.database.entities import Address, Customer
from bazaruto.errors import ServiceError

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def list_customers(
    request: Request,
    response: Response,
    status: Optional[str] = None,
    risk_profile: Optional[str] = None,
    customer_tier: Optional[str] = None,
    page: Page = Depends(page_params),
    services: Services = Depends(get_services),
):
    filters = filters_of(status=status, risk_profile=risk_profile, customer_tier=customer_tier)
    total = services.customers.count_customers(filters)
    items = services.customers.list_customers(filters, page.per_page, page.offset)
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_customer(body: CustomerCreate, services: Services = Depends(get_services)):
    """Register a customer. Emails are unique (case-insensitive)."""
    data = body.model_dump()
    data["addresses"] = [Address(**a) for a in data["addresses"]]
    try:
        customer = await services.customers.create_customer(Customer(**data))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error creating customer: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating customer")
    return serialize(customer)


@api.get("/{customer_id}")
async def get_customer(customer_id: str, services: Services = Depends(get_services)):
    return serialize(services.customers.get_customer(customer_id))


@api.put("/{customer_id}")
async def update_customer(customer_id: str, body: CustomerUpdate, services: Services = Depends(get_services)):
    try:
        customer = services.customers.update_customer(customer_id, body.model_dump(exclude_unset=True))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error updating customer %s: %s", customer_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating customer")
    return serialize(customer)


@api.delete("/{customer_id}", status_code=204)
async def delete_customer(customer_id: str, services: Services = Depends(get_services)):
    services.customers.delete_customer(customer_id)
    return Response(status_code=204)
