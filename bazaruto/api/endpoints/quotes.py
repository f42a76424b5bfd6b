import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import PricingIn, QuoteUpdate
from bazaruto.errors import ServiceError
from bazaruto.services.pricing import PricingRequest

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def list_quotes(
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
    total = services.quotes.count_quotes(filters)
    items = services.quotes.list_quotes(filters, page.per_page, page.offset)
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_quote(body: PricingIn, services: Services = Depends(get_services)):
    """Price the request and persist it as a pending quote."""
    try:
        quote = await services.quotes.create_quote(PricingRequest(**body.model_dump()))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error generating quote: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error generating quote")
    return serialize(quote)


@api.get("/number/{number}")
async def get_quote_by_number(number: str, services: Services = Depends(get_services)):
    return serialize(services.quotes.get_by_number(number))


@api.get("/{quote_id}")
async def get_quote(quote_id: str, services: Services = Depends(get_services)):
    return serialize(services.quotes.get_quote(quote_id))


@api.put("/{quote_id}")
async def update_quote(quote_id: str, body: QuoteUpdate, services: Services = Depends(get_services)):
    return serialize(services.quotes.update_quote(quote_id, body.model_dump(exclude_unset=True)))


@api.post("/{quote_id}/expire")
async def expire_quote(quote_id: str, services: Services = Depends(get_services)):
    return serialize(services.quotes.expire_quote(quote_id))


@api.delete("/{quote_id}", status_code=204)
async def delete_quote(quote_id: str, services: Services = Depends(get_services)):
    services.quotes.delete_quote(quote_id)
    return Response(status_code=204)
