import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import PaymentCreate
from bazaruto.database.entities import Payment
from bazaruto.errors import ServiceError

logger = logging.getLogger(__name__)

api = APIRouter()
payments_api = api


@api.get("")
async def list_payments(
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
    total = services.payments.count_payments(filters)
    items = services.payments.list_payments(filters, page.per_page, page.offset)
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_payment(body: PaymentCreate, services: Services = Depends(get_services)):
    try:
        payment = await services.payments.create_payment(Payment(**body.model_dump()))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error initiating payment: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error initiating payment")
    return serialize(payment)


@api.get("/{payment_id}")
async def get_payment(payment_id: str, services: Services = Depends(get_services)):
    return serialize(services.payments.get_payment(payment_id))


@api.post("/{payment_id}/process")
async def process_payment(payment_id: str, services: Services = Depends(get_services)):
    """Charge a pending payment. The payment is persisted as failed before a decline is reported."""
    try:
        payment = await services.payments.process_payment(payment_id)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error processing payment %s: %s", payment_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error processing payment")
    return serialize(payment)
