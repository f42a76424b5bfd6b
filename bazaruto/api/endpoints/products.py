import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import Page, filters_of, page_params, serialize, set_page_headers
from bazaruto.api.schemas import ProductCreate, ProductUpdate
from bazaruto.database.entities import Product
from bazaruto.errors import ServiceError

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def list_products(
    request: Request,
    response: Response,
    category: Optional[str] = None,
    status: Optional[str] = None,
    partner_id: Optional[str] = None,
    currency: Optional[str] = None,
    page: Page = Depends(page_params),
    services: Services = Depends(get_services),
):
    filters = filters_of(category=category, status=status, partner_id=partner_id, currency=currency)
    try:
        total = services.products.count_products(filters)
        items = services.products.list_products(filters, page.per_page, page.offset)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error listing products: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing products")
    set_page_headers(request, response, page, total)
    return serialize(items)


@api.post("", status_code=201)
async def create_product(body: ProductCreate, services: Services = Depends(get_services)):
    try:
        product = services.products.create_product(Product(**body.model_dump(exclude_none=True)))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error creating product: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating product")
    return serialize(product)


@api.get("/{product_id}")
async def get_product(product_id: str, services: Services = Depends(get_services)):
    return serialize(services.products.get_product(product_id))


@api.put("/{product_id}")
async def update_product(product_id: str, body: ProductUpdate, services: Services = Depends(get_services)):
    try:
        product = services.products.update_product(product_id, body.model_dump(exclude_unset=True))
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error updating product %s: %s", product_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating product")
    return serialize(product)


@api.delete("/{product_id}", status_code=204)
async def delete_product(product_id: str, services: Services = Depends(get_services)):
    services.products.delete_product(product_id)
    return Response(status_code=204)
