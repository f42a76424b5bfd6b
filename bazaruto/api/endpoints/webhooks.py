from typing import Optional

from fastapi import APIRouter, Depends, Response

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import serialize
from bazaruto.api.schemas import WebhookCreate
from bazaruto.services.webhooks import WebhookConfig

api = APIRouter()


@api.post("", status_code=201)
async def create_webhook(body: WebhookCreate, services: Services = Depends(get_services)):
    return serialize(services.webhooks.create_config(WebhookConfig(**body.model_dump())))


@api.get("")
async def list_webhooks(services: Services = Depends(get_services)):
    return serialize(services.webhooks.list_configs())


@api.get("/{config_id}")
async def get_webhook(config_id: str, services: Services = Depends(get_services)):
    return serialize(services.webhooks.get_config(config_id))


@api.delete("/{config_id}", status_code=204)
async def delete_webhook(config_id: str, services: Services = Depends(get_services)):
    services.webhooks.delete_config(config_id)
    return Response(status_code=204)


@api.get("/{config_id}/deliveries")
async def list_deliveries(config_id: str, status: Optional[str] = None, services: Services = Depends(get_services)):
    services.webhooks.get_config(config_id)
    return serialize(services.webhooks.list_deliveries(config_id, status))
