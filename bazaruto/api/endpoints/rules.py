"""
Business-rules administration. Every write is validated as a whole document
before the live snapshot is swapped.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from bazaruto.api.dependencies import Services, get_services
from bazaruto.errors import ServiceError

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("")
async def get_rules(services: Services = Depends(get_services)):
    return services.rules.get_config().model_dump(mode="json")


@api.put("")
async def replace_rules(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    try:
        rules = services.rules.update_config(payload)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error updating business rules: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating business rules")
    return rules.model_dump(mode="json")


@api.get("/version")
async def rules_version(services: Services = Depends(get_services)):
    meta = services.rules.get_metadata()
    return {"version": meta["version"], "last_updated": meta["last_updated"].isoformat()}


@api.post("/reload")
async def reload_rules(services: Services = Depends(get_services)):
    try:
        rules = services.rules.load_config()
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error reloading business rules: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error reloading business rules")
    logger.info("Business rules reloaded (v%s)", rules.version)
    return {"version": rules.version, "last_updated": rules.last_updated.isoformat()}


@api.get("/{section}")
async def get_section(section: str, services: Services = Depends(get_services)):
    return services.rules.get_section(section).model_dump(mode="json")


@api.put("/{section}")
async def replace_section(
    section: str, payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)
):
    try:
        rules = services.rules.update_section(section, payload)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("Error updating rules section %s: %s", section, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating business rules")
    return getattr(rules, section).model_dump(mode="json")
