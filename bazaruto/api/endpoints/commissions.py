from typing import Optional

from fastapi import APIRouter, Depends

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import serialize
from bazaruto.api.schemas import CommissionIn
from bazaruto.errors import InvalidInputError

api = APIRouter()


@api.post("", status_code=201)
async def calculate_commission(body: CommissionIn, services: Services = Depends(get_services)):
    return serialize(services.commission.calculate(body.policy_id, body.commission_type))


@api.get("")
async def list_commissions(
    partner_id: Optional[str] = None, status: Optional[str] = None, services: Services = Depends(get_services)
):
    if not partner_id:
        raise InvalidInputError("partner_id is required")
    return serialize(services.commission.list_for_partner(partner_id, status))


@api.get("/{calculation_id}")
async def get_commission(calculation_id: str, services: Services = Depends(get_services)):
    return serialize(services.commission.get(calculation_id))


@api.post("/{calculation_id}/pay")
async def pay_commission(calculation_id: str, services: Services = Depends(get_services)):
    return serialize(services.commission.pay(calculation_id))


@api.post("/{calculation_id}/cancel")
async def cancel_commission(calculation_id: str, services: Services = Depends(get_services)):
    return serialize(services.commission.cancel(calculation_id))
