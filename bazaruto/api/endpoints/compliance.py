from fastapi import APIRouter, Depends

from bazaruto.api.dependencies import Services, get_services
from bazaruto.api.helpers import serialize

api = APIRouter()


@api.post("/customers/{customer_id}")
async def check_customer(customer_id: str, services: Services = Depends(get_services)):
    """KYC, AML and data-protection checks for one customer."""
    return serialize(services.compliance.check_customer(customer_id))


@api.post("/policies/{policy_id}")
async def check_policy(policy_id: str, services: Services = Depends(get_services)):
    return serialize(services.compliance.check_policy(policy_id))


@api.post("/claims/{claim_id}")
async def check_claim(claim_id: str, services: Services = Depends(get_services)):
    return serialize(services.compliance.check_claim(claim_id))
