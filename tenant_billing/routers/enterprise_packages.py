from fastapi import APIRouter, HTTPException, Request

from tenant_billing.dependencies import get_service_context, require_super_admin
from tenant_billing.models.enterprise import CustomEnterprisePackage, EnterprisePackageUpdate
from tenant_billing.services import enterprise_pricing

router = APIRouter(prefix="/billing/v1/admin/enterprise-packages", tags=["Enterprise Packages"])


@router.get("/{package_id}", response_model=CustomEnterprisePackage)
async def get_enterprise_package(package_id: str, request: Request):
    require_super_admin(request)
    package = enterprise_pricing.get_enterprise_package(get_service_context(request), package_id)
    if package is None:
        raise HTTPException(status_code=404, detail="Enterprise package not found")
    return package


@router.put("/{package_id}", response_model=CustomEnterprisePackage)
async def update_enterprise_package(package_id: str, body: EnterprisePackageUpdate, request: Request):
    require_super_admin(request)
    try:
        package = enterprise_pricing.update_enterprise_package(get_service_context(request), package_id, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if package is None:
        raise HTTPException(status_code=404, detail="Enterprise package not found")
    return package
