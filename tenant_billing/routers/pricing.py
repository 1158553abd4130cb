from fastapi import APIRouter, Depends, HTTPException, Request

from tenant_billing.dependencies import get_current_organization_id, get_service_context
from tenant_billing.models.enterprise import (
    EffectivePricing,
    EffectivePricingQuery,
    EnterpriseQuote,
    QuoteRequest,
    ValidateRulesRequest,
    ValidationResult,
)
from tenant_billing.services import enterprise_pricing

router = APIRouter(prefix="/billing/v1/pricing", tags=["Pricing"])


@router.get("/effective", response_model=EffectivePricing)
async def effective_pricing(request: Request, query: EffectivePricingQuery = Depends()):
    """Enterprise per-user pricing for the current organization (zero when not enterprise)."""
    organization_id = get_current_organization_id(request)
    return enterprise_pricing.get_effective_pricing(
        get_service_context(request), organization_id, query.users, query.interval
    )


@router.post("/quote", response_model=EnterpriseQuote)
async def quote(body: QuoteRequest):
    validation = enterprise_pricing.validate_volume_discount_rules(body.volume_discount_rules)
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail=validation.error)

    return enterprise_pricing.calculate_enterprise_price(
        body.user_count, body.base_price_per_user, body.volume_discount_rules
    )


@router.post("/validate-rules", response_model=ValidationResult)
async def validate_rules(body: ValidateRulesRequest):
    return enterprise_pricing.validate_volume_discount_rules(body.volume_discount_rules)
