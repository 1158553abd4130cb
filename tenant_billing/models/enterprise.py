from typing import Any

from pydantic import BaseModel, Field

from tenant_billing.models.package import BillingInterval


class VolumeDiscountRule(BaseModel):
    min_users: int
    discount_percent: float


class EnterpriseQuote(BaseModel):
    base_price: float
    discounted_price: float
    discount_percent: float
    discount_amount: float
    price_per_user: float
    effective_price_per_user: float
    applied_rule: str | None = None


class CustomEnterprisePackage(BaseModel):
    id: str
    organization_id: str
    package_id: str | None = None
    custom_name: str | None = None
    custom_price_per_user_monthly: float | None = None
    custom_price_per_user_yearly: float | None = None
    volume_discount_rules: list[VolumeDiscountRule] = []
    custom_max_users: int | None = None
    custom_max_projects: int | None = None
    custom_max_templates: int | None = None
    minimum_commitment_users: int | None = None
    contract_start_date: str | None = None
    contract_end_date: str | None = None
    notes: str | None = None
    is_active: bool = True


class EffectivePricing(BaseModel):
    price_per_user: float = 0
    quote: EnterpriseQuote | None = None
    is_enterprise: bool = False
    custom_package: CustomEnterprisePackage | None = None


class ValidationResult(BaseModel):
    is_valid: bool
    error: str | None = None


class QuoteRequest(BaseModel):
    user_count: int = Field(..., ge=0)
    base_price_per_user: float = Field(..., ge=0)
    # Raw rules; validated by validate_volume_discount_rules before use
    volume_discount_rules: Any = []


class ValidateRulesRequest(BaseModel):
    volume_discount_rules: Any


class EffectivePricingQuery(BaseModel):
    users: int = Field(..., ge=0)
    interval: BillingInterval = "month"


class EnterprisePackageUpdate(BaseModel):
    package_id: str | None = None
    custom_name: str | None = None
    custom_price_per_user_monthly: float | None = Field(None, ge=0)
    custom_price_per_user_yearly: float | None = Field(None, ge=0)
    volume_discount_rules: Any = None
    custom_max_users: int | None = None
    custom_max_projects: int | None = None
    custom_max_templates: int | None = None
    minimum_commitment_users: int | None = None
    contract_start_date: str | None = None
    contract_end_date: str | None = None
    notes: str | None = None
    is_active: bool | None = None
