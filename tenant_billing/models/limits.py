from pydantic import BaseModel

from tenant_billing.models.package import SupportLevel


class LimitCheckResult(BaseModel):
    allowed: bool
    reason: str | None = None
    current: int | None = None
    limit: int | None = None


class FeatureFlags(BaseModel):
    ai: bool = False
    export: bool = False
    ops_tool: bool = False
    analytics: bool = False
    api_access: bool = False
    custom_dashboards: bool = False


class AllLimits(BaseModel):
    projects: LimitCheckResult
    users: LimitCheckResult
    templates: LimitCheckResult
    features: FeatureFlags
    support_level: SupportLevel | None = None


class FeatureAccessResponse(BaseModel):
    feature: str
    enabled: bool
