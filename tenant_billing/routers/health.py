from fastapi import APIRouter, Request

from tenant_billing.dependencies import get_service_context
from tenant_billing.models.common import HealthResponse, ReadyResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")


@router.get("/ready", response_model=ReadyResponse)
async def ready(request: Request):
    ctx = get_service_context(request)
    try:
        ctx.db.table("packages").select("id").limit(1).execute()
        return ReadyResponse(status="ready", supabase=True, stripe=ctx.billing_configured)
    except Exception as e:
        return ReadyResponse(status="degraded", supabase=False, stripe=ctx.billing_configured, detail=str(e))
