import logging

import httpx
import stripe
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tenant_billing.models.common import ErrorResponse

logger = logging.getLogger("tenant-billing")


def _error(status: int, error: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=error, detail=str(exc))
    return JSONResponse(status_code=status, content=body.model_dump())


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Unhandled exceptions become JSON; Supabase and Stripe failures map to 502."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except httpx.HTTPError as exc:
            logger.exception("Supabase request failed on %s %s: %s", request.method, request.url.path, exc)
            return _error(502, "datastore_error", exc)
        except stripe.StripeError as exc:
            logger.exception("Stripe request failed on %s %s: %s", request.method, request.url.path, exc)
            return _error(502, "billing_provider_error", exc)
        except Exception as exc:
            logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
            return _error(500, "internal_error", exc)
