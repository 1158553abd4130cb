from dataclasses import dataclass

from tenant_billing.config import Settings
from tenant_billing.services.stripe_client import StripeBilling, create_stripe_billing
from tenant_billing.storage.supabase import SupabaseClient, create_client


@dataclass
class ServiceContext:
    """Clients every service function works against.

    Built once per application (see ``main.lifespan``) and handed to the
    services explicitly. ``billing`` is None when Stripe is not configured.
    """

    db: SupabaseClient
    billing: StripeBilling | None = None

    @property
    def billing_configured(self) -> bool:
        return self.billing is not None


def build_service_context(cfg: Settings) -> ServiceContext:
    return ServiceContext(
        db=create_client(cfg.supabase_url, cfg.supabase_key),
        billing=create_stripe_billing(
            cfg.stripe_secret_key,
            webhook_secret=cfg.stripe_webhook_secret,
            currency=cfg.stripe_currency,
        ),
    )
