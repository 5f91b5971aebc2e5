# Models package — import all models here so Alembic can discover them.

from marketplace.models.user import User  # noqa: F401
from marketplace.models.catalog import Track, SellerAccount  # noqa: F401
from marketplace.models.purchase import (  # noqa: F401
    Purchase,
    PurchaseItem,
    TrackAccess,
)
from marketplace.models.earnings import EarningsLedgerEntry  # noqa: F401
from marketplace.models.webhook_event import WebhookEvent  # noqa: F401
from marketplace.models.audit import AuditEvent  # noqa: F401
