"""Payment error taxonomy.

- ValidationError: cart or seller problem found before any money moves.
  Shown to the buyer, never retried.
- CheckoutCreationError: Stripe refused to create the session.
- SignatureError: webhook did not come from Stripe (or is too old).
- HandlerError: anything that goes wrong while applying a verified event.
  The ledger row is marked failed and Stripe redelivers later.
- ConsistencyError: the event's work is already done (e.g. the purchase
  exists). Treated as success so Stripe stops retrying.
"""


class PaymentsError(Exception):
    """Base class for every error raised by the payment core."""


class ValidationError(PaymentsError):
    def __init__(self, message, code="invalid_cart", details=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class CheckoutCreationError(PaymentsError):
    pass


class SignatureError(PaymentsError):
    pass


class HandlerError(PaymentsError):
    pass


class MetadataError(HandlerError):
    """Checkout session metadata is missing or cannot be decoded."""


class PurchaseNotFoundError(HandlerError):
    """A refund arrived for a payment we have not fulfilled (yet)."""


class ConsistencyError(PaymentsError):
    pass
