"""External service integrations for the booking engine."""

from .payhere import PayHereError, PayHereSigner, generate_order_id

__all__ = ["PayHereError", "PayHereSigner", "generate_order_id"]
