"""Error kinds raised by the marketplace services and rendered by main.py."""
from typing import Any, Dict


class MarketError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.code}


class ValidationError(MarketError):
    status_code = 400
    code = "validation_error"


class Unauthorized(MarketError):
    status_code = 401
    code = "unauthorized"


class Forbidden(MarketError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(MarketError):
    status_code = 404
    code = "not_found"


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = str(product_id)


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_id):
        super().__init__("Order not found")
        self.order_id = str(order_id)


class InsufficientStock(MarketError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_name: str, available: int):
        super().__init__(f"Insufficient stock for {product_name}. Only {available} available.")
        self.product_name = product_name
        self.available = available

    def to_dict(self):
        out = super().to_dict()
        out.update(product=self.product_name, available=self.available)
        return out


class TransientStoreError(MarketError):
    """Commit or isolation conflict; the whole checkout may be retried."""
    status_code = 503
    code = "transient_store_error"


class CommitOutcomeUnknown(MarketError):
    """The commit may or may not have landed; replaying the checkout could duplicate it."""
    status_code = 503
    code = "commit_outcome_unknown"


class DatabaseUnavailable(MarketError):
    status_code = 503
    code = "database_unavailable"
