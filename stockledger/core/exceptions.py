"""
Typed errors raised by the stock ledger services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with, plus the structured data needed to build a message.

    StockLedgerError
    +-- ProductNotFoundError          not_found               404
    +-- InvalidMovementError          invalid_movement        422
    +-- InsufficientStockError        insufficient_stock      409
    +-- DuplicateSkuError             duplicate_sku           409
    +-- ProductHasHistoryError        product_has_history     409
    +-- MovementImmutableError        movement_immutable      409
    +-- ConcurrencyError
    |   +-- ConflictRetryableError    conflict                409
    |   +-- StockBusyError            busy                    503
    +-- InfrastructureFailureError    infrastructure_failure  503

Only ConflictRetryableError is retried, and only inside the movement engine.
"""


class StockLedgerError(Exception):
    code: str = "stock_ledger_error"
    status_code: int = 400

    @property
    def message(self) -> str:
        return str(self)


class ProductNotFoundError(StockLedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Product not found")


class InvalidMovementError(StockLedgerError):
    code = "invalid_movement"
    status_code = 422

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class InsufficientStockError(StockLedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: str, *, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock: requested {requested}, available {available}"
        )


class DuplicateSkuError(StockLedgerError):
    code = "duplicate_sku"
    status_code = 409

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__("Product with this SKU already exists")


class ProductHasHistoryError(StockLedgerError):
    code = "product_has_history"
    status_code = 409

    def __init__(self, product_id: str, movement_count: int):
        self.product_id = product_id
        self.movement_count = movement_count
        super().__init__("Cannot delete product with inventory history")


class MovementImmutableError(StockLedgerError):
    code = "movement_immutable"
    status_code = 409

    def __init__(self, movement_id: str, operation: str):
        self.movement_id = movement_id
        self.operation = operation
        super().__init__(f"Stock movement {movement_id} is append-only; {operation} rejected")


class ConcurrencyError(StockLedgerError):
    code = "concurrency_error"
    status_code = 409


class ConflictRetryableError(ConcurrencyError):
    code = "conflict"
    status_code = 409

    def __init__(self, product_id: str, detail: str | None = None):
        self.product_id = product_id
        self.detail = detail
        super().__init__(f"Concurrent stock update detected for product {product_id}")


class StockBusyError(ConcurrencyError):
    code = "busy"
    status_code = 503

    def __init__(self, product_id: str, reason: str = "lock_timeout"):
        self.product_id = product_id
        self.reason = reason
        super().__init__("Product stock is busy, try again")


class InfrastructureFailureError(StockLedgerError):
    code = "infrastructure_failure"
    status_code = 503

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Storage failure during {operation}; no changes were applied")
