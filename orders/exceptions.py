"""
Domain errors raised by the order lifecycle services.
"""


class OrderError(Exception):
    """Base class for order domain errors."""
    title = 'Order Error'


class OrderValidationError(OrderError):
    """Raised when order input or an order edit is invalid."""
    title = 'Validation Error'


class InsufficientStockError(OrderError):
    """Raised when a product cannot cover the requested quantity at order time."""
    title = 'Insufficient Stock'

    def __init__(self, product_id: int, product_name: str, requested: int, available: int):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product: {product_name}. "
            f"Requested {requested}, available {available}"
        )


class InvalidStatusTransition(OrderError):
    """Raised when a status change is not allowed from the current status."""
    title = 'Invalid Status Transition'

    def __init__(self, order_number: str, old_status: str, new_status: str):
        self.order_number = order_number
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(
            f"Order {order_number} cannot move from '{old_status}' to '{new_status}'"
        )


class OrderDeletionError(OrderError):
    """Raised when deleting an order that is not cancelled."""
    title = 'Deletion Not Allowed'
