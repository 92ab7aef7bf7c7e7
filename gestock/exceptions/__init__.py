"""Custom exceptions for the Gestock application."""


class GestockError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Une erreur interne est survenue", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['data'] = None
        rv['error'] = self.message
        return rv


class BusinessLogicError(GestockError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Invalid input: zero or negative quantity, missing required field."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(GestockError):
    """Exception raised when a document is not found."""
    def __init__(self, message="Ressource non trouvée", payload=None):
        super().__init__(message, 404, payload)


class AlreadyExistsError(BusinessLogicError):
    """Raised when a human-readable document number is already taken."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class ProductNotFoundError(NotFoundError):
    """Raised by the stock ledger when a line item references an unknown product."""
    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Produit avec l'ID {product_id} non trouvé",
            payload={'product_id': product_id}
        )


class NoStockRecordError(BusinessLogicError):
    """Raised when stock is withdrawn from a product that was never received."""
    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Produit {product_id} n'existe pas en stock",
            status_code=409,
            payload={'product_id': product_id}
        )


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_id, current_quantity, attempted_quantity):
        self.product_id = product_id
        self.current_quantity = current_quantity
        self.attempted_quantity = attempted_quantity
        cur_fmt = _format_quantity(current_quantity)
        att_fmt = _format_quantity(attempted_quantity)
        message = (
            f"Quantité insuffisante en stock pour le produit {product_id}. "
            f"Stock actuel: {cur_fmt}, Tentative de retrait: {att_fmt}"
        )
        super().__init__(
            message,
            status_code=409,
            payload={
                'product_id': product_id,
                'current_quantity': cur_fmt,
                'attempted_quantity': att_fmt,
            }
        )


def _format_quantity(value):
    """Render a quantity without trailing zeros (5.000 -> 5, 2.500 -> 2.5)."""
    if value % 1 == 0:
        return f"{int(value)}"
    return f"{value:.3f}".rstrip('0').rstrip('.')


class UnauthorizedError(GestockError):
    """Raised when no user is attached to an action."""
    def __init__(self, message="Utilisateur non authentifié"):
        super().__init__(message, 401)
