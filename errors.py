"""
Application error taxonomy.

Services raise these; the handlers registered in main.py render them as
``{"success": false, "message": ...}`` with the matching HTTP status.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input"


class AuthError(AppError):
    status_code = 401
    default_message = "Invalid or expired token"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden: you do not have access to this resource"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFoundError):
    default_message = "Product not found"


class SizeNotFound(NotFoundError):
    default_message = "Size not found"


class ConflictError(AppError):
    status_code = 400
    default_message = "Conflict"


class InvalidTransition(ConflictError):
    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Cannot change order status from {source} to {target}")


class InsufficientStock(AppError):
    status_code = 400
    default_message = "Insufficient stock"

    def __init__(self, message: str = None, available: int = None):
        self.available = available
        super().__init__(message)


class InternalError(AppError):
    status_code = 500
