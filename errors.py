"""
Error taxonomy for the API.

Every domain error is an HTTPException so it can be raised from services and
routes alike; `main` renders them all as
``{"success": false, "message": ..., "details": [...]}``.
"""

from typing import List, Optional

from fastapi import HTTPException


class AppError(HTTPException):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, details: Optional[List[str]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(status_code=self.status_code, detail=self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation error"


class InvalidRadius(ValidationError):
    default_message = "radiusKM must be a positive number"


class InvalidTransition(AppError):
    status_code = 400
    default_message = "Invalid order status transition"

    def __init__(self, current_status: str):
        self.current_status = current_status
        super().__init__(f"Cannot update order with status: {current_status}")


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class NotRegistered(NotFound):
    default_message = "User not found. Please register first."


class ProductNotFound(NotFound):
    default_message = "Product not found"


class ProductsNotFound(NotFound):
    def __init__(self, missing_ids: List[str]):
        self.missing_ids = list(missing_ids)
        super().__init__(
            "One or more products not found",
            details=[f"Product with id {pid} not found" for pid in self.missing_ids],
        )


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"


class InternalError(AppError):
    status_code = 500
