from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for failures raised by the service layer.

    Views never catch these; `common.exceptions.custom_exception_handler`
    turns them into the standard error envelope.
    """

    code = "domain_error"
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, errors: Any = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404
    default_message = "Record not found."


class ProductNotFoundError(NotFoundError):
    code = "product_not_found"
    default_message = "Product not found."


class WarehouseNotFoundError(NotFoundError):
    code = "warehouse_not_found"
    default_message = "Warehouse not found."


class ShelfNotFoundError(NotFoundError):
    # The shelf id came from the request body, so this is a client error rather than a missing route.
    code = "shelf_not_found"
    status_code = 400
    default_message = "Selected shelf not found in warehouse."


class StockMovementNotFoundError(NotFoundError):
    code = "stock_movement_not_found"
    default_message = "Stock movement not found."


class BarcodeNotFoundError(NotFoundError):
    code = "barcode_not_found"
    default_message = "Barcode not found."


class TemplateNotFoundError(NotFoundError):
    code = "label_template_not_found"
    default_message = "Label template not found."


class CustomerNotFoundError(NotFoundError):
    code = "customer_not_found"
    default_message = "Customer not found."


class ValidationError(DomainError):
    code = "validation_error"
    default_message = "Validation failed."


class ShelfRequiredError(ValidationError):
    code = "shelf_required"
    default_message = "Shelf selection is required for this warehouse."


class InvalidQuantityError(ValidationError):
    code = "invalid_quantity"
    default_message = "A positive whole quantity is required for piece units."


class InvalidLengthsError(ValidationError):
    code = "invalid_lengths"
    default_message = "At least one positive length is required for length units."


class TemplateValidationError(ValidationError):
    code = "invalid_label_template"
    default_message = "Label template is invalid."

    def __init__(self, errors: list[str], message: str | None = None):
        super().__init__(message, errors=list(errors))


class DuplicateError(DomainError):
    code = "duplicate"
    status_code = 409
    default_message = "A record with the same identity already exists."


class CannotDeleteDefaultError(DomainError):
    code = "cannot_delete_default"
    status_code = 409
    default_message = "The default label template cannot be deleted. Assign another default first."


class ExhaustedAttemptsError(DomainError):
    code = "exhausted_attempts"
    status_code = 503
    default_message = "Unable to generate a unique code."


class BarcodeGenerationError(DomainError):
    code = "barcode_generation_failed"
    status_code = 503
    default_message = "Barcode generation failed; the stock entry was not recorded."


class OperationTimeoutError(DomainError):
    code = "timeout"
    status_code = 503
    default_message = "The operation did not finish in time."
