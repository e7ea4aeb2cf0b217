"""
Business exceptions raised by the API layer.

The app registers one error handler for BusinessException so every subclass
comes back to the client as JSON:

    {"error": <message>, "code": <code>, "details": {...}}
"""


class BusinessException(Exception):
    """Base exception for business logic errors."""

    status_code = 400

    def __init__(self, message, code="BUSINESS_ERROR", details=None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationException(BusinessException):
    """Raised when request data fails validation."""

    def __init__(self, message, field_errors=None):
        self.field_errors = field_errors or {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": self.field_errors} if self.field_errors else None,
        )


class NotFoundException(BusinessException):
    """Raised when a record does not exist."""

    status_code = 404

    def __init__(self, entity_type, entity_id=None, message=None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            message=message or f"{entity_type} not found",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id} if entity_id else None,
        )


class InvalidTransitionException(BusinessException):
    """Raised when a shipment is moved out of the wrong workflow state."""

    status_code = 409

    def __init__(self, current_status, attempted_status, required_statuses=None):
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.required_statuses = list(required_statuses or [])
        expected = ", ".join(self.required_statuses) or "a valid state"
        super().__init__(
            message=(
                f"Cannot move shipment from '{current_status}' to "
                f"'{attempted_status}'. Shipment must be in {expected}."
            ),
            code="INVALID_TRANSITION",
            details={
                "current_status": current_status,
                "attempted_status": attempted_status,
                "required_statuses": self.required_statuses,
            },
        )
