"""Domain error taxonomy shared by services and mapped to HTTP in main.py."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class carrying an HTTP status, a machine code and extra payload."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationError(ServiceError):
    status_code = 422
    code = "VALIDATION_ERROR"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class InsufficientCreditsError(ServiceError):
    status_code = 402
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        super().__init__(
            message
            or f"Insufficient credits. Required: {required}, available: {available}. Top up credits to continue.",
            required=int(required),
            available=int(available),
        )
        self.required = int(required)
        self.available = int(available)


class UpstreamServiceError(ServiceError):
    """Database, storage or realtime provider failure."""

    status_code = 503
    code = "UPSTREAM_ERROR"


class ControlPlaneError(UpstreamServiceError):
    """Managed database provider refused the request at the infrastructure level."""

    code = "CONTROL_PLANE_ERROR"


class DocumentGenerationError(ServiceError):
    """Artifact rendering/storage failed after charging; credits were refunded."""

    status_code = 502
    code = "GENERATION_FAILED"
