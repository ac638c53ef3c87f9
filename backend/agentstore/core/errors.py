from typing import Any, Optional
from fastapi import HTTPException, status


class AgentStoreError(HTTPException):
    """Base class for payment-core failures.

    The response body is always ``{"detail": {"error", "code", "details"}}`` so
    callers can branch on ``code`` instead of parsing messages.
    """

    code = "AGENTSTORE_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Any = None, status_code: Optional[int] = None):
        self.message = message
        self.details = details
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail={"error": message, "code": self.code, "details": details},
        )


class ValidationError(AgentStoreError):
    code = "VALIDATION_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST


class NotFoundError(AgentStoreError):
    code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND


class PaymentInvalidError(AgentStoreError):
    code = "PAYMENT_INVALID"
    status_code_default = status.HTTP_402_PAYMENT_REQUIRED


class AlreadyPurchasedError(AgentStoreError):
    code = "ALREADY_PURCHASED"
    status_code_default = status.HTTP_409_CONFLICT


class ReplayError(AgentStoreError):
    code = "TRANSACTION_REPLAY"
    status_code_default = status.HTTP_409_CONFLICT


class UpstreamError(AgentStoreError):
    code = "UPSTREAM_ERROR"
    status_code_default = status.HTTP_502_BAD_GATEWAY


class ConfigurationError(AgentStoreError):
    code = "CONFIGURATION_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
