"""Application error taxonomy

Every error carries a stable ``code`` and an HTTP status so the API layer can
render ``{"success": false, "error": {"code", "message"}}`` without knowing
which service raised it.
"""
from typing import Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 400
    code = "APP_ERROR"

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(AppError):
    """Invalid input"""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    """Resource not found"""
    status_code = 404
    code = "NOT_FOUND"


class AlreadySubscribedError(AppError):
    """User already has an active subscription"""
    status_code = 409
    code = "ALREADY_SUBSCRIBED"


class AlreadyConvertedError(AppError):
    """Click has already been converted"""
    status_code = 409
    code = "ALREADY_CONVERTED"


class NotActiveError(AppError):
    """Subscription is not active"""
    status_code = 409
    code = "NOT_ACTIVE"


class MissingPaymentMethodError(AppError):
    """Payment method is required for this provider"""
    status_code = 400
    code = "MISSING_PAYMENT_METHOD"


class InvalidPlanError(AppError):
    """Unknown subscription plan"""
    status_code = 400
    code = "INVALID_PLAN"


class InvalidTransitionError(AppError):
    """Subscription status transition not allowed"""
    status_code = 409
    code = "INVALID_TRANSITION"


class WebhookSignatureError(AppError):
    """Webhook signature verification failed"""
    status_code = 400
    code = "INVALID_SIGNATURE"


class ConcurrentUpdateError(AppError):
    """Resource is being modified by another request, retry later"""
    status_code = 503
    code = "CONCURRENT_UPDATE"


class ProviderError(AppError):
    """Payment provider request failed"""
    status_code = 502
    code = "PROVIDER_ERROR"

    def __init__(self, message: str = None, provider: str = None, provider_code: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.provider_code = provider_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.provider:
            data["provider"] = self.provider
        if self.provider_code:
            data["providerCode"] = self.provider_code
        return data
