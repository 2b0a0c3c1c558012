"""Exceptions raised by the measurement providers, the aggregator and the web layer.

Every error carries a machine-readable ``error_code`` and the HTTP status the
web layer answers with.
"""

from typing import Optional, Dict, Any


class FarolError(Exception):
    """Base exception for all Farol errors."""

    error_code: str = "FAROL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        response = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


class ValidationError(FarolError):
    """Input validation failed."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class InvalidDomainError(ValidationError):
    error_code = "INVALID_DOMAIN"

    def __init__(self, domain: str, reason: str = "Invalid domain"):
        super().__init__(f"{reason}: {domain}", details={"domain": domain, "reason": reason})


class ProviderError(FarolError):
    """A measurement provider could not produce any observation."""

    error_code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}", details={"provider": provider})
        self.provider = provider


class DiagnosticError(FarolError):
    """Every provider failed for a diagnostic run."""

    error_code = "DIAGNOSTIC_FAILED"
    status_code = 502


class NotFoundError(FarolError):
    error_code = "NOT_FOUND"
    status_code = 404
