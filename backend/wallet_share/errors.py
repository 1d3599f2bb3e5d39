"""
Engine error kinds.

Data conditions (no segment match, zero revenue, no approved profile) are
persisted as null/neutral fields and never raised. Only invariant
violations are raised, and always before anything is committed.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class EngineError(Exception):
    """Base class for engine invariant violations."""

    code = "ENGINE_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class AlreadyEnrolledError(EngineError):
    code = "ALREADY_ENROLLED"
    http_status = status.HTTP_409_CONFLICT


class InvalidTransitionError(EngineError):
    code = "INVALID_TRANSITION"
    http_status = status.HTTP_409_CONFLICT


class GraduatedRecordError(EngineError):
    code = "GRADUATED_IMMUTABLE"
    http_status = status.HTTP_409_CONFLICT


class TierCoverageError(EngineError):
    code = "TIER_COVERAGE"


class InvalidTierConfigError(EngineError):
    code = "INVALID_TIERS"


class CategoryInUseError(EngineError):
    code = "CATEGORY_IN_USE"
    http_status = status.HTTP_409_CONFLICT


class ProfileValidationError(EngineError):
    code = "INVALID_PROFILE"


class FeatureLimitError(EngineError):
    code = "FEATURE_LIMIT"
    http_status = status.HTTP_403_FORBIDDEN


class ConfigError(EngineError):
    code = "INVALID_CONFIG"


def to_http_exception(error: EngineError) -> HTTPException:
    """Translate an engine error into the API error shape."""
    return HTTPException(status_code=error.http_status, detail=error.to_dict())
