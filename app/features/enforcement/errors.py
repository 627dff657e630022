"""
Enforcement error taxonomy.

Every gate failure is raised as an `EnforcementError` and rendered by the
application's exception handler as:

    {"success": false, "code": <ErrorCode>, "message": <str>, ...context}
"""
import enum
from typing import Any

from fastapi import status


class ErrorCode(str, enum.Enum):
    FEATURE_DISABLED = "FEATURE_DISABLED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    PASSWORD_POLICY_VIOLATION = "PASSWORD_POLICY_VIOLATION"
    VERIFICATION_REQUIRED = "VERIFICATION_REQUIRED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    EMAIL_VERIFICATION_REQUIRED = "EMAIL_VERIFICATION_REQUIRED"
    TWO_FACTOR_REQUIRED = "TWO_FACTOR_REQUIRED"
    TWO_FACTOR_VERIFICATION_REQUIRED = "TWO_FACTOR_VERIFICATION_REQUIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


DEFAULT_STATUS = {
    ErrorCode.FEATURE_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorCode.LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.PASSWORD_POLICY_VIOLATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VERIFICATION_REQUIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_BALANCE: status.HTTP_403_FORBIDDEN,
    ErrorCode.EMAIL_VERIFICATION_REQUIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.TWO_FACTOR_REQUIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.TWO_FACTOR_VERIFICATION_REQUIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_PERMISSIONS: status.HTTP_403_FORBIDDEN,
    ErrorCode.AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.UPSTREAM_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class EnforcementError(Exception):
    """A gate decided to terminate the request."""

    def __init__(self, code: ErrorCode, message: str, status_code: int | None = None, **context: Any):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.status_code = status_code or DEFAULT_STATUS[self.code]
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "code": self.code.value,
            "message": self.message,
            **self.context,
        }

    def __repr__(self) -> str:
        return f"<EnforcementError(code={self.code.value}, status={self.status_code})>"
