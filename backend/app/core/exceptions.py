"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class NotAuthenticatedError(AuthenticationError):
    """No credential was presented"""
    def __init__(self):
        super().__init__("Not authenticated")


class InvalidSignatureError(AuthenticationError):
    """Token could not be parsed or its signature did not verify"""
    def __init__(self):
        super().__init__("Invalid token")


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""
    def __init__(self):
        super().__init__("Token has expired")


class TokenRevokedError(AuthenticationError):
    """JWT token has been revoked"""
    def __init__(self):
        super().__init__("Token has been revoked")


class InvalidRefreshTokenError(AuthenticationError):
    """
    Refresh token rejected.

    Forged, replayed, expired and unknown refresh tokens all map here with
    the same message.
    """
    def __init__(self):
        super().__init__("Invalid refresh token")


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


class AccessDeniedError(AuthorizationError):
    """Caller may not perform this action"""
    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class EmailNotVerifiedError(AuthorizationError):
    """External principal has no verified email"""
    def __init__(self):
        super().__init__("Email not verified. Please verify your email address to continue.")


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)


# System Errors
class RevocationStoreUnavailableError(BaseAPIException):
    """Revocation backing store could not be reached"""
    def __init__(self, message: str = "Token revocation service unavailable"):
        super().__init__(message, status_code=503)
