"""Typed errors raised by the authorization store and resolvers."""

from fastapi import HTTPException, status


class AuthzError(Exception):
    """Base exception for the authorization engine."""

    code = "error"

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class StoreUnavailable(AuthzError):
    """Raised when the backing store cannot be reached or a query fails."""
    code = "store_unavailable"


class UnknownPrincipal(AuthzError):
    """Raised when no principal matches the given identifier."""
    code = "unknown_principal"


class UnknownCapability(AuthzError):
    """Raised when a capability name is not in the catalog."""
    code = "unknown_capability"


class InvalidInput(AuthzError):
    """Raised for empty or malformed principal identifiers and capability names."""
    code = "invalid_input"


# HTTP exception shortcuts
def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def service_unavailable(detail: str = "Authorization store unavailable") -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
