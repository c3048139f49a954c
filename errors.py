"""
Custom error classes and error handling.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    """Base API error class."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(APIError):
    """No signed-in session."""
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401)


class InvalidCredentialsError(AuthenticationError):
    """Bad email/password pair."""
    def __init__(self, message: str = "Invalid email or password. Please try again."):
        super().__init__(message)


class AuthorizationError(APIError):
    """Authorization error."""
    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)


class NotFoundError(APIError):
    """Resource not found error."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ValidationError(APIError):
    def __init__(self, message: str = "Invalid request"):
        super().__init__(message, status_code=400)


class ConfirmationRequiredError(APIError):
    """Destructive operation issued without the confirmation step."""
    def __init__(self, message: str = "Are you sure? Repeat the request with confirm=true."):
        super().__init__(message, status_code=409)


class ConflictError(APIError):
    def __init__(self, message: str = "Conflicting document already exists"):
        super().__init__(message, status_code=409)


class StoreError(APIError):
    """Document store failure."""
    def __init__(self, message: str = "Server error"):
        super().__init__(message, status_code=500)


class StorePermissionError(StoreError):
    """The document store rejected a read or write."""
    def __init__(self, message: str = "You may not have the required permissions."):
        super().__init__(message)
        self.status_code = 403


class IdentityServiceError(APIError):
    """Identity provider failed for a reason other than bad credentials."""
    def __init__(self, message: str = "An unexpected error occurred. Please try again later."):
        super().__init__(message, status_code=502)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
