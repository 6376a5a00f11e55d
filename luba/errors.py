"""
Error taxonomy shared by services and routers.

Every user action fails with one of these; the handler in ``luba.main`` turns
them into a JSON body carrying ``message`` and the class name.
"""
from fastapi import status


class LubaError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LubaError):
    """Malformed or missing user input. Raised before any network call."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = fields or {}


class AuthError(LubaError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotApproved(AuthError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(LubaError):
    status_code = status.HTTP_404_NOT_FOUND


class NetworkError(LubaError):
    """I/O failure talking to the store or an external provider."""

    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidTransition(LubaError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class AlreadyTaken(InvalidTransition):
    """Another driver accepted the request first."""


class PartialWriteDivergence(LubaError):
    """The shared copy was written but the customer's copy could not be."""

    status_code = status.HTTP_207_MULTI_STATUS

    def __init__(self, message: str, request_id: str):
        super().__init__(message)
        self.request_id = request_id
