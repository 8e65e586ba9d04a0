"""
Normalized JSON envelope: {ok, data, error, message}.
The message is short and meant for direct display.
"""
from fastapi.responses import JSONResponse

from services.errors import (
    AuthGateError,
    ExpiredSubscription,
    InvalidCredentials,
    LookupFailed,
    ProvisioningFailed,
    SignupRejected,
)

# HTTP status per error type
ERROR_STATUS = {
    InvalidCredentials: 401,
    ExpiredSubscription: 403,
    SignupRejected: 400,
    ProvisioningFailed: 500,
    LookupFailed: 503,
}


def success_response(data=None, message="OK", status=200):
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            "data": data or {},
            "error": None,
            "message": message,
        }
    )


def error_response(error_code, status=400, message="An error occurred", data=None):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "data": data or {},
            "error": error_code,
            "message": message,
        }
    )


def gate_error_response(error: AuthGateError, prefix: str = "", message=None):
    """Envelope for an AuthGateError; unknown subclasses map to 503"""
    status = ERROR_STATUS.get(type(error), 503)
    return error_response(
        error.code,
        status=status,
        message=message or f"{prefix}{error.message}",
    )
