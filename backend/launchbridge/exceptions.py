"""Error taxonomy for the launch and host-channel protocols."""

from fastapi import HTTPException


class LaunchBridgeError(Exception):
    """Base class for protocol errors.

    ``detail`` is the short, public diagnostic returned to the platform.
    The exception message may carry more context and is only logged.
    """

    status_code = 500
    detail = "Launch failed"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        super().__init__(message or self.detail)
        if detail is not None:
            self.detail = detail


class BadRequest(LaunchBridgeError):
    """Malformed or missing launch parameters."""

    status_code = 400
    detail = "Missing or invalid launch parameters"


class InvalidState(LaunchBridgeError):
    """Unknown, expired or replayed state."""

    status_code = 400
    detail = "Invalid or expired state parameter"


class TokenVerificationFailed(LaunchBridgeError):
    """Identity token signature, issuer, audience or expiry check failed."""

    status_code = 401
    detail = "Identity token verification failed"


class NonceMismatch(LaunchBridgeError):
    """Identity token nonce does not match the login attempt."""

    status_code = 401
    detail = "Identity token nonce mismatch"


class Conflict(LaunchBridgeError):
    """State value already present in the store."""

    status_code = 409
    detail = "Login attempt already exists"


class InvalidTicket(LaunchBridgeError):
    """Launch session ticket missing, expired or for another purpose."""

    status_code = 401
    detail = "Invalid or expired launch ticket"


class TokenExchangeFailed(LaunchBridgeError):
    """Learn authorization code could not be exchanged for a user token."""

    status_code = 502
    detail = "Failed to obtain a Learn access token"


class KeySetUnavailable(LaunchBridgeError):
    """The platform key set could not be fetched or parsed."""

    status_code = 503
    detail = "Platform signing keys unavailable"


class PanelCreationFailed(LaunchBridgeError):
    """Host refused to create a panel. Non-fatal, the caller may retry."""

    detail = "Panel creation failed"


class ChannelUnavailable(LaunchBridgeError):
    """No handshake response arrived from the host."""

    detail = "Host channel unavailable"


def to_http_exception(error: LaunchBridgeError) -> HTTPException:
    """Route-level translation. Only the short public detail leaves the server."""
    return HTTPException(status_code=error.status_code, detail=error.detail)
