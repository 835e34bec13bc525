"""
auth/errors.py -- Typed failures of the authentication subsystem.

Each error carries the HTTP status and the client-facing message. Messages
are fixed strings: provider responses and storage details are logged, never
copied into an error a client can see.

  ExternalAuthError       -- federated login failed (no code, provider refused,
                             profile unreadable). Terminal for that attempt.
  UnauthenticatedError    -- no Authorization header, or not "Bearer <token>".
                             Raised before any storage access.
  InvalidCredentialError  -- token unknown, revoked, or owned by an inactive
                             principal. One message for all three so a client
                             cannot learn which case occurred.
"""


class AuthError(Exception):
    status_code = 401
    message = "Authentication required"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ExternalAuthError(AuthError):
    status_code = 500
    message = "Authentication failed"


class UnauthenticatedError(AuthError):
    message = "Token not provided"


class InvalidCredentialError(AuthError):
    message = "Invalid token"
