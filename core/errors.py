"""
core/errors.py -- Resource-level exceptions shared by the API routers.

Auth failures live in auth/errors.py. This module holds the errors a
resource router raises after authentication has already succeeded.
"""


class NotFoundError(Exception):
    """A resource does not exist or is not owned by the calling principal.

    The two cases deliberately share one error: callers must not be able to
    probe for the existence of another principal's records.
    """

    status_code = 404

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
