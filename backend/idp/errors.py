"""Error taxonomy shared by the ceremony engine, the assertion issuer and the store.

Every error carries the HTTP status and the message that is safe to show the
client. Details meant for operators go to the log, not into ``message``.
"""

class IdpError(Exception):
    status_code = 400
    message = "Bad request"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

class BadRequest(IdpError):
    message = "Bad request"

class Conflict(IdpError):
    status_code = 409
    message = "An account with this email already exists"

class Unauthorized(IdpError):
    status_code = 401
    message = "Invalid email or password"

class InvalidCeremonyState(IdpError):
    message = "User or challenge is missing"

class VerificationFailed(IdpError):
    message = "Verification failed"

class UnknownAuthenticator(IdpError):
    message = "Unknown User or Authenticator"

class InvalidRequestContext(IdpError):
    message = "Invalid Sec-Fetch-Dest header"

class InvalidOrigin(IdpError):
    message = "Invalid Origin"

class AccountMismatch(IdpError):
    message = "Invalid account_id"

class StoreConflict(IdpError):
    """A concurrent write won; the caller may retry."""

    status_code = 409
    message = "Concurrent update, please retry"

class UnknownHostname(IdpError):
    status_code = 404
    message = "Unknown hostname"

class CrossOriginRequest(IdpError):
    status_code = 403
    message = "Request must come from this identity provider"
