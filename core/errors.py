"""
core/errors.py -- Exception taxonomy for the Orbit access subsystem.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the API layer should use. Route handlers never build error payloads from
``str(exc)`` of a backend or upstream failure -- those classes carry a fixed,
generic ``message`` and the real cause is logged where it is caught.

Hierarchy:
  OrbitError
    NotFoundError           -- record absent (null or 404 depending on call)
      BlobNotFoundError     -- key absent in the KeyValueStore
      UserNotFoundError     -- directory has no record for the handle
    ValidationError         -- malformed input (400)
      InvalidRepoUrlError
    AuthFlowError           -- CLI authorization protocol errors (400)
      SessionNotFoundError  -- state unknown, expired, or already consumed
      InvalidGrantError     -- PKCE verifier does not match the challenge
      AuthorizationPendingError -- provider callback has not landed yet
    RepoAccessDeniedError   -- repository not visible to the caller (403)
    UpstreamError           -- OAuth provider failure (generic message)
    BackendError            -- object-store failure other than not-found (500)
      CorruptRecordError    -- stored bytes do not decode into the entity

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, directory/, or storage/.
"""


class OrbitError(Exception):
    """Base class for every error raised by the access subsystem."""

    code: str = "internal_error"
    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(OrbitError):
    code = "not_found"
    status_code = 404
    message = "Not found."


class BlobNotFoundError(NotFoundError):
    """Raised by KeyValueStore.get() when the key does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No object stored under {key!r}")


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    message = "User not found."


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(OrbitError):
    code = "validation_error"
    status_code = 400
    message = "Invalid request."


class InvalidRepoUrlError(ValidationError):
    code = "invalid_repo_url"

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__("Invalid repository URL.")


# ---------------------------------------------------------------------------
# CLI authorization flow
# ---------------------------------------------------------------------------


class AuthFlowError(OrbitError):
    status_code = 400


class SessionNotFoundError(AuthFlowError):
    code = "session_not_found"
    message = "Authorization session not found or expired."


class InvalidGrantError(AuthFlowError):
    code = "invalid_grant"
    message = "Invalid code_verifier"


class AuthorizationPendingError(AuthFlowError):
    code = "authorization_pending"
    message = "The user has not completed authorization yet."


class RepoAccessDeniedError(OrbitError):
    """The GitHub token cannot see the repository a room token was asked for."""

    code = "repo_access_denied"
    status_code = 403
    message = "Repository not found or no access."


class UpstreamError(OrbitError):
    """The OAuth provider rejected or failed a request.

    status_code is 400 for the token exchange (the client retries or restarts
    the flow); the message stays generic regardless of what the provider said.
    """

    code = "token_exchange_failed"
    status_code = 400
    message = "Token exchange with the identity provider failed."


# ---------------------------------------------------------------------------
# Storage backend
# ---------------------------------------------------------------------------


class BackendError(OrbitError):
    code = "backend_error"
    status_code = 500
    message = "Storage backend failure."


class CorruptRecordError(BackendError):
    """Stored bytes exist but cannot be decoded into the expected entity."""

    code = "corrupt_record"

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt record at {key!r}: {reason}")
