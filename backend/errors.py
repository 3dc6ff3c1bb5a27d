"""
Error taxonomy for integrations and deployments.

Every error carries the HTTP status it maps to when it escapes a request
handler, and a short machine-readable code.
"""


class DeploymentError(Exception):
    status_code = 500
    code = "deployment_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def __str__(self) -> str:
        return self.message


class ValidationError(DeploymentError):
    """Bad request shape. Raised before any external call."""
    status_code = 400
    code = "validation_error"


class IntegrationRequiredError(DeploymentError):
    """A prerequisite provider connection is missing or unusable."""
    status_code = 400
    code = "integration_required"


class ProjectNotFoundError(DeploymentError):
    status_code = 404
    code = "project_not_found"


class PermissionDeniedError(DeploymentError):
    status_code = 403
    code = "forbidden"


class DeploymentInProgressError(DeploymentError):
    status_code = 409
    code = "deployment_in_progress"


class InvalidTransitionError(DeploymentError):
    status_code = 409
    code = "invalid_transition"


class AttemptSupersededError(DeploymentError):
    """The attempt no longer holds the project; another attempt took over its claim."""
    status_code = 409
    code = "attempt_superseded"


class AuthError(DeploymentError):
    """Provider rejected the token (invalid, expired, missing scope)."""
    status_code = 400
    code = "auth_error"


class UpstreamError(DeploymentError):
    """Provider call failed: non-2xx response, timeout or transport error."""
    status_code = 502
    code = "upstream_error"


class MissingRepoIdError(UpstreamError):
    status_code = 400
    code = "missing_repo_id"


class PushError(DeploymentError):
    """Local git operation failed."""
    status_code = 502
    code = "push_error"


class ArchiveError(DeploymentError):
    """Stored project archive is missing, unreadable or unsafe."""
    status_code = 422
    code = "archive_error"


class DecryptionError(DeploymentError):
    """Stored token ciphertext is corrupted or was written with another key."""
    status_code = 400
    code = "decryption_error"
