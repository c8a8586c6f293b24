"""Error taxonomy for provisioning and secret access."""

from collections.abc import Mapping

HTTP_STATUS_TO_REASON: Mapping[int, str] = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    409: "ALREADY_EXISTS",
    429: "RESOURCE_EXHAUSTED",
    500: "INTERNAL",
    503: "UNAVAILABLE",
}

CONFLICT_REASONS = frozenset({"ALREADY_EXISTS", "ABORTED"})
DENIED_REASONS = frozenset({"PERMISSION_DENIED", "UNAUTHENTICATED"})


class CloudApiError(Exception):
    """Raised by a backend when the cloud provider rejects a request.

    Carries the HTTP status (REST backend) and/or the Google canonical
    status string (``PERMISSION_DENIED``, ``ALREADY_EXISTS``...).
    """

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        reason: str | None = None,
        request: str | None = None,
    ) -> None:
        if reason is None and http_status is not None:
            reason = HTTP_STATUS_TO_REASON.get(http_status)
        self.message = message
        self.http_status = http_status
        self.reason = reason
        self.request = request
        super().__init__(str(self))

    def __str__(self) -> str:
        parts = []
        if self.request:
            parts.append(self.request)
        if self.http_status is not None:
            parts.append(str(self.http_status))
        if self.reason:
            parts.append(self.reason)
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message

    @property
    def is_conflict(self) -> bool:
        """Whether the provider reported a conflicting existing resource."""
        return self.http_status == 409 or self.reason in CONFLICT_REASONS

    @property
    def is_denied(self) -> bool:
        """Whether the caller lacks the rights for the request."""
        return self.http_status in {401, 403} or self.reason in DENIED_REASONS


class ProvisioningError(Exception):
    """A reconciliation step failed.

    The failing step name and the underlying provider error are reported
    together; the caller re-runs reconciliation once the cause is fixed.
    """

    def __init__(self, step: str, cause: str | BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"{step}: {cause}")


class ProjectUnavailable(ProvisioningError):
    """The project is missing and cannot be created by the caller."""


class ApiNotEnabled(ProvisioningError):
    """A required API could not be enabled on the project."""


class ResourceConflict(ProvisioningError):
    """A same-named resource exists with incompatible immutable fields."""


class AuthorizationFailure(ProvisioningError):
    """The caller lacks rights to mutate IAM bindings or resources."""


class SecretWriteFailure(ProvisioningError):
    """A secret container or version could not be written."""


class UnscopedProviderError(ValueError):
    """Neither the attribute condition nor the bindings scope by repository."""


class BackendNotFoundError(Exception):
    """Raised when a backend is not found."""


class SecretAccessError(Exception):
    """A requested secret could not be read by the token-exchange client."""

    def __init__(self, secret: str, cause: str | BaseException) -> None:
        self.secret = secret
        self.cause = cause
        super().__init__(f"Failed to access secret '{secret}': {cause}")


class TokenExchangeError(Exception):
    """The GitHub OIDC token could not be exchanged for a Google token."""
