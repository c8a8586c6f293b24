"""Pydantic models for Google Cloud REST API payloads."""

from collections.abc import Mapping
from typing import Any

from pydantic import Field

from gcp_github_secrets.models.base import ApiModel

RPC_CODE_TO_REASON: Mapping[int, str] = {
    1: "CANCELLED",
    3: "INVALID_ARGUMENT",
    4: "DEADLINE_EXCEEDED",
    5: "NOT_FOUND",
    6: "ALREADY_EXISTS",
    7: "PERMISSION_DENIED",
    8: "RESOURCE_EXHAUSTED",
    9: "FAILED_PRECONDITION",
    10: "ABORTED",
    13: "INTERNAL",
    14: "UNAVAILABLE",
    16: "UNAUTHENTICATED",
}


class ErrorBody(ApiModel):
    """The `error` object of a Google API error response."""

    code: int | None = None
    message: str = ""
    status: str | None = None


class ErrorResponse(ApiModel):
    """Google API error response."""

    error: ErrorBody


class OperationStatus(ApiModel):
    """google.rpc.Status attached to a failed operation."""

    code: int = 0
    message: str = ""


class Operation(ApiModel):
    """Long-running operation returned by create/enable calls."""

    name: str
    done: bool = False
    error: OperationStatus | None = None
    response: dict[str, Any] | None = None


class ProjectResource(ApiModel):
    """Project from the Resource Manager v1 API."""

    project_id: str
    project_number: str
    name: str | None = None
    lifecycle_state: str = "ACTIVE"


class ServiceState(ApiModel):
    """Service from the Service Usage API."""

    name: str
    state: str = "STATE_UNSPECIFIED"

    @property
    def service_id(self) -> str:
        """Service name without the `projects/{p}/services/` prefix."""
        return self.name.rsplit("/", 1)[-1]


class BatchGetServicesResponse(ApiModel):
    """Response of services:batchGet."""

    services: list[ServiceState] = Field(default_factory=list)


class PoolResource(ApiModel):
    """Workload identity pool from the IAM API."""

    name: str
    display_name: str | None = None
    description: str | None = None
    state: str = "ACTIVE"
    disabled: bool = False


class OidcSettings(ApiModel):
    """OIDC settings of a workload identity pool provider."""

    issuer_uri: str
    allowed_audiences: list[str] = Field(default_factory=list)


class ProviderResource(ApiModel):
    """Workload identity pool provider from the IAM API."""

    name: str
    display_name: str | None = None
    description: str | None = None
    state: str = "ACTIVE"
    disabled: bool = False
    attribute_mapping: dict[str, str] = Field(default_factory=dict)
    attribute_condition: str | None = None
    oidc: OidcSettings | None = None


class ServiceAccountResource(ApiModel):
    """Service account from the IAM API."""

    name: str
    email: str
    project_id: str | None = None
    unique_id: str | None = None
    display_name: str | None = None
    description: str | None = None


class SecretResource(ApiModel):
    """Secret container from the Secret Manager API."""

    name: str
    replication: dict[str, Any] | None = None


class SecretPayload(ApiModel):
    """Base64 payload of a secret version."""

    data: str = ""


class AccessSecretVersionResponse(ApiModel):
    """Response of versions/{v}:access."""

    name: str
    payload: SecretPayload


class SecretVersionResource(ApiModel):
    """Secret version metadata returned by addVersion."""

    name: str
    state: str = "ENABLED"
