"""Cloud resources the trust bridge reconciles."""

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import Field

from gcp_github_secrets.models.base import ApiModel, Model


class Project(Model):
    """A GCP project with its numeric identifier."""

    project_id: str
    project_number: str
    display_name: str | None = None
    state: str = "ACTIVE"


class WorkloadIdentityPool(Model):
    """Namespace of external identities trusted through federation."""

    pool_id: str
    display_name: str = "GitHub Actions"
    description: str = "Workload identity pool for GitHub Actions OIDC"
    state: str = "ACTIVE"
    disabled: bool = False


class WorkloadIdentityPoolProvider(Model):
    """OIDC trust configuration for one issuer inside a pool."""

    provider_id: str
    pool_id: str
    display_name: str = "GitHub"
    description: str = "GitHub Actions OIDC provider"
    attribute_mapping: Mapping[str, str] = Field(default_factory=dict)
    attribute_condition: str | None = None
    # None when the provider federates something other than OIDC
    issuer_uri: str | None = None
    state: str = "ACTIVE"
    disabled: bool = False

    def trust_settings_match(self, other: "WorkloadIdentityPoolProvider") -> bool:
        """Whether mapping and condition are the same as `other`'s."""
        return (
            dict(self.attribute_mapping) == dict(other.attribute_mapping)
            and (self.attribute_condition or None)
            == (other.attribute_condition or None)
        )


class ServiceAccount(Model):
    """Service identity the repositories impersonate."""

    account_id: str
    email: str
    display_name: str = "GitHub Actions Secret Reader"
    description: str = "Service account for GitHub Actions to read secrets via OIDC"


class Secret(Model):
    """Secret Manager container with automatic replication."""

    secret_id: str
    name: str


class SecretVersion(Model):
    """One immutable value under a secret."""

    name: str
    version_id: str
    state: str = "ENABLED"


class IamBinding(Model):
    """An authorization grant the reconciler ensured."""

    resource: str
    role: str
    member: str
    pattern: str | None = None


class PolicyBinding(ApiModel):
    """Role binding as it appears in an IAM policy."""

    role: str
    members: list[str] = Field(default_factory=list)
    condition: dict[str, Any] | None = None


class IamPolicy(ApiModel):
    """IAM policy document exchanged with getIamPolicy/setIamPolicy."""

    version: int | None = None
    etag: str | None = None
    bindings: list[PolicyBinding] = Field(default_factory=list)

    def has_member(self, role: str, member: str) -> bool:
        """Whether an unconditional binding grants `role` to `member`."""
        return any(
            binding.role == role
            and binding.condition is None
            and member in binding.members
            for binding in self.bindings
        )

    def with_member(self, role: str, member: str) -> "IamPolicy":
        """Return a copy granting `role` to `member` unconditionally."""
        bindings = [binding.model_copy(deep=True) for binding in self.bindings]
        for binding in bindings:
            if binding.role == role and binding.condition is None:
                if member not in binding.members:
                    binding.members.append(member)
                break
        else:
            bindings.append(PolicyBinding(role=role, members=[member]))
        return self.model_copy(update={"bindings": bindings})

    def members_of(self, role: str) -> Sequence[str]:
        """Members granted `role` by unconditional bindings."""
        return [
            member
            for binding in self.bindings
            if binding.role == role and binding.condition is None
            for member in binding.members
        ]
