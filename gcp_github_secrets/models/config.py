"""Configuration record describing one trust bridge deployment."""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal, Self

from pydantic import (
    AliasChoices,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from gcp_github_secrets.models.base import Model
from gcp_github_secrets.trust import (
    build_attribute_condition,
    ensure_scoped,
    scope_to_refs,
    service_account_email,
    validate_repository_pattern,
)

DNS_LABEL = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
SECRET_ID = re.compile(r"^[A-Za-z0-9_-]{1,255}$")
MAX_SECRET_PAYLOAD_BYTES = 65536


@dataclass(frozen=True, kw_only=True)
class DirectBinding:
    """Repository principals are granted the secret role directly."""

    kind: Literal["direct"] = "direct"


@dataclass(frozen=True, kw_only=True)
class ViaServiceAccount:
    """Repository principals impersonate a service account holding the role."""

    account_id: str
    email: str
    kind: Literal["service-account"] = "service-account"


type AuthorizationStrategy = DirectBinding | ViaServiceAccount


class BridgeConfig(Model):
    """Declarative inputs for reconciling the trust bridge.

    Keys are accepted in snake_case or camelCase; unknown keys are an error
    so that a misspelled option never falls back to its default.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    project_id: str = Field(..., description="GCP project id")
    project_display_name: str = Field(
        default="GitHub Secrets", description="Display name if the project is created"
    )
    resource_prefix: str = Field(
        default="github-secrets", description="Prefix for pool/provider/account ids"
    )
    allowed_repositories: Sequence[str] = Field(
        default_factory=tuple,
        validation_alias=AliasChoices(
            "allowed_repositories",
            "allowedRepositories",
            "allowedRepositoryPatterns",
        ),
        description="Repository patterns, 'owner/name' or 'owner/*'",
    )
    secrets: Mapping[str, SecretStr] = Field(
        default_factory=dict, description="Secret name to secret value"
    )
    use_service_account: bool = Field(
        default=True,
        description="Impersonate a dedicated service account instead of binding "
        "repository principals directly",
    )
    create_project: bool = Field(
        default=True, description="Create the project when it does not exist"
    )
    attribute_condition: str | None = Field(
        default=None,
        description="Override for the provider attribute condition",
    )
    allowed_refs: Sequence[str] = Field(
        default_factory=tuple,
        description="Optional git refs appended to the attribute condition",
    )

    @field_validator("resource_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not DNS_LABEL.match(value):
            raise ValueError(
                f"resource_prefix '{value}' must be a lowercase DNS label "
                "(letters, digits and hyphens, starting with a letter)"
            )
        if value.startswith("gcp-"):
            raise ValueError("resource_prefix must not start with 'gcp-'")
        return value

    @field_validator("allowed_repositories")
    @classmethod
    def _check_patterns(cls, value: Sequence[str]) -> Sequence[str]:
        patterns = [validate_repository_pattern(p.strip()) for p in value]
        return tuple(dict.fromkeys(patterns))

    @field_validator("allowed_refs")
    @classmethod
    def _check_refs(cls, value: Sequence[str]) -> Sequence[str]:
        refs = [ref.strip() for ref in value]
        if any(not ref for ref in refs):
            raise ValueError("allowed_refs must not contain empty refs")
        return tuple(refs)

    @field_validator("secrets")
    @classmethod
    def _check_secrets(cls, value: Mapping[str, SecretStr]) -> Mapping[str, SecretStr]:
        for name, secret in value.items():
            if not SECRET_ID.match(name):
                raise ValueError(
                    f"Invalid secret name '{name}': use letters, digits, '-' "
                    "and '_' (at most 255 characters)"
                )
            size = len(secret.get_secret_value().encode())
            if size > MAX_SECRET_PAYLOAD_BYTES:
                raise ValueError(
                    f"Secret '{name}' is {size} bytes, the limit is "
                    f"{MAX_SECRET_PAYLOAD_BYTES}"
                )
        return value

    @model_validator(mode="after")
    def _check_derived(self) -> Self:
        for label, identifier, low, high in (
            ("pool id", self.pool_id, 4, 32),
            ("provider id", self.provider_id, 4, 32),
        ):
            if not low <= len(identifier) <= high:
                raise ValueError(
                    f"Derived {label} '{identifier}' must be {low}-{high} characters"
                )
        if self.use_service_account and not 6 <= len(self.service_account_id) <= 30:
            raise ValueError(
                f"Derived service account id '{self.service_account_id}' must be "
                "6-30 characters"
            )
        ensure_scoped(self.effective_attribute_condition, self.binding_count)
        return self

    @property
    def pool_id(self) -> str:
        """Workload identity pool id."""
        return f"{self.resource_prefix}-pool"

    @property
    def provider_id(self) -> str:
        """OIDC provider id inside the pool."""
        return f"{self.resource_prefix}-github"

    @property
    def service_account_id(self) -> str:
        """Account id of the secret reader service account."""
        return f"{self.resource_prefix}-reader"

    @property
    def effective_attribute_condition(self) -> str:
        """Configured attribute condition, or the one derived from patterns.

        `allowed_refs` narrows a configured condition as well.
        """
        if self.attribute_condition:
            if not self.allowed_refs:
                return self.attribute_condition
            return scope_to_refs(f"({self.attribute_condition})", self.allowed_refs)
        return build_attribute_condition(self.allowed_repositories, self.allowed_refs)

    @property
    def authorization_strategy(self) -> AuthorizationStrategy:
        """How repository principals reach the secret accessor role."""
        if self.use_service_account:
            return ViaServiceAccount(
                account_id=self.service_account_id,
                email=service_account_email(self.service_account_id, self.project_id),
            )
        return DirectBinding()

    @property
    def binding_count(self) -> int:
        """Number of repository bindings (excludes the accessor grant)."""
        return len(self.allowed_repositories)
