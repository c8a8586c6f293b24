"""Trust model between GitHub's OIDC issuer and Google Cloud IAM.

Everything here is pure: the constants the provider is configured with,
the attribute condition gating which GitHub tokens are accepted, the
principal strings the IAM bindings grant, and the resource names handed
to the token-exchange side.
"""

import re
from collections.abc import Mapping, Sequence

from gcp_github_secrets.errors import UnscopedProviderError

GITHUB_ISSUER_URI = "https://token.actions.githubusercontent.com"

ATTRIBUTE_MAPPING: Mapping[str, str] = {
    "google.subject": "assertion.sub",
    "attribute.actor": "assertion.actor",
    "attribute.repository": "assertion.repository",
    "attribute.repository_owner": "assertion.repository_owner",
}

SECRET_ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"
WORKLOAD_IDENTITY_USER_ROLE = "roles/iam.workloadIdentityUser"

REQUIRED_SERVICES: Sequence[str] = (
    "iamcredentials.googleapis.com",
    "secretmanager.googleapis.com",
    "cloudresourcemanager.googleapis.com",
)

IAM_PRINCIPAL_HOST = "iam.googleapis.com"

REPOSITORY_PATTERN = re.compile(r"^[^/]+/(\*|[^/]+)$")

# A comparison of the repository or its owner against something, e.g.
# `assertion.repository_owner == 'acme'` or `attribute.repository in [...]`.
_SCOPING_COMPARISON = re.compile(
    r"\b(?:assertion|attribute)\.repository(?:_owner|_id|_owner_id)?"
    r"\s*(?:==|\bin\b|\.startsWith\()"
)

UNSCOPED_DEFAULT_CONDITION = "assertion.repository_owner != ''"


def is_wildcard(pattern: str) -> bool:
    """Whether the pattern grants every repository of its owner."""
    return pattern.endswith("/*")


def pattern_owner(pattern: str) -> str:
    """Return the owner part of an `owner/name` or `owner/*` pattern."""
    return pattern.split("/", 1)[0]


def validate_repository_pattern(pattern: str) -> str:
    """Return the pattern if it is `owner/name` or `owner/*`."""
    if not REPOSITORY_PATTERN.match(pattern):
        raise ValueError(
            f"Invalid repository pattern '{pattern}': expected 'owner/name' or "
            "'owner/*'"
        )
    return pattern


def cel_string(value: str) -> str:
    """Quote a value as a CEL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _any_equal(attribute: str, values: Sequence[str]) -> str:
    comparisons = [f"{attribute} == {cel_string(value)}" for value in values]
    if len(comparisons) == 1:
        return comparisons[0]
    return "(" + " || ".join(comparisons) + ")"


def build_attribute_condition(
    patterns: Sequence[str], allowed_refs: Sequence[str] = ()
) -> str:
    """Build the provider's attribute condition from repository patterns.

    The condition asserts ownership so that tokens minted for other GitHub
    tenants are rejected at the federation step, before any binding is
    looked at. Ref scoping is only added when refs are given.
    """
    owners = list(dict.fromkeys(pattern_owner(pattern) for pattern in patterns))
    if not owners:
        condition = UNSCOPED_DEFAULT_CONDITION
    else:
        condition = _any_equal("assertion.repository_owner", owners)

    return scope_to_refs(condition, allowed_refs)


def scope_to_refs(condition: str, allowed_refs: Sequence[str]) -> str:
    """Require one of `allowed_refs` in addition to `condition`."""
    if not allowed_refs:
        return condition
    return f"{condition} && {_any_equal('assertion.ref', allowed_refs)}"


def is_scoped_condition(condition: str | None) -> bool:
    """Whether the condition compares the repository or owner claim."""
    return bool(condition) and bool(_SCOPING_COMPARISON.search(condition or ""))


def ensure_scoped(condition: str | None, binding_count: int) -> None:
    """Reject a pool/provider pair that neither gate scopes by repository.

    Raises:
        UnscopedProviderError: If the condition has no repository/owner
            comparison and there are no authorization bindings.

    """
    if binding_count == 0 and not is_scoped_condition(condition):
        raise UnscopedProviderError(
            "Refusing an unscoped identity provider: the attribute condition "
            f"{condition!r} does not compare the repository or its owner and "
            "no repository bindings are configured"
        )


def pool_resource_name(project_number: str, pool_id: str) -> str:
    """Fully-qualified workload identity pool name."""
    return (
        f"projects/{project_number}/locations/global/workloadIdentityPools/{pool_id}"
    )


def provider_resource_name(
    project_number: str, pool_id: str, provider_id: str
) -> str:
    """Fully-qualified provider name consumed by the token exchange."""
    return f"{pool_resource_name(project_number, pool_id)}/providers/{provider_id}"


def principal_for_pattern(project_number: str, pool_id: str, pattern: str) -> str:
    """Principal set matching the GitHub identities a pattern allows.

    `owner/*` maps to the `repository_owner` attribute, an exact pattern to
    the `repository` attribute.
    """
    pool = pool_resource_name(project_number, pool_id)
    base = f"principalSet://{IAM_PRINCIPAL_HOST}/{pool}"
    if is_wildcard(pattern):
        return f"{base}/attribute.repository_owner/{pattern_owner(pattern)}"
    return f"{base}/attribute.repository/{pattern}"


def service_account_email(account_id: str, project_id: str) -> str:
    """Email of a user-managed service account."""
    return f"{account_id}@{project_id}.iam.gserviceaccount.com"


def service_account_member(email: str) -> str:
    """IAM member string for a service account."""
    return f"serviceAccount:{email}"
