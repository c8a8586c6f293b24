"""Tests for cloud resource models."""

from gcp_github_secrets.models.resources import (
    IamPolicy,
    PolicyBinding,
    WorkloadIdentityPoolProvider,
)
from gcp_github_secrets.trust import ATTRIBUTE_MAPPING

ROLE = "roles/secretmanager.secretAccessor"


class TestIamPolicy:
    """Tests for IamPolicy read-modify-write helpers."""

    def test_with_member_appends_to_existing_binding(self) -> None:
        """Adds the member to the existing unconditional binding."""
        policy = IamPolicy(
            etag="abc", bindings=[PolicyBinding(role=ROLE, members=["user:a@x.com"])]
        )

        updated = policy.with_member(ROLE, "user:b@x.com")

        assert updated.members_of(ROLE) == ["user:a@x.com", "user:b@x.com"]
        assert updated.etag == "abc"
        assert policy.members_of(ROLE) == ["user:a@x.com"]

    def test_with_member_creates_binding(self) -> None:
        """Creates a binding for a role not yet in the policy."""
        updated = IamPolicy().with_member(ROLE, "user:a@x.com")

        assert updated.has_member(ROLE, "user:a@x.com")
        assert len(updated.bindings) == 1

    def test_with_member_is_idempotent(self) -> None:
        """Does not duplicate a member already granted."""
        policy = IamPolicy().with_member(ROLE, "user:a@x.com")

        assert policy.with_member(ROLE, "user:a@x.com").members_of(ROLE) == [
            "user:a@x.com"
        ]

    def test_conditional_bindings_are_ignored(self) -> None:
        """A conditional grant does not count as the unconditional one."""
        policy = IamPolicy(
            bindings=[
                PolicyBinding(
                    role=ROLE,
                    members=["user:a@x.com"],
                    condition={"title": "t", "expression": "true"},
                )
            ]
        )

        assert not policy.has_member(ROLE, "user:a@x.com")
        updated = policy.with_member(ROLE, "user:a@x.com")
        assert len(updated.bindings) == 2

    def test_round_trips_unknown_fields(self) -> None:
        """Keeps fields it does not model when serialized back."""
        policy = IamPolicy.model_validate(
            {
                "version": 3,
                "etag": "abc",
                "bindings": [{"role": ROLE, "members": ["user:a@x.com"]}],
                "auditConfigs": [{"service": "allServices"}],
            }
        )

        body = policy.with_member(ROLE, "user:b@x.com").to_api()

        assert body["auditConfigs"] == [{"service": "allServices"}]
        assert body["etag"] == "abc"
        assert body["bindings"] == [
            {"role": ROLE, "members": ["user:a@x.com", "user:b@x.com"]}
        ]


class TestProviderTrustSettings:
    """Tests for WorkloadIdentityPoolProvider.trust_settings_match."""

    def test_matches_same_settings(self) -> None:
        """Equal mapping and condition match."""
        provider = WorkloadIdentityPoolProvider(
            provider_id="gs-github",
            pool_id="gs-pool",
            attribute_mapping=ATTRIBUTE_MAPPING,
            attribute_condition="assertion.repository_owner == 'acme'",
        )

        assert provider.trust_settings_match(provider.model_copy())

    def test_detects_condition_drift(self) -> None:
        """A different condition does not match."""
        provider = WorkloadIdentityPoolProvider(
            provider_id="gs-github",
            pool_id="gs-pool",
            attribute_mapping=ATTRIBUTE_MAPPING,
            attribute_condition="assertion.repository_owner == 'acme'",
        )
        drifted = provider.model_copy(update={"attribute_condition": None})

        assert not provider.trust_settings_match(drifted)

    def test_empty_condition_equals_none(self) -> None:
        """An empty condition and no condition are the same setting."""
        provider = WorkloadIdentityPoolProvider(
            provider_id="gs-github", pool_id="gs-pool", attribute_condition=""
        )

        assert provider.trust_settings_match(
            provider.model_copy(update={"attribute_condition": None})
        )
