"""Configuration for fetching secrets from a GitHub Actions job."""

import re

from pydantic import BaseModel, SecretStr, field_validator

PROVIDER_NAME = re.compile(
    r"^projects/(?P<number>\d+)/locations/global/workloadIdentityPools/"
    r"[^/]+/providers/[^/]+$"
)
SERVICE_ACCOUNT_EMAIL = re.compile(
    r"^[^@]+@(?P<project>[^.]+)\.iam\.gserviceaccount\.com$"
)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class FetchConfig(BaseModel):
    """Inputs of the token exchange, mostly taken from the runner environment."""

    workload_identity_provider: str
    service_account_email: str | None = None
    id_token_request_url: str
    id_token_request_token: SecretStr
    sts_url: str = "https://sts.googleapis.com/v1/token"
    iam_credentials_url: str = "https://iamcredentials.googleapis.com"
    secret_manager_url: str = "https://secretmanager.googleapis.com"
    token_lifetime_seconds: int = 600

    @field_validator("workload_identity_provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        value = value.strip()
        if not PROVIDER_NAME.match(value):
            raise ValueError(
                f"Invalid workload identity provider '{value}': expected "
                "projects/{number}/locations/global/workloadIdentityPools/"
                "{pool}/providers/{provider}"
            )
        return value

    @field_validator("service_account_email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def sts_audience(self) -> str:
        """Audience STS expects for the federated exchange."""
        return f"//iam.googleapis.com/{self.workload_identity_provider}"

    @property
    def id_token_audience(self) -> str:
        """Audience requested for the GitHub OIDC token."""
        return f"https://iam.googleapis.com/{self.workload_identity_provider}"

    @property
    def default_project(self) -> str:
        """Project short secret names resolve against.

        The service account's project when one is used, otherwise the
        number of the project owning the provider.
        """
        if self.service_account_email and (
            match := SERVICE_ACCOUNT_EMAIL.match(self.service_account_email)
        ):
            return match.group("project")
        if match := PROVIDER_NAME.match(self.workload_identity_provider):
            return match.group("number")
        raise ValueError(
            f"Invalid workload identity provider '{self.workload_identity_provider}'"
        )
