"""Configuration for the Google REST API backend."""

from pydantic import BaseModel, SecretStr


class GcpRestConfig(BaseModel):
    """Configuration for the Google REST API backend.

    The access token is an OAuth2 bearer token for the caller, e.g. the
    output of `gcloud auth print-access-token`.
    """

    access_token: SecretStr
    # Billing/quota project for user credentials (x-goog-user-project)
    quota_project: str | None = None
    resource_manager_url: str = "https://cloudresourcemanager.googleapis.com"
    service_usage_url: str = "https://serviceusage.googleapis.com"
    iam_url: str = "https://iam.googleapis.com"
    secret_manager_url: str = "https://secretmanager.googleapis.com"
    operation_poll_interval: float = 2.0
    operation_timeout: float = 300.0
