"""Configuration for the gcloud CLI backend."""

from pydantic import BaseModel


class GcloudConfig(BaseModel):
    """Configuration for the gcloud CLI backend.

    Credentials come from the gcloud installation itself; `account` and
    `impersonate_service_account` select which of them is used.
    """

    gcloud_path: str = "gcloud"
    account: str | None = None
    impersonate_service_account: str | None = None
