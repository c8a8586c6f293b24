"""gcloud CLI backend module."""

from gcp_github_secrets.backends.gcloud.backend import GcloudBackend
from gcp_github_secrets.backends.gcloud.config import GcloudConfig
from gcp_github_secrets.backends.gcloud.manifest import gcloud_manifest

__all__ = ["GcloudBackend", "GcloudConfig", "gcloud_manifest"]
