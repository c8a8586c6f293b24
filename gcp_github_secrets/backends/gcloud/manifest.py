"""gcloud CLI backend manifest."""

from gcp_github_secrets.backends.gcloud.backend import GcloudBackend
from gcp_github_secrets.backends.gcloud.config import GcloudConfig
from gcp_github_secrets.backends.manifest import BackendManifest

gcloud_manifest = BackendManifest(
    config_cls=GcloudConfig,
    backend_factory=GcloudBackend.from_config,
)
