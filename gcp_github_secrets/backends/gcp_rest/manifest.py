"""Google REST API backend manifest."""

from gcp_github_secrets.backends.gcp_rest.backend import GcpRestBackend
from gcp_github_secrets.backends.gcp_rest.config import GcpRestConfig
from gcp_github_secrets.backends.manifest import BackendManifest

gcp_rest_manifest = BackendManifest(
    config_cls=GcpRestConfig,
    backend_factory=GcpRestBackend.from_config,
)
