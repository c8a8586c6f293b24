"""Google REST API backend module."""

from gcp_github_secrets.backends.gcp_rest.backend import GcpRestBackend
from gcp_github_secrets.backends.gcp_rest.config import GcpRestConfig
from gcp_github_secrets.backends.gcp_rest.manifest import gcp_rest_manifest

__all__ = ["GcpRestBackend", "GcpRestConfig", "gcp_rest_manifest"]
