"""Loading of cloud backends from entry points."""

from importlib.metadata import entry_points
from typing import Any

from gcp_github_secrets.backends.manifest import BackendManifest
from gcp_github_secrets.errors import BackendNotFoundError

ENTRY_POINT_GROUP = "gcp_github_secrets.backends"


def load_backend_manifest(key: str) -> BackendManifest[Any]:
    """Load a backend manifest by key.

    Args:
        key: The backend key as registered in pyproject.toml
             (e.g., "gcp-rest", "gcloud")

    Returns:
        The backend manifest instance

    Raises:
        BackendNotFoundError: If no backend with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: BackendManifest[Any] = entry.load()
            return manifest

    available = sorted(e.name for e in entries)
    raise BackendNotFoundError(
        f"Backend '{key}' not found. Available backends: {available}"
    )
