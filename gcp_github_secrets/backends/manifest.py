"""Backend manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from gcp_github_secrets.backends.base import CloudBackend


@dataclass(frozen=True, kw_only=True)
class BackendManifest[ConfigT: BaseModel]:
    """Manifest describing a cloud backend plugin.

    Holds the backend's configuration class and an async context manager
    factory, so backends are only imported when selected by key.
    """

    config_cls: type[ConfigT]
    backend_factory: Callable[[ConfigT], AbstractAsyncContextManager[CloudBackend]]
