"""Abstract base class for cloud backends."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from gcp_github_secrets.models.resources import (
    IamPolicy,
    Project,
    Secret,
    SecretVersion,
    ServiceAccount,
    WorkloadIdentityPool,
    WorkloadIdentityPoolProvider,
)


async def ensure_policy_member(
    get_policy: Callable[[], Awaitable[IamPolicy]],
    set_policy: Callable[[IamPolicy], Awaitable[object]],
    role: str,
    member: str,
) -> bool:
    """Add `member` to `role` with one read-modify-write cycle.

    The policy etag read here is sent back on write, so a concurrent
    modification makes the write fail instead of dropping bindings.

    Returns:
        True if the policy was written, False if the member was present

    """
    policy = await get_policy()
    if policy.has_member(role, member):
        return False
    await set_policy(policy.with_member(role, member))
    return True


class CloudBackend(ABC):
    """Abstract access to the cloud resources of a trust bridge.

    "get" methods return None when the resource does not exist. Every other
    failure is raised as CloudApiError with the provider's message.
    """

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None:
        """Describe a project, None if it is missing or not visible."""

    @abstractmethod
    async def create_project(self, project_id: str, display_name: str) -> Project:
        """Create a project and wait until it is usable."""

    @abstractmethod
    async def enable_services(
        self, project_id: str, services: Sequence[str]
    ) -> Sequence[str]:
        """Enable APIs on the project.

        Returns:
            The services that were not enabled before

        """

    @abstractmethod
    async def get_pool(
        self, project_id: str, pool_id: str
    ) -> WorkloadIdentityPool | None:
        """Describe a workload identity pool (including soft-deleted ones)."""

    @abstractmethod
    async def create_pool(
        self, project_id: str, pool: WorkloadIdentityPool
    ) -> WorkloadIdentityPool:
        """Create a workload identity pool."""

    @abstractmethod
    async def undelete_pool(self, project_id: str, pool_id: str) -> None:
        """Restore a soft-deleted workload identity pool."""

    @abstractmethod
    async def get_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> WorkloadIdentityPoolProvider | None:
        """Describe a provider of a pool (including soft-deleted ones)."""

    @abstractmethod
    async def create_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> WorkloadIdentityPoolProvider:
        """Create an OIDC provider in its pool."""

    @abstractmethod
    async def update_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> None:
        """Set the attribute mapping and condition of an existing provider."""

    @abstractmethod
    async def undelete_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> None:
        """Restore a soft-deleted provider."""

    @abstractmethod
    async def get_service_account(
        self, project_id: str, email: str
    ) -> ServiceAccount | None:
        """Describe a service account."""

    @abstractmethod
    async def create_service_account(
        self, project_id: str, account: ServiceAccount
    ) -> ServiceAccount:
        """Create a service account."""

    @abstractmethod
    async def add_project_iam_member(
        self, project_id: str, role: str, member: str
    ) -> bool:
        """Grant `role` on the project to `member`; False if already granted."""

    @abstractmethod
    async def add_service_account_iam_member(
        self, project_id: str, email: str, role: str, member: str
    ) -> bool:
        """Grant `role` on a service account to `member`; False if already granted."""

    @abstractmethod
    async def get_secret(self, project_id: str, secret_id: str) -> Secret | None:
        """Describe a secret container."""

    @abstractmethod
    async def create_secret(self, project_id: str, secret_id: str) -> Secret:
        """Create a secret container with automatic replication."""

    @abstractmethod
    async def access_secret_version(
        self, project_id: str, secret_id: str, version: str = "latest"
    ) -> bytes | None:
        """Read a version's payload.

        Returns:
            The payload, or None if the version does not exist or is not
            enabled (disabled or destroyed)

        """

    @abstractmethod
    async def add_secret_version(
        self, project_id: str, secret_id: str, payload: bytes
    ) -> SecretVersion:
        """Add a new version; earlier versions are left untouched."""
