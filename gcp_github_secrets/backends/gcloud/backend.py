"""Cloud backend driving the gcloud CLI."""

import asyncio
import json
import logging
import re
from collections.abc import AsyncGenerator, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter

from gcp_github_secrets.backends.base import CloudBackend
from gcp_github_secrets.backends.gcloud.config import GcloudConfig
from gcp_github_secrets.backends.gcp_rest.models import (
    PoolResource,
    ProjectResource,
    ProviderResource,
    SecretResource,
    SecretVersionResource,
    ServiceAccountResource,
    ServiceState,
)
from gcp_github_secrets.errors import CloudApiError
from gcp_github_secrets.models.resources import (
    IamPolicy,
    Project,
    Secret,
    SecretVersion,
    ServiceAccount,
    WorkloadIdentityPool,
    WorkloadIdentityPoolProvider,
)

log = logging.getLogger(__name__)

_REASON = re.compile(
    r"\b(NOT_FOUND|PERMISSION_DENIED|ALREADY_EXISTS|FAILED_PRECONDITION|"
    r"INVALID_ARGUMENT|ABORTED|UNAUTHENTICATED|RESOURCE_EXHAUSTED)\b"
)
_NOT_FOUND_TEXT = re.compile(r"not found|does not exist|may not exist", re.IGNORECASE)

_SERVICE_STATES = TypeAdapter(list[ServiceState])


def gcloud_error(args: Sequence[str], stderr: str) -> CloudApiError:
    """Build a CloudApiError from gcloud's stderr."""
    message = stderr.strip()
    if match := _REASON.search(message):
        reason: str | None = match.group(1)
    elif _NOT_FOUND_TEXT.search(message):
        reason = "NOT_FOUND"
    else:
        reason = None
    # Positional words only, e.g. "gcloud iam service-accounts create"
    words = [arg for arg in args if not arg.startswith("-")][:4]
    return CloudApiError(message, reason=reason, request=" ".join(["gcloud", *words]))


def location_args(project_id: str) -> list[str]:
    return ["--location=global", f"--project={project_id}"]


@dataclass(frozen=True, kw_only=True)
class GcloudBackend(CloudBackend):
    """Backend issuing the same commands an operator would type."""

    config: GcloudConfig

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: GcloudConfig
    ) -> AsyncGenerator["GcloudBackend", None]:
        """Create backend; gcloud holds no session to clean up."""
        yield cls(config=config)

    async def run_gcloud(self, *args: str, stdin: bytes | None = None) -> bytes:
        """Run gcloud non-interactively and return its stdout.

        Raises:
            CloudApiError: If gcloud exits with a non-zero status

        """
        command = [self.config.gcloud_path, *args, "--quiet"]
        if self.config.account:
            command.append(f"--account={self.config.account}")
        if impersonate := self.config.impersonate_service_account:
            command.append(f"--impersonate-service-account={impersonate}")

        log.debug("Running %s", " ".join(command[:6]))
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=(
                asyncio.subprocess.DEVNULL if stdin is None else asyncio.subprocess.PIPE
            ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(stdin)

        if process.returncode != 0:
            raise gcloud_error(args, stderr.decode(errors="replace"))
        return stdout

    async def _json(self, *args: str, stdin: bytes | None = None) -> Any:
        output = await self.run_gcloud(*args, "--format=json", stdin=stdin)
        return json.loads(output) if output.strip() else None

    async def _describe(
        self, *args: str, absent: Collection[str] = ("NOT_FOUND",)
    ) -> Any | None:
        try:
            return await self._json(*args)
        except CloudApiError as exc:
            if exc.reason in absent:
                log.debug("%s: absent (%s)", exc.request, exc.reason)
                return None
            raise

    async def get_project(self, project_id: str) -> Project | None:
        data = await self._describe(
            "projects",
            "describe",
            project_id,
            absent=("NOT_FOUND", "PERMISSION_DENIED"),
        )
        if data is None:
            return None
        project = ProjectResource.model_validate(data)
        return Project(
            project_id=project.project_id,
            project_number=project.project_number,
            display_name=project.name,
            state=project.lifecycle_state,
        )

    async def create_project(self, project_id: str, display_name: str) -> Project:
        await self.run_gcloud(
            "projects", "create", project_id, f"--name={display_name}"
        )
        project = await self.get_project(project_id)
        if project is None:
            raise CloudApiError(
                f"Project {project_id} is not visible after creation",
                request="gcloud projects create",
            )
        return project

    async def enable_services(
        self, project_id: str, services: Sequence[str]
    ) -> Sequence[str]:
        data = await self._json(
            "services", "list", "--enabled", f"--project={project_id}"
        )
        states = _SERVICE_STATES.validate_python(data or [])
        enabled = {state.service_id for state in states}
        missing = [service for service in services if service not in enabled]
        if missing:
            log.info("Enabling services on %s: %s", project_id, ", ".join(missing))
            await self.run_gcloud(
                "services", "enable", *missing, f"--project={project_id}"
            )
        return missing

    async def get_pool(
        self, project_id: str, pool_id: str
    ) -> WorkloadIdentityPool | None:
        data = await self._describe(
            "iam",
            "workload-identity-pools",
            "describe",
            pool_id,
            *location_args(project_id),
        )
        if data is None:
            return None
        pool = PoolResource.model_validate(data)
        return WorkloadIdentityPool(
            pool_id=pool_id,
            display_name=pool.display_name or "",
            description=pool.description or "",
            state=pool.state,
            disabled=pool.disabled,
        )

    async def create_pool(
        self, project_id: str, pool: WorkloadIdentityPool
    ) -> WorkloadIdentityPool:
        await self.run_gcloud(
            "iam",
            "workload-identity-pools",
            "create",
            pool.pool_id,
            f"--display-name={pool.display_name}",
            f"--description={pool.description}",
            *location_args(project_id),
        )
        return pool

    async def undelete_pool(self, project_id: str, pool_id: str) -> None:
        await self.run_gcloud(
            "iam",
            "workload-identity-pools",
            "undelete",
            pool_id,
            *location_args(project_id),
        )

    async def get_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> WorkloadIdentityPoolProvider | None:
        data = await self._describe(
            "iam",
            "workload-identity-pools",
            "providers",
            "describe",
            provider_id,
            f"--workload-identity-pool={pool_id}",
            *location_args(project_id),
        )
        if data is None:
            return None
        provider = ProviderResource.model_validate(data)
        return WorkloadIdentityPoolProvider(
            provider_id=provider_id,
            pool_id=pool_id,
            display_name=provider.display_name or "",
            description=provider.description or "",
            attribute_mapping=provider.attribute_mapping,
            attribute_condition=provider.attribute_condition,
            issuer_uri=provider.oidc.issuer_uri if provider.oidc else None,
            state=provider.state,
            disabled=provider.disabled,
        )

    @staticmethod
    def _trust_args(provider: WorkloadIdentityPoolProvider) -> list[str]:
        mapping = ",".join(f"{k}={v}" for k, v in provider.attribute_mapping.items())
        return [
            f"--attribute-mapping={mapping}",
            f"--attribute-condition={provider.attribute_condition or ''}",
        ]

    async def create_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> WorkloadIdentityPoolProvider:
        await self.run_gcloud(
            "iam",
            "workload-identity-pools",
            "providers",
            "create-oidc",
            provider.provider_id,
            f"--workload-identity-pool={provider.pool_id}",
            f"--display-name={provider.display_name}",
            f"--description={provider.description}",
            *self._trust_args(provider),
            f"--issuer-uri={provider.issuer_uri}",
            *location_args(project_id),
        )
        return provider

    async def update_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> None:
        await self.run_gcloud(
            "iam",
            "workload-identity-pools",
            "providers",
            "update-oidc",
            provider.provider_id,
            f"--workload-identity-pool={provider.pool_id}",
            *self._trust_args(provider),
            *location_args(project_id),
        )

    async def undelete_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> None:
        await self.run_gcloud(
            "iam",
            "workload-identity-pools",
            "providers",
            "undelete",
            provider_id,
            f"--workload-identity-pool={pool_id}",
            *location_args(project_id),
        )

    async def get_service_account(
        self, project_id: str, email: str
    ) -> ServiceAccount | None:
        data = await self._describe(
            "iam", "service-accounts", "describe", email, f"--project={project_id}"
        )
        if data is None:
            return None
        account = ServiceAccountResource.model_validate(data)
        return ServiceAccount(
            account_id=account.email.split("@", 1)[0],
            email=account.email,
            display_name=account.display_name or "",
            description=account.description or "",
        )

    async def create_service_account(
        self, project_id: str, account: ServiceAccount
    ) -> ServiceAccount:
        data = await self._json(
            "iam",
            "service-accounts",
            "create",
            account.account_id,
            f"--display-name={account.display_name}",
            f"--description={account.description}",
            f"--project={project_id}",
        )
        if data:
            created = ServiceAccountResource.model_validate(data)
            return account.model_copy(update={"email": created.email})
        return account

    async def add_project_iam_member(
        self, project_id: str, role: str, member: str
    ) -> bool:
        policy = IamPolicy.model_validate(
            await self._json("projects", "get-iam-policy", project_id)
        )
        if policy.has_member(role, member):
            return False
        await self.run_gcloud(
            "projects",
            "add-iam-policy-binding",
            project_id,
            f"--member={member}",
            f"--role={role}",
            "--condition=None",
            "--format=none",
        )
        return True

    async def add_service_account_iam_member(
        self, project_id: str, email: str, role: str, member: str
    ) -> bool:
        policy = IamPolicy.model_validate(
            await self._json(
                "iam",
                "service-accounts",
                "get-iam-policy",
                email,
                f"--project={project_id}",
            )
        )
        if policy.has_member(role, member):
            return False
        await self.run_gcloud(
            "iam",
            "service-accounts",
            "add-iam-policy-binding",
            email,
            f"--member={member}",
            f"--role={role}",
            f"--project={project_id}",
            "--format=none",
        )
        return True

    async def get_secret(self, project_id: str, secret_id: str) -> Secret | None:
        data = await self._describe(
            "secrets", "describe", secret_id, f"--project={project_id}"
        )
        if data is None:
            return None
        secret = SecretResource.model_validate(data)
        return Secret(secret_id=secret_id, name=secret.name)

    async def create_secret(self, project_id: str, secret_id: str) -> Secret:
        data = await self._json(
            "secrets",
            "create",
            secret_id,
            "--replication-policy=automatic",
            f"--project={project_id}",
        )
        secret = SecretResource.model_validate(data)
        return Secret(secret_id=secret_id, name=secret.name)

    async def access_secret_version(
        self, project_id: str, secret_id: str, version: str = "latest"
    ) -> bytes | None:
        try:
            return await self.run_gcloud(
                "secrets",
                "versions",
                "access",
                version,
                f"--secret={secret_id}",
                f"--project={project_id}",
            )
        except CloudApiError as exc:
            if exc.reason in {"NOT_FOUND", "FAILED_PRECONDITION"}:
                return None
            raise

    async def add_secret_version(
        self, project_id: str, secret_id: str, payload: bytes
    ) -> SecretVersion:
        data = await self._json(
            "secrets",
            "versions",
            "add",
            secret_id,
            "--data-file=-",
            f"--project={project_id}",
            stdin=payload,
        )
        version = SecretVersionResource.model_validate(data)
        return SecretVersion(
            name=version.name,
            version_id=version.name.rsplit("/", 1)[-1],
            state=version.state,
        )
