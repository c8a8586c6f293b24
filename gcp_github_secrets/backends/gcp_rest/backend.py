"""Cloud backend calling Google's REST APIs with aiohttp."""

import asyncio
import base64
import logging
from collections.abc import AsyncGenerator, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import ValidationError

from gcp_github_secrets.backends.base import CloudBackend, ensure_policy_member
from gcp_github_secrets.backends.gcp_rest.config import GcpRestConfig
from gcp_github_secrets.backends.gcp_rest.models import (
    RPC_CODE_TO_REASON,
    AccessSecretVersionResponse,
    BatchGetServicesResponse,
    ErrorResponse,
    Operation,
    PoolResource,
    ProjectResource,
    ProviderResource,
    SecretResource,
    SecretVersionResource,
    ServiceAccountResource,
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

# Latest version is disabled or destroyed
UNREADABLE_VERSION_REASONS = frozenset({"FAILED_PRECONDITION"})


def api_error(method: str, url: str, status: int, text: str) -> CloudApiError:
    """Build a CloudApiError from a Google API error response."""
    try:
        body = ErrorResponse.model_validate_json(text).error
    except ValidationError:
        return CloudApiError(text, http_status=status, request=f"{method} {url}")
    return CloudApiError(
        body.message,
        http_status=status,
        reason=body.status,
        request=f"{method} {url}",
    )


@dataclass(frozen=True, kw_only=True)
class GcpRestBackend(CloudBackend):
    """Backend for Resource Manager, Service Usage, IAM and Secret Manager."""

    config: GcpRestConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: GcpRestConfig
    ) -> AsyncGenerator["GcpRestBackend", None]:
        """Create backend with managed session lifecycle."""
        headers = {
            "Authorization": f"Bearer {config.access_token.get_secret_value()}",
            "Accept": "application/json",
        }
        if config.quota_project:
            headers["x-goog-user-project"] = config.quota_project
        async with aiohttp.ClientSession(headers=headers) as session:
            yield cls(config=config, session=session)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Any = None,
        missing: Collection[int] = (),
    ) -> dict[str, Any] | None:
        """Send a request and return the decoded JSON body.

        Returns None when the response status is in `missing`.
        """
        log.debug("%s %s", method, url)
        async with self.session.request(
            method, url, json=json, params=params
        ) as response:
            if response.status in missing:
                return None
            if response.status >= 400:
                text = await response.text()
                raise api_error(method, url, response.status, text)
            if response.status == 204:
                return {}
            data: dict[str, Any] = await response.json(content_type=None) or {}
            return data

    async def _call(
        self, method: str, url: str, *, json: Any = None, params: Any = None
    ) -> dict[str, Any]:
        data = await self._request(method, url, json=json, params=params)
        if data is None:
            raise CloudApiError("Empty response", request=f"{method} {url}")
        return data

    async def _wait(self, base_url: str, data: dict[str, Any]) -> Operation:
        """Poll a long-running operation until it is done.

        Raises:
            TimeoutError: If the operation does not finish in time
            CloudApiError: If the operation finished with an error

        """
        operation = Operation.model_validate(data)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.operation_timeout

        while not operation.done:
            if loop.time() >= deadline:
                raise TimeoutError(
                    f"Operation {operation.name} did not complete within "
                    f"{self.config.operation_timeout} seconds"
                )
            log.debug("Waiting for operation %s", operation.name)
            await asyncio.sleep(self.config.operation_poll_interval)
            operation = Operation.model_validate(
                await self._call("GET", f"{base_url}/v1/{operation.name}")
            )

        if operation.error is not None:
            raise CloudApiError(
                operation.error.message,
                reason=RPC_CODE_TO_REASON.get(operation.error.code),
                request=f"operation {operation.name}",
            )
        return operation

    def _project_url(self, project_id: str) -> str:
        return f"{self.config.resource_manager_url}/v1/projects/{project_id}"

    def _pools_url(self, project_id: str) -> str:
        return (
            f"{self.config.iam_url}/v1/projects/{project_id}"
            "/locations/global/workloadIdentityPools"
        )

    def _providers_url(self, project_id: str, pool_id: str) -> str:
        return f"{self._pools_url(project_id)}/{pool_id}/providers"

    def _service_account_url(self, project_id: str, email: str) -> str:
        return f"{self.config.iam_url}/v1/projects/{project_id}/serviceAccounts/{email}"

    def _secrets_url(self, project_id: str) -> str:
        return f"{self.config.secret_manager_url}/v1/projects/{project_id}/secrets"

    async def get_project(self, project_id: str) -> Project | None:
        # Resource Manager answers 403 for projects that do not exist
        data = await self._request(
            "GET", self._project_url(project_id), missing={403, 404}
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
        url = f"{self.config.resource_manager_url}/v1/projects"
        data = await self._call(
            "POST", url, json={"projectId": project_id, "name": display_name}
        )
        await self._wait(self.config.resource_manager_url, data)

        project = await self.get_project(project_id)
        if project is None:
            raise CloudApiError(
                f"Project {project_id} is not visible after creation",
                request=f"POST {url}",
            )
        return project

    async def enable_services(
        self, project_id: str, services: Sequence[str]
    ) -> Sequence[str]:
        base_url = f"{self.config.service_usage_url}/v1/projects/{project_id}/services"
        data = await self._call(
            "GET",
            f"{base_url}:batchGet",
            params=[
                ("names", f"projects/{project_id}/services/{service}")
                for service in services
            ],
        )
        states = {
            state.service_id: state.state
            for state in BatchGetServicesResponse.model_validate(data).services
        }
        missing = [service for service in services if states.get(service) != "ENABLED"]
        if not missing:
            return []

        log.info("Enabling services on %s: %s", project_id, ", ".join(missing))
        data = await self._call(
            "POST", f"{base_url}:batchEnable", json={"serviceIds": missing}
        )
        await self._wait(self.config.service_usage_url, data)
        return missing

    async def get_pool(
        self, project_id: str, pool_id: str
    ) -> WorkloadIdentityPool | None:
        data = await self._request(
            "GET", f"{self._pools_url(project_id)}/{pool_id}", missing={404}
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
        data = await self._call(
            "POST",
            self._pools_url(project_id),
            params={"workloadIdentityPoolId": pool.pool_id},
            json={"displayName": pool.display_name, "description": pool.description},
        )
        await self._wait(self.config.iam_url, data)
        return pool

    async def undelete_pool(self, project_id: str, pool_id: str) -> None:
        data = await self._call(
            "POST", f"{self._pools_url(project_id)}/{pool_id}:undelete", json={}
        )
        await self._wait(self.config.iam_url, data)

    async def get_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> WorkloadIdentityPoolProvider | None:
        data = await self._request(
            "GET",
            f"{self._providers_url(project_id, pool_id)}/{provider_id}",
            missing={404},
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

    async def create_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> WorkloadIdentityPoolProvider:
        body: dict[str, Any] = {
            "displayName": provider.display_name,
            "description": provider.description,
            "attributeMapping": dict(provider.attribute_mapping),
            "oidc": {"issuerUri": provider.issuer_uri},
        }
        if provider.attribute_condition:
            body["attributeCondition"] = provider.attribute_condition
        data = await self._call(
            "POST",
            self._providers_url(project_id, provider.pool_id),
            params={"workloadIdentityPoolProviderId": provider.provider_id},
            json=body,
        )
        await self._wait(self.config.iam_url, data)
        return provider

    async def update_provider(
        self, project_id: str, provider: WorkloadIdentityPoolProvider
    ) -> None:
        url = self._providers_url(project_id, provider.pool_id)
        data = await self._call(
            "PATCH",
            f"{url}/{provider.provider_id}",
            params={"updateMask": "attributeMapping,attributeCondition"},
            json={
                "attributeMapping": dict(provider.attribute_mapping),
                "attributeCondition": provider.attribute_condition or "",
            },
        )
        await self._wait(self.config.iam_url, data)

    async def undelete_provider(
        self, project_id: str, pool_id: str, provider_id: str
    ) -> None:
        data = await self._call(
            "POST",
            f"{self._providers_url(project_id, pool_id)}/{provider_id}:undelete",
            json={},
        )
        await self._wait(self.config.iam_url, data)

    async def get_service_account(
        self, project_id: str, email: str
    ) -> ServiceAccount | None:
        data = await self._request(
            "GET", self._service_account_url(project_id, email), missing={404}
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
        data = await self._call(
            "POST",
            f"{self.config.iam_url}/v1/projects/{project_id}/serviceAccounts",
            json={
                "accountId": account.account_id,
                "serviceAccount": {
                    "displayName": account.display_name,
                    "description": account.description,
                },
            },
        )
        created = ServiceAccountResource.model_validate(data)
        return account.model_copy(update={"email": created.email})

    async def add_project_iam_member(
        self, project_id: str, role: str, member: str
    ) -> bool:
        url = self._project_url(project_id)

        async def get_policy() -> IamPolicy:
            data = await self._call(
                "POST",
                f"{url}:getIamPolicy",
                json={"options": {"requestedPolicyVersion": 3}},
            )
            return IamPolicy.model_validate(data)

        async def set_policy(policy: IamPolicy) -> None:
            await self._call(
                "POST", f"{url}:setIamPolicy", json={"policy": policy.to_api()}
            )

        return await ensure_policy_member(get_policy, set_policy, role, member)

    async def add_service_account_iam_member(
        self, project_id: str, email: str, role: str, member: str
    ) -> bool:
        url = self._service_account_url(project_id, email)

        async def get_policy() -> IamPolicy:
            data = await self._call("POST", f"{url}:getIamPolicy", json={})
            return IamPolicy.model_validate(data)

        async def set_policy(policy: IamPolicy) -> None:
            await self._call(
                "POST", f"{url}:setIamPolicy", json={"policy": policy.to_api()}
            )

        return await ensure_policy_member(get_policy, set_policy, role, member)

    async def get_secret(self, project_id: str, secret_id: str) -> Secret | None:
        data = await self._request(
            "GET", f"{self._secrets_url(project_id)}/{secret_id}", missing={404}
        )
        if data is None:
            return None
        secret = SecretResource.model_validate(data)
        return Secret(secret_id=secret_id, name=secret.name)

    async def create_secret(self, project_id: str, secret_id: str) -> Secret:
        data = await self._call(
            "POST",
            self._secrets_url(project_id),
            params={"secretId": secret_id},
            json={"replication": {"automatic": {}}},
        )
        secret = SecretResource.model_validate(data)
        return Secret(secret_id=secret_id, name=secret.name)

    async def access_secret_version(
        self, project_id: str, secret_id: str, version: str = "latest"
    ) -> bytes | None:
        url = f"{self._secrets_url(project_id)}/{secret_id}/versions/{version}:access"
        try:
            data = await self._request("GET", url, missing={404})
        except CloudApiError as exc:
            if exc.reason in UNREADABLE_VERSION_REASONS:
                log.info("Version %s of %s is not enabled", version, secret_id)
                return None
            raise
        if data is None:
            return None
        response = AccessSecretVersionResponse.model_validate(data)
        return base64.b64decode(response.payload.data)

    async def add_secret_version(
        self, project_id: str, secret_id: str, payload: bytes
    ) -> SecretVersion:
        data = await self._call(
            "POST",
            f"{self._secrets_url(project_id)}/{secret_id}:addVersion",
            json={"payload": {"data": base64.b64encode(payload).decode()}},
        )
        version = SecretVersionResource.model_validate(data)
        return SecretVersion(
            name=version.name,
            version_id=version.name.rsplit("/", 1)[-1],
            state=version.state,
        )
