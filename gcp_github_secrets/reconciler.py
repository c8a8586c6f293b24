"""Reconciliation of the trust bridge resource graph against a backend."""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from gcp_github_secrets.backends.base import CloudBackend
from gcp_github_secrets.errors import (
    ApiNotEnabled,
    AuthorizationFailure,
    CloudApiError,
    ProjectUnavailable,
    ProvisioningError,
    ResourceConflict,
    SecretWriteFailure,
)
from gcp_github_secrets.graph import (
    BindingSpec,
    PoolSpec,
    ProjectSpec,
    ProviderSpec,
    ResourceGraph,
    ResourceKind,
    ResourceNode,
    SecretSpec,
    ServiceAccountSpec,
    ServicesSpec,
    build_resource_graph,
)
from gcp_github_secrets.models.config import BridgeConfig, ViaServiceAccount
from gcp_github_secrets.models.resources import IamBinding, Project, Secret
from gcp_github_secrets.models.result import (
    ChangeAction,
    ReconcileResult,
    ResourceChange,
)
from gcp_github_secrets.trust import principal_for_pattern, provider_resource_name

log = logging.getLogger(__name__)


def classify_error(
    kind: ResourceKind, error: CloudApiError
) -> type[ProvisioningError]:
    """Pick the taxonomy class for a backend error raised by a step."""
    match kind:
        case ResourceKind.PROJECT:
            return ProjectUnavailable
        case ResourceKind.SERVICES:
            return ApiNotEnabled
        case ResourceKind.SECRET:
            return SecretWriteFailure
    if error.is_denied:
        return AuthorizationFailure
    if error.is_conflict:
        return ResourceConflict
    return ProvisioningError


@contextmanager
def step(node: ResourceNode) -> Iterator[None]:
    """Attach the step name to backend errors raised inside the block."""
    try:
        yield
    except CloudApiError as exc:
        raise classify_error(node.kind, exc)(node.key, exc) from exc
    except OSError as exc:
        # Timeouts, connection failures and a missing gcloud binary
        raise ProvisioningError(node.key, exc) from exc


@dataclass(kw_only=True)
class _RunState:
    """Results of the nodes applied so far in one reconciliation."""

    graph: ResourceGraph
    results: dict[str, object] = field(default_factory=dict)
    changes: dict[str, ResourceChange] = field(default_factory=dict)

    @property
    def project(self) -> Project:
        project = self.results.get(self.graph.project_key)
        if not isinstance(project, Project):
            raise ProvisioningError(
                self.graph.project_key, "project was not reconciled"
            )
        return project

    def record(
        self,
        node: ResourceNode,
        result: object,
        action: ChangeAction,
        detail: str | None = None,
    ) -> None:
        self.results[node.key] = result
        self.changes[node.key] = ResourceChange(
            key=node.key, kind=node.kind, action=action, detail=detail
        )


@dataclass(frozen=True, kw_only=True)
class TrustBridgeProvisioner:
    """Create or reconcile every resource of a trust bridge.

    Each step is create-if-absent and never destructive, so a failed run is
    recovered by running reconcile again.
    """

    backend: CloudBackend

    async def reconcile(self, config: BridgeConfig) -> ReconcileResult:
        """Reconcile all resources for `config` and return the identifiers.

        Raises:
            ProvisioningError: The first step that failed, with the backend
                error attached; remaining steps are cancelled

        """
        graph = build_resource_graph(config)
        log.info(
            "Reconciling %d resource(s) in project %s", len(graph), config.project_id
        )

        state = _RunState(graph=graph)
        await self._execute(graph, state)

        project = state.project
        strategy = config.authorization_strategy
        secret_names = {}
        for node in graph.of_kind(ResourceKind.SECRET):
            secret = state.results.get(node.key)
            if not isinstance(secret, Secret):
                raise ProvisioningError(node.key, "secret was not reconciled")
            secret_names[secret.secret_id] = secret.name

        return ReconcileResult(
            workload_identity_provider=provider_resource_name(
                project.project_number, config.pool_id, config.provider_id
            ),
            service_account_email=(
                strategy.email if isinstance(strategy, ViaServiceAccount) else None
            ),
            project_number=project.project_number,
            pool_id=config.pool_id,
            provider_id=config.provider_id,
            secret_names=secret_names,
            changes=[state.changes[key] for key in graph.nodes],
        )

    async def _execute(self, graph: ResourceGraph, state: _RunState) -> None:
        """Apply nodes as soon as their dependencies are done."""
        sorter = graph.sorter()
        pending: dict[asyncio.Task[None], str] = {}

        try:
            while sorter.is_active():
                for key in sorter.get_ready():
                    task = asyncio.create_task(
                        self._apply(graph.nodes[key], state), name=key
                    )
                    pending[task] = key

                done, _ = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    key = pending.pop(task)
                    task.result()
                    sorter.done(key)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _apply(self, node: ResourceNode, state: _RunState) -> None:
        log.debug("Applying %s", node.key)
        with step(node):
            match node.spec:
                case ProjectSpec() as spec:
                    await self._ensure_project(node, spec, state)
                case ServicesSpec() as spec:
                    await self._ensure_services(node, spec, state)
                case PoolSpec() as spec:
                    await self._ensure_pool(node, spec, state)
                case ProviderSpec() as spec:
                    await self._ensure_provider(node, spec, state)
                case ServiceAccountSpec() as spec:
                    await self._ensure_service_account(node, spec, state)
                case BindingSpec() as spec:
                    await self._ensure_binding(node, spec, state)
                case SecretSpec() as spec:
                    await self._ensure_secret(node, spec, state)
        change = state.changes[node.key]
        log.info("%s: %s", node.key, change.action)

    async def _ensure_project(
        self, node: ResourceNode, spec: ProjectSpec, state: _RunState
    ) -> None:
        project = await self.backend.get_project(spec.project_id)
        if project is not None:
            if project.state != "ACTIVE":
                raise ProjectUnavailable(
                    node.key,
                    f"project {spec.project_id} is in state {project.state}",
                )
            state.record(node, project, "unchanged")
            return

        if not spec.create_if_missing:
            raise ProjectUnavailable(
                node.key,
                f"project {spec.project_id} does not exist or is not accessible",
            )

        log.info("Creating project %s", spec.project_id)
        project = await self.backend.create_project(spec.project_id, spec.display_name)
        state.record(node, project, "created")

    async def _ensure_services(
        self, node: ResourceNode, spec: ServicesSpec, state: _RunState
    ) -> None:
        enabled = await self.backend.enable_services(spec.project_id, spec.services)
        if enabled:
            state.record(node, enabled, "updated", detail=", ".join(enabled))
        else:
            state.record(node, enabled, "unchanged")

    async def _ensure_pool(
        self, node: ResourceNode, spec: PoolSpec, state: _RunState
    ) -> None:
        desired = spec.pool
        existing = await self.backend.get_pool(spec.project_id, desired.pool_id)

        if existing is None:
            created = await self.backend.create_pool(spec.project_id, desired)
            state.record(node, created, "created")
            return

        if existing.state == "DELETED":
            log.info("Restoring soft-deleted pool %s", desired.pool_id)
            await self.backend.undelete_pool(spec.project_id, desired.pool_id)
            state.record(node, existing, "updated", detail="undeleted")
            return

        if (existing.display_name, existing.description) != (
            desired.display_name,
            desired.description,
        ):
            log.info(
                "Pool %s exists with different display metadata, leaving it as-is",
                desired.pool_id,
            )
        if existing.disabled:
            log.warning(
                "Pool %s is disabled and rejects every token; enable it to use "
                "the bridge",
                desired.pool_id,
            )
        state.record(
            node,
            existing,
            "unchanged",
            detail="disabled" if existing.disabled else None,
        )

    async def _ensure_provider(
        self, node: ResourceNode, spec: ProviderSpec, state: _RunState
    ) -> None:
        desired = spec.provider
        existing = await self.backend.get_provider(
            spec.project_id, desired.pool_id, desired.provider_id
        )

        if existing is None:
            created = await self.backend.create_provider(spec.project_id, desired)
            state.record(node, created, "created")
            return

        if existing.issuer_uri is None:
            raise ResourceConflict(
                node.key,
                f"provider {desired.provider_id} exists but is not an OIDC provider",
            )
        if existing.issuer_uri != desired.issuer_uri:
            raise ResourceConflict(
                node.key,
                f"provider {desired.provider_id} trusts issuer "
                f"{existing.issuer_uri}, expected {desired.issuer_uri}",
            )

        details = []
        if existing.state == "DELETED":
            log.info("Restoring soft-deleted provider %s", desired.provider_id)
            await self.backend.undelete_provider(
                spec.project_id, desired.pool_id, desired.provider_id
            )
            details.append("undeleted")

        if not existing.trust_settings_match(desired):
            log.warning(
                "Provider %s attribute mapping/condition drifted, updating "
                "(condition %r -> %r)",
                desired.provider_id,
                existing.attribute_condition,
                desired.attribute_condition,
            )
            await self.backend.update_provider(spec.project_id, desired)
            details.append("trust settings updated")

        if existing.disabled:
            log.warning(
                "Provider %s is disabled and rejects every token; enable it to "
                "use the bridge",
                desired.provider_id,
            )

        if details:
            state.record(node, desired, "updated", detail=", ".join(details))
        else:
            state.record(
                node,
                existing,
                "unchanged",
                detail="disabled" if existing.disabled else None,
            )

    async def _ensure_service_account(
        self, node: ResourceNode, spec: ServiceAccountSpec, state: _RunState
    ) -> None:
        existing = await self.backend.get_service_account(
            spec.project_id, spec.account.email
        )
        if existing is not None:
            state.record(node, existing, "unchanged")
            return

        created = await self.backend.create_service_account(
            spec.project_id, spec.account
        )
        state.record(node, created, "created")

    async def _ensure_binding(
        self, node: ResourceNode, spec: BindingSpec, state: _RunState
    ) -> None:
        if spec.member is not None:
            member = spec.member
        elif spec.pattern is not None:
            member = principal_for_pattern(
                state.project.project_number, spec.pool_id, spec.pattern
            )
        else:
            raise ProvisioningError(node.key, "binding has no member or pattern")

        if spec.target == "project":
            resource = f"projects/{spec.project_id}"
            changed = await self.backend.add_project_iam_member(
                spec.project_id, spec.role, member
            )
        elif (email := spec.service_account_email) is not None:
            resource = f"projects/{spec.project_id}/serviceAccounts/{email}"
            changed = await self.backend.add_service_account_iam_member(
                spec.project_id, email, spec.role, member
            )
        else:
            raise ProvisioningError(node.key, "binding has no service account")

        binding = IamBinding(
            resource=resource, role=spec.role, member=member, pattern=spec.pattern
        )
        state.record(node, binding, "created" if changed else "unchanged")

    async def _ensure_secret(
        self, node: ResourceNode, spec: SecretSpec, state: _RunState
    ) -> None:
        payload = spec.value.get_secret_value().encode()
        secret = await self.backend.get_secret(spec.project_id, spec.secret_id)

        if secret is None:
            secret = await self.backend.create_secret(spec.project_id, spec.secret_id)
            version = await self.backend.add_secret_version(
                spec.project_id, spec.secret_id, payload
            )
            state.record(node, secret, "created", detail=version.name)
            return

        current = await self.backend.access_secret_version(
            spec.project_id, spec.secret_id, "latest"
        )
        if current == payload:
            state.record(node, secret, "unchanged")
            return

        version = await self.backend.add_secret_version(
            spec.project_id, spec.secret_id, payload
        )
        state.record(node, secret, "updated", detail=version.name)
