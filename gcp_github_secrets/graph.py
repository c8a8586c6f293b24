"""Declarative resource graph built from a bridge configuration.

Each node describes one resource to ensure and the keys of the nodes it
depends on. IAM bindings that modify the same policy are chained so that
their read-modify-write cycles never overlap.
"""

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from graphlib import TopologicalSorter
from typing import Literal

from pydantic import SecretStr

from gcp_github_secrets.models.config import BridgeConfig, ViaServiceAccount
from gcp_github_secrets.models.resources import (
    ServiceAccount,
    WorkloadIdentityPool,
    WorkloadIdentityPoolProvider,
)
from gcp_github_secrets.trust import (
    ATTRIBUTE_MAPPING,
    GITHUB_ISSUER_URI,
    REQUIRED_SERVICES,
    SECRET_ACCESSOR_ROLE,
    WORKLOAD_IDENTITY_USER_ROLE,
    service_account_member,
)


class ResourceKind(StrEnum):
    """Kinds of resource nodes, in the order they appear in reports."""

    PROJECT = "project"
    SERVICES = "services"
    POOL = "pool"
    PROVIDER = "provider"
    SERVICE_ACCOUNT = "service-account"
    BINDING = "binding"
    SECRET = "secret"


@dataclass(frozen=True, kw_only=True)
class ProjectSpec:
    project_id: str
    display_name: str
    create_if_missing: bool


@dataclass(frozen=True, kw_only=True)
class ServicesSpec:
    project_id: str
    services: Sequence[str]


@dataclass(frozen=True, kw_only=True)
class PoolSpec:
    project_id: str
    pool: WorkloadIdentityPool


@dataclass(frozen=True, kw_only=True)
class ProviderSpec:
    project_id: str
    provider: WorkloadIdentityPoolProvider


@dataclass(frozen=True, kw_only=True)
class ServiceAccountSpec:
    project_id: str
    account: ServiceAccount


@dataclass(frozen=True, kw_only=True)
class BindingSpec:
    """A role grant on the project policy or on a service account policy.

    Either `member` is known up front (the service account itself) or it is
    derived from `pattern` once the project number is known.
    """

    project_id: str
    target: Literal["project", "service-account"]
    role: str
    pool_id: str
    member: str | None = None
    pattern: str | None = None
    service_account_email: str | None = None


@dataclass(frozen=True, kw_only=True)
class SecretSpec:
    project_id: str
    secret_id: str
    value: SecretStr = field(repr=False)


type ResourceSpec = (
    ProjectSpec
    | ServicesSpec
    | PoolSpec
    | ProviderSpec
    | ServiceAccountSpec
    | BindingSpec
    | SecretSpec
)


@dataclass(frozen=True, kw_only=True)
class ResourceNode:
    """One resource to ensure, keyed by `kind/identifier`."""

    key: str
    kind: ResourceKind
    spec: ResourceSpec
    depends_on: frozenset[str] = frozenset()


@dataclass(frozen=True, kw_only=True)
class ResourceGraph:
    """Arena of resource nodes with their dependency edges."""

    nodes: Mapping[str, ResourceNode]
    project_key: str

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def of_kind(self, kind: ResourceKind) -> Sequence[ResourceNode]:
        """Nodes of one kind, in insertion order."""
        return [node for node in self.nodes.values() if node.kind is kind]

    def sorter(self) -> TopologicalSorter[str]:
        """Topological sorter over node keys, already prepared."""
        sorter: TopologicalSorter[str] = TopologicalSorter(
            {key: node.depends_on for key, node in self.nodes.items()}
        )
        sorter.prepare()
        return sorter

    def static_order(self) -> Sequence[str]:
        """A valid sequential execution order."""
        return list(self.sorter().static_order())


class _GraphBuilder:
    def __init__(self) -> None:
        self.nodes: dict[str, ResourceNode] = {}

    def add(
        self, kind: ResourceKind, name: str, spec: ResourceSpec, *depends_on: str | None
    ) -> str:
        key = f"{kind}/{name}"
        if key in self.nodes:
            raise ValueError(f"Duplicate resource node: {key}")
        self.nodes[key] = ResourceNode(
            key=key,
            kind=kind,
            spec=spec,
            depends_on=frozenset(dep for dep in depends_on if dep is not None),
        )
        return key


def build_resource_graph(config: BridgeConfig) -> ResourceGraph:
    """Build the graph of resources a configuration requires."""
    project_id = config.project_id
    builder = _GraphBuilder()

    project = builder.add(
        ResourceKind.PROJECT,
        project_id,
        ProjectSpec(
            project_id=project_id,
            display_name=config.project_display_name,
            create_if_missing=config.create_project,
        ),
    )
    services = builder.add(
        ResourceKind.SERVICES,
        project_id,
        ServicesSpec(project_id=project_id, services=REQUIRED_SERVICES),
        project,
    )
    pool = builder.add(
        ResourceKind.POOL,
        config.pool_id,
        PoolSpec(
            project_id=project_id,
            pool=WorkloadIdentityPool(pool_id=config.pool_id),
        ),
        services,
    )
    provider = builder.add(
        ResourceKind.PROVIDER,
        config.provider_id,
        ProviderSpec(
            project_id=project_id,
            provider=WorkloadIdentityPoolProvider(
                provider_id=config.provider_id,
                pool_id=config.pool_id,
                attribute_mapping=ATTRIBUTE_MAPPING,
                attribute_condition=config.effective_attribute_condition,
                issuer_uri=GITHUB_ISSUER_URI,
            ),
        ),
        pool,
    )

    strategy = config.authorization_strategy
    account: str | None = None
    # Last binding written to each policy; the next one on it waits for it.
    last_project_binding: str | None = None
    last_account_binding: str | None = None

    if isinstance(strategy, ViaServiceAccount):
        account = builder.add(
            ResourceKind.SERVICE_ACCOUNT,
            strategy.email,
            ServiceAccountSpec(
                project_id=project_id,
                account=ServiceAccount(
                    account_id=strategy.account_id, email=strategy.email
                ),
            ),
            services,
        )
        member = service_account_member(strategy.email)
        last_project_binding = builder.add(
            ResourceKind.BINDING,
            f"{SECRET_ACCESSOR_ROLE}/{member}",
            BindingSpec(
                project_id=project_id,
                target="project",
                role=SECRET_ACCESSOR_ROLE,
                pool_id=config.pool_id,
                member=member,
            ),
            account,
        )

    for pattern in config.allowed_repositories:
        if isinstance(strategy, ViaServiceAccount):
            last_account_binding = builder.add(
                ResourceKind.BINDING,
                f"{WORKLOAD_IDENTITY_USER_ROLE}/{pattern}",
                BindingSpec(
                    project_id=project_id,
                    target="service-account",
                    role=WORKLOAD_IDENTITY_USER_ROLE,
                    pool_id=config.pool_id,
                    pattern=pattern,
                    service_account_email=strategy.email,
                ),
                pool,
                provider,
                account,
                last_account_binding,
            )
        else:
            last_project_binding = builder.add(
                ResourceKind.BINDING,
                f"{SECRET_ACCESSOR_ROLE}/{pattern}",
                BindingSpec(
                    project_id=project_id,
                    target="project",
                    role=SECRET_ACCESSOR_ROLE,
                    pool_id=config.pool_id,
                    pattern=pattern,
                ),
                pool,
                provider,
                last_project_binding,
            )

    for name, value in config.secrets.items():
        builder.add(
            ResourceKind.SECRET,
            name,
            SecretSpec(project_id=project_id, secret_id=name, value=value),
            services,
        )

    return ResourceGraph(nodes=builder.nodes, project_key=project)
