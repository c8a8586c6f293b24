"""Models for reconciliation outcomes."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

type ChangeAction = Literal["created", "updated", "unchanged"]


@dataclass(frozen=True, kw_only=True)
class ResourceChange:
    """What reconciliation did to one resource node."""

    key: str
    kind: str
    action: ChangeAction
    detail: str | None = None


@dataclass(frozen=True, kw_only=True)
class ReconcileResult:
    """Identifiers handed to the GitHub side plus the change report."""

    workload_identity_provider: str
    service_account_email: str | None
    project_number: str
    pool_id: str
    provider_id: str
    secret_names: Mapping[str, str] = field(default_factory=dict)
    changes: Sequence[ResourceChange] = ()

    @property
    def changed(self) -> bool:
        """Whether any resource was created or updated."""
        return any(change.action != "unchanged" for change in self.changes)

    def to_output(self) -> dict[str, Any]:
        """Format as the JSON document printed by the CLI."""
        output: dict[str, Any] = {
            "workloadIdentityProvider": self.workload_identity_provider,
            "projectNumber": self.project_number,
            "poolId": self.pool_id,
            "providerId": self.provider_id,
            "secretNames": dict(self.secret_names),
            "changes": [
                {"resource": change.key, "kind": change.kind, "action": change.action}
                for change in self.changes
            ],
        }
        if self.service_account_email is not None:
            output["serviceAccountEmail"] = self.service_account_email
        return output
