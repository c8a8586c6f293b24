"""Tests for CLI module."""

import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from gcp_github_secrets.cli import (
    EXIT_FAILED,
    EXIT_INVALID_CONFIG,
    EXIT_OK,
    build_parser,
    log_results_summary,
    main,
    run_fetch,
    run_reconcile,
)
from gcp_github_secrets.errors import (
    AuthorizationFailure,
    CloudApiError,
    SecretAccessError,
)
from gcp_github_secrets.testing.factories import (
    ReconcileResultFactory,
    ResourceChangeFactory,
)
from gcp_github_secrets.testing.fake_cloud import InMemoryCloud

PROVIDER_NAME = (
    "projects/123456789/locations/global/workloadIdentityPools/gs-pool/"
    "providers/gs-github"
)

CONFIG_YAML = """
project_id: p1
resource_prefix: gs
allowed_repositories: ["acme/*"]
secrets:
  npm-token: t1
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a valid bridge configuration file."""
    path = tmp_path / "bridge.yaml"
    path.write_text(CONFIG_YAML)
    return path


@pytest.fixture
def cloud() -> InMemoryCloud:
    """Create an empty in-memory cloud."""
    return InMemoryCloud()


@pytest.fixture
def mock_manifest(cloud: InMemoryCloud) -> Mock:
    """Create a backend manifest whose factory yields the in-memory cloud."""
    cm = AsyncMock()
    cm.__aenter__.return_value = cloud
    cm.__aexit__.return_value = None

    manifest = Mock()
    manifest.config_cls.model_validate = Mock(return_value=Mock())
    manifest.backend_factory = Mock(return_value=cm)
    return manifest


def test_log_results_summary(caplog: pytest.LogCaptureFixture) -> None:
    """Logs every change with its status symbol."""
    result = ReconcileResultFactory.build(
        changes=[
            ResourceChangeFactory.build(key="pool/gs-pool", action="created"),
            ResourceChangeFactory.build(
                key="secret/npm-token",
                action="updated",
                detail="projects/p1/secrets/npm-token/versions/2",
            ),
            ResourceChangeFactory.build(key="project/p1", action="unchanged"),
        ]
    )

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), result)

    assert "Reconciliation Summary:" in caplog.text
    assert "✨ pool/gs-pool: created" in caplog.text
    assert "🔧 secret/npm-token: updated" in caplog.text
    assert "Detail: projects/p1/secrets/npm-token/versions/2" in caplog.text
    assert "✅ project/p1: unchanged" in caplog.text
    assert f"Workload identity provider: {result.workload_identity_provider}" in (
        caplog.text
    )


class TestRunReconcile:
    """Tests for run_reconcile function."""

    async def test_prints_identifiers(
        self,
        config_file: Path,
        mock_manifest: Mock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Returns 0 and prints the identifiers as JSON."""
        with patch(
            "gcp_github_secrets.cli.load_backend_manifest", return_value=mock_manifest
        ):
            exit_code = await run_reconcile(config_file, "gcp-rest", "{}")

        assert exit_code == EXIT_OK
        output = json.loads(capsys.readouterr().out)
        assert output["workloadIdentityProvider"] == PROVIDER_NAME
        assert output["serviceAccountEmail"] == "gs-reader@p1.iam.gserviceaccount.com"
        assert output["projectNumber"] == "123456789"
        assert output["poolId"] == "gs-pool"
        assert output["providerId"] == "gs-github"
        assert output["secretNames"] == {"npm-token": "projects/p1/secrets/npm-token"}
        assert {"resource": "pool/gs-pool", "kind": "pool", "action": "created"} in (
            output["changes"]
        )

    async def test_secret_env_overrides_file(
        self,
        config_file: Path,
        mock_manifest: Mock,
        cloud: InMemoryCloud,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Secret values from the environment replace file values."""
        monkeypatch.setenv("NPM_TOKEN", "from-env")

        with patch(
            "gcp_github_secrets.cli.load_backend_manifest", return_value=mock_manifest
        ):
            exit_code = await run_reconcile(
                config_file, "gcp-rest", "{}", {"npm-token": "NPM_TOKEN"}
            )

        assert exit_code == EXIT_OK
        assert cloud.version_payloads("p1", "npm-token") == [b"from-env"]

    async def test_returns_one_on_provisioning_error(
        self,
        config_file: Path,
        mock_manifest: Mock,
        cloud: InMemoryCloud,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Returns 1 and logs the failing step."""
        cloud.fail_on["create_service_account"] = CloudApiError(
            "denied", http_status=403
        )

        with patch(
            "gcp_github_secrets.cli.load_backend_manifest", return_value=mock_manifest
        ):
            exit_code = await run_reconcile(config_file, "gcp-rest", "{}")

        assert exit_code == EXIT_FAILED
        assert "Reconciliation failed at service-account/" in caplog.text

    async def test_returns_one_on_provisioner_error(
        self, config_file: Path, mock_manifest: Mock
    ) -> None:
        """Returns 1 when the provisioner raises a ProvisioningError."""
        with (
            patch(
                "gcp_github_secrets.cli.load_backend_manifest",
                return_value=mock_manifest,
            ),
            patch("gcp_github_secrets.cli.TrustBridgeProvisioner") as provisioner_cls,
        ):
            provisioner_cls.return_value.reconcile = AsyncMock(
                side_effect=AuthorizationFailure("binding/x", "denied")
            )
            exit_code = await run_reconcile(config_file, "gcp-rest", "{}")

        assert exit_code == EXIT_FAILED

    async def test_returns_two_on_invalid_config(self, tmp_path: Path) -> None:
        """Returns 2 when the configuration fails validation."""
        path = tmp_path / "bridge.yaml"
        path.write_text("project_id: p1\nallowed_repositories: [acme]\n")

        exit_code = await run_reconcile(path, "gcp-rest", "{}")

        assert exit_code == EXIT_INVALID_CONFIG

    async def test_returns_two_on_missing_file(self, tmp_path: Path) -> None:
        """Returns 2 when the configuration file does not exist."""
        exit_code = await run_reconcile(tmp_path / "missing.yaml", "gcp-rest", "{}")

        assert exit_code == EXIT_INVALID_CONFIG

    async def test_returns_two_on_missing_secret_env(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Returns 2 when a referenced environment variable is unset."""
        monkeypatch.delenv("UNSET_SECRET", raising=False)

        exit_code = await run_reconcile(
            config_file, "gcp-rest", "{}", {"npm-token": "UNSET_SECRET"}
        )

        assert exit_code == EXIT_INVALID_CONFIG

    async def test_returns_two_on_unknown_backend(self, config_file: Path) -> None:
        """Returns 2 for a backend key with no entry point."""
        exit_code = await run_reconcile(config_file, "unknown-backend", "{}")

        assert exit_code == EXIT_INVALID_CONFIG

    async def test_returns_two_on_invalid_backend_config(
        self, config_file: Path
    ) -> None:
        """Returns 2 when the backend configuration is not valid JSON."""
        exit_code = await run_reconcile(config_file, "gcp-rest", "{not json")

        assert exit_code == EXIT_INVALID_CONFIG


class TestRunFetch:
    """Tests for run_fetch function."""

    @pytest.fixture
    def environ(self, tmp_path: Path) -> dict[str, str]:
        """Runner environment with an OIDC request endpoint."""
        return {
            "ACTIONS_ID_TOKEN_REQUEST_URL": "https://token.actions.test/?x=1",
            "ACTIONS_ID_TOKEN_REQUEST_TOKEN": "request-token",
            "GITHUB_OUTPUT": str(tmp_path / "output"),
        }

    async def test_writes_outputs(
        self,
        environ: dict[str, str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Masks values and writes them to GITHUB_OUTPUT."""
        with patch(
            "gcp_github_secrets.cli.SecretFetcher.fetch",
            new_callable=AsyncMock,
            return_value={"npm_token": "t1"},
        ) as mock_fetch:
            exit_code = await run_fetch(
                PROVIDER_NAME, None, "npm_token:npm-token", environ
            )

        assert exit_code == EXIT_OK
        [references] = mock_fetch.call_args.args
        assert references[0].secret_id == "npm-token"
        assert "::add-mask::t1" in capsys.readouterr().out
        assert "npm_token<<ghadelimiter_" in Path(environ["GITHUB_OUTPUT"]).read_text()

    async def test_requires_id_token_permission(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Returns 1 when the runner exposes no OIDC endpoint."""
        exit_code = await run_fetch(PROVIDER_NAME, None, "npm-token", {})

        assert exit_code == EXIT_FAILED
        assert "id-token: write" in caplog.text

    async def test_returns_one_on_access_error(
        self, environ: dict[str, str], caplog: pytest.LogCaptureFixture
    ) -> None:
        """Returns 1 and names the secret that could not be read."""
        with patch(
            "gcp_github_secrets.cli.SecretFetcher.fetch",
            new_callable=AsyncMock,
            side_effect=SecretAccessError(
                "projects/p1/secrets/x/versions/latest", "403"
            ),
        ):
            exit_code = await run_fetch(PROVIDER_NAME, None, "x", environ)

        assert exit_code == EXIT_FAILED
        assert "projects/p1/secrets/x/versions/latest" in caplog.text
        assert not Path(environ["GITHUB_OUTPUT"]).exists()

    async def test_returns_two_on_invalid_provider(
        self, environ: dict[str, str]
    ) -> None:
        """Returns 2 when the provider name is malformed."""
        exit_code = await run_fetch("projects/p1/pools/x", None, "x", environ)

        assert exit_code == EXIT_INVALID_CONFIG

    async def test_returns_two_on_invalid_reference(
        self, environ: dict[str, str]
    ) -> None:
        """Returns 2 when a secret reference cannot be parsed."""
        exit_code = await run_fetch(PROVIDER_NAME, None, "bad name", environ)

        assert exit_code == EXIT_INVALID_CONFIG


class TestMain:
    """Tests for argument parsing and the entry point."""

    def test_parses_reconcile(self) -> None:
        """Parses the reconcile command with defaults."""
        args = build_parser().parse_args(
            ["reconcile", "--config", "bridge.yaml", "--secret-env", "a=B"]
        )

        assert args.command == "reconcile"
        assert args.config == Path("bridge.yaml")
        assert args.backend == "gcp-rest"
        assert args.backend_config == "{}"
        assert args.secret_env == ["a=B"]

    def test_parses_fetch(self) -> None:
        """Parses the fetch command."""
        args = build_parser().parse_args(
            [
                "--verbose",
                "fetch",
                "--workload-identity-provider",
                PROVIDER_NAME,
                "--secrets",
                "a,b",
            ]
        )

        assert args.verbose is True
        assert args.command == "fetch"
        assert args.service_account is None
        assert args.secrets == "a,b"

    def test_main_exits_with_reconcile_code(self, config_file: Path) -> None:
        """Exits with the code returned by run_reconcile."""
        with (
            patch(
                "gcp_github_secrets.cli.run_reconcile",
                new_callable=AsyncMock,
                return_value=EXIT_FAILED,
            ) as mock_run,
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["reconcile", "--config", str(config_file), "--backend", "gcloud"])

        assert exc_info.value.code == EXIT_FAILED
        assert mock_run.call_args.kwargs["backend_key"] == "gcloud"

    def test_main_rejects_malformed_secret_env(self, config_file: Path) -> None:
        """Exits with 2 when --secret-env is not NAME=VAR."""
        with pytest.raises(SystemExit) as exc_info:
            main(["reconcile", "--config", str(config_file), "--secret-env", "oops"])

        assert exc_info.value.code == EXIT_INVALID_CONFIG
