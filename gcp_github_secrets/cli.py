"""CLI entry point for the GitHub to Secret Manager trust bridge."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

import yaml
from pydantic import ValidationError

from gcp_github_secrets.action.config import FetchConfig
from gcp_github_secrets.action.fetcher import SecretFetcher
from gcp_github_secrets.action.outputs import write_outputs
from gcp_github_secrets.action.references import parse_secret_references
from gcp_github_secrets.backends.loading import load_backend_manifest
from gcp_github_secrets.config_loader import (
    load_bridge_config,
    parse_secret_env,
    secrets_from_env,
)
from gcp_github_secrets.errors import (
    BackendNotFoundError,
    ProvisioningError,
    SecretAccessError,
    TokenExchangeError,
)
from gcp_github_secrets.models.result import ReconcileResult
from gcp_github_secrets.reconciler import TrustBridgeProvisioner

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_CONFIG = 2

STATUS_SYMBOLS = {
    "created": "✨",
    "updated": "🔧",
    "unchanged": "✅",
}


def log_results_summary(log: logging.Logger, result: ReconcileResult) -> None:
    """Log every reconciled resource with its action."""
    log.info("=" * 80)
    log.info("Reconciliation Summary:")
    log.info("=" * 80)

    for change in result.changes:
        symbol = STATUS_SYMBOLS.get(change.action, "?")
        log.info("%s %s: %s", symbol, change.key, change.action)
        if change.detail:
            log.info("  Detail: %s", change.detail)

    log.info("Workload identity provider: %s", result.workload_identity_provider)
    if result.service_account_email:
        log.info("Service account: %s", result.service_account_email)


async def run_reconcile(
    config_path: Path,
    backend_key: str,
    backend_config_json: str,
    secret_env: Mapping[str, str] | None = None,
) -> int:
    """Reconcile the trust bridge described by `config_path`, return exit code."""
    log = logging.getLogger("gcp_github_secrets")

    try:
        overrides = secrets_from_env(secret_env or {})
        config = await load_bridge_config(config_path, overrides)
        log.info("Loading backend: %s", backend_key)
        manifest = load_backend_manifest(backend_key)
        backend_config = manifest.config_cls.model_validate(
            json.loads(backend_config_json)
        )
    except (
        OSError,
        ValueError,
        ValidationError,
        yaml.YAMLError,
        BackendNotFoundError,
    ) as e:
        log.error("Invalid configuration: %s", e)
        return EXIT_INVALID_CONFIG

    try:
        async with manifest.backend_factory(backend_config) as backend:
            provisioner = TrustBridgeProvisioner(backend=backend)
            result = await provisioner.reconcile(config)
    except ProvisioningError as e:
        log.error("Reconciliation failed at %s: %s", e.step, e.cause)
        return EXIT_FAILED

    log_results_summary(log, result)
    print(json.dumps(result.to_output(), indent=2))
    return EXIT_OK


async def run_fetch(
    workload_identity_provider: str,
    service_account: str | None,
    secrets: str,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Fetch secrets into step outputs, return exit code."""
    log = logging.getLogger("gcp_github_secrets")
    environ = os.environ if environ is None else environ

    request_url = environ.get("ACTIONS_ID_TOKEN_REQUEST_URL")
    request_token = environ.get("ACTIONS_ID_TOKEN_REQUEST_TOKEN")
    if not request_url or not request_token:
        log.error(
            "ACTIONS_ID_TOKEN_REQUEST_URL/TOKEN are not set; the job needs "
            "'permissions: id-token: write'"
        )
        return EXIT_FAILED

    try:
        references = parse_secret_references(secrets)
        config = FetchConfig(
            workload_identity_provider=workload_identity_provider,
            service_account_email=service_account,
            id_token_request_url=request_url,
            id_token_request_token=request_token,
        )
    except (ValueError, ValidationError) as e:
        log.error("Invalid input: %s", e)
        return EXIT_INVALID_CONFIG

    try:
        async with SecretFetcher.from_config(config) as fetcher:
            values = await fetcher.fetch(references)
    except (TokenExchangeError, SecretAccessError) as e:
        log.error("%s", e)
        return EXIT_FAILED

    github_output = environ.get("GITHUB_OUTPUT")
    write_outputs(values, Path(github_output) if github_output else None)
    return EXIT_OK


def _add_reconcile_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        "reconcile", help="Create or reconcile the trust bridge resources"
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the YAML or JSON bridge configuration",
    )
    parser.add_argument(
        "--backend",
        default="gcp-rest",
        help="Backend key (gcp-rest, gcloud)",
    )
    parser.add_argument(
        "--backend-config",
        default="{}",
        help="JSON configuration for the backend",
    )
    parser.add_argument(
        "--secret-env",
        action="append",
        default=[],
        metavar="NAME=ENV_VAR",
        help="Read the value of secret NAME from environment variable ENV_VAR",
    )


def _add_fetch_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        "fetch", help="Read secrets from a GitHub Actions job into step outputs"
    )
    parser.add_argument(
        "--workload-identity-provider",
        required=True,
        help="Full provider resource name printed by reconcile",
    )
    parser.add_argument(
        "--service-account",
        default=None,
        help="Service account email to impersonate",
    )
    parser.add_argument(
        "--secrets",
        required=True,
        help="Secret references separated by newlines or commas",
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with the reconcile and fetch commands."""
    parser = argparse.ArgumentParser(
        description="Let GitHub Actions read GCP Secret Manager secrets via OIDC"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_reconcile_parser(subparsers)
    _add_fetch_parser(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "reconcile":
        try:
            secret_env = parse_secret_env(args.secret_env)
        except ValueError as e:
            logging.getLogger("gcp_github_secrets").error("%s", e)
            sys.exit(EXIT_INVALID_CONFIG)
        exit_code = asyncio.run(
            run_reconcile(
                config_path=args.config,
                backend_key=args.backend,
                backend_config_json=args.backend_config,
                secret_env=secret_env,
            )
        )
    else:
        exit_code = asyncio.run(
            run_fetch(
                workload_identity_provider=args.workload_identity_provider,
                service_account=args.service_account,
                secrets=args.secrets,
            )
        )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
