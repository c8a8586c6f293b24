"""Loading of trust bridge configuration files."""

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import yaml

from gcp_github_secrets.models.config import BridgeConfig

log = logging.getLogger(__name__)


def parse_secret_env(items: Sequence[str]) -> Mapping[str, str]:
    """Parse `NAME=ENV_VAR` pairs into a secret name to variable mapping."""
    mapping: dict[str, str] = {}
    for item in items:
        name, sep, variable = item.partition("=")
        if not sep or not name.strip() or not variable.strip():
            raise ValueError(f"Invalid secret env '{item}': expected NAME=ENV_VAR")
        mapping[name.strip()] = variable.strip()
    return mapping


def secrets_from_env(
    secret_env: Mapping[str, str], environ: Mapping[str, str] | None = None
) -> Mapping[str, str]:
    """Resolve secret values from environment variables.

    Raises:
        ValueError: If a referenced variable is not set

    """
    environ = os.environ if environ is None else environ
    values: dict[str, str] = {}
    for name, variable in secret_env.items():
        if variable not in environ:
            raise ValueError(
                f"Environment variable '{variable}' for secret '{name}' is not set"
            )
        values[name] = environ[variable]
    return values


def _read_document(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


async def load_bridge_config(
    path: Path,
    secret_overrides: Mapping[str, str] | None = None,
) -> BridgeConfig:
    """Load and validate a YAML or JSON trust bridge configuration.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document is not a mapping
        pydantic.ValidationError: If the configuration is invalid

    """
    log.debug("Loading configuration from %s", path)
    data = await asyncio.to_thread(_read_document, path)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration {path} must be a mapping")

    if secret_overrides:
        data["secrets"] = {**(data.get("secrets") or {}), **secret_overrides}

    return BridgeConfig.model_validate(data)
