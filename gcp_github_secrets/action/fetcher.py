"""Reads secrets from inside a GitHub Actions job through the trust bridge."""

import asyncio
import base64
import binascii
import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import ValidationError

from gcp_github_secrets.action.config import CLOUD_PLATFORM_SCOPE, FetchConfig
from gcp_github_secrets.action.references import SecretReference
from gcp_github_secrets.backends.gcp_rest.backend import api_error
from gcp_github_secrets.backends.gcp_rest.models import AccessSecretVersionResponse
from gcp_github_secrets.errors import (
    CloudApiError,
    SecretAccessError,
    TokenExchangeError,
)
from gcp_github_secrets.models.base import ApiModel, Model

log = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"
ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"


class IdTokenResponse(Model):
    value: str


class StsTokenResponse(Model):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None


class GeneratedAccessToken(ApiModel):
    access_token: str
    expire_time: str | None = None


@dataclass(frozen=True, kw_only=True)
class SecretFetcher:
    """Exchanges the job's OIDC token and reads secret versions.

    The flow is GitHub OIDC token, then STS federated token, then
    (optionally) a service account access token, then one access call
    per secret.
    """

    config: FetchConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: FetchConfig
    ) -> AsyncGenerator["SecretFetcher", None]:
        """Create fetcher with managed session lifecycle."""
        async with aiohttp.ClientSession() as session:
            yield cls(config=config, session=session)

    async def _post_token(
        self, step: str, url: str, *, json: Any, headers: Mapping[str, str]
    ) -> dict[str, Any]:
        async with self.session.post(url, json=json, headers=headers) as response:
            if response.status != 200:
                text = await response.text()
                raise TokenExchangeError(
                    f"Failed to {step}: {response.status} {text}"
                )
            data: dict[str, Any] = await response.json(content_type=None)
            return data

    async def github_id_token(self) -> str:
        """Request an OIDC token for the provider audience from the runner."""
        log.debug("Requesting GitHub OIDC token")
        headers = {
            "Authorization": (
                f"bearer {self.config.id_token_request_token.get_secret_value()}"
            ),
            "Accept": "application/json",
        }
        async with self.session.get(
            self.config.id_token_request_url,
            params={"audience": self.config.id_token_audience},
            headers=headers,
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise TokenExchangeError(
                    f"Failed to get GitHub OIDC token: {response.status} {text}"
                )
            data = await response.json(content_type=None)
        try:
            return IdTokenResponse.model_validate(data).value
        except ValidationError as e:
            raise TokenExchangeError(f"Invalid GitHub OIDC response: {e}") from e

    async def federated_token(self, id_token: str) -> str:
        """Exchange the OIDC token at STS for a federated access token."""
        log.debug("Exchanging OIDC token at %s", self.config.sts_url)
        data = await self._post_token(
            "exchange OIDC token",
            self.config.sts_url,
            json={
                "audience": self.config.sts_audience,
                "grantType": TOKEN_EXCHANGE_GRANT,
                "requestedTokenType": ACCESS_TOKEN_TYPE,
                "scope": CLOUD_PLATFORM_SCOPE,
                "subjectTokenType": JWT_TOKEN_TYPE,
                "subjectToken": id_token,
            },
            headers={"Accept": "application/json"},
        )
        try:
            return StsTokenResponse.model_validate(data).access_token
        except ValidationError as e:
            raise TokenExchangeError(f"Invalid STS response: {e}") from e

    async def impersonate(self, federated_token: str, email: str) -> str:
        """Trade the federated token for an access token of `email`."""
        log.debug("Generating access token for %s", email)
        url = (
            f"{self.config.iam_credentials_url}/v1/projects/-/serviceAccounts/"
            f"{email}:generateAccessToken"
        )
        data = await self._post_token(
            f"impersonate {email}",
            url,
            json={
                "scope": [CLOUD_PLATFORM_SCOPE],
                "lifetime": f"{self.config.token_lifetime_seconds}s",
            },
            headers={"Authorization": f"Bearer {federated_token}"},
        )
        try:
            return GeneratedAccessToken.model_validate(data).access_token
        except ValidationError as e:
            raise TokenExchangeError(
                f"Invalid generateAccessToken response: {e}"
            ) from e

    async def access_token(self) -> str:
        """Run the token exchange chain; secrets are read with the result."""
        token = await self.federated_token(await self.github_id_token())
        if self.config.service_account_email:
            token = await self.impersonate(token, self.config.service_account_email)
        return token

    async def read_secret(self, token: str, reference: SecretReference) -> str:
        """Read one secret version as text.

        Raises:
            SecretAccessError: If the version is unreadable or not UTF-8

        """
        name = reference.resource_name(self.config.default_project)
        url = f"{self.config.secret_manager_url}/v1/{name}:access"
        log.debug("Accessing %s", name)
        async with self.session.get(
            url, headers={"Authorization": f"Bearer {token}"}
        ) as response:
            if response.status != 200:
                error: CloudApiError = api_error(
                    "GET", url, response.status, await response.text()
                )
                raise SecretAccessError(name, error)
            data = await response.json(content_type=None)

        try:
            payload = AccessSecretVersionResponse.model_validate(data).payload.data
            return base64.b64decode(payload, validate=True).decode("utf-8")
        except (ValidationError, binascii.Error, UnicodeDecodeError) as e:
            raise SecretAccessError(name, e) from e

    async def fetch(self, references: Sequence[SecretReference]) -> dict[str, str]:
        """Read every referenced secret, keyed by output name.

        Raises:
            TokenExchangeError: If no Google token could be obtained
            SecretAccessError: If any secret could not be read

        """
        token = await self.access_token()
        values = await asyncio.gather(
            *(self.read_secret(token, reference) for reference in references)
        )
        log.info("Fetched %d secret(s)", len(values))
        return {
            reference.output: value
            for reference, value in zip(references, values, strict=True)
        }
