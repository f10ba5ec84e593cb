"""Credential resolution for the Azure clients used by the tests.

Two flows are supported:
- OIDC workload identity: a ClientAssertionCredential whose assertion is
  fetched from the CI token endpoint each time Entra ID asks for one
- Default: DefaultAzureCredential, which probes environment secrets,
  managed identity and the local az CLI session in that order

The flow is picked from HarnessConfig.use_oidc (USE_OIDC / ARM_USE_OIDC).
When OIDC is selected the default chain is never constructed.
"""

from __future__ import annotations

import logging

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.core.rest import HttpRequest
from azure.identity import ClientAssertionCredential, DefaultAzureCredential

from .config import HarnessConfig

logger = logging.getLogger(__name__)

# Audience Entra ID expects on federated workload identity tokens
OIDC_AUDIENCE = "api://AzureADTokenExchange"


class CredentialError(Exception):
    """Raised when a credential cannot be built or an assertion cannot be fetched."""

    pass


class OidcAssertion:
    """Callable that fetches a workload identity token from the CI provider.

    Passed by reference to ClientAssertionCredential, so nothing is fetched
    until the SDK needs an access token.
    """

    def __init__(self, request_url: str, request_token: str) -> None:
        self._request_url = request_url
        self._request_token = request_token

    @property
    def request_url(self) -> str:
        return self._request_url

    def __call__(self) -> str:
        request = HttpRequest(
            "GET",
            self._request_url,
            params={"audience": OIDC_AUDIENCE},
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._request_token}",
            },
        )
        try:
            with PipelineClient(base_url=self._request_url) as client:
                response = client.send_request(request)
                response.raise_for_status()
                payload = response.json()
        except AzureError as e:
            raise CredentialError(f"failed to fetch oidc assertion: {e}") from e
        except ValueError as e:
            raise CredentialError(f"oidc token endpoint returned invalid JSON: {e}") from e

        token = payload.get("value") if isinstance(payload, dict) else None
        if not token:
            raise CredentialError("oidc token endpoint response did not contain a token value")
        return token


def resolve_credential(config: HarnessConfig) -> TokenCredential:
    """Build the token credential every Azure client in the harness uses.

    Args:
        config: Harness configuration (cloud selection and identity inputs).

    Returns:
        A ClientAssertionCredential (OIDC) or a DefaultAzureCredential.

    Raises:
        CredentialError: If the selected credential cannot be constructed.
    """
    authority = config.cloud.authority_host

    if config.use_oidc:
        return _oidc_credential(config, authority)

    try:
        credential = DefaultAzureCredential(authority=authority)
    except (AzureError, ValueError) as e:
        raise CredentialError(f"failed to create Azure credential: {e}") from e

    logger.debug(
        "Using default Azure credential chain",
        extra={"cloud": config.cloud.value},
    )
    return credential


def _oidc_credential(config: HarnessConfig, authority: str) -> TokenCredential:
    missing = [
        name
        for name, value in (
            ("ARM_OIDC_REQUEST_URL", config.oidc_request_url),
            ("ARM_OIDC_REQUEST_TOKEN", config.oidc_request_token),
            ("ARM_CLIENT_ID", config.client_id),
            ("ARM_TENANT_ID", config.tenant_id),
        )
        if not value
    ]
    if missing:
        raise CredentialError(
            f"failed to create oidc credential: missing {', '.join(missing)}"
        )

    assertion = OidcAssertion(config.oidc_request_url, config.oidc_request_token)
    try:
        credential = ClientAssertionCredential(
            config.tenant_id,
            config.client_id,
            assertion,
            authority=authority,
        )
    except (AzureError, ValueError) as e:
        raise CredentialError(f"failed to create oidc credential: {e}") from e

    logger.debug(
        "Using OIDC client assertion credential",
        extra={
            "cloud": config.cloud.value,
            "client_id": config.client_id[:8] + "..." if len(config.client_id) > 8 else config.client_id,
        },
    )
    return credential
