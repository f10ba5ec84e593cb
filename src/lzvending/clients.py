"""Azure Resource Manager client constructors.

Each constructor resolves a fresh credential, then builds the SDK client
with an explicit pipeline that leaves out automatic resource provider
registration. Tests must never trigger provider registration as a side
effect of a read or a cancel.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.pipeline import policies
from azure.mgmt.core.policies import ARMChallengeAuthenticationPolicy, ARMHttpLoggingPolicy
from azure.mgmt.managementgroups import ManagementGroupsAPI
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.subscription import SubscriptionClient

from .config import HarnessConfig
from .credentials import CredentialError, resolve_credential

logger = logging.getLogger(__name__)

SDK_MONIKER = "lzvending-tests/0.1.0"


class ClientConstructionError(Exception):
    """Raised when an Azure client (or its credential) cannot be created."""

    pass


def arm_policies(credential: TokenCredential, config: HarnessConfig) -> list[Any]:
    """Return the ARM pipeline policies without ARMAutoResourceProviderRegistrationPolicy.

    Passing an explicit policy list to a management client replaces its
    defaults, which is the only way to switch provider registration off.
    """
    return [
        policies.RequestIdPolicy(),
        policies.HeadersPolicy(),
        policies.UserAgentPolicy(sdk_moniker=SDK_MONIKER),
        policies.ProxyPolicy(),
        policies.ContentDecodePolicy(),
        policies.RedirectPolicy(),
        policies.RetryPolicy(),
        ARMChallengeAuthenticationPolicy(credential, config.cloud.credential_scope),
        policies.CustomHookPolicy(),
        policies.NetworkTraceLoggingPolicy(),
        policies.DistributedTracingPolicy(),
        ARMHttpLoggingPolicy(),
    ]


def _credential(config: HarnessConfig) -> TokenCredential:
    try:
        return resolve_credential(config)
    except CredentialError as e:
        raise ClientConstructionError(f"failed to create Azure credential: {e}") from e


def _client_kwargs(credential: TokenCredential, config: HarnessConfig) -> dict[str, Any]:
    logger.debug(
        "Building ARM client without provider registration",
        extra={"base_url": config.cloud.resource_manager},
    )
    return {
        "base_url": config.cloud.resource_manager,
        "credential_scopes": [config.cloud.credential_scope],
        "policies": arm_policies(credential, config),
    }


def new_subnets_client(subscription_id: str, config: HarnessConfig) -> Any:
    """Create a subnets operations client for the given subscription."""
    credential = _credential(config)
    try:
        client = NetworkManagementClient(
            credential,
            str(subscription_id),
            **_client_kwargs(credential, config),
        )
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(f"failed to create subnet client: {e}") from e
    return client.subnets


def new_subscriptions_client(config: HarnessConfig) -> Any:
    """Create a client for listing and reading subscriptions."""
    credential = _credential(config)
    try:
        client = SubscriptionClient(credential, **_client_kwargs(credential, config))
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(f"failed to create subscriptions client: {e}") from e
    return client.subscriptions


def new_subscription_client(config: HarnessConfig) -> Any:
    """Create a client for single-subscription operations (cancel, rename, enable)."""
    credential = _credential(config)
    try:
        client = SubscriptionClient(credential, **_client_kwargs(credential, config))
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(f"failed to create subscription client: {e}") from e
    return client.subscription


def new_alias_client(config: HarnessConfig) -> Any:
    """Create a subscription alias client."""
    credential = _credential(config)
    try:
        client = SubscriptionClient(credential, **_client_kwargs(credential, config))
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(f"failed to create subscription alias client: {e}") from e
    return client.alias


def new_management_group_subscriptions_client(config: HarnessConfig) -> Any:
    """Create a management group subscription association client."""
    credential = _credential(config)
    try:
        client = ManagementGroupsAPI(credential, **_client_kwargs(credential, config))
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(
            f"failed to create management group subscription client: {e}"
        ) from e
    return client.management_group_subscriptions
