"""Harness configuration loaded once from the environment.

Every component receives a HarnessConfig instead of reading os.environ
itself. Values are validated when the object is built so a broken CI
environment fails before any Terraform or Azure call is made.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from azure.identity import AzureAuthorityHosts


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


class CloudEnvironment(str, Enum):
    """Azure clouds the harness can target."""

    PUBLIC = "public"
    US_GOVERNMENT = "usgovernment"
    CHINA = "china"

    @classmethod
    def from_name(cls, name: str | None) -> CloudEnvironment:
        """Map an AZURE_ENVIRONMENT value to a cloud, defaulting to public."""
        if not name:
            return cls.PUBLIC
        try:
            return cls(name.strip().lower())
        except ValueError:
            return cls.PUBLIC

    @property
    def authority_host(self) -> str:
        return _AUTHORITY_HOSTS[self]

    @property
    def resource_manager(self) -> str:
        return _RESOURCE_MANAGER_ENDPOINTS[self]

    @property
    def credential_scope(self) -> str:
        return f"{self.resource_manager}/.default"


_AUTHORITY_HOSTS: dict[CloudEnvironment, str] = {
    CloudEnvironment.PUBLIC: AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
    CloudEnvironment.US_GOVERNMENT: AzureAuthorityHosts.AZURE_GOVERNMENT,
    CloudEnvironment.CHINA: AzureAuthorityHosts.AZURE_CHINA,
}

_RESOURCE_MANAGER_ENDPOINTS: dict[CloudEnvironment, str] = {
    CloudEnvironment.PUBLIC: "https://management.azure.com",
    CloudEnvironment.US_GOVERNMENT: "https://management.usgovcloudapi.net",
    CloudEnvironment.CHINA: "https://management.chinacloudapi.cn",
}

# Environment variable groups, first non-empty value wins
USE_OIDC_ENV_VARS: tuple[str, ...] = ("USE_OIDC", "ARM_USE_OIDC")
OIDC_REQUEST_URL_ENV_VARS: tuple[str, ...] = ("ARM_OIDC_REQUEST_URL", "ACTIONS_ID_TOKEN_REQUEST_URL")
OIDC_REQUEST_TOKEN_ENV_VARS: tuple[str, ...] = (
    "ARM_OIDC_REQUEST_TOKEN",
    "ACTIONS_ID_TOKEN_REQUEST_TOKEN",
)
CLIENT_ID_ENV_VARS: tuple[str, ...] = ("ARM_CLIENT_ID", "AZURE_CLIENT_ID")
TENANT_ID_ENV_VARS: tuple[str, ...] = ("ARM_TENANT_ID", "AZURE_TENANT_ID")

# Retry defaults for eventual consistency of the subscription APIs
DEFAULT_DESTROY_RETRY_MAX = 5
DEFAULT_DESTROY_RETRY_INTERVAL_SECONDS = 20
DEFAULT_ASSOCIATION_POLL_MAX = 10
DEFAULT_ASSOCIATION_POLL_INTERVAL_SECONDS = 15

VALID_BILLING_SCOPE_PREFIX = "/providers/Microsoft.Billing/billingAccounts/"
ZERO_SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"


def first_non_empty(
    names: Sequence[str],
    default: str = "",
    environ: Mapping[str, str] | None = None,
) -> str:
    """Return the value of the first variable in names that is set and non-empty."""
    env = os.environ if environ is None else environ
    for name in names:
        value = env.get(name, "")
        if value:
            return value
    return default


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry: how many attempts and how long to wait between them."""

    max_attempts: int
    interval_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ConfigurationError("interval_seconds cannot be negative")


DEFAULT_DESTROY_RETRY = RetryPolicy(
    max_attempts=DEFAULT_DESTROY_RETRY_MAX,
    interval_seconds=DEFAULT_DESTROY_RETRY_INTERVAL_SECONDS,
)
DEFAULT_ASSOCIATION_POLL = RetryPolicy(
    max_attempts=DEFAULT_ASSOCIATION_POLL_MAX,
    interval_seconds=DEFAULT_ASSOCIATION_POLL_INTERVAL_SECONDS,
)


@dataclass(frozen=True)
class HarnessConfig:
    """Test harness configuration.

    Built once per test session (normally via from_env) and passed by
    reference to the credential resolver, client constructors and scenarios.
    """

    cloud: CloudEnvironment = CloudEnvironment.PUBLIC

    # Identity
    use_oidc: bool = False
    oidc_request_url: str = ""
    oidc_request_token: str = ""
    client_id: str = ""
    tenant_id: str = ""

    # Deployment tests
    billing_scope: str = ""
    deploy_tests_enabled: bool = False

    # Terraform
    module_dir: Path = field(default_factory=Path.cwd)
    terraform_binary: str = "terraform"
    verbose: bool = False

    # Retry policies
    destroy_retry: RetryPolicy = DEFAULT_DESTROY_RETRY
    association_poll: RetryPolicy = DEFAULT_ASSOCIATION_POLL

    def __post_init__(self) -> None:
        errors: list[str] = []

        if self.billing_scope and not self.billing_scope.startswith(VALID_BILLING_SCOPE_PREFIX):
            errors.append(
                f"AZURE_BILLING_SCOPE must start with {VALID_BILLING_SCOPE_PREFIX}: "
                f"{self.billing_scope}"
            )

        if not self.terraform_binary:
            errors.append("LZ_TERRAFORM_BINARY cannot be empty")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def deploy_precheck_reason(self) -> str | None:
        """Return why deployment tests cannot run, or None when they can."""
        if not self.deploy_tests_enabled:
            return "LZ_TEST_DEPLOY is not set, skipping deployment tests"
        if not self.billing_scope:
            return "AZURE_BILLING_SCOPE is not set, deployment tests need a billing scope"
        return None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> HarnessConfig:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_ENVIRONMENT: public, usgovernment or china (default: public)
            USE_OIDC / ARM_USE_OIDC: Non-empty selects the OIDC assertion flow
            ARM_OIDC_REQUEST_URL / ACTIONS_ID_TOKEN_REQUEST_URL: OIDC token endpoint
            ARM_OIDC_REQUEST_TOKEN / ACTIONS_ID_TOKEN_REQUEST_TOKEN: OIDC bearer token
            ARM_CLIENT_ID / AZURE_CLIENT_ID: Client (application) id
            ARM_TENANT_ID / AZURE_TENANT_ID: Tenant id
            AZURE_BILLING_SCOPE: Billing scope for subscription aliases
            LZ_TEST_DEPLOY: Non-empty enables deployment tests
            LZ_TEST_VERBOSE: Non-empty echoes Terraform output to the log
            LZ_MODULE_DIR: Root of the Terraform module under test (default: cwd)
            LZ_TERRAFORM_BINARY: Terraform executable (default: terraform)
            LZ_DESTROY_RETRY_MAX / LZ_DESTROY_RETRY_INTERVAL: Destroy retries (default: 5 x 20s)
            LZ_MG_POLL_MAX / LZ_MG_POLL_INTERVAL: Association polling (default: 10 x 15s)
        """
        env = os.environ if environ is None else environ

        def get_int(key: str, default: int) -> int:
            value = env.get(key)
            if not value:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_flag(key: str) -> bool:
            return bool(env.get(key, ""))

        def get_policy(max_key: str, interval_key: str, default: RetryPolicy) -> RetryPolicy:
            return RetryPolicy(
                max_attempts=get_int(max_key, default.max_attempts),
                interval_seconds=get_int(interval_key, int(default.interval_seconds)),
            )

        module_dir = env.get("LZ_MODULE_DIR")

        return cls(
            cloud=CloudEnvironment.from_name(env.get("AZURE_ENVIRONMENT")),
            use_oidc=first_non_empty(USE_OIDC_ENV_VARS, environ=env) != "",
            oidc_request_url=first_non_empty(OIDC_REQUEST_URL_ENV_VARS, environ=env),
            oidc_request_token=first_non_empty(OIDC_REQUEST_TOKEN_ENV_VARS, environ=env),
            client_id=first_non_empty(CLIENT_ID_ENV_VARS, environ=env),
            tenant_id=first_non_empty(TENANT_ID_ENV_VARS, environ=env),
            billing_scope=env.get("AZURE_BILLING_SCOPE", ""),
            deploy_tests_enabled=get_flag("LZ_TEST_DEPLOY"),
            module_dir=Path(module_dir) if module_dir else Path.cwd(),
            terraform_binary=env.get("LZ_TERRAFORM_BINARY") or "terraform",
            verbose=get_flag("LZ_TEST_VERBOSE"),
            destroy_retry=get_policy(
                "LZ_DESTROY_RETRY_MAX", "LZ_DESTROY_RETRY_INTERVAL", DEFAULT_DESTROY_RETRY
            ),
            association_poll=get_policy(
                "LZ_MG_POLL_MAX", "LZ_MG_POLL_INTERVAL", DEFAULT_ASSOCIATION_POLL
            ),
        )
