"""Landing zone test harness CLI (lzt).

Helpers for working with the module tests outside pytest.

Usage:
    lzt plan ../terraform-azurerm-lz-vending --var virtual_network_enabled=true
    lzt cancel-subscription 00000000-0000-0000-0000-000000000000
    lzt check-association <subscription-id> <management-group-id>
    lzt credential --probe
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

import click
from azure.core.exceptions import AzureError

from . import terraform
from .azureutils import (
    ManagementGroupAssociationError,
    cancel_subscription,
    is_subscription_in_management_group,
)
from .clients import ClientConstructionError
from .config import ConfigurationError, HarnessConfig
from .credentials import CredentialError, resolve_credential
from .logging_config import setup_logging
from .plan import DEFAULT_TELEMETRY_ADDRESS, PlanAssertionError, telemetry_bit_field
from .scenario import Scenario
from .workspace import WorkspaceError


def parse_var(raw: str) -> tuple[str, Any]:
    """Parse KEY=VALUE; values that parse as JSON keep their type."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected KEY=VALUE, got {raw!r}")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def load_config() -> HarnessConfig:
    try:
        return HarnessConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="lzt")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Landing zone vending module test harness (lzt)."""
    config = load_config()
    setup_logging(verbose or config.verbose)
    ctx.obj = config


@cli.command("plan")
@click.argument("module_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--test-data", "test_data_dir", help="Root configuration inside the module to plan")
@click.option("--var", "raw_vars", multiple=True, help="Input variable as KEY=VALUE")
@click.option(
    "--var-json",
    "var_json",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with input variables",
)
@click.option("--telemetry-address", default=DEFAULT_TELEMETRY_ADDRESS, show_default=True)
@click.pass_obj
def plan_cmd(
    config: HarnessConfig,
    module_dir: Path,
    test_data_dir: str | None,
    raw_vars: tuple[str, ...],
    var_json: Path | None,
    telemetry_address: str,
) -> None:
    """Plan a module in a temporary copy and list the planned resources."""
    variables: dict[str, Any] = {}
    if var_json is not None:
        try:
            variables.update(json.loads(var_json.read_text()))
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid JSON in {var_json}: {e}") from e
    variables.update(parse_var(raw) for raw in raw_vars)

    try:
        with Scenario(config, module_dir, test_data_dir, baseline_vars=variables) as sc:
            plan = sc.plan()
            addresses = sorted(plan.resource_planned_values_map)
            bit_field = None
            if telemetry_address in plan.resource_planned_values_map:
                bit_field = telemetry_bit_field(plan, telemetry_address)
    except (terraform.TerraformError, WorkspaceError, PlanAssertionError) as e:
        raise click.ClickException(str(e)) from e

    for address in addresses:
        click.echo(address)
    click.echo(f"\n{len(addresses)} resources planned")
    if bit_field is not None:
        click.echo(f"telemetry bit field: {bit_field}")


@cli.command("cancel-subscription")
@click.argument("subscription_id", type=click.UUID)
@click.pass_obj
def cancel_subscription_cmd(config: HarnessConfig, subscription_id: uuid.UUID) -> None:
    """Cancel a subscription left behind by a deployment test."""
    try:
        cancel_subscription(subscription_id, config)
    except (AzureError, ClientConstructionError) as e:
        raise click.ClickException(f"cannot cancel subscription: {e}") from e
    click.secho(f"✓ Cancelled {subscription_id}", fg="green")


@cli.command("check-association")
@click.argument("subscription_id", type=click.UUID)
@click.argument("management_group_id")
@click.pass_obj
def check_association_cmd(
    config: HarnessConfig, subscription_id: uuid.UUID, management_group_id: str
) -> None:
    """Wait until a subscription shows up under a management group."""
    try:
        is_subscription_in_management_group(subscription_id, management_group_id, config)
    except (ManagementGroupAssociationError, ClientConstructionError) as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ {subscription_id} is in {management_group_id}", fg="green")


@cli.command("credential")
@click.option("--probe", is_flag=True, help="Request a token to prove the credential works")
@click.pass_obj
def credential_cmd(config: HarnessConfig, probe: bool) -> None:
    """Show which credential flow the harness will use."""
    try:
        credential = resolve_credential(config)
    except CredentialError as e:
        raise click.ClickException(str(e)) from e

    flow = "oidc" if config.use_oidc else "default"
    click.echo(f"cloud: {config.cloud.value}")
    click.echo(f"flow: {flow} ({type(credential).__name__})")

    if probe:
        try:
            credential.get_token(config.cloud.credential_scope)
        except (AzureError, CredentialError) as e:
            raise click.ClickException(f"token request failed: {e}") from e
        click.secho("✓ Token acquired", fg="green")


def run() -> None:
    """Entry point for the lzt console script."""
    cli()


if __name__ == "__main__":
    run()
