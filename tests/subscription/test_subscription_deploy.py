"""Deployment tests of the subscription submodule.

These create real subscription aliases and therefore only run when
LZ_TEST_DEPLOY and AZURE_BILLING_SCOPE are set. Every test destroys what it
applied and cancels the subscription it created, even when it fails.
"""

from pathlib import Path

import pytest

from lzvending.azureutils import is_subscription_in_management_group
from lzvending.config import HarnessConfig
from lzvending.scenario import DeploymentScenario
from lzvending.utils import random_hex

pytestmark = [pytest.mark.integration, pytest.mark.deploy]

MG_TEST_DATA = "testdata/TestDeploySubscriptionAliasManagementGroupValid"


def valid_input_variables(billing_scope: str) -> dict:
    name = f"testdeploy-{random_hex(4)}"
    return {
        "subscription_alias_name": name,
        "subscription_display_name": name,
        "subscription_billing_scope": billing_scope,
        "subscription_workload": "DevTest",
        "subscription_alias_enabled": True,
    }


@pytest.fixture
def subscription_module(submodule) -> Path:
    return submodule("subscription")


class TestDeploySubscription:
    """Subscription alias deployments."""

    def test_alias_valid(self, deploy_config: HarnessConfig, subscription_module: Path) -> None:
        v = valid_input_variables(deploy_config.billing_scope)

        with DeploymentScenario(deploy_config, subscription_module, baseline_vars=v) as sc:
            sc.plan()
            sc.apply()
            sc.capture_subscription_id()

        assert sc.destroy_attempted
        assert sc.cancel_attempted

    def test_alias_management_group_valid(
        self, deploy_config: HarnessConfig, subscription_module: Path
    ) -> None:
        """The new subscription is placed in a management group created by the test data."""
        if not (subscription_module / MG_TEST_DATA).is_dir():
            pytest.skip(f"{MG_TEST_DATA} not found in {subscription_module}")
        v = valid_input_variables(deploy_config.billing_scope)
        # The test data creates a management group named after the alias
        v["subscription_management_group_id"] = v["subscription_alias_name"]
        v["subscription_management_group_association_enabled"] = True

        with DeploymentScenario(
            deploy_config, subscription_module, MG_TEST_DATA, baseline_vars=v
        ) as sc:
            sc.plan()
            sc.apply()
            subscription_id = sc.capture_subscription_id()
            is_subscription_in_management_group(
                subscription_id, v["subscription_management_group_id"], deploy_config
            )

        assert sc.destroy_attempted
        assert sc.cancel_attempted
