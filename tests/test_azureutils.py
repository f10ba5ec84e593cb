"""Tests for subscription cancellation and management group checks."""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError

from azure_mock import MockAzureContext, MockSubscription
from lzvending.azureutils import (
    ManagementGroupAssociationError,
    cancel_subscription,
    is_subscription_in_management_group,
)
from lzvending.config import ZERO_SUBSCRIPTION_ID, HarnessConfig, RetryPolicy

SUBSCRIPTION_ID = "22222222-2222-2222-2222-222222222222"
FAST_POLL = RetryPolicy(max_attempts=3, interval_seconds=0)


class TestCancelSubscription:
    """Tests for cancel_subscription."""

    def test_cancels_subscription(self) -> None:
        sub = MockSubscription(SUBSCRIPTION_ID)
        with MockAzureContext(subscriptions=[sub]) as ctx:
            cancel_subscription(uuid.UUID(SUBSCRIPTION_ID), HarnessConfig())

            assert ctx.state.cancel_calls == [SUBSCRIPTION_ID]
            assert sub.state == "Disabled"

    def test_zero_uuid_is_skipped(self) -> None:
        with MockAzureContext() as ctx:
            cancel_subscription(ZERO_SUBSCRIPTION_ID, HarnessConfig())

            assert ctx.state.cancel_calls == []
            assert ctx.client_kwargs == []

    def test_api_error_propagates(self) -> None:
        with MockAzureContext(subscriptions=[MockSubscription(SUBSCRIPTION_ID)], fail_cancel=True):
            with pytest.raises(HttpResponseError):
                cancel_subscription(SUBSCRIPTION_ID, HarnessConfig())


class TestIsSubscriptionInManagementGroup:
    """Tests for the polled association check."""

    def test_found_first_attempt(self) -> None:
        sub = MockSubscription(SUBSCRIPTION_ID, management_group_id="Sandbox")
        with MockAzureContext(subscriptions=[sub]) as ctx:
            is_subscription_in_management_group(
                SUBSCRIPTION_ID, "Sandbox", HarnessConfig(), FAST_POLL
            )

            assert ctx.state.association_lookups == [("Sandbox", SUBSCRIPTION_ID)]

    def test_parent_match_is_case_insensitive(self) -> None:
        sub = MockSubscription(SUBSCRIPTION_ID, management_group_id="sandbox")
        with MockAzureContext(subscriptions=[sub]):
            is_subscription_in_management_group(
                SUBSCRIPTION_ID, "Sandbox", HarnessConfig(), FAST_POLL
            )

    @patch("lzvending.azureutils.time.sleep")
    def test_eventually_consistent(self, mock_sleep: MagicMock) -> None:
        """The association becomes visible after two misses."""
        sub = MockSubscription(SUBSCRIPTION_ID, management_group_id="Sandbox", association_delay=2)
        policy = RetryPolicy(max_attempts=3, interval_seconds=15)
        with MockAzureContext(subscriptions=[sub]) as ctx:
            is_subscription_in_management_group(SUBSCRIPTION_ID, "Sandbox", HarnessConfig(), policy)

            assert len(ctx.state.association_lookups) == 3
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(15)

    def test_never_associated(self) -> None:
        sub = MockSubscription(SUBSCRIPTION_ID)
        with MockAzureContext(subscriptions=[sub]) as ctx:
            with pytest.raises(ManagementGroupAssociationError) as exc_info:
                is_subscription_in_management_group(
                    SUBSCRIPTION_ID, "Sandbox", HarnessConfig(), FAST_POLL
                )

            assert len(ctx.state.association_lookups) == FAST_POLL.max_attempts
        assert "after 3 attempts" in str(exc_info.value)

    def test_wrong_parent(self) -> None:
        sub = MockSubscription(SUBSCRIPTION_ID, management_group_id="Corp")
        with MockAzureContext(subscriptions=[sub]):
            with pytest.raises(ManagementGroupAssociationError, match="has parent"):
                is_subscription_in_management_group(
                    SUBSCRIPTION_ID, "Sandbox", HarnessConfig(), FAST_POLL
                )

    @patch("lzvending.azureutils.time.sleep")
    def test_uses_config_policy_by_default(self, mock_sleep: MagicMock) -> None:
        config = HarnessConfig(association_poll=RetryPolicy(max_attempts=2, interval_seconds=1))
        with MockAzureContext(subscriptions=[MockSubscription(SUBSCRIPTION_ID)]) as ctx:
            with pytest.raises(ManagementGroupAssociationError):
                is_subscription_in_management_group(SUBSCRIPTION_ID, "Sandbox", config)

            assert len(ctx.state.association_lookups) == 2
        mock_sleep.assert_called_once_with(1)
