"""Azure API mocks for harness tests.

In-memory stand-ins for the subscription and management group clients
and for the token credential, so the helpers in lzvending can be tested
without Azure connectivity.

Usage:
    from azure_mock import MockAzureContext, MockSubscription

    with MockAzureContext(subscriptions=[MockSubscription(sid)]) as ctx:
        cancel_subscription(sid, config)
        assert ctx.state.cancel_calls == [sid]
"""

from .context import MockAzureContext
from .credential import MockTokenCredential, create_mock_credential
from .subscriptions import (
    MockManagementGroupsAPI,
    MockSubscription,
    MockSubscriptionClient,
    MockSubscriptionState,
)

__all__ = [
    "MockAzureContext",
    "MockManagementGroupsAPI",
    "MockSubscription",
    "MockSubscriptionClient",
    "MockSubscriptionState",
    "MockTokenCredential",
    "create_mock_credential",
]
