"""Out-of-band Azure checks and cleanup used by the deployment tests."""

from __future__ import annotations

import logging
import time
import uuid

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from .clients import new_management_group_subscriptions_client, new_subscription_client
from .config import ZERO_SUBSCRIPTION_ID, HarnessConfig, RetryPolicy

logger = logging.getLogger(__name__)


class ManagementGroupAssociationError(Exception):
    """Raised when a subscription never shows up under the expected management group."""

    pass


def cancel_subscription(subscription_id: uuid.UUID | str, config: HarnessConfig) -> None:
    """Cancel a subscription created by a deployment test.

    A zero UUID means the test never captured a real id; nothing is sent.

    Raises:
        ClientConstructionError: If the subscription client cannot be built.
        AzureError: If the cancel call fails.
    """
    sid = str(subscription_id)
    if sid == ZERO_SUBSCRIPTION_ID:
        logger.warning("Subscription id was never captured, nothing to cancel")
        return

    client = new_subscription_client(config)
    result = client.cancel(sid)
    logger.info(
        "Cancelled subscription",
        extra={"subscription_id": sid, "result": getattr(result, "subscription_id", None)},
    )


def is_subscription_in_management_group(
    subscription_id: uuid.UUID | str,
    management_group_id: str,
    config: HarnessConfig,
    policy: RetryPolicy | None = None,
) -> None:
    """Wait until the subscription is associated with the management group.

    The association API is eventually consistent after apply, so the check
    is polled with the association policy from the config.

    Raises:
        ManagementGroupAssociationError: If the association is not found in time.
        ClientConstructionError: If the client cannot be built.
    """
    poll = policy or config.association_poll
    sid = str(subscription_id)
    client = new_management_group_subscriptions_client(config)
    last_error: Exception | None = None

    for attempt in range(1, poll.max_attempts + 1):
        try:
            info = client.get_subscription(group_id=management_group_id, subscription_id=sid)
        except (ResourceNotFoundError, HttpResponseError) as e:
            last_error = e
        else:
            parent_id = _parent_id(info)
            if parent_id is None or parent_id.lower().endswith(f"/{management_group_id.lower()}"):
                logger.info(
                    "Subscription found in management group",
                    extra={
                        "subscription_id": sid,
                        "management_group_id": management_group_id,
                        "attempt": attempt,
                    },
                )
                return
            last_error = ManagementGroupAssociationError(
                f"subscription {sid} has parent {parent_id}"
            )

        if attempt < poll.max_attempts:
            logger.debug(
                "Association not visible yet, polling again",
                extra={
                    "attempt": attempt,
                    "max_attempts": poll.max_attempts,
                    "wait_seconds": poll.interval_seconds,
                },
            )
            time.sleep(poll.interval_seconds)

    raise ManagementGroupAssociationError(
        f"subscription {sid} is not in management group {management_group_id} "
        f"after {poll.max_attempts} attempts: {last_error}"
    )


def _parent_id(info: object) -> str | None:
    parent = getattr(info, "parent", None)
    if parent is None:
        return None
    return getattr(parent, "id", None)
