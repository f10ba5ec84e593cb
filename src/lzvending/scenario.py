"""Scenario lifecycle for module tests.

A scenario walks through:

    NotStarted -> Copied -> ProvidersWritten -> VarsSet -> Planned
        -> [Applied -> OutputCaptured] -> Asserted -> Cleaned

Release callbacks are held on an ExitStack, so they run in reverse order
of registration on every exit path: success, assertion failure or an
unexpected exception. Deployment scenarios register destroy and
subscription cancellation before they apply anything.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from contextlib import ExitStack
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any

from azure.core.exceptions import AzureError

from . import terraform
from .azureutils import cancel_subscription
from .clients import ClientConstructionError
from .config import ZERO_SUBSCRIPTION_ID, HarnessConfig
from .plan import (
    DEFAULT_TELEMETRY_ADDRESS,
    PlanAssertionError,
    PlanStruct,
    assert_resource_addresses,
    telemetry_bit_field,
)
from .workspace import azurerm_and_required_providers, copy_terraform_folder_to_temp

logger = logging.getLogger(__name__)

PrepFunc = Callable[[Path], None]


class ScenarioError(Exception):
    """Raised when a scenario step is used out of order."""

    pass


class ScenarioState(str, Enum):
    NOT_STARTED = "NotStarted"
    COPIED = "Copied"
    PROVIDERS_WRITTEN = "ProvidersWritten"
    VARS_SET = "VarsSet"
    PLANNED = "Planned"
    APPLIED = "Applied"
    OUTPUT_CAPTURED = "OutputCaptured"
    ASSERTED = "Asserted"
    CLEANED = "Cleaned"


class Scenario:
    """One plan-only test case against an isolated copy of a module.

    Usage:
        with Scenario(config, module_dir, baseline_vars=mock_vars) as sc:
            sc.write_providers()
            sc.set_vars(virtual_network_enabled=True)
            sc.plan()
            sc.assert_resources(expected)
    """

    def __init__(
        self,
        config: HarnessConfig,
        module_dir: Path | None = None,
        test_data_dir: str | Path | None = None,
        *,
        baseline_vars: dict[str, Any] | None = None,
        prep: PrepFunc | None = azurerm_and_required_providers,
    ) -> None:
        self._config = config
        self._module_dir = Path(module_dir) if module_dir else config.module_dir
        self._test_data_dir = test_data_dir
        self._vars: dict[str, Any] = dict(baseline_vars or {})
        self._prep = prep
        self._stack = ExitStack()
        self._options: terraform.TerraformOptions | None = None
        self._plan: PlanStruct | None = None
        self._providers_written = False
        self.state = ScenarioState.NOT_STARTED
        self.history: list[ScenarioState] = [ScenarioState.NOT_STARTED]

    def _transition(self, state: ScenarioState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("Scenario state changed", extra={"state": state.value})

    @property
    def options(self) -> terraform.TerraformOptions:
        if self._options is None:
            raise ScenarioError("Scenario must be used as a context manager")
        return self._options

    @property
    def working_dir(self) -> Path:
        return self.options.terraform_dir

    @property
    def vars(self) -> dict[str, Any]:
        return dict(self._vars)

    @property
    def plan_result(self) -> PlanStruct:
        if self._plan is None:
            raise ScenarioError("plan() has not been run")
        return self._plan

    def __enter__(self) -> Scenario:
        try:
            working_dir = self._stack.enter_context(
                copy_terraform_folder_to_temp(self._module_dir, self._test_data_dir)
            )
        except BaseException:
            self.close()
            raise
        self._options = terraform.TerraformOptions.default(working_dir, self._config)
        self._transition(ScenarioState.COPIED)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Run every registered release callback, then mark the scenario cleaned."""
        if self.state == ScenarioState.CLEANED:
            return
        try:
            self._stack.close()
        finally:
            self._transition(ScenarioState.CLEANED)

    def callback(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Register a release callback; callbacks run last-registered first."""
        self._stack.callback(func, *args, **kwargs)

    def write_providers(self) -> None:
        if self._prep is not None:
            self._prep(self.working_dir)
        self._providers_written = True
        self._transition(ScenarioState.PROVIDERS_WRITTEN)

    def set_vars(self, **overrides: Any) -> None:
        """Merge input variables over the baseline set."""
        self._check_mutable()
        self._vars.update(overrides)
        self._mark_vars_set()

    def remove_var(self, name: str) -> None:
        self._check_mutable()
        self._vars.pop(name, None)
        self._mark_vars_set()

    def _check_mutable(self) -> None:
        if self._plan is not None:
            raise ScenarioError("input variables cannot change after planning")

    def _mark_vars_set(self) -> None:
        self.options.vars = dict(self._vars)
        if self.state != ScenarioState.VARS_SET:
            self._transition(ScenarioState.VARS_SET)

    def plan(self) -> PlanStruct:
        """Run init, plan and show, returning the structured plan."""
        if not self._providers_written and self._prep is not None:
            self.write_providers()
        self.options.vars = dict(self._vars)
        self._plan = terraform.init_and_plan_and_show(self.options)
        self._transition(ScenarioState.PLANNED)
        return self._plan

    def assert_resources(self, expected: Iterable[str]) -> None:
        assert_resource_addresses(self.plan_result, expected)
        self._transition(ScenarioState.ASSERTED)

    def assert_telemetry_bit_field(
        self,
        expected: str,
        address: str = DEFAULT_TELEMETRY_ADDRESS,
    ) -> None:
        actual = telemetry_bit_field(self.plan_result, address)
        if actual != expected:
            raise PlanAssertionError(
                f"expected bit field to be {expected}, but got {actual}"
            )
        if self.state != ScenarioState.ASSERTED:
            self._transition(ScenarioState.ASSERTED)

    def assert_plan(
        self,
        expected: Iterable[str],
        bit_field: str,
        address: str = DEFAULT_TELEMETRY_ADDRESS,
    ) -> None:
        """Check the resource set and the telemetry bit-field together.

        Both checks always run; a failure reports every mismatch found.
        """
        failures: list[str] = []
        for check in (
            lambda: self.assert_resources(expected),
            lambda: self.assert_telemetry_bit_field(bit_field, address),
        ):
            try:
                check()
            except PlanAssertionError as e:
                failures.append(str(e))
        if failures:
            raise PlanAssertionError("\n".join(failures))


class DeploymentScenario(Scenario):
    """A scenario that applies real resources and tears them down afterwards.

    Cleanup order is fixed: terraform destroy (with retries), then a
    best-effort cancellation of the subscription id read from outputs,
    then removal of the temporary directory. Cleanup failures are logged
    and never fail the test.
    """

    subscription_output = "subscription_id"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # Unknown until apply produces an output
        self.subscription_id = uuid.UUID(ZERO_SUBSCRIPTION_ID)
        self.destroy_attempted = False
        self.cancel_attempted = False
        self._cleanup_registered = False

    def apply(self) -> None:
        """Apply idempotently; destroy and cancellation are registered first."""
        if self._plan is None:
            raise ScenarioError("plan() must succeed before apply()")
        if not self._cleanup_registered:
            # ExitStack is LIFO: register cancel first so destroy runs before it
            self.callback(self._cancel)
            self.callback(self._destroy)
            self._cleanup_registered = True
        terraform.apply_idempotent(self.options)
        self._transition(ScenarioState.APPLIED)

    def capture_subscription_id(self, output_name: str | None = None) -> uuid.UUID:
        """Read the subscription id output and hand it to the cleanup step."""
        if output_name is not None:
            self.subscription_output = output_name
        raw = terraform.output(self.options, self.subscription_output)
        try:
            self.subscription_id = uuid.UUID(raw)
        except ValueError as e:
            raise ScenarioError(f"subscription id {raw} is not a valid uuid") from e
        self._transition(ScenarioState.OUTPUT_CAPTURED)
        return self.subscription_id

    def _recover_subscription_id(self) -> None:
        """Read the subscription id from state when the test body never captured it.

        Runs before destroy, which empties the state.
        """
        if str(self.subscription_id) != ZERO_SUBSCRIPTION_ID:
            return
        try:
            self.subscription_id = uuid.UUID(
                terraform.output(self.options, self.subscription_output)
            )
        except (terraform.TerraformError, ValueError) as e:
            logger.debug("No subscription id in outputs", extra={"error": str(e)})
            return
        logger.info(
            "Recovered subscription id for cleanup",
            extra={"subscription_id": str(self.subscription_id)},
        )

    def _destroy(self) -> None:
        self._recover_subscription_id()
        self.destroy_attempted = True
        try:
            terraform.destroy_with_retry(self.options, self._config.destroy_retry)
        except terraform.TerraformError as e:
            logger.error(
                "Terraform destroy failed after retries",
                extra={"working_dir": str(self.working_dir), "error": str(e)},
            )

    def _cancel(self) -> None:
        self.cancel_attempted = True
        try:
            cancel_subscription(self.subscription_id, self._config)
        except (AzureError, ClientConstructionError) as e:
            # Destroy may already have removed the subscription
            logger.warning(
                "cannot cancel subscription",
                extra={"subscription_id": str(self.subscription_id), "error": str(e)},
            )
