"""Pydantic models for `terraform show -json` plan output and plan assertions.

Only the parts of the plan representation the tests rely on are modelled:
- planned_values, flattened into a map of resource address to values
- resource_changes, flattened into a map of resource address to actions
- output_changes
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

# Position of the feature bit-field in the telemetry resource name
TELEMETRY_BIT_FIELD_INDEX = 2
DEFAULT_TELEMETRY_ADDRESS = "azapi_resource.telemetry_root[0]"


class PlanAssertionError(AssertionError):
    """Raised when a plan does not contain what a test expects."""

    pass


class PlannedResource(BaseModel):
    """A resource as it appears in planned_values."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    address: str
    mode: str = "managed"
    type: str = ""
    name: str = ""
    index: Any | None = None
    provider_name: str = ""
    attribute_values: dict[str, Any] = Field(default_factory=dict, alias="values")


class PlannedModule(BaseModel):
    """A module in planned_values; the root module has no address."""

    model_config = {"extra": "ignore"}

    address: str = ""
    resources: list[PlannedResource] = Field(default_factory=list)
    child_modules: list[PlannedModule] = Field(default_factory=list)

    def walk(self) -> Iterable[PlannedResource]:
        yield from self.resources
        for child in self.child_modules:
            yield from child.walk()


class PlannedValues(BaseModel):
    model_config = {"extra": "ignore"}

    root_module: PlannedModule = Field(default_factory=PlannedModule)


class Change(BaseModel):
    model_config = {"extra": "ignore"}

    actions: list[str] = Field(default_factory=list)
    before: Any | None = None
    after: Any | None = None
    after_unknown: Any | None = None


class ResourceChange(BaseModel):
    """An entry of resource_changes."""

    model_config = {"extra": "ignore"}

    address: str
    module_address: str | None = None
    mode: str = "managed"
    type: str = ""
    name: str = ""
    change: Change = Field(default_factory=Change)


class PlanStruct(BaseModel):
    """Structured plan as produced by `terraform show -json <planfile>`."""

    model_config = {"extra": "ignore"}

    format_version: str = ""
    terraform_version: str = ""
    planned_values: PlannedValues = Field(default_factory=PlannedValues)
    resource_changes: list[ResourceChange] = Field(default_factory=list)
    output_changes: dict[str, Change] = Field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: str | bytes) -> PlanStruct:
        return cls.model_validate_json(raw)

    @property
    def resource_planned_values_map(self) -> dict[str, PlannedResource]:
        return {r.address: r for r in self.planned_values.root_module.walk()}

    @property
    def resource_changes_map(self) -> dict[str, ResourceChange]:
        return {rc.address: rc for rc in self.resource_changes}


def assert_planned_values_map_key_exists(plan: PlanStruct, address: str) -> PlannedResource:
    """Assert a resource address is planned and return it."""
    resources = plan.resource_planned_values_map
    if address not in resources:
        raise PlanAssertionError(f"resource address {address} not found in plan")
    return resources[address]


def assert_resource_addresses(plan: PlanStruct, expected: Iterable[str]) -> None:
    """Assert the plan contains exactly the expected resource addresses.

    All mismatches are reported together rather than stopping at the first.
    """
    expected_list = list(expected)
    actual = plan.resource_planned_values_map
    problems: list[str] = []

    if len(actual) != len(expected_list):
        problems.append(
            f"expected {len(expected_list)} resources to be created, but got {len(actual)}"
        )

    missing = [a for a in expected_list if a not in actual]
    unexpected = sorted(set(actual) - set(expected_list))
    problems.extend(f"missing: {a}" for a in missing)
    problems.extend(f"unexpected: {a}" for a in unexpected)

    if problems:
        raise PlanAssertionError("plan resource mismatch:\n  - " + "\n  - ".join(problems))


def telemetry_bit_field(
    plan: PlanStruct,
    address: str = DEFAULT_TELEMETRY_ADDRESS,
) -> str:
    """Return the hexadecimal feature bit-field encoded in a telemetry resource name.

    Telemetry names look like `<prefix>_<id>_<bitfield>_<...>`.
    """
    resource = assert_planned_values_map_key_exists(plan, address)
    name = resource.attribute_values.get("name")
    if not isinstance(name, str):
        raise PlanAssertionError(f"resource {address} has no name attribute")
    parts = name.split("_")
    if len(parts) <= TELEMETRY_BIT_FIELD_INDEX:
        raise PlanAssertionError(f"telemetry name {name!r} has no bit-field token")
    return parts[TELEMETRY_BIT_FIELD_INDEX]


def expand_addresses(templates: Iterable[str], keys: Iterable[str]) -> list[str]:
    """Expand `{key}` address templates for each for_each instance key."""
    key_list = list(keys)
    return [t.format(key=k) for t in templates for k in key_list]


def attribute(plan: PlanStruct, address: str, name: str) -> Any:
    """Return one planned attribute value (None when null or unknown)."""
    return assert_planned_values_map_key_exists(plan, address).attribute_values.get(name)
