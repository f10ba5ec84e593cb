"""Isolated copies of the module under test and generated provider files.

Each scenario works on its own temporary copy of the module so parallel
tests never share a .terraform directory, a plan file or state.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

REQUIRED_PROVIDERS_FILENAME = "terraform.tf"
PROVIDERS_FILENAME = "providers.tf"
TEST_DATA_DIRNAME = "testdata"

# Never copied into the temporary module directory
COPY_IGNORE_PATTERNS: tuple[str, ...] = (
    ".terraform",
    ".terraform.lock.hcl",
    "*.tfstate",
    "*.tfstate.backup",
    "tfplan",
    ".git",
    "__pycache__",
    ".venv",
)


class WorkspaceError(Exception):
    """Raised when the module cannot be copied or provider files cannot be written."""

    pass


@dataclass(frozen=True)
class ProviderRequirement:
    source: str
    version: str


@dataclass(frozen=True)
class RequiredProvidersData:
    """Provider pins rendered into terraform.tf."""

    terraform_version: str = ">= 1.3.0"
    providers: dict[str, ProviderRequirement] = field(
        default_factory=lambda: {
            "azapi": ProviderRequirement("Azure/azapi", ">= 1.4.0"),
            "azurerm": ProviderRequirement("hashicorp/azurerm", ">= 3.7.0"),
            "random": ProviderRequirement("hashicorp/random", ">= 3.4.0"),
        }
    )

    def render(self) -> str:
        lines = [
            "terraform {",
            f'  required_version = "{self.terraform_version}"',
            "  required_providers {",
        ]
        for name in sorted(self.providers):
            requirement = self.providers[name]
            lines.extend(
                [
                    f"    {name} = {{",
                    f'      source  = "{requirement.source}"',
                    f'      version = "{requirement.version}"',
                    "    }",
                ]
            )
        lines.extend(["  }", "}", ""])
        return "\n".join(lines)


PROVIDERS_TF = """provider "azurerm" {
  features {}
  skip_provider_registration = true
}

provider "azapi" {
  skip_provider_registration = true
}
"""


@contextmanager
def copy_terraform_folder_to_temp(
    module_dir: Path,
    test_data_dir: str | Path | None = None,
) -> Generator[Path, None, None]:
    """Copy a module into a temp directory and yield the Terraform working directory.

    Without test data the working directory is the module copy itself.
    A relative test_data_dir names a root configuration inside the module
    (for example one that calls the module with for_each); it is used as the
    working directory of the copy. An absolute test_data_dir outside the
    module is copied to `<copy>/testdata/<name>`, so `source = "../../"`
    inside it refers to the module.

    The temporary directory is removed on exit, whatever happens inside
    the block.

    Raises:
        WorkspaceError: If the module or test data directory does not exist.
    """
    source = Path(module_dir).resolve()
    if not source.is_dir():
        raise WorkspaceError(f"Module directory does not exist: {source}")

    test_data: Path | None = None
    if test_data_dir:
        test_data = Path(test_data_dir)
        if not test_data.is_absolute():
            test_data = source / test_data
        if not test_data.is_dir():
            raise WorkspaceError(f"Test data directory does not exist: {test_data}")

    tmp_root = Path(tempfile.mkdtemp(prefix="lzvending-"))
    target = tmp_root / source.name
    try:
        shutil.copytree(source, target, ignore=shutil.ignore_patterns(*COPY_IGNORE_PATTERNS))
        working_dir = target
        if test_data is not None:
            if test_data.resolve().is_relative_to(source):
                working_dir = target / test_data.resolve().relative_to(source)
            else:
                working_dir = target / TEST_DATA_DIRNAME / test_data.name
                shutil.copytree(test_data, working_dir, dirs_exist_ok=True)
        logger.debug(
            "Copied module to temporary directory",
            extra={"module_dir": str(source), "working_dir": str(working_dir)},
        )
        yield working_dir
    finally:
        shutil.rmtree(tmp_root, ignore_errors=True)
        logger.debug("Removed temporary directory", extra={"tmp_dir": str(tmp_root)})


def generate_required_providers_file(data: RequiredProvidersData, path: Path) -> Path:
    """Write a terraform.tf that pins provider sources and versions."""
    try:
        Path(path).write_text(data.render())
    except OSError as e:
        raise WorkspaceError(f"failed to create {path}: {e}") from e
    return Path(path)


def create_terraform_providers_file(directory: Path) -> Path:
    """Write providers.tf configuring azurerm and azapi without provider registration."""
    path = Path(directory) / PROVIDERS_FILENAME
    try:
        path.write_text(PROVIDERS_TF)
    except OSError as e:
        raise WorkspaceError(f"Unable to create {PROVIDERS_FILENAME}: {e}") from e
    return path


def azurerm_and_required_providers(directory: Path) -> None:
    """Prep function writing both terraform.tf and providers.tf."""
    generate_required_providers_file(
        RequiredProvidersData(), Path(directory) / REQUIRED_PROVIDERS_FILENAME
    )
    create_terraform_providers_file(directory)


def load_landing_zone_files(directory: Path, pattern: str = "*.yaml") -> dict[str, Any]:
    """Load the YAML landing zone definitions of a test data directory.

    Returns:
        Parsed documents keyed by file name, which is also the for_each key
        the root module uses for each landing zone instance.
    """
    documents: dict[str, Any] = {}
    for path in sorted(Path(directory).glob(pattern)):
        try:
            documents[path.name] = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise WorkspaceError(f"Invalid YAML in {path}: {e}") from e
    return documents
