"""Pytest configuration and fixtures."""

import shutil
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock and tf_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from lzvending.config import HarnessConfig, RetryPolicy  # noqa: E402

# No waiting between retries in unit tests
FAST_RETRY = RetryPolicy(max_attempts=3, interval_seconds=0)


@pytest.fixture
def module_dir(tmp_path: Path) -> Path:
    """A small stand-in Terraform module with build artefacts that must not be copied."""
    module = tmp_path / "terraform-azurerm-lz-vending"
    module.mkdir()
    (module / "main.tf").write_text('resource "random_id" "this" {\n  byte_length = 4\n}\n')
    (module / "variables.tf").write_text('variable "location" {\n  type = string\n}\n')
    (module / ".terraform").mkdir()
    (module / ".terraform" / "plugin").write_text("binary")
    (module / "terraform.tfstate").write_text("{}")
    testdata = module / "testdata" / "TestIntegrationWithYaml"
    testdata.mkdir(parents=True)
    (testdata / "main.tf").write_text('module "alz_landing_zone" {\n  source = "../../"\n}\n')
    (testdata / "landing_zone_1.yaml").write_text("name: lz1\nworkload: DevTest\n")
    return module


@pytest.fixture
def harness_config(module_dir: Path) -> HarnessConfig:
    """Configuration pointing at the stand-in module with instant retries."""
    return HarnessConfig(
        module_dir=module_dir,
        destroy_retry=FAST_RETRY,
        association_poll=FAST_RETRY,
    )


@pytest.fixture(scope="session")
def env_config() -> HarnessConfig:
    """Configuration of the real environment, used by the module suites."""
    return HarnessConfig.from_env()


@pytest.fixture(scope="session")
def terraform_available(env_config: HarnessConfig) -> None:
    if shutil.which(env_config.terraform_binary) is None:
        pytest.skip(f"{env_config.terraform_binary} not found on PATH")


@pytest.fixture
def root_module(env_config: HarnessConfig, terraform_available: None) -> Path:
    """The landing zone vending root module, skipping when its source is absent."""
    path = env_config.module_dir
    if not any(path.glob("*.tf")):
        pytest.skip(f"no Terraform module found in {path}, set LZ_MODULE_DIR")
    return path


@pytest.fixture
def submodule(root_module: Path):
    """Factory returning a submodule directory of the root module, skipping when absent."""

    def _get(name: str) -> Path:
        path = root_module / "modules" / name
        if not any(path.glob("*.tf")):
            pytest.skip(f"no Terraform module found in {path}")
        return path

    return _get


@pytest.fixture
def deploy_config(env_config: HarnessConfig) -> HarnessConfig:
    """Configuration for deployment tests, skipping when they are not enabled."""
    reason = env_config.deploy_precheck_reason()
    if reason is not None:
        pytest.skip(reason)
    return env_config
